import logging
import re
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import ValidationError

from .accrual import compute_points
from .config import Settings, get_settings
from .events import EventBus, EventType, LoyaltyEvent
from .ledger import compute_balance, points_to_cash, summarize_partner, summarize_program
from .models import (
    Booking,
    BookingStatus,
    CreateProductRequest,
    PartnerBalance,
    PartnerSummary,
    Product,
    ProgramOverview,
    UpdateProductRequest,
    Withdrawal,
    WithdrawalStatus,
    reward_form_problem,
)
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)

# Only the shape handle@provider is checked; the UPI app validates the rest
UPI_ID_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")

MAX_BOOKING_QUANTITY = 100_000


class LoyaltyServiceError(Exception):
    kind = "LoyaltyServiceError"


class InvalidProductError(LoyaltyServiceError):
    kind = "InvalidProduct"


class InvalidQuantityError(LoyaltyServiceError):
    kind = "InvalidQuantity"


class InvalidTransitionError(LoyaltyServiceError):
    kind = "InvalidTransition"


class InsufficientBalanceError(LoyaltyServiceError):
    kind = "InsufficientBalance"


class InvalidDestinationError(LoyaltyServiceError):
    kind = "InvalidDestination"


class PermissionDeniedError(LoyaltyServiceError):
    kind = "PermissionDenied"


class BookingNotFoundError(LoyaltyServiceError):
    kind = "BookingNotFound"


class WithdrawalNotFoundError(LoyaltyServiceError):
    kind = "WithdrawalNotFound"


class ProductNotFoundError(LoyaltyServiceError):
    kind = "ProductNotFound"


def _require_admin(actor_is_admin: bool, action: str) -> None:
    if not actor_is_admin:
        logger.warning("Rejected non-admin attempt to %s", action)
        raise PermissionDeniedError(f"Only an administrator can {action}")


class BookingService:
    """Creates bookings and moves them from waiting to approved or rejected."""

    def __init__(self, storage: InMemoryStorage, events: Optional[EventBus] = None):
        self.storage = storage
        self.events = events or EventBus()

    def create_booking(
        self,
        partner_id: UUID,
        product_id: UUID,
        quantity: int,
        bill_image_url: Optional[str] = None,
    ) -> Booking:
        product = self.storage.get_product(product_id)
        if not product:
            raise InvalidProductError(f"Product {product_id} does not exist")
        if not product.get("active"):
            raise InvalidProductError(f"Product {product_id} is not active")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= MAX_BOOKING_QUANTITY:
            raise InvalidQuantityError(
                f"Quantity must be a whole number from 1 to {MAX_BOOKING_QUANTITY}, got {quantity!r}"
            )

        partner = self.storage.get_partner(partner_id)

        booking_data = {
            "id": uuid4(),
            "partner_id": partner_id,
            "product_id": product_id,
            "product_name": product.get("product_name") or "",
            "partner_name": partner.get("full_name") if partner else None,
            "quantity": quantity,
            "status": BookingStatus.WAITING.value,
            "points_earned": compute_points(product, quantity),
            "bill_image_url": bill_image_url,
            "created_at": datetime.now(timezone.utc),
            "reviewed_at": None,
            "reviewed_by": None,
        }
        booking = Booking(**self.storage.insert_booking(booking_data))

        logger.info(
            "Booking %s created for partner %s: %d x %s = %d points",
            booking.id, partner_id, quantity, booking.product_name, booking.points_earned,
        )
        self.events.publish(LoyaltyEvent(
            type=EventType.BOOKING_CREATED,
            record_id=booking.id, partner_id=booking.partner_id, status=booking.status,
        ))
        return booking

    def transition(
        self,
        booking_id: UUID,
        target_status: BookingStatus,
        actor_is_admin: bool,
        performed_by: Optional[str] = None,
    ) -> Booking:
        _require_admin(actor_is_admin, "review bookings")
        try:
            target_status = BookingStatus(target_status)
        except ValueError:
            raise InvalidTransitionError(f"Unknown booking status {target_status!r}")

        booking = self.get_booking(booking_id)
        if not booking.can_transition_to(target_status):
            raise InvalidTransitionError(
                f"Cannot move booking {booking_id} from {booking.status.value} to {target_status.value}"
            )

        updated = self.storage.update_booking_status(
            booking_id, target_status.value,
            expected_status=BookingStatus.WAITING.value, reviewed_by=performed_by,
        )
        if updated is None:
            # Another reviewer decided first
            raise InvalidTransitionError(f"Booking {booking_id} has already been reviewed")

        booking = Booking(**updated)
        logger.info("Booking %s %s by %s", booking_id, booking.status.value, performed_by or "admin")
        self.events.publish(LoyaltyEvent(
            type=EventType.BOOKING_STATUS_CHANGED,
            record_id=booking.id, partner_id=booking.partner_id, status=booking.status,
        ))
        return booking

    def get_booking(self, booking_id: UUID) -> Booking:
        booking_data = self.storage.get_booking(booking_id)
        if not booking_data:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        return Booking(**booking_data)

    def list_bookings(
        self,
        partner_id: Optional[UUID] = None,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        bookings = [Booking(**b) for b in self.storage.list_bookings(partner_id)]
        if status is not None:
            bookings = [b for b in bookings if b.status == status]
        bookings.sort(key=lambda b: b.created_at, reverse=True)
        return bookings


class WithdrawalService:
    """Turns a partner's available points into a payout request for admin review."""

    def __init__(
        self,
        storage: InMemoryStorage,
        events: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.events = events or EventBus()
        self.settings = settings or get_settings()

    def get_balance(self, partner_id: UUID) -> PartnerBalance:
        return compute_balance(
            partner_id,
            [Booking(**b) for b in self.storage.list_bookings(partner_id)],
            [Withdrawal(**w) for w in self.storage.list_withdrawals(partner_id)],
            self.settings.REWARD_CONVERSION_RATE,
            self.settings.CURRENCY,
        )

    def request_withdrawal(self, partner_id: UUID, upi_id: str) -> Withdrawal:
        minimum = self.settings.MIN_WITHDRAWAL_POINTS
        upi_id = (upi_id or "").strip()

        # Balance is re-read and the request inserted under one lock so two
        # requests cannot both redeem the same points.
        with self.storage.atomic():
            balance = self.get_balance(partner_id)
            if balance.available < minimum:
                logger.warning(
                    "Withdrawal refused for partner %s: %d available, %d required",
                    partner_id, balance.available, minimum,
                )
                raise InsufficientBalanceError(
                    f"Minimum {minimum} points required to redeem, {balance.available} available"
                )
            if not UPI_ID_PATTERN.match(upi_id):
                raise InvalidDestinationError(f"Invalid UPI ID: {upi_id!r}")

            withdrawal_data = {
                "id": uuid4(),
                "partner_id": partner_id,
                "points": balance.available,
                "amount": points_to_cash(balance.available, self.settings.REWARD_CONVERSION_RATE),
                "currency": self.settings.CURRENCY,
                "upi_id": upi_id,
                "status": WithdrawalStatus.PENDING.value,
                "created_at": datetime.now(timezone.utc),
                "reviewed_at": None,
                "reviewed_by": None,
            }
            withdrawal = Withdrawal(**self.storage.insert_withdrawal(withdrawal_data))

        logger.info(
            "Withdrawal %s requested by partner %s: %d points (%s %s) to %s",
            withdrawal.id, partner_id, withdrawal.points, withdrawal.amount, withdrawal.currency, upi_id,
        )
        self.events.publish(LoyaltyEvent(
            type=EventType.WITHDRAWAL_CREATED,
            record_id=withdrawal.id, partner_id=withdrawal.partner_id, status=withdrawal.status,
        ))
        return withdrawal

    def transition(
        self,
        withdrawal_id: UUID,
        target_status: WithdrawalStatus,
        actor_is_admin: bool,
        performed_by: Optional[str] = None,
    ) -> Withdrawal:
        _require_admin(actor_is_admin, "review withdrawals")
        try:
            target_status = WithdrawalStatus(target_status)
        except ValueError:
            raise InvalidTransitionError(f"Unknown withdrawal status {target_status!r}")

        withdrawal = self.get_withdrawal(withdrawal_id)
        if not withdrawal.can_transition_to(target_status):
            raise InvalidTransitionError(
                f"Cannot move withdrawal {withdrawal_id} from {withdrawal.status.value} to {target_status.value}"
            )

        updated = self.storage.update_withdrawal_status(
            withdrawal_id, target_status.value,
            expected_status=WithdrawalStatus.PENDING.value, reviewed_by=performed_by,
        )
        if updated is None:
            raise InvalidTransitionError(f"Withdrawal {withdrawal_id} has already been reviewed")

        withdrawal = Withdrawal(**updated)
        logger.info("Withdrawal %s %s by %s", withdrawal_id, withdrawal.status.value, performed_by or "admin")
        self.events.publish(LoyaltyEvent(
            type=EventType.WITHDRAWAL_STATUS_CHANGED,
            record_id=withdrawal.id, partner_id=withdrawal.partner_id, status=withdrawal.status,
        ))
        return withdrawal

    def get_withdrawal(self, withdrawal_id: UUID) -> Withdrawal:
        withdrawal_data = self.storage.get_withdrawal(withdrawal_id)
        if not withdrawal_data:
            raise WithdrawalNotFoundError(f"Withdrawal {withdrawal_id} not found")
        return Withdrawal(**withdrawal_data)

    def list_withdrawals(
        self,
        partner_id: Optional[UUID] = None,
        status: Optional[WithdrawalStatus] = None,
    ) -> list[Withdrawal]:
        withdrawals = [Withdrawal(**w) for w in self.storage.list_withdrawals(partner_id)]
        if status is not None:
            withdrawals = [w for w in withdrawals if w.status == status]
        withdrawals.sort(key=lambda w: w.created_at, reverse=True)
        return withdrawals


class LoyaltyService:
    """Entry point wiring the catalog, both workflows and the balance projection."""

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        events: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.events = events or EventBus()
        self.settings = settings or get_settings()
        self.bookings = BookingService(self.storage, self.events)
        self.withdrawals = WithdrawalService(self.storage, self.events, self.settings)

    # Catalog

    def list_products(self, include_inactive: bool = False) -> list[Product]:
        return [Product(**p) for p in self.storage.list_products(include_inactive)]

    def add_product(self, request: CreateProductRequest, actor_is_admin: bool) -> Product:
        _require_admin(actor_is_admin, "manage products")
        product = Product(**self.storage.add_product({"id": uuid4(), **request.model_dump()}))
        logger.info("Product %s added: %s", product.id, product.product_name)
        return product

    def update_product(self, product_id: UUID, request: UpdateProductRequest, actor_is_admin: bool) -> Product:
        _require_admin(actor_is_admin, "manage products")
        changes = {
            **request.model_dump(exclude_unset=True, exclude={"points_per_unit", "base_price", "reward_percentage"}),
            **request.reward_changes(),
        }

        # The merged record is checked before anything is written
        with self.storage.atomic():
            current = self.storage.get_product(product_id)
            if current is None:
                raise ProductNotFoundError(f"Product {product_id} not found")
            try:
                product = Product(**{**current, **changes})
            except ValidationError as e:
                raise InvalidProductError(f"Invalid product update: {e}")
            problem = reward_form_problem(product.points_per_unit, product.base_price, product.reward_percentage)
            if problem:
                raise InvalidProductError(problem)
            updated = self.storage.update_product(product_id, product.model_dump(exclude={"id"}))

        logger.info("Product %s updated: %s", product_id, sorted(changes))
        return Product(**updated)

    # Balances and dashboards

    def get_balance(self, partner_id: UUID) -> PartnerBalance:
        return self.withdrawals.get_balance(partner_id)

    def get_partner_summary(self, partner_id: UUID) -> PartnerSummary:
        return summarize_partner(
            partner_id,
            [Booking(**b) for b in self.storage.list_bookings(partner_id)],
            [Withdrawal(**w) for w in self.storage.list_withdrawals(partner_id)],
            self.settings.REWARD_CONVERSION_RATE,
            self.settings.CURRENCY,
        )

    def get_program_overview(self, actor_is_admin: bool) -> ProgramOverview:
        _require_admin(actor_is_admin, "view the program overview")
        return summarize_program(
            [Booking(**b) for b in self.storage.list_bookings()],
            [Withdrawal(**w) for w in self.storage.list_withdrawals()],
        )
