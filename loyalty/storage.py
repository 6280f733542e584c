import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, Optional
from uuid import UUID, uuid4


SEED_PARTNER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
SEED_ADMIN_ID = UUID("660e8400-e29b-41d4-a716-446655440001")
SEED_FLAT_PRODUCT_ID = UUID("11111111-1111-1111-1111-111111111111")
SEED_PRICED_PRODUCT_ID = UUID("22222222-2222-2222-2222-222222222222")
SEED_INACTIVE_PRODUCT_ID = UUID("33333333-3333-3333-3333-333333333333")


class InMemoryStorage:
    """Process-local record store.

    Records are kept as plain dicts and handed out as copies. Status updates
    are conditional on the current status and serialized by a lock, which is
    what keeps two concurrent admin decisions from both landing.
    """

    def __init__(self, seed: bool = True):
        self.partners: dict[UUID, dict] = {}
        self.products: dict[UUID, dict] = {}
        self.bookings: dict[UUID, dict] = {}
        self.withdrawals: dict[UUID, dict] = {}
        self._lock = threading.RLock()
        if seed:
            self._seed_data()

    def _seed_data(self):
        now = datetime.now(timezone.utc)

        self.partners[SEED_PARTNER_ID] = {
            "id": SEED_PARTNER_ID, "full_name": "Dr. Anil Kumar",
            "shop_name": "Clear Vision Opticals", "city": "Hyderabad",
            "role": "optometrist", "created_at": now,
        }
        self.partners[SEED_ADMIN_ID] = {
            "id": SEED_ADMIN_ID, "full_name": "Program Admin",
            "shop_name": None, "city": None,
            "role": "admin", "created_at": now,
        }

        self.products[SEED_FLAT_PRODUCT_ID] = {
            "id": SEED_FLAT_PRODUCT_ID, "brand": "CooperVision",
            "product_name": "Biofinity Monthly", "active": True,
            "points_per_unit": 500, "base_price": None, "reward_percentage": None,
            "stock_quantity": 100,
        }
        self.products[SEED_PRICED_PRODUCT_ID] = {
            "id": SEED_PRICED_PRODUCT_ID, "brand": "CooperVision",
            "product_name": "MyDay Toric", "active": True,
            "points_per_unit": None, "base_price": Decimal("2000"), "reward_percentage": 5,
            "stock_quantity": 50,
        }
        self.products[SEED_INACTIVE_PRODUCT_ID] = {
            "id": SEED_INACTIVE_PRODUCT_ID, "brand": "CooperVision",
            "product_name": "Proclear 1 Day", "active": False,
            "points_per_unit": 200, "base_price": None, "reward_percentage": None,
            "stock_quantity": 0,
        }

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            yield

    # Partners

    def get_partner(self, partner_id: UUID) -> Optional[dict]:
        partner = self.partners.get(partner_id)
        return dict(partner) if partner else None

    # Products

    def get_product(self, product_id: UUID) -> Optional[dict]:
        product = self.products.get(product_id)
        return dict(product) if product else None

    def list_products(self, include_inactive: bool = False) -> list[dict]:
        return [
            dict(p) for p in self.products.values()
            if include_inactive or p.get("active")
        ]

    def add_product(self, data: dict) -> dict:
        product_id = data.get("id") or uuid4()
        record = {**data, "id": product_id}
        with self._lock:
            self.products[product_id] = record
        return dict(record)

    def update_product(self, product_id: UUID, changes: dict[str, Any]) -> Optional[dict]:
        with self._lock:
            product = self.products.get(product_id)
            if product is None:
                return None
            product.update(changes)
            return dict(product)

    # Bookings

    def get_booking(self, booking_id: UUID) -> Optional[dict]:
        booking = self.bookings.get(booking_id)
        return dict(booking) if booking else None

    def list_bookings(self, partner_id: Optional[UUID] = None) -> list[dict]:
        with self._lock:
            return [
                dict(b) for b in self.bookings.values()
                if partner_id is None or b["partner_id"] == partner_id
            ]

    def insert_booking(self, record: dict) -> dict:
        with self._lock:
            if record["id"] in self.bookings:
                raise KeyError(f"Booking {record['id']} already exists")
            self.bookings[record["id"]] = dict(record)
        return dict(record)

    def update_booking_status(
        self,
        booking_id: UUID,
        status: str,
        expected_status: str,
        reviewed_by: Optional[str] = None,
    ) -> Optional[dict]:
        return self._conditional_update(self.bookings, booking_id, status, expected_status, reviewed_by)

    # Withdrawals

    def get_withdrawal(self, withdrawal_id: UUID) -> Optional[dict]:
        withdrawal = self.withdrawals.get(withdrawal_id)
        return dict(withdrawal) if withdrawal else None

    def list_withdrawals(self, partner_id: Optional[UUID] = None) -> list[dict]:
        with self._lock:
            return [
                dict(w) for w in self.withdrawals.values()
                if partner_id is None or w["partner_id"] == partner_id
            ]

    def insert_withdrawal(self, record: dict) -> dict:
        with self._lock:
            if record["id"] in self.withdrawals:
                raise KeyError(f"Withdrawal {record['id']} already exists")
            self.withdrawals[record["id"]] = dict(record)
        return dict(record)

    def update_withdrawal_status(
        self,
        withdrawal_id: UUID,
        status: str,
        expected_status: str,
        reviewed_by: Optional[str] = None,
    ) -> Optional[dict]:
        return self._conditional_update(self.withdrawals, withdrawal_id, status, expected_status, reviewed_by)

    def _conditional_update(
        self,
        table: dict[UUID, dict],
        record_id: UUID,
        status: str,
        expected_status: str,
        reviewed_by: Optional[str],
    ) -> Optional[dict]:
        with self._lock:
            record = table.get(record_id)
            if record is None or record["status"] != expected_status:
                return None
            record["status"] = status
            record["reviewed_at"] = datetime.now(timezone.utc)
            record["reviewed_by"] = reviewed_by
            return dict(record)
