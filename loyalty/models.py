from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


class UserRole(str, Enum):
    OPTOMETRIST = "optometrist"
    ADMIN = "admin"


class BookingStatus(str, Enum):
    WAITING = "waiting"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Product(BaseModel):
    id: UUID
    brand: str = ""
    product_name: str
    active: bool = True
    points_per_unit: Optional[int] = Field(default=None, ge=0)
    base_price: Optional[Decimal] = Field(default=None, ge=0)
    reward_percentage: Optional[int] = Field(default=None, ge=1, le=8)
    stock_quantity: int = Field(default=0, ge=0)

    model_config = ConfigDict(from_attributes=True)


class CreateProductRequest(BaseModel):
    product_name: str = Field(..., min_length=1)
    brand: str = ""
    points_per_unit: Optional[int] = Field(default=None, ge=0)
    base_price: Optional[Decimal] = Field(default=None, ge=0)
    reward_percentage: Optional[int] = Field(default=None, ge=1, le=8)
    stock_quantity: int = Field(default=0, ge=0)
    active: bool = True

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "product_name": "Biofinity Toric",
            "brand": "CooperVision",
            "base_price": 2000,
            "reward_percentage": 5,
        }
    })

    @model_validator(mode="after")
    def check_reward_form(self) -> "CreateProductRequest":
        problem = reward_form_problem(self.points_per_unit, self.base_price, self.reward_percentage)
        if problem:
            raise ValueError(problem)
        return self


def reward_form_problem(
    points_per_unit: Optional[int],
    base_price: Optional[Decimal],
    reward_percentage: Optional[int],
) -> Optional[str]:
    """Describe why a reward specification is not exactly one complete form, or None."""
    has_flat_form = points_per_unit is not None
    price_fields = [f for f in (base_price, reward_percentage) if f is not None]
    if has_flat_form and price_fields:
        return "Use either points_per_unit or base_price with reward_percentage, not both"
    if not has_flat_form and len(price_fields) < 2:
        return "Provide points_per_unit or both base_price and reward_percentage"
    return None


class UpdateProductRequest(BaseModel):
    product_name: Optional[str] = Field(default=None, min_length=1)
    brand: Optional[str] = None
    points_per_unit: Optional[int] = Field(default=None, ge=0)
    base_price: Optional[Decimal] = Field(default=None, ge=0)
    reward_percentage: Optional[int] = Field(default=None, ge=1, le=8)
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    active: Optional[bool] = None

    # Validators only run on values the caller sent, so this rejects explicit nulls
    @field_validator("product_name", "brand", "stock_quantity", "active")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v

    def reward_changes(self) -> dict:
        """Reward fields to write, clearing the form the caller is switching away from."""
        changes = self.model_dump(
            include={"points_per_unit", "base_price", "reward_percentage"}, exclude_unset=True,
        )
        if changes.get("points_per_unit") is not None:
            changes.setdefault("base_price", None)
            changes.setdefault("reward_percentage", None)
        elif changes.get("base_price") is not None or changes.get("reward_percentage") is not None:
            changes.setdefault("points_per_unit", None)
        return changes


class CreateBookingRequest(BaseModel):
    partner_id: UUID
    product_id: UUID
    # Range is checked by the service so callers get an InvalidQuantity error
    quantity: int
    bill_image_url: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "partner_id": "550e8400-e29b-41d4-a716-446655440000",
            "product_id": "11111111-1111-1111-1111-111111111111",
            "quantity": 10,
        }
    })


class CreateWithdrawalRequest(BaseModel):
    partner_id: UUID
    upi_id: str = Field(..., description="Destination UPI id, e.g. name@okbank")


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    performed_by: Optional[str] = None


class WithdrawalStatusUpdate(BaseModel):
    status: WithdrawalStatus
    performed_by: Optional[str] = None


class Booking(BaseModel):
    id: UUID
    partner_id: UUID
    product_id: UUID
    product_name: str
    partner_name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    status: BookingStatus
    points_earned: int = Field(..., ge=0)
    bill_image_url: Optional[str] = None
    created_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    def can_transition_to(self, target: BookingStatus) -> bool:
        return self.status == BookingStatus.WAITING and target in (
            BookingStatus.APPROVED, BookingStatus.REJECTED,
        )


class Withdrawal(BaseModel):
    id: UUID
    partner_id: UUID
    points: int = Field(..., ge=0)
    amount: Decimal
    currency: str = "INR"
    upi_id: str
    status: WithdrawalStatus
    created_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    def can_transition_to(self, target: WithdrawalStatus) -> bool:
        return self.status == WithdrawalStatus.PENDING and target in (
            WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED,
        )


class PartnerBalance(BaseModel):
    partner_id: UUID
    earned: int
    redeemed: int
    available: int
    cash_value: Decimal
    currency: str = "INR"


class PartnerSummary(BaseModel):
    partner_id: UUID
    total_bookings: int
    waiting_bookings: int
    approved_bookings: int
    rejected_bookings: int
    balance: PartnerBalance


class ProgramOverview(BaseModel):
    waiting_bookings: int
    pending_withdrawals: int
    points_earned: int
    points_paid_out: int
