"""
Partner Loyalty Rewards

This module provides:
- Points accrual from the product catalog, frozen at booking time
- Booking review workflow: waiting → approved / rejected
- Withdrawal review workflow: pending → approved / rejected
- Partner balances derived from booking and withdrawal history
- Best-effort event fan-out for notifications
"""

from .models import (
    BookingStatus,
    WithdrawalStatus,
    Product,
    Booking,
    Withdrawal,
    PartnerBalance,
)
from .service import LoyaltyService, BookingService, WithdrawalService

__all__ = [
    "BookingStatus",
    "WithdrawalStatus",
    "Product",
    "Booking",
    "Withdrawal",
    "PartnerBalance",
    "LoyaltyService",
    "BookingService",
    "WithdrawalService",
]
