"""
Balance projection over booking and withdrawal history.

Nothing here is stored. A partner's balance is recomputed from the full set of
records every time it is read, so a missed update can only produce a stale
read, never a permanently wrong balance.
"""

from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Iterable
from uuid import UUID

from .models import (
    Booking,
    BookingStatus,
    PartnerBalance,
    PartnerSummary,
    ProgramOverview,
    Withdrawal,
    WithdrawalStatus,
)


def points_to_cash(points: int, conversion_rate: int) -> Decimal:
    if conversion_rate <= 0:
        raise ValueError("conversion_rate must be positive")
    # Exact for any point total: enough digits for the whole part plus paise
    with localcontext() as ctx:
        ctx.prec = max(28, len(str(abs(points))) + 4)
        ctx.rounding = ROUND_DOWN
        cash = Decimal(points) / Decimal(conversion_rate)
        return cash.quantize(Decimal("0.01"), rounding=ROUND_DOWN)


def compute_balance(
    partner_id: UUID,
    bookings: Iterable[Booking],
    withdrawals: Iterable[Withdrawal],
    conversion_rate: int,
    currency: str = "INR",
) -> PartnerBalance:
    earned = sum(
        b.points_earned for b in bookings
        if b.partner_id == partner_id and b.status == BookingStatus.APPROVED
    )
    # Pending withdrawals hold their points until an admin rejects them
    redeemed = sum(
        w.points for w in withdrawals
        if w.partner_id == partner_id and w.status != WithdrawalStatus.REJECTED
    )
    available = max(0, earned - redeemed)

    return PartnerBalance(
        partner_id=partner_id,
        earned=earned,
        redeemed=redeemed,
        available=available,
        cash_value=points_to_cash(available, conversion_rate),
        currency=currency,
    )


def summarize_partner(
    partner_id: UUID,
    bookings: Iterable[Booking],
    withdrawals: Iterable[Withdrawal],
    conversion_rate: int,
    currency: str = "INR",
) -> PartnerSummary:
    own = [b for b in bookings if b.partner_id == partner_id]
    counts = {status: 0 for status in BookingStatus}
    for booking in own:
        counts[booking.status] += 1

    return PartnerSummary(
        partner_id=partner_id,
        total_bookings=len(own),
        waiting_bookings=counts[BookingStatus.WAITING],
        approved_bookings=counts[BookingStatus.APPROVED],
        rejected_bookings=counts[BookingStatus.REJECTED],
        balance=compute_balance(partner_id, own, withdrawals, conversion_rate, currency),
    )


def summarize_program(
    bookings: Iterable[Booking],
    withdrawals: Iterable[Withdrawal],
) -> ProgramOverview:
    bookings = list(bookings)
    withdrawals = list(withdrawals)

    return ProgramOverview(
        waiting_bookings=sum(1 for b in bookings if b.status == BookingStatus.WAITING),
        pending_withdrawals=sum(1 for w in withdrawals if w.status == WithdrawalStatus.PENDING),
        points_earned=sum(b.points_earned for b in bookings if b.status == BookingStatus.APPROVED),
        points_paid_out=sum(w.points for w in withdrawals if w.status == WithdrawalStatus.APPROVED),
    )
