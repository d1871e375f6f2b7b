"""
Booking price calculation.

Price = seats_booked x price_per_seat, rounded half-up to cents.

The result is frozen on the booking row at creation time and never
recomputed when the ride's per-seat price later changes.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")

# Largest amount a NUMERIC(10, 2) column holds
MAX_AMOUNT = Decimal("99999999.99")


def to_money(value) -> Decimal:
    """Coerce a float / str / Decimal to a 2-place Decimal."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def booking_total(seats_booked: int, price_per_seat) -> Decimal:
    if seats_booked < 1:
        raise ValueError("seats_booked must be positive")
    return to_money(to_money(price_per_seat) * seats_booked)
