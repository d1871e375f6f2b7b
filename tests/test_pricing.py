"""Unit tests for booking price calculation."""

from decimal import Decimal

import pytest

from carpool.domain.pricing import booking_total, to_money


class TestToMoney:
    def test_float_is_quantized(self):
        assert to_money(25.0) == Decimal("25.00")

    def test_rounds_half_up(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money("10.004") == Decimal("10.00")

    def test_decimal_passes_through(self):
        assert to_money(Decimal("7.5")) == Decimal("7.50")


class TestBookingTotal:
    def test_two_seats_at_25(self):
        assert booking_total(2, Decimal("25.00")) == Decimal("50.00")

    def test_float_price_has_no_binary_drift(self):
        # 0.1 * 3 == 0.30000000000000004 in floats
        assert booking_total(3, 0.1) == Decimal("0.30")

    def test_free_ride(self):
        assert booking_total(4, 0) == Decimal("0.00")

    def test_zero_seats_rejected(self):
        with pytest.raises(ValueError):
            booking_total(0, Decimal("10.00"))
