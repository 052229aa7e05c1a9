"""Unit tests for integer coin arithmetic."""

from datetime import timedelta

import pytest

from src.ar_common.coins import calculate_payout, coins_to_display, validate_amount
from src.ar_common.datetime_utils import seconds_until, utc_now


class TestValidateAmount:
    @pytest.mark.parametrize("amount", [1, 100, 10_000])
    def test_accepts_positive_ints(self, amount: int) -> None:
        validate_amount(amount)

    @pytest.mark.parametrize("amount", [0, -1, 2.5, "10", True, None])
    def test_rejects_everything_else(self, amount: object) -> None:
        with pytest.raises(ValueError):
            validate_amount(amount)  # type: ignore[arg-type]


class TestCalculatePayout:
    def test_turtle_multiplier(self) -> None:
        assert calculate_payout(100, 5) == 500

    def test_floors_fractional_payout(self) -> None:
        assert calculate_payout(3, 2.5) == 7

    def test_non_positive_inputs_pay_nothing(self) -> None:
        assert calculate_payout(0, 45) == 0
        assert calculate_payout(100, 0) == 0


def test_coins_to_display() -> None:
    assert coins_to_display(12500) == "12,500 coins"
    assert coins_to_display(0) == "0 coins"


def test_seconds_until_floors_at_zero() -> None:
    now = utc_now()
    assert seconds_until(now, now) == 0
    assert seconds_until(now + timedelta(seconds=12.7), now) == 12
    assert seconds_until(now - timedelta(seconds=5), now) == 0
