"""Integer coin arithmetic.

Balances, wager amounts and payouts are whole coins (int). Multipliers are
floats in the outcome table, so payouts are floored back to int here and
nowhere else.
"""

import math


def validate_amount(amount: int) -> None:
    """Validate that a wager amount is a positive whole number of coins."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Amount must be a positive integer, got {amount!r}")


def calculate_payout(amount: int, multiplier: float) -> int:
    """payout = floor(amount * multiplier), never negative."""
    if amount <= 0 or multiplier <= 0:
        return 0
    return math.floor(amount * multiplier)


def coins_to_display(coins: int) -> str:
    """12500 -> '12,500 coins', -300 -> '-300 coins'."""
    return f"{coins:,} coins"
