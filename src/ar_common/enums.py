"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class RoundStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class OutcomeKind(str, Enum):
    REGULAR = "REGULAR"
    FESTIVAL = "FESTIVAL"


class LedgerEntryType(str, Enum):
    SIGNUP_BONUS = "SIGNUP_BONUS"
    # Wager placement (user side)
    WAGER_PLACED = "WAGER_PLACED"
    WAGER_REPLACED = "WAGER_REPLACED"
    # Settlement
    SETTLEMENT_PAYOUT = "SETTLEMENT_PAYOUT"


class RoundEventType(str, Enum):
    """Event names pushed on the realtime channel."""
    ROUND_START = "round_start"
    ROUND_END = "round_end"
