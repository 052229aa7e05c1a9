"""Domain models for ar_game — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from src.ar_common.enums import RoundStatus
from src.ar_common.errors import PartialSettlementFailure
from src.ar_game.domain.outcomes import Outcome


@dataclass
class Round:
    id: int
    status: str                      # RoundStatus value
    opened_at: datetime
    closes_at: datetime              # fixed at creation, never extended
    outcome_id: str | None = None
    settled_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status == RoundStatus.OPEN

    def accepts_wagers(self, now: datetime, grace: timedelta) -> bool:
        return self.is_open and now <= self.closes_at + grace


@dataclass
class Wager:
    id: int
    round_id: int
    user_id: str
    outcome_id: str
    amount: int                      # coins, > 0
    created_at: datetime | None = None


@dataclass
class SettlementRecord:
    id: int
    wager_id: int                    # UNIQUE, settlement dedup key
    round_id: int
    user_id: str
    outcome_id: str                  # winning outcome of the round
    payout: int                      # coins, >= 0
    created_at: datetime | None = None


@dataclass
class WagerPlacement:
    """Result of a single placement or a batch replacement."""

    round_id: int
    user_id: str
    wagers: list[Wager]
    total_amount: int
    previous_total: int
    net_amount: int                  # coins debited (negative = refunded)
    balance: int


@dataclass
class SettlementResult:
    round_id: int
    outcome: Outcome
    settled_now: bool                # False when another caller settled it
    records_written: int = 0
    total_payout: int = 0
    failures: list[PartialSettlementFailure] = field(default_factory=list)


@dataclass
class CycleReport:
    active_round: Round
    opened_round: bool
    settled: list[SettlementResult] = field(default_factory=list)
    reconciled: list[SettlementResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
