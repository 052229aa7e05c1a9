"""Pydantic request/response schemas for the ar_game API."""

from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, Field

from src.ar_game.domain.models import CycleReport, Round, SettlementResult, Wager, WagerPlacement
from src.ar_game.domain.outcomes import Outcome

# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class PlaceWagerRequest(BaseModel):
    round_id: int | None = Field(None, description="Defaults to the active round")
    outcome_id: str = Field(..., min_length=1, max_length=32)
    amount: int = Field(..., gt=0, description="Coins")


class ReplaceWagersRequest(BaseModel):
    round_id: int | None = Field(None, description="Defaults to the active round")
    wagers: dict[str, Annotated[int, Field(ge=0)]] = Field(
        ..., description="outcome_id -> coins; 0 entries are ignored"
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class OutcomeItem(BaseModel):
    id: str
    display_label: str
    weight: float
    payout_multiplier: float
    kind: str
    wagerable: bool

    @classmethod
    def from_outcome(cls, outcome: Outcome) -> "OutcomeItem":
        return cls(
            id=outcome.id,
            display_label=outcome.display_label,
            weight=outcome.weight,
            payout_multiplier=outcome.payout_multiplier,
            kind=outcome.kind.value,
            wagerable=outcome.is_wagerable,
        )


class OutcomeListResponse(BaseModel):
    items: list[OutcomeItem]
    total_weight: float


class RoundItem(BaseModel):
    id: int
    status: str
    opened_at: datetime
    closes_at: datetime
    outcome_id: str | None
    settled_at: datetime | None

    @classmethod
    def from_domain(cls, round_: Round) -> "RoundItem":
        return cls(
            id=round_.id,
            status=round_.status,
            opened_at=round_.opened_at,
            closes_at=round_.closes_at,
            outcome_id=round_.outcome_id,
            settled_at=round_.settled_at,
        )


class RoundResponse(BaseModel):
    round: RoundItem
    created: bool


class WagerItem(BaseModel):
    id: int
    round_id: int
    outcome_id: str
    amount: int

    @classmethod
    def from_domain(cls, wager: Wager) -> "WagerItem":
        return cls(
            id=wager.id,
            round_id=wager.round_id,
            outcome_id=wager.outcome_id,
            amount=wager.amount,
        )


class WagerPlacementResponse(BaseModel):
    round_id: int
    wagers: list[WagerItem]
    total_amount: int
    previous_total: int
    net_amount: int
    coins: int

    @classmethod
    def from_domain(cls, placement: WagerPlacement) -> "WagerPlacementResponse":
        return cls(
            round_id=placement.round_id,
            wagers=[WagerItem.from_domain(w) for w in placement.wagers],
            total_amount=placement.total_amount,
            previous_total=placement.previous_total,
            net_amount=placement.net_amount,
            coins=placement.balance,
        )


class GameStateResponse(BaseModel):
    round: RoundItem
    game_status: str                     # "betting" | "closing"
    countdown_seconds: int
    wager_totals: dict[str, int]
    my_wagers: dict[str, int] | None     # None for anonymous callers
    last_round: RoundItem | None


class SettlementResponse(BaseModel):
    round_id: int
    outcome: OutcomeItem
    settled_now: bool
    records_written: int
    total_payout: int
    failed_wager_ids: list[int]

    @classmethod
    def from_domain(cls, result: SettlementResult) -> "SettlementResponse":
        return cls(
            round_id=result.round_id,
            outcome=OutcomeItem.from_outcome(result.outcome),
            settled_now=result.settled_now,
            records_written=result.records_written,
            total_payout=result.total_payout,
            failed_wager_ids=[f.wager_id for f in result.failures],
        )


class HistoryRoundItem(BaseModel):
    round: RoundItem
    my_wagers: list[WagerItem]
    total_staked: int
    total_won: int


class HistoryResponse(BaseModel):
    items: list[HistoryRoundItem]
    page: int
    limit: int
    has_more: bool


class HeartbeatResponse(BaseModel):
    status: str                          # "active_round_running" | "round_opened"
    active_round: RoundItem
    countdown_seconds: int
    settled_rounds: list[SettlementResponse]
    reconciled_rounds: list[SettlementResponse]
    errors: list[str]

    @classmethod
    def from_report(cls, report: CycleReport, countdown: int) -> "HeartbeatResponse":
        return cls(
            status="round_opened" if report.opened_round else "active_round_running",
            active_round=RoundItem.from_domain(report.active_round),
            countdown_seconds=countdown,
            settled_rounds=[SettlementResponse.from_domain(r) for r in report.settled],
            reconciled_rounds=[SettlementResponse.from_domain(r) for r in report.reconciled],
            errors=report.errors,
        )
