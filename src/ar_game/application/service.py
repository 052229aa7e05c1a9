"""GameApplicationService — composition layer behind the game routes.

Reads never fail for lack of a round: they go through
``RoundScheduler.ensure_active_round`` which opens one when needed.
"""

from collections import defaultdict
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_common.datetime_utils import seconds_until, utc_now
from src.ar_game.application.scheduler import RoundScheduler
from src.ar_game.application.schemas import (
    GameStateResponse,
    HeartbeatResponse,
    HistoryResponse,
    HistoryRoundItem,
    OutcomeItem,
    OutcomeListResponse,
    PlaceWagerRequest,
    ReplaceWagersRequest,
    RoundItem,
    RoundResponse,
    SettlementResponse,
    WagerItem,
    WagerPlacementResponse,
)
from src.ar_game.application.settlement import SettlementEngine
from src.ar_game.application.wager_service import WagerLedger
from src.ar_game.domain.drawer import OutcomeDrawer
from src.ar_game.domain.repository import (
    RoundRepositoryProtocol,
    SettlementRepositoryProtocol,
    WagerRepositoryProtocol,
)
from src.ar_game.infrastructure.persistence import (
    RoundRepository,
    SettlementRepository,
    WagerRepository,
)


class GameApplicationService:
    def __init__(
        self,
        round_repo: RoundRepositoryProtocol | None = None,
        wager_repo: WagerRepositoryProtocol | None = None,
        settlement_repo: SettlementRepositoryProtocol | None = None,
        scheduler: RoundScheduler | None = None,
        ledger: WagerLedger | None = None,
        drawer: OutcomeDrawer | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._rounds: RoundRepositoryProtocol = round_repo or RoundRepository()
        self._wagers: WagerRepositoryProtocol = wager_repo or WagerRepository()
        self._settlements: SettlementRepositoryProtocol = (
            settlement_repo or SettlementRepository()
        )
        self._drawer = drawer or OutcomeDrawer()
        self._scheduler = scheduler or RoundScheduler(
            round_repo=self._rounds,
            engine=SettlementEngine(
                round_repo=self._rounds,
                wager_repo=self._wagers,
                settlement_repo=self._settlements,
                drawer=self._drawer,
                clock=clock,
            ),
            clock=clock,
        )
        self._ledger = ledger or WagerLedger(
            round_repo=self._rounds, wager_repo=self._wagers, clock=clock
        )
        self._clock = clock

    @property
    def scheduler(self) -> RoundScheduler:
        return self._scheduler

    def list_outcomes(self) -> OutcomeListResponse:
        return OutcomeListResponse(
            items=[OutcomeItem.from_outcome(o) for o in self._drawer.table],
            total_weight=self._drawer.total_weight,
        )

    async def get_state(self, db: AsyncSession, user_id: str | None) -> GameStateResponse:
        active = await self._scheduler.ensure_active_round(db)
        now = self._clock()
        totals = await self._wagers.totals_by_outcome(db, active.id)
        my_wagers: dict[str, int] | None = None
        if user_id is not None:
            my_wagers = {}
            for wager in await self._wagers.list_for_user(db, user_id, [active.id]):
                my_wagers[wager.outcome_id] = my_wagers.get(wager.outcome_id, 0) + wager.amount
        last = await self._rounds.get_last_closed_round(db)
        return GameStateResponse(
            round=RoundItem.from_domain(active),
            game_status="betting" if now < active.closes_at else "closing",
            countdown_seconds=seconds_until(active.closes_at, now),
            wager_totals=totals,
            my_wagers=my_wagers,
            last_round=RoundItem.from_domain(last) if last else None,
        )

    async def _resolve_round_id(self, db: AsyncSession, round_id: int | None) -> int:
        if round_id is not None:
            return round_id
        return (await self._scheduler.ensure_active_round(db)).id

    async def place_wager(
        self, db: AsyncSession, user_id: str, req: PlaceWagerRequest
    ) -> WagerPlacementResponse:
        round_id = await self._resolve_round_id(db, req.round_id)
        placement = await self._ledger.place_wager(
            db, round_id, user_id, req.outcome_id, req.amount
        )
        return WagerPlacementResponse.from_domain(placement)

    async def replace_wagers(
        self, db: AsyncSession, user_id: str, req: ReplaceWagersRequest
    ) -> WagerPlacementResponse:
        round_id = await self._resolve_round_id(db, req.round_id)
        placement = await self._ledger.replace_wagers(db, round_id, user_id, req.wagers)
        return WagerPlacementResponse.from_domain(placement)

    async def get_history(
        self, db: AsyncSession, user_id: str | None, limit: int, page: int
    ) -> HistoryResponse:
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        rounds = await self._rounds.list_recent_rounds(db, limit + 1, (page - 1) * limit)
        has_more = len(rounds) > limit
        rounds = rounds[:limit]

        wagers_by_round: dict[int, list[WagerItem]] = defaultdict(list)
        won_by_round: dict[int, int] = defaultdict(int)
        if user_id is not None and rounds:
            round_ids = [r.id for r in rounds]
            for wager in await self._wagers.list_for_user(db, user_id, round_ids):
                wagers_by_round[wager.round_id].append(WagerItem.from_domain(wager))
            for record in await self._settlements.list_for_user(db, user_id, round_ids):
                won_by_round[record.round_id] += record.payout

        items = [
            HistoryRoundItem(
                round=RoundItem.from_domain(r),
                my_wagers=wagers_by_round[r.id],
                total_staked=sum(w.amount for w in wagers_by_round[r.id]),
                total_won=won_by_round[r.id],
            )
            for r in rounds
        ]
        return HistoryResponse(items=items, page=page, limit=limit, has_more=has_more)

    async def heartbeat(self, db: AsyncSession) -> HeartbeatResponse:
        report = await self._scheduler.tick(db)
        countdown = seconds_until(report.active_round.closes_at, self._clock())
        return HeartbeatResponse.from_report(report, countdown)

    async def open_round(self, db: AsyncSession) -> RoundResponse:
        round_, created = await self._scheduler.acquire_active_round(db)
        return RoundResponse(round=RoundItem.from_domain(round_), created=created)

    async def settle_round(self, db: AsyncSession, round_id: int) -> SettlementResponse:
        result = await self._scheduler.engine.settle_round(db, round_id)
        return SettlementResponse.from_domain(result)
