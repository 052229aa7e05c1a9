"""SettlementEngine — draw, close and pay out a round exactly once.

The close UPDATE is the serialization point: only the caller whose UPDATE
matches the OPEN row draws the final outcome and settles. Every other
concurrent caller reads back the recorded outcome and reports it.

Each wager settles in its own short transaction (settlement record, then
payout credit). A failing wager is rolled back, logged and collected on the
result; the rest of the round still settles, and reconcile_round pays the
stragglers later from the recorded outcome.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_account.domain.repository import AccountRepositoryProtocol
from src.ar_account.infrastructure.persistence import AccountRepository
from src.ar_common.coins import calculate_payout
from src.ar_common.datetime_utils import utc_now
from src.ar_common.enums import LedgerEntryType
from src.ar_common.errors import (
    InternalError,
    PartialSettlementFailure,
    PersistenceError,
    RoundNotDueError,
    RoundNotFoundError,
)
from src.ar_game.domain.drawer import OutcomeDrawer
from src.ar_game.domain.models import Round, SettlementResult, Wager
from src.ar_game.domain.outcomes import OUTCOMES_BY_ID, Outcome
from src.ar_game.domain.repository import (
    RoundEventPublisherProtocol,
    RoundRepositoryProtocol,
    SettlementRepositoryProtocol,
    WagerRepositoryProtocol,
)
from src.ar_game.infrastructure.notifier import RoundEventPublisher
from src.ar_game.infrastructure.persistence import (
    RoundRepository,
    SettlementRepository,
    WagerRepository,
)

logger = logging.getLogger(__name__)


def _recorded_outcome(round_: Round) -> Outcome:
    outcome = OUTCOMES_BY_ID.get(round_.outcome_id or "")
    if outcome is None:
        raise InternalError(
            f"Round {round_.id} is closed with unknown outcome {round_.outcome_id!r}"
        )
    return outcome


class SettlementEngine:
    def __init__(
        self,
        round_repo: RoundRepositoryProtocol | None = None,
        wager_repo: WagerRepositoryProtocol | None = None,
        settlement_repo: SettlementRepositoryProtocol | None = None,
        account_repo: AccountRepositoryProtocol | None = None,
        drawer: OutcomeDrawer | None = None,
        publisher: RoundEventPublisherProtocol | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._rounds: RoundRepositoryProtocol = round_repo or RoundRepository()
        self._wagers: WagerRepositoryProtocol = wager_repo or WagerRepository()
        self._settlements: SettlementRepositoryProtocol = (
            settlement_repo or SettlementRepository()
        )
        self._accounts: AccountRepositoryProtocol = account_repo or AccountRepository()
        self._drawer = drawer or OutcomeDrawer()
        self._publisher: RoundEventPublisherProtocol = publisher or RoundEventPublisher()
        self._clock = clock

    async def _load_round(self, db: AsyncSession, round_id: int) -> Round:
        try:
            round_ = await self._rounds.get_round(db, round_id)
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceError(f"Loading round {round_id} failed: {exc}") from exc
        if round_ is None:
            raise RoundNotFoundError(round_id)
        return round_

    async def settle_round(self, db: AsyncSession, round_id: int) -> SettlementResult:
        """Draw and close an OPEN round whose betting window has ended, then pay out.

        A round that is already closed reports its recorded outcome. Raises
        RoundNotDueError while `closes_at` is still in the future.
        """
        round_ = await self._load_round(db, round_id)
        if not round_.is_open:
            return SettlementResult(round_id, _recorded_outcome(round_), settled_now=False)
        if self._clock() < round_.closes_at:
            raise RoundNotDueError(round_id, round_.closes_at)

        outcome = self._drawer.draw()
        try:
            closed = await self._rounds.close_round(db, round_id, outcome.id, self._clock())
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceError(f"Closing round {round_id} failed: {exc}") from exc

        if closed is None:
            # Lost the close race; report what the winner recorded
            current = await self._load_round(db, round_id)
            logger.info("Round %s already settled by a concurrent caller", round_id)
            return SettlementResult(round_id, _recorded_outcome(current), settled_now=False)

        logger.info("Round %s closed with outcome %s", round_id, outcome.id)
        try:
            wagers = await self._wagers.list_for_round(db, round_id)
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceError(
                f"Listing wagers of closed round {round_id} failed: {exc}"
            ) from exc
        result = await self._settle_wagers(db, closed, outcome, wagers, settled_now=True)
        await self._publisher.round_ended(closed, outcome)
        return result

    async def reconcile_round(
        self, db: AsyncSession, round_id: int
    ) -> SettlementResult | None:
        """Settle wagers of a CLOSED round that have no settlement record yet.

        Returns None for a round that is still OPEN.
        """
        round_ = await self._load_round(db, round_id)
        if round_.is_open:
            return None
        outcome = _recorded_outcome(round_)
        try:
            wagers = await self._wagers.list_unsettled_for_round(db, round_id)
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceError(
                f"Listing unsettled wagers of round {round_id} failed: {exc}"
            ) from exc
        if wagers:
            logger.info("Reconciling %d unsettled wagers of round %s", len(wagers), round_id)
        return await self._settle_wagers(db, round_, outcome, wagers, settled_now=False)

    async def _settle_wagers(
        self,
        db: AsyncSession,
        round_: Round,
        outcome: Outcome,
        wagers: list[Wager],
        settled_now: bool,
    ) -> SettlementResult:
        result = SettlementResult(round_.id, outcome, settled_now=settled_now)
        for wager in wagers:
            try:
                payout = await self._settle_wager(db, round_, wager, outcome)
                await db.commit()
            except Exception as exc:  # noqa: BLE001
                await db.rollback()
                failure = PartialSettlementFailure(round_.id, wager.id, wager.user_id, str(exc))
                logger.error("Settlement failure: %s", failure.message, exc_info=exc)
                result.failures.append(failure)
                continue
            if payout is not None:
                result.records_written += 1
                result.total_payout += payout

        logger.info(
            "Round %s settled: %d records, %d coins paid, %d failures",
            round_.id, result.records_written, result.total_payout, len(result.failures),
        )
        return result

    async def _settle_wager(
        self, db: AsyncSession, round_: Round, wager: Wager, outcome: Outcome
    ) -> int | None:
        """Record and pay one wager. None when it was already settled."""
        payout = 0
        if wager.outcome_id == outcome.id:
            payout = calculate_payout(wager.amount, outcome.payout_multiplier)
        record = await self._settlements.record(db, wager, outcome.id, payout)
        if record is None:
            return None
        if payout > 0:
            await self._accounts.adjust_balance(
                db, wager.user_id, payout, LedgerEntryType.SETTLEMENT_PAYOUT,
                "WAGER", str(wager.id), f"Round {round_.id} won on {outcome.id}",
            )
        return payout
