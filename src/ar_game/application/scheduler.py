"""RoundScheduler — keeps exactly one round open and settles due rounds.

A cycle (``tick``) settles every OPEN round whose close time plus the
settlement delay has passed, reconciles recently closed rounds that still
have unsettled wagers, and makes sure an active round exists afterwards.

The same cycle runs in two deployment modes: ``run_forever`` as a
background task in a long-lived process, or once per request through the
heartbeat endpoint for a serverless deployment driven by an external cron.
Both are safe to run concurrently because round creation and round close
are guarded in the store.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.ar_common.datetime_utils import utc_now
from src.ar_common.errors import AppError, PersistenceError
from src.ar_game.application.settlement import SettlementEngine
from src.ar_game.domain.models import CycleReport, Round
from src.ar_game.domain.repository import RoundEventPublisherProtocol, RoundRepositoryProtocol
from src.ar_game.infrastructure.notifier import RoundEventPublisher
from src.ar_game.infrastructure.persistence import RoundRepository

logger = logging.getLogger(__name__)


class RoundScheduler:
    def __init__(
        self,
        round_repo: RoundRepositoryProtocol | None = None,
        engine: SettlementEngine | None = None,
        publisher: RoundEventPublisherProtocol | None = None,
        clock: Callable[[], datetime] = utc_now,
        round_duration: timedelta | None = None,
        settlement_delay: timedelta | None = None,
        reconcile_lookback: int | None = None,
    ) -> None:
        self._rounds: RoundRepositoryProtocol = round_repo or RoundRepository()
        self._publisher: RoundEventPublisherProtocol = publisher or RoundEventPublisher()
        self._engine = engine or SettlementEngine(
            round_repo=self._rounds, publisher=self._publisher, clock=clock
        )
        self._clock = clock
        self._round_duration = round_duration or timedelta(
            seconds=settings.ROUND_DURATION_SECONDS
        )
        self._settlement_delay = (
            settlement_delay
            if settlement_delay is not None
            else timedelta(seconds=settings.SETTLEMENT_DELAY_SECONDS)
        )
        self._reconcile_lookback = (
            reconcile_lookback
            if reconcile_lookback is not None
            else settings.RECONCILE_LOOKBACK
        )

    @property
    def engine(self) -> SettlementEngine:
        return self._engine

    def is_due(self, round_: Round, now: datetime) -> bool:
        return round_.is_open and now >= round_.closes_at + self._settlement_delay

    async def open_round(self, db: AsyncSession) -> tuple[Round, bool]:
        """Create a round; (round, True) if this caller created it.

        A concurrent caller that loses the single-open-round race gets the
        winner's round back with False.
        """
        now = self._clock()
        try:
            created = await self._rounds.create_round(db, now, now + self._round_duration)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceError(f"Opening a round failed: {exc}") from exc

        if created is None:
            active = await self._rounds.get_active_round(db)
            if active is None:
                raise PersistenceError("Round creation conflicted but no open round exists")
            return active, False

        logger.info("Opened round %s (closes at %s)", created.id, created.closes_at.isoformat())
        await self._publisher.round_started(created)
        return created, True

    async def acquire_active_round(self, db: AsyncSession) -> tuple[Round, bool]:
        """Like ensure_active_round, also reporting whether this call opened it."""
        active = await self._rounds.get_active_round(db)
        if active is not None:
            if not self.is_due(active, self._clock()):
                return active, False
            await self._engine.settle_round(db, active.id)
        return await self.open_round(db)

    async def ensure_active_round(self, db: AsyncSession) -> Round:
        """Return the active round, settling an expired one and opening a new one if needed."""
        active, _ = await self.acquire_active_round(db)
        return active

    @staticmethod
    def _cycle_error(step: str, exc: SQLAlchemyError) -> str:
        message = f"{step} failed: {exc}"
        logger.warning("%s", message)
        return message

    async def tick(self, db: AsyncSession) -> CycleReport:
        now = self._clock()
        settled = []
        reconciled = []
        errors: list[str] = []

        try:
            due = await self._rounds.list_due_rounds(db, now - self._settlement_delay)
        except SQLAlchemyError as exc:
            await db.rollback()
            due = []
            errors.append(self._cycle_error("Listing due rounds", exc))
        for round_ in due:
            try:
                settled.append(await self._engine.settle_round(db, round_.id))
            except AppError as exc:
                logger.warning("Settling round %s failed: %s", round_.id, exc.message)
                errors.append(exc.message)

        try:
            pending = await self._rounds.list_rounds_pending_reconciliation(
                db, now - self._settlement_delay, self._reconcile_lookback
            )
        except SQLAlchemyError as exc:
            await db.rollback()
            pending = []
            errors.append(self._cycle_error("Listing rounds to reconcile", exc))
        for round_id in pending:
            try:
                result = await self._engine.reconcile_round(db, round_id)
            except AppError as exc:
                logger.warning("Reconciling round %s failed: %s", round_id, exc.message)
                errors.append(exc.message)
                continue
            if result is not None:
                reconciled.append(result)

        active, opened = await self.acquire_active_round(db)
        return CycleReport(
            active_round=active,
            opened_round=opened,
            settled=settled,
            reconciled=reconciled,
            errors=errors,
        )

    process_cycle = tick

    async def run_forever(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        stop: asyncio.Event,
        interval: float | None = None,
    ) -> None:
        """Run a cycle every `interval` seconds until `stop` is set."""
        interval = interval if interval is not None else settings.SCHEDULER_TICK_SECONDS
        logger.info("Round scheduler started (every %ss)", interval)
        while not stop.is_set():
            try:
                async with session_factory() as db:
                    report = await self.tick(db)
                if report.settled or report.reconciled or report.errors:
                    logger.info(
                        "Cycle: %d settled, %d reconciled, %d errors, active round %s",
                        len(report.settled), len(report.reconciled),
                        len(report.errors), report.active_round.id,
                    )
            except Exception:
                logger.exception("Round scheduler cycle failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Round scheduler stopped")
