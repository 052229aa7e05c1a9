"""In-memory fakes conforming to the ar_game / ar_account repository Protocols.

The fakes ignore the `db` argument; a MagicMock session with AsyncMock
commit/rollback records transaction boundaries instead.
"""

import asyncio
import dataclasses
import itertools
import random
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.ar_account.domain.models import Account, LedgerEntry
from src.ar_common.enums import RoundStatus
from src.ar_common.errors import AccountNotFoundError, InsufficientBalanceError
from src.ar_game.application.scheduler import RoundScheduler
from src.ar_game.application.service import GameApplicationService
from src.ar_game.application.settlement import SettlementEngine
from src.ar_game.application.wager_service import WagerLedger
from src.ar_game.domain.drawer import OutcomeDrawer
from src.ar_game.domain.models import Round, SettlementRecord, Wager

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FixedRandom(random.Random):
    """random() always returns `value`."""

    def __init__(self, value: float) -> None:
        super().__init__()
        self.value = value

    def random(self) -> float:
        return self.value


class FakeRoundRepository:
    def __init__(self) -> None:
        self.rounds: dict[int, Round] = {}
        self._ids = itertools.count(1)

    def add(self, round_: Round) -> Round:
        self.rounds[round_.id] = round_
        return dataclasses.replace(round_)

    async def create_round(self, db, opened_at, closes_at):
        if any(r.status == RoundStatus.OPEN for r in self.rounds.values()):
            return None
        round_ = Round(next(self._ids), RoundStatus.OPEN.value, opened_at, closes_at)
        return self.add(round_)

    async def get_round(self, db, round_id):
        await asyncio.sleep(0)  # let concurrent callers interleave
        round_ = self.rounds.get(round_id)
        return dataclasses.replace(round_) if round_ else None

    async def get_round_for_wager(self, db, round_id):
        return await self.get_round(db, round_id)

    async def get_active_round(self, db):
        open_rounds = [r for r in self.rounds.values() if r.status == RoundStatus.OPEN]
        if not open_rounds:
            return None
        return dataclasses.replace(max(open_rounds, key=lambda r: (r.opened_at, r.id)))

    async def close_round(self, db, round_id, outcome_id, settled_at):
        round_ = self.rounds.get(round_id)
        if round_ is None or round_.status != RoundStatus.OPEN:
            return None
        round_.status = RoundStatus.CLOSED.value
        round_.outcome_id = outcome_id
        round_.settled_at = settled_at
        return dataclasses.replace(round_)

    async def list_due_rounds(self, db, closes_before):
        return [
            dataclasses.replace(r)
            for r in self.rounds.values()
            if r.status == RoundStatus.OPEN and r.closes_at <= closes_before
        ]

    async def list_rounds_pending_reconciliation(self, db, settled_before, limit):
        # Wired to the wager/settlement fakes by the `world` fixture
        return [
            r.id
            for r in self.rounds.values()
            if r.status == RoundStatus.CLOSED
            and r.settled_at is not None
            and r.settled_at <= settled_before
            and self.has_unsettled(r.id)
        ][:limit]

    def has_unsettled(self, round_id: int) -> bool:
        return False

    async def list_recent_rounds(self, db, limit, offset):
        ordered = sorted(self.rounds.values(), key=lambda r: (r.opened_at, r.id), reverse=True)
        return [dataclasses.replace(r) for r in ordered[offset:offset + limit]]

    async def get_last_closed_round(self, db):
        closed = [r for r in self.rounds.values() if r.status == RoundStatus.CLOSED]
        if not closed:
            return None
        return dataclasses.replace(max(closed, key=lambda r: (r.settled_at, r.id)))


class FakeSettlementRepository:
    def __init__(self) -> None:
        self.records: dict[int, SettlementRecord] = {}
        self.fail_for: set[int] = set()   # wager ids whose insert raises
        self._ids = itertools.count(1)

    async def record(self, db, wager, outcome_id, payout):
        await asyncio.sleep(0)
        if wager.id in self.fail_for:
            raise RuntimeError(f"store unavailable for wager {wager.id}")
        if wager.id in self.records:
            return None
        record = SettlementRecord(
            next(self._ids), wager.id, wager.round_id, wager.user_id, outcome_id, payout
        )
        self.records[wager.id] = record
        return record

    async def list_for_user(self, db, user_id, round_ids):
        return [
            r for r in self.records.values()
            if r.user_id == user_id and r.round_id in round_ids
        ]


class FakeWagerRepository:
    def __init__(self, settlements: FakeSettlementRepository) -> None:
        self.wagers: dict[int, Wager] = {}
        self._settlements = settlements
        self._ids = itertools.count(1)

    async def insert_wagers(self, db, round_id, user_id, stakes):
        inserted = []
        for outcome_id, amount in stakes:
            wager = Wager(next(self._ids), round_id, user_id, outcome_id, amount)
            self.wagers[wager.id] = wager
            inserted.append(wager)
        return inserted

    async def delete_user_wagers(self, db, round_id, user_id):
        doomed = [
            w.id for w in self.wagers.values()
            if w.round_id == round_id and w.user_id == user_id
        ]
        for wager_id in doomed:
            del self.wagers[wager_id]
        return len(doomed)

    async def sum_user_wagers(self, db, round_id, user_id):
        return sum(
            w.amount for w in self.wagers.values()
            if w.round_id == round_id and w.user_id == user_id
        )

    async def list_for_round(self, db, round_id):
        return [w for w in self.wagers.values() if w.round_id == round_id]

    async def list_unsettled_for_round(self, db, round_id):
        return [
            w for w in self.wagers.values()
            if w.round_id == round_id and w.id not in self._settlements.records
        ]

    async def list_for_user(self, db, user_id, round_ids):
        return [
            w for w in self.wagers.values()
            if w.user_id == user_id and w.round_id in round_ids
        ]

    async def totals_by_outcome(self, db, round_id):
        totals: dict[str, int] = {}
        for w in self.wagers.values():
            if w.round_id == round_id:
                totals[w.outcome_id] = totals.get(w.outcome_id, 0) + w.amount
        return totals


class FakeAccountRepository:
    def __init__(self) -> None:
        self.balances: dict[str, int] = {}
        self.ledger: list[LedgerEntry] = []
        self.fail_credit_for: set[str] = set()   # user ids whose credit raises

    def _account(self, user_id: str) -> Account:
        return Account(
            id=f"acc-{user_id}",
            user_id=user_id,
            balance=self.balances[user_id],
            version=0,
            created_at=T0,
            updated_at=T0,
        )

    async def open_account(self, db, user_id, starting_coins):
        self.balances[user_id] = starting_coins
        return self._account(user_id)

    async def get_account_by_user_id(self, db, user_id):
        if user_id not in self.balances:
            return None
        return self._account(user_id)

    async def adjust_balance(self, db, user_id, delta, entry_type, ref_type, ref_id, description):
        if user_id not in self.balances:
            raise AccountNotFoundError(user_id)
        if delta > 0 and user_id in self.fail_credit_for:
            raise RuntimeError(f"credit failed for {user_id}")
        if self.balances[user_id] + delta < 0:
            raise InsufficientBalanceError(-delta, self.balances[user_id])
        self.balances[user_id] += delta
        entry = LedgerEntry(
            id=len(self.ledger) + 1,
            user_id=user_id,
            entry_type=entry_type,
            amount=delta,
            balance_after=self.balances[user_id],
            reference_type=ref_type,
            reference_id=ref_id,
            description=description,
        )
        self.ledger.append(entry)
        return self._account(user_id), entry

    async def list_ledger_entries(self, db, user_id, cursor_id, limit, entry_type):
        return [e for e in self.ledger if e.user_id == user_id][:limit]

    async def list_top_balances(self, db, limit):
        return []

    async def get_rank(self, db, user_id):
        return None


@dataclasses.dataclass
class GameWorld:
    clock: FakeClock
    rounds: FakeRoundRepository
    wagers: FakeWagerRepository
    settlements: FakeSettlementRepository
    accounts: FakeAccountRepository
    publisher: AsyncMock
    db: MagicMock

    def drawer(self, sample: float) -> OutcomeDrawer:
        return OutcomeDrawer(rng=FixedRandom(sample))

    def engine(self, sample: float = 0.0) -> SettlementEngine:
        return SettlementEngine(
            round_repo=self.rounds,
            wager_repo=self.wagers,
            settlement_repo=self.settlements,
            account_repo=self.accounts,
            drawer=self.drawer(sample),
            publisher=self.publisher,
            clock=self.clock,
        )

    def ledger(self) -> WagerLedger:
        return WagerLedger(
            round_repo=self.rounds,
            wager_repo=self.wagers,
            account_repo=self.accounts,
            clock=self.clock,
            single_grace=timedelta(seconds=1),
            batch_grace=timedelta(seconds=3),
        )

    def scheduler(self, sample: float = 0.0) -> RoundScheduler:
        return RoundScheduler(
            round_repo=self.rounds,
            engine=self.engine(sample),
            publisher=self.publisher,
            clock=self.clock,
            round_duration=timedelta(seconds=30),
            settlement_delay=timedelta(seconds=3),
            reconcile_lookback=20,
        )

    def service(self, sample: float = 0.0) -> GameApplicationService:
        return GameApplicationService(
            round_repo=self.rounds,
            wager_repo=self.wagers,
            settlement_repo=self.settlements,
            scheduler=self.scheduler(sample),
            ledger=self.ledger(),
            drawer=self.drawer(sample),
            clock=self.clock,
        )

    async def open_round(self, duration: int = 30) -> Round:
        round_ = await self.rounds.create_round(
            self.db, self.clock(), self.clock() + timedelta(seconds=duration)
        )
        assert round_ is not None
        return round_


def _make_db() -> MagicMock:
    db = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    return db


@pytest.fixture
def world() -> GameWorld:
    settlements = FakeSettlementRepository()
    wagers = FakeWagerRepository(settlements)
    rounds = FakeRoundRepository()
    rounds.has_unsettled = lambda round_id: any(  # type: ignore[method-assign]
        w.round_id == round_id and w.id not in settlements.records
        for w in wagers.wagers.values()
    )
    publisher = AsyncMock()
    publisher.round_started.return_value = True
    publisher.round_ended.return_value = True
    return GameWorld(
        clock=FakeClock(),
        rounds=rounds,
        wagers=wagers,
        settlements=settlements,
        accounts=FakeAccountRepository(),
        publisher=publisher,
        db=_make_db(),
    )


@pytest.fixture
def fixed_rng() -> type[FixedRandom]:
    return FixedRandom
