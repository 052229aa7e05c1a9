"""Unit tests for SettlementEngine — payouts, idempotency, partial failure, reconcile."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from src.ar_common.enums import LedgerEntryType, RoundStatus
from src.ar_common.errors import PersistenceError, RoundNotDueError, RoundNotFoundError

TURTLE = 0.0     # sample landing on turtle (x5)
LION = 0.99      # sample landing on lion (x45)
FESTIVAL = 0.9992
ROUND_SECONDS = 30


async def _wager(world, round_id: int, user_id: str, outcome_id: str, amount: int) -> None:
    world.accounts.balances.setdefault(user_id, 10000)
    await world.ledger().place_wager(world.db, round_id, user_id, outcome_id, amount)


class TestSettleRound:
    async def test_winner_paid_multiplier(self, world) -> None:
        round_ = await world.open_round()
        await _wager(world, round_.id, "u1", "turtle", 100)

        world.clock.advance(ROUND_SECONDS)
        result = await world.engine(TURTLE).settle_round(world.db, round_.id)

        assert result.settled_now is True
        assert result.outcome.id == "turtle"
        assert result.records_written == 1
        assert result.total_payout == 500
        assert world.accounts.balances["u1"] == 10000 - 100 + 500
        assert world.settlements.records[1].payout == 500
        payout_entry = world.accounts.ledger[-1]
        assert payout_entry.entry_type == LedgerEntryType.SETTLEMENT_PAYOUT
        assert payout_entry.amount == 500

    async def test_loser_recorded_with_zero_payout(self, world) -> None:
        round_ = await world.open_round()
        await _wager(world, round_.id, "u1", "lion", 100)

        world.clock.advance(ROUND_SECONDS)
        result = await world.engine(TURTLE).settle_round(world.db, round_.id)

        assert result.total_payout == 0
        assert world.settlements.records[1].payout == 0
        assert world.accounts.balances["u1"] == 9900
        assert world.accounts.ledger[-1].entry_type == LedgerEntryType.WAGER_PLACED

    async def test_festival_outcome_everyone_loses(self, world) -> None:
        round_ = await world.open_round()
        for outcome_id in ("turtle", "hedgehog", "raccoon", "elephant"):
            await _wager(world, round_.id, "u1", outcome_id, 10)

        world.clock.advance(ROUND_SECONDS)
        result = await world.engine(FESTIVAL).settle_round(world.db, round_.id)

        assert result.outcome.id == "vegetarian_festival"
        assert result.records_written == 4
        assert result.total_payout == 0

    async def test_closes_round_and_publishes_end(self, world) -> None:
        round_ = await world.open_round()
        world.clock.advance(33)

        await world.engine(LION).settle_round(world.db, round_.id)

        stored = world.rounds.rounds[round_.id]
        assert stored.status == RoundStatus.CLOSED
        assert stored.outcome_id == "lion"
        assert stored.settled_at == world.clock()
        world.publisher.round_ended.assert_awaited_once()

    async def test_second_call_returns_recorded_outcome(self, world) -> None:
        round_ = await world.open_round()
        await _wager(world, round_.id, "u1", "turtle", 100)
        world.clock.advance(ROUND_SECONDS)
        await world.engine(TURTLE).settle_round(world.db, round_.id)

        again = await world.engine(LION).settle_round(world.db, round_.id)

        assert again.settled_now is False
        assert again.outcome.id == "turtle"
        assert world.accounts.balances["u1"] == 10400
        assert len(world.settlements.records) == 1
        world.publisher.round_ended.assert_awaited_once()

    async def test_concurrent_settlers_pay_once(self, world) -> None:
        round_ = await world.open_round()
        await _wager(world, round_.id, "u1", "turtle", 100)
        await _wager(world, round_.id, "u2", "lion", 40)

        world.clock.advance(ROUND_SECONDS)
        results = await asyncio.gather(
            world.engine(TURTLE).settle_round(world.db, round_.id),
            world.engine(LION).settle_round(world.db, round_.id),
        )

        winners = [r for r in results if r.settled_now]
        assert len(winners) == 1
        assert results[0].outcome.id == results[1].outcome.id
        assert len(world.settlements.records) == 2
        if winners[0].outcome.id == "turtle":
            assert world.accounts.balances == {"u1": 10400, "u2": 9960}
        else:
            assert world.accounts.balances == {"u1": 9900, "u2": 9960 + 1800}

    async def test_unknown_round(self, world) -> None:
        with pytest.raises(RoundNotFoundError):
            await world.engine().settle_round(world.db, 42)

    async def test_empty_round_settles_cleanly(self, world) -> None:
        round_ = await world.open_round()
        world.clock.advance(ROUND_SECONDS)
        result = await world.engine().settle_round(world.db, round_.id)
        assert result.records_written == 0
        assert result.failures == []

    async def test_rejected_while_betting_is_open(self, world) -> None:
        round_ = await world.open_round()
        await _wager(world, round_.id, "u1", "turtle", 100)
        world.clock.advance(5)

        with pytest.raises(RoundNotDueError):
            await world.engine(TURTLE).settle_round(world.db, round_.id)

        assert world.rounds.rounds[round_.id].status == RoundStatus.OPEN
        assert world.settlements.records == {}
        world.publisher.round_ended.assert_not_awaited()
        await _wager(world, round_.id, "bob", "cat", 10)

    async def test_settles_exactly_at_close(self, world) -> None:
        round_ = await world.open_round()
        world.clock.advance(ROUND_SECONDS)

        result = await world.engine(TURTLE).settle_round(world.db, round_.id)

        assert result.settled_now is True

    async def test_store_failure_on_load_becomes_persistence_error(self, world) -> None:
        round_ = await world.open_round()
        world.rounds.get_round = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("down"))
        )

        with pytest.raises(PersistenceError):
            await world.engine().settle_round(world.db, round_.id)
        world.db.rollback.assert_awaited()


class TestPartialFailure:
    async def test_failing_wager_does_not_abort_the_rest(self, world) -> None:
        round_ = await world.open_round()
        await _wager(world, round_.id, "u1", "turtle", 100)   # wager 1
        await _wager(world, round_.id, "u2", "turtle", 200)   # wager 2
        await _wager(world, round_.id, "u3", "turtle", 300)   # wager 3
        world.settlements.fail_for.add(2)

        world.clock.advance(ROUND_SECONDS)
        result = await world.engine(TURTLE).settle_round(world.db, round_.id)

        assert result.records_written == 2
        assert [f.wager_id for f in result.failures] == [2]
        assert result.failures[0].user_id == "u2"
        assert world.accounts.balances["u1"] == 10400
        assert world.accounts.balances["u2"] == 9800
        assert world.accounts.balances["u3"] == 11200
        assert world.rounds.rounds[round_.id].status == RoundStatus.CLOSED

    async def test_failed_credit_is_collected_and_rolled_back(self, world) -> None:
        round_ = await world.open_round()
        await _wager(world, round_.id, "u1", "turtle", 100)
        world.accounts.fail_credit_for.add("u1")

        world.clock.advance(ROUND_SECONDS)
        result = await world.engine(TURTLE).settle_round(world.db, round_.id)

        assert len(result.failures) == 1
        world.db.rollback.assert_awaited()


class TestReconcile:
    async def test_reconcile_pays_stragglers_once(self, world) -> None:
        round_ = await world.open_round()
        await _wager(world, round_.id, "u1", "turtle", 100)
        await _wager(world, round_.id, "u2", "turtle", 100)
        world.settlements.fail_for.add(2)
        world.clock.advance(ROUND_SECONDS)
        await world.engine(TURTLE).settle_round(world.db, round_.id)
        assert world.accounts.balances["u2"] == 9900

        world.settlements.fail_for.clear()
        result = await world.engine(LION).reconcile_round(world.db, round_.id)

        assert result is not None
        assert result.outcome.id == "turtle"
        assert result.settled_now is False
        assert result.records_written == 1
        assert world.accounts.balances == {"u1": 10400, "u2": 10400}

        again = await world.engine().reconcile_round(world.db, round_.id)
        assert again is not None and again.records_written == 0
        assert world.accounts.balances == {"u1": 10400, "u2": 10400}

    async def test_reconcile_open_round_is_noop(self, world) -> None:
        round_ = await world.open_round()
        assert await world.engine().reconcile_round(world.db, round_.id) is None
