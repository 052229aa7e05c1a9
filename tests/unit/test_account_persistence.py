"""Unit tests for AccountRepository SQL paths (mocked AsyncSession)."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.ar_account.infrastructure.persistence import AccountRepository
from src.ar_common.enums import LedgerEntryType
from src.ar_common.errors import AccountNotFoundError, InsufficientBalanceError

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _account_row(balance: int) -> MagicMock:
    row = MagicMock()
    row.id = 1
    row.user_id = "user-1"
    row.balance = balance
    row.version = 2
    row.created_at = NOW
    row.updated_at = NOW
    return row


def _ledger_row(amount: int, balance_after: int) -> MagicMock:
    row = MagicMock()
    row.id = 10
    row.user_id = "user-1"
    row.entry_type = "WAGER_PLACED"
    row.amount = amount
    row.balance_after = balance_after
    row.reference_type = "ROUND"
    row.reference_id = "7"
    row.description = "Wager on turtle"
    row.created_at = NOW
    return row


def _result(row: object) -> MagicMock:
    result = MagicMock()
    result.fetchone.return_value = row
    return result


class TestAdjustBalance:
    async def test_debit_writes_ledger_entry(self) -> None:
        db = AsyncMock()
        db.execute.side_effect = [_result(_account_row(900)), _result(_ledger_row(-100, 900))]

        account, entry = await AccountRepository().adjust_balance(
            db, "user-1", -100, LedgerEntryType.WAGER_PLACED, "ROUND", "7", "Wager on turtle"
        )

        assert account.balance == 900
        assert entry.amount == -100
        update_params = db.execute.call_args_list[0].args[1]
        assert update_params == {"user_id": "user-1", "delta": -100}
        ledger_params = db.execute.call_args_list[1].args[1]
        assert ledger_params["balance_after"] == 900
        assert ledger_params["entry_type"] == LedgerEntryType.WAGER_PLACED

    async def test_guard_miss_reports_insufficient_balance(self) -> None:
        db = AsyncMock()
        db.execute.side_effect = [_result(None), _result(_account_row(50))]

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await AccountRepository().adjust_balance(
                db, "user-1", -100, LedgerEntryType.WAGER_PLACED, "ROUND", "7", "x"
            )

        assert exc_info.value.available == 50
        assert exc_info.value.required == 100

    async def test_guard_miss_without_account(self) -> None:
        db = AsyncMock()
        db.execute.side_effect = [_result(None), _result(None)]

        with pytest.raises(AccountNotFoundError):
            await AccountRepository().adjust_balance(
                db, "ghost", 500, LedgerEntryType.SETTLEMENT_PAYOUT, "WAGER", "1", "x"
            )


class TestOpenAccount:
    async def test_starting_coins_recorded_as_signup_bonus(self) -> None:
        db = AsyncMock()
        db.execute.side_effect = [_result(_account_row(10000)), _result(_ledger_row(10000, 10000))]

        account = await AccountRepository().open_account(db, "user-1", 10000)

        assert account.balance == 10000
        ledger_params = db.execute.call_args_list[1].args[1]
        assert ledger_params["entry_type"] == LedgerEntryType.SIGNUP_BONUS
        assert ledger_params["amount"] == 10000

    async def test_zero_start_skips_ledger(self) -> None:
        db = AsyncMock()
        db.execute.side_effect = [_result(_account_row(0))]

        await AccountRepository().open_account(db, "user-1", 0)

        assert db.execute.await_count == 1
