"""Repository Protocol — dependency inversion for testability.

Unit tests inject a mock or an in-memory fake conforming to this Protocol.
Infrastructure layer provides the real implementation.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_account.domain.models import Account, LeaderboardEntry, LedgerEntry


class AccountRepositoryProtocol(Protocol):
    async def open_account(
        self, db: AsyncSession, user_id: str, starting_coins: int
    ) -> Account: ...

    async def get_account_by_user_id(
        self, db: AsyncSession, user_id: str
    ) -> Account | None: ...

    async def adjust_balance(
        self,
        db: AsyncSession,
        user_id: str,
        delta: int,
        entry_type: str,
        ref_type: str,
        ref_id: str,
        description: str,
    ) -> tuple[Account, LedgerEntry]:
        """Atomically apply `delta`; raises InsufficientBalanceError if the
        result would be negative."""
        ...

    async def list_ledger_entries(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: int | None,
        limit: int,
        entry_type: str | None,
    ) -> list[LedgerEntry]: ...

    async def list_top_balances(
        self, db: AsyncSession, limit: int
    ) -> list[LeaderboardEntry]: ...

    async def get_rank(
        self, db: AsyncSession, user_id: str
    ) -> tuple[int, int] | None:
        """(rank, total_accounts), or None for an unknown user."""
        ...
