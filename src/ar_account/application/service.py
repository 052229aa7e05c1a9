"""AccountApplicationService — read-side composition for balances, ledger
and leaderboard.

Balance mutations happen inside the game services' transactions; nothing
here writes.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_account.application.schemas import (
    BalanceResponse,
    LeaderboardItem,
    LeaderboardResponse,
    LedgerEntryItem,
    LedgerResponse,
    RankResponse,
    cursor_decode,
    cursor_encode,
)
from src.ar_account.domain.repository import AccountRepositoryProtocol
from src.ar_account.infrastructure.persistence import AccountRepository
from src.ar_common.errors import AccountNotFoundError


class AccountApplicationService:
    def __init__(self, repo: AccountRepositoryProtocol | None = None) -> None:
        self._repo: AccountRepositoryProtocol = repo or AccountRepository()

    async def get_balance(self, db: AsyncSession, user_id: str) -> BalanceResponse:
        account = await self._repo.get_account_by_user_id(db, user_id)
        if account is None:
            raise AccountNotFoundError(user_id)
        return BalanceResponse.from_coins(user_id, account.balance)

    async def list_ledger(
        self,
        db: AsyncSession,
        user_id: str,
        cursor: str | None,
        limit: int,
        entry_type: str | None,
    ) -> LedgerResponse:
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        entries = await self._repo.list_ledger_entries(
            db, user_id, cursor_id, limit + 1, entry_type
        )
        has_more = len(entries) > limit
        page = entries[:limit]

        items = [
            LedgerEntryItem(
                id=e.id,
                entry_type=e.entry_type,
                amount=e.amount,
                balance_after=e.balance_after,
                reference_type=e.reference_type,
                reference_id=e.reference_id,
                description=e.description,
                created_at=e.created_at.isoformat() if e.created_at else "",
            )
            for e in page
        ]

        next_cursor = cursor_encode(page[-1].id) if has_more and page else None
        return LedgerResponse(items=items, next_cursor=next_cursor, has_more=has_more)

    async def get_leaderboard(self, db: AsyncSession, limit: int) -> LeaderboardResponse:
        entries = await self._repo.list_top_balances(db, limit)
        return LeaderboardResponse(
            items=[
                LeaderboardItem(rank=e.rank, username=e.username, coins=e.coins)
                for e in entries
            ]
        )

    async def get_rank(self, db: AsyncSession, user_id: str) -> RankResponse:
        found = await self._repo.get_rank(db, user_id)
        if found is None:
            raise AccountNotFoundError(user_id)
        rank, total = found
        return RankResponse(user_id=user_id, rank=rank, total=total)
