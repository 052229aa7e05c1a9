"""AccountRepository — concrete implementation of AccountRepositoryProtocol.

Every balance mutation is one atomic PostgreSQL UPDATE ... RETURNING whose
WHERE clause keeps the balance non-negative. A result of 0 rows means the
constraint would have been violated (or the account does not exist).

Transaction ownership: the CALLER (application service or router) commits.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_account.domain.models import Account, LeaderboardEntry, LedgerEntry
from src.ar_common.enums import LedgerEntryType
from src.ar_common.errors import AccountNotFoundError, InsufficientBalanceError, InternalError

# ---------------------------------------------------------------------------
# SQL: accounts
# ---------------------------------------------------------------------------

_OPEN_ACCOUNT_SQL = text("""
    INSERT INTO accounts (user_id, balance, version)
    VALUES (:user_id, :balance, 0)
    RETURNING id, user_id, balance, version, created_at, updated_at
""")

_ADJUST_BALANCE_SQL = text("""
    UPDATE accounts
    SET balance = balance + :delta,
        version = version + 1,
        updated_at = NOW()
    WHERE user_id = :user_id AND balance + :delta >= 0
    RETURNING id, user_id, balance, version, created_at, updated_at
""")

_GET_ACCOUNT_SQL = text("""
    SELECT id, user_id, balance, version, created_at, updated_at
    FROM accounts
    WHERE user_id = :user_id
""")

_TOP_BALANCES_SQL = text("""
    SELECT a.user_id, u.username, a.balance
    FROM accounts a
    JOIN users u ON u.id::text = a.user_id
    WHERE u.is_active
    ORDER BY a.balance DESC, a.user_id
    LIMIT :limit
""")

_RANK_SQL = text("""
    SELECT ranked.position, ranked.total
    FROM (
        SELECT user_id,
               ROW_NUMBER() OVER (ORDER BY balance DESC, user_id) AS position,
               COUNT(*) OVER () AS total
        FROM accounts
    ) AS ranked
    WHERE ranked.user_id = :user_id
""")

# ---------------------------------------------------------------------------
# SQL: ledger
# ---------------------------------------------------------------------------

_INSERT_LEDGER_SQL = text("""
    INSERT INTO ledger_entries
        (user_id, entry_type, amount, balance_after,
         reference_type, reference_id, description)
    VALUES
        (:user_id, :entry_type, :amount, :balance_after,
         :reference_type, :reference_id, :description)
    RETURNING id, user_id, entry_type, amount, balance_after,
              reference_type, reference_id, description, created_at
""")

_LIST_LEDGER_SQL = text("""
    SELECT id, user_id, entry_type, amount, balance_after,
           reference_type, reference_id, description, created_at
    FROM ledger_entries
    WHERE user_id = :user_id
      AND (CAST(:cursor_id AS BIGINT) IS NULL OR id < CAST(:cursor_id AS BIGINT))
      AND (CAST(:entry_type AS TEXT) IS NULL OR entry_type = CAST(:entry_type AS TEXT))
    ORDER BY id DESC
    LIMIT :limit
""")


def _row_to_account(row: object) -> Account:
    return Account(
        id=str(row.id),  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        balance=row.balance,  # type: ignore[attr-defined]
        version=row.version,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_ledger(row: object) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        entry_type=row.entry_type,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        balance_after=row.balance_after,  # type: ignore[attr-defined]
        reference_type=row.reference_type,  # type: ignore[attr-defined]
        reference_id=row.reference_id,  # type: ignore[attr-defined]
        description=row.description,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class AccountRepository:
    """Concrete repository — all operations atomic at the SQL level."""

    async def _write_ledger(
        self,
        db: AsyncSession,
        account: Account,
        entry_type: str,
        amount: int,
        ref_type: str | None,
        ref_id: str | None,
        description: str,
    ) -> LedgerEntry:
        result = await db.execute(
            _INSERT_LEDGER_SQL,
            {
                "user_id": account.user_id,
                "entry_type": entry_type,
                "amount": amount,
                "balance_after": account.balance,
                "reference_type": ref_type,
                "reference_id": ref_id,
                "description": description,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("Ledger insert returned no rows")
        return _row_to_ledger(row)

    async def open_account(
        self, db: AsyncSession, user_id: str, starting_coins: int
    ) -> Account:
        result = await db.execute(
            _OPEN_ACCOUNT_SQL, {"user_id": user_id, "balance": starting_coins}
        )
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Account insert returned no rows for user {user_id}")
        account = _row_to_account(row)
        if starting_coins > 0:
            await self._write_ledger(
                db, account, LedgerEntryType.SIGNUP_BONUS, starting_coins,
                "USER", user_id, "Starting coins",
            )
        return account

    async def get_account_by_user_id(
        self, db: AsyncSession, user_id: str
    ) -> Account | None:
        result = await db.execute(_GET_ACCOUNT_SQL, {"user_id": user_id})
        row = result.fetchone()
        return _row_to_account(row) if row else None

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
        result = await db.execute(_ADJUST_BALANCE_SQL, {"user_id": user_id, "delta": delta})
        row = result.fetchone()
        if row is None:
            current = await self.get_account_by_user_id(db, user_id)
            if current is None:
                raise AccountNotFoundError(user_id)
            raise InsufficientBalanceError(-delta, current.balance)
        account = _row_to_account(row)
        entry = await self._write_ledger(
            db, account, entry_type, delta, ref_type, ref_id, description
        )
        return account, entry

    async def list_ledger_entries(
        self,
        db: AsyncSession,
        user_id: str,
        cursor_id: int | None,
        limit: int,
        entry_type: str | None,
    ) -> list[LedgerEntry]:
        result = await db.execute(
            _LIST_LEDGER_SQL,
            {
                "user_id": user_id,
                "cursor_id": cursor_id,
                "entry_type": entry_type,
                "limit": limit,
            },
        )
        return [_row_to_ledger(row) for row in result.fetchall()]

    async def list_top_balances(
        self, db: AsyncSession, limit: int
    ) -> list[LeaderboardEntry]:
        result = await db.execute(_TOP_BALANCES_SQL, {"limit": limit})
        return [
            LeaderboardEntry(
                rank=position,
                user_id=row.user_id,
                username=row.username,
                coins=row.balance,
            )
            for position, row in enumerate(result.fetchall(), start=1)
        ]

    async def get_rank(
        self, db: AsyncSession, user_id: str
    ) -> tuple[int, int] | None:
        result = await db.execute(_RANK_SQL, {"user_id": user_id})
        row = result.fetchone()
        if row is None:
            return None
        return int(row.position), int(row.total)
