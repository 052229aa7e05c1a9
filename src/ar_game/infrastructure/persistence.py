"""Round, wager and settlement repositories — raw SQL over AsyncSession.

Two statements carry the concurrency guarantees of the game:

* ``_CREATE_ROUND_SQL`` relies on the partial unique index
  ``uq_rounds_single_open`` so at most one OPEN round can ever exist.
* ``_CLOSE_ROUND_SQL`` only matches an OPEN row; the caller that gets a row
  back is the single settler of that round.

``settlement_records.wager_id`` is UNIQUE, so a wager is paid at most once
no matter how many settlers or reconcilers reach it.

Transaction ownership: the CALLER commits.
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_common.errors import InternalError
from src.ar_game.domain.models import Round, SettlementRecord, Wager

_ROUND_COLUMNS = "id, status, opened_at, closes_at, outcome_id, settled_at"

# ---------------------------------------------------------------------------
# SQL: rounds
# ---------------------------------------------------------------------------

_CREATE_ROUND_SQL = text(f"""
    INSERT INTO rounds (status, opened_at, closes_at)
    VALUES ('OPEN', :opened_at, :closes_at)
    ON CONFLICT (status) WHERE status = 'OPEN' DO NOTHING
    RETURNING {_ROUND_COLUMNS}
""")

_GET_ROUND_SQL = text(f"""
    SELECT {_ROUND_COLUMNS} FROM rounds WHERE id = :round_id
""")

_GET_ROUND_FOR_SHARE_SQL = text(f"""
    SELECT {_ROUND_COLUMNS} FROM rounds WHERE id = :round_id FOR SHARE
""")

_GET_ACTIVE_ROUND_SQL = text(f"""
    SELECT {_ROUND_COLUMNS}
    FROM rounds
    WHERE status = 'OPEN'
    ORDER BY opened_at DESC, id DESC
    LIMIT 1
""")

_CLOSE_ROUND_SQL = text(f"""
    UPDATE rounds
    SET status = 'CLOSED',
        outcome_id = :outcome_id,
        settled_at = :settled_at
    WHERE id = :round_id AND status = 'OPEN'
    RETURNING {_ROUND_COLUMNS}
""")

_LIST_DUE_ROUNDS_SQL = text(f"""
    SELECT {_ROUND_COLUMNS}
    FROM rounds
    WHERE status = 'OPEN' AND closes_at <= :closes_before
    ORDER BY closes_at, id
""")

_LIST_PENDING_RECONCILIATION_SQL = text("""
    SELECT r.id, r.settled_at
    FROM rounds r
    WHERE r.status = 'CLOSED'
      AND r.settled_at <= :settled_before
      AND EXISTS (
          SELECT 1
          FROM wagers w
          LEFT JOIN settlement_records s ON s.wager_id = w.id
          WHERE w.round_id = r.id AND s.id IS NULL
      )
    ORDER BY r.settled_at DESC, r.id DESC
    LIMIT :limit
""")

_LIST_RECENT_ROUNDS_SQL = text(f"""
    SELECT {_ROUND_COLUMNS}
    FROM rounds
    ORDER BY opened_at DESC, id DESC
    LIMIT :limit OFFSET :offset
""")

_GET_LAST_CLOSED_ROUND_SQL = text(f"""
    SELECT {_ROUND_COLUMNS}
    FROM rounds
    WHERE status = 'CLOSED'
    ORDER BY settled_at DESC, id DESC
    LIMIT 1
""")

# ---------------------------------------------------------------------------
# SQL: wagers
# ---------------------------------------------------------------------------

_WAGER_COLUMNS = "id, round_id, user_id, outcome_id, amount, created_at"

_INSERT_WAGER_SQL = text(f"""
    INSERT INTO wagers (round_id, user_id, outcome_id, amount)
    VALUES (:round_id, :user_id, :outcome_id, :amount)
    RETURNING {_WAGER_COLUMNS}
""")

_DELETE_USER_WAGERS_SQL = text("""
    DELETE FROM wagers WHERE round_id = :round_id AND user_id = :user_id
""")

_SUM_USER_WAGERS_SQL = text("""
    SELECT COALESCE(SUM(amount), 0) AS total
    FROM wagers
    WHERE round_id = :round_id AND user_id = :user_id
""")

_LIST_ROUND_WAGERS_SQL = text(f"""
    SELECT {_WAGER_COLUMNS} FROM wagers WHERE round_id = :round_id ORDER BY id
""")

_LIST_UNSETTLED_WAGERS_SQL = text("""
    SELECT w.id, w.round_id, w.user_id, w.outcome_id, w.amount, w.created_at
    FROM wagers w
    LEFT JOIN settlement_records s ON s.wager_id = w.id
    WHERE w.round_id = :round_id AND s.id IS NULL
    ORDER BY w.id
""")

_LIST_USER_WAGERS_SQL = text(f"""
    SELECT {_WAGER_COLUMNS}
    FROM wagers
    WHERE user_id = :user_id AND round_id = ANY(CAST(:round_ids AS BIGINT[]))
    ORDER BY round_id DESC, id
""")

_TOTALS_BY_OUTCOME_SQL = text("""
    SELECT outcome_id, SUM(amount) AS total
    FROM wagers
    WHERE round_id = :round_id
    GROUP BY outcome_id
""")

# ---------------------------------------------------------------------------
# SQL: settlement records
# ---------------------------------------------------------------------------

_SETTLEMENT_COLUMNS = "id, wager_id, round_id, user_id, outcome_id, payout, created_at"

_INSERT_SETTLEMENT_SQL = text(f"""
    INSERT INTO settlement_records (wager_id, round_id, user_id, outcome_id, payout)
    VALUES (:wager_id, :round_id, :user_id, :outcome_id, :payout)
    ON CONFLICT (wager_id) DO NOTHING
    RETURNING {_SETTLEMENT_COLUMNS}
""")

_LIST_USER_SETTLEMENTS_SQL = text(f"""
    SELECT {_SETTLEMENT_COLUMNS}
    FROM settlement_records
    WHERE user_id = :user_id AND round_id = ANY(CAST(:round_ids AS BIGINT[]))
    ORDER BY round_id DESC, wager_id
""")


def _row_to_round(row: object) -> Round:
    return Round(
        id=row.id,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        opened_at=row.opened_at,  # type: ignore[attr-defined]
        closes_at=row.closes_at,  # type: ignore[attr-defined]
        outcome_id=row.outcome_id,  # type: ignore[attr-defined]
        settled_at=row.settled_at,  # type: ignore[attr-defined]
    )


def _row_to_wager(row: object) -> Wager:
    return Wager(
        id=row.id,  # type: ignore[attr-defined]
        round_id=row.round_id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        outcome_id=row.outcome_id,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


def _row_to_settlement(row: object) -> SettlementRecord:
    return SettlementRecord(
        id=row.id,  # type: ignore[attr-defined]
        wager_id=row.wager_id,  # type: ignore[attr-defined]
        round_id=row.round_id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        outcome_id=row.outcome_id,  # type: ignore[attr-defined]
        payout=row.payout,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class RoundRepository:
    async def create_round(
        self, db: AsyncSession, opened_at: datetime, closes_at: datetime
    ) -> Round | None:
        result = await db.execute(
            _CREATE_ROUND_SQL, {"opened_at": opened_at, "closes_at": closes_at}
        )
        row = result.fetchone()
        return _row_to_round(row) if row else None

    async def get_round(self, db: AsyncSession, round_id: int) -> Round | None:
        result = await db.execute(_GET_ROUND_SQL, {"round_id": round_id})
        row = result.fetchone()
        return _row_to_round(row) if row else None

    async def get_round_for_wager(
        self, db: AsyncSession, round_id: int
    ) -> Round | None:
        # FOR SHARE blocks the close UPDATE until the wager transaction ends
        result = await db.execute(_GET_ROUND_FOR_SHARE_SQL, {"round_id": round_id})
        row = result.fetchone()
        return _row_to_round(row) if row else None

    async def get_active_round(self, db: AsyncSession) -> Round | None:
        result = await db.execute(_GET_ACTIVE_ROUND_SQL)
        row = result.fetchone()
        return _row_to_round(row) if row else None

    async def close_round(
        self,
        db: AsyncSession,
        round_id: int,
        outcome_id: str,
        settled_at: datetime,
    ) -> Round | None:
        result = await db.execute(
            _CLOSE_ROUND_SQL,
            {"round_id": round_id, "outcome_id": outcome_id, "settled_at": settled_at},
        )
        row = result.fetchone()
        return _row_to_round(row) if row else None

    async def list_due_rounds(
        self, db: AsyncSession, closes_before: datetime
    ) -> list[Round]:
        result = await db.execute(_LIST_DUE_ROUNDS_SQL, {"closes_before": closes_before})
        return [_row_to_round(row) for row in result.fetchall()]

    async def list_rounds_pending_reconciliation(
        self, db: AsyncSession, settled_before: datetime, limit: int
    ) -> list[int]:
        result = await db.execute(
            _LIST_PENDING_RECONCILIATION_SQL,
            {"settled_before": settled_before, "limit": limit},
        )
        return [row.id for row in result.fetchall()]

    async def list_recent_rounds(
        self, db: AsyncSession, limit: int, offset: int
    ) -> list[Round]:
        result = await db.execute(
            _LIST_RECENT_ROUNDS_SQL, {"limit": limit, "offset": offset}
        )
        return [_row_to_round(row) for row in result.fetchall()]

    async def get_last_closed_round(self, db: AsyncSession) -> Round | None:
        result = await db.execute(_GET_LAST_CLOSED_ROUND_SQL)
        row = result.fetchone()
        return _row_to_round(row) if row else None


class WagerRepository:
    async def insert_wagers(
        self,
        db: AsyncSession,
        round_id: int,
        user_id: str,
        stakes: list[tuple[str, int]],
    ) -> list[Wager]:
        wagers: list[Wager] = []
        for outcome_id, amount in stakes:
            result = await db.execute(
                _INSERT_WAGER_SQL,
                {
                    "round_id": round_id,
                    "user_id": user_id,
                    "outcome_id": outcome_id,
                    "amount": amount,
                },
            )
            row = result.fetchone()
            if row is None:
                raise InternalError(f"Wager insert returned no rows for round {round_id}")
            wagers.append(_row_to_wager(row))
        return wagers

    async def delete_user_wagers(
        self, db: AsyncSession, round_id: int, user_id: str
    ) -> int:
        result = await db.execute(
            _DELETE_USER_WAGERS_SQL, {"round_id": round_id, "user_id": user_id}
        )
        return result.rowcount  # type: ignore[attr-defined]

    async def sum_user_wagers(
        self, db: AsyncSession, round_id: int, user_id: str
    ) -> int:
        result = await db.execute(
            _SUM_USER_WAGERS_SQL, {"round_id": round_id, "user_id": user_id}
        )
        row = result.fetchone()
        return int(row.total) if row else 0

    async def list_for_round(self, db: AsyncSession, round_id: int) -> list[Wager]:
        result = await db.execute(_LIST_ROUND_WAGERS_SQL, {"round_id": round_id})
        return [_row_to_wager(row) for row in result.fetchall()]

    async def list_unsettled_for_round(
        self, db: AsyncSession, round_id: int
    ) -> list[Wager]:
        result = await db.execute(_LIST_UNSETTLED_WAGERS_SQL, {"round_id": round_id})
        return [_row_to_wager(row) for row in result.fetchall()]

    async def list_for_user(
        self, db: AsyncSession, user_id: str, round_ids: list[int]
    ) -> list[Wager]:
        if not round_ids:
            return []
        result = await db.execute(
            _LIST_USER_WAGERS_SQL, {"user_id": user_id, "round_ids": round_ids}
        )
        return [_row_to_wager(row) for row in result.fetchall()]

    async def totals_by_outcome(
        self, db: AsyncSession, round_id: int
    ) -> dict[str, int]:
        result = await db.execute(_TOTALS_BY_OUTCOME_SQL, {"round_id": round_id})
        return {row.outcome_id: int(row.total) for row in result.fetchall()}


class SettlementRepository:
    async def record(
        self,
        db: AsyncSession,
        wager: Wager,
        outcome_id: str,
        payout: int,
    ) -> SettlementRecord | None:
        result = await db.execute(
            _INSERT_SETTLEMENT_SQL,
            {
                "wager_id": wager.id,
                "round_id": wager.round_id,
                "user_id": wager.user_id,
                "outcome_id": outcome_id,
                "payout": payout,
            },
        )
        row = result.fetchone()
        return _row_to_settlement(row) if row else None

    async def list_for_user(
        self, db: AsyncSession, user_id: str, round_ids: list[int]
    ) -> list[SettlementRecord]:
        if not round_ids:
            return []
        result = await db.execute(
            _LIST_USER_SETTLEMENTS_SQL, {"user_id": user_id, "round_ids": round_ids}
        )
        return [_row_to_settlement(row) for row in result.fetchall()]
