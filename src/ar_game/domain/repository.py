"""Repository and collaborator Protocols for ar_game.

Unit tests inject in-memory fakes conforming to these Protocols.
Infrastructure layer provides the real implementations.
"""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_game.domain.models import Round, SettlementRecord, Wager
from src.ar_game.domain.outcomes import Outcome


class RoundRepositoryProtocol(Protocol):
    async def create_round(
        self, db: AsyncSession, opened_at: datetime, closes_at: datetime
    ) -> Round | None:
        """Insert an OPEN round; None if another OPEN round already exists."""
        ...

    async def get_round(self, db: AsyncSession, round_id: int) -> Round | None: ...

    async def get_round_for_wager(
        self, db: AsyncSession, round_id: int
    ) -> Round | None:
        """Read the round and hold a share lock until the caller commits."""
        ...

    async def get_active_round(self, db: AsyncSession) -> Round | None: ...

    async def close_round(
        self,
        db: AsyncSession,
        round_id: int,
        outcome_id: str,
        settled_at: datetime,
    ) -> Round | None:
        """OPEN -> CLOSED. None (not an error) if the round was already closed."""
        ...

    async def list_due_rounds(
        self, db: AsyncSession, closes_before: datetime
    ) -> list[Round]: ...

    async def list_rounds_pending_reconciliation(
        self, db: AsyncSession, settled_before: datetime, limit: int
    ) -> list[int]: ...

    async def list_recent_rounds(
        self, db: AsyncSession, limit: int, offset: int
    ) -> list[Round]: ...

    async def get_last_closed_round(self, db: AsyncSession) -> Round | None: ...


class WagerRepositoryProtocol(Protocol):
    async def insert_wagers(
        self,
        db: AsyncSession,
        round_id: int,
        user_id: str,
        stakes: list[tuple[str, int]],
    ) -> list[Wager]: ...

    async def delete_user_wagers(
        self, db: AsyncSession, round_id: int, user_id: str
    ) -> int: ...

    async def sum_user_wagers(
        self, db: AsyncSession, round_id: int, user_id: str
    ) -> int: ...

    async def list_for_round(self, db: AsyncSession, round_id: int) -> list[Wager]: ...

    async def list_unsettled_for_round(
        self, db: AsyncSession, round_id: int
    ) -> list[Wager]: ...

    async def list_for_user(
        self, db: AsyncSession, user_id: str, round_ids: list[int]
    ) -> list[Wager]: ...

    async def totals_by_outcome(
        self, db: AsyncSession, round_id: int
    ) -> dict[str, int]: ...


class SettlementRepositoryProtocol(Protocol):
    async def record(
        self,
        db: AsyncSession,
        wager: Wager,
        outcome_id: str,
        payout: int,
    ) -> SettlementRecord | None:
        """Insert the record; None if the wager was already settled."""
        ...

    async def list_for_user(
        self, db: AsyncSession, user_id: str, round_ids: list[int]
    ) -> list[SettlementRecord]: ...


class RoundEventPublisherProtocol(Protocol):
    async def publish(self, topic: str, event_type: str, payload: dict[str, Any]) -> bool: ...

    async def round_started(self, round_: Round) -> bool: ...

    async def round_ended(self, round_: Round, outcome: Outcome) -> bool: ...
