"""Pydantic schemas and cursor utilities for ar_account API."""

import base64
import json

from pydantic import BaseModel

from src.ar_common.coins import coins_to_display

# ---------------------------------------------------------------------------
# Cursor-based pagination utilities
# ---------------------------------------------------------------------------


def cursor_encode(last_id: int) -> str:
    """Encode a BIGINT primary key into an opaque Base64 cursor string."""
    payload = json.dumps({"id": last_id})
    return base64.b64encode(payload.encode()).decode()


def cursor_decode(cursor: str | None) -> int | None:
    """Decode a cursor string back to the last seen id. Returns None on error."""
    if cursor is None:
        return None
    try:
        payload = json.loads(base64.b64decode(cursor.encode()).decode())
        return int(payload["id"])
    except (ValueError, KeyError, TypeError):
        return None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    user_id: str
    coins: int
    coins_display: str

    @classmethod
    def from_coins(cls, user_id: str, coins: int) -> "BalanceResponse":
        return cls(user_id=user_id, coins=coins, coins_display=coins_to_display(coins))


class LedgerEntryItem(BaseModel):
    id: int
    entry_type: str
    amount: int
    balance_after: int
    reference_type: str | None
    reference_id: str | None
    description: str | None
    created_at: str  # ISO8601 string


class LedgerResponse(BaseModel):
    items: list[LedgerEntryItem]
    next_cursor: str | None
    has_more: bool


class LeaderboardItem(BaseModel):
    rank: int
    username: str
    coins: int


class LeaderboardResponse(BaseModel):
    items: list[LeaderboardItem]


class RankResponse(BaseModel):
    user_id: str
    rank: int
    total: int
