"""Round event fan-out over Redis pub/sub.

Publishing is best-effort: round state lives in PostgreSQL and clients can
always poll /game/state, so a broker outage is logged and swallowed.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from config.settings import settings
from src.ar_common.datetime_utils import utc_now
from src.ar_common.enums import RoundEventType
from src.ar_common.redis_client import get_redis
from src.ar_game.domain.models import Round
from src.ar_game.domain.outcomes import Outcome

logger = logging.getLogger(__name__)


class RoundEventPublisher:
    def __init__(
        self,
        channel: str | None = None,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]] = get_redis,
    ) -> None:
        self._channel = channel or settings.ROUND_EVENTS_CHANNEL
        self._redis_factory = redis_factory

    async def publish(self, topic: str, event_type: str, payload: dict[str, Any]) -> bool:
        message = json.dumps(
            {"type": event_type, "data": payload, "sent_at": utc_now().isoformat()},
            default=str,
        )
        try:
            client = await self._redis_factory()
            await client.publish(topic, message)
        except (RedisError, OSError) as exc:
            logger.warning("Failed to publish %s on %s: %s", event_type, topic, exc)
            return False
        logger.debug("Published %s on %s", event_type, topic)
        return True

    async def round_started(self, round_: Round) -> bool:
        return await self.publish(
            self._channel,
            RoundEventType.ROUND_START.value,
            {
                "round_id": round_.id,
                "opened_at": round_.opened_at.isoformat(),
                "closes_at": round_.closes_at.isoformat(),
            },
        )

    async def round_ended(self, round_: Round, outcome: Outcome) -> bool:
        return await self.publish(
            self._channel,
            RoundEventType.ROUND_END.value,
            {
                "round_id": round_.id,
                "outcome_id": outcome.id,
                "outcome_label": outcome.display_label,
                "payout_multiplier": outcome.payout_multiplier,
            },
        )
