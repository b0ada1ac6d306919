"""Human-queue notification over Redis Streams.

Stream key pattern: t:{user_id}:events:{stream}

Human agent consoles consume the stream; the handoff row in PostgreSQL stays
the source of truth, so a lost notification never loses an escalation.
"""

from __future__ import annotations

from typing import Protocol

import redis.asyncio as aioredis
import structlog

from src.relay.escalation.schemas import HandoffRecord

logger = structlog.get_logger(__name__)


class HandoffNotifier(Protocol):
    async def notify(self, record: HandoffRecord) -> None: ...


class RedisStreamNotifier:
    """Appends handoff records to a per-account Redis Stream.

    Args:
        redis: Raw async Redis client.
        stream: Stream name (e.g. "handoffs").
        maxlen: Approximate stream length cap.
    """

    def __init__(self, redis: aioredis.Redis, stream: str = "handoffs", maxlen: int = 1000) -> None:
        self._redis = redis
        self._stream = stream
        self._maxlen = maxlen

    def stream_key(self, user_id: str) -> str:
        return f"t:{user_id}:events:{self._stream}"

    async def notify(self, record: HandoffRecord) -> None:
        stream_key = self.stream_key(record.user_id)
        message_id = await self._redis.xadd(
            stream_key,
            record.to_stream_dict(),
            maxlen=self._maxlen,
            approximate=True,
        )
        logger.debug(
            "handoff.published",
            stream=stream_key,
            handoff_id=record.handoff_id,
            message_id=message_id,
        )
