"""Webhook event deduplication.

Providers deliver webhooks at least once. An event id is claimed before the
event is processed; a second delivery of the same id is dropped.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Optional

import redis.asyncio as redis

from ..core.config import Settings

logger = logging.getLogger(__name__)


def event_id_for(
    payload: Dict[str, Any],
    event_type: Optional[str],
    call_id: Optional[str],
    received_at: datetime,
) -> str:
    """Use the payload's own id, else synthesize one from type, call and receipt time."""
    message = payload.get("message") if isinstance(payload.get("message"), dict) else {}
    for candidate in (payload.get("id"), message.get("id"), payload.get("eventId")):
        if candidate:
            return str(candidate)
    timestamp_ms = int(received_at.timestamp() * 1000)
    return f"{event_type or 'unknown'}-{call_id or 'none'}-{timestamp_ms}"


class EventDeduplicator:
    """Base class for event deduplicators."""

    async def seen(self, event_id: str) -> bool:
        raise NotImplementedError

    async def mark_seen(self, event_id: str) -> None:
        raise NotImplementedError

    async def claim(self, event_id: str) -> bool:
        """Mark ``event_id`` seen; return False if it already was."""
        if await self.seen(event_id):
            return False
        await self.mark_seen(event_id)
        return True

    async def release(self, event_id: str) -> None:
        """Forget a claimed id so a retried delivery is processed again."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryEventDeduplicator(EventDeduplicator):
    """Process-local deduplicator with TTL expiry and a size cap.

    Not shared between instances and lost on restart.
    """

    def __init__(self, ttl_seconds: int = 86400, max_entries: int = 10000, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()

    def _evict(self) -> None:
        now = self._clock()
        while self._entries:
            event_id, expires_at = next(iter(self._entries.items()))
            if expires_at > now and len(self._entries) <= self.max_entries:
                break
            self._entries.popitem(last=False)

    async def seen(self, event_id: str) -> bool:
        self._evict()
        return event_id in self._entries

    async def mark_seen(self, event_id: str) -> None:
        self._entries.pop(event_id, None)
        self._entries[event_id] = self._clock() + self.ttl_seconds
        self._evict()

    async def claim(self, event_id: str) -> bool:
        # No await between check and mark, so this is atomic on the event loop
        self._evict()
        if event_id in self._entries:
            return False
        self._entries[event_id] = self._clock() + self.ttl_seconds
        self._evict()
        return True

    async def release(self, event_id: str) -> None:
        self._entries.pop(event_id, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisEventDeduplicator(EventDeduplicator):
    """Deduplicator backed by Redis keys with expiry, shared across instances."""

    def __init__(self, client: "redis.Redis", ttl_seconds: int = 86400, prefix: str = "webhook-event"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    def _key(self, event_id: str) -> str:
        return f"{self.prefix}:{event_id}"

    async def seen(self, event_id: str) -> bool:
        return bool(await self.client.exists(self._key(event_id)))

    async def mark_seen(self, event_id: str) -> None:
        await self.client.set(self._key(event_id), "1", ex=self.ttl_seconds)

    async def claim(self, event_id: str) -> bool:
        try:
            claimed = await self.client.set(self._key(event_id), "1", nx=True, ex=self.ttl_seconds)
        except Exception as e:
            # Redis unreachable: treat as unseen
            logger.error(f"Redis dedup unavailable for {event_id}: {e}")
            return True
        return bool(claimed)

    async def release(self, event_id: str) -> None:
        try:
            await self.client.delete(self._key(event_id))
        except Exception as e:
            logger.error(f"Failed to release dedup key {event_id}: {e}")

    async def close(self) -> None:
        await self.client.aclose()


def get_deduplicator(settings: Settings) -> EventDeduplicator:
    """Redis-backed when REDIS_URL is configured, in-memory otherwise."""
    if settings.redis_url:
        client = redis.from_url(settings.redis_url)
        logger.info("✅ Redis event deduplication initialized")
        return RedisEventDeduplicator(client, ttl_seconds=settings.dedup_ttl_seconds)

    logger.warning("REDIS_URL not configured, using in-memory event deduplication")
    return InMemoryEventDeduplicator(
        ttl_seconds=settings.dedup_ttl_seconds,
        max_entries=settings.dedup_max_entries,
    )
