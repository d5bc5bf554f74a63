"""Tests for webhook event deduplication."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from voice_crm.services.dedup import (
    InMemoryEventDeduplicator,
    RedisEventDeduplicator,
    event_id_for,
    get_deduplicator,
)

from .fakes import make_settings


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestEventIdFor:
    """Event ids come from the payload when present."""

    def test_uses_payload_id(self) -> None:
        received = datetime(2026, 10, 12, tzinfo=timezone.utc)
        assert event_id_for({"id": "evt-1"}, "call-ended", "call-1", received) == "evt-1"
        assert event_id_for({"message": {"id": "evt-2"}}, "call-ended", "call-1", received) == "evt-2"

    def test_synthesized_from_type_call_and_time(self) -> None:
        received = datetime(2026, 10, 12, tzinfo=timezone.utc)
        event_id = event_id_for({}, "call-ended", "call-1", received)
        assert event_id == f"call-ended-call-1-{int(received.timestamp() * 1000)}"


class TestInMemoryEventDeduplicator:
    """TTL and size-capped in-memory dedup set."""

    @pytest.mark.asyncio
    async def test_claim_once(self) -> None:
        dedup = InMemoryEventDeduplicator()
        assert await dedup.claim("evt-1") is True
        assert await dedup.claim("evt-1") is False
        assert await dedup.seen("evt-1") is True

    @pytest.mark.asyncio
    async def test_release_allows_reclaim(self) -> None:
        dedup = InMemoryEventDeduplicator()
        await dedup.claim("evt-1")
        await dedup.release("evt-1")
        assert await dedup.claim("evt-1") is True

    @pytest.mark.asyncio
    async def test_entries_expire(self) -> None:
        clock = FakeClock()
        dedup = InMemoryEventDeduplicator(ttl_seconds=60, clock=clock)
        await dedup.claim("evt-1")
        clock.now = 61
        assert await dedup.seen("evt-1") is False
        assert await dedup.claim("evt-1") is True

    @pytest.mark.asyncio
    async def test_size_cap_evicts_oldest(self) -> None:
        dedup = InMemoryEventDeduplicator(max_entries=2)
        for event_id in ("a", "b", "c"):
            await dedup.claim(event_id)
        assert len(dedup) == 2
        assert await dedup.seen("a") is False
        assert await dedup.seen("c") is True


class TestRedisEventDeduplicator:
    """Redis SET NX EX dedup."""

    @pytest.mark.asyncio
    async def test_claim_uses_set_nx(self) -> None:
        client = MagicMock()
        client.set = AsyncMock(side_effect=[True, None])
        dedup = RedisEventDeduplicator(client, ttl_seconds=100)

        assert await dedup.claim("evt-1") is True
        assert await dedup.claim("evt-1") is False
        client.set.assert_awaited_with("webhook-event:evt-1", "1", nx=True, ex=100)

    @pytest.mark.asyncio
    async def test_redis_error_treated_as_unseen(self) -> None:
        client = MagicMock()
        client.set = AsyncMock(side_effect=RedisConnectionError("down"))
        dedup = RedisEventDeduplicator(client)
        assert await dedup.claim("evt-1") is True

    @pytest.mark.asyncio
    async def test_release_deletes_key(self) -> None:
        client = MagicMock()
        client.delete = AsyncMock()
        dedup = RedisEventDeduplicator(client)
        await dedup.release("evt-1")
        client.delete.assert_awaited_once_with("webhook-event:evt-1")


def test_get_deduplicator_defaults_to_memory() -> None:
    assert isinstance(get_deduplicator(make_settings()), InMemoryEventDeduplicator)
