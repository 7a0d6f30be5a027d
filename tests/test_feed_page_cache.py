from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from reviewfeed_service.cache import InMemoryFeedPageCache, RedisFeedPageCache
from reviewfeed_service.schemas import FeedResponse


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _page(cursor="c1"):
    return FeedResponse(items=[], has_more=True, next_cursor=cursor)


def test_in_memory_slot_round_trip_and_expiry():
    clock = FakeClock()
    cache = InMemoryFeedPageCache(ttl_seconds=600, clock=clock)

    async def scenario():
        assert await cache.get() is None
        await cache.set(_page())
        clock.now = 599
        hit = await cache.get()
        clock.now = 600
        return hit, await cache.get()

    hit, expired = asyncio.run(scenario())

    assert hit.next_cursor == "c1"
    assert expired is None


def test_in_memory_slot_returns_copies():
    cache = InMemoryFeedPageCache(ttl_seconds=600)

    async def scenario():
        await cache.set(_page())
        first = await cache.get()
        first.next_cursor = "mutated"
        return await cache.get()

    assert asyncio.run(scenario()).next_cursor == "c1"


def test_redis_cache_reads_json_payload():
    cache = RedisFeedPageCache()
    cache.client = AsyncMock()
    cache.client.get.return_value = _page("c9").model_dump_json()

    page = asyncio.run(cache.get())

    assert page.next_cursor == "c9"
    cache.client.get.assert_awaited_once_with("feed:first_page")


def test_redis_cache_writes_with_ttl():
    cache = RedisFeedPageCache()
    cache.client = AsyncMock()

    assert asyncio.run(cache.set(_page())) is True

    key, payload = cache.client.set.await_args.args
    assert key == "feed:first_page"
    assert FeedResponse.model_validate_json(payload).next_cursor == "c1"
    assert cache.client.set.await_args.kwargs["ex"] == 600


def test_redis_cache_discards_unreadable_payload():
    cache = RedisFeedPageCache()
    cache.client = AsyncMock()
    cache.client.get.return_value = "{not json"

    assert asyncio.run(cache.get()) is None
    cache.client.delete.assert_awaited_once_with("feed:first_page")


def test_redis_failures_read_as_miss():
    cache = RedisFeedPageCache()
    cache.client = AsyncMock()
    cache.client.get.side_effect = ConnectionError("redis down")

    assert asyncio.run(cache.get()) is None


def test_redis_cache_without_connection():
    cache = RedisFeedPageCache()

    assert cache.is_connected is False
    assert asyncio.run(cache.get()) is None
    assert asyncio.run(cache.set(_page())) is False
