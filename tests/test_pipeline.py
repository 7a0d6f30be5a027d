from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from reviewfeed_service.cache import InMemoryFeedPageCache
from reviewfeed_service.config import settings
from reviewfeed_service.models import ChangeBatch
from reviewfeed_service.pipeline import Pipeline
from reviewfeed_service.sync import SyncState

from conftest import review_doc


@pytest.fixture
def pipeline(store, resolver):
    return Pipeline().build(store, InMemoryFeedPageCache(ttl_seconds=600), resolver)


def _apply(pipeline, *batches):
    async def scenario():
        return [await pipeline.synchronizer.apply(batch) for batch in batches]

    return asyncio.run(scenario())


# ── Wiring ───────────────────────────────────────────────────────────────


def test_feed_service_and_synchronizer_share_one_buffer(pipeline):
    assert len(pipeline.buffer) == 0
    assert pipeline.feed_service.buffer is pipeline.buffer
    assert pipeline.synchronizer.buffer is pipeline.buffer
    assert pipeline.feed_service.synchronizer is pipeline.synchronizer


def test_components_share_the_error_channel(pipeline):
    assert pipeline.fetcher.error_channel is pipeline.error_channel
    assert pipeline.synchronizer.error_channel is pipeline.error_channel
    assert pipeline.feed_service.error_channel is pipeline.error_channel


# ── Live feed through the real wiring ────────────────────────────────────


def test_live_deltas_reach_the_live_feed(pipeline):
    _apply(
        pipeline,
        ChangeBatch(added=[review_doc("r1", 1)], is_initial=True),
        ChangeBatch(added=[review_doc("r2", 2)]),
    )

    live = pipeline.feed_service.live_feed()

    assert [p.id for p in live.items] == ["r2", "r1"]
    assert live.state == "streaming"
    assert live.version == pipeline.buffer.version


def test_soft_deleted_member_leaves_visit_loaded_by_first_page(pipeline, store):
    _apply(pipeline, ChangeBatch(added=[review_doc("s1", 1), review_doc("s2", 2)], is_initial=True))
    store.documents = [
        review_doc("s1", 1),
        review_doc("s2", 2),
        review_doc("a", 10, visitId="v1", rating=9),
        review_doc("b", 11, visitId="v1", rating=6),
    ]

    page = asyncio.run(pipeline.feed_service.get_first_page())
    assert [p.id for p in page.items] == ["v1", "s2", "s1"]
    assert pipeline.buffer.get("v1").review_ids == ["b", "a"]

    _apply(pipeline, ChangeBatch(modified=[review_doc("b", 11, visitId="v1", rating=6, isDeleted=True)]))

    live = pipeline.feed_service.live_feed()
    visit = next(p for p in live.items if p.id == "v1")
    assert visit.review_ids == ["a"]
    assert visit.dish_count == 1
    assert visit.is_carousel is False
    assert all("b" not in p.review_ids for p in live.items)


def test_private_member_after_revalidation_leaves_visit(pipeline, store):
    store.documents = [review_doc("a", 10, visitId="v1"), review_doc("b", 11, visitId="v1")]
    _apply(pipeline, ChangeBatch(added=[], is_initial=True))

    async def scenario():
        await pipeline.feed_service.get_first_page()
        # Cache hit; the background revalidation reseeds the buffer
        await pipeline.feed_service.get_first_page()
        await pipeline.feed_service.wait_for_revalidation()

    asyncio.run(scenario())
    _apply(pipeline, ChangeBatch(modified=[review_doc("a", 10, visitId="v1", visibility="private")]))

    assert pipeline.buffer.get("v1").review_ids == ["b"]
    assert set(pipeline.synchronizer.records) == {"b"}


# ── Lifecycle ────────────────────────────────────────────────────────────


def test_start_and_stop(pipeline, store):
    async def scenario():
        await pipeline.start()
        store.subscription.push(ChangeBatch(added=[review_doc("r1", 1)], is_initial=True))
        for _ in range(200):
            if pipeline.synchronizer.state == SyncState.SNAPSHOTTED:
                break
            await asyncio.sleep(0.01)
        await pipeline.stop()

    asyncio.run(scenario())

    assert pipeline.buffer.ids() == ["r1"]
    assert pipeline.synchronizer.state == SyncState.STOPPED
    assert store.subscription.closed is True


def test_disabled_live_feed_does_not_subscribe(pipeline):
    with patch.object(settings, "LIVE_FEED_ENABLED", False):
        asyncio.run(pipeline.start())

    assert pipeline.synchronizer.task is None
    assert pipeline.synchronizer.state == SyncState.UNINITIALIZED
