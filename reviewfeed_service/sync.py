"""
Delta synchronizer - patches the feed buffer from the live review subscription
"""
from enum import Enum
from typing import Dict, List, Optional, Set
import asyncio
import logging

from .buffer import FeedBuffer
from .converter import FeedPostConverter
from .errors import ErrorChannel
from .exceptions import StoreError
from .fetcher import RecordFetcher
from .models import ChangeBatch, ReviewRecord
from .records import is_feed_visible, normalize_record
from .schemas import FeedPost
from .store import ReviewStore, ReviewSubscription

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Lifecycle of the synchronizer"""
    UNINITIALIZED = "uninitialized"
    SNAPSHOTTED = "snapshotted"
    STREAMING = "streaming"
    STOPPED = "stopped"


class DeltaSynchronizer:
    """Consume the live review subscription and keep a FeedBuffer current.

    The first batch is converted as a full snapshot. Later batches are
    applied incrementally: removals filter posts out by id, modifications
    re-derive their post in place, additions are prepended. The visible
    source records are kept by id so that a change to one dish of a visit
    re-derives the whole visit post.
    """

    def __init__(
        self,
        store: ReviewStore,
        fetcher: RecordFetcher,
        converter: FeedPostConverter,
        buffer: FeedBuffer,
        error_channel: Optional[ErrorChannel] = None,
        query_limit: int = 50,
    ):
        self.store = store
        self.fetcher = fetcher
        self.converter = converter
        self.buffer = buffer
        self.error_channel = error_channel if error_channel is not None else fetcher.error_channel
        self.query_limit = query_limit
        self.state = SyncState.UNINITIALIZED
        self.records: Dict[str, ReviewRecord] = {}
        self.subscription: Optional[ReviewSubscription] = None
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        """Open the subscription and consume it in a background task"""
        if self.task is not None:
            return
        self.subscription = self.store.watch_reviews(self.query_limit)
        self.task = asyncio.create_task(self._consume())
        logger.info(f"Live feed subscription started (limit={self.query_limit})")

    async def unsubscribe(self):
        """Stop consuming and close the subscription; terminal"""
        self.state = SyncState.STOPPED

        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

        if self.subscription:
            await self.subscription.close()
            self.subscription = None
            logger.info("Live feed subscription closed")

    async def _consume(self):
        try:
            async for batch in self.subscription:
                if self.state == SyncState.STOPPED:
                    break
                await self.apply(batch)
        except asyncio.CancelledError:
            logger.info("Live feed task cancelled")
            raise
        except StoreError as e:
            logger.error(f"Live feed subscription failed: {e}")
            self.error_channel.report("live_feed", e)

    async def apply(self, batch: ChangeBatch) -> bool:
        """Apply one subscription batch; False when it was skipped"""
        if self.state == SyncState.STOPPED:
            return False

        try:
            if self.state == SyncState.UNINITIALIZED:
                await self._apply_snapshot(batch)
                self.state = SyncState.SNAPSHOTTED
            else:
                await self._apply_delta(batch)
                self.state = SyncState.STREAMING
        except Exception as e:
            logger.error(f"Error applying live feed batch: {e}")
            self.error_channel.report("live_feed", e)
            return False
        return True

    async def _apply_snapshot(self, batch: ChangeBatch):
        records = self.fetcher.filter_visible(batch.added)
        posts = await self.converter.convert_batch(records)
        self.records = {record.id: record for record in records}
        self.buffer.replace(posts)
        logger.info(f"Live feed snapshot: {len(posts)} posts from {len(records)} reviews")

    def reseed(
        self,
        records: List[ReviewRecord],
        posts: List[FeedPost],
        expected_version: Optional[int] = None,
    ) -> bool:
        """Replace the buffer with posts read outside the subscription.

        The posts' source records become the known record set, so later
        deltas touching any member of those posts re-derive them. False when
        ``expected_version`` is stale; nothing changes then.
        """
        if not self.buffer.replace(posts, expected_version=expected_version):
            return False
        self.records = {record.id: record for record in records}
        logger.info(f"Live feed reseeded: {len(posts)} posts from {len(records)} reviews")
        return True

    def _members(self, records: Dict[str, ReviewRecord], group_key: str) -> List[ReviewRecord]:
        return [record for record in records.values() if record.group_key == group_key]

    async def _apply_delta(self, batch: ChangeBatch):
        if batch.is_empty():
            return

        records = dict(self.records)
        in_buffer = set(self.buffer.ids())
        removed_ids = set(batch.removed)
        added: List[ReviewRecord] = self.fetcher.filter_visible(batch.added)
        touched: Set[str] = set()

        for document in batch.modified:
            record = normalize_record(document)
            if record is None:
                continue
            if not is_feed_visible(record):
                removed_ids.add(record.id)
                continue

            previous = records.get(record.id)
            if previous is None:
                added.append(record)
                continue
            records[record.id] = record
            touched.update({previous.group_key, record.group_key})

        for record_id in removed_ids:
            previous = records.pop(record_id, None)
            if previous is not None:
                touched.add(previous.group_key)

        new_keys: List[str] = []
        for record in added:
            records[record.id] = record
            if record.group_key in in_buffer or record.group_key in touched:
                touched.add(record.group_key)
            elif record.group_key not in new_keys:
                new_keys.append(record.group_key)

        # Convert everything before touching the buffer so a failure leaves it intact
        dropped_posts = {post_id for post_id in removed_ids if post_id in in_buffer}
        replacements: Dict[str, FeedPost] = {}
        for key in touched:
            members = self._members(records, key)
            if not members:
                dropped_posts.add(key)
            elif key in in_buffer:
                replacements[key] = await self.converter.to_feed_post(members)
            elif key not in new_keys:
                new_keys.append(key)

        new_posts = await self.converter.convert_groups(
            [self._members(records, key) for key in new_keys]
        )

        self.records = records
        self.buffer.remove(dropped_posts - set(replacements))
        self.buffer.update(replacements)
        self.buffer.prepend(new_posts)

        logger.info(
            f"Live feed delta: +{len(new_posts)} posts, ~{len(replacements)} re-derived, "
            f"-{len(dropped_posts - set(replacements))} removed"
        )
