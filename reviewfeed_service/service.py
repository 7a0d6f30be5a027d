"""
Review Feed Service - Core business logic
"""
from typing import Collection, List, Optional, Tuple
import asyncio
import logging

from .buffer import FeedBuffer
from .cache import FeedPageCache
from .config import settings
from .converter import FeedPostConverter, decorate_following
from .exceptions import StoreError
from .fetcher import RecordFetcher
from .history import summarize_visited_restaurants
from .lookups import RestaurantLookup
from .models import ReviewRecord
from .schemas import FeedResponse, LiveFeedResponse, VisitedRestaurant
from .sync import DeltaSynchronizer, SyncState

logger = logging.getLogger(__name__)

USER_HISTORY_LIMIT = 200


class ReviewFeedService:
    """Review feed with cache-first reconciliation of the first page"""

    def __init__(
        self,
        fetcher: RecordFetcher,
        converter: FeedPostConverter,
        page_cache: FeedPageCache,
        restaurant_lookup: RestaurantLookup,
        buffer: Optional[FeedBuffer] = None,
        synchronizer: Optional[DeltaSynchronizer] = None,
        load_timeout: float = None,
        first_page_size: int = None,
    ):
        self.fetcher = fetcher
        self.converter = converter
        self.page_cache = page_cache
        self.restaurant_lookup = restaurant_lookup
        if buffer is None:
            buffer = synchronizer.buffer if synchronizer is not None else FeedBuffer()
        self.buffer = buffer
        self.synchronizer = synchronizer
        self.load_timeout = load_timeout if load_timeout is not None else settings.FEED_LOAD_TIMEOUT_SECONDS
        self.first_page_size = first_page_size if first_page_size is not None else settings.FIRST_PAGE_SIZE
        self._revalidation: Optional[asyncio.Task] = None

    @property
    def error_channel(self):
        return self.fetcher.error_channel

    async def get_first_page(self, following_ids: Optional[Collection[str]] = None) -> FeedResponse:
        """
        First feed page, stale-while-revalidate

        A non-empty cached page is returned immediately and a server read
        refreshes the cache in the background. Otherwise the server read
        runs inline, bounded by the load timeout.
        """
        cached = await self.page_cache.get()
        if cached is not None and cached.items:
            logger.info(f"Feed cache hit ({len(cached.items)} posts), revalidating in background")
            self._schedule_revalidation()
            return self._for_viewer(cached.model_copy(update={"source": "cache"}), following_ids)

        page = await self._load_first_page()
        return self._for_viewer(page, following_ids)

    async def get_page(
        self,
        limit: int,
        cursor: Optional[str] = None,
        following_ids: Optional[Collection[str]] = None,
    ) -> FeedResponse:
        """A subsequent feed page, straight from the store"""
        page = await self._server_page(limit, cursor)
        return self._for_viewer(page, following_ids)

    async def refresh(self, following_ids: Optional[Collection[str]] = None) -> FeedResponse:
        """Force a server read of the first page, bypassing the cache"""
        page = await self._load_first_page()
        return self._for_viewer(page, following_ids)

    def live_feed(self, following_ids: Optional[Collection[str]] = None, limit: int = None) -> LiveFeedResponse:
        """Current contents of the live-synchronized buffer"""
        limit = limit or settings.LIVE_FEED_EMIT_LIMIT
        state = self.synchronizer.state if self.synchronizer else SyncState.UNINITIALIZED
        return LiveFeedResponse(
            items=decorate_following(self.buffer.snapshot()[:limit], following_ids),
            version=self.buffer.version,
            state=state.value,
        )

    async def get_user_reviews(
        self,
        user_id: str,
        limit: int = None,
        following_ids: Optional[Collection[str]] = None,
    ) -> FeedResponse:
        """A user's own reviews through the same grouping and conversion path"""
        limit = limit or settings.DEFAULT_PAGE_SIZE
        sequence = self.error_channel.sequence
        records = await self.fetcher.fetch_for_user(user_id, limit)
        posts = await self.converter.convert_batch(records)
        page = self._build_page(posts, None, sequence)
        return self._for_viewer(page, following_ids)

    async def get_dining_history(self, user_id: str) -> List[VisitedRestaurant]:
        """Restaurants a user has reviewed, most recent visit first"""
        records = await self.fetcher.fetch_for_user(user_id, USER_HISTORY_LIMIT)
        return await summarize_visited_restaurants(records, self.restaurant_lookup)

    async def wait_for_revalidation(self):
        """Wait for an in-flight background revalidation, if any"""
        if self._revalidation is not None:
            await asyncio.gather(self._revalidation, return_exceptions=True)

    async def close(self):
        if self._revalidation is not None and not self._revalidation.done():
            self._revalidation.cancel()
            await asyncio.gather(self._revalidation, return_exceptions=True)
        self._revalidation = None

    def _schedule_revalidation(self):
        if self._revalidation is not None and not self._revalidation.done():
            return
        self._revalidation = asyncio.create_task(self._revalidate())

    async def _revalidate(self):
        version = self.buffer.version
        try:
            page, records = await asyncio.wait_for(self._server_read(self.first_page_size), self.load_timeout)
        except asyncio.TimeoutError:
            logger.warning("Background feed revalidation timed out")
            return
        except StoreError as e:
            logger.error(f"Background feed revalidation failed: {e}")
            self.error_channel.report("revalidate", e)
            return

        if page.status != "ok":
            return
        # A live delta landed while reading; the server page is already stale
        if not self._replace_buffer(page, records, version):
            return
        await self.page_cache.set(page)
        logger.info(f"Feed cache revalidated with {len(page.items)} posts")

    async def _load_first_page(self) -> FeedResponse:
        version = self.buffer.version
        try:
            page, records = await asyncio.wait_for(self._server_read(self.first_page_size), self.load_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Feed load timed out after {self.load_timeout}s")
            return FeedResponse(
                items=[],
                status="timeout",
                error=f"Feed did not load within {self.load_timeout:g} seconds",
            )

        if page.status == "ok":
            self._replace_buffer(page, records, version)
            await self.page_cache.set(page)
        return page

    def _replace_buffer(self, page: FeedResponse, records: List[ReviewRecord], version: int) -> bool:
        # The synchronizer must learn the page's records to patch its visits later
        if self.synchronizer is not None:
            return self.synchronizer.reseed(records, page.items, expected_version=version)
        return self.buffer.replace(page.items, expected_version=version)

    async def _server_read(
        self, limit: int, cursor: Optional[str] = None
    ) -> Tuple[FeedResponse, List[ReviewRecord]]:
        sequence = self.error_channel.sequence
        records, next_cursor = await self.fetcher.fetch_page(limit, cursor)
        posts = await self.converter.convert_batch(records)
        return self._build_page(posts, next_cursor, sequence), records

    async def _server_page(self, limit: int, cursor: Optional[str] = None) -> FeedResponse:
        page, _ = await self._server_read(limit, cursor)
        return page

    def _build_page(self, posts, next_cursor: Optional[str], sequence: int) -> FeedResponse:
        """Page with a status telling an absorbed failure apart from no data"""
        status = "ok" if posts else "empty"
        error = None
        failures = self.error_channel.errors_since(sequence)
        if failures and not posts:
            status = "error"
            error = failures[-1].message

        return FeedResponse(
            items=posts,
            has_more=next_cursor is not None,
            next_cursor=next_cursor,
            source="server",
            status=status,
            error=error,
        )

    @staticmethod
    def _for_viewer(page: FeedResponse, following_ids: Optional[Collection[str]]) -> FeedResponse:
        if following_ids is None:
            return page
        return page.model_copy(update={"items": decorate_following(page.items, following_ids)})
