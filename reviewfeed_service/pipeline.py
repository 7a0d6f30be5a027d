"""
Wiring of the review aggregation pipeline
"""
from typing import Optional
import logging

from .buffer import FeedBuffer
from .cache import FeedPageCache
from .config import settings
from .converter import FeedPostConverter
from .errors import ErrorChannel
from .fetcher import RecordFetcher
from .kafka_producer import KafkaProducerManager
from .lookups import AuthorLookup, RestaurantLookup
from .memory_cache import ProfileCache, TTLCache
from .scoring import QualityScoreService
from .service import ReviewFeedService
from .service_client import ServiceClient
from .store import ReviewStore
from .sync import DeltaSynchronizer

logger = logging.getLogger(__name__)


class Pipeline:
    """Process-wide pipeline components, built once at startup.

    Caches live here rather than in module globals so every component gets
    them injected.
    """

    def __init__(self):
        self.store: Optional[ReviewStore] = None
        self.error_channel: Optional[ErrorChannel] = None
        self.restaurant_cache: Optional[TTLCache] = None
        self.profile_cache: Optional[ProfileCache] = None
        self.restaurant_lookup: Optional[RestaurantLookup] = None
        self.author_lookup: Optional[AuthorLookup] = None
        self.fetcher: Optional[RecordFetcher] = None
        self.converter: Optional[FeedPostConverter] = None
        self.buffer: Optional[FeedBuffer] = None
        self.synchronizer: Optional[DeltaSynchronizer] = None
        self.feed_service: Optional[ReviewFeedService] = None
        self.quality_service: Optional[QualityScoreService] = None

    def build(
        self,
        store: ReviewStore,
        page_cache: FeedPageCache,
        service_client: ServiceClient,
        kafka_producer: Optional[KafkaProducerManager] = None,
    ):
        """Construct every component around the given collaborators"""
        self.store = store
        self.error_channel = ErrorChannel()
        self.restaurant_cache = TTLCache(settings.RESTAURANT_CACHE_TTL_SECONDS)
        self.profile_cache = ProfileCache(
            max_size=settings.PROFILE_CACHE_MAX_SIZE,
            ttl_seconds=settings.PROFILE_CACHE_TTL_SECONDS,
            access_order=settings.PROFILE_CACHE_ACCESS_ORDER,
        )
        self.restaurant_lookup = RestaurantLookup(store, self.restaurant_cache)
        self.author_lookup = AuthorLookup(service_client, self.profile_cache)
        self.fetcher = RecordFetcher(store, self.error_channel)
        self.converter = FeedPostConverter(self.restaurant_lookup, self.author_lookup)
        self.buffer = FeedBuffer()
        self.synchronizer = DeltaSynchronizer(
            store,
            self.fetcher,
            self.converter,
            self.buffer,
            self.error_channel,
            query_limit=settings.LIVE_FEED_QUERY_LIMIT,
        )
        self.feed_service = ReviewFeedService(
            self.fetcher,
            self.converter,
            page_cache,
            self.restaurant_lookup,
            buffer=self.buffer,
            synchronizer=self.synchronizer,
        )
        self.quality_service = QualityScoreService(self.fetcher, self.restaurant_lookup, kafka_producer)
        return self

    async def start(self):
        if settings.LIVE_FEED_ENABLED:
            await self.synchronizer.start()
        else:
            logger.warning("Live feed is disabled")

    async def stop(self):
        if self.synchronizer:
            await self.synchronizer.unsubscribe()
        if self.feed_service:
            await self.feed_service.close()


# Global pipeline instance
pipeline = Pipeline()


async def get_pipeline() -> Pipeline:
    """Dependency for getting the pipeline instance"""
    return pipeline
