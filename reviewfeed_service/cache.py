"""
Single-slot cache for the feed's first page
"""
import redis.asyncio as redis
from abc import ABC, abstractmethod
from typing import Callable, Optional
import logging
import json
import time

from pydantic import ValidationError

from .config import settings
from .schemas import FeedResponse

logger = logging.getLogger(__name__)


class FeedPageCache(ABC):
    """Holds the last server-authoritative first page of the feed"""

    @abstractmethod
    async def get(self) -> Optional[FeedResponse]:
        """Cache-only read; None when empty, expired or unavailable"""

    @abstractmethod
    async def set(self, page: FeedResponse) -> bool:
        """Replace the cached page"""

    @abstractmethod
    async def clear(self) -> bool:
        """Drop the cached page"""


class InMemoryFeedPageCache(FeedPageCache):
    """Process-local slot, used when Redis is disabled"""

    def __init__(self, ttl_seconds: float = None, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.FEED_PAGE_CACHE_TTL_SECONDS
        self.clock = clock
        self._page: Optional[FeedResponse] = None
        self._stored_at: float = 0.0

    async def get(self) -> Optional[FeedResponse]:
        if self._page is None:
            return None
        if self.clock() - self._stored_at >= self.ttl_seconds:
            self._page = None
            return None
        return self._page.model_copy(deep=True)

    async def set(self, page: FeedResponse) -> bool:
        self._page = page.model_copy(deep=True)
        self._stored_at = self.clock()
        return True

    async def clear(self) -> bool:
        self._page = None
        return True


class RedisFeedPageCache(FeedPageCache):
    """Redis-backed slot shared by every worker of the service"""

    def __init__(self, key: str = "feed:first_page"):
        self.key = key
        self.client: Optional[redis.Redis] = None

    async def connect(self):
        """Connect to Redis"""
        if not settings.REDIS_ENABLED:
            logger.warning("Redis is disabled")
            return

        try:
            self.client = await redis.from_url(
                f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}",
                password=settings.REDIS_PASSWORD if settings.REDIS_PASSWORD else None,
                encoding="utf-8",
                decode_responses=True,
            )
            # Test connection
            await self.client.ping()
            logger.info("Redis feed page cache connected successfully")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.client = None

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.client:
            await self.client.close()
            logger.info("Redis feed page cache disconnected")

    @property
    def is_connected(self) -> bool:
        return self.client is not None

    async def get(self) -> Optional[FeedResponse]:
        if not self.client:
            return None

        try:
            data = await self.client.get(self.key)
            if not data:
                return None
            return FeedResponse.model_validate(json.loads(data))
        except (ValueError, ValidationError) as e:
            logger.error(f"Discarding unreadable cached feed page: {e}")
            await self.clear()
            return None
        except Exception as e:
            logger.error(f"Failed to get feed page from cache: {e}")
            return None

    async def set(self, page: FeedResponse) -> bool:
        if not self.client:
            return False

        try:
            await self.client.set(
                self.key,
                page.model_dump_json(),
                ex=settings.FEED_PAGE_CACHE_TTL_SECONDS,
            )
            return True
        except Exception as e:
            logger.error(f"Failed to set feed page cache: {e}")
            return False

    async def clear(self) -> bool:
        if not self.client:
            return False

        try:
            await self.client.delete(self.key)
            return True
        except Exception as e:
            logger.error(f"Failed to clear feed page cache: {e}")
            return False
