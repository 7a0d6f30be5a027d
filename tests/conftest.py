from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from reviewfeed_service.converter import FeedPostConverter
from reviewfeed_service.errors import ErrorChannel
from reviewfeed_service.exceptions import InvalidCursorError
from reviewfeed_service.fetcher import RecordFetcher
from reviewfeed_service.lookups import AuthorLookup, RestaurantLookup
from reviewfeed_service.memory_cache import ProfileCache, TTLCache
from reviewfeed_service.models import ChangeBatch, UserProfile
from reviewfeed_service.store import ReviewStore, ReviewSubscription

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def review_doc(review_id: str, minutes: int = 0, **fields) -> Dict[str, Any]:
    """Raw review document, ``minutes`` after BASE_TIME"""
    doc = {
        "_id": review_id,
        "userId": "u1",
        "dish": f"Dish {review_id}",
        "rating": 8,
        "restaurantId": "rest1",
        "createdAt": BASE_TIME + timedelta(minutes=minutes),
        "isDeleted": False,
        "visibility": "public",
    }
    doc.update(fields)
    return doc


class FakeSubscription(ReviewSubscription):
    """Subscription fed by the test through ``push``"""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, batch: Optional[ChangeBatch]):
        self.queue.put_nowait(batch)

    async def __anext__(self) -> ChangeBatch:
        if self.closed:
            raise StopAsyncIteration
        batch = await self.queue.get()
        if batch is None:
            raise StopAsyncIteration
        return batch

    async def close(self) -> None:
        self.closed = True


class FakeReviewStore(ReviewStore):
    """In-memory ReviewStore ordered like the real feed query"""

    def __init__(self, documents: List[Dict[str, Any]] = None):
        self.documents: List[Dict[str, Any]] = list(documents or [])
        self.restaurants: Dict[str, Dict[str, Any]] = {}
        self.menu_items: Dict[str, Dict[str, Any]] = {}
        self.saved_scores: Dict[str, Optional[int]] = {}
        self.error: Optional[Exception] = None
        self.query_calls: List[Dict[str, Any]] = []
        self.restaurant_calls = 0
        self.subscription = FakeSubscription()

    def _sorted(self) -> List[Dict[str, Any]]:
        return sorted(self.documents, key=lambda d: (d["createdAt"], d["_id"]), reverse=True)

    async def query_reviews(
        self,
        limit: Optional[int],
        cursor: Optional[str] = None,
        author_id: Optional[str] = None,
        restaurant_id: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        self.query_calls.append(
            {"limit": limit, "cursor": cursor, "author_id": author_id, "restaurant_id": restaurant_id}
        )
        if self.error is not None:
            raise self.error

        documents = self._sorted()
        if author_id:
            documents = [d for d in documents if d.get("userId") == author_id]
        if restaurant_id:
            documents = [d for d in documents if d.get("restaurantId") == restaurant_id]
        if cursor:
            if not cursor.startswith("after:"):
                raise InvalidCursorError(f"Invalid cursor: {cursor!r}")
            ids = [d["_id"] for d in documents]
            after = cursor[len("after:"):]
            documents = documents[ids.index(after) + 1:] if after in ids else []

        if limit:
            page = documents[:limit]
            next_cursor = self.cursor_for(page[-1]) if len(documents) > limit else None
            return page, next_cursor
        return documents, None

    def cursor_for(self, document: Dict[str, Any]) -> str:
        return f"after:{document['_id']}"

    async def get_restaurant(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        self.restaurant_calls += 1
        if self.error is not None:
            raise self.error
        return self.restaurants.get(restaurant_id)

    async def get_menu_item(self, menu_item_id: str) -> Optional[Dict[str, Any]]:
        if self.error is not None:
            raise self.error
        return self.menu_items.get(menu_item_id)

    async def update_restaurant_quality_score(self, restaurant_id: str, score: Optional[int]) -> None:
        if self.error is not None:
            raise self.error
        self.saved_scores[restaurant_id] = score

    def watch_reviews(self, limit: int) -> ReviewSubscription:
        return self.subscription


class FakeProfileResolver:
    """Stands in for ServiceClient.get_user_profile"""

    def __init__(self, profiles: Dict[str, UserProfile] = None):
        self.profiles = profiles or {}
        self.calls: List[str] = []

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        self.calls.append(user_id)
        return self.profiles.get(user_id)


@pytest.fixture
def store():
    return FakeReviewStore()


@pytest.fixture
def resolver():
    return FakeProfileResolver({"u1": UserProfile(id="u1", username="jane", display_name="Jane Doe", verified=True)})


@pytest.fixture
def restaurant_lookup(store):
    return RestaurantLookup(store, TTLCache(300))


@pytest.fixture
def author_lookup(resolver):
    return AuthorLookup(resolver, ProfileCache(max_size=10, ttl_seconds=300))


@pytest.fixture
def converter(restaurant_lookup, author_lookup):
    return FeedPostConverter(restaurant_lookup, author_lookup)


@pytest.fixture
def fetcher(store):
    return RecordFetcher(store, ErrorChannel())
