"""
Review document store - contracts and the MongoDB implementation
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import base64
import binascii
import logging

from bson import ObjectId, json_util
from bson.errors import InvalidId
from pymongo.errors import OperationFailure, PyMongoError

from .database import MongoDB
from .exceptions import InvalidCursorError, StoreAuthError, StoreError, StoreUnavailableError
from .models import ChangeBatch

logger = logging.getLogger(__name__)

# MongoDB server error codes for Unauthorized / AuthenticationFailed
_AUTH_ERROR_CODES = {13, 18}

FEED_SORT = [("createdAt", -1), ("_id", -1)]


class ReviewSubscription(ABC):
    """Live review subscription: an initial snapshot batch, then change batches"""

    def __aiter__(self):
        return self

    @abstractmethod
    async def __anext__(self) -> ChangeBatch:
        """Wait for the next batch"""

    @abstractmethod
    async def close(self) -> None:
        """Stop the subscription and release its resources"""


class ReviewStore(ABC):
    """Document store holding reviews, restaurants and menu items.

    Read methods raise StoreUnavailableError for recoverable failures and
    StoreAuthError when the session itself is invalid.
    """

    @abstractmethod
    async def query_reviews(
        self,
        limit: Optional[int],
        cursor: Optional[str] = None,
        author_id: Optional[str] = None,
        restaurant_id: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Raw review documents, newest first, and a cursor past the last one.

        The returned cursor is None once the query is exhausted.
        """

    @abstractmethod
    def cursor_for(self, document: Dict[str, Any]) -> str:
        """Opaque cursor that continues right after ``document``"""

    @abstractmethod
    async def get_restaurant(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        """Restaurant document by id"""

    @abstractmethod
    async def get_menu_item(self, menu_item_id: str) -> Optional[Dict[str, Any]]:
        """Menu item document by id"""

    @abstractmethod
    async def update_restaurant_quality_score(self, restaurant_id: str, score: Optional[int]) -> None:
        """Write a recomputed quality score back to the restaurant document"""

    @abstractmethod
    def watch_reviews(self, limit: int) -> ReviewSubscription:
        """Subscribe to the feed query"""


def translate_error(error: PyMongoError) -> StoreError:
    """Map a driver error onto the store error taxonomy"""
    if isinstance(error, OperationFailure) and error.code in _AUTH_ERROR_CODES:
        return StoreAuthError(str(error))
    return StoreUnavailableError(str(error))


def _document_id(value: str) -> Any:
    return ObjectId(value) if ObjectId.is_valid(value) else value


def encode_cursor(document: Dict[str, Any]) -> str:
    payload = json_util.dumps({"createdAt": document.get("createdAt"), "_id": document.get("_id")})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Dict[str, Any]:
    try:
        payload = json_util.loads(base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8"))
    except (ValueError, TypeError, binascii.Error, UnicodeError, InvalidId) as e:
        raise InvalidCursorError(f"Invalid cursor: {cursor!r}") from e

    if not isinstance(payload, dict) or "_id" not in payload:
        raise InvalidCursorError(f"Invalid cursor: {cursor!r}")
    return payload


class MongoReviewSubscription(ReviewSubscription):
    """Initial query snapshot followed by a MongoDB change stream"""

    def __init__(self, store: "MongoReviewStore", limit: int):
        self.store = store
        self.limit = limit
        self._stream = None
        self._snapshot_sent = False
        self._closed = False

    async def __anext__(self) -> ChangeBatch:
        if self._closed:
            raise StopAsyncIteration

        try:
            if not self._snapshot_sent:
                # Open the stream before the snapshot query so no change falls in between
                self._stream = self.store.db.reviews_collection.watch(full_document="updateLookup")
                documents, _ = await self.store.query_reviews(self.limit)
                self._snapshot_sent = True
                return ChangeBatch(added=documents, is_initial=True)

            batch = ChangeBatch()
            self._apply(batch, await self._stream.next())
            # Drain whatever else is already available into the same batch
            while True:
                change = await self._stream.try_next()
                if change is None:
                    break
                self._apply(batch, change)
            return batch
        except StopAsyncIteration:
            self._closed = True
            raise
        except PyMongoError as e:
            raise translate_error(e) from e

    @staticmethod
    def _apply(batch: ChangeBatch, change: Dict[str, Any]) -> None:
        operation = change.get("operationType")
        document = change.get("fullDocument")

        if operation == "insert" and document:
            batch.added.append(document)
        elif operation in ("update", "replace") and document:
            batch.modified.append(document)
        elif operation == "delete":
            batch.removed.append(str(change["documentKey"]["_id"]))
        else:
            logger.debug(f"Ignoring change stream event: {operation}")

    async def close(self) -> None:
        self._closed = True
        if self._stream is not None:
            try:
                await self._stream.close()
            except PyMongoError as e:
                logger.warning(f"Failed to close change stream: {e}")
            self._stream = None


class MongoReviewStore(ReviewStore):
    """ReviewStore backed by MongoDB collections"""

    def __init__(self, db: MongoDB):
        self.db = db

    async def query_reviews(
        self,
        limit: Optional[int],
        cursor: Optional[str] = None,
        author_id: Optional[str] = None,
        restaurant_id: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        query: Dict[str, Any] = {}
        if author_id:
            query["userId"] = author_id
        if restaurant_id:
            query["restaurantId"] = restaurant_id
        if cursor:
            position = decode_cursor(cursor)
            query["$or"] = [
                {"createdAt": {"$lt": position.get("createdAt")}},
                {"createdAt": position.get("createdAt"), "_id": {"$lt": position["_id"]}},
            ]

        try:
            find_cursor = self.db.reviews_collection.find(query).sort(FEED_SORT)
            if limit:
                find_cursor = find_cursor.limit(limit)
            documents = await find_cursor.to_list(length=limit)
        except PyMongoError as e:
            raise translate_error(e) from e

        next_cursor = None
        if limit and documents and len(documents) >= limit:
            next_cursor = self.cursor_for(documents[-1])
        return documents, next_cursor

    def cursor_for(self, document: Dict[str, Any]) -> str:
        return encode_cursor(document)

    async def get_restaurant(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.db.restaurants_collection.find_one({"_id": _document_id(restaurant_id)})
        except PyMongoError as e:
            raise translate_error(e) from e

    async def get_menu_item(self, menu_item_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.db.menu_items_collection.find_one({"_id": _document_id(menu_item_id)})
        except PyMongoError as e:
            raise translate_error(e) from e

    async def update_restaurant_quality_score(self, restaurant_id: str, score: Optional[int]) -> None:
        try:
            await self.db.restaurants_collection.update_one(
                {"_id": _document_id(restaurant_id)},
                {"$set": {"qualityScore": score, "updatedAt": datetime.now(timezone.utc)}},
            )
        except PyMongoError as e:
            raise translate_error(e) from e

    def watch_reviews(self, limit: int) -> ReviewSubscription:
        return MongoReviewSubscription(self, limit)
