"""
Record fetcher - one-shot and paginated review reads
"""
from typing import Any, Dict, List, Optional, Tuple
import logging

from .config import settings
from .errors import ErrorChannel
from .exceptions import StoreUnavailableError
from .models import ReviewRecord
from .records import is_feed_visible, is_malformed, normalize_record
from .store import ReviewStore

logger = logging.getLogger(__name__)


class RecordFetcher:
    """Reads review documents and turns them into visible ReviewRecords.

    Recoverable store failures are reported to the error channel and read as
    zero results; StoreAuthError propagates.
    """

    def __init__(
        self,
        store: ReviewStore,
        error_channel: Optional[ErrorChannel] = None,
        overfetch_factor: int = None,
    ):
        self.store = store
        self.error_channel = error_channel if error_channel is not None else ErrorChannel()
        self.overfetch_factor = overfetch_factor if overfetch_factor is not None else settings.FETCH_OVERFETCH_FACTOR

    async def fetch_page(
        self,
        limit: int,
        cursor: Optional[str] = None,
        author_id: Optional[str] = None,
    ) -> Tuple[List[ReviewRecord], Optional[str]]:
        """One page of feed-visible records and the cursor for the next page.

        Over-fetches by the configured factor to absorb filtering loss, then
        truncates to ``limit``. The next cursor continues right after the
        last raw document consumed.
        """
        if limit < 1:
            return [], None

        try:
            documents, raw_next = await self.store.query_reviews(
                limit * self.overfetch_factor,
                cursor=cursor,
                author_id=author_id,
            )
        except StoreUnavailableError as e:
            logger.error(f"Error fetching reviews: {e}")
            self.error_channel.report("fetch_page", e)
            return [], None

        records: List[ReviewRecord] = []
        last_consumed: Optional[Dict[str, Any]] = None
        for document in documents:
            if len(records) >= limit:
                break
            last_consumed = document
            record = normalize_record(document)
            if record is not None and is_feed_visible(record):
                records.append(record)

        self._log_summary("fetch_page", documents, records)

        if last_consumed is not None and last_consumed is not documents[-1]:
            next_cursor = self.store.cursor_for(last_consumed)
        else:
            next_cursor = raw_next

        return records, next_cursor

    async def fetch_all(self, limit: int) -> List[ReviewRecord]:
        """First ``limit`` feed-visible records"""
        records, _ = await self.fetch_page(limit)
        return records

    async def fetch_for_user(self, user_id: str, limit: int) -> List[ReviewRecord]:
        """A user's own visible reviews, newest first"""
        records, _ = await self.fetch_page(limit, author_id=user_id)
        return records

    async def fetch_for_restaurant(self, restaurant_id: str) -> List[ReviewRecord]:
        """Every non-deleted review of a restaurant, private ones included"""
        try:
            documents, _ = await self.store.query_reviews(None, restaurant_id=restaurant_id)
        except StoreUnavailableError as e:
            logger.error(f"Error fetching reviews for restaurant {restaurant_id}: {e}")
            self.error_channel.report("fetch_for_restaurant", e)
            return []

        records = []
        for document in documents:
            record = normalize_record(document)
            if record is not None and not record.is_deleted:
                records.append(record)
        return records

    def filter_visible(self, documents: List[Dict[str, Any]], limit: Optional[int] = None) -> List[ReviewRecord]:
        """Normalize raw documents and keep feed-visible ones, up to ``limit``"""
        records = []
        for document in documents:
            record = normalize_record(document)
            if record is not None and is_feed_visible(record):
                records.append(record)
        self._log_summary("filter_visible", documents, records)
        return records[:limit] if limit is not None else records

    @staticmethod
    def _log_summary(source: str, documents: List[Dict[str, Any]], records: List[ReviewRecord]):
        valid = [d for d in documents if not is_malformed(d)]
        deleted = sum(1 for d in valid if d.get("isDeleted") in (True, "true"))
        private = sum(1 for d in valid if d.get("visibility") == "private")
        logger.info(
            f"{source}: total={len(documents)}, valid={len(valid)}, "
            f"dropped(deleted={deleted}, private={private}), emitted={len(records)}"
        )
