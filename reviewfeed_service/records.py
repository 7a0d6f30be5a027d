"""
Ingestion-time normalization of raw review documents

Review documents in the store carry several legacy shapes (renamed fields,
two image layouts, five timestamp encodings). Everything is folded into a
single ReviewRecord here so nothing downstream branches on document shape.
"""
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional
import logging
import math

from .models import ReviewRecord, Visibility

logger = logging.getLogger(__name__)

TASTE_ATTRIBUTES = ("value", "freshness", "saltiness")

# Accessors exposed by native store timestamp objects
_TIMESTAMP_CONVERTERS = ("to_datetime", "as_datetime", "ToDatetime", "toDate")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_timestamp(value: Any, now: Optional[datetime] = None) -> datetime:
    """Fold any stored time representation into one aware UTC instant.

    Missing or unparseable values resolve to ``now``.
    """
    fallback = now or _utcnow()

    if value is None or value == "":
        return fallback

    if isinstance(value, datetime):
        return _as_utc(value)

    for attr in _TIMESTAMP_CONVERTERS:
        converter = getattr(value, attr, None)
        if callable(converter):
            try:
                converted = converter()
            except (TypeError, ValueError, OverflowError) as e:
                logger.warning(f"Failed to convert store timestamp {value!r}: {e}")
                return fallback
            if isinstance(converted, datetime):
                return _as_utc(converted)
            return fallback

    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        nanoseconds = value.get("nanoseconds", value.get("_nanoseconds"))
        if _is_number(seconds) and _is_number(nanoseconds):
            millis = seconds * 1000 + math.floor(nanoseconds / 1e6)
            return _from_epoch_millis(millis, fallback)
        logger.warning(f"Unknown timestamp mapping, using current time: {value!r}")
        return fallback

    if _is_number(value):
        return _from_epoch_millis(value, fallback)

    if isinstance(value, str):
        try:
            return _as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            logger.warning(f"Failed to parse date string: {value!r}")
            return fallback

    logger.warning(f"Unknown date format, using current time: {value!r}")
    return fallback


def _from_epoch_millis(millis: float, fallback: datetime) -> datetime:
    if not math.isfinite(millis):
        return fallback
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning(f"Epoch milliseconds out of range: {millis}")
        return fallback


def normalize_token(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace"""
    kept = "".join(ch for ch in text.lower().strip() if ch.isalnum() or ch.isspace())
    return " ".join(kept.split())


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if _is_number(value):
        return str(value)
    return None


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str)]


def _coerce_rating(value: Any) -> float:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return math.nan
    return math.nan


def _as_true(value: Any) -> bool:
    return value is True or value == "true"


def is_malformed(raw: Mapping[str, Any]) -> bool:
    """Documents that look like store metadata or lack identifying fields"""
    if raw.get("_methodName"):
        return True
    if not raw.get("dish") and not raw.get("dishName"):
        return True
    if not raw.get("userId"):
        return True
    raw_id = raw.get("id") or raw.get("_id")
    return raw_id is None or not str(raw_id).strip()


def normalize_record(raw: Mapping[str, Any], now: Optional[datetime] = None) -> Optional[ReviewRecord]:
    """Build the canonical ReviewRecord, or None for a malformed document"""
    if is_malformed(raw):
        return None

    raw_id = raw.get("id") or raw.get("_id")
    media = raw.get("media") if isinstance(raw.get("media"), Mapping) else {}

    photos = _str_list(media.get("photos"))
    images = photos if photos else _str_list(raw.get("images"))
    visit_photos = _str_list(media.get("visitPhotos")) or _str_list(raw.get("visitPhotos"))

    created_raw = raw.get("createdAt")
    if created_raw is None:
        created_raw = raw.get("createdAtMs")

    taste = {}
    raw_taste = raw.get("taste")
    if isinstance(raw_taste, Mapping):
        for attribute in TASTE_ATTRIBUTES:
            entry = raw_taste.get(attribute)
            if isinstance(entry, Mapping) and isinstance(entry.get("level"), str):
                taste[attribute] = entry["level"]

    outcome = raw.get("outcome")
    audience = _str_list(outcome.get("audience")) if isinstance(outcome, Mapping) else []

    visited_times = raw.get("visitedTimes")

    return ReviewRecord(
        id=str(raw_id),
        user_id=str(raw.get("userId")),
        dish_name=_clean_str(raw.get("dish")) or _clean_str(raw.get("dishName")) or "Unknown Dish",
        rating=_coerce_rating(raw.get("rating")),
        created_at=normalize_timestamp(created_raw, now),
        restaurant_id=_clean_str(raw.get("restaurantId")),
        menu_item_id=_clean_str(raw.get("menuItemId")),
        visit_id=_clean_str(raw.get("visitId")),
        restaurant_name=_clean_str(raw.get("restaurant")) or _clean_str(raw.get("restaurantName")),
        tags=_str_list(raw.get("tags")),
        images=images,
        visit_photos=visit_photos,
        is_deleted=_as_true(raw.get("isDeleted")),
        visibility=Visibility.PRIVATE if raw.get("visibility") == "private" else Visibility.PUBLIC,
        caption=_clean_str(raw.get("caption")),
        price=_clean_str(raw.get("price")),
        location=_clean_str(raw.get("location")),
        visited_times=int(visited_times) if _is_number(visited_times) and math.isfinite(visited_times) else None,
        taste=taste,
        audience=audience,
    )


def is_feed_visible(record: ReviewRecord) -> bool:
    """Soft-deleted and private records never reach the feed"""
    return not record.is_deleted and record.visibility != Visibility.PRIVATE
