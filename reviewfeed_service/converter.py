"""
Feed post converter - turns visit groups into display-ready FeedPosts
"""
from typing import Collection, Dict, List, Optional, Set, Tuple
from urllib.parse import quote
import asyncio
import math
import logging

from .config import settings
from .grouping import group_by_visit
from .lookups import UNKNOWN_RESTAURANT, AuthorLookup, RestaurantLookup, placeholder_author
from .models import RestaurantInfo, ReviewRecord
from .schemas import (
    AuthorSnapshot,
    CarouselItem,
    DishSnapshot,
    FeedPost,
    MediaItem,
    RestaurantSnapshot,
)

logger = logging.getLogger(__name__)

# Structured taste attributes -> display labels; unmapped levels are dropped
TASTE_LABELS: Dict[str, Dict[str, str]] = {
    "value": {
        "overpriced": "Overpriced",
        "fair": "Fair value",
        "bargain": "Bargain",
    },
    "freshness": {
        "not_fresh": "Not fresh",
        "just_right": "Fresh",
        "very_fresh": "Very fresh",
    },
    "saltiness": {
        "needs_more_salt": "Needs more salt",
        "balanced": "Balanced",
        "too_salty": "Too salty",
    },
}

AUDIENCE_LABELS: Dict[str, str] = {
    "spicy_lovers": "Spicy lovers",
    "date_night": "Date night",
    "family": "Family meal",
    "quick_bite": "Quick bite",
    "solo": "Solo treat",
    "group": "Group hang",
}


def extract_tags(record: ReviewRecord) -> Tuple[List[str], List[str]]:
    """Taste chips and audience tags for a record"""
    taste_chips = []
    for attribute, labels in TASTE_LABELS.items():
        label = labels.get(record.taste.get(attribute))
        if label:
            taste_chips.append(label)

    audience_tags = [AUDIENCE_LABELS[a] for a in record.audience if a in AUDIENCE_LABELS]
    return taste_chips, audience_tags


def placeholder_image(dish_name: str) -> str:
    return settings.PLACEHOLDER_DISH_IMAGE_URL.format(dish=quote(dish_name or "food", safe=""))


def dish_image(record: ReviewRecord) -> str:
    """First photo of the record, or a placeholder keyed by dish name"""
    for url in record.images:
        if url:
            return url
    return placeholder_image(record.dish_name)


def display_rating(rating: float) -> Optional[float]:
    """Rating as shown on a post; None for unusable (NaN) ratings"""
    return rating if math.isfinite(rating) else None


def _rank(record: ReviewRecord) -> float:
    return record.rating if math.isfinite(record.rating) else -math.inf


def visit_average(members: List[ReviewRecord]) -> Optional[float]:
    """Mean of the usable member ratings"""
    ratings = [r.rating for r in members if math.isfinite(r.rating)]
    return sum(ratings) / len(ratings) if ratings else None


def primary_review(members: List[ReviewRecord]) -> ReviewRecord:
    """Highest rated member; ties keep input order"""
    return sorted(members, key=_rank, reverse=True)[0]


def assemble_media(members: List[ReviewRecord]) -> List[MediaItem]:
    """Ordered, URL-deduplicated media strip for a group.

    Visit-level photos come first, then one photo per dish in record order.
    Without any visit-level photo the first dish photo is promoted to the
    visit slot and dropped from the dish list.
    """
    claimed: Set[str] = set()

    visit_items: List[MediaItem] = []
    for record in members:
        for url in record.visit_photos:
            if url and url not in claimed:
                claimed.add(url)
                visit_items.append(MediaItem(kind="visit", url=url))

    dish_items: List[MediaItem] = []
    for record in members:
        url = next((u for u in record.images if u), None)
        if url and url not in claimed:
            claimed.add(url)
            dish_items.append(
                MediaItem(
                    kind="dish",
                    url=url,
                    review_id=record.id,
                    dish_name=record.dish_name,
                    rating=display_rating(record.rating),
                )
            )

    if not visit_items and dish_items:
        promoted = dish_items.pop(0)
        visit_items.append(promoted.model_copy(update={"kind": "visit"}))

    return [item for item in visit_items + dish_items if item.url]


def carousel_item(record: ReviewRecord) -> CarouselItem:
    taste_chips, audience_tags = extract_tags(record)
    return CarouselItem(
        id=record.id,
        dish_id=record.menu_item_id,
        dish=DishSnapshot(
            name=record.dish_name,
            image=dish_image(record),
            rating=display_rating(record.rating),
            visit_count=record.visited_times,
        ),
        created_at=record.created_at,
        caption=record.caption,
        taste_chips=taste_chips,
        audience_tags=audience_tags,
        tags=list(record.tags),
        price=record.price,
    )


def restaurant_snapshot(record: ReviewRecord, restaurant: Optional[RestaurantInfo]) -> RestaurantSnapshot:
    if restaurant is None:
        return RestaurantSnapshot(
            id=record.restaurant_id,
            name=record.restaurant_name or UNKNOWN_RESTAURANT,
        )
    return RestaurantSnapshot(
        id=record.restaurant_id,
        name=restaurant.name if restaurant.name != UNKNOWN_RESTAURANT else (record.restaurant_name or restaurant.name),
        verified=restaurant.verified,
        quality_score=restaurant.quality_score,
    )


def decorate_following(posts: List[FeedPost], following_ids: Optional[Collection[str]]) -> List[FeedPost]:
    """Copies of ``posts`` with ``is_following_author`` set for the viewer"""
    following = set(following_ids or ())
    return [post.model_copy(update={"is_following_author": post.user_id in following}) for post in posts]


class FeedPostConverter:
    """Maps visit groups onto FeedPosts, resolving authors and restaurants
    through the lookup caches.

    Lookup failures and timeouts fall back to placeholders; conversion never
    raises for missing collaborator data.
    """

    def __init__(
        self,
        restaurant_lookup: RestaurantLookup,
        author_lookup: AuthorLookup,
        lookup_timeout: float = None,
    ):
        self.restaurant_lookup = restaurant_lookup
        self.author_lookup = author_lookup
        self.lookup_timeout = lookup_timeout if lookup_timeout is not None else settings.LOOKUP_TIMEOUT_SECONDS

    async def _resolve_author(self, user_id: str) -> AuthorSnapshot:
        try:
            return await asyncio.wait_for(self.author_lookup.get_author(user_id), self.lookup_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out resolving author {user_id}")
        except Exception as e:
            logger.warning(f"Failed to fetch user profile {user_id}: {e}")
        return placeholder_author(user_id)

    async def _resolve_restaurant(self, restaurant_id: Optional[str]) -> Optional[RestaurantInfo]:
        try:
            return await asyncio.wait_for(
                self.restaurant_lookup.get_restaurant(restaurant_id), self.lookup_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timed out resolving restaurant {restaurant_id}")
        except Exception as e:
            logger.warning(f"Failed to fetch restaurant {restaurant_id}: {e}")
        return None

    async def to_feed_post(self, members: List[ReviewRecord]) -> FeedPost:
        """Convert one visit group (or a singleton standalone review)"""
        if not members:
            raise ValueError("Cannot convert an empty group")

        main = primary_review(members)
        is_visit = main.visit_id is not None
        is_carousel = len(members) > 1

        author, restaurant = await asyncio.gather(
            self._resolve_author(main.user_id),
            self._resolve_restaurant(main.restaurant_id),
        )

        if is_visit:
            average = visit_average(members)
            primary_rating = round(average, 1) if average is not None else None
        else:
            average = None
            primary_rating = display_rating(main.rating)
        taste_chips, audience_tags = extract_tags(main)

        return FeedPost(
            id=main.group_key,
            visit_id=main.visit_id,
            user_id=main.user_id,
            restaurant_id=main.restaurant_id,
            dish_id=main.menu_item_id,
            is_carousel=is_carousel,
            author=author,
            restaurant=restaurant_snapshot(main, restaurant),
            primary_dish=DishSnapshot(
                name=f"{len(members)} dishes" if is_carousel else main.dish_name,
                image=dish_image(main),
                rating=primary_rating,
                visit_count=main.visited_times,
            ),
            visit_average_rating=average,
            dish_count=len(members),
            media_items=assemble_media(members),
            carousel_items=(
                [carousel_item(r) for r in sorted(members, key=_rank, reverse=True)]
                if is_carousel
                else []
            ),
            created_at=main.created_at,
            caption=main.caption,
            taste_chips=taste_chips,
            audience_tags=audience_tags,
            tags=list(main.tags),
            price=main.price,
            location=main.location,
            review_ids=[r.id for r in members],
        )

    async def convert_groups(self, groups: List[List[ReviewRecord]]) -> List[FeedPost]:
        """Convert groups concurrently, newest first"""
        posts = await asyncio.gather(*(self.to_feed_post(members) for members in groups))
        return sorted(posts, key=lambda p: p.created_at, reverse=True)

    async def convert_batch(self, records: List[ReviewRecord]) -> List[FeedPost]:
        """Group records by visit and convert every group, newest first"""
        grouping = group_by_visit(records)
        posts = await self.convert_groups(grouping.groups())
        logger.info(
            f"Converted {grouping.record_count()} reviews into {len(posts)} feed posts "
            f"({len(grouping.visits)} visits, {len(grouping.standalone)} standalone)"
        )
        return posts
