"""
Read-through lookups for restaurants, menu items and post authors
"""
from typing import Any, Dict, Optional
import base64
import logging

from .exceptions import StoreError
from .memory_cache import KeyValueCache
from .models import RestaurantInfo, UserProfile
from .records import normalize_token
from .schemas import AuthorSnapshot
from .store import ReviewStore

logger = logging.getLogger(__name__)

UNKNOWN_RESTAURANT = "Unknown Restaurant"


def initials(username: str, display_name: Optional[str] = None) -> str:
    """Two-letter initials, preferring the display name"""
    if display_name and display_name != username:
        names = display_name.split()
        if len(names) >= 2:
            return (names[0][0] + names[1][0]).upper()
        return display_name[:2].upper()
    return username[:2].upper()


def initials_avatar(username: str, display_name: Optional[str] = None, size: int = 150) -> str:
    """Data URI of a round avatar showing the user's initials"""
    svg = (
        f'<svg width="{size}" height="{size}" xmlns="http://www.w3.org/2000/svg">'
        f'<circle cx="{size / 2}" cy="{size / 2}" r="{size / 2}" fill="#EF4444"/>'
        f'<text x="50%" y="50%" dominant-baseline="middle" text-anchor="middle" '
        f'font-family="system-ui, -apple-system, sans-serif" font-size="{size / 3}" '
        f'font-weight="600" fill="#FFFFFF">{initials(username, display_name)}</text>'
        f"</svg>"
    )
    return "data:image/svg+xml;base64," + base64.b64encode(svg.encode("utf-8")).decode("ascii")


def placeholder_author(user_id: Optional[str]) -> AuthorSnapshot:
    """Deterministic stand-in used when the profile cannot be resolved"""
    return AuthorSnapshot(
        id=user_id or "anonymous",
        display_name=user_id or "Anonymous User",
        username=user_id or "anonymous",
        avatar_url=initials_avatar(user_id or "anonymous"),
        verified=False,
    )


def author_from_profile(profile: UserProfile) -> AuthorSnapshot:
    return AuthorSnapshot(
        id=profile.id,
        display_name=profile.display_name or profile.username,
        username=profile.username,
        avatar_url=profile.avatar_url or initials_avatar(profile.username, profile.display_name),
        verified=profile.verified,
    )


def restaurant_from_document(restaurant_id: str, document: Dict[str, Any]) -> RestaurantInfo:
    score = document.get("qualityScore")
    has_score = isinstance(score, (int, float)) and not isinstance(score, bool)
    return RestaurantInfo(
        id=restaurant_id,
        name=document.get("name") or UNKNOWN_RESTAURANT,
        verified=bool(document.get("verified") or document.get("isVerified")),
        quality_score=int(round(score)) if has_score else None,
        cuisine=document.get("cuisine"),
    )


class RestaurantLookup:
    """Restaurant snapshots and menu categories behind the TTL cache"""

    def __init__(self, store: ReviewStore, cache: KeyValueCache):
        self.store = store
        self.cache = cache

    async def get_restaurant(self, restaurant_id: Optional[str]) -> Optional[RestaurantInfo]:
        if not restaurant_id:
            return None

        key = f"restaurant:{restaurant_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            document = await self.store.get_restaurant(restaurant_id)
        except StoreError as e:
            logger.warning(f"Failed to fetch restaurant data: {restaurant_id}: {e}")
            return None

        if not document:
            return None

        restaurant = restaurant_from_document(restaurant_id, document)
        self.cache.set(key, restaurant)
        return restaurant

    async def get_menu_category(self, menu_item_id: Optional[str]) -> Optional[str]:
        """Normalized category of a menu item, None when unknown"""
        if not menu_item_id:
            return None

        key = f"menu:{menu_item_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached or None

        try:
            document = await self.store.get_menu_item(menu_item_id)
        except StoreError as e:
            logger.warning(f"Failed to fetch menu item category: {menu_item_id}: {e}")
            return None

        if not document:
            return None

        raw_category = document.get("category")
        category = normalize_token(raw_category) if isinstance(raw_category, str) else ""
        # Cache "" for items without a category so they are not refetched
        self.cache.set(key, category)
        return category or None

    def invalidate_restaurant(self, restaurant_id: str) -> None:
        self.cache.delete(f"restaurant:{restaurant_id}")


class AuthorLookup:
    """Author snapshots behind the bounded profile cache"""

    def __init__(self, resolver, cache: KeyValueCache):
        self.resolver = resolver
        self.cache = cache

    async def get_author(self, user_id: Optional[str]) -> AuthorSnapshot:
        if not user_id:
            return placeholder_author(None)

        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        profile = await self.resolver.get_user_profile(user_id)
        if profile is None:
            return placeholder_author(user_id)

        author = author_from_profile(profile)
        self.cache.set(user_id, author)
        return author
