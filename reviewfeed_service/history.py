"""
Personal dining history - restaurants a user has reviewed
"""
from typing import Dict, List
import logging
import math

from .lookups import UNKNOWN_RESTAURANT, RestaurantLookup
from .models import ReviewRecord
from .schemas import VisitedRestaurant

logger = logging.getLogger(__name__)

DEFAULT_CUISINE = "Restaurant"


async def summarize_visited_restaurants(
    records: List[ReviewRecord],
    restaurant_lookup: RestaurantLookup,
) -> List[VisitedRestaurant]:
    """One entry per restaurant the user reviewed, most recent visit first.

    Reviews are grouped by restaurant id, falling back to the restaurant's
    display name for reviews logged without one. ``visit_count`` counts
    distinct visits (a multi-dish visit counts once); ``total_reviews``
    counts dishes.
    """
    groups: Dict[str, List[ReviewRecord]] = {}
    for record in records:
        key = record.restaurant_id or record.restaurant_name
        if not key:
            continue
        groups.setdefault(key, []).append(record)

    visited = []
    for key, reviews in groups.items():
        first = reviews[0]
        restaurant = await restaurant_lookup.get_restaurant(first.restaurant_id) if first.restaurant_id else None

        ratings = [r.rating for r in reviews if math.isfinite(r.rating)]
        average = round(sum(ratings) / len(ratings), 1) if ratings else None
        name = first.restaurant_name or UNKNOWN_RESTAURANT
        if restaurant is not None and restaurant.name != UNKNOWN_RESTAURANT:
            name = restaurant.name

        visited.append(
            VisitedRestaurant(
                id=first.restaurant_id or f"manual_{key}",
                name=name,
                cuisine=(restaurant.cuisine if restaurant else None) or DEFAULT_CUISINE,
                visit_count=len({r.group_key for r in reviews}),
                total_reviews=len(reviews),
                average_rating=average,
                last_visit=max(r.created_at for r in reviews),
            )
        )

    visited.sort(key=lambda v: v.last_visit, reverse=True)
    logger.info(f"Summarized {len(records)} reviews into {len(visited)} visited restaurants")
    return visited
