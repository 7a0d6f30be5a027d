"""
Restaurant quality score

The score is a 0-100 integer derived from every non-deleted review linked to
a restaurant: outliers beyond two standard deviations are trimmed (unless
that would leave too small a sample), ratings are weighted by menu category,
and inconsistent rating sets are penalized by up to 20%.
"""
from typing import Iterable, List, Optional
import logging
import math

from .fetcher import RecordFetcher
from .kafka_producer import KafkaProducerManager
from .lookups import RestaurantLookup
from .models import ScoredReview
from .exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "custom"
DEFAULT_CATEGORY_WEIGHT = 0.8

CATEGORY_WEIGHTS = {
    # Main dishes
    "entrees": 1.0,
    "main course": 1.0,
    "mains": 1.0,
    "entree": 1.0,
    "main": 1.0,
    # Starters
    "appetizers": 0.7,
    "starters": 0.7,
    "small plates": 0.7,
    "appetizer": 0.7,
    "starter": 0.7,
    # Sides and lighter fare
    "sides": 0.5,
    "side": 0.5,
    "salads": 0.6,
    "salad": 0.6,
    "soups": 0.6,
    "soup": 0.6,
    # Desserts
    "desserts": 0.4,
    "dessert": 0.4,
    "sweets": 0.4,
    "sweet": 0.4,
    # Alcoholic beverages
    "cocktails": 0.6,
    "cocktail": 0.6,
    "wine": 0.6,
    "wines": 0.6,
    # Other beverages
    "beer": 0.5,
    "beers": 0.5,
    "coffee": 0.5,
    "tea": 0.4,
    "beverages": 0.3,
    "beverage": 0.3,
    "drinks": 0.3,
    "drink": 0.3,
    # Default categories
    "custom": 0.8,
    "other": 0.8,
}

MAX_CONSISTENCY_PENALTY = 0.2
OUTLIER_STDDEVS = 2
MIN_RETAINED_REVIEWS = 5
MIN_RETAINED_FRACTION = 0.5


def category_weight(category: Optional[str]) -> float:
    """Weight for a menu category; unknown categories weigh 0.8"""
    key = (category or DEFAULT_CATEGORY).strip().lower() or DEFAULT_CATEGORY
    return CATEGORY_WEIGHTS.get(key, DEFAULT_CATEGORY_WEIGHT)


def _is_finite_rating(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def weighted_average(reviews: Iterable[ScoredReview], fallback: float) -> float:
    """Category-weighted mean rating; ``fallback`` when the total weight is zero"""
    total_weight = 0.0
    weighted_sum = 0.0
    for review in reviews:
        weight = category_weight(review.category)
        total_weight += weight
        weighted_sum += review.rating * weight

    return weighted_sum / total_weight if total_weight > 0 else fallback


def calculate_quality_score(reviews: Iterable[ScoredReview]) -> Optional[int]:
    """Compute a restaurant's quality score, or None when there is nothing to score.

    None means "no score available" and must never be read as 0.
    """
    scored = [review for review in reviews if _is_finite_rating(review.rating)]
    if not scored:
        return None

    ratings = [review.rating for review in scored]
    mean = sum(ratings) / len(ratings)
    variance = sum((rating - mean) ** 2 for rating in ratings) / len(ratings)
    std_dev = math.sqrt(variance)

    retained: List[ScoredReview] = [
        review for review in scored
        if abs(review.rating - mean) <= OUTLIER_STDDEVS * std_dev
    ]
    if len(retained) < min(MIN_RETAINED_REVIEWS, len(scored) * MIN_RETAINED_FRACTION):
        retained = scored

    penalty = min(MAX_CONSISTENCY_PENALTY, variance / 10)
    adjusted = weighted_average(retained, fallback=mean) * (1 - penalty)

    if not math.isfinite(adjusted):
        return None

    percentage = round(adjusted / 10 * 100)
    return max(0, min(100, percentage))


class QualityScoreService:
    """Computes, and optionally persists, restaurant quality scores"""

    def __init__(
        self,
        fetcher: RecordFetcher,
        restaurant_lookup: RestaurantLookup,
        kafka_producer: Optional[KafkaProducerManager] = None,
    ):
        self.fetcher = fetcher
        self.restaurant_lookup = restaurant_lookup
        self.kafka_producer = kafka_producer

    async def collect_scored_reviews(self, restaurant_id: str) -> List[ScoredReview]:
        """All non-deleted reviews of a restaurant paired with their menu category"""
        records = await self.fetcher.fetch_for_restaurant(restaurant_id)

        categories = {}
        for menu_item_id in {r.menu_item_id for r in records if r.menu_item_id}:
            categories[menu_item_id] = await self.restaurant_lookup.get_menu_category(menu_item_id)

        return [
            ScoredReview(
                rating=record.rating,
                category=categories.get(record.menu_item_id) or DEFAULT_CATEGORY,
            )
            for record in records
        ]

    async def score_restaurant(self, restaurant_id: str, persist: bool = False) -> Optional[int]:
        """Score a restaurant from its full review set"""
        reviews = await self.collect_scored_reviews(restaurant_id)
        score = calculate_quality_score(reviews)
        logger.info(f"Quality score for restaurant {restaurant_id}: {score} ({len(reviews)} reviews)")

        if persist:
            await self._persist(restaurant_id, score, len(reviews))

        return score

    async def _persist(self, restaurant_id: str, score: Optional[int], review_count: int):
        previous = await self.restaurant_lookup.get_restaurant(restaurant_id)
        previous_score = previous.quality_score if previous is not None else None

        try:
            await self.fetcher.store.update_restaurant_quality_score(restaurant_id, score)
        except StoreUnavailableError as e:
            logger.warning(f"Failed to persist quality score for restaurant {restaurant_id}: {e}")
            self.fetcher.error_channel.report("quality_score", e)
            return

        self.restaurant_lookup.invalidate_restaurant(restaurant_id)

        if self.kafka_producer:
            await self.kafka_producer.publish_quality_score_updated(
                restaurant_id, score, review_count, previous_score=previous_score
            )
