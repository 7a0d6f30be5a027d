"""
Pydantic schemas for Review Feed Service
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime


# User schema (from auth token)
class User(BaseModel):
    """Authenticated viewer"""
    id: str
    username: str
    email: Optional[str] = None


# Feed post schemas
class AuthorSnapshot(BaseModel):
    """Denormalized author shown on a post"""
    id: str
    display_name: str
    username: str
    avatar_url: str
    verified: bool = False


class RestaurantSnapshot(BaseModel):
    """Denormalized restaurant shown on a post"""
    id: Optional[str] = None
    name: str
    verified: bool = False
    quality_score: Optional[int] = None


class DishSnapshot(BaseModel):
    """Dish name, hero image and rating; rating is null when the review has none usable"""
    name: str
    image: str
    rating: Optional[float] = None
    visit_count: Optional[int] = None


class MediaItem(BaseModel):
    """One entry of a post's media strip"""
    kind: Literal["visit", "dish"]
    url: str
    review_id: Optional[str] = None
    dish_name: Optional[str] = None
    rating: Optional[float] = None


class CarouselItem(BaseModel):
    """One dish of a multi-dish visit"""
    id: str
    dish_id: Optional[str] = None
    dish: DishSnapshot
    created_at: datetime
    caption: Optional[str] = None
    taste_chips: List[str] = Field(default_factory=list)
    audience_tags: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    price: Optional[str] = None


class FeedPost(BaseModel):
    """Display-ready feed entry derived from one visit or one standalone review"""
    id: str
    visit_id: Optional[str] = None
    user_id: str
    restaurant_id: Optional[str] = None
    dish_id: Optional[str] = None
    is_carousel: bool = False
    author: AuthorSnapshot
    restaurant: RestaurantSnapshot
    primary_dish: DishSnapshot
    visit_average_rating: Optional[float] = None
    dish_count: int = 1
    media_items: List[MediaItem] = Field(default_factory=list)
    carousel_items: List[CarouselItem] = Field(default_factory=list)
    created_at: datetime
    caption: Optional[str] = None
    taste_chips: List[str] = Field(default_factory=list)
    audience_tags: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    price: Optional[str] = None
    location: Optional[str] = None
    review_ids: List[str] = Field(default_factory=list)
    is_following_author: bool = False


FeedSource = Literal["cache", "server", "live"]
FeedStatus = Literal["ok", "empty", "error", "timeout"]


class FeedResponse(BaseModel):
    """Feed page with pagination"""
    items: List[FeedPost]
    has_more: bool = False
    next_cursor: Optional[str] = None
    source: FeedSource = "server"
    status: FeedStatus = "ok"
    error: Optional[str] = None


class LiveFeedResponse(BaseModel):
    """Current state of the live-synchronized feed"""
    items: List[FeedPost]
    version: int
    state: str


class QualityScoreResponse(BaseModel):
    """Quality score for a restaurant; null means no score available"""
    restaurant_id: str
    quality_score: Optional[int] = None


class VisitedRestaurant(BaseModel):
    """One restaurant in a user's dining history"""
    id: str
    name: str
    cuisine: Optional[str] = None
    visit_count: int
    total_reviews: int
    average_rating: Optional[float] = None
    last_visit: datetime


class CacheStatsResponse(BaseModel):
    """Hit/miss statistics of the lookup caches"""
    restaurants: Dict[str, Any]
    profiles: Dict[str, Any]
