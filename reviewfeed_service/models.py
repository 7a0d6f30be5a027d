"""
Domain models - Core business entities
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from enum import Enum


class Visibility(str, Enum):
    """Review visibility"""
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass
class ReviewRecord:
    """One user's rating of one dish, normalized once at ingestion"""
    id: str
    user_id: str
    dish_name: str
    rating: float
    created_at: datetime
    restaurant_id: Optional[str] = None
    menu_item_id: Optional[str] = None
    visit_id: Optional[str] = None
    restaurant_name: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    visit_photos: List[str] = field(default_factory=list)
    is_deleted: bool = False
    visibility: Visibility = Visibility.PUBLIC
    caption: Optional[str] = None
    price: Optional[str] = None
    location: Optional[str] = None
    visited_times: Optional[int] = None
    taste: Dict[str, str] = field(default_factory=dict)
    audience: List[str] = field(default_factory=list)

    @property
    def group_key(self) -> str:
        """Id of the feed post this record belongs to"""
        return self.visit_id or self.id


@dataclass
class VisitGrouping:
    """Partition of records into multi-dish visits and standalone reviews"""
    visits: Dict[str, List[ReviewRecord]] = field(default_factory=dict)
    standalone: List[ReviewRecord] = field(default_factory=list)

    def groups(self) -> List[List[ReviewRecord]]:
        """All groups, visits first, each standalone record as a singleton"""
        return list(self.visits.values()) + [[record] for record in self.standalone]

    def record_count(self) -> int:
        return sum(len(members) for members in self.visits.values()) + len(self.standalone)


@dataclass
class ScoredReview:
    """Input to the quality score calculator"""
    rating: float
    category: Optional[str] = None


@dataclass
class RestaurantInfo:
    """Restaurant document as resolved from the store"""
    id: str
    name: str
    verified: bool = False
    quality_score: Optional[int] = None
    cuisine: Optional[str] = None


@dataclass
class UserProfile:
    """User profile as resolved from the user service"""
    id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    verified: bool = False


@dataclass
class ChangeBatch:
    """One emission of the live review subscription"""
    added: List[dict] = field(default_factory=list)
    modified: List[dict] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    is_initial: bool = False

    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.removed)
