"""
Feed buffer - the ordered, versioned output of the aggregation pipeline
"""
from typing import Dict, Iterable, List, Optional
import logging

from .schemas import FeedPost

logger = logging.getLogger(__name__)


class FeedBuffer:
    """Ordered FeedPosts with a monotonic version.

    Every mutation bumps ``version``. Writers that computed their posts from
    an older view pass ``expected_version`` and are rejected if the buffer
    has moved since.
    """

    def __init__(self):
        self._posts: List[FeedPost] = []
        self.version = 0

    def __len__(self) -> int:
        return len(self._posts)

    def snapshot(self) -> List[FeedPost]:
        return list(self._posts)

    def ids(self) -> List[str]:
        return [post.id for post in self._posts]

    def get(self, post_id: str) -> Optional[FeedPost]:
        return next((post for post in self._posts if post.id == post_id), None)

    def replace(self, posts: List[FeedPost], expected_version: Optional[int] = None) -> bool:
        """Swap in a full snapshot; False when ``expected_version`` is stale"""
        if expected_version is not None and expected_version != self.version:
            logger.info(
                f"Discarding stale feed snapshot (expected version {expected_version}, "
                f"buffer at {self.version})"
            )
            return False
        self._posts = list(posts)
        self.version += 1
        return True

    def remove(self, post_ids: Iterable[str]) -> int:
        doomed = set(post_ids)
        kept = [post for post in self._posts if post.id not in doomed]
        removed = len(self._posts) - len(kept)
        if removed:
            self._posts = kept
            self.version += 1
        return removed

    def update(self, posts: Dict[str, FeedPost]) -> int:
        """Swap posts in place by id; ids not in the buffer are ignored"""
        updated = 0
        for index, post in enumerate(self._posts):
            replacement = posts.get(post.id)
            if replacement is not None:
                self._posts[index] = replacement
                updated += 1
        if updated:
            self.version += 1
        return updated

    def prepend(self, posts: List[FeedPost]) -> None:
        if not posts:
            return
        self._posts = list(posts) + self._posts
        self.version += 1
