"""
Live review feed

New reviews are stored through the repository and then fanned out to every
subscriber (one per active navigation session) so safety alerts can react
without polling.
"""

import logging
from datetime import datetime
from typing import List, Optional, Set

from ..models.domain import Review
from .position_stream import Channel

logger = logging.getLogger(__name__)


class ReviewSubscription(Channel[Review]):
    def __init__(self, feed: "ReviewFeed"):
        super().__init__()
        self._feed = feed

    def close(self):
        self._feed._subscribers.discard(self)
        super().close()


class ReviewFeed:
    def __init__(self, repository=None):
        self.repository = repository
        self._subscribers: Set[ReviewSubscription] = set()

    def subscribe(self) -> ReviewSubscription:
        subscription = ReviewSubscription(self)
        self._subscribers.add(subscription)
        return subscription

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, review: Review) -> int:
        delivered = 0
        for subscription in list(self._subscribers):
            if subscription.push(review):
                delivered += 1
        logger.debug(f"Review {review.review_id} delivered to {delivered} subscriber(s)")
        return delivered

    async def ingest(self, review: Review, place_type: str = "other") -> bool:
        """Persist then publish. A review id seen before is a no-op."""
        if self.repository is not None:
            stored = await self.repository.add_review(review, place_type=place_type)
            if not stored:
                return False
        self.publish(review)
        return True

    async def recent(self, since: datetime, limit: int = 200) -> List[Review]:
        if self.repository is None:
            return []
        return await self.repository.recent_reviews(since, limit=limit)

    def close(self):
        for subscription in list(self._subscribers):
            subscription.close()
