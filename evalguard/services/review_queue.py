"""
Review Queue Service.

Enqueues traces and sessions for human review, at most once each.
"""

from typing import Any, Dict, Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from evalguard.models import ReviewItem, ReviewPriority, ReviewStatus


class ReviewQueue:
    """
    Idempotent review queue.

    A reviewable is any model exposing `owner_type` and `id`
    (Trace, AgentSession).
    """

    def __init__(self, db: Session):
        """
        Initialize review queue.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def find(self, reviewable) -> Optional[ReviewItem]:
        """Return the review item for a reviewable, if any."""
        return (
            self.db.query(ReviewItem)
            .filter(
                ReviewItem.reviewable_type == reviewable.owner_type,
                ReviewItem.reviewable_id == reviewable.id
            )
            .first()
        )

    def in_review_queue(self, reviewable) -> bool:
        return self.find(reviewable) is not None

    def enqueue(
        self,
        reviewable,
        reason: str,
        priority: ReviewPriority = ReviewPriority.NORMAL,
        details: Optional[Dict[str, Any]] = None
    ) -> ReviewItem:
        """
        Enqueue for review, or return the existing review item.

        Args:
            reviewable: Trace or AgentSession
            reason: Machine-readable reason (e.g. "content_moderation")
            priority: Review urgency
            details: Structured context for the reviewer

        Returns:
            The new or existing ReviewItem
        """
        existing = self.find(reviewable)
        if existing is not None:
            return existing

        item = ReviewItem(
            reviewable_type=reviewable.owner_type,
            reviewable_id=reviewable.id,
            reason=reason,
            reason_details=details or {},
            priority=priority,
            status=ReviewStatus.PENDING
        )
        try:
            with self.db.begin_nested():
                self.db.add(item)
        except IntegrityError:
            return self.find(reviewable)
        return item

    @staticmethod
    def unreviewed(query: Query, model) -> Query:
        """
        Restrict a query over `model` to rows without a review item.

        Args:
            query: Query selecting `model` rows (Trace or AgentSession)
            model: Mapped class carrying `owner_type`

        Returns:
            Query left-joined to review_items, keeping only unmatched rows
        """
        return (
            query.outerjoin(
                ReviewItem,
                and_(
                    ReviewItem.reviewable_type == model.owner_type,
                    ReviewItem.reviewable_id == model.id
                )
            )
            .filter(ReviewItem.id.is_(None))
        )
