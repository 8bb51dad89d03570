"""
ReviewItem model.

Marks a trace or session as queued for (or done with) human review.
Its absence is what makes a trace eligible for moderation sampling.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, DateTime, Index, UniqueConstraint, Enum as SQLEnum
)

from evalguard.database import Base, JSONType


class ReviewStatus(str, PyEnum):
    """Review workflow state."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class ReviewPriority(str, PyEnum):
    """Review urgency."""
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class ReviewItem(Base):
    """
    ReviewItem: At most one per reviewable (trace or session).
    """
    __tablename__ = "review_items"

    id = Column(Integer, primary_key=True)

    # Polymorphic target: "trace" | "session"
    reviewable_type = Column(String(50), nullable=False)
    reviewable_id = Column(Integer, nullable=False)

    status = Column(
        SQLEnum(ReviewStatus, name="review_status",
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ReviewStatus.PENDING
    )
    priority = Column(
        SQLEnum(ReviewPriority, name="review_priority",
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ReviewPriority.NORMAL
    )

    reason = Column(String(100))
    reason_details = Column(JSONType, nullable=False, default=dict)

    completed_at = Column(DateTime(timezone=True))
    completed_by = Column(String(255))

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("reviewable_type", "reviewable_id", name="uq_review_item_reviewable"),
        Index("idx_review_items_status_priority", "status", "priority", "created_at"),
    )

    @property
    def actionable(self) -> bool:
        return self.status in (ReviewStatus.PENDING, ReviewStatus.IN_PROGRESS)

    def start_review(self) -> None:
        if self.status == ReviewStatus.PENDING:
            self.status = ReviewStatus.IN_PROGRESS

    def complete(self, by: Optional[str] = None) -> None:
        self.status = ReviewStatus.COMPLETED
        self.completed_at = datetime.utcnow()
        self.completed_by = by

    def skip(self, by: Optional[str] = None) -> None:
        self.status = ReviewStatus.SKIPPED
        self.completed_at = datetime.utcnow()
        self.completed_by = by

    def __repr__(self):
        return f"<ReviewItem(id={self.id}, {self.reviewable_type}={self.reviewable_id}, priority='{self.priority}')>"
