"""
Score model.

Scores are named values attached to a run item, trace or session.
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, Float, DateTime, Index, UniqueConstraint, Enum as SQLEnum
)

from evalguard.database import Base


class ScoreSource(str, PyEnum):
    """Who produced the score."""
    PROGRAMMATIC = "programmatic"
    HUMAN = "human"


class ScoreDataType(str, PyEnum):
    """How the value should be read."""
    NUMERIC = "numeric"
    BOOLEAN = "boolean"          # 0.0 / 1.0
    CATEGORICAL = "categorical"  # label in string_value


class Score(Base):
    """
    Score: Named, sourced value attached to exactly one owner.

    CRITICAL: At most one score per (owner, name, source).
    Re-evaluation updates the existing row; see ScoreStore.upsert.
    """
    __tablename__ = "scores"

    id = Column(Integer, primary_key=True)

    # Polymorphic owner: "dataset_run_item" | "trace" | "session"
    scoreable_type = Column(String(50), nullable=False)
    scoreable_id = Column(Integer, nullable=False)

    name = Column(String(255), nullable=False)
    source = Column(
        SQLEnum(ScoreSource, name="score_source",
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ScoreSource.PROGRAMMATIC
    )
    data_type = Column(
        SQLEnum(ScoreDataType, name="score_data_type",
                values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ScoreDataType.NUMERIC
    )
    value = Column(Float, nullable=False)
    string_value = Column(String(255))
    comment = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "scoreable_type", "scoreable_id", "name", "source",
            name="uq_score_owner_name_source"
        ),
        Index("idx_scores_owner", "scoreable_type", "scoreable_id"),
        Index("idx_scores_name", "name"),
    )

    @property
    def passed(self) -> bool:
        return self.value >= 0.5

    def __repr__(self):
        return f"<Score(id={self.id}, {self.scoreable_type}={self.scoreable_id}, name='{self.name}', value={self.value})>"
