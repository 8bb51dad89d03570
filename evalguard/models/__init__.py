"""
SQLAlchemy ORM models for evalguard.

Import all models here to ensure they're registered with Base.metadata.
"""

from evalguard.models.dataset import Dataset, DatasetItem, DatasetItemStatus
from evalguard.models.dataset_run import DatasetRun, DatasetRunItem, DatasetRunStatus
from evalguard.models.trace import AgentSession, Trace
from evalguard.models.score import Score, ScoreSource, ScoreDataType
from evalguard.models.review_item import ReviewItem, ReviewStatus, ReviewPriority

__all__ = [
    # Dataset
    "Dataset",
    "DatasetItem",
    "DatasetItemStatus",
    # Dataset runs
    "DatasetRun",
    "DatasetRunItem",
    "DatasetRunStatus",
    # Sessions and traces
    "AgentSession",
    "Trace",
    # Score
    "Score",
    "ScoreSource",
    "ScoreDataType",
    # Review
    "ReviewItem",
    "ReviewStatus",
    "ReviewPriority",
]
