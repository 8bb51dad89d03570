"""
Score Store Service.

Idempotent persistence of named scores.

CRITICAL: One row per (owner, name, source).
Re-evaluating the same owner updates the value in place, so any number
of duplicate deliveries converge on the same persisted state.
"""

from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from evalguard.models import (
    Score, ScoreSource, ScoreDataType, DatasetRun, DatasetRunItem
)
from evalguard.logging import get_logger

logger = get_logger(__name__)


class ScoreStore:
    """
    Upsert-only access to the scores table.

    Owners are any model exposing `owner_type` and `id`
    (DatasetRunItem, Trace, AgentSession).
    """

    def __init__(self, db: Session):
        """
        Initialize score store.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    def upsert(
        self,
        owner,
        name: str,
        value: float,
        data_type: ScoreDataType = ScoreDataType.NUMERIC,
        source: ScoreSource = ScoreSource.PROGRAMMATIC,
        comment: Optional[str] = None,
        string_value: Optional[str] = None
    ) -> Score:
        """
        Create or update the score keyed by (owner, name, source).

        The insert runs inside a savepoint. If a concurrent writer inserted
        the same key first, the unique constraint rejects ours and the
        existing row is updated instead.

        Args:
            owner: Scored record
            name: Score name (evaluator name)
            value: Numeric value
            data_type: How to read the value
            source: Producer of the score
            comment: Optional free-text comment
            string_value: Label for categorical scores

        Returns:
            The persisted Score
        """
        attributes = {
            "value": float(value),
            "data_type": data_type,
            "comment": comment,
            "string_value": string_value,
        }

        score = self.find(owner, name, source)
        if score is not None:
            self._assign(score, attributes)
            self.db.flush()
            logger.score_upserted(owner.owner_type, owner.id, name, score.value, created=False)
            return score

        score = Score(
            scoreable_type=owner.owner_type,
            scoreable_id=owner.id,
            name=name,
            source=source,
            **attributes
        )
        try:
            with self.db.begin_nested():
                self.db.add(score)
        except IntegrityError:
            # Lost the insert race; update the winner
            score = self.find(owner, name, source)
            self._assign(score, attributes)
            self.db.flush()
            logger.score_upserted(owner.owner_type, owner.id, name, score.value, created=False)
            return score

        logger.score_upserted(owner.owner_type, owner.id, name, score.value, created=True)
        return score

    def find(
        self,
        owner,
        name: str,
        source: Optional[ScoreSource] = None
    ) -> Optional[Score]:
        """Find a score by owner and name, optionally filtered by source."""
        query = self.db.query(Score).filter(
            Score.scoreable_type == owner.owner_type,
            Score.scoreable_id == owner.id,
            Score.name == name
        )
        if source is not None:
            query = query.filter(Score.source == source)
        return query.order_by(Score.updated_at.desc()).first()

    def for_owner(self, owner) -> List[Score]:
        """All scores attached to an owner, ordered by name."""
        return (
            self.db.query(Score)
            .filter(
                Score.scoreable_type == owner.owner_type,
                Score.scoreable_id == owner.id
            )
            .order_by(Score.name, Score.source)
            .all()
        )

    # ===== Dataset run aggregation =====

    def _run_scores(self, dataset_run: DatasetRun):
        return (
            self.db.query(Score)
            .join(
                DatasetRunItem,
                (Score.scoreable_type == DatasetRunItem.owner_type)
                & (Score.scoreable_id == DatasetRunItem.id)
            )
            .filter(DatasetRunItem.dataset_run_id == dataset_run.id)
        )

    def average_score(self, dataset_run: DatasetRun, name: str) -> Optional[float]:
        """Average value of one named score across a run, rounded to 4 places."""
        average = (
            self._run_scores(dataset_run)
            .filter(Score.name == name)
            .with_entities(func.avg(Score.value))
            .scalar()
        )
        return round(average, 4) if average is not None else None

    def score_summary(self, dataset_run: DatasetRun) -> Dict[str, float]:
        """Average value per score name across a run."""
        rows = (
            self._run_scores(dataset_run)
            .with_entities(Score.name, func.avg(Score.value))
            .group_by(Score.name)
            .all()
        )
        return {name: round(average, 4) for name, average in rows}

    def pass_rate(self, dataset_run: DatasetRun, name: Optional[str] = None) -> Optional[float]:
        """Percentage of scores with value >= 0.5, optionally for one name."""
        query = self._run_scores(dataset_run)
        if name is not None:
            query = query.filter(Score.name == name)
        total = query.count()
        if total == 0:
            return None
        passed = query.filter(Score.value >= 0.5).count()
        return round(passed / total * 100, 1)

    def _assign(self, score: Score, attributes: dict) -> None:
        for key, value in attributes.items():
            setattr(score, key, value)
