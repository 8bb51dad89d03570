"""
Evaluator Runner Service.

Runs the configured evaluators over every succeeded item of a dataset run.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from evalguard.evaluators import BaseEvaluator, build_evaluator
from evalguard.models import DatasetRun, DatasetRunItem
from evalguard.services.score_store import ScoreStore
from evalguard.logging import get_logger

logger = get_logger(__name__)

DEFAULT_EVALUATOR_CONFIGS = [{"type": "exact_match"}]


class EvaluatorRunnerService:
    """
    Applies an evaluator set to the run items of one dataset run.

    Evaluators are built once, at construction, so a bad configuration
    fails before any item is touched.
    """

    def __init__(
        self,
        db: Session,
        dataset_run: DatasetRun,
        evaluator_configs: Optional[List[Dict[str, Any]]] = None
    ):
        """
        Initialize evaluator runner.

        Args:
            db: SQLAlchemy database session
            dataset_run: Run whose items are scored
            evaluator_configs: [{"type": ..., **options}]; defaults to the
                dataset's metadata["evaluators"], then exact_match

        Raises:
            InvalidConfiguration: Unknown evaluator type or invalid options
        """
        self.db = db
        self.dataset_run = dataset_run
        self.evaluator_configs = evaluator_configs or self._default_evaluator_configs()
        self.evaluators: List[BaseEvaluator] = [
            build_evaluator(config) for config in self.evaluator_configs
        ]
        self.store = ScoreStore(db)

    def call(self) -> DatasetRun:
        """Score every succeeded run item, in id order."""
        run_items = (
            self.db.query(DatasetRunItem)
            .filter(DatasetRunItem.dataset_run_id == self.dataset_run.id)
            .order_by(DatasetRunItem.id)
            .all()
        )
        for run_item in run_items:
            if not run_item.succeeded:
                continue
            self.evaluate_item(run_item)

        return self.dataset_run

    def evaluate_item(self, run_item: DatasetRunItem) -> None:
        """
        Run each evaluator against one item.

        Each evaluator runs in its own savepoint. An evaluator error is
        logged and confined to that (item, evaluator) pair; store errors
        propagate to the caller.
        """
        for evaluator in self.evaluators:
            try:
                with self.db.begin_nested():
                    evaluator.call(run_item, self.store)
            except SQLAlchemyError:
                raise
            except Exception as exc:
                logger.evaluator_failed(evaluator.name, run_item.id, str(exc))

    def _default_evaluator_configs(self) -> List[Dict[str, Any]]:
        metadata = self.dataset_run.dataset.dataset_metadata or {}
        return metadata.get("evaluators") or DEFAULT_EVALUATOR_CONFIGS
