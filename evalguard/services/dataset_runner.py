"""
Dataset Runner Service.

Executes a dataset run: claims it, optionally runs the agent under test
for each pending item, scores the items and rolls up the run status.

Usage:
    run = db.get(DatasetRun, 1)
    DatasetRunnerService(db, run).call()

Status transitions are single-row conditional updates
(UPDATE ... WHERE status = <expected>), so two near-simultaneous calls
cannot both claim the same run.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session

from evalguard.errors import InvalidConfiguration
from evalguard.models import (
    AgentSession, DatasetRun, DatasetRunItem, DatasetRunStatus, Trace
)
from evalguard.services.evaluator_runner import EvaluatorRunnerService
from evalguard.logging import get_logger

logger = get_logger(__name__)


class AgentExecutor(Protocol):
    """The agent under test. Provided by the host application."""

    def execute(self, input: Any, context: Dict[str, Any]) -> Any:
        """Run the agent on one dataset input and return its output."""
        ...


class DatasetRunnerService:
    """
    Orchestrates one dataset run.

    Items are processed in id order. Agent failures are recorded on the
    item and do not stop the run; evaluator failures are confined to the
    item (see EvaluatorRunnerService).
    """

    def __init__(
        self,
        db: Session,
        dataset_run: DatasetRun,
        evaluator_configs: Optional[List[Dict[str, Any]]] = None,
        agent_executor: Optional[AgentExecutor] = None
    ):
        """
        Initialize dataset runner.

        Args:
            db: SQLAlchemy database session
            dataset_run: Run to execute
            evaluator_configs: Evaluator configs (see EvaluatorRunnerService)
            agent_executor: Agent to run for pending items; when omitted,
                items are scored against the traces already attached
        """
        self.db = db
        self.dataset_run = dataset_run
        self.evaluator_configs = evaluator_configs
        self.agent_executor = agent_executor
        self.claimed = False

    def call(self) -> DatasetRun:
        """
        Execute the run.

        No-op unless the run is pending. On an InvalidConfiguration the run
        is marked failed; on any other error it is released back to pending
        so a retry can claim it. Both re-raise.

        Returns:
            The (refreshed) dataset run
        """
        run_id = self.dataset_run.id
        if not self._claim():
            self.db.refresh(self.dataset_run)
            logger.dataset_run_skipped(run_id, self.dataset_run.status.value)
            return self.dataset_run
        self.claimed = True

        try:
            evaluator_runner = EvaluatorRunnerService(
                self.db, self.dataset_run, evaluator_configs=self.evaluator_configs
            )
            logger.dataset_run_started(run_id, item_count=len(self.dataset_run.run_items))

            if self.agent_executor is not None:
                self._process_pending_items()

            evaluator_runner.call()
            self.db.flush()
            self._finish()
        except InvalidConfiguration as exc:
            self.db.rollback()
            self._mark_failed(exc)
            raise
        except Exception as exc:
            self.db.rollback()
            self._release(exc)
            raise

        self.db.refresh(self.dataset_run)
        return self.dataset_run

    # ===== Transitions =====

    def _transition(self, expected: DatasetRunStatus, values: Dict[Any, Any]) -> bool:
        """Conditionally update this run if it is still in `expected`."""
        updated = (
            self.db.query(DatasetRun)
            .filter(DatasetRun.id == self.dataset_run.id, DatasetRun.status == expected)
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def _claim(self) -> bool:
        return self._transition(
            DatasetRunStatus.PENDING,
            {DatasetRun.status: DatasetRunStatus.RUNNING, DatasetRun.updated_at: datetime.utcnow()}
        )

    def _finish(self) -> None:
        metrics = self._compute_metrics()
        if metrics["total_items"] > 0 and metrics["failed_items"] == metrics["total_items"]:
            status = DatasetRunStatus.FAILED
        else:
            status = DatasetRunStatus.COMPLETED

        values = {getattr(DatasetRun, key): value for key, value in metrics.items()}
        values[DatasetRun.status] = status
        values[DatasetRun.updated_at] = datetime.utcnow()
        self._transition(DatasetRunStatus.RUNNING, values)

        logger.dataset_run_completed(
            self.dataset_run.id,
            status.value,
            completed_items=metrics["completed_items"],
            failed_items=metrics["failed_items"]
        )

    def _mark_failed(self, error: Exception) -> None:
        metadata = {
            **(self.dataset_run.run_metadata or {}),
            "error": str(error),
            "error_class": type(error).__name__,
            "failed_at": datetime.utcnow().isoformat() + "Z",
        }
        self._transition(
            DatasetRunStatus.RUNNING,
            {DatasetRun.status: DatasetRunStatus.FAILED, DatasetRun.run_metadata: metadata}
        )
        logger.dataset_run_failed(self.dataset_run.id, str(error), type(error).__name__)

    def _release(self, error: Exception) -> None:
        metadata = {
            **(self.dataset_run.run_metadata or {}),
            "last_error": str(error),
            "last_error_class": type(error).__name__,
        }
        self._transition(
            DatasetRunStatus.RUNNING,
            {DatasetRun.status: DatasetRunStatus.PENDING, DatasetRun.run_metadata: metadata}
        )
        logger.dataset_run_released(self.dataset_run.id, str(error))

    # ===== Agent execution =====

    def _process_pending_items(self) -> None:
        pending = (
            self.db.query(DatasetRunItem)
            .filter(
                DatasetRunItem.dataset_run_id == self.dataset_run.id,
                DatasetRunItem.trace_id.is_(None),
                DatasetRunItem.error.is_(None)
            )
            .order_by(DatasetRunItem.id)
            .all()
        )
        for run_item in pending:
            self._process_item(run_item)
            # Commit per item: executed items are never re-run on retry
            self.db.commit()

    def _process_item(self, run_item: DatasetRunItem) -> None:
        run = self.dataset_run
        dataset = run.dataset
        context = {
            "dataset_id": dataset.id,
            "dataset_run_id": run.id,
            "dataset_item_id": run_item.dataset_item_id,
        }

        session = AgentSession(
            user_id=f"dataset_run_{run.id}",
            session_metadata={**context, "source": "dataset_evaluation"}
        )
        trace = Trace(
            session=session,
            name="dataset_evaluation",
            input=run_item.input,
            trace_metadata={
                **context,
                "dataset_name": dataset.name,
                "dataset_run_name": run.name,
                "agent_class": dataset.agent_class,
            },
            tags=["dataset_evaluation", dataset.name, run.name]
        )
        self.db.add_all([session, trace])
        self.db.flush()

        try:
            output = self.agent_executor.execute(run_item.input, context)
        except Exception as exc:
            trace.finalize(
                output=None,
                metadata={"error": str(exc), "error_class": type(exc).__name__}
            )
            run_item.trace = trace
            run_item.error = f"{type(exc).__name__}: {exc}"
        else:
            trace.finalize(output=output)
            run_item.trace = trace
            run_item.error = None

        session.end_time = trace.end_time

    # ===== Metrics =====

    def _compute_metrics(self) -> Dict[str, Any]:
        items = self.db.query(DatasetRunItem).filter(
            DatasetRunItem.dataset_run_id == self.dataset_run.id
        )
        total_items = items.count()
        completed_items = items.filter(
            DatasetRunItem.trace_id.isnot(None), DatasetRunItem.error.is_(None)
        ).count()
        failed_items = items.filter(DatasetRunItem.error.isnot(None)).count()

        total_cost, total_tokens = (
            self.db.query(
                func.coalesce(func.sum(Trace.total_cost), 0.0),
                func.coalesce(func.sum(Trace.total_tokens), 0)
            )
            .join(DatasetRunItem, DatasetRunItem.trace_id == Trace.id)
            .filter(DatasetRunItem.dataset_run_id == self.dataset_run.id)
            .one()
        )

        return {
            "total_items": total_items,
            "completed_items": completed_items,
            "failed_items": failed_items,
            "total_cost": float(total_cost),
            "total_tokens": int(total_tokens),
        }
