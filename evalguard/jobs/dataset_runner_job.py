"""
Dataset Runner Job.

Runs DatasetRunnerService for one dataset run in the background.

Retry behavior:
- InvalidConfiguration: not retried; the run is marked failed
- Anything else: retried with exponential backoff, 3 attempts in total
- After the last attempt the run is marked failed with retries_exhausted

A run this job claimed is released back to pending before the next
attempt, even when the service could not release it itself.
"""

import time
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from evalguard.errors import InvalidConfiguration, RecordNotFound
from evalguard.jobs.base import Job, RetryPolicy
from evalguard.models import DatasetRun, DatasetRunStatus
from evalguard.providers import get_agent_executor
from evalguard.services.dataset_runner import DatasetRunnerService
from evalguard.logging import get_logger

logger = get_logger(__name__)


class DatasetRunnerJob(Job):
    """Background execution of a dataset run."""

    queue_name = "evaluations"
    retry_policy = RetryPolicy(no_retry=(InvalidConfiguration,))

    def __init__(self, db: Session, sleep: Callable[[float], None] = time.sleep):
        super().__init__(db, sleep=sleep)
        # True while a run claimed by an earlier attempt may still be RUNNING
        self.claimed = False

    def perform(self, dataset_run_id: int) -> Optional[DatasetRun]:
        """
        Execute a dataset run.

        Runs that are already running or finished are left alone, unless
        this job's own earlier attempt left the run running.

        Raises:
            RecordNotFound: No dataset run with this id
            InvalidConfiguration: The agent executor or evaluators cannot
                be built; the run is marked failed first
        """
        dataset_run = self.db.get(DatasetRun, dataset_run_id)
        if dataset_run is None:
            raise RecordNotFound("DatasetRun", dataset_run_id)

        if self.claimed and dataset_run.running:
            self._release_claim(dataset_run)

        if dataset_run.finished or dataset_run.running:
            logger.dataset_run_skipped(dataset_run.id, dataset_run.status.value)
            return dataset_run

        try:
            agent_executor = get_agent_executor()
        except InvalidConfiguration as exc:
            self._mark_failed(dataset_run_id, exc)
            raise

        service = DatasetRunnerService(self.db, dataset_run, agent_executor=agent_executor)
        try:
            return service.call()
        finally:
            self.claimed = service.claimed

    def on_retries_exhausted(self, error: Exception, dataset_run_id: int, *args, **kwargs) -> None:
        """
        Mark the run failed after the final attempt.

        Tolerates a run that no longer exists, and never raises.
        """
        try:
            self.db.rollback()
            self._mark_failed(dataset_run_id, error, retries_exhausted=True)
        except Exception as e:
            self.db.rollback()
            logger.terminal_handler_failed(self.job_name, str(e))

    def _release_claim(self, dataset_run: DatasetRun) -> None:
        (
            self.db.query(DatasetRun)
            .filter(DatasetRun.id == dataset_run.id, DatasetRun.status == DatasetRunStatus.RUNNING)
            .update(
                {DatasetRun.status: DatasetRunStatus.PENDING, DatasetRun.updated_at: datetime.utcnow()},
                synchronize_session=False
            )
        )
        self.db.commit()
        self.claimed = False
        self.db.refresh(dataset_run)
        logger.dataset_run_released(dataset_run.id, "claim left by previous attempt")

    def _mark_failed(self, dataset_run_id: int, error: Exception, **extra) -> None:
        """Move a pending or running run to failed, recording the error."""
        dataset_run = self.db.get(DatasetRun, dataset_run_id)
        if dataset_run is None:
            return

        metadata = {
            **(dataset_run.run_metadata or {}),
            "error": str(error),
            "error_class": type(error).__name__,
            "failed_at": datetime.utcnow().isoformat() + "Z",
            **extra,
        }
        updated = (
            self.db.query(DatasetRun)
            .filter(
                DatasetRun.id == dataset_run_id,
                DatasetRun.status.in_([DatasetRunStatus.PENDING, DatasetRunStatus.RUNNING])
            )
            .update(
                {
                    DatasetRun.status: DatasetRunStatus.FAILED,
                    DatasetRun.run_metadata: metadata,
                    DatasetRun.updated_at: datetime.utcnow(),
                },
                synchronize_session=False
            )
        )
        self.db.commit()
        if updated:
            logger.dataset_run_failed(dataset_run_id, str(error), type(error).__name__, **extra)
