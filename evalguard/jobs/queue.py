"""
In-process job queue.

Holds enqueued jobs until a worker drains them with run_pending(). Each
job gets its own database session, opened and closed around the run.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import Session

from evalguard.database import SessionLocal
from evalguard.logging import get_logger

logger = get_logger(__name__)


class JobStatus(str, PyEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class EnqueuedJob:
    """A job class with the arguments it will be run with."""

    job_class: type
    queue: str
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid4().hex)
    enqueued_at: datetime = field(default_factory=datetime.utcnow)
    status: JobStatus = JobStatus.PENDING
    result: Any = None
    error: Optional[str] = None

    @property
    def job_name(self) -> str:
        return self.job_class.__name__


class JobQueue:
    """FIFO queue of jobs for a single worker."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize job queue.

        Args:
            session_factory: Opens a database session per job
                (defaults to SessionLocal)
            sleep: Backoff sleep function handed to each job
        """
        self.session_factory = session_factory or SessionLocal
        self.sleep = sleep
        self.jobs: List[EnqueuedJob] = []

    def enqueue(self, job_class: type, *args: Any, **kwargs: Any) -> EnqueuedJob:
        job = EnqueuedJob(
            job_class=job_class,
            queue=getattr(job_class, "queue_name", "default"),
            args=args,
            kwargs=kwargs
        )
        self.jobs.append(job)
        logger.job_enqueued(job.id, job.job_name, job.queue)
        return job

    def pending(self, job_class: Optional[type] = None) -> List[EnqueuedJob]:
        """Jobs not yet run, optionally restricted to one job class."""
        return [
            job for job in self.jobs
            if job.status == JobStatus.PENDING
            and (job_class is None or job.job_class is job_class)
        ]

    def run_pending(self) -> List[EnqueuedJob]:
        """
        Run every pending job in enqueue order.

        A failing job is recorded and logged; it does not stop the others.

        Returns:
            The jobs that were run
        """
        ran = []
        for job in self.pending():
            db = self.session_factory()
            try:
                job.result = job.job_class(db, sleep=self.sleep).run(*job.args, **job.kwargs)
                job.status = JobStatus.SUCCEEDED
            except Exception as e:
                job.status = JobStatus.FAILED
                job.error = f"{type(e).__name__}: {e}"
                logger.job_failed(job.id, job.job_name, str(e))
            finally:
                db.close()
            ran.append(job)
        return ran

    def clear(self) -> None:
        self.jobs = []


_default_queue: Optional[JobQueue] = None


def get_queue() -> JobQueue:
    """Return the default queue, creating it on first use."""
    global _default_queue
    if _default_queue is None:
        _default_queue = JobQueue()
    return _default_queue


def set_queue(queue: Optional[JobQueue]) -> None:
    global _default_queue
    _default_queue = queue
