"""
Background jobs for evalguard.

- DatasetRunnerJob: Executes a dataset run with retries
- ModerationGuardrailJob: Screens a trace or session with retries
"""

from evalguard.jobs.base import Job, RetryPolicy
from evalguard.jobs.queue import EnqueuedJob, JobQueue, JobStatus, get_queue, set_queue
from evalguard.jobs.dataset_runner_job import DatasetRunnerJob
from evalguard.jobs.moderation_guardrail_job import ModerationGuardrailJob

__all__ = [
    "Job",
    "RetryPolicy",
    "EnqueuedJob",
    "JobQueue",
    "JobStatus",
    "get_queue",
    "set_queue",
    "DatasetRunnerJob",
    "ModerationGuardrailJob",
]
