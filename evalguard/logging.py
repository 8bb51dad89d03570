"""
Structured Logging Module for evalguard.

Provides JSON-formatted structured logging for observability.
Key events: dataset runs, evaluator failures, moderation outcomes, job retries.
"""

import logging
import json
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional

from evalguard.config import settings


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    All logs are emitted as single-line JSON objects for easy parsing
    by log aggregation tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        # Add exception info if present
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """
    Structured logger wrapper with domain-specific methods.

    Every event carries an "event" field so logs can be filtered
    without parsing messages.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        message: str,
        exc_info: bool = False,
        **kwargs: Any
    ) -> None:
        """Internal log method with extra fields."""
        extra = {"extra_fields": kwargs}
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    # ===== Dataset Run Events =====

    def dataset_run_started(self, dataset_run_id: int, item_count: int) -> None:
        """Log dataset run claimed and started."""
        self._log(
            logging.INFO,
            f"Dataset run {dataset_run_id} started",
            event="dataset_run.started",
            dataset_run_id=dataset_run_id,
            item_count=item_count
        )

    def dataset_run_skipped(self, dataset_run_id: int, status: str) -> None:
        """Log dataset run skipped because it is already running or finished."""
        self._log(
            logging.INFO,
            f"Dataset run {dataset_run_id} skipped (status={status})",
            event="dataset_run.skipped",
            dataset_run_id=dataset_run_id,
            status=status
        )

    def dataset_run_completed(
        self,
        dataset_run_id: int,
        status: str,
        completed_items: int,
        failed_items: int
    ) -> None:
        """Log dataset run reaching its final status."""
        self._log(
            logging.INFO,
            f"Dataset run {dataset_run_id} finished: {status}",
            event="dataset_run.completed",
            dataset_run_id=dataset_run_id,
            status=status,
            completed_items=completed_items,
            failed_items=failed_items
        )

    def dataset_run_failed(
        self,
        dataset_run_id: int,
        error: str,
        error_class: str,
        retries_exhausted: bool = False
    ) -> None:
        """Log dataset run marked failed."""
        self._log(
            logging.ERROR,
            f"Dataset run {dataset_run_id} failed: {error}",
            event="dataset_run.failed",
            dataset_run_id=dataset_run_id,
            error=error,
            error_class=error_class,
            retries_exhausted=retries_exhausted
        )

    def dataset_run_released(self, dataset_run_id: int, error: str) -> None:
        """Log dataset run returned to pending after a transient error."""
        self._log(
            logging.WARNING,
            f"Dataset run {dataset_run_id} released for retry: {error}",
            event="dataset_run.released",
            dataset_run_id=dataset_run_id,
            error=error
        )

    # ===== Evaluator Events =====

    def evaluator_failed(
        self,
        evaluator_name: str,
        run_item_id: int,
        error: str
    ) -> None:
        """Log an evaluator raising for a single run item."""
        self._log(
            logging.ERROR,
            f"Evaluator {evaluator_name} failed for run_item {run_item_id}: {error}",
            event="evaluator.failed",
            evaluator=evaluator_name,
            run_item_id=run_item_id,
            error=error
        )

    def score_upserted(
        self,
        owner_type: str,
        owner_id: int,
        name: str,
        value: float,
        created: bool
    ) -> None:
        """Log score insert or update."""
        self._log(
            logging.DEBUG,
            f"Score {name}={value} {'created' if created else 'updated'} for {owner_type} {owner_id}",
            event="score.upserted",
            owner_type=owner_type,
            owner_id=owner_id,
            name=name,
            value=value,
            created=created
        )

    # ===== Moderation Events =====

    def moderation_flagged(
        self,
        identifier: str,
        priority: Optional[str],
        flagged_categories: List[str]
    ) -> None:
        """Log content flagged by moderation."""
        self._log(
            logging.INFO,
            f"{identifier} flagged ({priority}): {flagged_categories}",
            event="moderation.flagged",
            target=identifier,
            priority=priority,
            flagged_categories=flagged_categories
        )

    def moderation_skipped(self, identifier: str, reason: Optional[str]) -> None:
        """Log moderation not applicable."""
        self._log(
            logging.DEBUG,
            f"{identifier} skipped: {reason}",
            event="moderation.skipped",
            target=identifier,
            reason=reason
        )

    def moderation_passed(self, identifier: str) -> None:
        """Log content that passed moderation."""
        self._log(
            logging.DEBUG,
            f"{identifier} passed moderation",
            event="moderation.passed",
            target=identifier
        )

    def moderation_session_summary(
        self,
        session_id: int,
        flagged_count: int,
        total: int
    ) -> None:
        """Log per-trace moderation summary for a session."""
        self._log(
            logging.INFO,
            f"Session {session_id}: {flagged_count}/{total} traces flagged",
            event="moderation.session_summary",
            session_id=session_id,
            flagged_count=flagged_count,
            total=total
        )

    def moderation_no_target(self) -> None:
        """Log moderation job invoked without a trace or session."""
        self._log(
            logging.WARNING,
            "No trace_id or session_id provided",
            event="moderation.no_target"
        )

    def guardrail_rule_matched(
        self,
        owner_type: str,
        owner_id: int,
        rule: str,
        priority: str
    ) -> None:
        """Log a rule guardrail enqueueing an item for review."""
        self._log(
            logging.INFO,
            f"Rule {rule} matched {owner_type} {owner_id} ({priority})",
            event="guardrail.rule_matched",
            owner_type=owner_type,
            owner_id=owner_id,
            rule=rule,
            priority=priority
        )

    # ===== Job Events =====

    def job_enqueued(self, job_id: str, job_name: str, queue: str) -> None:
        """Log job pushed onto a queue."""
        self._log(
            logging.DEBUG,
            f"Enqueued {job_name} ({job_id}) on {queue}",
            event="job.enqueued",
            job_id=job_id,
            job_name=job_name,
            queue=queue
        )

    def job_retrying(
        self,
        job_name: str,
        attempt: int,
        max_attempts: int,
        delay_seconds: float,
        error: str
    ) -> None:
        """Log a transient failure that will be retried."""
        self._log(
            logging.WARNING,
            f"{job_name} attempt {attempt}/{max_attempts} failed, retrying in {delay_seconds}s: {error}",
            event="job.retrying",
            job_name=job_name,
            attempt=attempt,
            max_attempts=max_attempts,
            delay_seconds=delay_seconds,
            error=error
        )

    def job_discarded(self, job_name: str, error: str) -> None:
        """Log a job discarded without retry."""
        self._log(
            logging.WARNING,
            f"{job_name} discarded: {error}",
            event="job.discarded",
            job_name=job_name,
            error=error
        )

    def job_retries_exhausted(self, job_name: str, attempts: int, error: str) -> None:
        """Log a job giving up after its final attempt."""
        self._log(
            logging.ERROR,
            f"{job_name} failed after {attempts} attempts: {error}",
            event="job.retries_exhausted",
            job_name=job_name,
            attempts=attempts,
            error=error
        )

    def job_failed(self, job_id: str, job_name: str, error: str) -> None:
        """Log a job failing with a non-retryable error."""
        self._log(
            logging.ERROR,
            f"{job_name} ({job_id}) failed: {error}",
            exc_info=True,
            event="job.failed",
            job_id=job_id,
            job_name=job_name,
            error=error
        )

    def terminal_handler_failed(self, job_name: str, error: str) -> None:
        """Log the retries-exhausted handler itself failing."""
        self._log(
            logging.CRITICAL,
            f"{job_name} terminal failure handler raised: {error}",
            exc_info=True,
            event="job.terminal_handler_failed",
            job_name=job_name,
            error=error
        )


def setup_logging() -> None:
    """
    Configure application-wide logging.

    Should be called once at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))

    # Remove existing handlers
    root_logger.handlers = []

    # Add JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger for a module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        StructuredLogger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.dataset_run_started(run.id, item_count=10)
    """
    return StructuredLogger(name)
