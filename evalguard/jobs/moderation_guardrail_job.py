"""
Moderation Guardrail Job.

Screens one trace or one session in the background and logs each
outcome. Class-level selectors pick what schedulers should enqueue.

Retry behavior:
- RecordNotFound: discarded
- InvalidConfiguration: not retried
- Anything else: retried with exponential backoff, 3 attempts in total
"""

import math
import time
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from evalguard.config import settings
from evalguard.errors import InvalidConfiguration, RecordNotFound
from evalguard.jobs.base import Job, RetryPolicy
from evalguard.jobs.queue import EnqueuedJob
from evalguard.models import AgentSession, Trace
from evalguard.providers import get_moderation_client
from evalguard.schemas.moderation import ModerationResult
from evalguard.services.moderation_guardrail import (
    ModerationClient, ModerationGuardrailService
)
from evalguard.services.review_queue import ReviewQueue
from evalguard.logging import get_logger

logger = get_logger(__name__)


class ModerationGuardrailJob(Job):
    """Background content moderation of a trace or session."""

    queue_name = "guardrails"
    retry_policy = RetryPolicy(
        no_retry=(InvalidConfiguration,),
        discard_on=(RecordNotFound,)
    )

    def __init__(
        self,
        db: Session,
        sleep: Callable[[float], None] = time.sleep,
        moderation_client: Optional[ModerationClient] = None
    ):
        super().__init__(db, sleep=sleep)
        self.moderation_client = moderation_client

    def perform(
        self,
        trace_id: Optional[int] = None,
        session_id: Optional[int] = None,
        **options
    ) -> Union[ModerationResult, List[ModerationResult], None]:
        """
        Screen a trace, or a session per trace or aggregated.

        Args:
            trace_id: Trace to screen
            session_id: Session to screen when no trace_id is given
            **options: moderate_input (True), moderate_output (True),
                aggregate (False, sessions only)

        Raises:
            RecordNotFound: The trace or session does not exist
        """
        if trace_id is not None:
            trace = self.db.get(Trace, trace_id)
            if trace is None:
                raise RecordNotFound("Trace", trace_id)

            result = self._service().evaluate_trace(
                trace,
                moderate_input=options.get("moderate_input", True),
                moderate_output=options.get("moderate_output", True)
            )
            self.log_result(f"Trace {trace_id}", result)
            return result

        if session_id is not None:
            session = self.db.get(AgentSession, session_id)
            if session is None:
                raise RecordNotFound("AgentSession", session_id)

            service = self._service()
            if options.get("aggregate", False):
                result = service.evaluate_session_content(session)
                self.log_result(f"Session {session_id}", result)
                return result

            results = service.evaluate_session(session)
            for trace, result in zip(session.traces, results):
                self.log_result(f"Trace {trace.id}", result)
            flagged_count = sum(1 for result in results if result.flagged)
            logger.moderation_session_summary(session_id, flagged_count, len(results))
            return results

        logger.moderation_no_target()
        return None

    def log_result(self, identifier: str, result: ModerationResult) -> None:
        if result.flagged:
            logger.moderation_flagged(
                identifier,
                result.priority.value if result.priority else None,
                result.details.get("flagged_categories", [])
            )
        elif result.skipped:
            logger.moderation_skipped(identifier, result.reason)
        else:
            logger.moderation_passed(identifier)

    def _service(self) -> ModerationGuardrailService:
        client = self.moderation_client or get_moderation_client()
        return ModerationGuardrailService(self.db, client)

    # ===== Selection =====

    @classmethod
    def enqueue_for_scope(
        cls,
        scope: Query,
        sample_percentage: int = 100,
        **options
    ) -> List[EnqueuedJob]:
        """
        Enqueue one job per un-reviewed trace in a scope.

        Args:
            scope: Query over Trace
            sample_percentage: 1..100; below 100 a random
                ceil(count * pct / 100) subset is enqueued
            **options: Passed through to each job

        Raises:
            InvalidConfiguration: sample_percentage outside 1..100
        """
        if not 1 <= sample_percentage <= 100:
            raise InvalidConfiguration(
                f"sample_percentage must be between 1 and 100, got {sample_percentage}"
            )

        candidates = ReviewQueue.unreviewed(scope, Trace)
        if sample_percentage < 100:
            sample_size = math.ceil(candidates.count() * sample_percentage / 100)
            candidates = candidates.order_by(func.random()).limit(sample_size)

        trace_ids = [trace.id for trace in candidates.all()]
        return [cls.enqueue(trace_id=trace_id, **options) for trace_id in trace_ids]

    @classmethod
    def enqueue_user_facing(cls, db: Session, since: Optional[datetime] = None) -> List[EnqueuedJob]:
        """Enqueue whole-session jobs for user-facing sessions created since a cutoff."""
        sessions = cls._recent_sessions(db, since).filter(
            AgentSession.session_metadata["user_facing"].as_string() == "true"
        )
        return [cls.enqueue(session_id=session_id) for session_id, in sessions.all()]

    @classmethod
    def enqueue_for_agent_types(
        cls,
        db: Session,
        agent_types: Iterable[str],
        since: Optional[datetime] = None
    ) -> List[EnqueuedJob]:
        """Enqueue whole-session jobs for sessions of the given agent types."""
        sessions = cls._recent_sessions(db, since).filter(
            AgentSession.session_metadata["agent_type"].as_string().in_(list(agent_types))
        )
        return [cls.enqueue(session_id=session_id) for session_id, in sessions.all()]

    @staticmethod
    def _recent_sessions(db: Session, since: Optional[datetime]) -> Query:
        since = since or datetime.utcnow() - timedelta(minutes=settings.enqueue_lookback_minutes)
        return (
            db.query(AgentSession.id)
            .filter(AgentSession.created_at >= since)
            .order_by(AgentSession.id)
        )
