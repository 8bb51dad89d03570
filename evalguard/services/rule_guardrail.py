"""
Rule Guardrail Service.

Threshold rules over trace and session metrics that queue items for
review without calling a moderation model. Rules are checked in order;
the first match wins.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from evalguard.config import settings
from evalguard.domain.values import is_blank
from evalguard.models import AgentSession, ReviewItem, ReviewPriority, Trace
from evalguard.services.review_queue import ReviewQueue
from evalguard.logging import get_logger

logger = get_logger(__name__)


@dataclass
class GuardrailRule:
    """A named condition with the review priority it assigns."""

    name: str
    priority: ReviewPriority
    condition: Callable[[Any], bool]
    details: Callable[[Any], Dict[str, Any]] = field(default=lambda _: {})


def trace_rules() -> List[GuardrailRule]:
    return [
        GuardrailRule(
            name="error_detected",
            priority=ReviewPriority.CRITICAL,
            condition=lambda t: not is_blank((t.trace_metadata or {}).get("error")),
            details=lambda t: {"error": t.trace_metadata["error"]},
        ),
        GuardrailRule(
            name="high_cost",
            priority=ReviewPriority.HIGH,
            condition=lambda t: (t.total_cost or 0) > settings.guardrail_trace_cost,
            details=lambda t: {"cost": t.total_cost, "threshold": settings.guardrail_trace_cost},
        ),
        GuardrailRule(
            name="high_latency",
            priority=ReviewPriority.NORMAL,
            condition=lambda t: (t.duration_ms or 0) > settings.guardrail_latency_ms,
            details=lambda t: {"latency_ms": t.duration_ms, "threshold": settings.guardrail_latency_ms},
        ),
        GuardrailRule(
            name="no_output",
            priority=ReviewPriority.HIGH,
            condition=lambda t: is_blank(t.output) and t.end_time is not None,
        ),
        GuardrailRule(
            name="high_token_count",
            priority=ReviewPriority.NORMAL,
            condition=lambda t: (t.total_tokens or 0) > settings.guardrail_tokens,
            details=lambda t: {"tokens": t.total_tokens, "threshold": settings.guardrail_tokens},
        ),
    ]


def session_rules() -> List[GuardrailRule]:
    return [
        GuardrailRule(
            name="high_cost",
            priority=ReviewPriority.HIGH,
            condition=lambda s: (s.total_cost or 0) > settings.guardrail_session_cost,
            details=lambda s: {"cost": s.total_cost, "threshold": settings.guardrail_session_cost},
        ),
        GuardrailRule(
            name="short_session",
            priority=ReviewPriority.NORMAL,
            condition=lambda s: s.total_traces_count == 1 and s.end_time is not None,
            details=lambda s: {"trace_count": s.total_traces_count},
        ),
        GuardrailRule(
            name="many_traces",
            priority=ReviewPriority.NORMAL,
            condition=lambda s: s.total_traces_count > settings.guardrail_max_traces,
            details=lambda s: {"trace_count": s.total_traces_count, "threshold": settings.guardrail_max_traces},
        ),
    ]


class RuleGuardrailService:
    """Applies metric rules to traces and sessions."""

    def __init__(self, db: Session):
        """
        Initialize rule guardrail.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db
        self.review_queue = ReviewQueue(db)

    def evaluate_trace(self, trace: Trace) -> Optional[ReviewItem]:
        """Queue a trace for review if a trace rule matches."""
        return self._evaluate(trace, trace_rules())

    def evaluate_session(self, session: AgentSession) -> Optional[ReviewItem]:
        """Queue a session for review if a session rule matches."""
        return self._evaluate(session, session_rules())

    def evaluate_all_recent(self, since: Optional[datetime] = None) -> int:
        """
        Apply the rules to every trace and session created since a cutoff.

        Returns:
            Number of review items created
        """
        since = since or datetime.utcnow() - timedelta(minutes=settings.enqueue_lookback_minutes)
        created = 0

        for trace in self.db.query(Trace).filter(Trace.created_at >= since).order_by(Trace.id).all():
            if self.evaluate_trace(trace) is not None:
                created += 1
        for session in self.db.query(AgentSession).filter(AgentSession.created_at >= since).order_by(AgentSession.id).all():
            if self.evaluate_session(session) is not None:
                created += 1

        self.db.commit()
        return created

    def random_sample(self, query: Query, model, percentage: int = 5) -> int:
        """
        Queue a random sample of recent, un-reviewed records for review.

        Samples ceil(count * percentage / 100) records, at least one,
        from those created within the last day.

        Args:
            query: Query over Trace or AgentSession
            model: The queried model class
            percentage: Sample percentage

        Returns:
            Number of review items created
        """
        candidates = ReviewQueue.unreviewed(
            query.filter(model.created_at >= datetime.utcnow() - timedelta(days=1)),
            model
        )
        count = candidates.count()
        if count == 0:
            return 0

        sample_size = max(math.ceil(count * percentage / 100), 1)
        sampled = candidates.order_by(func.random()).limit(sample_size).all()
        for record in sampled:
            self.review_queue.enqueue(record, reason="random_sample", priority=ReviewPriority.NORMAL)

        self.db.commit()
        return len(sampled)

    def _evaluate(self, target, rules: List[GuardrailRule]) -> Optional[ReviewItem]:
        if self.review_queue.in_review_queue(target):
            return None

        for rule in rules:
            if not rule.condition(target):
                continue

            item = self.review_queue.enqueue(
                target,
                reason=rule.name,
                priority=rule.priority,
                details=rule.details(target)
            )
            logger.guardrail_rule_matched(target.owner_type, target.id, rule.name, rule.priority.value)
            return item

        return None
