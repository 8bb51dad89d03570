"""
Moderation Guardrail Service.

Screens trace and session content with a moderation client and queues
violations for human review.

The service returns ModerationResult values and does no logging of
outcomes; the job layer is the single logging boundary.
"""

import json
from typing import Any, List, Optional, Protocol

from sqlalchemy.orm import Session

from evalguard.config import settings
from evalguard.domain.values import is_blank, truncate
from evalguard.models import (
    AgentSession, ReviewPriority, Score, ScoreDataType, ScoreSource, Trace
)
from evalguard.schemas.moderation import (
    ModerationAction, ModerationResponse, ModerationResult
)
from evalguard.services.review_queue import ReviewQueue
from evalguard.services.score_store import ScoreStore

# Categories that always trigger critical review
CRITICAL_CATEGORIES = frozenset({
    "sexual/minors",
    "self-harm/intent",
    "self-harm/instructions",
    "violence/graphic",
})

CONTENT_SEPARATOR = "\n\n---\n\n"
MODERATION_SCORE_NAME = "moderation"
REVIEW_REASON = "content_moderation"


class ModerationClient(Protocol):
    """Content classifier backed by an LLM moderation endpoint."""

    def moderate(self, content: str) -> ModerationResponse:
        ...


def extract_text(content: Any) -> Optional[str]:
    """
    Pull moderatable text out of a trace input or output.

    Mappings are searched for "text", "content" and "message" before
    falling back to their JSON form.
    """
    if is_blank(content):
        return None
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        for key in ("text", "content", "message"):
            if not is_blank(content.get(key)):
                return str(content[key])
        return json.dumps(content, default=str)
    return str(content)


def _join(parts: List[Optional[str]]) -> str:
    return CONTENT_SEPARATOR.join(part for part in parts if not is_blank(part))


class ModerationGuardrailService:
    """
    Applies the content-moderation policy to traces and sessions.

    Priority policy:
    - Any critical category -> critical
    - Flagged by the client -> critical if the highest score reaches the
      critical threshold, else high
    - Not flagged -> high / normal by score threshold, else passed
    """

    def __init__(self, db: Session, client: ModerationClient):
        """
        Initialize moderation guardrail.

        Args:
            db: SQLAlchemy database session
            client: Moderation client
        """
        self.db = db
        self.client = client
        self.review_queue = ReviewQueue(db)
        self.score_store = ScoreStore(db)
        self.thresholds = {
            "critical": settings.moderation_threshold_critical,
            "high": settings.moderation_threshold_high,
            "review": settings.moderation_threshold_review,
        }

    def evaluate_trace(
        self,
        trace: Trace,
        moderate_input: bool = True,
        moderate_output: bool = True
    ) -> ModerationResult:
        """
        Screen one trace.

        Args:
            trace: Trace to screen
            moderate_input: Include the trace input
            moderate_output: Include the trace output

        Returns:
            ModerationResult
        """
        if self.review_queue.in_review_queue(trace):
            return ModerationResult.skip("already_in_queue")
        if self._has_existing_flag(trace):
            return ModerationResult.skip("already_has_moderation")

        parts = []
        if moderate_input:
            parts.append(extract_text(trace.input))
        if moderate_output:
            parts.append(extract_text(trace.output))
        content = _join(parts)
        if is_blank(content):
            return ModerationResult.skip("no_content")

        return self._moderate(trace, content)

    def evaluate_session(self, session: AgentSession) -> List[ModerationResult]:
        """Screen each trace of a session independently, in trace order."""
        return [self.evaluate_trace(trace) for trace in session.traces]

    def evaluate_session_content(self, session: AgentSession) -> ModerationResult:
        """Screen a session's aggregated trace content as one document."""
        if self.review_queue.in_review_queue(session):
            return ModerationResult.skip("already_in_queue")

        parts = []
        for trace in session.traces:
            parts.append(extract_text(trace.input))
            parts.append(extract_text(trace.output))
        content = truncate(_join(parts), settings.moderation_max_session_chars)
        if is_blank(content):
            return ModerationResult.skip("no_content")

        return self._moderate(session, content)

    # ===== Policy =====

    def determine_priority(self, response: ModerationResponse) -> Optional[ReviewPriority]:
        """Map a moderation response to a review priority, or None to pass."""
        if CRITICAL_CATEGORIES.intersection(response.flagged_categories):
            return ReviewPriority.CRITICAL

        max_score = max(response.category_scores.values(), default=0.0)

        if response.flagged:
            if max_score >= self.thresholds["critical"]:
                return ReviewPriority.CRITICAL
            return ReviewPriority.HIGH

        if max_score >= self.thresholds["high"]:
            return ReviewPriority.HIGH
        if max_score >= self.thresholds["review"]:
            return ReviewPriority.NORMAL
        return None

    @staticmethod
    def build_details(response: ModerationResponse) -> dict:
        scores = response.category_scores
        highest_category = max(scores, key=scores.get) if scores else None
        return {
            "flagged": response.flagged,
            "flagged_categories": list(response.flagged_categories),
            "highest_category": highest_category,
            "highest_score": round(scores[highest_category], 4) if highest_category else None,
            "category_scores": {name: round(value, 4) for name, value in scores.items()},
        }

    # ===== Internals =====

    def _moderate(self, target, content: str) -> ModerationResult:
        response = self.client.moderate(content)
        priority = self.determine_priority(response)

        if priority is None:
            self._record_score(target, flagged=False)
            self.db.commit()
            return ModerationResult(action=ModerationAction.PASSED)

        details = self.build_details(response)
        self.review_queue.enqueue(
            target,
            reason=REVIEW_REASON,
            priority=priority,
            details=details
        )
        self._record_score(target, flagged=True)
        self.db.commit()
        return ModerationResult(
            action=ModerationAction.FLAGGED,
            priority=priority,
            details=details
        )

    def _record_score(self, target, flagged: bool) -> Score:
        return self.score_store.upsert(
            target,
            name=MODERATION_SCORE_NAME,
            value=1.0 if flagged else 0.0,
            data_type=ScoreDataType.BOOLEAN,
            source=ScoreSource.PROGRAMMATIC
        )

    def _has_existing_flag(self, target) -> bool:
        score = self.score_store.find(target, MODERATION_SCORE_NAME, ScoreSource.PROGRAMMATIC)
        return score is not None and score.value >= 1.0
