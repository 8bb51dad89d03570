"""
Moderation Schemas - Values exchanged with the moderation client and
returned by the moderation guardrail.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from evalguard.models.review_item import ReviewPriority


class ModerationResponse(BaseModel):
    """
    Raw classification returned by a moderation client.

    category_scores maps category names (e.g. "hate", "self-harm/intent")
    to a probability in [0, 1].
    """

    flagged: bool = False
    flagged_categories: List[str] = Field(default_factory=list)
    category_scores: Dict[str, float] = Field(default_factory=dict)
    model: Optional[str] = None


class ModerationAction(str, Enum):
    """Outcome of screening one trace or session."""
    FLAGGED = "flagged"
    SKIPPED = "skipped"
    PASSED = "passed"


class ModerationResult(BaseModel):
    """
    Ephemeral moderation outcome.

    - flagged: policy violation found; details carries the categories
    - skipped: screening did not apply; reason says why
    - passed: screened, no violation
    """

    action: ModerationAction
    reason: Optional[str] = None
    priority: Optional[ReviewPriority] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @property
    def flagged(self) -> bool:
        return self.action == ModerationAction.FLAGGED

    @property
    def skipped(self) -> bool:
        return self.action == ModerationAction.SKIPPED

    @property
    def passed(self) -> bool:
        return self.action == ModerationAction.PASSED

    @classmethod
    def skip(cls, reason: str) -> "ModerationResult":
        return cls(action=ModerationAction.SKIPPED, reason=reason)
