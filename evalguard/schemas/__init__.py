"""
Pydantic schemas for evalguard values.
"""

from evalguard.schemas.evaluator import EvaluatorOptions, ContainsOptions, JsonStructureOptions
from evalguard.schemas.moderation import ModerationAction, ModerationResponse, ModerationResult

__all__ = [
    "EvaluatorOptions",
    "ContainsOptions",
    "JsonStructureOptions",
    "ModerationAction",
    "ModerationResponse",
    "ModerationResult",
]
