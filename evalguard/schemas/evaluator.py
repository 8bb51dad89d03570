"""
Evaluator option schemas.

Each evaluator variant validates its options mapping against one of
these models at construction time.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class EvaluatorOptions(BaseModel):
    """Options recognised by every evaluator."""

    comment: Optional[str] = Field(None, description="Free-text comment stored on the score")

    class Config:
        extra = "ignore"


class ContainsOptions(EvaluatorOptions):
    """Options for the keyword-containment evaluator."""

    keywords: Optional[List[str]] = Field(
        None,
        description="Keywords to look for; defaults to the expected output"
    )


class JsonStructureOptions(EvaluatorOptions):
    """Options for the JSON-structure evaluator."""

    required_keys: Optional[List[str]] = Field(
        None,
        description="Keys the output must contain; defaults to the expected output's keys"
    )
