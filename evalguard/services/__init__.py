"""
Services for evalguard.

These services implement the business logic layer:
- ScoreStore: Idempotent score persistence
- ReviewQueue: Idempotent review enqueueing
- EvaluatorRunnerService: Applies evaluators to a run's items
- DatasetRunnerService: Executes a dataset run end to end
- ModerationGuardrailService: Content moderation of traces and sessions
- RuleGuardrailService: Metric threshold rules for traces and sessions
"""

from evalguard.services.score_store import ScoreStore
from evalguard.services.review_queue import ReviewQueue
from evalguard.services.evaluator_runner import EvaluatorRunnerService
from evalguard.services.dataset_runner import AgentExecutor, DatasetRunnerService
from evalguard.services.moderation_guardrail import (
    ModerationClient,
    ModerationGuardrailService,
)
from evalguard.services.rule_guardrail import RuleGuardrailService

__all__ = [
    "ScoreStore",
    "ReviewQueue",
    "EvaluatorRunnerService",
    "AgentExecutor",
    "DatasetRunnerService",
    "ModerationClient",
    "ModerationGuardrailService",
    "RuleGuardrailService",
]
