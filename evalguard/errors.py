"""
Error types raised by evalguard.

Store failures are not wrapped: they surface as SQLAlchemy exceptions and
are classified by the job layer together with everything else.
"""


class EvalguardError(Exception):
    """Base class for evalguard errors."""


class RecordNotFound(EvalguardError, LookupError):
    """A referenced dataset run, trace or session does not exist."""

    def __init__(self, model: str, record_id):
        self.model = model
        self.record_id = record_id
        super().__init__(f"{model} {record_id} not found")


class InvalidConfiguration(EvalguardError, ValueError):
    """
    Configuration that can never succeed, however often it is retried.

    Raised for unknown evaluator types, malformed evaluator options,
    out-of-range sample percentages and a missing moderation client.
    """
