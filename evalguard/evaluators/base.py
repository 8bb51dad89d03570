"""
Base evaluator.

An evaluator maps a run item to a score in [0.0, 1.0], or to None when
no judgment can be made (for example, no expected output). Evaluation is
pure; persistence happens only in `call`.
"""

import re
from typing import Any, Optional, Type

from pydantic import ValidationError

from evalguard.errors import InvalidConfiguration
from evalguard.models import DatasetRunItem, Score, ScoreDataType, ScoreSource
from evalguard.schemas.evaluator import EvaluatorOptions


class BaseEvaluator:
    """
    Strategy base class for run-item evaluators.

    Subclasses implement `evaluate` and may narrow `options_model` and
    `data_type`. The evaluator name is part of the score's upsert key,
    so it must stay stable across runs.
    """

    options_model: Type[EvaluatorOptions] = EvaluatorOptions
    data_type: ScoreDataType = ScoreDataType.NUMERIC

    def __init__(self, name: Optional[str] = None, strict: bool = False, **options: Any):
        """
        Initialize evaluator.

        Args:
            name: Score name; defaults to the derived evaluator name
            strict: Reject option keys the evaluator does not recognise
            **options: Evaluator options (see options_model)

        Raises:
            InvalidConfiguration: If options fail validation
        """
        self.name = name or self.default_name()
        if strict:
            unknown = set(options) - set(self.options_model.model_fields)
            if unknown:
                raise InvalidConfiguration(
                    f"Unknown options for {self.name}: {', '.join(sorted(unknown))}"
                )
        try:
            self.options = self.options_model.model_validate(options)
        except ValidationError as exc:
            raise InvalidConfiguration(f"Invalid options for {self.name}: {exc}") from exc

    @classmethod
    def default_name(cls) -> str:
        """
        Derive a lowercase identifier from the class name.

        ExactMatchEvaluator -> "exact_match"
        """
        base = re.sub(r"Evaluator$", "", cls.__name__)
        return re.sub(r"(?<!^)(?=[A-Z])", "_", base).lower()

    def evaluate(self, run_item: DatasetRunItem) -> Optional[float]:
        """Score a run item. Override in subclasses."""
        raise NotImplementedError("Subclasses must implement evaluate()")

    def call(self, run_item: DatasetRunItem, store) -> Optional[Score]:
        """
        Evaluate a run item and persist the score.

        Args:
            run_item: Run item to score
            store: ScoreStore used for the upsert

        Returns:
            The persisted Score, or None if the item has no trace yet or
            the evaluator made no judgment
        """
        if run_item.trace is None:
            return None

        value = self.evaluate(run_item)
        if value is None:
            return None

        return store.upsert(
            run_item,
            name=self.name,
            value=value,
            data_type=self.data_type,
            source=ScoreSource.PROGRAMMATIC,
            comment=self.options.comment
        )

    def __repr__(self):
        return f"<{type(self).__name__}(name='{self.name}')>"
