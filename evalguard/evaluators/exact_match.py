"""
Exact-match evaluator: 1.0 when the actual output equals the expected one.
"""

from typing import Optional

from evalguard.domain.values import is_blank
from evalguard.evaluators.base import BaseEvaluator
from evalguard.models import DatasetRunItem, ScoreDataType


class ExactMatchEvaluator(BaseEvaluator):
    """Boolean score from DatasetRunItem.output_matches()."""

    data_type = ScoreDataType.BOOLEAN

    def evaluate(self, run_item: DatasetRunItem) -> Optional[float]:
        if is_blank(run_item.expected_output):
            return None

        return 1.0 if run_item.output_matches() else 0.0
