"""
Keyword-containment evaluator.

Score = fraction of keywords found (case-insensitive substring match)
in the actual output.
"""

from typing import Any, List, Optional

from evalguard.domain.values import is_blank, to_text
from evalguard.evaluators.base import BaseEvaluator
from evalguard.models import DatasetRunItem
from evalguard.schemas.evaluator import ContainsOptions


class ContainsEvaluator(BaseEvaluator):
    """
    Keywords come from the `keywords` option or from the expected output:
    a mapping's "keywords" entry, a list, or a single string.
    """

    options_model = ContainsOptions

    def evaluate(self, run_item: DatasetRunItem) -> Optional[float]:
        keywords = self.options.keywords
        if keywords is None:
            keywords = self._keywords_from_expected(run_item.expected_output)
        if is_blank(keywords):
            return None

        output = to_text(run_item.actual_output)
        if is_blank(output):
            return 0.0

        haystack = output.lower()
        matched = sum(1 for keyword in keywords if str(keyword).lower() in haystack)
        return matched / len(keywords)

    @staticmethod
    def _keywords_from_expected(expected: Any) -> List[Any]:
        if is_blank(expected):
            return []
        if isinstance(expected, dict):
            keywords = expected.get("keywords") or []
            return [keywords] if isinstance(keywords, str) else list(keywords)
        if isinstance(expected, (list, tuple)):
            return list(expected)
        if isinstance(expected, str):
            return [expected]
        return []
