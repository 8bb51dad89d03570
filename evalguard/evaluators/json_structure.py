"""
JSON-structure evaluator.

Score = fraction of required keys present in the (parsed) actual output.
"""

from typing import Any, List, Optional

from evalguard.domain.values import is_blank, parse_mapping
from evalguard.evaluators.base import BaseEvaluator
from evalguard.models import DatasetRunItem
from evalguard.schemas.evaluator import JsonStructureOptions


class JsonStructureEvaluator(BaseEvaluator):
    """
    Required keys come from the `required_keys` option, or from the keys of
    the expected output when it is a mapping. Output that is neither a
    mapping nor a JSON object string scores 0.0.
    """

    options_model = JsonStructureOptions

    def evaluate(self, run_item: DatasetRunItem) -> Optional[float]:
        required_keys = self.options.required_keys
        if required_keys is None:
            required_keys = self._keys_from_expected(run_item.expected_output)
        if is_blank(required_keys):
            return None

        output = parse_mapping(run_item.actual_output)
        if output is None:
            return 0.0

        present_keys = {str(key) for key in output}
        present = sum(1 for key in required_keys if str(key) in present_keys)
        return present / len(required_keys)

    @staticmethod
    def _keys_from_expected(expected: Any) -> List[str]:
        if not isinstance(expected, dict):
            return []
        return [str(key) for key in expected]
