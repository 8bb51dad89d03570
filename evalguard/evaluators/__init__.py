"""
Evaluators - Pluggable run-item scoring strategies.

Built-in evaluators:
- exact_match: Actual output equals expected output (boolean)
- contains: Fraction of keywords present in the output
- json_structure: Fraction of required keys present in the output

Evaluators are looked up by their stable type string, which is also the
default score name.
"""

from typing import Any, Dict, Mapping, Optional, Type

from evalguard.errors import InvalidConfiguration
from evalguard.evaluators.base import BaseEvaluator
from evalguard.evaluators.exact_match import ExactMatchEvaluator
from evalguard.evaluators.contains import ContainsEvaluator
from evalguard.evaluators.json_structure import JsonStructureEvaluator

# Registry of evaluator classes by type string
EVALUATORS: Dict[str, Type[BaseEvaluator]] = {
    "exact_match": ExactMatchEvaluator,
    "contains": ContainsEvaluator,
    "json_structure": JsonStructureEvaluator,
}


def register_evaluator(
    evaluator_class: Type[BaseEvaluator],
    key: Optional[str] = None
) -> Type[BaseEvaluator]:
    """
    Register an evaluator class under its type string.

    Usable as a class decorator.
    """
    EVALUATORS[key or evaluator_class.default_name()] = evaluator_class
    return evaluator_class


def build_evaluator(config: Mapping[str, Any], strict: bool = False) -> BaseEvaluator:
    """
    Build an evaluator from a configuration mapping.

    Args:
        config: {"type": "<evaluator type>", **options}
        strict: Reject unrecognised option keys

    Returns:
        Configured evaluator

    Raises:
        InvalidConfiguration: Unknown type or invalid options

    Example:
        >>> build_evaluator({"type": "contains", "keywords": ["refund"]})
        <ContainsEvaluator(name='contains')>
    """
    evaluator_type = config.get("type")
    evaluator_class = EVALUATORS.get(evaluator_type)
    if evaluator_class is None:
        raise InvalidConfiguration(f"Unknown evaluator type: {evaluator_type!r}")

    options = {key: value for key, value in config.items() if key != "type"}
    return evaluator_class(strict=strict, **options)


__all__ = [
    "EVALUATORS",
    "BaseEvaluator",
    "ExactMatchEvaluator",
    "ContainsEvaluator",
    "JsonStructureEvaluator",
    "build_evaluator",
    "register_evaluator",
]
