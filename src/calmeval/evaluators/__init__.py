"""Evaluator implementations and registry."""

from calmeval.evaluators.base import BaseEvaluator
from calmeval.evaluators.mathjs import MATHJS_API_URL, MathJsEvaluator
from calmeval.evaluators.registry import available_evaluators, get_evaluator, register_evaluator

__all__ = [
    "BaseEvaluator",
    "MathJsEvaluator",
    "MATHJS_API_URL",
    "get_evaluator",
    "register_evaluator",
    "available_evaluators",
]
