from __future__ import annotations

from typing import Any, Callable, Dict

from calmeval.evaluators.base import BaseEvaluator
from calmeval.evaluators.mathjs import MathJsEvaluator

EvaluatorFactory = Callable[..., BaseEvaluator]

_REGISTRY: Dict[str, EvaluatorFactory] = {
    "mathjs": lambda **kwargs: MathJsEvaluator(**kwargs),
}


def get_evaluator(name: str, **kwargs: Any) -> BaseEvaluator:
    key = name.lower()
    if key not in _REGISTRY:
        raise ValueError(f"Unknown evaluator: {name}")
    return _REGISTRY[key](**kwargs)


def register_evaluator(name: str, factory: EvaluatorFactory) -> None:
    key = name.lower()
    if key in _REGISTRY:
        raise ValueError(f"Evaluator already registered: {name}")
    _REGISTRY[key] = factory


def available_evaluators() -> list[str]:
    return sorted(_REGISTRY)
