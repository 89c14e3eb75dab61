import asyncio
import time
from typing import Any, Mapping, Optional

import pytest

from calmeval.evaluators.base import BaseEvaluator


class FakeEvaluator(BaseEvaluator):
    """In-process evaluator recording every call; answers ``<expression>!`` unless told otherwise."""

    name = "fake"

    def __init__(
        self,
        results: Optional[dict[str, str]] = None,
        delay: float = 0.0,
        statuses: Optional[list[int]] = None,
        raises: Optional[BaseException] = None,
    ) -> None:
        self.request_url = "http://fake.invalid/"
        self.results = results or {}
        self.delay = delay
        self.statuses = list(statuses or [])
        self.raises = raises
        self.calls: list[tuple[float, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(
        self,
        session: Any,
        headers: Mapping[str, str],
        expression: str,
    ) -> tuple[int, str]:
        self.calls.append((time.monotonic(), expression))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.raises is not None:
                raise self.raises
            status = self.statuses.pop(0) if self.statuses else 200
            if status != 200:
                return status, f"Error: status {status}"
            return status, self.results.get(expression, f"{expression}!")
        finally:
            self.in_flight -= 1

    def parse_result(self, body: str) -> str:
        return body

    @property
    def called_expressions(self) -> list[str]:
        return [expression for _, expression in self.calls]


@pytest.fixture
def fake_evaluator() -> FakeEvaluator:
    return FakeEvaluator()
