from __future__ import annotations

from typing import Mapping, Optional

from aiohttp import ClientSession

from calmeval.evaluators.base import BaseEvaluator
from calmeval.utils import validate_endpoint_url

MATHJS_API_URL = "http://api.mathjs.org/v4/"


class MathJsEvaluator(BaseEvaluator):
    """
    Evaluator backed by the public math.js web service.

    See: https://api.mathjs.org/

    Expressions are sent as ``GET <request_url>?expr=<expression>`` and the
    service answers with the plain-text result. Errors come back as HTTP 400
    with the message in the body, e.g. ``Error: Undefined symbol x``.
    math.js syntax applies: ``^`` for power, ``sqrt(...)``, complex results
    such as ``5i``.

    Attributes:
        name (str): Always "mathjs"
        request_url (str): Endpoint URL
        precision (Optional[int]): Significant digits requested from the service

    Example:
        >>> evaluator = MathJsEvaluator(precision=14)
        >>> evaluator.build_params("2 * 4 * 4")
        {'expr': '2 * 4 * 4', 'precision': '14'}
    """

    name = "mathjs"

    def __init__(self, request_url: str = MATHJS_API_URL, precision: Optional[int] = None) -> None:
        """
        Initialize the math.js evaluator.

        Args:
            request_url (str): Endpoint URL (defaults to the public v4 API)
            precision (Optional[int]): Number of significant digits, None for service default

        Raises:
            ValueError: If the URL is not absolute http(s) or precision is not positive
        """
        self.request_url = validate_endpoint_url(request_url)
        if precision is not None and precision < 1:
            raise ValueError(f"precision must be a positive integer, got {precision}")
        self.precision = precision

    def build_params(self, expression: str) -> dict[str, str]:
        params = {"expr": expression}
        if self.precision is not None:
            params["precision"] = str(self.precision)
        return params

    async def send(
        self,
        session: ClientSession,
        headers: Mapping[str, str],
        expression: str,
    ) -> tuple[int, str]:
        async with session.get(
            self.request_url, headers=headers, params=self.build_params(expression)
        ) as response:
            body = await response.text()
            return response.status, body

    def parse_result(self, body: str) -> str:
        return body.strip()
