from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Mapping, Optional

import aiohttp
from aiohttp import ClientSession

from calmeval.errors import EvaluationError, ServiceError, TransportError


class BaseEvaluator(ABC):
    """
    Abstract base class for remote expression evaluators.

    An evaluator turns one expression string into one HTTP call and the
    response into a result string. ``evaluate`` is the only method the
    pipeline calls; it never lets a network exception escape, translating
    everything into the error taxonomy instead.

    Default implementations provided:
    - Plain headers (build_headers)
    - Status checking and error translation (evaluate)
    - Rate limit detection by status code and message (is_rate_limited)

    Subclasses must implement:
    - send: Issue the HTTP request and return (status, body)
    - parse_result: Extract the result string from a successful body

    Attributes:
        name (str): Human-readable evaluator identifier (e.g., "mathjs")
        request_url (str): Endpoint URL

    Example Implementation:
        >>> class EchoEvaluator(BaseEvaluator):
        ...     name = "echo"
        ...
        ...     def __init__(self, request_url: str):
        ...         self.request_url = request_url
        ...
        ...     async def send(self, session, headers, expression):
        ...         async with session.get(self.request_url, params={"q": expression}) as resp:
        ...             return resp.status, await resp.text()
        ...
        ...     def parse_result(self, body):
        ...         return body.strip()
    """

    name: str
    request_url: str

    def build_headers(self) -> dict[str, str]:
        """
        Build HTTP headers for evaluation requests.

        Returns:
            dict[str, str]: Headers sent with every call
        """
        return {"Accept": "text/plain"}

    def is_rate_limited(self, status: int, body: str = "") -> bool:
        """
        Determine if a response means the service is throttling us.

        Args:
            status (int): HTTP status code
            body (str): Response body

        Returns:
            bool: True for HTTP 429, or a 503 whose body reports rate limiting
        """
        if status == 429:
            return True
        if status != 503:
            return False
        lowered = body.lower()
        return "rate limit" in lowered or "too many requests" in lowered

    def parse_error(self, status: int, body: str) -> Optional[str]:
        """
        Extract an error message from a response.

        Args:
            status (int): HTTP status code
            body (str): Response body

        Returns:
            Optional[str]: Error message for non-200 responses, None otherwise
        """
        if status == 200:
            return None
        return body.strip() or f"HTTP {status}"

    async def evaluate(
        self,
        session: ClientSession,
        expression: str,
        headers: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Evaluate one expression remotely.

        Args:
            session (ClientSession): Shared aiohttp session (carries the call timeout)
            expression (str): Expression text, passed through untouched
            headers (Optional[Mapping[str, str]]): Headers from build_headers()

        Returns:
            str: The service's result

        Raises:
            TransportError: Connection failure or timeout
            ServiceError: Non-success status from the service
        """
        try:
            status, body = await self.send(session, headers or self.build_headers(), expression)
        except asyncio.TimeoutError as e:
            raise TransportError(f"{self.name} call timed out", timed_out=True) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        error = self.parse_error(status, body)
        if error is not None:
            raise ServiceError(status, error, rate_limited=self.is_rate_limited(status, body))
        try:
            return self.parse_result(body)
        except EvaluationError:
            raise
        except (ValueError, KeyError, TypeError) as e:
            raise ServiceError(status, f"Unparseable response: {e}") from e

    @abstractmethod
    async def send(
        self,
        session: ClientSession,
        headers: Mapping[str, str],
        expression: str,
    ) -> tuple[int, str]:
        """
        Perform the HTTP request.

        Args:
            session (ClientSession): Aiohttp client session
            headers (Mapping[str, str]): HTTP headers
            expression (str): Expression to evaluate

        Returns:
            tuple[int, str]: HTTP status and response body text

        Raises:
            aiohttp.ClientError: For network/connection errors
            asyncio.TimeoutError: For request timeouts
        """
        ...

    @abstractmethod
    def parse_result(self, body: str) -> str:
        """
        Extract the result from a successful response body.

        Args:
            body (str): Response body of a 200 response

        Returns:
            str: Result text shown to the user
        """
        ...
