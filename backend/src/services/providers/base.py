"""Base provider adapter: uniform call contract plus retry with backoff.

Each concrete adapter translates ``generate_response`` into one vendor's REST
API. Adapters are built per call from a user's credential, so there is no
shared client per provider. The credential is held only on the instance and
is never logged or copied into exception messages.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
import logging
import math
import random
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ...models.generation import GenerationOptions, GenerationResult
from ..errors import UpstreamProviderError

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

# Status codes worth another attempt; other 4xx responses will not change.
TRANSIENT_STATUS_CODES = {408, 409, 425, 429}


class BackendResponseError(Exception):
    """Backend answered 2xx but the envelope was unusable."""


# Raised while reading fields out of an envelope whose shape is not the documented one
MALFORMED_ENVELOPE_ERRORS = (AttributeError, IndexError, KeyError, TypeError, ValueError)


def read_json_object(response: httpx.Response) -> Dict[str, Any]:
    """Decode a 2xx body that must be a JSON object."""
    try:
        data = response.json()
    except ValueError as e:
        raise BackendResponseError(f"Response body is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise BackendResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def is_transient(error: BaseException) -> bool:
    """Return True when a failed attempt may succeed if repeated."""
    if isinstance(error, httpx.HTTPStatusError):
        code = error.response.status_code
        return code >= 500 or code in TRANSIENT_STATUS_CODES
    return isinstance(error, (httpx.HTTPError, BackendResponseError))


class ProviderAdapter(ABC):
    """Uniform contract to one LLM backend.

    Subclasses implement ``_call_backend`` (one network attempt) and
    ``validate_key`` (one probe). ``generate_response`` wraps the former in
    exponential backoff: ``base_delay * 2**attempt`` plus up to
    ``max_jitter`` seconds of random jitter, for ``max_retries`` retries.
    """

    name: str = ""
    DEFAULT_MODEL: str = ""
    DEFAULT_MAX_TOKENS = 4000
    DEFAULT_TEMPERATURE = 0.7

    def __init__(
        self,
        api_key: str,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_jitter: float = 1.0,
        timeout: float = 60.0,
        sleep: Optional[SleepFunc] = None,
    ):
        """
        Initialize the adapter.

        Args:
            api_key: Decrypted provider credential (opaque, never persisted)
            max_retries: Retries after the first attempt
            base_delay: Backoff base in seconds
            max_jitter: Upper bound of random jitter in seconds
            timeout: Timeout for one HTTP call
            sleep: Awaitable sleep (injectable for tests)
        """
        self.api_key = api_key
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_jitter = max_jitter
        self.timeout = timeout
        self._sleep = sleep or asyncio.sleep
        self._cancelled = False
        self.attempts = 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    def cancel(self) -> None:
        """Stop before the next attempt; an in-flight call is left to finish."""
        self._cancelled = True

    def is_cancelled(self) -> bool:
        return self._cancelled

    def estimate_tokens(self, text: str) -> int:
        """Rough estimate: 1 token per 4 characters."""
        return math.ceil(len(text) / 4)

    async def generate_response(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        options = options or GenerationOptions()
        model = options.model or self.DEFAULT_MODEL
        max_tokens = options.max_tokens or self.DEFAULT_MAX_TOKENS
        temperature = (
            options.temperature if options.temperature is not None else self.DEFAULT_TEMPERATURE
        )

        async def attempt() -> GenerationResult:
            return await self._call_backend(
                prompt,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                system_prompt=options.system_prompt,
                json_output=options.json_output,
            )

        return await self._retry_with_backoff(attempt)

    @abstractmethod
    async def _call_backend(
        self,
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: Optional[str],
        json_output: bool = True,
    ) -> GenerationResult:
        """Perform exactly one backend request."""

    @abstractmethod
    async def validate_key(self, api_key: str) -> bool:
        """Probe the backend once with ``api_key``; never raises."""

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt) + random.uniform(0, self.max_jitter)

    async def _retry_with_backoff(
        self, operation: Callable[[], Awaitable[GenerationResult]]
    ) -> GenerationResult:
        last_error: Optional[BaseException] = None
        total_attempts = self.max_retries + 1
        made = 0

        for attempt in range(total_attempts):
            if self._cancelled:
                logger.info(f"{self.name} adapter cancelled before attempt {attempt + 1}")
                raise asyncio.CancelledError()

            made += 1
            self.attempts += 1
            try:
                return await operation()
            except (httpx.HTTPError, BackendResponseError) as e:
                last_error = e
                if not is_transient(e):
                    logger.error(
                        f"{self.name} request rejected: {_describe(e)}",
                        extra={"provider": self.name, "attempt": attempt + 1},
                    )
                    break

                if attempt == total_attempts - 1:
                    break

                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"{self.name} request failed (attempt {attempt + 1}/{total_attempts}), "
                    f"retrying in {delay:.2f}s: {_describe(e)}",
                    extra={"provider": self.name, "attempt": attempt + 1},
                )
                await self._sleep(delay)

        logger.error(
            f"{self.name} request failed after {made} attempt(s)",
            extra={"provider": self.name},
        )
        raise UpstreamProviderError(
            f"{self.name} request failed: {_describe(last_error)}",
            provider=self.name,
            cause=last_error,
            details={"attempts": made},
        )


def _describe(error: Optional[BaseException]) -> str:
    """Short failure description that never includes request headers."""
    if error is None:
        return "unknown error"
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}"
    return f"{type(error).__name__}: {error}"


__all__ = [
    "ProviderAdapter",
    "BackendResponseError",
    "MALFORMED_ENVELOPE_ERRORS",
    "TRANSIENT_STATUS_CODES",
    "is_transient",
    "read_json_object",
]
