"""
Retry with exponential backoff for outbound telemetry calls.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import httpx

from .errors import (
    PermanentBackendError,
    TelemetryToolError,
    TransientBackendError,
)

logger = logging.getLogger("apm_tools.retry")

T = TypeVar("T")

_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "429")


def is_rate_limit_error(error: BaseException) -> bool:
    if isinstance(error, TransientBackendError) and error.status_code == 429:
        return True
    if isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 429:
        return True
    message = str(error).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def is_transient(error: BaseException) -> bool:
    """Decide whether a failed call is worth another attempt.

    Rate limits, 5xx responses and transport failures are transient.
    Other 4xx responses and validation errors are not.
    """
    if isinstance(error, TransientBackendError):
        return True
    if isinstance(error, (PermanentBackendError, TelemetryToolError)):
        return False
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError)):
        return True
    return is_rate_limit_error(error)


class ResilientCaller:
    """Runs one outbound call with up to max_retries sequential attempts.

    Delays between attempts are base_delay * 2**i seconds (1s, 2s, 4s... by
    default) and are awaited, so other tasks keep running while a call backs off.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    async def call(self, fn: Callable[[], Awaitable[T]], description: str = "backend call") -> T:
        """Await fn(), retrying transient failures.

        Raises:
            TransientBackendError: The last transient failure, once attempts run out.
            Exception: Any non-transient failure, unchanged, on the attempt it happened.
        """
        last_error: BaseException | None = None

        for attempt in range(self.max_retries):
            try:
                return await fn()
            except Exception as e:
                if not is_transient(e):
                    raise
                last_error = e

                if attempt + 1 >= self.max_retries:
                    break

                delay = self.base_delay * (2**attempt)
                reason = "Rate limit hit" if is_rate_limit_error(e) else f"{description} failed: {e}"
                logger.warning(
                    f"{reason} (attempt {attempt + 1}/{self.max_retries}). Retrying in {delay:g}s."
                )
                await self._sleep(delay)

        logger.error(f"{description} failed after {self.max_retries} attempts: {last_error}")
        if isinstance(last_error, TransientBackendError):
            raise last_error
        status = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status = last_error.response.status_code
        raise TransientBackendError(
            f"{description} failed after {self.max_retries} attempts: {last_error}", status_code=status
        ) from last_error
