"""Unit tests for retry with exponential backoff."""

import asyncio
import logging

import httpx
import pytest

from apm_tools.telemetry_query.errors import (
    BackendError,
    PermanentBackendError,
    TransientBackendError,
    ValidationError,
)
from apm_tools.telemetry_query.retry import ResilientCaller, is_rate_limit_error, is_transient


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.datadoghq.com/api/v1/query")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


class Flaky:
    """Async callable that raises the queued errors, then returns a value."""

    def __init__(self, errors, result="done"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def recorded():
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    return delays, fake_sleep


class TestClassification:
    """Test transient vs permanent classification."""

    @pytest.mark.parametrize("code,expected", [(429, True), (500, True), (503, True), (400, False), (404, False)])
    def test_http_status(self, code, expected):
        assert is_transient(_status_error(code)) is expected

    def test_taxonomy(self):
        assert is_transient(TransientBackendError("boom", status_code=502))
        assert not is_transient(PermanentBackendError("nope", status_code=403))
        assert not is_transient(ValidationError("bad input"))

    def test_transport_and_timeout(self):
        assert is_transient(httpx.ConnectError("refused"))
        assert is_transient(asyncio.TimeoutError())

    def test_rate_limit_by_message(self):
        """Unknown exception types are retried only when they look like rate limits."""
        assert is_transient(RuntimeError("Rate limit exceeded"))
        assert is_transient(RuntimeError("got HTTP 429"))
        assert not is_transient(RuntimeError("something else"))

    def test_is_rate_limit_error(self):
        assert is_rate_limit_error(TransientBackendError("slow down", status_code=429))
        assert is_rate_limit_error(_status_error(429))
        assert not is_rate_limit_error(TransientBackendError("down", status_code=503))


class TestResilientCaller:
    """Test attempts, backoff delays and surfaced errors."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, recorded):
        delays, sleep = recorded
        fn = Flaky([])
        assert await ResilientCaller(sleep=sleep).call(fn) == "done"
        assert fn.calls == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_always_transient_three_attempts(self, recorded):
        """Exactly 3 attempts, delays 1s then 2s, then the transient error surfaces."""
        delays, sleep = recorded
        fn = Flaky([TransientBackendError("down", status_code=503) for _ in range(5)])
        caller = ResilientCaller(max_retries=3, base_delay=1.0, sleep=sleep)

        with pytest.raises(TransientBackendError):
            await caller.call(fn)

        assert fn.calls == 3
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, recorded):
        """A 4xx other than 429 surfaces after exactly one attempt."""
        delays, sleep = recorded
        fn = Flaky([PermanentBackendError("forbidden", status_code=403)])

        with pytest.raises(PermanentBackendError):
            await ResilientCaller(sleep=sleep).call(fn)

        assert fn.calls == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient(self, recorded):
        delays, sleep = recorded
        fn = Flaky([TransientBackendError("Rate limit exceeded", status_code=429)], result=42)

        assert await ResilientCaller(sleep=sleep).call(fn) == 42
        assert fn.calls == 2
        assert delays == [1.0]

    @pytest.mark.asyncio
    async def test_foreign_transient_errors_are_wrapped(self, recorded):
        """Raw transport errors become TransientBackendError after the last attempt."""
        _, sleep = recorded
        fn = Flaky([httpx.ConnectError("refused") for _ in range(3)])

        with pytest.raises(TransientBackendError) as exc_info:
            await ResilientCaller(max_retries=3, sleep=sleep).call(fn, description="query_metrics")

        assert "query_metrics failed after 3 attempts" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_wrapped_status_code_kept(self, recorded):
        _, sleep = recorded
        fn = Flaky([_status_error(502) for _ in range(2)])

        with pytest.raises(BackendError) as exc_info:
            await ResilientCaller(max_retries=2, sleep=sleep).call(fn)

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_custom_base_delay(self, recorded):
        delays, sleep = recorded
        fn = Flaky([TransientBackendError("down") for _ in range(4)])

        with pytest.raises(TransientBackendError):
            await ResilientCaller(max_retries=4, base_delay=0.5, sleep=sleep).call(fn)

        assert delays == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retries_are_logged(self, recorded, caplog):
        _, sleep = recorded
        fn = Flaky([TransientBackendError("down", status_code=503)])

        with caplog.at_level(logging.WARNING, logger="apm_tools.retry"):
            await ResilientCaller(sleep=sleep).call(fn, description="list_spans")

        assert "(attempt 1/3)" in caplog.text

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            ResilientCaller(max_retries=0)
