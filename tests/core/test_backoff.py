"""Tests for the retrying inference caller.

Tests cover:
- Backoff delay computation for 503 and 429
- Retry on 503/429 and transport errors
- Immediate failure on other statuses
- Retry exhaustion, missing API key, invalid JSON
"""

import httpx
import pytest

from reqconflict.core.backoff import (
    BackoffCaller,
    ExhaustedRetriesError,
    InferenceBackendError,
    InferenceConfigurationError,
    InferenceResponseError,
    compute_backoff_delay,
)

URL = "https://api-inference.huggingface.co/models/test/model"


# =============================================================================
# Test Helpers
# =============================================================================


class SleepRecorder:
    """Replacement for asyncio.sleep that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_caller(handler, sleep: SleepRecorder | None = None, base_delay: float = 1.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BackoffCaller(
        client=client,
        base_delay=base_delay,
        sleep=sleep or SleepRecorder(),
        jitter=lambda: 0.0,
    )


def scripted(responses: list):
    """Handler replaying responses (or raising exceptions) in order."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        item = responses[min(len(requests), len(responses)) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    return handler, requests


# =============================================================================
# Delay Computation Tests
# =============================================================================


class TestComputeBackoffDelay:
    """Tests for compute_backoff_delay."""

    def test_exponential_without_jitter(self) -> None:
        assert compute_backoff_delay(1, 1.0, jitter=lambda: 0.0) == 2.0
        assert compute_backoff_delay(2, 1.0, jitter=lambda: 0.0) == 4.0
        assert compute_backoff_delay(3, 0.5, jitter=lambda: 0.0) == 4.0

    def test_jitter_adds_at_most_ten_percent(self) -> None:
        assert compute_backoff_delay(1, 1.0, jitter=lambda: 1.0) == pytest.approx(2.2)
        assert compute_backoff_delay(1, 1.0, jitter=lambda: 0.5) == pytest.approx(2.1)

    def test_rate_limited_waits_two_extra_steps(self) -> None:
        standard = compute_backoff_delay(1, 1.0, status_code=503, jitter=lambda: 0.0)
        rate_limited = compute_backoff_delay(1, 1.0, status_code=429, jitter=lambda: 0.0)

        assert standard == 2.0
        assert rate_limited == 2.0 + 4.0
        assert compute_backoff_delay(2, 1.0, status_code=429, jitter=lambda: 0.0) == 4.0 + 8.0


# =============================================================================
# Caller Tests
# =============================================================================


class TestBackoffCaller:
    """Tests for BackoffCaller.call."""

    @pytest.mark.asyncio
    async def test_returns_decoded_json_and_sends_bearer_token(self) -> None:
        handler, requests = scripted([httpx.Response(200, json=[0.83])])
        caller = make_caller(handler)

        result = await caller.call(URL, {"inputs": "x"}, api_key="hf_test")

        assert result == [0.83]
        assert len(requests) == 1
        assert requests[0].headers["Authorization"] == "Bearer hf_test"

    @pytest.mark.asyncio
    async def test_retries_service_unavailable_then_succeeds(self) -> None:
        sleep = SleepRecorder()
        handler, requests = scripted(
            [
                httpx.Response(503),
                httpx.Response(503),
                httpx.Response(200, json={"score": 0.5}),
            ]
        )
        caller = make_caller(handler, sleep=sleep)

        result = await caller.call(URL, {}, api_key="hf_test", max_retries=5)

        assert result == {"score": 0.5}
        assert len(requests) == 3
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_rate_limited_uses_longer_wait(self) -> None:
        sleep = SleepRecorder()
        handler, _ = scripted([httpx.Response(429), httpx.Response(200, json=[0.1])])
        caller = make_caller(handler, sleep=sleep)

        await caller.call(URL, {}, api_key="hf_test")

        assert sleep.delays == [6.0]

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self) -> None:
        handler, requests = scripted(
            [httpx.ConnectError("connection reset"), httpx.Response(200, json=[0.4])]
        )
        caller = make_caller(handler)

        assert await caller.call(URL, {}, api_key="hf_test") == [0.4]
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_other_status_fails_immediately(self) -> None:
        sleep = SleepRecorder()
        handler, requests = scripted([httpx.Response(400)])
        caller = make_caller(handler, sleep=sleep)

        with pytest.raises(InferenceBackendError) as exc_info:
            await caller.call(URL, {}, api_key="hf_test")

        assert exc_info.value.status_code == 400
        assert exc_info.value.is_retryable is False
        assert exc_info.value.target == "test/model"
        assert len(requests) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_carry_last_error(self) -> None:
        handler, requests = scripted([httpx.Response(503)])
        caller = make_caller(handler)

        with pytest.raises(ExhaustedRetriesError) as exc_info:
            await caller.call(URL, {}, api_key="hf_test", max_retries=3)

        error = exc_info.value
        assert error.attempts == 3
        assert error.code == "INFERENCE_RETRIES_EXHAUSTED"
        assert isinstance(error.last_error, InferenceBackendError)
        assert error.last_error.status_code == 503
        assert len(requests) == 3

    @pytest.mark.asyncio
    async def test_missing_api_key_makes_no_request(self) -> None:
        handler, requests = scripted([httpx.Response(200, json=[1.0])])
        caller = make_caller(handler)

        with pytest.raises(InferenceConfigurationError):
            await caller.call(URL, {}, api_key="")

        assert requests == []

    @pytest.mark.asyncio
    async def test_invalid_json_is_not_retried(self) -> None:
        handler, requests = scripted([httpx.Response(200, content=b"<html>loading</html>")])
        caller = make_caller(handler)

        with pytest.raises(InferenceResponseError):
            await caller.call(URL, {}, api_key="hf_test")

        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_non_transport_http_error_is_wrapped(self) -> None:
        sleep = SleepRecorder()
        handler, requests = scripted([httpx.TooManyRedirects("redirect loop")])
        caller = make_caller(handler, sleep=sleep)

        with pytest.raises(InferenceResponseError) as exc_info:
            await caller.call(URL, {}, api_key="hf_test")

        assert isinstance(exc_info.value.__cause__, httpx.TooManyRedirects)
        assert len(requests) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self) -> None:
        handler, _ = scripted([httpx.Response(200, json=[0.2])])
        caller = make_caller(handler)

        await caller.aclose()

        assert caller.client.is_closed is False
