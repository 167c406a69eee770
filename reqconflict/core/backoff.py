"""Retrying HTTP caller for the inference backend.

Every outbound scoring request goes through BackoffCaller.call(), which wraps
one POST in a tenacity retry loop:

- 503 (model loading or busy): retried with exponential backoff
  (base * 2**attempt plus 0-10% jitter)
- 429 (rate limited): retried with the standard wait plus two extra backoff
  steps (base * 2**(attempt + 1)) so concurrent callers spread out
- transport errors and timeouts: retried with the standard wait
- any other non-2xx status: InferenceBackendError raised immediately
- decoding, redirect and URL errors: InferenceResponseError raised immediately

When attempts run out, ExhaustedRetriesError carries the last failure.
The caller holds no state besides its HTTP client, so one instance can be
shared by concurrent comparisons.

Usage:
    caller = BackoffCaller()
    data = await caller.call(url, {"inputs": "..."}, api_key=key)
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from reqconflict.core.config import get_settings
from reqconflict.core.correlation import get_correlation_id

logger = structlog.get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

STATUS_SERVICE_UNAVAILABLE = 503
STATUS_TOO_MANY_REQUESTS = 429

RETRYABLE_STATUS_CODES = frozenset({STATUS_SERVICE_UNAVAILABLE, STATUS_TOO_MANY_REQUESTS})

# Extra backoff steps applied on top of the standard wait for 429s
RATE_LIMIT_EXTRA_STEPS = 2

MAX_JITTER_FRACTION = 0.1

DEFAULT_MAX_RETRIES = 5


# =============================================================================
# Exceptions
# =============================================================================


class InferenceError(Exception):
    """Base exception for inference backend failures.

    Attributes:
        message: Error message.
        code: Machine-readable error code.
        is_retryable: Whether the operation can be retried.
    """

    def __init__(
        self,
        message: str,
        code: str = "INFERENCE_ERROR",
        is_retryable: bool = False,
    ):
        self.message = message
        self.code = code
        self.is_retryable = is_retryable
        super().__init__(message)


class InferenceConfigurationError(InferenceError):
    """Raised when the backend cannot be called (e.g. missing API key)."""

    def __init__(self, message: str):
        super().__init__(message, code="INFERENCE_NOT_CONFIGURED", is_retryable=False)


class InferenceBackendError(InferenceError):
    """Raised when the backend answers with a non-2xx status."""

    def __init__(self, status_code: int, target: str = "unknown"):
        self.status_code = status_code
        self.target = target
        super().__init__(
            f"Inference backend error for {target}: HTTP {status_code}",
            code="INFERENCE_BACKEND_ERROR",
            is_retryable=status_code in RETRYABLE_STATUS_CODES,
        )


class InferenceResponseError(InferenceError):
    """Raised when a response cannot be obtained or decoded and a retry will not help."""

    def __init__(self, message: str):
        super().__init__(message, code="INFERENCE_INVALID_RESPONSE", is_retryable=False)


class ExhaustedRetriesError(InferenceError):
    """Raised when every attempt failed with a retryable condition."""

    def __init__(self, attempts: int, last_error: BaseException | None, target: str = "unknown"):
        self.attempts = attempts
        self.last_error = last_error
        self.target = target
        super().__init__(
            f"Maximum retries ({attempts}) exceeded for {target}: {last_error}",
            code="INFERENCE_RETRIES_EXHAUSTED",
            is_retryable=False,
        )


# =============================================================================
# Backoff Policy
# =============================================================================


def _with_jitter(delay: float, jitter: Callable[[], float]) -> float:
    return delay + jitter() * MAX_JITTER_FRACTION * delay


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    status_code: int | None = None,
    jitter: Callable[[], float] = random.random,
) -> float:
    """Compute the wait before the next attempt.

    Args:
        attempt: Number of attempts made so far (1 after the first failure).
        base_delay: Base delay in seconds.
        status_code: HTTP status of the failed attempt, if any.
        jitter: Source of values in [0, 1) used for the 0-10% jitter.

    Returns:
        Delay in seconds.
    """
    delay = _with_jitter(base_delay * 2**attempt, jitter)
    if status_code == STATUS_TOO_MANY_REQUESTS:
        extra_steps = attempt - 1 + RATE_LIMIT_EXTRA_STEPS
        delay += _with_jitter(base_delay * 2**extra_steps, jitter)
    return delay


def _is_retryable_error(exc: BaseException) -> bool:
    if isinstance(exc, InferenceError):
        return exc.is_retryable
    # Covers timeouts, connection resets and protocol errors
    return isinstance(exc, httpx.TransportError)


def _target_name(url: str) -> str:
    """Extract the model (or endpoint host) from a backend URL for logs."""
    if "/models/" in url:
        return url.split("/models/", 1)[1] or "unknown"
    return httpx.URL(url).host or "unknown"


# =============================================================================
# Caller
# =============================================================================


class BackoffCaller:
    """POST JSON to the inference backend with bounded, status-aware retries.

    Example:
        >>> caller = BackoffCaller(base_delay=0.5)
        >>> result = await caller.call(url, payload, api_key="hf_...")
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        base_delay: float | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the caller.

        Args:
            client: HTTP client to use. Created from settings when omitted.
            base_delay: Base backoff delay in seconds (settings default).
            max_retries: Default attempt budget when a call site gives none.
            sleep: Awaitable sleep used between attempts.
            jitter: Source of jitter values in [0, 1).
        """
        settings = get_settings()
        self._client = client
        self._owns_client = client is None
        self.base_delay = (
            settings.inference_base_retry_delay if base_delay is None else base_delay
        )
        self.max_retries = max_retries
        self._sleep = sleep
        self._jitter = jitter

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it on first use."""
        if self._client is None:
            settings = get_settings()
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    settings.inference_timeout_seconds,
                    connect=settings.inference_connect_timeout_seconds,
                ),
            )
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this caller created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> BackoffCaller:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _wait(self, retry_state: RetryCallState) -> float:
        status_code = None
        if retry_state.outcome is not None:
            exc = retry_state.outcome.exception()
            if isinstance(exc, InferenceBackendError):
                status_code = exc.status_code
        return compute_backoff_delay(
            retry_state.attempt_number,
            self.base_delay,
            status_code=status_code,
            jitter=self._jitter,
        )

    async def _post(self, url: str, payload: Any, api_key: str, target: str) -> Any:
        try:
            response = await self.client.post(
                url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TransportError:
            raise
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # Decoding, redirect and URL errors will not succeed on retry
            raise InferenceResponseError(
                f"Request to inference backend failed for {target}: {e}"
            ) from e

        if not response.is_success:
            raise InferenceBackendError(response.status_code, target=target)

        try:
            return response.json()
        except ValueError as e:
            raise InferenceResponseError(
                f"Invalid JSON from inference backend for {target}: {e}"
            ) from e

    async def call(
        self,
        url: str,
        payload: Any,
        *,
        api_key: str,
        max_retries: int | None = None,
    ) -> Any:
        """POST a JSON payload and return the decoded JSON response.

        Args:
            url: Full backend URL (model or endpoint).
            payload: JSON-serializable request body.
            api_key: Bearer token for the backend.
            max_retries: Total attempt budget for this call.

        Returns:
            Decoded JSON body of the first successful response.

        Raises:
            InferenceConfigurationError: If no API key is available.
            InferenceBackendError: On a non-retryable HTTP status.
            InferenceResponseError: If the response body is not JSON or the
                request fails in a way a retry cannot fix.
            ExhaustedRetriesError: If every attempt failed retryably.
        """
        target = _target_name(url)
        if not api_key:
            raise InferenceConfigurationError(
                f"Inference API key not configured; cannot call {target}"
            )

        attempts = max(1, max_retries if max_retries is not None else self.max_retries)

        def _log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "inference_retry_scheduled",
                target=target,
                attempt=retry_state.attempt_number,
                max_attempts=attempts,
                status_code=getattr(exc, "status_code", None),
                error=str(exc),
                wait_seconds=round(retry_state.next_action.sleep, 3)
                if retry_state.next_action
                else None,
                correlation_id=get_correlation_id(),
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=self._wait,
                retry=retry_if_exception(_is_retryable_error),
                before_sleep=_log_retry,
                sleep=self._sleep,
            ):
                with attempt:
                    return await self._post(url, payload, api_key, target)
        except RetryError as e:
            last_error = e.last_attempt.exception() if e.last_attempt else None
            logger.error(
                "inference_retries_exhausted",
                target=target,
                attempts=attempts,
                error=str(last_error),
                correlation_id=get_correlation_id(),
            )
            raise ExhaustedRetriesError(attempts, last_error, target=target) from last_error

        # Unreachable: AsyncRetrying either returns, raises, or raises RetryError
        raise ExhaustedRetriesError(attempts, None, target=target)
