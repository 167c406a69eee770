"""Inference Scorer for semantic similarity and NLI contradiction.

Thin adapter between requirement text pairs and the inference backend:
builds the model-specific request, sends it through the BackoffCaller,
and normalizes the answer via the response parser chain.

Both operations return a ScoreResult instead of raising. A failed call
carries a ScoreError and is never confused with a genuine score of 0.0.
"""

from dataclasses import dataclass
from functools import lru_cache

import structlog

from reqconflict.core.backoff import BackoffCaller, InferenceError
from reqconflict.core.config import Settings, get_settings
from reqconflict.core.logging import preview
from reqconflict.core.rate_limiter import RateLimiter, RateLimiterConfig
from reqconflict.engines.contradiction.parsers import (
    UnrecognizedResponseError,
    parse_label_scores,
    select_contradiction,
    select_similarity,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Result Types
# =============================================================================

ERROR_UNRECOGNIZED_SHAPE = "UNRECOGNIZED_SHAPE"
ERROR_NO_CONTRADICTION_LABEL = "NO_CONTRADICTION_LABEL"
ERROR_NO_SCORE = "NO_SCORE"


@dataclass(frozen=True)
class ScoreError:
    """Why a score could not be produced."""

    code: str
    message: str


@dataclass(frozen=True)
class ScoreResult:
    """Score in [0, 1], or an error.

    value is 0.0 whenever error is set; check ok before using it.
    """

    value: float = 0.0
    error: ScoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: float) -> "ScoreResult":
        return cls(value=min(1.0, max(0.0, value)))

    @classmethod
    def failure(cls, code: str, message: str) -> "ScoreResult":
        return cls(value=0.0, error=ScoreError(code=code, message=message))


# =============================================================================
# Scorer
# =============================================================================


class InferenceScorer:
    """Score requirement pairs against the configured inference models.

    Example:
        >>> scorer = InferenceScorer()
        >>> result = await scorer.similarity("Data must be encrypted.", "Data is stored in plain text.")
        >>> result.ok, result.value
        (True, 0.71)
    """

    def __init__(
        self,
        caller: BackoffCaller | None = None,
        rate_limiter: RateLimiter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.caller = caller or BackoffCaller()
        self.rate_limiter = rate_limiter or RateLimiter(
            "inference", RateLimiterConfig.from_settings(self.settings)
        )

    @property
    def similarity_url(self) -> str:
        return f"{self.settings.huggingface_api_url}/{self.settings.similarity_model}"

    @property
    def nli_url(self) -> str:
        if self.settings.is_nli_endpoint_configured:
            return self.settings.nli_endpoint_url
        return f"{self.settings.huggingface_api_url}/{self.settings.nli_model}"

    async def aclose(self) -> None:
        await self.caller.aclose()

    async def _request(self, url: str, payload: dict, api_key: str, max_retries: int):
        async with self.rate_limiter:
            return await self.caller.call(
                url, payload, api_key=api_key, max_retries=max_retries
            )

    async def similarity(self, text_a: str, text_b: str) -> ScoreResult:
        """Semantic similarity of two texts.

        Args:
            text_a: Source sentence.
            text_b: Sentence compared against it.

        Returns:
            ScoreResult with the similarity in [0, 1], or an error.
        """
        payload = {"inputs": {"source_sentence": text_a, "sentences": [text_b]}}

        try:
            data = await self._request(
                self.similarity_url,
                payload,
                self.settings.huggingface_api_key,
                self.settings.similarity_max_retries,
            )
            value = select_similarity(parse_label_scores(data))
        except InferenceError as e:
            return self._failed("similarity", e.code, e.message, text_a, text_b)
        except UnrecognizedResponseError as e:
            return self._failed("similarity", ERROR_UNRECOGNIZED_SHAPE, str(e), text_a, text_b)

        if value is None:
            return self._failed(
                "similarity", ERROR_NO_SCORE, "Response contained no score", text_a, text_b
            )
        return ScoreResult.success(value)

    async def contradiction(self, premise: str, hypothesis: str) -> ScoreResult:
        """Probability that the hypothesis contradicts the premise.

        Uses the dedicated NLI endpoint when one is configured, otherwise
        the public inference API with "premise\\nhypothesis" input.

        Args:
            premise: First statement.
            hypothesis: Second statement.

        Returns:
            ScoreResult with the contradiction probability, or an error.
        """
        if self.settings.is_nli_endpoint_configured:
            payload: dict = {"inputs": {"premise": premise, "hypothesis": hypothesis}}
            api_key = self.settings.nli_endpoint_api_key
        else:
            payload = {"inputs": f"{premise}\n{hypothesis}"}
            api_key = self.settings.huggingface_api_key

        try:
            data = await self._request(
                self.nli_url, payload, api_key, self.settings.nli_max_retries
            )
            value = select_contradiction(parse_label_scores(data))
        except InferenceError as e:
            return self._failed("contradiction", e.code, e.message, premise, hypothesis)
        except UnrecognizedResponseError as e:
            return self._failed(
                "contradiction", ERROR_UNRECOGNIZED_SHAPE, str(e), premise, hypothesis
            )

        if value is None:
            return self._failed(
                "contradiction",
                ERROR_NO_CONTRADICTION_LABEL,
                "Response contained no contradiction label",
                premise,
                hypothesis,
            )
        return ScoreResult.success(value)

    def _failed(
        self, operation: str, code: str, message: str, text_a: str, text_b: str
    ) -> ScoreResult:
        logger.warning(
            "inference_score_failed",
            operation=operation,
            error_code=code,
            error=message,
            text_a=preview(text_a),
            text_b=preview(text_b),
        )
        return ScoreResult.failure(code, message)


# =============================================================================
# Service Factories
# =============================================================================


@lru_cache(maxsize=1)
def get_inference_scorer() -> InferenceScorer:
    """Get singleton inference scorer instance.

    Only for use inside the long-lived API event loop; worker processes
    build their own scorer per task.

    Returns:
        InferenceScorer instance.
    """
    return InferenceScorer()
