"""Model warming for the hosted inference backend.

Hosted models are unloaded when idle and answer 503 while loading. A tiny
request per model ahead of an analysis run loads them, so the run itself
spends fewer attempts in backoff.
"""

import asyncio
from dataclasses import dataclass

import structlog

from reqconflict.core.backoff import BackoffCaller, InferenceError
from reqconflict.core.config import Settings, get_settings

logger = structlog.get_logger(__name__)

WARMUP_TEXT = "Hello"


@dataclass(frozen=True)
class WarmupResult:
    """Outcome of warming one model."""

    model: str
    success: bool
    error: str | None = None


class ModelWarmer:
    """Send a minimal request to each configured model."""

    def __init__(
        self,
        caller: BackoffCaller | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.caller = caller or BackoffCaller()

    def _targets(self) -> list[tuple[str, str, dict, str]]:
        """(name, url, payload, api_key) for every model to warm."""
        s = self.settings
        targets = [
            (
                s.similarity_model,
                f"{s.huggingface_api_url}/{s.similarity_model}",
                {"inputs": {"source_sentence": WARMUP_TEXT, "sentences": [WARMUP_TEXT]}},
                s.huggingface_api_key,
            ),
        ]
        if s.is_nli_endpoint_configured:
            targets.append(
                (
                    "nli-endpoint",
                    s.nli_endpoint_url,
                    {"inputs": {"premise": WARMUP_TEXT, "hypothesis": WARMUP_TEXT}},
                    s.nli_endpoint_api_key,
                )
            )
        else:
            targets.append(
                (
                    s.nli_model,
                    f"{s.huggingface_api_url}/{s.nli_model}",
                    {"inputs": f"{WARMUP_TEXT}\n{WARMUP_TEXT}"},
                    s.huggingface_api_key,
                )
            )
        return targets

    async def warm_model(self, name: str, url: str, payload: dict, api_key: str) -> WarmupResult:
        try:
            await self.caller.call(
                url,
                payload,
                api_key=api_key,
                max_retries=self.settings.model_warming_max_retries,
            )
        except InferenceError as e:
            logger.warning("model_warmup_failed", model=name, error=e.message, code=e.code)
            return WarmupResult(model=name, success=False, error=e.message)

        logger.info("model_warmup_succeeded", model=name)
        return WarmupResult(model=name, success=True)

    async def warm_all(self) -> list[WarmupResult]:
        """Warm every configured model concurrently.

        Returns:
            One WarmupResult per model; failures are reported, not raised.
        """
        targets = self._targets()
        logger.info("model_warmup_started", models=[t[0] for t in targets])

        results = await asyncio.gather(*(self.warm_model(*t) for t in targets))

        logger.info(
            "model_warmup_complete",
            succeeded=sum(1 for r in results if r.success),
            total=len(results),
        )
        return list(results)
