"""Health check and model warming endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from reqconflict.core.config import Settings, get_settings
from reqconflict.engines.contradiction.scorer import InferenceScorer, get_inference_scorer
from reqconflict.engines.contradiction.warmup import ModelWarmer

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)


def get_model_warmer(
    scorer: InferenceScorer = Depends(get_inference_scorer),
) -> ModelWarmer:
    """Model warmer sharing the API scorer's HTTP client."""
    return ModelWarmer(caller=scorer.caller)


@router.get("")
async def health_check(
    settings: Settings = Depends(get_settings),
    scorer: InferenceScorer = Depends(get_inference_scorer),
) -> dict[str, Any]:
    """Basic health check with configuration status.

    Returns:
        Health status, configured models and limiter statistics.
    """
    return {
        "data": {
            "status": "healthy",
            "service": "reqconflict",
            "checks": {
                "inference_configured": settings.is_inference_configured,
                "nli_endpoint_configured": settings.is_nli_endpoint_configured,
                "store_backend": settings.comparison_store_backend,
                "dispatch_mode": settings.analysis_dispatch_mode,
            },
            "models": {
                "similarity": settings.similarity_model,
                "nli": settings.nli_model,
            },
            "rate_limiter": scorer.rate_limiter.get_stats(),
        }
    }


@router.post("/warm-models")
async def warm_models(
    warmer: ModelWarmer = Depends(get_model_warmer),
) -> dict[str, Any]:
    """Send a minimal request to every inference model.

    Returns:
        Per-model warm-up results.
    """
    results = await warmer.warm_all()
    logger.info(
        "warm_models_api_complete",
        succeeded=sum(1 for r in results if r.success),
        total=len(results),
    )
    return {
        "data": {
            "results": [
                {"model": r.model, "success": r.success, "error": r.error}
                for r in results
            ],
            "all_succeeded": all(r.success for r in results),
        }
    }
