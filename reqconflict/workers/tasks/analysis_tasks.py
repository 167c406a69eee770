"""Celery tasks for contradiction analysis.

run_contradiction_analysis executes a task record created by the API
process. The worker polls the store once per pair, so a newer analysis
for the same scope stops this run even across processes.

warm_inference_models is scheduled by Celery beat to keep the hosted
models loaded.
"""

import asyncio

import structlog

from reqconflict.core.backoff import BackoffCaller
from reqconflict.engines.contradiction.analyzer import PairwiseAnalyzer
from reqconflict.engines.contradiction.scorer import InferenceScorer
from reqconflict.engines.contradiction.warmup import ModelWarmer
from reqconflict.models.contradiction import (
    AnalysisOptions,
    AnalysisTask,
    RequirementRef,
)
from reqconflict.services.comparison_store import get_comparison_store
from reqconflict.services.task_coordinator import AnalysisTaskCoordinator
from reqconflict.workers.celery import celery_app

logger = structlog.get_logger(__name__)


def _run_async(coro):
    """Run async coroutine in sync context for Celery tasks.

    Each call gets a fresh event loop, so loop-bound resources (HTTP
    client, rate limiter) are created inside the coroutine.

    Args:
        coro: An awaitable coroutine to execute.

    Returns:
        The result of the coroutine execution.
    """
    return asyncio.run(coro)


async def _run_contradiction_analysis_async(
    task_payload: dict,
    requirements: list[dict],
    options: dict,
) -> dict:
    """Async implementation of a queued analysis run.

    Args:
        task_payload: Serialized AnalysisTask created by the API.
        requirements: Serialized RequirementRefs in input order.
        options: Serialized AnalysisOptions.

    Returns:
        Summary of the task's terminal state.
    """
    task = AnalysisTask.model_validate(task_payload)
    refs = [RequirementRef.model_validate(item) for item in requirements]
    analysis_options = AnalysisOptions.model_validate(options)

    scorer = InferenceScorer()
    try:
        coordinator = AnalysisTaskCoordinator(get_comparison_store(), PairwiseAnalyzer(scorer))
        final = await coordinator.run_task(
            task, refs, analysis_options, poll_supersession=True
        )
    finally:
        await scorer.aclose()

    return {
        "task_id": final.id,
        "scope": final.scope,
        "status": final.status.value,
        "completed_comparisons": final.completed_comparisons,
        "total_comparisons": final.total_comparisons,
        "error": final.error,
    }


@celery_app.task(
    bind=True,
    name="reqconflict.workers.tasks.analysis_tasks.run_contradiction_analysis",
    acks_late=True,
    max_retries=0,
)
def run_contradiction_analysis(
    self,
    task: dict,
    requirements: list[dict],
    options: dict,
) -> dict:
    """Run a contradiction analysis task created by the API process.

    Failures are recorded on the task record, so the Celery task is not
    retried: a retry would re-run a task that already reached a terminal
    state.

    Args:
        task: Serialized AnalysisTask.
        requirements: Serialized RequirementRefs.
        options: Serialized AnalysisOptions.

    Returns:
        Summary of the task's terminal state.
    """
    logger.info(
        "analysis_worker_task_started",
        task_id=task.get("id"),
        scope=task.get("scope"),
        celery_task_id=self.request.id,
        requirement_count=len(requirements),
    )
    result = _run_async(_run_contradiction_analysis_async(task, requirements, options))
    logger.info("analysis_worker_task_finished", **result)
    return result


async def _warm_inference_models_async() -> list[dict]:
    async with BackoffCaller() as caller:
        results = await ModelWarmer(caller=caller).warm_all()
    return [
        {"model": r.model, "success": r.success, "error": r.error} for r in results
    ]


@celery_app.task(
    name="reqconflict.workers.tasks.analysis_tasks.warm_inference_models",
    acks_late=True,
)
def warm_inference_models() -> list[dict]:
    """Send a minimal request to each inference model (beat schedule)."""
    return _run_async(_warm_inference_models_async())
