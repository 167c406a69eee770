"""Contradiction Analysis Service.

Engine-facing API used by routes, the CLI and tests:
- analyze(): synchronous run, returns the full result
- analyze_async(): background run, returns a task id immediately
- get_status() / get_current_task(): task polling with staleness
- get_stored_results(): rebuild a response from persisted comparisons

Background runs execute in-process ("inline") or on a Celery worker
("celery"), per settings.analysis_dispatch_mode.
"""

from collections.abc import Sequence
from functools import lru_cache

import structlog

from reqconflict.core.config import get_settings
from reqconflict.engines.contradiction.analyzer import (
    PairwiseAnalyzer,
    build_requirement_refs,
)
from reqconflict.engines.contradiction.scorer import get_inference_scorer
from reqconflict.models.contradiction import (
    AnalysisOptions,
    AnalysisResponse,
    AnalysisTaskStatus,
    AsyncAnalysisAccepted,
    TaskStatus,
)
from reqconflict.services.comparison_store import ComparisonStore, get_comparison_store
from reqconflict.services.task_coordinator import AnalysisTaskCoordinator

logger = structlog.get_logger(__name__)

DISPATCH_INLINE = "inline"
DISPATCH_CELERY = "celery"


# =============================================================================
# Exceptions
# =============================================================================


class AnalysisError(Exception):
    """Base exception for analysis service operations."""

    def __init__(
        self,
        message: str,
        code: str = "ANALYSIS_ERROR",
        is_retryable: bool = False,
    ):
        self.message = message
        self.code = code
        self.is_retryable = is_retryable
        super().__init__(message)


class AnalysisDispatchError(AnalysisError):
    """Raised when a background run cannot be queued."""

    def __init__(self, message: str):
        super().__init__(message, code="ANALYSIS_DISPATCH_FAILED", is_retryable=True)


# =============================================================================
# Service Implementation
# =============================================================================


class ContradictionAnalysisService:
    """Run and report on requirement contradiction analyses.

    Example:
        >>> service = get_contradiction_analysis_service()
        >>> response = await service.analyze(["The system must ...", "Data must ..."])
        >>> response.comparisons_made
        1
    """

    def __init__(
        self,
        analyzer: PairwiseAnalyzer,
        store: ComparisonStore,
        coordinator: AnalysisTaskCoordinator | None = None,
        dispatch_mode: str | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.store = store
        self.coordinator = coordinator or AnalysisTaskCoordinator(store, analyzer)
        self.dispatch_mode = (dispatch_mode or get_settings().analysis_dispatch_mode).lower()
        if self.dispatch_mode not in (DISPATCH_INLINE, DISPATCH_CELERY):
            raise AnalysisError(
                f"Unknown analysis dispatch mode: {self.dispatch_mode}",
                code="INVALID_DISPATCH_MODE",
            )

    async def analyze(
        self,
        requirements: Sequence[str],
        options: AnalysisOptions | None = None,
        requirement_ids: Sequence[str | int] | None = None,
    ) -> AnalysisResponse:
        """Analyze a requirement list synchronously.

        Args:
            requirements: Requirement texts, in order.
            options: Thresholds and limits.
            requirement_ids: Durable ids parallel to requirements.

        Returns:
            Complete AnalysisResponse (partial when the error breaker tripped).
        """
        options = options or AnalysisOptions()
        refs = build_requirement_refs(requirements, requirement_ids)

        outcome = await self.analyzer.analyze(refs, options)

        return AnalysisResponse(
            contradictions=outcome.findings,
            comparisons_made=outcome.comparisons_made,
            nli_checks_made=outcome.nli_checks_made,
            processing_time_seconds=outcome.processing_time_seconds,
            errors=outcome.errors_summary,
            is_complete=True,
            requirements_analyzed=outcome.requirements_analyzed,
            requirements_truncated_from=outcome.requirements_truncated_from,
            skipped_short_requirements=outcome.skipped_short_requirements,
        )

    async def analyze_async(
        self,
        requirements: Sequence[str],
        options: AnalysisOptions | None,
        scope: str,
        requirement_ids: Sequence[str | int] | None = None,
    ) -> AsyncAnalysisAccepted:
        """Start a background analysis for a scope.

        Args:
            requirements: Requirement texts, in order.
            options: Thresholds and limits.
            scope: Project/analysis scope; supersedes the scope's current task.
            requirement_ids: Durable ids parallel to requirements.

        Returns:
            AsyncAnalysisAccepted carrying the new task id.

        Raises:
            AnalysisDispatchError: If the run cannot be queued to Celery.
        """
        options = options or AnalysisOptions()
        refs = build_requirement_refs(requirements, requirement_ids)

        if self.dispatch_mode == DISPATCH_CELERY:
            task = await self.coordinator.create_task(refs, options, scope)
            await self._dispatch_to_celery(task, refs, options)
        else:
            task = await self.coordinator.start(refs, options, scope)

        logger.info(
            "analysis_async_accepted",
            task_id=task.id,
            scope=scope,
            dispatch_mode=self.dispatch_mode,
            total_comparisons=task.total_comparisons,
        )

        return AsyncAnalysisAccepted(
            task_id=task.id,
            scope=scope,
            is_complete=False,
            total_comparisons=task.total_comparisons,
        )

    async def _dispatch_to_celery(self, task, refs, options: AnalysisOptions) -> None:
        from reqconflict.workers.tasks.analysis_tasks import run_contradiction_analysis

        try:
            run_contradiction_analysis.delay(
                task=task.model_dump(mode="json"),
                requirements=[ref.model_dump(mode="json") for ref in refs],
                options=options.model_dump(mode="json"),
            )
        except Exception as e:
            logger.error("analysis_dispatch_failed", task_id=task.id, error=str(e))
            await self.store.update_task(
                task.id,
                status=TaskStatus.FAILED,
                error=f"Failed to queue analysis: {e}",
            )
            raise AnalysisDispatchError(f"Failed to queue analysis: {e}") from e

    async def get_status(self, task_id: str) -> AnalysisTaskStatus | None:
        """Get a task with its staleness flag, or None if unknown."""
        return await self.coordinator.status(task_id)

    async def get_current_task(self, scope: str) -> AnalysisTaskStatus | None:
        """Get the current task for a scope, or None if none was started."""
        task = await self.store.get_current_task(scope)
        if task is None:
            return None
        return await self.coordinator.with_staleness(task)

    async def get_stored_results(self, scope: str) -> AnalysisResponse:
        """Rebuild an AnalysisResponse from persisted comparisons.

        Only contradictory rows become findings; scores are rescaled from
        0-100 storage back to [0, 1].
        """
        comparisons = await self.store.list_comparisons(scope)
        current = await self.store.get_current_task(scope)

        processing_time = 0.0
        if current is not None and current.completed_at is not None:
            processing_time = max(
                0.0, (current.completed_at - current.started_at).total_seconds()
            )

        return AnalysisResponse(
            contradictions=[c.to_finding() for c in comparisons if c.is_contradiction],
            comparisons_made=len(comparisons),
            nli_checks_made=2 * sum(1 for c in comparisons if c.nli_checked),
            processing_time_seconds=processing_time,
            errors=current.error if current is not None else None,
            is_complete=current is not None and current.status == TaskStatus.COMPLETED,
            task_id=current.id if current is not None else None,
            scope=scope,
        )


# =============================================================================
# Service Factories
# =============================================================================


@lru_cache(maxsize=1)
def get_contradiction_analysis_service() -> ContradictionAnalysisService:
    """Get singleton analysis service instance.

    Returns:
        ContradictionAnalysisService wired to the configured store and scorer.
    """
    return ContradictionAnalysisService(
        analyzer=PairwiseAnalyzer(get_inference_scorer()),
        store=get_comparison_store(),
    )
