"""Task Coordinator for background contradiction analysis.

Turns a PairwiseAnalyzer run into a pollable background task:

    pending -> processing -> completed | failed

- start() creates the task record and returns immediately
- every pair of the grid ticks completed_comparisons once and recomputes
  progress_percent; compared pairs are persisted as they finish
- a newer start() for the same scope supersedes the older task: the older
  run is cancelled cooperatively and ends failed with "Superseded by task <id>"
- status() adds is_stale for completed tasks whose inputs changed afterwards

The store and analyzer are injected; run bookkeeping lives on the instance.
"""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog

from reqconflict.engines.contradiction.analyzer import (
    AnalysisObserver,
    CancellationToken,
    PairOutcome,
    PairStatus,
    PairwiseAnalyzer,
    total_pairs,
)
from reqconflict.models.contradiction import (
    AnalysisOptions,
    AnalysisTask,
    AnalysisTaskStatus,
    RequirementRef,
    StoredComparison,
    TaskStatus,
    round_half_up,
)
from reqconflict.services.comparison_store import ComparisonStore, ComparisonStoreError

logger = structlog.get_logger(__name__)

SUPERSEDED_PREFIX = "Superseded by task"


def superseded_reason(new_task_id: str) -> str:
    return f"{SUPERSEDED_PREFIX} {new_task_id}"


def _is_superseded(token: CancellationToken) -> bool:
    return bool(token.reason and token.reason.startswith(SUPERSEDED_PREFIX))


def _utcnow() -> datetime:
    return datetime.now(UTC)


def compute_progress(completed: int, total: int) -> int:
    """Percentage of the pair grid processed, rounded half up."""
    if total <= 0:
        return 100
    return min(100, round_half_up(100 * completed / total))


# =============================================================================
# Progress Observer
# =============================================================================


class TaskProgressObserver(AnalysisObserver):
    """Persist per-pair progress and comparisons for one task."""

    def __init__(
        self,
        store: ComparisonStore,
        task: AnalysisTask,
        cancellation: CancellationToken,
        poll_supersession: bool = False,
    ) -> None:
        self.store = store
        self.task = task
        self.cancellation = cancellation
        self.poll_supersession = poll_supersession
        self.completed = 0

    async def on_pair_started(
        self, requirement1: RequirementRef, requirement2: RequirementRef
    ) -> None:
        if _is_superseded(self.cancellation):
            return
        await self.store.update_task(self.task.id, current_pair=(requirement1, requirement2))

    async def on_pair_finished(self, outcome: PairOutcome) -> None:
        if self.poll_supersession:
            await check_supersession(self.store, self.task, self.cancellation)
        # A superseded run must not write into the newer run's results
        if _is_superseded(self.cancellation):
            return

        if outcome.compared:
            await self.store.save_comparison(
                self.task.scope,
                StoredComparison.from_scores(
                    outcome.requirement1,
                    outcome.requirement2,
                    similarity=outcome.similarity or 0.0,
                    contradiction=outcome.contradiction or 0.0,
                    is_contradiction=outcome.is_contradiction,
                    compared_at=_utcnow(),
                    nli_checked=outcome.status == PairStatus.CHECKED,
                ),
            )

        self.completed += 1
        await self.store.update_task(
            self.task.id,
            completed_comparisons=self.completed,
            progress_percent=compute_progress(self.completed, self.task.total_comparisons),
        )


async def check_supersession(
    store: ComparisonStore, task: AnalysisTask, cancellation: CancellationToken
) -> None:
    """Cancel the run when the store shows a newer current task for its scope."""
    current = await store.get_current_task(task.scope)
    if current is not None and current.id != task.id:
        cancellation.cancel(superseded_reason(current.id))


# =============================================================================
# Coordinator
# =============================================================================


class AnalysisTaskCoordinator:
    """Start, run and report on background analysis tasks.

    Example:
        >>> coordinator = AnalysisTaskCoordinator(store, analyzer)
        >>> task = await coordinator.start(refs, AnalysisOptions(), scope="project-7")
        >>> (await coordinator.status(task.id)).status
        TaskStatus.PROCESSING
    """

    def __init__(self, store: ComparisonStore, analyzer: PairwiseAnalyzer) -> None:
        self.store = store
        self.analyzer = analyzer
        self._runs: dict[str, asyncio.Task] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._run_by_scope: dict[str, str] = {}

    async def create_task(
        self,
        refs: Sequence[RequirementRef],
        options: AnalysisOptions,
        scope: str,
    ) -> AnalysisTask:
        """Create the task record without running it."""
        total = total_pairs(len(refs), options.max_requirements)
        task = await self.store.create_task(scope, total)
        self._supersede_local_run(scope, task.id)
        return task

    async def start(
        self,
        refs: Sequence[RequirementRef],
        options: AnalysisOptions,
        scope: str,
    ) -> AnalysisTask:
        """Create a task and schedule its run in the background.

        Args:
            refs: Requirements in input order.
            options: Analysis options for the run.
            scope: Project/analysis scope.

        Returns:
            The pending task (the run has not started yet).
        """
        task = await self.create_task(refs, options, scope)

        token = CancellationToken()
        run = asyncio.create_task(
            self.run_task(task, refs, options, cancellation=token),
            name=f"contradiction-analysis-{task.id}",
        )
        self._runs[task.id] = run
        self._tokens[task.id] = token
        self._run_by_scope[scope] = task.id
        run.add_done_callback(lambda _: self._forget(task.id, scope))

        logger.info(
            "analysis_task_scheduled",
            task_id=task.id,
            scope=scope,
            total_comparisons=task.total_comparisons,
        )
        return task

    def _supersede_local_run(self, scope: str, new_task_id: str) -> None:
        previous_id = self._run_by_scope.get(scope)
        if previous_id and previous_id in self._tokens:
            self._tokens[previous_id].cancel(superseded_reason(new_task_id))
            logger.info(
                "analysis_task_superseded",
                task_id=previous_id,
                superseded_by=new_task_id,
                scope=scope,
            )

    def _forget(self, task_id: str, scope: str) -> None:
        self._runs.pop(task_id, None)
        self._tokens.pop(task_id, None)
        if self._run_by_scope.get(scope) == task_id:
            del self._run_by_scope[scope]

    async def run_task(
        self,
        task: AnalysisTask,
        refs: Sequence[RequirementRef],
        options: AnalysisOptions,
        *,
        cancellation: CancellationToken | None = None,
        poll_supersession: bool = False,
    ) -> AnalysisTask:
        """Execute a created task to a terminal state.

        Unrecoverable errors are recorded on the task rather than raised.

        Args:
            task: Task record from create_task()/start().
            refs: Requirements in input order.
            options: Analysis options for the run.
            cancellation: Token used to stop the run cooperatively.
            poll_supersession: Check the store once per pair for a newer
                current task (used when running outside the starting process).

        Returns:
            The task in its terminal state.
        """
        token = cancellation or CancellationToken()

        with structlog.contextvars.bound_contextvars(task_id=task.id, scope=task.scope):
            try:
                if poll_supersession:
                    await check_supersession(self.store, task, token)
                if _is_superseded(token):
                    return await self._finish_superseded(task, token)

                await self.store.update_task(task.id, status=TaskStatus.PROCESSING)
                await self.store.delete_all_comparisons(task.scope)

                logger.info(
                    "analysis_task_processing",
                    total_comparisons=task.total_comparisons,
                )

                observer = TaskProgressObserver(
                    self.store, task, token, poll_supersession=poll_supersession
                )
                outcome = await self.analyzer.analyze(
                    refs, options, observer=observer, cancellation=token
                )

                if _is_superseded(token):
                    return await self._finish_superseded(task, token)

                finished = await self.store.update_task(
                    task.id,
                    status=TaskStatus.COMPLETED,
                    completed_at=_utcnow(),
                    progress_percent=100,
                    current_pair=None,
                    error=outcome.errors_summary,
                )
                logger.info(
                    "analysis_task_completed",
                    completed_comparisons=observer.completed,
                    contradictions_found=len(outcome.findings),
                    errors=outcome.errors_summary,
                )
                return finished

            except Exception as e:
                logger.error("analysis_task_failed", error=str(e), exc_info=True)
                try:
                    return await self.store.update_task(
                        task.id,
                        status=TaskStatus.FAILED,
                        completed_at=_utcnow(),
                        current_pair=None,
                        error=f"Analysis failed: {e}",
                    )
                except ComparisonStoreError as store_error:
                    logger.error(
                        "analysis_task_failure_not_recorded",
                        error=store_error.message,
                    )
                    return task.model_copy(
                        update={"status": TaskStatus.FAILED, "error": f"Analysis failed: {e}"}
                    )

    async def _finish_superseded(
        self, task: AnalysisTask, token: CancellationToken
    ) -> AnalysisTask:
        logger.info("analysis_task_stopped_superseded", reason=token.reason)
        return await self.store.update_task(
            task.id,
            status=TaskStatus.FAILED,
            completed_at=_utcnow(),
            current_pair=None,
            error=token.reason,
        )

    async def status(self, task_id: str) -> AnalysisTaskStatus | None:
        """Get a task with its staleness flag.

        Returns:
            AnalysisTaskStatus, or None if the task does not exist.
        """
        task = await self.store.get_task(task_id)
        if task is None:
            return None
        return await self.with_staleness(task)

    async def with_staleness(self, task: AnalysisTask) -> AnalysisTaskStatus:
        is_stale = False
        if task.status == TaskStatus.COMPLETED and task.completed_at is not None:
            is_stale = await self.store.requirements_updated_after(
                task.scope, task.completed_at
            )
        return AnalysisTaskStatus.model_validate({**task.model_dump(), "is_stale": is_stale})

    async def wait(self, task_id: str) -> AnalysisTask | None:
        """Wait for an in-process run to finish and return its final record."""
        run = self._runs.get(task_id)
        if run is not None:
            await run
        return await self.store.get_task(task_id)

    async def shutdown(self) -> None:
        """Cancel in-process runs and wait for them to record their state."""
        for token in list(self._tokens.values()):
            token.cancel("Service shutting down")
        runs = list(self._runs.values())
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)
