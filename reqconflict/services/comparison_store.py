"""Result Store Gateway for analysis tasks and pairwise comparisons.

Persistence contract used by the task coordinator:
- Task records (create, update, get, current task per scope)
- Comparison results (clear per scope, save, list)
- Requirement modification times (staleness)

Implementations:
- InMemoryComparisonStore: process-local, for development, tests and CLI
- SupabaseComparisonStore: durable tables plus an in-memory hot index

NOTE: SupabaseComparisonStore uses asyncio.to_thread() to run synchronous
Supabase client calls without blocking the event loop.
"""

import asyncio
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import structlog

from reqconflict.core.config import get_settings
from reqconflict.models.contradiction import (
    AnalysisTask,
    RequirementRef,
    StoredComparison,
    TaskStatus,
)
from reqconflict.services.supabase.client import get_supabase_client

logger = structlog.get_logger(__name__)

TASKS_TABLE = "requirement_comparison_tasks"
COMPARISONS_TABLE = "requirement_comparisons"
REQUIREMENTS_TABLE = "requirements"

# Unique key of requirement_comparisons used to upsert one row per pair
COMPARISON_PAIR_CONFLICT = "project_id,requirement_index_1,requirement_index_2"

# Fields callers may change through update_task()
UPDATABLE_TASK_FIELDS = frozenset(
    {
        "status",
        "progress_percent",
        "total_comparisons",
        "completed_comparisons",
        "current_pair",
        "error",
        "completed_at",
        "is_current",
    }
)


# =============================================================================
# Exceptions
# =============================================================================


class ComparisonStoreError(Exception):
    """Base exception for comparison store operations."""

    def __init__(
        self,
        message: str,
        code: str = "COMPARISON_STORE_ERROR",
    ):
        self.message = message
        self.code = code
        super().__init__(message)


class TaskRecordNotFoundError(ComparisonStoreError):
    """Raised when updating a task that does not exist."""

    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found", code="TASK_NOT_FOUND")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_TASK_FIELDS
    if unknown:
        raise ComparisonStoreError(
            f"Cannot update task fields: {', '.join(sorted(unknown))}",
            code="INVALID_TASK_UPDATE",
        )


# =============================================================================
# Store Interface
# =============================================================================


class ComparisonStore(ABC):
    """Persistence operations required by the analysis task coordinator."""

    @abstractmethod
    async def create_task(self, scope: str, total_comparisons: int) -> AnalysisTask:
        """Create a pending task and make it the current task for its scope."""

    @abstractmethod
    async def update_task(self, task_id: str, **fields: Any) -> AnalysisTask:
        """Apply a partial update and return the updated task."""

    @abstractmethod
    async def get_task(self, task_id: str) -> AnalysisTask | None:
        """Get a task by id."""

    @abstractmethod
    async def get_current_task(self, scope: str) -> AnalysisTask | None:
        """Get the current task for a scope."""

    @abstractmethod
    async def delete_all_comparisons(self, scope: str) -> None:
        """Remove every stored comparison for a scope."""

    @abstractmethod
    async def save_comparison(self, scope: str, comparison: StoredComparison) -> None:
        """Persist one pair's comparison result."""

    @abstractmethod
    async def list_comparisons(self, scope: str) -> list[StoredComparison]:
        """List stored comparisons for a scope, ordered by pair."""

    @abstractmethod
    async def requirements_updated_after(self, scope: str, timestamp: datetime) -> bool:
        """Check whether any requirement in scope changed after timestamp."""


# =============================================================================
# In-Memory Implementation
# =============================================================================


class InMemoryComparisonStore(ComparisonStore):
    """Process-local store guarded by a lock.

    Example:
        >>> store = InMemoryComparisonStore()
        >>> task = await store.create_task("project-1", total_comparisons=45)
        >>> task.status
        TaskStatus.PENDING
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, AnalysisTask] = {}
        self._current_by_scope: dict[str, str] = {}
        self._comparisons: dict[str, dict[tuple[int, int], StoredComparison]] = {}
        self._requirement_updates: dict[str, dict[str, datetime]] = {}

    async def create_task(self, scope: str, total_comparisons: int) -> AnalysisTask:
        task = AnalysisTask(
            id=str(uuid.uuid4()),
            scope=scope,
            status=TaskStatus.PENDING,
            total_comparisons=total_comparisons,
            started_at=_utcnow(),
            is_current=True,
        )
        with self._lock:
            previous_id = self._current_by_scope.get(scope)
            if previous_id and previous_id in self._tasks:
                previous = self._tasks[previous_id]
                self._tasks[previous_id] = previous.model_copy(update={"is_current": False})
            self._tasks[task.id] = task
            self._current_by_scope[scope] = task.id

        logger.info(
            "analysis_task_created",
            task_id=task.id,
            scope=scope,
            total_comparisons=total_comparisons,
            superseded_task_id=previous_id,
        )
        return task

    async def update_task(self, task_id: str, **fields: Any) -> AnalysisTask:
        _check_fields(fields)
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskRecordNotFoundError(task_id)
            # Round-trip through validation so bad values are rejected
            updated = AnalysisTask.model_validate(
                {**task.model_dump(), **fields}
            )
            self._tasks[task_id] = updated
        return updated

    async def get_task(self, task_id: str) -> AnalysisTask | None:
        with self._lock:
            return self._tasks.get(task_id)

    async def get_current_task(self, scope: str) -> AnalysisTask | None:
        with self._lock:
            task_id = self._current_by_scope.get(scope)
            return self._tasks.get(task_id) if task_id else None

    async def delete_all_comparisons(self, scope: str) -> None:
        with self._lock:
            removed = len(self._comparisons.pop(scope, {}))
        logger.debug("comparisons_cleared", scope=scope, removed=removed)

    async def save_comparison(self, scope: str, comparison: StoredComparison) -> None:
        key = (comparison.requirement1_index, comparison.requirement2_index)
        with self._lock:
            self._comparisons.setdefault(scope, {})[key] = comparison

    async def list_comparisons(self, scope: str) -> list[StoredComparison]:
        with self._lock:
            rows = self._comparisons.get(scope, {})
            return [rows[key] for key in sorted(rows)]

    async def requirements_updated_after(self, scope: str, timestamp: datetime) -> bool:
        with self._lock:
            updates = self._requirement_updates.get(scope, {})
            return any(updated_at > timestamp for updated_at in updates.values())

    def record_requirement_update(
        self,
        scope: str,
        requirement_id: str | int,
        updated_at: datetime | None = None,
    ) -> None:
        """Record that a requirement in scope was modified."""
        with self._lock:
            self._requirement_updates.setdefault(scope, {})[str(requirement_id)] = (
                updated_at or _utcnow()
            )


# =============================================================================
# Supabase Implementation
# =============================================================================


class SupabaseComparisonStore(ComparisonStore):
    """Durable store on Supabase tables with an in-memory hot index.

    Tables:
    - requirement_comparison_tasks: one row per analysis task
    - requirement_comparisons: one row per compared pair
    - requirements: read-only, updated_at drives staleness

    Finished tasks are served from the hot index; in-flight tasks are
    always re-read because a worker process may be updating them.
    """

    def __init__(self, client=None) -> None:
        self._client = client
        self._lock = threading.Lock()
        self._tasks: dict[str, AnalysisTask] = {}
        self._current_by_scope: dict[str, str] = {}

    @property
    def client(self):
        """Get Supabase client.

        Raises:
            ComparisonStoreError: If Supabase is not configured.
        """
        if self._client is None:
            self._client = get_supabase_client()
            if self._client is None:
                raise ComparisonStoreError(
                    "Supabase not configured",
                    code="SUPABASE_NOT_CONFIGURED",
                )
        return self._client

    async def _execute(self, operation: str, fn):
        try:
            return await asyncio.to_thread(fn)
        except ComparisonStoreError:
            raise
        except Exception as e:
            logger.error("comparison_store_operation_failed", operation=operation, error=str(e))
            raise ComparisonStoreError(f"Failed to {operation}: {e}") from e

    def _remember(self, task: AnalysisTask) -> None:
        with self._lock:
            self._tasks[task.id] = task
            if task.is_current:
                self._current_by_scope[task.scope] = task.id

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def create_task(self, scope: str, total_comparisons: int) -> AnalysisTask:
        task = AnalysisTask(
            id=str(uuid.uuid4()),
            scope=scope,
            status=TaskStatus.PENDING,
            total_comparisons=total_comparisons,
            started_at=_utcnow(),
            is_current=True,
        )

        def _demote():
            return (
                self.client.table(TASKS_TABLE)
                .update({"is_current": False})
                .eq("project_id", scope)
                .eq("is_current", True)
                .execute()
            )

        def _insert():
            return self.client.table(TASKS_TABLE).insert(_task_to_row(task)).execute()

        await self._execute("demote current task", _demote)
        response = await self._execute("create task", _insert)
        if not response.data:
            raise ComparisonStoreError("Failed to create task - no data returned")

        with self._lock:
            previous_id = self._current_by_scope.get(scope)
            if previous_id in self._tasks:
                self._tasks[previous_id] = self._tasks[previous_id].model_copy(
                    update={"is_current": False}
                )
        self._remember(task)

        logger.info(
            "analysis_task_created",
            task_id=task.id,
            scope=scope,
            total_comparisons=total_comparisons,
        )
        return task

    async def update_task(self, task_id: str, **fields: Any) -> AnalysisTask:
        _check_fields(fields)
        row = _task_fields_to_row(fields)

        def _update():
            return (
                self.client.table(TASKS_TABLE)
                .update(row)
                .eq("id", task_id)
                .execute()
            )

        response = await self._execute("update task", _update)
        if not response.data:
            raise TaskRecordNotFoundError(task_id)

        task = _row_to_task(response.data[0])
        self._remember(task)
        return task

    async def get_task(self, task_id: str) -> AnalysisTask | None:
        with self._lock:
            cached = self._tasks.get(task_id)
        if cached is not None and cached.is_terminal:
            return cached

        def _query():
            return (
                self.client.table(TASKS_TABLE)
                .select("*")
                .eq("id", task_id)
                .limit(1)
                .execute()
            )

        response = await self._execute("get task", _query)
        if not response.data:
            return None
        task = _row_to_task(response.data[0])
        self._remember(task)
        return task

    async def get_current_task(self, scope: str) -> AnalysisTask | None:
        def _query():
            return (
                self.client.table(TASKS_TABLE)
                .select("*")
                .eq("project_id", scope)
                .eq("is_current", True)
                .order("started_at", desc=True)
                .limit(1)
                .execute()
            )

        response = await self._execute("get current task", _query)
        if not response.data:
            return None
        task = _row_to_task(response.data[0])
        self._remember(task)
        return task

    # -------------------------------------------------------------------------
    # Comparisons
    # -------------------------------------------------------------------------

    async def delete_all_comparisons(self, scope: str) -> None:
        def _delete():
            return (
                self.client.table(COMPARISONS_TABLE)
                .delete()
                .eq("project_id", scope)
                .execute()
            )

        await self._execute("delete comparisons", _delete)
        logger.debug("comparisons_cleared", scope=scope)

    async def save_comparison(self, scope: str, comparison: StoredComparison) -> None:
        row = _comparison_to_row(scope, comparison)

        # One row per pair: a retried or repeated save replaces the earlier row
        def _upsert():
            return (
                self.client.table(COMPARISONS_TABLE)
                .upsert(row, on_conflict=COMPARISON_PAIR_CONFLICT)
                .execute()
            )

        await self._execute("save comparison", _upsert)

    async def list_comparisons(self, scope: str) -> list[StoredComparison]:
        def _query():
            return (
                self.client.table(COMPARISONS_TABLE)
                .select("*")
                .eq("project_id", scope)
                .order("requirement_index_1")
                .order("requirement_index_2")
                .execute()
            )

        response = await self._execute("list comparisons", _query)
        return [_row_to_comparison(row) for row in response.data or []]

    async def requirements_updated_after(self, scope: str, timestamp: datetime) -> bool:
        def _query():
            return (
                self.client.table(REQUIREMENTS_TABLE)
                .select("id")
                .eq("project_id", scope)
                .gt("updated_at", timestamp.isoformat())
                .limit(1)
                .execute()
            )

        response = await self._execute("check requirement updates", _query)
        return bool(response.data)


# =============================================================================
# Row Mapping
# =============================================================================


def _task_fields_to_row(fields: dict[str, Any]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for key, value in fields.items():
        if key == "progress_percent":
            row["progress"] = value
        elif key == "status":
            row["status"] = TaskStatus(value).value
        elif key == "current_pair":
            row["current_pair"] = (
                [RequirementRef.model_validate(ref).model_dump(mode="json") for ref in value]
                if value
                else None
            )
        elif key == "completed_at":
            row["completed_at"] = value.isoformat() if value else None
        else:
            row[key] = value
    return row


def _task_to_row(task: AnalysisTask) -> dict[str, Any]:
    return {
        "id": task.id,
        "project_id": task.scope,
        "started_at": task.started_at.isoformat(),
        **_task_fields_to_row(
            {
                "status": task.status,
                "progress_percent": task.progress_percent,
                "total_comparisons": task.total_comparisons,
                "completed_comparisons": task.completed_comparisons,
                "current_pair": task.current_pair,
                "error": task.error,
                "completed_at": task.completed_at,
                "is_current": task.is_current,
            }
        ),
    }


def _row_to_task(row: dict[str, Any]) -> AnalysisTask:
    return AnalysisTask(
        id=str(row["id"]),
        scope=str(row["project_id"]),
        status=TaskStatus(row["status"]),
        progress_percent=row.get("progress") or 0,
        total_comparisons=row.get("total_comparisons") or 0,
        completed_comparisons=row.get("completed_comparisons") or 0,
        current_pair=row.get("current_pair"),
        error=row.get("error"),
        started_at=row["started_at"],
        completed_at=row.get("completed_at"),
        is_current=row.get("is_current", False),
    )


def _comparison_to_row(scope: str, comparison: StoredComparison) -> dict[str, Any]:
    return {
        "project_id": scope,
        "requirement_id_1": comparison.requirement1_id,
        "requirement_id_2": comparison.requirement2_id,
        "requirement_index_1": comparison.requirement1_index,
        "requirement_index_2": comparison.requirement2_index,
        "requirement_text_1": comparison.requirement1_text,
        "requirement_text_2": comparison.requirement2_text,
        "similarity_score": comparison.similarity_score,
        "nli_contradiction_score": comparison.contradiction_score,
        "is_contradiction": comparison.is_contradiction,
        "nli_checked": comparison.nli_checked,
        "compared_at": comparison.compared_at.isoformat(),
    }


def _row_to_comparison(row: dict[str, Any]) -> StoredComparison:
    return StoredComparison(
        requirement1_id=row.get("requirement_id_1"),
        requirement2_id=row.get("requirement_id_2"),
        requirement1_index=row["requirement_index_1"],
        requirement2_index=row["requirement_index_2"],
        requirement1_text=row["requirement_text_1"],
        requirement2_text=row["requirement_text_2"],
        similarity_score=row["similarity_score"],
        contradiction_score=row.get("nli_contradiction_score") or 0,
        is_contradiction=row.get("is_contradiction", False),
        nli_checked=row.get("nli_checked", False),
        compared_at=row["compared_at"],
    )


# =============================================================================
# Service Factories
# =============================================================================


def create_comparison_store(backend: str | None = None) -> ComparisonStore:
    """Build a store for the configured backend ("memory" or "supabase")."""
    backend = (backend or get_settings().comparison_store_backend).lower()
    if backend == "memory":
        return InMemoryComparisonStore()
    if backend == "supabase":
        return SupabaseComparisonStore()
    raise ComparisonStoreError(
        f"Unknown comparison store backend: {backend}",
        code="INVALID_STORE_BACKEND",
    )


@lru_cache(maxsize=1)
def get_comparison_store() -> ComparisonStore:
    """Get singleton comparison store instance.

    Returns:
        ComparisonStore for the configured backend.
    """
    return create_comparison_store()
