"""Contradiction analysis models.

Pydantic models for:
- Requirement references and contradiction findings
- Analysis options and responses (sync and async)
- Background analysis tasks and their status
- Persisted pairwise comparisons

JSON field names are camelCase; Python code uses snake_case attributes.
"""

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from reqconflict.core.config import get_settings

# =============================================================================
# Helpers
# =============================================================================


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def to_storage_score(score: float) -> int:
    """Convert a [0, 1] score to its 0-100 integer storage form."""
    return max(0, min(100, round_half_up(score * 100)))


def from_storage_score(score: int) -> float:
    """Convert a 0-100 stored score back to [0, 1]."""
    return score / 100


# =============================================================================
# Enums
# =============================================================================


class TaskStatus(str, Enum):
    """Background analysis task status.

    States:
    - PENDING: Task created, run not started yet
    - PROCESSING: Pairs are being compared
    - COMPLETED: All pairs processed (possibly stopped by the error breaker)
    - FAILED: Run aborted by an unrecoverable error or superseded
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Requirement & Finding Models
# =============================================================================


class RequirementRef(BaseModel):
    """A requirement within one analysis batch.

    index is the position in the submitted batch; id is the caller's
    durable identifier when the requirement is backed by a stored record.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    index: int = Field(..., ge=0, description="Position in the input batch (0-based)")
    id: str | int | None = Field(None, description="Durable requirement identifier")
    text: str = Field(..., description="Requirement text")


class ContradictionFinding(BaseModel):
    """A pair of requirements that contradict each other."""

    model_config = ConfigDict(populate_by_name=True)

    requirement1: RequirementRef
    requirement2: RequirementRef
    similarity_score: float = Field(
        ..., ge=0.0, le=1.0, alias="similarityScore", description="Similarity gate score"
    )
    contradiction_score: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        alias="contradictionScore",
        description="Max of both NLI directions",
    )

    @model_validator(mode="after")
    def _check_canonical_order(self) -> "ContradictionFinding":
        if self.requirement1.index >= self.requirement2.index:
            raise ValueError("requirement1.index must be lower than requirement2.index")
        return self


# =============================================================================
# Options & Request Models
# =============================================================================


class AnalysisOptions(BaseModel):
    """Tunable parameters for one analysis run.

    Unset thresholds and limits fall back to the CONTRADICTION_* settings.
    """

    model_config = ConfigDict(populate_by_name=True)

    similarity_threshold: float = Field(
        default_factory=lambda: get_settings().contradiction_similarity_threshold,
        ge=0.0,
        le=1.0,
        alias="similarityThreshold",
        description="Pairs below this similarity skip the NLI check",
    )
    contradiction_threshold: float = Field(
        default_factory=lambda: get_settings().contradiction_nli_threshold,
        ge=0.0,
        le=1.0,
        alias="contradictionThreshold",
        description="Minimum contradiction score for a finding",
    )
    max_requirements: int = Field(
        default_factory=lambda: get_settings().contradiction_max_requirements,
        ge=1,
        alias="maxRequirements",
        description="Only the first N requirements are analyzed",
    )
    async_mode: bool = Field(
        default=False,
        alias="async",
        description="Run as a background task and return a task id",
    )
    deadline_seconds: float | None = Field(
        default=None,
        gt=0,
        alias="deadlineSeconds",
        description="Overall run deadline; the run stops with a partial result",
    )


class AnalysisRequest(BaseModel):
    """Request body for an analysis run."""

    model_config = ConfigDict(populate_by_name=True)

    requirements: list[str] = Field(..., description="Requirement texts, in order")
    requirement_ids: list[str | int] | None = Field(
        None,
        alias="requirementIds",
        description="Durable ids parallel to requirements",
    )
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)

    @model_validator(mode="after")
    def _check_ids_align(self) -> "AnalysisRequest":
        if self.requirement_ids is not None and len(self.requirement_ids) != len(
            self.requirements
        ):
            raise ValueError("requirementIds must have the same length as requirements")
        return self


# =============================================================================
# Task Models
# =============================================================================


class AnalysisTask(BaseModel):
    """Progress record of one background analysis run."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Task UUID")
    scope: str = Field(..., description="Project/analysis scope the task belongs to")
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    progress_percent: int = Field(default=0, ge=0, le=100, alias="progressPercent")
    total_comparisons: int = Field(default=0, ge=0, alias="totalComparisons")
    completed_comparisons: int = Field(default=0, ge=0, alias="completedComparisons")
    current_pair: tuple[RequirementRef, RequirementRef] | None = Field(
        None, alias="currentPair", description="Pair being evaluated"
    )
    error: str | None = Field(None, description="Failure cause or breaker annotation")
    started_at: datetime = Field(..., alias="startedAt")
    completed_at: datetime | None = Field(None, alias="completedAt")
    is_current: bool = Field(
        default=True, alias="isCurrent", description="Latest task for its scope"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class AnalysisTaskStatus(AnalysisTask):
    """Task plus staleness of its results."""

    is_stale: bool = Field(
        default=False,
        alias="isStale",
        description="Inputs modified after the task completed",
    )


# =============================================================================
# Stored Comparison Model
# =============================================================================


class StoredComparison(BaseModel):
    """Persisted outcome of one compared pair."""

    model_config = ConfigDict(populate_by_name=True)

    requirement1_id: str | int | None = Field(None, alias="requirement1Id")
    requirement2_id: str | int | None = Field(None, alias="requirement2Id")
    requirement1_index: int = Field(..., ge=0, alias="requirement1Index")
    requirement2_index: int = Field(..., ge=0, alias="requirement2Index")
    requirement1_text: str = Field(..., alias="requirement1Text")
    requirement2_text: str = Field(..., alias="requirement2Text")
    similarity_score: int = Field(..., ge=0, le=100, alias="similarityScore")
    contradiction_score: int = Field(default=0, ge=0, le=100, alias="contradictionScore")
    is_contradiction: bool = Field(default=False, alias="isContradiction")
    nli_checked: bool = Field(
        default=False,
        alias="nliChecked",
        description="Pair passed the similarity gate and was NLI-checked both ways",
    )
    compared_at: datetime = Field(..., alias="comparedAt")

    @classmethod
    def from_scores(
        cls,
        requirement1: RequirementRef,
        requirement2: RequirementRef,
        similarity: float,
        contradiction: float,
        is_contradiction: bool,
        compared_at: datetime,
        nli_checked: bool = False,
    ) -> "StoredComparison":
        return cls(
            requirement1_id=requirement1.id,
            requirement2_id=requirement2.id,
            requirement1_index=requirement1.index,
            requirement2_index=requirement2.index,
            requirement1_text=requirement1.text,
            requirement2_text=requirement2.text,
            similarity_score=to_storage_score(similarity),
            contradiction_score=to_storage_score(contradiction),
            is_contradiction=is_contradiction,
            nli_checked=nli_checked,
            compared_at=compared_at,
        )

    def to_finding(self) -> ContradictionFinding:
        """Rebuild a finding with scores rescaled to [0, 1]."""
        return ContradictionFinding(
            requirement1=RequirementRef(
                index=self.requirement1_index,
                id=self.requirement1_id,
                text=self.requirement1_text,
            ),
            requirement2=RequirementRef(
                index=self.requirement2_index,
                id=self.requirement2_id,
                text=self.requirement2_text,
            ),
            similarity_score=from_storage_score(self.similarity_score),
            contradiction_score=from_storage_score(self.contradiction_score),
        )


# =============================================================================
# Response Models
# =============================================================================


class AnalysisResponse(BaseModel):
    """Result of a finished (or stored) analysis."""

    model_config = ConfigDict(populate_by_name=True)

    contradictions: list[ContradictionFinding] = Field(default_factory=list)
    comparisons_made: int = Field(default=0, ge=0, alias="comparisonsMade")
    nli_checks_made: int = Field(default=0, ge=0, alias="nliChecksMade")
    processing_time_seconds: float = Field(default=0.0, ge=0, alias="processingTimeSeconds")
    errors: str | None = Field(None, description="Error summary when pairs failed")
    is_complete: bool = Field(default=True, alias="isComplete")
    task_id: str | None = Field(None, alias="taskId")
    scope: str | None = None
    requirements_analyzed: int = Field(default=0, ge=0, alias="requirementsAnalyzed")
    requirements_truncated_from: int | None = Field(
        None,
        alias="requirementsTruncatedFrom",
        description="Original input size when maxRequirements truncated it",
    )
    skipped_short_requirements: list[int] = Field(
        default_factory=list,
        alias="skippedShortRequirements",
        description="Indexes excluded for being too short",
    )

    @field_validator("contradictions")
    @classmethod
    def _sort_contradictions(
        cls, value: list[ContradictionFinding]
    ) -> list[ContradictionFinding]:
        return sorted(value, key=lambda f: (f.requirement1.index, f.requirement2.index))


class AsyncAnalysisAccepted(BaseModel):
    """Acknowledgement of a background analysis run."""

    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(..., alias="taskId")
    scope: str
    is_complete: bool = Field(default=False, alias="isComplete")
    total_comparisons: int = Field(default=0, ge=0, alias="totalComparisons")
