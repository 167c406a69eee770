"""Pydantic models module."""

from reqconflict.models.contradiction import (
    AnalysisOptions,
    AnalysisRequest,
    AnalysisResponse,
    AnalysisTask,
    AnalysisTaskStatus,
    AsyncAnalysisAccepted,
    ContradictionFinding,
    RequirementRef,
    StoredComparison,
    TaskStatus,
)

__all__ = [
    "AnalysisOptions",
    "AnalysisRequest",
    "AnalysisResponse",
    "AnalysisTask",
    "AnalysisTaskStatus",
    "AsyncAnalysisAccepted",
    "ContradictionFinding",
    "RequirementRef",
    "StoredComparison",
    "TaskStatus",
]
