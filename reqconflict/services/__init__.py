"""Services module - task coordination, persistence and the analysis API."""

from reqconflict.services.analysis_service import (
    AnalysisDispatchError,
    AnalysisError,
    ContradictionAnalysisService,
    get_contradiction_analysis_service,
)
from reqconflict.services.comparison_store import (
    ComparisonStore,
    ComparisonStoreError,
    InMemoryComparisonStore,
    SupabaseComparisonStore,
    TaskRecordNotFoundError,
    create_comparison_store,
    get_comparison_store,
)
from reqconflict.services.task_coordinator import AnalysisTaskCoordinator

__all__ = [
    # Analysis service
    "AnalysisDispatchError",
    "AnalysisError",
    "ContradictionAnalysisService",
    "get_contradiction_analysis_service",
    # Comparison store
    "ComparisonStore",
    "ComparisonStoreError",
    "InMemoryComparisonStore",
    "SupabaseComparisonStore",
    "TaskRecordNotFoundError",
    "create_comparison_store",
    "get_comparison_store",
    # Task coordinator
    "AnalysisTaskCoordinator",
]
