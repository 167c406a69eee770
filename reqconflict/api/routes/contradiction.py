"""Contradiction analysis API routes.

Provides endpoints for:
- POST /api/contradictions/analyze - Analyze an ad-hoc requirement list
- POST /api/projects/{project_id}/contradictions/analyze - Analyze a project (sync or async)
- GET /api/contradictions/tasks/{task_id} - Poll a background task
- GET /api/projects/{project_id}/contradictions/tasks/current - Current task for a project
- GET /api/projects/{project_id}/contradictions - Stored results for a project
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Path, status
from fastapi.responses import JSONResponse

from reqconflict.core.exceptions import (
    AppException,
    ServiceUnavailableError,
    TaskNotFoundError,
)
from reqconflict.models.contradiction import (
    AnalysisRequest,
    AnalysisResponse,
    AnalysisTaskStatus,
    AsyncAnalysisAccepted,
)
from reqconflict.services.analysis_service import (
    AnalysisError,
    ContradictionAnalysisService,
    get_contradiction_analysis_service,
)
from reqconflict.services.comparison_store import ComparisonStoreError

router = APIRouter(tags=["contradictions"])
logger = structlog.get_logger(__name__)

AnalysisServiceDep = Annotated[
    ContradictionAnalysisService, Depends(get_contradiction_analysis_service)
]
ProjectId = Annotated[str, Path(description="Project identifier (analysis scope)")]


def _store_unavailable(e: ComparisonStoreError) -> ServiceUnavailableError:
    return ServiceUnavailableError(message=e.message, code=e.code)


# =============================================================================
# Analysis Endpoints
# =============================================================================


@router.post("/contradictions/analyze", response_model=AnalysisResponse)
async def analyze_requirements(
    request: AnalysisRequest,
    service: AnalysisServiceDep,
) -> AnalysisResponse:
    """Analyze an ad-hoc requirement list synchronously.

    The request blocks until every pair is processed or the error breaker
    trips; a tripped breaker yields a partial result with `errors` set.
    """
    logger.info(
        "analyze_requirements_api_request",
        requirement_count=len(request.requirements),
        max_requirements=request.options.max_requirements,
    )

    response = await service.analyze(
        request.requirements,
        request.options,
        requirement_ids=request.requirement_ids,
    )

    logger.info(
        "analyze_requirements_api_success",
        comparisons_made=response.comparisons_made,
        contradictions_found=len(response.contradictions),
        errors=response.errors,
    )
    return response


@router.post(
    "/projects/{project_id}/contradictions/analyze",
    response_model=AnalysisResponse,
    responses={
        202: {"model": AsyncAnalysisAccepted, "description": "Background task started"},
        503: {"description": "Task store or queue unavailable"},
    },
)
async def analyze_project_requirements(
    project_id: ProjectId,
    request: AnalysisRequest,
    service: AnalysisServiceDep,
):
    """Analyze a project's requirements.

    With `options.async` the analysis runs in the background and the
    response is 202 with the task id to poll; otherwise it runs inline.
    """
    logger.info(
        "analyze_project_api_request",
        project_id=project_id,
        requirement_count=len(request.requirements),
        async_mode=request.options.async_mode,
    )

    if not request.options.async_mode:
        response = await service.analyze(
            request.requirements,
            request.options,
            requirement_ids=request.requirement_ids,
        )
        return response.model_copy(update={"scope": project_id})

    try:
        accepted = await service.analyze_async(
            request.requirements,
            request.options,
            scope=project_id,
            requirement_ids=request.requirement_ids,
        )
    except ComparisonStoreError as e:
        logger.error("analyze_project_api_store_error", project_id=project_id, error=e.message)
        raise _store_unavailable(e) from e
    except AnalysisError as e:
        logger.error("analyze_project_api_dispatch_error", project_id=project_id, error=e.message)
        raise ServiceUnavailableError(message=e.message, code=e.code) from e

    logger.info(
        "analyze_project_api_accepted",
        project_id=project_id,
        task_id=accepted.task_id,
        total_comparisons=accepted.total_comparisons,
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=accepted.model_dump(mode="json", by_alias=True),
    )


# =============================================================================
# Task Status Endpoints
# =============================================================================


@router.get("/contradictions/tasks/{task_id}", response_model=AnalysisTaskStatus)
async def get_task_status(
    task_id: Annotated[str, Path(description="Analysis task UUID")],
    service: AnalysisServiceDep,
) -> AnalysisTaskStatus:
    """Poll a background analysis task, including its staleness flag."""
    try:
        task = await service.get_status(task_id)
    except ComparisonStoreError as e:
        raise _store_unavailable(e) from e

    if task is None:
        raise TaskNotFoundError(task_id)
    return task


@router.get(
    "/projects/{project_id}/contradictions/tasks/current",
    response_model=AnalysisTaskStatus,
)
async def get_current_task(
    project_id: ProjectId,
    service: AnalysisServiceDep,
) -> AnalysisTaskStatus:
    """Get the latest analysis task started for a project."""
    try:
        task = await service.get_current_task(project_id)
    except ComparisonStoreError as e:
        raise _store_unavailable(e) from e

    if task is None:
        raise AppException(
            code="TASK_NOT_FOUND",
            message=f"No analysis task found for project {project_id}",
            status_code=status.HTTP_404_NOT_FOUND,
        )
    return task


# =============================================================================
# Stored Results Endpoint
# =============================================================================


@router.get("/projects/{project_id}/contradictions", response_model=AnalysisResponse)
async def get_stored_results(
    project_id: ProjectId,
    service: AnalysisServiceDep,
) -> AnalysisResponse:
    """Get the persisted contradictions of a project's latest analysis."""
    try:
        return await service.get_stored_results(project_id)
    except ComparisonStoreError as e:
        logger.error("get_stored_results_api_error", project_id=project_id, error=e.message)
        raise _store_unavailable(e) from e
