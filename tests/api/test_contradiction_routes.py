"""Tests for contradiction analysis API routes."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from reqconflict.main import app
from reqconflict.services.comparison_store import ComparisonStoreError

ENCRYPT = "The system must encrypt data at rest."
PLAIN = "Data must be stored in plain text for debugging."


@pytest.mark.asyncio
async def test_analyze_returns_findings(
    client: AsyncClient, override_service, make_service, fake_scorer_factory
) -> None:
    """Sync analysis returns camelCase findings."""
    override_service(make_service(fake_scorer_factory(similarity=0.8, contradiction=0.9)))

    response = await client.post(
        "/api/contradictions/analyze",
        json={"requirements": [ENCRYPT, PLAIN], "options": {"similarityThreshold": 0.3}},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["comparisonsMade"] == 1
    assert data["nliChecksMade"] == 2
    assert data["isComplete"] is True
    assert data["contradictions"][0]["contradictionScore"] == pytest.approx(0.9)
    assert data["contradictions"][0]["requirement1"]["index"] == 0


@pytest.mark.asyncio
async def test_analyze_rejects_invalid_threshold(
    client: AsyncClient, override_service, make_service, fake_scorer_factory
) -> None:
    """Invalid options are rejected before any comparison."""
    scorer = fake_scorer_factory()
    override_service(make_service(scorer))

    response = await client.post(
        "/api/contradictions/analyze",
        json={"requirements": [ENCRYPT, PLAIN], "options": {"similarityThreshold": 1.5}},
    )

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert any(f["field"].endswith("similarityThreshold") for f in error["details"]["fields"])
    assert scorer.similarity_calls == []


@pytest.mark.asyncio
async def test_project_analyze_sync_sets_scope(
    client: AsyncClient, override_service, make_service, fake_scorer_factory
) -> None:
    override_service(make_service(fake_scorer_factory(similarity=0.1)))

    response = await client.post(
        "/api/projects/p1/contradictions/analyze",
        json={"requirements": [ENCRYPT, PLAIN]},
    )

    assert response.status_code == 200
    assert response.json()["scope"] == "p1"


@pytest.mark.asyncio
async def test_project_analyze_async_then_poll(
    client: AsyncClient, override_service, make_service, fake_scorer_factory
) -> None:
    """Async analysis returns 202 and the task can be polled to completion."""
    service = make_service(fake_scorer_factory(similarity=0.8, contradiction=0.9))
    override_service(service)

    response = await client.post(
        "/api/projects/p1/contradictions/analyze",
        json={"requirements": [ENCRYPT, PLAIN], "options": {"async": True}},
    )

    assert response.status_code == 202
    accepted = response.json()
    assert accepted["isComplete"] is False
    assert accepted["totalComparisons"] == 1
    task_id = accepted["taskId"]

    await service.coordinator.wait(task_id)

    status_response = await client.get(f"/api/contradictions/tasks/{task_id}")
    assert status_response.status_code == 200
    status = status_response.json()
    assert status["status"] == "completed"
    assert status["progressPercent"] == 100
    assert status["completedComparisons"] == 1
    assert status["isStale"] is False

    current_response = await client.get("/api/projects/p1/contradictions/tasks/current")
    assert current_response.json()["id"] == task_id

    results_response = await client.get("/api/projects/p1/contradictions")
    results = results_response.json()
    assert results["isComplete"] is True
    assert len(results["contradictions"]) == 1
    assert results["contradictions"][0]["contradictionScore"] == 0.9


@pytest.mark.asyncio
async def test_unknown_task_returns_404(
    client: AsyncClient, override_service, make_service, fake_scorer_factory
) -> None:
    override_service(make_service(fake_scorer_factory()))

    response = await client.get("/api/contradictions/tasks/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "TASK_NOT_FOUND"


@pytest.mark.asyncio
async def test_no_current_task_returns_404(
    client: AsyncClient, override_service, make_service, fake_scorer_factory
) -> None:
    override_service(make_service(fake_scorer_factory()))

    response = await client.get("/api/projects/p9/contradictions/tasks/current")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "TASK_NOT_FOUND"


@pytest.mark.asyncio
async def test_store_failure_returns_503(
    client: AsyncClient, override_service, make_service, fake_scorer_factory
) -> None:
    service = make_service(fake_scorer_factory())
    service.store.list_comparisons = AsyncMock(
        side_effect=ComparisonStoreError("Supabase not configured", code="SUPABASE_NOT_CONFIGURED")
    )
    override_service(service)

    response = await client.get("/api/projects/p1/contradictions")

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "SUPABASE_NOT_CONFIGURED"


@pytest.mark.asyncio
async def test_unexpected_error_returns_internal_error(override_service) -> None:
    service = MagicMock()
    service.analyze = AsyncMock(side_effect=RuntimeError("scorer exploded"))
    override_service(service)

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post(
                "/api/contradictions/analyze",
                json={"requirements": [ENCRYPT, PLAIN]},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    error = response.json()["error"]
    assert error["code"] == "INTERNAL_ERROR"
    assert error["message"] == "An unexpected error occurred"
    assert "scorer exploded" not in error["message"]
