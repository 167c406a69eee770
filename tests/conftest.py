"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator, Iterable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from reqconflict.engines.contradiction.analyzer import PairwiseAnalyzer
from reqconflict.engines.contradiction.scorer import ScoreResult
from reqconflict.main import app
from reqconflict.services.analysis_service import (
    ContradictionAnalysisService,
    get_contradiction_analysis_service,
)
from reqconflict.services.comparison_store import InMemoryComparisonStore


class FakePairScorer:
    """Scorer returning canned values keyed by text.

    Similarity is symmetric (keyed by the unordered pair); contradiction
    is keyed by (premise, hypothesis). Texts listed in fail_* fail every
    call they take part in.
    """

    def __init__(
        self,
        similarity: float = 0.0,
        contradiction: float = 0.0,
        similarity_by_pair: dict[tuple[str, str], float] | None = None,
        contradiction_by_pair: dict[tuple[str, str], float] | None = None,
        fail_similarity: Iterable[str] = (),
        fail_contradiction: Iterable[str] = (),
    ) -> None:
        self.default_similarity = similarity
        self.default_contradiction = contradiction
        self.similarity_by_pair = {
            frozenset(pair): value for pair, value in (similarity_by_pair or {}).items()
        }
        self.contradiction_by_pair = dict(contradiction_by_pair or {})
        self.fail_similarity = set(fail_similarity)
        self.fail_contradiction = set(fail_contradiction)
        self.similarity_calls: list[tuple[str, str]] = []
        self.contradiction_calls: list[tuple[str, str]] = []

    async def similarity(self, text_a: str, text_b: str) -> ScoreResult:
        self.similarity_calls.append((text_a, text_b))
        if {text_a, text_b} & self.fail_similarity:
            return ScoreResult.failure("INFERENCE_BACKEND_ERROR", "HTTP 500")
        return ScoreResult.success(
            self.similarity_by_pair.get(frozenset((text_a, text_b)), self.default_similarity)
        )

    async def contradiction(self, premise: str, hypothesis: str) -> ScoreResult:
        self.contradiction_calls.append((premise, hypothesis))
        if {premise, hypothesis} & self.fail_contradiction:
            return ScoreResult.failure("INFERENCE_BACKEND_ERROR", "HTTP 500")
        return ScoreResult.success(
            self.contradiction_by_pair.get((premise, hypothesis), self.default_contradiction)
        )


@pytest.fixture
def anyio_backend() -> str:
    """Configure anyio backend for async tests."""
    return "asyncio"


@pytest.fixture
def fake_scorer_factory() -> type[FakePairScorer]:
    """Factory for canned-score scorers."""
    return FakePairScorer


@pytest.fixture
def memory_store() -> InMemoryComparisonStore:
    """Create an empty in-memory comparison store."""
    return InMemoryComparisonStore()


@pytest.fixture
def make_service(memory_store: InMemoryComparisonStore):
    """Build an inline analysis service around a scorer.

    Returns:
        Callable taking a scorer and returning a ContradictionAnalysisService.
    """

    def _make(scorer, **analyzer_kwargs) -> ContradictionAnalysisService:
        analyzer_kwargs.setdefault("min_requirement_length", 10)
        analyzer_kwargs.setdefault("max_pair_errors", 5)
        return ContradictionAnalysisService(
            analyzer=PairwiseAnalyzer(scorer, **analyzer_kwargs),
            store=memory_store,
            dispatch_mode="inline",
        )

    return _make


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client.

    Yields:
        Configured AsyncClient for testing.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def override_service():
    """Route the API's analysis service dependency to a test instance."""

    def _override(service: ContradictionAnalysisService) -> None:
        app.dependency_overrides[get_contradiction_analysis_service] = lambda: service

    return _override
