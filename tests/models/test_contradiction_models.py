"""Tests for contradiction analysis models."""

from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from reqconflict.core.config import Settings
from reqconflict.models.contradiction import (
    AnalysisOptions,
    AnalysisRequest,
    AnalysisResponse,
    ContradictionFinding,
    RequirementRef,
    StoredComparison,
    round_half_up,
    to_storage_score,
)


def ref(index: int, text: str = "Some requirement text") -> RequirementRef:
    return RequirementRef(index=index, text=text)


class TestScoreConversion:
    def test_round_half_up(self) -> None:
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1
        assert round_half_up(2.4999) == 2

    def test_to_storage_score(self) -> None:
        assert to_storage_score(0.875) == 88
        assert to_storage_score(0.0) == 0
        assert to_storage_score(1.0) == 100


class TestContradictionFinding:
    def test_requires_canonical_order(self) -> None:
        with pytest.raises(ValidationError):
            ContradictionFinding(
                requirement1=ref(1),
                requirement2=ref(0),
                similarity_score=0.8,
                contradiction_score=0.9,
            )

    def test_serializes_camel_case(self) -> None:
        finding = ContradictionFinding(
            requirement1=ref(0),
            requirement2=ref(1),
            similarity_score=0.8,
            contradiction_score=0.9,
        )

        data = finding.model_dump(by_alias=True)

        assert data["similarityScore"] == 0.8
        assert data["contradictionScore"] == 0.9


class TestAnalysisOptions:
    def test_defaults(self) -> None:
        options = AnalysisOptions()

        assert options.similarity_threshold == 0.6
        assert options.contradiction_threshold == 0.55
        assert options.max_requirements == 100
        assert options.async_mode is False

    def test_defaults_follow_settings(self) -> None:
        settings = Settings(
            contradiction_similarity_threshold=0.4,
            contradiction_nli_threshold=0.7,
            contradiction_max_requirements=20,
        )

        with patch("reqconflict.models.contradiction.get_settings", return_value=settings):
            options = AnalysisOptions()

        assert options.similarity_threshold == 0.4
        assert options.contradiction_threshold == 0.7
        assert options.max_requirements == 20

    def test_accepts_json_aliases(self) -> None:
        options = AnalysisOptions.model_validate(
            {"similarityThreshold": 0.3, "maxRequirements": 10, "async": True}
        )

        assert options.similarity_threshold == 0.3
        assert options.max_requirements == 10
        assert options.async_mode is True

    @pytest.mark.parametrize(
        "values",
        [
            {"similarity_threshold": 1.5},
            {"contradiction_threshold": -0.1},
            {"max_requirements": 0},
            {"deadline_seconds": 0},
        ],
    )
    def test_rejects_invalid_values(self, values) -> None:
        with pytest.raises(ValidationError):
            AnalysisOptions(**values)


class TestAnalysisRequest:
    def test_ids_must_be_parallel(self) -> None:
        with pytest.raises(ValidationError):
            AnalysisRequest.model_validate(
                {"requirements": ["a", "b"], "requirementIds": ["x"]}
            )


class TestStoredComparison:
    def test_round_trip_to_finding(self) -> None:
        stored = StoredComparison.from_scores(
            RequirementRef(index=0, id="req-a", text="first"),
            RequirementRef(index=3, id="req-b", text="second"),
            similarity=0.834,
            contradiction=0.875,
            is_contradiction=True,
            compared_at=datetime.now(UTC),
            nli_checked=True,
        )

        assert stored.similarity_score == 83
        assert stored.contradiction_score == 88

        finding = stored.to_finding()
        assert finding.similarity_score == 0.83
        assert finding.contradiction_score == 0.88
        assert finding.requirement2.id == "req-b"
        assert finding.requirement2.index == 3


class TestAnalysisResponse:
    def test_contradictions_sorted_by_pair(self) -> None:
        findings = [
            ContradictionFinding(
                requirement1=ref(i), requirement2=ref(j),
                similarity_score=0.9, contradiction_score=0.9,
            )
            for i, j in [(1, 2), (0, 2), (0, 1)]
        ]

        response = AnalysisResponse(contradictions=findings)

        assert [(f.requirement1.index, f.requirement2.index) for f in response.contradictions] == [
            (0, 1),
            (0, 2),
            (1, 2),
        ]
