"""Tests for the inference response parser chain."""

import pytest

from reqconflict.engines.contradiction.parsers import (
    LabelScore,
    UnrecognizedResponseError,
    parse_label_scores,
    parse_nli_object,
    parse_numeric_list,
    select_contradiction,
    select_similarity,
)

# =============================================================================
# Parser Chain Tests
# =============================================================================


class TestParseLabelScores:
    """Each known response shape decodes to normalized scores."""

    def test_flat_label_score_list(self) -> None:
        data = [{"label": "CONTRADICTION", "score": 0.91}, {"label": "NEUTRAL", "score": 0.09}]

        assert parse_label_scores(data) == [
            LabelScore("CONTRADICTION", 0.91),
            LabelScore("NEUTRAL", 0.09),
        ]

    def test_nested_label_score_list(self) -> None:
        data = [[{"label": "entailment", "score": 0.7}, {"label": "contradiction", "score": 0.2}]]

        assert parse_label_scores(data)[0] == LabelScore("entailment", 0.7)

    def test_flat_numeric_list(self) -> None:
        assert parse_label_scores([0.83]) == [LabelScore(None, 0.83)]

    def test_nested_numeric_list(self) -> None:
        assert parse_label_scores([[0.42, 0.1]]) == [LabelScore(None, 0.42), LabelScore(None, 0.1)]

    def test_zero_shot_object(self) -> None:
        data = {"sequence": "x", "labels": ["contradiction", "neutral"], "scores": [0.8, 0.2]}

        assert parse_label_scores(data) == [
            LabelScore("contradiction", 0.8),
            LabelScore("neutral", 0.2),
        ]

    def test_nli_object(self) -> None:
        data = {"Contradiction": 0.6, "entailment": 0.3, "neutral": 0.1}

        scores = parse_label_scores(data)

        assert LabelScore("Contradiction", 0.6) in scores
        assert len(scores) == 3

    def test_numeric_object(self) -> None:
        assert parse_label_scores({"score": 0.55}) == [LabelScore(None, 0.55)]

    def test_integers_are_accepted_as_scores(self) -> None:
        assert parse_label_scores([1]) == [LabelScore(None, 1.0)]

    @pytest.mark.parametrize(
        "data",
        [
            None,
            "loading",
            [],
            [[]],
            {},
            {"error": "Model is currently loading"},
            [True, False],
            [{"label": "x"}],
        ],
    )
    def test_unrecognized_shapes_raise(self, data) -> None:
        with pytest.raises(UnrecognizedResponseError):
            parse_label_scores(data)

    def test_individual_parsers_decline_other_shapes(self) -> None:
        assert parse_numeric_list([{"label": "a", "score": 1}]) is None
        assert parse_nli_object({"foo": 0.3}) is None

    def test_custom_parser_chain(self) -> None:
        assert parse_label_scores([0.5], parsers=[parse_nli_object, parse_numeric_list]) == [
            LabelScore(None, 0.5)
        ]

        with pytest.raises(UnrecognizedResponseError):
            parse_label_scores([0.5], parsers=[parse_nli_object])


# =============================================================================
# Selection Tests
# =============================================================================


class TestSelectSimilarity:
    def test_prefers_entailment_label(self) -> None:
        scores = [LabelScore("neutral", 0.9), LabelScore("ENTAILMENT", 0.4)]

        assert select_similarity(scores) == 0.4

    def test_falls_back_to_highest_labelled_score(self) -> None:
        scores = [LabelScore("LABEL_0", 0.3), LabelScore("LABEL_1", 0.6)]

        assert select_similarity(scores) == 0.6

    def test_falls_back_to_first_numeric(self) -> None:
        assert select_similarity([LabelScore(None, 0.7), LabelScore(None, 0.9)]) == 0.7

    def test_empty_has_no_score(self) -> None:
        assert select_similarity([]) is None


class TestSelectContradiction:
    def test_exact_label_case_insensitive(self) -> None:
        scores = [LabelScore("CONTRADICTION", 0.8), LabelScore("contradictory", 0.1)]

        assert select_contradiction(scores) == 0.8

    def test_partial_label_match(self) -> None:
        scores = [LabelScore("entailment", 0.1), LabelScore("CONTRA", 0.75)]

        assert select_contradiction(scores) == 0.75

    def test_no_contradiction_label(self) -> None:
        assert select_contradiction([LabelScore("entailment", 0.9)]) is None
        assert select_contradiction([LabelScore(None, 0.9)]) is None
