"""Response parsers for inference backend payloads.

The hosted models answer in several JSON shapes depending on model type,
pipeline and endpoint flavour. Instead of probing the payload ad hoc, each
known shape has one parser that either decodes it into a normalized
list[LabelScore] or declines (returns None). Parsers are tried in order and
the first successful decode wins.

Known shapes, in chain order:
    [{"label": "CONTRADICTION", "score": 0.91}, ...]      flat label/score
    [[{"label": "...", "score": 0.91}, ...]]              nested label/score
    [0.83, ...]                                           flat numeric
    [[0.83, ...]]                                         nested numeric
    {"labels": ["contradiction", ...], "scores": [...]}   zero-shot
    {"contradiction": 0.9, "entailment": 0.05, ...}       NLI object
    {"score": 0.83}                                       numeric object
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

NLI_LABELS = frozenset({"contradiction", "entailment", "neutral"})

CONTRADICTION_LABEL = "contradiction"
CONTRADICTION_LABEL_FRAGMENT = "contra"
ENTAILMENT_LABEL = "entailment"


@dataclass(frozen=True)
class LabelScore:
    """One normalized score. label is None for unlabelled numeric output."""

    label: str | None
    score: float


ResponseParser = Callable[[Any], list[LabelScore] | None]


class UnrecognizedResponseError(ValueError):
    """Raised when no parser in the chain can decode a response."""

    def __init__(self, payload: Any):
        preview = repr(payload)
        if len(preview) > 200:
            preview = preview[:200] + "..."
        self.payload = payload
        super().__init__(f"Unrecognized inference response shape: {preview}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_label_score(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and isinstance(item.get("label"), str)
        and _is_number(item.get("score"))
    )


# =============================================================================
# Parsers
# =============================================================================


def parse_label_score_list(data: Any) -> list[LabelScore] | None:
    if not isinstance(data, list) or not data:
        return None
    if not all(_is_label_score(item) for item in data):
        return None
    return [LabelScore(item["label"], float(item["score"])) for item in data]


def parse_nested_label_score_list(data: Any) -> list[LabelScore] | None:
    if not isinstance(data, list) or not data:
        return None
    return parse_label_score_list(data[0])


def parse_numeric_list(data: Any) -> list[LabelScore] | None:
    if not isinstance(data, list) or not data:
        return None
    if not all(_is_number(item) for item in data):
        return None
    return [LabelScore(None, float(item)) for item in data]


def parse_nested_numeric_list(data: Any) -> list[LabelScore] | None:
    if not isinstance(data, list) or not data:
        return None
    return parse_numeric_list(data[0])


def parse_zero_shot(data: Any) -> list[LabelScore] | None:
    """Decode zero-shot classification output ({"labels": [...], "scores": [...]})."""
    if not isinstance(data, dict):
        return None
    labels = data.get("labels")
    scores = data.get("scores")
    if not isinstance(labels, list) or not isinstance(scores, list):
        return None
    if not labels or len(labels) != len(scores):
        return None
    if not all(isinstance(label, str) for label in labels):
        return None
    if not all(_is_number(score) for score in scores):
        return None
    return [LabelScore(label, float(score)) for label, score in zip(labels, scores)]


def parse_nli_object(data: Any) -> list[LabelScore] | None:
    """Decode a dedicated endpoint's {"contradiction", "entailment", "neutral"} object."""
    if not isinstance(data, dict):
        return None
    scores = [
        LabelScore(key, float(value))
        for key, value in data.items()
        if isinstance(key, str) and key.lower() in NLI_LABELS and _is_number(value)
    ]
    return scores or None


def parse_numeric_object(data: Any) -> list[LabelScore] | None:
    if not isinstance(data, dict):
        return None
    scores = [LabelScore(None, float(value)) for value in data.values() if _is_number(value)]
    return scores or None


DEFAULT_PARSERS: tuple[ResponseParser, ...] = (
    parse_label_score_list,
    parse_nested_label_score_list,
    parse_numeric_list,
    parse_nested_numeric_list,
    parse_zero_shot,
    parse_nli_object,
    parse_numeric_object,
)


def parse_label_scores(
    data: Any,
    parsers: Sequence[ResponseParser] = DEFAULT_PARSERS,
) -> list[LabelScore]:
    """Run the parser chain over a decoded response.

    Args:
        data: Decoded JSON response.
        parsers: Parsers to try, in order.

    Returns:
        Normalized scores from the first parser that accepts the payload.

    Raises:
        UnrecognizedResponseError: If every parser declines.
    """
    for parser in parsers:
        scores = parser(data)
        if scores:
            return scores
    raise UnrecognizedResponseError(data)


# =============================================================================
# Score Selection
# =============================================================================


def select_similarity(scores: Sequence[LabelScore]) -> float | None:
    """Pick the similarity value from normalized scores.

    Entailment-labelled score first, else the highest labelled score,
    else the first unlabelled value.
    """
    labelled = [s for s in scores if s.label is not None]
    for item in labelled:
        if item.label.lower() == ENTAILMENT_LABEL:
            return item.score
    if labelled:
        return max(item.score for item in labelled)
    if scores:
        return scores[0].score
    return None


def select_contradiction(scores: Sequence[LabelScore]) -> float | None:
    """Pick the contradiction probability, or None when no label matches."""
    labelled = [s for s in scores if s.label is not None]
    for item in labelled:
        if item.label.lower() == CONTRADICTION_LABEL:
            return item.score
    for item in labelled:
        if CONTRADICTION_LABEL_FRAGMENT in item.label.lower():
            return item.score
    return None
