"""Contradiction Engine for detecting conflicting requirements.

Pipeline stages:
1. Backoff-wrapped calls to the inference backend (core.backoff)
2. Response normalization (parsers)
3. Similarity and NLI scoring (scorer)
4. Pairwise analysis with similarity gate and error breaker (analyzer)

Model warming (warmup) preloads the hosted models before a run.
"""

from reqconflict.engines.contradiction.analyzer import (
    AnalysisObserver,
    AnalysisOutcome,
    CancellationToken,
    PairOutcome,
    PairStatus,
    PairwiseAnalyzer,
    build_requirement_refs,
    total_pairs,
)
from reqconflict.engines.contradiction.parsers import (
    LabelScore,
    UnrecognizedResponseError,
    parse_label_scores,
)
from reqconflict.engines.contradiction.scorer import (
    InferenceScorer,
    ScoreError,
    ScoreResult,
    get_inference_scorer,
)
from reqconflict.engines.contradiction.warmup import ModelWarmer, WarmupResult

__all__ = [
    # Analyzer
    "AnalysisObserver",
    "AnalysisOutcome",
    "CancellationToken",
    "PairOutcome",
    "PairStatus",
    "PairwiseAnalyzer",
    "build_requirement_refs",
    "total_pairs",
    # Parsers
    "LabelScore",
    "UnrecognizedResponseError",
    "parse_label_scores",
    # Scorer
    "InferenceScorer",
    "ScoreError",
    "ScoreResult",
    "get_inference_scorer",
    # Warmup
    "ModelWarmer",
    "WarmupResult",
]
