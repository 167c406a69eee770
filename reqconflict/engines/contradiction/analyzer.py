"""Pairwise Analyzer for requirement contradiction detection.

Pipeline per run:
1. Truncate the batch to max_requirements (first N, input order)
2. Drop requirements too short to carry a claim
3. For each pair (i, j), i < j, ascending:
   a. similarity gate
   b. NLI contradiction in both directions, max of the two
   c. finding when the max reaches the contradiction threshold
4. Stop early when the per-run error breaker trips or the run is cancelled

Per-pair scoring failures are counted and the pair is skipped; they never
abort the run. Observer exceptions (e.g. persistence failures) propagate.
"""

import itertools
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from reqconflict.core.config import get_settings
from reqconflict.core.logging import preview
from reqconflict.engines.contradiction.scorer import ScoreError, ScoreResult
from reqconflict.models.contradiction import (
    AnalysisOptions,
    ContradictionFinding,
    RequirementRef,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Collaborator Protocols
# =============================================================================


class PairScorer(Protocol):
    async def similarity(self, text_a: str, text_b: str) -> ScoreResult: ...

    async def contradiction(self, premise: str, hypothesis: str) -> ScoreResult: ...


class PairStatus(str, Enum):
    """How a pair left the analyzer."""

    SKIPPED_SHORT = "skipped_short"  # One side too short, never scored
    FAILED = "failed"                # Scoring error, counted toward the breaker
    BELOW_THRESHOLD = "below_threshold"
    CHECKED = "checked"              # Both NLI directions scored


@dataclass(frozen=True)
class PairOutcome:
    """Result of evaluating one pair of the grid."""

    requirement1: RequirementRef
    requirement2: RequirementRef
    status: PairStatus
    similarity: float | None = None
    contradiction: float | None = None
    is_contradiction: bool = False
    error: ScoreError | None = None

    @property
    def compared(self) -> bool:
        """True when the pair produced a result worth persisting."""
        return self.status in (PairStatus.BELOW_THRESHOLD, PairStatus.CHECKED)


class AnalysisObserver:
    """Hooks awaited around every pair of the grid. Defaults do nothing."""

    async def on_pair_started(
        self, requirement1: RequirementRef, requirement2: RequirementRef
    ) -> None:
        return None

    async def on_pair_finished(self, outcome: PairOutcome) -> None:
        return None


class CancellationToken:
    """Cooperative stop signal checked once per pair.

    Set explicitly with cancel(), or implicitly once the deadline passes.
    """

    def __init__(
        self,
        deadline_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._reason: str | None = None
        self._deadline: float | None = None
        if deadline_seconds is not None:
            self.set_deadline(deadline_seconds)

    def set_deadline(self, seconds: float) -> None:
        """Set the deadline relative to now, keeping any earlier one."""
        deadline = self._clock() + seconds
        if self._deadline is None or deadline < self._deadline:
            self._deadline = deadline

    def cancel(self, reason: str = "Cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    @property
    def cancelled(self) -> bool:
        if self._reason is not None:
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self._reason = "Deadline exceeded"
            return True
        return False

    @property
    def reason(self) -> str | None:
        return self._reason


@dataclass
class AnalysisOutcome:
    """Aggregated result of one analyzer run."""

    findings: list[ContradictionFinding] = field(default_factory=list)
    comparisons_made: int = 0
    nli_checks_made: int = 0
    error_count: int = 0
    pairs_processed: int = 0
    total_pairs: int = 0
    processing_time_seconds: float = 0.0
    requirements_analyzed: int = 0
    requirements_truncated_from: int | None = None
    skipped_short_requirements: list[int] = field(default_factory=list)
    breaker_tripped: bool = False
    max_pair_errors: int = 5
    cancelled: bool = False
    cancel_reason: str | None = None

    @property
    def errors_summary(self) -> str | None:
        """Human-readable error annotation, or None for a clean run."""
        parts = []
        if self.error_count:
            parts.append(f"Encountered {self.error_count} API errors during analysis")
        if self.breaker_tripped:
            parts.append(
                f"analysis stopped after exceeding {self.max_pair_errors} errors; "
                f"{self.pairs_processed} of {self.total_pairs} pairs processed"
            )
        if self.cancelled:
            parts.append(f"analysis stopped: {self.cancel_reason or 'cancelled'}")
        return "; ".join(parts) or None


def total_pairs(requirement_count: int, max_requirements: int) -> int:
    """Number of unordered pairs in the truncated working set."""
    n = min(requirement_count, max_requirements)
    return n * (n - 1) // 2


# =============================================================================
# Pairwise Analyzer
# =============================================================================


class PairwiseAnalyzer:
    """Run the two-stage contradiction check over every pair of a batch.

    Example:
        >>> analyzer = PairwiseAnalyzer(InferenceScorer())
        >>> outcome = await analyzer.analyze(refs, AnalysisOptions())
        >>> [(f.requirement1.index, f.requirement2.index) for f in outcome.findings]
        [(0, 1)]
    """

    def __init__(
        self,
        scorer: PairScorer,
        *,
        min_requirement_length: int | None = None,
        max_pair_errors: int | None = None,
        default_deadline_seconds: float | None = None,
    ) -> None:
        settings = get_settings()
        self.scorer = scorer
        self.min_requirement_length = (
            settings.contradiction_min_requirement_length
            if min_requirement_length is None
            else min_requirement_length
        )
        self.max_pair_errors = (
            settings.contradiction_max_pair_errors
            if max_pair_errors is None
            else max_pair_errors
        )
        self.default_deadline_seconds = (
            settings.contradiction_deadline_seconds
            if default_deadline_seconds is None
            else default_deadline_seconds
        )

    def is_eligible(self, text: str | None) -> bool:
        """Check whether a requirement is long enough to be compared."""
        return bool(text and text.strip()) and len(text) >= self.min_requirement_length

    async def analyze(
        self,
        requirements: Sequence[RequirementRef],
        options: AnalysisOptions | None = None,
        *,
        observer: AnalysisObserver | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AnalysisOutcome:
        """Analyze all pairs of a requirement batch.

        Args:
            requirements: Requirements in input order; index must match position.
            options: Thresholds and limits for this run.
            observer: Hooks awaited before and after every pair.
            cancellation: Token checked once per pair.

        Returns:
            AnalysisOutcome with findings, counters and annotations.
        """
        options = options or AnalysisOptions()
        observer = observer or AnalysisObserver()
        cancellation = cancellation or CancellationToken()
        deadline = (
            options.deadline_seconds
            if options.deadline_seconds is not None
            else self.default_deadline_seconds
        )
        if deadline is not None:
            cancellation.set_deadline(deadline)

        start_time = time.perf_counter()

        refs = list(requirements[: options.max_requirements])
        eligible = [self.is_eligible(ref.text) for ref in refs]

        outcome = AnalysisOutcome(
            requirements_analyzed=len(refs),
            requirements_truncated_from=(
                len(requirements) if len(requirements) > len(refs) else None
            ),
            skipped_short_requirements=[
                ref.index for ref, ok in zip(refs, eligible) if not ok
            ],
            total_pairs=len(refs) * (len(refs) - 1) // 2,
            max_pair_errors=self.max_pair_errors,
        )

        if outcome.requirements_truncated_from is not None:
            logger.info(
                "pairwise_analysis_truncated",
                max_requirements=options.max_requirements,
                total_requirements=outcome.requirements_truncated_from,
            )

        logger.info(
            "pairwise_analysis_started",
            requirement_count=len(refs),
            skipped_short=len(outcome.skipped_short_requirements),
            total_pairs=outcome.total_pairs,
            similarity_threshold=options.similarity_threshold,
            contradiction_threshold=options.contradiction_threshold,
        )

        for i, j in itertools.combinations(range(len(refs)), 2):
            if cancellation.cancelled:
                outcome.cancelled = True
                outcome.cancel_reason = cancellation.reason
                logger.warning(
                    "pairwise_analysis_cancelled",
                    reason=cancellation.reason,
                    pairs_processed=outcome.pairs_processed,
                    total_pairs=outcome.total_pairs,
                )
                break

            ref_i, ref_j = refs[i], refs[j]
            await observer.on_pair_started(ref_i, ref_j)

            if eligible[i] and eligible[j]:
                pair_outcome = await self._compare_pair(ref_i, ref_j, options, outcome)
            else:
                pair_outcome = PairOutcome(ref_i, ref_j, PairStatus.SKIPPED_SHORT)

            outcome.pairs_processed += 1
            await observer.on_pair_finished(pair_outcome)

            if outcome.error_count > self.max_pair_errors:
                outcome.breaker_tripped = True
                logger.warning(
                    "pairwise_circuit_breaker_tripped",
                    error_count=outcome.error_count,
                    max_pair_errors=self.max_pair_errors,
                    pairs_processed=outcome.pairs_processed,
                    total_pairs=outcome.total_pairs,
                )
                break

        outcome.processing_time_seconds = round(time.perf_counter() - start_time, 3)

        logger.info(
            "pairwise_analysis_complete",
            comparisons_made=outcome.comparisons_made,
            nli_checks_made=outcome.nli_checks_made,
            contradictions_found=len(outcome.findings),
            error_count=outcome.error_count,
            breaker_tripped=outcome.breaker_tripped,
            cancelled=outcome.cancelled,
            processing_time_seconds=outcome.processing_time_seconds,
        )

        return outcome

    async def _compare_pair(
        self,
        ref_i: RequirementRef,
        ref_j: RequirementRef,
        options: AnalysisOptions,
        outcome: AnalysisOutcome,
    ) -> PairOutcome:
        outcome.comparisons_made += 1

        similarity = await self.scorer.similarity(ref_i.text, ref_j.text)
        if not similarity.ok:
            outcome.error_count += 1
            return PairOutcome(ref_i, ref_j, PairStatus.FAILED, error=similarity.error)

        if similarity.value < options.similarity_threshold:
            return PairOutcome(
                ref_i, ref_j, PairStatus.BELOW_THRESHOLD, similarity=similarity.value
            )

        # NLI is not symmetric; check both directions
        scores = []
        for premise, hypothesis in ((ref_i, ref_j), (ref_j, ref_i)):
            result = await self.scorer.contradiction(premise.text, hypothesis.text)
            outcome.nli_checks_made += 1
            if not result.ok:
                outcome.error_count += 1
                return PairOutcome(
                    ref_i,
                    ref_j,
                    PairStatus.FAILED,
                    similarity=similarity.value,
                    error=result.error,
                )
            scores.append(result.value)

        contradiction = max(scores)
        is_contradiction = contradiction >= options.contradiction_threshold

        if is_contradiction:
            outcome.findings.append(
                ContradictionFinding(
                    requirement1=ref_i,
                    requirement2=ref_j,
                    similarity_score=similarity.value,
                    contradiction_score=contradiction,
                )
            )
            logger.info(
                "pairwise_contradiction_found",
                requirement1_index=ref_i.index,
                requirement2_index=ref_j.index,
                similarity=round(similarity.value, 3),
                contradiction=round(contradiction, 3),
                requirement1=preview(ref_i.text),
                requirement2=preview(ref_j.text),
            )

        return PairOutcome(
            ref_i,
            ref_j,
            PairStatus.CHECKED,
            similarity=similarity.value,
            contradiction=contradiction,
            is_contradiction=is_contradiction,
        )


def build_requirement_refs(
    texts: Sequence[str],
    ids: Sequence[str | int] | None = None,
) -> list[RequirementRef]:
    """Wrap raw texts (and optional parallel ids) as indexed references."""
    if ids is not None and len(ids) != len(texts):
        raise ValueError("ids must be parallel to texts")
    return [
        RequirementRef(index=index, id=ids[index] if ids is not None else None, text=text)
        for index, text in enumerate(texts)
    ]
