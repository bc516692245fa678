"""Utilities for merging analyzer results into an overall verdict.

The :mod:`streamrate.analyzers` package produces one
:class:`~streamrate.analyzers.base.Result` per analyzer.  This module combines
those outcomes into a summary for one battery run, and the summaries of every
variant into a single p-value for the whole report.

``alpha``
    The significance level.  An analyzer *fails* when ``p_value < alpha``,
    a variant fails when its Fisher combined p-value is below ``alpha`` and
    the report fails when the Šidák-adjusted minimum over the variants is.

``confidence``
    The weighted mean p-value of the run, expressed as a percentage.  It is
    displayed in reports as a quick quality indicator but does not decide the
    verdict: under the null hypothesis p-values are uniform, so the mean sits
    near 50% for a perfect generator.

Results without a p-value (insufficient sample, indeterminate numerics) are
kept in the summary but excluded from both scores, and a note explains why.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence, Tuple

import numpy as np
from scipy import stats

from .analyzers.base import DEFAULT_ALPHA, Result, Verdict
from .analyzers.utils import sidak


@dataclass(frozen=True)
class MergedResult:
    """Result of a single analyzer together with its weighting information."""

    name: str
    verdict: Verdict
    p_value: float | None
    weight: float
    passed: bool | None
    threshold: float
    details: str
    metadata: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RunSummary:
    """Aggregate verdict built from the analyzer outcomes of one run."""

    confidence: float
    passed: bool
    alpha: float
    combined_p_value: float | None
    tests: Tuple[MergedResult, ...]
    metadata: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def scored(self) -> bool:
        return self.combined_p_value is not None

    @property
    def failed_tests(self) -> Tuple[str, ...]:
        return tuple(test.name for test in self.tests if test.passed is False)


def merge_run_results(
    results: Sequence[Result],
    weights: Mapping[str, float] | None = None,
    *,
    alpha: float = DEFAULT_ALPHA,
) -> RunSummary:
    """Merge analyzer results into a run summary.

    Parameters
    ----------
    results:
        Results in battery order.
    weights:
        Weight per analyzer name for the displayed confidence.  Analyzers
        without an entry weigh ``1.0``; weights are renormalised over the
        numeric results only.
    alpha:
        Significance level for each analyzer and for the combined p-value.
    """

    weights = weights or {}
    merged: list[MergedResult] = []
    scored_p: list[float] = []
    scored_w: list[float] = []
    notes: list[str] = []

    for result in results:
        weight = float(weights.get(result.analyzer_name, 1.0))
        if result.numeric:
            p_value = min(1.0, max(0.0, float(result.p_value)))
            merged.append(
                MergedResult(
                    name=result.analyzer_name,
                    verdict=result.verdict,
                    p_value=p_value,
                    weight=weight,
                    passed=p_value >= alpha,
                    threshold=alpha,
                    details=result.details,
                )
            )
            scored_p.append(p_value)
            scored_w.append(weight)
            continue
        note = f"'{result.analyzer_name}' excluded from scoring: {result.verdict.value}."
        notes.append(note)
        merged.append(
            MergedResult(
                name=result.analyzer_name,
                verdict=result.verdict,
                p_value=None,
                weight=weight,
                passed=None,
                threshold=alpha,
                details=result.details,
                metadata=(note,),
            )
        )

    p_array = np.asarray(scored_p, dtype=float)
    w_array = np.asarray(scored_w, dtype=float)
    total_weight = float(w_array.sum())
    confidence = float(p_array.dot(w_array)) / total_weight if total_weight else 0.0
    combined = fisher_combined(scored_p)
    if combined is None:
        notes.append("No analyzer produced a p-value; the run cannot be scored.")

    return RunSummary(
        confidence=confidence * 100.0,
        passed=combined is not None and combined >= alpha,
        alpha=alpha,
        combined_p_value=combined,
        tests=tuple(merged),
        metadata=tuple(notes),
    )


def fisher_combined(p_values: Sequence[float]) -> float | None:
    """Fisher's combined p-value, or ``None`` when there is nothing to combine."""

    if not p_values:
        return None
    floor = np.finfo(float).tiny
    clipped = np.clip(np.asarray(p_values, dtype=float), floor, 1.0)
    _, p_value = stats.combine_pvalues(clipped, method="fisher")
    return float(p_value)


def combine_variants(p_values: Iterable[float | None]) -> float | None:
    """Šidák-adjusted minimum of the variants' combined p-values.

    Variants that could not be scored are skipped; ``None`` is returned when
    none of them produced a p-value.
    """

    scored = [p for p in p_values if p is not None]
    if not scored:
        return None
    return sidak(scored)


__all__ = [
    "MergedResult",
    "RunSummary",
    "combine_variants",
    "fisher_combined",
    "merge_run_results",
]
