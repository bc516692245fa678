"""Common interfaces and data structures for stream analyzers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Mapping, Protocol

import numpy as np

from ..errors import AnalyzerFinalized

DEFAULT_ALPHA = 0.01


class Verdict(str, Enum):
    """Outcome of a single analyzer."""

    PASS = "PASS"
    FAIL = "FAIL"
    INSUFFICIENT_SAMPLE = "INSUFFICIENT_SAMPLE"
    INDETERMINATE = "INDETERMINATE"

    @property
    def has_p_value(self) -> bool:
        return self in (Verdict.PASS, Verdict.FAIL)


@dataclass(frozen=True)
class Result:
    """Result from finalizing an analyzer."""

    analyzer_name: str
    statistic: float | None
    degrees_of_freedom: int | None
    p_value: float | None
    sample_size: int
    verdict: Verdict
    details: str = ""

    @property
    def numeric(self) -> bool:
        return self.p_value is not None


class Analyzer(Protocol):
    """Protocol implemented by all stream analyzers."""

    name: str

    @property
    def bits_consumed(self) -> int:
        """Number of bits consumed so far."""

    def consume(self, chunk: np.ndarray) -> None:
        """Update the accumulators with the next chunk of bits."""

    def finalize(self) -> Result:
        """Return the result; the analyzer is terminal afterwards."""


class StreamAnalyzer:
    """Base class enforcing the consume/finalize life cycle.

    Subclasses implement :meth:`_update` and :meth:`_evaluate`.  The bit
    counter and the terminal state are handled here.
    """

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""

    def __init__(self, *, alpha: float = DEFAULT_ALPHA) -> None:
        if not 0.0 < alpha < 1.0:
            raise ValueError("alpha must lie strictly between 0 and 1.")
        self.alpha = alpha
        self._bits = 0
        self._finalized = False

    @property
    def bits_consumed(self) -> int:
        return self._bits

    @property
    def finalized(self) -> bool:
        return self._finalized

    def consume(self, chunk: np.ndarray) -> None:
        if self._finalized:
            raise AnalyzerFinalized(f"Analyzer '{self.name}' was already finalized.")
        if not len(chunk):
            return
        self._update(chunk)
        self._bits += len(chunk)

    def finalize(self) -> Result:
        if self._finalized:
            raise AnalyzerFinalized(f"Analyzer '{self.name}' was already finalized.")
        self._finalized = True
        return self._evaluate()

    def parameters(self) -> Mapping[str, Any]:
        """Return the constructor parameters, used for reporting."""

        return {}

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------
    def _scored(
        self,
        statistic: float,
        p_value: float,
        details: str,
        *,
        degrees_of_freedom: int | None = None,
        sample_size: int | None = None,
    ) -> Result:
        p_value = max(0.0, min(1.0, float(p_value)))
        return Result(
            analyzer_name=self.name,
            statistic=float(statistic),
            degrees_of_freedom=degrees_of_freedom,
            p_value=p_value,
            sample_size=self._bits if sample_size is None else sample_size,
            verdict=Verdict.PASS if p_value >= self.alpha else Verdict.FAIL,
            details=details,
        )

    def _insufficient(self, needed: str, *, sample_size: int | None = None) -> Result:
        return Result(
            analyzer_name=self.name,
            statistic=None,
            degrees_of_freedom=None,
            p_value=None,
            sample_size=self._bits if sample_size is None else sample_size,
            verdict=Verdict.INSUFFICIENT_SAMPLE,
            details=f"Insufficient sample: need {needed}, got {self._bits} bits.",
        )

    def _indeterminate(self, reason: str) -> Result:
        return Result(
            analyzer_name=self.name,
            statistic=None,
            degrees_of_freedom=None,
            p_value=None,
            sample_size=self._bits,
            verdict=Verdict.INDETERMINATE,
            details=reason,
        )

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------
    def _update(self, chunk: np.ndarray) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def _evaluate(self) -> Result:  # pragma: no cover - abstract
        raise NotImplementedError


__all__ = [
    "Analyzer",
    "DEFAULT_ALPHA",
    "Result",
    "StreamAnalyzer",
    "Verdict",
]
