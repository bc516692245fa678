"""Concrete implementations of the streaming analyzers.

Every analyzer keeps integer tallies while consuming chunks and only derives
floating point statistics in :meth:`finalize`, so the result does not depend on
how the stream was split into chunks.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Sequence

import numpy as np

from ..bits import EMPTY_BITS
from ..tally import CircularBitBuffer, FrequencyTable, MomentAccumulator
from .base import Result, StreamAnalyzer
from .utils import (
    chi_square_sf,
    normal_two_sided,
    poisson_two_sided,
    sidak,
)

MIN_EXPECTED_PER_BIN = 5


def _join(carry: np.ndarray, chunk: np.ndarray) -> np.ndarray:
    if not len(carry):
        return chunk
    return np.concatenate((carry, chunk))


def _words(bits: np.ndarray, width: int) -> np.ndarray:
    """Interpret consecutive ``width``-bit groups as big-endian integers."""

    matrix = bits.reshape(-1, width).astype(np.int64)
    weights = np.left_shift(np.int64(1), np.arange(width - 1, -1, -1, dtype=np.int64))
    return matrix @ weights


class MonobitAnalyzer(StreamAnalyzer):
    name = "monobit"
    description = "Proportion of ones against the expected one half."

    def __init__(self, *, min_bits: int = 100, alpha: float = 0.01) -> None:
        super().__init__(alpha=alpha)
        self.min_bits = min_bits
        self._ones = 0

    def parameters(self) -> Mapping[str, Any]:
        return {"min_bits": self.min_bits}

    def _update(self, chunk: np.ndarray) -> None:
        self._ones += int(np.count_nonzero(chunk))

    def _evaluate(self) -> Result:
        n = self._bits
        if n < self.min_bits:
            return self._insufficient(f"{self.min_bits} bits")
        s = 2 * self._ones - n
        statistic = abs(s) / math.sqrt(n)
        return self._scored(
            statistic,
            normal_two_sided(statistic),
            f"S={s} over {n} bits ({self._ones} ones).",
        )


class RunsAnalyzer(StreamAnalyzer):
    name = "runs"
    description = "Number of maximal runs of identical bits."

    def __init__(self, *, min_bits: int = 100, alpha: float = 0.01) -> None:
        super().__init__(alpha=alpha)
        self.min_bits = min_bits
        self._ones = 0
        self._transitions = 0
        self._last: int | None = None

    def parameters(self) -> Mapping[str, Any]:
        return {"min_bits": self.min_bits}

    def _update(self, chunk: np.ndarray) -> None:
        self._ones += int(np.count_nonzero(chunk))
        self._transitions += int(np.count_nonzero(chunk[1:] != chunk[:-1]))
        if self._last is not None and int(chunk[0]) != self._last:
            self._transitions += 1
        self._last = int(chunk[-1])

    def _evaluate(self) -> Result:
        n = self._bits
        if n < self.min_bits:
            return self._insufficient(f"{self.min_bits} bits")
        runs = self._transitions + 1
        pi = self._ones / n
        if abs(pi - 0.5) >= 2 / math.sqrt(n):
            return self._scored(
                float(runs),
                0.0,
                f"Frequency prerequisite failed (proportion of ones {pi:.4f}); {runs} runs.",
            )
        expected = 2 * n * pi * (1 - pi)
        spread = 2 * math.sqrt(n) * pi * (1 - pi)
        statistic = abs(runs - expected) / spread
        return self._scored(
            statistic,
            normal_two_sided(statistic),
            f"Observed {runs} runs with expectation {expected:.2f}.",
        )


class SerialAnalyzer(StreamAnalyzer):
    name = "serial"
    description = "Pearson chi-square over overlapping k-bit tuples."

    def __init__(self, *, tuple_bits: int = 2, alpha: float = 0.01) -> None:
        super().__init__(alpha=alpha)
        if not 1 <= tuple_bits <= 16:
            raise ValueError("tuple_bits must be between 1 and 16.")
        self.tuple_bits = tuple_bits
        self._table = FrequencyTable(1 << tuple_bits)
        self._carry = EMPTY_BITS

    def parameters(self) -> Mapping[str, Any]:
        return {"tuple_bits": self.tuple_bits}

    def _update(self, chunk: np.ndarray) -> None:
        k = self.tuple_bits
        extended = _join(self._carry, chunk)
        count = len(extended) - k + 1
        if count > 0:
            values = np.zeros(count, dtype=np.int64)
            for offset in range(k):
                values <<= 1
                values |= extended[offset : offset + count]
            self._table.add(values)
        keep = min(k - 1, len(extended))
        self._carry = extended[len(extended) - keep :].copy() if keep else EMPTY_BITS

    def _evaluate(self) -> Result:
        categories = self._table.alphabet_size
        tuples = self._table.total
        if tuples < MIN_EXPECTED_PER_BIN * categories:
            needed = MIN_EXPECTED_PER_BIN * categories + self.tuple_bits - 1
            return self._insufficient(f"{needed} bits")
        statistic = self._table.pearson_chi_square()
        dof = categories - 1
        counts = ", ".join(str(int(c)) for c in self._table.counts[:16])
        suffix = ", ..." if categories > 16 else ""
        return self._scored(
            statistic,
            chi_square_sf(statistic, dof),
            f"{tuples} overlapping {self.tuple_bits}-bit tuples; counts: {counts}{suffix}.",
            degrees_of_freedom=dof,
        )


class DriftAnalyzer(StreamAnalyzer):
    """Positional drift test over consecutive fixed-size blocks.

    Each complete block contributes the integer excess ``e = 2 * ones - B``.
    Stationarity of the block series is checked three ways: dispersion
    (``sum(e**2) / B`` is chi-square with one degree of freedom per block),
    lag-1 autocorrelation and linear trend against the block index.  The three
    p-values are combined with the Šidák correction.  All sums are exact
    integers; floats are only formed in :meth:`finalize`.
    """

    name = "drift"
    description = "Stationarity of per-block bit frequency across the stream."

    def __init__(self, *, block_bits: int = 128, min_blocks: int = 10, alpha: float = 0.01) -> None:
        super().__init__(alpha=alpha)
        if block_bits < 8:
            raise ValueError("block_bits must be at least 8.")
        if min_blocks < 3:
            raise ValueError("min_blocks must be at least 3.")
        self.block_bits = block_bits
        self.min_blocks = min_blocks
        self._carry_ones = 0
        self._carry_len = 0
        self._blocks = 0
        self._sum = 0
        self._sum_sq = 0
        self._sum_lag = 0
        self._sum_index = 0
        self._first: int | None = None
        self._last: int | None = None
        self._moments = MomentAccumulator()

    def parameters(self) -> Mapping[str, Any]:
        return {"block_bits": self.block_bits, "min_blocks": self.min_blocks}

    def _update(self, chunk: np.ndarray) -> None:
        size = self.block_bits
        head = chunk[: size - self._carry_len]
        self._carry_ones += int(np.count_nonzero(head))
        self._carry_len += len(head)
        if self._carry_len == size:
            self._emit(np.array([self._carry_ones], dtype=np.int64))
            self._carry_ones = 0
            self._carry_len = 0
        rest = chunk[len(head) :]
        full = len(rest) // size
        if full:
            counts = rest[: full * size].reshape(full, size).sum(axis=1, dtype=np.int64)
            self._emit(counts)
        tail = rest[full * size :]
        if len(tail):
            self._carry_ones = int(np.count_nonzero(tail))
            self._carry_len = len(tail)

    def _emit(self, ones: np.ndarray) -> None:
        excess = 2 * ones - self.block_bits
        start = self._blocks
        self._sum += int(excess.sum())
        self._sum_sq += int((excess * excess).sum())
        self._sum_index += start * int(excess.sum()) + int(np.dot(np.arange(len(excess), dtype=np.int64), excess))
        if self._last is not None:
            self._sum_lag += self._last * int(excess[0])
        self._sum_lag += int(np.dot(excess[:-1], excess[1:]))
        if self._first is None:
            self._first = int(excess[0])
        self._last = int(excess[-1])
        self._blocks += len(excess)
        scale = math.sqrt(self.block_bits)
        for value in excess.tolist():
            self._moments.push(value / scale)

    def _evaluate(self) -> Result:
        n = self._blocks
        if n < self.min_blocks:
            return self._insufficient(f"{self.min_blocks * self.block_bits} bits")
        s1, s2 = self._sum, self._sum_sq
        dispersion = s2 / self.block_bits
        p_dispersion = chi_square_sf(dispersion, n)
        centred = n * s2 - s1 * s1  # n**2 times the population variance
        moments = (
            f"block deviation mean {self._moments.mean:+.4f}, "
            f"variance {self._moments.variance:.4f}"
        )
        if centred == 0:
            return self._scored(
                dispersion,
                p_dispersion,
                f"{n} blocks of {self.block_bits} bits; {moments}; "
                "constant block series, correlation checks indeterminate.",
                degrees_of_freedom=n,
            )
        first, last = self._first or 0, self._last or 0
        lag_numerator = n * n * self._sum_lag - n * s1 * (2 * s1 - first - last) + (n - 1) * s1 * s1
        lag_r = lag_numerator / (n * centred)
        p_lag = normal_two_sided(lag_r * math.sqrt(n))
        trend_numerator = 2 * self._sum_index - s1 * (n - 1)
        index_spread = n * (n * n - 1) / 12
        trend_r = trend_numerator / (2 * math.sqrt(centred / n * index_spread))
        p_trend = normal_two_sided(trend_r * math.sqrt(n - 1))
        p_value = sidak((p_dispersion, p_lag, p_trend))
        return self._scored(
            dispersion,
            p_value,
            f"{n} blocks of {self.block_bits} bits; {moments}; "
            f"dispersion p={p_dispersion:.4g}, lag-1 r={lag_r:+.4f} (p={p_lag:.4g}), "
            f"trend r={trend_r:+.4f} (p={p_trend:.4g}).",
            degrees_of_freedom=n,
        )


class AutocorrelationAnalyzer(StreamAnalyzer):
    name = "autocorrelation"
    description = "Bit agreement at fixed lags using a circular window."

    def __init__(self, *, lags: Sequence[int] = (1, 2, 8, 16), min_bits: int = 100, alpha: float = 0.01) -> None:
        super().__init__(alpha=alpha)
        lags = tuple(sorted({int(lag) for lag in lags}))
        if not lags or lags[0] < 1:
            raise ValueError("lags must be a non-empty set of positive integers.")
        self.lags = lags
        self.min_bits = min_bits
        self._window = CircularBitBuffer(max(lags))
        self._disagreements = {lag: 0 for lag in lags}
        self._pairs = {lag: 0 for lag in lags}

    def parameters(self) -> Mapping[str, Any]:
        return {"lags": self.lags, "min_bits": self.min_bits}

    def _update(self, chunk: np.ndarray) -> None:
        history = self._window.window()
        extended = _join(history, chunk)
        held = len(history)
        total = len(extended)
        for lag in self.lags:
            start = max(held, lag)
            if start >= total:
                continue
            self._disagreements[lag] += int(
                np.count_nonzero(extended[start:] != extended[start - lag : total - lag])
            )
            self._pairs[lag] += total - start
        self._window.extend(chunk)

    def _evaluate(self) -> Result:
        needed = max(self.lags) + self.min_bits
        if self._bits < needed:
            return self._insufficient(f"{needed} bits")
        z_scores = []
        for lag in self.lags:
            pairs = self._pairs[lag]
            z_scores.append((2 * self._disagreements[lag] - pairs) / math.sqrt(pairs))
        details = "; ".join(f"lag {lag}: z={z:+.3f}" for lag, z in zip(self.lags, z_scores))
        return self._scored(
            max(abs(z) for z in z_scores),
            sidak(normal_two_sided(z) for z in z_scores),
            details + ".",
        )


class EntropyAnalyzer(StreamAnalyzer):
    name = "entropy"
    description = "Byte distribution chi-square with Shannon and min-entropy estimates."

    def __init__(self, *, alpha: float = 0.01) -> None:
        super().__init__(alpha=alpha)
        self._table = FrequencyTable(256)
        self._carry = EMPTY_BITS

    def _update(self, chunk: np.ndarray) -> None:
        extended = _join(self._carry, chunk)
        whole = len(extended) // 8 * 8
        if whole:
            self._table.add(np.packbits(extended[:whole]).astype(np.int64))
        self._carry = extended[whole:].copy()

    def _evaluate(self) -> Result:
        count = self._table.total
        needed = MIN_EXPECTED_PER_BIN * 256
        if count < needed:
            return self._insufficient(f"{needed} bytes")
        statistic = self._table.pearson_chi_square()
        return self._scored(
            statistic,
            chi_square_sf(statistic, 255),
            f"{count} bytes; Shannon entropy {self._table.shannon_entropy():.4f} bits/byte, "
            f"min-entropy {self._table.min_entropy():.4f} bits/byte.",
            degrees_of_freedom=255,
        )


class CollisionAnalyzer(StreamAnalyzer):
    """Birthday collisions among the first ``max_words`` words of the stream.

    Memory is bounded by ``max_words`` distinct values.
    """

    name = "collision"
    description = "Repeated words compared with the birthday-problem expectation."

    def __init__(self, *, word_bits: int = 24, max_words: int = 16384, alpha: float = 0.01) -> None:
        super().__init__(alpha=alpha)
        if not 8 <= word_bits <= 62:
            raise ValueError("word_bits must be between 8 and 62.")
        if max_words < 2:
            raise ValueError("max_words must be at least 2.")
        self.word_bits = word_bits
        self.max_words = max_words
        self._seen: set[int] = set()
        self._words = 0
        self._carry = EMPTY_BITS

    def parameters(self) -> Mapping[str, Any]:
        return {"word_bits": self.word_bits, "max_words": self.max_words}

    def _update(self, chunk: np.ndarray) -> None:
        if self._words >= self.max_words:
            return
        extended = _join(self._carry, chunk)
        width = self.word_bits
        whole = min(len(extended) // width, self.max_words - self._words)
        if whole:
            words = _words(extended[: whole * width], width)
            self._seen.update(words.tolist())
            self._words += whole
        self._carry = extended[whole * width :][: width - 1].copy() if self._words < self.max_words else EMPTY_BITS

    def _rate(self, words: int) -> float:
        return words * (words - 1) / 2 / float(1 << self.word_bits)

    def _evaluate(self) -> Result:
        rate = self._rate(self._words)
        if rate < 1.0:
            return self._insufficient(f"enough {self.word_bits}-bit words for one expected collision")
        collisions = self._words - len(self._seen)
        return self._scored(
            float(collisions),
            poisson_two_sided(collisions, rate),
            f"{collisions} collisions among {self._words} words (expected {rate:.2f}).",
        )


class DependencyAnalyzer(StreamAnalyzer):
    """Pairwise dependency between bit positions inside fixed-width words."""

    name = "dependency"
    description = "Agreement matrix between bit positions within words."

    def __init__(self, *, word_bits: int = 32, min_words: int = 100, alpha: float = 0.01) -> None:
        super().__init__(alpha=alpha)
        if not 2 <= word_bits <= 64:
            raise ValueError("word_bits must be between 2 and 64.")
        self.word_bits = word_bits
        self.min_words = min_words
        self._gram = np.zeros((word_bits, word_bits), dtype=np.int64)
        self._words = 0
        self._carry = EMPTY_BITS

    def parameters(self) -> Mapping[str, Any]:
        return {"word_bits": self.word_bits, "min_words": self.min_words}

    def _update(self, chunk: np.ndarray) -> None:
        extended = _join(self._carry, chunk)
        width = self.word_bits
        whole = len(extended) // width
        if whole:
            matrix = extended[: whole * width].reshape(whole, width).astype(np.int64)
            self._gram += matrix.T @ matrix
            self._words += whole
        self._carry = extended[whole * width :].copy()

    def _evaluate(self) -> Result:
        n = self._words
        if n < self.min_words:
            return self._insufficient(f"{self.min_words * self.word_bits} bits")
        ones = np.diag(self._gram)
        rows, cols = np.triu_indices(self.word_bits, k=1)
        agreements = n - (ones[rows] + ones[cols] - 2 * self._gram[rows, cols])
        z = (2 * agreements - n) / math.sqrt(n)
        worst = int(np.argmax(np.abs(z)))
        p_values = [normal_two_sided(value) for value in z.tolist()]
        statistic = float(abs(z[worst]))
        return self._scored(
            statistic,
            sidak(p_values),
            f"{n} words; strongest dependency between bits {rows[worst]} and {cols[worst]} "
            f"(z={z[worst]:+.3f}) across {len(p_values)} pairs.",
        )



class CycleAnalyzer(StreamAnalyzer):
    """Distance until the first word of the stream occurs again.

    For independent uniform ``word_bits``-bit words the distance is geometric
    with success probability ``2 ** -word_bits``, so a short cycle is unlikely
    and yields a small p-value.  The search stops after ``horizon`` words.
    """

    name = "cycle"
    description = "Early recurrence of the first word compared with a geometric distribution."

    def __init__(
        self, *, word_bits: int = 32, horizon: int = 65536, min_words: int = 100, alpha: float = 0.01
    ) -> None:
        super().__init__(alpha=alpha)
        if not 8 <= word_bits <= 62:
            raise ValueError("word_bits must be between 8 and 62.")
        if horizon < 1:
            raise ValueError("horizon must be at least 1.")
        if not 1 <= min_words <= horizon:
            raise ValueError("min_words must be between 1 and horizon.")
        self.word_bits = word_bits
        self.horizon = horizon
        self.min_words = min_words
        self._start: int | None = None
        self._seen = 0
        self._recurrence: int | None = None
        self._carry = EMPTY_BITS

    def parameters(self) -> Mapping[str, Any]:
        return {"word_bits": self.word_bits, "horizon": self.horizon, "min_words": self.min_words}

    def _update(self, chunk: np.ndarray) -> None:
        if self._recurrence is not None or self._seen >= self.horizon:
            return
        extended = _join(self._carry, chunk)
        width = self.word_bits
        whole = len(extended) // width
        self._carry = extended[whole * width :].copy()
        if not whole:
            return
        words = _words(extended[: whole * width], width)
        if self._start is None:
            self._start = int(words[0])
            words = words[1:]
        words = words[: self.horizon - self._seen]
        hits = np.flatnonzero(words == self._start)
        if len(hits):
            self._recurrence = self._seen + int(hits[0]) + 1
            self._carry = EMPTY_BITS
            return
        self._seen += len(words)
        if self._seen >= self.horizon:
            self._carry = EMPTY_BITS

    def _evaluate(self) -> Result:
        width = self.word_bits
        if self._recurrence is not None:
            distance = self._recurrence
            # P(T <= distance) for T ~ Geometric(2 ** -width)
            p_value = -math.expm1(distance * math.log1p(-(2.0 ** -width)))
            return self._scored(
                float(distance),
                p_value,
                f"First {width}-bit word recurred after {distance} words "
                f"(expected about 2^{width}).",
            )
        if self._seen < self.min_words:
            return self._insufficient(f"{(self.min_words + 1) * width} bits")
        return self._scored(
            float(self._seen),
            1.0,
            f"No recurrence of the first {width}-bit word within {self._seen} words.",
        )


__all__ = [
    "AutocorrelationAnalyzer",
    "CollisionAnalyzer",
    "CycleAnalyzer",
    "DependencyAnalyzer",
    "DriftAnalyzer",
    "EntropyAnalyzer",
    "MonobitAnalyzer",
    "RunsAnalyzer",
    "SerialAnalyzer",
]
