"""Incremental statistics building blocks shared by the analyzers."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


class CircularBitBuffer:
    """Fixed-capacity ring holding the most recent ``capacity`` bits."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("Capacity must be positive.")
        self.capacity = capacity
        self._ring = np.zeros(capacity, dtype=np.uint8)
        self._head = 0  # index of the next write
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __getitem__(self, lag: int) -> int:
        """Return the bit ``lag`` positions back (``0`` is the newest)."""

        if not 0 <= lag < self._size:
            raise IndexError(f"Lag {lag} outside window of {self._size} bits.")
        return int(self._ring[(self._head - 1 - lag) % self.capacity])

    def push(self, bit: int) -> None:
        self._ring[self._head] = bit
        self._head = (self._head + 1) % self.capacity
        self._size = min(self._size + 1, self.capacity)

    def extend(self, bits: np.ndarray) -> None:
        """Append ``bits``; only the trailing ``capacity`` bits are copied."""

        bits = np.asarray(bits, dtype=np.uint8)
        if len(bits) >= self.capacity:
            self._ring[:] = bits[-self.capacity :]
            self._head = 0
            self._size = self.capacity
            return
        end = self._head + len(bits)
        if end <= self.capacity:
            self._ring[self._head : end] = bits
        else:
            split = self.capacity - self._head
            self._ring[self._head :] = bits[:split]
            self._ring[: end - self.capacity] = bits[split:]
        self._head = end % self.capacity
        self._size = min(self._size + len(bits), self.capacity)

    def window(self) -> np.ndarray:
        """Return the buffered bits oldest first."""

        if self._size < self.capacity:
            # Not wrapped yet, so the ring starts at index 0.
            return self._ring[: self._size].copy()
        return np.concatenate((self._ring[self._head :], self._ring[: self._head]))


class FrequencyTable:
    """Running frequency counts over the alphabet ``0 .. alphabet_size - 1``."""

    def __init__(self, alphabet_size: int) -> None:
        if alphabet_size <= 0:
            raise ValueError("Alphabet size must be positive.")
        self.alphabet_size = alphabet_size
        self.counts = np.zeros(alphabet_size, dtype=np.int64)

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def increment(self, symbol: int, count: int = 1) -> None:
        self.counts[symbol] += count

    def add(self, symbols: np.ndarray) -> None:
        """Tally every value of ``symbols``."""

        if len(symbols):
            self.counts += np.bincount(symbols, minlength=self.alphabet_size)

    def pearson_chi_square(self) -> float:
        """Pearson chi-square of the counts against a uniform expectation."""

        total = self.total
        if total == 0:
            return 0.0
        expected = total / self.alphabet_size
        deviations = self.counts.astype(np.float64) - expected
        return float(math.fsum((deviations * deviations).tolist()) / expected)

    def shannon_entropy(self) -> float:
        """Shannon entropy of the observed distribution in bits per symbol."""

        total = self.total
        if total == 0:
            return 0.0
        observed = self.counts[self.counts > 0].astype(np.float64) / total
        return float(-math.fsum((observed * np.log2(observed)).tolist()))

    def min_entropy(self) -> float:
        total = self.total
        if total == 0:
            return 0.0
        return -math.log2(int(self.counts.max()) / total)


@dataclass
class MomentAccumulator:
    """Welford running mean and variance.

    ``merge`` combines two accumulators with Chan's parallel update so partial
    accumulators computed independently can be joined without loss.
    """

    count: int = 0
    mean: float = 0.0
    m2: float = 0.0

    def push(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)

    def extend(self, values) -> None:
        for value in values:
            self.push(float(value))

    @property
    def variance(self) -> float:
        """Population variance."""

        return self.m2 / self.count if self.count else 0.0

    @property
    def sample_variance(self) -> float:
        return self.m2 / (self.count - 1) if self.count > 1 else 0.0

    def merge(self, other: "MomentAccumulator") -> "MomentAccumulator":
        if other.count == 0:
            return MomentAccumulator(self.count, self.mean, self.m2)
        if self.count == 0:
            return MomentAccumulator(other.count, other.mean, other.m2)
        count = self.count + other.count
        delta = other.mean - self.mean
        mean = self.mean + delta * other.count / count
        m2 = self.m2 + other.m2 + delta * delta * self.count * other.count / count
        return MomentAccumulator(count, mean, m2)


__all__ = ["CircularBitBuffer", "FrequencyTable", "MomentAccumulator"]
