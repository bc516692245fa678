"""Bit-level transforms: permutation, XOR folding, decimation and bias."""

from __future__ import annotations

import math
from typing import Any, Iterable, Iterator, Mapping

import numpy as np

from ..bits import EMPTY_BITS
from .base import Aligner, Transform

UNIT_BITS = {"bit": 1, "byte": 8, "word": 64}


class Permute(Transform):
    """Reorder bits inside consecutive fixed-size blocks.

    ``reverse`` mirrors each block, ``interleave`` zips its first and second
    halves (a windowed interleave) and ``rotate`` rotates it left by
    ``shift``.  A trailing partial block is passed through unchanged.
    """

    name = "permute"

    def __init__(self, *, block: int = 32, mode: str = "reverse", shift: int = 1) -> None:
        if block < 2:
            raise ValueError("block must be at least 2 bits.")
        index = np.arange(block)
        if mode == "reverse":
            permutation = index[::-1]
        elif mode == "interleave":
            if block % 2:
                raise ValueError("interleave needs an even block size.")
            permutation = np.empty(block, dtype=np.intp)
            permutation[0::2] = index[: block // 2]
            permutation[1::2] = index[block // 2 :]
        elif mode == "rotate":
            if not 0 < shift < block:
                raise ValueError("shift must lie between 1 and block - 1.")
            permutation = (index + shift) % block
        else:
            raise ValueError(f"unknown permutation mode '{mode}'.")
        self.block = block
        self.mode = mode
        self.shift = shift
        self.permutation = permutation

    @property
    def context_bits(self) -> int:
        return self.block - 1

    @property
    def description(self) -> str:
        if self.mode == "rotate":
            return f"rotates every {self.block}-bit block left by {self.shift}"
        if self.mode == "interleave":
            return f"interleaves the halves of every {self.block}-bit block"
        return f"reverses the bit order of every {self.block}-bit block"

    def parameters(self) -> Mapping[str, Any]:
        params: dict[str, Any] = {"block": self.block, "mode": self.mode}
        if self.mode == "rotate":
            params["shift"] = self.shift
        return params

    def apply(self, chunks: Iterable[np.ndarray]) -> Iterator[np.ndarray]:
        aligner = Aligner(self.block)
        for chunk in chunks:
            body = aligner.push(chunk)
            if len(body):
                yield body.reshape(-1, self.block)[:, self.permutation].ravel()
        if len(aligner.tail):
            yield aligner.tail


class XorFold(Transform):
    """``out[i] = in[i] XOR in[i + k]``; the last ``k`` bits have no partner."""

    name = "xor_fold"

    def __init__(self, *, k: int = 1) -> None:
        if k < 1:
            raise ValueError("k must be a positive offset.")
        self.k = k

    @property
    def context_bits(self) -> int:
        return self.k

    @property
    def description(self) -> str:
        return f"folds the stream XOR with itself shifted by {self.k}"

    def parameters(self) -> Mapping[str, Any]:
        return {"k": self.k}

    def output_length(self, length: int) -> int:
        return max(0, length - self.k)

    def apply(self, chunks: Iterable[np.ndarray]) -> Iterator[np.ndarray]:
        held = EMPTY_BITS
        k = self.k
        for chunk in chunks:
            extended = np.concatenate((held, chunk)) if len(held) else chunk
            if len(extended) > k:
                yield extended[:-k] ^ extended[k:]
                held = extended[-k:]
            else:
                held = extended


class Decimate(Transform):
    """Keep every ``m``-th unit starting at ``offset`` and drop the rest."""

    name = "decimate"

    def __init__(self, *, m: int = 2, offset: int = 0, unit: str = "bit") -> None:
        if m < 1:
            raise ValueError("m must be at least 1.")
        if not 0 <= offset < m:
            raise ValueError("offset must lie between 0 and m - 1.")
        if unit not in UNIT_BITS:
            raise ValueError(f"unit must be one of {', '.join(UNIT_BITS)}.")
        self.m = m
        self.offset = offset
        self.unit = unit
        self.unit_bits = UNIT_BITS[unit]

    @property
    def context_bits(self) -> int:
        return self.unit_bits - 1

    @property
    def description(self) -> str:
        if self.m == 1:
            return f"keeps every {self.unit}"
        return f"keeps one {self.unit} in {self.m} (offset {self.offset})"

    def parameters(self) -> Mapping[str, Any]:
        params: dict[str, Any] = {"m": self.m}
        if self.offset:
            params["offset"] = self.offset
        if self.unit != "bit":
            params["unit"] = self.unit
        return params

    def output_length(self, length: int) -> int:
        units = length // self.unit_bits
        if units <= self.offset:
            return 0
        return math.ceil((units - self.offset) / self.m) * self.unit_bits

    def apply(self, chunks: Iterable[np.ndarray]) -> Iterator[np.ndarray]:
        aligner = Aligner(self.unit_bits)
        index = 0
        for chunk in chunks:
            body = aligner.push(chunk)
            units = len(body) // self.unit_bits
            if not units:
                continue
            first = (self.offset - index) % self.m
            index += units
            kept = body.reshape(units, self.unit_bits)[first :: self.m]
            if len(kept):
                yield kept.ravel()


class Bias(Transform):
    """Force every ``stride``-th bit (from ``phase``) to a constant value."""

    name = "bias"

    def __init__(self, *, stride: int = 8, value: int = 1, phase: int = 0) -> None:
        if stride < 1:
            raise ValueError("stride must be at least 1.")
        if not 0 <= phase < stride:
            raise ValueError("phase must lie between 0 and stride - 1.")
        if value not in (0, 1):
            raise ValueError("value must be 0 or 1.")
        self.stride = stride
        self.value = value
        self.phase = phase

    @property
    def description(self) -> str:
        return f"forces one bit in {self.stride} to {self.value}"

    def parameters(self) -> Mapping[str, Any]:
        params: dict[str, Any] = {"stride": self.stride, "value": self.value}
        if self.phase:
            params["phase"] = self.phase
        return params

    def apply(self, chunks: Iterable[np.ndarray]) -> Iterator[np.ndarray]:
        index = 0
        for chunk in chunks:
            first = (self.phase - index) % self.stride
            index += len(chunk)
            out = np.array(chunk, dtype=np.uint8, copy=True)
            out[first :: self.stride] = self.value
            yield out


__all__ = ["Bias", "Decimate", "Permute", "UNIT_BITS", "XorFold"]
