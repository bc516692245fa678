"""Word-level transforms operating on big-endian machine words."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping

import numpy as np

from .base import Aligner, Transform

WORD_WIDTHS = (8, 16, 32, 64)


def _check_width(width: int) -> int:
    if width not in WORD_WIDTHS:
        raise ValueError(f"width must be one of {', '.join(str(w) for w in WORD_WIDTHS)}.")
    return width


def _dtype(width: int) -> np.dtype:
    return np.dtype(f"u{width // 8}")


def bits_to_words(bits: np.ndarray, width: int) -> np.ndarray:
    """Assemble ``width``-bit words, most significant bit first."""

    packed = np.packbits(bits.reshape(-1, width), axis=1)
    return packed.view(f">u{width // 8}").ravel().astype(_dtype(width))


def words_to_bits(words: np.ndarray, width: int) -> np.ndarray:
    raw = words.astype(f">u{width // 8}").view(np.uint8)
    return np.unpackbits(raw)


class _WordTransform(Transform):
    width: int = 64

    @property
    def group_bits(self) -> int:
        return self.width

    @property
    def context_bits(self) -> int:
        return self.group_bits - 1

    def output_length(self, length: int) -> int:
        return length // self.group_bits * self._out_per_group()

    def _out_per_group(self) -> int:
        return self.width

    def _map(self, body: np.ndarray) -> np.ndarray:  # pragma: no cover - abstract
        raise NotImplementedError

    def apply(self, chunks: Iterable[np.ndarray]) -> Iterator[np.ndarray]:
        aligner = Aligner(self.group_bits)
        for chunk in chunks:
            body = aligner.push(chunk)
            if len(body):
                yield self._map(body)


class WordCombine(_WordTransform):
    """Fold each group of ``ways`` consecutive words into one with ``op``."""

    name = "word_combine"
    OPERATIONS = {
        "xor": np.bitwise_xor,
        "add": np.add,
        "multiply": np.multiply,
    }

    def __init__(self, *, op: str = "xor", ways: int = 2, width: int = 64) -> None:
        if op not in self.OPERATIONS:
            raise ValueError(f"op must be one of {', '.join(self.OPERATIONS)}.")
        if ways < 2:
            raise ValueError("ways must be at least 2.")
        self.op = op
        self.ways = ways
        self.width = _check_width(width)

    @property
    def group_bits(self) -> int:
        return self.width * self.ways

    @property
    def description(self) -> str:
        return f"combines every {self.ways} consecutive {self.width}-bit words with {self.op}"

    def parameters(self) -> Mapping[str, Any]:
        params: dict[str, Any] = {"op": self.op, "ways": self.ways}
        if self.width != 64:
            params["width"] = self.width
        return params

    def _map(self, body: np.ndarray) -> np.ndarray:
        words = bits_to_words(body, self.width).reshape(-1, self.ways)
        ufunc = self.OPERATIONS[self.op]
        combined = ufunc.reduce(words, axis=1, dtype=words.dtype)
        return words_to_bits(combined, self.width)


class WordMap(_WordTransform):
    """Apply a bijective map to every word.

    ``rotate`` rotates left by ``shift``; ``triple`` multiplies by three and
    ``third`` by the modular inverse of three, both modulo ``2**width``.
    """

    name = "word_map"
    OPERATIONS = ("rotate", "triple", "third")

    def __init__(self, *, op: str = "rotate", shift: int = 7, width: int = 64) -> None:
        if op not in self.OPERATIONS:
            raise ValueError(f"op must be one of {', '.join(self.OPERATIONS)}.")
        self.width = _check_width(width)
        if op == "rotate" and not 0 < shift < self.width:
            raise ValueError("shift must lie between 1 and width - 1.")
        self.op = op
        self.shift = shift

    @property
    def description(self) -> str:
        if self.op == "rotate":
            return f"rotates every {self.width}-bit word left by {self.shift}"
        if self.op == "triple":
            return f"multiplies every {self.width}-bit word by 3"
        return f"divides every {self.width}-bit word by 3 modulo 2^{self.width}"

    def parameters(self) -> Mapping[str, Any]:
        params: dict[str, Any] = {"op": self.op}
        if self.op == "rotate":
            params["shift"] = self.shift
        if self.width != 64:
            params["width"] = self.width
        return params

    def _map(self, body: np.ndarray) -> np.ndarray:
        words = bits_to_words(body, self.width)
        scalar = words.dtype.type
        if self.op == "rotate":
            mapped = (words << scalar(self.shift)) | (words >> scalar(self.width - self.shift))
        elif self.op == "triple":
            mapped = words * scalar(3)
        else:
            mapped = words * scalar(pow(3, -1, 2**self.width))
        return words_to_bits(mapped, self.width)


class ConcatHalves(_WordTransform):
    """Keep the low half of each word; two outputs make a new word."""

    name = "concat_halves"

    def __init__(self, *, width: int = 64) -> None:
        self.width = _check_width(width)

    @property
    def description(self) -> str:
        return f"keeps the low {self.width // 2} bits of every {self.width}-bit word"

    def parameters(self) -> Mapping[str, Any]:
        return {"width": self.width} if self.width != 64 else {}

    def _out_per_group(self) -> int:
        return self.width // 2

    def _map(self, body: np.ndarray) -> np.ndarray:
        return body.reshape(-1, self.width)[:, self.width // 2 :].ravel()


__all__ = [
    "ConcatHalves",
    "WORD_WIDTHS",
    "WordCombine",
    "WordMap",
    "bits_to_words",
    "words_to_bits",
]
