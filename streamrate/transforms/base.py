"""Common interfaces for stream transforms and their composition."""

from __future__ import annotations

from typing import Any, ClassVar, Iterable, Iterator, Mapping, Sequence

import numpy as np

from ..bits import EMPTY_BITS


class Transform:
    """Deterministic, bounded-context mapping from one bit stream to another.

    :meth:`apply` is a generator over bit chunks.  Any carry state lives in the
    generator, so one transform instance can be applied to any number of
    streams without them influencing each other.
    """

    name: ClassVar[str] = ""
    arity: ClassVar[int] = 1
    weakening: ClassVar[str] = ""

    @property
    def context_bits(self) -> int:
        """Maximum number of bits held back between chunks."""

        return 0

    @property
    def description(self) -> str:
        return self.weakening

    def parameters(self) -> Mapping[str, Any]:
        return {}

    def output_length(self, length: int) -> int:
        """Length of the output stream for an input of ``length`` bits."""

        return length

    def apply(self, chunks: Iterable[np.ndarray]) -> Iterator[np.ndarray]:  # pragma: no cover - abstract
        raise NotImplementedError

    def __str__(self) -> str:
        params = ", ".join(f"{key}={value}" for key, value in self.parameters().items())
        return f"{self.name}({params})" if params else self.name

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self}>"


class Aligner:
    """Regroup arbitrary chunks into bodies whose length is a multiple of ``unit``.

    Bits that do not yet fill a whole unit are carried to the next push and
    remain available as :attr:`tail` once the input ends.
    """

    def __init__(self, unit: int) -> None:
        self.unit = unit
        self.tail = EMPTY_BITS

    def push(self, chunk: np.ndarray) -> np.ndarray:
        if len(self.tail):
            chunk = np.concatenate((self.tail, chunk))
        whole = len(chunk) // self.unit * self.unit
        self.tail = chunk[whole:]
        return chunk[:whole]


class TransformChain:
    """Left-to-right composition of transforms, stitched lazily."""

    def __init__(self, transforms: Sequence[Transform] = ()) -> None:
        self.transforms = tuple(transforms)

    def __iter__(self) -> Iterator[Transform]:
        return iter(self.transforms)

    def __len__(self) -> int:
        return len(self.transforms)

    @property
    def context_bits(self) -> int:
        return sum(transform.context_bits for transform in self.transforms)

    @property
    def description(self) -> str:
        """Canonical chain description, ``raw`` for the empty chain."""

        if not self.transforms:
            return "raw"
        return " | ".join(str(transform) for transform in self.transforms)

    @property
    def weakening(self) -> str:
        if not self.transforms:
            return "unmodified stream"
        return "; then ".join(transform.description for transform in self.transforms)

    def output_length(self, length: int) -> int:
        for transform in self.transforms:
            length = transform.output_length(length)
        return length

    def apply(self, chunks: Iterable[np.ndarray]) -> Iterator[np.ndarray]:
        stream: Iterable[np.ndarray] = chunks
        for transform in self.transforms:
            stream = transform.apply(stream)
        for chunk in stream:
            if len(chunk):
                yield chunk

    def __str__(self) -> str:
        return self.description


__all__ = ["Aligner", "Transform", "TransformChain"]
