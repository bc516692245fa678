"""Bit-granularity views over byte streams.

A :class:`BitView` adapts a :class:`~streamrate.io.StreamSource` into an
addressable, forward-only sequence of bits.  Bits are materialised lazily as
``numpy.uint8`` arrays holding one bit (``0`` or ``1``) per element; nothing
beyond the bytes needed for the current request is read from the source.

:class:`TransformedView` offers the same interface over the output of a
transform chain so batteries can consume raw and transformed streams alike.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Iterable, Iterator, Literal

import numpy as np

from .errors import ConfigurationError, ExhaustedStream

logger = logging.getLogger(__name__)

BitOrder = Literal["msb", "lsb"]

EMPTY_BITS = np.zeros(0, dtype=np.uint8)
EMPTY_BITS.flags.writeable = False


def bytes_to_bits(data: bytes, bit_order: BitOrder = "msb") -> np.ndarray:
    """Unpack ``data`` into a bit array using ``bit_order``."""

    raw = np.frombuffer(data, dtype=np.uint8)
    return np.unpackbits(raw, bitorder="big" if bit_order == "msb" else "little")


def bits_to_bytes(bits: np.ndarray, bit_order: BitOrder = "msb") -> bytes:
    """Pack a bit array into bytes, zero padding a trailing partial byte."""

    packed = np.packbits(np.asarray(bits, dtype=np.uint8), bitorder="big" if bit_order == "msb" else "little")
    return packed.tobytes()


def freeze(bits: np.ndarray) -> np.ndarray:
    """Return ``bits`` as a read-only ``uint8`` array ready to be published."""

    array = np.ascontiguousarray(bits, dtype=np.uint8)
    if array.flags.writeable:
        if array is bits:
            array = array.copy()
        array.flags.writeable = False
    return array


class BitStream:
    """Forward-only bit cursor shared by :class:`BitView` and :class:`TransformedView`."""

    def __init__(self) -> None:
        self._buffer: np.ndarray = EMPTY_BITS
        self._position = 0
        self._ended = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def position(self) -> int:
        """Number of bits handed out so far."""

        return self._position

    def next_bits(self, n: int, *, partial: bool = False) -> np.ndarray:
        """Return the next ``n`` bits.

        When fewer than ``n`` bits remain, :class:`ExhaustedStream` is raised
        and nothing is consumed, unless ``partial`` is true in which case the
        remaining bits are returned.
        """

        if n < 0:
            raise ValueError("Bit count must not be negative.")
        self._fill(n)
        available = len(self._buffer)
        if available < n and not partial:
            raise ExhaustedStream(
                f"Requested {n} bits but only {available} remain",
                offset=self._position,
            )
        take = min(n, available)
        out = self._buffer[:take]
        self._buffer = self._buffer[take:]
        self._position += take
        return freeze(out)

    def at_end(self) -> bool:
        """Return whether no further bits can be produced."""

        if len(self._buffer):
            return False
        self._fill(1)
        return not len(self._buffer)

    def remaining(self) -> int | None:
        """Return the number of bits left, or ``None`` when unknown."""

        if self._ended:
            return len(self._buffer)
        return None

    def chunks(self, chunk_bits: int, *, exact: bool = False) -> Iterator[np.ndarray]:
        """Yield successive chunks of at most ``chunk_bits`` bits until the end.

        With ``exact`` every chunk is a mandatory read, so a stream that ends
        before its declared :meth:`remaining` length raises
        :class:`ExhaustedStream`.
        """

        if chunk_bits <= 0:
            raise ConfigurationError("Chunk size must be positive.")
        if exact:
            remaining = self.remaining()
            if remaining is None:
                raise ConfigurationError("Exact reads need a stream of known length.")
            while remaining > 0:
                chunk = self.next_bits(min(chunk_bits, remaining))
                remaining -= len(chunk)
                yield chunk
            return
        while True:
            chunk = self.next_bits(chunk_bits, partial=True)
            if not len(chunk):
                return
            yield chunk

    # ------------------------------------------------------------------
    # Buffer management
    # ------------------------------------------------------------------
    def _fill(self, n: int) -> None:
        while len(self._buffer) < n and not self._ended:
            block = self._produce(n - len(self._buffer))
            if block is None:
                self._ended = True
            elif len(block):
                if len(self._buffer):
                    self._buffer = np.concatenate((self._buffer, block))
                else:
                    self._buffer = block
                self._buffer.flags.writeable = False

    def _produce(self, needed: int) -> np.ndarray | None:  # pragma: no cover - abstract
        """Return at least one more bit, or ``None`` at end of stream."""

        raise NotImplementedError


class BitView(BitStream):
    """Bit view over a byte source with an optional byte limit.

    ``reader`` replaces ``source.read`` (the pipeline passes a
    :class:`~streamrate.io.TimedReader`).  ``limit_bytes`` caps how much of the
    source is ever consumed.
    """

    def __init__(
        self,
        source,
        *,
        bit_order: BitOrder = "msb",
        limit_bytes: int | None = None,
        reader: Callable[[int], bytes] | None = None,
    ) -> None:
        super().__init__()
        if bit_order not in ("msb", "lsb"):
            raise ConfigurationError(f"Unknown bit order '{bit_order}'.")
        if limit_bytes is not None and limit_bytes < 0:
            raise ConfigurationError("Byte limit must not be negative.")
        self.source = source
        self.bit_order: BitOrder = bit_order
        self.limit_bytes = limit_bytes
        self._read = reader or source.read
        self.bytes_read = 0

    def remaining(self) -> int | None:
        if self._ended:
            return len(self._buffer)
        if self.limit_bytes is not None:
            return self.limit_bytes * 8 - self._position
        return None

    def _produce(self, needed: int) -> np.ndarray | None:
        want = math.ceil(needed / 8)
        if self.limit_bytes is not None:
            want = min(want, self.limit_bytes - self.bytes_read)
            if want <= 0:
                return None
        data = self._read(want)
        if not data:
            logger.debug("Source exhausted after %d bytes", self.bytes_read)
            return None
        if len(data) > want:
            data = data[:want]
        self.bytes_read += len(data)
        return bytes_to_bits(data, self.bit_order)


class TransformedView(BitStream):
    """Bit view over the lazily transformed chunks of another view."""

    def __init__(self, base: BitStream, chain, *, chunk_bits: int, exact: bool = False) -> None:
        super().__init__()
        self.base = base
        self.chain = chain
        self._output: Iterator[np.ndarray] = iter(chain.apply(base.chunks(chunk_bits, exact=exact)))

    def _produce(self, needed: int) -> np.ndarray | None:
        for block in self._output:
            if len(block):
                return block
        return None


def iter_bits(stream: BitStream | Iterable[np.ndarray], chunk_bits: int) -> Iterator[np.ndarray]:
    """Yield chunks from a bit stream or pass an iterable of chunks through."""

    if isinstance(stream, BitStream):
        yield from stream.chunks(chunk_bits)
    else:
        for chunk in stream:
            yield freeze(chunk)


__all__ = [
    "BitOrder",
    "BitStream",
    "BitView",
    "TransformedView",
    "bits_to_bytes",
    "bytes_to_bits",
    "freeze",
    "iter_bits",
]
