"""Stream sources and timed reads used to feed the rating pipeline."""

from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import Future, TimeoutError as FutureTimeoutError, wait
from pathlib import Path, PureWindowsPath
from typing import BinaryIO, Callable, Iterable, Iterator, Protocol, runtime_checkable

from .errors import (
    EmptyInputFileError,
    MissingFileError,
    NonReplayableSource,
    SourceTimeout,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class StreamSource(Protocol):
    """Opaque producer of bytes consumed by the pipeline.

    ``read`` returns fewer bytes than requested only at end of stream.
    ``reset`` may only be called when ``is_replayable()`` is true.
    """

    retryable: bool

    def read(self, max_bytes: int) -> bytes:
        """Return up to ``max_bytes`` bytes, ``b""`` at end of stream."""

    def is_replayable(self) -> bool:
        """Return whether the source can be traversed again from the start."""

    def reset(self) -> None:
        """Rewind a replayable source to the first byte."""


class _SourceBase:
    retryable = False

    def is_replayable(self) -> bool:
        return False

    def reset(self) -> None:
        raise NonReplayableSource(f"{type(self).__name__} cannot be replayed.")

    def replicate(self) -> "StreamSource":
        """Return an independent reader over the same bytes."""

        raise NonReplayableSource(f"{type(self).__name__} cannot be replicated.")


class BytesSource(_SourceBase):
    """In-memory source over a fixed byte string."""

    def __init__(self, data: bytes | bytearray | memoryview, *, retryable: bool = False) -> None:
        self._data = bytes(data)
        self._offset = 0
        self.retryable = retryable

    def __len__(self) -> int:
        return len(self._data)

    def read(self, max_bytes: int) -> bytes:
        start = self._offset
        end = min(len(self._data), start + max(0, max_bytes))
        self._offset = end
        return self._data[start:end]

    def is_replayable(self) -> bool:
        return True

    def reset(self) -> None:
        self._offset = 0

    def replicate(self) -> "BytesSource":
        return BytesSource(self._data, retryable=self.retryable)


class FileSource(_SourceBase):
    """Replayable source reading a binary file lazily."""

    def __init__(self, path: Path | str) -> None:
        self.path = _normalise_path(path)
        if not self.path.exists():
            raise MissingFileError(f"Input file not found: {self.path}")
        self._handle: BinaryIO | None = None

    def _file(self) -> BinaryIO:
        if self._handle is None:
            try:
                self._handle = self.path.open("rb")
            except OSError as exc:  # pragma: no cover - filesystem guard
                raise MissingFileError(f"Could not read input file: {self.path}") from exc
        return self._handle

    def read(self, max_bytes: int) -> bytes:
        return self._file().read(max(0, max_bytes))

    def is_replayable(self) -> bool:
        return True

    def reset(self) -> None:
        self._file().seek(0)

    def replicate(self) -> "FileSource":
        return FileSource(self.path)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "FileSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class IterableSource(_SourceBase):
    """Non-replayable source draining an iterable of byte blocks."""

    def __init__(self, blocks: Iterable[bytes], *, retryable: bool = False) -> None:
        self._blocks: Iterator[bytes] = iter(blocks)
        self._pending = b""
        self._exhausted = False
        self.retryable = retryable

    def read(self, max_bytes: int) -> bytes:
        while len(self._pending) < max_bytes and not self._exhausted:
            try:
                self._pending += bytes(next(self._blocks))
            except StopIteration:
                self._exhausted = True
        data, self._pending = self._pending[:max_bytes], self._pending[max_bytes:]
        return data


class GeneratorSource(_SourceBase):
    """Replayable source built from a factory returning fresh byte iterables.

    The factory is called again on every :meth:`reset`, so it must produce the
    same sequence each time (for example a seeded generator).
    """

    def __init__(self, factory: Callable[[], Iterable[bytes]], *, retryable: bool = False) -> None:
        self._factory = factory
        self.retryable = retryable
        self._inner = IterableSource(factory())

    def read(self, max_bytes: int) -> bytes:
        return self._inner.read(max_bytes)

    def is_replayable(self) -> bool:
        return True

    def reset(self) -> None:
        self._inner = IterableSource(self._factory())

    def replicate(self) -> "GeneratorSource":
        return GeneratorSource(self._factory, retryable=self.retryable)


class TimedReader:
    """Call ``source.read`` with a timeout and optional retries.

    Reads run on a daemon thread so a stalled source never blocks the caller
    beyond ``timeout`` seconds.  When the source is ``retryable`` the reader
    keeps waiting on the in-flight read with exponential backoff instead of
    issuing a new one, so no bytes are lost or duplicated.
    """

    def __init__(
        self,
        source: StreamSource,
        *,
        timeout: float | None = None,
        retries: int = 0,
        backoff: float = 0.05,
    ) -> None:
        self.source = source
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff = backoff
        self._pending: Future | None = None

    def __call__(self, max_bytes: int) -> bytes:
        if self.timeout is None:
            return self.source.read(max_bytes)
        if self._pending is None:
            self._pending = self._start(max_bytes)
        attempts = 1 + (self.retries if getattr(self.source, "retryable", False) else 0)
        for attempt in range(attempts):
            if attempt:
                delay = self.backoff * 2 ** (attempt - 1)
                logger.warning(
                    "Source read stalled; retry %d/%d after %.3fs backoff",
                    attempt,
                    attempts - 1,
                    delay,
                )
                time.sleep(delay)
            try:
                data = self._pending.result(timeout=self.timeout)
            except FutureTimeoutError:
                continue
            self._pending = None
            return data
        raise SourceTimeout(
            f"Source read did not complete within {self.timeout:g}s",
            timeout=self.timeout,
        )

    @property
    def pending(self) -> bool:
        """Whether a read abandoned by a timeout is still owned by the source."""

        return self._pending is not None

    def drain(self, timeout: float | None = None) -> bool:
        """Wait up to ``timeout`` seconds for an abandoned read to finish.

        The outcome of that read is discarded.  Returns ``True`` once no read
        is pending, ``False`` when the source is still busy.
        """

        if self._pending is None:
            return True
        done, _ = wait([self._pending], timeout=timeout)
        if not done:
            return False
        error = self._pending.exception()
        if error is not None:
            logger.warning("Abandoned source read failed: %s", error)
        self._pending = None
        return True

    def _start(self, max_bytes: int) -> Future:
        future: Future = Future()

        def _worker() -> None:
            if not future.set_running_or_notify_cancel():  # pragma: no cover - cancelled before start
                return
            try:
                future.set_result(self.source.read(max_bytes))
            except BaseException as exc:  # propagated to the caller via the future
                future.set_exception(exc)

        threading.Thread(target=_worker, name="streamrate-read", daemon=True).start()
        return future


def open_source(path: Path | str) -> FileSource:
    """Open ``path`` as a replayable :class:`FileSource`."""

    source = FileSource(path)
    if source.path.stat().st_size == 0:
        raise EmptyInputFileError(f"Input file '{source.path}' is empty.")
    return source


def _normalise_path(path: Path | str) -> Path:
    if isinstance(path, str) and re.match(r"^[A-Za-z]:\\", path):
        return Path(PureWindowsPath(path))
    return Path(path).expanduser().resolve()


__all__ = [
    "BytesSource",
    "FileSource",
    "GeneratorSource",
    "IterableSource",
    "StreamSource",
    "TimedReader",
    "open_source",
]
