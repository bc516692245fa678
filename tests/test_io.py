"""Tests for the stream sources and timed reads in :mod:`streamrate.io`."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from streamrate.errors import EmptyInputFileError, MissingFileError, NonReplayableSource, SourceTimeout
from streamrate.io import (
    BytesSource,
    FileSource,
    GeneratorSource,
    IterableSource,
    StreamSource,
    TimedReader,
    open_source,
)


def test_bytes_source_reads_and_resets() -> None:
    """In-memory sources return short reads only at the end."""

    source = BytesSource(b"abcdef")

    assert source.read(4) == b"abcd"
    assert source.read(4) == b"ef"
    assert source.read(4) == b""
    source.reset()
    assert source.read(2) == b"ab"
    assert isinstance(source, StreamSource)


def test_bytes_source_replicas_are_independent() -> None:
    """Replicas start at the beginning with their own position."""

    source = BytesSource(b"abcdef")
    source.read(3)

    replica = source.replicate()

    assert replica.read(6) == b"abcdef"
    assert source.read(6) == b"def"


def test_file_source_reads_lazily(tmp_path: Path) -> None:
    """File sources read on demand and can be reset."""

    input_path = tmp_path / "stream.bin"
    input_path.write_bytes(bytes(range(10)))

    with FileSource(input_path) as source:
        assert source.read(3) == b"\x00\x01\x02"
        source.reset()
        assert source.read(100) == bytes(range(10))
        assert source.is_replayable()


def test_file_source_requires_existing_file(tmp_path: Path) -> None:
    """Opening a missing file fails immediately."""

    with pytest.raises(MissingFileError):
        FileSource(tmp_path / "absent.bin")


def test_open_source_rejects_empty_files(tmp_path: Path) -> None:
    """Empty input files are rejected."""

    input_path = tmp_path / "empty.bin"
    input_path.write_bytes(b"")

    with pytest.raises(EmptyInputFileError):
        open_source(input_path)


def test_iterable_source_regroups_blocks_and_cannot_replay() -> None:
    """Blocks are regrouped into requested sizes and read once."""

    source = IterableSource([b"ab", b"cde", b"f"])

    assert source.read(4) == b"abcd"
    assert source.read(4) == b"ef"
    assert source.read(4) == b""
    assert not source.is_replayable()
    with pytest.raises(NonReplayableSource):
        source.reset()
    with pytest.raises(NonReplayableSource):
        source.replicate()


def test_generator_source_replays_by_calling_factory_again() -> None:
    """Each reset calls the factory for a new generator."""

    calls = []

    def blocks():
        calls.append(1)
        yield b"xy"
        yield b"z"

    source = GeneratorSource(blocks)

    assert source.read(10) == b"xyz"
    source.reset()
    assert source.read(10) == b"xyz"
    assert len(calls) == 2


def test_timed_reader_passes_through_without_timeout() -> None:
    """Without a timeout reads go straight to the source."""

    reader = TimedReader(BytesSource(b"abc"))

    assert reader(2) == b"ab"
    assert reader(2) == b"c"


def test_timed_reader_raises_on_stalled_read() -> None:
    """Non-retryable sources time out after one wait."""

    release = threading.Event()

    class _Stalled(BytesSource):
        def read(self, max_bytes: int) -> bytes:
            release.wait(5)
            return super().read(max_bytes)

    reader = TimedReader(_Stalled(b"abc"), timeout=0.02, retries=3)
    try:
        with pytest.raises(SourceTimeout) as excinfo:
            reader(3)
    finally:
        release.set()

    assert excinfo.value.timeout == 0.02


def test_timed_reader_retries_the_same_read_for_retryable_sources() -> None:
    """Retries wait on the same read instead of issuing another."""

    reads = []

    class _Slow(BytesSource):
        def read(self, max_bytes: int) -> bytes:
            reads.append(max_bytes)
            time.sleep(0.06)
            return super().read(max_bytes)

    reader = TimedReader(_Slow(b"abcdef", retryable=True), timeout=0.03, retries=5, backoff=0.01)

    assert reader(4) == b"abcd"
    assert reader(4) == b"ef"
    assert reads == [4, 4]


def test_timed_reader_propagates_source_errors() -> None:
    """Source exceptions reach the caller unchanged."""

    class _Broken(BytesSource):
        def read(self, max_bytes: int) -> bytes:
            raise OSError("device gone")

    reader = TimedReader(_Broken(b""), timeout=1.0)

    with pytest.raises(OSError, match="device gone"):
        reader(1)


def test_timed_reader_drain_waits_for_abandoned_read() -> None:
    """A timed-out read stays pending until it finishes."""

    release = threading.Event()

    class _Stalled(BytesSource):
        def read(self, max_bytes: int) -> bytes:
            release.wait(5)
            return super().read(max_bytes)

    reader = TimedReader(_Stalled(b"abc"), timeout=0.02)
    try:
        with pytest.raises(SourceTimeout):
            reader(3)

        assert reader.pending
        assert reader.drain(0.02) is False
        assert reader.pending
    finally:
        release.set()

    assert reader.drain(5) is True
    assert not reader.pending


def test_timed_reader_drain_without_pending_read_returns_immediately() -> None:
    """Draining an idle reader succeeds at once."""

    reader = TimedReader(BytesSource(b"abc"), timeout=0.5)

    assert reader(3) == b"abc"
    assert not reader.pending
    assert reader.drain(0) is True
