"""Tests for :mod:`streamrate.battery`."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from streamrate.analyzers import DEFAULT_BATTERY, MonobitAnalyzer, Verdict, build_analyzers
from streamrate.battery import Battery
from streamrate.bits import BitView
from streamrate.errors import ConfigurationError, RunAborted
from streamrate.io import BytesSource


def _data(size: int, seed: int = 0) -> bytes:
    return np.random.default_rng(seed).integers(0, 256, size=size, dtype=np.uint8).tobytes()


def _battery() -> Battery:
    return Battery(build_analyzers([(name, {}) for name in DEFAULT_BATTERY]))


def test_battery_requires_analyzers() -> None:
    """An empty battery is a configuration error."""

    with pytest.raises(ConfigurationError):
        Battery([])


def test_battery_rejects_duplicate_instances() -> None:
    """One analyzer instance cannot be registered twice."""

    analyzer = MonobitAnalyzer()

    with pytest.raises(ConfigurationError):
        Battery([analyzer, analyzer])


def test_battery_returns_results_in_order() -> None:
    """Results follow the order the analyzers were given in."""

    view = BitView(BytesSource(_data(4096)))

    results = _battery().run(view, chunk_bits=8192)

    assert [result.analyzer_name for result in results] == list(DEFAULT_BATTERY)
    assert all(result.sample_size == 4096 * 8 for result in results)


def test_max_bits_cuts_the_stream() -> None:
    """Analyzers see at most max_bits bits."""

    view = BitView(BytesSource(_data(1024)))

    results = _battery().run(view, chunk_bits=1000, max_bits=2500)

    assert all(result.sample_size == 2500 for result in results)


def test_executor_fan_out_matches_sequential_feed() -> None:
    """Feeding analyzers on a thread pool gives the sequential results."""

    data = _data(20_000, seed=3)

    sequential = _battery().run(BitView(BytesSource(data)), chunk_bits=12_345)
    with ThreadPoolExecutor(max_workers=4) as executor:
        concurrent = _battery().run(BitView(BytesSource(data)), chunk_bits=12_345, executor=executor)

    assert concurrent == sequential


def test_cancelled_run_raises_run_aborted() -> None:
    """Cancellation raises with the results gathered so far."""

    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RunAborted) as excinfo:
        _battery().run(BitView(BytesSource(_data(64))), chunk_bits=64, cancel=cancel)

    assert excinfo.value.results == ()


def test_battery_accepts_iterables_of_chunks() -> None:
    """Any iterable of bit chunks can feed a battery."""

    chunks = [np.ones(50, dtype=np.uint8), np.zeros(50, dtype=np.uint8)]

    (result,) = Battery([MonobitAnalyzer()]).run(chunks, chunk_bits=10)

    assert result.verdict is Verdict.PASS
    assert result.statistic == 0.0
