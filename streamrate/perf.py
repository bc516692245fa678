"""Performance helpers for benchmarking and profiling the analysis pipeline."""

from __future__ import annotations

import cProfile
import io
import pstats
import statistics
import timeit
from contextlib import contextmanager
from typing import Callable, Iterator, Mapping, Sequence

from .analyzers.factory import DEFAULT_BATTERY, build_analyzers
from .battery import Battery
from .bits import BitView, TransformedView
from .config import DEFAULT_CHUNK_SIZE, PipelineConfig
from .io import BytesSource
from .pipeline import Pipeline
from .transforms.factory import build_chain


def _timings(runs: Sequence[float], bits: int) -> Mapping[str, float]:
    mean = statistics.fmean(runs)
    return {
        "min": min(runs),
        "max": max(runs),
        "mean": mean,
        "bits_per_second": bits / min(runs) if min(runs) > 0 else float("inf"),
    }


def benchmark_battery(
    data: bytes,
    analyzers: Sequence[str] = DEFAULT_BATTERY,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    repeat: int = 5,
) -> Mapping[str, float]:
    """Benchmark a fresh battery of ``analyzers`` over ``data``."""

    specs = [(name, {}) for name in analyzers]

    def _run() -> None:
        view = BitView(BytesSource(data))
        Battery(build_analyzers(specs)).run(view, chunk_bits=chunk_size * 8)

    runs = timeit.Timer(_run).repeat(repeat=repeat, number=1)
    return _timings(runs, len(data) * 8)


def benchmark_chain(
    chain: str, data: bytes, *, chunk_size: int = DEFAULT_CHUNK_SIZE, repeat: int = 5
) -> Mapping[str, float]:
    """Benchmark streaming ``data`` through the transform ``chain``."""

    transforms = build_chain(chain)
    chunk_bits = chunk_size * 8

    def _run() -> None:
        stream = TransformedView(BitView(BytesSource(data)), transforms, chunk_bits=chunk_bits)
        for _ in stream.chunks(chunk_bits):
            pass

    runs = timeit.Timer(_run).repeat(repeat=repeat, number=1)
    return _timings(runs, len(data) * 8)


def profile_pipeline(data: bytes, config: PipelineConfig | None = None, *, limit: int = 25) -> str:
    """Profile one pipeline run over ``data`` using :mod:`cProfile`."""

    pipeline = Pipeline(config)
    profiler = cProfile.Profile()
    profiler.runcall(pipeline.run, BytesSource(data))
    return _format_stats(profiler, limit)


@contextmanager
def capture_profile(
    pipeline: Pipeline | None = None,
) -> Iterator[tuple[Pipeline, Callable[[int], str]]]:
    """Context manager capturing profiling data for manual inspection.

    The yielded tuple contains the :class:`Pipeline` to use for the profiled
    operations and a callable that returns a formatted profile summary.
    """

    profiler = cProfile.Profile()
    target = pipeline or Pipeline()
    profiler.enable()

    def exporter(limit: int = 25) -> str:
        profiler.disable()
        return _format_stats(profiler, limit)

    try:
        yield target, exporter
    finally:
        profiler.disable()


def _format_stats(profiler: cProfile.Profile, limit: int) -> str:
    stream = io.StringIO()
    pstats.Stats(profiler, stream=stream).strip_dirs().sort_stats("cumulative").print_stats(limit)
    return stream.getvalue()


__all__ = [
    "benchmark_battery",
    "benchmark_chain",
    "capture_profile",
    "profile_pipeline",
]
