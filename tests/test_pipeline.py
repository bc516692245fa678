"""End-to-end tests for :mod:`streamrate.pipeline` over in-memory sources."""

from __future__ import annotations

import threading
import time

import numpy as np
import pytest

from streamrate import reporting
from streamrate.analyzers import DEFAULT_BATTERY, Verdict
from streamrate.config import DEFAULT_VARIANTS, Cutoff, PipelineConfig, VariantSpec
from streamrate.errors import ConfigurationError, ExhaustedStream, NonReplayableSource, SourceTimeout
from streamrate.io import BytesSource, GeneratorSource, IterableSource
from streamrate.pipeline import Pipeline, PipelineReport, RunStatus

RAW_ONLY = (VariantSpec("raw"),)


def _data(size: int, seed: int = 0) -> bytes:
    return np.random.default_rng(seed).integers(0, 256, size=size, dtype=np.uint8).tobytes()


def _drifting_msb(size: int, seed: int = 1) -> bytes:
    """Random bytes whose high bit flips every 128 bytes."""

    data = np.random.default_rng(seed).integers(0, 128, size=size, dtype=np.uint8)
    msb = ((np.arange(size) // 128) & 1).astype(np.uint8) << 7
    return (data | msb).tobytes()


def _variants(**chains: str) -> tuple[VariantSpec, ...]:
    return tuple(VariantSpec(name, chain) for name, chain in chains.items())


class _RecordingSink:
    def __init__(self) -> None:
        self.reports: list[PipelineReport] = []

    def emit(self, report: PipelineReport) -> None:
        self.reports.append(report)


def test_raw_pipeline_runs_default_battery() -> None:
    """A raw-only configuration runs every default analyzer once."""

    sink = _RecordingSink()

    report = Pipeline(PipelineConfig(variants=RAW_ONLY)).run(BytesSource(_data(8192)), sinks=[sink])

    assert sink.reports == [report]
    (run,) = report.runs
    assert run.status is RunStatus.COMPLETED
    assert run.chain_description == "raw"
    assert run.bits_consumed == 8192 * 8
    assert list(report.entries()) == [("raw", name) for name in DEFAULT_BATTERY]
    assert run.summary is not None
    assert report.get("raw", "monobit") is run.results[0]


def test_default_configuration_rates_every_default_variant() -> None:
    """Without configured variants the raw stream and its weakenings are all rated."""

    pipeline = Pipeline()

    assert pipeline.config.variants == DEFAULT_VARIANTS
    assert pipeline.variants[0] == ("raw", "raw")
    assert [name for name, _ in pipeline.variants] == [
        "raw",
        "skip_one",
        "skip_two",
        "concat_halves",
        "xor",
        "add",
        "multiply",
        "last_bit",
        "triple",
        "third",
        "rotate",
    ]
    assert dict(pipeline.variants)["last_bit"] == "decimate(m=64, offset=63)"

    report = pipeline.run(BytesSource(_data(8192, seed=11)), sinks=[])

    assert report.completed
    assert report.run_for("skip_one").bits_consumed == 8192 * 8 // 2
    assert report.run_for("last_bit").bits_consumed == 8192 * 8 // 64


def test_random_streams_are_rated_random_at_the_nominal_rate() -> None:
    """Seeded random streams are labelled RANDOM about 1 - alpha of the time."""

    config = PipelineConfig(variants=_variants(raw="", folded="xor_fold"))
    pipeline = Pipeline(config)

    verdicts = [
        reporting.overall_verdict(pipeline.run(BytesSource(_data(4096, seed=1000 + seed))))
        for seed in range(100)
    ]

    assert set(verdicts) <= {"RANDOM", "NON-RANDOM"}
    assert verdicts.count("NON-RANDOM") <= 10


def test_report_is_keyed_by_chain_and_analyzer() -> None:
    """Entries use the canonical chain description, not the variant name."""

    config = PipelineConfig(
        variants=_variants(raw="", folded="xor_fold(k=1)"),
        analyzers=(("monobit", {}), ("runs", {})),
    )

    report = Pipeline(config).run(BytesSource(_data(2048)))

    assert list(report.entries()) == [
        ("raw", "monobit"),
        ("raw", "runs"),
        ("xor_fold(k=1)", "monobit"),
        ("xor_fold(k=1)", "runs"),
    ]
    assert report.run_for("folded").bits_consumed == 2048 * 8 - 1


def test_non_replayable_source_fails_later_variants_only() -> None:
    """The first variant consumes a one-shot source; the rest fail cleanly."""

    config = PipelineConfig(variants=_variants(raw="", decimated="decimate(m=2)"))
    blocks = [_data(1024, seed=i) for i in range(4)]

    report = Pipeline(config).run(IterableSource(blocks))

    first, second = report.runs
    assert first.status is RunStatus.COMPLETED
    assert second.status is RunStatus.FAILED
    assert isinstance(second.error, NonReplayableSource)
    assert second.error.variant == "decimated"
    assert second.results == ()


def test_cutoff_larger_than_source_exhausts_stream() -> None:
    """A mandatory read past the end reports the offset it started at."""

    config = PipelineConfig(cutoff=Cutoff(bytes=1000), chunk_size=64, variants=RAW_ONLY)

    report = Pipeline(config).run(BytesSource(_data(500)))

    (run,) = report.runs
    assert run.status is RunStatus.FAILED
    assert isinstance(run.error, ExhaustedStream)
    # the failing mandatory read starts after seven full 512-bit chunks
    assert run.error.offset == 7 * 512
    assert run.error.variant == "raw"
    assert "variant 'raw'" in str(run.error)


def test_one_byte_cutoff_gives_insufficient_samples() -> None:
    """Eight bits are too few for any default analyzer."""

    config = PipelineConfig(cutoff=Cutoff(bytes=1), variants=RAW_ONLY)

    report = Pipeline(config).run(BytesSource(_data(4096)))

    (run,) = report.runs
    assert run.status is RunStatus.COMPLETED
    assert run.bits_consumed == 8
    assert {result.verdict for result in run.results} == {Verdict.INSUFFICIENT_SAMPLE}
    assert run.summary is not None and run.summary.combined_p_value is None
    assert reporting.overall_verdict(report) == "INCONCLUSIVE"


def test_decimated_stream_fails_drift_but_passes_monobit() -> None:
    """Keeping every eighth bit isolates a drifting high bit from balanced low bits."""

    config = PipelineConfig(variants=_variants(raw="", decimated="decimate(m=8)"))

    report = Pipeline(config).run(BytesSource(_drifting_msb(256 * 64)))

    decimated = report.run_for("decimated")
    results = {result.analyzer_name: result for result in decimated.results}
    assert decimated.bits_consumed == 256 * 64
    assert results["drift"].p_value < 0.01
    assert results["monobit"].p_value > 0.05


def test_transform_chains_are_idempotent_over_replayable_sources() -> None:
    """Running the same pipeline twice over a reset source gives equal results."""

    config = PipelineConfig(
        variants=_variants(raw="", mixed="permute(block=16, mode=interleave) | word_combine(op=add)")
    )
    pipeline = Pipeline(config)
    source = BytesSource(_data(6000, seed=4))

    first = pipeline.run(source)
    source.reset()
    second = pipeline.run(source)

    assert first.entries() == second.entries()


def test_parallel_execution_matches_sequential() -> None:
    """Replicated sources give the same results as sequential replays."""

    variants = _variants(raw="", decimated="decimate(m=3)", folded="xor_fold(k=2) | bias(stride=64)")
    data = _data(20_000, seed=5)

    sequential = Pipeline(PipelineConfig(variants=variants, chunk_size=777)).run(BytesSource(data))
    parallel = Pipeline(PipelineConfig(variants=variants, chunk_size=777, parallelism=True)).run(
        BytesSource(data)
    )

    assert [run.status for run in parallel.runs] == [RunStatus.COMPLETED] * 3
    assert parallel.entries() == sequential.entries()


def test_parallel_execution_needs_replicable_sources() -> None:
    """Only the first variant can run over a source that cannot be replicated."""

    config = PipelineConfig(variants=_variants(raw="", decimated="decimate(m=2)"), parallelism=True)

    report = Pipeline(config).run(IterableSource([_data(2048)]))

    assert [run.status for run in report.runs] == [RunStatus.COMPLETED, RunStatus.FAILED]


def test_cancellation_aborts_current_and_pending_variants() -> None:
    """Cancelling mid-run keeps finished variants and aborts the others."""

    config = PipelineConfig(
        variants=_variants(first="", second="decimate(m=2)", third="xor_fold"),
        chunk_size=256,
    )
    pipeline = Pipeline(config)
    traversals = []

    def blocks():
        traversals.append(1)
        for index in range(40):
            if len(traversals) == 2 and index == 5:
                pipeline.cancel()
            yield _data(256, seed=index)

    report = pipeline.run(GeneratorSource(blocks))

    statuses = [run.status for run in report.runs]
    assert statuses == [RunStatus.COMPLETED, RunStatus.ABORTED, RunStatus.ABORTED]
    assert report.runs[0].results
    assert report.runs[1].results == ()
    assert report.runs[2].results == ()
    assert not report.completed


def test_stalled_source_times_out() -> None:
    """A read that never returns fails the variant at offset zero."""

    release = threading.Event()

    class _Stalled(BytesSource):
        def read(self, max_bytes: int) -> bytes:
            release.wait(5)
            return super().read(max_bytes)

    config = PipelineConfig(timeout=0.05, retries=0, variants=RAW_ONLY)
    try:
        report = Pipeline(config).run(_Stalled(_data(64)))
    finally:
        release.set()

    (run,) = report.runs
    assert run.status is RunStatus.FAILED
    assert isinstance(run.error, SourceTimeout)
    assert run.error.timeout == 0.05
    assert run.error.offset == 0


def test_source_busy_with_timed_out_read_fails_next_variant() -> None:
    """A replayable source is not reset while an abandoned read still runs."""

    release = threading.Event()

    class _StalledOnce(BytesSource):
        def __init__(self, data: bytes) -> None:
            super().__init__(data)
            self.stalled = False

        def read(self, max_bytes: int) -> bytes:
            if not self.stalled:
                self.stalled = True
                release.wait(5)
            return super().read(max_bytes)

    config = PipelineConfig(
        timeout=0.05,
        retries=0,
        chunk_size=16,
        variants=_variants(raw="", reversed="permute(block=8, mode=reverse)"),
    )
    try:
        report = Pipeline(config).run(_StalledOnce(_data(4096)))
    finally:
        release.set()

    first, second = report.runs
    assert first.status is RunStatus.FAILED
    assert isinstance(first.error, SourceTimeout)
    assert second.status is RunStatus.FAILED
    assert isinstance(second.error, SourceTimeout)
    assert second.error.variant == "reversed"
    assert second.results == ()


def test_next_variant_reads_whole_source_after_abandoned_read_finishes() -> None:
    """Once the late read completes the source is reset and fully replayed."""

    class _SlowOnce(BytesSource):
        def __init__(self, data: bytes) -> None:
            super().__init__(data)
            self.delayed = False

        def read(self, max_bytes: int) -> bytes:
            if not self.delayed:
                self.delayed = True
                time.sleep(0.3)
            return super().read(max_bytes)

    config = PipelineConfig(
        timeout=0.2,
        retries=0,
        chunk_size=16,
        variants=_variants(raw="", reversed="permute(block=8, mode=reverse)"),
    )

    report = Pipeline(config).run(_SlowOnce(_data(4096)))

    first, second = report.runs
    assert first.status is RunStatus.FAILED
    assert isinstance(first.error, SourceTimeout)
    assert second.status is RunStatus.COMPLETED
    assert second.bits_consumed == 4096 * 8


def test_retryable_source_recovers_from_slow_read() -> None:
    """Retries keep waiting on the same read instead of losing bytes."""

    class _SlowStart(BytesSource):
        def __init__(self, data: bytes) -> None:
            super().__init__(data, retryable=True)
            self.delayed = False

        def read(self, max_bytes: int) -> bytes:
            if not self.delayed:
                self.delayed = True
                time.sleep(0.08)
            return super().read(max_bytes)

    config = PipelineConfig(timeout=0.05, retries=4, backoff=0.01, variants=RAW_ONLY)

    report = Pipeline(config).run(_SlowStart(_data(4096)))

    assert report.runs[0].status is RunStatus.COMPLETED
    assert report.runs[0].bits_consumed == 4096 * 8


@pytest.mark.parametrize(
    "config",
    [
        PipelineConfig(variants=_variants(bad="decimate(m=0)")),
        PipelineConfig(variants=_variants(a="decimate(m=2)", b="decimate( m = 2 )")),
        PipelineConfig(analyzers=(("spectral", {}),)),
        PipelineConfig(analyzers=(("monobit", {}), ("monobit", {"min_bits": 10}))),
        PipelineConfig(analyzers=(("serial", {"tuple_bits": 0}),)),
    ],
)
def test_pipeline_validates_configuration_up_front(config: PipelineConfig) -> None:
    """Bad variants or analyzer settings are rejected before any read."""

    with pytest.raises(ConfigurationError):
        Pipeline(config)


def test_pipeline_lists_variants() -> None:
    """Variants are listed by name with their canonical chain."""

    config = PipelineConfig(variants=_variants(raw="", skip="decimate(m=2, unit=word)"))

    assert Pipeline(config).variants == (("raw", "raw"), ("skip", "decimate(m=2, unit=word)"))
