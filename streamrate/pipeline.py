"""Run the configured battery over every transform variant of a source."""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Protocol, Sequence, Tuple

from .analysis import RunSummary, merge_run_results
from .analyzers.base import Result
from .analyzers.factory import AnalyzerFactory, build_analyzers
from .battery import Battery
from .bits import BitView, TransformedView
from .config import PipelineConfig, VariantSpec
from .errors import (
    ConfigurationError,
    ExhaustedStream,
    NonReplayableSource,
    RunAborted,
    SourceTimeout,
    StreamError,
)
from .io import StreamSource, TimedReader
from .transforms.base import TransformChain
from .transforms.factory import TransformFactory, build_chain

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    """Final state of one variant."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABORTED = "ABORTED"


@dataclass(frozen=True)
class BatteryRun:
    """Outcome of the battery over one transform variant."""

    variant: str
    chain_description: str
    status: RunStatus
    results: Tuple[Result, ...] = ()
    error: StreamError | None = None
    bits_consumed: int = 0
    summary: RunSummary | None = None


@dataclass(frozen=True)
class PipelineReport:
    """Ordered collection of variant runs for a single source."""

    runs: Tuple[BatteryRun, ...]
    started_at: datetime
    duration: timedelta
    config: PipelineConfig = field(repr=False, default_factory=PipelineConfig)

    def entries(self) -> Dict[Tuple[str, str], Result]:
        """Results keyed by ``(chain_description, analyzer_name)`` in run order."""

        return {
            (run.chain_description, result.analyzer_name): result
            for run in self.runs
            for result in run.results
        }

    def get(self, chain_description: str, analyzer_name: str) -> Result | None:
        return self.entries().get((chain_description, analyzer_name))

    def run_for(self, variant: str) -> BatteryRun:
        for run in self.runs:
            if run.variant == variant:
                return run
        raise KeyError(variant)

    @property
    def completed(self) -> bool:
        return all(run.status is RunStatus.COMPLETED for run in self.runs)


class ReportSink(Protocol):
    """Destination notified with the finished :class:`PipelineReport`."""

    def emit(self, report: PipelineReport) -> None:
        ...


class Pipeline:
    """Validate a configuration once, then run it against any number of sources."""

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        registry: Mapping[str, AnalyzerFactory] | None = None,
        transform_registry: Mapping[str, TransformFactory] | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self._registry = registry
        self._variants: List[Tuple[VariantSpec, TransformChain]] = []
        seen_chains: set[str] = set()
        for variant in self.config.variants:
            try:
                chain = build_chain(variant.chain, registry=transform_registry)
            except ConfigurationError as exc:
                raise ConfigurationError(f"Variant '{variant.name}': {exc}") from exc
            if chain.description in seen_chains:
                raise ConfigurationError(
                    f"Variant '{variant.name}' repeats transform chain '{chain.description}'."
                )
            seen_chains.add(chain.description)
            self._variants.append((variant, chain))

        names = self.config.analyzer_names
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigurationError(f"Analyzer(s) configured twice: {', '.join(duplicates)}.")
        # Builds and discards one battery so bad analyzer parameters fail here.
        Battery(self._build_analyzers())

        self._lock = threading.Lock()
        self._cancel = threading.Event()

    @property
    def variants(self) -> Tuple[Tuple[str, str], ...]:
        """``(variant name, chain description)`` pairs in run order."""

        return tuple((variant.name, chain.description) for variant, chain in self._variants)

    def cancel(self) -> None:
        """Request cancellation of the current run; safe to call from any thread."""

        with self._lock:
            self._cancel.set()
        logger.info("Cancellation requested")

    def run(self, source: StreamSource, *, sinks: Iterable[ReportSink] = ()) -> PipelineReport:
        """Run every variant over ``source`` and notify ``sinks`` with the report."""

        with self._lock:
            cancel = self._cancel = threading.Event()
        started_at = datetime.now(timezone.utc)
        started = time.perf_counter()
        logger.debug("Running %d variant(s), parallel=%s", len(self._variants), self.config.parallelism)

        if self.config.parallelism and len(self._variants) > 1:
            runs = self._run_parallel(source, cancel)
        else:
            runs = self._run_sequential(source, cancel)

        report = PipelineReport(
            runs=tuple(runs),
            started_at=started_at,
            duration=timedelta(seconds=time.perf_counter() - started),
            config=self.config,
        )
        for run in report.runs:
            logger.info("Variant '%s' [%s]: %s", run.variant, run.chain_description, run.status.value)
        for sink in sinks:
            sink.emit(report)
        return report

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _run_sequential(self, source: StreamSource, cancel: threading.Event) -> List[BatteryRun]:
        runs: List[BatteryRun] = []
        # reader whose timed-out read still holds the source
        blocked: TimedReader | None = None
        for index, (variant, chain) in enumerate(self._variants):
            if cancel.is_set():
                runs.append(_aborted(variant, chain))
                continue
            if index:
                if not source.is_replayable():
                    runs.append(_failed(variant, chain, _not_replayable(variant)))
                    continue
                if blocked is not None and not blocked.drain(self.config.timeout):
                    logger.warning(
                        "Variant '%s' skipped: source still busy with an abandoned read", variant.name
                    )
                    runs.append(_failed(variant, chain, _still_busy(variant, self.config.timeout)))
                    continue
                blocked = None
                source.reset()
            reader = self._reader(source)
            runs.append(self._run_variant(variant, chain, source, cancel, reader=reader))
            if reader.pending:
                blocked = reader
        return runs

    def _run_parallel(self, source: StreamSource, cancel: threading.Event) -> List[BatteryRun]:
        readers: List[StreamSource | BatteryRun] = [source]
        for variant, chain in self._variants[1:]:
            replicate = getattr(source, "replicate", None)
            if not source.is_replayable() or replicate is None:
                readers.append(_failed(variant, chain, _not_replayable(variant)))
            else:
                readers.append(replicate())

        try:
            return self._fan_out(readers, cancel)
        finally:
            for reader in readers[1:]:
                close = getattr(reader, "close", None)
                if close is not None:
                    close()

    def _fan_out(
        self, readers: Sequence[StreamSource | BatteryRun], cancel: threading.Event
    ) -> List[BatteryRun]:
        workers = max(1, os.cpu_count() or 1)
        with ThreadPoolExecutor(
            max_workers=len(self._variants), thread_name_prefix="streamrate-variant"
        ) as variant_pool, ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="streamrate-analyzer"
        ) as analyzer_pool:
            futures = []
            for (variant, chain), reader in zip(self._variants, readers):
                if isinstance(reader, BatteryRun):
                    futures.append(reader)
                else:
                    futures.append(
                        variant_pool.submit(
                            self._run_variant, variant, chain, reader, cancel, analyzer_pool
                        )
                    )
            return [item if isinstance(item, BatteryRun) else item.result() for item in futures]

    # ------------------------------------------------------------------
    # Single variant
    # ------------------------------------------------------------------
    def _build_analyzers(self):
        return build_analyzers(self.config.analyzers, alpha=self.config.alpha, registry=self._registry)

    def _reader(self, source: StreamSource) -> TimedReader:
        config = self.config
        return TimedReader(source, timeout=config.timeout, retries=config.retries, backoff=config.backoff)

    def _run_variant(
        self,
        variant: VariantSpec,
        chain: TransformChain,
        source: StreamSource,
        cancel: threading.Event,
        executor: Executor | None = None,
        *,
        reader: TimedReader | None = None,
    ) -> BatteryRun:
        config = self.config
        chunk_bits = config.chunk_size * 8
        battery = Battery(self._build_analyzers())
        if reader is None:
            reader = self._reader(source)
        view = BitView(
            source, bit_order=config.bit_order, limit_bytes=config.cutoff.bytes, reader=reader
        )
        stream = TransformedView(view, chain, chunk_bits=chunk_bits, exact=not config.cutoff.exhaust)
        logger.debug("Variant '%s' started: %s (cutoff %s)", variant.name, chain.weakening, config.cutoff)

        try:
            results = battery.run(stream, chunk_bits=chunk_bits, cancel=cancel, executor=executor)
        except RunAborted as exc:
            return _aborted(variant, chain, results=exc.results, bits_consumed=stream.position)
        except (ExhaustedStream, SourceTimeout, NonReplayableSource) as exc:
            if exc.offset is None:
                exc.offset = view.position
            exc.with_variant(variant.name)
            logger.warning("Variant '%s' failed: %s", variant.name, exc)
            return _failed(variant, chain, exc, bits_consumed=stream.position)

        summary = merge_run_results(
            results,
            config.weights.values,
            alpha=config.alpha,
        )
        logger.debug(
            "Variant '%s' finished after %d bits (%d source bytes)",
            variant.name,
            stream.position,
            view.bytes_read,
        )
        return BatteryRun(
            variant=variant.name,
            chain_description=chain.description,
            status=RunStatus.COMPLETED,
            results=tuple(results),
            bits_consumed=stream.position,
            summary=summary,
        )


def _not_replayable(variant: VariantSpec) -> NonReplayableSource:
    return NonReplayableSource(
        "Source cannot be replayed for another variant", variant=variant.name
    )


def _still_busy(variant: VariantSpec, timeout: float | None) -> SourceTimeout:
    return SourceTimeout(
        "Source is still busy with a read that timed out in an earlier variant",
        timeout=timeout,
        variant=variant.name,
    )


def _failed(
    variant: VariantSpec, chain: TransformChain, error: StreamError, *, bits_consumed: int = 0
) -> BatteryRun:
    return BatteryRun(
        variant=variant.name,
        chain_description=chain.description,
        status=RunStatus.FAILED,
        error=error,
        bits_consumed=bits_consumed,
    )


def _aborted(
    variant: VariantSpec,
    chain: TransformChain,
    *,
    results: Sequence[Result] = (),
    bits_consumed: int = 0,
) -> BatteryRun:
    return BatteryRun(
        variant=variant.name,
        chain_description=chain.description,
        status=RunStatus.ABORTED,
        results=tuple(results),
        bits_consumed=bits_consumed,
    )


__all__ = [
    "BatteryRun",
    "Pipeline",
    "PipelineReport",
    "ReportSink",
    "RunStatus",
]
