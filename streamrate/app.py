"""Application orchestration for the stream rating CLI."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, TextIO

from .analyzers.factory import AnalyzerFactory
from .config import PipelineConfig, load_config
from .history import RunLogSink
from .io import open_source
from .pipeline import Pipeline, PipelineReport, ReportSink
from .reporting import ConsoleSink, MarkdownSink, overall_verdict
from .transforms.factory import TransformFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    """Summary of a full application run."""

    input_path: Path
    config_path: Path | None
    report: PipelineReport
    report_path: Path | None = None
    log_path: Path | None = None

    @property
    def verdict(self) -> str:
        return overall_verdict(self.report)

    @property
    def is_random(self) -> bool:
        return self.verdict == "RANDOM"

    @property
    def completed(self) -> bool:
        return self.report.completed


class StreamRateApp:
    """High level service wiring configuration, execution, and rendering."""

    def __init__(
        self,
        *,
        registry: Mapping[str, AnalyzerFactory] | None = None,
        transform_registry: Mapping[str, TransformFactory] | None = None,
        stream: TextIO | None = None,
    ) -> None:
        self._registry = registry
        self._transform_registry = transform_registry
        self._stream = stream

    def run(
        self,
        input_path: Path,
        config_path: Path | None = None,
        report_path: Path | None = None,
        verbose: bool = False,
    ) -> RunResult:
        """Execute the stream rating workflow for one input file."""

        config = load_config(config_path) if config_path is not None else PipelineConfig()
        for warning in config.warnings:
            logger.warning(warning)
        pipeline = Pipeline(
            config, registry=self._registry, transform_registry=self._transform_registry
        )

        with open_source(input_path) as source:
            resolved_input = source.path
            target_report = report_path or config.output.report_path
            if target_report is not None:
                target_report = Path(target_report).expanduser().resolve()

            sinks: List[ReportSink] = [ConsoleSink(verbose=verbose, stream=self._stream)]
            if target_report is not None:
                sinks.append(MarkdownSink(target_report, input_path=resolved_input))
            log_path: Path | None = None
            if config.output.log_results:
                log_path = config.output.run_log_path
                sinks.append(
                    RunLogSink(
                        log_path,
                        fmt=config.output.run_log_format,
                        retention=config.output.run_log_retention,
                        input_path=resolved_input,
                        report_path=target_report,
                    )
                )
            report = pipeline.run(source, sinks=sinks)

        return RunResult(
            input_path=resolved_input,
            config_path=config_path,
            report=report,
            report_path=target_report,
            log_path=log_path,
        )


__all__ = ["RunResult", "StreamRateApp"]
