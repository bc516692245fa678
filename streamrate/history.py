"""Utilities for persisting pipeline runs to structured history files."""

from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass
from datetime import timezone
from pathlib import Path
from typing import TYPE_CHECKING

from .reporting import overall_verdict

if TYPE_CHECKING:  # pragma: no cover - import cycle safe typing
    from .pipeline import PipelineReport


LOG_FIELDNAMES = (
    "timestamp",
    "input_file",
    "result",
    "variants",
    "completed",
    "min_confidence",
    "report_path",
)
"""Ordered field names used for CSV and JSON payloads."""

DEFAULT_LOG_PATH = Path("logs") / "run_log.jsonl"
"""Default location for the run history log."""

LOG_FORMATS = ("jsonl", "csv")


@dataclass(frozen=True)
class RunLogRecord:
    """Structured representation of a logged pipeline run."""

    timestamp: str
    input_file: str
    result: str
    variants: int
    completed: int
    min_confidence: float | None
    report_path: str

    @classmethod
    def from_report(
        cls,
        report: "PipelineReport",
        *,
        input_path: Path | None = None,
        report_path: Path | None = None,
    ) -> "RunLogRecord":
        """Create a log record from a :class:`~streamrate.pipeline.PipelineReport`."""

        confidences = [run.summary.confidence for run in report.runs if run.summary is not None]
        return cls(
            timestamp=report.started_at.astimezone(timezone.utc).isoformat(),
            input_file=str(input_path) if input_path is not None else "",
            result=overall_verdict(report),
            variants=len(report.runs),
            completed=len(confidences),
            min_confidence=min(confidences) if confidences else None,
            report_path=str(report_path) if report_path is not None else "",
        )

    def to_dict(self) -> dict[str, str | int | float | None]:
        return asdict(self)


def log_run_result(
    report: "PipelineReport",
    *,
    input_path: Path | None = None,
    report_path: Path | None = None,
    log_path: Path | None = None,
    fmt: str = "jsonl",
    retention: int | None = 100,
) -> Path:
    """Append ``report`` to the structured log and enforce retention limits."""

    normalised_format = fmt.lower()
    if normalised_format not in LOG_FORMATS:
        raise ValueError(f"Unsupported log format: {fmt}")
    record = RunLogRecord.from_report(report, input_path=input_path, report_path=report_path)
    target = _prepare_log_path(log_path)
    _append_record(target, record, normalised_format)
    if retention is not None and retention > 0:
        trim_log(target, retention, fmt=normalised_format)
    return target


def trim_log(path: Path, max_entries: int, *, fmt: str = "jsonl") -> None:
    """Trim ``path`` so only the last ``max_entries`` records remain."""

    if max_entries <= 0 or not path.exists():
        return
    if fmt not in LOG_FORMATS:
        raise ValueError(f"Unsupported log format: {fmt}")
    with path.open("r", encoding="utf-8") as handle:
        lines = handle.readlines()
    header: list[str] = []
    if fmt == "csv" and lines:
        header, lines = lines[:1], lines[1:]
    if len(lines) <= max_entries:
        return
    with path.open("w", encoding="utf-8", newline="") as handle:
        handle.writelines(header + lines[-max_entries:])


class RunLogSink:
    """Report sink appending every report to the run history."""

    def __init__(
        self,
        log_path: Path | None = None,
        *,
        fmt: str = "jsonl",
        retention: int | None = 100,
        input_path: Path | None = None,
        report_path: Path | None = None,
    ) -> None:
        self.log_path = log_path
        self.fmt = fmt
        self.retention = retention
        self.input_path = input_path
        self.report_path = report_path

    def emit(self, report: "PipelineReport") -> None:
        log_run_result(
            report,
            input_path=self.input_path,
            report_path=self.report_path,
            log_path=self.log_path,
            fmt=self.fmt,
            retention=self.retention,
        )


def _prepare_log_path(path: Path | None) -> Path:
    candidate = Path(path).expanduser() if path is not None else DEFAULT_LOG_PATH
    resolved = candidate.resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def _append_record(path: Path, record: RunLogRecord, fmt: str) -> None:
    if fmt == "jsonl":
        payload = json.dumps(record.to_dict(), ensure_ascii=False)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(payload + "\n")
        return
    is_new_file = not path.exists() or path.stat().st_size == 0
    with path.open("a", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=LOG_FIELDNAMES)
        if is_new_file:
            writer.writeheader()
        writer.writerow(record.to_dict())


__all__ = ["LOG_FIELDNAMES", "RunLogRecord", "RunLogSink", "log_run_result", "trim_log"]
