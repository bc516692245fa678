"""Tests for the JSONL and CSV run history."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from streamrate.analysis import merge_run_results
from streamrate.analyzers.base import Result, Verdict
from streamrate.errors import SourceTimeout
from streamrate.history import LOG_FIELDNAMES, RunLogRecord, RunLogSink, log_run_result
from streamrate.pipeline import BatteryRun, PipelineReport, RunStatus


def _make_report(*, p_value: float = 0.875, idx: int = 0, failed: bool = False) -> PipelineReport:
    started_at = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=idx)
    result = Result(
        analyzer_name="monobit",
        statistic=0.1,
        degrees_of_freedom=None,
        p_value=p_value,
        sample_size=8192,
        verdict=Verdict.PASS,
        details="",
    )
    runs = [
        BatteryRun(
            variant="raw",
            chain_description="raw",
            status=RunStatus.COMPLETED,
            results=(result,),
            bits_consumed=8192,
            summary=merge_run_results([result]),
        )
    ]
    if failed:
        runs.append(
            BatteryRun(
                variant="skip",
                chain_description="decimate(m=2)",
                status=RunStatus.FAILED,
                error=SourceTimeout("stalled", timeout=1.0, variant="skip"),
            )
        )
    return PipelineReport(runs=tuple(runs), started_at=started_at, duration=timedelta(seconds=5))


def test_log_run_result_appends_jsonl(tmp_path: Path) -> None:
    """A JSONL record is appended with the report paths."""

    report_path = tmp_path / "report.md"

    log_file = log_run_result(
        _make_report(),
        input_path=tmp_path / "input.bin",
        report_path=report_path,
        log_path=tmp_path / "log.jsonl",
        fmt="jsonl",
    )

    assert log_file.exists()
    payload = log_file.read_text(encoding="utf-8").strip().splitlines()
    assert len(payload) == 1
    entry = json.loads(payload[0])
    assert entry["result"] == "RANDOM"
    assert entry["variants"] == 1
    assert entry["completed"] == 1
    assert pytest.approx(entry["min_confidence"], rel=1e-6) == 87.5
    assert entry["report_path"] == str(report_path)


def test_record_for_incomplete_report() -> None:
    """Failed variants are summarised in the record."""

    record = RunLogRecord.from_report(_make_report(failed=True))

    assert record.result == "INCOMPLETE"
    assert record.variants == 2
    assert record.completed == 1
    assert record.input_file == ""
    assert record.timestamp == "2024-01-01T00:00:00+00:00"


def test_log_run_result_enforces_jsonl_retention(tmp_path: Path) -> None:
    """Old JSONL records are dropped beyond the retention limit."""

    log_path = tmp_path / "history.jsonl"

    for idx in range(5):
        log_run_result(_make_report(idx=idx), log_path=log_path, fmt="jsonl", retention=3)

    lines = log_path.read_text(encoding="utf-8").strip().splitlines()
    assert len(lines) == 3
    timestamps = [json.loads(line)["timestamp"] for line in lines]
    assert timestamps == sorted(timestamps)
    assert timestamps[0] == "2024-01-01T00:02:00+00:00"


def test_log_run_result_supports_csv(tmp_path: Path) -> None:
    """The CSV format writes a header and one row per run."""

    log_path = tmp_path / "runs.csv"

    log_run_result(_make_report(p_value=0.001), log_path=log_path, fmt="csv", retention=5)

    content = log_path.read_text(encoding="utf-8").strip().splitlines()
    assert content[0] == ",".join(LOG_FIELDNAMES)
    assert len(content) == 2
    row = content[1].split(",")
    assert row[2] == "NON-RANDOM"


def test_log_run_result_enforces_csv_retention(tmp_path: Path) -> None:
    """Old CSV rows are dropped beyond the retention limit."""

    log_path = tmp_path / "runs.csv"

    for idx in range(6):
        log_run_result(_make_report(idx=idx), log_path=log_path, fmt="csv", retention=2)

    content = log_path.read_text(encoding="utf-8").strip().splitlines()
    assert len(content) == 3  # header + two retained rows
    timestamps = [row.split(",")[0] for row in content[1:]]
    assert timestamps == sorted(timestamps)


def test_log_run_result_rejects_unknown_format(tmp_path: Path) -> None:
    """Only JSONL and CSV formats are accepted."""

    with pytest.raises(ValueError):
        log_run_result(_make_report(), log_path=tmp_path / "log.xml", fmt="xml")


def test_run_log_sink_appends_each_report(tmp_path: Path) -> None:
    """The sink appends one record per emitted report."""

    log_path = tmp_path / "nested" / "log.jsonl"
    sink = RunLogSink(log_path, input_path=tmp_path / "input.bin")

    sink.emit(_make_report(idx=0))
    sink.emit(_make_report(idx=1))

    entries = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert [entry["input_file"] for entry in entries] == [str(tmp_path / "input.bin")] * 2
