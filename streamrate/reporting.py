"""Reporting utilities for console and markdown output."""

from __future__ import annotations

import re
import sys
import textwrap
from dataclasses import dataclass
from datetime import timezone
from pathlib import Path
from string import Template
from typing import Sequence, TYPE_CHECKING, TextIO

from .analysis import combine_variants

if TYPE_CHECKING:
    from datetime import timedelta
    from .analyzers.base import Result
    from .pipeline import BatteryRun, PipelineReport


@dataclass(frozen=True)
class ReportTemplate:
    """Container for the markdown report template."""

    template: Template = Template(
        textwrap.dedent(
            """
            # Stream Rating Report

            ## Summary
            ${summary}

            ## Source
            ${source_metadata}

            ## Configuration
            ${configuration}

            ## Variants
            ${variant_table}
            ${variant_sections}
            ## Interpretations
            ${interpretations}

            _Generated on ${timestamp} (duration: ${duration})._
            """
        ).strip()
    )


DEFAULT_TEMPLATE = ReportTemplate()


def overall_p_value(report: "PipelineReport") -> float | None:
    """Šidák-adjusted minimum of the combined p-values of the scored variants."""

    return combine_variants(
        run.summary.combined_p_value for run in report.runs if run.summary is not None
    )


def overall_verdict(report: "PipelineReport") -> str:
    """Return the verdict for the whole report.

    ``INCOMPLETE`` when a variant did not finish, ``INCONCLUSIVE`` when no
    variant produced a p-value, otherwise ``RANDOM`` or ``NON-RANDOM``
    depending on :func:`overall_p_value` and the configured alpha.
    """

    from .pipeline import RunStatus

    if any(run.status is not RunStatus.COMPLETED for run in report.runs):
        return "INCOMPLETE"
    p_value = overall_p_value(report)
    if p_value is None:
        return "INCONCLUSIVE"
    return "RANDOM" if p_value >= report.config.alpha else "NON-RANDOM"


def print_console_summary(
    report: "PipelineReport", *, verbose: bool = False, stream: TextIO | None = None
) -> None:
    """Print a short summary of the pipeline report to ``stream``."""

    output = stream if stream is not None else sys.stdout
    print(f"Result: {overall_verdict(report)} | Variants: {len(report.runs)}", file=output)
    for run in report.runs:
        print(f"[{run.variant}] {run.chain_description}: {_run_headline(run)}", file=output)
        if not verbose:
            continue
        for result in run.results:
            print(f" - {result.analyzer_name}: {_format_result(result)}", file=output)
            for line in _format_detail_block(result.details):
                if line:
                    print(f"   {line}", file=output)
        if run.summary is not None:
            for note in run.summary.metadata:
                print(f"   note: {note}", file=output)
    if verbose:
        overall = overall_p_value(report)
        combined = f"{overall:.4f}" if overall is not None else "n/a"
        print(f"Alpha: {report.config.alpha:g} | Combined p: {combined}", file=output)


def build_markdown_report(
    report: "PipelineReport",
    *,
    input_path: Path | None = None,
    template: Template | None = None,
) -> str:
    """Generate a markdown report for ``report`` using ``template``."""

    template = template or DEFAULT_TEMPLATE.template
    return template.substitute(
        summary=_format_summary_section(report),
        source_metadata=_format_source_metadata(input_path),
        configuration=_format_configuration(report),
        variant_table=_format_variant_table(report.runs),
        variant_sections=_format_variant_sections(report.runs),
        interpretations=_format_interpretations(report),
        timestamp=report.started_at.astimezone(timezone.utc).isoformat(),
        duration=_format_duration(report.duration),
    )


def write_markdown_report(
    report: "PipelineReport",
    path: Path | None = None,
    *,
    input_path: Path | None = None,
    template: Template | None = None,
) -> Path:
    """Render and persist a markdown report for ``report``."""

    target = _resolve_report_path(report, path, input_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    content = build_markdown_report(report, input_path=input_path, template=template)
    target.write_text(content, encoding="utf-8")
    return target


class ConsoleSink:
    """Report sink printing the console summary."""

    def __init__(self, *, verbose: bool = False, stream: TextIO | None = None) -> None:
        self.verbose = verbose
        self.stream = stream

    def emit(self, report: "PipelineReport") -> None:
        print_console_summary(report, verbose=self.verbose, stream=self.stream)


class MarkdownSink:
    """Report sink writing a markdown report; :attr:`written` holds the last path."""

    def __init__(self, path: Path | None = None, *, input_path: Path | None = None) -> None:
        self.path = path
        self.input_path = input_path
        self.written: Path | None = None

    def emit(self, report: "PipelineReport") -> None:
        self.written = write_markdown_report(report, self.path, input_path=self.input_path)


# ---------------------------------------------------------------------------
# Helper formatting utilities
# ---------------------------------------------------------------------------

def _run_headline(run: "BatteryRun") -> str:
    if run.error is not None:
        return f"{run.status.value} ({run.error})"
    if run.summary is None:
        return f"{run.status.value} after {run.bits_consumed} bits"
    combined = run.summary.combined_p_value
    fisher = f"{combined:.4f}" if combined is not None else "n/a"
    if not run.summary.scored:
        verdict = "INCONCLUSIVE"
    else:
        verdict = "RANDOM" if run.summary.passed else "NON-RANDOM"
    return (
        f"{verdict} | Confidence: {run.summary.confidence:.1f}% | Fisher p: {fisher} "
        f"| {run.bits_consumed} bits"
    )


def _format_result(result: "Result") -> str:
    if result.p_value is None:
        return result.verdict.value
    return f"{result.verdict.value} (p={result.p_value:.4f})"


def _format_detail_block(details: str) -> Sequence[str]:
    stripped = details.strip()
    if not stripped:
        return ("",)
    return tuple(stripped.splitlines())


def _format_summary_section(report: "PipelineReport") -> str:
    completed = sum(1 for run in report.runs if run.summary is not None)
    overall = overall_p_value(report)
    combined = f"{overall:.4f}" if overall is not None else "-"
    return textwrap.dedent(
        f"""
        - **Result:** {overall_verdict(report)}
        - **Variants completed:** {completed} of {len(report.runs)}
        - **Combined p-value:** {combined} (alpha {report.config.alpha:g})
        """
    ).strip()


def _format_source_metadata(input_path: Path | None) -> str:
    if input_path is None:
        return "- **Input:** in-memory stream"
    try:
        size = f"{input_path.stat().st_size} bytes"
    except OSError:
        size = "size unavailable"
    return f"- **Input file:** {input_path} ({size})"


def _format_configuration(report: "PipelineReport") -> str:
    config = report.config
    lines = [
        f"- **Analyzers:** {', '.join(config.analyzer_names)}",
        f"- **Chunk size:** {config.chunk_size} bytes",
        f"- **Bit order:** {config.bit_order}",
        f"- **Cutoff:** {config.cutoff}",
        f"- **Alpha:** {config.alpha:g}",
    ]
    return "\n".join(lines)


def _format_variant_table(runs: Sequence["BatteryRun"]) -> str:
    header = "| Variant | Chain | Status | Bits | Confidence (%) | Fisher p |"
    separator = "| --- | --- | --- | --- | --- | --- |"
    rows = []
    for run in runs:
        if run.summary is not None:
            confidence = f"{run.summary.confidence:.2f}"
            combined = run.summary.combined_p_value
            fisher = f"{combined:.4f}" if combined is not None else "-"
        else:
            confidence = fisher = "-"
        rows.append(
            f"| {run.variant} | `{run.chain_description}` | {run.status.value} "
            f"| {run.bits_consumed} | {confidence} | {fisher} |"
        )
    if not rows:
        rows.append("| _(no variants executed)_ | - | - | - | - | - |")
    return "\n".join([header, separator, *rows])


def _format_variant_sections(runs: Sequence["BatteryRun"]) -> str:
    sections: list[str] = []
    for run in runs:
        lines = [f"### {run.variant}"]
        if run.error is not None:
            lines.append(f"Error: {run.error}")
        if run.results:
            lines.append("")
            lines.append("| Analyzer | Statistic | df | P-Value | Samples | Verdict |")
            lines.append("| --- | --- | --- | --- | --- | --- |")
            for result in run.results:
                statistic = f"{result.statistic:.4f}" if result.statistic is not None else "-"
                dof = str(result.degrees_of_freedom) if result.degrees_of_freedom is not None else "-"
                p_value = f"{result.p_value:.4f}" if result.p_value is not None else "-"
                lines.append(
                    f"| {result.analyzer_name} | {statistic} | {dof} | {p_value} "
                    f"| {result.sample_size} | {result.verdict.value} |"
                )
        if run.summary is not None and run.summary.metadata:
            lines.append("")
            lines.append("Notes:")
            lines.extend(f"- {note}" for note in run.summary.metadata)
        sections.append("\n".join(lines))
    if not sections:
        return "\n"
    return "\n\n" + "\n\n".join(sections) + "\n"


def _format_interpretations(report: "PipelineReport") -> str:
    notes = list(report.config.warnings)
    for run in report.runs:
        if run.summary is not None and run.summary.failed_tests:
            notes.append(
                f"Variant '{run.variant}' failed {', '.join(run.summary.failed_tests)} "
                f"at alpha {report.config.alpha:g}."
            )
    if not notes:
        return "- No additional interpretations were recorded."
    return "\n".join(f"- {note}" for note in notes)


def _format_duration(duration: "timedelta") -> str:
    total_seconds = duration.total_seconds()
    if total_seconds < 1:
        return f"{total_seconds * 1000:.0f} ms"
    return f"{total_seconds:.2f} s"


def _resolve_report_path(report: "PipelineReport", path: Path | None, input_path: Path | None) -> Path:
    if path is not None:
        return Path(path).expanduser().resolve()
    stem = input_path.stem if input_path is not None else "stream"
    safe_stem = re.sub(r"[^A-Za-z0-9_.-]+", "-", stem).strip("-") or "stream"
    timestamp = report.started_at.astimezone(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return (Path("reports") / f"{safe_stem}-{timestamp}.md").resolve()


__all__ = [
    "ConsoleSink",
    "MarkdownSink",
    "ReportTemplate",
    "build_markdown_report",
    "overall_p_value",
    "overall_verdict",
    "print_console_summary",
    "write_markdown_report",
]
