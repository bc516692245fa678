"""Configuration parsing for the stream rating pipeline.

The configuration is an INI file read with :mod:`configparser` and turned into
a tree of frozen dataclasses.  The resulting :class:`PipelineConfig` is an
immutable value that is threaded through pipeline, battery and analyzer
construction.
"""

from __future__ import annotations

import configparser
import math
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Tuple

from .analyzers.base import DEFAULT_ALPHA
from .analyzers.factory import DEFAULT_BATTERY, AnalyzerSpec
from .errors import ConfigurationError, MissingFileError
from .transforms.factory import coerce_value

DEFAULT_CHUNK_SIZE = 65536
"""Default number of bytes pulled from the source per chunk."""

ANALYZER_SECTION_PREFIX = "analyzer."



@dataclass(frozen=True)
class Cutoff:
    """Sample-size cutoff: exactly ``bytes`` bytes, or the whole stream when ``None``."""

    bytes: int | None = None

    @property
    def exhaust(self) -> bool:
        return self.bytes is None

    def __str__(self) -> str:
        return "exhaust" if self.bytes is None else f"{self.bytes} bytes"


@dataclass(frozen=True)
class VariantSpec:
    """Named transform chain, written as ``name(key=value) | name``."""

    name: str
    chain: str = ""


DEFAULT_VARIANTS: Tuple[VariantSpec, ...] = (
    VariantSpec("raw"),
    VariantSpec("skip_one", "decimate(m=2, unit=word)"),
    VariantSpec("skip_two", "decimate(m=3, unit=word)"),
    VariantSpec("concat_halves", "concat_halves"),
    VariantSpec("xor", "word_combine(op=xor)"),
    VariantSpec("add", "word_combine(op=add)"),
    VariantSpec("multiply", "word_combine(op=multiply)"),
    VariantSpec("last_bit", "decimate(m=64, offset=63)"),
    VariantSpec("triple", "word_map(op=triple)"),
    VariantSpec("third", "word_map(op=third)"),
    VariantSpec("rotate", "word_map(op=rotate)"),
)
"""Raw stream plus the weakening transforms rated when no variants are configured."""


@dataclass(frozen=True)
class WeightsSection:
    """Normalised weighting information for the enabled analyzers."""

    values: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    normalised: bool = False


@dataclass(frozen=True)
class OutputSection:
    """Options controlling reports and the run history log."""

    log_results: bool = False
    report_path: Path | None = None
    run_log_path: Path = Path("logs") / "run_log.jsonl"
    run_log_format: str = "jsonl"
    run_log_retention: int | None = 100


def _default_analyzers() -> Tuple[AnalyzerSpec, ...]:
    return tuple((name, MappingProxyType({})) for name in DEFAULT_BATTERY)


@dataclass(frozen=True)
class PipelineConfig:
    """Aggregate configuration returned by :func:`load_config`."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    bit_order: str = "msb"
    cutoff: Cutoff = Cutoff()
    parallelism: bool = False
    timeout: float | None = None
    retries: int = 3
    backoff: float = 0.05
    alpha: float = DEFAULT_ALPHA
    analyzers: Tuple[AnalyzerSpec, ...] = field(default_factory=_default_analyzers)
    weights: WeightsSection = field(default_factory=WeightsSection)
    variants: Tuple[VariantSpec, ...] = DEFAULT_VARIANTS
    output: OutputSection = field(default_factory=OutputSection)
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ConfigurationError("Option 'chunk_size' must be a positive number of bytes.")
        if self.bit_order not in ("msb", "lsb"):
            raise ConfigurationError("Option 'bit_order' must be either 'msb' or 'lsb'.")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("Option 'timeout' must be greater than zero.")
        if self.retries < 0:
            raise ConfigurationError("Option 'retries' must not be negative.")
        if self.backoff < 0:
            raise ConfigurationError("Option 'backoff' must not be negative.")
        if not 0.0 < self.alpha < 1.0:
            raise ConfigurationError("Option 'alpha' must lie strictly between 0 and 1.")
        if not self.analyzers:
            raise ConfigurationError("At least one analyzer must be enabled.")
        if not self.variants:
            raise ConfigurationError("At least one variant must be configured.")
        names = [variant.name for variant in self.variants]
        if len(set(names)) != len(names):
            raise ConfigurationError("Variant names must be unique.")

    @property
    def analyzer_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.analyzers)


def load_config(path: Path) -> PipelineConfig:
    """Load and validate an INI configuration file."""

    path = Path(path)
    parser = configparser.ConfigParser(inline_comment_prefixes=(";", "#"))
    parser.optionxform = str  # analyzer and variant names are case sensitive
    try:
        with path.open("r", encoding="utf-8") as config_file:
            parser.read_file(config_file)
    except FileNotFoundError as exc:
        raise MissingFileError(f"Configuration file not found: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem guard
        raise MissingFileError(f"Could not read configuration file: {path}") from exc
    except configparser.Error as exc:
        raise ConfigurationError(f"Configuration file is not valid INI: {exc}") from exc

    warnings: list[str] = []
    pipeline_options = _parse_pipeline(parser)
    analyzers = _parse_analyzers(parser, warnings)
    weights = _parse_weights(parser, analyzers, warnings)
    variants = _parse_variants(parser)
    output = _parse_output(parser, path)

    return PipelineConfig(
        **pipeline_options,
        analyzers=analyzers,
        weights=weights,
        variants=variants,
        output=output,
        warnings=tuple(warnings),
    )


def _parse_pipeline(parser: configparser.ConfigParser) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if not parser.has_section("pipeline"):
        return options
    section = parser["pipeline"]

    def _number(key: str, kind: type) -> None:
        if key not in section:
            return
        raw = section[key].strip()
        try:
            options[key] = kind(raw)
        except ValueError as exc:
            raise ConfigurationError(
                f"Option '{key}' in [pipeline] must be {'an integer' if kind is int else 'numeric'}."
            ) from exc

    _number("chunk_size", int)
    _number("retries", int)
    _number("backoff", float)
    _number("alpha", float)

    if "bit_order" in section:
        options["bit_order"] = section["bit_order"].strip().lower()
    if "parallelism" in section:
        try:
            options["parallelism"] = section.getboolean("parallelism")
        except ValueError as exc:
            raise ConfigurationError(
                "Option 'parallelism' in [pipeline] must be a boolean value."
            ) from exc
    if "timeout" in section:
        raw_timeout = section["timeout"].strip()
        if raw_timeout:
            try:
                options["timeout"] = float(raw_timeout)
            except ValueError as exc:
                raise ConfigurationError("Option 'timeout' in [pipeline] must be numeric.") from exc
    if "cutoff" in section:
        options["cutoff"] = _parse_cutoff(section["cutoff"])
    return options


def _parse_cutoff(raw: str) -> Cutoff:
    value = raw.strip().lower()
    if value in ("", "exhaust"):
        return Cutoff()
    try:
        count = int(value)
    except ValueError as exc:
        raise ConfigurationError(
            "Option 'cutoff' in [pipeline] must be 'exhaust' or a number of bytes."
        ) from exc
    if count <= 0:
        raise ConfigurationError("Option 'cutoff' in [pipeline] must be a positive byte count.")
    return Cutoff(bytes=count)


def _parse_analyzers(
    parser: configparser.ConfigParser, warnings: list[str]
) -> Tuple[AnalyzerSpec, ...]:
    if parser.has_section("analyzers"):
        enabled: list[str] = []
        for name in parser.options("analyzers"):
            try:
                is_enabled = parser.getboolean("analyzers", name)
            except ValueError as exc:
                raise ConfigurationError(
                    f"Analyzer '{name}' in [analyzers] must be a boolean value."
                ) from exc
            if is_enabled:
                enabled.append(name)
        if not enabled:
            raise ConfigurationError("At least one analyzer must be enabled in [analyzers] section.")
    else:
        enabled = list(DEFAULT_BATTERY)

    specs: list[AnalyzerSpec] = []
    for name in enabled:
        section_name = ANALYZER_SECTION_PREFIX + name
        params: dict[str, Any] = {}
        if parser.has_section(section_name):
            params = {key: coerce_value(value) for key, value in parser.items(section_name)}
        specs.append((name, MappingProxyType(params)))

    for section_name in parser.sections():
        if section_name.startswith(ANALYZER_SECTION_PREFIX):
            name = section_name[len(ANALYZER_SECTION_PREFIX) :]
            if name not in enabled:
                warnings.append(f"Section [{section_name}] ignored because '{name}' is not enabled.")
    return tuple(specs)


def _parse_weights(
    parser: configparser.ConfigParser,
    analyzers: Tuple[AnalyzerSpec, ...],
    warnings: list[str],
) -> WeightsSection:
    names = [name for name, _ in analyzers]
    if not parser.has_section("weights"):
        equal = 1.0 / len(names)
        return WeightsSection(values=MappingProxyType({name: equal for name in names}))

    raw_weights: dict[str, float] = {}
    for name, value in parser.items("weights"):
        try:
            weight = float(value)
        except ValueError as exc:
            raise ConfigurationError(f"Weight for analyzer '{name}' must be a numeric value.") from exc
        if weight <= 0:
            raise ConfigurationError(f"Weight for analyzer '{name}' must be greater than zero.")
        raw_weights[name] = weight

    missing = [name for name in names if name not in raw_weights]
    if missing:
        raise ConfigurationError(
            f"Missing weight entries for enabled analyzers: {', '.join(sorted(missing))}."
        )

    enabled_weights = {name: raw_weights[name] for name in names}
    total = sum(enabled_weights.values())
    normalised = False
    if not math.isclose(total, 1.0, rel_tol=1e-9, abs_tol=1e-9):
        normalised = True
        enabled_weights = {name: value / total for name, value in enabled_weights.items()}
        warnings.append("Weights for enabled analyzers did not sum to 1.0; normalised automatically.")
    return WeightsSection(values=MappingProxyType(enabled_weights), normalised=normalised)


def _parse_variants(parser: configparser.ConfigParser) -> Tuple[VariantSpec, ...]:
    if not parser.has_section("variants"):
        return DEFAULT_VARIANTS
    variants = tuple(
        VariantSpec(name=name, chain=value.strip()) for name, value in parser.items("variants")
    )
    if not variants:
        raise ConfigurationError("The [variants] section must list at least one variant.")
    return variants


def _parse_output(parser: configparser.ConfigParser, config_path: Path) -> OutputSection:
    if not parser.has_section("output"):
        return OutputSection()
    section = parser["output"]
    base_dir = config_path.resolve().parent

    def _path(key: str) -> Path | None:
        raw = section.get(key, "").strip()
        if not raw:
            return None
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        return candidate.resolve()

    log_results = False
    if "log_results" in section:
        try:
            log_results = section.getboolean("log_results")
        except ValueError as exc:
            raise ConfigurationError("Option 'log_results' in [output] must be a boolean value.") from exc

    log_format = section.get("log_format", "jsonl").strip().lower()
    if log_format not in {"jsonl", "csv"}:
        raise ConfigurationError("Option 'log_format' in [output] must be either 'jsonl' or 'csv'.")

    retention: int | None = 100
    raw_retention = section.get("log_retention", "").strip()
    if raw_retention:
        try:
            parsed = int(raw_retention)
        except ValueError as exc:
            raise ConfigurationError("Option 'log_retention' in [output] must be an integer value.") from exc
        retention = parsed if parsed > 0 else None

    return OutputSection(
        log_results=log_results,
        report_path=_path("report_path"),
        run_log_path=_path("log_path") or (base_dir / "logs" / "run_log.jsonl").resolve(),
        run_log_format=log_format,
        run_log_retention=retention,
    )


__all__ = [
    "Cutoff",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_VARIANTS",
    "OutputSection",
    "PipelineConfig",
    "VariantSpec",
    "WeightsSection",
    "load_config",
]
