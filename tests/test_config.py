"""Tests for loading INI configuration files."""

from __future__ import annotations

from pathlib import Path

import pytest

from streamrate.analyzers import DEFAULT_BATTERY
from streamrate.config import DEFAULT_VARIANTS, Cutoff, PipelineConfig, VariantSpec, load_config
from streamrate.errors import ConfigurationError, MissingFileError


BASE_CONFIG = """
[pipeline]
chunk_size = 4096
bit_order = lsb
cutoff = 2048
parallelism = yes
timeout = 2.5
retries = 1
alpha = 0.05

[analyzers]
monobit = true
serial = true
runs = false
autocorrelation = true

[analyzer.serial]
tuple_bits = 4

[analyzer.autocorrelation]
lags = 1, 3, 5

[variants]
raw =
decimated = decimate(m=8) ; keep one bit in eight
""".strip()


def _write_config(tmp_path: Path, content: str) -> Path:
    config_path = tmp_path / "config.ini"
    config_path.write_text(content, encoding="utf-8")
    return config_path


def test_load_config_reads_every_section(tmp_path: Path) -> None:
    """Every INI section maps onto the configuration."""

    config = load_config(_write_config(tmp_path, BASE_CONFIG))

    assert config.chunk_size == 4096
    assert config.bit_order == "lsb"
    assert config.cutoff == Cutoff(bytes=2048)
    assert config.parallelism is True
    assert config.timeout == 2.5
    assert config.retries == 1
    assert config.alpha == 0.05
    assert config.analyzer_names == ("monobit", "serial", "autocorrelation")
    assert dict(config.analyzers[1][1]) == {"tuple_bits": 4}
    assert dict(config.analyzers[2][1]) == {"lags": [1, 3, 5]}
    assert config.variants == (VariantSpec("raw", ""), VariantSpec("decimated", "decimate(m=8)"))


def test_defaults_apply_without_optional_sections(tmp_path: Path) -> None:
    """Missing sections fall back to the default battery and variants."""

    config = load_config(_write_config(tmp_path, "[pipeline]\n"))

    assert config.analyzer_names == DEFAULT_BATTERY
    assert config.cutoff.exhaust
    assert config.timeout is None
    assert config.variants == DEFAULT_VARIANTS
    assert config.variants[0] == VariantSpec("raw")
    assert ("last_bit", "decimate(m=64, offset=63)") in [(v.name, v.chain) for v in config.variants]
    assert sum(config.weights.values.values()) == pytest.approx(1.0)
    assert config.output.log_results is False


def test_weights_are_normalised_with_warning(tmp_path: Path) -> None:
    """Weights not summing to one are rescaled with a warning."""

    content = "[analyzers]\nmonobit = true\nruns = true\n\n[weights]\nmonobit = 3\nruns = 1\n"

    config = load_config(_write_config(tmp_path, content))

    assert config.weights.normalised is True
    assert config.weights.values["monobit"] == pytest.approx(0.75)
    assert any("normalised" in warning for warning in config.warnings)


def test_missing_weight_for_enabled_analyzer(tmp_path: Path) -> None:
    """An enabled analyzer without a weight is rejected."""

    content = "[analyzers]\nmonobit = true\nruns = true\n\n[weights]\nmonobit = 1\n"

    with pytest.raises(ConfigurationError):
        load_config(_write_config(tmp_path, content))


def test_parameters_for_disabled_analyzer_only_warn(tmp_path: Path) -> None:
    """Parameters of a disabled analyzer are ignored with a warning."""

    content = "[analyzers]\nmonobit = true\n\n[analyzer.serial]\ntuple_bits = 3\n"

    config = load_config(_write_config(tmp_path, content))

    assert config.analyzer_names == ("monobit",)
    assert any("analyzer.serial" in warning for warning in config.warnings)


def test_output_section_includes_logging_defaults(tmp_path: Path) -> None:
    """Logging and report options are read from the output section."""

    config_path = _write_config(
        tmp_path,
        BASE_CONFIG
        + "\n\n[output]\nlog_results = true\nlog_format = csv\nlog_retention = 5\n"
        + "log_path = logs/history.csv\nreport_path = reports/latest.md\n",
    )

    config = load_config(config_path)

    assert config.output.log_results is True
    assert config.output.run_log_format == "csv"
    assert config.output.run_log_retention == 5
    assert config.output.run_log_path == (tmp_path / "logs" / "history.csv").resolve()
    assert config.output.report_path == (tmp_path / "reports" / "latest.md").resolve()


@pytest.mark.parametrize(
    "content",
    [
        "[pipeline]\nchunk_size = big\n",
        "[pipeline]\nchunk_size = 0\n",
        "[pipeline]\nbit_order = middle\n",
        "[pipeline]\ncutoff = -5\n",
        "[pipeline]\nalpha = 1.5\n",
        "[pipeline]\nparallelism = sometimes\n",
        "[analyzers]\nmonobit = false\n",
        "[analyzers]\nmonobit = maybe\n",
        "[output]\nlog_format = xml\n",
        "[pipeline\n",
    ],
)
def test_invalid_configuration_raises(tmp_path: Path, content: str) -> None:
    """Malformed values raise a configuration error."""

    with pytest.raises(ConfigurationError):
        load_config(_write_config(tmp_path, content))


def test_missing_configuration_file(tmp_path: Path) -> None:
    """A missing configuration file is reported as such."""

    with pytest.raises(MissingFileError):
        load_config(tmp_path / "absent.ini")


def test_pipeline_config_is_immutable() -> None:
    """Configurations are frozen once built."""

    config = PipelineConfig()

    with pytest.raises(AttributeError):
        config.alpha = 0.5  # type: ignore[misc]
