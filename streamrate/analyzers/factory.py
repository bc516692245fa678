"""Factory utilities for registering and instantiating analyzers."""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple

from ..errors import ConfigurationError
from .base import DEFAULT_ALPHA, StreamAnalyzer
from .statistical import (
    AutocorrelationAnalyzer,
    CollisionAnalyzer,
    CycleAnalyzer,
    DependencyAnalyzer,
    DriftAnalyzer,
    EntropyAnalyzer,
    MonobitAnalyzer,
    RunsAnalyzer,
    SerialAnalyzer,
)

AnalyzerFactory = Callable[..., StreamAnalyzer]
AnalyzerSpec = Tuple[str, Mapping[str, Any]]


def _default_registry() -> Dict[str, AnalyzerFactory]:
    return {
        analyzer.name: analyzer
        for analyzer in (
            MonobitAnalyzer,
            RunsAnalyzer,
            SerialAnalyzer,
            DriftAnalyzer,
            AutocorrelationAnalyzer,
            EntropyAnalyzer,
            CollisionAnalyzer,
            DependencyAnalyzer,
            CycleAnalyzer,
        )
    }


DEFAULT_ANALYZERS: Mapping[str, AnalyzerFactory] = _default_registry()

DEFAULT_BATTERY: Tuple[str, ...] = (
    "monobit",
    "runs",
    "serial",
    "drift",
    "autocorrelation",
    "entropy",
)
"""Analyzers run when a configuration does not list any explicitly."""


def build_analyzer(
    name: str,
    params: Mapping[str, Any] | None = None,
    *,
    alpha: float = DEFAULT_ALPHA,
    registry: Mapping[str, AnalyzerFactory] | None = None,
) -> StreamAnalyzer:
    """Instantiate analyzer ``name`` with ``params``."""

    factories = registry or DEFAULT_ANALYZERS
    factory = factories.get(name)
    if factory is None:
        raise ConfigurationError(f"Unknown analyzer '{name}' in configuration.")
    params = dict(params or {})
    _check_parameters(name, factory, params)
    try:
        return factory(alpha=alpha, **params)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid parameters for analyzer '{name}': {exc}") from exc


def build_analyzers(
    specs: Sequence[AnalyzerSpec],
    *,
    alpha: float = DEFAULT_ALPHA,
    registry: Mapping[str, AnalyzerFactory] | None = None,
) -> List[StreamAnalyzer]:
    """Construct a fresh list of analyzers from ``(name, params)`` specs."""

    if not specs:
        raise ConfigurationError("At least one analyzer must be enabled in configuration.")
    return [build_analyzer(name, params, alpha=alpha, registry=registry) for name, params in specs]


def _check_parameters(name: str, factory: AnalyzerFactory, params: Mapping[str, Any]) -> None:
    try:
        signature = inspect.signature(factory)
    except (TypeError, ValueError):  # pragma: no cover - builtins without signatures
        return
    accepted = {
        parameter.name
        for parameter in signature.parameters.values()
        if parameter.kind in (parameter.KEYWORD_ONLY, parameter.POSITIONAL_OR_KEYWORD)
    }
    if any(p.kind is p.VAR_KEYWORD for p in signature.parameters.values()):
        return
    unknown = sorted(set(params) - accepted - {"alpha"})
    if unknown:
        raise ConfigurationError(
            f"Unknown parameter(s) for analyzer '{name}': {', '.join(unknown)}."
        )
    if "alpha" in params:
        raise ConfigurationError(
            f"Analyzer '{name}' takes alpha from the [pipeline] section, not its parameters."
        )


__all__ = [
    "AnalyzerSpec",
    "DEFAULT_ANALYZERS",
    "DEFAULT_BATTERY",
    "build_analyzer",
    "build_analyzers",
]
