"""Streaming statistical analyzers."""

from .base import Analyzer, Result, StreamAnalyzer, Verdict
from .factory import DEFAULT_ANALYZERS, DEFAULT_BATTERY, build_analyzer, build_analyzers
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

__all__ = [
    "Analyzer",
    "AutocorrelationAnalyzer",
    "CollisionAnalyzer",
    "CycleAnalyzer",
    "DEFAULT_ANALYZERS",
    "DEFAULT_BATTERY",
    "DependencyAnalyzer",
    "DriftAnalyzer",
    "EntropyAnalyzer",
    "MonobitAnalyzer",
    "Result",
    "RunsAnalyzer",
    "SerialAnalyzer",
    "StreamAnalyzer",
    "Verdict",
    "build_analyzer",
    "build_analyzers",
]
