"""Streaming randomness rating engine."""

from .analysis import MergedResult, RunSummary
from .app import RunResult, StreamRateApp
from .battery import Battery
from .config import PipelineConfig, load_config
from .pipeline import BatteryRun, Pipeline, PipelineReport, RunStatus

__all__ = [
    "Battery",
    "BatteryRun",
    "MergedResult",
    "Pipeline",
    "PipelineConfig",
    "PipelineReport",
    "RunResult",
    "RunStatus",
    "RunSummary",
    "StreamRateApp",
    "load_config",
]
