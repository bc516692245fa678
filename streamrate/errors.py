"""Custom exceptions for the stream rating engine."""

from __future__ import annotations


class StreamRateError(Exception):
    """Base error type for application specific failures."""


class MissingFileError(StreamRateError):
    """Raised when a required input file could not be located."""


class EmptyInputFileError(StreamRateError):
    """Raised when the input file does not contain any bytes."""


class ConfigurationError(StreamRateError):
    """Raised when a battery, transform or configuration file is invalid."""


class AnalyzerFinalized(StreamRateError):
    """Raised when an analyzer is used after :meth:`finalize` was called."""


class StreamError(StreamRateError):
    """Base class for failures tied to a position in a stream.

    ``offset`` is the bit offset at which the failure was detected and
    ``variant`` names the pipeline variant, when known.
    """

    def __init__(self, message: str, *, offset: int | None = None, variant: str | None = None) -> None:
        super().__init__(message)
        self.offset = offset
        self.variant = variant

    def with_variant(self, variant: str) -> "StreamError":
        self.variant = variant
        return self

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.variant is not None:
            context.append(f"variant '{self.variant}'")
        if self.offset is not None:
            context.append(f"bit offset {self.offset}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class ExhaustedStream(StreamError):
    """Raised when the source ends before a mandatory read is satisfied."""


class NonReplayableSource(StreamError):
    """Raised when a non-replayable source is asked for a second traversal."""


class SourceTimeout(StreamError):
    """Raised when a source read stalls for longer than the configured timeout."""

    def __init__(
        self,
        message: str,
        *,
        timeout: float | None = None,
        offset: int | None = None,
        variant: str | None = None,
    ) -> None:
        super().__init__(message, offset=offset, variant=variant)
        self.timeout = timeout


class RunAborted(StreamRateError):
    """Raised inside a battery run when cancellation was requested.

    ``results`` holds the results of analyzers finalized before the abort.
    """

    def __init__(self, message: str, results: tuple = ()) -> None:
        super().__init__(message)
        self.results = tuple(results)
