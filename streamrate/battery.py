"""Run an ordered set of analyzers over a single bit stream."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor
from typing import Iterable, List, Sequence

import numpy as np

from .analyzers.base import Result, StreamAnalyzer
from .bits import BitStream, iter_bits
from .errors import ConfigurationError, RunAborted

logger = logging.getLogger(__name__)


class Battery:
    """Feed every chunk of a stream to each analyzer, then finalize them in order."""

    def __init__(self, analyzers: Sequence[StreamAnalyzer]) -> None:
        analyzers = list(analyzers)
        if not analyzers:
            raise ConfigurationError("A battery needs at least one analyzer.")
        seen: set[int] = set()
        for analyzer in analyzers:
            if id(analyzer) in seen:
                raise ConfigurationError(
                    f"Analyzer instance '{analyzer.name}' appears more than once in the battery."
                )
            seen.add(id(analyzer))
        self.analyzers: tuple[StreamAnalyzer, ...] = tuple(analyzers)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(analyzer.name for analyzer in self.analyzers)

    def run(
        self,
        view: BitStream | Iterable[np.ndarray],
        *,
        chunk_bits: int,
        max_bits: int | None = None,
        cancel: threading.Event | None = None,
        executor: Executor | None = None,
    ) -> List[Result]:
        """Analyse ``view`` and return one result per analyzer.

        ``max_bits`` stops the run once that many bits have been analysed.
        Setting ``cancel`` stops the run between chunks or finalizations with
        :class:`RunAborted`, carrying the results finalized so far.
        """

        if max_bits is not None and max_bits < 0:
            raise ConfigurationError("max_bits must not be negative.")
        fed = 0
        for chunk in iter_bits(view, chunk_bits):
            if cancel is not None and cancel.is_set():
                raise RunAborted(f"Run cancelled after {fed} bits.")
            if max_bits is not None:
                room = max_bits - fed
                if room <= 0:
                    break
                if len(chunk) > room:
                    chunk = chunk[:room]
            self._feed(chunk, executor)
            fed += len(chunk)

        logger.debug("Battery consumed %d bits; finalizing %d analyzers", fed, len(self.analyzers))
        results: List[Result] = []
        for analyzer in self.analyzers:
            if cancel is not None and cancel.is_set():
                raise RunAborted(
                    f"Run cancelled while finalizing after {len(results)} results.",
                    results=tuple(results),
                )
            results.append(analyzer.finalize())
        return results

    def _feed(self, chunk: np.ndarray, executor: Executor | None) -> None:
        if executor is None or len(self.analyzers) == 1:
            for analyzer in self.analyzers:
                analyzer.consume(chunk)
            return
        futures = [executor.submit(analyzer.consume, chunk) for analyzer in self.analyzers]
        for future in futures:
            future.result()


__all__ = ["Battery"]
