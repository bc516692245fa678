"""Parsing and construction of transform chains from configuration text."""

from __future__ import annotations

import inspect
import re
from typing import Any, Callable, Dict, List, Mapping, Tuple

from ..errors import ConfigurationError
from .base import Transform, TransformChain
from .bitwise import Bias, Decimate, Permute, XorFold
from .words import ConcatHalves, WordCombine, WordMap

TransformFactory = Callable[..., Transform]
TransformSpec = Tuple[str, Dict[str, Any]]

DEFAULT_TRANSFORMS: Mapping[str, TransformFactory] = {
    transform.name: transform
    for transform in (
        Permute,
        XorFold,
        Decimate,
        Bias,
        WordCombine,
        WordMap,
        ConcatHalves,
    )
}

_STAGE = re.compile(r"^\s*(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*(?:\((?P<args>[^()]*)\))?\s*$")
_TRUE = {"true", "yes", "on"}
_FALSE = {"false", "no", "off"}


def coerce_value(raw: str) -> Any:
    """Interpret a configuration value as bool, int, float, list or string."""

    text = raw.strip()
    lowered = text.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    if "," in text:
        return [coerce_value(part) for part in text.split(",") if part.strip()]
    for base in (10, 0):
        try:
            return int(text, base)
        except ValueError:
            continue
    try:
        return float(text)
    except ValueError:
        return text


def parse_chain(text: str) -> List[TransformSpec]:
    """Split ``"name(key=value, ...) | name"`` into ``(name, params)`` specs."""

    specs: List[TransformSpec] = []
    if not text or not text.strip():
        return specs
    for stage in text.split("|"):
        match = _STAGE.match(stage)
        if match is None:
            raise ConfigurationError(f"Malformed transform stage '{stage.strip()}'.")
        params: Dict[str, Any] = {}
        args = match.group("args")
        if args and args.strip():
            for pair in _split_arguments(args):
                key, sep, value = pair.partition("=")
                key = key.strip()
                if not sep or not key.isidentifier():
                    raise ConfigurationError(
                        f"Transform argument '{pair.strip()}' must look like key=value."
                    )
                if key in params:
                    raise ConfigurationError(f"Transform argument '{key}' given twice.")
                params[key] = coerce_value(value)
        specs.append((match.group("name"), params))
    return specs


def _split_arguments(args: str) -> List[str]:
    # Arguments are separated by commas, but a value may itself be a
    # comma-separated list, so a piece without '=' belongs to the previous one.
    pieces: List[str] = []
    for piece in args.split(","):
        if "=" in piece or not pieces:
            pieces.append(piece)
        else:
            pieces[-1] = f"{pieces[-1]},{piece}"
    return pieces


def build_transform(
    name: str,
    params: Mapping[str, Any] | None = None,
    *,
    registry: Mapping[str, TransformFactory] | None = None,
) -> Transform:
    factories = registry or DEFAULT_TRANSFORMS
    factory = factories.get(name)
    if factory is None:
        raise ConfigurationError(f"Unknown transform '{name}'.")
    params = dict(params or {})
    accepted = set(inspect.signature(factory).parameters)
    unknown = sorted(set(params) - accepted)
    if unknown:
        raise ConfigurationError(
            f"Unknown parameter(s) for transform '{name}': {', '.join(unknown)}."
        )
    try:
        return factory(**params)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid parameters for transform '{name}': {exc}") from exc


def build_chain(
    text: str,
    *,
    registry: Mapping[str, TransformFactory] | None = None,
) -> TransformChain:
    """Build a :class:`TransformChain`; empty text yields the raw chain."""

    return TransformChain(
        [build_transform(name, params, registry=registry) for name, params in parse_chain(text)]
    )


__all__ = [
    "DEFAULT_TRANSFORMS",
    "TransformSpec",
    "build_chain",
    "build_transform",
    "coerce_value",
    "parse_chain",
]
