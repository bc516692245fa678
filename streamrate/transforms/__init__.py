"""Bounded-context stream transforms."""

from .base import Aligner, Transform, TransformChain
from .bitwise import Bias, Decimate, Permute, XorFold
from .factory import DEFAULT_TRANSFORMS, build_chain, build_transform, coerce_value, parse_chain
from .words import ConcatHalves, WordCombine, WordMap

__all__ = [
    "Aligner",
    "Bias",
    "ConcatHalves",
    "DEFAULT_TRANSFORMS",
    "Decimate",
    "Permute",
    "Transform",
    "TransformChain",
    "WordCombine",
    "WordMap",
    "XorFold",
    "build_chain",
    "build_transform",
    "coerce_value",
    "parse_chain",
]
