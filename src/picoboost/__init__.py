"""
GentleBoost training and Pico-style cascade detector files.

Implements Gentle AdaBoost (Friedman, Hastie & Tibshirani, 2000) over an
arbitrary weak learner type, and the packed binary / hex text format used by
pixel-intensity-comparison cascade detectors (Markus et al., 2013).
"""

from .core import GentleBoost, GentleBoostClassifier
from .utils import InvalidInputError
from .cascade import (
    Cascade, NormalizedRegion, PicoClassifier, PicoTree, StageClassifier,
    pack_bintest, unpack_bintest
)
from .learners import BinTestStumpFactory, TreeLearnerFactory, max_rounds, target_rates
from .serialization import (
    encode_binary, decode_binary, render_hex, parse_hex, write_hex_file, read_hex_file
)

__version__ = "0.1.0"
__all__ = [
    "GentleBoost", "GentleBoostClassifier", "InvalidInputError",
    "Cascade", "NormalizedRegion", "PicoClassifier", "PicoTree", "StageClassifier",
    "pack_bintest", "unpack_bintest",
    "BinTestStumpFactory", "TreeLearnerFactory", "max_rounds", "target_rates",
    "encode_binary", "decode_binary", "render_hex", "parse_hex",
    "write_hex_file", "read_hex_file",
]
