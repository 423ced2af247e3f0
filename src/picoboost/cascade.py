"""
Cascade-of-stages detector model.

A detector is an ordered list of stage classifiers, each a GentleBoost
ensemble of pixel-comparison trees plus a rejection threshold, together with
the normalised region that maps the detection window onto an image.
"""

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple
import numpy as np

from .core import GentleBoost


# A stage is one boosted ensemble; its threshold lives in the Cascade
StageClassifier = GentleBoost

INT8_MIN, INT8_MAX = -128, 127


# ===========================
# Pixel binary tests
# ===========================

def pack_bintest(r1: int, c1: int, r2: int, c2: int) -> int:
    """
    Pack a pixel-comparison test into one int32 node code.

    The four coordinates are signed bytes laid out little-endian
    (r1 in the lowest byte), the way detector runtimes reinterpret the code.
    Coordinates are offsets from the window centre in 1/256 of the window size.
    """
    coords = (r1, c1, r2, c2)
    for value in coords:
        if not INT8_MIN <= value <= INT8_MAX:
            raise ValueError(
                f"bintest coordinates must be in [{INT8_MIN}, {INT8_MAX}], got {coords}"
            )
    return int(np.array(coords, dtype=np.int8).view("<i4")[0])


def unpack_bintest(code: int) -> Tuple[int, int, int, int]:
    """Inverse of :func:`pack_bintest`."""
    r1, c1, r2, c2 = np.array([code], dtype="<i4").view(np.int8)
    return int(r1), int(c1), int(r2), int(c2)


def bintest_pixels(code: int, height: int, width: int) -> Tuple[int, int, int, int]:
    """Pixel positions (row1, col1, row2, col2) a node code compares in an HxW window."""
    r1, c1, r2, c2 = unpack_bintest(code)
    return (
        min(height - 1, max(0, height * (128 + r1) // 256)),
        min(width - 1, max(0, width * (128 + c1) // 256)),
        min(height - 1, max(0, height * (128 + r2) // 256)),
        min(width - 1, max(0, width * (128 + c2) // 256)),
    )


def bintest_outcome(code: int, patches: np.ndarray) -> np.ndarray:
    """
    Evaluate a node code on a batch of windows.

    Args:
        code: Packed pixel test.
        patches: Windows, shape (n, height, width).

    Returns:
        0/1 array, shape (n,): 1 where I(r1, c1) <= I(r2, c2).
    """
    patches = np.asarray(patches)
    row1, col1, row2, col2 = bintest_pixels(code, patches.shape[1], patches.shape[2])
    return (patches[:, row1, col1] <= patches[:, row2, col2]).astype(np.intp)


# ===========================
# Weak learner
# ===========================

@dataclass
class PicoTree:
    """
    Heap-ordered binary tree of pixel tests, as stored in the detector file.

    ``tree_depth`` is the count field written before the payload: the tree has
    ``tree_depth - 1`` internal nodes (indices 0..tree_depth-2 in heap order,
    children of node k at 2k+1 and 2k+2) and ``tree_depth`` leaves.
    """

    tree_depth: int
    internal_node_codes: np.ndarray
    leaf_values: np.ndarray

    def __post_init__(self):
        self.tree_depth = int(self.tree_depth)
        if self.tree_depth < 1:
            raise ValueError(f"tree_depth must be >= 1, got {self.tree_depth}")

        codes = np.asarray(self.internal_node_codes, dtype=np.int64).reshape(-1)
        if codes.size and (codes.min() < np.iinfo(np.int32).min or codes.max() > np.iinfo(np.int32).max):
            raise ValueError("internal node codes must fit in int32")
        self.internal_node_codes = codes.astype(np.int32)
        self.leaf_values = np.asarray(self.leaf_values, dtype=np.float32).reshape(-1)

        if self.internal_node_codes.size != self.tree_depth - 1:
            raise ValueError(
                f"tree of depth {self.tree_depth} needs {self.tree_depth - 1} "
                f"internal node codes, got {self.internal_node_codes.size}"
            )
        if self.leaf_values.size != self.tree_depth:
            raise ValueError(
                f"tree of depth {self.tree_depth} needs {self.tree_depth} "
                f"leaf values, got {self.leaf_values.size}"
            )

    def __eq__(self, other):
        if not isinstance(other, PicoTree):
            return NotImplemented
        return (
            self.tree_depth == other.tree_depth
            and np.array_equal(self.internal_node_codes, other.internal_node_codes)
            and np.array_equal(self.leaf_values, other.leaf_values)
        )

    def output(self, leaf_index: int) -> float:
        return float(self.leaf_values[leaf_index])

    def apply(self, patches: np.ndarray) -> np.ndarray:
        """Leaf index reached by each window, shape (n,)."""
        patches = np.asarray(patches)
        n_internal = self.internal_node_codes.size
        node = np.zeros(patches.shape[0], dtype=np.intp)

        for k, code in enumerate(self.internal_node_codes):
            at_node = node == k
            if not np.any(at_node):
                continue
            outcome = bintest_outcome(int(code), patches[at_node])
            node[at_node] = 2 * k + 1 + outcome

        return node - n_internal

    def predict(self, patches: np.ndarray) -> np.ndarray:
        """Leaf value for each window, shape (n,)."""
        return self.leaf_values[self.apply(patches)].astype(np.float64)


# ===========================
# Detector model
# ===========================

@dataclass(frozen=True)
class NormalizedRegion:
    """Detection window as offsets and scales relative to the scanned region."""

    row: float
    col: float
    row_scale: float
    col_scale: float

    @classmethod
    def unit(cls) -> "NormalizedRegion":
        return cls(0.0, 0.0, 1.0, 1.0)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.row, self.col, self.row_scale, self.col_scale)


class Cascade:
    """Ordered (stage classifier, threshold) pairs; stage 0 is evaluated first."""

    def __init__(
        self,
        stages: Optional[Sequence[StageClassifier]] = None,
        thresholds: Optional[Sequence[float]] = None
    ):
        stages = list(stages) if stages is not None else []
        thresholds = [float(t) for t in thresholds] if thresholds is not None else []
        if len(stages) != len(thresholds):
            raise ValueError(
                f"got {len(stages)} stages but {len(thresholds)} thresholds"
            )
        self._stages: List[StageClassifier] = stages
        self._thresholds: List[float] = thresholds

    def add_stage(self, stage: StageClassifier, threshold: float) -> None:
        self._stages.append(stage)
        self._thresholds.append(float(threshold))

    @property
    def stages(self) -> Tuple[StageClassifier, ...]:
        return tuple(self._stages)

    @property
    def thresholds(self) -> Tuple[float, ...]:
        return tuple(self._thresholds)

    @property
    def n_stages(self) -> int:
        return len(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __iter__(self) -> Iterator[Tuple[StageClassifier, float]]:
        return iter(list(zip(self._stages, self._thresholds)))


@dataclass
class PicoClassifier:
    """A cascade plus the normalised region it was trained for."""

    cascade: Cascade
    normalized_region: NormalizedRegion = field(default_factory=NormalizedRegion.unit)
