"""
Detector file format: packed binary stream rendered as a C byte-array body.

Binary layout (float32 / int32, little-endian by default):

    region.row, region.col, region.row_scale, region.col_scale   4 x float32
    number of stages                                             int32
    for each stage:
        number of learners                                       int32
        for each learner:
            tree depth                                           int32
            internal node codes                                  (depth - 1) x int32
            leaf values                                          depth x float32
        stage threshold                                          float32

The hex text lists every byte as ``0xhh, `` in rows of 32 and ends with a
``0x00`` sentinel line, matching the facefinder.ea files detector runtimes
#include directly.
"""

from pathlib import Path
from typing import Any, List, Tuple, Union
import logging
import os
import re
import numpy as np

from .cascade import Cascade, NormalizedRegion, PicoClassifier, PicoTree, StageClassifier

logger = logging.getLogger(__name__)

HEX_VALUES_PER_ROW = 32
_HEX_BYTE = re.compile(r"0x([0-9a-fA-F]{2})")

PathLike = Union[str, os.PathLike]


def _dtypes(byteorder: str) -> Tuple[np.dtype, np.dtype]:
    if byteorder not in ("<", ">", "="):
        raise ValueError(f"byteorder must be '<', '>' or '=', got {byteorder!r}")
    return np.dtype(f"{byteorder}f4"), np.dtype(f"{byteorder}i4")


def _int32(value: int, i4: np.dtype, what: str) -> bytes:
    value = int(value)
    if not np.iinfo(np.int32).min <= value <= np.iinfo(np.int32).max:
        raise ValueError(f"{what} {value} does not fit in int32")
    return np.array([value], dtype=i4).tobytes()


# ===========================
# Binary encoding
# ===========================

def _encode_learner(learner: Any, f4: np.dtype, i4: np.dtype) -> List[bytes]:
    depth = int(learner.tree_depth)
    codes = np.asarray(learner.internal_node_codes, dtype=np.int64).reshape(-1)
    leaves = np.asarray(learner.leaf_values, dtype=np.float64).reshape(-1)

    # Counts are implied by the depth, so they must agree with it
    if depth < 1 or codes.size != depth - 1 or leaves.size != depth:
        raise ValueError(
            f"learner of depth {depth} has {codes.size} internal node codes and "
            f"{leaves.size} leaf values; expected {depth - 1} and {depth}"
        )
    if codes.size and (codes.min() < np.iinfo(np.int32).min or codes.max() > np.iinfo(np.int32).max):
        raise ValueError("internal node codes must fit in int32")

    return [
        _int32(depth, i4, "tree depth"),
        codes.astype(i4).tobytes(),
        leaves.astype(f4).tobytes(),
    ]


def encode_binary(detector: PicoClassifier, byteorder: str = "<") -> bytes:
    """
    Pack a detector into the binary layout described in the module docstring.

    Learners may be any objects exposing ``tree_depth``,
    ``internal_node_codes`` and ``leaf_values``.

    Raises:
        ValueError: A learner's payload does not match its depth, or a count
            or code does not fit in int32.
    """
    f4, i4 = _dtypes(byteorder)
    region = detector.normalized_region
    cascade = detector.cascade

    chunks = [
        np.array(region.as_tuple(), dtype=f4).tobytes(),
        _int32(cascade.n_stages, i4, "number of stages"),
    ]
    for stage, threshold in cascade:
        learners = stage.learners
        chunks.append(_int32(len(learners), i4, "number of learners"))
        for learner in learners:
            chunks.extend(_encode_learner(learner, f4, i4))
        chunks.append(np.array([threshold], dtype=f4).tobytes())

    data = b"".join(chunks)
    logger.debug(f"Encoded {cascade.n_stages} stages into {len(data)} bytes")
    return data


# ===========================
# Binary decoding
# ===========================

class _Reader:
    """Sequential reader over a bytes buffer."""

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.offset = 0

    def read(self, dtype: np.dtype, count: int) -> np.ndarray:
        size = dtype.itemsize * count
        if self.offset + size > len(self.data):
            raise ValueError(
                f"truncated detector data: need {size} bytes at offset {self.offset}, "
                f"{len(self.data) - self.offset} left"
            )
        values = np.frombuffer(self.data, dtype=dtype, count=count, offset=self.offset)
        self.offset += size
        return values

    def read_count(self, i4: np.dtype, what: str) -> int:
        value = int(self.read(i4, 1)[0])
        if value < 0:
            raise ValueError(f"negative {what} {value} at offset {self.offset - 4}")
        return value


def decode_binary(data: bytes, byteorder: str = "<") -> PicoClassifier:
    """
    Unpack a detector written by :func:`encode_binary`.

    Learners come back as :class:`PicoTree`; values are the float32 values
    stored in the stream.

    Raises:
        ValueError: Truncated stream, negative counts, or trailing bytes.
    """
    f4, i4 = _dtypes(byteorder)
    reader = _Reader(data)

    row, col, row_scale, col_scale = (float(v) for v in reader.read(f4, 4))
    region = NormalizedRegion(row, col, row_scale, col_scale)

    cascade = Cascade()
    n_stages = reader.read_count(i4, "number of stages")
    for _ in range(n_stages):
        n_learners = reader.read_count(i4, "number of learners")
        learners = []
        for _ in range(n_learners):
            depth = reader.read_count(i4, "tree depth")
            if depth < 1:
                raise ValueError(f"tree depth must be >= 1, got {depth}")
            codes = reader.read(i4, depth - 1).astype(np.int32)
            leaves = reader.read(f4, depth).astype(np.float32)
            learners.append(PicoTree(depth, codes, leaves))
        threshold = float(reader.read(f4, 1)[0])
        cascade.add_stage(StageClassifier(learners=learners), threshold)

    if reader.offset != len(reader.data):
        raise ValueError(
            f"{len(reader.data) - reader.offset} trailing bytes after detector data"
        )

    return PicoClassifier(cascade=cascade, normalized_region=region)


# ===========================
# Hex text
# ===========================

def render_hex(data: bytes) -> str:
    """
    Render bytes as comma-separated ``0xhh`` values, 32 per row.

    Every row starts with ``" \\n\\t"``; the text ends with ``"\\n\\t0x00\\n"``.
    """
    parts = []
    for index, byte in enumerate(bytes(data)):
        if index % HEX_VALUES_PER_ROW == 0:
            parts.append(" \n\t")
        parts.append(f"0x{byte:02x}, ")

    # Sentinel byte found in facefinder.ea
    parts.append("\n\t0x00\n")
    return "".join(parts)


def parse_hex(text: str) -> bytes:
    """
    Inverse of :func:`render_hex`: the listed bytes without the trailing sentinel.

    Raises:
        ValueError: no byte values, or the text does not end with the
            ``"\\n\\t0x00"`` sentinel line.
    """
    values = _HEX_BYTE.findall(text)
    if not values:
        raise ValueError("no hex byte values found")
    if values[-1] != "00" or not text.rstrip("\r\n").endswith("\n\t0x00"):
        raise ValueError("hex text does not end with the 0x00 sentinel line")
    return bytes(int(v, 16) for v in values[:-1])


def write_hex_file(detector: PicoClassifier, path: PathLike, byteorder: str = "<") -> None:
    """
    Save a detector as a hex text file.

    The file is created or truncated and flushed to disk. I/O errors propagate;
    a partially written file is left as is.
    """
    text = render_hex(encode_binary(detector, byteorder=byteorder))

    # newline="" keeps "\n" unchanged on every platform
    with open(path, "w", encoding="ascii", newline="") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())

    logger.info(f"Saved detector with {detector.cascade.n_stages} stages to {path}")


def read_hex_file(path: PathLike, byteorder: str = "<") -> PicoClassifier:
    """Load a detector saved by :func:`write_hex_file`."""
    text = Path(path).read_text(encoding="ascii")
    return decode_binary(parse_hex(text), byteorder=byteorder)
