"""Embedding vector helpers: normalization, blob encoding and similarity.

Vectors are stored as raw little-endian float32 components with no header,
so a 768-dimension embedding takes exactly 3072 bytes.
"""

from __future__ import annotations

import math
import struct
from collections.abc import Sequence

EMBEDDING_DIM = 768

_COMPONENT_SIZE = 4


def normalize(values: Sequence[float]) -> list[float]:
    """Scale *values* to unit length. A zero vector is returned unchanged."""
    norm = math.sqrt(sum(v * v for v in values))
    if norm == 0.0:
        return list(values)
    return [v / norm for v in values]


def encode(vector: Sequence[float]) -> bytes:
    """Serialize a vector to a little-endian float32 blob."""
    return struct.pack(f"<{len(vector)}f", *vector)


def decode(data: bytes) -> list[float]:
    """Deserialize a blob produced by :func:`encode`."""
    if len(data) % _COMPONENT_SIZE:
        raise ValueError(f"Embedding blob length {len(data)} is not a multiple of 4")
    return list(struct.unpack(f"<{len(data) // _COMPONENT_SIZE}f", data))


def similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two unit vectors (their dot product).

    Vectors of different lengths are unrelated and score 0.0.
    """
    if len(a) != len(b):
        return 0.0
    return sum(x * y for x, y in zip(a, b, strict=True))
