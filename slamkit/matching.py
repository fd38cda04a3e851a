"""Brute-force Hamming matching of binary descriptors and match filtering."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

__all__ = ["Match", "hamming_distance", "match_descriptors", "distance_range", "filter_matches"]


@dataclass(frozen=True)
class Match:
    query_idx: int
    train_idx: int
    distance: float


def _descriptors(d):
    arr = np.asarray(d, dtype=np.uint8)
    if arr.ndim != 2:
        raise ValueError(f"descriptors must be a 2D array of bytes, got {arr.ndim} dimensions")
    return arr


def hamming_distance(a, b):
    """Number of differing bits between two byte strings of equal length."""
    x = np.frombuffer(bytes(a), dtype=np.uint8) if isinstance(a, (bytes, bytearray)) else np.asarray(a, np.uint8)
    y = np.frombuffer(bytes(b), dtype=np.uint8) if isinstance(b, (bytes, bytearray)) else np.asarray(b, np.uint8)
    if x.shape != y.shape:
        raise ValueError(f"descriptor lengths differ: {x.size} and {y.size}")
    return int(np.unpackbits(np.bitwise_xor(x, y)).sum())


def match_descriptors(descriptors1, descriptors2):
    """Best match in ``descriptors2`` for every row of ``descriptors1``; ties go to the first."""
    d1 = _descriptors(descriptors1)
    d2 = _descriptors(descriptors2)
    if d1.shape[0] == 0 or d2.shape[0] == 0:
        return []
    if d1.shape[1] != d2.shape[1]:
        raise ValueError(f"descriptor lengths differ: {d1.shape[1]} and {d2.shape[1]}")
    xor = np.bitwise_xor(d1[:, None, :], d2[None, :, :])
    distances = np.unpackbits(xor, axis=2).sum(axis=2)
    best = distances.argmin(axis=1)
    return [Match(q, int(t), float(distances[q, t])) for q, t in enumerate(best)]


def distance_range(matches):
    """``(min_distance, max_distance)`` over the matches."""
    distances = [m.distance for m in matches]
    if not distances:
        raise ValueError("no matches to take a distance range of")
    return min(distances), max(distances)


def filter_matches(matches, floor=30.0):
    """Keep matches whose distance is at most ``max(2 * min_distance, floor)``."""
    matches = list(matches)
    if not matches:
        return []
    min_dist, _ = distance_range(matches)
    threshold = max(2.0 * min_dist, floor)
    return [m for m in matches if m.distance <= threshold]