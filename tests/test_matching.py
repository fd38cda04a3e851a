import numpy as np
import pytest

from slamkit.matching import Match, distance_range, filter_matches, hamming_distance, match_descriptors


def test_hamming_distance_identity_and_symmetry():
    a = bytes([1, 2, 3, 200])
    b = bytes([7, 2, 0, 13])
    assert hamming_distance(a, a) == 0
    assert hamming_distance(a, b) == hamming_distance(b, a)


def test_hamming_distance_full_byte():
    assert hamming_distance(b"\x00", b"\xff") == 8


def test_hamming_distance_length_mismatch():
    with pytest.raises(ValueError):
        hamming_distance(b"\x00\x01", b"\x00")


def test_match_self_gives_identity():
    rng = np.random.default_rng(0)
    d = rng.integers(0, 256, size=(6, 32), dtype=np.uint8)
    matches = match_descriptors(d, d)
    assert [(m.query_idx, m.train_idx) for m in matches] == [(i, i) for i in range(6)]
    assert all(m.distance == 0.0 for m in matches)


def test_match_distance_agrees_with_hamming():
    rng = np.random.default_rng(1)
    d1 = rng.integers(0, 256, size=(4, 8), dtype=np.uint8)
    d2 = rng.integers(0, 256, size=(5, 8), dtype=np.uint8)
    for m in match_descriptors(d1, d2):
        assert m.distance == hamming_distance(d1[m.query_idx], d2[m.train_idx])
        others = [hamming_distance(d1[m.query_idx], row) for row in d2]
        assert m.distance == min(others)
        assert m.train_idx == others.index(min(others))


def test_match_empty():
    assert match_descriptors(np.zeros((0, 8), np.uint8), np.zeros((3, 8), np.uint8)) == []


def test_distance_range():
    matches = [Match(0, 0, 12.0), Match(1, 3, 4.0), Match(2, 1, 40.0)]
    assert distance_range(matches) == (4.0, 40.0)
    with pytest.raises(ValueError):
        distance_range([])


def test_filter_uses_floor_when_min_is_small():
    matches = [Match(0, 0, 4.0), Match(1, 1, 30.0), Match(2, 2, 31.0)]
    kept = filter_matches(matches)
    assert kept == matches[:2]


def test_filter_uses_twice_min_when_larger():
    matches = [Match(0, 0, 20.0), Match(1, 1, 40.0), Match(2, 2, 41.0)]
    kept = filter_matches(matches, floor=30.0)
    assert kept == matches[:2]


def test_filter_empty():
    assert filter_matches([]) == []