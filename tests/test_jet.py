import math

import numpy as np
import pytest

from slamkit.jet import Jet


def test_square_derivative_matches_worked_example():
    x = Jet.variable(10.0, 0, 1)
    f = x * x
    assert f.a == 100.0
    assert f.v[0] == 20.0


def test_two_variable_gradient():
    x = Jet.variable(1.0, 0, 2)
    y = Jet.variable(3.0, 1, 2)
    f = x * x + x * y
    assert f.a == 4.0
    np.testing.assert_allclose(f.v, [5.0, 1.0])


def test_constant_has_zero_infinitesimal():
    c = Jet.constant(7.5, 3)
    assert c.a == 7.5
    np.testing.assert_array_equal(c.v, np.zeros(3))


def test_variable_index_out_of_range():
    with pytest.raises(IndexError):
        Jet.variable(1.0, 3, 3)


def test_division_round_trip():
    x = Jet.variable(6.0, 0, 2)
    y = Jet.variable(3.0, 1, 2)
    back = (x / y) * y
    assert back.a == pytest.approx(x.a)
    np.testing.assert_allclose(back.v, x.v, atol=1e-12)


def test_scalar_division_round_trip():
    x = Jet.variable(4.0, 0, 1)
    back = (2.5 / x) * x
    assert back.a == pytest.approx(2.5)
    np.testing.assert_allclose(back.v, [0.0], atol=1e-12)
    half = x / 2.0
    assert (half * 2.0).a == pytest.approx(x.a)


def test_scalar_addition_and_subtraction_symmetry():
    x = Jet.variable(2.0, 0, 2)
    left = 3.0 + x
    right = x + 3.0
    assert left.a == right.a
    np.testing.assert_array_equal(left.v, right.v)
    a = 5.0 - x
    b = -(x - 5.0)
    assert a.a == b.a
    np.testing.assert_array_equal(a.v, b.v)


def test_numpy_scalar_defers_to_jet():
    x = Jet.variable(2.0, 0, 1)
    y = np.float64(3.0) * x
    assert isinstance(y, Jet)
    np.testing.assert_allclose(y.v, (x * 3.0).v)


def test_power_with_constant_exponent_matches_products():
    x = Jet.variable(1.7, 0, 1)
    p = x**3
    m = x * x * x
    assert p.a == pytest.approx(m.a)
    np.testing.assert_allclose(p.v, m.v)


def test_power_jet_exponent_agrees_with_scalar_forms():
    x = Jet.variable(1.3, 0, 2)
    y = Jet.variable(0.8, 1, 2)
    both = x ** Jet.constant(3.0, 2)
    scalar = x**3.0
    assert both.a == pytest.approx(scalar.a)
    np.testing.assert_allclose(both.v, scalar.v)
    base_const = Jet.constant(2.0, 2) ** y
    rpow = 2.0**y
    assert base_const.a == pytest.approx(rpow.a)
    np.testing.assert_allclose(base_const.v, rpow.v)
    assert rpow.v[1] == pytest.approx(math.log(2.0) * rpow.a)


def test_comparisons_use_scalar_part():
    x = Jet.variable(10.0, 0, 1)
    assert x < 11
    assert x > Jet.constant(9.0, 1)
    assert x <= 10.0
    assert x >= 10.0
    assert x == 10.0
    assert 10.0 == x
    assert x != 9.0


def test_dimension_mismatch_raises():
    with pytest.raises(ValueError):
        Jet.variable(1.0, 0, 2) + Jet.variable(1.0, 0, 3)


def test_str_format():
    assert str(Jet(1.5, [2.0, 3.0])) == "[1.5 ; 2 3]"