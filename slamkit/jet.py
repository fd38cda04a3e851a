"""First-order dual numbers ("jets") for exact automatic differentiation.

A jet is ``a + sum_i v[i] * t_i`` where the infinitesimals ``t_i`` square
to zero.  Evaluating a function on jets yields its value in ``a`` and its
gradient in ``v``.
"""

from __future__ import annotations

import math
from numbers import Real

import numpy as np

__all__ = ["Jet"]


class Jet:
    """A scalar part ``a`` plus an infinitesimal part ``v``."""

    __slots__ = ("a", "v")

    # Make numpy scalars and arrays defer to the reflected operators.
    __array_ufunc__ = None

    def __init__(self, a, v):
        self.a = float(a)
        self.v = np.array(v, dtype=float).reshape(-1)

    @classmethod
    def variable(cls, value, k, dimension):
        """Jet ``value + t_k`` in a space with ``dimension`` infinitesimals."""
        if not 0 <= k < dimension:
            raise IndexError(f"infinitesimal index {k} out of range for dimension {dimension}")
        v = np.zeros(dimension)
        v[k] = 1.0
        return cls(value, v)

    @classmethod
    def constant(cls, value, dimension):
        """Jet ``value + 0``."""
        return cls(value, np.zeros(dimension))

    @property
    def dimension(self):
        return self.v.shape[0]

    def _check(self, other):
        if other.v.shape != self.v.shape:
            raise ValueError(
                f"jet dimensions differ: {self.v.shape[0]} and {other.v.shape[0]}"
            )
        return other

    def __pos__(self):
        return self

    def __neg__(self):
        return Jet(-self.a, -self.v)

    def __add__(self, other):
        if isinstance(other, Jet):
            self._check(other)
            return Jet(self.a + other.a, self.v + other.v)
        if isinstance(other, Real):
            return Jet(self.a + other, self.v.copy())
        return NotImplemented

    def __radd__(self, other):
        if isinstance(other, Real):
            return Jet(other + self.a, self.v.copy())
        return NotImplemented

    def __sub__(self, other):
        if isinstance(other, Jet):
            self._check(other)
            return Jet(self.a - other.a, self.v - other.v)
        if isinstance(other, Real):
            return Jet(self.a - other, self.v.copy())
        return NotImplemented

    def __rsub__(self, other):
        if isinstance(other, Real):
            return Jet(other - self.a, -self.v)
        return NotImplemented

    def __mul__(self, other):
        if isinstance(other, Jet):
            self._check(other)
            return Jet(self.a * other.a, self.a * other.v + self.v * other.a)
        if isinstance(other, Real):
            return Jet(self.a * other, self.v * other)
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, Real):
            return Jet(self.a * other, self.v * other)
        return NotImplemented

    def __truediv__(self, other):
        if isinstance(other, Jet):
            self._check(other)
            # (a + u) / (b + v) = a/b + (u - (a/b) v) / b, since v*v = 0.
            inverse = 1.0 / other.a
            ratio = self.a * inverse
            return Jet(ratio, (self.v - ratio * other.v) * inverse)
        if isinstance(other, Real):
            inverse = 1.0 / other
            return Jet(self.a * inverse, self.v * inverse)
        return NotImplemented

    def __rtruediv__(self, other):
        if isinstance(other, Real):
            minus_s_over_a2 = -other / (self.a * self.a)
            return Jet(other / self.a, self.v * minus_s_over_a2)
        return NotImplemented

    def __pow__(self, other):
        if isinstance(other, Jet):
            self._check(other)
            value = self.a**other.a
            d_base = other.a * self.a ** (other.a - 1.0)
            d_exponent = value * math.log(self.a)
            return Jet(value, d_base * self.v + d_exponent * other.v)
        if isinstance(other, Real):
            g = float(other)
            return Jet(self.a**g, g * self.a ** (g - 1.0) * self.v)
        return NotImplemented

    def __rpow__(self, other):
        if isinstance(other, Real):
            f = float(other)
            value = f**self.a
            return Jet(value, math.log(f) * value * self.v)
        return NotImplemented

    @staticmethod
    def _scalar(other):
        if isinstance(other, Jet):
            return other.a
        if isinstance(other, Real):
            return other
        return None

    def __lt__(self, other):
        s = self._scalar(other)
        return NotImplemented if s is None else self.a < s

    def __le__(self, other):
        s = self._scalar(other)
        return NotImplemented if s is None else self.a <= s

    def __gt__(self, other):
        s = self._scalar(other)
        return NotImplemented if s is None else self.a > s

    def __ge__(self, other):
        s = self._scalar(other)
        return NotImplemented if s is None else self.a >= s

    def __eq__(self, other):
        s = self._scalar(other)
        return NotImplemented if s is None else self.a == s

    def __ne__(self, other):
        s = self._scalar(other)
        return NotImplemented if s is None else self.a != s

    __hash__ = None

    def __str__(self):
        parts = " ".join(f"{x:g}" for x in self.v)
        return f"[{self.a:g} ; {parts}]"

    def __repr__(self):
        return f"Jet(a={self.a!r}, v={self.v.tolist()!r})"