"""Jacobians of vector-valued functions of several parameter blocks via jets.

All parameter blocks are joined into one vector of infinitesimals. Every
block is seeded with its own slice of an identity matrix. The functor then
runs on the jets, and the value and Jacobian blocks are read back from its
outputs.
"""

from __future__ import annotations

from numbers import Real

import numpy as np

from slamkit.jet import Jet

__all__ = [
    "DifferentiationError",
    "make_perturbation",
    "take_value_part",
    "take_derivative_part",
    "differentiate",
]


class DifferentiationError(RuntimeError):
    """Raised when the functor reports that it could not be evaluated."""


def make_perturbation(offset, values, dimension):
    """Jets for ``values`` whose infinitesimals start at ``offset``.

    Element ``j`` gets the value ``values[j]`` and the unit infinitesimal
    ``t_{offset + j}`` in a space of ``dimension`` infinitesimals.
    """
    values = np.asarray(values, dtype=float).reshape(-1)
    if offset < 0 or offset + values.shape[0] > dimension:
        raise ValueError(
            f"block of {values.shape[0]} at offset {offset} does not fit in dimension {dimension}"
        )
    return [Jet.variable(value, offset + j, dimension) for j, value in enumerate(values)]


def take_value_part(outputs):
    """The scalar parts of a sequence of jets."""
    return np.array([jet.a for jet in outputs], dtype=float)


def take_derivative_part(outputs, offset, size):
    """The ``len(outputs) x size`` block of derivatives starting at ``offset``."""
    outputs = list(outputs)
    if not outputs:
        return np.zeros((0, size))
    return np.array([jet.v[offset : offset + size] for jet in outputs], dtype=float).reshape(
        len(outputs), size
    )


def differentiate(functor, parameters, num_outputs):
    """Evaluate ``functor`` and its Jacobian with respect to every parameter block.

    ``functor`` is called with one list of jets per parameter block. It
    returns a sequence of ``num_outputs`` jets or real numbers. If it returns
    ``None`` or ``False``, the evaluation failed.

    Returns ``(values, jacobians)``. ``values`` is an array of length
    ``num_outputs``. ``jacobians`` holds one ``num_outputs x block_size``
    array per block.
    """
    blocks = [np.asarray(p, dtype=float).reshape(-1) for p in parameters]
    sizes = [block.shape[0] for block in blocks]
    dimension = sum(sizes)

    offsets = []
    position = 0
    for size in sizes:
        offsets.append(position)
        position += size

    jet_blocks = [
        make_perturbation(offset, block, dimension) for offset, block in zip(offsets, blocks)
    ]

    result = functor(*jet_blocks)
    if result is None or result is False:
        raise DifferentiationError("functor evaluation failed")

    outputs = []
    for item in result:
        if isinstance(item, Jet):
            if item.dimension != dimension:
                raise ValueError(
                    f"output jet has dimension {item.dimension}, expected {dimension}"
                )
            outputs.append(item)
        elif isinstance(item, Real):
            outputs.append(Jet.constant(item, dimension))
        else:
            raise TypeError(f"functor output must be a Jet or a real number, got {type(item).__name__}")
    if len(outputs) != num_outputs:
        raise ValueError(f"functor returned {len(outputs)} outputs, expected {num_outputs}")

    values = take_value_part(outputs)
    jacobians = [
        take_derivative_part(outputs, offset, size) for offset, size in zip(offsets, sizes)
    ]
    return values, jacobians