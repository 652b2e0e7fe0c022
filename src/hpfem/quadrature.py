"""Gauss-Legendre quadrature."""

from __future__ import annotations

from functools import lru_cache

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import eigh_tridiagonal


@lru_cache(maxsize=64)
def _gauss_legendre(n: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    if n == 1:
        nodes, weights = np.zeros(1), np.full(1, 2.0)
        nodes.setflags(write=False)
        weights.setflags(write=False)
        return nodes, weights
    k = np.arange(1, n, dtype=np.float64)
    beta = k / np.sqrt(4.0 * k**2 - 1.0)
    nodes, vectors = eigh_tridiagonal(np.zeros(n), beta)
    weights = 2.0 * vectors[0, :] ** 2
    nodes.setflags(write=False)
    weights.setflags(write=False)
    return nodes, weights


def gauss_legendre(n: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Nodes and weights of the n-point rule on [-1, 1] (Golub-Welsch).

    The nodes are the eigenvalues of the symmetric Jacobi matrix of the
    Legendre recurrence; the weights come from the first component of each
    normalised eigenvector. Exact for polynomials up to degree 2n - 1.
    """
    if n < 1:
        raise ValueError(f"Quadrature needs at least one point, got {n}")
    return _gauss_legendre(int(n))


def map_to_range(points: NDArray[np.float64], rng: tuple[float, float]) -> NDArray[np.float64]:
    """Affinely map points on [-1, 1] into ``rng`` (x * s + o)."""
    scale = (rng[1] - rng[0]) / 2.0
    offset = (rng[1] + rng[0]) / 2.0
    return points * scale + offset


def default_num_points(max_order: int) -> int:
    """Points per axis needed to integrate products of two order-``max_order`` functions."""
    return max_order + 2
