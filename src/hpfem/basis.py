"""Hierarchical shape functions and the H(curl) vector basis.

A shape-function strategy provides two 1D families on [-1, 1]:

- ``power``: the polynomial running along a function's direction
- ``poly``: the transverse polynomial; ``poly_0 = 1 - x`` and
  ``poly_1 = 1 + x`` are non-zero at one end each, higher members vanish at
  both ends

The vector basis on an element with half-widths (hx, hy) is::

    f_u[i, j](u, v) = power_i(u) * poly_j(v) / hx  * x_hat
    f_v[i, j](u, v) = poly_i(u) * power_j(v) / hy  * y_hat
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache

import numpy as np
from numpy.polynomial import legendre as L
from numpy.typing import NDArray

from .dof import BasisDir
from .quadrature import map_to_range

# Row indices of the stacked 1D tables returned by ``ShapeFn.tables``
POWER, POLY, POLY_D1, POWER_D1 = 0, 1, 2, 3


class ShapeFn(ABC):
    """1D shape-function family."""

    name: str = ""

    @abstractmethod
    def power(self, n: int, x: NDArray) -> NDArray: ...

    @abstractmethod
    def power_d1(self, n: int, x: NDArray) -> NDArray: ...

    @abstractmethod
    def poly(self, n: int, x: NDArray) -> NDArray: ...

    @abstractmethod
    def poly_d1(self, n: int, x: NDArray) -> NDArray: ...

    def tables(self, max_n: int, x: NDArray) -> NDArray[np.float64]:
        """Values of power, poly, poly' and power' for orders 0..max_n.

        Returns
        -------
        ndarray (4, max_n + 1, len(x))
        """
        x = np.asarray(x, dtype=np.float64)
        out = np.empty((4, max_n + 1, x.size))
        for n in range(max_n + 1):
            out[POWER, n] = self.power(n, x)
            out[POLY, n] = self.poly(n, x)
            out[POLY_D1, n] = self.poly_d1(n, x)
            out[POWER_D1, n] = self.power_d1(n, x)
        return out


class KOLShapeFn(ShapeFn):
    """Monomial family: power x^n; poly 1-x, 1+x, then x^n - 1 / x^n - x."""

    name = "kol"

    def power(self, n, x):
        return np.power(x, n)

    def power_d1(self, n, x):
        return n * np.power(x, n - 1) if n > 0 else np.zeros_like(x)

    def poly(self, n, x):
        if n == 0:
            return 1.0 - x
        if n == 1:
            return 1.0 + x
        return np.power(x, n) - (1.0 if n % 2 == 0 else x)

    def poly_d1(self, n, x):
        if n == 0:
            return -np.ones_like(x)
        if n == 1:
            return np.ones_like(x)
        return n * np.power(x, n - 1) - (0.0 if n % 2 == 0 else 1.0)


@lru_cache(maxsize=None)
def _q_coefficients(n: int) -> NDArray[np.float64]:
    """Legendre coefficients of the n-th zero-endpoint function (n >= 2).

    Q_n = L_n - sum_k (2k + 1) L_k / S_n over k < n with the parity of n,
    where S_n = sum_k (2k + 1); scaled to unit L2 norm on [-1, 1].
    """
    ks = np.arange(n % 2, n, 2)
    weights = 2 * ks + 1
    total = weights.sum()
    coeffs = np.zeros(n + 1)
    coeffs[ks] = -weights / total
    coeffs[n] = 1.0
    norm = np.sqrt(np.sum(coeffs**2 * 2.0 / (2 * np.arange(n + 1) + 1)))
    return coeffs / norm


class MaxOrthoShapeFn(ShapeFn):
    """Legendre family: power L_n; poly 1-x, 1+x, then normalised Legendre sums."""

    name = "max_ortho"

    def power(self, n, x):
        return L.legval(x, np.eye(n + 1)[n])

    def power_d1(self, n, x):
        return L.legval(x, L.legder(np.eye(n + 1)[n])) if n > 0 else np.zeros_like(x)

    def poly(self, n, x):
        if n == 0:
            return 1.0 - x
        if n == 1:
            return 1.0 + x
        return L.legval(x, _q_coefficients(n))

    def poly_d1(self, n, x):
        if n == 0:
            return -np.ones_like(x)
        if n == 1:
            return np.ones_like(x)
        return L.legval(x, L.legder(_q_coefficients(n)))


SHAPE_FNS: dict[str, type[ShapeFn]] = {
    KOLShapeFn.name: KOLShapeFn,
    MaxOrthoShapeFn.name: MaxOrthoShapeFn,
}


def get_shape_fn(name: str) -> ShapeFn:
    try:
        return SHAPE_FNS[name]()
    except KeyError:
        raise ValueError(f"Unknown shape function '{name}'; choose from {sorted(SHAPE_FNS)}") from None


# ============================================================================
# Vector basis evaluation
# ============================================================================


@dataclass(frozen=True)
class ElemMap:
    """Affine map from an element's parametric square to physical space."""

    x_range: tuple[float, float]
    y_range: tuple[float, float]

    @property
    def hx(self) -> float:
        return (self.x_range[1] - self.x_range[0]) / 2.0

    @property
    def hy(self) -> float:
        return (self.y_range[1] - self.y_range[0]) / 2.0

    def to_physical(self, u: NDArray, v: NDArray) -> tuple[NDArray, NDArray]:
        return map_to_range(u, self.x_range), map_to_range(v, self.y_range)

    def to_parametric(self, x: NDArray, y: NDArray) -> tuple[NDArray, NDArray]:
        u = (np.asarray(x) - (self.x_range[0] + self.hx)) / self.hx
        v = (np.asarray(y) - (self.y_range[0] + self.hy)) / self.hy
        return u, v


def eval_vector(
    shape_fn: ShapeFn, dir: BasisDir, i: int, j: int, emap: ElemMap, u: NDArray, v: NDArray
) -> NDArray[np.float64]:
    """Physical (x, y) components of one basis function at parametric points.

    Returns
    -------
    ndarray (2, n_points)
    """
    u = np.asarray(u, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    out = np.zeros((2,) + u.shape)
    if dir is BasisDir.U:
        out[0] = shape_fn.power(i, u) * shape_fn.poly(j, v) / emap.hx
    elif dir is BasisDir.V:
        out[1] = shape_fn.poly(i, u) * shape_fn.power(j, v) / emap.hy
    return out


def eval_curl(
    shape_fn: ShapeFn, dir: BasisDir, i: int, j: int, emap: ElemMap, u: NDArray, v: NDArray
) -> NDArray[np.float64]:
    """z-component of the curl of one basis function at parametric points."""
    u = np.asarray(u, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    jac = emap.hx * emap.hy
    if dir is BasisDir.U:
        return -shape_fn.power(i, u) * shape_fn.poly_d1(j, v) / jac
    if dir is BasisDir.V:
        return shape_fn.poly_d1(i, u) * shape_fn.power(j, v) / jac
    return np.zeros_like(u)
