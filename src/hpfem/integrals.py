"""Bilinear forms over pairs of H(curl) basis functions.

Both forms separate into products of 1D integrals because every basis
function is a tensor product and every element is an axis-aligned rectangle.
``PairSamples`` holds those 1D integrals (Gram tables) for one pair of
elements over one integration region; the numba kernels combine them for
every (p, q) pair of basis functions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from numba import njit
from numpy.typing import NDArray

from .basis import POLY, POLY_D1, POWER, ElemMap, ShapeFn
from .dof import BasisDir, BasisSpec
from .quadrature import map_to_range

DIR_U, DIR_V = 0, 1


@dataclass(frozen=True)
class SpecArrays:
    """Directions and indices of a list of basis functions, as int arrays."""

    dirs: NDArray[np.int64]
    i: NDArray[np.int64]
    j: NDArray[np.int64]

    @classmethod
    def from_specs(cls, specs: list[BasisSpec]) -> SpecArrays:
        dirs = np.array([DIR_U if s.dir is BasisDir.U else DIR_V for s in specs], dtype=np.int64)
        return cls(
            dirs=dirs,
            i=np.array([s.i for s in specs], dtype=np.int64),
            j=np.array([s.j for s in specs], dtype=np.int64),
        )

    def __len__(self) -> int:
        return len(self.dirs)


@dataclass(frozen=True)
class PairSamples:
    """1D Gram tables for basis functions of element P against element Q.

    Integration runs over Q's region, which lies inside P (P == Q for local
    pairs). ``gx[a, b, m, n]`` is the integral over t in [-1, 1] of family
    ``a`` of order m for P times family ``b`` of order n for Q, both sampled
    at the same physical x. ``jac`` is (hx_P, hy_P, hx_Q, hy_Q).
    """

    gx: NDArray[np.float64]
    gy: NDArray[np.float64]
    jac: NDArray[np.float64]


def sample_pair(
    shape_fn: ShapeFn,
    max_n: int,
    points: NDArray[np.float64],
    weights: NDArray[np.float64],
    p_map: ElemMap,
    q_map: ElemMap,
    p_sub_range: tuple[tuple[float, float], tuple[float, float]],
) -> PairSamples:
    """Build the Gram tables of P (restricted to ``p_sub_range``) against Q."""
    q_tx = shape_fn.tables(max_n, points)
    p_tx = shape_fn.tables(max_n, map_to_range(points, p_sub_range[0]))
    p_ty = shape_fn.tables(max_n, map_to_range(points, p_sub_range[1]))
    gx = np.einsum("amq,bnq,q->abmn", p_tx, q_tx, weights)
    gy = np.einsum("amq,bnq,q->abmn", p_ty, q_tx, weights)
    jac = np.array([p_map.hx, p_map.hy, q_map.hx, q_map.hy])
    return PairSamples(gx=gx, gy=gy, jac=jac)


@njit(nogil=True)
def _inner_kernel(p_dirs, p_i, p_j, q_dirs, q_i, q_j, gx, gy, jac):
    n_p, n_q = len(p_dirs), len(q_dirs)
    out = np.zeros((n_p, n_q))
    area = jac[2] * jac[3]
    for a in range(n_p):
        for b in range(n_q):
            if p_dirs[a] != q_dirs[b]:
                continue
            if p_dirs[a] == DIR_U:
                val = gx[POWER, POWER, p_i[a], q_i[b]] * gy[POLY, POLY, p_j[a], q_j[b]]
                out[a, b] = val * area / (jac[0] * jac[2])
            else:
                val = gx[POLY, POLY, p_i[a], q_i[b]] * gy[POWER, POWER, p_j[a], q_j[b]]
                out[a, b] = val * area / (jac[1] * jac[3])
    return out


@njit(nogil=True)
def _curl_curl_kernel(p_dirs, p_i, p_j, q_dirs, q_i, q_j, gx, gy, jac):
    n_p, n_q = len(p_dirs), len(q_dirs)
    out = np.zeros((n_p, n_q))
    scale = 1.0 / (jac[0] * jac[1])
    for a in range(n_p):
        for b in range(n_q):
            pd, qd = p_dirs[a], q_dirs[b]
            if pd == DIR_U and qd == DIR_U:
                val = gx[POWER, POWER, p_i[a], q_i[b]] * gy[POLY_D1, POLY_D1, p_j[a], q_j[b]]
            elif pd == DIR_V and qd == DIR_V:
                val = gx[POLY_D1, POLY_D1, p_i[a], q_i[b]] * gy[POWER, POWER, p_j[a], q_j[b]]
            elif pd == DIR_U:
                val = -gx[POWER, POLY_D1, p_i[a], q_i[b]] * gy[POLY_D1, POWER, p_j[a], q_j[b]]
            else:
                val = -gx[POLY_D1, POWER, p_i[a], q_i[b]] * gy[POWER, POLY_D1, p_j[a], q_j[b]]
            out[a, b] = val * scale
    return out


class Integral(ABC):
    """A bilinear form evaluated from ``PairSamples``."""

    name: str = ""

    @abstractmethod
    def integrate(self, p: SpecArrays, q: SpecArrays, samples: PairSamples) -> NDArray[np.float64]:
        """Matrix of the form over every (p, q) pair, shape (len(p), len(q))."""


class L2InnerProduct(Integral):
    """<f_p, f_q> over the region (mass matrix)."""

    name = "inner"

    def integrate(self, p, q, samples):
        return _inner_kernel(p.dirs, p.i, p.j, q.dirs, q.i, q.j, samples.gx, samples.gy, samples.jac)


class CurlCurl(Integral):
    """<curl f_p, curl f_q> over the region (stiffness matrix)."""

    name = "curl_curl"

    def integrate(self, p, q, samples):
        return _curl_curl_kernel(
            p.dirs, p.i, p.j, q.dirs, q.i, q.j, samples.gx, samples.gy, samples.jac
        )


INTEGRALS: dict[str, type[Integral]] = {
    L2InnerProduct.name: L2InnerProduct,
    CurlCurl.name: CurlCurl,
}


def get_integral(name: str) -> Integral:
    try:
        return INTEGRALS[name]()
    except KeyError:
        raise ValueError(f"Unknown integral '{name}'; choose from {sorted(INTEGRALS)}") from None
