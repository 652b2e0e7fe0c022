"""Galerkin sampling of a Domain into a sparse generalized eigenproblem.

For each element E with DOF-carrying basis functions:

- every pair of E's own functions is integrated over E (upper triangle)
- every function of E is integrated against every function of each
  descendant D over D's region, sampling E's functions at D's quadrature
  points through the parent-to-child affine map

Elements in different branches never overlap, so these two cases cover every
overlapping pair. Elements are processed independently on a worker pool and
their COO buffers are merged once all of them are done.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import sparse

from .basis import ElemMap, MaxOrthoShapeFn, ShapeFn
from .domain import Domain
from .errors import GalerkinSamplingError
from .h_refinement import UNIT_RANGE
from .integrals import CurlCurl, Integral, L2InnerProduct, SpecArrays, sample_pair
from .quadrature import default_num_points, gauss_legendre

log = logging.getLogger(__name__)


def default_num_workers() -> int:
    """Default worker pool size: one thread per available CPU."""
    return os.cpu_count() or 1


@dataclass
class GEP:
    """Generalized eigenvalue problem A x = lambda B x."""

    a: sparse.csr_matrix
    b: sparse.csr_matrix

    @property
    def dimension(self) -> int:
        return self.a.shape[0]

    def to_dense(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        return self.a.toarray(), self.b.toarray()

    def is_symmetric(self, tol: float = 1e-10) -> bool:
        for m in (self.a, self.b):
            diff = abs(m - m.T)
            scale = max(abs(m).max(), 1.0) if m.nnz else 1.0
            if diff.nnz and diff.max() > tol * scale:
                return False
        return True


@dataclass
class SamplingMetrics:
    """Summary of one sampling run."""

    num_dofs: int = 0
    num_elems: int = 0
    num_gauss_quad: int = 0
    num_workers: int = 0
    nnz_a: int = 0
    nnz_b: int = 0
    wall_time_seconds: float = 0.0

    def to_mlflow(self) -> dict:
        """Convert to an MLflow metrics dict."""
        return {k: float(v) for k, v in self.__dict__.items()}

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([self.__dict__])


@dataclass(frozen=True)
class _SamplingContext:
    domain: Domain
    shape_fn: ShapeFn
    a_integral: Integral
    b_integral: Integral
    max_n: int
    points: NDArray[np.float64]
    weights: NDArray[np.float64]


def galerkin_sample_gep(
    domain: Domain,
    shape_fn: ShapeFn | None = None,
    a_integral: Integral | None = None,
    b_integral: Integral | None = None,
    num_gauss_quad: int | None = None,
    pool: Executor | None = None,
    metrics: SamplingMetrics | None = None,
) -> GEP:
    """Assemble the stiffness (A) and mass (B) matrices of a Domain.

    Parameters
    ----------
    domain : Domain
        Finished domain with at least one DOF
    shape_fn : ShapeFn, optional
        1D shape-function family (default ``MaxOrthoShapeFn``)
    a_integral, b_integral : Integral, optional
        Forms for A and B (default ``CurlCurl`` and ``L2InnerProduct``).
        A entries are divided by the element's relative permeability and B
        entries multiplied by its relative permittivity (real parts).
    num_gauss_quad : int, optional
        Gauss-Legendre points per axis; chosen from the largest expansion
        order when omitted
    pool : Executor, optional
        Worker pool for the per-element work. Thread and process pools both
        work; the per-element task and its context are picklable. A
        ``ThreadPoolExecutor`` with ``default_num_workers()`` threads is
        created (and shut down) when omitted.

    Returns
    -------
    GEP
        Symmetric sparse matrices of dimension ``domain.num_dofs``

    Raises
    ------
    GalerkinSamplingError
        If the domain has no DOFs or a diagonal entry comes out non-positive
        or non-finite.
    """
    if domain.num_dofs == 0:
        raise GalerkinSamplingError("Domain has no degrees of freedom; cannot sample a GEP")

    start = time.perf_counter()
    shape_fn = shape_fn or MaxOrthoShapeFn()
    a_integral = a_integral or CurlCurl()
    b_integral = b_integral or L2InnerProduct()

    max_n = max(domain.mesh.max_expansion_orders())
    required = default_num_points(max_n)
    if num_gauss_quad is None:
        num_gauss_quad = required
    elif num_gauss_quad < required - 1:
        log.warning(
            f"{num_gauss_quad} quadrature points under-integrate order {max_n} "
            f"(needs {required - 1})"
        )
    points, weights = gauss_legendre(num_gauss_quad)
    ctx = _SamplingContext(domain, shape_fn, a_integral, b_integral, max_n, points, weights)

    elem_ids = [e.id for e in domain.mesh.elems if domain.local_basis_specs(e.id)]
    work = partial(_sample_elem, ctx)
    if pool is None:
        num_workers = default_num_workers()
        with ThreadPoolExecutor(max_workers=num_workers) as own_pool:
            results = list(own_pool.map(work, elem_ids))
    else:
        # size of a caller-owned pool is not recorded
        num_workers = 0
        results = list(pool.map(work, elem_ids))

    gep = _merge(results, domain.num_dofs)
    _check_diagonals(gep)

    if metrics is not None:
        metrics.num_dofs = domain.num_dofs
        metrics.num_elems = len(elem_ids)
        metrics.num_gauss_quad = num_gauss_quad
        metrics.num_workers = num_workers
        metrics.nnz_a = gep.a.nnz
        metrics.nnz_b = gep.b.nnz
        metrics.wall_time_seconds = time.perf_counter() - start
    log.info(
        f"Sampled GEP: {domain.num_dofs} DOFs, nnz(A)={gep.a.nnz}, nnz(B)={gep.b.nnz}, "
        f"{num_gauss_quad} points/axis, {time.perf_counter() - start:.2f}s"
    )
    return gep


def _sample_elem(ctx: _SamplingContext, elem_id: int):
    """COO contributions (rows, cols, a, b) of one element and its descendants."""
    domain = ctx.domain
    mesh = domain.mesh
    elem = mesh.elems[elem_id]
    local_specs = domain.local_basis_specs(elem_id)
    p = SpecArrays.from_specs(local_specs)
    p_dofs = np.array([s.dof_id for s in local_specs], dtype=np.int64)
    p_coef = np.array(domain.local_basis_coefficients(elem_id))
    p_map = ElemMap(*mesh.elem_bounds(elem_id))

    mu = elem.materials.mu_rel.real
    eps = elem.materials.eps_rel.real

    rows, cols, a_vals, b_vals = [], [], [], []

    # local - local
    samples = sample_pair(ctx.shape_fn, ctx.max_n, ctx.points, ctx.weights, p_map, p_map, UNIT_RANGE)
    a_loc = ctx.a_integral.integrate(p, p, samples)
    b_loc = ctx.b_integral.integrate(p, p, samples)
    iu, ju = np.triu_indices(len(p))
    coef = p_coef[iu] * p_coef[ju]
    rows.append(p_dofs[iu])
    cols.append(p_dofs[ju])
    a_vals.append(a_loc[iu, ju] * coef / mu)
    b_vals.append(b_loc[iu, ju] * coef * eps)

    # local - descendants
    for desc_id, desc_specs in domain.descendant_basis_specs(elem_id):
        desc = mesh.elems[desc_id]
        q = SpecArrays.from_specs(desc_specs)
        q_dofs = np.array([s.dof_id for s in desc_specs], dtype=np.int64)
        q_coef = np.array(domain.local_basis_coefficients(desc_id))
        q_map = ElemMap(*mesh.elem_bounds(desc_id))
        sub_range = mesh.relative_range(elem_id, desc_id)

        samples = sample_pair(ctx.shape_fn, ctx.max_n, ctx.points, ctx.weights, p_map, q_map, sub_range)
        a_desc = ctx.a_integral.integrate(p, q, samples)
        b_desc = ctx.b_integral.integrate(p, q, samples)
        coef = np.outer(p_coef, q_coef)
        rr, cc = np.meshgrid(p_dofs, q_dofs, indexing="ij")
        rows.append(rr.ravel())
        cols.append(cc.ravel())
        a_vals.append((a_desc * coef).ravel() / desc.materials.mu_rel.real)
        b_vals.append((b_desc * coef).ravel() * desc.materials.eps_rel.real)

    return (
        np.concatenate(rows),
        np.concatenate(cols),
        np.concatenate(a_vals),
        np.concatenate(b_vals),
    )


def _merge(results, n: int) -> GEP:
    """Sum upper-triangle contributions into full symmetric CSR matrices."""
    rows = np.concatenate([r[0] for r in results])
    cols = np.concatenate([r[1] for r in results])
    a_vals = np.concatenate([r[2] for r in results])
    b_vals = np.concatenate([r[3] for r in results])

    off = rows != cols
    full_rows = np.concatenate([rows, cols[off]])
    full_cols = np.concatenate([cols, rows[off]])
    a = sparse.csr_matrix(
        (np.concatenate([a_vals, a_vals[off]]), (full_rows, full_cols)), shape=(n, n)
    )
    b = sparse.csr_matrix(
        (np.concatenate([b_vals, b_vals[off]]), (full_rows, full_cols)), shape=(n, n)
    )
    a.eliminate_zeros()
    b.eliminate_zeros()
    return GEP(a=a, b=b)


def _check_diagonals(gep: GEP) -> None:
    a_diag = gep.a.diagonal()
    b_diag = gep.b.diagonal()
    if not (np.all(np.isfinite(a_diag)) and np.all(np.isfinite(b_diag))):
        raise GalerkinSamplingError("Non-finite diagonal entry in the sampled GEP")
    bad = np.flatnonzero(b_diag <= 0.0)
    if bad.size:
        raise GalerkinSamplingError(
            f"Singular mass matrix: {bad.size} DOFs with non-positive diagonal (first: {bad[0]})"
        )
