"""Eigensolver backends for a sampled GEP."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray
from scipy import linalg
from scipy.sparse import linalg as sparse_linalg

from .errors import EigensolverError
from .galerkin import GEP

log = logging.getLogger(__name__)


@dataclass
class EigenPair:
    value: float
    vector: NDArray[np.float64]

    def normalized_eigenvector(self) -> NDArray[np.float64]:
        """L2-normalised copy of the eigenvector."""
        return self.vector / np.linalg.norm(self.vector)


def solve_gep_dense(gep: GEP, min_value: float | None = None) -> list[EigenPair]:
    """All eigenpairs of the GEP, ascending.

    ``min_value`` drops eigenvalues below a threshold (e.g. the gradient
    null space of the curl-curl operator).
    """
    a, b = gep.to_dense()
    try:
        values, vectors = linalg.eigh(a, b)
    except (linalg.LinAlgError, ValueError) as exc:
        raise EigensolverError(f"Dense GEP solve failed: {exc}") from exc

    pairs = [EigenPair(float(v), vectors[:, k]) for k, v in enumerate(values)]
    if min_value is not None:
        pairs = [p for p in pairs if p.value >= min_value]
    return pairs


def solve_gep_sparse(gep: GEP, target: float, num_pairs: int = 1) -> list[EigenPair]:
    """Eigenpairs closest to ``target`` by shift-invert Lanczos, ascending."""
    n = gep.dimension
    if num_pairs >= n:
        log.warning(f"Requested {num_pairs} pairs from a {n}-DOF problem; using the dense solver")
        pairs = solve_gep_dense(gep)
        pairs.sort(key=lambda p: abs(p.value - target))
        return sorted(pairs[:num_pairs], key=lambda p: p.value)

    try:
        values, vectors = sparse_linalg.eigsh(
            gep.a.tocsc(), k=num_pairs, M=gep.b.tocsc(), sigma=target, which="LM"
        )
    except sparse_linalg.ArpackNoConvergence as exc:
        raise EigensolverError(f"Sparse GEP solve did not converge near {target}") from exc
    except (RuntimeError, ValueError) as exc:
        raise EigensolverError(f"Sparse GEP solve failed near {target}: {exc}") from exc

    order = np.argsort(values)
    log.info(f"Solved GEP near {target}: {values[order]}")
    return [EigenPair(float(values[k]), vectors[:, k]) for k in order]
