"""Basis-function specifications and trace matching.

Every element (leaf or interior) carries a tensor-product set of vector basis
functions described by ``BasisSpec``. Functions whose tangential trace is
non-zero on exactly one local edge are *edge* functions; all others are
*element* functions. Edge functions from the two elements that carry an edge
are identified pairwise by ``match_traces``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from .errors import DomainConstructionError

# Relative tolerance when comparing trace spans of two elements
SPAN_TOL = 1e-9


class BasisDir(Enum):
    U = 0
    V = 1
    W = 2


class BasisLoc(Enum):
    ELEM = "elem"
    EDGE = "edge"
    NODE = "node"


@dataclass(frozen=True)
class BasisSpec:
    """One local basis function of an element.

    ``i``/``j`` are the u/v polynomial indices. ``edge`` is the local edge
    index for edge functions and None otherwise.
    """

    elem_id: int
    dir: BasisDir
    i: int
    j: int
    loc: BasisLoc
    edge: int | None = None
    dof_id: int | None = None

    def with_dof(self, dof_id: int) -> BasisSpec:
        return replace(self, dof_id=dof_id)

    @property
    def tangential_order(self) -> int:
        """Index of the polynomial that runs along the edge."""
        return self.i if self.dir is BasisDir.U else self.j


def locate(dir: BasisDir, i: int, j: int) -> tuple[BasisLoc, int | None]:
    """Classify a basis function as living on an element or on a local edge."""
    if i >= 2 and j >= 2:
        return BasisLoc.ELEM, None
    if dir is BasisDir.U and j < 2:
        return BasisLoc.EDGE, j
    if dir is BasisDir.V and i < 2:
        return BasisLoc.EDGE, i + 2
    return BasisLoc.ELEM, None


def elem_basis_specs(elem_id: int, orders: tuple[int, int]) -> list[BasisSpec]:
    """All H(curl) basis functions of an element with expansion ``orders``.

    U-directed: i in [0, Ni), j in [0, Nj]; V-directed: i in [0, Ni], j in [0, Nj).
    """
    ni, nj = orders
    specs = []
    for i in range(ni):
        for j in range(nj + 1):
            loc, edge = locate(BasisDir.U, i, j)
            specs.append(BasisSpec(elem_id, BasisDir.U, i, j, loc, edge))
    for i in range(ni + 1):
        for j in range(nj):
            loc, edge = locate(BasisDir.V, i, j)
            specs.append(BasisSpec(elem_id, BasisDir.V, i, j, loc, edge))
    return specs


@dataclass
class DoF:
    """A global degree of freedom and the local functions it drives.

    ``specs`` holds (index into ``Domain.specs``, coefficient) pairs.
    """

    id: int
    specs: list[tuple[int, float]]


# ============================================================================
# Trace matching
# ============================================================================


@dataclass(frozen=True)
class Trace:
    """The tangential trace of an edge function on one element.

    Attributes
    ----------
    spec : BasisSpec
        Edge function producing the trace
    span : tuple[float, float]
        Physical extent of the trace along the edge
    ranking : tuple[int, int]
        h-ranking of the element on the edge (its generation across the edge)
    """

    spec: BasisSpec
    span: tuple[float, float]
    ranking: tuple[int, int] = (0, 0)

    @property
    def dir(self) -> BasisDir:
        return self.spec.dir

    @property
    def edge(self) -> int:
        return self.spec.edge

    @property
    def order(self) -> int:
        return self.spec.tangential_order


@dataclass(frozen=True)
class TraceRelation:
    """Coefficient linking a slave trace to its master: c_slave = coefficient * c_master."""

    coefficient: float


def match_traces(master: Trace, slave: Trace) -> TraceRelation | None:
    """Relate two traces on opposite sides of one edge.

    Both traces use the same parametrisation along the edge (u increases with
    x, v with y), so matching functions are identified with coefficient +1.
    A trace with no counterpart of equal order is projected to zero, which is
    reported as None.

    Raises
    ------
    DomainConstructionError
        If the traces do not cover the same stretch of edge.
    """
    if master.dir is not slave.dir or master.order != slave.order:
        return None
    expected = 1 if master.dir is BasisDir.U else 5
    if master.edge + slave.edge != expected:
        return None

    (a0, a1), (b0, b1) = master.span, slave.span
    scale = max(abs(a1 - a0), abs(b1 - b0), 1.0)
    if abs(a0 - b0) > SPAN_TOL * scale or abs(a1 - b1) > SPAN_TOL * scale:
        raise DomainConstructionError(
            f"Traces of elems {master.spec.elem_id} and {slave.spec.elem_id} "
            f"cover different spans: {master.span} vs {slave.span}"
        )
    return TraceRelation(coefficient=1.0)
