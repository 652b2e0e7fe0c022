"""H-refinement by superposition.

Refining an element never removes it: it gains 2 or 4 children which are
layered over it, and it keeps its basis functions. Edges are split the same
way; the halves become children of the original edge and every element that
spans an edge (at any depth) stays registered on it.

Child layout (local node order SW, SE, NW, NE; local edge order S, N, W, E)::

    T:  NW | NE        U:  W | E        V:  N
        ---+---                             -
        SW | SE                             S
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable

from .datastructures import MIN_EDGE_LENGTH, EdgeDir
from .element import Element
from .errors import (
    BadExtensionIdx,
    HRefDoubleRefinement,
    HRefElemDoesNotExist,
    HRefElemHasChildren,
    MinEdgeLength,
)

if TYPE_CHECKING:
    from .mesh import Mesh

log = logging.getLogger(__name__)

Range = tuple[tuple[float, float], tuple[float, float]]
UNIT_RANGE: Range = ((-1.0, 1.0), (-1.0, 1.0))


class HRefKind(Enum):
    T = "T"
    U = "U"
    V = "V"


@dataclass(frozen=True)
class HRef:
    """An h-refinement descriptor.

    ``U`` splits the u-range (2 children: W, E), ``V`` splits the v-range
    (2 children: S, N) and ``T`` splits both (4 children). An anisotropic
    refinement may carry an extension index, in which case that child is
    immediately split again along the other axis.
    """

    kind: HRefKind
    idx: int | None = None

    def __post_init__(self):
        if self.idx is not None:
            if self.kind is HRefKind.T:
                raise BadExtensionIdx(self.idx)
            if self.idx not in (0, 1):
                raise BadExtensionIdx(self.idx)

    @classmethod
    def T(cls) -> HRef:
        return cls(HRefKind.T)

    @classmethod
    def U(cls, idx: int | None = None) -> HRef:
        return cls(HRefKind.U, idx)

    @classmethod
    def V(cls, idx: int | None = None) -> HRef:
        return cls(HRefKind.V, idx)

    @property
    def num_children(self) -> int:
        return 4 if self.kind is HRefKind.T else 2

    @property
    def num_descendants(self) -> int:
        return self.num_children + (2 if self.idx is not None else 0)

    def extension(self) -> HRef | None:
        """Refinement applied to child ``idx`` after this one, if any."""
        if self.idx is None:
            return None
        return HRef.V() if self.kind is HRefKind.U else HRef.U()

    def loc(self, child_idx: int) -> HRefLoc:
        return _CHILD_LOCS[self.kind][child_idx]

    def __str__(self) -> str:
        return self.kind.value if self.idx is None else f"{self.kind.value}({self.idx})"


def merge_h_refinements(elem_id: int, a: HRef, b: HRef) -> HRef:
    """Combine two refinements queued for the same element.

    A plain U and a plain V combine into T; anything else refines the same
    axis twice.
    """
    kinds = {a.kind, b.kind}
    if kinds == {HRefKind.U, HRefKind.V} and a.idx is None and b.idx is None:
        return HRef.T()
    raise HRefDoubleRefinement(elem_id)


class HRefLoc(Enum):
    """Location of a child within its parent."""

    SW = "SW"
    SE = "SE"
    NW = "NW"
    NE = "NE"
    W = "W"
    E = "E"
    S = "S"
    N = "N"

    @property
    def index(self) -> int:
        return _LOC_INDEX[self]

    def u_half(self) -> int | None:
        """0 for the lower u half, 1 for the upper, None if u is not split."""
        return _U_HALF[self]

    def v_half(self) -> int | None:
        return _V_HALF[self]

    def sub_range(self, rng: Range) -> Range:
        """Map a parametric range to the part of it this location covers."""
        (u0, u1), (v0, v1) = rng
        return (_half(u0, u1, self.u_half()), _half(v0, v1, self.v_half()))


def _half(lo: float, hi: float, which: int | None) -> tuple[float, float]:
    if which is None:
        return (lo, hi)
    mid = (lo + hi) / 2.0
    return (lo, mid) if which == 0 else (mid, hi)


_LOC_INDEX = {
    HRefLoc.SW: 0, HRefLoc.SE: 1, HRefLoc.NW: 2, HRefLoc.NE: 3,
    HRefLoc.W: 0, HRefLoc.E: 1, HRefLoc.S: 0, HRefLoc.N: 1,
}
_U_HALF = {
    HRefLoc.SW: 0, HRefLoc.SE: 1, HRefLoc.NW: 0, HRefLoc.NE: 1,
    HRefLoc.W: 0, HRefLoc.E: 1, HRefLoc.S: None, HRefLoc.N: None,
}
_V_HALF = {
    HRefLoc.SW: 0, HRefLoc.SE: 0, HRefLoc.NW: 1, HRefLoc.NE: 1,
    HRefLoc.W: None, HRefLoc.E: None, HRefLoc.S: 0, HRefLoc.N: 1,
}
_CHILD_LOCS = {
    HRefKind.T: (HRefLoc.SW, HRefLoc.SE, HRefLoc.NW, HRefLoc.NE),
    HRefKind.U: (HRefLoc.W, HRefLoc.E),
    HRefKind.V: (HRefLoc.S, HRefLoc.N),
}


@dataclass(frozen=True)
class HLevels:
    """Number of times an element's ancestry was split along each axis."""

    u: int = 0
    v: int = 0

    def refined(self, href: HRef) -> HLevels:
        if href.kind is HRefKind.T:
            return HLevels(self.u + 1, self.v + 1)
        if href.kind is HRefKind.U:
            return HLevels(self.u + 1, self.v)
        return HLevels(self.u, self.v + 1)

    def edge_ranking(self, edge_dir: EdgeDir) -> tuple[int, int]:
        """Ranking among elements sharing an edge: finest across the edge wins."""
        if edge_dir is EdgeDir.U:
            return (self.v, self.u)
        return (self.u, self.v)


# ============================================================================
# Validation
# ============================================================================


def check_h_refineable(mesh: Mesh, elem_id: int) -> None:
    """Raise an ``HRefError`` unless ``elem_id`` is a leaf whose edges all exceed the minimum length."""
    if elem_id < 0 or elem_id >= len(mesh.elems):
        raise HRefElemDoesNotExist(elem_id)
    elem = mesh.elems[elem_id]
    if elem.has_children:
        raise HRefElemHasChildren(elem_id)
    if not _edges_exceed_minimum(mesh, elem):
        raise MinEdgeLength(elem_id)


def is_h_refineable(mesh: Mesh, elem: Element) -> bool:
    if elem.has_children:
        return False
    return _edges_exceed_minimum(mesh, elem)


def _edges_exceed_minimum(mesh: Mesh, elem: Element) -> bool:
    return all(mesh.edges[e].length > MIN_EDGE_LENGTH for e in elem.edges)


# ============================================================================
# Batch execution
# ============================================================================


def execute_h_refinements(mesh: Mesh, refinements: Iterable[tuple[int, HRef]]) -> list[int]:
    """Apply a batch of refinements.

    Every id is validated before the forest is touched, so a failing batch
    leaves the mesh unchanged. Refinements queued twice for one element are
    merged (U + V becomes T). Returns the ids of all new elements.
    """
    merged: dict[int, HRef] = {}
    for elem_id, href in refinements:
        check_h_refineable(mesh, elem_id)
        if elem_id in merged:
            merged[elem_id] = merge_h_refinements(elem_id, merged[elem_id], href)
        else:
            merged[elem_id] = href

    new_ids = _apply_refinements(mesh, merged)
    mesh.set_edge_activation()
    log.info(
        f"Applied {len(merged)} h-refinements: {len(new_ids)} new elems, "
        f"{len(mesh.elems)} total"
    )
    return new_ids


def _apply_refinements(mesh: Mesh, refinements: dict[int, HRef]) -> list[int]:
    new_ids: list[int] = []
    extensions: dict[int, HRef] = {}
    for elem_id in sorted(refinements):
        href = refinements[elem_id]
        children = refine_elem(mesh, elem_id, href)
        new_ids.extend(children)
        ext = href.extension()
        if ext is not None:
            extensions[children[href.idx]] = ext
    if extensions:
        new_ids.extend(_apply_refinements(mesh, extensions))
    return new_ids


def h_refine_with_filter(mesh: Mesh, decide: Callable[[Element], HRef | None]) -> list[int]:
    """Refine every eligible leaf for which ``decide`` returns a refinement.

    Ineligible elements (interior, or too small) are skipped without error.
    """
    selected = []
    for elem in mesh.leaf_elems():
        href = decide(elem)
        if href is None:
            continue
        if not is_h_refineable(mesh, elem):
            log.debug(f"Skipping elem {elem.id}: not h-refineable")
            continue
        selected.append((elem.id, href))
    if not selected:
        log.warning("Filtered h-refinement selected no elements")
        return []
    return execute_h_refinements(mesh, selected)


# ============================================================================
# Single element refinement
# ============================================================================


def refine_edge(mesh: Mesh, edge_id: int) -> tuple[int, int]:
    """Split an edge at its midpoint (no-op if it is already split)."""
    edge = mesh.edges[edge_id]
    if edge.children is not None:
        return edge.children

    n0, n1 = (mesh.nodes[n] for n in edge.nodes)
    mid = mesh.add_node(n0.coords.midpoint(n1.coords), boundary=edge.boundary)
    c0 = mesh.add_edge(n0.id, mid.id, boundary=edge.boundary, parent=edge.id)
    c1 = mesh.add_edge(mid.id, n1.id, boundary=edge.boundary, parent=edge.id)
    edge.children = (c0.id, c1.id)
    edge.child_node = mid.id
    return edge.children


def refine_elem(mesh: Mesh, elem_id: int, href: HRef) -> list[int]:
    """Create the children of one element. Validation is the caller's job."""
    parent = mesh.elems[elem_id]
    if href.kind is HRefKind.T:
        layout = _t_layout(mesh, parent)
    elif href.kind is HRefKind.U:
        layout = _u_layout(mesh, parent)
    else:
        layout = _v_layout(mesh, parent)

    levels = parent.h_levels.refined(href)
    children = []
    for idx, (nodes, edges) in enumerate(layout):
        child = Element(
            id=len(mesh.elems),
            nodes=nodes,
            edges=edges,
            materials=parent.materials,
            h_levels=levels,
            orders=parent.orders,
            parent=parent.id,
            href_loc=href.loc(idx),
            depth=parent.depth + 1,
        )
        mesh.elems.append(child)
        for local_idx, edge_id in enumerate(edges):
            edge = mesh.edges[edge_id]
            edge.connect_elem(child.id, levels.edge_ranking(edge.dir), local_idx)
        children.append(child.id)

    parent.children = children
    parent.child_href = href
    log.debug(f"Refined elem {elem_id} with {href}: children {children}")
    return children


def _t_layout(mesh: Mesh, parent: Element):
    n0, n1, n2, n3 = parent.nodes
    s, n, w, e = parent.edges
    s0, s1 = refine_edge(mesh, s)
    n0_, n1_ = refine_edge(mesh, n)
    w0, w1 = refine_edge(mesh, w)
    e0, e1 = refine_edge(mesh, e)
    m_s, m_n = mesh.edges[s].child_node, mesh.edges[n].child_node
    m_w, m_e = mesh.edges[w].child_node, mesh.edges[e].child_node

    center = mesh.add_node(
        mesh.nodes[n0].coords.midpoint(mesh.nodes[n3].coords), boundary=False
    )
    c = center.id
    south_in = mesh.add_edge(m_s, c, boundary=False).id
    north_in = mesh.add_edge(c, m_n, boundary=False).id
    west_in = mesh.add_edge(m_w, c, boundary=False).id
    east_in = mesh.add_edge(c, m_e, boundary=False).id

    return [
        ((n0, m_s, m_w, c), (s0, west_in, w0, south_in)),
        ((m_s, n1, c, m_e), (s1, east_in, south_in, e0)),
        ((m_w, c, n2, m_n), (west_in, n0_, w1, north_in)),
        ((c, m_e, m_n, n3), (east_in, n1_, north_in, e1)),
    ]


def _u_layout(mesh: Mesh, parent: Element):
    n0, n1, n2, n3 = parent.nodes
    s, n, w, e = parent.edges
    s0, s1 = refine_edge(mesh, s)
    n0_, n1_ = refine_edge(mesh, n)
    m_s, m_n = mesh.edges[s].child_node, mesh.edges[n].child_node
    mid = mesh.add_edge(m_s, m_n, boundary=False).id

    return [
        ((n0, m_s, n2, m_n), (s0, n0_, w, mid)),
        ((m_s, n1, m_n, n3), (s1, n1_, mid, e)),
    ]


def _v_layout(mesh: Mesh, parent: Element):
    n0, n1, n2, n3 = parent.nodes
    s, n, w, e = parent.edges
    w0, w1 = refine_edge(mesh, w)
    e0, e1 = refine_edge(mesh, e)
    m_w, m_e = mesh.edges[w].child_node, mesh.edges[e].child_node
    mid = mesh.add_edge(m_w, m_e, boundary=False).id

    return [
        ((n0, n1, m_w, m_e), (s, mid, w0, e0)),
        ((m_w, m_e, n2, n3), (mid, n, w1, e1)),
    ]
