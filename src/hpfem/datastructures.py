"""Geometry store: points, nodes, edges and materials.

Nodes and edges are owned by the ``Mesh`` and referenced by integer id from
every element that touches them. Nothing in the store is ever removed; edges
gain children when they are split by h-refinement.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum

# Edges shorter than this cannot be split any further
MIN_EDGE_LENGTH = 3.0518e-5

# Expansion orders live in [1, MAX_POLYNOMIAL_ORDER] in both directions
MAX_POLYNOMIAL_ORDER = 20

# Local edge k of an element connects these local node positions (SW, SE, NW, NE)
EDGE_NODES = ((0, 1), (2, 3), (0, 2), (1, 3))

# Side of an edge that an element sits on, indexed by the element's local edge
EDGE_SIDES = (1, 0, 1, 0)


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def __add__(self, other: Point) -> Point:
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point) -> Point:
        return Point(self.x - other.x, self.y - other.y)

    def scaled(self, factor: float) -> Point:
        return Point(self.x * factor, self.y * factor)

    def norm(self) -> float:
        return math.hypot(self.x, self.y)

    def dist(self, other: Point) -> float:
        return (other - self).norm()

    def midpoint(self, other: Point) -> Point:
        return (self + other).scaled(0.5)


@dataclass
class Node:
    """A mesh vertex."""

    id: int
    coords: Point
    boundary: bool = False


class EdgeDir(Enum):
    U = "u"
    V = "v"

    @classmethod
    def between(cls, p0: Point, p1: Point) -> EdgeDir:
        """U if the segment is within 45 degrees of the x-axis, else V."""
        d = p1 - p0
        return cls.U if abs(d.x) >= abs(d.y) else cls.V


@dataclass
class Edge:
    """An edge between two nodes.

    Attributes
    ----------
    nodes : tuple[int, int]
        Node ids, ordered by x for U-directed edges and by y for V-directed ones
    elems : list[dict]
        Two maps (one per side) from an element's h-ranking to its id. Every
        element whose boundary contains this exact edge is registered here.
    active : tuple[int | None, int | None] | None
        Highest ranked element on each side while the edge carries a
        continuity relation, None otherwise
    """

    id: int
    nodes: tuple[int, int]
    boundary: bool
    dir: EdgeDir
    length: float
    parent: int | None = None
    children: tuple[int, int] | None = None
    child_node: int | None = None
    elems: list[dict[tuple[int, int], int]] = field(default_factory=lambda: [{}, {}])
    active: tuple[int | None, int | None] | None = None

    @classmethod
    def between(
        cls, id: int, n0: Node, n1: Node, boundary: bool, parent: int | None = None
    ) -> Edge:
        """Build an edge with its nodes put in canonical order."""
        edge_dir = EdgeDir.between(n0.coords, n1.coords)
        if edge_dir is EdgeDir.U:
            ordered = (n0, n1) if n0.coords.x <= n1.coords.x else (n1, n0)
        else:
            ordered = (n0, n1) if n0.coords.y <= n1.coords.y else (n1, n0)
        return cls(
            id=id,
            nodes=(ordered[0].id, ordered[1].id),
            boundary=boundary,
            dir=edge_dir,
            length=n0.coords.dist(n1.coords),
            parent=parent,
        )

    @property
    def has_children(self) -> bool:
        return self.children is not None

    def connect_elem(self, elem_id: int, ranking: tuple[int, int], local_edge: int) -> None:
        self.elems[EDGE_SIDES[local_edge]][ranking] = elem_id

    def top_elem(self, side: int) -> int | None:
        """The highest ranked element on a side (the finest that spans the edge)."""
        if not self.elems[side]:
            return None
        return self.elems[side][max(self.elems[side])]

    def reset_activation(self) -> None:
        self.active = None

    def activate(self) -> bool:
        """Activate this edge if both sides have a connected element."""
        a, b = self.top_elem(0), self.top_elem(1)
        if a is None or b is None:
            self.active = None
            return False
        self.active = (a, b)
        return True


@dataclass(frozen=True)
class Materials:
    """Relative permittivity and permeability of an element."""

    eps_rel: complex = 1.0 + 0.0j
    mu_rel: complex = 1.0 + 0.0j

    @classmethod
    def from_array(cls, values) -> Materials:
        """Build from ``[eps_re, eps_im, mu_re, mu_im]``."""
        if len(values) != 4:
            raise ValueError(f"Materials need 4 values, got {len(values)}")
        eps_re, eps_im, mu_re, mu_im = (float(v) for v in values)
        return cls(complex(eps_re, eps_im), complex(mu_re, mu_im))

    def to_array(self) -> list[float]:
        return [self.eps_rel.real, self.eps_rel.imag, self.mu_rel.real, self.mu_rel.imag]
