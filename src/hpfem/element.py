from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .datastructures import Materials

if TYPE_CHECKING:
    from .h_refinement import HLevels, HRef, HRefLoc


@dataclass
class Element:
    """A quadrilateral element in the forest.

    Attributes
    ----------
    nodes : tuple of 4 node ids
        SW, SE, NW, NE corners
    edges : tuple of 4 edge ids
        S, N, W, E edges (S/N are U-directed, W/E are V-directed)
    h_levels : HLevels
        Number of u/v splits between the root element and this one
    orders : tuple[int, int]
        Polynomial expansion orders in u and v
    children : list[int]
        Empty for leaves, 2 or 4 ids otherwise. Interior elements keep their
        data and basis functions.
    """

    id: int
    nodes: tuple[int, int, int, int]
    edges: tuple[int, int, int, int]
    materials: Materials
    h_levels: HLevels
    orders: tuple[int, int] = (1, 1)
    parent: int | None = None
    children: list[int] = field(default_factory=list)
    child_href: HRef | None = None
    href_loc: HRefLoc | None = None
    depth: int = 0

    @property
    def has_children(self) -> bool:
        return len(self.children) > 0

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def local_edge_index(self, edge_id: int) -> int:
        return self.edges.index(edge_id)
