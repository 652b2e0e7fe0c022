"""The element forest.

A ``Mesh`` owns three arenas (nodes, edges, elements) addressed by stable
integer ids. Entries are only ever appended: refined elements stay in the
forest as interior elements underneath their children.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator

import numpy as np
import pandas as pd

from . import h_refinement, p_refinement
from .datastructures import EDGE_NODES, Edge, Materials, Node, Point
from .element import Element
from .errors import DomainConstructionError, MeshFileError
from .h_refinement import UNIT_RANGE, HLevels, HRef, Range
from .p_refinement import PRef

log = logging.getLogger(__name__)

# Tolerance for the axis-aligned rectangle check on mesh load
GEOMETRY_TOL = 1e-12


@dataclass
class Mesh:
    """A forest of element trees over a shared geometry store."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    elems: list[Element] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> Mesh:
        """Build the initial (unrefined) forest from a mesh description.

        Parameters
        ----------
        data : dict
            ``{"Nodes": [[x, y], ...], "Elements": [{"materials": [eps_re,
            eps_im, mu_re, mu_im], "node_ids": [sw, se, nw, ne]}, ...]}``

        Returns
        -------
        Mesh
            Every element is a root at expansion order (1, 1). Edges touched
            by a single element are boundary edges.
        """
        try:
            raw_nodes = data["Nodes"]
            raw_elems = data["Elements"]
        except (KeyError, TypeError) as exc:
            raise MeshFileError(f"Mesh description is missing a section: {exc}") from exc

        mesh = cls()
        for coords in raw_nodes:
            if len(coords) != 2:
                raise MeshFileError(f"Node coordinates must be 2D, got {coords}")
            mesh.add_node(Point(float(coords[0]), float(coords[1])))

        elem_nodes = []
        elem_materials = []
        for idx, raw in enumerate(raw_elems):
            try:
                node_ids = tuple(int(n) for n in raw["node_ids"])
                materials = Materials.from_array(raw["materials"])
            except (KeyError, TypeError, ValueError) as exc:
                raise MeshFileError(f"Element {idx} is malformed: {exc}") from exc
            mesh._check_rectangle(idx, node_ids)
            elem_nodes.append(node_ids)
            elem_materials.append(materials)

        # edges are identified by their (unordered) node pair
        adjacency: dict[tuple[int, int], int] = {}
        for node_ids in elem_nodes:
            for a, b in EDGE_NODES:
                key = tuple(sorted((node_ids[a], node_ids[b])))
                adjacency[key] = adjacency.get(key, 0) + 1
        if any(count > 2 for count in adjacency.values()):
            raise MeshFileError("An edge is shared by more than two elements")

        edge_ids: dict[tuple[int, int], int] = {}
        for key, count in adjacency.items():
            boundary = count == 1
            edge = mesh.add_edge(key[0], key[1], boundary=boundary)
            edge_ids[key] = edge.id
            if boundary:
                for n in key:
                    mesh.nodes[n].boundary = True

        root_levels = HLevels()
        for idx, (node_ids, materials) in enumerate(zip(elem_nodes, elem_materials)):
            edges = tuple(
                edge_ids[tuple(sorted((node_ids[a], node_ids[b])))] for a, b in EDGE_NODES
            )
            elem = Element(
                id=idx, nodes=node_ids, edges=edges, materials=materials, h_levels=root_levels
            )
            mesh.elems.append(elem)
            for local_idx, edge_id in enumerate(edges):
                edge = mesh.edges[edge_id]
                edge.connect_elem(idx, root_levels.edge_ranking(edge.dir), local_idx)

        mesh.set_edge_activation()
        log.info(
            f"Loaded mesh: {len(mesh.nodes)} nodes, {len(mesh.edges)} edges, "
            f"{len(mesh.elems)} elems"
        )
        return mesh

    @classmethod
    def from_json(cls, text: str) -> Mesh:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MeshFileError(f"Mesh file is not valid JSON: {exc}") from exc
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: str | Path) -> Mesh:
        """Load a JSON mesh file."""
        return cls.from_json(Path(path).read_text())

    @classmethod
    def from_meshio(cls, path: str | Path, materials: Materials | None = None) -> Mesh:
        """Load an axis-aligned quad mesh from any format meshio can read.

        Corner order is recovered from geometry, so both gmsh's
        counter-clockwise ordering and the SW/SE/NW/NE ordering work. A
        ``materials`` cell-data array with 4 columns sets per-cell materials;
        otherwise every cell gets ``materials`` (vacuum by default).
        """
        import meshio

        m = meshio.read(path)
        points = m.points[:, :2].astype(np.float64)
        quad_blocks = [k for k, c in enumerate(m.cells) if c.type == "quad"]
        if not quad_blocks:
            raise MeshFileError(f"No quad cells found in {path}")
        quads = np.concatenate([m.cells[k].data for k in quad_blocks]).astype(np.int64)

        default = (materials or Materials()).to_array()
        if "materials" in m.cell_data:
            cell_materials = np.concatenate([m.cell_data["materials"][k] for k in quad_blocks])
            cell_materials = np.asarray(cell_materials, dtype=np.float64).reshape(len(quads), -1)
        else:
            cell_materials = np.tile(default, (len(quads), 1))

        elements = []
        for quad, mat in zip(quads, cell_materials):
            # sort corners by (y, x): SW, SE, NW, NE
            order = sorted(quad, key=lambda n: (points[n, 1], points[n, 0]))
            elements.append({"materials": mat.tolist(), "node_ids": [int(n) for n in order]})
        return cls.from_dict({"Nodes": points.tolist(), "Elements": elements})

    @classmethod
    def unit(cls, materials: Materials | None = None) -> Mesh:
        """A single element over [-1, 1]^2."""
        return cls.structured(1, 1, x0=-1.0, y0=-1.0, lx=2.0, ly=2.0, materials=materials)

    @classmethod
    def structured(
        cls,
        nx: int,
        ny: int,
        x0: float = 0.0,
        y0: float = 0.0,
        lx: float = 1.0,
        ly: float = 1.0,
        materials: Materials | None = None,
    ) -> Mesh:
        """A regular ``nx`` by ``ny`` grid of rectangles."""
        materials = materials or Materials()
        xs = np.linspace(x0, x0 + lx, nx + 1)
        ys = np.linspace(y0, y0 + ly, ny + 1)
        nodes = [[float(x), float(y)] for y in ys for x in xs]

        def nid(i, j):
            return j * (nx + 1) + i

        elements = [
            {
                "materials": materials.to_array(),
                "node_ids": [nid(i, j), nid(i + 1, j), nid(i, j + 1), nid(i + 1, j + 1)],
            }
            for j in range(ny)
            for i in range(nx)
        ]
        return cls.from_dict({"Nodes": nodes, "Elements": elements})

    def _check_rectangle(self, elem_idx: int, node_ids: tuple[int, ...]) -> None:
        if len(node_ids) != 4 or len(set(node_ids)) != 4:
            raise MeshFileError(f"Element {elem_idx} needs 4 distinct nodes, got {node_ids}")
        if any(n < 0 or n >= len(self.nodes) for n in node_ids):
            raise MeshFileError(f"Element {elem_idx} references a missing node: {node_ids}")
        sw, se, nw, ne = (self.nodes[n].coords for n in node_ids)
        aligned = (
            abs(sw.y - se.y) < GEOMETRY_TOL
            and abs(nw.y - ne.y) < GEOMETRY_TOL
            and abs(sw.x - nw.x) < GEOMETRY_TOL
            and abs(se.x - ne.x) < GEOMETRY_TOL
        )
        if not aligned or se.x <= sw.x or nw.y <= sw.y:
            raise MeshFileError(
                f"Element {elem_idx} is not an axis-aligned rectangle in SW, SE, NW, NE order"
            )

    def add_node(self, coords: Point, boundary: bool = False) -> Node:
        node = Node(id=len(self.nodes), coords=coords, boundary=boundary)
        self.nodes.append(node)
        return node

    def add_edge(self, n0: int, n1: int, boundary: bool, parent: int | None = None) -> Edge:
        edge = Edge.between(len(self.edges), self.nodes[n0], self.nodes[n1], boundary, parent)
        self.edges.append(edge)
        return edge

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def num_elems(self) -> int:
        return len(self.elems)

    @property
    def num_leaves(self) -> int:
        return sum(1 for _ in self.leaf_elems())

    def leaf_elems(self) -> Iterator[Element]:
        return (elem for elem in self.elems if elem.is_leaf)

    def _elem(self, elem_id: int) -> Element:
        if elem_id < 0 or elem_id >= len(self.elems):
            raise ValueError(f"Elem {elem_id} does not exist")
        return self.elems[elem_id]

    def descendant_elems(self, elem_id: int, include_self: bool = False) -> list[int]:
        """All descendants of an element, breadth first."""
        elem = self._elem(elem_id)
        found = [elem_id] if include_self else []
        queue = list(elem.children)
        while queue:
            child = queue.pop(0)
            found.append(child)
            queue.extend(self.elems[child].children)
        return found

    def ancestor_elems(self, elem_id: int, include_self: bool = False) -> list[int]:
        """Ancestors of an element, root first."""
        elem = self._elem(elem_id)
        chain = [elem_id] if include_self else []
        while elem.parent is not None:
            chain.append(elem.parent)
            elem = self.elems[elem.parent]
        return chain[::-1]

    def elem_points(self, elem_id: int) -> list[Point]:
        return [self.nodes[n].coords for n in self._elem(elem_id).nodes]

    def elem_bounds(self, elem_id: int) -> tuple[tuple[float, float], tuple[float, float]]:
        """Physical ((x_min, x_max), (y_min, y_max)) of an element."""
        sw, _, _, ne = self.elem_points(elem_id)
        return ((sw.x, ne.x), (sw.y, ne.y))

    def relative_range(self, ancestor_id: int, elem_id: int) -> Range:
        """Parametric range of ``elem_id`` inside ``ancestor_id``'s [-1, 1]^2."""
        chain = self.ancestor_elems(elem_id, include_self=True)
        if ancestor_id not in chain:
            raise ValueError(f"Elem {ancestor_id} is not an ancestor of elem {elem_id}")
        rng = UNIT_RANGE
        for child_id in chain[chain.index(ancestor_id) + 1:]:
            rng = self.elems[child_id].href_loc.sub_range(rng)
        return rng

    def elem_parametric_range(self, elem_id: int) -> Range:
        """Parametric range of an element inside its root element."""
        return self.relative_range(self.ancestor_elems(elem_id, include_self=True)[0], elem_id)

    def max_expansion_orders(self) -> tuple[int, int]:
        if not self.elems:
            return (1, 1)
        return (
            max(elem.orders[0] for elem in self.elems),
            max(elem.orders[1] for elem in self.elems),
        )

    def node_at(self, x: float, y: float, tol: float = 1e-9) -> int | None:
        """Id of the node at (x, y), if there is one."""
        for node in self.nodes:
            if abs(node.coords.x - x) <= tol and abs(node.coords.y - y) <= tol:
                return node.id
        return None

    def elems_touching_node(self, node_id: int, leaves_only: bool = True) -> list[int]:
        """Elements whose closure contains the node."""
        p = self.nodes[node_id].coords
        touching = []
        for elem in self.elems:
            if leaves_only and not elem.is_leaf:
                continue
            (x0, x1), (y0, y1) = self.elem_bounds(elem.id)
            if x0 - GEOMETRY_TOL <= p.x <= x1 + GEOMETRY_TOL and y0 - GEOMETRY_TOL <= p.y <= y1 + GEOMETRY_TOL:
                touching.append(elem.id)
        return touching

    def to_dataframe(self) -> pd.DataFrame:
        """One row per element (leaf and interior)."""
        rows = []
        for elem in self.elems:
            (x0, x1), (y0, y1) = self.elem_bounds(elem.id)
            rows.append(
                {
                    "id": elem.id,
                    "parent": elem.parent,
                    "depth": elem.depth,
                    "leaf": elem.is_leaf,
                    "href": str(elem.child_href) if elem.child_href else "",
                    "i": elem.orders[0],
                    "j": elem.orders[1],
                    "h_u": elem.h_levels.u,
                    "h_v": elem.h_levels.v,
                    "x_min": x0,
                    "x_max": x1,
                    "y_min": y0,
                    "y_max": y1,
                    "eps_rel": elem.materials.eps_rel.real,
                    "mu_rel": elem.materials.mu_rel.real,
                }
            )
        return pd.DataFrame(rows)

    # ------------------------------------------------------------------
    # Edge activation
    # ------------------------------------------------------------------

    def set_edge_activation(self) -> None:
        """Pick the element pair that carries continuity across each interior edge.

        On each edge tree the finest level at which both halves have elements
        on both sides is active; coarser edges stay active only where their
        children cannot be.
        """
        for edge in self.edges:
            edge.reset_activation()
        for edge in self.edges:
            if edge.parent is None and not edge.boundary:
                self._activate_edge(edge.id)

    def _activate_edge(self, edge_id: int) -> bool:
        edge = self.edges[edge_id]
        can_activate = edge.activate()
        if edge.children is None:
            return can_activate
        flags = [self._activate_edge(c) for c in edge.children]
        if all(flags):
            edge.reset_activation()
            return True
        if any(flags):
            raise DomainConstructionError(
                f"Edge {edge_id}: only one child edge can carry continuity"
            )
        return can_activate

    def boundary_edge_elems(self) -> dict[int, int]:
        """Map each active boundary edge to the finest element spanning it."""
        active: dict[int, int] = {}
        for edge in self.edges:
            if edge.parent is None and edge.boundary:
                self._activate_boundary_edge(edge.id, active)
        return active

    def _activate_boundary_edge(self, edge_id: int, active: dict[int, int]) -> bool:
        edge = self.edges[edge_id]
        if edge.children is not None:
            flags = [self._activate_boundary_edge(c, active) for c in edge.children]
            if all(flags):
                return True
            if any(flags):
                raise DomainConstructionError(
                    f"Boundary edge {edge_id}: only one child edge is covered"
                )
        side = 0 if edge.elems[0] else 1
        top = edge.top_elem(side)
        if top is None:
            return False
        active[edge_id] = top
        return True

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------

    def global_h_refinement(self, href: HRef) -> list[int]:
        """Refine every eligible leaf. Ineligible leaves are skipped."""
        return h_refinement.h_refine_with_filter(self, lambda _elem: href)

    def h_refine_with_filter(self, decide: Callable[[Element], HRef | None]) -> list[int]:
        return h_refinement.h_refine_with_filter(self, decide)

    def h_refine_elems(self, elem_ids: Iterable[int], href: HRef) -> list[int]:
        """Refine a list of elements, failing on any ineligible id."""
        return h_refinement.execute_h_refinements(self, [(i, href) for i in elem_ids])

    def execute_h_refinements(self, refinements: Iterable[tuple[int, HRef]]) -> list[int]:
        return h_refinement.execute_h_refinements(self, refinements)

    def global_p_refinement(self, pref: PRef) -> None:
        p_refinement.global_p_refinement(self, pref)

    def p_refine_with_filter(self, decide: Callable[[Element], PRef | None]) -> None:
        p_refinement.p_refine_with_filter(self, decide)

    def p_refine_elems(self, elem_ids: Iterable[int], pref: PRef) -> None:
        p_refinement.execute_p_refinements(self, [(i, pref) for i in elem_ids])

    def execute_p_refinements(self, refinements: Iterable[tuple[int, PRef]]) -> None:
        p_refinement.execute_p_refinements(self, refinements)

    def set_global_expansion_orders(self, orders: tuple[int, int]) -> None:
        p_refinement.set_global_expansion_orders(self, orders)

    def set_expansion_orders(self, orders: Iterable[tuple[int, tuple[int, int]]]) -> None:
        p_refinement.set_expansion_orders(self, orders)
