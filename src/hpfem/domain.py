"""Continuity / DOF builder.

A ``Domain`` pairs a finished ``Mesh`` with the global degrees of freedom of
its H(curl) basis. Every local basis function of every element ends up in
exactly one of two places: mapped to one DOF, or in ``excluded`` with its
coefficient fixed at zero.

Rules:

- element functions of leaf elements each own a DOF
- on every edge with an active pair, the edge functions of the two active
  elements are matched (``match_traces``); each matched pair shares one DOF
- with ``BoundaryCondition.NATURAL`` the edge functions of the finest element
  on each boundary edge own a DOF; with ``PEC`` they are excluded
- everything else (unmatched higher orders, functions of elements that are
  not part of an edge's active pair, element functions of interior elements)
  is excluded
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import pandas as pd

from .datastructures import EDGE_SIDES, EdgeDir
from .dof import BasisLoc, BasisSpec, DoF, Trace, elem_basis_specs, match_traces
from .errors import DomainConstructionError
from .mesh import Mesh

log = logging.getLogger(__name__)


class ContinuityCondition(Enum):
    HCURL = "hcurl"


class BoundaryCondition(Enum):
    """Treatment of tangential traces on the outer boundary."""

    PEC = "pec"
    NATURAL = "natural"


@dataclass
class Domain:
    """A mesh together with its constrained basis space.

    Attributes
    ----------
    specs : list[BasisSpec]
        Every basis function mapped to a DOF (``spec.dof_id`` is set)
    dofs : list[DoF]
        Global DOFs, ``dofs[k].id == k``
    excluded : list[BasisSpec]
        Basis functions fixed at zero
    """

    mesh: Mesh
    continuity: ContinuityCondition = ContinuityCondition.HCURL
    boundary: BoundaryCondition = BoundaryCondition.PEC
    specs: list[BasisSpec] = field(init=False, default_factory=list)
    dofs: list[DoF] = field(init=False, default_factory=list)
    excluded: list[BasisSpec] = field(init=False, default_factory=list)
    _elem_specs: dict[int, list[int]] = field(init=False, repr=False, default_factory=dict)

    def __post_init__(self):
        if self.continuity is not ContinuityCondition.HCURL:
            raise DomainConstructionError(f"Unsupported continuity condition: {self.continuity}")
        self._gen_dofs()

    @classmethod
    def from_mesh(
        cls,
        mesh: Mesh,
        continuity: ContinuityCondition = ContinuityCondition.HCURL,
        boundary: BoundaryCondition = BoundaryCondition.PEC,
    ) -> Domain:
        return cls(mesh=mesh, continuity=continuity, boundary=boundary)

    @property
    def num_dofs(self) -> int:
        return len(self.dofs)

    # ------------------------------------------------------------------
    # DOF generation
    # ------------------------------------------------------------------

    def _gen_dofs(self) -> None:
        mesh = self.mesh
        self.specs = []
        self.dofs = []
        self.excluded = []
        self._elem_specs = {elem.id: [] for elem in mesh.elems}

        # edge functions grouped by (elem, local edge)
        edge_specs: dict[tuple[int, int], list[BasisSpec]] = {}
        for elem in mesh.elems:
            for spec in elem_basis_specs(elem.id, elem.orders):
                if spec.loc is BasisLoc.EDGE:
                    edge_specs.setdefault((elem.id, spec.edge), []).append(spec)
                elif elem.is_leaf:
                    self._new_dof([spec])
                else:
                    self.excluded.append(spec)

        claimed: set[tuple[int, int]] = set()
        for edge in mesh.edges:
            if edge.active is None:
                continue
            a_id, b_id = edge.active
            a_edge = mesh.elems[a_id].local_edge_index(edge.id)
            b_edge = mesh.elems[b_id].local_edge_index(edge.id)
            if EDGE_SIDES[a_edge] != 0 or EDGE_SIDES[b_edge] != 1:
                raise DomainConstructionError(f"Edge {edge.id}: active elems are on the same side")
            claimed.update({(a_id, a_edge), (b_id, b_edge)})
            self._match_edge(
                edge.id,
                [self._trace(s, edge.id) for s in edge_specs.get((a_id, a_edge), [])],
                [self._trace(s, edge.id) for s in edge_specs.get((b_id, b_edge), [])],
            )

        if self.boundary is BoundaryCondition.NATURAL:
            for edge_id, elem_id in mesh.boundary_edge_elems().items():
                local = mesh.elems[elem_id].local_edge_index(edge_id)
                claimed.add((elem_id, local))
                for spec in edge_specs.get((elem_id, local), []):
                    self._new_dof([spec])

        for key, specs in edge_specs.items():
            if key not in claimed:
                self.excluded.extend(specs)

        if mesh.elems and not self.dofs:
            raise DomainConstructionError(
                f"Mesh with {len(mesh.elems)} elems produced no degrees of freedom "
                f"(boundary={self.boundary.value})"
            )
        log.info(
            f"Domain: {self.num_dofs} DOFs from {len(self.specs)} basis functions, "
            f"{len(self.excluded)} fixed at zero"
        )

    def _trace(self, spec: BasisSpec, edge_id: int) -> Trace:
        edge = self.mesh.edges[edge_id]
        p0, p1 = (self.mesh.nodes[n].coords for n in edge.nodes)
        span = (p0.x, p1.x) if edge.dir is EdgeDir.U else (p0.y, p1.y)
        ranking = self.mesh.elems[spec.elem_id].h_levels.edge_ranking(edge.dir)
        return Trace(spec=spec, span=span, ranking=ranking)

    def _match_edge(self, edge_id: int, side_a: list[Trace], side_b: list[Trace]) -> None:
        # the coarser element across the edge carries the shared functions
        masters, slaves = side_a, side_b
        if side_a and side_b and side_b[0].ranking < side_a[0].ranking:
            masters, slaves = side_b, side_a
        unmatched = list(slaves)
        for master in masters:
            for k, slave in enumerate(unmatched):
                relation = match_traces(master, slave)
                if relation is not None:
                    self._new_dof([master.spec, slave.spec], [1.0, relation.coefficient])
                    del unmatched[k]
                    break
            else:
                self.excluded.append(master.spec)
        self.excluded.extend(t.spec for t in unmatched)
        log.debug(f"Edge {edge_id}: {len(slaves) - len(unmatched)} matched traces")

    def _new_dof(self, specs: list[BasisSpec], coefficients: list[float] | None = None) -> None:
        coefficients = coefficients or [1.0] * len(specs)
        dof = DoF(id=len(self.dofs), specs=[])
        for spec, coefficient in zip(specs, coefficients):
            idx = len(self.specs)
            self.specs.append(spec.with_dof(dof.id))
            self._elem_specs[spec.elem_id].append(idx)
            dof.specs.append((idx, coefficient))
        self.dofs.append(dof)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def local_basis_specs(self, elem_id: int) -> list[BasisSpec]:
        """Basis functions of ``elem_id`` that carry a DOF."""
        if elem_id not in self._elem_specs:
            raise ValueError(f"Elem {elem_id} does not exist")
        return [self.specs[k] for k in self._elem_specs[elem_id]]

    def spec_coefficient(self, spec_idx: int) -> float:
        spec = self.specs[spec_idx]
        return next(c for k, c in self.dofs[spec.dof_id].specs if k == spec_idx)

    def local_basis_coefficients(self, elem_id: int) -> list[float]:
        return [self.spec_coefficient(k) for k in self._elem_specs[elem_id]]

    def descendant_basis_specs(self, elem_id: int) -> list[tuple[int, list[BasisSpec]]]:
        return [
            (d, self.local_basis_specs(d))
            for d in self.mesh.descendant_elems(elem_id)
            if self._elem_specs[d]
        ]

    def ancestor_basis_specs(self, elem_id: int) -> list[tuple[int, list[BasisSpec]]]:
        return [
            (a, self.local_basis_specs(a))
            for a in self.mesh.ancestor_elems(elem_id)
            if self._elem_specs[a]
        ]

    def to_dataframe(self) -> pd.DataFrame:
        """One row per local basis function, mapped or excluded."""
        rows = [
            {
                "elem": s.elem_id,
                "dir": s.dir.name,
                "i": s.i,
                "j": s.j,
                "loc": s.loc.value,
                "edge": s.edge,
                "dof": s.dof_id,
            }
            for s in self.specs + self.excluded
        ]
        return pd.DataFrame(rows)
