"""Tests for DOF construction and H(curl) continuity.

Run with: pytest tests/test_domain.py -v
"""

import numpy as np
import pytest

from hpfem import (
    BasisDir,
    BasisLoc,
    BasisSpec,
    BoundaryCondition,
    Domain,
    DomainConstructionError,
    EdgeDir,
    HRef,
    MaxOrthoShapeFn,
    Mesh,
    Trace,
    match_traces,
)
from hpfem.basis import ElemMap, eval_vector
from hpfem.dof import elem_basis_specs, locate


def find_leaf(mesh, x, y):
    for leaf in mesh.leaf_elems():
        (x0, x1), (y0, y1) = mesh.elem_bounds(leaf.id)
        if x0 < x < x1 and y0 < y < y1:
            return leaf.id
    raise AssertionError(f"No leaf contains ({x}, {y})")


def field_at(domain, leaf, x, y, vec, shape_fn):
    """Field of ``vec`` at physical points inside ``leaf`` (sum over the ancestor chain)."""
    mesh = domain.mesh
    total = np.zeros((2, x.size))
    for elem_id in mesh.ancestor_elems(leaf, include_self=True):
        emap = ElemMap(*mesh.elem_bounds(elem_id))
        u, v = emap.to_parametric(x, y)
        specs = domain.local_basis_specs(elem_id)
        for spec, coef in zip(specs, domain.local_basis_coefficients(elem_id)):
            total += coef * vec[spec.dof_id] * eval_vector(shape_fn, spec.dir, spec.i, spec.j, emap, u, v)
    return total


def assert_tangential_continuity(domain, seed=0):
    """A random field has the same tangential trace from both sides of every interior edge."""
    mesh = domain.mesh
    shape_fn = MaxOrthoShapeFn()
    vec = np.random.default_rng(seed).standard_normal(domain.num_dofs)
    t = np.linspace(0.1, 0.9, 5)
    checked = 0
    for edge in mesh.edges:
        if edge.boundary or edge.children is not None:
            continue
        p0, p1 = (mesh.nodes[n].coords for n in edge.nodes)
        x = p0.x + t * (p1.x - p0.x)
        y = p0.y + t * (p1.y - p0.y)
        mx, my = (p0.x + p1.x) / 2, (p0.y + p1.y) / 2
        offset = 1e-3 * edge.length
        if edge.dir is EdgeDir.U:
            leaves = find_leaf(mesh, mx, my - offset), find_leaf(mesh, mx, my + offset)
            comp = 0
        else:
            leaves = find_leaf(mesh, mx - offset, my), find_leaf(mesh, mx + offset, my)
            comp = 1
        a = field_at(domain, leaves[0], x, y, vec, shape_fn)[comp]
        b = field_at(domain, leaves[1], x, y, vec, shape_fn)[comp]
        scale = max(np.abs(a).max(), 1.0)
        assert np.allclose(a, b, atol=1e-9 * scale), f"Edge {edge.id} between {leaves}"
        checked += 1
    assert checked > 0


def assert_dof_invariants(domain):
    mesh = domain.mesh
    total = sum(len(elem_basis_specs(e.id, e.orders)) for e in mesh.elems)
    assert len(domain.specs) + len(domain.excluded) == total

    mapped = sorted(idx for dof in domain.dofs for idx, _ in dof.specs)
    assert mapped == list(range(len(domain.specs)))
    for k, dof in enumerate(domain.dofs):
        assert dof.id == k
        assert 1 <= len(dof.specs) <= 2
        for idx, _ in dof.specs:
            assert domain.specs[idx].dof_id == k

    # element functions only carry DOFs on leaves
    for spec in domain.specs:
        if spec.loc is BasisLoc.ELEM:
            assert mesh.elems[spec.elem_id].is_leaf


class TestBasisSpecs:
    def test_locate(self):
        assert locate(BasisDir.U, 0, 0) == (BasisLoc.EDGE, 0)
        assert locate(BasisDir.U, 3, 1) == (BasisLoc.EDGE, 1)
        assert locate(BasisDir.V, 0, 3) == (BasisLoc.EDGE, 2)
        assert locate(BasisDir.V, 1, 0) == (BasisLoc.EDGE, 3)
        assert locate(BasisDir.U, 1, 2) == (BasisLoc.ELEM, None)
        assert locate(BasisDir.V, 2, 1) == (BasisLoc.ELEM, None)

    def test_counts(self):
        specs = elem_basis_specs(0, (3, 2))
        u = [s for s in specs if s.dir is BasisDir.U]
        v = [s for s in specs if s.dir is BasisDir.V]
        assert len(u) == 3 * 3
        assert len(v) == 4 * 2
        assert max(s.i for s in u) == 2 and max(s.j for s in u) == 2
        assert max(s.i for s in v) == 3 and max(s.j for s in v) == 1


class TestTraceMatching:
    """Pairing of edge functions across one edge."""

    @staticmethod
    def trace(elem_id, dir, i, j, edge, span=(0.0, 1.0)):
        return Trace(BasisSpec(elem_id, dir, i, j, BasisLoc.EDGE, edge), span)

    def test_match(self):
        rel = match_traces(self.trace(0, BasisDir.V, 1, 2, 3), self.trace(1, BasisDir.V, 0, 2, 2))
        assert rel is not None and rel.coefficient == 1.0
        rel = match_traces(self.trace(0, BasisDir.U, 3, 1, 1), self.trace(1, BasisDir.U, 3, 0, 0))
        assert rel is not None and rel.coefficient == 1.0

    def test_order_mismatch(self):
        assert match_traces(self.trace(0, BasisDir.V, 1, 2, 3), self.trace(1, BasisDir.V, 0, 1, 2)) is None

    def test_direction_mismatch(self):
        assert match_traces(self.trace(0, BasisDir.U, 0, 1, 1), self.trace(1, BasisDir.V, 0, 0, 2)) is None

    def test_same_side(self):
        assert match_traces(self.trace(0, BasisDir.V, 1, 0, 3), self.trace(1, BasisDir.V, 1, 0, 3)) is None

    def test_span_mismatch(self):
        with pytest.raises(DomainConstructionError):
            match_traces(
                self.trace(0, BasisDir.V, 1, 0, 3, span=(0.0, 1.0)),
                self.trace(1, BasisDir.V, 0, 0, 2, span=(0.0, 0.5)),
            )


class TestDomainConstruction:
    def test_single_elem_natural(self, unit_mesh):
        domain = Domain.from_mesh(unit_mesh, boundary=BoundaryCondition.NATURAL)
        assert domain.num_dofs == 4
        assert domain.excluded == []
        assert_dof_invariants(domain)

    def test_single_elem_pec_has_no_dofs(self, unit_mesh):
        with pytest.raises(DomainConstructionError):
            Domain.from_mesh(unit_mesh)

    def test_empty_mesh(self):
        domain = Domain.from_mesh(Mesh())
        assert domain.num_dofs == 0

    def test_single_elem_order_two(self, unit_mesh):
        unit_mesh.set_global_expansion_orders((2, 2))
        assert Domain.from_mesh(unit_mesh).num_dofs == 4
        assert Domain.from_mesh(unit_mesh, boundary=BoundaryCondition.NATURAL).num_dofs == 12

    def test_two_elems_lowest_order(self, two_elem_mesh):
        assert Domain.from_mesh(two_elem_mesh).num_dofs == 1
        natural = Domain.from_mesh(two_elem_mesh, boundary=BoundaryCondition.NATURAL)
        assert natural.num_dofs == 7

    def test_two_elems_shared_edge(self, two_elem_mesh):
        two_elem_mesh.set_global_expansion_orders((3, 3))
        domain = Domain.from_mesh(two_elem_mesh)
        assert domain.num_dofs == 27
        shared = [dof for dof in domain.dofs if len(dof.specs) == 2]
        assert len(shared) == 3
        for dof in shared:
            a, b = (domain.specs[idx] for idx, _ in dof.specs)
            assert {a.elem_id, b.elem_id} == {0, 1}
            assert a.dir is b.dir is BasisDir.V
            assert a.j == b.j
        assert_dof_invariants(domain)

    def test_coarser_elem_leads_shared_dofs(self, two_elem_mesh):
        """Across an edge the coarser element is listed first in each shared DOF."""
        two_elem_mesh.set_global_expansion_orders((2, 2))
        two_elem_mesh.h_refine_elems([0], HRef.U())
        domain = Domain.from_mesh(two_elem_mesh)
        shared = [
            [domain.specs[idx] for idx, _ in dof.specs]
            for dof in domain.dofs
            if len(dof.specs) == 2
        ]
        across = [pair for pair in shared if 1 in {s.elem_id for s in pair}]
        assert len(across) == 2
        for coarse, fine in across:
            assert (coarse.elem_id, fine.elem_id) == (1, 3)
            assert (coarse.edge, fine.edge) == (2, 3)
        assert_dof_invariants(domain)

    def test_order_mismatch_projects_to_zero(self, two_elem_mesh):
        two_elem_mesh.set_expansion_orders([(0, (3, 3)), (1, (2, 2))])
        domain = Domain.from_mesh(two_elem_mesh)
        assert domain.num_dofs == 18
        assert sum(len(dof.specs) == 2 for dof in domain.dofs) == 2
        assert BasisSpec(0, BasisDir.V, 1, 2, BasisLoc.EDGE, 3) in domain.excluded
        assert_dof_invariants(domain)

    def test_interior_elem_keeps_active_edge(self, two_elem_mesh):
        """An interior element still carries the edge it shares with a coarse neighbour."""
        two_elem_mesh.set_global_expansion_orders((2, 2))
        two_elem_mesh.h_refine_elems([0], HRef.T())
        domain = Domain.from_mesh(two_elem_mesh)
        parent_specs = domain.local_basis_specs(0)
        assert len(parent_specs) == 2
        assert all(s.loc is BasisLoc.EDGE and s.edge == 3 for s in parent_specs)
        assert_dof_invariants(domain)

    def test_unknown_elem(self, two_elem_mesh):
        domain = Domain.from_mesh(two_elem_mesh)
        with pytest.raises(ValueError):
            domain.local_basis_specs(42)

    def test_ancestor_and_descendant_specs(self, interface_mesh):
        domain = Domain.from_mesh(interface_mesh)
        leaf = max(e.id for e in interface_mesh.leaf_elems())
        ancestors = [a for a, _ in domain.ancestor_basis_specs(leaf)]
        assert set(ancestors) <= set(interface_mesh.ancestor_elems(leaf))
        descendants = [d for d, _ in domain.descendant_basis_specs(0)]
        assert set(descendants) <= set(interface_mesh.descendant_elems(0))
        assert all(specs for _, specs in domain.descendant_basis_specs(0))

    def test_to_dataframe(self, two_elem_mesh):
        two_elem_mesh.set_global_expansion_orders((2, 2))
        domain = Domain.from_mesh(two_elem_mesh)
        df = domain.to_dataframe()
        assert len(df) == len(domain.specs) + len(domain.excluded)
        assert df["dof"].notna().sum() == len(domain.specs)


class TestInterfaceRefinement:
    """Order (4, 4) air/teflon pair, refined around the interface."""

    def test_counts(self, interface_mesh):
        assert interface_mesh.num_elems == 18
        assert interface_mesh.num_leaves == 12

    def test_domain(self, interface_mesh):
        domain = Domain.from_mesh(interface_mesh)
        assert domain.num_dofs > 0
        assert_dof_invariants(domain)

    def test_continuity(self, interface_mesh):
        assert_tangential_continuity(Domain.from_mesh(interface_mesh))


class TestContinuity:
    """Tangential continuity on assorted hp-meshes."""

    def test_same_order_pair(self, two_elem_mesh):
        two_elem_mesh.set_global_expansion_orders((3, 3))
        assert_tangential_continuity(Domain.from_mesh(two_elem_mesh))

    def test_mixed_orders(self, two_elem_mesh):
        two_elem_mesh.set_expansion_orders([(0, (4, 2)), (1, (2, 3))])
        assert_tangential_continuity(Domain.from_mesh(two_elem_mesh))

    def test_one_sided_refinement(self, two_elem_mesh):
        two_elem_mesh.set_global_expansion_orders((3, 3))
        two_elem_mesh.h_refine_elems([0], HRef.T())
        assert_tangential_continuity(Domain.from_mesh(two_elem_mesh))

    def test_anisotropic_grid(self):
        mesh = Mesh.structured(2, 2)
        mesh.set_global_expansion_orders((3, 3))
        mesh.execute_h_refinements([(0, HRef.U(0)), (3, HRef.T()), (1, HRef.V())])
        mesh.set_expansion_orders([(e.id, (2, 4)) for e in mesh.leaf_elems() if e.parent == 3])
        domain = Domain.from_mesh(mesh)
        assert_dof_invariants(domain)
        assert_tangential_continuity(domain)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
