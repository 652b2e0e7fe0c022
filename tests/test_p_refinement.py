"""Tests for p-refinement.

Run with: pytest tests/test_p_refinement.py -v
"""

import pytest

from hpfem import MAX_POLYNOMIAL_ORDER, HRef, PRef
from hpfem.errors import (
    ExceededMaxExpansion,
    NegExpansion,
    PRefDoubleRefinement,
    PRefElemDoesNotExist,
    PRefElemHasChildren,
    PRefError,
)


class TestPRef:
    def test_arithmetic(self):
        assert PRef(1, 0) + PRef(0, 2) == PRef(1, 2)
        assert PRef.uniform(3).apply((1, 2)) == (4, 5)
        assert PRef.from_orders((2, 2), (5, 1)) == PRef(3, -1)

    def test_clamped(self):
        assert PRef.uniform(100).clamped((3, 4)) == PRef(17, 16)
        assert PRef.uniform(-100).clamped((3, 4)) == PRef(-2, -3)
        assert PRef(1, -1).clamped((3, 4)) == PRef(1, -1)


class TestSafeRefinement:
    """Global and filtered calls clamp and skip instead of raising."""

    def test_global_clamps_high(self, two_elem_mesh):
        two_elem_mesh.global_p_refinement(PRef.uniform(100))
        for elem in two_elem_mesh.elems:
            assert elem.orders == (MAX_POLYNOMIAL_ORDER, MAX_POLYNOMIAL_ORDER)

    def test_global_clamps_low(self, two_elem_mesh):
        two_elem_mesh.set_global_expansion_orders((4, 3))
        two_elem_mesh.global_p_refinement(PRef(-10, 1))
        for elem in two_elem_mesh.elems:
            assert elem.orders == (1, 4)

    def test_global_skips_interior(self, unit_mesh):
        unit_mesh.global_h_refinement(HRef.T())
        unit_mesh.global_p_refinement(PRef.uniform(2))
        assert unit_mesh.elems[0].orders == (1, 1)
        assert all(e.orders == (3, 3) for e in unit_mesh.leaf_elems())

    def test_filter(self, two_elem_mesh):
        two_elem_mesh.p_refine_with_filter(
            lambda elem: PRef(2, 0) if elem.materials.eps_rel.real > 1.1 else None
        )
        assert two_elem_mesh.elems[0].orders == (1, 1)
        assert two_elem_mesh.elems[1].orders == (3, 1)


class TestExplicitRefinement:
    """Explicit batches are validated before anything changes."""

    def test_apply(self, two_elem_mesh):
        two_elem_mesh.p_refine_elems([0, 1], PRef(2, 3))
        assert all(e.orders == (3, 4) for e in two_elem_mesh.elems)

    def test_duplicates_summed(self, two_elem_mesh):
        two_elem_mesh.execute_p_refinements([(0, PRef(1, 0)), (0, PRef(0, 2))])
        assert two_elem_mesh.elems[0].orders == (2, 3)

    def test_exceeds_max(self, two_elem_mesh):
        with pytest.raises(ExceededMaxExpansion) as exc_info:
            two_elem_mesh.p_refine_elems([0], PRef(MAX_POLYNOMIAL_ORDER, 0))
        assert exc_info.value.orders == (MAX_POLYNOMIAL_ORDER + 1, 1)

    def test_negative(self, two_elem_mesh):
        with pytest.raises(NegExpansion):
            two_elem_mesh.p_refine_elems([1], PRef(0, -1))

    def test_missing_elem(self, two_elem_mesh):
        with pytest.raises(PRefElemDoesNotExist):
            two_elem_mesh.p_refine_elems([5], PRef(1, 1))

    def test_interior_elem(self, unit_mesh):
        unit_mesh.global_h_refinement(HRef.T())
        with pytest.raises(PRefElemHasChildren):
            unit_mesh.p_refine_elems([0], PRef(1, 1))

    def test_batch_is_atomic(self, two_elem_mesh):
        with pytest.raises(PRefError):
            two_elem_mesh.execute_p_refinements([(0, PRef(1, 1)), (1, PRef(30, 0))])
        assert two_elem_mesh.elems[0].orders == (1, 1)
        assert two_elem_mesh.elems[1].orders == (1, 1)


class TestExpansionOrders:
    def test_set_orders(self, two_elem_mesh):
        two_elem_mesh.set_expansion_orders([(0, (2, 5)), (1, (3, 3))])
        assert two_elem_mesh.elems[0].orders == (2, 5)
        assert two_elem_mesh.elems[1].orders == (3, 3)

    def test_duplicate_id(self, two_elem_mesh):
        with pytest.raises(PRefDoubleRefinement):
            two_elem_mesh.set_expansion_orders([(0, (2, 2)), (0, (3, 3))])
        assert two_elem_mesh.elems[0].orders == (1, 1)

    def test_out_of_range(self, two_elem_mesh):
        with pytest.raises(NegExpansion):
            two_elem_mesh.set_expansion_orders([(0, (0, 2))])
        with pytest.raises(ExceededMaxExpansion):
            two_elem_mesh.set_global_expansion_orders((2, MAX_POLYNOMIAL_ORDER + 1))

    def test_global_orders_leaves_only(self, unit_mesh):
        unit_mesh.global_h_refinement(HRef.U())
        unit_mesh.set_global_expansion_orders((4, 4))
        assert unit_mesh.elems[0].orders == (1, 1)
        assert unit_mesh.max_expansion_orders() == (4, 4)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
