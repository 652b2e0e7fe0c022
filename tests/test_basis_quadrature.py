"""Tests for quadrature, shape functions and the vector basis.

Run with: pytest tests/test_basis_quadrature.py -v
"""

import numpy as np
import pytest

from hpfem import BasisDir, KOLShapeFn, MaxOrthoShapeFn, get_shape_fn
from hpfem.basis import POLY, POLY_D1, POWER, POWER_D1, ElemMap, eval_curl, eval_vector
from hpfem.quadrature import default_num_points, gauss_legendre, map_to_range

SHAPE_FNS = [KOLShapeFn(), MaxOrthoShapeFn()]


class TestGaussLegendre:
    def test_weights_sum(self):
        for n in [1, 2, 5, 12]:
            _, weights = gauss_legendre(n)
            assert np.isclose(np.sum(weights), 2.0)

    def test_single_point(self):
        nodes, weights = gauss_legendre(1)
        assert nodes[0] == 0.0
        assert weights[0] == 2.0

    def test_exactness(self):
        """n points integrate x^k exactly for k <= 2n - 1."""
        n = 6
        nodes, weights = gauss_legendre(n)
        for k in range(2 * n):
            exact = 2.0 / (k + 1) if k % 2 == 0 else 0.0
            assert np.isclose(np.sum(weights * nodes**k), exact, atol=1e-13), f"Failed for k={k}"

    def test_nodes_sorted_symmetric(self):
        nodes, _ = gauss_legendre(7)
        assert np.all(np.diff(nodes) > 0)
        assert np.allclose(nodes, -nodes[::-1])

    def test_invalid(self):
        with pytest.raises(ValueError):
            gauss_legendre(0)

    def test_map_to_range(self):
        assert np.allclose(map_to_range(np.array([-1.0, 0.0, 1.0]), (2.0, 6.0)), [2.0, 4.0, 6.0])

    def test_default_points(self):
        assert default_num_points(4) == 6


class TestShapeFunctions:
    @pytest.mark.parametrize("shape_fn", SHAPE_FNS, ids=lambda s: s.name)
    def test_poly_endpoints(self, shape_fn):
        """poly_0 lives at -1, poly_1 at +1 and the rest vanish at both ends."""
        ends = np.array([-1.0, 1.0])
        assert np.allclose(shape_fn.poly(0, ends), [2.0, 0.0])
        assert np.allclose(shape_fn.poly(1, ends), [0.0, 2.0])
        for n in range(2, 9):
            assert np.allclose(shape_fn.poly(n, ends), 0.0, atol=1e-12), f"Failed for n={n}"

    @pytest.mark.parametrize("shape_fn", SHAPE_FNS, ids=lambda s: s.name)
    def test_derivatives(self, shape_fn):
        x = np.linspace(-0.9, 0.9, 7)
        h = 1e-6
        for n in range(0, 7):
            fd_power = (shape_fn.power(n, x + h) - shape_fn.power(n, x - h)) / (2 * h)
            fd_poly = (shape_fn.poly(n, x + h) - shape_fn.poly(n, x - h)) / (2 * h)
            assert np.allclose(shape_fn.power_d1(n, x), fd_power, atol=1e-5)
            assert np.allclose(shape_fn.poly_d1(n, x), fd_poly, atol=1e-5)

    def test_max_ortho_power_is_legendre(self):
        x = np.linspace(-1, 1, 9)
        fn = MaxOrthoShapeFn()
        assert np.allclose(fn.power(2, x), 0.5 * (3 * x**2 - 1))
        assert np.allclose(fn.power(3, x), 0.5 * (5 * x**3 - 3 * x))

    def test_max_ortho_poly_normalised(self):
        nodes, weights = gauss_legendre(20)
        fn = MaxOrthoShapeFn()
        for n in range(2, 10):
            assert np.isclose(np.sum(weights * fn.poly(n, nodes) ** 2), 1.0)

    def test_tables(self):
        fn = MaxOrthoShapeFn()
        x = np.linspace(-1, 1, 5)
        tables = fn.tables(3, x)
        assert tables.shape == (4, 4, 5)
        assert np.allclose(tables[POWER, 2], fn.power(2, x))
        assert np.allclose(tables[POLY, 3], fn.poly(3, x))
        assert np.allclose(tables[POLY_D1, 1], 1.0)
        assert np.allclose(tables[POWER_D1, 0], 0.0)

    def test_get_shape_fn(self):
        assert isinstance(get_shape_fn("kol"), KOLShapeFn)
        assert isinstance(get_shape_fn("max_ortho"), MaxOrthoShapeFn)
        with pytest.raises(ValueError):
            get_shape_fn("lagrange")


class TestVectorBasis:
    def test_elem_map(self):
        emap = ElemMap((1.0, 3.0), (0.0, 0.5))
        assert emap.hx == 1.0
        assert emap.hy == 0.25
        x, y = emap.to_physical(np.array([-1.0, 0.0]), np.array([1.0, 0.0]))
        assert np.allclose(x, [1.0, 2.0])
        assert np.allclose(y, [0.5, 0.25])
        u, v = emap.to_parametric(x, y)
        assert np.allclose(u, [-1.0, 0.0])
        assert np.allclose(v, [1.0, 0.0])

    def test_directions(self):
        fn = MaxOrthoShapeFn()
        emap = ElemMap((0.0, 2.0), (0.0, 4.0))
        u = v = np.array([0.3])
        fu = eval_vector(fn, BasisDir.U, 1, 0, emap, u, v)
        fv = eval_vector(fn, BasisDir.V, 0, 1, emap, u, v)
        assert fu[1, 0] == 0.0 and np.isclose(fu[0, 0], 0.3 * 0.7 / 1.0)
        assert fv[0, 0] == 0.0 and np.isclose(fv[1, 0], 0.7 * 0.3 / 2.0)

    @pytest.mark.parametrize("dir", [BasisDir.U, BasisDir.V])
    def test_curl_matches_finite_difference(self, dir):
        """curl f = d f_y / dx - d f_x / dy in physical coordinates."""
        fn = KOLShapeFn()
        emap = ElemMap((0.0, 2.0), (1.0, 1.5))
        u = np.array([-0.4, 0.1, 0.6])
        v = np.array([0.2, -0.5, 0.8])
        h = 1e-6
        for i, j in [(0, 0), (1, 2), (2, 3)]:

            def f(uu, vv):
                return eval_vector(fn, dir, i, j, emap, uu, vv)

            dfy_du = (f(u + h, v)[1] - f(u - h, v)[1]) / (2 * h)
            dfx_dv = (f(u, v + h)[0] - f(u, v - h)[0]) / (2 * h)
            expected = dfy_du / emap.hx - dfx_dv / emap.hy
            assert np.allclose(eval_curl(fn, dir, i, j, emap, u, v), expected, atol=1e-5)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
