"""Field reconstruction from an eigenvector.

The field inside a leaf element is the sum of the basis functions of the
leaf and of every ancestor, so each leaf is sampled on a uniform grid and
the whole ancestor chain is evaluated at those points.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from .basis import ElemMap, MaxOrthoShapeFn, ShapeFn, eval_vector
from .domain import Domain

log = logging.getLogger(__name__)


class UniformFieldSpace:
    """Fields sampled on a uniform (u, v) grid inside every leaf element."""

    def __init__(
        self,
        domain: Domain,
        densities: tuple[int, int] = (10, 10),
        shape_fn: ShapeFn | None = None,
    ):
        self.domain = domain
        self.densities = densities
        self.shape_fn = shape_fn or MaxOrthoShapeFn()
        self.quantities: dict[str, NDArray[np.float64]] = {}

        u = np.linspace(-1.0, 1.0, densities[0])
        v = np.linspace(-1.0, 1.0, densities[1])
        uu, vv = np.meshgrid(u, v, indexing="ij")
        self._u, self._v = uu.ravel(), vv.ravel()

        xs, ys, elems = [], [], []
        mesh = domain.mesh
        self._leaves = [e.id for e in mesh.leaf_elems()]
        for leaf in self._leaves:
            x, y = ElemMap(*mesh.elem_bounds(leaf)).to_physical(self._u, self._v)
            xs.append(x)
            ys.append(y)
            elems.append(np.full(x.size, leaf))
        self.x = np.concatenate(xs) if xs else np.zeros(0)
        self.y = np.concatenate(ys) if ys else np.zeros(0)
        self.elem = np.concatenate(elems) if elems else np.zeros(0, dtype=np.int64)

    def xy_fields(self, name: str, eigenvector: NDArray[np.float64]) -> tuple[str, str]:
        """Evaluate the x and y components of the field of an eigenvector.

        Stored as ``{name}_x`` and ``{name}_y``; the names are returned.
        """
        eigenvector = np.asarray(eigenvector, dtype=np.float64)
        if eigenvector.size != self.domain.num_dofs:
            raise ValueError(
                f"Eigenvector length {eigenvector.size} != number of DOFs {self.domain.num_dofs}"
            )

        mesh = self.domain.mesh
        n_pts = self._u.size
        fx = np.zeros(self.x.size)
        fy = np.zeros(self.y.size)
        for k, leaf in enumerate(self._leaves):
            sl = slice(k * n_pts, (k + 1) * n_pts)
            x, y = self.x[sl], self.y[sl]
            for elem_id in mesh.ancestor_elems(leaf, include_self=True):
                emap = ElemMap(*mesh.elem_bounds(elem_id))
                u, v = emap.to_parametric(x, y)
                specs = self.domain.local_basis_specs(elem_id)
                coefficients = self.domain.local_basis_coefficients(elem_id)
                for spec, coefficient in zip(specs, coefficients):
                    weight = coefficient * eigenvector[spec.dof_id]
                    if weight == 0.0:
                        continue
                    values = eval_vector(self.shape_fn, spec.dir, spec.i, spec.j, emap, u, v)
                    fx[sl] += weight * values[0]
                    fy[sl] += weight * values[1]

        x_name, y_name = f"{name}_x", f"{name}_y"
        self.quantities[x_name] = fx
        self.quantities[y_name] = fy
        return x_name, y_name

    def to_dataframe(self) -> pd.DataFrame:
        """One row per sample point."""
        return pd.DataFrame({"x": self.x, "y": self.y, "elem": self.elem, **self.quantities})

    def to_vtk(self, path: str | Path) -> Path:
        """Write the sample points and all quantities as a VTK point cloud."""
        import meshio

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        points = np.column_stack([self.x, self.y, np.zeros_like(self.x)])
        cells = [("vertex", np.arange(len(points)).reshape(-1, 1))]
        meshio.write(path, meshio.Mesh(points, cells, point_data=dict(self.quantities)))
        log.info(f"Saved {len(self.quantities)} field quantities to {path}")
        return path
