"""Shared fixtures for the hpfem tests."""

from pathlib import Path

import numpy as np
import pytest

from hpfem import HRef, Mesh

MESH_DIR = Path(__file__).resolve().parent.parent / "meshes"

TWO_ELEM_MESH = {
    "Nodes": [[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [0.0, 0.5], [1.0, 0.5], [2.0, 0.5]],
    "Elements": [
        {"materials": [1.0, 0.0, 1.0, 0.0], "node_ids": [0, 1, 3, 4]},
        {"materials": [1.2, 0.0, 0.9999, 0.0], "node_ids": [1, 2, 4, 5]},
    ],
}


@pytest.fixture
def unit_mesh():
    """Single element over [-1, 1]^2."""
    return Mesh.unit()


@pytest.fixture
def two_elem_mesh():
    """Air/teflon pair sharing the edge x = 1."""
    return Mesh.from_dict(TWO_ELEM_MESH)


@pytest.fixture
def cavity_mesh():
    """2x2 grid over [0, pi]^2."""
    return Mesh.structured(2, 2, lx=np.pi, ly=np.pi)


def shared_edge(mesh, a, b):
    """Id of the root edge shared by elements a and b."""
    common = set(mesh.elems[a].edges) & set(mesh.elems[b].edges)
    assert len(common) == 1
    return common.pop()


def refine_near_interface(mesh):
    """Order (4, 4), global T, then U on the leaves touching (1.0, 0.25)."""
    mesh.set_global_expansion_orders((4, 4))
    mesh.global_h_refinement(HRef.T())
    node_id = mesh.node_at(1.0, 0.25)
    mesh.h_refine_elems(mesh.elems_touching_node(node_id), HRef.U())
    return mesh


@pytest.fixture
def interface_mesh(two_elem_mesh):
    return refine_near_interface(two_elem_mesh)
