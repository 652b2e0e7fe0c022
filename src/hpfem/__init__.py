"""hp-refinement engine for 2D H(curl) finite elements.

Elements are refined by superposition: refined elements stay in the forest
underneath their children, and continuity between generations is expressed
through the degrees of freedom rather than by replacing elements.

Main components:
- Mesh: element forest with h- and p-refinement
- Domain: H(curl) degrees of freedom over a finished mesh
- galerkin_sample_gep: sparse stiffness/mass matrices of a Domain
- solve_gep_dense, solve_gep_sparse: eigensolver backends
- UniformFieldSpace: field reconstruction and VTK export
"""

from .datastructures import (
    MAX_POLYNOMIAL_ORDER,
    MIN_EDGE_LENGTH,
    Edge,
    EdgeDir,
    Materials,
    Node,
    Point,
)
from .element import Element
from .mesh import Mesh
from .h_refinement import HLevels, HRef, HRefKind, HRefLoc
from .p_refinement import PRef
from .dof import BasisDir, BasisLoc, BasisSpec, DoF, Trace, TraceRelation, match_traces
from .domain import BoundaryCondition, ContinuityCondition, Domain
from .basis import KOLShapeFn, MaxOrthoShapeFn, ShapeFn, get_shape_fn
from .integrals import CurlCurl, Integral, L2InnerProduct, get_integral
from .galerkin import GEP, SamplingMetrics, default_num_workers, galerkin_sample_gep
from .eigensolvers import EigenPair, solve_gep_dense, solve_gep_sparse
from .fields import UniformFieldSpace
from .errors import (
    DomainConstructionError,
    EigensolverError,
    GalerkinSamplingError,
    HPFemError,
    HRefError,
    MeshFileError,
    PRefError,
)

__all__ = [
    # Geometry
    "MAX_POLYNOMIAL_ORDER",
    "MIN_EDGE_LENGTH",
    "Edge",
    "EdgeDir",
    "Materials",
    "Node",
    "Point",
    # Forest
    "Element",
    "Mesh",
    "HLevels",
    "HRef",
    "HRefKind",
    "HRefLoc",
    "PRef",
    # DOFs
    "BasisDir",
    "BasisLoc",
    "BasisSpec",
    "DoF",
    "Trace",
    "TraceRelation",
    "match_traces",
    "BoundaryCondition",
    "ContinuityCondition",
    "Domain",
    # Sampling
    "KOLShapeFn",
    "MaxOrthoShapeFn",
    "ShapeFn",
    "get_shape_fn",
    "CurlCurl",
    "Integral",
    "L2InnerProduct",
    "get_integral",
    "GEP",
    "SamplingMetrics",
    "default_num_workers",
    "galerkin_sample_gep",
    # Solving / output
    "EigenPair",
    "solve_gep_dense",
    "solve_gep_sparse",
    "UniformFieldSpace",
    # Errors
    "DomainConstructionError",
    "EigensolverError",
    "GalerkinSamplingError",
    "HPFemError",
    "HRefError",
    "MeshFileError",
    "PRefError",
]
