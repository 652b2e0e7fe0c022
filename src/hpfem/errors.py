"""Exception hierarchy for the hp-refinement engine.

Explicit (strict) refinement calls, domain construction and sampling raise
these; the "safe" bulk refinement calls never do.
"""

from __future__ import annotations


class HPFemError(Exception):
    """Base class for all errors raised by hpfem."""


class MeshFileError(HPFemError):
    """A mesh description could not be parsed into a forest."""


# ============================================================================
# H-Refinement
# ============================================================================


class HRefError(HPFemError):
    """An h-refinement request could not be applied."""


class HRefElemDoesNotExist(HRefError):
    def __init__(self, elem_id: int):
        super().__init__(f"Elem {elem_id} does not exist; cannot apply h-refinement")
        self.elem_id = elem_id


class HRefElemHasChildren(HRefError):
    def __init__(self, elem_id: int):
        super().__init__(f"Elem {elem_id} has children; cannot apply h-refinement")
        self.elem_id = elem_id


class MinEdgeLength(HRefError):
    def __init__(self, elem_id: int):
        super().__init__(
            f"Elem {elem_id} has an edge at the minimum length; cannot apply h-refinement"
        )
        self.elem_id = elem_id


class HRefDoubleRefinement(HRefError):
    def __init__(self, elem_id: int):
        super().__init__(f"Elem {elem_id} was refined twice in the same direction")
        self.elem_id = elem_id


class BadExtensionIdx(HRefError):
    def __init__(self, idx: int):
        super().__init__(f"Extension index must be 0 or 1, got {idx}")
        self.idx = idx


# ============================================================================
# P-Refinement
# ============================================================================


class PRefError(HPFemError):
    """A p-refinement request could not be applied."""


class PRefElemDoesNotExist(PRefError):
    def __init__(self, elem_id: int):
        super().__init__(f"Elem {elem_id} does not exist; cannot apply p-refinement")
        self.elem_id = elem_id


class PRefElemHasChildren(PRefError):
    def __init__(self, elem_id: int):
        super().__init__(f"Elem {elem_id} has children; cannot apply p-refinement")
        self.elem_id = elem_id


class ExceededMaxExpansion(PRefError):
    def __init__(self, elem_id: int, orders: tuple[int, int]):
        super().__init__(f"Elem {elem_id} would exceed the maximum expansion order: {orders}")
        self.elem_id = elem_id
        self.orders = orders


class NegExpansion(PRefError):
    def __init__(self, elem_id: int, orders: tuple[int, int]):
        super().__init__(f"Elem {elem_id} would have a non-positive expansion order: {orders}")
        self.elem_id = elem_id
        self.orders = orders


class PRefDoubleRefinement(PRefError):
    def __init__(self, elem_id: int):
        super().__init__(f"Elem {elem_id} appears more than once in the same batch")
        self.elem_id = elem_id


# ============================================================================
# Domain / Sampling / Solving
# ============================================================================


class DomainConstructionError(HPFemError):
    """The forest could not be turned into a constrained basis space."""


class GalerkinSamplingError(HPFemError):
    """The Galerkin step could not produce a usable GEP."""


class EigensolverError(HPFemError):
    """An eigensolver backend failed to produce the requested eigenpairs."""
