"""P-refinement: changing the expansion orders of leaf elements.

Safe bulk calls (global and filtered) clamp the resulting orders into
[1, MAX_POLYNOMIAL_ORDER] and skip interior elements. Explicit calls validate
the whole batch first and raise a ``PRefError`` without touching the mesh.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable

from .datastructures import MAX_POLYNOMIAL_ORDER
from .element import Element
from .errors import (
    ExceededMaxExpansion,
    NegExpansion,
    PRefDoubleRefinement,
    PRefElemDoesNotExist,
    PRefElemHasChildren,
)

if TYPE_CHECKING:
    from .mesh import Mesh

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PRef:
    """Signed change of the (u, v) expansion orders."""

    di: int = 0
    dj: int = 0

    @classmethod
    def uniform(cls, delta: int) -> PRef:
        return cls(delta, delta)

    @classmethod
    def from_orders(cls, current: tuple[int, int], target: tuple[int, int]) -> PRef:
        return cls(target[0] - current[0], target[1] - current[1])

    def __add__(self, other: PRef) -> PRef:
        return PRef(self.di + other.di, self.dj + other.dj)

    def apply(self, orders: tuple[int, int]) -> tuple[int, int]:
        return (orders[0] + self.di, orders[1] + self.dj)

    def clamped(self, orders: tuple[int, int]) -> PRef:
        """Restrict the deltas so that ``orders`` stays in [1, MAX_POLYNOMIAL_ORDER]."""
        return PRef(
            _clamp(self.di, 1 - orders[0], MAX_POLYNOMIAL_ORDER - orders[0]),
            _clamp(self.dj, 1 - orders[1], MAX_POLYNOMIAL_ORDER - orders[1]),
        )


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def check_orders(elem_id: int, orders: tuple[int, int]) -> None:
    if max(orders) > MAX_POLYNOMIAL_ORDER:
        raise ExceededMaxExpansion(elem_id, orders)
    if min(orders) < 1:
        raise NegExpansion(elem_id, orders)


def _checked_leaf(mesh: Mesh, elem_id: int) -> Element:
    if elem_id < 0 or elem_id >= len(mesh.elems):
        raise PRefElemDoesNotExist(elem_id)
    elem = mesh.elems[elem_id]
    if elem.has_children:
        raise PRefElemHasChildren(elem_id)
    return elem


# ============================================================================
# Explicit (strict) operations
# ============================================================================


def execute_p_refinements(mesh: Mesh, refinements: Iterable[tuple[int, PRef]]) -> None:
    """Apply a batch of order deltas, all or nothing.

    Deltas queued twice for the same element are summed before checking.
    """
    merged: dict[int, PRef] = {}
    for elem_id, pref in refinements:
        _checked_leaf(mesh, elem_id)
        merged[elem_id] = merged[elem_id] + pref if elem_id in merged else pref

    targets = {}
    for elem_id, pref in merged.items():
        target = pref.apply(mesh.elems[elem_id].orders)
        check_orders(elem_id, target)
        targets[elem_id] = target

    for elem_id, target in targets.items():
        mesh.elems[elem_id].orders = target
    log.info(f"Applied {len(targets)} p-refinements")


def set_expansion_orders(mesh: Mesh, orders: Iterable[tuple[int, tuple[int, int]]]) -> None:
    """Set absolute orders on a batch of leaf elements, all or nothing."""
    targets: dict[int, tuple[int, int]] = {}
    for elem_id, target in orders:
        _checked_leaf(mesh, elem_id)
        if elem_id in targets:
            raise PRefDoubleRefinement(elem_id)
        target = (int(target[0]), int(target[1]))
        check_orders(elem_id, target)
        targets[elem_id] = target

    for elem_id, target in targets.items():
        mesh.elems[elem_id].orders = target


def set_global_expansion_orders(mesh: Mesh, orders: tuple[int, int]) -> None:
    """Set the same absolute orders on every leaf element."""
    set_expansion_orders(mesh, ((elem.id, orders) for elem in mesh.leaf_elems()))


# ============================================================================
# Safe (clamping) operations
# ============================================================================


def global_p_refinement(mesh: Mesh, pref: PRef) -> None:
    p_refine_with_filter(mesh, lambda _elem: pref)


def p_refine_with_filter(mesh: Mesh, decide: Callable[[Element], PRef | None]) -> None:
    """Apply ``decide(elem)`` to every leaf, clamping the result into range."""
    count = 0
    for elem in mesh.leaf_elems():
        pref = decide(elem)
        if pref is None:
            continue
        elem.orders = pref.clamped(elem.orders).apply(elem.orders)
        count += 1
    log.debug(f"Filtered p-refinement touched {count} elems")
