# Overview: Unit-of-measure resolution and quantity conversion.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import Mapping, Optional

from ..extensions import db
from ..amounts import QUANTITY_QUANTUM, db_decimal, to_decimal
from ..errors import CyclicUnitGraph, IncompatibleUnits, NotFoundError, ValidationError
from ..models import Unit


OPERATOR_MULTIPLY = "*"
OPERATOR_DIVIDE = "/"

# Working precision for factor products before results are quantized
_PRECISION = 34


@dataclass(frozen=True)
class UnitNode:
    id: int
    base_unit_id: Optional[int]
    operator: Optional[str]
    operation_value: Optional[Decimal]


UnitGraph = Mapping[int, UnitNode]


def load_unit_graph() -> dict[int, UnitNode]:
    """Snapshot all units as plain nodes keyed by id."""
    return {
        unit.id: UnitNode(
            id=unit.id,
            base_unit_id=unit.base_unit_id,
            operator=unit.operator,
            operation_value=db_decimal(unit.operation_value) if unit.operation_value is not None else None,
        )
        for unit in db.session.query(Unit).all()
    }


def resolve_to_base(unit_id: int, graph: UnitGraph) -> tuple[int, Decimal]:
    """
    Walk base_unit links up to the root unit.

    Returns (root_unit_id, factor) where 1 of unit_id equals factor of the root.
    """
    factor = Decimal(1)
    seen: list[int] = []
    current = unit_id
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        while True:
            if current in seen:
                raise CyclicUnitGraph(
                    "Unit graph contains a cycle",
                    details={"unit_id": unit_id, "path": seen + [current]},
                )
            seen.append(current)
            node = graph.get(current)
            if node is None:
                raise NotFoundError(f"Unit {current} not found", details={"unit_id": current})
            if node.base_unit_id is None:
                return current, factor

            value = node.operation_value
            if value is None or value == 0:
                raise IncompatibleUnits(
                    f"Unit {current} has no usable operation_value", details={"unit_id": current}
                )
            if node.operator == OPERATOR_MULTIPLY:
                factor = factor * value
            elif node.operator == OPERATOR_DIVIDE:
                factor = factor / value
            else:
                raise IncompatibleUnits(
                    f"Unit {current} has unknown operator {node.operator!r}", details={"unit_id": current}
                )
            current = node.base_unit_id


def convert(
    quantity,
    from_unit_id: int,
    to_unit_id: int,
    graph: Optional[UnitGraph] = None,
) -> Decimal:
    """
    Convert a quantity between two units that share a root unit.

    Results keep six fractional digits. Units with different roots raise
    IncompatibleUnits; a loop in base_unit links raises CyclicUnitGraph.
    """
    qty = to_decimal(quantity, "quantity")
    if from_unit_id == to_unit_id:
        return qty.quantize(QUANTITY_QUANTUM)
    if graph is None:
        graph = load_unit_graph()

    from_root, from_factor = resolve_to_base(from_unit_id, graph)
    to_root, to_factor = resolve_to_base(to_unit_id, graph)
    if from_root != to_root:
        raise IncompatibleUnits(
            "Units do not share a base unit",
            details={"from_unit_id": from_unit_id, "to_unit_id": to_unit_id},
        )

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        result = qty * from_factor / to_factor
    return result.quantize(QUANTITY_QUANTUM)


def create_unit(
    *,
    code: str,
    name: str,
    base_unit_id: int | None = None,
    operator: str | None = None,
    operation_value=None,
) -> Unit:
    """Add a unit, rejecting links that would leave the graph cyclic or dangling."""
    if base_unit_id is not None:
        if operator not in (OPERATOR_MULTIPLY, OPERATOR_DIVIDE):
            raise ValidationError("operator must be '*' or '/' for derived units")
        value = to_decimal(operation_value, "operation_value")
        if value <= 0:
            raise ValidationError("operation_value must be positive")
        if db.session.get(Unit, base_unit_id) is None:
            raise NotFoundError(f"Unit {base_unit_id} not found")
    else:
        operator = None
        value = None

    unit = Unit(code=code, name=name, base_unit_id=base_unit_id, operator=operator, operation_value=value)
    db.session.add(unit)
    db.session.flush()
    # New unit has no children yet, so walking from it is enough to catch a loop
    resolve_to_base(unit.id, load_unit_graph())
    db.session.commit()
    return unit
