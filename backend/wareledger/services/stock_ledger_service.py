# Overview: Service-layer operations for the stock ledger; every stock change goes through here.

"""
Stock ledger invariants (authoritative)

- A stock level is keyed by (product, warehouse, variant, batch); a missing
  variant or batch is its own key, never a wildcard.
- Every change goes through post_delta(), which appends a StockMovement
  carrying the resulting balance in the same transaction.
- An outgoing delta may not take a level below zero unless the product
  allows oversell (product.allow_oversell, falling back to without_stock).
- Products with track_inventory=False never touch the ledger.
- Variant and batch totals (ProductVariant.qty / ProductBatch.qty) move by
  the same delta as the level they mirror.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional

from flask import current_app
from sqlalchemy import func, or_, update

from ..extensions import db
from ..amounts import ZERO, db_decimal, decimal_str, to_quantity
from ..errors import InsufficientStock, NotFoundError, ValidationError
from ..models import Product, ProductBatch, ProductVariant, StockLevel, StockMovement, Warehouse
from ..models.inventory import MOVEMENT_REASONS
from ..settings import EngineSettings, resolve_settings
from ..time_utils import today
from .concurrency import begin_write, insert_if_absent, lock_for_update, run_with_retry
from .event_service import append_event


BatchOrder = Callable[[ProductBatch], Any]


def fefo_order(batch: ProductBatch):
    """First-expired-first-out; batches without expiry go last, ties by age."""
    return (batch.expired_date is None, batch.expired_date or date.max, batch.id)


def allows_oversell(product: Product, settings: EngineSettings) -> bool:
    if product.allow_oversell is not None:
        return bool(product.allow_oversell)
    return settings.without_stock


def _key(variant_id: Optional[int], batch_id: Optional[int]) -> tuple[int, int]:
    return (variant_id or 0, batch_id or 0)


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def _validate_key(product: Product, warehouse_id: int, variant_id: Optional[int], batch_id: Optional[int]) -> None:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found", details={"warehouse_id": warehouse_id})
    if not warehouse.is_active:
        raise ValidationError("Warehouse is inactive", details={"warehouse_id": warehouse_id})

    if variant_id is not None:
        exists = db.session.query(ProductVariant.id).filter_by(
            product_id=product.id, variant_id=variant_id
        ).first()
        if exists is None:
            raise ValidationError(
                "Variant does not belong to product",
                details={"product_id": product.id, "variant_id": variant_id},
            )
    elif product.is_variant:
        raise ValidationError("Variant is required for this product", details={"product_id": product.id})

    if batch_id is not None:
        batch = db.session.get(ProductBatch, batch_id)
        if batch is None or batch.product_id != product.id:
            raise ValidationError(
                "Batch does not belong to product",
                details={"product_id": product.id, "batch_id": batch_id},
            )


def _locked_level(product_id: int, warehouse_id: int, variant_id: Optional[int], batch_id: Optional[int]) -> StockLevel:
    variant_key, batch_key = _key(variant_id, batch_id)
    insert_if_absent(
        StockLevel,
        {
            "product_id": product_id,
            "warehouse_id": warehouse_id,
            "variant_id": variant_id,
            "batch_id": batch_id,
            "variant_key": variant_key,
            "batch_key": batch_key,
            "qty": 0,
            "version_id": 1,
        },
        ["product_id", "warehouse_id", "variant_key", "batch_key"],
    )
    query = db.session.query(StockLevel).filter_by(
        product_id=product_id,
        warehouse_id=warehouse_id,
        variant_key=variant_key,
        batch_key=batch_key,
    )
    return lock_for_update(query).one()


def post_delta(
    *,
    product: Product,
    warehouse_id: int,
    variant_id: Optional[int],
    batch_id: Optional[int],
    quantity_delta,
    reason: str,
    settings: EngineSettings,
    document_id: int | None = None,
    document_line_id: int | None = None,
    reversal_of_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> Optional[StockMovement]:
    """
    Apply one signed delta inside the caller's transaction (no commit).

    Returns the StockMovement, or None when the product does not track
    inventory or the delta is zero.
    """
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"Unknown movement reason {reason!r}")
    delta = to_quantity(quantity_delta, "quantity_delta")
    if not product.track_inventory or delta == 0:
        return None

    level = _locked_level(product.id, warehouse_id, variant_id, batch_id)
    current = db_decimal(level.qty)
    new_qty = current + delta
    if delta < 0 and new_qty < 0 and not allows_oversell(product, settings):
        raise InsufficientStock(
            [
                {
                    "product_id": product.id,
                    "warehouse_id": warehouse_id,
                    "variant_id": variant_id,
                    "batch_id": batch_id,
                    "requested": decimal_str(-delta),
                    "available": decimal_str(current),
                }
            ]
        )

    level.qty = new_qty
    if variant_id is not None:
        db.session.execute(
            update(ProductVariant)
            .where(ProductVariant.product_id == product.id, ProductVariant.variant_id == variant_id)
            .values(qty=ProductVariant.qty + delta),
            execution_options={"synchronize_session": "fetch"},
        )
    if batch_id is not None:
        db.session.execute(
            update(ProductBatch)
            .where(ProductBatch.id == batch_id)
            .values(qty=ProductBatch.qty + delta),
            execution_options={"synchronize_session": "fetch"},
        )

    movement = StockMovement(
        stock_level_id=level.id,
        product_id=product.id,
        warehouse_id=warehouse_id,
        variant_id=variant_id,
        batch_id=batch_id,
        quantity_delta=delta,
        balance_after=new_qty,
        reason=reason,
        document_id=document_id,
        document_line_id=document_line_id,
        reversal_of_id=reversal_of_id,
        created_by_user_id=user_id,
        note=note,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def allocate_batches(
    *,
    product: Product,
    warehouse_id: int,
    variant_id: Optional[int],
    quantity,
    settings: EngineSettings,
    batch_order: Optional[BatchOrder] = None,
    on_date: Optional[date] = None,
) -> list[tuple[Optional[int], Decimal]]:
    """
    Split an outgoing quantity across unexpired batches with stock.

    Batches are consumed in batch_order (FEFO by default). When stock runs
    short the remainder lands on the first batch if oversell is allowed,
    otherwise InsufficientStock is raised.
    """
    needed = to_quantity(quantity)
    on_date = on_date or today()
    rows = (
        db.session.query(StockLevel, ProductBatch)
        .join(ProductBatch, ProductBatch.id == StockLevel.batch_id)
        .filter(
            StockLevel.product_id == product.id,
            StockLevel.warehouse_id == warehouse_id,
            StockLevel.variant_key == (variant_id or 0),
            StockLevel.batch_key != 0,
            StockLevel.qty > 0,
            or_(ProductBatch.expired_date.is_(None), ProductBatch.expired_date >= on_date),
        )
        .all()
    )
    rows.sort(key=lambda row: (batch_order or fefo_order)(row[1]))

    allocations: list[tuple[Optional[int], Decimal]] = []
    remaining = needed
    for level, batch in rows:
        if remaining <= 0:
            break
        take = min(db_decimal(level.qty), remaining)
        allocations.append((batch.id, take))
        remaining -= take

    if remaining > 0:
        if not allows_oversell(product, settings):
            raise InsufficientStock(
                [
                    {
                        "product_id": product.id,
                        "warehouse_id": warehouse_id,
                        "variant_id": variant_id,
                        "batch_id": None,
                        "requested": decimal_str(needed),
                        "available": decimal_str(needed - remaining),
                    }
                ]
            )
        if allocations:
            first_batch, first_qty = allocations[0]
            allocations[0] = (first_batch, first_qty + remaining)
        else:
            batch = _oversell_batch(product, warehouse_id, variant_id, batch_order or fefo_order, on_date)
            allocations.append((batch.id, remaining))
    return allocations


def _oversell_batch(
    product: Product,
    warehouse_id: int,
    variant_id: Optional[int],
    batch_order: BatchOrder,
    on_date: date,
) -> ProductBatch:
    """
    Pick the batch that carries an oversold remainder when no batch has stock.

    Unexpired batches already stocked in the warehouse (at zero or below)
    come first, then any other unexpired batch of the product, then any
    batch at all.
    """
    unexpired = or_(ProductBatch.expired_date.is_(None), ProductBatch.expired_date >= on_date)
    in_warehouse = (
        db.session.query(ProductBatch)
        .join(StockLevel, StockLevel.batch_id == ProductBatch.id)
        .filter(
            StockLevel.product_id == product.id,
            StockLevel.warehouse_id == warehouse_id,
            StockLevel.variant_key == (variant_id or 0),
            unexpired,
        )
        .all()
    )
    candidates = (
        in_warehouse
        or db.session.query(ProductBatch).filter(ProductBatch.product_id == product.id, unexpired).all()
        or db.session.query(ProductBatch).filter(ProductBatch.product_id == product.id).all()
    )
    if not candidates:
        raise ValidationError(
            "No batch available to oversell from",
            details={"product_id": product.id, "warehouse_id": warehouse_id},
        )
    return sorted(candidates, key=batch_order)[0]


def quantity_of(
    product_id: int,
    warehouse_id: int,
    variant_id: Optional[int] = None,
    batch_id: Optional[int] = None,
) -> Decimal:
    variant_key, batch_key = _key(variant_id, batch_id)
    qty = (
        db.session.query(StockLevel.qty)
        .filter_by(product_id=product_id, warehouse_id=warehouse_id, variant_key=variant_key, batch_key=batch_key)
        .scalar()
    )
    return to_quantity(db_decimal(qty)) if qty is not None else to_quantity(ZERO)


def product_totals(product_id: int, warehouse_id: int | None = None) -> Decimal:
    """Sum of every level of a product, optionally within one warehouse."""
    query = db.session.query(func.coalesce(func.sum(StockLevel.qty), 0)).filter(
        StockLevel.product_id == product_id
    )
    if warehouse_id is not None:
        query = query.filter(StockLevel.warehouse_id == warehouse_id)
    return to_quantity(db_decimal(query.scalar()))


def apply_delta(
    *,
    product_id: int,
    warehouse_id: int,
    quantity_delta,
    reason: str = "ADJUSTMENT",
    variant_id: int | None = None,
    batch_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
    commit: bool = True,
    settings: EngineSettings | None = None,
) -> Decimal:
    """
    Apply a single signed delta and return the resulting quantity.

    On a batch product without batch_id, incoming stock is rejected and
    outgoing stock is split across batches in FEFO order; the result is
    then the product's total in the warehouse.

    With commit=False the caller owns the unit of work and nothing is
    retried here.
    """
    settings = resolve_settings(settings)
    delta = to_quantity(quantity_delta, "quantity_delta")

    def _op():
        if commit:
            begin_write()
        product = _get_product(product_id)
        _validate_key(product, warehouse_id, variant_id, batch_id)

        split = product.is_batch and product.track_inventory and batch_id is None and delta != 0
        if split and delta > 0:
            raise ValidationError(
                "Batch is required for incoming stock on a batch product", details={"product_id": product_id}
            )
        if split:
            targets = allocate_batches(
                product=product, warehouse_id=warehouse_id, variant_id=variant_id, quantity=-delta, settings=settings
            )
            targets = [(target_batch, -qty) for target_batch, qty in targets]
        else:
            targets = [(batch_id, delta)]

        for target_batch, target_delta in targets:
            movement = post_delta(
                product=product,
                warehouse_id=warehouse_id,
                variant_id=variant_id,
                batch_id=target_batch,
                quantity_delta=target_delta,
                reason=reason,
                settings=settings,
                user_id=user_id,
                note=note,
            )
            if movement is not None:
                append_event(
                    event_type="stock.delta_applied",
                    event_category="stock",
                    entity_type="stock_movement",
                    entity_id=movement.id,
                    actor_user_id=user_id,
                    warehouse_id=warehouse_id,
                    note=note,
                    payload={"reason": reason, "delta": decimal_str(movement.quantity_delta)},
                )

        if split:
            result = product_totals(product_id, warehouse_id)
        elif movement is not None:
            result = to_quantity(db_decimal(movement.balance_after))
        else:
            result = quantity_of(product_id, warehouse_id, variant_id, batch_id)
        if commit:
            db.session.commit()
        return result

    if not commit:
        return _op()
    return run_with_retry(_op, settings=settings)


def create_batch(*, product_id: int, batch_no: str, expired_date: date | None = None) -> ProductBatch:
    product = _get_product(product_id)
    if not product.is_batch:
        raise ValidationError("Product is not batch tracked", details={"product_id": product_id})
    existing = db.session.query(ProductBatch).filter_by(product_id=product_id, batch_no=batch_no).first()
    if existing is not None:
        raise ValidationError("Batch number already exists", details={"batch_no": batch_no})
    batch = ProductBatch(product_id=product_id, batch_no=batch_no, expired_date=expired_date, qty=0)
    db.session.add(batch)
    db.session.commit()
    return batch


def list_levels(*, product_id: int | None = None, warehouse_id: int | None = None) -> list[StockLevel]:
    query = db.session.query(StockLevel)
    if product_id is not None:
        query = query.filter(StockLevel.product_id == product_id)
    if warehouse_id is not None:
        query = query.filter(StockLevel.warehouse_id == warehouse_id)
    return query.order_by(StockLevel.product_id, StockLevel.warehouse_id, StockLevel.id).all()


def list_movements(
    *,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    document_id: int | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    query = db.session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if warehouse_id is not None:
        query = query.filter(StockMovement.warehouse_id == warehouse_id)
    if document_id is not None:
        query = query.filter(StockMovement.document_id == document_id)
    return query.order_by(StockMovement.id.desc()).limit(limit).all()


def verify_stock_levels() -> list[dict]:
    """
    Compare every level with the sum of its movements.

    Returns one entry per mismatching level; an empty list means the
    ledger replays cleanly.
    """
    sums = dict(
        db.session.query(StockMovement.stock_level_id, func.coalesce(func.sum(StockMovement.quantity_delta), 0))
        .group_by(StockMovement.stock_level_id)
        .all()
    )
    problems = []
    for level in db.session.query(StockLevel).order_by(StockLevel.id).all():
        replayed = to_quantity(db_decimal(sums.get(level.id, 0)))
        stored = to_quantity(db_decimal(level.qty))
        if replayed != stored:
            problems.append(
                {
                    "stock_level_id": level.id,
                    "product_id": level.product_id,
                    "warehouse_id": level.warehouse_id,
                    "variant_id": level.variant_id,
                    "batch_id": level.batch_id,
                    "stored": decimal_str(stored),
                    "replayed": decimal_str(replayed),
                }
            )
    if problems:
        current_app.logger.warning("Stock verification found %s mismatched level(s)", len(problems))
    return problems
