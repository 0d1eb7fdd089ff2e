# Overview: Document lifecycle and settlement; turns documents into ledger deltas, payments and promotions.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..amounts import ZERO, db_decimal, decimal_str, round_money, to_decimal, to_quantity
from ..errors import (
    InsufficientStock,
    InvalidStateTransition,
    NotFoundError,
    RegisterError,
    ValidationError,
)
from ..models import (
    CashRegister,
    Customer,
    Document,
    DocumentLine,
    Product,
    ProductBatch,
    ProductVariant,
    StockMovement,
    Warehouse,
)
from ..models.catalog import PRODUCT_TYPE_COMBO, PRODUCT_TYPE_SERVICE, TAX_METHODS
from ..models.documents import (
    ADJUSTMENT,
    DOCUMENT_CLASSES,
    PAYMENT_UNPAID,
    PRODUCTION,
    PURCHASE,
    PURCHASE_RETURN,
    QUOTATION,
    ROLE_CONSUME,
    ROLE_PRODUCE,
    SALE,
    SALE_RETURN,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_DELETED,
    STATUS_DRAFT,
    STATUS_PENDING,
    TRANSFER,
)
from ..models.payments import PAYMENT_COMPLETED
from ..models.registers import REGISTER_OPEN
from ..settings import EngineSettings, resolve_settings
from ..time_utils import utcnow
from . import discount_service, payment_service, reward_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_reference_no
from .event_service import append_event
from .pricing_service import PricedLine, compute_line, compute_order
from .stock_ledger_service import BatchOrder, allocate_batches, post_delta
from .unit_service import UnitGraph, convert, load_unit_graph

"""
Settlement engine invariants (authoritative)

Lifecycle:
- DRAFT -> PENDING -> COMPLETED | CANCELLED; DRAFT/PENDING -> DELETED.
- Lines are only added while DRAFT. Totals and promotions are fixed at PENDING.
- A COMPLETED document is immutable; deleting it posts the inverse of every
  movement it caused, reverses its payments and releases its coupon.

Ledger effect (only at COMPLETED, or per fulfilled increment while PENDING):
- SALE, PURCHASE_RETURN: out of warehouse_id.
- PURCHASE, SALE_RETURN: into warehouse_id.
- TRANSFER: out of from_warehouse_id and into to_warehouse_id, batch for batch.
- ADJUSTMENT: per line action "+" in, "-" out.
- PRODUCTION: CONSUME lines out, PRODUCE lines in.
- QUOTATION: none.

Atomicity:
- Every operation is one transaction. If any line cannot be posted the whole
  transition rolls back and InsufficientStock lists every failing line.
"""


TRANSITIONS = {
    STATUS_DRAFT: {STATUS_PENDING, STATUS_CANCELLED},
    STATUS_PENDING: {STATUS_COMPLETED, STATUS_CANCELLED},
    STATUS_COMPLETED: set(),
    STATUS_CANCELLED: set(),
    STATUS_DELETED: set(),
}

INCOMING = "IN"
OUTGOING = "OUT"
MOVE = "MOVE"

_FULFILLABLE_TYPES = {SALE, PURCHASE, TRANSFER}
_PRICED_BY_SALE = {SALE, QUOTATION, SALE_RETURN}
_PRICED_BY_PURCHASE = {PURCHASE, PURCHASE_RETURN}
_RETURN_SOURCES = {SALE_RETURN: SALE, PURCHASE_RETURN: PURCHASE}

_LINE_FIELDS = {
    "product_id",
    "qty",
    "variant_id",
    "batch_id",
    "unit_id",
    "unit_price",
    "discount",
    "tax_rate",
    "tax_method",
    "action",
    "role",
    "return_of_line_id",
}


@dataclass(frozen=True)
class _Posting:
    settings: EngineSettings
    graph: UnitGraph
    batch_order: Optional[BatchOrder]
    user_id: Optional[int]


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, set())


def line_direction(document: Document, line: DocumentLine) -> Optional[str]:
    kind = document.document_type
    if kind in (SALE, PURCHASE_RETURN):
        return OUTGOING
    if kind in (PURCHASE, SALE_RETURN):
        return INCOMING
    if kind == TRANSFER:
        return MOVE
    if kind == ADJUSTMENT:
        return INCOMING if line.action == "+" else OUTGOING
    if kind == PRODUCTION:
        return INCOMING if line.role == ROLE_PRODUCE else OUTGOING
    return None


def _reason(document: Document, direction: str) -> str:
    kind = document.document_type
    if kind == PRODUCTION:
        return "PRODUCTION_OUTPUT" if direction == INCOMING else "PRODUCTION_CONSUME"
    return kind


def _posting(settings: EngineSettings, batch_order: Optional[BatchOrder], user_id: Optional[int]) -> _Posting:
    return _Posting(settings=settings, graph=load_unit_graph(), batch_order=batch_order, user_id=user_id)


def _load_locked(document_id: int) -> Document:
    document = lock_for_update(db.session.query(Document).filter_by(id=document_id)).first()
    if document is None:
        raise NotFoundError(f"Document {document_id} not found", details={"document_id": document_id})
    return document


def _line_failure(line: DocumentLine, exc: InsufficientStock) -> list[dict]:
    return [dict(entry, line_id=line.id, line_no=line.line_no) for entry in exc.lines]


# =============================================================================
# TOTALS
# =============================================================================

def _recalculate(document: Document, settings: EngineSettings) -> None:
    places = settings.decimal_places
    priced = []
    for line in document.lines:
        line_discount = db_decimal(line.discount) + db_decimal(line.promo_discount)
        amounts = compute_line(
            db_decimal(line.unit_price),
            db_decimal(line.qty),
            line_discount,
            db_decimal(line.tax_rate),
            line.tax_method,
            places=places,
        )
        line.subtotal = amounts.subtotal
        line.tax = amounts.tax
        line.total = amounts.total
        priced.append(PricedLine(qty=db_decimal(line.qty), discount=line_discount, amounts=amounts))

    totals = compute_order(
        priced,
        order_tax_rate=db_decimal(document.order_tax_rate),
        order_discount_type=document.order_discount_type,
        order_discount_value=db_decimal(document.order_discount_value),
        coupon_discount=db_decimal(document.coupon_discount),
        shipping_cost=db_decimal(document.shipping_cost),
        places=places,
    )
    document.item_count = totals.item_count
    document.total_qty = totals.total_qty
    document.total_discount = totals.total_discount
    document.total_tax = totals.total_tax
    document.total_price = totals.total_price
    document.order_discount = totals.order_discount
    document.coupon_discount = totals.coupon_discount
    document.order_tax = totals.order_tax
    document.shipping_cost = totals.shipping_cost
    document.grand_total = totals.grand_total


def _apply_promotions(document: Document, settings: EngineSettings) -> None:
    if document.document_type not in (SALE, QUOTATION):
        return
    cart = [
        discount_service.CartLine(
            product_id=line.product_id,
            qty=db_decimal(line.qty),
            unit_price=db_decimal(line.unit_price),
            discount=db_decimal(line.discount),
        )
        for line in document.lines
    ]
    resolution = discount_service.resolve(
        cart,
        customer_id=document.customer_id,
        coupon_code=document.coupon_code if document.document_type == SALE else None,
        settings=settings,
    )
    for line, promo in zip(document.lines, resolution.line_discounts):
        line.promo_discount = promo
    document.coupon_id = resolution.coupon_id
    document.coupon_discount = resolution.coupon_discount


# =============================================================================
# DRAFT CONSTRUCTION
# =============================================================================

def _default_unit_id(document: Document, product: Product) -> int:
    if document.document_type in _PRICED_BY_SALE and product.sale_unit_id:
        return product.sale_unit_id
    if document.document_type in _PRICED_BY_PURCHASE and product.purchase_unit_id:
        return product.purchase_unit_id
    return product.unit_id


def _default_unit_price(document: Document, product: Product, variant_id: Optional[int], unit_id: int, graph) -> Decimal:
    extra = ZERO
    if variant_id is not None:
        pv = db.session.query(ProductVariant).filter_by(product_id=product.id, variant_id=variant_id).first()
        if pv is not None:
            extra = db_decimal(pv.additional_price if document.document_type in _PRICED_BY_SALE else pv.additional_cost)
    if document.document_type in _PRICED_BY_SALE:
        base = db_decimal(product.price)
    else:
        base = db_decimal(product.cost)
    # Catalog prices are per stocking unit
    per_unit = convert(1, unit_id, product.unit_id, graph)
    return round_money((base + extra) * per_unit, 4)


def _add_line_locked(document: Document, spec: Mapping[str, Any], graph: UnitGraph) -> DocumentLine:
    unknown = sorted(set(spec) - _LINE_FIELDS)
    if unknown:
        raise ValidationError("Unknown line fields", details={"fields": unknown})
    if document.status != STATUS_DRAFT:
        raise InvalidStateTransition(
            f"Lines can only be added to a DRAFT document (status {document.status})",
            details={"document_id": document.id},
        )
    if spec.get("product_id") is None:
        raise ValidationError("product_id is required")
    product = db.session.get(Product, spec["product_id"])
    if product is None:
        raise NotFoundError(f"Product {spec['product_id']} not found", details={"product_id": spec["product_id"]})

    qty = to_quantity(spec.get("qty"), "qty")
    if qty <= 0:
        raise ValidationError("qty must be positive", details={"product_id": product.id})

    variant_id = spec.get("variant_id")
    unit_id = spec.get("unit_id") or _default_unit_id(document, product)
    if spec.get("unit_price") is not None:
        unit_price = to_decimal(spec["unit_price"], "unit_price")
    else:
        unit_price = _default_unit_price(document, product, variant_id, unit_id, graph)

    if spec.get("tax_rate") is not None:
        tax_rate = to_decimal(spec["tax_rate"], "tax_rate")
    elif document.document_type in (SALE, PURCHASE, QUOTATION) and product.tax is not None:
        tax_rate = db_decimal(product.tax.rate)
    else:
        tax_rate = ZERO
    tax_method = spec.get("tax_method") or product.tax_method
    if tax_method not in TAX_METHODS:
        raise ValidationError(f"Unknown tax method {tax_method!r}")

    line = DocumentLine(
        line_no=len(document.lines) + 1,
        product_id=product.id,
        variant_id=variant_id,
        batch_id=spec.get("batch_id"),
        unit_id=unit_id,
        qty=qty,
        fulfilled_qty=0,
        return_qty=0,
        unit_price=unit_price,
        discount=to_decimal(spec.get("discount") or 0, "discount"),
        promo_discount=0,
        tax_rate=tax_rate,
        tax_method=tax_method,
        action=spec.get("action"),
        role=spec.get("role"),
        return_of_line_id=spec.get("return_of_line_id"),
    )
    line.document = document
    db.session.add(line)
    return line


def _new_document_locked(
    document_type: str,
    *,
    warehouse_id=None,
    from_warehouse_id=None,
    to_warehouse_id=None,
    customer_id=None,
    supplier_id=None,
    cash_register_id=None,
    return_of_document_id=None,
    source_document_id=None,
    order_tax_rate=0,
    order_discount_type=None,
    order_discount_value=0,
    shipping_cost=0,
    coupon_code=None,
    note=None,
    user_id=None,
) -> Document:
    cls = DOCUMENT_CLASSES.get(document_type)
    if cls is None:
        raise ValidationError(f"Unknown document type {document_type!r}", details={"document_type": document_type})
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    if cash_register_id is not None:
        register = db.session.get(CashRegister, cash_register_id)
        if register is None:
            raise NotFoundError(f"Cash register {cash_register_id} not found")
        if register.status != REGISTER_OPEN:
            raise RegisterError("Cash register is closed", details={"cash_register_id": cash_register_id})
        if warehouse_id is not None and register.warehouse_id != warehouse_id:
            raise RegisterError("Cash register belongs to another warehouse")
    if coupon_code and document_type != SALE:
        raise ValidationError("Coupons only apply to sales")

    document = cls(
        reference_no=next_reference_no(document_type),
        status=STATUS_DRAFT,
        payment_status=PAYMENT_UNPAID if cls.payable else None,
        warehouse_id=warehouse_id,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        customer_id=customer_id,
        supplier_id=supplier_id,
        user_id=user_id,
        cash_register_id=cash_register_id,
        return_of_document_id=return_of_document_id,
        source_document_id=source_document_id,
        coupon_code=coupon_code or None,
        order_tax_rate=to_decimal(order_tax_rate or 0, "order_tax_rate"),
        order_discount_type=order_discount_type,
        order_discount_value=to_decimal(order_discount_value or 0, "order_discount_value"),
        shipping_cost=to_decimal(shipping_cost or 0, "shipping_cost"),
        coupon_discount=0,
        paid_amount=0,
        note=note,
    )
    db.session.add(document)
    db.session.flush()
    return document


# =============================================================================
# VALIDATION (DRAFT -> PENDING)
# =============================================================================

def _check_warehouse(warehouse_id, field: str, problems: list) -> None:
    if warehouse_id is None:
        problems.append({"field": field, "error": "is required"})
        return
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        problems.append({"field": field, "error": "not found"})
    elif not warehouse.is_active:
        problems.append({"field": field, "error": "warehouse is inactive"})


def _validate_line(document: Document, line: DocumentLine, posting: _Posting, problems: list) -> None:
    product = line.product

    def problem(message):
        problems.append({"line_no": line.line_no, "product_id": line.product_id, "error": message})

    if not product.is_active:
        problem("product is inactive")
    if db_decimal(line.qty) <= 0:
        problem("qty must be positive")

    # Raises IncompatibleUnits / CyclicUnitGraph straight away
    convert(db_decimal(line.qty), line.unit_id or product.unit_id, product.unit_id, posting.graph)

    if product.type == PRODUCT_TYPE_COMBO:
        if line.variant_id is not None or line.batch_id is not None:
            problem("combo lines take no variant or batch")
        if not product.components:
            problem("combo product has no components")
    else:
        if product.is_variant and line.variant_id is None:
            problem("variant is required")
        elif line.variant_id is not None:
            exists = db.session.query(ProductVariant.id).filter_by(
                product_id=product.id, variant_id=line.variant_id
            ).first()
            if exists is None:
                problem("variant does not belong to product")
        if line.batch_id is not None:
            batch = db.session.get(ProductBatch, line.batch_id)
            if batch is None or batch.product_id != product.id:
                problem("batch does not belong to product")
        elif (
            product.is_batch
            and product.track_inventory
            and line_direction(document, line) == INCOMING
            and document.document_type != SALE_RETURN
        ):
            problem("batch is required for incoming batch products")

    if document.document_type == ADJUSTMENT and line.action not in ("+", "-"):
        problem("action must be '+' or '-'")
    if document.document_type == PRODUCTION and line.role not in (ROLE_CONSUME, ROLE_PRODUCE):
        problem("role must be CONSUME or PRODUCE")

    if document.document_type in _RETURN_SOURCES:
        original = line.return_of_line
        if original is None or original.document_id != document.return_of_document_id:
            problem("line does not belong to the returned document")
        elif original.product_id != line.product_id:
            problem("returned product does not match the original line")
        elif db_decimal(line.qty) > db_decimal(original.qty) - db_decimal(original.return_qty):
            problem("return quantity exceeds what is left to return")


def _validate_for_pending(document: Document, posting: _Posting) -> None:
    problems: list[dict] = []
    kind = document.document_type

    if not document.lines:
        problems.append({"field": "lines", "error": "document has no lines"})

    if kind == TRANSFER:
        _check_warehouse(document.from_warehouse_id, "from_warehouse_id", problems)
        _check_warehouse(document.to_warehouse_id, "to_warehouse_id", problems)
        if document.from_warehouse_id is not None and document.from_warehouse_id == document.to_warehouse_id:
            problems.append({"field": "to_warehouse_id", "error": "must differ from from_warehouse_id"})
    else:
        _check_warehouse(document.warehouse_id, "warehouse_id", problems)

    if kind == PRODUCTION:
        roles = {line.role for line in document.lines}
        if ROLE_PRODUCE not in roles or ROLE_CONSUME not in roles:
            problems.append({"field": "lines", "error": "production needs CONSUME and PRODUCE lines"})

    if kind in _RETURN_SOURCES:
        original = document.return_of
        if original is None:
            problems.append({"field": "return_of_document_id", "error": "is required"})
        elif original.document_type != _RETURN_SOURCES[kind] or original.status != STATUS_COMPLETED:
            problems.append(
                {"field": "return_of_document_id", "error": f"must be a completed {_RETURN_SOURCES[kind]}"}
            )

    for line in document.lines:
        _validate_line(document, line, posting, problems)

    if problems:
        raise ValidationError("Document is not valid", details={"document_id": document.id, "problems": problems})


# =============================================================================
# LEDGER POSTING
# =============================================================================

def _post(document, line, product, warehouse_id, variant_id, batch_id, qty, reason, posting: _Posting):
    post_delta(
        product=product,
        warehouse_id=warehouse_id,
        variant_id=variant_id,
        batch_id=batch_id,
        quantity_delta=qty,
        reason=reason,
        settings=posting.settings,
        document_id=document.id,
        document_line_id=line.id,
        user_id=posting.user_id,
        note=document.reference_no,
    )


def _post_outgoing(document, line, product, warehouse_id, variant_id, batch_id, qty, reason, posting: _Posting):
    if product.track_inventory and product.is_batch and batch_id is None:
        allocations = allocate_batches(
            product=product,
            warehouse_id=warehouse_id,
            variant_id=variant_id,
            quantity=qty,
            settings=posting.settings,
            batch_order=posting.batch_order,
        )
    else:
        allocations = [(batch_id, qty)]
    for alloc_batch, alloc_qty in allocations:
        _post(document, line, product, warehouse_id, variant_id, alloc_batch, -alloc_qty, reason, posting)
    return allocations


def _return_allocations(line: DocumentLine, product: Product, qty: Decimal) -> list[tuple[Optional[int], Decimal]]:
    """
    Batches a sale return restocks into: the batches the original line drew
    from, net of what earlier returns put back and did not reverse.
    """
    original = line.return_of_line
    if original is None:
        return [(None, qty)]

    taken_rows = (
        db.session.query(StockMovement.batch_id, func.sum(StockMovement.quantity_delta), func.min(StockMovement.id))
        .filter(
            StockMovement.document_line_id == original.id,
            StockMovement.product_id == product.id,
            StockMovement.quantity_delta < 0,
        )
        .group_by(StockMovement.batch_id)
        .order_by(func.min(StockMovement.id))
        .all()
    )
    restored = dict(
        db.session.query(StockMovement.batch_id, func.sum(StockMovement.quantity_delta))
        .join(DocumentLine, DocumentLine.id == StockMovement.document_line_id)
        .filter(
            DocumentLine.return_of_line_id == original.id,
            StockMovement.product_id == product.id,
            StockMovement.reason.in_((SALE_RETURN, "REVERSAL")),
        )
        .group_by(StockMovement.batch_id)
        .all()
    )

    allocations: list[tuple[Optional[int], Decimal]] = []
    remaining = qty
    for batch_id, taken, _first in taken_rows:
        if remaining <= 0:
            break
        available = to_quantity(-db_decimal(taken) - db_decimal(restored.get(batch_id, 0)))
        if available <= 0:
            continue
        put_back = min(available, remaining)
        allocations.append((batch_id, put_back))
        remaining -= put_back
    if remaining > 0:
        last_batch = taken_rows[-1][0] if taken_rows else None
        allocations.append((last_batch, remaining))
    return allocations


def _post_target(document, line, product, variant_id, batch_id, qty, direction, posting: _Posting) -> None:
    if direction == OUTGOING:
        _post_outgoing(
            document, line, product, document.warehouse_id, variant_id, batch_id, qty,
            _reason(document, direction), posting,
        )
    elif direction == INCOMING:
        if document.document_type == SALE_RETURN and batch_id is None and product.is_batch:
            allocations = _return_allocations(line, product, qty)
        else:
            allocations = [(batch_id, qty)]
        for alloc_batch, alloc_qty in allocations:
            _post(
                document, line, product, document.warehouse_id, variant_id, alloc_batch, alloc_qty,
                _reason(document, direction), posting,
            )
    else:
        allocations = _post_outgoing(
            document, line, product, document.from_warehouse_id, variant_id, batch_id, qty,
            "TRANSFER_OUT", posting,
        )
        for alloc_batch, alloc_qty in allocations:
            _post(
                document, line, product, document.to_warehouse_id, variant_id, alloc_batch, alloc_qty,
                "TRANSFER_IN", posting,
            )


def _post_line(document: Document, line: DocumentLine, quantity: Decimal, posting: _Posting) -> None:
    """Post `quantity` (in the line's unit) of one line to the ledger."""
    direction = line_direction(document, line)
    product = line.product
    if direction is None or product.type == PRODUCT_TYPE_SERVICE or quantity <= 0:
        return
    stock_qty = convert(quantity, line.unit_id or product.unit_id, product.unit_id, posting.graph)

    if product.type == PRODUCT_TYPE_COMBO:
        for component in product.components:
            _post_target(
                document, line, component.component, component.variant_id, None,
                to_quantity(stock_qty * db_decimal(component.qty)), direction, posting,
            )
    else:
        _post_target(document, line, product, line.variant_id, line.batch_id, stock_qty, direction, posting)


def _post_lines(document: Document, increments: Iterable[tuple[DocumentLine, Decimal]], posting: _Posting) -> None:
    """Post every increment, then raise one InsufficientStock naming all failing lines."""
    failures: list[dict] = []
    for line, quantity in increments:
        try:
            _post_line(document, line, quantity, posting)
        except InsufficientStock as exc:
            failures.extend(_line_failure(line, exc))
    if failures:
        current_app.logger.warning(
            "Insufficient stock on %s: %s failing line(s)", document.reference_no, len(failures)
        )
        raise InsufficientStock(failures)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _to_pending_locked(document: Document, posting: _Posting) -> None:
    _validate_for_pending(document, posting)
    _apply_promotions(document, posting.settings)
    _recalculate(document, posting.settings)
    document.status = STATUS_PENDING
    document.pending_at = utcnow()
    append_event(
        event_type="document.pending",
        event_category="document",
        entity_type="document",
        entity_id=document.id,
        actor_user_id=posting.user_id,
        warehouse_id=document.warehouse_id or document.from_warehouse_id,
        document_id=document.id,
        payload={"grand_total": decimal_str(document.grand_total)},
    )


def _apply_return_quantities(document: Document, sign: int) -> None:
    for line in document.lines:
        original = line.return_of_line
        if original is None:
            continue
        new_qty = db_decimal(original.return_qty) + sign * db_decimal(line.qty)
        if new_qty > db_decimal(original.qty) or new_qty < 0:
            raise ValidationError(
                "Return quantity exceeds what is left to return",
                details={"line_no": line.line_no, "return_of_line_id": original.id},
            )
        original.return_qty = new_qty


def _complete_locked(
    document: Document,
    posting: _Posting,
    payments: Optional[list[Mapping[str, Any]]] = None,
) -> None:
    if document.status == STATUS_COMPLETED:
        raise InvalidStateTransition("Document is already completed", details={"document_id": document.id})
    if document.status != STATUS_PENDING:
        raise InvalidStateTransition(
            f"Cannot complete a {document.status} document", details={"document_id": document.id}
        )

    if document.document_type in _RETURN_SOURCES:
        _apply_return_quantities(document, +1)

    increments = [(line, db_decimal(line.qty) - db_decimal(line.fulfilled_qty)) for line in document.lines]
    _post_lines(document, increments, posting)
    for line in document.lines:
        line.fulfilled_qty = line.qty
        if document.document_type == SALE:
            line.is_delivered = True

    if document.coupon_id is not None:
        discount_service.redeem_coupon(
            document.coupon_id, document.id, db_decimal(document.coupon_discount), user_id=posting.user_id
        )

    document.status = STATUS_COMPLETED
    document.completed_at = utcnow()

    for request in payments or []:
        request = dict(request)
        request.setdefault("cash_register_id", document.cash_register_id)
        payment_service._allocate_locked(
            document,
            request.pop("amount", None),
            request.pop("method", None),
            request.pop("detail", None),
            settings=posting.settings,
            user_id=posting.user_id,
            **request,
        )

    if document.document_type == SALE:
        reward_service.earn_for_sale(document, settings=posting.settings, user_id=posting.user_id)

    append_event(
        event_type="document.completed",
        event_category="document",
        entity_type="document",
        entity_id=document.id,
        actor_user_id=posting.user_id,
        warehouse_id=document.warehouse_id or document.from_warehouse_id,
        document_id=document.id,
        cash_register_id=document.cash_register_id,
        occurred_at=document.completed_at,
        payload={"grand_total": decimal_str(document.grand_total), "payment_status": document.payment_status},
    )


def _has_live_payments(document: Document) -> bool:
    return any(p.status == PAYMENT_COMPLETED for p in document.payments)


def _cancel_locked(document: Document, posting: _Posting) -> None:
    if any(db_decimal(line.fulfilled_qty) > 0 for line in document.lines):
        raise InvalidStateTransition(
            "Document has fulfilled quantities; delete it to reverse them",
            details={"document_id": document.id},
        )
    if _has_live_payments(document):
        raise InvalidStateTransition(
            "Document has payments; reverse them first", details={"document_id": document.id}
        )
    document.status = STATUS_CANCELLED
    document.cancelled_at = utcnow()
    append_event(
        event_type="document.cancelled",
        event_category="document",
        entity_type="document",
        entity_id=document.id,
        actor_user_id=posting.user_id,
        document_id=document.id,
    )


def _transition_locked(
    document: Document,
    to_status: str,
    posting: _Posting,
    payments: Optional[list[Mapping[str, Any]]] = None,
) -> None:
    if to_status == STATUS_COMPLETED and document.status == STATUS_COMPLETED:
        raise InvalidStateTransition("Document is already completed", details={"document_id": document.id})
    if not can_transition(document.status, to_status):
        raise InvalidStateTransition(
            f"Cannot move document from {document.status} to {to_status}",
            details={"document_id": document.id, "from": document.status, "to": to_status},
        )
    if to_status == STATUS_PENDING:
        _to_pending_locked(document, posting)
    elif to_status == STATUS_COMPLETED:
        _complete_locked(document, posting, payments)
    elif to_status == STATUS_CANCELLED:
        _cancel_locked(document, posting)


# =============================================================================
# PUBLIC API
# =============================================================================

def create_document(
    document_type: str,
    *,
    lines: Optional[list[Mapping[str, Any]]] = None,
    complete: bool = False,
    payments: Optional[list[Mapping[str, Any]]] = None,
    user_id: int | None = None,
    settings: EngineSettings | None = None,
    batch_order: Optional[BatchOrder] = None,
    **fields,
) -> Document:
    """
    Create a DRAFT document with its lines.

    complete=True also validates, prices and completes it (with optional
    payments) in the same transaction, the way a POS checkout does.
    """
    settings = resolve_settings(settings)
    if payments and not complete:
        raise ValidationError("Payments at creation need complete=True")

    def _op():
        begin_write()
        posting = _posting(settings, batch_order, user_id)
        document = _new_document_locked(document_type, user_id=user_id, **fields)
        for spec in lines or []:
            _add_line_locked(document, spec, posting.graph)
        db.session.flush()
        _recalculate(document, settings)
        append_event(
            event_type="document.created",
            event_category="document",
            entity_type="document",
            entity_id=document.id,
            actor_user_id=user_id,
            warehouse_id=document.warehouse_id or document.from_warehouse_id,
            document_id=document.id,
            payload={"document_type": document_type, "reference_no": document.reference_no},
        )
        if complete:
            _transition_locked(document, STATUS_PENDING, posting)
            _transition_locked(document, STATUS_COMPLETED, posting, payments)
        db.session.commit()
        current_app.logger.info("Created %s %s (%s)", document_type, document.reference_no, document.status)
        return document

    return run_with_retry(_op, settings=settings)


def add_line(
    document_id: int,
    *,
    user_id: int | None = None,
    settings: EngineSettings | None = None,
    **spec,
) -> DocumentLine:
    settings = resolve_settings(settings)

    def _op():
        begin_write()
        document = _load_locked(document_id)
        line = _add_line_locked(document, spec, load_unit_graph())
        db.session.flush()
        _recalculate(document, settings)
        db.session.commit()
        return line

    return run_with_retry(_op, settings=settings)


def transition(
    document_id: int,
    to_status: str,
    *,
    payments: Optional[list[Mapping[str, Any]]] = None,
    user_id: int | None = None,
    settings: EngineSettings | None = None,
    batch_order: Optional[BatchOrder] = None,
) -> Document:
    """
    Move a document along its lifecycle.

    COMPLETED applies every line's ledger delta, redeems the coupon, records
    the given payments and earns reward points, all or nothing. Completing
    an already COMPLETED document raises InvalidStateTransition and changes
    nothing.
    """
    settings = resolve_settings(settings)
    if payments and to_status != STATUS_COMPLETED:
        raise ValidationError("Payments can only be recorded on completion")

    def _op():
        begin_write()
        document = _load_locked(document_id)
        posting = _posting(settings, batch_order, user_id)
        _transition_locked(document, to_status, posting, payments)
        db.session.commit()
        current_app.logger.info("Document %s moved to %s", document.reference_no, to_status)
        return document

    return run_with_retry(_op, settings=settings)


def fulfill_lines(
    document_id: int,
    quantities: Mapping[int, Any],
    *,
    user_id: int | None = None,
    settings: EngineSettings | None = None,
    batch_order: Optional[BatchOrder] = None,
) -> Document:
    """
    Post partial receipts (purchases), deliveries (sales) or dispatches
    (transfers) for a PENDING document, keyed by line id.

    Only the new increment hits the ledger; completion later posts whatever
    is still outstanding.
    """
    settings = resolve_settings(settings)

    def _op():
        begin_write()
        document = _load_locked(document_id)
        if document.document_type not in _FULFILLABLE_TYPES:
            raise ValidationError(f"{document.document_type} documents cannot be fulfilled in parts")
        if document.status != STATUS_PENDING:
            raise InvalidStateTransition(
                f"Cannot fulfil a {document.status} document", details={"document_id": document.id}
            )
        lines_by_id = {line.id: line for line in document.lines}
        increments = []
        for raw_line_id, raw_qty in quantities.items():
            line = lines_by_id.get(int(raw_line_id))
            if line is None:
                raise ValidationError("Line does not belong to document", details={"line_id": raw_line_id})
            increment = to_quantity(raw_qty)
            outstanding = db_decimal(line.qty) - db_decimal(line.fulfilled_qty)
            if increment <= 0 or increment > outstanding:
                raise ValidationError(
                    "Fulfilled quantity must be positive and within what is outstanding",
                    details={"line_id": line.id, "outstanding": decimal_str(outstanding)},
                )
            increments.append((line, increment))

        posting = _posting(settings, batch_order, user_id)
        _post_lines(document, increments, posting)
        for line, increment in increments:
            line.fulfilled_qty = db_decimal(line.fulfilled_qty) + increment
            if document.document_type == SALE and db_decimal(line.fulfilled_qty) >= db_decimal(line.qty):
                line.is_delivered = True

        append_event(
            event_type="document.fulfilled",
            event_category="document",
            entity_type="document",
            entity_id=document.id,
            actor_user_id=user_id,
            document_id=document.id,
            payload={str(line.id): decimal_str(qty) for line, qty in increments},
        )
        db.session.commit()
        return document

    return run_with_retry(_op, settings=settings)


def mark_packed(document_id: int, line_ids: Iterable[int], *, settings: EngineSettings | None = None) -> Document:
    """Flag sale lines as packed. No ledger effect."""
    settings = resolve_settings(settings)

    def _op():
        begin_write()
        document = _load_locked(document_id)
        if document.document_type != SALE or document.status not in (STATUS_PENDING, STATUS_COMPLETED):
            raise ValidationError("Only pending or completed sales can be packed")
        wanted = {int(i) for i in line_ids}
        for line in document.lines:
            if line.id in wanted:
                line.is_packing = True
        db.session.commit()
        return document

    return run_with_retry(_op, settings=settings)


def create_return(
    original_document_id: int,
    lines: list[Mapping[str, Any]],
    *,
    user_id: int | None = None,
    note: str | None = None,
    settings: EngineSettings | None = None,
) -> Document:
    """
    Draft a sale or purchase return for part of a completed document.

    lines: [{"line_id": original line id, "qty": quantity to return}, ...]
    Prices, taxes and a pro-rated share of the original discounts are copied
    from the original lines.
    """
    settings = resolve_settings(settings)
    if not lines:
        raise ValidationError("A return needs at least one line")

    def _op():
        begin_write()
        original = _load_locked(original_document_id)
        if original.document_type not in (SALE, PURCHASE) or original.status != STATUS_COMPLETED:
            raise ValidationError("Only completed sales and purchases can be returned")
        return_type = SALE_RETURN if original.document_type == SALE else PURCHASE_RETURN

        document = _new_document_locked(
            return_type,
            warehouse_id=original.warehouse_id,
            customer_id=original.customer_id,
            supplier_id=original.supplier_id,
            return_of_document_id=original.id,
            order_tax_rate=db_decimal(original.order_tax_rate),
            note=note,
            user_id=user_id,
        )
        graph = load_unit_graph()
        originals = {line.id: line for line in original.lines}
        for request in lines:
            source = originals.get(int(request.get("line_id", 0)))
            if source is None:
                raise ValidationError("Line does not belong to the original document", details=dict(request))
            qty = to_quantity(request.get("qty"))
            left = db_decimal(source.qty) - db_decimal(source.return_qty)
            if qty <= 0 or qty > left:
                raise ValidationError(
                    "Return quantity exceeds what is left to return",
                    details={"line_id": source.id, "returnable": decimal_str(left)},
                )
            share = qty / db_decimal(source.qty)
            discount = round_money(
                (db_decimal(source.discount) + db_decimal(source.promo_discount)) * share, settings.decimal_places
            )
            _add_line_locked(
                document,
                {
                    "product_id": source.product_id,
                    "qty": qty,
                    "variant_id": source.variant_id,
                    "batch_id": source.batch_id,
                    "unit_id": source.unit_id,
                    "unit_price": db_decimal(source.unit_price),
                    "discount": discount,
                    "tax_rate": db_decimal(source.tax_rate),
                    "tax_method": source.tax_method,
                    "return_of_line_id": source.id,
                },
                graph,
            )
        db.session.flush()
        _recalculate(document, settings)
        append_event(
            event_type="document.created",
            event_category="document",
            entity_type="document",
            entity_id=document.id,
            actor_user_id=user_id,
            warehouse_id=document.warehouse_id,
            document_id=document.id,
            payload={"document_type": return_type, "return_of": original.reference_no},
        )
        db.session.commit()
        return document

    return run_with_retry(_op, settings=settings)


def convert_quotation(
    quotation_id: int,
    *,
    user_id: int | None = None,
    settings: EngineSettings | None = None,
) -> Document:
    """Turn a PENDING quotation into a DRAFT sale; the quotation becomes COMPLETED."""
    settings = resolve_settings(settings)

    def _op():
        begin_write()
        quotation = _load_locked(quotation_id)
        if quotation.document_type != QUOTATION:
            raise ValidationError("Document is not a quotation")
        if quotation.status != STATUS_PENDING:
            raise InvalidStateTransition(
                f"Cannot convert a {quotation.status} quotation", details={"document_id": quotation.id}
            )

        sale = _new_document_locked(
            SALE,
            warehouse_id=quotation.warehouse_id,
            customer_id=quotation.customer_id,
            source_document_id=quotation.id,
            order_tax_rate=db_decimal(quotation.order_tax_rate),
            order_discount_type=quotation.order_discount_type,
            order_discount_value=db_decimal(quotation.order_discount_value),
            shipping_cost=db_decimal(quotation.shipping_cost),
            note=quotation.note,
            user_id=user_id,
        )
        graph = load_unit_graph()
        for line in quotation.lines:
            _add_line_locked(
                sale,
                {
                    "product_id": line.product_id,
                    "qty": db_decimal(line.qty),
                    "variant_id": line.variant_id,
                    "batch_id": line.batch_id,
                    "unit_id": line.unit_id,
                    "unit_price": db_decimal(line.unit_price),
                    "discount": db_decimal(line.discount),
                    "tax_rate": db_decimal(line.tax_rate),
                    "tax_method": line.tax_method,
                },
                graph,
            )
        db.session.flush()
        _recalculate(sale, settings)

        quotation.status = STATUS_COMPLETED
        quotation.completed_at = utcnow()
        append_event(
            event_type="document.converted",
            event_category="document",
            entity_type="document",
            entity_id=quotation.id,
            actor_user_id=user_id,
            document_id=quotation.id,
            payload={"sale_id": sale.id, "sale_reference_no": sale.reference_no},
        )
        db.session.commit()
        return sale

    return run_with_retry(_op, settings=settings)


def _reverse_movements_locked(document: Document, posting: _Posting) -> int:
    movements = (
        db.session.query(StockMovement)
        .filter(StockMovement.document_id == document.id, StockMovement.reversal_of_id.is_(None))
        .order_by(StockMovement.id)
        .all()
    )
    failures: list[dict] = []
    for movement in movements:
        try:
            post_delta(
                product=db.session.get(Product, movement.product_id),
                warehouse_id=movement.warehouse_id,
                variant_id=movement.variant_id,
                batch_id=movement.batch_id,
                quantity_delta=-db_decimal(movement.quantity_delta),
                reason="REVERSAL",
                settings=posting.settings,
                document_id=document.id,
                document_line_id=movement.document_line_id,
                reversal_of_id=movement.id,
                user_id=posting.user_id,
                note=f"Reversal of {document.reference_no}",
            )
        except InsufficientStock as exc:
            failures.extend(dict(entry, movement_id=movement.id) for entry in exc.lines)
    if failures:
        raise InsufficientStock(failures, message="Stock has moved on; the document cannot be reversed")
    return len(movements)


def delete_document(
    document_id: int,
    *,
    user_id: int | None = None,
    reason: str | None = None,
    reverse: bool = False,
    settings: EngineSettings | None = None,
) -> Document:
    """
    Soft-delete a document.

    DRAFT documents are simply marked DELETED. PENDING ones are compensated
    first (partial fulfilments and payments are reversed). A COMPLETED
    document needs reverse=True: every movement it posted is reversed, its
    payments are reversed and a redeemed coupon is released.
    """
    settings = resolve_settings(settings)

    def _op():
        begin_write()
        document = _load_locked(document_id)
        if document.status in (STATUS_DELETED, STATUS_CANCELLED):
            raise InvalidStateTransition(
                f"Cannot delete a {document.status} document", details={"document_id": document.id}
            )
        if document.status == STATUS_COMPLETED and not reverse:
            raise InvalidStateTransition(
                "A completed document can only be deleted with a compensating reversal",
                details={"document_id": document.id},
            )

        posting = _posting(settings, None, user_id)
        reversed_movements = 0
        if document.status in (STATUS_PENDING, STATUS_COMPLETED):
            open_returns = (
                db.session.query(Document.id)
                .filter(
                    Document.return_of_document_id == document.id,
                    Document.status.in_([STATUS_PENDING, STATUS_COMPLETED]),
                )
                .count()
            )
            if open_returns:
                raise InvalidStateTransition(
                    "Document has returns against it; delete those first",
                    details={"document_id": document.id},
                )

            reversed_movements = _reverse_movements_locked(document, posting)
            for payment in list(document.payments):
                if payment.status == PAYMENT_COMPLETED:
                    payment_service._reverse_locked(payment, settings=settings, user_id=user_id, reason=reason)

            if document.status == STATUS_COMPLETED:
                if document.coupon_id is not None:
                    discount_service.release_coupon(document.coupon_id, document.id, user_id=user_id)
                if document.document_type == SALE and document.customer_id is not None:
                    reward_service.reverse_earned_for_sale(document, user_id=user_id)
                if document.document_type in _RETURN_SOURCES:
                    _apply_return_quantities(document, -1)

        document.status = STATUS_DELETED
        document.deleted_at = utcnow()
        document.deleted_by_user_id = user_id
        document.delete_reason = reason
        append_event(
            event_type="document.deleted",
            event_category="document",
            entity_type="document",
            entity_id=document.id,
            actor_user_id=user_id,
            document_id=document.id,
            note=reason,
            payload={"reversed_movements": reversed_movements},
        )
        db.session.commit()
        current_app.logger.info("Document %s deleted by %s", document.reference_no, user_id)
        return document

    return run_with_retry(_op, settings=settings)
