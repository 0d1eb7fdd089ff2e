# Overview: Reference numbering and read-side queries for documents.

from __future__ import annotations

import uuid

from sqlalchemy import update

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Document, DocumentSequence
from ..models.documents import (
    ADJUSTMENT,
    DOCUMENT_TYPES,
    PRODUCTION,
    PURCHASE,
    PURCHASE_RETURN,
    QUOTATION,
    SALE,
    SALE_RETURN,
    TRANSFER,
)
from .concurrency import insert_if_absent


REFERENCE_PREFIXES = {
    SALE: "SR",
    PURCHASE: "PR",
    TRANSFER: "TR",
    ADJUSTMENT: "ADR",
    SALE_RETURN: "RR",
    PURCHASE_RETURN: "PRR",
    PRODUCTION: "PRD",
    QUOTATION: "QR",
}


def next_reference_no(document_type: str, *, pad: int = 6) -> str:
    """
    Allocate the next reference number for a document type.

    Runs inside the caller's transaction: the counter row is created if
    missing, then bumped with a single UPDATE so concurrent callers never
    see the same number.
    """
    if document_type not in REFERENCE_PREFIXES:
        raise ValidationError(f"Unknown document type {document_type!r}")

    insert_if_absent(
        DocumentSequence,
        {"document_type": document_type, "next_number": 1},
        ["document_type"],
    )
    db.session.execute(
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1),
        execution_options={"synchronize_session": False},
    )
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return f"{REFERENCE_PREFIXES[document_type]}-{current - 1:0{pad}d}"


def new_payment_reference() -> str:
    return f"PAY-{uuid.uuid4().hex[:12].upper()}"


def get_document(document_id: int) -> Document:
    document = db.session.get(Document, document_id)
    if document is None:
        raise NotFoundError(f"Document {document_id} not found", details={"document_id": document_id})
    return document


def list_documents(
    *,
    document_type: str | None = None,
    status: str | None = None,
    warehouse_id: int | None = None,
    customer_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Document], int]:
    query = db.session.query(Document)
    if document_type:
        if document_type not in DOCUMENT_TYPES:
            raise ValidationError(f"Unknown document type {document_type!r}")
        query = query.filter(Document.document_type == document_type)
    if status:
        query = query.filter(Document.status == status)
    if warehouse_id is not None:
        query = query.filter(
            (Document.warehouse_id == warehouse_id)
            | (Document.from_warehouse_id == warehouse_id)
            | (Document.to_warehouse_id == warehouse_id)
        )
    if customer_id is not None:
        query = query.filter(Document.customer_id == customer_id)
    total = query.count()
    documents = query.order_by(Document.created_at.desc(), Document.id.desc()).offset(offset).limit(limit).all()
    return documents, total
