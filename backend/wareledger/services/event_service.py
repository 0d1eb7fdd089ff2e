# Overview: Append-only engine event log.

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import EngineEvent

"""
Engine event log invariants

- Append-only: no updates or deletes of existing events.
- Events are written inside the same DB transaction as the change they record.
- occurred_at is business time; defaults to the DB clock.
"""


def append_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    warehouse_id: int | None = None,
    document_id: int | None = None,
    payment_id: int | None = None,
    cash_register_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict[str, Any]] = None,
) -> EngineEvent:
    ev = EngineEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        warehouse_id=warehouse_id,
        document_id=document_id,
        payment_id=payment_id,
        cash_register_id=cash_register_id,
        note=note,
        payload=json.dumps(payload, default=str, sort_keys=True) if payload else None,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at
    db.session.add(ev)
    db.session.flush()
    return ev


def list_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_category: str | None = None,
    limit: int = 100,
) -> list[EngineEvent]:
    query = db.session.query(EngineEvent)
    if entity_type:
        query = query.filter(EngineEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(EngineEvent.entity_id == entity_id)
    if event_category:
        query = query.filter(EngineEvent.event_category == event_category)
    return query.order_by(EngineEvent.id.desc()).limit(limit).all()
