# Overview: Append-only audit ledger for financial state changes.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
"""
Ledger Invariants (authoritative)

- Append-only audit log for cross-cutting domain events.
- No domain/business logic in the ledger itself.
- Events are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_ledger_event(
    *,
    pharmacy_id: int,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_id: str | None = None,
    session_id: int | None = None,
    sale_id: int | None = None,
    invoice_id: int | None = None,
    amount_cents: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
) -> LedgerEvent:
    """
    Append-only ledger event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Flushed, not committed: the caller's transaction owns the commit.
    """
    ev = LedgerEvent(
        pharmacy_id=pharmacy_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        session_id=session_id,
        sale_id=sale_id,
        invoice_id=invoice_id,
        amount_cents=amount_cents,
        note=note,
    )
    if occurred_at is not None:
        ev.occurred_at = occurred_at
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    pharmacy_id: int,
    *,
    event_category: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    query = db.session.query(LedgerEvent).filter_by(pharmacy_id=pharmacy_id)
    if event_category:
        query = query.filter_by(event_category=event_category)
    if entity_type:
        query = query.filter_by(entity_type=entity_type)
    if entity_id is not None:
        query = query.filter_by(entity_id=entity_id)
    return query.order_by(LedgerEvent.id.asc()).limit(limit).all()
