# Overview: Atomic per-pharmacy number allocation for sessions, sales, invoices and bordereaux.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite

from ..extensions import db
from ..models import DocumentSequence
from ..validation import ValidationError


SEQUENCE_SESSION = "session"
SEQUENCE_SALE = "sale"
SEQUENCE_CHIFA_INVOICE = "chifa_invoice"
SEQUENCE_BORDEREAU = "bordereau"


def _insert_if_missing(pharmacy_id: int, sequence_type: str) -> None:
    """
    Seed the sequence row without a read-then-insert race.

    INSERT ... ON CONFLICT DO NOTHING: when two transactions seed the same
    row, one inserts and the other becomes a no-op instead of failing.
    """
    dialect = db.engine.dialect.name
    values = {"pharmacy_id": pharmacy_id, "sequence_type": sequence_type, "next_number": 1}

    if dialect == "postgresql":
        stmt = postgresql.insert(DocumentSequence).values(**values).on_conflict_do_nothing(
            index_elements=["pharmacy_id", "sequence_type"]
        )
    elif dialect == "sqlite":
        stmt = sqlite.insert(DocumentSequence).values(**values).on_conflict_do_nothing(
            index_elements=["pharmacy_id", "sequence_type"]
        )
    else:
        exists = db.session.query(DocumentSequence.id).filter_by(
            pharmacy_id=pharmacy_id, sequence_type=sequence_type
        ).first()
        if exists:
            return
        db.session.add(DocumentSequence(**values))
        db.session.flush()
        return

    db.session.execute(stmt)


def next_number(*, pharmacy_id: int, sequence_type: str) -> int:
    """
    Atomically allocate the next integer in a pharmacy's sequence.

    The UPDATE takes the row lock, so concurrent transactions are serialized
    by the database and each sees a distinct, strictly increasing value.
    A rolled-back transaction rolls its increment back with it, so the
    published numbers have no gaps.
    """
    if not pharmacy_id:
        raise ValidationError("pharmacy_id is required")
    if not sequence_type:
        raise ValidationError("sequence_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.pharmacy_id == pharmacy_id,
            DocumentSequence.sequence_type == sequence_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        _insert_if_missing(pharmacy_id, sequence_type)
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise RuntimeError(f"Sequence {sequence_type!r} could not be allocated for pharmacy {pharmacy_id}")

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(pharmacy_id=pharmacy_id, sequence_type=sequence_type)
        .scalar()
    )
    return current - 1


def next_session_number(pharmacy_id: int, business_date: date, prefix: str = "SESSION") -> str:
    """Date-scoped: SESSION-2026-10-19-001, restarting every day."""
    day = business_date.isoformat()
    num = next_number(pharmacy_id=pharmacy_id, sequence_type=f"{SEQUENCE_SESSION}:{day}")
    return f"{prefix}-{day}-{num:03d}"


def next_sale_number(pharmacy_id: int) -> str:
    num = next_number(pharmacy_id=pharmacy_id, sequence_type=SEQUENCE_SALE)
    return f"TICKET-{num:06d}"


def next_invoice_number(pharmacy_id: int, business_date: date) -> str:
    """
    FC-2026-000042. The year is informational only: the counter never
    restarts, so numbers stay strictly increasing across years.
    """
    num = next_number(pharmacy_id=pharmacy_id, sequence_type=SEQUENCE_CHIFA_INVOICE)
    return f"FC-{business_date.year}-{num:06d}"


def next_bordereau_number(pharmacy_id: int, insurance_type: str, business_date: date) -> str:
    period = business_date.strftime("%Y%m")
    num = next_number(pharmacy_id=pharmacy_id, sequence_type=f"{SEQUENCE_BORDEREAU}:{insurance_type}:{period}")
    return f"BRD-{insurance_type}-{period}-{num:03d}"
