from __future__ import annotations

from ..extensions import db
from chifa_pos.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-pharmacy document sequences.

    WHY: Invoice numbers are the legal identifier submitted to the insurer.
    Two terminals ringing up insured sales at the same time must never
    draw the same number, so allocation is a single UPDATE on this row
    rather than a read-then-write in application code.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("pharmacy_id", "sequence_type", name="uq_doc_sequences_pharmacy_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)
    sequence_type = db.Column(db.String(64), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "sequence_type": self.sequence_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEvent(db.Model):
    """
    Append-only audit trail of financial state changes.

    Written inside the same transaction as the change it records, so the
    ledger never shows an event whose domain write was rolled back.
    """
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_pharmacy_occurred", "pharmacy_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    event_category = db.Column(db.String(32), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    actor_id = db.Column(db.String(64), nullable=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_drawer_sessions.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("chifa_invoices.id"), nullable=True, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=True)
    note = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "session_id": self.session_id,
            "sale_id": self.sale_id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
