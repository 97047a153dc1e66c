from __future__ import annotations

from ..extensions import db
from chifa_pos.time_utils import to_utc_z


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_VOIDED = "voided"
SALE_STATUS_RETURNED = "returned"


class Sale(db.Model):
    """
    Completed counter transaction (tender ledger entry).

    WHY: The drawer reconciliation is the sum of these rows. Each sale
    records how the patient paid (cash, card, cheque, mobile, credit) and
    what share the insurer owes (chifa_total), which the patient does not
    pay at the counter.

    IMMUTABLE: Amounts never change after the sale is recorded. The only
    allowed transitions are completed -> voided and completed -> returned.
    """
    __tablename__ = "pos_sales"
    __table_args__ = (
        db.UniqueConstraint("pharmacy_id", "sale_number", name="uq_pos_sales_pharmacy_number"),
        db.Index("ix_pos_sales_session_status", "session_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_drawer_sessions.id"), nullable=False, index=True)

    # Human-readable number (e.g., "TICKET-000123")
    sale_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    customer_name = db.Column(db.String(160), nullable=True)

    # Totals (all amounts in centimes)
    subtotal_cents = db.Column(db.BigInteger, nullable=False, default=0)
    discount_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    chifa_total_cents = db.Column(db.BigInteger, nullable=False, default=0)  # owed by insurer
    patient_total_cents = db.Column(db.BigInteger, nullable=False, default=0)  # owed at the counter

    # Tender breakdown
    paid_cash_cents = db.Column(db.BigInteger, nullable=False, default=0)
    paid_card_cents = db.Column(db.BigInteger, nullable=False, default=0)
    paid_cheque_cents = db.Column(db.BigInteger, nullable=False, default=0)
    paid_mobile_cents = db.Column(db.BigInteger, nullable=False, default=0)
    paid_credit_cents = db.Column(db.BigInteger, nullable=False, default=0)
    change_given_cents = db.Column(db.BigInteger, nullable=False, default=0)

    created_by = db.Column(db.String(64), nullable=False)
    created_by_name = db.Column(db.String(160), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Void / return audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by = db.Column(db.String(64), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_by = db.Column(db.String(64), nullable=True)
    return_reason = db.Column(db.String(255), nullable=True)

    session = db.relationship("CashDrawerSession", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="SaleLine.id",
    )

    @property
    def total_paid_cents(self) -> int:
        return (
            self.paid_cash_cents
            + self.paid_card_cents
            + self.paid_cheque_cents
            + self.paid_mobile_cents
            + self.paid_credit_cents
        )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "session_id": self.session_id,
            "sale_number": self.sale_number,
            "status": self.status,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "chifa_total_cents": self.chifa_total_cents,
            "patient_total_cents": self.patient_total_cents,
            "paid_cash_cents": self.paid_cash_cents,
            "paid_card_cents": self.paid_card_cents,
            "paid_cheque_cents": self.paid_cheque_cents,
            "paid_mobile_cents": self.paid_mobile_cents,
            "paid_credit_cents": self.paid_credit_cents,
            "change_given_cents": self.change_given_cents,
            "created_by": self.created_by,
            "created_by_name": self.created_by_name,
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
            "returned_at": to_utc_z(self.returned_at) if self.returned_at else None,
            "returned_by": self.returned_by,
            "return_reason": self.return_reason,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale."""
    __tablename__ = "pos_sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=False, index=True)

    # Catalog is an external collaborator; product fields are a snapshot
    product_id = db.Column(db.String(64), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    line_total_cents = db.Column(db.BigInteger, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }
