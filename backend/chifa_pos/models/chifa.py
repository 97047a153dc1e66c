from __future__ import annotations

from ..extensions import db
from chifa_pos.time_utils import to_utc_z, to_iso_date


INSURANCE_CNAS = "CNAS"
INSURANCE_CASNOS = "CASNOS"
INSURANCE_CVM = "CVM"
INSURANCE_TYPES = (INSURANCE_CNAS, INSURANCE_CASNOS, INSURANCE_CVM)

INVOICE_STATUS_PENDING = "pending"
INVOICE_STATUS_SUBMITTED = "submitted"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_REJECTED = "rejected"

BORDEREAU_STATUS_SUBMITTED = "submitted"
BORDEREAU_STATUS_PAID = "paid"
BORDEREAU_STATUS_PARTIAL = "partial"

REJECTION_STATUS_PENDING = "pending"
REJECTION_STATUS_CORRECTED = "corrected"
REJECTION_STATUS_RESUBMITTED = "resubmitted"
REJECTION_STATUS_WRITTEN_OFF = "written_off"
REJECTION_STATUSES = (
    REJECTION_STATUS_PENDING,
    REJECTION_STATUS_CORRECTED,
    REJECTION_STATUS_RESUBMITTED,
    REJECTION_STATUS_WRITTEN_OFF,
)


class ChifaInvoice(db.Model):
    """
    Chifa (CNAS/CASNOS) invoice for one insured beneficiary.

    LIFECYCLE:
    - pending: created at point of sale, not batched (bordereau_id is NULL)
    - submitted: batched into a bordereau sent to the insurer
    - paid: insurer settled it
    - rejected: insurer refused it; a ChifaRejection tracks the follow-up

    IMMUTABLE: Amounts and lines never change after creation. A correction
    is always a new invoice (replaces_invoice_id points back), so the audit
    trail keeps exactly what was submitted and what was rejected.
    """
    __tablename__ = "chifa_invoices"
    __table_args__ = (
        db.UniqueConstraint("pharmacy_id", "invoice_number", name="uq_chifa_invoices_pharmacy_number"),
        db.Index("ix_chifa_invoices_pharmacy_status", "pharmacy_id", "status"),
        db.Index("ix_chifa_invoices_pharmacy_date", "pharmacy_id", "invoice_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)

    # e.g. "FC-2026-000042"; the numeric part never repeats for a pharmacy
    invoice_number = db.Column(db.String(64), nullable=False)
    invoice_date = db.Column(db.Date, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("pos_sales.id"), nullable=True, index=True)
    replaces_invoice_id = db.Column(db.Integer, db.ForeignKey("chifa_invoices.id"), nullable=True, index=True)

    # Insured / beneficiary
    insured_number = db.Column(db.String(32), nullable=False, index=True)
    insured_name = db.Column(db.String(160), nullable=False)
    insured_rank = db.Column(db.Integer, nullable=False, default=1)  # 1=principal, 2+=ayant-droit
    beneficiary_name = db.Column(db.String(160), nullable=True)
    beneficiary_relationship = db.Column(db.String(64), nullable=True)

    # Coverage
    insurance_type = db.Column(db.String(16), nullable=False, default=INSURANCE_CNAS, index=True)
    is_chronic = db.Column(db.Boolean, nullable=False, default=False)
    chronic_code = db.Column(db.String(16), nullable=True)

    # Prescription
    prescriber_name = db.Column(db.String(160), nullable=True)
    prescriber_specialty = db.Column(db.String(120), nullable=True)
    prescription_date = db.Column(db.Date, nullable=True)
    prescription_number = db.Column(db.String(64), nullable=True)
    treatment_duration = db.Column(db.Integer, nullable=True)  # days

    # Totals (all amounts in centimes)
    total_tarif_reference_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_chifa_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_patient_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_majoration_cents = db.Column(db.BigInteger, nullable=False, default=0)
    grand_total_cents = db.Column(db.BigInteger, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_PENDING, index=True)
    bordereau_id = db.Column(db.Integer, db.ForeignKey("chifa_bordereaux.id"), nullable=True, index=True)

    rejection_code = db.Column(db.String(16), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)
    rejection_date = db.Column(db.Date, nullable=True)
    paid_date = db.Column(db.Date, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "ChifaInvoiceLine",
        back_populates="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ChifaInvoiceLine.id",
    )
    bordereau = db.relationship("Bordereau", back_populates="invoices", foreign_keys=[bordereau_id])
    sale = db.relationship("Sale", backref=db.backref("chifa_invoices", lazy=True), foreign_keys=[sale_id])
    replaces_invoice = db.relationship("ChifaInvoice", remote_side=[id], foreign_keys=[replaces_invoice_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_summary_dict(self) -> dict:
        """Display fields used when an invoice is embedded in another record."""
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "insured_name": self.insured_name,
            "insured_number": self.insured_number,
            "insurance_type": self.insurance_type,
            "total_chifa_cents": self.total_chifa_cents,
            "grand_total_cents": self.grand_total_cents,
            "status": self.status,
        }

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "invoice_number": self.invoice_number,
            "invoice_date": to_iso_date(self.invoice_date),
            "sale_id": self.sale_id,
            "replaces_invoice_id": self.replaces_invoice_id,
            "insured_number": self.insured_number,
            "insured_name": self.insured_name,
            "insured_rank": self.insured_rank,
            "beneficiary_name": self.beneficiary_name,
            "beneficiary_relationship": self.beneficiary_relationship,
            "insurance_type": self.insurance_type,
            "is_chronic": self.is_chronic,
            "chronic_code": self.chronic_code,
            "prescriber_name": self.prescriber_name,
            "prescriber_specialty": self.prescriber_specialty,
            "prescription_date": to_iso_date(self.prescription_date),
            "prescription_number": self.prescription_number,
            "treatment_duration": self.treatment_duration,
            "total_tarif_reference_cents": self.total_tarif_reference_cents,
            "total_chifa_cents": self.total_chifa_cents,
            "total_patient_cents": self.total_patient_cents,
            "total_majoration_cents": self.total_majoration_cents,
            "grand_total_cents": self.grand_total_cents,
            "status": self.status,
            "bordereau_id": self.bordereau_id,
            "rejection_code": self.rejection_code,
            "rejection_reason": self.rejection_reason,
            "rejection_date": to_iso_date(self.rejection_date),
            "paid_date": to_iso_date(self.paid_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class ChifaInvoiceLine(db.Model):
    """
    One billed product on a Chifa invoice.

    INVARIANT: line_total == chifa_amount + patient_amount
               line_total == unit_price * quantity
    """
    __tablename__ = "chifa_invoice_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("chifa_invoices.id"), nullable=False, index=True)

    product_id = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_barcode = db.Column(db.String(64), nullable=True)
    cnas_code = db.Column(db.String(64), nullable=True)  # N° enregistrement CNAS
    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=False)
    tarif_reference_cents = db.Column(db.BigInteger, nullable=True)  # NULL: defaults to unit price
    purchase_price_cents = db.Column(db.BigInteger, nullable=True)
    reimbursement_rate = db.Column(db.Integer, nullable=False, default=0)  # 0..100
    is_local_product = db.Column(db.Boolean, nullable=False, default=False)

    chifa_amount_cents = db.Column(db.BigInteger, nullable=False)
    patient_amount_cents = db.Column(db.BigInteger, nullable=False)
    majoration_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    line_total_cents = db.Column(db.BigInteger, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("ChifaInvoice", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_barcode": self.product_barcode,
            "cnas_code": self.cnas_code,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "tarif_reference_cents": self.tarif_reference_cents,
            "purchase_price_cents": self.purchase_price_cents,
            "reimbursement_rate": self.reimbursement_rate,
            "is_local_product": self.is_local_product,
            "chifa_amount_cents": self.chifa_amount_cents,
            "patient_amount_cents": self.patient_amount_cents,
            "majoration_amount_cents": self.majoration_amount_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Bordereau(db.Model):
    """
    Remittance batch of invoices submitted together to the insurer.

    LIFECYCLE:
    - submitted: sent, awaiting settlement
    - paid: settled within tolerance; its submitted invoices become paid
    - partial: settled short; shortfall is worked through rejections
    """
    __tablename__ = "chifa_bordereaux"
    __table_args__ = (
        db.UniqueConstraint("pharmacy_id", "bordereau_number", name="uq_chifa_bordereaux_pharmacy_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)

    # e.g. "BRD-CNAS-202610-003"
    bordereau_number = db.Column(db.String(64), nullable=False)
    insurance_type = db.Column(db.String(16), nullable=False, index=True)
    period_start = db.Column(db.Date, nullable=True)
    period_end = db.Column(db.Date, nullable=True)

    invoice_count = db.Column(db.Integer, nullable=False, default=0)
    total_tarif_reference_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_chifa_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_patient_cents = db.Column(db.BigInteger, nullable=False, default=0)
    total_majoration_cents = db.Column(db.BigInteger, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=BORDEREAU_STATUS_SUBMITTED, index=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    submitted_by = db.Column(db.String(64), nullable=True)

    amount_paid_cents = db.Column(db.BigInteger, nullable=True)
    payment_date = db.Column(db.Date, nullable=True)
    payment_reference = db.Column(db.String(64), nullable=True)
    rejection_total_cents = db.Column(db.BigInteger, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    invoices = db.relationship(
        "ChifaInvoice",
        back_populates="bordereau",
        foreign_keys="ChifaInvoice.bordereau_id",
        lazy=True,
        order_by="ChifaInvoice.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_invoices: bool = False) -> dict:
        data = {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "bordereau_number": self.bordereau_number,
            "insurance_type": self.insurance_type,
            "period_start": to_iso_date(self.period_start),
            "period_end": to_iso_date(self.period_end),
            "invoice_count": self.invoice_count,
            "total_tarif_reference_cents": self.total_tarif_reference_cents,
            "total_chifa_cents": self.total_chifa_cents,
            "total_patient_cents": self.total_patient_cents,
            "total_majoration_cents": self.total_majoration_cents,
            "status": self.status,
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "submitted_by": self.submitted_by,
            "amount_paid_cents": self.amount_paid_cents,
            "payment_date": to_iso_date(self.payment_date),
            "payment_reference": self.payment_reference,
            "rejection_total_cents": self.rejection_total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_invoices:
            data["invoices"] = [inv.to_summary_dict() for inv in self.invoices]
        return data


class ChifaRejection(db.Model):
    """
    Insurer rejection of a submitted invoice and its resolution.

    RESOLUTION:
    - pending -> corrected: a new, corrected invoice exists, not yet resubmitted
    - pending|corrected -> resubmitted: new invoice batched into a new bordereau
    - pending -> written_off: loss accepted (accounting handles the entry)

    Two foreign keys point at chifa_bordereaux; each has its own named
    relation (original_bordereau, resubmission_bordereau) so no join is
    ever left to inference.
    """
    __tablename__ = "chifa_rejections"
    __table_args__ = (
        db.Index("ix_chifa_rejections_pharmacy_status", "pharmacy_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pharmacy_id = db.Column(db.Integer, db.ForeignKey("pharmacies.id"), nullable=False, index=True)

    invoice_id = db.Column(db.Integer, db.ForeignKey("chifa_invoices.id"), nullable=False, index=True)
    bordereau_id = db.Column(db.Integer, db.ForeignKey("chifa_bordereaux.id"), nullable=True, index=True)

    rejection_date = db.Column(db.Date, nullable=False)
    rejection_code = db.Column(db.String(16), nullable=True)
    rejection_motif = db.Column(db.String(255), nullable=False)
    rejected_amount_cents = db.Column(db.BigInteger, nullable=False, default=0)
    # highest invoice id of the pharmacy when the rejection was recorded
    invoice_high_water_id = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=REJECTION_STATUS_PENDING, index=True)
    corrected_invoice_id = db.Column(db.Integer, db.ForeignKey("chifa_invoices.id"), nullable=True)
    new_bordereau_id = db.Column(db.Integer, db.ForeignKey("chifa_bordereaux.id"), nullable=True)

    resolution_notes = db.Column(db.Text, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.String(64), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    invoice = db.relationship("ChifaInvoice", foreign_keys=[invoice_id])
    corrected_invoice = db.relationship("ChifaInvoice", foreign_keys=[corrected_invoice_id])
    original_bordereau = db.relationship("Bordereau", foreign_keys=[bordereau_id])
    resubmission_bordereau = db.relationship("Bordereau", foreign_keys=[new_bordereau_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == REJECTION_STATUS_PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pharmacy_id": self.pharmacy_id,
            "invoice_id": self.invoice_id,
            "bordereau_id": self.bordereau_id,
            "rejection_date": to_iso_date(self.rejection_date),
            "rejection_code": self.rejection_code,
            "rejection_motif": self.rejection_motif,
            "rejected_amount_cents": self.rejected_amount_cents,
            "status": self.status,
            "corrected_invoice_id": self.corrected_invoice_id,
            "new_bordereau_id": self.new_bordereau_id,
            "resolution_notes": self.resolution_notes,
            "resolved_at": to_utc_z(self.resolved_at) if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
