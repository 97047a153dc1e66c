# Overview: Builds numbered Chifa invoices from split-calculator output; invoice queries and dashboard stats.

"""
Chifa Invoice Builder

WHY: The invoice is the legal claim sent to the insurer. Its totals must be
exactly the sum of the per-line splits, its number must never repeat, and
it must never exist half-written.

DESIGN PRINCIPLES:
- Request payloads become typed values (InvoiceRequest, InvoiceLineInput)
  before any arithmetic
- Preview and creation share one computation path
- Invoice + lines are persisted in one transaction (all-or-nothing)
- Numbers come from the atomic document sequence, never from MAX(id)+1
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ChifaInvoice, ChifaInvoiceLine, ChifaRejection
from ..models.chifa import (
    INSURANCE_CNAS,
    INSURANCE_TYPES,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_REJECTED,
    INVOICE_STATUS_SUBMITTED,
    REJECTION_STATUS_PENDING,
)
from ..validation import (
    ComputationInvariantError,
    ConflictError,
    NotFoundError,
    ValidationError,
    parse_bool,
    parse_choice,
    parse_date,
    parse_int,
    parse_text,
)
from chifa_pos.time_utils import today
from .chifa_split import ChifaSplit, InvoiceLineInput, rounding_mode, split_line
from .concurrency import unit_of_work
from .identity_service import ActorContext
from .ledger_service import append_ledger_event
from .sequence_service import next_invoice_number


INVOICE_STATUSES = (
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_SUBMITTED,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_REJECTED,
)


@dataclass(frozen=True)
class InvoiceRequest:
    """Typed invoice creation request."""
    insured_number: str
    insured_name: str
    lines: tuple[InvoiceLineInput, ...]
    insured_rank: int = 1
    beneficiary_name: Optional[str] = None
    beneficiary_relationship: Optional[str] = None
    insurance_type: str = INSURANCE_CNAS
    is_chronic: bool = False
    chronic_code: Optional[str] = None
    prescriber_name: Optional[str] = None
    prescriber_specialty: Optional[str] = None
    prescription_date: Optional[date] = None
    prescription_number: Optional[str] = None
    treatment_duration: Optional[int] = None
    invoice_date: Optional[date] = None

    @classmethod
    def from_payload(cls, data: Any) -> "InvoiceRequest":
        """
        Map a request body into an InvoiceRequest.

        Insured identity is checked first: a request without an insured
        number or name is rejected before any line is looked at.
        """
        if not isinstance(data, dict):
            raise ValidationError("Invoice payload must be an object")

        insured_number = parse_text(data.get("insured_number"), max_length=32, field="insured_number")
        insured_name = parse_text(data.get("insured_name"), max_length=160, field="insured_name")
        missing = [name for name, value in (("insured_number", insured_number), ("insured_name", insured_name)) if not value]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}", fields=missing)

        items = data.get("items")
        if not isinstance(items, list) or not items:
            raise ValidationError("At least one invoice item is required", field="items")
        lines = tuple(InvoiceLineInput.from_payload(item, index) for index, item in enumerate(items))

        insured_rank = parse_int(data.get("insured_rank"), "insured_rank", required=False, default=1)
        if insured_rank < 1:
            raise ValidationError("insured_rank must be at least 1", field="insured_rank")

        treatment_duration = parse_int(data.get("treatment_duration"), "treatment_duration", required=False)
        if treatment_duration is not None and treatment_duration <= 0:
            raise ValidationError("treatment_duration must be a positive number of days", field="treatment_duration")

        return cls(
            insured_number=insured_number,
            insured_name=insured_name,
            lines=lines,
            insured_rank=insured_rank,
            beneficiary_name=parse_text(data.get("beneficiary_name"), max_length=160, field="beneficiary_name"),
            beneficiary_relationship=parse_text(
                data.get("beneficiary_relationship"), max_length=64, field="beneficiary_relationship"
            ),
            insurance_type=parse_choice(
                data.get("insurance_type"), "insurance_type", INSURANCE_TYPES, default=INSURANCE_CNAS
            ),
            is_chronic=parse_bool(data.get("is_chronic"), "is_chronic"),
            chronic_code=parse_text(data.get("chronic_code"), max_length=16, field="chronic_code"),
            prescriber_name=parse_text(data.get("prescriber_name"), max_length=160, field="prescriber_name"),
            prescriber_specialty=parse_text(
                data.get("prescriber_specialty"), max_length=120, field="prescriber_specialty"
            ),
            prescription_date=parse_date(data.get("prescription_date"), "prescription_date"),
            prescription_number=parse_text(
                data.get("prescription_number"), max_length=64, field="prescription_number"
            ),
            treatment_duration=treatment_duration,
            invoice_date=parse_date(data.get("invoice_date"), "invoice_date"),
        )


@dataclass(frozen=True)
class InvoiceTotals:
    total_tarif_reference: int = 0
    total_chifa: int = 0
    total_patient: int = 0
    total_majoration: int = 0
    grand_total: int = 0
    splits: tuple[ChifaSplit, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "total_tarif_reference_cents": self.total_tarif_reference,
            "total_chifa_cents": self.total_chifa,
            "total_patient_cents": self.total_patient,
            "total_majoration_cents": self.total_majoration,
            "grand_total_cents": self.grand_total,
        }


def _split_settings():
    """(rounding, policy) from app config; CHIFA_RATE_POLICY is an optional callable."""
    return rounding_mode(current_app.config.get("CHIFA_ROUNDING")), current_app.config.get("CHIFA_RATE_POLICY")


def preview_split(line: InvoiceLineInput, is_chronic: bool) -> ChifaSplit:
    rounding, policy = _split_settings()
    return split_line(line, is_chronic, rounding=rounding, policy=policy)


def compute_invoice_totals(request: InvoiceRequest) -> InvoiceTotals:
    """
    Split every line and sum the results.

    Any line failure aborts the whole computation. Invariant failures are
    logged with the offending line before propagating.
    """
    rounding, policy = _split_settings()

    splits = []
    total_tarif = 0
    for index, line in enumerate(request.lines):
        try:
            result = split_line(line, request.is_chronic, rounding=rounding, policy=policy)
        except ComputationInvariantError as exc:
            current_app.logger.error(
                "Chifa split invariant failed on items[%s]: %s (line=%s, is_chronic=%s, context=%s)",
                index, exc.message, line.to_dict(), request.is_chronic, exc.context,
            )
            raise
        splits.append(result)
        total_tarif += line.effective_tarif_cents * line.quantity

    return InvoiceTotals(
        total_tarif_reference=total_tarif,
        total_chifa=sum(s.chifa_amount for s in splits),
        total_patient=sum(s.patient_amount for s in splits),
        total_majoration=sum(s.majoration_amount for s in splits),
        grand_total=sum(s.line_total for s in splits),
        splits=tuple(splits),
    )


def preview_invoice(request: InvoiceRequest) -> dict:
    """Totals preview through the exact same path as build_invoice. Nothing is persisted."""
    totals = compute_invoice_totals(request)
    items = []
    for line, result in zip(request.lines, totals.splits):
        item = line.to_dict()
        item.update(result.to_dict())
        items.append(item)
    return {
        "insurance_type": request.insurance_type,
        "is_chronic": request.is_chronic,
        "items": items,
        **totals.to_dict(),
    }


@unit_of_work
def build_invoice(
    pharmacy_id: int,
    actor: ActorContext,
    request: InvoiceRequest,
    *,
    sale_id: int | None = None,
    replaces_invoice_id: int | None = None,
    commit: bool = True,
) -> ChifaInvoice:
    """
    Persist a new pending Chifa invoice with its lines.

    Args:
        pharmacy_id: Owning pharmacy
        actor: Resolved caller identity (created_by)
        request: Typed request
        sale_id: Sale this invoice was rung up with, if any
        replaces_invoice_id: Rejected invoice this one corrects
        commit: False when the caller owns the transaction (sale, resubmission)

    Raises:
        ValidationError: invalid request (nothing persisted)
        ConflictError: invoice number already taken
        ComputationInvariantError: split post-condition failed
    """
    totals = compute_invoice_totals(request)

    if replaces_invoice_id is not None:
        replaced = db.session.query(ChifaInvoice).filter_by(id=replaces_invoice_id, pharmacy_id=pharmacy_id).first()
        if not replaced:
            raise NotFoundError("Invoice not found", invoice_id=replaces_invoice_id)
        if replaced.status != INVOICE_STATUS_REJECTED:
            raise ConflictError(
                f"Only rejected invoices can be replaced (status {replaced.status})",
                invoice_id=replaced.id,
                status=replaced.status,
            )

    invoice_date = request.invoice_date or today()
    invoice_number = next_invoice_number(pharmacy_id, invoice_date)

    invoice = ChifaInvoice(
        pharmacy_id=pharmacy_id,
        invoice_number=invoice_number,
        invoice_date=invoice_date,
        sale_id=sale_id,
        replaces_invoice_id=replaces_invoice_id,
        insured_number=request.insured_number,
        insured_name=request.insured_name,
        insured_rank=request.insured_rank,
        beneficiary_name=request.beneficiary_name,
        beneficiary_relationship=request.beneficiary_relationship,
        insurance_type=request.insurance_type,
        is_chronic=request.is_chronic,
        chronic_code=request.chronic_code,
        prescriber_name=request.prescriber_name,
        prescriber_specialty=request.prescriber_specialty,
        prescription_date=request.prescription_date,
        prescription_number=request.prescription_number,
        treatment_duration=request.treatment_duration,
        total_tarif_reference_cents=totals.total_tarif_reference,
        total_chifa_cents=totals.total_chifa,
        total_patient_cents=totals.total_patient,
        total_majoration_cents=totals.total_majoration,
        grand_total_cents=totals.grand_total,
        status=INVOICE_STATUS_PENDING,
        bordereau_id=None,
        created_by=actor.actor_id,
    )

    for line, result in zip(request.lines, totals.splits):
        invoice.lines.append(ChifaInvoiceLine(
            product_id=line.product_id,
            product_name=line.product_name,
            product_barcode=line.product_barcode,
            cnas_code=line.cnas_code,
            batch_number=line.batch_number,
            expiry_date=line.expiry_date,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            tarif_reference_cents=line.tarif_reference_cents,
            purchase_price_cents=line.purchase_price_cents,
            reimbursement_rate=line.reimbursement_rate,
            is_local_product=line.is_local_product,
            chifa_amount_cents=result.chifa_amount,
            patient_amount_cents=result.patient_amount,
            majoration_amount_cents=result.majoration_amount,
            line_total_cents=result.line_total,
        ))

    db.session.add(invoice)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Unique (pharmacy_id, invoice_number): a collision is a numbering bug, never retried
        raise ConflictError(
            "Invoice number already exists",
            invoice_number=invoice_number,
        ) from exc

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="chifa.invoice_created",
        event_category="chifa",
        entity_type="chifa_invoice",
        entity_id=invoice.id,
        actor_id=actor.actor_id,
        sale_id=sale_id,
        invoice_id=invoice.id,
        amount_cents=invoice.total_chifa_cents,
        note=f"Invoice {invoice_number} ({request.insurance_type})",
    )

    if commit:
        db.session.commit()

    current_app.logger.info(
        "Chifa invoice %s created for pharmacy %s: chifa=%s patient=%s total=%s",
        invoice_number, pharmacy_id, invoice.total_chifa_cents, invoice.total_patient_cents, invoice.grand_total_cents,
    )
    return invoice


# =============================================================================
# QUERIES
# =============================================================================

def get_invoice(pharmacy_id: int, invoice_id: int) -> ChifaInvoice:
    invoice = db.session.query(ChifaInvoice).filter_by(id=invoice_id, pharmacy_id=pharmacy_id).first()
    if not invoice:
        raise NotFoundError("Invoice not found", invoice_id=invoice_id)
    return invoice


def list_invoices(
    pharmacy_id: int,
    *,
    status: str | None = None,
    insurance_type: str | None = None,
    bordereau_id: int | str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[ChifaInvoice], int]:
    """
    Filtered invoice listing, newest first.

    bordereau_id="null" selects invoices not yet batched.
    Returns (invoices, total_count).
    """
    query = db.session.query(ChifaInvoice).filter(ChifaInvoice.pharmacy_id == pharmacy_id)

    if status:
        query = query.filter(ChifaInvoice.status == parse_choice(status, "status", INVOICE_STATUSES))
    if insurance_type:
        query = query.filter(ChifaInvoice.insurance_type == parse_choice(insurance_type, "insurance_type", INSURANCE_TYPES))
    if bordereau_id == "null":
        query = query.filter(ChifaInvoice.bordereau_id.is_(None))
    elif bordereau_id is not None:
        query = query.filter(ChifaInvoice.bordereau_id == parse_int(bordereau_id, "bordereau_id"))
    if date_from:
        query = query.filter(ChifaInvoice.invoice_date >= date_from)
    if date_to:
        query = query.filter(ChifaInvoice.invoice_date <= date_to)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            ChifaInvoice.invoice_number.ilike(pattern),
            ChifaInvoice.insured_number.ilike(pattern),
            ChifaInvoice.insured_name.ilike(pattern),
            ChifaInvoice.beneficiary_name.ilike(pattern),
        ))

    total = query.count()
    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    invoices = (
        query.order_by(ChifaInvoice.invoice_date.desc(), ChifaInvoice.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return invoices, total


def chifa_dashboard_stats(pharmacy_id: int, as_of: date | None = None) -> dict:
    """Counters for the Chifa dashboard (pending work and this month's claims)."""
    as_of = as_of or today()
    month_start = as_of.replace(day=1)

    def _count_and_sum(*criteria):
        count, amount = db.session.query(
            func.count(ChifaInvoice.id),
            func.coalesce(func.sum(ChifaInvoice.total_chifa_cents), 0),
        ).filter(ChifaInvoice.pharmacy_id == pharmacy_id, *criteria).one()
        return int(count), int(amount)

    pending_count, pending_amount = _count_and_sum(ChifaInvoice.status == INVOICE_STATUS_PENDING)
    submitted_count, submitted_amount = _count_and_sum(ChifaInvoice.status == INVOICE_STATUS_SUBMITTED)
    month_count, month_amount = _count_and_sum(
        ChifaInvoice.invoice_date >= month_start,
        ChifaInvoice.invoice_date <= as_of,
    )
    paid_count, paid_amount = _count_and_sum(
        ChifaInvoice.status == INVOICE_STATUS_PAID,
        ChifaInvoice.paid_date >= month_start,
        ChifaInvoice.paid_date <= as_of,
    )

    pending_rejections = db.session.query(func.count(ChifaRejection.id)).filter(
        ChifaRejection.pharmacy_id == pharmacy_id,
        ChifaRejection.status == REJECTION_STATUS_PENDING,
    ).scalar()

    return {
        "pending_invoices": pending_count,
        "pending_amount_cents": pending_amount,
        "submitted_invoices": submitted_count,
        "submitted_amount_cents": submitted_amount,
        "pending_rejections": int(pending_rejections or 0),
        "month_claims": month_count,
        "month_amount_cents": month_amount,
        "paid_this_month": paid_count,
        "paid_this_month_cents": paid_amount,
    }
