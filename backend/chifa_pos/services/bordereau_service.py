# Overview: Bordereau (remittance batch) creation, invoice batching and insurer payment recording.

"""
Bordereau Service

WHY: Invoices are claimed from the insurer in batches. Batching is what
moves an invoice from pending to submitted; recording the insurer's
payment is what moves it to paid.

DESIGN PRINCIPLES:
- A bordereau holds invoices of a single insurance type
- At most CHIFA_MAX_INVOICES_PER_BORDEREAU invoices per batch
- An invoice is batched at most once (bordereau_id set once, never moved)
- Totals are always recomputed from the batched invoices, never patched
"""

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Bordereau, ChifaInvoice
from ..models.chifa import (
    BORDEREAU_STATUS_PAID,
    BORDEREAU_STATUS_PARTIAL,
    BORDEREAU_STATUS_SUBMITTED,
    INSURANCE_TYPES,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_SUBMITTED,
)
from ..validation import ConflictError, NotFoundError, ValidationError, parse_choice
from chifa_pos.time_utils import today, utcnow
from .concurrency import lock_for_update, unit_of_work
from .identity_service import ActorContext
from .ledger_service import append_ledger_event
from .sequence_service import next_bordereau_number


BORDEREAU_STATUSES = (BORDEREAU_STATUS_SUBMITTED, BORDEREAU_STATUS_PAID, BORDEREAU_STATUS_PARTIAL)


def _max_invoices() -> int:
    return current_app.config.get("CHIFA_MAX_INVOICES_PER_BORDEREAU", 20)


def _check_batchable(invoice: ChifaInvoice, insurance_type: str) -> None:
    if invoice.status != INVOICE_STATUS_PENDING or invoice.bordereau_id is not None:
        raise ConflictError(
            f"Invoice {invoice.invoice_number} is not pending (status {invoice.status})",
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            status=invoice.status,
            bordereau_id=invoice.bordereau_id,
        )
    if invoice.insurance_type != insurance_type:
        raise ValidationError(
            f"Invoice {invoice.invoice_number} is {invoice.insurance_type}, bordereau is {insurance_type}",
            invoice_id=invoice.id,
        )


def _refresh_totals(bordereau: Bordereau) -> None:
    """Recompute batch totals from its invoices (after flush)."""
    db.session.flush()
    count, tarif, chifa, patient, majoration = db.session.query(
        func.count(ChifaInvoice.id),
        func.coalesce(func.sum(ChifaInvoice.total_tarif_reference_cents), 0),
        func.coalesce(func.sum(ChifaInvoice.total_chifa_cents), 0),
        func.coalesce(func.sum(ChifaInvoice.total_patient_cents), 0),
        func.coalesce(func.sum(ChifaInvoice.total_majoration_cents), 0),
    ).filter(ChifaInvoice.bordereau_id == bordereau.id).one()

    bordereau.invoice_count = int(count)
    bordereau.total_tarif_reference_cents = int(tarif)
    bordereau.total_chifa_cents = int(chifa)
    bordereau.total_patient_cents = int(patient)
    bordereau.total_majoration_cents = int(majoration)


@unit_of_work
def create_bordereau(
    pharmacy_id: int,
    actor: ActorContext,
    *,
    insurance_type: str,
    invoice_ids: list[int],
    period_start: date | None = None,
    period_end: date | None = None,
    notes: str | None = None,
    commit: bool = True,
) -> Bordereau:
    """
    Batch pending invoices into a new submitted bordereau.

    Raises:
        ValidationError: bad insurance type, empty/oversized/duplicated list
        NotFoundError: an invoice id is unknown to this pharmacy
        ConflictError: an invoice is already batched or not pending
    """
    insurance_type = parse_choice(insurance_type, "insurance_type", INSURANCE_TYPES)

    if not isinstance(invoice_ids, (list, tuple)) or not invoice_ids:
        raise ValidationError("invoice_ids must be a non-empty list", field="invoice_ids")
    if any(isinstance(i, bool) or not isinstance(i, int) for i in invoice_ids):
        raise ValidationError("invoice_ids must contain integer ids", field="invoice_ids")
    if len(set(invoice_ids)) != len(invoice_ids):
        raise ValidationError("invoice_ids contains duplicates", field="invoice_ids")
    max_invoices = _max_invoices()
    if len(invoice_ids) > max_invoices:
        raise ValidationError(
            f"A bordereau holds at most {max_invoices} invoices",
            field="invoice_ids",
            max_invoices=max_invoices,
        )
    if period_start and period_end and period_start > period_end:
        raise ValidationError("period_start must not be after period_end", field="period_start")

    invoices = lock_for_update(
        db.session.query(ChifaInvoice).filter(
            ChifaInvoice.pharmacy_id == pharmacy_id,
            ChifaInvoice.id.in_(invoice_ids),
        )
    ).order_by(ChifaInvoice.id).all()

    found = {inv.id for inv in invoices}
    missing = [i for i in invoice_ids if i not in found]
    if missing:
        raise NotFoundError("Invoice(s) not found", invoice_ids=missing)

    for invoice in invoices:
        _check_batchable(invoice, insurance_type)

    now = utcnow()
    bordereau = Bordereau(
        pharmacy_id=pharmacy_id,
        bordereau_number=next_bordereau_number(pharmacy_id, insurance_type, now.date()),
        insurance_type=insurance_type,
        period_start=period_start or min(inv.invoice_date for inv in invoices),
        period_end=period_end or max(inv.invoice_date for inv in invoices),
        status=BORDEREAU_STATUS_SUBMITTED,
        submitted_at=now,
        submitted_by=actor.actor_id,
        notes=notes,
    )
    db.session.add(bordereau)
    db.session.flush()

    for invoice in invoices:
        invoice.bordereau = bordereau
        invoice.status = INVOICE_STATUS_SUBMITTED

    _refresh_totals(bordereau)

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="chifa.bordereau_created",
        event_category="chifa",
        entity_type="bordereau",
        entity_id=bordereau.id,
        actor_id=actor.actor_id,
        amount_cents=bordereau.total_chifa_cents,
        occurred_at=now,
        note=f"Bordereau {bordereau.bordereau_number}: {bordereau.invoice_count} invoice(s)",
    )

    if commit:
        db.session.commit()

    current_app.logger.info(
        "Bordereau %s created for pharmacy %s: %s invoice(s), chifa=%s",
        bordereau.bordereau_number, pharmacy_id, bordereau.invoice_count, bordereau.total_chifa_cents,
    )
    return bordereau


@unit_of_work
def add_invoice_to_bordereau(
    pharmacy_id: int,
    actor: ActorContext,
    bordereau_id: int,
    invoice_id: int,
    *,
    commit: bool = True,
) -> Bordereau:
    """
    Append one pending invoice to a bordereau still awaiting settlement.

    Used for resubmissions into an open batch.
    """
    bordereau = lock_for_update(
        db.session.query(Bordereau).filter_by(id=bordereau_id, pharmacy_id=pharmacy_id)
    ).first()
    if not bordereau:
        raise NotFoundError("Bordereau not found", bordereau_id=bordereau_id)
    if bordereau.status != BORDEREAU_STATUS_SUBMITTED:
        raise ConflictError(
            f"Bordereau {bordereau.bordereau_number} is already settled",
            bordereau_id=bordereau.id,
            status=bordereau.status,
        )
    if bordereau.invoice_count >= _max_invoices():
        raise ConflictError(
            f"Bordereau {bordereau.bordereau_number} is full",
            bordereau_id=bordereau.id,
            invoice_count=bordereau.invoice_count,
        )

    invoice = lock_for_update(
        db.session.query(ChifaInvoice).filter_by(id=invoice_id, pharmacy_id=pharmacy_id)
    ).first()
    if not invoice:
        raise NotFoundError("Invoice not found", invoice_id=invoice_id)
    _check_batchable(invoice, bordereau.insurance_type)

    invoice.bordereau = bordereau
    invoice.status = INVOICE_STATUS_SUBMITTED
    if bordereau.period_end is None or invoice.invoice_date > bordereau.period_end:
        bordereau.period_end = invoice.invoice_date
    _refresh_totals(bordereau)

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="chifa.invoice_batched",
        event_category="chifa",
        entity_type="chifa_invoice",
        entity_id=invoice.id,
        actor_id=actor.actor_id,
        invoice_id=invoice.id,
        amount_cents=invoice.total_chifa_cents,
        note=f"Added to {bordereau.bordereau_number}",
    )

    if commit:
        db.session.commit()
    return bordereau


@unit_of_work
def mark_invoice_paid(
    pharmacy_id: int,
    actor: ActorContext,
    invoice_id: int,
    *,
    paid_date: date | None = None,
) -> ChifaInvoice:
    """Settle one submitted invoice: submitted -> paid."""
    invoice = lock_for_update(
        db.session.query(ChifaInvoice).filter_by(id=invoice_id, pharmacy_id=pharmacy_id)
    ).first()
    if not invoice:
        raise NotFoundError("Invoice not found", invoice_id=invoice_id)
    if invoice.status != INVOICE_STATUS_SUBMITTED:
        raise ConflictError(
            f"Only submitted invoices can be marked paid (status {invoice.status})",
            invoice_id=invoice.id,
            status=invoice.status,
        )

    invoice.status = INVOICE_STATUS_PAID
    invoice.paid_date = paid_date or today()

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="chifa.invoice_paid",
        event_category="chifa",
        entity_type="chifa_invoice",
        entity_id=invoice.id,
        actor_id=actor.actor_id,
        invoice_id=invoice.id,
        amount_cents=invoice.total_chifa_cents,
    )
    db.session.commit()
    return invoice


@unit_of_work
def record_bordereau_payment(
    pharmacy_id: int,
    actor: ActorContext,
    bordereau_id: int,
    *,
    amount_paid_cents: int,
    payment_date: date | None = None,
    payment_reference: str | None = None,
) -> Bordereau:
    """
    Record the insurer's settlement of a bordereau.

    POLICY:
    - paid >= expected - tolerance: bordereau paid, its still-submitted invoices paid
    - otherwise: bordereau partial; invoices stay submitted until paid or rejected

    expected is the batch's total_chifa_cents; tolerance is
    CHIFA_PAYMENT_TOLERANCE_BPS of it.
    """
    if isinstance(amount_paid_cents, bool) or not isinstance(amount_paid_cents, int) or amount_paid_cents < 0:
        raise ValidationError("amount_paid_cents must be a non-negative integer", field="amount_paid_cents")

    bordereau = lock_for_update(
        db.session.query(Bordereau).filter_by(id=bordereau_id, pharmacy_id=pharmacy_id)
    ).first()
    if not bordereau:
        raise NotFoundError("Bordereau not found", bordereau_id=bordereau_id)
    if bordereau.status == BORDEREAU_STATUS_PAID:
        raise ConflictError(
            f"Bordereau {bordereau.bordereau_number} is already paid",
            bordereau_id=bordereau.id,
            payment_reference=bordereau.payment_reference,
        )

    expected = bordereau.total_chifa_cents
    tolerance = expected * current_app.config.get("CHIFA_PAYMENT_TOLERANCE_BPS", 100) // 10_000
    paid_on = payment_date or today()

    bordereau.amount_paid_cents = amount_paid_cents
    bordereau.payment_date = paid_on
    bordereau.payment_reference = payment_reference

    if amount_paid_cents >= expected - tolerance:
        bordereau.status = BORDEREAU_STATUS_PAID
        for invoice in bordereau.invoices:
            if invoice.status == INVOICE_STATUS_SUBMITTED:
                invoice.status = INVOICE_STATUS_PAID
                invoice.paid_date = paid_on
    else:
        bordereau.status = BORDEREAU_STATUS_PARTIAL

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type=f"chifa.bordereau_{bordereau.status}",
        event_category="chifa",
        entity_type="bordereau",
        entity_id=bordereau.id,
        actor_id=actor.actor_id,
        amount_cents=amount_paid_cents,
        note=f"Expected {expected}, reference {payment_reference or '-'}",
    )
    db.session.commit()

    current_app.logger.info(
        "Bordereau %s payment recorded: paid=%s expected=%s status=%s",
        bordereau.bordereau_number, amount_paid_cents, expected, bordereau.status,
    )
    return bordereau


def get_bordereau(pharmacy_id: int, bordereau_id: int) -> Bordereau:
    bordereau = db.session.query(Bordereau).filter_by(id=bordereau_id, pharmacy_id=pharmacy_id).first()
    if not bordereau:
        raise NotFoundError("Bordereau not found", bordereau_id=bordereau_id)
    return bordereau


def list_bordereaux(
    pharmacy_id: int,
    *,
    status: str | None = None,
    insurance_type: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Bordereau], int]:
    query = db.session.query(Bordereau).filter(Bordereau.pharmacy_id == pharmacy_id)
    if status:
        query = query.filter(Bordereau.status == parse_choice(status, "status", BORDEREAU_STATUSES))
    if insurance_type:
        query = query.filter(Bordereau.insurance_type == parse_choice(insurance_type, "insurance_type", INSURANCE_TYPES))

    total = query.count()
    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    items = query.order_by(Bordereau.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return items, total
