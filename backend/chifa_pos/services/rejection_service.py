# Overview: Insurer rejections of Chifa invoices and their correction, resubmission or write-off.

"""
Chifa Rejection Workflow

WHY: The insurer refuses some invoices in a bordereau. Each refusal has to
be followed up until it is either claimed again or accepted as a loss,
without ever rewriting what was originally submitted.

STATE MACHINE (per rejection):
- pending -> corrected: a new corrected invoice exists, not yet resubmitted
- pending|corrected -> resubmitted: the new invoice is batched again (terminal)
- pending -> written_off: loss accepted; accounting is notified via the ledger (terminal)

IMMUTABLE:
- The rejected invoice is never edited. Corrections are always a NEW
  invoice with replaces_invoice_id pointing at the rejected one, created
  after the rejection.
- Once resolved, a rejection only moves forward. Problems with the new
  invoice open a new rejection on the new invoice.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import Bordereau, ChifaInvoice, ChifaRejection
from ..models.chifa import (
    INVOICE_STATUS_PENDING,
    INVOICE_STATUS_REJECTED,
    INVOICE_STATUS_SUBMITTED,
    REJECTION_STATUS_CORRECTED,
    REJECTION_STATUS_PENDING,
    REJECTION_STATUS_RESUBMITTED,
    REJECTION_STATUS_WRITTEN_OFF,
    REJECTION_STATUSES,
)
from ..validation import ConflictError, NotFoundError, ValidationError, parse_choice
from chifa_pos.time_utils import today, utcnow
from .bordereau_service import add_invoice_to_bordereau, create_bordereau
from .chifa_invoice_service import InvoiceRequest, build_invoice
from .concurrency import lock_for_update, unit_of_work
from .identity_service import ActorContext
from .ledger_service import append_ledger_event


# CNAS rejection motifs
REJECTION_CODES = {
    "R01": "Numéro d'assuré invalide",
    "R02": "Carte Chifa expirée",
    "R03": "Médicament non remboursable",
    "R04": "Dépassement du plafond mensuel",
    "R05": "Ordonnance expirée",
    "R06": "Doublon de facture",
    "R07": "Quantité excessive",
    "R08": "Tarif de référence incorrect",
    "R09": "Prescripteur non agréé",
    "R10": "Bénéficiaire non couvert",
    "R99": "Autre motif",
}

RESOLUTION_STATUSES = (
    REJECTION_STATUS_CORRECTED,
    REJECTION_STATUS_RESUBMITTED,
    REJECTION_STATUS_WRITTEN_OFF,
)

# Fields of the rejected invoice that a correction may change
CORRECTABLE_FIELDS = (
    "insured_number", "insured_name", "insured_rank",
    "beneficiary_name", "beneficiary_relationship",
    "insurance_type", "is_chronic", "chronic_code",
    "prescriber_name", "prescriber_specialty",
    "prescription_date", "prescription_number", "treatment_duration",
    "items",
)


def _locked_rejection(pharmacy_id: int, rejection_id: int) -> ChifaRejection:
    rejection = lock_for_update(
        db.session.query(ChifaRejection).filter_by(id=rejection_id, pharmacy_id=pharmacy_id)
    ).populate_existing().first()
    if not rejection:
        raise NotFoundError("Rejection not found", rejection_id=rejection_id)
    return rejection


def _transition_conflict(rejection: ChifaRejection, target: str) -> ConflictError:
    return ConflictError(
        f"Rejection cannot move from {rejection.status} to {target}",
        rejection_id=rejection.id,
        status=rejection.status,
        corrected_invoice_id=rejection.corrected_invoice_id,
        new_bordereau_id=rejection.new_bordereau_id,
    )


def _replacement_request(original: ChifaInvoice, corrections: dict | None) -> InvoiceRequest:
    """Copy of the rejected invoice's claim, with optional corrected fields."""
    payload = original.to_dict(include_lines=True)
    payload["invoice_date"] = None
    if corrections:
        if not isinstance(corrections, dict):
            raise ValidationError("corrections must be an object", field="corrections")
        unknown = sorted(set(corrections) - set(CORRECTABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be corrected: {', '.join(unknown)}", fields=unknown)
        payload.update(corrections)
    return InvoiceRequest.from_payload(payload)


def _new_invoice_for(
    pharmacy_id: int,
    actor: ActorContext,
    rejection: ChifaRejection,
    corrections: dict | None,
) -> ChifaInvoice:
    original = rejection.invoice
    return build_invoice(
        pharmacy_id,
        actor,
        _replacement_request(original, corrections),
        sale_id=original.sale_id,
        replaces_invoice_id=original.id,
        commit=False,
    )


# =============================================================================
# REJECTION
# =============================================================================

@unit_of_work
def reject_invoice(
    pharmacy_id: int,
    actor: ActorContext,
    invoice_id: int,
    *,
    rejection_code: str | None = None,
    rejection_motif: str | None = None,
    rejected_amount_cents: int | None = None,
    rejection_date: date | None = None,
) -> ChifaRejection:
    """
    Record the insurer's refusal of a submitted invoice.

    The invoice moves submitted -> rejected and exactly one pending
    rejection is opened for it.
    """
    if rejection_code is not None and rejection_code not in REJECTION_CODES:
        raise ValidationError(
            f"Unknown rejection_code {rejection_code}",
            field="rejection_code",
            allowed=sorted(REJECTION_CODES),
        )
    motif = (rejection_motif or "").strip() or REJECTION_CODES.get(rejection_code or "")
    if not motif:
        raise ValidationError("rejection_motif or rejection_code is required", field="rejection_motif")

    invoice = lock_for_update(
        db.session.query(ChifaInvoice).filter_by(id=invoice_id, pharmacy_id=pharmacy_id)
    ).populate_existing().first()
    if not invoice:
        raise NotFoundError("Invoice not found", invoice_id=invoice_id)

    open_rejection = db.session.query(ChifaRejection).filter(
        ChifaRejection.invoice_id == invoice.id,
        ChifaRejection.status.in_((REJECTION_STATUS_PENDING, REJECTION_STATUS_CORRECTED)),
    ).first()
    if open_rejection:
        raise ConflictError(
            "Invoice already has an open rejection",
            invoice_id=invoice.id,
            rejection_id=open_rejection.id,
        )
    if invoice.status != INVOICE_STATUS_SUBMITTED:
        raise ConflictError(
            f"Only submitted invoices can be rejected (status {invoice.status})",
            invoice_id=invoice.id,
            status=invoice.status,
        )

    if rejected_amount_cents is None:
        rejected_amount_cents = invoice.total_chifa_cents
    if (
        isinstance(rejected_amount_cents, bool)
        or not isinstance(rejected_amount_cents, int)
        or not 0 <= rejected_amount_cents <= invoice.total_chifa_cents
    ):
        raise ValidationError(
            "rejected_amount_cents must be between 0 and the invoice's insurer share",
            field="rejected_amount_cents",
            total_chifa_cents=invoice.total_chifa_cents,
        )

    rejected_on = rejection_date or today()
    invoice.status = INVOICE_STATUS_REJECTED
    invoice.rejection_code = rejection_code
    invoice.rejection_reason = motif[:255]
    invoice.rejection_date = rejected_on

    rejection = ChifaRejection(
        pharmacy_id=pharmacy_id,
        invoice_id=invoice.id,
        bordereau_id=invoice.bordereau_id,
        rejection_date=rejected_on,
        rejection_code=rejection_code,
        rejection_motif=motif[:255],
        rejected_amount_cents=rejected_amount_cents,
        invoice_high_water_id=db.session.query(func.max(ChifaInvoice.id)).filter(
            ChifaInvoice.pharmacy_id == pharmacy_id
        ).scalar() or 0,
        status=REJECTION_STATUS_PENDING,
        created_by=actor.actor_id,
    )
    db.session.add(rejection)

    if invoice.bordereau is not None:
        invoice.bordereau.rejection_total_cents = (invoice.bordereau.rejection_total_cents or 0) + rejected_amount_cents

    db.session.flush()

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="chifa.invoice_rejected",
        event_category="chifa",
        entity_type="chifa_rejection",
        entity_id=rejection.id,
        actor_id=actor.actor_id,
        invoice_id=invoice.id,
        amount_cents=rejected_amount_cents,
        note=f"{rejection_code or '-'}: {motif}",
    )
    db.session.commit()

    current_app.logger.info(
        "Invoice %s rejected (%s), rejection %s opened for %s",
        invoice.invoice_number, rejection_code or "no code", rejection.id, rejected_amount_cents,
    )
    return rejection


# =============================================================================
# RESOLUTION
# =============================================================================

@unit_of_work
def create_corrected_invoice(
    pharmacy_id: int,
    actor: ActorContext,
    rejection_id: int,
    *,
    corrections: dict | None = None,
    resolution_notes: str | None = None,
) -> ChifaRejection:
    """
    pending -> corrected, producing a new invoice.

    The new invoice gets its own number, starts pending and points back at
    the rejected invoice through replaces_invoice_id.
    """
    rejection = _locked_rejection(pharmacy_id, rejection_id)
    if rejection.status != REJECTION_STATUS_PENDING:
        raise _transition_conflict(rejection, REJECTION_STATUS_CORRECTED)

    corrected = _new_invoice_for(pharmacy_id, actor, rejection, corrections)
    _mark_corrected(rejection, corrected, actor, resolution_notes)
    db.session.commit()
    return rejection


def _mark_corrected(
    rejection: ChifaRejection,
    corrected: ChifaInvoice,
    actor: ActorContext,
    resolution_notes: str | None,
) -> None:
    rejection.status = REJECTION_STATUS_CORRECTED
    rejection.corrected_invoice_id = corrected.id
    rejection.resolved_at = utcnow()
    rejection.resolved_by = actor.actor_id
    if resolution_notes:
        rejection.resolution_notes = resolution_notes

    append_ledger_event(
        pharmacy_id=rejection.pharmacy_id,
        event_type="chifa.rejection_corrected",
        event_category="chifa",
        entity_type="chifa_rejection",
        entity_id=rejection.id,
        actor_id=actor.actor_id,
        invoice_id=corrected.id,
        amount_cents=corrected.total_chifa_cents,
        note=f"Corrected by {corrected.invoice_number}",
    )
    current_app.logger.info(
        "Rejection %s corrected by invoice %s", rejection.id, corrected.invoice_number,
    )


@unit_of_work
def resubmit_rejection(
    pharmacy_id: int,
    actor: ActorContext,
    rejection_id: int,
    *,
    bordereau_id: int | None = None,
    corrections: dict | None = None,
    resolution_notes: str | None = None,
) -> ChifaRejection:
    """
    pending|corrected -> resubmitted.

    Uses the corrected invoice when one exists, otherwise creates a fresh
    copy of the rejected invoice (optionally with corrections). That invoice
    is batched into `bordereau_id` when given (still awaiting settlement),
    else into a new bordereau of its own.
    """
    rejection = _locked_rejection(pharmacy_id, rejection_id)
    if rejection.status not in (REJECTION_STATUS_PENDING, REJECTION_STATUS_CORRECTED):
        raise _transition_conflict(rejection, REJECTION_STATUS_RESUBMITTED)

    if rejection.status == REJECTION_STATUS_CORRECTED:
        if corrections:
            raise ValidationError(
                "Rejection already has a corrected invoice; corrections are not accepted",
                corrected_invoice_id=rejection.corrected_invoice_id,
            )
        new_invoice = rejection.corrected_invoice
    else:
        new_invoice = _new_invoice_for(pharmacy_id, actor, rejection, corrections)

    if new_invoice.status != INVOICE_STATUS_PENDING or new_invoice.bordereau_id is not None:
        raise ConflictError(
            f"Invoice {new_invoice.invoice_number} is already batched",
            invoice_id=new_invoice.id,
            bordereau_id=new_invoice.bordereau_id,
        )

    if bordereau_id is not None:
        bordereau = add_invoice_to_bordereau(pharmacy_id, actor, bordereau_id, new_invoice.id, commit=False)
    else:
        bordereau = create_bordereau(
            pharmacy_id,
            actor,
            insurance_type=new_invoice.insurance_type,
            invoice_ids=[new_invoice.id],
            notes=f"Resubmission of {rejection.invoice.invoice_number}",
            commit=False,
        )

    now = utcnow()
    rejection.status = REJECTION_STATUS_RESUBMITTED
    rejection.corrected_invoice_id = new_invoice.id
    rejection.new_bordereau_id = bordereau.id
    if rejection.resolved_at is None:
        rejection.resolved_at = now
        rejection.resolved_by = actor.actor_id
    if resolution_notes:
        rejection.resolution_notes = resolution_notes

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="chifa.rejection_resubmitted",
        event_category="chifa",
        entity_type="chifa_rejection",
        entity_id=rejection.id,
        actor_id=actor.actor_id,
        invoice_id=new_invoice.id,
        amount_cents=new_invoice.total_chifa_cents,
        occurred_at=now,
        note=f"Resubmitted as {new_invoice.invoice_number} in {bordereau.bordereau_number}",
    )
    db.session.commit()

    current_app.logger.info(
        "Rejection %s resubmitted: invoice %s in bordereau %s",
        rejection.id, new_invoice.invoice_number, bordereau.bordereau_number,
    )
    return rejection


@unit_of_work
def write_off_rejection(
    pharmacy_id: int,
    actor: ActorContext,
    rejection_id: int,
    *,
    resolution_notes: str | None = None,
) -> ChifaRejection:
    """
    pending -> written_off (terminal).

    The ledger event carries the rejected amount for the accounting
    write-off; booking it is accounting's job.
    """
    rejection = _locked_rejection(pharmacy_id, rejection_id)
    if rejection.status != REJECTION_STATUS_PENDING:
        raise _transition_conflict(rejection, REJECTION_STATUS_WRITTEN_OFF)

    now = utcnow()
    rejection.status = REJECTION_STATUS_WRITTEN_OFF
    rejection.resolved_at = now
    rejection.resolved_by = actor.actor_id
    if resolution_notes:
        rejection.resolution_notes = resolution_notes

    append_ledger_event(
        pharmacy_id=pharmacy_id,
        event_type="chifa.rejection_written_off",
        event_category="accounting",
        entity_type="chifa_rejection",
        entity_id=rejection.id,
        actor_id=actor.actor_id,
        invoice_id=rejection.invoice_id,
        amount_cents=rejection.rejected_amount_cents,
        occurred_at=now,
        note=resolution_notes,
    )
    db.session.commit()

    current_app.logger.info(
        "Rejection %s written off (%s) by %s", rejection.id, rejection.rejected_amount_cents, actor.actor_id,
    )
    return rejection


@unit_of_work
def resolve_rejection(
    pharmacy_id: int,
    actor: ActorContext,
    rejection_id: int,
    *,
    status: Any,
    corrected_invoice_id: int | None = None,
    bordereau_id: int | None = None,
    resolution_notes: str | None = None,
) -> ChifaRejection:
    """
    Apply a resolution status to a rejection.

    - corrected: links an existing corrected invoice; it must replace the
      rejected invoice, be created after the rejection and still be pending
    - resubmitted: see resubmit_rejection
    - written_off: see write_off_rejection

    Every other transition is a ConflictError.
    """
    status = parse_choice(status, "status", REJECTION_STATUSES)
    if status == REJECTION_STATUS_RESUBMITTED:
        return resubmit_rejection(
            pharmacy_id, actor, rejection_id, bordereau_id=bordereau_id, resolution_notes=resolution_notes,
        )
    if status == REJECTION_STATUS_WRITTEN_OFF:
        return write_off_rejection(pharmacy_id, actor, rejection_id, resolution_notes=resolution_notes)

    rejection = _locked_rejection(pharmacy_id, rejection_id)
    if status != REJECTION_STATUS_CORRECTED or rejection.status != REJECTION_STATUS_PENDING:
        raise _transition_conflict(rejection, status)
    if corrected_invoice_id is None:
        raise ValidationError("corrected_invoice_id is required to mark a rejection corrected", field="corrected_invoice_id")

    corrected = db.session.query(ChifaInvoice).filter_by(id=corrected_invoice_id, pharmacy_id=pharmacy_id).first()
    if not corrected:
        raise NotFoundError("Invoice not found", invoice_id=corrected_invoice_id)
    if corrected.id == rejection.invoice_id or corrected.replaces_invoice_id != rejection.invoice_id:
        raise ValidationError(
            "Corrected invoice must be a new invoice replacing the rejected one",
            field="corrected_invoice_id",
            invoice_id=rejection.invoice_id,
        )
    if corrected.id <= rejection.invoice_high_water_id:
        raise ValidationError(
            "Corrected invoice must be created after the rejection",
            field="corrected_invoice_id",
            invoice_id=corrected.id,
            rejection_id=rejection.id,
        )
    if corrected.status != INVOICE_STATUS_PENDING:
        raise ConflictError(
            f"Corrected invoice {corrected.invoice_number} is not pending",
            invoice_id=corrected.id,
            status=corrected.status,
        )

    _mark_corrected(rejection, corrected, actor, resolution_notes)
    db.session.commit()
    return rejection


# =============================================================================
# QUERIES
# =============================================================================

def get_rejection(pharmacy_id: int, rejection_id: int) -> ChifaRejection:
    rejection = db.session.query(ChifaRejection).filter_by(id=rejection_id, pharmacy_id=pharmacy_id).first()
    if not rejection:
        raise NotFoundError("Rejection not found", rejection_id=rejection_id)
    return rejection


def rejection_to_dict(rejection: ChifaRejection) -> dict:
    """Rejection with its invoice display fields and both bordereau numbers."""
    data = rejection.to_dict()
    data["invoice"] = rejection.invoice.to_summary_dict() if rejection.invoice else None
    data["corrected_invoice"] = (
        rejection.corrected_invoice.to_summary_dict() if rejection.corrected_invoice else None
    )
    data["original_bordereau_number"] = (
        rejection.original_bordereau.bordereau_number if rejection.original_bordereau else None
    )
    data["resubmission_bordereau_number"] = (
        rejection.resubmission_bordereau.bordereau_number if rejection.resubmission_bordereau else None
    )
    return data


def list_rejections(
    pharmacy_id: int,
    *,
    status: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[dict], int]:
    """
    Rejections with invoice display fields, newest first.

    Both bordereau foreign keys are joined through explicit aliases, so the
    original and resubmission batches are never confused.
    """
    original_bordereau = aliased(Bordereau, name="original_bordereau")
    resubmission_bordereau = aliased(Bordereau, name="resubmission_bordereau")

    query = (
        db.session.query(
            ChifaRejection,
            ChifaInvoice,
            original_bordereau.bordereau_number,
            resubmission_bordereau.bordereau_number,
        )
        .join(ChifaInvoice, ChifaRejection.invoice_id == ChifaInvoice.id)
        .outerjoin(original_bordereau, ChifaRejection.bordereau_id == original_bordereau.id)
        .outerjoin(resubmission_bordereau, ChifaRejection.new_bordereau_id == resubmission_bordereau.id)
        .filter(ChifaRejection.pharmacy_id == pharmacy_id)
    )
    if status:
        query = query.filter(ChifaRejection.status == parse_choice(status, "status", REJECTION_STATUSES))

    total = db.session.query(func.count(ChifaRejection.id)).filter(ChifaRejection.pharmacy_id == pharmacy_id)
    if status:
        total = total.filter(ChifaRejection.status == status)

    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    rows = (
        query.order_by(ChifaRejection.rejection_date.desc(), ChifaRejection.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    items = []
    for rejection, invoice, original_number, resubmission_number in rows:
        data = rejection.to_dict()
        data["invoice"] = invoice.to_summary_dict()
        data["original_bordereau_number"] = original_number
        data["resubmission_bordereau_number"] = resubmission_number
        items.append(data)
    return items, int(total.scalar() or 0)
