# Overview: Pytest coverage for the Chifa rejection workflow.

"""
Rejection Workflow Tests

STATE MACHINE under test:
- pending -> corrected -> resubmitted
- pending -> resubmitted
- pending -> written_off
Resolved rejections never move backwards, and the rejected invoice is
never edited.
"""

import pytest

from chifa_pos.models import ChifaInvoice, LedgerEvent
from chifa_pos.services import bordereau_service, rejection_service
from chifa_pos.services.chifa_invoice_service import InvoiceRequest, build_invoice, chifa_dashboard_stats
from chifa_pos.validation import ConflictError, NotFoundError, ValidationError

from conftest import invoice_payload


def _submitted_invoice(actor, **overrides):
    invoice = build_invoice(actor.pharmacy_id, actor, InvoiceRequest.from_payload(invoice_payload(**overrides)))
    bordereau_service.create_bordereau(
        actor.pharmacy_id, actor, insurance_type=invoice.insurance_type, invoice_ids=[invoice.id]
    )
    return invoice


@pytest.fixture
def rejection(app, db_session, actor_a):
    invoice = _submitted_invoice(actor_a)
    return rejection_service.reject_invoice(
        actor_a.pharmacy_id, actor_a, invoice.id,
        rejection_code="R01", rejection_motif="Numéro d'assuré invalide",
    )


class TestRejectInvoice:

    def test_opens_pending_rejection(self, db_session, actor_a, rejection):
        invoice = rejection.invoice

        assert rejection.status == "pending"
        assert rejection.rejected_amount_cents == invoice.total_chifa_cents
        assert rejection.bordereau_id == invoice.bordereau_id
        assert invoice.status == "rejected"
        assert invoice.rejection_code == "R01"
        assert invoice.bordereau.rejection_total_cents == invoice.total_chifa_cents

    def test_motif_from_code(self, app, db_session, actor_a):
        invoice = _submitted_invoice(actor_a)
        result = rejection_service.reject_invoice(
            actor_a.pharmacy_id, actor_a, invoice.id, rejection_code="R05"
        )
        assert result.rejection_motif == "Ordonnance expirée"

    def test_unknown_code(self, app, db_session, actor_a):
        invoice = _submitted_invoice(actor_a)
        with pytest.raises(ValidationError):
            rejection_service.reject_invoice(actor_a.pharmacy_id, actor_a, invoice.id, rejection_code="X42")

    def test_motif_or_code_required(self, app, db_session, actor_a):
        invoice = _submitted_invoice(actor_a)
        with pytest.raises(ValidationError):
            rejection_service.reject_invoice(actor_a.pharmacy_id, actor_a, invoice.id)

    def test_pending_invoice_cannot_be_rejected(self, app, db_session, actor_a):
        invoice = build_invoice(actor_a.pharmacy_id, actor_a, InvoiceRequest.from_payload(invoice_payload()))
        with pytest.raises(ConflictError):
            rejection_service.reject_invoice(actor_a.pharmacy_id, actor_a, invoice.id, rejection_code="R01")

    def test_one_open_rejection_per_invoice(self, db_session, actor_a, rejection):
        with pytest.raises(ConflictError) as exc_info:
            rejection_service.reject_invoice(
                actor_a.pharmacy_id, actor_a, rejection.invoice_id, rejection_code="R06"
            )
        assert exc_info.value.context["rejection_id"] == rejection.id

    def test_rejected_amount_bounded_by_insurer_share(self, app, db_session, actor_a):
        invoice = _submitted_invoice(actor_a)
        with pytest.raises(ValidationError):
            rejection_service.reject_invoice(
                actor_a.pharmacy_id, actor_a, invoice.id,
                rejection_code="R07", rejected_amount_cents=invoice.total_chifa_cents + 1,
            )

    def test_partial_rejected_amount(self, app, db_session, actor_a):
        invoice = _submitted_invoice(actor_a)
        result = rejection_service.reject_invoice(
            actor_a.pharmacy_id, actor_a, invoice.id, rejection_code="R07", rejected_amount_cents=3200,
        )
        assert result.rejected_amount_cents == 3200


class TestCorrection:

    def test_corrected_creates_new_invoice(self, db_session, actor_a, rejection):
        original_id = rejection.invoice_id
        original_number = rejection.invoice.invoice_number

        result = rejection_service.create_corrected_invoice(
            actor_a.pharmacy_id, actor_a, rejection.id,
            corrections={"insured_number": "0987654321"},
            resolution_notes="Numéro corrigé",
        )

        assert result.status == "corrected"
        assert result.resolved_at is not None
        assert result.resolved_by == actor_a.actor_id
        assert result.corrected_invoice_id is not None
        assert result.corrected_invoice_id != original_id

        corrected = result.corrected_invoice
        assert corrected.replaces_invoice_id == original_id
        assert corrected.status == "pending"
        assert corrected.insured_number == "0987654321"
        assert corrected.invoice_number != original_number
        assert corrected.total_chifa_cents == 12800

        original = db_session.get(ChifaInvoice, original_id)
        assert original.status == "rejected"
        assert original.insured_number == "1234567890"

    def test_uncorrectable_field(self, db_session, actor_a, rejection):
        with pytest.raises(ValidationError):
            rejection_service.create_corrected_invoice(
                actor_a.pharmacy_id, actor_a, rejection.id, corrections={"total_chifa_cents": 1},
            )

    def test_correct_twice(self, db_session, actor_a, rejection):
        rejection_service.create_corrected_invoice(actor_a.pharmacy_id, actor_a, rejection.id)
        with pytest.raises(ConflictError):
            rejection_service.create_corrected_invoice(actor_a.pharmacy_id, actor_a, rejection.id)

    def test_corrected_items_recomputed(self, db_session, actor_a, rejection):
        result = rejection_service.create_corrected_invoice(
            actor_a.pharmacy_id, actor_a, rejection.id,
            corrections={"items": [
                {"product_name": "Amoxicilline 1g", "quantity": 1, "unit_price_cents": 8000,
                 "tarif_reference_cents": 8000, "reimbursement_rate": 80},
            ]},
        )
        assert result.corrected_invoice.total_chifa_cents == 6400
        assert result.corrected_invoice.total_majoration_cents == 0


class TestResubmission:

    def test_corrected_then_resubmitted(self, db_session, actor_a, rejection):
        corrected = rejection_service.create_corrected_invoice(actor_a.pharmacy_id, actor_a, rejection.id)
        corrected_invoice_id = corrected.corrected_invoice_id
        resolved_at = corrected.resolved_at

        result = rejection_service.resubmit_rejection(actor_a.pharmacy_id, actor_a, rejection.id)

        assert result.status == "resubmitted"
        assert result.corrected_invoice_id == corrected_invoice_id
        assert result.new_bordereau_id is not None
        assert result.new_bordereau_id != result.bordereau_id
        assert result.resolved_at == resolved_at
        assert result.corrected_invoice.status == "submitted"
        assert result.corrected_invoice.bordereau_id == result.new_bordereau_id

    def test_resubmit_directly_from_pending(self, db_session, actor_a, rejection):
        result = rejection_service.resubmit_rejection(actor_a.pharmacy_id, actor_a, rejection.id)

        assert result.status == "resubmitted"
        assert result.corrected_invoice.replaces_invoice_id == rejection.invoice_id
        assert result.resolved_at is not None

    def test_resubmit_into_existing_bordereau(self, db_session, actor_a, rejection):
        other = build_invoice(actor_a.pharmacy_id, actor_a, InvoiceRequest.from_payload(invoice_payload()))
        open_batch = bordereau_service.create_bordereau(
            actor_a.pharmacy_id, actor_a, insurance_type="CNAS", invoice_ids=[other.id]
        )

        result = rejection_service.resubmit_rejection(
            actor_a.pharmacy_id, actor_a, rejection.id, bordereau_id=open_batch.id
        )

        assert result.new_bordereau_id == open_batch.id
        assert result.resubmission_bordereau.invoice_count == 2

    def test_resubmitted_is_terminal(self, db_session, actor_a, rejection):
        rejection_service.resubmit_rejection(actor_a.pharmacy_id, actor_a, rejection.id)

        with pytest.raises(ConflictError):
            rejection_service.resubmit_rejection(actor_a.pharmacy_id, actor_a, rejection.id)
        with pytest.raises(ConflictError):
            rejection_service.write_off_rejection(actor_a.pharmacy_id, actor_a, rejection.id)
        with pytest.raises(ConflictError):
            rejection_service.create_corrected_invoice(actor_a.pharmacy_id, actor_a, rejection.id)

    def test_failed_resubmission_rolls_back(self, db_session, actor_a, rejection):
        invoices_before = db_session.query(ChifaInvoice).count()

        with pytest.raises(NotFoundError):
            rejection_service.resubmit_rejection(
                actor_a.pharmacy_id, actor_a, rejection.id, bordereau_id=99999
            )

        assert db_session.query(ChifaInvoice).count() == invoices_before
        assert rejection_service.get_rejection(actor_a.pharmacy_id, rejection.id).status == "pending"


class TestWriteOff:

    def test_write_off(self, db_session, actor_a, rejection):
        result = rejection_service.write_off_rejection(
            actor_a.pharmacy_id, actor_a, rejection.id, resolution_notes="Assuré introuvable"
        )

        assert result.status == "written_off"
        assert result.resolved_by == actor_a.actor_id

        event = db_session.query(LedgerEvent).filter_by(event_type="chifa.rejection_written_off").one()
        assert event.event_category == "accounting"
        assert event.amount_cents == rejection.rejected_amount_cents

    def test_corrected_cannot_be_written_off(self, db_session, actor_a, rejection):
        rejection_service.create_corrected_invoice(actor_a.pharmacy_id, actor_a, rejection.id)
        with pytest.raises(ConflictError):
            rejection_service.write_off_rejection(actor_a.pharmacy_id, actor_a, rejection.id)


class TestResolveRejection:

    def test_link_existing_corrected_invoice(self, db_session, actor_a, rejection):
        corrected = build_invoice(
            actor_a.pharmacy_id, actor_a, InvoiceRequest.from_payload(invoice_payload()),
            replaces_invoice_id=rejection.invoice_id,
        )

        result = rejection_service.resolve_rejection(
            actor_a.pharmacy_id, actor_a, rejection.id, status="corrected", corrected_invoice_id=corrected.id,
        )

        assert result.status == "corrected"
        assert result.corrected_invoice_id == corrected.id

    def test_corrected_invoice_must_replace_the_rejected_one(self, db_session, actor_a, rejection):
        unrelated = build_invoice(actor_a.pharmacy_id, actor_a, InvoiceRequest.from_payload(invoice_payload()))

        with pytest.raises(ValidationError):
            rejection_service.resolve_rejection(
                actor_a.pharmacy_id, actor_a, rejection.id, status="corrected", corrected_invoice_id=unrelated.id,
            )

    def test_correction_older_than_rejection_refused(self, db_session, actor_a):
        invoice = _submitted_invoice(actor_a)
        older = build_invoice(actor_a.pharmacy_id, actor_a, InvoiceRequest.from_payload(invoice_payload()))
        older.replaces_invoice_id = invoice.id
        db_session.commit()

        rejection = rejection_service.reject_invoice(
            actor_a.pharmacy_id, actor_a, invoice.id, rejection_code="R01",
        )
        with pytest.raises(ValidationError) as exc_info:
            rejection_service.resolve_rejection(
                actor_a.pharmacy_id, actor_a, rejection.id, status="corrected", corrected_invoice_id=older.id,
            )

        assert exc_info.value.context["field"] == "corrected_invoice_id"
        db_session.refresh(rejection)
        assert rejection.status == "pending"
        assert rejection.corrected_invoice_id is None

    def test_only_rejected_invoices_can_be_replaced(self, db_session, actor_a, actor_b):
        submitted = _submitted_invoice(actor_a)
        pending = build_invoice(actor_a.pharmacy_id, actor_a, InvoiceRequest.from_payload(invoice_payload()))
        count = db_session.query(ChifaInvoice).count()

        for target in (submitted, pending):
            with pytest.raises(ConflictError):
                build_invoice(
                    actor_a.pharmacy_id, actor_a, InvoiceRequest.from_payload(invoice_payload()),
                    replaces_invoice_id=target.id,
                )
        with pytest.raises(NotFoundError):
            build_invoice(
                actor_b.pharmacy_id, actor_b, InvoiceRequest.from_payload(invoice_payload()),
                replaces_invoice_id=submitted.id,
            )
        assert db_session.query(ChifaInvoice).count() == count

    def test_rejected_invoice_is_not_its_own_correction(self, db_session, actor_a, rejection):
        with pytest.raises(ValidationError):
            rejection_service.resolve_rejection(
                actor_a.pharmacy_id, actor_a, rejection.id,
                status="corrected", corrected_invoice_id=rejection.invoice_id,
            )

    def test_back_to_pending_is_a_conflict(self, db_session, actor_a, rejection):
        with pytest.raises(ConflictError):
            rejection_service.resolve_rejection(actor_a.pharmacy_id, actor_a, rejection.id, status="pending")

    def test_unknown_status(self, db_session, actor_a, rejection):
        with pytest.raises(ValidationError):
            rejection_service.resolve_rejection(actor_a.pharmacy_id, actor_a, rejection.id, status="cancelled")

    def test_written_off_via_resolve(self, db_session, actor_a, rejection):
        result = rejection_service.resolve_rejection(
            actor_a.pharmacy_id, actor_a, rejection.id, status="written_off"
        )
        assert result.status == "written_off"


class TestRejectionQueries:

    def test_list_resolves_both_bordereaux(self, db_session, actor_a, rejection):
        original_number = rejection.original_bordereau.bordereau_number
        rejection_service.resubmit_rejection(actor_a.pharmacy_id, actor_a, rejection.id)

        items, total = rejection_service.list_rejections(actor_a.pharmacy_id)

        assert total == 1
        assert items[0]["original_bordereau_number"] == original_number
        assert items[0]["resubmission_bordereau_number"] is not None
        assert items[0]["resubmission_bordereau_number"] != original_number
        assert items[0]["invoice"]["id"] == rejection.invoice_id

    def test_list_filters_by_status(self, db_session, actor_a, rejection):
        items, total = rejection_service.list_rejections(actor_a.pharmacy_id, status="written_off")
        assert total == 0
        assert items == []

    def test_dashboard_counts_pending_rejections(self, db_session, actor_a, rejection):
        assert chifa_dashboard_stats(actor_a.pharmacy_id)["pending_rejections"] == 1
