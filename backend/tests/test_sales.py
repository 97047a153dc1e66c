# Overview: Pytest coverage for the tender ledger: sale recording, insured sales, voids and returns.

"""
Sales Tests

Covers:
- Patient due = total - insurer share; tenders must cover it
- Only cash produces change
- Insured sales build their Chifa invoice atomically with the sale
- completed -> voided | returned, with a reason, once
"""

import pytest

from chifa_pos.models import ChifaInvoice, Sale
from chifa_pos.services import cash_session_service, sales_service
from chifa_pos.validation import ConflictError, NotFoundError, ValidationError


AMOXICILLINE = {
    "product_id": "P-AMOX",
    "product_name": "Amoxicilline 1g",
    "quantity": 2,
    "unit_price_cents": 10000,
    "tarif_reference_cents": 8000,
    "reimbursement_rate": 80,
}

INSURED = {"insured_number": "1234567890", "insured_name": "Benali Ahmed", "insurance_type": "CNAS"}


def _sale(actor, session, lines=None, payments=None, **kwargs):
    return sales_service.record_sale(
        actor.pharmacy_id, actor, session.id,
        lines=lines or [{"product_name": "Doliprane 1g", "quantity": 1, "unit_price_cents": 2800}],
        payments=payments if payments is not None else {"cash": 3000},
        **kwargs,
    )


class TestRecordSale:

    def test_cash_sale(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a)

        assert sale.sale_number == "TICKET-000001"
        assert sale.status == "completed"
        assert sale.total_amount_cents == 2800
        assert sale.patient_total_cents == 2800
        assert sale.chifa_total_cents == 0
        assert sale.paid_cash_cents == 3000
        assert sale.change_given_cents == 200
        assert sale.created_by == actor_a.actor_id
        assert len(sale.lines) == 1

    def test_ticket_numbers_increase(self, db_session, actor_a, session_a):
        _sale(actor_a, session_a)
        second = _sale(actor_a, session_a)
        assert second.sale_number == "TICKET-000002"

    def test_discount(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a, payments={"card": 2500}, discount_amount_cents=300)

        assert sale.subtotal_cents == 2800
        assert sale.total_amount_cents == 2500
        assert sale.change_given_cents == 0

    def test_empty_cart(self, db_session, actor_a, session_a):
        with pytest.raises(ValidationError) as exc_info:
            sales_service.record_sale(actor_a.pharmacy_id, actor_a, session_a.id, lines=[], payments={"cash": 0})
        assert exc_info.value.message == "Cart is empty"

    def test_insufficient_payment(self, db_session, actor_a, session_a):
        with pytest.raises(ValidationError) as exc_info:
            _sale(actor_a, session_a, payments={"cash": 2000})

        assert exc_info.value.context["patient_total_cents"] == 2800
        assert exc_info.value.context["paid_cents"] == 2000
        assert db_session.query(Sale).count() == 0

    def test_card_cannot_overpay(self, db_session, actor_a, session_a):
        with pytest.raises(ValidationError):
            _sale(actor_a, session_a, payments={"card": 3000})

    def test_unknown_tender(self, db_session, actor_a, session_a):
        with pytest.raises(ValidationError):
            _sale(actor_a, session_a, payments={"bitcoin": 3000})

    def test_discount_above_subtotal(self, db_session, actor_a, session_a):
        with pytest.raises(ValidationError):
            _sale(actor_a, session_a, discount_amount_cents=5000)

    @pytest.mark.parametrize("line", [
        {"product_name": "X", "quantity": 0, "unit_price_cents": 100},
        {"product_name": "X", "quantity": 1, "unit_price_cents": 0},
        {"product_name": "", "quantity": 1, "unit_price_cents": 100},
        {"product_name": "X", "quantity": 1.5, "unit_price_cents": 100},
    ])
    def test_invalid_lines(self, db_session, actor_a, session_a, line):
        with pytest.raises(ValidationError):
            _sale(actor_a, session_a, lines=[line])

    def test_unknown_session(self, db_session, actor_a):
        with pytest.raises(NotFoundError):
            sales_service.record_sale(
                actor_a.pharmacy_id, actor_a, 99999,
                lines=[{"product_name": "X", "quantity": 1, "unit_price_cents": 100}],
                payments={"cash": 100},
            )


class TestInsuredSale:

    def test_insurer_share_not_paid_at_counter(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a, lines=[AMOXICILLINE], payments={"cash": 7200}, insurance=INSURED)

        assert sale.total_amount_cents == 20000
        assert sale.chifa_total_cents == 12800
        assert sale.patient_total_cents == 7200
        assert sale.change_given_cents == 0

        invoice = db_session.query(ChifaInvoice).filter_by(sale_id=sale.id).one()
        assert invoice.status == "pending"
        assert invoice.total_chifa_cents == 12800
        assert invoice.insured_name == "Benali Ahmed"

    def test_uninsured_lines_paid_in_full(self, db_session, actor_a, session_a):
        lines = [AMOXICILLINE, {"product_name": "Crème solaire", "quantity": 1, "unit_price_cents": 1800}]
        sale = _sale(actor_a, session_a, lines=lines, payments={"cash": 9000}, insurance=INSURED)

        assert sale.total_amount_cents == 21800
        assert sale.chifa_total_cents == 12800
        assert sale.patient_total_cents == 9000

    def test_explicit_insurance_items(self, db_session, actor_a, session_a):
        items = [dict(AMOXICILLINE, quantity=1)]
        sale = _sale(
            actor_a, session_a, lines=[AMOXICILLINE], payments={"cash": 13600},
            insurance=dict(INSURED, items=items),
        )
        assert sale.chifa_total_cents == 6400
        assert sale.patient_total_cents == 13600

    def test_insured_items_outside_cart_rejected(self, db_session, actor_a, session_a):
        cart = [{"product_name": "Crème solaire", "quantity": 1, "unit_price_cents": 5000}]
        insulin = {"product_name": "Insuline", "quantity": 5, "unit_price_cents": 1000, "reimbursement_rate": 100}

        with pytest.raises(ValidationError) as exc_info:
            _sale(actor_a, session_a, lines=cart, payments={"cash": 0}, insurance=dict(INSURED, items=[insulin]))

        assert exc_info.value.context["field"] == "insurance.items[0]"
        assert db_session.query(Sale).count() == 0
        assert db_session.query(ChifaInvoice).count() == 0

    @pytest.mark.parametrize("item", [
        dict(AMOXICILLINE, quantity=3),
        dict(AMOXICILLINE, unit_price_cents=9000),
        dict(AMOXICILLINE, product_id="P-AUTRE"),
    ])
    def test_insured_item_must_fit_its_line(self, db_session, actor_a, session_a, item):
        with pytest.raises(ValidationError):
            _sale(
                actor_a, session_a, lines=[AMOXICILLINE], payments={"cash": 20000},
                insurance=dict(INSURED, items=[item]),
            )

    def test_insured_items_share_line_quantity(self, db_session, actor_a, session_a):
        one_box = dict(AMOXICILLINE, quantity=1)
        with pytest.raises(ValidationError):
            _sale(
                actor_a, session_a, lines=[AMOXICILLINE], payments={"cash": 20000},
                insurance=dict(INSURED, items=[one_box, one_box, one_box]),
            )

        sale = _sale(
            actor_a, session_a, lines=[AMOXICILLINE], payments={"cash": 7200},
            insurance=dict(INSURED, items=[one_box, one_box]),
        )
        assert sale.chifa_total_cents == 12800

    def test_invalid_insurance_persists_nothing(self, db_session, actor_a, session_a):
        with pytest.raises(ValidationError):
            _sale(
                actor_a, session_a, lines=[AMOXICILLINE], payments={"cash": 7200},
                insurance={"insured_name": "Benali Ahmed"},
            )

        assert db_session.query(Sale).count() == 0
        assert db_session.query(ChifaInvoice).count() == 0

    def test_closed_session_persists_no_invoice(self, db_session, actor_a, session_a):
        cash_session_service.close_session(actor_a.pharmacy_id, actor_a, session_a.id, counted_cash_cents=5000)

        with pytest.raises(ConflictError):
            _sale(actor_a, session_a, lines=[AMOXICILLINE], payments={"cash": 7200}, insurance=INSURED)
        assert db_session.query(ChifaInvoice).count() == 0


class TestVoidAndReturn:

    def test_void(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a)
        voided = sales_service.void_sale(actor_a.pharmacy_id, actor_a, sale.id, reason="Erreur de saisie")

        assert voided.status == "voided"
        assert voided.voided_by == actor_a.actor_id
        assert voided.void_reason == "Erreur de saisie"
        assert voided.voided_at is not None

    def test_void_requires_reason(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a)
        with pytest.raises(ValidationError):
            sales_service.void_sale(actor_a.pharmacy_id, actor_a, sale.id, reason="  ")

    def test_void_twice(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a)
        sales_service.void_sale(actor_a.pharmacy_id, actor_a, sale.id, reason="Erreur")

        with pytest.raises(ConflictError) as exc_info:
            sales_service.void_sale(actor_a.pharmacy_id, actor_a, sale.id, reason="Erreur")
        assert exc_info.value.context["status"] == "voided"

    def test_insured_sale_cannot_be_voided(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a, lines=[AMOXICILLINE], payments={"cash": 7200}, insurance=INSURED)

        with pytest.raises(ConflictError) as exc_info:
            sales_service.void_sale(actor_a.pharmacy_id, actor_a, sale.id, reason="Erreur")
        assert exc_info.value.context["invoice_number"].startswith("FC-")

    def test_void_after_close_keeps_frozen_totals(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a)
        closed = cash_session_service.close_session(
            actor_a.pharmacy_id, actor_a, session_a.id, counted_cash_cents=7800
        )
        assert closed.system_cash_cents == 7800

        sales_service.void_sale(actor_a.pharmacy_id, actor_a, sale.id, reason="Client parti")

        again = cash_session_service.get_session(actor_a.pharmacy_id, session_a.id)
        assert again.system_cash_cents == 7800
        assert again.variance_cash_cents == 0

    def test_return(self, db_session, actor_a, session_a):
        sale = _sale(actor_a, session_a)
        returned = sales_service.return_sale(actor_a.pharmacy_id, actor_a, sale.id, reason="Produit abîmé")

        assert returned.status == "returned"
        assert returned.returned_by == actor_a.actor_id
        assert returned.return_reason == "Produit abîmé"

        with pytest.raises(ConflictError):
            sales_service.void_sale(actor_a.pharmacy_id, actor_a, sale.id, reason="Erreur")

    def test_unknown_sale(self, db_session, actor_a):
        with pytest.raises(NotFoundError):
            sales_service.return_sale(actor_a.pharmacy_id, actor_a, 99999, reason="Erreur")


class TestSaleQueries:

    def test_list_by_status(self, db_session, actor_a, session_a):
        first = _sale(actor_a, session_a)
        _sale(actor_a, session_a)
        sales_service.void_sale(actor_a.pharmacy_id, actor_a, first.id, reason="Erreur")

        completed, total = sales_service.list_sales(actor_a.pharmacy_id, status="completed")
        voided, voided_total = sales_service.list_sales(actor_a.pharmacy_id, session_id=session_a.id, status="voided")

        assert total == 1
        assert voided_total == 1
        assert voided[0].id == first.id

    def test_invalid_status_filter(self, db_session, actor_a):
        with pytest.raises(ValidationError):
            sales_service.list_sales(actor_a.pharmacy_id, status="refunded")
