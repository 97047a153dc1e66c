# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that one pharmacy never reaches another's records.

Every service call is scoped by pharmacy_id. A foreign id behaves exactly
like an unknown id (404), so existence is never revealed.

Test Coverage:
- Sessions and drawers: cross-tenant open / close / movement blocked
- Sales: cross-tenant record / void blocked
- Invoices, bordereaux, rejections: cross-tenant reads and writes blocked
- API: token B sees nothing of pharmacy A
"""

import pytest

from chifa_pos.models import CashDrawerSession
from chifa_pos.services import (
    bordereau_service,
    cash_session_service,
    chifa_invoice_service,
    identity_service,
    rejection_service,
    sales_service,
)
from chifa_pos.services.chifa_invoice_service import InvoiceRequest, build_invoice
from chifa_pos.validation import NotFoundError

from conftest import auth_headers, invoice_payload


@pytest.fixture
def invoice_a(db_session, actor_a):
    return build_invoice(actor_a.pharmacy_id, actor_a, InvoiceRequest.from_payload(invoice_payload()))


class TestSessionIsolation:

    def test_open_on_foreign_drawer(self, db_session, actor_b, drawer_a):
        with pytest.raises(NotFoundError):
            cash_session_service.open_session(actor_b.pharmacy_id, actor_b, drawer_a.id)

    def test_close_foreign_session(self, db_session, actor_b, session_a):
        with pytest.raises(NotFoundError):
            cash_session_service.close_session(
                actor_b.pharmacy_id, actor_b, session_a.id, counted_cash_cents=0
            )

        reloaded = cash_session_service.get_session(session_a.pharmacy_id, session_a.id)
        assert reloaded.status == "open"

    def test_movement_on_foreign_session(self, db_session, actor_b, session_a):
        with pytest.raises(NotFoundError):
            cash_session_service.record_movement(
                actor_b.pharmacy_id, actor_b, session_a.id, movement_type="cash_out", amount_cents=100,
            )

    def test_lists_are_scoped(self, db_session, actor_b, session_a, drawer_b):
        sessions, total = cash_session_service.list_sessions(actor_b.pharmacy_id)
        assert total == 0
        assert [d.id for d in cash_session_service.list_drawers(actor_b.pharmacy_id)] == [drawer_b.id]

    def test_same_drawer_code_opens_independently(self, db_session, actor_b, session_a, drawer_b):
        session_b = cash_session_service.open_session(actor_b.pharmacy_id, actor_b, drawer_b.id)
        assert session_b.session_number == session_a.session_number
        assert session_b.pharmacy_id != session_a.pharmacy_id


class TestSaleIsolation:

    def test_record_on_foreign_session(self, db_session, actor_b, session_a):
        with pytest.raises(NotFoundError):
            sales_service.record_sale(
                actor_b.pharmacy_id, actor_b, session_a.id,
                lines=[{"product_name": "X", "quantity": 1, "unit_price_cents": 100}],
                payments={"cash": 100},
            )

    def test_void_foreign_sale(self, db_session, actor_a, actor_b, session_a):
        sale = sales_service.record_sale(
            actor_a.pharmacy_id, actor_a, session_a.id,
            lines=[{"product_name": "X", "quantity": 1, "unit_price_cents": 100}],
            payments={"cash": 100},
        )

        with pytest.raises(NotFoundError):
            sales_service.void_sale(actor_b.pharmacy_id, actor_b, sale.id, reason="Erreur")
        with pytest.raises(NotFoundError):
            sales_service.get_sale(actor_b.pharmacy_id, sale.id)


class TestChifaIsolation:

    def test_foreign_invoice_read(self, db_session, actor_b, invoice_a):
        with pytest.raises(NotFoundError):
            chifa_invoice_service.get_invoice(actor_b.pharmacy_id, invoice_a.id)

        invoices, total = chifa_invoice_service.list_invoices(actor_b.pharmacy_id)
        assert total == 0

    def test_foreign_invoice_cannot_be_batched(self, db_session, actor_b, invoice_a):
        with pytest.raises(NotFoundError) as exc_info:
            bordereau_service.create_bordereau(
                actor_b.pharmacy_id, actor_b, insurance_type="CNAS", invoice_ids=[invoice_a.id]
            )
        assert exc_info.value.context["invoice_ids"] == [invoice_a.id]

    def test_foreign_bordereau_payment(self, db_session, actor_a, actor_b, invoice_a):
        bordereau = bordereau_service.create_bordereau(
            actor_a.pharmacy_id, actor_a, insurance_type="CNAS", invoice_ids=[invoice_a.id]
        )
        with pytest.raises(NotFoundError):
            bordereau_service.record_bordereau_payment(
                actor_b.pharmacy_id, actor_b, bordereau.id, amount_paid_cents=12800,
            )

    def test_foreign_rejection(self, db_session, actor_a, actor_b, invoice_a):
        bordereau_service.create_bordereau(
            actor_a.pharmacy_id, actor_a, insurance_type="CNAS", invoice_ids=[invoice_a.id]
        )
        with pytest.raises(NotFoundError):
            rejection_service.reject_invoice(actor_b.pharmacy_id, actor_b, invoice_a.id, rejection_code="R01")

        rejection = rejection_service.reject_invoice(
            actor_a.pharmacy_id, actor_a, invoice_a.id, rejection_code="R01"
        )
        with pytest.raises(NotFoundError):
            rejection_service.write_off_rejection(actor_b.pharmacy_id, actor_b, rejection.id)

        rejections, total = rejection_service.list_rejections(actor_b.pharmacy_id)
        assert total == 0
        assert rejections == []


class TestApiIsolation:

    def test_foreign_session_via_api(self, client, db_session, token_b, session_a):
        response = client.get(f"/api/pharmacy/sessions/{session_a.id}", headers=auth_headers(token_b))
        assert response.status_code == 404

        response = client.post(
            f"/api/pharmacy/sessions/{session_a.id}/close",
            json={"counted_cash_cents": 0},
            headers=auth_headers(token_b),
        )
        assert response.status_code == 404

    def test_foreign_invoice_via_api(self, client, db_session, token_b, invoice_a):
        response = client.get(f"/api/pharmacy/chifa/invoices/{invoice_a.id}", headers=auth_headers(token_b))
        assert response.status_code == 404

        response = client.get("/api/pharmacy/chifa/invoices", headers=auth_headers(token_b))
        assert response.status_code == 200
        assert response.get_json()["total"] == 0

    def test_deactivated_pharmacy_token_rejected(self, client, db_session, pharmacy_b, token_b):
        pharmacy_b.is_active = False
        db_session.commit()

        response = client.get("/api/pharmacy/sessions", headers=auth_headers(token_b))
        assert response.status_code == 401

    def test_revoked_token_rejected(self, client, db_session, token_a):
        identity_service.revoke_token(token_a)

        response = client.get("/api/pharmacy/sessions", headers=auth_headers(token_a))
        assert response.status_code == 401

    def test_pharmacy_ids_in_body_are_ignored(self, client, db_session, token_b, drawer_a):
        response = client.post(
            "/api/pharmacy/sessions",
            json={"drawer_id": drawer_a.id, "pharmacy_id": drawer_a.pharmacy_id},
            headers=auth_headers(token_b),
        )
        assert response.status_code == 404
        assert db_session.query(CashDrawerSession).count() == 0
