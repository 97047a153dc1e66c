# Overview: Pytest coverage for the HTTP surface: auth, error mapping and the claim lifecycle.

"""
API Route Tests

Exercises the blueprints through the Flask test client:
- Bearer token required on every /api/pharmacy route
- Service errors mapped to 400 / 404 / 409 with context in the body
- Invariant failures answered with a generic 500
- Invoice -> bordereau -> rejection -> correction -> resubmission
"""

from conftest import auth_headers, invoice_payload


class TestAuthentication:

    def test_missing_token(self, client, db_session):
        response = client.get("/api/pharmacy/sessions")
        assert response.status_code == 401
        assert response.get_json()["error"] == "Authentication required"

    def test_unknown_token(self, client, db_session):
        response = client.get("/api/pharmacy/sessions", headers=auth_headers("not-a-token"))
        assert response.status_code == 401

    def test_health_is_public(self, client, db_session):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"

    def test_no_cors_origins_by_default(self, client, db_session):
        response = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert "Access-Control-Allow-Origin" not in response.headers

    def test_cors_for_configured_origin(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "CORS_ALLOWED_ORIGINS", ["https://comptoir.pharmacie.dz"])

        response = client.get("/health", headers={"Origin": "https://comptoir.pharmacie.dz"})
        assert response.headers["Access-Control-Allow-Origin"] == "https://comptoir.pharmacie.dz"

        response = client.get("/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in response.headers


class TestSessionRoutes:

    def test_open_and_duplicate(self, client, db_session, token_a, drawer_a):
        response = client.post(
            "/api/pharmacy/sessions",
            json={"drawer_id": drawer_a.id, "opening_balance_cents": 5000},
            headers=auth_headers(token_a),
        )
        assert response.status_code == 201
        session = response.get_json()["session"]
        assert session["status"] == "open"
        assert session["drawer"]["code"] == "CAISSE-1"

        response = client.post(
            "/api/pharmacy/sessions",
            json={"drawer_id": drawer_a.id},
            headers=auth_headers(token_a),
        )
        assert response.status_code == 409
        assert response.get_json()["session_number"] == session["session_number"]

    def test_open_requires_drawer(self, client, db_session, token_a):
        response = client.post("/api/pharmacy/sessions", json={}, headers=auth_headers(token_a))
        assert response.status_code == 400
        assert response.get_json()["field"] == "drawer_id"

    def test_current_session(self, client, db_session, token_a, drawer_a, session_a):
        response = client.get(
            f"/api/pharmacy/drawers/{drawer_a.id}/current-session", headers=auth_headers(token_a)
        )
        assert response.status_code == 200
        assert response.get_json()["session"]["id"] == session_a.id

    def test_sale_movement_close_and_report(self, client, db_session, token_a, session_a):
        headers = auth_headers(token_a)

        response = client.post("/api/pharmacy/sales", json={
            "session_id": session_a.id,
            "lines": [{"product_name": "Doliprane 1g", "quantity": 2, "unit_price_cents": 1400}],
            "payments": {"cash": 3000},
        }, headers=headers)
        assert response.status_code == 201
        assert response.get_json()["sale"]["change_given_cents"] == 200

        response = client.post(
            f"/api/pharmacy/sessions/{session_a.id}/movements",
            json={"movement_type": "cash_in", "amount_cents": 500, "reason": "Appoint"},
            headers=headers,
        )
        assert response.status_code == 201

        response = client.get(f"/api/pharmacy/sessions/{session_a.id}/report?type=x", headers=headers)
        assert response.status_code == 200
        assert response.get_json()["report"]["expected_cash_cents"] == 8300

        response = client.post(
            f"/api/pharmacy/sessions/{session_a.id}/close",
            json={"counted_cash_cents": 8250},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.get_json()["session"]["variance_cash_cents"] == -50

        response = client.post(
            f"/api/pharmacy/sessions/{session_a.id}/close",
            json={"counted_cash_cents": 8300},
            headers=headers,
        )
        assert response.status_code == 409

        response = client.get(f"/api/pharmacy/sessions/{session_a.id}/report?type=z", headers=headers)
        assert response.get_json()["report"]["closing"]["variance_cash_cents"] == -50

    def test_invalid_report_type(self, client, db_session, token_a, session_a):
        response = client.get(
            f"/api/pharmacy/sessions/{session_a.id}/report?type=w", headers=auth_headers(token_a)
        )
        assert response.status_code == 400


class TestSaleRoutes:

    def test_insured_sale_returns_invoice(self, client, db_session, token_a, session_a):
        payload = invoice_payload()
        response = client.post("/api/pharmacy/sales", json={
            "session_id": session_a.id,
            "lines": payload["items"],
            "payments": {"cash": 7200},
            "insurance": {"insured_number": payload["insured_number"], "insured_name": payload["insured_name"]},
        }, headers=auth_headers(token_a))

        assert response.status_code == 201
        sale = response.get_json()["sale"]
        assert sale["chifa_total_cents"] == 12800
        assert sale["patient_total_cents"] == 7200
        assert sale["chifa_invoices"][0]["status"] == "pending"

    def test_void_without_reason(self, client, db_session, token_a, session_a):
        headers = auth_headers(token_a)
        response = client.post("/api/pharmacy/sales", json={
            "session_id": session_a.id,
            "lines": [{"product_name": "Sirop", "quantity": 1, "unit_price_cents": 900}],
            "payments": {"cash": 900},
        }, headers=headers)
        sale_id = response.get_json()["sale"]["id"]

        response = client.post(f"/api/pharmacy/sales/{sale_id}/void", json={}, headers=headers)
        assert response.status_code == 400

        response = client.post(f"/api/pharmacy/sales/{sale_id}/void", json={"reason": "Erreur"}, headers=headers)
        assert response.status_code == 200
        assert response.get_json()["sale"]["status"] == "voided"


class TestChifaRoutes:

    def test_split_preview(self, client, db_session, token_a):
        response = client.post("/api/pharmacy/chifa/split", json={
            "product_name": "Amoxicilline 1g",
            "quantity": 2,
            "unit_price_cents": 10000,
            "tarif_reference_cents": 8000,
            "reimbursement_rate": 80,
        }, headers=auth_headers(token_a))

        assert response.status_code == 200
        assert response.get_json()["split"] == {
            "chifa_amount_cents": 12800,
            "patient_amount_cents": 7200,
            "majoration_amount_cents": 4000,
            "line_total_cents": 20000,
            "reimbursable_base_total_cents": 16000,
            "effective_rate": 80,
        }

    def test_create_invoice(self, client, db_session, token_a):
        response = client.post("/api/pharmacy/chifa/invoices", json=invoice_payload(), headers=auth_headers(token_a))

        assert response.status_code == 201
        invoice = response.get_json()["invoice"]
        assert invoice["total_chifa_cents"] == 12800
        assert invoice["items"][0]["product_id"] == "P-AMOX"

    def test_invalid_invoice(self, client, db_session, token_a):
        payload = invoice_payload(items=[{"product_name": "X", "quantity": 1, "unit_price_cents": 100,
                                          "reimbursement_rate": 120}])
        response = client.post("/api/pharmacy/chifa/invoices", json=payload, headers=auth_headers(token_a))

        assert response.status_code == 400
        assert response.get_json()["field"] == "items[0].reimbursement_rate"

    def test_invariant_failure_is_generic_500(self, app, client, db_session, token_a, monkeypatch):
        monkeypatch.setitem(app.config, "CHIFA_RATE_POLICY", lambda rate, local: 150)

        response = client.post("/api/pharmacy/chifa/invoices", json=invoice_payload(), headers=auth_headers(token_a))

        assert response.status_code == 500
        assert response.get_json() == {"error": "Internal server error"}

    def test_rejection_codes(self, client, db_session, token_a):
        response = client.get("/api/pharmacy/chifa/rejection-codes", headers=auth_headers(token_a))
        codes = {c["code"] for c in response.get_json()["codes"]}
        assert {"R01", "R99"} <= codes

    def test_claim_lifecycle(self, client, db_session, token_a):
        headers = auth_headers(token_a)

        invoice = client.post("/api/pharmacy/chifa/invoices", json=invoice_payload(), headers=headers).get_json()["invoice"]

        response = client.get("/api/pharmacy/chifa/invoices?bordereau_id=null", headers=headers)
        assert response.get_json()["total"] == 1

        response = client.post("/api/pharmacy/chifa/bordereaux", json={
            "insurance_type": "CNAS",
            "invoice_ids": [invoice["id"]],
        }, headers=headers)
        assert response.status_code == 201
        bordereau = response.get_json()["bordereau"]
        assert bordereau["invoices"][0]["status"] == "submitted"

        response = client.post(
            f"/api/pharmacy/chifa/invoices/{invoice['id']}/reject",
            json={"rejection_code": "R01"},
            headers=headers,
        )
        assert response.status_code == 201
        rejection = response.get_json()["rejection"]
        assert rejection["status"] == "pending"
        assert rejection["rejected_amount_cents"] == 12800
        assert rejection["original_bordereau_number"] == bordereau["bordereau_number"]

        response = client.post(
            f"/api/pharmacy/chifa/rejections/{rejection['id']}/correct",
            json={"corrections": {"insured_number": "1234567899"}},
            headers=headers,
        )
        assert response.status_code == 200
        corrected = response.get_json()["rejection"]
        assert corrected["status"] == "corrected"
        assert corrected["corrected_invoice"]["insured_number"] == "1234567899"

        response = client.post(f"/api/pharmacy/chifa/rejections/{rejection['id']}/resubmit", json={}, headers=headers)
        assert response.status_code == 200
        resubmitted = response.get_json()["rejection"]
        assert resubmitted["status"] == "resubmitted"
        assert resubmitted["resubmission_bordereau_number"].startswith("BRD-CNAS-")
        assert resubmitted["resubmission_bordereau_number"] != bordereau["bordereau_number"]

        response = client.post(
            f"/api/pharmacy/chifa/rejections/{rejection['id']}/write-off", json={}, headers=headers
        )
        assert response.status_code == 409

        response = client.get("/api/pharmacy/chifa/rejections?status=resubmitted", headers=headers)
        assert response.get_json()["total"] == 1

    def test_bordereau_payment(self, client, db_session, token_a):
        headers = auth_headers(token_a)
        invoice = client.post("/api/pharmacy/chifa/invoices", json=invoice_payload(), headers=headers).get_json()["invoice"]
        bordereau = client.post("/api/pharmacy/chifa/bordereaux", json={
            "insurance_type": "CNAS", "invoice_ids": [invoice["id"]],
        }, headers=headers).get_json()["bordereau"]

        response = client.post(
            f"/api/pharmacy/chifa/bordereaux/{bordereau['id']}/payment",
            json={"amount_paid_cents": 12800, "payment_reference": "VIR-77"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.get_json()["bordereau"]["status"] == "paid"

        stats = client.get("/api/pharmacy/chifa/stats", headers=headers).get_json()["stats"]
        assert stats["pending_invoices"] == 0


class TestLedgerRoute:

    def test_session_events(self, client, db_session, token_a, session_a):
        response = client.get(
            f"/api/pharmacy/ledger?category=cash&entity_type=cash_drawer_session&entity_id={session_a.id}",
            headers=auth_headers(token_a),
        )

        assert response.status_code == 200
        items = response.get_json()["items"]
        assert [ev["event_type"] for ev in items] == ["cash.session_opened"]
        assert items[0]["amount_cents"] == 5000

    def test_scoped_to_caller(self, client, db_session, token_b, session_a):
        response = client.get("/api/pharmacy/ledger", headers=auth_headers(token_b))
        assert response.get_json()["items"] == []
