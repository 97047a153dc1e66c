# Overview: Pytest coverage for X/Z session reports.

"""
Session Report Tests

X (mid-shift) and Z (end-of-shift) reports share one read-only
computation; Z adds the closing figures frozen on the session.
"""

import pytest

from chifa_pos.models import LedgerEvent
from chifa_pos.services import cash_session_service, sales_service, session_report_service
from chifa_pos.validation import NotFoundError, ValidationError


def _sale(actor, session, name, quantity, unit_price, payments, product_id=None):
    return sales_service.record_sale(
        actor.pharmacy_id, actor, session.id,
        lines=[{
            "product_id": product_id,
            "product_name": name,
            "quantity": quantity,
            "unit_price_cents": unit_price,
        }],
        payments=payments,
    )


@pytest.fixture
def busy_session(db_session, actor_a, session_a):
    """Two completed sales, one return, one void, a no-sale open."""
    _sale(actor_a, session_a, "Doliprane 1g", 2, 1400, {"cash": 3000}, product_id="P-DOLI")
    _sale(actor_a, session_a, "Vitamine C", 1, 1500, {"card": 1500}, product_id="P-VITC")
    returned = _sale(actor_a, session_a, "Sirop toux", 1, 1000, {"cash": 1000})
    voided = _sale(actor_a, session_a, "Gel hydroalcoolique", 1, 700, {"cash": 700})
    sales_service.return_sale(actor_a.pharmacy_id, actor_a, returned.id, reason="Erreur de dosage")
    sales_service.void_sale(actor_a.pharmacy_id, actor_a, voided.id, reason="Doublon")
    cash_session_service.record_movement(
        actor_a.pharmacy_id, actor_a, session_a.id, movement_type="no_sale", reason="Monnaie",
    )
    return session_a


class TestXReport:

    def test_open_session_report(self, actor_a, busy_session):
        report = session_report_service.session_report(actor_a.pharmacy_id, busy_session.id, "x")

        assert report["report_type"] == "x"
        assert report["is_final"] is False
        assert "closing" not in report
        assert report["session"]["session_number"] == busy_session.session_number
        assert report["session"]["opening_balance_cents"] == 5000

    def test_counts(self, actor_a, busy_session):
        counts = session_report_service.session_report(actor_a.pharmacy_id, busy_session.id)["counts"]

        assert counts == {
            "transactions": 2,
            "voids": 1,
            "returns": 1,
            "items_sold": 3,
            "no_sale_opens": 1,
        }

    def test_gross_and_net_sales(self, actor_a, busy_session):
        sales = session_report_service.session_report(actor_a.pharmacy_id, busy_session.id)["sales"]

        assert sales["gross_sales_cents"] == 2800 + 1500 + 1000
        assert sales["returns_total_cents"] == 1000
        assert sales["net_sales_cents"] == 4300
        assert sales["voids_total_cents"] == 700
        assert sales["chifa_pending_cents"] == 0

    def test_tenders_and_expected_cash(self, actor_a, busy_session):
        report = session_report_service.session_report(actor_a.pharmacy_id, busy_session.id)

        assert report["tenders"]["cash_cents"] == 3000
        assert report["tenders"]["card_cents"] == 1500
        assert report["tenders"]["change_given_cents"] == 200
        assert report["expected_cash_cents"] == 7800

    def test_top_products(self, actor_a, busy_session):
        report = session_report_service.session_report(actor_a.pharmacy_id, busy_session.id, top_n=1)

        assert report["top_products"] == [
            {"product_id": "P-DOLI", "product_name": "Doliprane 1g", "quantity": 2, "revenue_cents": 2800},
        ]

    def test_report_writes_nothing(self, db_session, actor_a, busy_session):
        before = db_session.query(LedgerEvent).count()
        session_report_service.session_report(actor_a.pharmacy_id, busy_session.id)
        assert db_session.query(LedgerEvent).count() == before

    def test_empty_session(self, actor_a, session_a):
        report = session_report_service.session_report(actor_a.pharmacy_id, session_a.id)

        assert report["counts"]["transactions"] == 0
        assert report["sales"]["gross_sales_cents"] == 0
        assert report["expected_cash_cents"] == 5000
        assert report["top_products"] == []


class TestZReport:

    def test_closing_figures(self, actor_a, busy_session):
        cash_session_service.close_session(
            actor_a.pharmacy_id, actor_a, busy_session.id, counted_cash_cents=7750, notes="Manque 50",
        )

        report = session_report_service.session_report(actor_a.pharmacy_id, busy_session.id, "z")

        assert report["is_final"] is True
        closing = report["closing"]
        assert closing["system_cash_cents"] == 7800
        assert closing["counted_cash_cents"] == 7750
        assert closing["variance_cash_cents"] == -50
        assert closing["system_cards_cents"] == 1500
        assert closing["closed_by"] == actor_a.actor_id
        assert closing["closed_at"].endswith("Z")

    def test_expected_cash_matches_close(self, actor_a, busy_session):
        x_report = session_report_service.session_report(actor_a.pharmacy_id, busy_session.id, "x")
        closed = cash_session_service.close_session(
            actor_a.pharmacy_id, actor_a, busy_session.id, counted_cash_cents=7800,
        )
        assert x_report["expected_cash_cents"] == closed.system_cash_cents


class TestReportArguments:

    @pytest.mark.parametrize("report_type", ["y", "X", "daily"])
    def test_unknown_report_type(self, actor_a, session_a, report_type):
        with pytest.raises(ValidationError):
            session_report_service.session_report(actor_a.pharmacy_id, session_a.id, report_type)

    def test_top_n_must_be_positive(self, actor_a, session_a):
        with pytest.raises(ValidationError):
            session_report_service.session_report(actor_a.pharmacy_id, session_a.id, top_n=0)

    def test_unknown_session(self, db_session, actor_a):
        with pytest.raises(NotFoundError):
            session_report_service.session_report(actor_a.pharmacy_id, 99999)
