# Overview: Read-only X (mid-shift) and Z (end-of-shift) reports over one drawer session.

from __future__ import annotations

from sqlalchemy import case, func

from flask import current_app

from chifa_pos.extensions import db
from chifa_pos.models import CashMovement, Sale, SaleLine
from chifa_pos.models.drawers import MOVEMENT_NO_SALE
from chifa_pos.models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_RETURNED, SALE_STATUS_VOIDED
from chifa_pos.time_utils import to_utc_z, utcnow
from chifa_pos.validation import ValidationError, parse_choice
from .cash_session_service import compute_system_totals, get_session


REPORT_X = "x"
REPORT_Z = "z"
REPORT_TYPES = (REPORT_X, REPORT_Z)


def _status_counts(session_id: int) -> dict[str, tuple[int, int]]:
    rows = db.session.query(
        Sale.status,
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
    ).filter(Sale.session_id == session_id).group_by(Sale.status).all()
    return {status: (int(count), int(amount)) for status, count, amount in rows}


def _top_products(session_id: int, limit: int) -> list[dict]:
    rows = db.session.query(
        SaleLine.product_id,
        SaleLine.product_name,
        func.sum(SaleLine.quantity).label("quantity"),
        func.sum(SaleLine.line_total_cents).label("revenue_cents"),
    ).join(Sale, Sale.id == SaleLine.sale_id).filter(
        Sale.session_id == session_id,
        Sale.status == SALE_STATUS_COMPLETED,
    ).group_by(
        SaleLine.product_id, SaleLine.product_name
    ).order_by(
        func.sum(SaleLine.quantity).desc(), SaleLine.product_name.asc()
    ).limit(limit).all()

    return [
        {
            "product_id": row.product_id,
            "product_name": row.product_name,
            "quantity": int(row.quantity or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]


def session_report(
    pharmacy_id: int,
    session_id: int,
    report_type: str = REPORT_X,
    *,
    top_n: int | None = None,
) -> dict:
    """
    Aggregate a session's sales and movements.

    X and Z run the same computation; Z additionally surfaces the closing
    fields frozen on the session. Nothing is written.

    Sales figures:
    - gross_sales: completed + returned sale totals (voids never happened)
    - returns_total: returned sale totals
    - net_sales: gross_sales - returns_total
    - chifa_pending: insurer share of completed sales, claimed via invoices
    """
    report_type = parse_choice(report_type, "report_type", REPORT_TYPES, default=REPORT_X)
    if top_n is None:
        top_n = current_app.config.get("REPORT_TOP_PRODUCTS", 10)
    if top_n < 1:
        raise ValidationError("top_n must be positive", field="top_n")

    session = get_session(pharmacy_id, session_id)
    totals = compute_system_totals(session)
    counts = _status_counts(session.id)

    completed_count, completed_amount = counts.get(SALE_STATUS_COMPLETED, (0, 0))
    voided_count, voided_amount = counts.get(SALE_STATUS_VOIDED, (0, 0))
    returned_count, returned_amount = counts.get(SALE_STATUS_RETURNED, (0, 0))

    items_sold, subtotal = db.session.query(
        func.coalesce(func.sum(SaleLine.quantity), 0),
        func.coalesce(func.sum(SaleLine.line_total_cents), 0),
    ).join(Sale, Sale.id == SaleLine.sale_id).filter(
        Sale.session_id == session.id,
        Sale.status == SALE_STATUS_COMPLETED,
    ).one()

    discounts = db.session.query(
        func.coalesce(func.sum(Sale.discount_amount_cents), 0),
    ).filter(
        Sale.session_id == session.id,
        Sale.status == SALE_STATUS_COMPLETED,
    ).scalar()

    no_sale_count = db.session.query(
        func.coalesce(func.sum(case((CashMovement.movement_type == MOVEMENT_NO_SALE, 1), else_=0)), 0)
    ).filter(CashMovement.session_id == session.id).scalar()

    gross_sales = completed_amount + returned_amount
    report = {
        "report_type": report_type,
        "generated_at": to_utc_z(utcnow()),
        "session": {
            "id": session.id,
            "session_number": session.session_number,
            "status": session.status,
            "drawer": {"id": session.drawer.id, "code": session.drawer.code, "name": session.drawer.name},
            "opened_at": to_utc_z(session.opened_at),
            "opened_by": session.opened_by,
            "opened_by_name": session.opened_by_name,
            "opening_balance_cents": session.opening_balance_cents,
        },
        "counts": {
            "transactions": completed_count,
            "voids": voided_count,
            "returns": returned_count,
            "items_sold": int(items_sold),
            "no_sale_opens": int(no_sale_count or 0),
        },
        "tenders": {
            "cash_cents": totals.cash_sales,
            "card_cents": totals.cards,
            "cheque_cents": totals.cheques,
            "mobile_cents": totals.mobile,
            "credit_cents": totals.credit,
            "change_given_cents": totals.change_given,
        },
        "sales": {
            "subtotal_cents": int(subtotal),
            "discounts_cents": int(discounts or 0),
            "gross_sales_cents": gross_sales,
            "returns_total_cents": returned_amount,
            "voids_total_cents": voided_amount,
            "net_sales_cents": gross_sales - returned_amount,
            "chifa_pending_cents": totals.chifa,
        },
        "movements": {
            "cash_in_cents": totals.cash_in,
            "cash_out_cents": totals.cash_out,
        },
        "expected_cash_cents": totals.expected_cash,
        "top_products": _top_products(session.id, top_n),
        "is_final": not session.is_open,
    }

    if report_type == REPORT_Z:
        report["closing"] = {
            "closed_at": to_utc_z(session.closed_at),
            "closed_by": session.closed_by,
            "closed_by_name": session.closed_by_name,
            "counted_cash_cents": session.counted_cash_cents,
            "counted_cards_cents": session.counted_cards_cents,
            "counted_cheques_cents": session.counted_cheques_cents,
            "system_cash_cents": session.system_cash_cents,
            "system_cards_cents": session.system_cards_cents,
            "system_cheques_cents": session.system_cheques_cents,
            "system_chifa_cents": session.system_chifa_cents,
            "variance_cash_cents": session.variance_cash_cents,
            "variance_notes": session.variance_notes,
        }

    return report
