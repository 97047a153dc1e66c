# Overview: Flask API routes for the tender ledger: record, list, void and return sales.

# backend/chifa_pos/routes/sales.py
"""
Sales API Routes

A sale is recorded against an open drawer session. Insured sales carry an
"insurance" block and get their Chifa invoice in the same transaction.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import json_body, page_args, require_auth, settlement_errors
from ..services import sales_service
from ..validation import parse_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/pharmacy/sales")


@sales_bp.post("")
@require_auth
@settlement_errors("record sale")
def record_sale_route():
    """
    Request body:
    {
        "session_id": 1,
        "lines": [
            {"product_id": "P-1", "product_name": "Doliprane 1g", "quantity": 2,
             "unit_price_cents": 10000, "reimbursement_rate": 80, "tarif_reference_cents": 8000}
        ],
        "payments": {"cash": 10000, "card": 0},
        "discount_amount_cents": 0,
        "customer_name": "...",
        "insurance": {                      (optional)
            "insured_number": "...", "insured_name": "...",
            "insurance_type": "CNAS", "is_chronic": false,
            "items": [...]                  (optional, defaults to lines with a reimbursement_rate)
        }
    }
    """
    data = json_body()
    sale = sales_service.record_sale(
        g.actor.pharmacy_id,
        g.actor,
        parse_int(data.get("session_id"), "session_id"),
        lines=data.get("lines"),
        payments=data.get("payments"),
        discount_amount_cents=data.get("discount_amount_cents", 0),
        customer_name=data.get("customer_name"),
        insurance=data.get("insurance"),
    )
    body = sale.to_dict()
    body["chifa_invoices"] = [inv.to_summary_dict() for inv in sale.chifa_invoices]
    return jsonify({"sale": body}), 201


@sales_bp.get("")
@require_auth
@settlement_errors("list sales")
def list_sales_route():
    page, limit = page_args()
    sales, total = sales_service.list_sales(
        g.actor.pharmacy_id,
        session_id=parse_int(request.args.get("session_id"), "session_id", required=False),
        status=request.args.get("status"),
        page=page,
        limit=limit,
    )
    return jsonify({
        "sales": [s.to_dict(include_lines=False) for s in sales],
        "total": total,
        "page": page,
        "limit": limit,
    }), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
@settlement_errors("get sale")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(g.actor.pharmacy_id, sale_id)
    body = sale.to_dict()
    body["chifa_invoices"] = [inv.to_summary_dict() for inv in sale.chifa_invoices]
    return jsonify({"sale": body}), 200


@sales_bp.post("/<int:sale_id>/void")
@require_auth
@settlement_errors("void sale")
def void_sale_route(sale_id: int):
    """Request body: {"reason": "..."}"""
    sale = sales_service.void_sale(g.actor.pharmacy_id, g.actor, sale_id, reason=json_body().get("reason"))
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/return")
@require_auth
@settlement_errors("return sale")
def return_sale_route(sale_id: int):
    """Request body: {"reason": "..."}"""
    sale = sales_service.return_sale(g.actor.pharmacy_id, g.actor, sale_id, reason=json_body().get("reason"))
    return jsonify({"sale": sale.to_dict()}), 200
