# Overview: Flask API routes for Chifa invoices, bordereaux and rejections.

# backend/chifa_pos/routes/chifa.py
"""
Chifa API Routes

DESIGN:
- Split / invoice previews (no persistence)
- Invoices: create, list with filters, detail, mark paid, reject
- Bordereaux: batch pending invoices, record insurer payment
- Rejections: correct, resubmit, write off, list with both bordereaux resolved
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import json_body, page_args, require_auth, settlement_errors
from ..services import bordereau_service, chifa_invoice_service, rejection_service
from ..services.chifa_invoice_service import InvoiceRequest
from ..services.chifa_split import InvoiceLineInput
from ..validation import parse_bool, parse_cents, parse_date, parse_int, parse_text


chifa_bp = Blueprint("chifa", __name__, url_prefix="/api/pharmacy/chifa")


# =============================================================================
# PREVIEWS
# =============================================================================

@chifa_bp.post("/split")
@require_auth
@settlement_errors("compute split")
def split_preview_route():
    """
    Split one line.

    Request body:
    {
        "product_name": "...", "quantity": 2, "unit_price_cents": 10000,
        "tarif_reference_cents": 8000, "reimbursement_rate": 80,
        "is_chronic": false, "is_local_product": false
    }
    """
    data = json_body()
    line = InvoiceLineInput.from_payload(data)
    result = chifa_invoice_service.preview_split(line, parse_bool(data.get("is_chronic"), "is_chronic"))
    return jsonify({"split": result.to_dict()}), 200


@chifa_bp.post("/invoices/preview")
@require_auth
@settlement_errors("preview invoice")
def preview_invoice_route():
    request_obj = InvoiceRequest.from_payload(json_body())
    return jsonify({"preview": chifa_invoice_service.preview_invoice(request_obj)}), 200


# =============================================================================
# INVOICES
# =============================================================================

@chifa_bp.post("/invoices")
@require_auth
@settlement_errors("create invoice")
def create_invoice_route():
    """
    Request body:
    {
        "insured_number": "...", "insured_name": "...",
        "insurance_type": "CNAS", "is_chronic": false,
        "prescriber_name": "...", "prescription_date": "2026-10-19",
        "items": [{"product_name": "...", "quantity": 1, "unit_price_cents": 10000,
                   "tarif_reference_cents": 8000, "reimbursement_rate": 80}]
    }
    """
    data = json_body()
    invoice = chifa_invoice_service.build_invoice(
        g.actor.pharmacy_id,
        g.actor,
        InvoiceRequest.from_payload(data),
        sale_id=None,
    )
    return jsonify({"invoice": invoice.to_dict()}), 201


@chifa_bp.get("/invoices")
@require_auth
@settlement_errors("list invoices")
def list_invoices_route():
    """
    Query params: status, insurance_type, bordereau_id (id or "null"),
    date_from, date_to, search, page, limit
    """
    page, limit = page_args()
    invoices, total = chifa_invoice_service.list_invoices(
        g.actor.pharmacy_id,
        status=request.args.get("status"),
        insurance_type=request.args.get("insurance_type"),
        bordereau_id=request.args.get("bordereau_id"),
        date_from=parse_date(request.args.get("date_from"), "date_from"),
        date_to=parse_date(request.args.get("date_to"), "date_to"),
        search=request.args.get("search"),
        page=page,
        limit=limit,
    )
    return jsonify({
        "invoices": [inv.to_dict(include_lines=False) for inv in invoices],
        "total": total,
        "page": page,
        "limit": limit,
    }), 200


@chifa_bp.get("/invoices/<int:invoice_id>")
@require_auth
@settlement_errors("get invoice")
def get_invoice_route(invoice_id: int):
    invoice = chifa_invoice_service.get_invoice(g.actor.pharmacy_id, invoice_id)
    return jsonify({"invoice": invoice.to_dict()}), 200


@chifa_bp.post("/invoices/<int:invoice_id>/paid")
@require_auth
@settlement_errors("mark invoice paid")
def mark_invoice_paid_route(invoice_id: int):
    data = json_body()
    invoice = bordereau_service.mark_invoice_paid(
        g.actor.pharmacy_id,
        g.actor,
        invoice_id,
        paid_date=parse_date(data.get("paid_date"), "paid_date"),
    )
    return jsonify({"invoice": invoice.to_dict(include_lines=False)}), 200


@chifa_bp.post("/invoices/<int:invoice_id>/reject")
@require_auth
@settlement_errors("reject invoice")
def reject_invoice_route(invoice_id: int):
    """
    Request body:
    {
        "rejection_code": "R02",
        "rejection_motif": "...",          (defaults to the code's label)
        "rejected_amount_cents": 12800,    (defaults to the invoice's insurer share)
        "rejection_date": "2026-10-19"
    }
    """
    data = json_body()
    rejection = rejection_service.reject_invoice(
        g.actor.pharmacy_id,
        g.actor,
        invoice_id,
        rejection_code=parse_text(data.get("rejection_code"), max_length=16, field="rejection_code"),
        rejection_motif=parse_text(data.get("rejection_motif"), max_length=255, field="rejection_motif"),
        rejected_amount_cents=parse_cents(
            data.get("rejected_amount_cents"), "rejected_amount_cents", required=False, default=None
        ),
        rejection_date=parse_date(data.get("rejection_date"), "rejection_date"),
    )
    return jsonify({"rejection": rejection_service.rejection_to_dict(rejection)}), 201


@chifa_bp.get("/stats")
@require_auth
@settlement_errors("compute chifa stats")
def chifa_stats_route():
    return jsonify({"stats": chifa_invoice_service.chifa_dashboard_stats(g.actor.pharmacy_id)}), 200


# =============================================================================
# BORDEREAUX
# =============================================================================

@chifa_bp.post("/bordereaux")
@require_auth
@settlement_errors("create bordereau")
def create_bordereau_route():
    """
    Request body:
    {
        "insurance_type": "CNAS",
        "invoice_ids": [1, 2, 3],
        "period_start": "2026-10-01",  (optional)
        "period_end": "2026-10-31",    (optional)
        "notes": "..."
    }
    """
    data = json_body()
    bordereau = bordereau_service.create_bordereau(
        g.actor.pharmacy_id,
        g.actor,
        insurance_type=data.get("insurance_type"),
        invoice_ids=data.get("invoice_ids"),
        period_start=parse_date(data.get("period_start"), "period_start"),
        period_end=parse_date(data.get("period_end"), "period_end"),
        notes=parse_text(data.get("notes"), field="notes"),
    )
    return jsonify({"bordereau": bordereau.to_dict(include_invoices=True)}), 201


@chifa_bp.get("/bordereaux")
@require_auth
@settlement_errors("list bordereaux")
def list_bordereaux_route():
    page, limit = page_args()
    items, total = bordereau_service.list_bordereaux(
        g.actor.pharmacy_id,
        status=request.args.get("status"),
        insurance_type=request.args.get("insurance_type"),
        page=page,
        limit=limit,
    )
    return jsonify({
        "bordereaux": [b.to_dict() for b in items],
        "total": total,
        "page": page,
        "limit": limit,
    }), 200


@chifa_bp.get("/bordereaux/<int:bordereau_id>")
@require_auth
@settlement_errors("get bordereau")
def get_bordereau_route(bordereau_id: int):
    bordereau = bordereau_service.get_bordereau(g.actor.pharmacy_id, bordereau_id)
    return jsonify({"bordereau": bordereau.to_dict(include_invoices=True)}), 200


@chifa_bp.post("/bordereaux/<int:bordereau_id>/payment")
@require_auth
@settlement_errors("record bordereau payment")
def record_bordereau_payment_route(bordereau_id: int):
    """
    Request body:
    {
        "amount_paid_cents": 1250000,
        "payment_date": "2026-11-15",
        "payment_reference": "VIR-..."
    }
    """
    data = json_body()
    bordereau = bordereau_service.record_bordereau_payment(
        g.actor.pharmacy_id,
        g.actor,
        bordereau_id,
        amount_paid_cents=parse_cents(data.get("amount_paid_cents"), "amount_paid_cents", default=None),
        payment_date=parse_date(data.get("payment_date"), "payment_date"),
        payment_reference=parse_text(data.get("payment_reference"), max_length=64, field="payment_reference"),
    )
    return jsonify({"bordereau": bordereau.to_dict(include_invoices=True)}), 200


# =============================================================================
# REJECTIONS
# =============================================================================

@chifa_bp.get("/rejection-codes")
@require_auth
def rejection_codes_route():
    codes = [{"code": code, "label": label} for code, label in rejection_service.REJECTION_CODES.items()]
    return jsonify({"codes": codes}), 200


@chifa_bp.get("/rejections")
@require_auth
@settlement_errors("list rejections")
def list_rejections_route():
    page, limit = page_args()
    items, total = rejection_service.list_rejections(
        g.actor.pharmacy_id,
        status=request.args.get("status"),
        page=page,
        limit=limit,
    )
    return jsonify({"rejections": items, "total": total, "page": page, "limit": limit}), 200


@chifa_bp.get("/rejections/<int:rejection_id>")
@require_auth
@settlement_errors("get rejection")
def get_rejection_route(rejection_id: int):
    rejection = rejection_service.get_rejection(g.actor.pharmacy_id, rejection_id)
    return jsonify({"rejection": rejection_service.rejection_to_dict(rejection)}), 200


@chifa_bp.post("/rejections/<int:rejection_id>/correct")
@require_auth
@settlement_errors("correct rejection")
def correct_rejection_route(rejection_id: int):
    """
    Request body:
    {
        "corrections": {"insured_number": "...", "items": [...]},  (optional)
        "resolution_notes": "..."
    }
    """
    data = json_body()
    rejection = rejection_service.create_corrected_invoice(
        g.actor.pharmacy_id,
        g.actor,
        rejection_id,
        corrections=data.get("corrections"),
        resolution_notes=parse_text(data.get("resolution_notes"), field="resolution_notes"),
    )
    return jsonify({"rejection": rejection_service.rejection_to_dict(rejection)}), 200


@chifa_bp.post("/rejections/<int:rejection_id>/resubmit")
@require_auth
@settlement_errors("resubmit rejection")
def resubmit_rejection_route(rejection_id: int):
    """Request body: {"bordereau_id": 4 (optional), "corrections": {...}, "resolution_notes": "..."}"""
    data = json_body()
    rejection = rejection_service.resubmit_rejection(
        g.actor.pharmacy_id,
        g.actor,
        rejection_id,
        bordereau_id=parse_int(data.get("bordereau_id"), "bordereau_id", required=False),
        corrections=data.get("corrections"),
        resolution_notes=parse_text(data.get("resolution_notes"), field="resolution_notes"),
    )
    return jsonify({"rejection": rejection_service.rejection_to_dict(rejection)}), 200


@chifa_bp.post("/rejections/<int:rejection_id>/write-off")
@require_auth
@settlement_errors("write off rejection")
def write_off_rejection_route(rejection_id: int):
    data = json_body()
    rejection = rejection_service.write_off_rejection(
        g.actor.pharmacy_id,
        g.actor,
        rejection_id,
        resolution_notes=parse_text(data.get("resolution_notes"), field="resolution_notes"),
    )
    return jsonify({"rejection": rejection_service.rejection_to_dict(rejection)}), 200


@chifa_bp.patch("/rejections/<int:rejection_id>")
@require_auth
@settlement_errors("resolve rejection")
def resolve_rejection_route(rejection_id: int):
    """
    Request body:
    {
        "status": "corrected" | "resubmitted" | "written_off",
        "corrected_invoice_id": 12,   (corrected)
        "bordereau_id": 4,            (resubmitted, optional)
        "resolution_notes": "..."
    }
    """
    data = json_body()
    rejection = rejection_service.resolve_rejection(
        g.actor.pharmacy_id,
        g.actor,
        rejection_id,
        status=data.get("status"),
        corrected_invoice_id=parse_int(data.get("corrected_invoice_id"), "corrected_invoice_id", required=False),
        bordereau_id=parse_int(data.get("bordereau_id"), "bordereau_id", required=False),
        resolution_notes=parse_text(data.get("resolution_notes"), field="resolution_notes"),
    )
    return jsonify({"rejection": rejection_service.rejection_to_dict(rejection)}), 200
