# Overview: Flask API routes for cash drawers, drawer sessions, movements and X/Z reports.

# backend/chifa_pos/routes/sessions.py
"""
Cash Drawer Session API Routes

DESIGN:
- Drawer setup (create / list)
- Session lifecycle: open -> close (immutable once closed)
- Cash movements (cash_in / cash_out / no_sale) on open sessions
- X/Z reports (read-only)

All routes are scoped to g.actor.pharmacy_id.
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import json_body, page_args, require_auth, settlement_errors
from ..services import cash_session_service, session_report_service
from ..validation import parse_bool, parse_cents, parse_int, parse_text


sessions_bp = Blueprint("sessions", __name__, url_prefix="/api/pharmacy")


# =============================================================================
# DRAWERS
# =============================================================================

@sessions_bp.post("/drawers")
@require_auth
@settlement_errors("create drawer")
def create_drawer_route():
    """
    Request body:
    {
        "code": "CAISSE-1",
        "name": "Comptoir principal"
    }
    """
    data = json_body()
    drawer = cash_session_service.create_drawer(g.actor.pharmacy_id, data.get("code"), data.get("name"))
    return jsonify({"drawer": drawer.to_dict()}), 201


@sessions_bp.get("/drawers")
@require_auth
@settlement_errors("list drawers")
def list_drawers_route():
    include_inactive = parse_bool(request.args.get("include_inactive"), "include_inactive")
    drawers = cash_session_service.list_drawers(g.actor.pharmacy_id, include_inactive=include_inactive)
    return jsonify({"drawers": [d.to_dict() for d in drawers]}), 200


@sessions_bp.get("/drawers/<int:drawer_id>/current-session")
@require_auth
@settlement_errors("get current session")
def current_session_route(drawer_id: int):
    """The drawer's open session, or null."""
    cash_session_service.get_drawer(g.actor.pharmacy_id, drawer_id)
    session = cash_session_service.get_open_session(g.actor.pharmacy_id, drawer_id)
    return jsonify({"session": session.to_dict() if session else None}), 200


# =============================================================================
# SESSIONS
# =============================================================================

@sessions_bp.post("/sessions")
@require_auth
@settlement_errors("open session")
def open_session_route():
    """
    Request body:
    {
        "drawer_id": 1,
        "opening_balance_cents": 500000,
        "notes": "Fond de caisse"  (optional)
    }

    409 when the drawer already has an open session; the body names it.
    """
    data = json_body()
    session = cash_session_service.open_session(
        g.actor.pharmacy_id,
        g.actor,
        parse_int(data.get("drawer_id"), "drawer_id"),
        opening_balance_cents=parse_cents(data.get("opening_balance_cents"), "opening_balance_cents", required=False),
        notes=parse_text(data.get("notes"), field="notes"),
    )
    return jsonify({"session": session.to_dict()}), 201


@sessions_bp.get("/sessions")
@require_auth
@settlement_errors("list sessions")
def list_sessions_route():
    page, limit = page_args()
    sessions, total = cash_session_service.list_sessions(
        g.actor.pharmacy_id,
        drawer_id=parse_int(request.args.get("drawer_id"), "drawer_id", required=False),
        status=request.args.get("status"),
        page=page,
        limit=limit,
    )
    return jsonify({
        "sessions": [s.to_dict() for s in sessions],
        "total": total,
        "page": page,
        "limit": limit,
    }), 200


@sessions_bp.get("/sessions/<int:session_id>")
@require_auth
@settlement_errors("get session")
def get_session_route(session_id: int):
    session = cash_session_service.get_session(g.actor.pharmacy_id, session_id)
    data = session.to_dict()
    data["movements"] = [m.to_dict() for m in session.movements]
    return jsonify({"session": data}), 200


@sessions_bp.post("/sessions/<int:session_id>/close")
@require_auth
@settlement_errors("close session")
def close_session_route(session_id: int):
    """
    Request body:
    {
        "counted_cash_cents": 815000,
        "counted_cards_cents": 120000,   (optional)
        "counted_cheques_cents": 0,      (optional)
        "notes": "..."                   (optional)
    }
    """
    data = json_body()
    session = cash_session_service.close_session(
        g.actor.pharmacy_id,
        g.actor,
        session_id,
        counted_cash_cents=parse_cents(data.get("counted_cash_cents"), "counted_cash_cents", default=None),
        counted_cards_cents=parse_cents(data.get("counted_cards_cents"), "counted_cards_cents", required=False, default=None),
        counted_cheques_cents=parse_cents(
            data.get("counted_cheques_cents"), "counted_cheques_cents", required=False, default=None
        ),
        notes=parse_text(data.get("notes"), field="notes"),
    )
    return jsonify({"session": session.to_dict()}), 200


@sessions_bp.post("/sessions/<int:session_id>/movements")
@require_auth
@settlement_errors("record cash movement")
def record_movement_route(session_id: int):
    """
    Request body:
    {
        "movement_type": "cash_in" | "cash_out" | "no_sale",
        "amount_cents": 50000,
        "reason": "Dépôt banque"
    }
    """
    data = json_body()
    movement = cash_session_service.record_movement(
        g.actor.pharmacy_id,
        g.actor,
        session_id,
        movement_type=data.get("movement_type"),
        amount_cents=parse_cents(data.get("amount_cents"), "amount_cents", required=False),
        reason=data.get("reason"),
    )
    return jsonify({"movement": movement.to_dict()}), 201


@sessions_bp.get("/sessions/<int:session_id>/report")
@require_auth
@settlement_errors("build session report")
def session_report_route(session_id: int):
    """
    Query params:
    - type: x (default) or z
    - top: number of top products
    """
    report = session_report_service.session_report(
        g.actor.pharmacy_id,
        session_id,
        request.args.get("type", "x"),
        top_n=parse_int(request.args.get("top"), "top", required=False),
    )
    return jsonify({"report": report}), 200
