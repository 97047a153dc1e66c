# Overview: Flask API route for reading the pharmacy's audit ledger.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, settlement_errors
from ..services import ledger_service
from ..validation import parse_int, parse_text


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/pharmacy/ledger")


@ledger_bp.get("")
@require_auth
@settlement_errors("list ledger events")
def list_ledger_events_route():
    """
    Query params: category (cash | sales | chifa | accounting),
    entity_type, entity_id, limit (max 500)
    """
    limit = parse_int(request.args.get("limit"), "limit", required=False, default=100)
    limit = max(1, min(limit, 500))

    events = ledger_service.list_ledger_events(
        g.actor.pharmacy_id,
        event_category=parse_text(request.args.get("category"), max_length=32, field="category"),
        entity_type=parse_text(request.args.get("entity_type"), max_length=64, field="entity_type"),
        entity_id=parse_int(request.args.get("entity_id"), "entity_id", required=False),
        limit=limit,
    )
    return jsonify({"items": [ev.to_dict() for ev in events], "limit": limit}), 200
