# Overview: Request decorators and helpers for API routes: actor resolution, error mapping, body parsing.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services import identity_service
from .validation import ComputationInvariantError, SettlementError, ValidationError, parse_int


def require_auth(f):
    """
    Require a resolved actor and establish tenant context.

    MULTI-TENANT: Sets g.actor (ActorContext). Every service call takes
    g.actor.pharmacy_id, so a route can never reach another pharmacy's rows.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Unknown, revoked or expired token
    - Pharmacy deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        actor = identity_service.resolve_token(token)

        if not actor:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.actor = actor
        return f(*args, **kwargs)

    return decorated_function


def settlement_errors(action: str):
    """
    Map service errors onto JSON responses.

    Validation/not-found/conflict errors carry their message and context.
    Invariant failures and anything unexpected are logged with traceback
    and answered with a generic 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ComputationInvariantError:
                current_app.logger.exception("Computation invariant failed while trying to %s", action)
                return jsonify({"error": "Internal server error"}), 500
            except SettlementError as e:
                return jsonify(e.to_dict()), e.status_code
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500
        return decorated_function
    return decorator


def json_body() -> dict:
    """Request JSON object ({} when absent)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def page_args() -> tuple[int, int]:
    page = parse_int(request.args.get("page"), "page", required=False, default=1)
    limit = parse_int(request.args.get("limit"), "limit", required=False, default=50)
    return page, limit
