# backend/chifa_pos/routes/system.py
"""
System health endpoint.

Checks database connectivity and reports a few settlement counters useful
when debugging a deployment.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Pharmacy, CashDrawerSession
from ..models.drawers import SESSION_STATUS_OPEN
from chifa_pos.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        pharmacy_count = db.session.query(Pharmacy).count()
        open_sessions = db.session.query(CashDrawerSession).filter_by(status=SESSION_STATUS_OPEN).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pharmacies": pharmacy_count,
                "open_sessions": open_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    http_status = 503 if database_health["status"] == "unhealthy" else 200

    return {
        "status": database_health["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database_health},
    }, http_status
