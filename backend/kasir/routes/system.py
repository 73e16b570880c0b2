# backend/kasir/routes/system.py
"""
System health endpoint.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import User, Product, Transaction
from kasir.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "products": db.session.query(Product).count(),
            "transactions": db.session.query(Transaction).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_payment_gateway_config() -> dict:
    configured = bool(current_app.config.get("XENDIT_SECRET_KEY"))
    if configured:
        return {"status": "healthy", "details": {"configured": True}}
    return {
        "status": "degraded",
        "warning": "XENDIT_SECRET_KEY is not set; digital payments are unavailable",
        "details": {"configured": False},
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy, or degraded (still operational)
    - 503: database unreachable
    """
    database_health = check_database_health()
    gateway_health = check_payment_gateway_config()

    if database_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif gateway_health["status"] == "degraded":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {
            "database": database_health,
            "payment_gateway": gateway_health,
        },
    }, http_status
