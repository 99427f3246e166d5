# Overview: System health endpoint for deployment checks.

"""
System health endpoint.

Reports database connectivity and whether the store has been initialized
(primary location and settings row present).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import AppSettings, Location, User
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """Check database connectivity with a few cheap counts."""
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        location_count = db.session.query(Location).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "locations": location_count,
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


def check_store_initialized() -> dict:
    start_time = time.time()
    try:
        has_primary = db.session.query(Location).filter_by(is_primary=True).first() is not None
        has_settings = db.session.query(AppSettings).first() is not None
        elapsed_ms = (time.time() - start_time) * 1000

        missing = []
        if not has_primary:
            missing.append("primary location")
        if not has_settings:
            missing.append("settings")
        if missing:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"Missing: {', '.join(missing)} (run `flask vinerp init-db`)",
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Store initialization check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    store_health = check_store_initialized()

    all_checks = [database_health, store_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "store": store_health,
        }
    }
    return response, http_status
