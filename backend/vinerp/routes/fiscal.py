# Overview: Flask API routes for fiscal shift operations; the device answers via the fiscal service.

from flask import Blueprint, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_user
from ..services.fiscal_service import FiscalDeviceError, FiscalDeviceUnavailable, run_shift_operation
from ..services.settings_service import get_settings


fiscal_bp = Blueprint("fiscal", __name__, url_prefix="/api/fiscal")


def _shift(operation: str):
    try:
        settings = get_settings()
        db.session.commit()
        result = run_shift_operation(operation, g.current_user, settings)
        return jsonify({"ok": True, "operation": operation, "result": result})
    except FiscalDeviceUnavailable as e:
        return jsonify({"error": str(e), "details": e.details, "offline": True}), 502
    except FiscalDeviceError as e:
        return jsonify({"error": str(e), "details": e.details}), 502
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Fiscal %s failed", operation)
        return jsonify({"error": "Internal server error"}), 500


@fiscal_bp.post("/open-shift")
@require_user
def open_shift_route():
    return _shift("open_shift")


@fiscal_bp.post("/close-shift")
@require_user
def close_shift_route():
    return _shift("close_shift")


@fiscal_bp.post("/x-report")
@require_user
def x_report_route():
    return _shift("x_report")
