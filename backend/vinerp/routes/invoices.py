# Overview: Flask API routes for invoices, returns, settlements and voids; parses input and returns JSON responses.

"""Invoice API routes"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_user, require_permission
from ..permissions import PROCESS_RETURNS, VOID_INVOICES
from ..services import invoice_service
from ..services.invoice_service import InvoiceError, InvoiceNotFound, InvoicePermissionError
from ..validation import ValidationError, parse_datetime_field, parse_int, require_fields, require_json


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _error(e: Exception):
    db.session.rollback()
    if isinstance(e, InvoiceNotFound):
        return jsonify({"error": str(e), "details": e.details}), 404
    if isinstance(e, InvoicePermissionError):
        return jsonify({"error": str(e), "details": e.details}), 403
    if isinstance(e, InvoiceError):
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify({"error": str(e)}), 400


def _internal(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("")
@require_user
def list_invoices_route():
    """Query: type, status, partner_id, start, end (ISO-8601)."""
    try:
        invoices = invoice_service.list_invoices(
            invoice_type=request.args.get("type"),
            status=request.args.get("status"),
            partner_id=parse_int(request.args.get("partner_id"), "partner_id"),
            start=parse_datetime_field(request.args.get("start"), "start"),
            end=parse_datetime_field(request.args.get("end"), "end"),
        )
        return jsonify({"items": [inv.to_dict() for inv in invoices], "count": len(invoices)})
    except ValidationError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to list invoices")


@invoices_bp.get("/<int:invoice_id>")
@require_user
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict()})
    except InvoiceError as e:
        return _error(e)


@invoices_bp.get("/<int:invoice_id>/returnable")
@require_user
def remaining_returnable_route(invoice_id: int):
    try:
        return jsonify({"items": invoice_service.remaining_returnable(invoice_id)})
    except InvoiceError as e:
        return _error(e)


@invoices_bp.post("")
@require_user
def create_invoice_route():
    """
    Commit an invoice (back-office entry: purchases, manual sales, returns).

    Body: type, items [{product_id, quantity, price_cents, ...}],
          payment_method, partner_id?, parent_invoice_id?, location_id?,
          discount_cents?, tax_cents?, date?, notes?, bank_id?, ...

    Errors carry details.step naming the step that failed.
    """
    try:
        data = dict(require_json(request.get_json(silent=True)))
        require_fields(data, "type", "payment_method")
        data["date"] = parse_datetime_field(data.get("date"), "date")
        invoice = invoice_service.commit_invoice(data, user=g.current_user)
        return jsonify({"invoice": invoice.to_dict()}), 201
    except (InvoiceError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create invoice")


@invoices_bp.post("/<int:invoice_id>/returns")
@require_user
@require_permission(PROCESS_RETURNS)
def create_return_route(invoice_id: int):
    """Body: items [{parent_item_id, quantity}], payment_method?, bank_id?, notes?"""
    try:
        data = require_json(request.get_json(silent=True))
        invoice = invoice_service.create_return(
            invoice_id,
            data.get("items") or [],
            user=g.current_user,
            payment_method=data.get("payment_method") or "CASH",
            bank_id=parse_int(data.get("bank_id"), "bank_id"),
            notes=data.get("notes"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except (InvoiceError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create return")


@invoices_bp.post("/<int:invoice_id>/payments")
@require_user
def settle_payment_route(invoice_id: int):
    """Body: amount_cents, source (CASH_REGISTER|BANK), bank_id?"""
    try:
        data = require_json(request.get_json(silent=True))
        invoice = invoice_service.settle_payment(
            invoice_id,
            parse_int(data.get("amount_cents"), "amount_cents", required=True, minimum=1),
            source=data.get("source") or "CASH_REGISTER",
            bank_id=parse_int(data.get("bank_id"), "bank_id"),
            user=g.current_user,
        )
        return jsonify({"invoice": invoice.to_dict()})
    except (InvoiceError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to record payment")


@invoices_bp.post("/<int:invoice_id>/void")
@require_user
@require_permission(VOID_INVOICES)
def void_invoice_route(invoice_id: int):
    """Body: {"reason": "..."}"""
    try:
        data = require_json(request.get_json(silent=True))
        invoice = invoice_service.void_invoice(invoice_id, user=g.current_user, reason=data.get("reason"))
        return jsonify({"invoice": invoice.to_dict()})
    except (InvoiceError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to void invoice")


@invoices_bp.delete("/<int:invoice_id>")
@require_user
@require_permission(VOID_INVOICES)
def delete_invoice_route(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id, user=g.current_user)
        return jsonify({"deleted": True})
    except InvoiceError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to delete invoice")
