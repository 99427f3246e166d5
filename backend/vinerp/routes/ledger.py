# Overview: Flask API routes for ledger transactions and balances; parses input and returns JSON responses.

"""Ledger API routes"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_user
from ..services import ledger_service
from ..services.ledger_service import LedgerError, LedgerPermissionError
from ..validation import ValidationError, parse_datetime_field, parse_int, require_json


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _error(e: Exception):
    db.session.rollback()
    if isinstance(e, LedgerPermissionError):
        return jsonify({"error": str(e), "details": e.details}), 403
    if isinstance(e, LedgerError):
        status = 404 if str(e) == "Transaction not found" else 400
        return jsonify({"error": str(e), "details": e.details}), status
    return jsonify({"error": str(e)}), 400


def _payload() -> dict:
    data = dict(require_json(request.get_json(silent=True)))
    if "date" in data:
        data["date"] = parse_datetime_field(data.get("date"), "date")
    return data


@ledger_bp.get("/transactions")
@require_user
def list_transactions_route():
    """Query: start, end, type, source, bank_id, invoice_id."""
    try:
        txs = ledger_service.list_transactions(
            start=parse_datetime_field(request.args.get("start"), "start"),
            end=parse_datetime_field(request.args.get("end"), "end"),
            tx_type=request.args.get("type"),
            source=request.args.get("source"),
            bank_id=parse_int(request.args.get("bank_id"), "bank_id"),
            related_invoice_id=parse_int(request.args.get("invoice_id"), "invoice_id"),
        )
        return jsonify({"items": [tx.to_dict() for tx in txs], "count": len(txs)})
    except ValidationError as e:
        return _error(e)


@ledger_bp.get("/transactions/<int:tx_id>")
@require_user
def get_transaction_route(tx_id: int):
    try:
        return jsonify({"transaction": ledger_service.get_transaction(tx_id).to_dict()})
    except LedgerError as e:
        return _error(e)


@ledger_bp.post("/transactions")
@require_user
def create_transaction_route():
    """
    Record a manual income/expense entry.

    Body: type (INCOME|EXPENSE), category, amount_cents, source
          (CASH_REGISTER|BANK), bank_id?, cash_register_id?, partner_id?,
          expense_category_id?, description?, date?
    """
    try:
        tx = ledger_service.add_transaction(_payload(), user=g.current_user)
        return jsonify({"transaction": tx.to_dict()}), 201
    except (LedgerError, ValidationError) as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.put("/transactions/<int:tx_id>")
@require_user
def update_transaction_route(tx_id: int):
    try:
        tx = ledger_service.update_transaction(tx_id, _payload())
        return jsonify({"transaction": tx.to_dict()})
    except (LedgerError, ValidationError) as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update transaction")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.delete("/transactions/<int:tx_id>")
@require_user
def delete_transaction_route(tx_id: int):
    try:
        ledger_service.delete_transaction(tx_id, user=g.current_user)
        return jsonify({"deleted": True})
    except LedgerError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete transaction")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.get("/balances")
@require_user
def balances_route():
    """Bank balances plus cash on hand (optionally per register, as of a date)."""
    try:
        as_of = parse_datetime_field(request.args.get("as_of"), "as_of")
        register_id = parse_int(request.args.get("cash_register_id"), "cash_register_id")
        return jsonify({
            "banks": ledger_service.bank_balances(),
            "cash_cents": ledger_service.cash_balance(cash_register_id=register_id, as_of=as_of),
        })
    except (LedgerError, ValidationError) as e:
        return _error(e)
