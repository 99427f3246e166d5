# Overview: Flask API routes for the chart of accounts and balance sheet; parses input and returns JSON responses.

"""Chart of accounts API routes"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..decorators import require_user, require_permission
from ..permissions import MANAGE_ACCOUNTS
from ..services import account_service
from ..services.account_service import AccountError, AccountNotFound
from ..validation import ValidationError, parse_datetime_field, parse_int, require_json


accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


def _error(e: Exception):
    db.session.rollback()
    if isinstance(e, AccountNotFound):
        return jsonify({"error": str(e), "details": e.details}), 404
    if isinstance(e, AccountError):
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify({"error": str(e)}), 400


def _internal(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("")
@require_user
def list_accounts_route():
    accounts = account_service.list_accounts()
    return jsonify({"items": [a.to_dict() for a in accounts], "count": len(accounts)})


@accounts_bp.get("/balance-sheet")
@require_user
def balance_sheet_route():
    """Query: start, end (ISO-8601). Both optional; open bounds mean all time."""
    try:
        tree = account_service.balance_sheet(
            parse_datetime_field(request.args.get("start"), "start"),
            parse_datetime_field(request.args.get("end"), "end"),
        )
        return jsonify({"accounts": tree})
    except (AccountError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to compute balance sheet")


@accounts_bp.get("/suggest-code")
@require_user
def suggest_code_route():
    try:
        parent_id = parse_int(request.args.get("parent_id"), "parent_id")
        parent = account_service.get_account(parent_id) if parent_id is not None else None
        return jsonify({"code": account_service.suggest_child_code(parent)})
    except (AccountError, ValidationError) as e:
        return _error(e)


@accounts_bp.get("/<int:account_id>")
@require_user
def get_account_route(account_id: int):
    try:
        account = account_service.get_account(account_id)
        start = parse_datetime_field(request.args.get("start"), "start")
        end = parse_datetime_field(request.args.get("end"), "end")
        return jsonify({
            "account": account.to_dict(),
            "balance_cents": account_service.compute_balance(account, start, end),
        })
    except (AccountError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to load account")


@accounts_bp.post("")
@require_user
@require_permission(MANAGE_ACCOUNTS)
def create_account_route():
    """Body: code, name, parent_id?, system_link?, system_link_id?, manual_balance_cents?"""
    try:
        data = require_json(request.get_json(silent=True))
        account = account_service.create_account(data)
        return jsonify({"account": account.to_dict()}), 201
    except (AccountError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create account")


@accounts_bp.put("/<int:account_id>")
@require_user
@require_permission(MANAGE_ACCOUNTS)
def update_account_route(account_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        account = account_service.update_account(account_id, data)
        return jsonify({"account": account.to_dict()})
    except (AccountError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update account")


@accounts_bp.delete("/<int:account_id>")
@require_user
@require_permission(MANAGE_ACCOUNTS)
def delete_account_route(account_id: int):
    try:
        account_service.delete_account(account_id)
        return jsonify({"deleted": True})
    except AccountError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to delete account")
