# Overview: Flask API routes for stock transfers; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app, g

from vinerp.extensions import db
from vinerp.decorators import require_user, require_permission
from vinerp.permissions import MANAGE_TRANSFERS
from vinerp.services import transfer_service
from vinerp.services.transfer_service import TransferError, TransferNotFound
from vinerp.validation import ValidationError, parse_datetime_field, require_json


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _error(e: Exception):
    db.session.rollback()
    if isinstance(e, TransferNotFound):
        return jsonify({"error": str(e), "details": e.details}), 404
    if isinstance(e, TransferError):
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify({"error": str(e)}), 400


def _payload() -> dict:
    data = dict(require_json(request.get_json(silent=True)))
    if "date" in data:
        data["date"] = parse_datetime_field(data.get("date"), "date")
    return data


@transfers_bp.get("")
@require_user
def list_transfers_route():
    try:
        transfers = transfer_service.list_transfers(
            start=parse_datetime_field(request.args.get("start"), "start"),
            end=parse_datetime_field(request.args.get("end"), "end"),
        )
        return jsonify({"items": [t.to_dict() for t in transfers], "count": len(transfers)})
    except ValidationError as e:
        return _error(e)


@transfers_bp.get("/<int:transfer_id>")
@require_user
def get_transfer_route(transfer_id: int):
    try:
        return jsonify({"transfer": transfer_service.get_transfer(transfer_id).to_dict()})
    except TransferError as e:
        return _error(e)


@transfers_bp.post("")
@require_user
@require_permission(MANAGE_TRANSFERS)
def create_transfer_route():
    """Body: source_location_id, target_location_id, items [{product_id, quantity}], date?, note?"""
    try:
        transfer = transfer_service.commit_transfer(_payload(), user=g.current_user)
        return jsonify({"transfer": transfer.to_dict()}), 201
    except (TransferError, ValidationError) as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.put("/<int:transfer_id>")
@require_user
@require_permission(MANAGE_TRANSFERS)
def update_transfer_route(transfer_id: int):
    try:
        transfer = transfer_service.update_transfer(transfer_id, _payload(), user=g.current_user)
        return jsonify({"transfer": transfer.to_dict()})
    except (TransferError, ValidationError) as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update transfer")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.delete("/<int:transfer_id>")
@require_user
@require_permission(MANAGE_TRANSFERS)
def delete_transfer_route(transfer_id: int):
    try:
        transfer_service.delete_transfer(transfer_id, user=g.current_user)
        return jsonify({"deleted": True})
    except TransferError as e:
        return _error(e)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete transfer")
        return jsonify({"error": "Internal server error"}), 500
