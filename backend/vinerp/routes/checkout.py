# Overview: Flask API routes for POS carts and checkout; parses input and returns JSON responses.

"""Cart and checkout API routes"""

from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_user, require_permission
from ..permissions import EDIT_PRICE
from ..services import checkout_service
from ..services.checkout_service import CheckoutError, CheckoutNotFound, CheckoutPermissionError
from ..validation import ValidationError, parse_int, require_json


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/carts")


def _error(e: Exception):
    db.session.rollback()
    if isinstance(e, CheckoutNotFound):
        return jsonify({"error": str(e), "details": e.details}), 404
    if isinstance(e, CheckoutPermissionError):
        return jsonify({"error": str(e), "details": e.details}), 403
    if isinstance(e, CheckoutError):
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify({"error": str(e)}), 400


def _internal(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def _cart_payload(cart):
    totals = checkout_service.compute_totals(cart.lines, cart.customer, is_return=cart.is_return)
    return {"cart": cart.to_dict(), "totals": totals.to_dict()}


@checkout_bp.post("")
@require_user
def create_cart_route():
    """
    Open a cart.

    Body (all optional): customer_id, location_id, parent_invoice_id.
    A parent_invoice_id opens a return-mode cart (process_returns required).
    """
    try:
        data = request.get_json(silent=True) or {}
        cart = checkout_service.create_cart(
            g.current_user.id,
            customer_id=parse_int(data.get("customer_id"), "customer_id"),
            location_id=parse_int(data.get("location_id"), "location_id"),
            parent_invoice_id=parse_int(data.get("parent_invoice_id"), "parent_invoice_id"),
        )
        return jsonify(_cart_payload(cart)), 201
    except (CheckoutError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create cart")


@checkout_bp.get("/<int:cart_id>")
@require_user
def get_cart_route(cart_id: int):
    try:
        return jsonify(_cart_payload(checkout_service.get_cart(cart_id)))
    except CheckoutError as e:
        return _error(e)


@checkout_bp.post("/<int:cart_id>/items")
@require_user
def add_item_route(cart_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        product_id = parse_int(data.get("product_id"), "product_id", required=True)
        quantity = parse_int(data.get("quantity"), "quantity", minimum=1) or 1
        cart = checkout_service.add_item(cart_id, product_id, quantity)
        return jsonify(_cart_payload(cart))
    except (CheckoutError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to add cart item")


@checkout_bp.patch("/<int:cart_id>/items/<int:product_id>")
@require_user
def update_quantity_route(cart_id: int, product_id: int):
    """Body: {"delta": +1 | -1 | n}. Quantity never drops below 1."""
    try:
        data = require_json(request.get_json(silent=True))
        delta = parse_int(data.get("delta"), "delta", required=True)
        cart = checkout_service.update_quantity(cart_id, product_id, delta)
        return jsonify(_cart_payload(cart))
    except (CheckoutError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update cart quantity")


@checkout_bp.put("/<int:cart_id>/items/<int:product_id>/price")
@require_user
@require_permission(EDIT_PRICE)
def update_price_route(cart_id: int, product_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        price_cents = parse_int(data.get("price_cents"), "price_cents", required=True, minimum=0)
        cart = checkout_service.update_price(cart_id, product_id, price_cents, g.current_user.id)
        return jsonify(_cart_payload(cart))
    except (CheckoutError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update cart price")


@checkout_bp.delete("/<int:cart_id>/items/<int:product_id>")
@require_user
def remove_item_route(cart_id: int, product_id: int):
    try:
        cart = checkout_service.remove_item(cart_id, product_id)
        return jsonify(_cart_payload(cart))
    except CheckoutError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to remove cart item")


@checkout_bp.put("/<int:cart_id>/customer")
@require_user
def set_customer_route(cart_id: int):
    """Body: {"customer_id": id | null}."""
    try:
        data = require_json(request.get_json(silent=True))
        cart = checkout_service.set_customer(cart_id, parse_int(data.get("customer_id"), "customer_id"))
        return jsonify(_cart_payload(cart))
    except (CheckoutError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to set cart customer")


@checkout_bp.get("/<int:cart_id>/totals")
@require_user
def cart_totals_route(cart_id: int):
    try:
        return jsonify({"totals": checkout_service.cart_totals(cart_id).to_dict()})
    except CheckoutError as e:
        return _error(e)


@checkout_bp.post("/<int:cart_id>/checkout")
@require_user
def checkout_route(cart_id: int):
    """
    Initiate checkout.

    Body: payment_method (CASH|CARD|CREDIT|MIXED), tendered_cents?,
          bank_id?, cash_cents?, card_cents?

    Responses:
        200 {"status": "COMPLETED", "invoice": ..., "receipt": ...}
        202 {"status": "OFFLINE_CONFIRMATION_REQUIRED", "reason": ...}
        202 {"status": "FISCALIZED_SAVE_PENDING", "reason": ...}
    """
    try:
        data = require_json(request.get_json(silent=True))
        result = checkout_service.initiate_checkout(
            cart_id,
            data.get("payment_method"),
            user_id=g.current_user.id,
            tendered_cents=parse_int(data.get("tendered_cents"), "tendered_cents", minimum=0),
            bank_id=parse_int(data.get("bank_id"), "bank_id"),
            cash_cents=parse_int(data.get("cash_cents"), "cash_cents", minimum=0),
            card_cents=parse_int(data.get("card_cents"), "card_cents", minimum=0),
        )
        status_code = 200 if result.status == checkout_service.RESULT_COMPLETED else 202
        return jsonify(result.to_dict()), status_code
    except (CheckoutError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to check out cart")


@checkout_bp.post("/<int:cart_id>/confirm-offline")
@require_user
def confirm_offline_route(cart_id: int):
    try:
        result = checkout_service.confirm_offline_save(cart_id, g.current_user.id)
        return jsonify(result.to_dict())
    except CheckoutError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to confirm offline save")


@checkout_bp.post("/<int:cart_id>/cancel-offline")
@require_user
def cancel_offline_route(cart_id: int):
    try:
        cart = checkout_service.cancel_offline_save(cart_id)
        return jsonify(_cart_payload(cart))
    except CheckoutError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to cancel offline save")


@checkout_bp.post("/<int:cart_id>/cancel")
@require_user
def cancel_cart_route(cart_id: int):
    try:
        cart = checkout_service.cancel_cart(cart_id)
        return jsonify({"cart": cart.to_dict()})
    except CheckoutError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to cancel cart")
