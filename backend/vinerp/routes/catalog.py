# Overview: Flask API routes for catalog, partner and reference data; parses input and returns JSON responses.

"""Catalog API routes (products, locations, lookups, partners, banks, registers, users, settings)"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..decorators import require_user, require_permission
from ..permissions import MANAGE_CATALOG
from ..services import catalog_service, settings_service
from ..services.catalog_service import CatalogError, CatalogNotFound
from ..services.settings_service import SettingsError
from ..validation import ValidationError, parse_bool_arg, parse_int, require_json


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


def _error(e: Exception):
    db.session.rollback()
    if isinstance(e, CatalogNotFound):
        return jsonify({"error": str(e), "details": e.details}), 404
    if isinstance(e, CatalogError):
        return jsonify({"error": str(e), "details": e.details}), 400
    return jsonify({"error": str(e)}), 400


def _internal(message: str):
    db.session.rollback()
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PRODUCTS
# =============================================================================

@catalog_bp.get("/products")
@require_user
def list_products_route():
    try:
        products = catalog_service.list_products(
            search=request.args.get("q"),
            category_id=parse_int(request.args.get("category_id"), "category_id"),
            active_only=parse_bool_arg(request.args.get("active_only")),
        )
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})
    except ValidationError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to list products")


@catalog_bp.get("/products/lookup")
@require_user
def lookup_product_route():
    """Scanner lookup by barcode (falls back to product code)."""
    barcode = (request.args.get("barcode") or "").strip()
    product = catalog_service.find_product_by_barcode(barcode)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product.to_dict()})


@catalog_bp.get("/products/<int:product_id>")
@require_user
def get_product_route(product_id: int):
    try:
        return jsonify({"product": catalog_service.get_product(product_id).to_dict()})
    except CatalogError as e:
        return _error(e)


@catalog_bp.post("/products")
@require_user
@require_permission(MANAGE_CATALOG)
def create_product_route():
    try:
        data = require_json(request.get_json(silent=True))
        product = catalog_service.create_product(data)
        return jsonify({"product": product.to_dict()}), 201
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create product")


@catalog_bp.put("/products/<int:product_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def update_product_route(product_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        product = catalog_service.update_product(product_id, data)
        return jsonify({"product": product.to_dict()})
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update product")


@catalog_bp.delete("/products/<int:product_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def delete_product_route(product_id: int):
    try:
        catalog_service.delete_product(product_id)
        return jsonify({"deleted": True})
    except CatalogError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to delete product")


# =============================================================================
# LOCATIONS
# =============================================================================

@catalog_bp.get("/locations")
@require_user
def list_locations_route():
    locations = catalog_service.list_locations()
    return jsonify({"items": [loc.to_dict() for loc in locations], "count": len(locations)})


@catalog_bp.post("/locations")
@require_user
@require_permission(MANAGE_CATALOG)
def create_location_route():
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"location": catalog_service.create_location(data).to_dict()}), 201
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create location")


@catalog_bp.put("/locations/<int:location_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def update_location_route(location_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"location": catalog_service.update_location(location_id, data).to_dict()})
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update location")


@catalog_bp.delete("/locations/<int:location_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def delete_location_route(location_id: int):
    try:
        catalog_service.delete_location(location_id)
        return jsonify({"deleted": True})
    except CatalogError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to delete location")


# =============================================================================
# LOOKUPS: /categories, /brands, /units, /expense-categories
# =============================================================================

@catalog_bp.get("/<any(categories, brands, units, 'expense-categories'):kind>")
@require_user
def list_lookup_route(kind: str):
    items = catalog_service.list_lookup(kind)
    return jsonify({"items": [obj.to_dict() for obj in items], "count": len(items)})


@catalog_bp.post("/<any(categories, brands, units, 'expense-categories'):kind>")
@require_user
@require_permission(MANAGE_CATALOG)
def create_lookup_route(kind: str):
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"item": catalog_service.create_lookup(kind, data).to_dict()}), 201
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal(f"Failed to create {kind}")


@catalog_bp.put("/<any(categories, brands, units, 'expense-categories'):kind>/<int:obj_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def update_lookup_route(kind: str, obj_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"item": catalog_service.update_lookup(kind, obj_id, data).to_dict()})
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal(f"Failed to update {kind}")


@catalog_bp.delete("/<any(categories, brands, units, 'expense-categories'):kind>/<int:obj_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def delete_lookup_route(kind: str, obj_id: int):
    try:
        catalog_service.delete_lookup(kind, obj_id)
        return jsonify({"deleted": True})
    except CatalogError as e:
        return _error(e)
    except Exception:
        return _internal(f"Failed to delete {kind}")


# =============================================================================
# PARTNERS
# =============================================================================

@catalog_bp.get("/customers")
@require_user
def list_customers_route():
    customers = catalog_service.list_customers(request.args.get("q"))
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)})


@catalog_bp.post("/customers")
@require_user
@require_permission(MANAGE_CATALOG)
def create_customer_route():
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"customer": catalog_service.create_customer(data).to_dict()}), 201
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create customer")


@catalog_bp.put("/customers/<int:customer_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def update_customer_route(customer_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"customer": catalog_service.update_customer(customer_id, data).to_dict()})
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update customer")


@catalog_bp.delete("/customers/<int:customer_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def delete_customer_route(customer_id: int):
    try:
        catalog_service.delete_customer(customer_id)
        return jsonify({"deleted": True})
    except CatalogError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to delete customer")


@catalog_bp.get("/suppliers")
@require_user
def list_suppliers_route():
    suppliers = catalog_service.list_suppliers(request.args.get("q"))
    return jsonify({"items": [s.to_dict() for s in suppliers], "count": len(suppliers)})


@catalog_bp.post("/suppliers")
@require_user
@require_permission(MANAGE_CATALOG)
def create_supplier_route():
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"supplier": catalog_service.create_supplier(data).to_dict()}), 201
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create supplier")


@catalog_bp.put("/suppliers/<int:supplier_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def update_supplier_route(supplier_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"supplier": catalog_service.update_supplier(supplier_id, data).to_dict()})
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update supplier")


@catalog_bp.delete("/suppliers/<int:supplier_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def delete_supplier_route(supplier_id: int):
    try:
        catalog_service.delete_supplier(supplier_id)
        return jsonify({"deleted": True})
    except CatalogError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to delete supplier")


# =============================================================================
# BANKS / REGISTERS / USERS
# =============================================================================

@catalog_bp.get("/banks")
@require_user
def list_banks_route():
    banks = catalog_service.list_banks()
    return jsonify({"items": [b.to_dict() for b in banks], "count": len(banks)})


@catalog_bp.post("/banks")
@require_user
@require_permission(MANAGE_CATALOG)
def create_bank_route():
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"bank": catalog_service.create_bank(data).to_dict()}), 201
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create bank")


@catalog_bp.put("/banks/<int:bank_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def update_bank_route(bank_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"bank": catalog_service.update_bank(bank_id, data).to_dict()})
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update bank")


@catalog_bp.delete("/banks/<int:bank_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def delete_bank_route(bank_id: int):
    try:
        catalog_service.delete_bank(bank_id)
        return jsonify({"deleted": True})
    except CatalogError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to delete bank")


@catalog_bp.get("/registers")
@require_user
def list_registers_route():
    registers = catalog_service.list_registers()
    return jsonify({"items": [r.to_dict() for r in registers], "count": len(registers)})


@catalog_bp.post("/registers")
@require_user
@require_permission(MANAGE_CATALOG)
def create_register_route():
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"register": catalog_service.create_register(data).to_dict()}), 201
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create register")


@catalog_bp.put("/registers/<int:register_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def update_register_route(register_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"register": catalog_service.update_register(register_id, data).to_dict()})
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update register")


@catalog_bp.delete("/registers/<int:register_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def delete_register_route(register_id: int):
    try:
        catalog_service.delete_register(register_id)
        return jsonify({"deleted": True})
    except CatalogError as e:
        return _error(e)
    except Exception:
        return _internal("Failed to delete register")


@catalog_bp.get("/users")
@require_user
@require_permission(MANAGE_CATALOG)
def list_users_route():
    users = catalog_service.list_users()
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)})


@catalog_bp.post("/users")
@require_user
@require_permission(MANAGE_CATALOG)
def create_user_route():
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"user": catalog_service.create_user(data).to_dict()}), 201
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to create user")


@catalog_bp.put("/users/<int:user_id>")
@require_user
@require_permission(MANAGE_CATALOG)
def update_user_route(user_id: int):
    try:
        data = require_json(request.get_json(silent=True))
        return jsonify({"user": catalog_service.update_user(user_id, data).to_dict()})
    except (CatalogError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update user")


# =============================================================================
# SETTINGS
# =============================================================================

@catalog_bp.get("/settings")
@require_user
def get_settings_route():
    settings = settings_service.get_settings()
    db.session.commit()
    return jsonify({"settings": settings.to_dict()})


@catalog_bp.put("/settings")
@require_user
@require_permission(MANAGE_CATALOG)
def update_settings_route():
    try:
        data = require_json(request.get_json(silent=True))
        settings = settings_service.update_settings(data)
        return jsonify({"settings": settings.to_dict()})
    except (SettingsError, ValidationError) as e:
        return _error(e)
    except Exception:
        return _internal("Failed to update settings")
