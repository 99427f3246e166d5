# Overview: Service-layer CRUD for catalog, partner and reference data.

"""
Catalog Service

Master data the POS core depends on: products (with per-location opening
stock), locations, lookup tables (category/brand/unit/expense category),
customers, suppliers, bank accounts, cash registers and users.

Stock quantities are NOT editable here after creation: every later
movement goes through invoices or transfers so the ledger stays auditable.
"""

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import (
    BankAccount,
    Brand,
    CashRegister,
    Category,
    Customer,
    ExpenseCategory,
    Location,
    Product,
    Supplier,
    Unit,
    User,
)
from ..permissions import ALL_PERMISSIONS
from .concurrency import atomic
from .stock_service import StockError, set_initial_stocks


class CatalogError(Exception):
    """Raised for catalog validation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CatalogNotFound(CatalogError):
    """Raised when a catalog record does not exist."""


# =============================================================================
# MUTABLE FIELDS
# =============================================================================

PRODUCT_MUTABLE_FIELDS = {
    "code",
    "barcode",
    "name",
    "category_id",
    "brand_id",
    "unit_id",
    "sales_price_cents",
    "purchase_price_cents",
    "vat_rate",
    "vat_included",
    "image",
    "is_active",
}
LOCATION_MUTABLE_FIELDS = {"name", "type", "is_primary"}
CUSTOMER_MUTABLE_FIELDS = {"name", "type", "discount_rate", "due_day", "phone", "email", "address"}
SUPPLIER_MUTABLE_FIELDS = {"name", "phone", "email", "address", "contact_person"}
BANK_MUTABLE_FIELDS = {"name", "account_number", "iban", "currency", "initial_balance_cents"}
REGISTER_MUTABLE_FIELDS = {"name", "location_id", "brand", "ip_address"}
USER_MUTABLE_FIELDS = {
    "username",
    "first_name",
    "last_name",
    "phone",
    "assigned_cash_register_id",
    "permissions",
    "is_active",
}

LOCATION_TYPES = {"WAREHOUSE", "STORE"}
CUSTOMER_TYPES = {"general", "individual", "corporate"}

# Simple name-only lookup tables, addressed by a short kind string in routes.
LOOKUP_MODELS = {
    "categories": Category,
    "brands": Brand,
    "units": Unit,
    "expense-categories": ExpenseCategory,
}


def _apply_patch(obj, patch: dict, allowed: set[str]) -> None:
    for k, v in patch.items():
        if k not in allowed:
            continue
        setattr(obj, k, v)


def _require(model, obj_id: int, label: str):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise CatalogNotFound(f"{label} not found", details={"id": obj_id})
    return obj


def _require_name(patch: dict, label: str) -> None:
    name = patch.get("name")
    if not isinstance(name, str) or not name.strip():
        raise CatalogError(f"{label} name is required")


# =============================================================================
# PRODUCTS
# =============================================================================

def _validate_product_patch(patch: dict, product_id: int | None = None) -> None:
    for field in ("sales_price_cents", "purchase_price_cents"):
        if field in patch:
            value = patch[field]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise CatalogError(f"{field} must be a non-negative integer", details={"field": field})

    if "vat_rate" in patch:
        try:
            rate = float(patch["vat_rate"])
        except (TypeError, ValueError):
            raise CatalogError("vat_rate must be a number")
        if rate < 0 or rate > 100:
            raise CatalogError("vat_rate must be between 0 and 100")

    for field, model in (("category_id", Category), ("brand_id", Brand), ("unit_id", Unit)):
        ref_id = patch.get(field)
        if ref_id is not None and db.session.get(model, ref_id) is None:
            raise CatalogError(f"{field} {ref_id} not found", details={"field": field})

    code = patch.get("code")
    if code is not None:
        q = db.session.query(Product.id).filter(Product.code == code)
        if product_id is not None:
            q = q.filter(Product.id != product_id)
        if q.first() is not None:
            raise CatalogError(f"Product code {code!r} already exists", details={"code": code})


def list_products(*, search: str | None = None, category_id: int | None = None, active_only: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(like), Product.code.ilike(like), Product.barcode.ilike(like)))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if active_only:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    return _require(Product, product_id, "Product")


def find_product_by_barcode(barcode: str) -> Product | None:
    """Scanner lookup: barcode first, then product code."""
    if not barcode:
        return None
    product = db.session.query(Product).filter(Product.barcode == barcode).first()
    if product is None:
        product = db.session.query(Product).filter(Product.code == barcode).first()
    return product


def create_product(patch: dict) -> Product:
    """
    Create a product. An optional "stocks" mapping {location_id: qty}
    seeds opening quantities in the same transaction.
    """
    _require_name(patch, "Product")
    if not patch.get("code"):
        raise CatalogError("Product code is required")
    _validate_product_patch(patch)

    product = Product()
    _apply_patch(product, patch, PRODUCT_MUTABLE_FIELDS)
    db.session.add(product)
    try:
        db.session.flush()
        set_initial_stocks(product, patch.get("stocks") or {})
        db.session.commit()
    except StockError as exc:
        db.session.rollback()
        raise CatalogError(str(exc), details=exc.details)
    return product


def update_product(product_id: int, patch: dict) -> Product:
    product = get_product(product_id)
    if "name" in patch:
        _require_name(patch, "Product")
    _validate_product_patch(patch, product_id=product.id)
    _apply_patch(product, patch, PRODUCT_MUTABLE_FIELDS)
    db.session.commit()
    return product


def delete_product(product_id: int) -> None:
    """Hard delete only when no document references the product; otherwise deactivate."""
    from ..models import InvoiceItem, TransferItem

    product = get_product(product_id)
    referenced = (
        db.session.query(InvoiceItem.id).filter_by(product_id=product.id).first() is not None
        or db.session.query(TransferItem.id).filter_by(product_id=product.id).first() is not None
    )
    if referenced:
        raise CatalogError(
            "Product is referenced by documents; deactivate it instead",
            details={"product_id": product.id},
        )
    db.session.delete(product)
    db.session.commit()


# =============================================================================
# LOCATIONS
# =============================================================================

def list_locations() -> list[Location]:
    return db.session.query(Location).order_by(Location.id.asc()).all()


def _clear_other_primary(location: Location) -> None:
    db.session.query(Location).filter(
        Location.id != location.id, Location.is_primary.is_(True)
    ).update({"is_primary": False}, synchronize_session="fetch")


def create_location(patch: dict) -> Location:
    _require_name(patch, "Location")
    loc_type = patch.get("type", "STORE")
    if loc_type not in LOCATION_TYPES:
        raise CatalogError(f"Invalid location type: {loc_type}")

    location = Location(type=loc_type)
    _apply_patch(location, patch, LOCATION_MUTABLE_FIELDS)
    # The first location becomes primary automatically.
    if db.session.query(Location.id).first() is None:
        location.is_primary = True
    with atomic() as session:
        session.add(location)
        session.flush()
        if location.is_primary:
            _clear_other_primary(location)
    return location


def update_location(location_id: int, patch: dict) -> Location:
    location = _require(Location, location_id, "Location")
    if "type" in patch and patch["type"] not in LOCATION_TYPES:
        raise CatalogError(f"Invalid location type: {patch['type']}")
    _apply_patch(location, patch, LOCATION_MUTABLE_FIELDS)
    if location.is_primary:
        _clear_other_primary(location)
    db.session.commit()
    return location


def delete_location(location_id: int) -> None:
    from ..models import ProductStock

    location = _require(Location, location_id, "Location")
    has_stock = (
        db.session.query(ProductStock.id)
        .filter(ProductStock.location_id == location.id, ProductStock.quantity != 0)
        .first()
    )
    if has_stock is not None:
        raise CatalogError("Location still holds stock", details={"location_id": location.id})
    with atomic() as session:
        session.query(ProductStock).filter_by(location_id=location.id).delete(synchronize_session="fetch")
        session.delete(location)


# =============================================================================
# LOOKUPS (category / brand / unit / expense category)
# =============================================================================

def _lookup_model(kind: str):
    model = LOOKUP_MODELS.get(kind)
    if model is None:
        raise CatalogNotFound(f"Unknown lookup: {kind}")
    return model


def list_lookup(kind: str) -> list:
    model = _lookup_model(kind)
    return db.session.query(model).order_by(model.name.asc()).all()


def create_lookup(kind: str, patch: dict):
    model = _lookup_model(kind)
    _require_name(patch, kind)
    name = patch["name"].strip()
    if model is not Unit and db.session.query(model.id).filter(model.name == name).first() is not None:
        raise CatalogError(f"{name!r} already exists", details={"name": name})

    obj = model(name=name)
    if model is Unit:
        obj.short_name = patch.get("short_name")
    db.session.add(obj)
    db.session.commit()
    return obj


def update_lookup(kind: str, obj_id: int, patch: dict):
    model = _lookup_model(kind)
    obj = _require(model, obj_id, kind)
    if "name" in patch:
        _require_name(patch, kind)
        obj.name = patch["name"].strip()
    if model is Unit and "short_name" in patch:
        obj.short_name = patch["short_name"]
    db.session.commit()
    return obj


def delete_lookup(kind: str, obj_id: int) -> None:
    model = _lookup_model(kind)
    obj = _require(model, obj_id, kind)
    db.session.delete(obj)
    db.session.commit()


# =============================================================================
# PARTNERS
# =============================================================================

def _validate_customer_patch(patch: dict) -> None:
    if "type" in patch and patch["type"] not in CUSTOMER_TYPES:
        raise CatalogError(f"Invalid customer type: {patch['type']}")
    if "discount_rate" in patch:
        try:
            rate = float(patch["discount_rate"])
        except (TypeError, ValueError):
            raise CatalogError("discount_rate must be a number")
        if rate < 0 or rate > 100:
            raise CatalogError("discount_rate must be between 0 and 100")
    due_day = patch.get("due_day")
    if due_day is not None and not (1 <= int(due_day) <= 31):
        raise CatalogError("due_day must be between 1 and 31")


def list_customers(search: str | None = None) -> list[Customer]:
    q = db.session.query(Customer)
    if search:
        q = q.filter(Customer.name.ilike(f"%{search.strip()}%"))
    return q.order_by(Customer.name.asc()).all()


def get_customer(customer_id: int) -> Customer:
    return _require(Customer, customer_id, "Customer")


def create_customer(patch: dict) -> Customer:
    _require_name(patch, "Customer")
    _validate_customer_patch(patch)
    customer = Customer()
    _apply_patch(customer, patch, CUSTOMER_MUTABLE_FIELDS)
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(customer_id: int, patch: dict) -> Customer:
    customer = get_customer(customer_id)
    if "name" in patch:
        _require_name(patch, "Customer")
    _validate_customer_patch(patch)
    _apply_patch(customer, patch, CUSTOMER_MUTABLE_FIELDS)
    db.session.commit()
    return customer


def delete_customer(customer_id: int) -> None:
    customer = get_customer(customer_id)
    if customer.balance_cents:
        raise CatalogError("Customer has an outstanding balance", details={"balance_cents": customer.balance_cents})
    db.session.delete(customer)
    db.session.commit()


def list_suppliers(search: str | None = None) -> list[Supplier]:
    q = db.session.query(Supplier)
    if search:
        q = q.filter(Supplier.name.ilike(f"%{search.strip()}%"))
    return q.order_by(Supplier.name.asc()).all()


def get_supplier(supplier_id: int) -> Supplier:
    return _require(Supplier, supplier_id, "Supplier")


def create_supplier(patch: dict) -> Supplier:
    _require_name(patch, "Supplier")
    supplier = Supplier()
    _apply_patch(supplier, patch, SUPPLIER_MUTABLE_FIELDS)
    db.session.add(supplier)
    db.session.commit()
    return supplier


def update_supplier(supplier_id: int, patch: dict) -> Supplier:
    supplier = get_supplier(supplier_id)
    if "name" in patch:
        _require_name(patch, "Supplier")
    _apply_patch(supplier, patch, SUPPLIER_MUTABLE_FIELDS)
    db.session.commit()
    return supplier


def delete_supplier(supplier_id: int) -> None:
    supplier = get_supplier(supplier_id)
    if supplier.balance_cents:
        raise CatalogError("Supplier has an outstanding balance", details={"balance_cents": supplier.balance_cents})
    db.session.delete(supplier)
    db.session.commit()


# =============================================================================
# BANKS / REGISTERS / USERS
# =============================================================================

def list_banks() -> list[BankAccount]:
    return db.session.query(BankAccount).order_by(BankAccount.name.asc()).all()


def create_bank(patch: dict) -> BankAccount:
    _require_name(patch, "Bank")
    if not patch.get("account_number"):
        raise CatalogError("account_number is required")
    bank = BankAccount()
    _apply_patch(bank, patch, BANK_MUTABLE_FIELDS)
    db.session.add(bank)
    db.session.commit()
    return bank


def update_bank(bank_id: int, patch: dict) -> BankAccount:
    bank = _require(BankAccount, bank_id, "Bank")
    _apply_patch(bank, patch, BANK_MUTABLE_FIELDS)
    db.session.commit()
    return bank


def delete_bank(bank_id: int) -> None:
    from ..models import Transaction

    bank = _require(BankAccount, bank_id, "Bank")
    if db.session.query(Transaction.id).filter_by(bank_id=bank.id).first() is not None:
        raise CatalogError("Bank has ledger transactions", details={"bank_id": bank.id})
    db.session.delete(bank)
    db.session.commit()


def list_registers() -> list[CashRegister]:
    return db.session.query(CashRegister).order_by(CashRegister.id.asc()).all()


def create_register(patch: dict) -> CashRegister:
    _require_name(patch, "Register")
    location_id = patch.get("location_id")
    if location_id is not None and db.session.get(Location, location_id) is None:
        raise CatalogError(f"Location {location_id} not found")
    register = CashRegister()
    _apply_patch(register, patch, REGISTER_MUTABLE_FIELDS)
    db.session.add(register)
    db.session.commit()
    return register


def update_register(register_id: int, patch: dict) -> CashRegister:
    register = _require(CashRegister, register_id, "Register")
    _apply_patch(register, patch, REGISTER_MUTABLE_FIELDS)
    db.session.commit()
    return register


def delete_register(register_id: int) -> None:
    register = _require(CashRegister, register_id, "Register")
    with atomic() as session:
        session.query(User).filter_by(assigned_cash_register_id=register.id).update(
            {"assigned_cash_register_id": None}, synchronize_session="fetch"
        )
        session.delete(register)


def _validate_user_patch(patch: dict, user_id: int | None = None) -> None:
    perms = patch.get("permissions")
    if perms is not None:
        if not isinstance(perms, list):
            raise CatalogError("permissions must be a list")
        unknown = sorted(set(perms) - set(ALL_PERMISSIONS))
        if unknown:
            raise CatalogError("Unknown permissions", details={"permissions": unknown})

    register_id = patch.get("assigned_cash_register_id")
    if register_id is not None and db.session.get(CashRegister, register_id) is None:
        raise CatalogError(f"Register {register_id} not found")

    username = patch.get("username")
    if username is not None:
        q = db.session.query(User.id).filter(User.username == username)
        if user_id is not None:
            q = q.filter(User.id != user_id)
        if q.first() is not None:
            raise CatalogError(f"Username {username!r} already exists")


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.username.asc()).all()


def get_user(user_id: int) -> User:
    return _require(User, user_id, "User")


def create_user(patch: dict) -> User:
    if not patch.get("username"):
        raise CatalogError("username is required")
    _validate_user_patch(patch)
    user = User(permissions=[])
    _apply_patch(user, patch, USER_MUTABLE_FIELDS)
    db.session.add(user)
    db.session.commit()
    return user


def update_user(user_id: int, patch: dict) -> User:
    user = get_user(user_id)
    _validate_user_patch(patch, user_id=user.id)
    _apply_patch(user, patch, USER_MUTABLE_FIELDS)
    db.session.commit()
    return user
