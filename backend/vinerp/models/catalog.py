from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Brand(db.Model):
    __tablename__ = "brands"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Unit(db.Model):
    """
    Unit of measure.

    The name feeds the fiscal device "quantity type" classifier
    (kg/liter/meter/area/volume/piece), so keep it human readable.
    """
    __tablename__ = "units"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    short_name = db.Column(db.String(16), nullable=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "short_name": self.short_name}


class Location(db.Model):
    """
    Stock-holding place: a WAREHOUSE or a STORE.

    Exactly one location should be flagged primary; invoices that do not
    name a location post their stock movements there.
    """
    __tablename__ = "locations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    type = db.Column(db.String(16), nullable=False, default="STORE")  # WAREHOUSE, STORE
    is_primary = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "is_primary": self.is_primary,
        }


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN:
    Quantities live only in ProductStock (one row per product/location).
    `stock` is derived by summing those rows, so the aggregate can never
    disagree with the per-location figures.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_barcode", "barcode"),
        db.Index("ix_products_code", "code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    # Authoritative storage in cents
    sales_price_cents = db.Column(db.Integer, nullable=False, default=0)
    purchase_price_cents = db.Column(db.Integer, nullable=False, default=0)

    vat_rate = db.Column(db.Float, nullable=False, default=0.0)
    vat_included = db.Column(db.Boolean, nullable=False, default=True)
    image = db.Column(db.String(512), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    category = db.relationship("Category")
    brand = db.relationship("Brand")
    unit = db.relationship("Unit")
    stock_rows = db.relationship(
        "ProductStock",
        back_populates="product",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def stocks(self) -> dict[int, int]:
        return {row.location_id: row.quantity for row in self.stock_rows}

    @property
    def stock(self) -> int:
        return sum(row.quantity for row in self.stock_rows)

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "barcode": self.barcode,
            "name": self.name,
            "category_id": self.category_id,
            "brand_id": self.brand_id,
            "unit_id": self.unit_id,
            "sales_price_cents": self.sales_price_cents,
            "purchase_price_cents": self.purchase_price_cents,
            "vat_rate": self.vat_rate,
            "vat_included": self.vat_included,
            "image": self.image,
            "is_active": self.is_active,
            "stock": self.stock,
            "stocks": {str(k): v for k, v in self.stocks.items()},
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class ProductStock(db.Model):
    """On-hand quantity of one product at one location."""
    __tablename__ = "product_stocks"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_product_stocks_product_location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", back_populates="stock_rows")
    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
        }


class Customer(db.Model):
    """
    Customer (sales partner).

    balance_cents is the live receivable: credit sales raise it,
    settlements lower it.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(16), nullable=False, default="individual")  # general, individual, corporate
    discount_rate = db.Column(db.Float, nullable=False, default=0.0)  # percent
    due_day = db.Column(db.Integer, nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_general(self) -> bool:
        return self.type == "general"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "discount_rate": self.discount_rate,
            "due_day": self.due_day,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "balance_cents": self.balance_cents,
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    contact_person = db.Column(db.String(255), nullable=True)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)  # payable
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "contact_person": self.contact_person,
            "balance_cents": self.balance_cents,
        }
