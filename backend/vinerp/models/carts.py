from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Cart(db.Model):
    """
    POS cart (document-first checkout).

    LIFECYCLE:
    - OPEN: lines editable
    - AWAITING_OFFLINE_CONFIRMATION: fiscal device unreachable; validated
      payment details parked in pending_payment until the operator confirms
      an offline save or cancels (back to OPEN, lines intact)
      The same state holds a cart whose fiscal receipt was printed but whose
      invoice could not be saved; fiscal_document_id is then set and the
      cart can only be confirmed (retried), never cancelled
    - COMPLETED: invoice committed (invoice_id set)
    - CANCELLED: abandoned

    Return-mode carts carry parent_invoice_id and produce SALE_RETURN
    invoices without calling the fiscal device.
    """
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(32), nullable=False, default="OPEN", index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    is_return = db.Column(db.Boolean, nullable=False, default=False)
    parent_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)

    pending_payment = db.Column(db.JSON, nullable=True)
    pending_reason = db.Column(db.String(255), nullable=True)
    fiscal_document_id = db.Column(db.String(128), nullable=True)
    fiscal_short_document_id = db.Column(db.String(64), nullable=True)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "CartLine",
        back_populates="cart",
        lazy="selectin",
        order_by="CartLine.id",
        cascade="all, delete-orphan",
    )
    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "customer_id": self.customer_id,
            "location_id": self.location_id,
            "is_return": self.is_return,
            "parent_invoice_id": self.parent_invoice_id,
            "pending_payment": self.pending_payment,
            "pending_reason": self.pending_reason,
            "fiscal_document_id": self.fiscal_document_id,
            "fiscal_short_document_id": self.fiscal_short_document_id,
            "invoice_id": self.invoice_id,
            "lines": [line.to_dict() for line in self.lines],
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "version_id": self.version_id,
        }


class CartLine(db.Model):
    __tablename__ = "cart_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price_cents = db.Column(db.Integer, nullable=False)

    cart = db.relationship("Cart", back_populates="lines")

    @property
    def total_cents(self) -> int:
        return self.quantity * self.price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "total_cents": self.total_cents,
        }
