from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Invoice(db.Model):
    """
    Invoice document: SALE, PURCHASE, SALE_RETURN or PURCHASE_RETURN.

    Committed through invoice_service.commit_invoice, which applies the
    stock deltas and ledger entries in the same DB transaction as the
    invoice row itself.

    RETURNS:
    - parent_invoice_id points at the original invoice of the
      complementary type (SALE_RETURN -> SALE, PURCHASE_RETURN -> PURCHASE).
    - Each return line carries return_quantity and parent_item_id.

    DELETION:
    Only VOIDED invoices may be deleted; void_invoice is the auditable
    reversal of stock and ledger effects.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_type_date", "type", "date"),
        db.Index("ix_invoices_parent", "parent_invoice_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_number = db.Column(db.String(64), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=False, index=True)

    # Partner (customer for sales, supplier for purchases), name denormalized
    partner_type = db.Column(db.String(16), nullable=True)  # CUSTOMER, SUPPLIER
    partner_id = db.Column(db.Integer, nullable=True, index=True)
    partner_name = db.Column(db.String(255), nullable=False, default="")

    date = db.Column(db.DateTime, nullable=False, index=True)

    # Amounts (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    # Payment
    payment_method = db.Column(db.String(16), nullable=False)  # CASH, CARD, CREDIT, MIXED
    bank_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    cash_amount_cents = db.Column(db.Integer, nullable=True)
    card_amount_cents = db.Column(db.Integer, nullable=True)
    tendered_amount_cents = db.Column(db.Integer, nullable=True)
    change_amount_cents = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PAID", index=True)  # PAID, UNPAID, PARTIAL, VOIDED
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    parent_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False)

    # Fiscal device acknowledgement (empty when saved offline)
    fiscal_document_id = db.Column(db.String(128), nullable=True)
    fiscal_short_document_id = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Void audit trail
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        lazy="selectin",
        order_by="InvoiceItem.id",
        cascade="all, delete-orphan",
    )
    parent = db.relationship("Invoice", remote_side=[id], backref=db.backref("returns", lazy=True))
    location = db.relationship("Location")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_return(self) -> bool:
        return self.type in ("SALE_RETURN", "PURCHASE_RETURN")

    @property
    def remaining_cents(self) -> int:
        return self.total_cents - (self.paid_amount_cents or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_number": self.document_number,
            "type": self.type,
            "partner_type": self.partner_type,
            "partner_id": self.partner_id,
            "partner_name": self.partner_name,
            "date": to_utc_z(self.date),
            "items": [item.to_dict() for item in self.items],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "bank_id": self.bank_id,
            "cash_amount_cents": self.cash_amount_cents,
            "card_amount_cents": self.card_amount_cents,
            "tendered_amount_cents": self.tendered_amount_cents,
            "change_amount_cents": self.change_amount_cents,
            "status": self.status,
            "paid_amount_cents": self.paid_amount_cents,
            "parent_invoice_id": self.parent_invoice_id,
            "location_id": self.location_id,
            "fiscal_document_id": self.fiscal_document_id,
            "fiscal_short_document_id": self.fiscal_short_document_id,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "voided_by_user_id": self.voided_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }


class InvoiceItem(db.Model):
    """
    Invoice line.

    return_quantity is only set on return-invoice lines (quantity being
    returned by that document). returned_to_date_quantity is computed on
    original lines by scanning the return lines that point back at them.
    """
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    return_quantity = db.Column(db.Integer, nullable=True)
    parent_item_id = db.Column(db.Integer, db.ForeignKey("invoice_items.id"), nullable=True, index=True)

    invoice = db.relationship("Invoice", back_populates="items")
    product = db.relationship("Product")
    return_lines = db.relationship(
        "InvoiceItem",
        backref=db.backref("parent_item", remote_side=[id]),
        lazy="select",
    )

    @property
    def effective_quantity(self) -> int:
        """Quantity that actually moves stock for this line."""
        return self.return_quantity or self.quantity

    @property
    def returned_to_date_quantity(self) -> int:
        return sum(
            line.return_quantity or 0
            for line in self.return_lines
            if line.invoice is not None and line.invoice.status != "VOIDED"
        )

    @property
    def remaining_returnable_quantity(self) -> int:
        return max(0, self.quantity - self.returned_to_date_quantity)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "total_cents": self.total_cents,
            "return_quantity": self.return_quantity,
            "parent_item_id": self.parent_item_id,
        }
