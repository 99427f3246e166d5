# Overview: Service-layer invoice commit, returns, settlements and voids (stock + ledger reconciliation).

"""
Invoice Service

WHY: An invoice is the one document that moves both goods and money. Its
stock deltas, ledger entries and partner balance changes must land together
or not at all.

DESIGN PRINCIPLES:
- Validate everything before the first write (products, partner, location,
  bank, return caps, split amounts)
- One unit of work per commit: invoice row, items, stock deltas, ledger rows
  and partner balance are committed together
- Touched (product, location) keys are locked in sorted order; stock rows
  are selected FOR UPDATE and carry a version_id
- Failures roll back and surface InvoiceError with details["step"]
- Deletion never hides effects: only VOIDED invoices may be deleted, and
  void_invoice is the auditable reversal

STOCK SIGN:
- SALE, PURCHASE_RETURN: goods leave (-1)
- PURCHASE, SALE_RETURN: goods arrive (+1)
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import BankAccount, Cart, Customer, Invoice, InvoiceItem, Product, Supplier, Transaction, User
from ..permissions import PROCESS_RETURNS, VOID_INVOICES, has_permission
from ..time_utils import end_of_day, start_of_day, utcnow
from .concurrency import lock_for_update, run_with_retry, stock_locks
from .document_service import next_document_number
from .ledger_service import LedgerError, record_transaction
from .settings_service import get_settings
from .stock_service import StockError, apply_stock_delta, resolve_location_id


class InvoiceError(Exception):
    """Raised for invoice operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InvoiceNotFound(InvoiceError):
    """Raised when an invoice does not exist."""


class InvoicePermissionError(InvoiceError):
    """Raised when the acting user lacks an invoice permission."""


# =============================================================================
# INVOICE CONSTANTS
# =============================================================================

INVOICE_TYPES = ("SALE", "PURCHASE", "SALE_RETURN", "PURCHASE_RETURN")
PAYMENT_METHODS = ("CASH", "CARD", "CREDIT", "MIXED")

STATUS_PAID = "PAID"
STATUS_UNPAID = "UNPAID"
STATUS_PARTIAL = "PARTIAL"
STATUS_VOIDED = "VOIDED"

STOCK_SIGN = {
    "SALE": -1,
    "PURCHASE_RETURN": -1,
    "PURCHASE": 1,
    "SALE_RETURN": 1,
}

# Return type -> type its parent must have
PARENT_TYPE = {
    "SALE_RETURN": "SALE",
    "PURCHASE_RETURN": "PURCHASE",
}

LEDGER_TYPE = {
    "SALE": "INCOME",
    "PURCHASE_RETURN": "INCOME",
    "PURCHASE": "EXPENSE",
    "SALE_RETURN": "EXPENSE",
}

PARTNER_TYPE = {
    "SALE": "CUSTOMER",
    "SALE_RETURN": "CUSTOMER",
    "PURCHASE": "SUPPLIER",
    "PURCHASE_RETURN": "SUPPLIER",
}

DOCUMENT_PREFIX = {
    "SALE": "S",
    "PURCHASE": "P",
    "SALE_RETURN": "SR",
    "PURCHASE_RETURN": "PR",
}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _split_tolerance() -> int:
    return int(current_app.config.get("SPLIT_TOLERANCE_CENTS", 1))


# =============================================================================
# LOOKUPS
# =============================================================================

def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise InvoiceNotFound("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(
    *,
    invoice_type: str | None = None,
    status: str | None = None,
    partner_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Invoice]:
    q = db.session.query(Invoice)
    if invoice_type:
        q = q.filter(Invoice.type == invoice_type)
    if status:
        q = q.filter(Invoice.status == status)
    if partner_id is not None:
        q = q.filter(Invoice.partner_id == partner_id)
    if start is not None:
        q = q.filter(Invoice.date >= start_of_day(start))
    if end is not None:
        q = q.filter(Invoice.date <= end_of_day(end))
    return q.order_by(Invoice.date.desc(), Invoice.id.desc()).all()


def returned_to_date(parent_item_id: int, *, exclude_invoice_id: int | None = None) -> int:
    """Sum of return_quantity over non-voided return lines pointing at an original line."""
    q = (
        db.session.query(func.coalesce(func.sum(InvoiceItem.return_quantity), 0))
        .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
        .filter(InvoiceItem.parent_item_id == parent_item_id, Invoice.status != STATUS_VOIDED)
    )
    if exclude_invoice_id is not None:
        q = q.filter(Invoice.id != exclude_invoice_id)
    return int(q.scalar() or 0)


def remaining_returnable(invoice_id: int) -> list[dict]:
    """Per original line: quantity, returned so far and what can still be returned."""
    invoice = get_invoice(invoice_id)
    rows = []
    for item in invoice.items:
        returned = returned_to_date(item.id)
        rows.append({
            "item_id": item.id,
            "product_id": item.product_id,
            "product_name": item.product_name,
            "price_cents": item.price_cents,
            "quantity": item.quantity,
            "returned_to_date_quantity": returned,
            "remaining_quantity": max(0, item.quantity - returned),
        })
    return rows


def _get_partner(partner_type: str | None, partner_id: int | None):
    if partner_id is None or partner_type is None:
        return None
    model = Customer if partner_type == "CUSTOMER" else Supplier
    return lock_for_update(db.session.query(model).filter_by(id=partner_id)).first()


# =============================================================================
# VALIDATION
# =============================================================================

def _resolve_bank_id(bank_id: int | None, settings) -> int | None:
    bank_id = bank_id if bank_id is not None else settings.default_bank_id
    if bank_id is not None and db.session.get(BankAccount, bank_id) is None:
        raise InvoiceError(f"Bank {bank_id} not found", details={"bank_id": bank_id})
    return bank_id


def _validate_payment(data: dict, total_cents: int, settings) -> dict:
    """Normalize payment fields for a method; raises before any write."""
    method = data.get("payment_method")
    if method not in PAYMENT_METHODS:
        raise InvoiceError(f"Invalid payment method: {method}", details={"payment_method": method})

    payment = {
        "payment_method": method,
        "bank_id": None,
        "cash_amount_cents": None,
        "card_amount_cents": None,
        "tendered_amount_cents": data.get("tendered_amount_cents"),
        "change_amount_cents": data.get("change_amount_cents"),
    }

    if method == "CARD":
        bank_id = _resolve_bank_id(data.get("bank_id"), settings)
        if bank_id is None:
            raise InvoiceError("Card payments require a bank account")
        payment["bank_id"] = bank_id

    elif method == "MIXED":
        cash = data.get("cash_amount_cents")
        card = data.get("card_amount_cents")
        if not _is_int(cash) or not _is_int(card) or cash < 0 or card < 0:
            raise InvoiceError("Mixed payments require non-negative cash and card amounts")
        if abs(cash + card - total_cents) > _split_tolerance():
            raise InvoiceError(
                "Split amounts do not match the invoice total",
                details={"cash_amount_cents": cash, "card_amount_cents": card, "total_cents": total_cents},
            )
        if card > 0:
            bank_id = _resolve_bank_id(data.get("bank_id"), settings)
            if bank_id is None:
                raise InvoiceError("Card part of a mixed payment requires a bank account")
            payment["bank_id"] = bank_id
        payment["cash_amount_cents"] = cash
        payment["card_amount_cents"] = card

    elif method == "CASH":
        tendered = data.get("tendered_amount_cents")
        if tendered is not None:
            if not _is_int(tendered) or tendered < total_cents:
                raise InvoiceError(
                    "Tendered amount is less than the total",
                    details={"tendered_amount_cents": tendered, "total_cents": total_cents},
                )
            payment["change_amount_cents"] = tendered - total_cents

    return payment


def _validate_lines(invoice_type: str, raw_items: list) -> list[dict]:
    if not raw_items:
        raise InvoiceError("Invoice has no items")

    lines = []
    missing = []
    for idx, raw in enumerate(raw_items):
        qty = raw.get("quantity")
        price = raw.get("price_cents")
        if not _is_int(qty) or qty <= 0:
            raise InvoiceError("Quantity must be a positive integer", details={"line": idx, "quantity": qty})
        if not _is_int(price) or price < 0:
            raise InvoiceError("price_cents must be a non-negative integer", details={"line": idx, "price_cents": price})

        product = db.session.get(Product, raw.get("product_id"))
        if product is None:
            missing.append(raw.get("product_id"))
            continue

        return_qty = raw.get("return_quantity")
        if invoice_type in PARENT_TYPE:
            # Return lines always move exactly what they return.
            if return_qty is None:
                return_qty = qty
            if not _is_int(return_qty) or return_qty <= 0:
                raise InvoiceError("return_quantity must be a positive integer", details={"line": idx})
            qty = return_qty

        lines.append({
            "product": product,
            "product_name": raw.get("product_name") or product.name,
            "quantity": qty,
            "price_cents": price,
            "return_quantity": return_qty if invoice_type in PARENT_TYPE else None,
            "parent_item_id": raw.get("parent_item_id") if invoice_type in PARENT_TYPE else None,
        })

    if missing:
        raise InvoiceError("Unknown products on invoice", details={"product_ids": missing})
    return lines


def _validate_return(invoice_type: str, parent_id, lines: list[dict]) -> Invoice:
    if parent_id is None:
        raise InvoiceError("Return invoices require parent_invoice_id")
    parent = db.session.get(Invoice, parent_id)
    if parent is None:
        raise InvoiceError("Parent invoice not found", details={"parent_invoice_id": parent_id})
    expected = PARENT_TYPE[invoice_type]
    if parent.type != expected:
        raise InvoiceError(
            f"{invoice_type} must reference a {expected} invoice",
            details={"parent_invoice_id": parent_id, "parent_type": parent.type},
        )
    if parent.status == STATUS_VOIDED:
        raise InvoiceError("Cannot return against a voided invoice", details={"parent_invoice_id": parent_id})

    parent_items = {item.id: item for item in parent.items}
    requested: dict[int, int] = {}
    for line in lines:
        item_id = line["parent_item_id"]
        parent_item = parent_items.get(item_id)
        if parent_item is None:
            raise InvoiceError(
                "Return line does not reference a line of the parent invoice",
                details={"parent_item_id": item_id},
            )
        if parent_item.product_id != line["product"].id:
            raise InvoiceError("Return line product does not match the parent line", details={"parent_item_id": item_id})
        requested[item_id] = requested.get(item_id, 0) + line["return_quantity"]

    over = []
    for item_id, qty in requested.items():
        available = parent_items[item_id].quantity - returned_to_date(item_id)
        if qty > available:
            over.append({"parent_item_id": item_id, "requested_quantity": qty, "returnable_quantity": max(0, available)})
    if over:
        raise InvoiceError("Return quantity exceeds what remains returnable", details={"items": over})
    return parent


# =============================================================================
# COMMIT
# =============================================================================

def _emit_payment_transactions(invoice: Invoice, *, user: User | None, cash_register_id: int | None) -> None:
    """Ledger rows for a settled invoice. MIXED posts its cash and card parts separately."""
    tx_type = LEDGER_TYPE[invoice.type]
    description = f"{invoice.type} {invoice.document_number}"
    common = {
        "tx_type": tx_type,
        "category": invoice.type,
        "related_invoice_id": invoice.id,
        "partner_id": invoice.partner_id,
        "description": description,
        "user": user.username if user else "sys",
        "date": invoice.date,
    }

    if invoice.payment_method == "MIXED":
        # The split may be off by the tolerance; the remainder lands on a
        # part that was actually tendered, never on a bank-less BANK row.
        if not invoice.card_amount_cents or invoice.bank_id is None:
            cash_part = invoice.total_cents
        elif not invoice.cash_amount_cents:
            cash_part = 0
        else:
            cash_part = min(invoice.cash_amount_cents, invoice.total_cents)
        parts = [
            ("CASH_REGISTER", cash_part),
            ("BANK", invoice.total_cents - cash_part),
        ]
    elif invoice.payment_method == "CARD":
        parts = [("BANK", invoice.total_cents)]
    else:
        parts = [("CASH_REGISTER", invoice.total_cents)]

    for source, amount in parts:
        if amount <= 0:
            continue
        record_transaction(
            amount_cents=amount,
            source=source,
            bank_id=invoice.bank_id if source == "BANK" else None,
            cash_register_id=cash_register_id if source == "CASH_REGISTER" else None,
            **common,
        )


def _credit_balance_delta(invoice: Invoice) -> int:
    """Partner balance effect a CREDIT invoice currently carries."""
    if invoice.payment_method != "CREDIT":
        return 0
    if invoice.is_return:
        return -invoice.total_cents
    return invoice.total_cents - (invoice.paid_amount_cents or 0)


def commit_invoice(data: dict, *, user: User | None = None) -> Invoice:
    """
    Validate and commit an invoice with all of its stock and ledger effects.

    Args:
        data: type, items [{product_id, quantity, price_cents,
              return_quantity?, parent_item_id?}], payment_method and payment
              fields, partner_id?, parent_invoice_id?, location_id?,
              discount_cents?, tax_cents?, date?, notes?, fiscal ids
        user: acting user (returns require process_returns)

    Returns:
        The committed Invoice.

    Raises:
        InvoiceError: validation failure or a failed write step
                      (details["step"] names the step)
    """
    invoice_type = data.get("type")
    if invoice_type not in INVOICE_TYPES:
        raise InvoiceError(f"Invalid invoice type: {invoice_type}", details={"type": invoice_type})
    if invoice_type in PARENT_TYPE and not has_permission(user, PROCESS_RETURNS):
        raise InvoicePermissionError("Permission denied: process_returns")

    def _op():
        step = "validate"
        try:
            settings = get_settings()
            lines = _validate_lines(invoice_type, data.get("items") or [])

            parent = None
            if invoice_type in PARENT_TYPE:
                parent = _validate_return(invoice_type, data.get("parent_invoice_id"), lines)

            try:
                location_id = resolve_location_id(data.get("location_id"))
            except StockError as exc:
                raise InvoiceError(str(exc), details=exc.details)

            partner_type = PARTNER_TYPE[invoice_type]
            partner_id = data.get("partner_id")
            if partner_id is None and parent is not None:
                partner_id = parent.partner_id
            partner = None
            if partner_id is not None:
                partner = _get_partner(partner_type, partner_id)
                if partner is None:
                    raise InvoiceError(
                        f"{partner_type.title()} {partner_id} not found",
                        details={"partner_id": partner_id},
                    )

            subtotal = sum(line["quantity"] * line["price_cents"] for line in lines)
            discount = 0 if parent is not None else data.get("discount_cents") or 0
            if not _is_int(discount) or discount < 0 or discount > subtotal:
                raise InvoiceError("discount_cents must be between 0 and the subtotal", details={"discount_cents": discount})
            tax = data.get("tax_cents") or 0
            total = subtotal - discount

            payment = _validate_payment(data, total, settings)

            keys = [(line["product"].id, location_id) for line in lines]
            with stock_locks.hold(keys):
                step = "allocate_number"
                document_number = next_document_number(
                    document_type=invoice_type, prefix=DOCUMENT_PREFIX[invoice_type]
                )

                step = "write_invoice"
                is_credit = payment["payment_method"] == "CREDIT"
                invoice = Invoice(
                    document_number=document_number,
                    type=invoice_type,
                    partner_type=partner_type if partner is not None else None,
                    partner_id=partner.id if partner is not None else None,
                    partner_name=partner.name if partner is not None else (data.get("partner_name") or ""),
                    date=data.get("date") or utcnow(),
                    subtotal_cents=subtotal,
                    discount_cents=discount,
                    tax_cents=tax,
                    total_cents=total,
                    status=STATUS_PAID if (not is_credit or parent is not None) else STATUS_UNPAID,
                    paid_amount_cents=total if (not is_credit or parent is not None) else 0,
                    parent_invoice_id=parent.id if parent is not None else None,
                    location_id=location_id,
                    fiscal_document_id=data.get("fiscal_document_id") or None,
                    fiscal_short_document_id=data.get("fiscal_short_document_id") or None,
                    notes=data.get("notes"),
                    created_by_user_id=user.id if user else None,
                    **payment,
                )
                for line in lines:
                    invoice.items.append(
                        InvoiceItem(
                            product_id=line["product"].id,
                            product_name=line["product_name"],
                            quantity=line["quantity"],
                            price_cents=line["price_cents"],
                            total_cents=line["quantity"] * line["price_cents"],
                            return_quantity=line["return_quantity"],
                            parent_item_id=line["parent_item_id"],
                        )
                    )
                db.session.add(invoice)
                db.session.flush()

                step = "apply_stock"
                sign = STOCK_SIGN[invoice_type]
                for item, line in zip(invoice.items, lines):
                    apply_stock_delta(
                        line["product"],
                        location_id,
                        sign * item.effective_quantity,
                        allow_negative=settings.allow_negative_stock,
                    )

                if is_credit:
                    step = "partner_balance"
                    if partner is not None:
                        partner.balance_cents = (partner.balance_cents or 0) + _credit_balance_delta(invoice)
                else:
                    step = "ledger"
                    register_id = user.assigned_cash_register_id if user else None
                    _emit_payment_transactions(invoice, user=user, cash_register_id=register_id)

                step = "commit"
                db.session.commit()
                return invoice

        except (OperationalError, StaleDataError):
            raise
        except InvoiceError:
            db.session.rollback()
            raise
        except (StockError, LedgerError) as exc:
            db.session.rollback()
            if step != "validate":
                current_app.logger.error("Invoice commit rolled back at step %s: %s", step, exc)
            raise InvoiceError(str(exc), details={**exc.details, "step": step}) from exc
        except Exception as exc:
            db.session.rollback()
            current_app.logger.error("Invoice commit rolled back at step %s: %s", step, exc)
            raise InvoiceError(f"Invoice commit failed at step {step}", details={"step": step}) from exc

    return run_with_retry(_op)


def create_return(
    parent_invoice_id: int,
    lines: list[dict],
    *,
    user: User | None,
    payment_method: str = "CASH",
    bank_id: int | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Return goods against an invoice.

    `lines` are [{parent_item_id, quantity}]; price and product come from the
    parent line. The return type follows the parent (SALE -> SALE_RETURN,
    PURCHASE -> PURCHASE_RETURN).
    """
    parent = get_invoice(parent_invoice_id)
    return_type = {"SALE": "SALE_RETURN", "PURCHASE": "PURCHASE_RETURN"}.get(parent.type)
    if return_type is None:
        raise InvoiceError(f"Cannot return a {parent.type} invoice", details={"parent_invoice_id": parent.id})

    parent_items = {item.id: item for item in parent.items}
    items = []
    for line in lines or []:
        parent_item = parent_items.get(line.get("parent_item_id"))
        if parent_item is None:
            raise InvoiceError("Unknown parent line", details={"parent_item_id": line.get("parent_item_id")})
        qty = line.get("quantity")
        items.append({
            "product_id": parent_item.product_id,
            "product_name": parent_item.product_name,
            "quantity": qty,
            "return_quantity": qty,
            "price_cents": parent_item.price_cents,
            "parent_item_id": parent_item.id,
        })

    return commit_invoice(
        {
            "type": return_type,
            "parent_invoice_id": parent.id,
            "partner_id": parent.partner_id,
            "partner_name": parent.partner_name,
            "location_id": parent.location_id,
            "items": items,
            "payment_method": payment_method,
            "bank_id": bank_id,
            "notes": notes,
        },
        user=user,
    )


# =============================================================================
# SETTLEMENT
# =============================================================================

def settle_payment(
    invoice_id: int,
    amount_cents: int,
    *,
    source: str,
    bank_id: int | None = None,
    user: User | None = None,
) -> Invoice:
    """
    Record a payment against an UNPAID/PARTIAL credit invoice.

    Emits the ledger entry, advances paid_amount/status and reduces the
    partner balance in one transaction.
    """
    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise InvoiceNotFound("Invoice not found", details={"invoice_id": invoice_id})
        if invoice.status not in (STATUS_UNPAID, STATUS_PARTIAL):
            raise InvoiceError(f"Cannot settle an invoice with status {invoice.status}")
        if invoice.type not in ("SALE", "PURCHASE"):
            raise InvoiceError("Only SALE and PURCHASE invoices can be settled")
        if not _is_int(amount_cents) or amount_cents <= 0:
            raise InvoiceError("amount_cents must be a positive integer")
        remaining = invoice.remaining_cents
        if amount_cents > remaining:
            raise InvoiceError(
                "Payment exceeds the remaining balance",
                details={"amount_cents": amount_cents, "remaining_cents": remaining},
            )

        try:
            record_transaction(
                tx_type="INCOME" if invoice.type == "SALE" else "EXPENSE",
                category=invoice.type,
                amount_cents=amount_cents,
                source=source,
                bank_id=bank_id,
                cash_register_id=user.assigned_cash_register_id if (user and source == "CASH_REGISTER") else None,
                related_invoice_id=invoice.id,
                partner_id=invoice.partner_id,
                description=f"Payment for {invoice.document_number}",
                user=user.username if user else "sys",
            )
        except LedgerError as exc:
            db.session.rollback()
            raise InvoiceError(str(exc), details={**exc.details, "step": "ledger"}) from exc

        invoice.paid_amount_cents = (invoice.paid_amount_cents or 0) + amount_cents
        invoice.status = STATUS_PAID if invoice.paid_amount_cents >= invoice.total_cents else STATUS_PARTIAL

        partner = _get_partner(invoice.partner_type, invoice.partner_id)
        if partner is not None:
            partner.balance_cents = (partner.balance_cents or 0) - amount_cents

        db.session.commit()
        return invoice

    try:
        return run_with_retry(_op)
    except InvoiceError:
        db.session.rollback()
        raise


# =============================================================================
# VOID / DELETE
# =============================================================================

def void_invoice(invoice_id: int, *, user: User | None, reason: str) -> Invoice:
    """
    Void an invoice and reverse its effects.

    - stock deltas are reversed at the invoice's location
    - every ledger entry tagged with the invoice gets an opposite entry
    - outstanding credit partner balance is undone
    Rejected while non-voided returns reference the invoice.
    """
    if not has_permission(user, VOID_INVOICES):
        raise InvoicePermissionError("Permission denied: void_invoices")
    if not reason or not str(reason).strip():
        raise InvoiceError("Void reason is required")

    def _op():
        step = "validate"
        try:
            invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
            if invoice is None:
                raise InvoiceNotFound("Invoice not found", details={"invoice_id": invoice_id})
            if invoice.status == STATUS_VOIDED:
                raise InvoiceError("Invoice already voided")

            open_returns = (
                db.session.query(Invoice.id)
                .filter(Invoice.parent_invoice_id == invoice.id, Invoice.status != STATUS_VOIDED)
                .all()
            )
            if open_returns:
                raise InvoiceError(
                    "Invoice has returns; void them first",
                    details={"return_invoice_ids": [r.id for r in open_returns]},
                )

            settings = get_settings()
            keys = [(item.product_id, invoice.location_id) for item in invoice.items]
            with stock_locks.hold(keys):
                step = "reverse_stock"
                sign = STOCK_SIGN[invoice.type]
                for item in invoice.items:
                    apply_stock_delta(
                        item.product,
                        invoice.location_id,
                        -sign * item.effective_quantity,
                        allow_negative=settings.allow_negative_stock,
                    )

                step = "reverse_ledger"
                tagged = (
                    db.session.query(Transaction)
                    .filter(Transaction.related_invoice_id == invoice.id)
                    .order_by(Transaction.id.asc())
                    .all()
                )
                for tx in tagged:
                    record_transaction(
                        tx_type="EXPENSE" if tx.type == "INCOME" else "INCOME",
                        category=tx.category,
                        amount_cents=tx.amount_cents,
                        source=tx.source,
                        bank_id=tx.bank_id,
                        cash_register_id=tx.cash_register_id,
                        related_invoice_id=invoice.id,
                        partner_id=tx.partner_id,
                        reverses_transaction_id=tx.id,
                        description=f"Void {invoice.document_number}",
                        user=user.username if user else "sys",
                    )

                step = "partner_balance"
                delta = _credit_balance_delta(invoice)
                if delta:
                    partner = _get_partner(invoice.partner_type, invoice.partner_id)
                    if partner is not None:
                        partner.balance_cents = (partner.balance_cents or 0) - delta

                invoice.status = STATUS_VOIDED
                invoice.voided_at = utcnow()
                invoice.voided_by_user_id = user.id if user else None
                invoice.void_reason = str(reason).strip()

                step = "commit"
                db.session.commit()
                return invoice

        except (OperationalError, StaleDataError):
            raise
        except InvoiceError:
            db.session.rollback()
            raise
        except (StockError, LedgerError) as exc:
            db.session.rollback()
            current_app.logger.error("Invoice void rolled back at step %s: %s", step, exc)
            raise InvoiceError(str(exc), details={**exc.details, "step": step}) from exc

    return run_with_retry(_op)


def delete_invoice(invoice_id: int, *, user: User | None) -> None:
    """
    Delete a VOIDED invoice.

    Its (reversed) ledger pairs stay as audit history with the invoice
    reference cleared.
    """
    if not has_permission(user, VOID_INVOICES):
        raise InvoicePermissionError("Permission denied: void_invoices")

    invoice = get_invoice(invoice_id)
    if invoice.status != STATUS_VOIDED:
        raise InvoiceError(
            "Only voided invoices can be deleted; void it first",
            details={"invoice_id": invoice.id, "status": invoice.status},
        )
    if db.session.query(Invoice.id).filter(Invoice.parent_invoice_id == invoice.id).first() is not None:
        raise InvoiceError("Invoice is referenced by return invoices", details={"invoice_id": invoice.id})

    db.session.query(Transaction).filter(Transaction.related_invoice_id == invoice.id).update(
        {"related_invoice_id": None}, synchronize_session="fetch"
    )
    db.session.query(Cart).filter(Cart.invoice_id == invoice.id).update(
        {"invoice_id": None}, synchronize_session="fetch"
    )
    db.session.query(Cart).filter(Cart.parent_invoice_id == invoice.id).update(
        {"parent_invoice_id": None}, synchronize_session="fetch"
    )
    db.session.delete(invoice)
    db.session.commit()
