# Overview: Service-layer checkout engine; cart editing, totals, fiscal call with offline fallback, invoice commit.

"""
Checkout Service - Document-first POS checkout

WHY: A sale must never be lost to a printer outage, but the cashier must
know when one happened and agree to save without a fiscal receipt. The
cart is persisted so that "save offline?" survives between requests.

LIFECYCLE:
1. OPEN: add/remove lines, change quantities, set customer
2. initiate_checkout validates payment, then calls the fiscal device
   (sales only, returns skip the device)
   - device OK -> invoice committed, cart COMPLETED
   - device unreachable / no IP / no document id
     -> cart AWAITING_OFFLINE_CONFIRMATION, payment parked on the cart
   - device OK but the invoice does not save
     -> same parked state, fiscal ids kept on the cart; only confirm is allowed
   Sales are checked against stock before the device is called when
   negative stock is not allowed.
3. confirm_offline_save -> invoice committed (with the kept fiscal ids, if any)
   cancel_offline_save  -> back to OPEN, lines intact

Nothing touches stock or the ledger until invoice_service.commit_invoice
succeeds; the cart is marked COMPLETED only after that.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from ..extensions import db
from ..models import BankAccount, Cart, CartLine, Customer, Invoice, Location, Product, User
from ..permissions import EDIT_PRICE, PROCESS_RETURNS, has_permission
from ..time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_with_retry
from .fiscal_service import FiscalDeviceError, FiscalDocument, build_sale_request, device_for_user
from .invoice_service import InvoiceError, commit_invoice, returned_to_date
from .settings_service import get_settings
from .stock_service import StockError, check_stock_available, resolve_location_id


class CheckoutError(Exception):
    """Raised for checkout validation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class CheckoutNotFound(CheckoutError):
    """Raised when a cart (or a record it needs) does not exist."""


class CheckoutPermissionError(CheckoutError):
    """Raised when the acting user lacks a checkout permission."""


# =============================================================================
# CART / RESULT STATUS CONSTANTS
# =============================================================================

CART_OPEN = "OPEN"
CART_AWAITING_OFFLINE = "AWAITING_OFFLINE_CONFIRMATION"
CART_COMPLETED = "COMPLETED"
CART_CANCELLED = "CANCELLED"

RESULT_COMPLETED = "COMPLETED"
RESULT_OFFLINE_REQUIRED = "OFFLINE_CONFIRMATION_REQUIRED"
RESULT_SAVE_PENDING = "FISCALIZED_SAVE_PENDING"

PAYMENT_METHODS = ("CASH", "CARD", "CREDIT", "MIXED")


@dataclass
class CartTotals:
    subtotal_cents: int
    discount_rate: float
    discount_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_rate": self.discount_rate,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
        }


@dataclass
class CheckoutResult:
    status: str
    cart: Cart
    invoice: Invoice | None = None
    reason: str | None = None
    receipt: dict | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "cart": self.cart.to_dict(),
            "invoice": self.invoice.to_dict() if self.invoice is not None else None,
            "reason": self.reason,
            "receipt": self.receipt,
        }


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# =============================================================================
# TOTALS
# =============================================================================

def compute_totals(lines, customer: Customer | None, *, is_return: bool = False) -> CartTotals:
    """
    subtotal = sum(quantity * price); discount = subtotal * rate / 100
    rounded half-up to the cent; rate is 0 without a customer, for the
    general customer and for returns.
    """
    subtotal = sum(line.quantity * line.price_cents for line in lines)
    rate = 0.0
    if customer is not None and not customer.is_general and not is_return:
        rate = float(customer.discount_rate or 0.0)

    discount = int(
        (Decimal(subtotal) * Decimal(str(rate)) / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    )
    discount = min(max(discount, 0), subtotal)
    return CartTotals(
        subtotal_cents=subtotal,
        discount_rate=rate,
        discount_cents=discount,
        total_cents=subtotal - discount,
    )


def cart_totals(cart_id: int) -> CartTotals:
    cart = get_cart(cart_id)
    return compute_totals(cart.lines, cart.customer, is_return=cart.is_return)


# =============================================================================
# CART EDITING
# =============================================================================

def _require_user(user_id: int | None) -> User:
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None or not user.is_active:
        raise CheckoutPermissionError("Active user required", details={"user_id": user_id})
    return user


def get_cart(cart_id: int) -> Cart:
    cart = db.session.get(Cart, cart_id)
    if cart is None:
        raise CheckoutNotFound("Cart not found", details={"cart_id": cart_id})
    return cart


def _locked_open_cart(cart_id: int) -> Cart:
    cart = lock_for_update(db.session.query(Cart).filter_by(id=cart_id)).first()
    if cart is None:
        raise CheckoutNotFound("Cart not found", details={"cart_id": cart_id})
    if cart.status != CART_OPEN:
        raise CheckoutError(f"Cart is {cart.status}; only OPEN carts can be edited", details={"status": cart.status})
    return cart


def _find_line(cart: Cart, product_id: int) -> CartLine | None:
    for line in cart.lines:
        if line.product_id == product_id:
            return line
    return None


def create_cart(
    user_id: int,
    customer_id: int | None = None,
    location_id: int | None = None,
    parent_invoice_id: int | None = None,
) -> Cart:
    """Open a new cart. A parent_invoice_id opens a return-mode cart."""
    user = _require_user(user_id)
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise CheckoutNotFound("Customer not found", details={"customer_id": customer_id})
    if location_id is not None and db.session.get(Location, location_id) is None:
        raise CheckoutNotFound("Location not found", details={"location_id": location_id})

    is_return = parent_invoice_id is not None
    if is_return:
        if not has_permission(user, PROCESS_RETURNS):
            raise CheckoutPermissionError("Permission denied: process_returns")
        parent = db.session.get(Invoice, parent_invoice_id)
        if parent is None or parent.type != "SALE":
            raise CheckoutError("Returns must reference an existing SALE invoice", details={"parent_invoice_id": parent_invoice_id})
        if parent.status == "VOIDED":
            raise CheckoutError("Cannot return against a voided invoice")
        if customer_id is None:
            customer_id = parent.partner_id
        if location_id is None:
            location_id = parent.location_id

    cart = Cart(
        status=CART_OPEN,
        customer_id=customer_id,
        location_id=location_id,
        is_return=is_return,
        parent_invoice_id=parent_invoice_id,
        created_by_user_id=user.id,
    )
    db.session.add(cart)
    db.session.commit()
    return cart


def _return_line_price(cart: Cart, product_id: int) -> int:
    parent = db.session.get(Invoice, cart.parent_invoice_id)
    for item in parent.items:
        if item.product_id == product_id:
            return item.price_cents
    raise CheckoutError("Product is not on the original invoice", details={"product_id": product_id})


def add_item(cart_id: int, product_id: int, quantity: int = 1) -> Cart:
    """Add a product, or bump the quantity of its existing line."""
    if not _is_int(quantity) or quantity <= 0:
        raise CheckoutError("Quantity must be a positive integer", details={"quantity": quantity})

    def _op():
        cart = _locked_open_cart(cart_id)
        product = db.session.get(Product, product_id)
        if product is None:
            raise CheckoutNotFound("Product not found", details={"product_id": product_id})
        if not product.is_active:
            raise CheckoutError("Product is inactive", details={"product_id": product_id})

        line = _find_line(cart, product.id)
        if line is not None:
            line.quantity += quantity
        else:
            price = _return_line_price(cart, product.id) if cart.is_return else product.sales_price_cents
            cart.lines.append(
                CartLine(product_id=product.id, product_name=product.name, quantity=quantity, price_cents=price)
            )
        db.session.commit()
        return cart

    return run_with_retry(_op)


def update_quantity(cart_id: int, product_id: int, delta: int) -> Cart:
    """Change a line quantity by delta; the quantity never drops below 1."""
    if not _is_int(delta):
        raise CheckoutError("delta must be an integer")

    def _op():
        cart = _locked_open_cart(cart_id)
        line = _find_line(cart, product_id)
        if line is None:
            raise CheckoutNotFound("Product is not in the cart", details={"product_id": product_id})
        line.quantity = max(1, line.quantity + delta)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def update_price(cart_id: int, product_id: int, price_cents: int, user_id: int) -> Cart:
    """Override a line's unit price (requires edit_price)."""
    user = _require_user(user_id)
    if not has_permission(user, EDIT_PRICE):
        raise CheckoutPermissionError("Permission denied: edit_price")
    if not _is_int(price_cents) or price_cents < 0:
        raise CheckoutError("price_cents must be a non-negative integer")

    def _op():
        cart = _locked_open_cart(cart_id)
        if cart.is_return:
            raise CheckoutError("Return prices come from the original invoice")
        line = _find_line(cart, product_id)
        if line is None:
            raise CheckoutNotFound("Product is not in the cart", details={"product_id": product_id})
        line.price_cents = price_cents
        db.session.commit()
        return cart

    return run_with_retry(_op)


def remove_item(cart_id: int, product_id: int) -> Cart:
    def _op():
        cart = _locked_open_cart(cart_id)
        line = _find_line(cart, product_id)
        if line is None:
            raise CheckoutNotFound("Product is not in the cart", details={"product_id": product_id})
        cart.lines.remove(line)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def set_customer(cart_id: int, customer_id: int | None) -> Cart:
    def _op():
        cart = _locked_open_cart(cart_id)
        if customer_id is not None and db.session.get(Customer, customer_id) is None:
            raise CheckoutNotFound("Customer not found", details={"customer_id": customer_id})
        cart.customer_id = customer_id
        db.session.commit()
        return cart

    return run_with_retry(_op)


def cancel_cart(cart_id: int) -> Cart:
    cart = get_cart(cart_id)
    if cart.status not in (CART_OPEN, CART_AWAITING_OFFLINE):
        raise CheckoutError(f"Cannot cancel a {cart.status} cart")
    _refuse_if_fiscalized(cart)
    cart.status = CART_CANCELLED
    cart.pending_payment = None
    cart.pending_reason = None
    db.session.commit()
    return cart


# =============================================================================
# PAYMENT VALIDATION
# =============================================================================

def _resolve_bank(bank_id: int | None, settings) -> int | None:
    bank_id = bank_id if bank_id is not None else settings.default_bank_id
    if bank_id is not None and db.session.get(BankAccount, bank_id) is None:
        raise CheckoutError(f"Bank {bank_id} not found", details={"bank_id": bank_id})
    return bank_id


def validate_payment(
    payment_method: str,
    total_cents: int,
    settings,
    *,
    tendered_cents: int | None = None,
    bank_id: int | None = None,
    cash_cents: int | None = None,
    card_cents: int | None = None,
) -> dict:
    """Return normalized invoice payment fields, or raise CheckoutError."""
    if payment_method not in PAYMENT_METHODS:
        raise CheckoutError(f"Invalid payment method: {payment_method}")

    payment = {"payment_method": payment_method}

    if payment_method == "CASH":
        tendered = total_cents if tendered_cents is None else tendered_cents
        if not _is_int(tendered) or tendered < total_cents:
            raise CheckoutError(
                "Tendered amount is less than the total",
                details={"tendered_amount_cents": tendered, "total_cents": total_cents},
            )
        payment["tendered_amount_cents"] = tendered
        payment["change_amount_cents"] = tendered - total_cents

    elif payment_method == "CARD":
        resolved = _resolve_bank(bank_id, settings)
        if resolved is None:
            raise CheckoutError("Select a bank account for card payments")
        payment["bank_id"] = resolved

    elif payment_method == "MIXED":
        if not _is_int(cash_cents) or not _is_int(card_cents) or cash_cents < 0 or card_cents < 0:
            raise CheckoutError("Split payments require non-negative cash and card amounts")
        tolerance = int(current_app.config.get("SPLIT_TOLERANCE_CENTS", 1))
        if abs(cash_cents + card_cents - total_cents) > tolerance:
            raise CheckoutError(
                "Split amounts must add up to the total",
                details={"cash_amount_cents": cash_cents, "card_amount_cents": card_cents, "total_cents": total_cents},
            )
        if card_cents > 0:
            resolved = _resolve_bank(bank_id, settings)
            if resolved is None:
                raise CheckoutError("Select a bank account for the card part")
            payment["bank_id"] = resolved
        payment["cash_amount_cents"] = cash_cents
        payment["card_amount_cents"] = card_cents

    return payment


# =============================================================================
# CHECKOUT
# =============================================================================

def _return_items(cart: Cart) -> list[dict]:
    """
    Map return-cart lines onto the parent invoice's lines.

    A product sold on several parent lines is spread across them in line
    order, up to what each line still has returnable.
    """
    parent = db.session.get(Invoice, cart.parent_invoice_id)
    items = []
    for line in cart.lines:
        needed = line.quantity
        candidates = [item for item in parent.items if item.product_id == line.product_id]
        if not candidates:
            raise CheckoutError("Product is not on the original invoice", details={"product_id": line.product_id})
        for item in candidates:
            if needed <= 0:
                break
            available = item.quantity - returned_to_date(item.id)
            take = min(needed, max(0, available))
            if take <= 0:
                continue
            items.append({
                "product_id": line.product_id,
                "product_name": line.product_name,
                "quantity": take,
                "return_quantity": take,
                "price_cents": item.price_cents,
                "parent_item_id": item.id,
            })
            needed -= take
        if needed > 0:
            # Let commit_invoice report the cap violation with full details.
            item = candidates[-1]
            items.append({
                "product_id": line.product_id,
                "product_name": line.product_name,
                "quantity": needed,
                "return_quantity": needed,
                "price_cents": item.price_cents,
                "parent_item_id": item.id,
            })
    return items


def _commit_cart(cart: Cart, payment: dict, user: User, *, fiscal_document=None) -> CheckoutResult:
    totals = compute_totals(cart.lines, cart.customer, is_return=cart.is_return)
    if cart.is_return:
        items = _return_items(cart)
    else:
        items = [
            {
                "product_id": line.product_id,
                "product_name": line.product_name,
                "quantity": line.quantity,
                "price_cents": line.price_cents,
            }
            for line in cart.lines
        ]

    data = {
        "type": "SALE_RETURN" if cart.is_return else "SALE",
        "partner_id": cart.customer_id,
        "partner_name": cart.customer.name if cart.customer is not None else "",
        "parent_invoice_id": cart.parent_invoice_id,
        "location_id": cart.location_id,
        "items": items,
        "discount_cents": totals.discount_cents,
        "fiscal_document_id": fiscal_document.document_id if fiscal_document is not None else None,
        "fiscal_short_document_id": fiscal_document.short_document_id if fiscal_document is not None else None,
        **payment,
    }

    cart_id = cart.id
    try:
        invoice = commit_invoice(data, user=user)
    except InvoiceError as exc:
        raise CheckoutError(str(exc), details=exc.details) from exc

    cart = db.session.get(Cart, cart_id)
    cart.status = CART_COMPLETED
    cart.invoice_id = invoice.id
    cart.completed_at = utcnow()
    cart.pending_payment = None
    cart.pending_reason = None
    db.session.commit()

    return CheckoutResult(
        status=RESULT_COMPLETED,
        cart=cart,
        invoice=invoice,
        receipt=build_receipt(invoice, get_settings()),
    )


def _park_for_offline(cart: Cart, payment: dict, reason: str) -> CheckoutResult:
    cart.status = CART_AWAITING_OFFLINE
    cart.pending_payment = payment
    cart.pending_reason = reason[:255]
    db.session.commit()
    return CheckoutResult(status=RESULT_OFFLINE_REQUIRED, cart=cart, reason=reason)


def _park_fiscalized(cart_id: int, payment: dict, fiscal_document, error: CheckoutError) -> CheckoutResult:
    """The device printed a receipt but the invoice did not save; keep the fiscal ids on the cart."""
    current_app.logger.error(
        "Fiscal document %s issued for cart %s but the invoice was not saved: %s",
        fiscal_document.document_id,
        cart_id,
        error,
    )
    cart = db.session.get(Cart, cart_id)
    cart.status = CART_AWAITING_OFFLINE
    cart.pending_payment = payment
    cart.fiscal_document_id = fiscal_document.document_id
    cart.fiscal_short_document_id = fiscal_document.short_document_id
    reason = f"Fiscal receipt {fiscal_document.document_id} issued but the sale was not saved: {error}"
    cart.pending_reason = reason[:255]
    db.session.commit()
    return CheckoutResult(status=RESULT_SAVE_PENDING, cart=cart, reason=reason)


def _check_cart_stock(cart: Cart) -> None:
    """Refuse a sale the invoice commit would refuse, before the device prints anything."""
    try:
        location_id = resolve_location_id(cart.location_id)
        outgoing: dict = {}
        for line in cart.lines:
            key = (line.product_id, location_id)
            outgoing[key] = outgoing.get(key, 0) + line.quantity
        check_stock_available(outgoing)
    except StockError as exc:
        raise CheckoutError(str(exc), details=exc.details) from exc


def initiate_checkout(
    cart_id: int,
    payment_method: str,
    *,
    user_id: int,
    tendered_cents: int | None = None,
    bank_id: int | None = None,
    cash_cents: int | None = None,
    card_cents: int | None = None,
) -> CheckoutResult:
    """
    Validate payment, call the fiscal device (sales only) and commit.

    Returns:
        CheckoutResult COMPLETED with the invoice and receipt, or
        OFFLINE_CONFIRMATION_REQUIRED with the device failure reason.

    Raises:
        CheckoutError: validation failure (nothing changes)
    """
    user = _require_user(user_id)
    cart = get_cart(cart_id)
    if cart.status != CART_OPEN:
        raise CheckoutError(f"Cart is {cart.status}; cannot check out", details={"status": cart.status})
    if not cart.lines:
        raise CheckoutError("Cart is empty")

    settings = get_settings()
    totals = compute_totals(cart.lines, cart.customer, is_return=cart.is_return)
    payment = validate_payment(
        payment_method,
        totals.total_cents,
        settings,
        tendered_cents=tendered_cents,
        bank_id=bank_id,
        cash_cents=cash_cents,
        card_cents=card_cents,
    )

    fiscal_document = None
    if not cart.is_return:
        if not settings.allow_negative_stock:
            _check_cart_stock(cart)
        request = build_sale_request(
            cart.lines,
            payment_method=payment_method,
            total_cents=totals.total_cents,
            customer=cart.customer,
            user=user,
            currency=settings.currency or current_app.config.get("FISCAL_DEFAULT_CURRENCY", "AZN"),
            note=f"Sale cart #{cart.id}",
            cash_cents=payment.get("cash_amount_cents"),
            card_cents=payment.get("card_amount_cents"),
        )
        try:
            with device_for_user(user, settings) as device:
                fiscal_document = device.sale(request)
        except FiscalDeviceError as exc:
            current_app.logger.warning("Fiscal sale failed for cart %s: %s", cart.id, exc)
            return _park_for_offline(cart, payment, str(exc))

    cart_id = cart.id
    try:
        return _commit_cart(cart, payment, user, fiscal_document=fiscal_document)
    except CheckoutError as exc:
        if fiscal_document is None:
            raise
        return _park_fiscalized(cart_id, payment, fiscal_document, exc)


def confirm_offline_save(cart_id: int, user_id: int) -> CheckoutResult:
    """Operator accepted saving without a fiscal receipt."""
    user = _require_user(user_id)
    cart = get_cart(cart_id)
    if cart.status != CART_AWAITING_OFFLINE:
        raise CheckoutError("Cart is not awaiting offline confirmation", details={"status": cart.status})

    current_app.logger.info(
        "Offline save confirmed for cart %s by user %s (reason: %s)",
        cart.id,
        user.username,
        cart.pending_reason,
    )
    payment = dict(cart.pending_payment or {})

    # Lines may not change while parked, but the totals are recomputed.
    totals = compute_totals(cart.lines, cart.customer, is_return=cart.is_return)
    validate_payment(
        payment.get("payment_method"),
        totals.total_cents,
        get_settings(),
        tendered_cents=payment.get("tendered_amount_cents"),
        bank_id=payment.get("bank_id"),
        cash_cents=payment.get("cash_amount_cents"),
        card_cents=payment.get("card_amount_cents"),
    )
    fiscal_document = None
    if cart.fiscal_document_id:
        fiscal_document = FiscalDocument(cart.fiscal_document_id, cart.fiscal_short_document_id)
    return _commit_cart(cart, payment, user, fiscal_document=fiscal_document)


def _refuse_if_fiscalized(cart: Cart) -> None:
    if cart.fiscal_document_id:
        raise CheckoutError(
            "A fiscal receipt was already issued for this cart; it must be saved",
            details={"fiscal_document_id": cart.fiscal_document_id},
        )


def cancel_offline_save(cart_id: int) -> Cart:
    """Back to OPEN with lines intact; nothing else changes."""
    cart = get_cart(cart_id)
    if cart.status != CART_AWAITING_OFFLINE:
        raise CheckoutError("Cart is not awaiting offline confirmation", details={"status": cart.status})
    _refuse_if_fiscalized(cart)
    cart.status = CART_OPEN
    cart.pending_payment = None
    cart.pending_reason = None
    db.session.commit()
    return cart


# =============================================================================
# RECEIPT
# =============================================================================

def build_receipt(invoice: Invoice, settings) -> dict:
    """Printable receipt data; printing itself is the client's job."""
    return {
        "company_name": settings.company_name,
        "company_voen": settings.company_voen,
        "company_phone": settings.company_phone,
        "date": to_utc_z(invoice.date),
        "invoice_number": invoice.document_number,
        "fiscal_short_document_id": invoice.fiscal_short_document_id,
        "customer": invoice.partner_name,
        "lines": [
            {
                "name": item.product_name,
                "quantity": item.effective_quantity,
                "price_cents": item.price_cents,
                "total_cents": item.total_cents,
            }
            for item in invoice.items
        ],
        "subtotal_cents": invoice.subtotal_cents,
        "discount_cents": invoice.discount_cents,
        "total_cents": invoice.total_cents,
        "payment_method": invoice.payment_method,
        "tendered_amount_cents": invoice.tendered_amount_cents,
        "change_amount_cents": invoice.change_amount_cents,
        "currency": settings.currency,
        "footer": "*** RETURN RECEIPT ***" if invoice.is_return else "*** THANK YOU ***",
    }
