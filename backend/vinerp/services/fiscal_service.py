# Overview: Client for the fiscal printer bridge (HTTP JSON on port 5544) and sale payload builder.

"""
Fiscal Device Service

The fiscal printer exposes a single JSON endpoint: POST http://{ip}:{port}/
with an envelope {"data": ..., "operation": ..., "username": ..., "password": ...}.

FAILURE MODEL:
- FiscalDeviceUnavailable: no IP configured, timeout, connection error.
  Checkout turns this into an offline-confirmation prompt.
- FiscalDeviceError: the device answered but rejected the operation or
  returned something we cannot read.

The HTTP call happens before any DB write is opened, so a slow device
never holds a row lock.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
from flask import current_app

from ..extensions import db
from ..models import AppSettings, CashRegister, Customer, Product, User


SUCCESS_MESSAGE = "Success operation"
DEFAULT_PRODUCT_CODE = "000000"
GENERAL_CUSTOMER_NAME = "General Customer"
DEFAULT_CASHIER_NAME = "Cashier"

# Device quantity types
QTY_PIECE = 0
QTY_KILOGRAM = 1
QTY_LITER = 2
QTY_METER = 3
QTY_AREA = 4
QTY_VOLUME = 5


class FiscalDeviceError(Exception):
    """Raised when the device rejects an operation or answers with garbage."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class FiscalDeviceUnavailable(FiscalDeviceError):
    """Raised when the device cannot be reached (no IP, timeout, network)."""


def quantity_type(unit_name: str | None) -> int:
    """
    Map a unit name to the device quantity type (case-insensitive substring).

    Rules are tested in device order; "kvadrat metr" therefore classifies
    as meter, matching what the printer firmware expects.
    """
    if not unit_name:
        return QTY_PIECE
    n = unit_name.strip().lower()
    if "kq" in n or "kg" in n or "kilogram" in n:
        return QTY_KILOGRAM
    if "litr" in n or "liter" in n or n == "l":
        return QTY_LITER
    if "metr" in n or "meter" in n or n == "m":
        return QTY_METER
    if "kv" in n or "m2" in n or "sqm" in n:
        return QTY_AREA
    if "kub" in n or "m3" in n or "cbm" in n:
        return QTY_VOLUME
    return QTY_PIECE


def _major(cents: int | None) -> float:
    return round((cents or 0) / 100.0, 2)


@dataclass
class FiscalSaleItem:
    name: str
    code: str
    quantity: int
    sale_price_cents: int
    purchase_price_cents: int
    quantity_type: int = QTY_PIECE

    def to_payload(self) -> dict:
        return {
            "name": self.name,
            "code": self.code,
            "quantity": self.quantity,
            "salePrice": _major(self.sale_price_cents),
            "purchasePrice": _major(self.purchase_price_cents),
            "codeType": 1,
            "quantityType": self.quantity_type,
            "vatType": 1,
        }


@dataclass
class FiscalSaleRequest:
    items: list[FiscalSaleItem]
    cash_cents: int = 0
    card_cents: int = 0
    credit_cents: int = 0
    client_name: str = GENERAL_CUSTOMER_NAME
    cashier_name: str = DEFAULT_CASHIER_NAME
    note: str = ""
    currency: str = "AZN"

    def to_payload(self) -> dict:
        return {
            "cashPayment": _major(self.cash_cents),
            "creditPayment": _major(self.credit_cents),
            "depositPayment": 0.0,
            "cardPayment": _major(self.card_cents),
            "bonusPayment": 0.0,
            "items": [item.to_payload() for item in self.items],
            "clientName": self.client_name,
            "clientTotalBonus": 0.0,
            "clientEarnedBonus": 0.0,
            "clientBonusCardNumber": "",
            "cashierName": self.cashier_name,
            "note": self.note,
            "rrn": "",
            "currency": self.currency,
        }


@dataclass
class FiscalDocument:
    document_id: str
    short_document_id: str | None = None
    raw: dict = field(default_factory=dict, repr=False)


def cashier_name(user: User | None) -> str:
    if user is None:
        return DEFAULT_CASHIER_NAME
    full = " ".join(p for p in (user.first_name, user.last_name) if p)
    return full or user.username


def split_payment_cents(method: str, total_cents: int, *, cash_cents: int | None = None, card_cents: int | None = None) -> dict:
    """Per-channel amounts the device expects for a payment method."""
    amounts = {"cash": 0, "card": 0, "credit": 0}
    if method == "CASH":
        amounts["cash"] = total_cents
    elif method == "CARD":
        amounts["card"] = total_cents
    elif method == "CREDIT":
        amounts["credit"] = total_cents
    elif method == "MIXED":
        amounts["cash"] = cash_cents or 0
        amounts["card"] = card_cents or 0
    return amounts


def build_sale_request(
    lines,
    *,
    payment_method: str,
    total_cents: int,
    customer: Customer | None,
    user: User | None,
    currency: str,
    note: str,
    cash_cents: int | None = None,
    card_cents: int | None = None,
) -> FiscalSaleRequest:
    """
    Build a sale request from cart lines (objects exposing product_id,
    product_name, quantity, price_cents).
    """
    items = []
    for line in lines:
        product = db.session.get(Product, line.product_id)
        unit = product.unit if product is not None else None
        unit_name = (unit.name or unit.short_name) if unit is not None else None
        items.append(
            FiscalSaleItem(
                name=line.product_name,
                code=(product.barcode or product.code) if product is not None else DEFAULT_PRODUCT_CODE,
                quantity=line.quantity,
                sale_price_cents=line.price_cents,
                purchase_price_cents=product.purchase_price_cents if product is not None else 0,
                quantity_type=quantity_type(unit_name),
            )
        )

    amounts = split_payment_cents(payment_method, total_cents, cash_cents=cash_cents, card_cents=card_cents)
    return FiscalSaleRequest(
        items=items,
        cash_cents=amounts["cash"],
        card_cents=amounts["card"],
        credit_cents=amounts["credit"],
        client_name=customer.name if customer is not None else GENERAL_CUSTOMER_NAME,
        cashier_name=cashier_name(user),
        note=note,
        currency=currency or "AZN",
    )


class FiscalDevice:
    """
    Thin wrapper over httpx for one fiscal printer.

    Pass `transport` (e.g. httpx.MockTransport) to drive it without a device.
    """

    def __init__(
        self,
        ip: str,
        *,
        port: int = 5544,
        timeout: float = 3.0,
        username: str = "username",
        password: str = "password",
        transport: httpx.BaseTransport | None = None,
    ):
        if not ip:
            raise FiscalDeviceUnavailable("Fiscal device IP is not configured")
        self.ip = ip
        self.url = f"http://{ip}:{port}/"
        self.username = username
        self.password = password
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _post(self, envelope: dict) -> dict:
        operation = envelope.get("operation")
        try:
            response = self.client.post(
                self.url,
                json=envelope,
                headers={"Content-Type": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise FiscalDeviceUnavailable(
                "Fiscal device timed out",
                details={"ip": self.ip, "operation": operation},
            ) from exc
        except httpx.TransportError as exc:
            raise FiscalDeviceUnavailable(
                f"Fiscal device connection failed: {exc}",
                details={"ip": self.ip, "operation": operation},
            ) from exc

        try:
            result = response.json()
        except ValueError as exc:
            raise FiscalDeviceError(
                "Fiscal device returned a non-JSON response",
                details={"ip": self.ip, "operation": operation, "status_code": response.status_code},
            ) from exc
        if not isinstance(result, dict):
            raise FiscalDeviceError("Fiscal device returned an unexpected payload", details={"operation": operation})
        return result

    def _envelope(self, operation: str, data: dict, **extra) -> dict:
        envelope = {
            "data": data,
            "operation": operation,
            "username": self.username,
            "password": self.password,
        }
        envelope.update(extra)
        return envelope

    def sale(self, request: FiscalSaleRequest) -> FiscalDocument:
        result = self._post(self._envelope("sale", request.to_payload()))
        data = result.get("data") or {}
        document_id = data.get("document_id") if isinstance(data, dict) else None
        if not document_id:
            raise FiscalDeviceError(
                result.get("message") or "Fiscal device did not return a document id",
                details={"operation": "sale", "code": result.get("code")},
            )
        return FiscalDocument(
            document_id=str(document_id),
            short_document_id=str(data["short_document_id"]) if data.get("short_document_id") is not None else None,
            raw=result,
        )

    def open_shift(self, cashier: str) -> dict:
        result = self._post(self._envelope("openShift", {"sum": 0.0}, cashierName=cashier))
        if result.get("code") != "0" or result.get("message") != SUCCESS_MESSAGE:
            raise FiscalDeviceError(
                result.get("message") or "Open shift failed",
                details={"operation": "openShift", "code": result.get("code")},
            )
        return result

    def close_shift(self, cashier: str) -> dict:
        return self._simple("closeShift", cashier)

    def get_x_report(self, cashier: str) -> dict:
        return self._simple("getXReport", cashier)

    def _simple(self, operation: str, cashier: str) -> dict:
        result = self._post(self._envelope(operation, {"cashierName": cashier}))
        if result.get("message") != SUCCESS_MESSAGE:
            raise FiscalDeviceError(
                result.get("message") or f"{operation} failed",
                details={"operation": operation, "code": result.get("code")},
            )
        return result


def resolve_device_ip(user: User | None, settings: AppSettings | None) -> str | None:
    """Assigned register IP, else the settings IP, else the first register with an IP."""
    if user is not None and user.assigned_cash_register_id:
        register = db.session.get(CashRegister, user.assigned_cash_register_id)
        if register is not None and register.ip_address:
            return register.ip_address
    if settings is not None and settings.fiscal_device_ip:
        return settings.fiscal_device_ip
    register = (
        db.session.query(CashRegister)
        .filter(CashRegister.ip_address.isnot(None), CashRegister.ip_address != "")
        .order_by(CashRegister.id.asc())
        .first()
    )
    return register.ip_address if register is not None else None


def device_for_user(user: User | None, settings: AppSettings | None) -> FiscalDevice:
    """Build a FiscalDevice from app config and the resolved IP (raises if none)."""
    ip = resolve_device_ip(user, settings)
    if not ip:
        raise FiscalDeviceUnavailable("Fiscal device IP is not configured")
    cfg = current_app.config
    return FiscalDevice(
        ip,
        port=cfg.get("FISCAL_DEVICE_PORT", 5544),
        timeout=cfg.get("FISCAL_DEVICE_TIMEOUT", 3.0),
        username=cfg.get("FISCAL_DEVICE_USERNAME", "username"),
        password=cfg.get("FISCAL_DEVICE_PASSWORD", "password"),
        transport=cfg.get("FISCAL_DEVICE_TRANSPORT"),
    )


def run_shift_operation(operation: str, user: User | None, settings: AppSettings | None) -> dict:
    """open_shift / close_shift / x_report for the user's device."""
    handlers = {
        "open_shift": FiscalDevice.open_shift,
        "close_shift": FiscalDevice.close_shift,
        "x_report": FiscalDevice.get_x_report,
    }
    handler = handlers.get(operation)
    if handler is None:
        raise FiscalDeviceError(f"Unknown shift operation: {operation}")

    try:
        with device_for_user(user, settings) as device:
            return handler(device, cashier_name(user))
    except FiscalDeviceError as exc:
        current_app.logger.warning("Fiscal %s failed: %s", operation, exc)
        raise
