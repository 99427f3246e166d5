# Overview: Service-layer operations for per-location stock; the single write path for quantities.

"""
Stock Service

Every quantity change in the system (invoices, returns, transfers, voids)
goes through apply_stock_delta. Quantities are stored per location only;
Product.stock is the derived sum, so there is exactly one write per movement.

None of these helpers commit: callers run them inside their own unit of work.
"""

from __future__ import annotations

from ..extensions import db
from ..models import Location, Product, ProductStock
from .concurrency import lock_for_update


class StockError(Exception):
    """Raised for stock movement errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def get_primary_location() -> Location:
    """Primary location: flagged is_primary, else the oldest location."""
    location = (
        db.session.query(Location)
        .filter_by(is_primary=True)
        .order_by(Location.id)
        .first()
    )
    if location is None:
        location = db.session.query(Location).order_by(Location.id).first()
    if location is None:
        raise StockError("No locations configured")
    return location


def resolve_location_id(location_id: int | None) -> int:
    """Validate a location id, falling back to the primary location."""
    if location_id is None:
        return get_primary_location().id
    if db.session.get(Location, location_id) is None:
        raise StockError(f"Location {location_id} not found", details={"location_id": location_id})
    return location_id


def get_quantity_on_hand(product_id: int, location_id: int) -> int:
    qty = (
        db.session.query(ProductStock.quantity)
        .filter_by(product_id=product_id, location_id=location_id)
        .scalar()
    )
    return int(qty or 0)


def _locked_stock_row(product: Product, location_id: int) -> ProductStock:
    row = lock_for_update(
        db.session.query(ProductStock).filter_by(product_id=product.id, location_id=location_id)
    ).first()
    if row is None:
        row = ProductStock(product_id=product.id, location_id=location_id, quantity=0)
        product.stock_rows.append(row)
        db.session.flush()
    return row


def apply_stock_delta(
    product: Product,
    location_id: int,
    delta: int,
    *,
    allow_negative: bool = True,
) -> ProductStock:
    """
    Move `delta` units of `product` at `location_id` (negative = out).

    Raises StockError when the move would take the location below zero and
    negative stock is not allowed.
    """
    row = _locked_stock_row(product, location_id)
    new_qty = row.quantity + delta
    if delta < 0 and new_qty < 0 and not allow_negative:
        raise StockError(
            f"Insufficient stock for product {product.id} at location {location_id}",
            details={
                "product_id": product.id,
                "location_id": location_id,
                "on_hand": row.quantity,
                "requested_quantity": -delta,
            },
        )
    row.quantity = new_qty
    return row


def check_stock_available(outgoing: dict) -> None:
    """
    Read-only check that each (product_id, location_id) in `outgoing` can
    release the given quantity without going below zero.

    Same rule as apply_stock_delta with allow_negative=False, without
    locking or writing anything.
    """
    for (product_id, location_id), quantity in sorted(outgoing.items()):
        on_hand = get_quantity_on_hand(product_id, location_id)
        if quantity > 0 and on_hand - quantity < 0:
            raise StockError(
                f"Insufficient stock for product {product_id} at location {location_id}",
                details={
                    "product_id": product_id,
                    "location_id": location_id,
                    "on_hand": on_hand,
                    "requested_quantity": quantity,
                },
            )


def set_initial_stocks(product: Product, stocks: dict) -> None:
    """Seed per-location quantities for a newly created product."""
    for location_id, quantity in (stocks or {}).items():
        location_id = resolve_location_id(int(location_id))
        row = _locked_stock_row(product, location_id)
        row.quantity = int(quantity)
