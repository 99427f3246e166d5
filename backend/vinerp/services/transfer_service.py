# Overview: Service-layer operations for stock transfers between locations.

"""
Transfer service.

WHY: Moving goods between a warehouse and a store must never create or
destroy stock. Each item is one decrement at the source and one increment
at the target, committed together.

LIFECYCLE:
- commit_transfer: validate, number (T-000001), apply effects
- update_transfer: reverse the old effects and apply the new ones atomically
- delete_transfer: reverse the effects and remove the document
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from vinerp.extensions import db
from vinerp.models import Location, Product, TransferDocument, TransferItem, User
from vinerp.services.concurrency import lock_for_update, run_with_retry, stock_locks
from vinerp.services.document_service import next_document_number
from vinerp.services.settings_service import get_settings
from vinerp.services.stock_service import StockError, apply_stock_delta, get_quantity_on_hand
from vinerp.time_utils import end_of_day, start_of_day, utcnow


class TransferError(Exception):
    """Raised when transfer operations fail."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class TransferNotFound(TransferError):
    """Raised when a transfer does not exist."""


def _validate(data: dict) -> tuple[int, int, list[dict]]:
    source_id = data.get("source_location_id")
    target_id = data.get("target_location_id")
    if source_id is None or target_id is None:
        raise TransferError("Source and target locations are required")
    if source_id == target_id:
        raise TransferError("Cannot transfer to the same location", details={"location_id": source_id})
    for loc_id in (source_id, target_id):
        if db.session.get(Location, loc_id) is None:
            raise TransferError(f"Location {loc_id} not found", details={"location_id": loc_id})

    raw_items = data.get("items") or []
    if not raw_items:
        raise TransferError("Transfer has no items")

    lines = []
    missing = []
    for idx, raw in enumerate(raw_items):
        qty = raw.get("quantity")
        if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
            raise TransferError("Quantity must be a positive integer", details={"line": idx, "quantity": qty})
        product = db.session.get(Product, raw.get("product_id"))
        if product is None:
            missing.append(raw.get("product_id"))
            continue
        lines.append({"product": product, "quantity": qty})
    if missing:
        raise TransferError("Unknown products on transfer", details={"product_ids": missing})
    return source_id, target_id, lines


def _apply(source_id: int, target_id: int, lines, *, direction: int, allow_negative: bool) -> None:
    """direction=1 applies the transfer, -1 reverses it."""
    for line in lines:
        product, qty = line["product"], line["quantity"]
        apply_stock_delta(product, source_id, -direction * qty, allow_negative=allow_negative)
        apply_stock_delta(product, target_id, direction * qty, allow_negative=allow_negative)


def _existing_lines(doc: TransferDocument) -> list[dict]:
    return [{"product": db.session.get(Product, item.product_id), "quantity": item.quantity} for item in doc.items]


def _keys(*pairs) -> list[tuple[int, int]]:
    keys = []
    for source_id, target_id, lines in pairs:
        for line in lines:
            keys.append((line["product"].id, source_id))
            keys.append((line["product"].id, target_id))
    return keys


def _wrap_stock_error(exc: StockError, step: str) -> TransferError:
    db.session.rollback()
    current_app.logger.error("Transfer rolled back at step %s: %s", step, exc)
    return TransferError(str(exc), details={**exc.details, "step": step})


def get_transfer(transfer_id: int) -> TransferDocument:
    doc = db.session.get(TransferDocument, transfer_id)
    if doc is None:
        raise TransferNotFound("Transfer not found", details={"transfer_id": transfer_id})
    return doc


def list_transfers(*, start: datetime | None = None, end: datetime | None = None) -> list[TransferDocument]:
    q = db.session.query(TransferDocument)
    if start is not None:
        q = q.filter(TransferDocument.date >= start_of_day(start))
    if end is not None:
        q = q.filter(TransferDocument.date <= end_of_day(end))
    return q.order_by(TransferDocument.date.desc(), TransferDocument.id.desc()).all()


def commit_transfer(data: dict, *, user: User | None = None) -> TransferDocument:
    """
    Create a transfer and move the stock.

    Args:
        data: source_location_id, target_location_id, items [{product_id, quantity}],
              date?, note?
        user: acting user

    Raises:
        TransferError: validation failure or insufficient source stock
    """
    def _op():
        step = "validate"
        try:
            source_id, target_id, lines = _validate(data)
            settings = get_settings()

            with stock_locks.hold(_keys((source_id, target_id, lines))):
                step = "allocate_number"
                document_number = next_document_number(document_type="TRANSFER", prefix="T")

                step = "write_transfer"
                doc = TransferDocument(
                    document_number=document_number,
                    date=data.get("date") or utcnow(),
                    source_location_id=source_id,
                    target_location_id=target_id,
                    note=data.get("note"),
                    created_by_user_id=user.id if user else None,
                )
                for line in lines:
                    doc.items.append(
                        TransferItem(
                            product_id=line["product"].id,
                            product_name=line["product"].name,
                            quantity=line["quantity"],
                        )
                    )
                db.session.add(doc)
                db.session.flush()

                step = "apply_stock"
                _apply(source_id, target_id, lines, direction=1, allow_negative=settings.allow_negative_stock)

                db.session.commit()
                return doc
        except (OperationalError, StaleDataError):
            raise
        except TransferError:
            db.session.rollback()
            raise
        except StockError as exc:
            raise _wrap_stock_error(exc, step) from exc

    return run_with_retry(_op)


def update_transfer(transfer_id: int, data: dict, *, user: User | None = None) -> TransferDocument:
    """Replace locations/items: old effects reversed, new effects applied, one transaction."""
    def _op():
        step = "validate"
        try:
            doc = lock_for_update(db.session.query(TransferDocument).filter_by(id=transfer_id)).first()
            if doc is None:
                raise TransferNotFound("Transfer not found", details={"transfer_id": transfer_id})

            merged = {
                "source_location_id": data.get("source_location_id", doc.source_location_id),
                "target_location_id": data.get("target_location_id", doc.target_location_id),
                "items": data.get("items")
                if data.get("items") is not None
                else [{"product_id": i.product_id, "quantity": i.quantity} for i in doc.items],
            }
            source_id, target_id, lines = _validate(merged)
            old_lines = _existing_lines(doc)
            settings = get_settings()

            keys = _keys(
                (doc.source_location_id, doc.target_location_id, old_lines),
                (source_id, target_id, lines),
            )
            with stock_locks.hold(keys):
                step = "reverse_stock"
                # Reversal must not fail on its own: the new effects are checked below.
                _apply(doc.source_location_id, doc.target_location_id, old_lines, direction=-1, allow_negative=True)

                step = "apply_stock"
                _apply(source_id, target_id, lines, direction=1, allow_negative=settings.allow_negative_stock)

                step = "write_transfer"
                doc.source_location_id = source_id
                doc.target_location_id = target_id
                if "note" in data:
                    doc.note = data["note"]
                if data.get("date") is not None:
                    doc.date = data["date"]
                doc.items.clear()
                for line in lines:
                    doc.items.append(
                        TransferItem(
                            product_id=line["product"].id,
                            product_name=line["product"].name,
                            quantity=line["quantity"],
                        )
                    )
                step = "check_stock"
                _check_no_negative(keys, settings)

                db.session.commit()
                return doc
        except (OperationalError, StaleDataError):
            raise
        except TransferError:
            db.session.rollback()
            raise
        except StockError as exc:
            raise _wrap_stock_error(exc, step) from exc

    return run_with_retry(_op)


def _check_no_negative(keys, settings) -> None:
    """
    After a reverse+apply pair, no touched (product, location) row may end
    below zero; `keys` covers both the old and the new locations.
    """
    if settings.allow_negative_stock:
        return
    db.session.flush()
    for product_id, location_id in sorted(set(keys)):
        on_hand = get_quantity_on_hand(product_id, location_id)
        if on_hand < 0:
            raise StockError(
                f"Insufficient stock for product {product_id} at location {location_id}",
                details={"product_id": product_id, "location_id": location_id, "on_hand": on_hand},
            )


def delete_transfer(transfer_id: int, *, user: User | None = None) -> None:
    """Reverse the transfer's stock effects and delete it."""
    def _op():
        step = "validate"
        try:
            doc = lock_for_update(db.session.query(TransferDocument).filter_by(id=transfer_id)).first()
            if doc is None:
                raise TransferNotFound("Transfer not found", details={"transfer_id": transfer_id})
            lines = _existing_lines(doc)
            settings = get_settings()

            with stock_locks.hold(_keys((doc.source_location_id, doc.target_location_id, lines))):
                step = "reverse_stock"
                _apply(
                    doc.source_location_id,
                    doc.target_location_id,
                    lines,
                    direction=-1,
                    allow_negative=settings.allow_negative_stock,
                )
                db.session.delete(doc)
                db.session.commit()
        except (OperationalError, StaleDataError):
            raise
        except TransferError:
            db.session.rollback()
            raise
        except StockError as exc:
            raise _wrap_stock_error(exc, step) from exc

    return run_with_retry(_op)
