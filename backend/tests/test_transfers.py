"""
Stock transfer tests.

Transfers move goods between locations: total stock is conserved, edits
reverse then re-apply, deletes reverse.
"""

import pytest

from conftest import stock_at
from vinerp.models import Location, Product, TransferDocument
from vinerp.services import invoice_service, transfer_service
from vinerp.services.transfer_service import TransferError, TransferNotFound


def _move(user, source, target, *lines):
    return transfer_service.commit_transfer({
        "source_location_id": source.id,
        "target_location_id": target.id,
        "items": [{"product_id": p.id, "quantity": q} for p, q in lines],
        "note": "restock",
    }, user=user)


def _total(session, product_id):
    session.expire_all()
    return session.get(Product, product_id).stock


class TestCommitTransfer:
    def test_moves_stock_and_conserves_total(self, db_session, settings, store, warehouse, admin, water, tomatoes):
        doc = _move(admin, store, warehouse, (water, 10), (tomatoes, 4))

        assert doc.document_number == "T-000001"
        assert [i.quantity for i in doc.items] == [10, 4]
        assert stock_at(water.id, store.id) == 40
        assert stock_at(water.id, warehouse.id) == 10
        assert stock_at(tomatoes.id, warehouse.id) == 4
        assert _total(db_session, water.id) == 50
        assert _total(db_session, tomatoes.id) == 20

    def test_same_location_rejected(self, db_session, settings, store, admin, water):
        with pytest.raises(TransferError):
            _move(admin, store, store, (water, 1))

    def test_insufficient_source_stock(self, db_session, settings, store, warehouse, admin, water):
        with pytest.raises(TransferError) as exc:
            _move(admin, store, warehouse, (water, 51))

        assert exc.value.details["step"] == "apply_stock"
        assert db_session.query(TransferDocument).count() == 0
        assert stock_at(water.id, store.id) == 50
        assert stock_at(water.id, warehouse.id) == 0

    def test_unknown_product(self, db_session, settings, store, warehouse, admin):
        with pytest.raises(TransferError) as exc:
            transfer_service.commit_transfer({
                "source_location_id": store.id,
                "target_location_id": warehouse.id,
                "items": [{"product_id": 777, "quantity": 1}],
            }, user=admin)
        assert exc.value.details["product_ids"] == [777]

    def test_empty_transfer(self, db_session, settings, store, warehouse, admin):
        with pytest.raises(TransferError):
            transfer_service.commit_transfer({
                "source_location_id": store.id,
                "target_location_id": warehouse.id,
                "items": [],
            }, user=admin)


class TestUpdateTransfer:
    def test_edit_reverses_then_applies(self, db_session, settings, store, warehouse, admin, water):
        doc = _move(admin, store, warehouse, (water, 10))

        transfer_service.update_transfer(doc.id, {"items": [{"product_id": water.id, "quantity": 5}]}, user=admin)

        assert stock_at(water.id, store.id) == 45
        assert stock_at(water.id, warehouse.id) == 5
        assert _total(db_session, water.id) == 50

    def test_swap_direction_needs_stock_at_new_source(self, db_session, settings, store, warehouse, admin, water):
        doc = _move(admin, store, warehouse, (water, 10))

        # Reversed, the warehouse holds nothing to send back.
        with pytest.raises(TransferError):
            transfer_service.update_transfer(doc.id, {
                "source_location_id": warehouse.id,
                "target_location_id": store.id,
            }, user=admin)
        assert stock_at(water.id, store.id) == 40
        assert stock_at(water.id, warehouse.id) == 10

    def test_retarget_checks_the_old_target(self, db_session, settings, store, warehouse, admin, water):
        depot = Location(name="Depot", type="WAREHOUSE", is_primary=False)
        db_session.add(depot)
        db_session.commit()
        doc = _move(admin, store, warehouse, (water, 5))
        invoice_service.commit_invoice({
            "type": "SALE",
            "location_id": warehouse.id,
            "items": [{"product_id": water.id, "quantity": 5, "price_cents": 100}],
            "payment_method": "CASH",
        }, user=admin)

        # The goods already left the warehouse; pulling them back would take it below zero.
        with pytest.raises(TransferError) as exc:
            transfer_service.update_transfer(doc.id, {"target_location_id": depot.id}, user=admin)

        assert exc.value.details["step"] == "check_stock"
        assert exc.value.details["location_id"] == warehouse.id
        assert stock_at(water.id, warehouse.id) == 0
        assert stock_at(water.id, depot.id) == 0
        assert stock_at(water.id, store.id) == 45
        db_session.expire_all()
        assert db_session.get(TransferDocument, doc.id).target_location_id == warehouse.id

    def test_retarget_moves_stock(self, db_session, settings, store, warehouse, admin, water):
        depot = Location(name="Depot", type="WAREHOUSE", is_primary=False)
        db_session.add(depot)
        db_session.commit()
        doc = _move(admin, store, warehouse, (water, 5))

        transfer_service.update_transfer(doc.id, {"target_location_id": depot.id}, user=admin)

        assert stock_at(water.id, warehouse.id) == 0
        assert stock_at(water.id, depot.id) == 5
        assert stock_at(water.id, store.id) == 45

    def test_failed_edit_leaves_document_untouched(self, db_session, settings, store, warehouse, admin, water):
        doc = _move(admin, store, warehouse, (water, 10))

        with pytest.raises(TransferError):
            transfer_service.update_transfer(
                doc.id, {"items": [{"product_id": water.id, "quantity": 60}]}, user=admin
            )

        db_session.expire_all()
        assert [i.quantity for i in db_session.get(TransferDocument, doc.id).items] == [10]
        assert stock_at(water.id, store.id) == 40
        assert stock_at(water.id, warehouse.id) == 10

    def test_missing_transfer(self, db_session, settings, admin):
        with pytest.raises(TransferNotFound):
            transfer_service.update_transfer(404, {}, user=admin)


class TestDeleteTransfer:
    def test_delete_reverses_stock(self, db_session, settings, store, warehouse, admin, water):
        doc = _move(admin, store, warehouse, (water, 10))
        doc_id = doc.id

        transfer_service.delete_transfer(doc_id, user=admin)

        assert db_session.get(TransferDocument, doc_id) is None
        assert stock_at(water.id, store.id) == 50
        assert stock_at(water.id, warehouse.id) == 0

    def test_delete_blocked_when_target_stock_was_sold(self, db_session, settings, store, warehouse, admin, water):
        doc = _move(admin, store, warehouse, (water, 10))
        invoice_service.commit_invoice({
            "type": "SALE",
            "location_id": warehouse.id,
            "items": [{"product_id": water.id, "quantity": 8, "price_cents": 100}],
            "payment_method": "CASH",
        }, user=admin)

        with pytest.raises(TransferError) as exc:
            transfer_service.delete_transfer(doc.id, user=admin)

        assert exc.value.details["step"] == "reverse_stock"
        assert stock_at(water.id, warehouse.id) == 2
        assert db_session.get(TransferDocument, doc.id) is not None

    def test_list_newest_first(self, db_session, settings, store, warehouse, admin, water):
        first = _move(admin, store, warehouse, (water, 1))
        second = _move(admin, store, warehouse, (water, 1))
        assert [d.id for d in transfer_service.list_transfers()] == [second.id, first.id]
