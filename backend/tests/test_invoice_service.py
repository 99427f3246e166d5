"""
Invoice / stock reconciliation tests.

Verifies:
- Sale and return round-trip on per-location and aggregate stock
- Return cap across partial returns
- Credit settlement status transitions and partner balances
- Atomic rollback with the failing step reported
- Void reversal and void-then-delete policy
"""

import pytest

from conftest import stock_at
from vinerp.models import Customer, DocumentSequence, Invoice, Product, Supplier, Transaction
from vinerp.services import invoice_service, ledger_service
from vinerp.services.invoice_service import InvoiceError, InvoiceNotFound, InvoicePermissionError


def _sale(user, product, quantity, **extra):
    data = {
        "type": "SALE",
        "items": [{"product_id": product.id, "quantity": quantity, "price_cents": product.sales_price_cents}],
        "payment_method": "CASH",
    }
    data.update(extra)
    return invoice_service.commit_invoice(data, user=user)


def _return(user, parent, quantity, **extra):
    item = parent.items[0]
    data = {
        "type": "SALE_RETURN" if parent.type == "SALE" else "PURCHASE_RETURN",
        "parent_invoice_id": parent.id,
        "items": [{
            "product_id": item.product_id,
            "quantity": quantity,
            "return_quantity": quantity,
            "price_cents": item.price_cents,
            "parent_item_id": item.id,
        }],
        "payment_method": "CASH",
    }
    data.update(extra)
    return invoice_service.commit_invoice(data, user=user)


# =============================================================================
# STOCK ROUND-TRIP
# =============================================================================


class TestStockRoundTrip:
    def test_sale_then_full_return_restores_stock(self, db_session, settings, store, admin, water):
        sale = _sale(admin, water, 7)
        assert stock_at(water.id, store.id) == 43
        assert db_session.get(Product, water.id).stock == 43

        _return(admin, sale, 7)
        assert stock_at(water.id, store.id) == 50
        db_session.expire_all()
        assert db_session.get(Product, water.id).stock == 50

    def test_sale_at_named_location(self, db_session, settings, store, warehouse, admin, water):
        invoice_service.commit_invoice({
            "type": "PURCHASE",
            "items": [{"product_id": water.id, "quantity": 10, "price_cents": 60}],
            "payment_method": "CASH",
            "location_id": warehouse.id,
        }, user=admin)

        assert stock_at(water.id, warehouse.id) == 10
        assert stock_at(water.id, store.id) == 50
        db_session.expire_all()
        assert db_session.get(Product, water.id).stock == 60

    def test_insufficient_stock_rolls_back_everything(self, db_session, settings, store, admin, water):
        with pytest.raises(InvoiceError) as exc:
            _sale(admin, water, 60)

        assert exc.value.details["step"] == "apply_stock"
        assert exc.value.details["product_id"] == water.id
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(DocumentSequence).count() == 0
        assert stock_at(water.id, store.id) == 50

    def test_negative_stock_allowed_by_setting(self, db_session, settings, store, admin, water):
        settings.allow_negative_stock = True
        db_session.commit()

        _sale(admin, water, 55)
        assert stock_at(water.id, store.id) == -5

    def test_document_numbers_are_sequential_per_type(self, db_session, settings, admin, water):
        first = _sale(admin, water, 1)
        second = _sale(admin, water, 1)
        ret = _return(admin, first, 1)
        assert (first.document_number, second.document_number) == ("S-000001", "S-000002")
        assert ret.document_number == "SR-000001"


# =============================================================================
# VALIDATION
# =============================================================================


class TestValidation:
    def test_unknown_type(self, db_session, settings, admin, water):
        with pytest.raises(InvoiceError):
            _sale(admin, water, 1, type="GIFT")

    def test_unknown_products_listed(self, db_session, settings, admin, water):
        with pytest.raises(InvoiceError) as exc:
            invoice_service.commit_invoice({
                "type": "SALE",
                "items": [
                    {"product_id": water.id, "quantity": 1, "price_cents": 100},
                    {"product_id": 9999, "quantity": 1, "price_cents": 100},
                ],
                "payment_method": "CASH",
            }, user=admin)
        assert exc.value.details["product_ids"] == [9999]

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True])
    def test_quantity_must_be_positive_integer(self, db_session, settings, admin, water, quantity):
        with pytest.raises(InvoiceError):
            invoice_service.commit_invoice({
                "type": "SALE",
                "items": [{"product_id": water.id, "quantity": quantity, "price_cents": 100}],
                "payment_method": "CASH",
            }, user=admin)

    def test_unknown_location(self, db_session, settings, admin, water):
        with pytest.raises(InvoiceError):
            _sale(admin, water, 1, location_id=4242)

    def test_unknown_partner(self, db_session, settings, admin, water):
        with pytest.raises(InvoiceError):
            _sale(admin, water, 1, partner_id=4242)

    def test_discount_cannot_exceed_subtotal(self, db_session, settings, admin, water):
        with pytest.raises(InvoiceError):
            _sale(admin, water, 1, discount_cents=101)

    def test_returns_require_permission(self, db_session, settings, admin, cashier, water):
        sale = _sale(admin, water, 2)
        with pytest.raises(InvoicePermissionError):
            _return(cashier, sale, 1)

    def test_return_must_match_parent_type(self, db_session, settings, admin, water):
        sale = _sale(admin, water, 2)
        with pytest.raises(InvoiceError):
            _return(admin, sale, 1, type="PURCHASE_RETURN")

    def test_credit_without_partner_is_allowed(self, db_session, settings, admin, water):
        invoice = _sale(admin, water, 2, payment_method="CREDIT")
        assert invoice.status == "UNPAID"
        assert invoice.partner_id is None


# =============================================================================
# RETURN CAP
# =============================================================================


class TestReturnCap:
    def test_partial_returns_never_exceed_original(self, db_session, settings, supervisor, water):
        sale = _sale(supervisor, water, 5)
        item_id = sale.items[0].id

        _return(supervisor, sale, 2)
        _return(supervisor, sale, 2)
        assert invoice_service.remaining_returnable(sale.id)[0]["remaining_quantity"] == 1

        with pytest.raises(InvoiceError) as exc:
            _return(supervisor, sale, 2)
        over = exc.value.details["items"][0]
        assert over == {"parent_item_id": item_id, "requested_quantity": 2, "returnable_quantity": 1}

        _return(supervisor, sale, 1)
        rows = invoice_service.remaining_returnable(sale.id)
        assert rows[0]["returned_to_date_quantity"] == 5
        assert rows[0]["remaining_quantity"] == 0

        with pytest.raises(InvoiceError):
            _return(supervisor, sale, 1)

    def test_voided_return_frees_quantity(self, db_session, settings, admin, water):
        sale = _sale(admin, water, 3)
        ret = _return(admin, sale, 3)
        invoice_service.void_invoice(ret.id, user=admin, reason="keyed wrong")

        assert invoice_service.remaining_returnable(sale.id)[0]["remaining_quantity"] == 3

    def test_return_carries_no_discount(self, db_session, settings, admin, water, customer):
        sale = _sale(admin, water, 10, partner_id=customer.id, discount_cents=100)
        ret = _return(admin, sale, 2, discount_cents=50)
        assert ret.discount_cents == 0
        assert ret.total_cents == 200
        assert ret.partner_id == customer.id

    def test_create_return_from_parent_lines(self, db_session, settings, store, admin, water):
        sale = _sale(admin, water, 4)
        ret = invoice_service.create_return(
            sale.id, [{"parent_item_id": sale.items[0].id, "quantity": 3}], user=admin
        )
        assert ret.type == "SALE_RETURN"
        assert ret.items[0].price_cents == 100
        assert stock_at(water.id, store.id) == 49

    def test_cannot_return_against_voided_invoice(self, db_session, settings, admin, water):
        sale = _sale(admin, water, 2)
        invoice_service.void_invoice(sale.id, user=admin, reason="test")
        with pytest.raises(InvoiceError):
            _return(admin, sale, 1)


# =============================================================================
# CREDIT SETTLEMENT
# =============================================================================


class TestCreditSettlement:
    def test_purchase_credit_partial_then_full(self, db_session, settings, admin, tomatoes, supplier):
        purchase = invoice_service.commit_invoice({
            "type": "PURCHASE",
            "partner_id": supplier.id,
            "items": [{"product_id": tomatoes.id, "quantity": 10, "price_cents": 200}],
            "payment_method": "CREDIT",
        }, user=admin)

        assert purchase.status == "UNPAID"
        assert purchase.paid_amount_cents == 0
        assert db_session.get(Supplier, supplier.id).balance_cents == 2000
        assert db_session.query(Transaction).count() == 0

        invoice = invoice_service.settle_payment(purchase.id, 1000, source="CASH_REGISTER", user=admin)
        assert invoice.status == "PARTIAL"
        assert invoice.paid_amount_cents == 1000
        assert db_session.get(Supplier, supplier.id).balance_cents == 1000

        invoice = invoice_service.settle_payment(purchase.id, 1000, source="CASH_REGISTER", user=admin)
        assert invoice.status == "PAID"
        assert invoice.paid_amount_cents == 2000
        assert db_session.get(Supplier, supplier.id).balance_cents == 0

        payments = db_session.query(Transaction).filter_by(related_invoice_id=purchase.id).all()
        assert [(t.type, t.amount_cents) for t in payments] == [("EXPENSE", 1000), ("EXPENSE", 1000)]

    def test_overpayment_rejected(self, db_session, settings, admin, water, customer):
        sale = _sale(admin, water, 2, partner_id=customer.id, payment_method="CREDIT")
        with pytest.raises(InvoiceError):
            invoice_service.settle_payment(sale.id, 201, source="CASH_REGISTER", user=admin)
        assert db_session.get(Customer, customer.id).balance_cents == 200

    def test_paid_invoice_cannot_be_settled(self, db_session, settings, admin, water):
        sale = _sale(admin, water, 1)
        with pytest.raises(InvoiceError):
            invoice_service.settle_payment(sale.id, 100, source="CASH_REGISTER", user=admin)

    def test_bank_settlement(self, db_session, settings, admin, water, customer, bank):
        sale = _sale(admin, water, 3, partner_id=customer.id, payment_method="CREDIT")
        invoice_service.settle_payment(sale.id, 300, source="BANK", bank_id=bank.id, user=admin)
        assert ledger_service.bank_balance(bank.id) == 300

    def test_credit_return_reduces_balance(self, db_session, settings, admin, water, customer):
        sale = _sale(admin, water, 5, partner_id=customer.id, payment_method="CREDIT")
        ret = _return(admin, sale, 2, payment_method="CREDIT")

        assert ret.status == "PAID"
        assert db_session.get(Customer, customer.id).balance_cents == 300

    def test_settle_missing_invoice(self, db_session, settings, admin):
        with pytest.raises(InvoiceNotFound):
            invoice_service.settle_payment(999, 100, source="CASH_REGISTER", user=admin)


# =============================================================================
# PAYMENT LEDGER
# =============================================================================


class TestPaymentLedger:
    def test_purchase_card_posts_bank_expense(self, db_session, settings, admin, water, bank):
        invoice_service.commit_invoice({
            "type": "PURCHASE",
            "items": [{"product_id": water.id, "quantity": 10, "price_cents": 60}],
            "payment_method": "CARD",
            "bank_id": bank.id,
        }, user=admin)
        tx = db_session.query(Transaction).one()
        assert (tx.type, tx.source, tx.bank_id, tx.amount_cents) == ("EXPENSE", "BANK", bank.id, 600)

    def test_mixed_all_cash_skips_zero_card_part(self, db_session, settings, admin, water):
        _sale(admin, water, 2, payment_method="MIXED", cash_amount_cents=200, card_amount_cents=0)
        tx = db_session.query(Transaction).one()
        assert (tx.source, tx.amount_cents) == ("CASH_REGISTER", 200)


# =============================================================================
# VOID / DELETE
# =============================================================================


class TestVoidAndDelete:
    def test_void_reverses_stock_and_ledger(self, db_session, settings, store, admin, water):
        sale = _sale(admin, water, 3)
        invoice = invoice_service.void_invoice(sale.id, user=admin, reason="customer left")

        assert invoice.status == "VOIDED"
        assert invoice.void_reason == "customer left"
        assert invoice.voided_by_user_id == admin.id
        assert stock_at(water.id, store.id) == 50

        txs = db_session.query(Transaction).filter_by(related_invoice_id=sale.id).order_by(Transaction.id).all()
        assert [(t.type, t.amount_cents) for t in txs] == [("INCOME", 300), ("EXPENSE", 300)]
        assert ledger_service.cash_balance() == 0

    def test_void_undoes_outstanding_credit(self, db_session, settings, admin, tomatoes, supplier):
        purchase = invoice_service.commit_invoice({
            "type": "PURCHASE",
            "partner_id": supplier.id,
            "items": [{"product_id": tomatoes.id, "quantity": 10, "price_cents": 200}],
            "payment_method": "CREDIT",
        }, user=admin)
        invoice_service.settle_payment(purchase.id, 500, source="CASH_REGISTER", user=admin)

        invoice_service.void_invoice(purchase.id, user=admin, reason="duplicate")

        assert db_session.get(Supplier, supplier.id).balance_cents == 0
        assert ledger_service.cash_balance() == 0

    def test_void_requires_permission_and_reason(self, db_session, settings, admin, cashier, water):
        sale = _sale(admin, water, 1)
        with pytest.raises(InvoicePermissionError):
            invoice_service.void_invoice(sale.id, user=cashier, reason="x")
        with pytest.raises(InvoiceError):
            invoice_service.void_invoice(sale.id, user=admin, reason="  ")

    def test_void_blocked_by_open_returns(self, db_session, settings, store, admin, water):
        sale = _sale(admin, water, 5)
        ret = _return(admin, sale, 2)

        with pytest.raises(InvoiceError) as exc:
            invoice_service.void_invoice(sale.id, user=admin, reason="x")
        assert exc.value.details["return_invoice_ids"] == [ret.id]

        invoice_service.void_invoice(ret.id, user=admin, reason="x")
        invoice_service.void_invoice(sale.id, user=admin, reason="x")
        assert stock_at(water.id, store.id) == 50

    def test_void_twice_rejected(self, db_session, settings, admin, water):
        sale = _sale(admin, water, 1)
        invoice_service.void_invoice(sale.id, user=admin, reason="x")
        with pytest.raises(InvoiceError):
            invoice_service.void_invoice(sale.id, user=admin, reason="x")

    def test_delete_requires_void_first(self, db_session, settings, admin, water):
        sale = _sale(admin, water, 1)
        with pytest.raises(InvoiceError):
            invoice_service.delete_invoice(sale.id, user=admin)
        assert db_session.get(Invoice, sale.id) is not None

    def test_delete_voided_keeps_ledger_history(self, db_session, settings, admin, water):
        sale_id = _sale(admin, water, 2).id
        invoice_service.void_invoice(sale_id, user=admin, reason="x")

        invoice_service.delete_invoice(sale_id, user=admin)

        assert db_session.get(Invoice, sale_id) is None
        txs = db_session.query(Transaction).all()
        assert len(txs) == 2
        assert all(t.related_invoice_id is None for t in txs)

    def test_delete_blocked_while_returns_reference_it(self, db_session, settings, admin, water):
        sale = _sale(admin, water, 2)
        ret = _return(admin, sale, 1)
        invoice_service.void_invoice(ret.id, user=admin, reason="x")
        invoice_service.void_invoice(sale.id, user=admin, reason="x")

        with pytest.raises(InvoiceError):
            invoice_service.delete_invoice(sale.id, user=admin)


class TestQueries:
    def test_list_filters_by_type_and_status(self, db_session, settings, admin, water, customer):
        _sale(admin, water, 1)
        credit = _sale(admin, water, 1, partner_id=customer.id, payment_method="CREDIT")

        assert [i.id for i in invoice_service.list_invoices(status="UNPAID")] == [credit.id]
        assert len(invoice_service.list_invoices(invoice_type="SALE")) == 2
        assert invoice_service.list_invoices(invoice_type="PURCHASE") == []

    def test_get_missing_invoice(self, db_session):
        with pytest.raises(InvoiceNotFound):
            invoice_service.get_invoice(12345)
