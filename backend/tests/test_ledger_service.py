"""
Ledger service tests: manual entries, invoice ownership, balances.
"""

from datetime import date, datetime

import pytest

from vinerp.models import Transaction
from vinerp.services import invoice_service, ledger_service
from vinerp.services.ledger_service import LedgerError, LedgerPermissionError


def _entry(user, **fields):
    data = {"type": "EXPENSE", "category": "Utilities", "amount_cents": 1500, "source": "CASH_REGISTER"}
    data.update(fields)
    return ledger_service.add_transaction(data, user=user)


class TestManualEntries:
    def test_add_and_list(self, db_session, admin):
        tx = _entry(admin, description="Electricity")
        assert tx.user == "admin"
        assert [t.id for t in ledger_service.list_transactions(tx_type="EXPENSE")] == [tx.id]
        assert ledger_service.list_transactions(tx_type="INCOME") == []

    @pytest.mark.parametrize("fields", [
        {"type": "REFUND"},
        {"source": "SAFE"},
        {"amount_cents": -5},
        {"amount_cents": 10.5},
        {"source": "BANK"},
        {"category": ""},
        {"expense_category_id": 999},
    ])
    def test_invalid_entries(self, db_session, admin, fields):
        with pytest.raises(LedgerError):
            _entry(admin, **fields)
        assert db_session.query(Transaction).count() == 0

    def test_update_entry(self, db_session, admin, bank):
        tx = _entry(admin)
        ledger_service.update_transaction(tx.id, {"source": "BANK", "bank_id": bank.id, "amount_cents": 2000})
        assert ledger_service.bank_balance(bank.id) == -2000
        assert ledger_service.cash_balance() == 0

    def test_delete_requires_permission(self, db_session, admin, cashier):
        tx = _entry(admin)
        with pytest.raises(LedgerPermissionError):
            ledger_service.delete_transaction(tx.id, user=cashier)

        tx_id = tx.id
        ledger_service.delete_transaction(tx_id, user=admin)
        with pytest.raises(LedgerError):
            ledger_service.get_transaction(tx_id)


class TestInvoiceOwnedEntries:
    def test_cannot_edit_or_delete_invoice_entries(self, db_session, settings, admin, water):
        sale = invoice_service.commit_invoice({
            "type": "SALE",
            "items": [{"product_id": water.id, "quantity": 2, "price_cents": 100}],
            "payment_method": "CASH",
        }, user=admin)
        tx = ledger_service.list_transactions(related_invoice_id=sale.id)[0]

        with pytest.raises(LedgerError):
            ledger_service.update_transaction(tx.id, {"amount_cents": 1})
        with pytest.raises(LedgerError):
            ledger_service.delete_transaction(tx.id, user=admin)
        assert ledger_service.cash_balance() == 200

    def test_reversal_pair_stays_locked_after_invoice_delete(self, db_session, settings, admin, water):
        sale_id = invoice_service.commit_invoice({
            "type": "SALE",
            "items": [{"product_id": water.id, "quantity": 2, "price_cents": 100}],
            "payment_method": "CASH",
        }, user=admin).id
        invoice_service.void_invoice(sale_id, user=admin, reason="Test sale")
        invoice_service.delete_invoice(sale_id, user=admin)

        original, reversal = ledger_service.list_transactions()[::-1]
        assert reversal.reverses_transaction_id == original.id
        assert original.related_invoice_id is None

        for tx in (original, reversal):
            with pytest.raises(LedgerError):
                ledger_service.update_transaction(tx.id, {"amount_cents": 1})
            with pytest.raises(LedgerError):
                ledger_service.delete_transaction(tx.id, user=admin)
        assert ledger_service.cash_balance() == 0


class TestBalances:
    def test_bank_balance_and_as_of(self, db_session, admin, bank):
        bank.initial_balance_cents = 5000
        db_session.commit()
        _entry(admin, type="INCOME", source="BANK", bank_id=bank.id, amount_cents=1000, date=datetime(2026, 1, 5, 10))
        _entry(admin, type="EXPENSE", source="BANK", bank_id=bank.id, amount_cents=300, date=datetime(2026, 2, 5, 10))

        assert ledger_service.bank_balance(bank.id) == 5700
        assert ledger_service.bank_balance(bank.id, as_of=date(2026, 1, 31)) == 6000
        assert ledger_service.bank_balances()[0]["balance_cents"] == 5700

    def test_cash_balance_per_register(self, db_session, admin, register):
        _entry(admin, type="INCOME", amount_cents=800, cash_register_id=register.id)
        _entry(admin, type="EXPENSE", amount_cents=300)

        assert ledger_service.cash_balance() == 500
        assert ledger_service.cash_balance(cash_register_id=register.id) == 800

    def test_unknown_bank(self, db_session):
        with pytest.raises(LedgerError):
            ledger_service.bank_balance(404)
