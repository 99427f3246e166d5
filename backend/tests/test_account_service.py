"""
Chart of accounts tests.

Covers the additive rollup, every system-link evaluator, the depth limit and
cycle protection on re-parenting.
"""

from datetime import date, datetime

import pytest

from vinerp.services import account_service, invoice_service, ledger_service
from vinerp.services.account_service import AccountError, AccountNotFound


def _account(code, name=None, parent=None, **extra):
    data = {"code": code, "name": name or code, "parent_id": parent.id if parent else None}
    data.update(extra)
    return account_service.create_account(data)


def _sale(user, product, quantity, **extra):
    data = {
        "type": "SALE",
        "items": [{"product_id": product.id, "quantity": quantity, "price_cents": product.sales_price_cents}],
        "payment_method": "CASH",
    }
    data.update(extra)
    return invoice_service.commit_invoice(data, user=user)


# =============================================================================
# ROLLUP
# =============================================================================


class TestRollup:
    def test_parent_includes_all_descendants(self, db_session):
        root = _account("1", manual_balance_cents=50)
        child = _account("1.1", parent=root, manual_balance_cents=30)
        _account("1.1.1", parent=child, manual_balance_cents=20)

        assert account_service.compute_balance(root) == 100
        assert account_service.compute_balance(child) == 50

    def test_levels_follow_parent(self, db_session):
        root = _account("1")
        child = _account("1.1", parent=root)
        grandchild = _account("1.1.1", parent=child)
        assert (root.level, child.level, grandchild.level) == (1, 2, 3)

    def test_balance_sheet_is_nested_and_ordered(self, db_session):
        b = _account("2", manual_balance_cents=5)
        a = _account("1", manual_balance_cents=1)
        _account("1.2", parent=a, manual_balance_cents=2)
        _account("1.1", parent=a, manual_balance_cents=3)

        sheet = account_service.balance_sheet()

        assert [node["code"] for node in sheet] == ["1", "2"]
        assert [c["code"] for c in sheet[0]["children"]] == ["1.1", "1.2"]
        assert sheet[0]["own_balance_cents"] == 1
        assert sheet[0]["balance_cents"] == 6
        assert sheet[1]["id"] == b.id
        assert sheet[1]["children"] == []

    def test_start_after_end_rejected(self, db_session):
        root = _account("1")
        with pytest.raises(AccountError):
            account_service.compute_balance(root, date(2026, 5, 2), date(2026, 5, 1))


# =============================================================================
# SYSTEM LINKS
# =============================================================================


class TestSystemLinks:
    def test_cash_and_register(self, db_session, settings, register, admin):
        ledger_service.add_transaction({
            "type": "INCOME", "category": "Deposit", "amount_cents": 400,
            "source": "CASH_REGISTER", "cash_register_id": register.id,
        }, user=admin)
        ledger_service.add_transaction({
            "type": "INCOME", "category": "Deposit", "amount_cents": 100, "source": "CASH_REGISTER",
        }, user=admin)

        cash = _account("1", system_link="CASH")
        drawer = _account("2", system_link="CASH_REGISTER", system_link_id=register.id)

        assert account_service.compute_balance(cash) == 500
        assert account_service.compute_balance(drawer) == 400

    def test_bank_includes_initial_balance(self, db_session, settings, admin, water, bank):
        bank.initial_balance_cents = 10000
        db_session.commit()
        _sale(admin, water, 3, payment_method="CARD", bank_id=bank.id)

        account = _account("1", system_link="BANK", system_link_id=bank.id)
        assert account_service.compute_balance(account) == 10300

    def test_inventory_from_invoice_history(self, db_session, settings, admin, tomatoes):
        invoice_service.commit_invoice({
            "type": "PURCHASE",
            "items": [{"product_id": tomatoes.id, "quantity": 10, "price_cents": 200}],
            "payment_method": "CASH",
        }, user=admin)
        _sale(admin, tomatoes, 3)

        account = _account("1", system_link="INVENTORY")
        assert account_service.compute_balance(account) == 7 * 200

    def test_expense_is_period_bounded(self, db_session, settings, admin):
        rent = ledger_service.add_transaction({
            "type": "EXPENSE", "category": "Rent", "amount_cents": 700,
            "source": "CASH_REGISTER", "date": datetime(2026, 3, 10, 9, 0),
        }, user=admin)
        ledger_service.add_transaction({
            "type": "EXPENSE", "category": "Rent", "amount_cents": 900,
            "source": "CASH_REGISTER", "date": datetime(2026, 4, 10, 9, 0),
        }, user=admin)
        assert rent.id is not None

        account = _account("5", system_link="EXPENSE")
        assert account_service.compute_balance(account, date(2026, 3, 1), date(2026, 3, 31)) == 700
        assert account_service.compute_balance(account, date(2026, 3, 10), date(2026, 4, 10)) == 1600
        assert account_service.compute_balance(account) == 1600

    def test_sales_total(self, db_session, settings, admin, water):
        _sale(admin, water, 3)
        account = _account("6", system_link="SALES")
        assert account_service.compute_balance(account) == 300

    def test_voided_sale_leaves_sales_and_expense(self, db_session, settings, admin, water):
        ledger_service.add_transaction({
            "type": "EXPENSE", "category": "Rent", "amount_cents": 700, "source": "CASH_REGISTER",
        }, user=admin)
        kept = _sale(admin, water, 1)
        voided_id = _sale(admin, water, 3).id
        sales = _account("6", system_link="SALES")
        expense = _account("5", system_link="EXPENSE")

        invoice_service.void_invoice(voided_id, user=admin, reason="Wrong customer")

        assert account_service.compute_balance(sales) == kept.total_cents
        assert account_service.compute_balance(expense) == 700

        invoice_service.delete_invoice(voided_id, user=admin)

        assert account_service.compute_balance(sales) == kept.total_cents
        assert account_service.compute_balance(expense) == 700

    def test_voided_purchase_leaves_expense(self, db_session, settings, admin, tomatoes):
        purchase = invoice_service.commit_invoice({
            "type": "PURCHASE",
            "items": [{"product_id": tomatoes.id, "quantity": 10, "price_cents": 200}],
            "payment_method": "CASH",
        }, user=admin)
        expense = _account("5", system_link="EXPENSE")
        assert account_service.compute_balance(expense) == 2000

        invoice_service.void_invoice(purchase.id, user=admin, reason="Duplicate entry")

        assert account_service.compute_balance(expense) == 0
        assert account_service.compute_balance(_account("1", system_link="CASH")) == 0

    def test_partner_balances(self, db_session, settings, admin, water, tomatoes, customer, supplier):
        _sale(admin, water, 5, partner_id=customer.id, payment_method="CREDIT")
        invoice_service.commit_invoice({
            "type": "PURCHASE",
            "partner_id": supplier.id,
            "items": [{"product_id": tomatoes.id, "quantity": 2, "price_cents": 200}],
            "payment_method": "CREDIT",
        }, user=admin)

        ar = _account("1", system_link="CUSTOMER_AR")
        one_customer = _account("1.1", parent=ar, system_link="CUSTOMER_AR", system_link_id=customer.id)
        ap = _account("2", system_link="SUPPLIER_AP")

        assert account_service.compute_balance(one_customer) == 500
        assert account_service.compute_balance(ar) == 1000
        assert account_service.compute_balance(ap) == 400

    def test_unknown_link_rejected(self, db_session):
        with pytest.raises(AccountError) as exc:
            _account("1", system_link="PAYROLL")
        assert "CASH" in exc.value.details["allowed"]


# =============================================================================
# TREE MAINTENANCE
# =============================================================================


class TestTreeMaintenance:
    def test_depth_limit_on_create(self, db_session):
        parent = None
        for level in range(1, 8):
            parent = _account(f"L{level}", parent=parent)
        assert parent.level == 7

        with pytest.raises(AccountError):
            _account("L8", parent=parent)

    def test_move_under_descendant_rejected(self, db_session):
        root = _account("1")
        child = _account("1.1", parent=root)
        grandchild = _account("1.1.1", parent=child)

        with pytest.raises(AccountError):
            account_service.update_account(root.id, {"parent_id": grandchild.id})
        assert account_service.get_account(root.id).parent_id is None

    def test_reparent_relevels_subtree(self, db_session):
        a = _account("1")
        b = _account("2")
        b_child = _account("2.1", parent=b)

        account_service.update_account(b.id, {"parent_id": a.id})

        assert account_service.get_account(b.id).level == 2
        assert account_service.get_account(b_child.id).level == 3

    def test_reparent_depth_limit(self, db_session):
        first = None
        for level in range(1, 5):
            first = _account(f"A{level}", parent=first)
        second_root = second = _account("B1")
        for level in range(2, 5):
            second = _account(f"B{level}", parent=second)

        with pytest.raises(AccountError):
            account_service.update_account(second_root.id, {"parent_id": first.id})
        assert account_service.get_account(second.id).level == 4

    def test_duplicate_code_rejected(self, db_session):
        _account("1")
        with pytest.raises(AccountError):
            _account("1")

    def test_delete_requires_leaf(self, db_session):
        root = _account("1")
        child = _account("1.1", parent=root)

        with pytest.raises(AccountError):
            account_service.delete_account(root.id)

        child_id = child.id
        account_service.delete_account(child_id)
        with pytest.raises(AccountNotFound):
            account_service.get_account(child_id)

    def test_suggest_child_code(self, db_session):
        root = _account("3")
        assert account_service.suggest_child_code(root) == "3."
        assert account_service.suggest_child_code(None) == ""
