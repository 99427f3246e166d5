# Overview: Chart of accounts maintenance and the recursive account balance evaluator.

"""
Account Service

An account's balance = its own system-linked value + the balances of its
direct children (additive rollup, recursively).

SYSTEM LINKS:
Each system_link value maps to one evaluator class in SYSTEM_LINKS. The set
is closed: unknown links are rejected on write, never silently read as 0.

DATE SEMANTICS:
- period-bounded evaluators (EXPENSE, SALES) count start <= date <= end
- cumulative evaluators (CASH, CASH_REGISTER, BANK, INVENTORY) count
  everything with date <= end
- CUSTOMER_AR / SUPPLIER_AP read live partner balances
Both bounds are calendar days and inclusive (end is end-of-day).
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from ..extensions import db
from ..models import Account, BankAccount, Customer, Invoice, InvoiceItem, Product, Supplier, Transaction
from ..time_utils import end_of_day, start_of_day
from .ledger_service import signed_sum


class AccountError(Exception):
    """Raised for chart-of-accounts errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class AccountNotFound(AccountError):
    """Raised when an account does not exist."""


def _max_depth() -> int:
    return int(current_app.config.get("MAX_ACCOUNT_DEPTH", 7))


# =============================================================================
# SYSTEM LINK EVALUATORS
# =============================================================================

class SystemLink:
    """Base evaluator: returns an account's own value (cents), without children."""
    code = "NONE"
    period_bounded = False

    def evaluate(self, account: Account, start: datetime, end: datetime) -> int:
        raise NotImplementedError


class ManualBalance(SystemLink):
    code = "NONE"

    def evaluate(self, account, start, end):
        return account.manual_balance_cents or 0


class CashBalance(SystemLink):
    code = "CASH"

    def evaluate(self, account, start, end):
        q = db.session.query(Transaction).filter(
            Transaction.source == "CASH_REGISTER",
            Transaction.date <= end,
        )
        return signed_sum(q)


class CashRegisterBalance(SystemLink):
    """Drawer cash, optionally for one register (system_link_id)."""
    code = "CASH_REGISTER"

    def evaluate(self, account, start, end):
        q = db.session.query(Transaction).filter(
            Transaction.source == "CASH_REGISTER",
            Transaction.date <= end,
        )
        if account.system_link_id is not None:
            q = q.filter(Transaction.cash_register_id == account.system_link_id)
        return signed_sum(q)


class BankBalance(SystemLink):
    code = "BANK"

    def evaluate(self, account, start, end):
        q = db.session.query(Transaction).filter(
            Transaction.source == "BANK",
            Transaction.date <= end,
        )
        banks = db.session.query(BankAccount)
        if account.system_link_id is not None:
            q = q.filter(Transaction.bank_id == account.system_link_id)
            banks = banks.filter(BankAccount.id == account.system_link_id)
        initial = sum(bank.initial_balance_cents or 0 for bank in banks.all())
        return initial + signed_sum(q)


class InventoryValue(SystemLink):
    """
    Stock value at `end`: per product, the running quantity from non-voided
    invoice history (floored at 0) times the purchase price. system_link_id
    narrows to one category.
    """
    code = "INVENTORY"

    SIGN = {"PURCHASE": 1, "SALE_RETURN": 1, "SALE": -1, "PURCHASE_RETURN": -1}

    def evaluate(self, account, start, end):
        effective_qty = func.coalesce(func.nullif(InvoiceItem.return_quantity, 0), InvoiceItem.quantity)
        rows = (
            db.session.query(InvoiceItem.product_id, Invoice.type, func.sum(effective_qty))
            .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
            .filter(Invoice.date <= end, Invoice.status != "VOIDED")
            .group_by(InvoiceItem.product_id, Invoice.type)
            .all()
        )
        quantities: dict[int, int] = defaultdict(int)
        for product_id, inv_type, qty in rows:
            quantities[product_id] += self.SIGN.get(inv_type, 0) * int(qty or 0)

        if not quantities:
            return 0
        products = db.session.query(Product).filter(Product.id.in_(list(quantities)))
        if account.system_link_id is not None:
            products = products.filter(Product.category_id == account.system_link_id)

        total = 0
        for product in products.all():
            total += max(0, quantities[product.id]) * (product.purchase_price_cents or 0)
        return total


def _exclude_reversed_pairs(q):
    """Drop void reversals and the entries they undo; both halves net to zero."""
    reversal = aliased(Transaction)
    reversed_ids = select(reversal.reverses_transaction_id).where(reversal.reverses_transaction_id.is_not(None))
    return q.filter(Transaction.reverses_transaction_id.is_(None), Transaction.id.not_in(reversed_ids))


class ExpenseTotal(SystemLink):
    """EXPENSE transactions in the period, optionally one expense category; voided pairs excluded."""
    code = "EXPENSE"
    period_bounded = True

    def evaluate(self, account, start, end):
        q = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
            Transaction.type == "EXPENSE",
            Transaction.date >= start,
            Transaction.date <= end,
        )
        q = _exclude_reversed_pairs(q)
        if account.system_link_id is not None:
            q = q.filter(Transaction.expense_category_id == account.system_link_id)
        return int(q.scalar() or 0)


class SalesTotal(SystemLink):
    """INCOME transactions categorized SALE/SALES in the period, optionally one partner; voided pairs excluded."""
    code = "SALES"
    period_bounded = True

    def evaluate(self, account, start, end):
        q = db.session.query(func.coalesce(func.sum(Transaction.amount_cents), 0)).filter(
            Transaction.type == "INCOME",
            Transaction.category.in_(("SALE", "SALES")),
            Transaction.date >= start,
            Transaction.date <= end,
        )
        q = _exclude_reversed_pairs(q)
        if account.system_link_id is not None:
            q = q.filter(Transaction.partner_id == account.system_link_id)
        return int(q.scalar() or 0)


class CustomerReceivable(SystemLink):
    code = "CUSTOMER_AR"

    def evaluate(self, account, start, end):
        if account.system_link_id is not None:
            customer = db.session.get(Customer, account.system_link_id)
            return customer.balance_cents if customer is not None else 0
        return int(db.session.query(func.coalesce(func.sum(Customer.balance_cents), 0)).scalar() or 0)


class SupplierPayable(SystemLink):
    code = "SUPPLIER_AP"

    def evaluate(self, account, start, end):
        if account.system_link_id is not None:
            supplier = db.session.get(Supplier, account.system_link_id)
            return supplier.balance_cents if supplier is not None else 0
        return int(db.session.query(func.coalesce(func.sum(Supplier.balance_cents), 0)).scalar() or 0)


SYSTEM_LINKS: dict[str, SystemLink] = {
    cls.code: cls()
    for cls in (
        ManualBalance,
        CashBalance,
        CashRegisterBalance,
        BankBalance,
        InventoryValue,
        ExpenseTotal,
        SalesTotal,
        CustomerReceivable,
        SupplierPayable,
    )
}


# =============================================================================
# EVALUATION
# =============================================================================

def _bounds(start: date | datetime | None, end: date | datetime | None) -> tuple[datetime, datetime]:
    start_dt = start_of_day(start) if start is not None else datetime.min
    end_dt = end_of_day(end) if end is not None else datetime.max
    if start_dt > end_dt:
        raise AccountError("start date is after end date")
    return start_dt, end_dt


def _own_balance(account: Account, start: datetime, end: datetime) -> int:
    link = SYSTEM_LINKS.get(account.system_link or "NONE")
    if link is None:
        raise AccountError(f"Unknown system link: {account.system_link}", details={"account_id": account.id})
    return link.evaluate(account, start, end)


def _balance(account: Account, start: datetime, end: datetime, path: frozenset) -> int:
    if account.id in path:
        raise AccountError("Cycle detected in chart of accounts", details={"account_id": account.id})
    path = path | {account.id}
    return _own_balance(account, start, end) + sum(
        _balance(child, start, end, path) for child in account.children
    )


def compute_balance(account: Account, start_date=None, end_date=None) -> int:
    """Own system-linked value plus all children, in cents."""
    start, end = _bounds(start_date, end_date)
    return _balance(account, start, end, frozenset())


def balance_sheet(start_date=None, end_date=None) -> list[dict]:
    """The whole forest as nested dicts with computed balances, ordered by code."""
    start, end = _bounds(start_date, end_date)

    def _node(account: Account, path: frozenset) -> dict:
        if account.id in path:
            raise AccountError("Cycle detected in chart of accounts", details={"account_id": account.id})
        path = path | {account.id}
        children = [_node(child, path) for child in account.children]
        own = _own_balance(account, start, end)
        return {
            **account.to_dict(),
            "own_balance_cents": own,
            "balance_cents": own + sum(c["balance_cents"] for c in children),
            "children": children,
        }

    roots = (
        db.session.query(Account)
        .filter(Account.parent_id.is_(None))
        .order_by(Account.code.asc())
        .all()
    )
    return [_node(root, frozenset()) for root in roots]


# =============================================================================
# CRUD
# =============================================================================

def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if account is None:
        raise AccountNotFound("Account not found", details={"account_id": account_id})
    return account


def list_accounts() -> list[Account]:
    return db.session.query(Account).order_by(Account.code.asc()).all()


def suggest_child_code(parent: Account | None) -> str:
    return f"{parent.code}." if parent is not None else ""


def _validate_link(system_link: str) -> None:
    if system_link not in SYSTEM_LINKS:
        raise AccountError(
            f"Unknown system link: {system_link}",
            details={"allowed": sorted(SYSTEM_LINKS)},
        )


def _validate_code(code, account_id: int | None = None) -> None:
    if not isinstance(code, str) or not code.strip():
        raise AccountError("Account code is required")
    q = db.session.query(Account.id).filter(Account.code == code.strip())
    if account_id is not None:
        q = q.filter(Account.id != account_id)
    if q.first() is not None:
        raise AccountError(f"Account code {code!r} already exists", details={"code": code})


def _subtree_height(account: Account, path: frozenset = frozenset()) -> int:
    """Levels below account (0 for a leaf)."""
    if account.id in path:
        raise AccountError("Cycle detected in chart of accounts", details={"account_id": account.id})
    path = path | {account.id}
    if not account.children:
        return 0
    return 1 + max(_subtree_height(child, path) for child in account.children)


def _relevel(account: Account, level: int) -> None:
    account.level = level
    for child in account.children:
        _relevel(child, level + 1)


def create_account(data: dict) -> Account:
    _validate_code(data.get("code"))
    if not data.get("name"):
        raise AccountError("Account name is required")
    system_link = data.get("system_link") or "NONE"
    _validate_link(system_link)

    parent = None
    level = 1
    if data.get("parent_id") is not None:
        parent = get_account(data["parent_id"])
        level = parent.level + 1
    if level > _max_depth():
        raise AccountError(
            f"Maximum account depth is {_max_depth()}",
            details={"level": level},
        )

    account = Account(
        code=data["code"].strip(),
        name=data["name"],
        level=level,
        parent_id=parent.id if parent is not None else None,
        system_link=system_link,
        system_link_id=data.get("system_link_id"),
        manual_balance_cents=int(data.get("manual_balance_cents") or 0),
    )
    db.session.add(account)
    db.session.commit()
    return account


def update_account(account_id: int, data: dict) -> Account:
    """
    Edit an account. Re-parenting recomputes the levels of the whole subtree
    and is rejected when it would create a cycle or exceed the depth limit.
    """
    account = get_account(account_id)

    if "code" in data:
        _validate_code(data["code"], account_id=account.id)
    if "name" in data and not data["name"]:
        raise AccountError("Account name is required")
    if "system_link" in data:
        _validate_link(data["system_link"] or "NONE")

    reparent = "parent_id" in data and data["parent_id"] != account.parent_id
    new_parent_id = data.get("parent_id")
    new_level = account.level
    if reparent:
        new_level = 1
        if new_parent_id is not None:
            new_parent = get_account(new_parent_id)
            # Walk up from the new parent: meeting ourselves means a cycle.
            node, seen = new_parent, set()
            while node is not None:
                if node.id == account.id:
                    raise AccountError(
                        "Cannot move an account under its own descendant",
                        details={"account_id": account.id, "parent_id": new_parent_id},
                    )
                if node.id in seen:
                    raise AccountError("Cycle detected in chart of accounts", details={"account_id": node.id})
                seen.add(node.id)
                node = node.parent
            new_level = new_parent.level + 1

        deepest = new_level + _subtree_height(account)
        if deepest > _max_depth():
            raise AccountError(
                f"Maximum account depth is {_max_depth()}",
                details={"level": deepest},
            )

    if "code" in data:
        account.code = data["code"].strip()
    if "name" in data:
        account.name = data["name"]
    if "system_link" in data:
        account.system_link = data["system_link"] or "NONE"
    if "system_link_id" in data:
        account.system_link_id = data["system_link_id"]
    if "manual_balance_cents" in data:
        account.manual_balance_cents = int(data["manual_balance_cents"] or 0)
    if reparent:
        account.parent_id = new_parent_id
        _relevel(account, new_level)

    db.session.commit()
    return account


def delete_account(account_id: int) -> None:
    account = get_account(account_id)
    if account.children:
        raise AccountError("Account has child accounts", details={"account_id": account.id})
    db.session.delete(account)
    db.session.commit()
