# Overview: Service-layer operations for the cash/bank ledger.

"""
Ledger Service

Transactions are money movements against the cash register or a bank
account. Invoice-driven entries are written by invoice_service through
record_transaction inside the invoice's own unit of work; manual entries
(expenses, owner deposits, ...) come in through add_transaction.

INVARIANTS:
- amount_cents >= 0, direction is carried by type (INCOME / EXPENSE)
- BANK entries always name a bank account
- entries tied to an invoice (related_invoice_id) are owned by that invoice
  and cannot be edited or deleted directly; void the invoice instead
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func

from ..extensions import db
from ..models import BankAccount, CashRegister, ExpenseCategory, Transaction, User
from ..permissions import DELETE_TRANSACTIONS, has_permission
from ..time_utils import end_of_day, start_of_day, utcnow


class LedgerError(Exception):
    """Raised for ledger validation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class LedgerPermissionError(LedgerError):
    """Raised when the acting user lacks a ledger permission."""


TRANSACTION_TYPES = {"INCOME", "EXPENSE"}
TRANSACTION_SOURCES = {"CASH_REGISTER", "BANK"}
MUTABLE_FIELDS = {
    "date",
    "type",
    "category",
    "expense_category_id",
    "partner_id",
    "amount_cents",
    "description",
    "source",
    "bank_id",
    "cash_register_id",
}


def _validate(
    *,
    tx_type: str,
    source: str,
    amount_cents,
    bank_id: int | None,
    cash_register_id: int | None,
    expense_category_id: int | None,
) -> None:
    if tx_type not in TRANSACTION_TYPES:
        raise LedgerError(f"Invalid transaction type: {tx_type}")
    if source not in TRANSACTION_SOURCES:
        raise LedgerError(f"Invalid transaction source: {source}")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents < 0:
        raise LedgerError("amount_cents must be a non-negative integer", details={"amount_cents": amount_cents})
    if source == "BANK":
        if bank_id is None:
            raise LedgerError("Bank transactions require bank_id")
        if db.session.get(BankAccount, bank_id) is None:
            raise LedgerError(f"Bank {bank_id} not found", details={"bank_id": bank_id})
    if cash_register_id is not None and db.session.get(CashRegister, cash_register_id) is None:
        raise LedgerError(f"Register {cash_register_id} not found")
    if expense_category_id is not None and db.session.get(ExpenseCategory, expense_category_id) is None:
        raise LedgerError(f"Expense category {expense_category_id} not found")


def record_transaction(
    *,
    tx_type: str,
    category: str,
    amount_cents: int,
    source: str,
    bank_id: int | None = None,
    cash_register_id: int | None = None,
    related_invoice_id: int | None = None,
    partner_id: int | None = None,
    expense_category_id: int | None = None,
    reverses_transaction_id: int | None = None,
    description: str = "",
    user: str = "sys",
    date: datetime | None = None,
) -> Transaction:
    """
    Validate and stage a ledger entry in the current session.

    Does NOT commit: callers own the unit of work.
    """
    _validate(
        tx_type=tx_type,
        source=source,
        amount_cents=amount_cents,
        bank_id=bank_id,
        cash_register_id=cash_register_id,
        expense_category_id=expense_category_id,
    )
    tx = Transaction(
        date=date or utcnow(),
        type=tx_type,
        category=category,
        expense_category_id=expense_category_id,
        related_invoice_id=related_invoice_id,
        partner_id=partner_id,
        amount_cents=amount_cents,
        description=description or "",
        source=source,
        bank_id=bank_id if source == "BANK" else None,
        cash_register_id=cash_register_id if source == "CASH_REGISTER" else None,
        reverses_transaction_id=reverses_transaction_id,
        user=user or "sys",
    )
    db.session.add(tx)
    return tx


def add_transaction(data: dict, *, user: User | None = None) -> Transaction:
    """Create a manual ledger entry and commit it."""
    if not data.get("category"):
        raise LedgerError("category is required")
    tx = record_transaction(
        tx_type=data.get("type"),
        category=data["category"],
        amount_cents=data.get("amount_cents"),
        source=data.get("source"),
        bank_id=data.get("bank_id"),
        cash_register_id=data.get("cash_register_id"),
        partner_id=data.get("partner_id"),
        expense_category_id=data.get("expense_category_id"),
        description=data.get("description") or "",
        user=user.username if user else "sys",
        date=data.get("date"),
    )
    db.session.commit()
    return tx


def get_transaction(tx_id: int) -> Transaction:
    tx = db.session.get(Transaction, tx_id)
    if tx is None:
        raise LedgerError("Transaction not found", details={"id": tx_id})
    return tx


def _ensure_manual(tx: Transaction, action: str) -> None:
    if tx.related_invoice_id is not None:
        raise LedgerError(
            f"Invoice transactions cannot be {action}; void the invoice instead",
            details={"related_invoice_id": tx.related_invoice_id},
        )
    reversed_by = db.session.query(Transaction.id).filter_by(reverses_transaction_id=tx.id).first()
    if tx.reverses_transaction_id is not None or reversed_by is not None:
        raise LedgerError(
            f"Reversed transactions cannot be {action}",
            details={"id": tx.id},
        )


def update_transaction(tx_id: int, data: dict) -> Transaction:
    tx = get_transaction(tx_id)
    _ensure_manual(tx, "edited")

    merged = {field: getattr(tx, field) for field in MUTABLE_FIELDS}
    merged.update({k: v for k, v in data.items() if k in MUTABLE_FIELDS})
    _validate(
        tx_type=merged["type"],
        source=merged["source"],
        amount_cents=merged["amount_cents"],
        bank_id=merged["bank_id"],
        cash_register_id=merged["cash_register_id"],
        expense_category_id=merged["expense_category_id"],
    )
    for field, value in merged.items():
        setattr(tx, field, value)
    if tx.source != "BANK":
        tx.bank_id = None
    db.session.commit()
    return tx


def delete_transaction(tx_id: int, *, user: User | None) -> None:
    if not has_permission(user, DELETE_TRANSACTIONS):
        raise LedgerPermissionError("Permission denied: delete_transactions")
    tx = get_transaction(tx_id)
    _ensure_manual(tx, "deleted")
    db.session.delete(tx)
    db.session.commit()


def list_transactions(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    tx_type: str | None = None,
    source: str | None = None,
    bank_id: int | None = None,
    related_invoice_id: int | None = None,
) -> list[Transaction]:
    q = db.session.query(Transaction)
    if start is not None:
        q = q.filter(Transaction.date >= start_of_day(start))
    if end is not None:
        q = q.filter(Transaction.date <= end_of_day(end))
    if tx_type:
        q = q.filter(Transaction.type == tx_type)
    if source:
        q = q.filter(Transaction.source == source)
    if bank_id is not None:
        q = q.filter(Transaction.bank_id == bank_id)
    if related_invoice_id is not None:
        q = q.filter(Transaction.related_invoice_id == related_invoice_id)
    return q.order_by(Transaction.date.desc(), Transaction.id.desc()).all()


def signed_sum(query) -> int:
    """INCOME minus EXPENSE over a Transaction query."""
    signed = case((Transaction.type == "INCOME", Transaction.amount_cents), else_=-Transaction.amount_cents)
    total = query.with_entities(func.coalesce(func.sum(signed), 0)).scalar()
    return int(total or 0)


def bank_balance(bank_id: int, *, as_of: datetime | None = None) -> int:
    """initial_balance + INCOME - EXPENSE over BANK entries for one bank."""
    bank = db.session.get(BankAccount, bank_id)
    if bank is None:
        raise LedgerError(f"Bank {bank_id} not found", details={"bank_id": bank_id})
    q = db.session.query(Transaction).filter(Transaction.source == "BANK", Transaction.bank_id == bank.id)
    if as_of is not None:
        q = q.filter(Transaction.date <= end_of_day(as_of))
    return (bank.initial_balance_cents or 0) + signed_sum(q)


def bank_balances() -> list[dict]:
    return [
        {**bank.to_dict(), "balance_cents": bank_balance(bank.id)}
        for bank in db.session.query(BankAccount).order_by(BankAccount.name.asc()).all()
    ]


def cash_balance(*, cash_register_id: int | None = None, as_of: datetime | None = None) -> int:
    q = db.session.query(Transaction).filter(Transaction.source == "CASH_REGISTER")
    if cash_register_id is not None:
        q = q.filter(Transaction.cash_register_id == cash_register_id)
    if as_of is not None:
        q = q.filter(Transaction.date <= end_of_day(as_of))
    return signed_sum(q)
