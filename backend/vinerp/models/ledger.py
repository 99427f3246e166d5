from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class BankAccount(db.Model):
    """
    Bank account. The running balance is not stored:
    initial_balance_cents + INCOME - EXPENSE over BANK transactions for it.
    """
    __tablename__ = "bank_accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    account_number = db.Column(db.String(64), nullable=False)
    iban = db.Column(db.String(64), nullable=True)
    currency = db.Column(db.String(8), nullable=False, default="AZN")
    initial_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "account_number": self.account_number,
            "iban": self.iban,
            "currency": self.currency,
            "initial_balance_cents": self.initial_balance_cents,
        }


class ExpenseCategory(db.Model):
    __tablename__ = "expense_categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class Transaction(db.Model):
    """
    Ledger entry against the cash register or a bank account.

    INVARIANT: amount_cents is never negative. Direction lives in `type`
    (INCOME / EXPENSE). Reversals are new entries of the opposite type.
    A reversal points at the entry it undoes through reverses_transaction_id;
    period reports skip both halves of such a pair.

    SOURCES:
    - CASH_REGISTER: drawer cash (optionally a specific register)
    - BANK: a BankAccount (bank_id)
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_non_negative"),
        db.Index("ix_transactions_source_date", "source", "date"),
        db.Index("ix_transactions_type_date", "type", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.DateTime, nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False)  # INCOME, EXPENSE
    category = db.Column(db.String(64), nullable=False)
    expense_category_id = db.Column(db.Integer, db.ForeignKey("expense_categories.id"), nullable=True, index=True)
    related_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    partner_id = db.Column(db.Integer, nullable=True, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")
    source = db.Column(db.String(16), nullable=False)  # CASH_REGISTER, BANK
    bank_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True, index=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)
    reverses_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    user = db.Column(db.String(64), nullable=False, default="sys")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bank = db.relationship("BankAccount")
    expense_category = db.relationship("ExpenseCategory")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_utc_z(self.date),
            "type": self.type,
            "category": self.category,
            "expense_category_id": self.expense_category_id,
            "related_invoice_id": self.related_invoice_id,
            "partner_id": self.partner_id,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "source": self.source,
            "bank_id": self.bank_id,
            "cash_register_id": self.cash_register_id,
            "reverses_transaction_id": self.reverses_transaction_id,
            "user": self.user,
            "created_at": to_utc_z(self.created_at),
        }
