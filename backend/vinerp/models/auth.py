from __future__ import annotations

from ..extensions import db


class User(db.Model):
    """
    Operator account.

    permissions is a flat list of capability codes (see vinerp.permissions);
    "admin" grants everything.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    first_name = db.Column(db.String(64), nullable=True)
    last_name = db.Column(db.String(64), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    assigned_cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True)
    permissions = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    assigned_cash_register = db.relationship("CashRegister")

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.username

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "assigned_cash_register_id": self.assigned_cash_register_id,
            "permissions": list(self.permissions or []),
            "is_active": self.is_active,
        }
