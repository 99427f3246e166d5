from __future__ import annotations

from ..extensions import db


class AppSettings(db.Model):
    """
    Business settings (single row).

    Kept in the DB rather than Config because operators change them at
    runtime from the admin screen.
    """
    __tablename__ = "app_settings"

    id = db.Column(db.Integer, primary_key=True)
    currency = db.Column(db.String(8), nullable=False, default="AZN")
    allow_negative_stock = db.Column(db.Boolean, nullable=False, default=True)
    default_bank_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    company_name = db.Column(db.String(255), nullable=False, default="VinERP Corp")
    company_voen = db.Column(db.String(64), nullable=False, default="")
    company_phone = db.Column(db.String(64), nullable=False, default="")
    fiscal_device_ip = db.Column(db.String(64), nullable=True)
    fiscal_device_brand = db.Column(db.String(64), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "currency": self.currency,
            "allow_negative_stock": self.allow_negative_stock,
            "default_bank_id": self.default_bank_id,
            "company_name": self.company_name,
            "company_voen": self.company_voen,
            "company_phone": self.company_phone,
            "fiscal_device_ip": self.fiscal_device_ip,
            "fiscal_device_brand": self.fiscal_device_brand,
        }
