from __future__ import annotations

from ..extensions import db


class CashRegister(db.Model):
    """
    POS register. ip_address points at the fiscal printer bridge attached to
    this register (HTTP on FISCAL_DEVICE_PORT).
    """
    __tablename__ = "cash_registers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    brand = db.Column(db.String(64), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location_id": self.location_id,
            "brand": self.brand,
            "ip_address": self.ip_address,
        }
