# Overview: Service-layer access to the single AppSettings row.

from __future__ import annotations

from ..extensions import db
from ..models import AppSettings, BankAccount


class SettingsError(Exception):
    """Raised for settings validation errors."""
    pass


UPDATABLE_FIELDS = (
    "currency",
    "allow_negative_stock",
    "default_bank_id",
    "company_name",
    "company_voen",
    "company_phone",
    "fiscal_device_ip",
    "fiscal_device_brand",
)


def get_settings() -> AppSettings:
    """Return the settings row, creating it with defaults on first use."""
    settings = db.session.query(AppSettings).order_by(AppSettings.id).first()
    if settings is None:
        settings = AppSettings(currency="AZN", allow_negative_stock=True)
        db.session.add(settings)
        db.session.flush()
    return settings


def update_settings(data: dict) -> AppSettings:
    settings = get_settings()
    unknown = set(data) - set(UPDATABLE_FIELDS)
    if unknown:
        raise SettingsError(f"Unknown settings: {', '.join(sorted(unknown))}")

    bank_id = data.get("default_bank_id")
    if bank_id is not None and db.session.get(BankAccount, bank_id) is None:
        raise SettingsError(f"Bank {bank_id} not found")

    for field in UPDATABLE_FIELDS:
        if field in data:
            setattr(settings, field, data[field])

    db.session.commit()
    return settings
