# backend/vinerp/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/vinerp.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///vinerp.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Fiscal printer bridge (HTTP JSON on the device itself)
    FISCAL_DEVICE_PORT = int(os.environ.get("FISCAL_DEVICE_PORT", "5544"))
    FISCAL_DEVICE_TIMEOUT = float(os.environ.get("FISCAL_DEVICE_TIMEOUT", "3.0"))
    FISCAL_DEVICE_USERNAME = os.environ.get("FISCAL_DEVICE_USERNAME", "username")
    FISCAL_DEVICE_PASSWORD = os.environ.get("FISCAL_DEVICE_PASSWORD", "password")
    FISCAL_DEFAULT_CURRENCY = os.environ.get("FISCAL_DEFAULT_CURRENCY", "AZN")

    # Split (MIXED) payments must match the total within this many cents
    SPLIT_TOLERANCE_CENTS = 1

    # Chart of accounts depth ceiling
    MAX_ACCOUNT_DEPTH = 7

    # Optional httpx transport for the fiscal client (tests inject MockTransport)
    FISCAL_DEVICE_TRANSPORT = None

    # Back-office frontend origins allowed to call the API
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if origin.strip()
    ]
