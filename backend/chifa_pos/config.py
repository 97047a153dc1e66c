# backend/chifa_pos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/chifa_pos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///chifa_pos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Insurer share rounding (decimal module rounding constant name)
    CHIFA_ROUNDING = os.environ.get("CHIFA_ROUNDING", "ROUND_HALF_UP")

    # CNAS accepts at most 20 invoices per remittance batch
    CHIFA_MAX_INVOICES_PER_BORDEREAU = int(os.environ.get("CHIFA_MAX_INVOICES_PER_BORDEREAU", "20"))

    # Payment below expected by more than this (basis points) leaves a bordereau partial
    CHIFA_PAYMENT_TOLERANCE_BPS = int(os.environ.get("CHIFA_PAYMENT_TOLERANCE_BPS", "100"))

    REPORT_TOP_PRODUCTS = int(os.environ.get("REPORT_TOP_PRODUCTS", "10"))
    SESSION_NUMBER_PREFIX = os.environ.get("SESSION_NUMBER_PREFIX", "SESSION")

    # Comma-separated browser origins allowed to call the API; none by default
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    ]
