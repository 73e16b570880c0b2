# backend/kasir/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/kasir.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///kasir.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Public URL of this deployment; invoice redirects and the webhook point here
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")

    # Xendit invoice API
    XENDIT_SECRET_KEY = os.environ.get("XENDIT_SECRET_KEY", "")
    XENDIT_API_URL = os.environ.get("XENDIT_API_URL", "https://api.xendit.co")
    # When set, inbound webhooks must echo it in the x-callback-token header
    XENDIT_CALLBACK_TOKEN = os.environ.get("XENDIT_CALLBACK_TOKEN", "")
    PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT", "15"))

    INVOICE_DURATION_SECONDS = int(os.environ.get("INVOICE_DURATION_SECONDS", "86400"))
    CURRENCY = os.environ.get("CURRENCY", "IDR")
    DEFAULT_PAYER_EMAIL = os.environ.get("DEFAULT_PAYER_EMAIL", "customer@example.com")
