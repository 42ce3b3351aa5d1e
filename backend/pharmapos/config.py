# backend/pharmapos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmapos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Idle carts are evicted after this many seconds (one long shift by default)
    CART_SESSION_TTL_SECONDS = int(os.environ.get("CART_SESSION_TTL_SECONDS", str(8 * 60 * 60)))

    # How long a checkout waits for a product's stock lock before giving up
    STOCK_LOCK_TIMEOUT_SECONDS = float(os.environ.get("STOCK_LOCK_TIMEOUT_SECONDS", "5"))

    CHECKOUT_RETRY_ATTEMPTS = int(os.environ.get("CHECKOUT_RETRY_ATTEMPTS", "3"))

    # Sales velocity window used by reorder recommendations
    AUDIT_PERIOD_DAYS = int(os.environ.get("AUDIT_PERIOD_DAYS", "30"))
    REORDER_MINIMUM = int(os.environ.get("REORDER_MINIMUM", "100"))
