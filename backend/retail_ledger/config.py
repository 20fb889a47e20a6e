# backend/retail_ledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///retail_ledger.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Checkout pricing (basis points: 500 = 5%)
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "500"))

    # Inventory
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))
    DEFAULT_LOCATION_NAME = os.environ.get("DEFAULT_LOCATION_NAME", "Main Warehouse")

    # Fulfilment
    DELIVERY_LEAD_BUSINESS_DAYS = int(os.environ.get("DELIVERY_LEAD_BUSINESS_DAYS", "5"))
    DEFAULT_CARRIER = os.environ.get("DEFAULT_CARRIER", "In-house Courier")

    # Transient store failures (deadlocks, lock timeouts, stale versions)
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE = float(os.environ.get("RETRY_BACKOFF_BASE", "0.1"))

    # Attribution for work done outside a request (CLI, background jobs)
    SYSTEM_ACTOR_ID = os.environ.get("SYSTEM_ACTOR_ID", "system")
