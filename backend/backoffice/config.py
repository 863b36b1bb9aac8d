# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # List endpoints: limit/offset pagination
    DEFAULT_PAGE_LIMIT = int(os.environ.get("DEFAULT_PAGE_LIMIT", "50"))
    MAX_PAGE_LIMIT = int(os.environ.get("MAX_PAGE_LIMIT", "200"))

    # Tender recorded on a sale when the caller does not name one
    DEFAULT_PAYMENT_METHOD = os.environ.get("DEFAULT_PAYMENT_METHOD", "efectivo")
