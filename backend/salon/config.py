# backend/salon/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/salon.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///salon.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")  # rotating file handler only when set

    # Label used in sale annotations and error messages
    SALON_CURRENCY = os.environ.get("SALON_CURRENCY", "RWF")

    # One loyalty point per this many currency units of final amount
    LOYALTY_POINT_UNIT = int(os.environ.get("LOYALTY_POINT_UNIT", "1000"))
