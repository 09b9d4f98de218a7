# backend/stockbook/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockbook.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockbook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Fixed USD -> SRD rate used for cost/profit math (1 USD = N SRD)
    USD_TO_SRD_RATE = float(os.environ.get("USD_TO_SRD_RATE", "5.5"))

    # Attempts for an inventory action on lock/version conflicts
    PERSISTENCE_RETRY_ATTEMPTS = int(os.environ.get("PERSISTENCE_RETRY_ATTEMPTS", "3"))
