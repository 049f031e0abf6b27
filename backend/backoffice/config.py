# backend/backoffice/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip().upper() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///backoffice.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Returns: window in days (0 disables the check)
    RETURN_DEADLINE_DAYS = int(os.environ.get("RETURN_DEADLINE_DAYS", "7"))
    RETURN_REQUIRES_APPROVAL = _env_bool("RETURN_REQUIRES_APPROVAL", True)
    EXCHANGE_ENABLED = _env_bool("EXCHANGE_ENABLED", True)

    # Roles whose transfers/returns are executed without a second approval step
    AUTO_APPROVE_ROLES = _env_list("AUTO_APPROVE_ROLES", "OWNER,MANAGER")

    # Split payments: |amount1 + amount2 - total| must not exceed this (cents)
    SPLIT_PAYMENT_TOLERANCE_CENTS = int(os.environ.get("SPLIT_PAYMENT_TOLERANCE_CENTS", "1"))

    # Unit-of-work retry policy for lock timeouts and version conflicts
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.05"))
    DB_STATEMENT_TIMEOUT_MS = int(os.environ.get("DB_STATEMENT_TIMEOUT_MS", "5000"))

    # Side channel delivery (audit log + stock notifications)
    EVENTS_SYNC_DELIVERY = _env_bool("EVENTS_SYNC_DELIVERY", False)
    EVENTS_MAX_WORKERS = int(os.environ.get("EVENTS_MAX_WORKERS", "2"))
