# backend/wareledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///wareledger.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Engine settings, read by settings.load_engine_settings()
    WARELEDGER_DECIMAL_PLACES = int(os.environ.get("WARELEDGER_DECIMAL_PLACES", "2"))
    WARELEDGER_WITHOUT_STOCK = _env_bool("WARELEDGER_WITHOUT_STOCK", False)
    WARELEDGER_PAYMENT_EPSILON = os.environ.get("WARELEDGER_PAYMENT_EPSILON", "0.01")
    WARELEDGER_LOCK_TIMEOUT_SECONDS = float(os.environ.get("WARELEDGER_LOCK_TIMEOUT_SECONDS", "10"))
    WARELEDGER_LOCK_ATTEMPTS = int(os.environ.get("WARELEDGER_LOCK_ATTEMPTS", "5"))

    # ADDITIVE, BEST_OF or CAPPED
    WARELEDGER_DISCOUNT_STACKING = os.environ.get("WARELEDGER_DISCOUNT_STACKING", "ADDITIVE")
    WARELEDGER_DISCOUNT_CAP_PERCENT = os.environ.get("WARELEDGER_DISCOUNT_CAP_PERCENT")

    WARELEDGER_REWARD_POINTS_ENABLED = _env_bool("WARELEDGER_REWARD_POINTS_ENABLED", False)
    WARELEDGER_REWARD_PER_POINT_AMOUNT = os.environ.get("WARELEDGER_REWARD_PER_POINT_AMOUNT", "100")
    WARELEDGER_REWARD_MINIMUM_AMOUNT = os.environ.get("WARELEDGER_REWARD_MINIMUM_AMOUNT", "0")
    WARELEDGER_REWARD_REDEEM_VALUE = os.environ.get("WARELEDGER_REWARD_REDEEM_VALUE", "1")
    WARELEDGER_REWARD_EXPIRY_DURATION = os.environ.get("WARELEDGER_REWARD_EXPIRY_DURATION")
    WARELEDGER_REWARD_EXPIRY_TYPE = os.environ.get("WARELEDGER_REWARD_EXPIRY_TYPE")  # days, months, years
