# backend/pharmapos/config.py
from __future__ import annotations
import os


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sale/payment numbers: attempts before giving up on a free number
    IDENTIFIER_MAX_ATTEMPTS = int(os.environ.get("IDENTIFIER_MAX_ATTEMPTS", "10"))

    # Simulated processing time for synchronous tenders (cash, card, insurance)
    PAYMENT_PROCESSING_DELAY_SECONDS = float(os.environ.get("PAYMENT_PROCESSING_DELAY_SECONDS", "0.5"))

    # A processing claim older than this is treated as abandoned and can be retaken
    PAYMENT_CLAIM_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_CLAIM_TIMEOUT_SECONDS", "120"))

    # Mobile money
    MOBILE_MONEY_PROVIDERS = _env_list("MOBILE_MONEY_PROVIDERS", "mtn,airtel,zamtel")
    MOBILE_MONEY_SIMULATED_STATUS = os.environ.get("MOBILE_MONEY_SIMULATED_STATUS", "completed")
    # When set, providers talk to a real HTTP endpoint instead of the simulator
    MOBILE_MONEY_HTTP_BASE_URL = os.environ.get("MOBILE_MONEY_HTTP_BASE_URL")
    MOBILE_MONEY_HTTP_API_KEY = os.environ.get("MOBILE_MONEY_HTTP_API_KEY")
    MOBILE_MONEY_HTTP_TIMEOUT = float(os.environ.get("MOBILE_MONEY_HTTP_TIMEOUT", "25"))

    DEFAULT_PAGE_SIZE = 50
    MAX_PAGE_SIZE = 200
