import os
import json
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_LOAN_TIER_TABLE = {
    "below-20k": 3450,
    "20k-50k": 7000,
    "50k-100k": 11000,
    "above-100k": 14600,
}

DEFAULT_EMPLOYMENT_MULTIPLIERS = {
    "employed": "1.20",
    "self-employed": "1.10",
    "student": "0.70",
    "unemployed": "0.50",
}


def _json_env(name: str, default: dict) -> dict:
    raw = os.getenv(name)
    if not raw:
        return dict(default)
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"{name} must be a JSON object: {e}") from e
    if not isinstance(value, dict):
        raise RuntimeError(f"{name} must be a JSON object")
    return value


def _list_env(name: str) -> list:
    raw = os.getenv(name) or ""
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class Settings:
    PROJECT_NAME: str = "Hela Loans"
    MONGODB_URI: str = os.getenv("MONGODB_URI")
    MONGODB_DB_NAME: str = os.getenv("MONGODB_DB_NAME")
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY")
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
    CLIENT_URL: str = os.getenv("CLIENT_URL", "http://localhost:3000")
    ADMIN_EMAILS: list = _list_env("ADMIN_EMAILS")

    # PayHero (M-Pesa STK push gateway)
    PAYHERO_API_KEY: str = os.getenv("PAYHERO_API_KEY")
    PAYHERO_CHANNEL_ID: str = os.getenv("PAYHERO_CHANNEL_ID")
    PAYHERO_BASE_URL: str = os.getenv("PAYHERO_BASE_URL", "https://backend.payhero.co.ke")
    PAYHERO_CALLBACK_URL: str = os.getenv("PAYHERO_CALLBACK_URL")
    PAYHERO_TIMEOUT_SECONDS: float = float(os.getenv("PAYHERO_TIMEOUT_SECONDS", "30"))
    TRANSACTION_REFERENCE_PREFIX: str = os.getenv("TRANSACTION_REFERENCE_PREFIX", "HELA")

    # Which STK push gateway initiates payments: "payhero" or "daraja"
    PAYMENT_GATEWAY: str = os.getenv("PAYMENT_GATEWAY", "payhero").strip().lower()

    # Safaricom Daraja (direct M-Pesa Express integration)
    DARAJA_CONSUMER_KEY: str = os.getenv("DARAJA_CONSUMER_KEY")
    DARAJA_CONSUMER_SECRET: str = os.getenv("DARAJA_CONSUMER_SECRET")
    DARAJA_SHORTCODE: str = os.getenv("DARAJA_SHORTCODE")
    DARAJA_PASSKEY: str = os.getenv("DARAJA_PASSKEY")
    DARAJA_BASE_URL: str = os.getenv("DARAJA_BASE_URL", "https://sandbox.safaricom.co.ke")
    DARAJA_CALLBACK_URL: str = os.getenv("DARAJA_CALLBACK_URL")
    DARAJA_TIMEOUT_SECONDS: float = float(os.getenv("DARAJA_TIMEOUT_SECONDS", "30"))

    # Loan policy. Tier tables changed across product revisions, so they are
    # read from the environment instead of being fixed in code.
    LOAN_TIER_TABLE: dict = _json_env("LOAN_TIER_TABLE", DEFAULT_LOAN_TIER_TABLE)
    EMPLOYMENT_MULTIPLIERS: dict = _json_env("EMPLOYMENT_MULTIPLIERS", DEFAULT_EMPLOYMENT_MULTIPLIERS)
    PROCESSING_FEE_MIN: int = int(os.getenv("PROCESSING_FEE_MIN", "399"))
    PROCESSING_FEE_MAX: int = int(os.getenv("PROCESSING_FEE_MAX", "1399"))
    MIN_LOAN_AMOUNT: int = int(os.getenv("MIN_LOAN_AMOUNT", "1000"))
    MIN_SAVINGS_BALANCE: int = int(os.getenv("MIN_SAVINGS_BALANCE", "0"))

settings = Settings()


def _mask_secret(val: str) -> str:
    if not val:
        return "<missing>"
    if len(val) <= 8:
        return "*" * len(val)
    return f"{val[:4]}...{val[-4:]}"


if settings.JWT_SECRET_KEY:
    logger.debug("Loaded JWT_SECRET_KEY: %s", _mask_secret(settings.JWT_SECRET_KEY))
else:
    logger.warning("JWT_SECRET_KEY is missing or empty!")

if not settings.PAYHERO_API_KEY or not settings.PAYHERO_CHANNEL_ID:
    logger.warning("PayHero credentials not configured; STK push requests will be rejected")
else:
    logger.debug("Loaded PayHero settings (redacted): %s",
                 {"PAYHERO_API_KEY": _mask_secret(settings.PAYHERO_API_KEY),
                  "PAYHERO_CHANNEL_ID": settings.PAYHERO_CHANNEL_ID})

if settings.PAYMENT_GATEWAY not in ("payhero", "daraja"):
    raise RuntimeError(f"PAYMENT_GATEWAY must be 'payhero' or 'daraja', got {settings.PAYMENT_GATEWAY!r}")

if settings.PAYMENT_GATEWAY == "daraja" and not (settings.DARAJA_CONSUMER_KEY and settings.DARAJA_PASSKEY):
    logger.warning("Daraja credentials not configured; STK push requests will be rejected")
