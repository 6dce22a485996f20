import os
from dotenv import load_dotenv

from trulybot.errors import ConfigurationError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./trulybot.db")
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()

TRIAL_DAYS = int(os.getenv("TRIAL_DAYS", "7"))
TRIAL_TIER = os.getenv("TRIAL_TIER", "ultra")
ORDER_MAX_AGE_HOURS = int(os.getenv("ORDER_MAX_AGE_HOURS", "24"))
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

SESSION_COOKIE = "session"
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE_SECONDS", "604800"))
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")


def require_env(name: str) -> str:
    """Return a required setting or raise ConfigurationError.

    Read at call time so a missing secret only disables the code path that
    needs it.
    """
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"{name} is not configured")
    return value


def webhook_secret() -> str:
    return require_env("RAZORPAY_WEBHOOK_SECRET")


def razorpay_credentials() -> tuple:
    return require_env("RAZORPAY_KEY_ID"), require_env("RAZORPAY_KEY_SECRET")


def jwt_secret() -> str:
    return require_env("SUPABASE_JWT_SECRET")


def session_secret() -> str:
    return require_env("SESSION_SECRET")


def cron_secret() -> str:
    return require_env("CRON_SECRET")


def redis_url() -> str:
    return require_env("REDIS_URL")
