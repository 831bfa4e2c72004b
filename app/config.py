import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./lv_notas.db")

# Google Calendar Configuration
# The calendar bound to the push-notification channel (one therapist per calendar)
GOOGLE_CALENDAR_ID = os.getenv("GOOGLE_CALENDAR_ID", "")
GOOGLE_SERVICE_ACCOUNT_FILE = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "service-account-key.json")
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]
# Echoed back by Google in X-Goog-Channel-Token; leave empty to accept any channel
GOOGLE_WEBHOOK_TOKEN = os.getenv("GOOGLE_WEBHOOK_TOKEN", "")
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")

# Webhook channel settings
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "")
WEBHOOK_URL_LOCAL = os.getenv("WEBHOOK_URL_LOCAL", "")
WEBHOOK_URL_LIVE = os.getenv("WEBHOOK_URL_LIVE", "")
WEBHOOK_CHANNEL_TTL_DAYS = int(os.getenv("WEBHOOK_CHANNEL_TTL_DAYS", "7"))

# "Most recent events" fetch used by webhook processing
RECENT_EVENTS_WINDOW_SECONDS = int(os.getenv("RECENT_EVENTS_WINDOW_SECONDS", "30"))
RECENT_EVENTS_MAX_RESULTS = int(os.getenv("RECENT_EVENTS_MAX_RESULTS", "10"))

# Security - shared key expected in X-API-Key for protected routes
SAFE_PROXY_KEY = os.getenv("SAFE_PROXY_KEY")
if not SAFE_PROXY_KEY:
    import warnings

    warnings.warn(
        "SAFE_PROXY_KEY not set! Protected routes will reject every request", RuntimeWarning, stacklevel=2
    )


def get_current_webhook_url() -> str:
    """Public base URL used when registering the calendar watch channel"""
    return WEBHOOK_URL or WEBHOOK_URL_LOCAL or WEBHOOK_URL_LIVE

# Rate limiting (Redis is optional; counts stay in memory without it)
REDIS_URL = os.getenv("REDIS_URL", "")
API_RATE_LIMIT = int(os.getenv("API_RATE_LIMIT", "120"))
API_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("API_RATE_LIMIT_WINDOW_SECONDS", "60"))
