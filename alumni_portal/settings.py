import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


APP_ENV = os.getenv("APP_ENV", "development").lower()
DEBUG = _flag("DEBUG")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = _flag("LOG_JSON", "true" if APP_ENV in {"prod", "production"} else "false")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./alumni_portal.db")

ADMIN_NAME = os.getenv("ADMIN_NAME", "Portal Admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@alumni.local")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin12345")

FORCE_HTTPS = _flag("FORCE_HTTPS")
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "*").split(",") if h.strip()]
TRUST_PROXY_HEADERS = _flag("TRUST_PROXY_HEADERS")
LOCKOUT_SECONDS = int(os.getenv("LOCKOUT_SECONDS", str(15 * 60)))
MAX_FAILED_LOGINS = int(os.getenv("MAX_FAILED_LOGINS", "5"))
LOGIN_RATE_LIMIT = int(os.getenv("LOGIN_RATE_LIMIT", "20"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))

DIRECTORY_PAGE_SIZE = int(os.getenv("DIRECTORY_PAGE_SIZE", "50"))
CONVERSATION_PAGE_SIZE = int(os.getenv("CONVERSATION_PAGE_SIZE", "50"))
STALE_PROFILE_DAYS = int(os.getenv("STALE_PROFILE_DAYS", "365"))


def is_production() -> bool:
    return APP_ENV in {"prod", "production"}
