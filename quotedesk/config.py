import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _list_env(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "quotedesk.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-quotedesk")
    ACCESS_TOKEN_MAX_AGE_SECONDS = _int_env("ACCESS_TOKEN_MAX_AGE_SECONDS", 60 * 60)
    REFRESH_TOKEN_MAX_AGE_SECONDS = _int_env("REFRESH_TOKEN_MAX_AGE_SECONDS", 3 * 24 * 60 * 60)
    PASSWORD_RESET_MAX_AGE_SECONDS = _int_env("PASSWORD_RESET_MAX_AGE_SECONDS", 60 * 60)

    UPLOAD_DIR = os.environ.get("UPLOAD_DIR") or os.path.join(BASE_DIR, "uploads")
    UPLOAD_MAX_FILE_BYTES = _int_env("UPLOAD_MAX_FILE_BYTES", 10 * 1024 * 1024)
    UPLOAD_MAX_FILES = _int_env("UPLOAD_MAX_FILES", 10)
    UPLOAD_ALLOWED_EXTENSIONS = _list_env("UPLOAD_ALLOWED_EXTENSIONS", ".xlsx,.xls")
    MAX_CONTENT_LENGTH = UPLOAD_MAX_FILE_BYTES * UPLOAD_MAX_FILES + 1024 * 1024

    QUOTE_NUMBER_MAX_ATTEMPTS = _int_env("QUOTE_NUMBER_MAX_ATTEMPTS", 5)
    QUOTE_UPDATE_MAX_ATTEMPTS = _int_env("QUOTE_UPDATE_MAX_ATTEMPTS", 3)
    QUOTE_DEFAULT_CURRENCY = os.environ.get("QUOTE_DEFAULT_CURRENCY", "CNY")
    QUOTE_LIST_MAX_PAGE_SIZE = _int_env("QUOTE_LIST_MAX_PAGE_SIZE", 100)

    NOTIFICATIONS_ENABLED = _bool_env("NOTIFICATIONS_ENABLED", True)
    NOTIFICATIONS_MODE = os.environ.get("NOTIFICATIONS_MODE", "thread")
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST")
    MAIL_SMTP_PORT = _int_env("MAIL_SMTP_PORT", 587)
    MAIL_SMTP_USERNAME = os.environ.get("MAIL_SMTP_USERNAME")
    MAIL_SMTP_PASSWORD = os.environ.get("MAIL_SMTP_PASSWORD")
    MAIL_USE_TLS = _bool_env("MAIL_USE_TLS", True)
    MAIL_TIMEOUT_SECONDS = _int_env("MAIL_TIMEOUT_SECONDS", 20)
    MAIL_FROM = os.environ.get("MAIL_FROM", "QuoteDesk <no-reply@quotedesk.local>")
    APP_PUBLIC_URL = os.environ.get("APP_PUBLIC_URL", "http://localhost:4200")

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    SLOW_REQUEST_MS = _int_env("SLOW_REQUEST_MS", 5000)

    RATE_LIMIT_ENABLED = _bool_env("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)
    RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 300)
    SECURITY_HEADERS_ENABLED = _bool_env("SECURITY_HEADERS_ENABLED", True)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required in production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-quotedesk":
            raise RuntimeError("Refusing to start in production with the development SECRET_KEY.")
