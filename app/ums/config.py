import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    # Identity of the caller, set by the upstream gateway after authentication.
    auth_user_header: str
    password_hash_method: str

    smtp_server: str
    smtp_port: int
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    smtp_timeout: int
    email_from: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///ums.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        auth_user_header=_getenv("AUTH_USER_HEADER", "X-User-Id"),
        password_hash_method=_getenv("PASSWORD_HASH_METHOD", "scrypt"),
        smtp_server=_getenv("SMTP_SERVER", ""),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_use_tls=_getenv_bool("SMTP_USE_TLS", True),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_timeout=_getenv_int("SMTP_TIMEOUT", 10),
        email_from=_getenv("EMAIL_FROM", ""),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "AUTH_USER_HEADER": s.auth_user_header,
        "PASSWORD_HASH_METHOD": s.password_hash_method,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_TIMEOUT": s.smtp_timeout,
        "EMAIL_FROM": s.email_from,
        # JSON API: keep key order as written by the handlers
        "JSON_SORT_KEYS": False,
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
