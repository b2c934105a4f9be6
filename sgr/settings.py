from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = field(default_factory=lambda: os.getenv("SGR_DB_PATH", "sgr.db"))
    enable_scheduler: bool = field(default_factory=lambda: _env_bool("SGR_ENABLE_SCHEDULER", True))

    # Firewall provider. Empty url means the local sqlite ACL table is used.
    firewall_url: str | None = field(default_factory=lambda: os.getenv("SGR_FIREWALL_URL") or None)
    firewall_token: str | None = field(default_factory=lambda: os.getenv("SGR_FIREWALL_TOKEN"))
    http_timeout_s: float = field(default_factory=lambda: _env_float("SGR_HTTP_TIMEOUT_S", 10.0))

    # API credentials for mutating endpoints
    admin_user: str = field(default_factory=lambda: os.getenv("SGR_ADMIN_USER", "admin"))
    admin_password: str = field(default_factory=lambda: os.getenv("SGR_ADMIN_PASSWORD", "change-me"))

    # Email alerting (optional)
    enable_email: bool = field(default_factory=lambda: _env_bool("SGR_ENABLE_EMAIL", False))
    smtp_host: str = field(default_factory=lambda: os.getenv("SGR_SMTP_HOST", "smtp.gmail.com"))
    smtp_port: int = field(default_factory=lambda: _env_int("SGR_SMTP_PORT", 587))
    smtp_user: str | None = field(default_factory=lambda: os.getenv("SGR_SMTP_USER"))
    smtp_password: str | None = field(default_factory=lambda: os.getenv("SGR_SMTP_PASSWORD"))
    email_from: str | None = field(default_factory=lambda: os.getenv("SGR_EMAIL_FROM"))
    email_to: str | None = field(default_factory=lambda: os.getenv("SGR_EMAIL_TO"))


def load_settings() -> Settings:
    """Build a fresh Settings from the current environment."""
    return Settings()


settings = load_settings()
