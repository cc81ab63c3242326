"""
Centralized configuration for Secret Keeper.

All configuration is loaded from environment variables with sensible defaults
and handed to the engine at construction time. Nothing below the daemon/CLI
reads the environment on its own.

Usage:
    from keeper.config import get_config
    cfg = get_config()
    print(cfg.owner_email)      # "" until KEEPER_OWNER_EMAIL is set
    print(cfg.db.dsn)           # "dbname=keeper port=5432 user=..."
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlencode

from apscheduler.triggers.cron import CronTrigger


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection parameters."""

    host: str = ""  # empty = Unix socket (peer auth); set to 127.0.0.1 for TCP
    port: int = 5432
    name: str = "keeper"
    user: str = "keeper"
    password: str = ""

    @property
    def dsn(self) -> str:
        """Return a psycopg2-compatible DSN string."""
        parts = [f"dbname={self.name}"]
        if self.host:
            parts.append(f"host={self.host}")
        parts.append(f"port={self.port}")
        if self.user:
            parts.append(f"user={self.user}")
        if self.password:
            parts.append(f"password={self.password}")
        return " ".join(parts)

    @property
    def dict(self) -> dict[str, str | int]:
        """Return a psycopg2.connect() kwargs dict."""
        d: dict[str, str | int] = {
            "dbname": self.name,
            "port": self.port,
        }
        if self.host:
            d["host"] = self.host
        if self.user:
            d["user"] = self.user
        if self.password:
            d["password"] = self.password
        return d


@dataclass(frozen=True)
class TelegramConfig:
    """Messaging platform (push + inbound commands)."""

    bot_token: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token)


@dataclass(frozen=True)
class SmtpConfig:
    """Outbound e-mail channel."""

    host: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    from_address: str = ""
    starttls: bool = True
    timeout_seconds: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.host)


@dataclass(frozen=True)
class DriveConfig:
    """Document storage + sharing (Google Drive REST API)."""

    access_token: str = ""
    api_base: str = "https://www.googleapis.com"
    timeout_seconds: float = 15.0

    @property
    def enabled(self) -> bool:
        return bool(self.access_token)


@dataclass(frozen=True)
class ScheduleConfig:
    """Reconciliation trigger."""

    reconcile_cron: str = "0 9 * * *"
    timezone: str = "UTC"


@dataclass(frozen=True)
class Config:
    """Top-level Secret Keeper configuration."""

    # Identity binding for vault creation (the trusted principal)
    owner_email: str = ""

    # Public surface
    base_url: str = "http://127.0.0.1:8800"
    port: int = 8800
    sender_name: str = "Secret Keeper"

    # Vault defaults
    default_checkin_days: int = 30
    default_grace_hours: int = 12
    reminder_interval_hours: int = 24

    # Components
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)
    drive: DriveConfig = field(default_factory=DriveConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    def onboard_url(self, owner_contact_ref: str) -> str:
        query = urlencode({"ownerContactRef": owner_contact_ref})
        return f"{self.base_url.rstrip('/')}/onboard?{query}"

    def checkin_url(self, vault_id: str, owner_email: str) -> str:
        query = urlencode({"vaultId": vault_id, "email": owner_email})
        return f"{self.base_url.rstrip('/')}/checkin?{query}"

    def problems(self) -> list[str]:
        """Validate once at startup. Returns a list of human-readable problems."""
        issues: list[str] = []
        if not self.owner_email:
            issues.append("KEEPER_OWNER_EMAIL is not set: vault creation is disabled")
        if self.default_checkin_days <= 0:
            issues.append("KEEPER_DEFAULT_CHECKIN_DAYS must be positive")
        if self.default_grace_hours <= 0:
            issues.append("KEEPER_DEFAULT_GRACE_HOURS must be positive")
        if self.reminder_interval_hours <= 0:
            issues.append("KEEPER_REMINDER_INTERVAL_HOURS must be positive")
        try:
            CronTrigger.from_crontab(self.schedule.reconcile_cron, timezone=self.schedule.timezone)
        except Exception as e:
            issues.append(f"Invalid KEEPER_RECONCILE_CRON {self.schedule.reconcile_cron!r}: {e}")
        if not self.telegram.enabled and not self.smtp.enabled:
            issues.append("No notification channel configured (Telegram and SMTP both disabled)")
        return issues


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    db = DatabaseConfig(
        host=os.environ.get("KEEPER_DB_HOST", ""),
        port=int(os.environ.get("KEEPER_DB_PORT", "5432")),
        name=os.environ.get("KEEPER_DB_NAME", "keeper"),
        user=os.environ.get("KEEPER_DB_USER", os.environ.get("USER", "keeper")),
        password=os.environ.get("KEEPER_DB_PASSWORD", ""),
    )

    smtp = SmtpConfig(
        host=os.environ.get("KEEPER_SMTP_HOST", ""),
        port=int(os.environ.get("KEEPER_SMTP_PORT", "587")),
        user=os.environ.get("KEEPER_SMTP_USER", ""),
        password=os.environ.get("KEEPER_SMTP_PASSWORD", ""),
        from_address=os.environ.get("KEEPER_SMTP_FROM", os.environ.get("KEEPER_SMTP_USER", "")),
        starttls=_env_bool("KEEPER_SMTP_STARTTLS", True),
    )

    return Config(
        owner_email=os.environ.get("KEEPER_OWNER_EMAIL", ""),
        base_url=os.environ.get("KEEPER_BASE_URL", "http://127.0.0.1:8800"),
        port=int(os.environ.get("KEEPER_PORT", "8800")),
        sender_name=os.environ.get("KEEPER_SENDER_NAME", "Secret Keeper"),
        default_checkin_days=int(os.environ.get("KEEPER_DEFAULT_CHECKIN_DAYS", "30")),
        default_grace_hours=int(os.environ.get("KEEPER_DEFAULT_GRACE_HOURS", "12")),
        reminder_interval_hours=int(os.environ.get("KEEPER_REMINDER_INTERVAL_HOURS", "24")),
        db=db,
        telegram=TelegramConfig(bot_token=os.environ.get("KEEPER_TELEGRAM_BOT_TOKEN", "")),
        smtp=smtp,
        drive=DriveConfig(access_token=os.environ.get("KEEPER_DRIVE_TOKEN", "")),
        schedule=ScheduleConfig(
            reconcile_cron=os.environ.get("KEEPER_RECONCILE_CRON", "0 9 * * *"),
            timezone=os.environ.get("KEEPER_TIMEZONE", "UTC"),
        ),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
