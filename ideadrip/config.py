"""
Runtime knobs for the weekly dispatcher.

Everything is env-driven. Callers that want a .env file loaded (CLI, Prefect
flow) call load_dotenv() before DispatchSettings.from_env().
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .models import DEFAULT_TIMEZONE
from .window import WINDOW_MINUTES


# -----------------------------
# Env helpers
# -----------------------------
def _env_str(name: str, default: str = "") -> str:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)) or str(default))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)) or str(default))
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


@dataclass
class DispatchSettings:
    cron_secret: str = ""
    max_workers: int = 4
    step_timeout_seconds: float = 60.0
    window_minutes: int = WINDOW_MINUTES
    default_timezone: str = DEFAULT_TIMEZONE

    # Delivery
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_from: str = "no-reply@ideadrip.app"
    smtp_use_tls: bool = True
    dry_run: bool = False
    app_url: str = "http://localhost:3000"
    unsubscribe_secret: str = "default_unsub_secret"

    # Generation
    ideas_model: str = "gpt-4o-mini"

    # Trigger server
    http_host: str = "0.0.0.0"
    http_port: int = 8088

    @classmethod
    def from_env(cls) -> "DispatchSettings":
        return cls(
            cron_secret=_env_str("CRON_SECRET"),
            max_workers=max(1, _env_int("DISPATCH_MAX_WORKERS", 4)),
            step_timeout_seconds=_env_float("DISPATCH_STEP_TIMEOUT_SECONDS", 60.0),
            window_minutes=_env_int("DISPATCH_WINDOW_MINUTES", WINDOW_MINUTES),
            default_timezone=_env_str("DEFAULT_TIMEZONE", DEFAULT_TIMEZONE),
            smtp_host=_env_str("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=_env_str("SMTP_USER") or _env_str("SMTP_USERNAME") or None,
            smtp_pass=_env_str("SMTP_PASS") or _env_str("SMTP_PASSWORD") or None,
            smtp_from=_env_str("SMTP_FROM") or _env_str("SMTP_USER") or "no-reply@ideadrip.app",
            smtp_use_tls=_env_bool("SMTP_USE_TLS", True),
            dry_run=_env_bool("EMAIL_DRY_RUN", False),
            app_url=_env_str("APP_URL", "http://localhost:3000").rstrip("/"),
            unsubscribe_secret=_env_str("UNSUBSCRIBE_SECRET", "default_unsub_secret"),
            ideas_model=_env_str("IDEAS_MODEL", "gpt-4o-mini"),
            http_host=_env_str("DISPATCH_HTTP_HOST", "0.0.0.0"),
            http_port=_env_int("DISPATCH_HTTP_PORT", 8088),
        )
