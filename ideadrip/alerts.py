"""
Discord alerts for dispatch runs.

- Severity-based routing (critical/error -> errors webhook, info -> main)
- Lightweight context block on every message
- Best-effort only: never raises into the caller
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

import requests

from .models import RunSummary

logger = logging.getLogger(__name__)


def _webhooks() -> Dict[str, Optional[str]]:
    main = os.getenv("DISCORD_WEBHOOK_MAIN")
    errors = os.getenv("DISCORD_WEBHOOK_ERRORS") or main
    return {"main": main, "errors": errors}


def _build_content_prefix(severity: str) -> str:
    s = severity.lower()
    if s == "critical":
        return "🚨 [CRITICAL]"
    if s == "error":
        return "❌ [ERROR]"
    if s == "info":
        return "ℹ️ [INFO]"
    return f"[{severity.upper()}]"


def _choose_webhook(severity: str) -> Optional[str]:
    hooks = _webhooks()
    if severity.lower() in ("critical", "error"):
        return hooks["errors"]
    return hooks["main"]


def _format_context(context: Optional[Dict[str, Any]]) -> str:
    if not context:
        return ""
    parts = [f"- **{k}**: `{v}`" for k, v in context.items()]
    return "\n\n**Context:**\n" + "\n".join(parts)


def _post(url: str, payload: Dict[str, Any]) -> None:
    """Sender with retries and rate-limit handling."""
    for attempt in range(3):
        try:
            resp = requests.post(url, json=payload, timeout=5)

            if resp.status_code in (200, 204):
                return

            if resp.status_code == 429:
                retry = float(resp.headers.get("Retry-After", 2 ** attempt))
                logger.info("Discord rate limited, retrying in %ss", retry)
                time.sleep(retry)
                continue

            if 400 <= resp.status_code < 500:
                logger.warning("Discord client error: %s %s", resp.status_code, resp.text[:200])
                return

            logger.warning("Discord server error: %s %s", resp.status_code, resp.text[:200])

        except requests.RequestException as e:
            logger.warning("Discord post failed: %s", e)
            time.sleep(1 + attempt)


def send_alert(
    title: str,
    body: str,
    *,
    severity: str = "error",
    context: Optional[Dict[str, Any]] = None,
    webhook: Optional[str] = None,
) -> None:
    target = webhook or _choose_webhook(severity)
    if not target:
        logger.info("No Discord webhook configured; alert dropped: %s", title)
        return

    embed = {
        "title": f"{_build_content_prefix(severity)} {title}",
        "description": body + _format_context(context),
        "color": 0xFF0000 if severity.lower() in ("critical", "error") else 0x5865F2,
    }
    try:
        _post(target, {"username": "IdeaDrip – Alerts", "embeds": [embed]})
    except Exception as e:
        logger.warning("Discord alert %r could not be sent: %r", title, e)


def alert_run_summary(summary: RunSummary) -> None:
    """Only runs that had errors are worth a ping."""
    if summary.errors == 0:
        return
    send_alert(
        "Weekly ideas dispatch finished with failures",
        f"{summary.errors} errors ({summary.delivery_failed} of them delivery failures) "
        f"out of {summary.users_checked} users checked.",
        severity="error",
        context=summary.to_dict(),
    )


def alert_run_aborted(exc: BaseException) -> None:
    send_alert(
        "Weekly ideas dispatch aborted",
        f"The run could not start: {exc}",
        severity="critical",
        context={"exception": type(exc).__name__},
    )
