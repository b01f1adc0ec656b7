"""
Authorized trigger for a dispatch run.

The periodic caller sends `Authorization: Bearer <CRON_SECRET>`. Anything
else is rejected before a single user is read.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from . import alerts
from .errors import AuthorizationError, PopulationLoadFailure
from .models import RunSummary

logger = logging.getLogger(__name__)

Runner = Callable[[datetime], RunSummary]


def authorize(authorization: Optional[str], secret: str) -> None:
    if not secret:
        # An unset secret must never mean "open door".
        raise AuthorizationError("CRON_SECRET is not configured")
    expected = f"Bearer {secret}"
    # compare_digest only accepts ASCII str; bytes cover any header a client sends.
    if not authorization or not hmac.compare_digest(
        authorization.strip().encode("utf-8"), expected.encode("utf-8")
    ):
        raise AuthorizationError("missing or invalid trigger credential")


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def handle_trigger(
    authorization: Optional[str],
    *,
    secret: str,
    runner: Runner,
    now: Optional[datetime] = None,
    notify: bool = True,
) -> Tuple[int, Dict[str, Any]]:
    """
    Returns (http_status, json_payload).

    200 -> run summary, 401 -> rejected, 500 -> the run could not start.
    Per-user failures only ever show up inside the 200 summary.
    """
    try:
        authorize(authorization, secret)
    except AuthorizationError as exc:
        logger.warning("Rejected dispatch trigger: %s", exc)
        return 401, {"error": "Unauthorized"}

    started = now or datetime.now(timezone.utc)
    logger.info("=== Dispatch trigger accepted; server UTC time %s ===", _iso(started))

    try:
        summary = runner(started)
    except PopulationLoadFailure as exc:
        logger.error("Dispatch aborted: %s", exc)
        if notify:
            alerts.alert_run_aborted(exc)
        return 500, {"error": "Failed to process cron job", "message": str(exc)}
    except Exception as exc:
        logger.exception("Dispatch crashed before completing")
        if notify:
            alerts.alert_run_aborted(exc)
        return 500, {"error": "Failed to process cron job", "message": str(exc)}

    if notify:
        alerts.alert_run_summary(summary)

    return 200, {
        "success": True,
        "message": "Cron job completed",
        "summary": summary.to_dict(),
        "timestamp": _iso(datetime.now(timezone.utc)),
    }
