"""
flows.weekly_ideas_flow — Prefect wrapper for ideadrip.dispatcher

Runs one dispatch pass: every subscriber whose weekly slot is within the
window right now gets ideas generated, emailed and logged.

Intended usage:
  - Ad-hoc:  python -m flows.weekly_ideas_flow
  - Prefect deployment: every 5 minutes (see deploy_weekly_ideas.py).
    The window tolerance assumes the cadence is never coarser than that.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Dict, Optional

from dotenv import load_dotenv
from prefect import flow, get_run_logger

from ideadrip import alerts
from ideadrip.config import DispatchSettings
from ideadrip.errors import PopulationLoadFailure
from ideadrip.service import run_dispatch


@flow(name="weekly-ideas-dispatch")
def weekly_ideas_dispatch(at: Optional[str] = None, dry_run: Optional[bool] = None) -> Dict[str, int]:
    """
    Params:
      at:       optional ISO-8601 instant to use as the run's "now" (replays / tests)
      dry_run:  override EMAIL_DRY_RUN for this run

    Returns the run summary dict. A population-load failure fails the flow
    run so Prefect shows it red; per-user failures never do.
    """
    logger = get_run_logger()
    load_dotenv()
    settings = DispatchSettings.from_env()
    if dry_run is not None:
        settings.dry_run = dry_run

    now = datetime.fromisoformat(at.replace("Z", "+00:00")) if at else datetime.now(timezone.utc)
    logger.info(
        "weekly_ideas: run at %s (workers=%s, step_timeout=%ss, dry_run=%s)",
        now.isoformat(),
        settings.max_workers,
        settings.step_timeout_seconds,
        settings.dry_run,
    )

    try:
        summary = run_dispatch(settings, now=now)
    except PopulationLoadFailure as exc:
        logger.error("weekly_ideas: aborted, could not load users: %s", exc)
        alerts.alert_run_aborted(exc)
        raise

    logger.info("weekly_ideas: summary %s", json.dumps(summary.to_dict(), sort_keys=True))
    alerts.alert_run_summary(summary)
    return summary.to_dict()


if __name__ == "__main__":
    result = weekly_ideas_dispatch()
    print(f"weekly_ideas_dispatch done: {result}")
