"""
Batch driver: one run over the enabled population at a single instant.

    summary = run_once(now, repository=repo, pipeline=pipe, max_workers=4)

Flow:
1) Load enabled subscribers (failure here aborts the run: PopulationLoadFailure).
2) Window-match each one against the shared `now`; not-due -> skipped.
3) Fan due users out to a bounded thread pool; each task returns one UserResult.
4) Fold results into a RunAggregator and return its summary.

Per-user failures never leave step 3.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import List, Optional, Tuple

from .aggregator import RunAggregator
from .errors import PopulationLoadFailure
from .models import RunSummary, Subscriber, UserResult
from .pipeline import DispatchPipeline
from .store import SubscriberRepository
from .window import WINDOW_MINUTES, describe, local_position, minutes_off

logger = logging.getLogger(__name__)


def check_window(subscriber: Subscriber, now: datetime, tolerance_minutes: int = WINDOW_MINUTES) -> bool:
    """Window test plus the per-user diagnostic line. Raises on an unreadable schedule."""
    schedule = subscriber.schedule
    day, minute, _ = local_position(now, schedule)
    delta = minutes_off(now, schedule)
    logger.info(
        "user=%s tz=%s local=%02d:%02d (%s) scheduled=%s delta=%s",
        subscriber.user_id,
        schedule.timezone,
        minute // 60,
        minute % 60,
        day.value,
        describe(schedule),
        "wrong-day" if delta is None else delta,
    )
    return delta is not None and delta <= tolerance_minutes


def _partition(
    subscribers: List[Subscriber], now: datetime, tolerance_minutes: int
) -> Tuple[List[Subscriber], List[UserResult]]:
    due: List[Subscriber] = []
    settled: List[UserResult] = []
    for sub in subscribers:
        try:
            if check_window(sub, now, tolerance_minutes):
                due.append(sub)
            else:
                settled.append(UserResult.SKIPPED)
        except Exception as exc:
            logger.warning("user=%s schedule could not be evaluated: %s", sub.user_id, exc)
            settled.append(UserResult.ERROR)
    return due, settled


def run_once(
    now: datetime,
    *,
    repository: SubscriberRepository,
    pipeline: DispatchPipeline,
    max_workers: int = 4,
    tolerance_minutes: int = WINDOW_MINUTES,
    aggregator: Optional[RunAggregator] = None,
) -> RunSummary:
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValueError("run instant must be timezone-aware")

    logger.info("Dispatch run at %s", now.isoformat())

    try:
        population = repository.load_enabled()
    except Exception as exc:
        raise PopulationLoadFailure(f"could not load enabled users: {exc}") from exc

    # Query already filters, but a disabled row must never reach matching.
    subscribers = [s for s in population if s.schedule.enabled]
    logger.info("Found %s users with emails enabled", len(subscribers))

    agg = aggregator or RunAggregator()
    due, settled = _partition(subscribers, now, tolerance_minutes)
    agg.accumulate_all(settled)

    if due:
        workers = max(1, min(max_workers, len(due)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ideadrip-user") as pool:
            futures = {pool.submit(pipeline.process, sub, now): sub for sub in due}
            for fut in as_completed(futures):
                sub = futures[fut]
                try:
                    result = fut.result()
                except Exception as exc:
                    logger.exception("user=%s worker crashed: %s", sub.user_id, exc)
                    result = UserResult.ERROR
                agg.accumulate(result)

    summary = agg.summary()
    logger.info(
        "Run summary: checked=%s generated=%s sent=%s skipped=%s errors=%s delivery_failed=%s",
        summary.users_checked,
        summary.generated,
        summary.sent,
        summary.skipped,
        summary.errors,
        summary.delivery_failed,
    )
    return summary
