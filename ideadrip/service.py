"""
Wiring: build the production collaborators from DispatchSettings.

Kept separate from the core modules so tests can assemble a pipeline from
fakes without touching SMTP, OpenAI or a real database.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from .config import DispatchSettings
from .delivery import EmailDelivery
from .dispatcher import run_once
from .generation import OpenAIIdeaGenerator
from .models import RunSummary, UserResult
from .pipeline import DispatchPipeline
from .store import HISTORY_PAGE_SIZE, OutcomeLog, SqlOutcomeLog, SqlSubscriberRepository, SubscriberRepository

logger = logging.getLogger(__name__)


def build_repository(settings: DispatchSettings, session_factory: Optional[sessionmaker] = None) -> SqlSubscriberRepository:
    return SqlSubscriberRepository(session_factory, default_timezone=settings.default_timezone)


def build_pipeline(settings: DispatchSettings, session_factory: Optional[sessionmaker] = None) -> DispatchPipeline:
    return DispatchPipeline(
        generator=OpenAIIdeaGenerator(model=settings.ideas_model),
        delivery=EmailDelivery(settings),
        outcomes=SqlOutcomeLog(session_factory),
        step_timeout_seconds=settings.step_timeout_seconds,
    )


def run_dispatch(
    settings: DispatchSettings,
    *,
    now: Optional[datetime] = None,
    repository: Optional[SubscriberRepository] = None,
    pipeline: Optional[DispatchPipeline] = None,
) -> RunSummary:
    """One production run with defaults filled in from settings."""
    return run_once(
        now or datetime.now(timezone.utc),
        repository=repository or build_repository(settings),
        pipeline=pipeline or build_pipeline(settings),
        max_workers=settings.max_workers,
        tolerance_minutes=settings.window_minutes,
    )


def send_test(
    user_id: str,
    settings: DispatchSettings,
    *,
    now: Optional[datetime] = None,
    repository: Optional[SubscriberRepository] = None,
    pipeline: Optional[DispatchPipeline] = None,
) -> UserResult:
    """
    Generate and send one user's digest right now, ignoring their window and
    without consuming their weekly slot.
    """
    repo = repository or build_repository(settings)
    subscriber = repo.get(user_id)
    if subscriber is None:
        raise LookupError(f"no user with id {user_id!r}")
    pipe = pipeline or build_pipeline(settings)
    result = pipe.process(subscriber, now or datetime.now(timezone.utc), claim_slot=False)
    logger.info("Test send for user=%s -> %s", user_id, result.value)
    return result


def email_history(
    user_id: str,
    *,
    limit: int = HISTORY_PAGE_SIZE,
    page: int = 1,
    outcomes: Optional[OutcomeLog] = None,
) -> List[Dict[str, Any]]:
    """One page of a user's sent/failed digests, newest first, as JSON-ready dicts."""
    log = outcomes or SqlOutcomeLog()
    return [
        {
            "subject": o.subject,
            "status": o.status.value,
            "ideaCount": o.idea_count,
            "sentAt": o.attempted_at.isoformat(),
            "deliveredAt": o.delivered_at.isoformat() if o.delivered_at else None,
            "failureReason": o.failure_reason,
        }
        for o in log.history(user_id, limit=limit, page=page)
    ]
