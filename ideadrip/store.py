"""
Persistence collaborators for the dispatcher.

Two narrow interfaces:
- SubscriberRepository: read the enabled population.
- OutcomeLog: claim a weekly slot, append an outcome record, read a
  user's history back.

SQL implementations sit on top of ideadrip.db / ideadrip.schema. Rows are
turned into ideadrip.models dataclasses here so nothing downstream holds an
ORM object across threads.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .db import get_session, get_sessionmaker
from .models import DEFAULT_TIMEZONE, DispatchOutcome, OutcomeStatus, SlotKey, Subscriber, UserSchedule
from .schema import DispatchSlot, EmailLog, User

logger = logging.getLogger(__name__)

HISTORY_PAGE_SIZE = 5


class SubscriberRepository(ABC):
    @abstractmethod
    def load_enabled(self) -> List[Subscriber]:
        """Every user with scheduling enabled. May raise; the driver wraps it."""
        raise NotImplementedError

    @abstractmethod
    def get(self, user_id: str) -> Optional[Subscriber]:
        """One user regardless of schedule, or None if there is no such id."""
        raise NotImplementedError


class OutcomeLog(ABC):
    @abstractmethod
    def claim_slot(self, slot: SlotKey) -> bool:
        """
        Reserve a slot before any delivery happens.

        Returns False (and does nothing) if the slot was already claimed.
        Must not raise on the duplicate case.
        """
        raise NotImplementedError

    @abstractmethod
    def record(self, outcome: DispatchOutcome) -> None:
        """Append one outcome. Outcomes are never updated afterwards."""
        raise NotImplementedError

    @abstractmethod
    def history(self, user_id: str, *, limit: int = HISTORY_PAGE_SIZE, page: int = 1) -> List[DispatchOutcome]:
        """One user's outcomes, newest first. `page` is 1-based."""
        raise NotImplementedError


def _check_page(limit: int, page: int) -> None:
    if limit < 1 or page < 1:
        raise ValueError(f"limit and page must be >= 1 (got limit={limit}, page={page})")


def _user_pk(user_id: str) -> Optional[int]:
    try:
        return int(user_id)
    except (TypeError, ValueError):
        return None


def subscriber_from_row(row: User, default_timezone: str = DEFAULT_TIMEZONE) -> Subscriber:
    schedule = UserSchedule.from_settings(
        enabled=row.email_enabled,
        day=row.email_day,
        time=row.email_time,
        timezone=row.email_timezone or default_timezone,
        idea_count=row.idea_count,
        preferences=row.preferences,
    )
    return Subscriber(user_id=str(row.id), email=row.email, name=row.name, schedule=schedule)


class SqlSubscriberRepository(SubscriberRepository):
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        default_timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self._factory = session_factory
        self._default_tz = default_timezone

    def _session(self):
        return get_session(self._factory or get_sessionmaker())

    def load_enabled(self) -> List[Subscriber]:
        out: List[Subscriber] = []
        with self._session() as s:
            rows = s.execute(select(User).where(User.email_enabled.is_(True)).order_by(User.id)).scalars().all()
            for row in rows:
                try:
                    out.append(subscriber_from_row(row, self._default_tz))
                except ValueError as exc:
                    # A garbage weekday in one row must not sink the whole population.
                    logger.warning("Skipping user %s with unreadable schedule: %s", row.id, exc)
        return out

    def get(self, user_id: str) -> Optional[Subscriber]:
        pk = _user_pk(user_id)
        if pk is None:
            return None
        with self._session() as s:
            row = s.get(User, pk)
            return subscriber_from_row(row, self._default_tz) if row is not None else None


class SqlOutcomeLog(OutcomeLog):
    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self._factory = session_factory

    def _session(self):
        return get_session(self._factory or get_sessionmaker())

    def claim_slot(self, slot: SlotKey) -> bool:
        try:
            with self._session() as s:
                s.add(
                    DispatchSlot(
                        user_id=int(slot.user_id),
                        slot_date=slot.local_date,
                        slot_time=slot.slot_time,
                    )
                )
        except IntegrityError:
            logger.info("Slot %s already claimed; not sending again.", slot.as_string())
            return False
        return True

    def record(self, outcome: DispatchOutcome) -> None:
        with self._session() as s:
            s.add(
                EmailLog(
                    user_id=int(outcome.user_id),
                    subject=outcome.subject,
                    recipient_email=outcome.recipient_address,
                    status=outcome.status.value,
                    idea_count=outcome.idea_count,
                    sent_at=outcome.attempted_at,
                    delivered_at=outcome.delivered_at,
                    failure_reason=outcome.failure_reason,
                    slot_key=outcome.slot_key,
                )
            )

    def history(self, user_id: str, *, limit: int = HISTORY_PAGE_SIZE, page: int = 1) -> List[DispatchOutcome]:
        _check_page(limit, page)
        pk = _user_pk(user_id)
        if pk is None:
            return []
        stmt = (
            select(EmailLog)
            .where(EmailLog.user_id == pk)
            .order_by(EmailLog.sent_at.desc(), EmailLog.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        with self._session() as s:
            return [outcome_from_row(row) for row in s.execute(stmt).scalars().all()]


def outcome_from_row(row: EmailLog) -> DispatchOutcome:
    return DispatchOutcome(
        user_id=str(row.user_id),
        subject=row.subject,
        recipient_address=row.recipient_email,
        status=OutcomeStatus(row.status),
        idea_count=row.idea_count,
        attempted_at=row.sent_at,
        delivered_at=row.delivered_at,
        failure_reason=row.failure_reason,
        slot_key=row.slot_key,
    )
