"""
Internal shapes for the weekly dispatch pipeline.

These are plain dataclasses; the SQLAlchemy rows in ideadrip.schema are
converted into them by ideadrip.store before anything else sees them.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

DEFAULT_TIMEZONE = "UTC"

# Idea counts offered by the settings page.
ALLOWED_IDEA_COUNTS = (3, 5, 10)


class Weekday(str, enum.Enum):
    SUNDAY = "sunday"
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"

    @classmethod
    def parse(cls, raw: Any) -> "Weekday":
        if isinstance(raw, cls):
            return raw
        key = str(raw or "").strip().lower()
        for day in cls:
            if day.value == key:
                return day
        raise ValueError(f"unknown weekday: {raw!r}")

    @classmethod
    def of(cls, d: date) -> "Weekday":
        # date.weekday(): Monday=0 .. Sunday=6
        return _PY_WEEKDAYS[d.weekday()]


_PY_WEEKDAYS = (
    Weekday.MONDAY,
    Weekday.TUESDAY,
    Weekday.WEDNESDAY,
    Weekday.THURSDAY,
    Weekday.FRIDAY,
    Weekday.SATURDAY,
    Weekday.SUNDAY,
)


def clamp_idea_count(raw: Any) -> int:
    """Snap a stored idea count onto the nearest allowed value (ties go low)."""
    try:
        n = int(raw)
    except (TypeError, ValueError):
        return ALLOWED_IDEA_COUNTS[0]
    return min(ALLOWED_IDEA_COUNTS, key=lambda allowed: (abs(allowed - n), allowed))


def _string_set(values: Optional[Iterable[Any]]) -> FrozenSet[str]:
    if not values:
        return frozenset()
    return frozenset(str(v).strip() for v in values if str(v).strip())


@dataclass(frozen=True)
class ContentPreferences:
    focus_areas: FrozenSet[str] = frozenset()
    avoid_topics: FrozenSet[str] = frozenset()
    preferred_formats: FrozenSet[str] = frozenset()

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "ContentPreferences":
        raw = raw or {}
        return cls(
            focus_areas=_string_set(raw.get("focusAreas") or raw.get("focus_areas")),
            avoid_topics=_string_set(raw.get("avoidTopics") or raw.get("avoid_topics")),
            preferred_formats=_string_set(raw.get("preferredFormats") or raw.get("preferred_formats")),
        )

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "focusAreas": sorted(self.focus_areas),
            "avoidTopics": sorted(self.avoid_topics),
            "preferredFormats": sorted(self.preferred_formats),
        }


@dataclass(frozen=True)
class UserSchedule:
    """
    Weekly delivery slot for one user.

    `time` is "HH:MM" on the wall clock of `timezone`, never the server's zone.
    """

    enabled: bool
    day: Weekday
    time: str
    timezone: str = DEFAULT_TIMEZONE
    idea_count: int = ALLOWED_IDEA_COUNTS[1]
    preferences: ContentPreferences = field(default_factory=ContentPreferences)

    @classmethod
    def from_settings(
        cls,
        *,
        enabled: Any,
        day: Any,
        time: Any,
        timezone: Optional[str] = None,
        idea_count: Any = None,
        preferences: Optional[Mapping[str, Any]] = None,
    ) -> "UserSchedule":
        return cls(
            enabled=bool(enabled),
            day=Weekday.parse(day),
            time=str(time or "").strip(),
            timezone=(timezone or "").strip() or DEFAULT_TIMEZONE,
            idea_count=clamp_idea_count(idea_count if idea_count is not None else ALLOWED_IDEA_COUNTS[1]),
            preferences=ContentPreferences.from_mapping(preferences),
        )


@dataclass(frozen=True)
class Subscriber:
    user_id: str
    email: str
    schedule: UserSchedule
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        local_part = (self.email or "").split("@")[0]
        return local_part or "Creator"


@dataclass(frozen=True)
class SlotKey:
    """Identity of one weekly firing: (user, local calendar date, scheduled HH:MM)."""

    user_id: str
    local_date: date
    slot_time: str

    def as_string(self) -> str:
        return f"{self.user_id}:{self.local_date.isoformat()}:{self.slot_time}"


@dataclass
class GeneratedBatch:
    """What the idea generator hands back. May hold fewer items than requested."""

    items: List[Dict[str, Any]]
    batch_id: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.items)


class OutcomeStatus(str, enum.Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class DispatchOutcome:
    """
    Immutable record of what happened for one user in one run.

    Construction enforces:
      - failed    => failure_reason is set
      - delivered => delivered_at is set and failure_reason is absent
    """

    user_id: str
    subject: str
    recipient_address: str
    status: OutcomeStatus
    idea_count: int
    attempted_at: datetime
    delivered_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    slot_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.status is OutcomeStatus.FAILED and not self.failure_reason:
            raise ValueError("failed outcome requires failure_reason")
        if self.status is OutcomeStatus.DELIVERED:
            if self.delivered_at is None:
                raise ValueError("delivered outcome requires delivered_at")
            if self.failure_reason is not None:
                raise ValueError("delivered outcome must not carry failure_reason")


class UserResult(str, enum.Enum):
    """The single structured result each per-user task reports back."""

    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    SENT = "sent"
    DELIVERY_FAILED = "delivery_failed"
    GENERATION_FAILED = "generation_failed"
    ERROR = "error"


@dataclass
class RunSummary:
    users_checked: int = 0
    generated: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0
    delivery_failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "usersChecked": self.users_checked,
            "generated": self.generated,
            "sent": self.sent,
            "skipped": self.skipped,
            "errors": self.errors,
            "deliveryFailed": self.delivery_failed,
        }
