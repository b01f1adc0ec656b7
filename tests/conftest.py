from pathlib import Path

import sys
import threading
from typing import Dict, List, Optional, Set

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from ideadrip.errors import GenerationFailure
from ideadrip.models import ContentPreferences, GeneratedBatch, Subscriber, UserSchedule
from ideadrip.store import OutcomeLog, SubscriberRepository


def make_subscriber(
    user_id: str = "1",
    *,
    day: str = "monday",
    time: str = "09:00",
    tz: str = "America/New_York",
    enabled: bool = True,
    idea_count: int = 5,
    email: Optional[str] = None,
) -> Subscriber:
    schedule = UserSchedule.from_settings(
        enabled=enabled,
        day=day,
        time=time,
        timezone=tz,
        idea_count=idea_count,
        preferences={"focusAreas": ["tech reviews"], "avoidTopics": ["politics"]},
    )
    return Subscriber(user_id=user_id, email=email or f"user{user_id}@example.com", schedule=schedule)


class FakeGenerator:
    def __init__(self, fail_for: Set[str] = frozenset(), short_by: int = 0, hang: Optional[threading.Event] = None):
        self.fail_for = set(fail_for)
        self.short_by = short_by
        self.hang = hang
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def generate(self, user_id, count, preferences: ContentPreferences) -> GeneratedBatch:
        with self._lock:
            self.calls.append(user_id)
        if self.hang is not None:
            self.hang.wait(timeout=5)
        if user_id in self.fail_for:
            raise GenerationFailure(f"no ideas for {user_id}")
        n = max(0, count - self.short_by)
        return GeneratedBatch(items=[{"title": f"Idea {i}", "hook": "hook"} for i in range(n)])


class FakeDelivery:
    def __init__(self, fail_for: Set[str] = frozenset(), explode_for: Set[str] = frozenset()):
        self.fail_for = set(fail_for)
        self.explode_for = set(explode_for)
        self.delivered: List[str] = []
        self.attempts: List[str] = []
        self._lock = threading.Lock()

    def deliver(self, subscriber, batch) -> bool:
        with self._lock:
            self.attempts.append(subscriber.user_id)
        if subscriber.user_id in self.explode_for:
            raise RuntimeError("transport exploded")
        if subscriber.user_id in self.fail_for:
            return False
        with self._lock:
            self.delivered.append(subscriber.user_id)
        return True


class MemoryOutcomeLog(OutcomeLog):
    def __init__(self, fail_record: bool = False):
        self.fail_record = fail_record
        self.claimed: Set[str] = set()
        self.outcomes = []
        self._lock = threading.Lock()

    def claim_slot(self, slot) -> bool:
        with self._lock:
            key = slot.as_string()
            if key in self.claimed:
                return False
            self.claimed.add(key)
            return True

    def record(self, outcome) -> None:
        if self.fail_record:
            raise RuntimeError("outcome store is down")
        with self._lock:
            self.outcomes.append(outcome)

    def for_user(self, user_id: str):
        return [o for o in self.outcomes if o.user_id == user_id]

    def history(self, user_id: str, *, limit: int = 5, page: int = 1):
        newest_first = list(reversed(self.for_user(user_id)))
        return newest_first[(page - 1) * limit : page * limit]


class MemoryRepository(SubscriberRepository):
    def __init__(self, subscribers: List[Subscriber], fail: bool = False):
        self.subscribers = list(subscribers)
        self.fail = fail
        self.loads = 0

    def load_enabled(self) -> List[Subscriber]:
        self.loads += 1
        if self.fail:
            raise ConnectionError("database unreachable")
        return list(self.subscribers)

    def get(self, user_id: str) -> Optional[Subscriber]:
        by_id: Dict[str, Subscriber] = {s.user_id: s for s in self.subscribers}
        return by_id.get(user_id)


@pytest.fixture
def outcomes():
    return MemoryOutcomeLog()
