from __future__ import annotations

import threading
from typing import Iterable

from .models import RunSummary, UserResult


class RunAggregator:
    """
    Per-run counters. Workers never touch these directly; they return a
    UserResult and the driver folds it in here under the lock.

    Every accumulated result bumps users_checked, so
    users_checked == skipped + sent + errors always holds. delivery_failed
    is a breakdown of errors: a generated batch that never went out.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._summary = RunSummary()

    def accumulate(self, result: UserResult) -> None:
        with self._lock:
            s = self._summary
            s.users_checked += 1
            if result in (UserResult.SKIPPED, UserResult.DUPLICATE):
                s.skipped += 1
            elif result is UserResult.SENT:
                s.generated += 1
                s.sent += 1
            elif result is UserResult.DELIVERY_FAILED:
                s.generated += 1
                s.delivery_failed += 1
                s.errors += 1
            else:
                s.errors += 1

    def accumulate_all(self, results: Iterable[UserResult]) -> None:
        for result in results:
            self.accumulate(result)

    def merge(self, other: "RunAggregator") -> None:
        theirs = other.summary()
        with self._lock:
            s = self._summary
            s.users_checked += theirs.users_checked
            s.generated += theirs.generated
            s.sent += theirs.sent
            s.skipped += theirs.skipped
            s.errors += theirs.errors
            s.delivery_failed += theirs.delivery_failed

    def summary(self) -> RunSummary:
        with self._lock:
            s = self._summary
            return RunSummary(
                users_checked=s.users_checked,
                generated=s.generated,
                sent=s.sent,
                skipped=s.skipped,
                errors=s.errors,
                delivery_failed=s.delivery_failed,
            )
