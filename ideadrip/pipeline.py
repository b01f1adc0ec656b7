"""
Per-user pipeline: claim slot -> generate -> deliver -> record.

process() never raises. Whatever happens to one user ends up as exactly one
UserResult, and (except for a duplicate claim) at least a best-effort
outcome row.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from typing import Any, Callable, Optional

from .delivery import DeliveryService
from .errors import DeliveryFailure, StepTimeout
from .generation import IdeaGenerator
from .models import DispatchOutcome, GeneratedBatch, OutcomeStatus, Subscriber, UserResult
from .store import OutcomeLog
from .window import slot_for

logger = logging.getLogger(__name__)

SUBJECT_DELIVERED = "Your {n} Weekly Video Ideas"
SUBJECT_DELIVERY_FAILED = "Your Weekly Video Ideas (Failed)"
SUBJECT_GENERATION_FAILED = "Your Weekly Video Ideas (Generation Failed)"
SUBJECT_ERROR = "Your Weekly Video Ideas (Error)"

REASON_GENERATION = "generation failed"
REASON_DELIVERY = "delivery failed"


class DispatchPipeline:
    def __init__(
        self,
        generator: IdeaGenerator,
        delivery: DeliveryService,
        outcomes: OutcomeLog,
        *,
        step_timeout_seconds: Optional[float] = 60.0,
    ) -> None:
        self.generator = generator
        self.delivery = delivery
        self.outcomes = outcomes
        self.step_timeout = step_timeout_seconds

    # ------------------------------------------------------------------
    # step runner
    # ------------------------------------------------------------------
    def _call(self, step: str, fn: Callable[..., Any], *args: Any) -> Any:
        if not self.step_timeout or self.step_timeout <= 0:
            return fn(*args)

        ex = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"ideadrip-{step}")
        future = ex.submit(fn, *args)
        try:
            return future.result(timeout=self.step_timeout)
        except FutureTimeout:
            if future.done():
                # The step itself raised a TimeoutError; surface it as-is.
                raise
            future.cancel()
            raise StepTimeout(step, self.step_timeout) from None
        finally:
            # A hung step keeps its thread; we just stop waiting on it.
            ex.shutdown(wait=False)

    def _outcome(
        self,
        subscriber: Subscriber,
        now: datetime,
        *,
        subject: str,
        status: OutcomeStatus,
        idea_count: int,
        failure_reason: Optional[str] = None,
        slot_key: Optional[str] = None,
    ) -> DispatchOutcome:
        return DispatchOutcome(
            user_id=subscriber.user_id,
            subject=subject,
            recipient_address=subscriber.email,
            status=status,
            idea_count=idea_count,
            attempted_at=now,
            delivered_at=now if status is OutcomeStatus.DELIVERED else None,
            failure_reason=failure_reason,
            slot_key=slot_key,
        )

    # ------------------------------------------------------------------
    # public
    # ------------------------------------------------------------------
    def process(self, subscriber: Subscriber, now: datetime, *, claim_slot: bool = True) -> UserResult:
        """
        Serve one due user. `claim_slot=False` is for manual test sends,
        which bypass the once-per-slot guard.
        """
        uid = subscriber.user_id
        slot_key: Optional[str] = None
        generated = 0
        try:
            if claim_slot:
                slot = slot_for(uid, now, subscriber.schedule)
                slot_key = slot.as_string()
                if not self._call("claim", self.outcomes.claim_slot, slot):
                    return UserResult.DUPLICATE

            # 1) generate
            count = subscriber.schedule.idea_count
            logger.info("user=%s generating %s ideas", uid, count)
            try:
                batch: GeneratedBatch = self._call(
                    "generation", self.generator.generate, uid, count, subscriber.schedule.preferences
                )
            except StepTimeout:
                raise
            except Exception as exc:
                logger.warning("user=%s idea generation failed: %s", uid, exc)
                self._call(
                    "record",
                    self.outcomes.record,
                    self._outcome(
                        subscriber,
                        now,
                        subject=SUBJECT_GENERATION_FAILED,
                        status=OutcomeStatus.FAILED,
                        idea_count=0,
                        failure_reason=REASON_GENERATION,
                        slot_key=slot_key,
                    ),
                )
                return UserResult.GENERATION_FAILED
            generated = batch.count
            logger.info("user=%s generated %s ideas", uid, generated)

            # 2) deliver
            try:
                delivered = bool(self._call("delivery", self.delivery.deliver, subscriber, batch))
            except DeliveryFailure as exc:
                logger.warning("user=%s delivery failed: %s", uid, exc)
                delivered = False

            if not delivered:
                self._call(
                    "record",
                    self.outcomes.record,
                    self._outcome(
                        subscriber,
                        now,
                        subject=SUBJECT_DELIVERY_FAILED,
                        status=OutcomeStatus.FAILED,
                        idea_count=generated,
                        failure_reason=REASON_DELIVERY,
                        slot_key=slot_key,
                    ),
                )
                return UserResult.DELIVERY_FAILED

            # 3) log success
            self._call(
                "record",
                self.outcomes.record,
                self._outcome(
                    subscriber,
                    now,
                    subject=SUBJECT_DELIVERED.format(n=generated),
                    status=OutcomeStatus.DELIVERED,
                    idea_count=generated,
                    slot_key=slot_key,
                ),
            )
            logger.info("user=%s email sent", uid)
            return UserResult.SENT

        except StepTimeout as exc:
            logger.error("user=%s %s", uid, exc)
            if exc.step == "record":
                # The abandoned write may still land; a second row would duplicate it.
                logger.warning("user=%s outcome write timed out; not recording again", uid)
            else:
                self._record_best_effort(subscriber, now, exc, generated, slot_key)
            return UserResult.ERROR
        except Exception as exc:
            logger.exception("user=%s unexpected error: %s", uid, exc)
            self._record_best_effort(subscriber, now, exc, generated, slot_key)
            return UserResult.ERROR

    def _record_best_effort(
        self,
        subscriber: Subscriber,
        now: datetime,
        exc: BaseException,
        generated: int,
        slot_key: Optional[str],
    ) -> None:
        try:
            self._call(
                "record",
                self.outcomes.record,
                self._outcome(
                    subscriber,
                    now,
                    subject=SUBJECT_ERROR,
                    status=OutcomeStatus.FAILED,
                    idea_count=generated,
                    failure_reason=f"{type(exc).__name__}: {exc}"[:500],
                    slot_key=slot_key,
                ),
            )
        except Exception as record_exc:
            logger.error("user=%s could not record error outcome: %s", subscriber.user_id, record_exc)
