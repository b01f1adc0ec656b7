import random
from datetime import datetime, timezone

import pytest

from conftest import FakeDelivery, FakeGenerator, MemoryOutcomeLog, MemoryRepository, make_subscriber
from ideadrip.dispatcher import run_once
from ideadrip.errors import PopulationLoadFailure
from ideadrip.models import OutcomeStatus, UserResult
from ideadrip.pipeline import DispatchPipeline

# Monday 2026-10-19 09:00 in New York
NOW = datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc)


def pipeline(generator=None, delivery=None, outcomes=None):
    return DispatchPipeline(
        generator or FakeGenerator(),
        delivery or FakeDelivery(),
        outcomes if outcomes is not None else MemoryOutcomeLog(),
        step_timeout_seconds=None,
    )


def assert_balanced(summary):
    assert summary.users_checked == summary.skipped + summary.sent + summary.errors
    assert summary.delivery_failed <= summary.errors
    assert summary.generated == summary.sent + summary.delivery_failed


def test_mixed_population():
    subs = [
        make_subscriber("1"),                      # due
        make_subscriber("2", time="09:04"),        # due (delta 4)
        make_subscriber("3", time="09:06"),        # not due (delta 6)
        make_subscriber("4", day="tuesday"),       # wrong day
        make_subscriber("5", tz="Europe/London"),  # 14:00 local
    ]
    outcomes = MemoryOutcomeLog()
    summary = run_once(NOW, repository=MemoryRepository(subs), pipeline=pipeline(outcomes=outcomes), max_workers=3)

    assert summary.users_checked == 5
    assert summary.sent == 2
    assert summary.generated == 2
    assert summary.skipped == 3
    assert summary.errors == 0
    assert sorted(o.user_id for o in outcomes.outcomes) == ["1", "2"]
    assert_balanced(summary)


def test_disabled_users_are_not_counted_at_all():
    generator = FakeGenerator()
    subs = [make_subscriber("1", enabled=False), make_subscriber("2")]
    summary = run_once(NOW, repository=MemoryRepository(subs), pipeline=pipeline(generator=generator))

    assert summary.users_checked == 1
    assert summary.sent == 1
    assert generator.calls == ["2"]


def test_failures_are_isolated_per_user():
    subs = [make_subscriber(str(i)) for i in range(1, 6)]
    generator = FakeGenerator(fail_for={"2"})
    delivery = FakeDelivery(fail_for={"3"}, explode_for={"4"})
    outcomes = MemoryOutcomeLog()

    summary = run_once(
        NOW,
        repository=MemoryRepository(subs),
        pipeline=pipeline(generator, delivery, outcomes),
        max_workers=2,
    )

    assert summary.users_checked == 5
    assert summary.sent == 2  # users 1 and 5
    assert summary.delivery_failed == 1
    assert summary.generated == 3
    assert summary.errors == 3  # generation failure, refused delivery, exploded transport
    assert sorted(delivery.delivered) == ["1", "5"]
    assert "2" not in delivery.attempts
    for uid in ("1", "2", "3", "4", "5"):
        assert len(outcomes.for_user(uid)) == 1
    assert outcomes.for_user("1")[0].status is OutcomeStatus.DELIVERED
    assert_balanced(summary)


def test_bad_schedule_counts_as_error_but_run_continues():
    subs = [make_subscriber("1", tz="Nowhere/Special"), make_subscriber("2")]
    summary = run_once(NOW, repository=MemoryRepository(subs), pipeline=pipeline())
    assert summary.errors == 1
    assert summary.sent == 1
    assert_balanced(summary)


def test_population_load_failure_aborts_before_any_user():
    generator = FakeGenerator()
    with pytest.raises(PopulationLoadFailure):
        run_once(NOW, repository=MemoryRepository([make_subscriber("1")], fail=True), pipeline=pipeline(generator))
    assert generator.calls == []


def test_naive_now_is_rejected():
    with pytest.raises(ValueError):
        run_once(datetime(2026, 10, 19, 13, 0), repository=MemoryRepository([]), pipeline=pipeline())


def test_adjacent_runs_fire_a_slot_once():
    outcomes = MemoryOutcomeLog()
    delivery = FakeDelivery()
    repo = MemoryRepository([make_subscriber("1", time="09:02")])
    pipe = pipeline(delivery=delivery, outcomes=outcomes)

    first = run_once(NOW, repository=repo, pipeline=pipe)
    second = run_once(NOW.replace(minute=5), repository=repo, pipeline=pipe)

    assert first.sent == 1
    assert second.sent == 0
    assert second.skipped == 1
    assert delivery.delivered == ["1"]


def test_crashing_custom_pipeline_is_contained():
    class Broken:
        def process(self, subscriber, now):
            raise RuntimeError("boom")

    summary = run_once(NOW, repository=MemoryRepository([make_subscriber("1")]), pipeline=Broken())
    assert summary.errors == 1
    assert_balanced(summary)


@pytest.mark.parametrize("workers", [1, 3, 8, 32])
def test_aggregate_is_deterministic_under_concurrency(workers):
    rng = random.Random(1234)
    subs = []
    gen_fail, del_fail, boom = set(), set(), set()
    for i in range(60):
        uid = str(i)
        due = rng.random() < 0.8
        subs.append(make_subscriber(uid, time="09:00" if due else "15:00"))
        if not due:
            continue
        roll = rng.random()
        if roll < 0.15:
            gen_fail.add(uid)
        elif roll < 0.3:
            del_fail.add(uid)
        elif roll < 0.4:
            boom.add(uid)
    due_count = sum(1 for s in subs if s.schedule.time == "09:00")

    outcomes = MemoryOutcomeLog()
    summary = run_once(
        NOW,
        repository=MemoryRepository(subs),
        pipeline=pipeline(FakeGenerator(fail_for=gen_fail), FakeDelivery(fail_for=del_fail, explode_for=boom), outcomes),
        max_workers=workers,
    )

    assert summary.users_checked == 60
    assert summary.skipped == 60 - due_count
    assert summary.delivery_failed == len(del_fail)
    assert summary.errors == len(gen_fail) + len(del_fail) + len(boom)
    assert summary.sent == due_count - len(gen_fail) - len(del_fail) - len(boom)
    assert len(outcomes.outcomes) == due_count
    assert_balanced(summary)
    assert UserResult.SENT.value == "sent"


def test_refused_delivery_is_counted_as_an_error():
    summary = run_once(
        NOW,
        repository=MemoryRepository([make_subscriber("1")]),
        pipeline=pipeline(delivery=FakeDelivery(fail_for={"1"})),
    )
    assert summary.to_dict() == {
        "usersChecked": 1,
        "generated": 1,
        "sent": 0,
        "skipped": 0,
        "errors": 1,
        "deliveryFailed": 1,
    }
