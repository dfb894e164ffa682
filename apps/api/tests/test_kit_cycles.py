"""Tests for the cycle completion policy."""
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from keepintouch.db.enums import (
    CycleAction,
    CycleBehavior,
    KitActivityType,
    SubscriptionStatus,
    TouchMethod,
    TouchStatus,
)
from keepintouch.db.models import KitActivityLog, KitTouch
from keepintouch.schemas.kit import PresetCreate
from keepintouch.services import cycle_service, preset_service, subscription_service, touch_service
from keepintouch.services.kit_errors import InvalidStateTransitionError

from conftest import MONDAY, make_activation, make_steps


def _activate(db, collaborators, **kwargs):
    return subscription_service.activate_subscription(
        db, make_activation(**kwargs), collaborators, actor="manager@example.com", now=MONDAY
    ).subscription


def _count_touches(db, subscription_id) -> int:
    return db.execute(
        select(func.count()).select_from(KitTouch).where(KitTouch.subscription_id == subscription_id)
    ).scalar_one()


def test_one_time_preset_scenario(db, collaborators):
    preset = preset_service.create_preset(
        db,
        PresetCreate(
            name="New lead",
            touch_sequence=make_steps(
                (TouchMethod.CALL, 0), (TouchMethod.WHATSAPP, 3), (TouchMethod.CALL, 7)
            ),
            default_cycle_behavior=CycleBehavior.ONE_TIME,
        ),
        actor="manager@example.com",
    )
    sub = _activate(db, collaborators, preset_id=preset.id, custom_sequence=None, cycle_behavior=None)
    touches = touch_service.list_touches(db, sub.id)
    assert [(t.scheduled_date - MONDAY.date()).days for t in touches] == [0, 3, 10]

    results = [
        touch_service.complete_touch(db, collaborators, t.id, "connected", now=MONDAY)
        for t in touches
    ]

    assert [r.evaluation.cycle_complete for r in results] == [False, False, True]
    assert results[-1].evaluation.action == CycleAction.COMPLETED
    assert results[-1].evaluation.behavior == CycleBehavior.ONE_TIME

    db.refresh(sub)
    assert sub.status == SubscriptionStatus.COMPLETED.value
    assert sub.completed_at is not None
    assert _count_touches(db, sub.id) == 3

    completed_logs = db.execute(
        select(KitActivityLog).where(
            KitActivityLog.subscription_id == sub.id,
            KitActivityLog.activity_type == KitActivityType.KIT_COMPLETED.value,
        )
    ).scalars().all()
    assert len(completed_logs) == 1


def test_auto_repeat_starts_next_cycle_anchored_today(db, collaborators):
    sub = _activate(
        db, collaborators,
        steps=make_steps((TouchMethod.CALL, 0), (TouchMethod.EMAIL, 4)),
        cycle_behavior=CycleBehavior.AUTO_REPEAT,
    )
    touches = touch_service.list_touches(db, sub.id)

    later = MONDAY + timedelta(days=9)  # 2026-03-11
    touch_service.skip_touch(db, collaborators, touches[0].id, now=later)
    result = touch_service.complete_touch(db, collaborators, touches[1].id, "positive", now=later)

    assert result.evaluation.action == CycleAction.REPEATED
    assert result.evaluation.cycle_count == 2

    db.refresh(sub)
    assert sub.status == SubscriptionStatus.ACTIVE.value
    assert sub.cycle_count == 2
    assert sub.current_step == 0

    cycle_two = touch_service.list_touches(db, sub.id, cycle_number=2)
    assert [t.sequence_index for t in cycle_two] == [0, 1]
    assert [t.scheduled_date for t in cycle_two] == [date(2026, 3, 11), date(2026, 3, 15)]
    assert all(t.status == TouchStatus.PENDING.value for t in cycle_two)


def test_auto_repeat_stops_at_max_cycles(db, collaborators):
    sub = _activate(
        db, collaborators,
        steps=make_steps((TouchMethod.CALL, 0)),
        cycle_behavior=CycleBehavior.AUTO_REPEAT,
        max_cycles=2,
    )

    first = touch_service.list_touches(db, sub.id, cycle_number=1)[0]
    result = touch_service.complete_touch(db, collaborators, first.id, "connected", now=MONDAY)
    assert result.evaluation.action == CycleAction.REPEATED

    second = touch_service.list_touches(db, sub.id, cycle_number=2)[0]
    result = touch_service.complete_touch(db, collaborators, second.id, "connected", now=MONDAY)
    assert result.evaluation.action == CycleAction.COMPLETED
    assert result.evaluation.behavior == CycleBehavior.AUTO_REPEAT

    db.refresh(sub)
    assert sub.status == SubscriptionStatus.COMPLETED.value
    assert sub.cycle_count == 2
    assert _count_touches(db, sub.id) == 2


def test_cycle_completion_detected_once(db, collaborators):
    sub = _activate(
        db, collaborators,
        steps=make_steps((TouchMethod.CALL, 0), (TouchMethod.EMAIL, 1)),
        cycle_behavior=CycleBehavior.AUTO_REPEAT,
    )
    first, second = touch_service.list_touches(db, sub.id)

    # Resolve the last two touches in reverse order
    r1 = touch_service.skip_touch(db, collaborators, second.id, now=MONDAY)
    r2 = touch_service.skip_touch(db, collaborators, first.id, now=MONDAY)

    assert [r1.evaluation.cycle_complete, r2.evaluation.cycle_complete] == [False, True]
    db.refresh(sub)
    assert sub.cycle_count == 2
    assert _count_touches(db, sub.id) == 4

    # Re-evaluating does not materialize again: cycle 2 is still pending
    evaluation = cycle_service.evaluate_cycle(db, sub, collaborators, now=MONDAY)
    assert evaluation.cycle_complete is False
    assert _count_touches(db, sub.id) == 4


def test_paused_subscription_completed_by_one_time_policy(db, collaborators):
    sub = _activate(db, collaborators, steps=make_steps((TouchMethod.CALL, 0)))
    subscription_service.pause_subscription(db, sub.id, collaborators)

    touch = touch_service.list_touches(db, sub.id)[0]
    result = touch_service.complete_touch(db, collaborators, touch.id, "connected", now=MONDAY)

    assert result.evaluation.action == CycleAction.COMPLETED
    db.refresh(sub)
    assert sub.status == SubscriptionStatus.COMPLETED.value
    assert sub.pause_until is None


def test_is_cycle_resolved(db, collaborators):
    sub = _activate(db, collaborators, cycle_behavior=CycleBehavior.USER_DEFINED)
    assert cycle_service.is_cycle_resolved(db, sub) is False

    for touch in touch_service.list_touches(db, sub.id):
        touch_service.skip_touch(db, collaborators, touch.id, now=MONDAY)
    db.refresh(sub)
    assert cycle_service.is_cycle_resolved(db, sub) is True


def test_leftover_touch_of_earlier_cycle_does_not_complete_again(db, collaborators):
    sub = _activate(
        db, collaborators,
        steps=make_steps((TouchMethod.CALL, 0), (TouchMethod.EMAIL, 1)),
        cycle_behavior=CycleBehavior.USER_DEFINED,
    )
    first, leftover = touch_service.list_touches(db, sub.id, cycle_number=1)
    touch_service.skip_touch(db, collaborators, first.id, now=MONDAY)
    subscription_service.repeat_cycle(db, sub.id, collaborators, force=True, now=MONDAY)

    results = [
        touch_service.skip_touch(db, collaborators, t.id, now=MONDAY)
        for t in touch_service.list_touches(db, sub.id, cycle_number=2)
    ]
    results.append(touch_service.skip_touch(db, collaborators, leftover.id, now=MONDAY))

    assert [r.evaluation.cycle_complete for r in results] == [False, True, False]
    assert results[1].evaluation.action == CycleAction.AWAITING_DECISION
    assert results[-1].evaluation.action == CycleAction.NONE
    assert results[-1].evaluation.cycle_count == 2

    db.refresh(sub)
    assert sub.cycle_count == 2
    assert sub.current_step == 2
    assert sub.status == SubscriptionStatus.ACTIVE.value


def test_stale_session_cannot_start_a_second_cycle(db, collaborators):
    sub = _activate(
        db, collaborators,
        steps=make_steps((TouchMethod.CALL, 0)),
        cycle_behavior=CycleBehavior.AUTO_REPEAT,
    )
    touch = touch_service.list_touches(db, sub.id)[0]

    other = Session(bind=db.get_bind(), autoflush=False)
    try:
        stale = other.get(KitTouch, touch.id)
        assert stale.status == TouchStatus.PENDING.value

        touch_service.skip_touch(db, collaborators, touch.id, now=MONDAY)

        # The lock reloads the subscription and touch, so the second resolution is rejected
        with pytest.raises(InvalidStateTransitionError):
            touch_service.skip_touch(other, collaborators, touch.id, now=MONDAY)
        other.rollback()
    finally:
        other.close()

    db.refresh(sub)
    assert sub.cycle_count == 2
    assert _count_touches(db, sub.id) == 2
