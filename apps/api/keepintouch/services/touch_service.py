"""Touch service - per-touch lifecycle for keep-in-touch sequences.

pending -> completed | skipped. Snooze, reschedule, reassign and edit keep
the touch pending. Resolutions (complete/skip) run the cycle completion
policy in the same transaction, under the subscription row lock.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from keepintouch.core.constants import ALLOW_EDIT_RESOLVED_TOUCHES, ALLOW_TOUCH_ACTIONS_WHILE_PAUSED
from keepintouch.core.structured_logging import build_log_context
from keepintouch.db.enums import (
    DueState,
    FollowUpAction,
    KitActivityType,
    SubscriptionStatus,
    TouchStatus,
)
from keepintouch.db.models import KitSubscription, KitTouch
from keepintouch.schemas.kit import FollowUp, TouchAdd, TouchEdit
from keepintouch.services import cycle_service, subscription_service
from keepintouch.services.collaborators import (
    FollowUpSpec,
    KitCollaborators,
    SideEffectResult,
    record_event,
    run_side_effect,
    sync_linked_follow_ups,
)
from keepintouch.services.cycle_service import CycleEvaluation
from keepintouch.services.kit_errors import (
    InvalidStateTransitionError,
    MissingAssigneeError,
    TouchNotFoundError,
)
from keepintouch.utils.calendar_days import as_utc, local_today, to_local

logger = logging.getLogger(__name__)


# =============================================================================
# Outcomes and snooze presets
# =============================================================================


@dataclass(frozen=True)
class Outcome:
    value: str
    label: str
    description: str
    requires_followup: bool
    is_positive: bool


OUTCOMES: tuple[Outcome, ...] = (
    Outcome("connected", "Connected", "Spoke successfully", False, True),
    Outcome("not_reachable", "Not Reachable", "No answer / voicemail", True, False),
    Outcome("callback", "Callback Requested", "Busy, call later", True, False),
    Outcome("positive", "Positive Response", "Showed interest", False, True),
    Outcome("invalid", "Invalid Contact", "Wrong number / declined", False, False),
)

_OUTCOMES_BY_VALUE = {outcome.value: outcome for outcome in OUTCOMES}

SNOOZE_OPTIONS: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "2h": timedelta(hours=2),
    "4h": timedelta(hours=4),
    "tomorrow": timedelta(days=1),
}


def get_outcome(value: str) -> Outcome | None:
    return _OUTCOMES_BY_VALUE.get(value)


def outcome_requires_followup(value: str) -> bool:
    """Unknown outcomes never require a follow-up."""
    outcome = get_outcome(value)
    return bool(outcome and outcome.requires_followup)


def resolve_snooze_option(option: str, now: datetime | None = None) -> datetime:
    """Turn a snooze preset ("1h", "2h", "4h", "tomorrow") into a datetime."""
    delta = SNOOZE_OPTIONS.get(option)
    if delta is None:
        raise ValueError(f"Unknown snooze option: {option}")
    return as_utc(now or _utcnow()) + delta


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class ResolutionEvent:
    """Emitted when a touch reaches completed or skipped."""

    touch_id: UUID
    subscription_id: UUID
    cycle_number: int
    status: TouchStatus
    outcome: str | None = None


@dataclass
class TouchResult:
    touch: KitTouch
    event: ResolutionEvent | None = None
    evaluation: CycleEvaluation | None = None
    side_effects: list[SideEffectResult] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Lookups
# =============================================================================


def get_touch(db: Session, touch_id: UUID) -> KitTouch | None:
    """Get a single touch by ID."""
    return db.get(KitTouch, touch_id)


def list_touches(
    db: Session,
    subscription_id: UUID,
    cycle_number: int | None = None,
) -> list[KitTouch]:
    """Touches of a subscription, optionally one cycle, in schedule order."""
    query = select(KitTouch).where(KitTouch.subscription_id == subscription_id)
    if cycle_number is not None:
        query = query.where(KitTouch.cycle_number == cycle_number)
    query = query.order_by(KitTouch.cycle_number, KitTouch.sequence_index)
    return list(db.execute(query).scalars().all())


def due_state(touch: KitTouch, now: datetime | None = None) -> DueState:
    """Overdue / due today / upcoming, relative to today in the scheduling timezone."""
    if touch.is_resolved:
        return DueState.RESOLVED
    today = local_today(now)
    if touch.scheduled_date < today:
        return DueState.OVERDUE
    if touch.scheduled_date == today:
        return DueState.DUE_TODAY
    return DueState.UPCOMING


# =============================================================================
# Guards
# =============================================================================


def _load_locked(db: Session, touch_id: UUID) -> tuple[KitTouch, KitSubscription]:
    """Lock the owning subscription, then return a fresh copy of the touch."""
    touch = db.get(KitTouch, touch_id)
    if not touch:
        raise TouchNotFoundError(f"Touch {touch_id} not found")
    subscription = subscription_service.lock_subscription(db, touch.subscription_id)
    db.refresh(touch)
    return touch, subscription


def _ensure_subscription_open(subscription: KitSubscription, operation: str) -> None:
    status = SubscriptionStatus(subscription.status)
    if status.is_terminal:
        raise InvalidStateTransitionError(
            f"Cannot {operation} a touch of a {status.value} subscription"
        )
    if status == SubscriptionStatus.PAUSED and not ALLOW_TOUCH_ACTIONS_WHILE_PAUSED:
        raise InvalidStateTransitionError(f"Cannot {operation} a touch while paused")


def _ensure_pending(touch: KitTouch, operation: str) -> None:
    if touch.status != TouchStatus.PENDING.value:
        raise InvalidStateTransitionError(f"Cannot {operation} a {touch.status} touch")


def _log_context(touch: KitTouch, actor: str | None, operation: str) -> dict:
    return build_log_context(
        subscription_id=str(touch.subscription_id),
        touch_id=str(touch.id),
        actor=actor,
        operation=operation,
    )


# =============================================================================
# Resolution
# =============================================================================


def _resolve(
    db: Session,
    collaborators: KitCollaborators,
    touch: KitTouch,
    subscription: KitSubscription,
    status: TouchStatus,
    actor: str | None,
    now: datetime,
    details: dict,
) -> TouchResult:
    activity_type = (
        KitActivityType.TOUCH_COMPLETED
        if status == TouchStatus.COMPLETED
        else KitActivityType.TOUCH_SKIPPED
    )
    event = ResolutionEvent(
        touch_id=touch.id,
        subscription_id=subscription.id,
        cycle_number=touch.cycle_number,
        status=status,
        outcome=touch.outcome,
    )
    side_effects = [
        record_event(collaborators, subscription, activity_type, touch=touch, actor=actor, details=details)
    ]
    db.flush()
    if touch.cycle_number == subscription.cycle_count:
        evaluation = cycle_service.evaluate_cycle(db, subscription, collaborators, now=now)
    else:
        # Leftover of an earlier cycle: the current cycle was already evaluated
        evaluation = CycleEvaluation(cycle_complete=False, cycle_count=subscription.cycle_count)
    db.commit()
    db.refresh(touch)

    logger.info(
        "Keep-in-touch touch resolved status=%s cycle_complete=%s action=%s",
        status.value,
        evaluation.cycle_complete,
        evaluation.action.value,
        extra=_log_context(touch, actor, status.value),
    )
    return TouchResult(touch=touch, event=event, evaluation=evaluation, side_effects=side_effects)


def complete_touch(
    db: Session,
    collaborators: KitCollaborators,
    touch_id: UUID,
    outcome: str,
    notes: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> TouchResult:
    """Complete a pending touch with an outcome, then evaluate the cycle."""
    now = now or _utcnow()
    outcome = (outcome or "").strip()
    if not outcome:
        raise ValueError("outcome is required")

    touch, subscription = _load_locked(db, touch_id)
    _ensure_subscription_open(subscription, "complete")
    _ensure_pending(touch, "complete")

    touch.status = TouchStatus.COMPLETED.value
    touch.outcome = outcome
    touch.outcome_notes = notes
    touch.completed_at = now
    touch.snoozed_until = None

    return _resolve(
        db,
        collaborators,
        touch,
        subscription,
        TouchStatus.COMPLETED,
        actor,
        now,
        details={"outcome": outcome, "notes": notes, "sequence_index": touch.sequence_index},
    )


def skip_touch(
    db: Session,
    collaborators: KitCollaborators,
    touch_id: UUID,
    actor: str | None = None,
    now: datetime | None = None,
) -> TouchResult:
    """Skip a pending touch (no outcome), then evaluate the cycle."""
    now = now or _utcnow()
    touch, subscription = _load_locked(db, touch_id)
    _ensure_subscription_open(subscription, "skip")
    _ensure_pending(touch, "skip")

    touch.status = TouchStatus.SKIPPED.value
    touch.completed_at = now
    touch.snoozed_until = None

    return _resolve(
        db,
        collaborators,
        touch,
        subscription,
        TouchStatus.SKIPPED,
        actor,
        now,
        details={"sequence_index": touch.sequence_index},
    )


def complete_touch_with_follow_up(
    db: Session,
    collaborators: KitCollaborators,
    touch_id: UUID,
    outcome: str,
    notes: str | None = None,
    follow_up: FollowUp | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> TouchResult:
    """
    Log an outcome together with an optional follow-up.

    When the outcome requires a follow-up and one is chosen (snooze or
    reschedule), the touch stays pending: only its date/time move, and the
    outcome is kept in the activity log instead of on the touch. In every
    other case this is complete_touch().
    """
    now = now or _utcnow()
    if (
        follow_up is None
        or follow_up.action == FollowUpAction.NONE
        or not outcome_requires_followup(outcome)
    ):
        return complete_touch(db, collaborators, touch_id, outcome, notes, actor=actor, now=now)

    until = None
    if follow_up.action == FollowUpAction.SNOOZE:
        until = follow_up.until or resolve_snooze_option(follow_up.snooze_option, now)

    touch, subscription = _load_locked(db, touch_id)
    _ensure_subscription_open(subscription, "log an outcome for")
    _ensure_pending(touch, "log an outcome for")

    if follow_up.action == FollowUpAction.SNOOZE:
        _apply_snooze(touch, until)
        details = {"snoozed_until": as_utc(until).isoformat()}
    else:
        _apply_reschedule(touch, follow_up.new_date)
        details = {"new_date": follow_up.new_date.isoformat()}

    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.TOUCH_OUTCOME_LOGGED,
            touch=touch,
            actor=actor,
            details={
                "outcome": outcome,
                "notes": notes,
                "follow_up": follow_up.action.value,
                **details,
            },
        )
    ]
    side_effects.extend(sync_linked_follow_ups(collaborators, touch))
    db.commit()
    db.refresh(touch)
    return TouchResult(touch=touch, side_effects=side_effects)


# =============================================================================
# Mutations that keep the touch pending
# =============================================================================


def _apply_snooze(touch: KitTouch, until: datetime) -> None:
    local = to_local(until)
    touch.scheduled_date = local.date()
    touch.scheduled_time = local.time().replace(second=0, microsecond=0)
    touch.snoozed_until = as_utc(until)


def _apply_reschedule(touch: KitTouch, new_date: date) -> None:
    touch.scheduled_date = new_date
    touch.snoozed_until = None
    touch.reschedule_count = (touch.reschedule_count or 0) + 1


def snooze_touch(
    db: Session,
    collaborators: KitCollaborators,
    touch_id: UUID,
    until: datetime | None = None,
    snooze_option: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> TouchResult:
    """Postpone a pending touch to `until` (or a snooze preset)."""
    if until is None:
        if not snooze_option:
            raise ValueError("'until' or 'snooze_option' is required")
        until = resolve_snooze_option(snooze_option, now)

    touch, subscription = _load_locked(db, touch_id)
    _ensure_subscription_open(subscription, "snooze")
    _ensure_pending(touch, "snooze")

    _apply_snooze(touch, until)
    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.TOUCH_SNOOZED,
            touch=touch,
            actor=actor,
            details={"snoozed_until": as_utc(until).isoformat()},
        )
    ]
    side_effects.extend(sync_linked_follow_ups(collaborators, touch))
    db.commit()
    db.refresh(touch)
    return TouchResult(touch=touch, side_effects=side_effects)


def reschedule_touch(
    db: Session,
    collaborators: KitCollaborators,
    touch_id: UUID,
    new_date: date,
    actor: str | None = None,
) -> TouchResult:
    """Move a pending touch to another date."""
    touch, subscription = _load_locked(db, touch_id)
    _ensure_subscription_open(subscription, "reschedule")
    _ensure_pending(touch, "reschedule")

    old_date = touch.scheduled_date
    _apply_reschedule(touch, new_date)
    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.TOUCH_RESCHEDULED,
            touch=touch,
            actor=actor,
            details={"from": old_date.isoformat(), "to": new_date.isoformat()},
        )
    ]
    side_effects.extend(sync_linked_follow_ups(collaborators, touch))
    db.commit()
    db.refresh(touch)
    return TouchResult(touch=touch, side_effects=side_effects)


def reassign_touch(
    db: Session,
    collaborators: KitCollaborators,
    touch_id: UUID,
    assigned_to: str,
    actor: str | None = None,
) -> TouchResult:
    """
    Change who owns a touch.

    Allowed for any touch status and any subscription status. Only the
    touch row is locked: reassignment never affects cycle completion.
    """
    assigned_to = (assigned_to or "").strip()
    if not assigned_to:
        raise MissingAssigneeError("assigned_to is required")

    touch = db.execute(
        select(KitTouch)
        .where(KitTouch.id == touch_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not touch:
        raise TouchNotFoundError(f"Touch {touch_id} not found")

    previous = touch.assigned_to
    touch.assigned_to = assigned_to
    side_effects = [
        record_event(
            collaborators,
            touch.subscription,
            KitActivityType.TOUCH_REASSIGNED,
            touch=touch,
            actor=actor,
            details={"from": previous, "to": assigned_to},
        )
    ]
    side_effects.extend(sync_linked_follow_ups(collaborators, touch))
    db.commit()
    db.refresh(touch)
    return TouchResult(touch=touch, side_effects=side_effects)


def edit_touch(
    db: Session,
    collaborators: KitCollaborators,
    touch_id: UUID,
    data: TouchEdit,
    actor: str | None = None,
) -> TouchResult:
    """
    Edit method/date/time/assignee of a touch.

    Uses exclude_unset=True so only explicitly provided fields are updated.
    Linked task and reminder are kept in sync, best effort.
    """
    update_data = data.model_dump(exclude_unset=True)
    if "assigned_to" in update_data and not (data.assigned_to or "").strip():
        raise MissingAssigneeError("assigned_to cannot be empty")
    if "method" in update_data and data.method is None:
        raise ValueError("method cannot be empty")
    if "scheduled_date" in update_data and data.scheduled_date is None:
        raise ValueError("scheduled_date cannot be empty")

    touch, subscription = _load_locked(db, touch_id)
    _ensure_subscription_open(subscription, "edit")
    if not ALLOW_EDIT_RESOLVED_TOUCHES:
        _ensure_pending(touch, "edit")

    changes: dict[str, str | None] = {}
    if "method" in update_data and data.method.value != touch.method:
        changes["method"] = data.method.value
        touch.method = data.method.value
    if "scheduled_date" in update_data and data.scheduled_date != touch.scheduled_date:
        changes["scheduled_date"] = data.scheduled_date.isoformat()
        touch.scheduled_date = data.scheduled_date
        touch.snoozed_until = None
    if "scheduled_time" in update_data and data.scheduled_time != touch.scheduled_time:
        changes["scheduled_time"] = data.scheduled_time.isoformat() if data.scheduled_time else None
        touch.scheduled_time = data.scheduled_time
    if "assigned_to" in update_data and data.assigned_to.strip() != touch.assigned_to:
        changes["assigned_to"] = data.assigned_to.strip()
        touch.assigned_to = data.assigned_to.strip()

    side_effects: list[SideEffectResult] = []
    if changes:
        side_effects.append(
            record_event(
                collaborators,
                subscription,
                KitActivityType.TOUCH_EDITED,
                touch=touch,
                actor=actor,
                details=changes,
            )
        )
        side_effects.extend(sync_linked_follow_ups(collaborators, touch))
    db.commit()
    db.refresh(touch)
    return TouchResult(touch=touch, side_effects=side_effects)


def add_touch(
    db: Session,
    collaborators: KitCollaborators,
    subscription_id: UUID,
    data: TouchAdd,
    actor: str | None = None,
) -> TouchResult:
    """
    Insert an ad hoc touch at the end of the current cycle.

    Optionally creates a linked task and/or reminder. Gateway failures are
    reported in side_effects and do not undo the new touch.
    """
    assigned_to = (data.assigned_to or "").strip()
    if not assigned_to:
        raise MissingAssigneeError("assigned_to is required")

    subscription = subscription_service.lock_subscription(db, subscription_id)
    _ensure_subscription_open(subscription, "add")

    last_index = db.execute(
        select(func.max(KitTouch.sequence_index)).where(
            KitTouch.subscription_id == subscription.id,
            KitTouch.cycle_number == subscription.cycle_count,
        )
    ).scalar()
    touch = KitTouch(
        subscription_id=subscription.id,
        cycle_number=subscription.cycle_count,
        sequence_index=0 if last_index is None else last_index + 1,
        method=data.method.value,
        scheduled_date=data.scheduled_date,
        scheduled_time=data.scheduled_time,
        original_scheduled_date=data.scheduled_date,
        assigned_to=assigned_to,
        status=TouchStatus.PENDING.value,
    )
    db.add(touch)
    db.flush()

    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.TOUCH_ADDED,
            touch=touch,
            actor=actor,
            details={
                "method": touch.method,
                "scheduled_date": touch.scheduled_date.isoformat(),
                "sequence_index": touch.sequence_index,
            },
        )
    ]
    side_effects.extend(_create_linked_follow_ups(collaborators, subscription, touch, data, actor))
    subscription.current_step = sum(
        1 for t in cycle_service.get_cycle_touches(db, subscription) if t.is_resolved
    )
    db.commit()
    db.refresh(touch)
    logger.info(
        "Keep-in-touch touch added sequence_index=%d",
        touch.sequence_index,
        extra=_log_context(touch, actor, "add_touch"),
    )
    return TouchResult(touch=touch, side_effects=side_effects)


def _create_linked_follow_ups(
    collaborators: KitCollaborators,
    subscription: KitSubscription,
    touch: KitTouch,
    data: TouchAdd,
    actor: str | None,
) -> list[SideEffectResult]:
    results: list[SideEffectResult] = []
    spec = FollowUpSpec(
        title=(data.task_title or "").strip() or f"Keep-in-touch {touch.method}",
        entity_type=subscription.entity_type,
        entity_id=subscription.entity_id,
        assigned_to=touch.assigned_to,
        due_date=touch.scheduled_date,
        due_time=touch.scheduled_time,
        touch_id=touch.id,
    )

    if data.create_task and collaborators.tasks is not None:
        result = run_side_effect("task:create", collaborators.tasks.create_task, spec)
        results.append(result)
        if result.ok and result.value:
            touch.linked_task_id = str(result.value)
            results.append(
                record_event(
                    collaborators,
                    subscription,
                    KitActivityType.TASK_CREATED,
                    touch=touch,
                    actor=actor,
                    details={"task_id": touch.linked_task_id},
                )
            )

    if data.create_reminder and collaborators.reminders is not None:
        result = run_side_effect("reminder:create", collaborators.reminders.create_reminder, spec)
        results.append(result)
        if result.ok and result.value:
            touch.linked_reminder_id = str(result.value)
            results.append(
                record_event(
                    collaborators,
                    subscription,
                    KitActivityType.REMINDER_CREATED,
                    touch=touch,
                    actor=actor,
                    details={"reminder_id": touch.linked_reminder_id},
                )
            )
    return results
