"""Subscription service - keep-in-touch subscription lifecycle.

active <-> paused, {active, paused} -> completed | cancelled.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from keepintouch.core.constants import RESUME_SHIFTS_OVERDUE_TOUCHES
from keepintouch.core.structured_logging import build_log_context
from keepintouch.db.enums import (
    DEFAULT_CUSTOM_CYCLE_BEHAVIOR,
    KitActivityType,
    SubscriptionStatus,
    TouchStatus,
)
from keepintouch.db.models import KitSubscription, KitTouch
from keepintouch.schemas.kit import SubscriptionActivate
from keepintouch.services import cycle_service, preset_service
from keepintouch.services.collaborators import (
    KitCollaborators,
    SideEffectResult,
    record_event,
    sync_linked_follow_ups,
)
from keepintouch.services.kit_errors import (
    InvalidStateTransitionError,
    MissingAssigneeError,
    PresetNotFoundError,
    SubscriptionNotFoundError,
)
from keepintouch.utils.calendar_days import as_utc, local_today, next_working_day

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionResult:
    """Subscription after a lifecycle operation, with touches it created."""

    subscription: KitSubscription
    touches: list[KitTouch] = field(default_factory=list)
    side_effects: list[SideEffectResult] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Lookups
# =============================================================================


def get_subscription(db: Session, subscription_id: UUID) -> KitSubscription | None:
    """Get a single subscription by ID."""
    return db.get(KitSubscription, subscription_id)


def get_active_subscription_for_entity(
    db: Session,
    entity_type: str,
    entity_id: UUID,
) -> KitSubscription | None:
    """Non-terminal (active or paused) subscription attached to an entity, if any."""
    return db.execute(
        select(KitSubscription)
        .where(
            KitSubscription.entity_type == entity_type,
            KitSubscription.entity_id == entity_id,
            KitSubscription.status.in_(
                [SubscriptionStatus.ACTIVE.value, SubscriptionStatus.PAUSED.value]
            ),
        )
        .order_by(KitSubscription.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def lock_subscription(db: Session, subscription_id: UUID) -> KitSubscription:
    """
    Load a subscription with SELECT ... FOR UPDATE.

    Serializes touch resolution and cycle materialization per subscription
    for the rest of the caller's transaction.
    """
    subscription = db.execute(
        select(KitSubscription)
        .where(KitSubscription.id == subscription_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not subscription:
        raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
    return subscription


def is_pause_expired(subscription: KitSubscription, now: datetime | None = None) -> bool:
    """True when a paused subscription's pause_until has passed. Nothing resumes it automatically."""
    if subscription.status != SubscriptionStatus.PAUSED.value or not subscription.pause_until:
        return False
    return as_utc(subscription.pause_until) <= as_utc(now or _utcnow())


def _require_status(
    subscription: KitSubscription,
    allowed: tuple[SubscriptionStatus, ...],
    operation: str,
) -> None:
    if subscription.status not in {status.value for status in allowed}:
        raise InvalidStateTransitionError(
            f"Cannot {operation} a {subscription.status} subscription"
        )


# =============================================================================
# Lifecycle
# =============================================================================


def activate_subscription(
    db: Session,
    data: SubscriptionActivate,
    collaborators: KitCollaborators,
    actor: str,
    now: datetime | None = None,
) -> SubscriptionResult:
    """
    Attach a touch sequence to an entity and materialize cycle 1.

    The sequence and cycle behavior are snapshotted on the subscription.
    Raises PresetNotFoundError, EmptySequenceError, InvalidIntervalError,
    MissingAssigneeError; nothing is written when validation fails.
    """
    now = now or _utcnow()
    assigned_to = (data.assigned_to or "").strip()
    if not assigned_to:
        raise MissingAssigneeError("assigned_to is required")
    if data.max_cycles is not None and data.max_cycles < 1:
        raise ValueError("max_cycles must be >= 1")

    if data.preset_id:
        preset = preset_service.get_preset(db, data.preset_id)
        if not preset or not preset.is_active:
            raise PresetNotFoundError(f"Preset {data.preset_id} not found")
        steps = preset_service.parse_sequence(preset.touch_sequence)
        behavior = preset.default_cycle_behavior
    else:
        steps = list(data.custom_sequence or [])
        behavior = (data.cycle_behavior or DEFAULT_CUSTOM_CYCLE_BEHAVIOR).value
    preset_service.validate_sequence(steps)

    subscription = KitSubscription(
        entity_type=data.entity_type.value,
        entity_id=data.entity_id,
        preset_id=data.preset_id,
        touch_sequence=preset_service.dump_sequence(steps),
        cycle_behavior=behavior,
        assigned_to=assigned_to,
        status=SubscriptionStatus.ACTIVE.value,
        cycle_count=1,
        max_cycles=data.max_cycles,
        current_step=0,
        skip_weekends=data.skip_weekends,
        started_at=now,
        created_by=actor,
    )
    db.add(subscription)
    db.flush()

    touches = cycle_service.create_cycle_touches(db, subscription, collaborators, now=now)
    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.KIT_ACTIVATED,
            actor=actor,
            details={
                "preset_id": str(data.preset_id) if data.preset_id else None,
                "cycle_behavior": behavior,
                "touch_count": len(touches),
            },
        )
    ]
    db.commit()
    db.refresh(subscription)

    logger.info(
        "Keep-in-touch subscription activated entity_type=%s touches=%d",
        subscription.entity_type,
        len(touches),
        extra=build_log_context(
            subscription_id=str(subscription.id), actor=actor, operation="activate"
        ),
    )
    return SubscriptionResult(subscription=subscription, touches=touches, side_effects=side_effects)


def pause_subscription(
    db: Session,
    subscription_id: UUID,
    collaborators: KitCollaborators,
    actor: str | None = None,
    pause_until: datetime | None = None,
    pause_reason: str | None = None,
) -> SubscriptionResult:
    """Pause an active subscription. Touches are not modified."""
    subscription = lock_subscription(db, subscription_id)
    _require_status(subscription, (SubscriptionStatus.ACTIVE,), "pause")

    subscription.status = SubscriptionStatus.PAUSED.value
    subscription.pause_until = pause_until
    subscription.pause_reason = pause_reason.strip() if pause_reason else None

    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.KIT_PAUSED,
            actor=actor,
            details={
                "pause_until": pause_until.isoformat() if pause_until else None,
                "pause_reason": subscription.pause_reason,
            },
        )
    ]
    db.commit()
    db.refresh(subscription)
    return SubscriptionResult(subscription=subscription, side_effects=side_effects)


def _shift_overdue_touches(
    db: Session, subscription: KitSubscription, today: date
) -> list[KitTouch]:
    """
    Move pending touches of the current cycle forward by one delta.

    Every pending touch from the first overdue one (in sequence order) moves,
    so the sequence keeps its order. Rest days are skipped when the
    subscription skips weekends, and no touch lands before its predecessor.
    """
    pending = list(
        db.execute(
            select(KitTouch)
            .where(
                KitTouch.subscription_id == subscription.id,
                KitTouch.cycle_number == subscription.cycle_count,
                KitTouch.status == TouchStatus.PENDING.value,
            )
            .order_by(KitTouch.sequence_index)
        )
        .scalars()
        .all()
    )
    overdue = [touch for touch in pending if touch.scheduled_date < today]
    if not overdue:
        return []

    delta = today - min(touch.scheduled_date for touch in overdue)
    first = pending.index(overdue[0])
    shifted = pending[first:]
    floor = today
    for touch in shifted:
        scheduled = max(touch.scheduled_date + delta, floor)
        if subscription.skip_weekends:
            scheduled = next_working_day(scheduled)
        touch.scheduled_date = scheduled
        touch.snoozed_until = None
        floor = scheduled
    return shifted


def resume_subscription(
    db: Session,
    subscription_id: UUID,
    collaborators: KitCollaborators,
    actor: str | None = None,
    shift_overdue: bool | None = None,
    now: datetime | None = None,
) -> SubscriptionResult:
    """
    Resume a paused subscription.

    By default overdue pending touches stay overdue. With shift_overdue the
    pending touches of the current cycle, from the first overdue one on, move
    forward together so the earliest lands on today (see _shift_overdue_touches).
    """
    if shift_overdue is None:
        shift_overdue = RESUME_SHIFTS_OVERDUE_TOUCHES

    subscription = lock_subscription(db, subscription_id)
    _require_status(subscription, (SubscriptionStatus.PAUSED,), "resume")

    subscription.status = SubscriptionStatus.ACTIVE.value
    subscription.pause_until = None
    subscription.pause_reason = None

    shifted: list[KitTouch] = []
    side_effects: list[SideEffectResult] = []
    if shift_overdue:
        shifted = _shift_overdue_touches(db, subscription, local_today(now))
        for touch in shifted:
            side_effects.extend(sync_linked_follow_ups(collaborators, touch))

    side_effects.append(
        record_event(
            collaborators,
            subscription,
            KitActivityType.KIT_RESUMED,
            actor=actor,
            details={"shifted_touches": len(shifted)},
        )
    )
    db.commit()
    db.refresh(subscription)
    return SubscriptionResult(subscription=subscription, touches=shifted, side_effects=side_effects)


def cancel_subscription(
    db: Session,
    subscription_id: UUID,
    collaborators: KitCollaborators,
    actor: str | None = None,
    now: datetime | None = None,
) -> SubscriptionResult:
    """Cancel an active or paused subscription. Terminal."""
    subscription = lock_subscription(db, subscription_id)
    _require_status(
        subscription, (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED), "cancel"
    )

    subscription.status = SubscriptionStatus.CANCELLED.value
    subscription.cancelled_at = now or _utcnow()
    subscription.pause_until = None
    subscription.pause_reason = None

    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.KIT_CANCELLED,
            actor=actor,
            details={"cycle_count": subscription.cycle_count},
        )
    ]
    db.commit()
    db.refresh(subscription)
    logger.info(
        "Keep-in-touch subscription cancelled",
        extra=build_log_context(
            subscription_id=str(subscription.id), actor=actor, operation="cancel"
        ),
    )
    return SubscriptionResult(subscription=subscription, side_effects=side_effects)


def complete_subscription(
    db: Session,
    subscription_id: UUID,
    collaborators: KitCollaborators,
    actor: str | None = None,
    now: datetime | None = None,
) -> SubscriptionResult:
    """Explicitly complete an active or paused subscription. Terminal."""
    subscription = lock_subscription(db, subscription_id)
    _require_status(
        subscription, (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED), "complete"
    )

    cycle_service.mark_completed(subscription, now)
    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.KIT_COMPLETED,
            actor=actor,
            details={"cycle_count": subscription.cycle_count},
        )
    ]
    db.commit()
    db.refresh(subscription)
    return SubscriptionResult(subscription=subscription, side_effects=side_effects)


def repeat_cycle(
    db: Session,
    subscription_id: UUID,
    collaborators: KitCollaborators,
    actor: str | None = None,
    force: bool = False,
    now: datetime | None = None,
) -> SubscriptionResult:
    """
    Start the next cycle on operator request.

    Requires the current cycle to be fully resolved unless force is set.
    max_cycles does not apply here: it only caps automatic repetition.
    """
    subscription = lock_subscription(db, subscription_id)
    _require_status(
        subscription, (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED), "repeat"
    )
    if not force and not cycle_service.is_cycle_resolved(db, subscription):
        raise InvalidStateTransitionError(
            f"Cycle {subscription.cycle_count} still has pending touches"
        )

    completed_cycle = subscription.cycle_count
    touches = cycle_service.start_next_cycle(db, subscription, collaborators, now=now)
    side_effects = [
        record_event(
            collaborators,
            subscription,
            KitActivityType.CYCLE_REPEATED,
            actor=actor,
            details={
                "completed_cycle": completed_cycle,
                "cycle_count": subscription.cycle_count,
                "touch_count": len(touches),
                "forced": force,
            },
        )
    ]
    db.commit()
    db.refresh(subscription)
    return SubscriptionResult(subscription=subscription, touches=touches, side_effects=side_effects)
