"""Cycle service - cycle completion detection and next-cycle materialization.

Every function here runs inside the caller's transaction, with the
subscription row already locked (see subscription_service.lock_subscription).
Nothing here commits.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from keepintouch.core.constants import SYSTEM_ACTOR
from keepintouch.core.structured_logging import build_log_context
from keepintouch.db.enums import (
    CycleAction,
    CycleBehavior,
    KitActivityType,
    SubscriptionStatus,
    TouchStatus,
)
from keepintouch.db.models import KitSubscription, KitTouch
from keepintouch.schemas.kit import SequenceStep
from keepintouch.services.collaborators import EntityContext, KitCollaborators, record_event
from keepintouch.services.preset_service import parse_sequence
from keepintouch.services.sequence_service import materialize
from keepintouch.utils.calendar_days import local_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleEvaluation:
    """Result of checking a subscription's current cycle."""

    cycle_complete: bool
    cycle_count: int
    behavior: CycleBehavior | None = None
    action: CycleAction = CycleAction.NONE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Queries
# =============================================================================


def get_cycle_touches(db: Session, subscription: KitSubscription) -> list[KitTouch]:
    """Touches of the subscription's current cycle, in sequence order."""
    return list(
        db.execute(
            select(KitTouch)
            .where(
                KitTouch.subscription_id == subscription.id,
                KitTouch.cycle_number == subscription.cycle_count,
            )
            .order_by(KitTouch.sequence_index)
        )
        .scalars()
        .all()
    )


def is_cycle_resolved(db: Session, subscription: KitSubscription) -> bool:
    """True when the current cycle has touches and none of them is pending."""
    touches = get_cycle_touches(db, subscription)
    return bool(touches) and all(touch.is_resolved for touch in touches)


# =============================================================================
# Materialization
# =============================================================================


def create_cycle_touches(
    db: Session,
    subscription: KitSubscription,
    collaborators: KitCollaborators,
    now: datetime | None = None,
) -> list[KitTouch]:
    """Materialize the sequence snapshot as touches of cycle `cycle_count`, anchored at today."""
    steps = parse_sequence(subscription.touch_sequence)

    def resolve_assignee(step: SequenceStep) -> str:
        context = EntityContext(
            entity_type=subscription.entity_type,
            entity_id=subscription.entity_id,
            owner=subscription.assigned_to,
            specific_user=step.assignee,
        )
        return collaborators.identity.resolve(step.assignee_rule, context)

    drafts = materialize(
        steps,
        anchor_date=local_today(now),
        resolve_assignee=resolve_assignee,
        skip_weekends=subscription.skip_weekends,
    )

    touches = [
        KitTouch(
            subscription_id=subscription.id,
            cycle_number=subscription.cycle_count,
            sequence_index=draft.sequence_index,
            method=draft.method.value,
            scheduled_date=draft.scheduled_date,
            original_scheduled_date=draft.original_scheduled_date,
            assigned_to=draft.assigned_to,
            status=TouchStatus.PENDING.value,
        )
        for draft in drafts
    ]
    db.add_all(touches)
    db.flush()
    return touches


def start_next_cycle(
    db: Session,
    subscription: KitSubscription,
    collaborators: KitCollaborators,
    now: datetime | None = None,
) -> list[KitTouch]:
    """Increment cycle_count, reset progress and materialize the next cycle."""
    subscription.cycle_count += 1
    subscription.current_step = 0
    touches = create_cycle_touches(db, subscription, collaborators, now=now)
    logger.info(
        "Keep-in-touch cycle started cycle=%d touches=%d",
        subscription.cycle_count,
        len(touches),
        extra=build_log_context(subscription_id=str(subscription.id), operation="start_next_cycle"),
    )
    return touches


def mark_completed(subscription: KitSubscription, now: datetime | None = None) -> None:
    """Move a subscription to the terminal completed state."""
    subscription.status = SubscriptionStatus.COMPLETED.value
    subscription.completed_at = now or _utcnow()
    subscription.pause_until = None
    subscription.pause_reason = None


# =============================================================================
# Completion policy
# =============================================================================


def evaluate_cycle(
    db: Session,
    subscription: KitSubscription,
    collaborators: KitCollaborators,
    now: datetime | None = None,
) -> CycleEvaluation:
    """
    Apply the cycle behavior once every touch of the current cycle is resolved.

    - one_time: complete the subscription
    - auto_repeat: start the next cycle, or complete when max_cycles is reached
    - user_defined: no automatic action, the caller asks the operator

    Also keeps current_step in line with the number of resolved touches.
    """
    touches = get_cycle_touches(db, subscription)
    resolved = sum(1 for touch in touches if touch.is_resolved)
    subscription.current_step = resolved
    cycle_number = subscription.cycle_count

    if not touches or resolved < len(touches):
        return CycleEvaluation(cycle_complete=False, cycle_count=cycle_number)

    behavior = CycleBehavior(subscription.cycle_behavior)
    if SubscriptionStatus(subscription.status).is_terminal:
        return CycleEvaluation(cycle_complete=True, cycle_count=cycle_number, behavior=behavior)

    if behavior == CycleBehavior.USER_DEFINED:
        logger.info(
            "Keep-in-touch cycle awaiting decision cycle=%d",
            cycle_number,
            extra=build_log_context(subscription_id=str(subscription.id), operation="evaluate_cycle"),
        )
        return CycleEvaluation(
            cycle_complete=True,
            cycle_count=cycle_number,
            behavior=behavior,
            action=CycleAction.AWAITING_DECISION,
        )

    capped = subscription.max_cycles is not None and cycle_number >= subscription.max_cycles
    if behavior == CycleBehavior.AUTO_REPEAT and not capped:
        touches = start_next_cycle(db, subscription, collaborators, now=now)
        record_event(
            collaborators,
            subscription,
            KitActivityType.CYCLE_REPEATED,
            actor=SYSTEM_ACTOR,
            details={
                "completed_cycle": cycle_number,
                "cycle_count": subscription.cycle_count,
                "touch_count": len(touches),
            },
        )
        return CycleEvaluation(
            cycle_complete=True,
            cycle_count=subscription.cycle_count,
            behavior=behavior,
            action=CycleAction.REPEATED,
        )

    # one_time, or auto_repeat that reached max_cycles
    mark_completed(subscription, now)
    record_event(
        collaborators,
        subscription,
        KitActivityType.CYCLE_STOPPED,
        actor=SYSTEM_ACTOR,
        details={"completed_cycle": cycle_number, "max_cycles_reached": capped},
    )
    record_event(
        collaborators,
        subscription,
        KitActivityType.KIT_COMPLETED,
        actor=SYSTEM_ACTOR,
        details={"cycle_count": cycle_number},
    )
    logger.info(
        "Keep-in-touch subscription completed cycle=%d max_cycles_reached=%s",
        cycle_number,
        capped,
        extra=build_log_context(subscription_id=str(subscription.id), operation="evaluate_cycle"),
    )
    return CycleEvaluation(
        cycle_complete=True,
        cycle_count=cycle_number,
        behavior=behavior,
        action=CycleAction.COMPLETED,
    )
