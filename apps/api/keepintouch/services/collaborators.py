"""Collaborator interfaces for the keep-in-touch engine.

The engine does not own the staff directory, the task and reminder services
or the audit trail. It talks to them through the protocols below, bundled in
KitCollaborators and passed into every service call.

Calls to collaborators are best-effort: run_side_effect() catches and logs
failures so they never roll back the touch/subscription change that caused
them.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Any, Callable, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from keepintouch.core.config import settings
from keepintouch.core.structured_logging import build_log_context
from keepintouch.db.enums import AssigneeRule, KitActivityType
from keepintouch.db.models import KitActivityLog, KitSubscription, KitTouch

logger = logging.getLogger(__name__)


# =============================================================================
# Value objects
# =============================================================================


@dataclass(frozen=True)
class EntityContext:
    """What an identity resolver needs to know about the touch being assigned."""

    entity_type: str
    entity_id: UUID
    owner: str  # Subscription assignee
    specific_user: str | None = None  # Step assignee (specific_user rule)


@dataclass(frozen=True)
class KitEvent:
    """One entry for the activity trail."""

    activity_type: KitActivityType
    subscription_id: UUID
    entity_type: str
    entity_id: UUID
    touch_id: UUID | None = None
    actor: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FollowUpSpec:
    """Task or reminder to create/update for a touch."""

    title: str
    entity_type: str
    entity_id: UUID
    assigned_to: str
    due_date: date
    due_time: time | None = None
    touch_id: UUID | None = None


@dataclass(frozen=True)
class SideEffectResult:
    """Outcome of a best-effort collaborator call."""

    name: str
    ok: bool
    value: Any = None
    error: str | None = None


# =============================================================================
# Protocols
# =============================================================================


class IdentityResolver(Protocol):
    def resolve(self, rule: AssigneeRule, context: EntityContext) -> str: ...


class TaskGateway(Protocol):
    def create_task(self, spec: FollowUpSpec) -> str: ...

    def update_task(self, task_id: str, fields: dict[str, Any]) -> None: ...


class ReminderGateway(Protocol):
    def create_reminder(self, spec: FollowUpSpec) -> str: ...

    def update_reminder(self, reminder_id: str, fields: dict[str, Any]) -> None: ...


class ActivityRecorder(Protocol):
    def record(self, event: KitEvent) -> None: ...


# =============================================================================
# Default implementations
# =============================================================================


class DefaultIdentityResolver:
    """
    Resolve assignee rules without a staff directory.

    - specific_user: the step's assignee (falls back to the owner)
    - entity_owner: the subscription assignee
    - field_staff: KIT_FIELD_STAFF_ASSIGNEE when configured, else the owner
    """

    def __init__(self, field_staff_assignee: str | None = None):
        self.field_staff_assignee = (
            field_staff_assignee
            if field_staff_assignee is not None
            else settings.KIT_FIELD_STAFF_ASSIGNEE
        )

    def resolve(self, rule: AssigneeRule, context: EntityContext) -> str:
        if rule == AssigneeRule.SPECIFIC_USER:
            return context.specific_user or context.owner
        if rule == AssigneeRule.FIELD_STAFF:
            return self.field_staff_assignee or context.owner
        if rule == AssigneeRule.ENTITY_OWNER:
            return context.owner
        raise ValueError(f"Unknown assignee rule: {rule}")


class DbActivityRecorder:
    """Write activity entries to kit_activity_log in the caller's session."""

    def __init__(self, db: Session):
        self.db = db

    def record(self, event: KitEvent) -> None:
        entry = KitActivityLog(
            subscription_id=event.subscription_id,
            touch_id=event.touch_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            activity_type=event.activity_type.value,
            actor=event.actor,
            details=event.details or None,
        )
        self.db.add(entry)  # Caller controls the transaction


@dataclass
class KitCollaborators:
    """External services used by the engine. Task/reminder gateways are optional."""

    identity: IdentityResolver
    activity: ActivityRecorder
    tasks: TaskGateway | None = None
    reminders: ReminderGateway | None = None


def default_collaborators(db: Session) -> KitCollaborators:
    """Collaborators backed by the database activity log and no task/reminder service."""
    return KitCollaborators(
        identity=DefaultIdentityResolver(),
        activity=DbActivityRecorder(db),
    )


# =============================================================================
# Best-effort helpers
# =============================================================================


def run_side_effect(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> SideEffectResult:
    """Call a collaborator; log and report failures instead of raising."""
    try:
        value = fn(*args, **kwargs)
    except Exception as exc:
        logger.warning("Keep-in-touch side effect failed name=%s error=%s", name, exc)
        return SideEffectResult(name=name, ok=False, error=str(exc))
    return SideEffectResult(name=name, ok=True, value=value)


def record_event(
    collaborators: KitCollaborators,
    subscription: KitSubscription,
    activity_type: KitActivityType,
    *,
    touch: KitTouch | None = None,
    actor: str | None = None,
    details: dict[str, Any] | None = None,
) -> SideEffectResult:
    """Record an activity entry for a subscription (and optionally one of its touches)."""
    event = KitEvent(
        activity_type=activity_type,
        subscription_id=subscription.id,
        entity_type=subscription.entity_type,
        entity_id=subscription.entity_id,
        touch_id=touch.id if touch else None,
        actor=actor,
        details=details or {},
    )
    result = run_side_effect(f"activity:{activity_type.value}", collaborators.activity.record, event)
    if not result.ok:
        logger.warning(
            "Activity not recorded",
            extra=build_log_context(
                subscription_id=str(subscription.id),
                touch_id=str(touch.id) if touch else None,
                actor=actor,
                operation=activity_type.value,
            ),
        )
    return result


def sync_linked_follow_ups(
    collaborators: KitCollaborators,
    touch: KitTouch,
) -> list[SideEffectResult]:
    """Mirror a touch's date/time/assignee onto its linked task and reminder."""
    results: list[SideEffectResult] = []
    fields = {
        "due_date": touch.scheduled_date,
        "due_time": touch.scheduled_time,
        "assigned_to": touch.assigned_to,
    }
    if touch.linked_task_id and collaborators.tasks is not None:
        results.append(
            run_side_effect(
                "task:update", collaborators.tasks.update_task, touch.linked_task_id, dict(fields)
            )
        )
    if touch.linked_reminder_id and collaborators.reminders is not None:
        results.append(
            run_side_effect(
                "reminder:update",
                collaborators.reminders.update_reminder,
                touch.linked_reminder_id,
                dict(fields),
            )
        )
    return results
