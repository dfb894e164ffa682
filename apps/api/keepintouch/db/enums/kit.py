"""Keep-in-touch enums."""

from enum import Enum


class KitEntityType(str, Enum):
    """Entities a touch sequence can be attached to."""

    LEAD = "lead"
    CUSTOMER = "customer"
    PROFESSIONAL = "professional"


class TouchMethod(str, Enum):
    """Channel used for a single touch."""

    CALL = "call"
    WHATSAPP = "whatsapp"
    VISIT = "visit"
    EMAIL = "email"
    MEETING = "meeting"


class AssigneeRule(str, Enum):
    """How a sequence step picks the person responsible for the touch."""

    ENTITY_OWNER = "entity_owner"
    SPECIFIC_USER = "specific_user"
    FIELD_STAFF = "field_staff"


class TouchStatus(str, Enum):
    """
    Touch lifecycle.

    pending → completed | skipped. Both are terminal; snooze, reschedule,
    reassign and edit keep the touch pending.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"

    @property
    def is_resolved(self) -> bool:
        return self is not TouchStatus.PENDING


class CycleBehavior(str, Enum):
    """What happens once every touch of a cycle is resolved."""

    ONE_TIME = "one_time"  # Complete the subscription
    AUTO_REPEAT = "auto_repeat"  # Start the next cycle (until max_cycles)
    USER_DEFINED = "user_defined"  # Ask the operator


class SubscriptionStatus(str, Enum):
    """
    Subscription lifecycle.

    active ↔ paused, {active, paused} → completed | cancelled.
    completed and cancelled are terminal.
    """

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SubscriptionStatus.COMPLETED, SubscriptionStatus.CANCELLED)


class CycleAction(str, Enum):
    """Action taken by the cycle completion policy."""

    NONE = "none"
    COMPLETED = "completed"
    REPEATED = "repeated"
    AWAITING_DECISION = "awaiting_decision"


class FollowUpAction(str, Enum):
    """Follow-up chosen when logging an outcome."""

    NONE = "none"
    SNOOZE = "snooze"
    RESCHEDULE = "reschedule"


class DueState(str, Enum):
    """Derived due status of a touch relative to "now"."""

    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    UPCOMING = "upcoming"
    RESOLVED = "resolved"


class KitActivityType(str, Enum):
    """Types of activities logged in the keep-in-touch history."""

    KIT_ACTIVATED = "kit_activated"
    KIT_PAUSED = "kit_paused"
    KIT_RESUMED = "kit_resumed"
    KIT_CANCELLED = "kit_cancelled"
    KIT_COMPLETED = "kit_completed"
    TOUCH_COMPLETED = "kit_touch_completed"
    TOUCH_SKIPPED = "kit_touch_skipped"
    TOUCH_SNOOZED = "kit_touch_snoozed"
    TOUCH_RESCHEDULED = "kit_touch_rescheduled"
    TOUCH_REASSIGNED = "kit_touch_reassigned"
    TOUCH_EDITED = "kit_touch_edited"
    TOUCH_ADDED = "kit_touch_added"
    TOUCH_OUTCOME_LOGGED = "kit_touch_outcome_logged"  # Outcome with a follow-up, touch still pending
    CYCLE_REPEATED = "kit_cycle_repeated"
    CYCLE_STOPPED = "kit_cycle_stopped"
    TASK_CREATED = "kit_task_created"
    REMINDER_CREATED = "kit_reminder_created"
