"""Enum definitions for application constants."""

from keepintouch.db.enums.defaults import (
    DEFAULT_CUSTOM_CYCLE_BEHAVIOR,
    DEFAULT_PRESET_CYCLE_BEHAVIOR,
    DEFAULT_SUBSCRIPTION_STATUS,
    DEFAULT_TOUCH_STATUS,
)
from keepintouch.db.enums.kit import (
    AssigneeRule,
    CycleAction,
    CycleBehavior,
    DueState,
    FollowUpAction,
    KitActivityType,
    KitEntityType,
    SubscriptionStatus,
    TouchMethod,
    TouchStatus,
)

__all__ = [
    "AssigneeRule",
    "CycleAction",
    "CycleBehavior",
    "DEFAULT_CUSTOM_CYCLE_BEHAVIOR",
    "DEFAULT_PRESET_CYCLE_BEHAVIOR",
    "DEFAULT_SUBSCRIPTION_STATUS",
    "DEFAULT_TOUCH_STATUS",
    "DueState",
    "FollowUpAction",
    "KitActivityType",
    "KitEntityType",
    "SubscriptionStatus",
    "TouchMethod",
    "TouchStatus",
]
