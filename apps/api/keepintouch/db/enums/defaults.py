"""Centralized defaults for enums."""

from keepintouch.db.enums.kit import CycleBehavior, SubscriptionStatus, TouchStatus


DEFAULT_TOUCH_STATUS: TouchStatus = TouchStatus.PENDING
DEFAULT_SUBSCRIPTION_STATUS: SubscriptionStatus = SubscriptionStatus.ACTIVE
DEFAULT_PRESET_CYCLE_BEHAVIOR: CycleBehavior = CycleBehavior.AUTO_REPEAT
DEFAULT_CUSTOM_CYCLE_BEHAVIOR: CycleBehavior = CycleBehavior.USER_DEFINED
