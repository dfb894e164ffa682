"""Typed errors raised by the keep-in-touch services."""


class KitServiceError(Exception):
    """Base exception for keep-in-touch service errors."""

    pass


class EmptySequenceError(KitServiceError):
    """Template or custom sequence has no steps."""

    pass


class InvalidIntervalError(KitServiceError):
    """A step has a negative interval_days."""

    pass


class InvalidStateTransitionError(KitServiceError):
    """Touch or subscription is not in a state that permits the operation."""

    pass


class MissingAssigneeError(KitServiceError):
    """No assignee was given where one is required."""

    pass


class PresetNotFoundError(KitServiceError):
    """Preset not found or inactive."""

    pass


class SubscriptionNotFoundError(KitServiceError):
    """Subscription not found."""

    pass


class TouchNotFoundError(KitServiceError):
    """Touch not found."""

    pass
