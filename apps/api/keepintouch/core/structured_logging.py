"""Structured logging helpers."""

import logging
from typing import Any

from keepintouch.core.config import settings


def build_log_context(
    *,
    subscription_id: str | None = None,
    touch_id: str | None = None,
    actor: str | None = None,
    operation: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict for `extra=`."""
    context: dict[str, Any] = {}
    if subscription_id:
        context["subscription_id"] = subscription_id
    if touch_id:
        context["touch_id"] = touch_id
    if actor:
        context["actor"] = actor
    if operation:
        context["operation"] = operation
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context


def configure_logging() -> None:
    """Configure root logging for the API process."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
