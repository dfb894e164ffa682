"""Dashboard service - pending touches grouped by due state."""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from keepintouch.core.config import settings
from keepintouch.db.enums import DueState, SubscriptionStatus, TouchStatus
from keepintouch.db.models import KitSubscription, KitTouch
from keepintouch.schemas.kit import TouchRead
from keepintouch.utils.calendar_days import local_today


def _touch_item(touch: KitTouch, subscription: KitSubscription, state: DueState) -> dict:
    item = TouchRead.model_validate(touch).model_dump()
    item["entity_type"] = subscription.entity_type
    item["entity_id"] = subscription.entity_id
    item["due_state"] = state
    return item


def get_dashboard(
    db: Session,
    now: datetime | None = None,
    assigned_to: str | None = None,
    upcoming_limit: int | None = None,
) -> dict:
    """
    Pending touches of active subscriptions, split into due today / overdue / upcoming.

    Paused, completed and cancelled subscriptions are left out. Only the
    upcoming list is trimmed (to upcoming_limit); counts are always totals.
    """
    if upcoming_limit is None:
        upcoming_limit = settings.KIT_DASHBOARD_UPCOMING_LIMIT
    today = local_today(now)

    query = (
        select(KitTouch, KitSubscription)
        .join(KitSubscription, KitTouch.subscription_id == KitSubscription.id)
        .where(
            KitTouch.status == TouchStatus.PENDING.value,
            KitSubscription.status == SubscriptionStatus.ACTIVE.value,
        )
    )
    if assigned_to:
        query = query.where(KitTouch.assigned_to == assigned_to)
    query = query.order_by(
        KitTouch.scheduled_date, KitTouch.scheduled_time, KitTouch.sequence_index
    )

    due_now: list[dict] = []
    overdue: list[dict] = []
    upcoming: list[dict] = []
    for touch, subscription in db.execute(query).all():
        if touch.scheduled_date < today:
            overdue.append(_touch_item(touch, subscription, DueState.OVERDUE))
        elif touch.scheduled_date == today:
            due_now.append(_touch_item(touch, subscription, DueState.DUE_TODAY))
        else:
            upcoming.append(_touch_item(touch, subscription, DueState.UPCOMING))

    return {
        "due_now": due_now,
        "overdue": overdue,
        "upcoming": upcoming[: max(upcoming_limit, 0)],
        "today_count": len(due_now),
        "overdue_count": len(overdue),
        "upcoming_count": len(upcoming),
    }
