"""SQLAlchemy ORM models for keep-in-touch presets, subscriptions and touches."""

import uuid
from datetime import date, datetime, time, timezone

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Date, ForeignKey, Index, Integer, String,
    Text, Time, UniqueConstraint, Uuid, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keepintouch.db.base import Base
from keepintouch.db.enums import (
    DEFAULT_PRESET_CYCLE_BEHAVIOR, DEFAULT_SUBSCRIPTION_STATUS, DEFAULT_TOUCH_STATUS,
    TouchStatus,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Presets
# =============================================================================

class KitPreset(Base):
    """
    Reusable touch-sequence template.

    touch_sequence holds the ordered steps as JSON:
    [{"method": "call", "interval_days": 0, "assignee_rule": "entity_owner"}, ...]

    Subscriptions snapshot the sequence at activation, so editing or
    deleting a preset never changes running subscriptions.
    """
    __tablename__ = "kit_presets"
    __table_args__ = (
        Index("idx_kit_presets_active_name", "is_active", "name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    touch_sequence: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    default_cycle_behavior: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_PRESET_CYCLE_BEHAVIOR.value,
        server_default=text(f"'{DEFAULT_PRESET_CYCLE_BEHAVIOR.value}'"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )


# =============================================================================
# Subscriptions
# =============================================================================

class KitSubscription(Base):
    """
    A touch sequence attached to one entity (lead, customer, professional).

    One non-terminal subscription per entity is expected; the caller enforces it.

    - preset_id is a soft reference (no FK): NULL means a custom sequence
    - touch_sequence / cycle_behavior are snapshots taken at activation
    - cycle_count is the number of the current cycle (starts at 1)
    - current_step counts resolved touches of the current cycle (progress only)
    """
    __tablename__ = "kit_subscriptions"
    __table_args__ = (
        Index("idx_kit_subscriptions_entity", "entity_type", "entity_id", "status"),
        Index("idx_kit_subscriptions_status", "status"),
        CheckConstraint("cycle_count >= 1", name="ck_kit_subscriptions_cycle_count"),
        CheckConstraint("current_step >= 0", name="ck_kit_subscriptions_current_step"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    preset_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    touch_sequence: Mapped[list] = mapped_column(JSON, nullable=False)
    cycle_behavior: Mapped[str] = mapped_column(String(20), nullable=False)

    assigned_to: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_SUBSCRIPTION_STATUS.value, nullable=False
    )
    cycle_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_cycles: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_step: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skip_weekends: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Pause (auto-resume on pause_until is derived by callers, never scheduled here)
    pause_until: Mapped[datetime | None] = mapped_column(nullable=True)
    pause_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    touches: Mapped[list["KitTouch"]] = relationship(back_populates="subscription")


# =============================================================================
# Touches
# =============================================================================

class KitTouch(Base):
    """
    One scheduled contact action within a cycle.

    Rows are never deleted: completed and skipped touches are the history.
    """
    __tablename__ = "kit_touches"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "cycle_number", "sequence_index",
            name="uq_kit_touches_cycle_index",
        ),
        Index("idx_kit_touches_subscription_cycle", "subscription_id", "cycle_number"),
        Index("idx_kit_touches_status_date", "status", "scheduled_date"),
        Index("idx_kit_touches_assignee", "assigned_to", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("kit_subscriptions.id", ondelete="CASCADE"), nullable=False
    )
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    sequence_index: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    original_scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    snoozed_until: Mapped[datetime | None] = mapped_column(nullable=True)
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    assigned_to: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_TOUCH_STATUS.value, nullable=False
    )
    outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)
    outcome_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Ids owned by the external task / reminder services
    linked_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    linked_reminder_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow, onupdate=_utcnow, nullable=False
    )

    subscription: Mapped["KitSubscription"] = relationship(back_populates="touches")

    @property
    def is_resolved(self) -> bool:
        return TouchStatus(self.status).is_resolved


# =============================================================================
# Activity Log
# =============================================================================

class KitActivityLog(Base):
    """
    Append-only activity trail for keep-in-touch transitions.

    Written by DbActivityRecorder; never read by the engine itself.
    """
    __tablename__ = "kit_activity_log"
    __table_args__ = (
        Index("idx_kit_activity_subscription_time", "subscription_id", "created_at"),
        Index("idx_kit_activity_entity_time", "entity_type", "entity_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    touch_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
