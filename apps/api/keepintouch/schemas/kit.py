"""Pydantic schemas for keep-in-touch presets, subscriptions and touches."""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from keepintouch.db.enums import (
    AssigneeRule,
    CycleAction,
    CycleBehavior,
    DEFAULT_PRESET_CYCLE_BEHAVIOR,
    DueState,
    FollowUpAction,
    KitEntityType,
    SubscriptionStatus,
    TouchMethod,
    TouchStatus,
)


# =============================================================================
# Sequence templates
# =============================================================================


class SequenceStep(BaseModel):
    """
    One step of a touch sequence.

    interval_days is relative to the previous step (step 0: relative to the
    cycle anchor). Sign is checked by the preset service, not here, so that
    callers get InvalidIntervalError instead of a generic validation error.
    """
    method: TouchMethod
    interval_days: int
    assignee_rule: AssigneeRule = AssigneeRule.ENTITY_OWNER
    assignee: str | None = Field(None, max_length=255, description="Used by specific_user")
    notes: str | None = Field(None, max_length=2000)


class PresetCreate(BaseModel):
    """Request to create a preset."""
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    touch_sequence: list[SequenceStep]
    default_cycle_behavior: CycleBehavior = DEFAULT_PRESET_CYCLE_BEHAVIOR


class PresetUpdate(BaseModel):
    """Request to update a preset (partial)."""
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    touch_sequence: list[SequenceStep] | None = None
    default_cycle_behavior: CycleBehavior | None = None
    is_active: bool | None = None


class PresetRead(BaseModel):
    """Preset response."""
    id: UUID
    name: str
    description: str | None
    touch_sequence: list[SequenceStep]
    default_cycle_behavior: CycleBehavior
    is_active: bool
    total_cycle_days: int = 0
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# =============================================================================
# Subscriptions
# =============================================================================


class SubscriptionActivate(BaseModel):
    """
    Request to attach a touch sequence to an entity.

    Exactly one of preset_id / custom_sequence is used; preset_id wins when both are set.
    cycle_behavior only applies to custom sequences (presets carry their own).
    """
    entity_type: KitEntityType
    entity_id: UUID
    preset_id: UUID | None = None
    custom_sequence: list[SequenceStep] | None = None
    cycle_behavior: CycleBehavior | None = None
    assigned_to: str = Field(..., max_length=255)
    max_cycles: int | None = None
    skip_weekends: bool = False


class PauseRequest(BaseModel):
    pause_until: datetime | None = None
    pause_reason: str | None = Field(None, max_length=1000)


class ResumeRequest(BaseModel):
    shift_overdue: bool | None = Field(
        None, description="Move overdue pending touches forward; default from policy"
    )


class RepeatCycleRequest(BaseModel):
    force: bool = Field(False, description="Start the next cycle even if touches are pending")


class SubscriptionRead(BaseModel):
    """Subscription response."""
    id: UUID
    entity_type: KitEntityType
    entity_id: UUID
    preset_id: UUID | None
    touch_sequence: list[SequenceStep]
    cycle_behavior: CycleBehavior
    assigned_to: str
    status: SubscriptionStatus
    cycle_count: int
    max_cycles: int | None
    current_step: int
    skip_weekends: bool
    pause_until: datetime | None
    pause_reason: str | None
    started_at: datetime
    completed_at: datetime | None
    cancelled_at: datetime | None
    created_by: str

    model_config = {"from_attributes": True}


# =============================================================================
# Touches
# =============================================================================


class TouchRead(BaseModel):
    """Touch response."""
    id: UUID
    subscription_id: UUID
    cycle_number: int
    sequence_index: int
    method: TouchMethod
    scheduled_date: date
    scheduled_time: time | None
    original_scheduled_date: date | None
    snoozed_until: datetime | None
    reschedule_count: int
    assigned_to: str
    status: TouchStatus
    outcome: str | None
    outcome_notes: str | None
    completed_at: datetime | None
    linked_task_id: str | None
    linked_reminder_id: str | None

    model_config = {"from_attributes": True}


class FollowUp(BaseModel):
    """
    Follow-up chosen together with an outcome.

    snooze: `until` or a preset `snooze_option` ("1h", "2h", "4h", "tomorrow").
    reschedule: `new_date`.
    """
    action: FollowUpAction = FollowUpAction.NONE
    until: datetime | None = None
    snooze_option: str | None = None
    new_date: date | None = None

    @model_validator(mode="after")
    def _check_target(self) -> "FollowUp":
        if self.action == FollowUpAction.SNOOZE and not (self.until or self.snooze_option):
            raise ValueError("snooze follow-up requires 'until' or 'snooze_option'")
        if self.action == FollowUpAction.RESCHEDULE and not self.new_date:
            raise ValueError("reschedule follow-up requires 'new_date'")
        return self

    @classmethod
    def none(cls) -> "FollowUp":
        return cls(action=FollowUpAction.NONE)

    @classmethod
    def snooze(cls, until: datetime) -> "FollowUp":
        return cls(action=FollowUpAction.SNOOZE, until=until)

    @classmethod
    def reschedule(cls, new_date: date) -> "FollowUp":
        return cls(action=FollowUpAction.RESCHEDULE, new_date=new_date)


class TouchComplete(BaseModel):
    """Request to log a touch outcome."""
    outcome: str = Field(..., min_length=1, max_length=50)
    notes: str | None = Field(None, max_length=2000)
    follow_up: FollowUp | None = None


class SnoozeRequest(BaseModel):
    until: datetime | None = None
    snooze_option: str | None = None

    @model_validator(mode="after")
    def _check_target(self) -> "SnoozeRequest":
        if not (self.until or self.snooze_option):
            raise ValueError("'until' or 'snooze_option' is required")
        return self


class RescheduleRequest(BaseModel):
    new_date: date


class ReassignRequest(BaseModel):
    assigned_to: str = Field(..., max_length=255)


class TouchEdit(BaseModel):
    """Request to edit a pending touch (partial)."""
    method: TouchMethod | None = None
    scheduled_date: date | None = None
    scheduled_time: time | None = None
    assigned_to: str | None = Field(None, max_length=255)


class TouchAdd(BaseModel):
    """Request to insert an ad hoc touch into the current cycle."""
    method: TouchMethod
    scheduled_date: date
    scheduled_time: time | None = None
    assigned_to: str = Field(..., max_length=255)
    create_task: bool = False
    task_title: str | None = Field(None, max_length=255)
    create_reminder: bool = False


# =============================================================================
# Results
# =============================================================================


class CycleEvaluationRead(BaseModel):
    cycle_complete: bool
    behavior: CycleBehavior | None = None
    action: CycleAction = CycleAction.NONE
    cycle_count: int


class SideEffectRead(BaseModel):
    name: str
    ok: bool
    value: str | None = None
    error: str | None = None


class TouchResultRead(BaseModel):
    touch: TouchRead
    cycle: CycleEvaluationRead | None = None
    side_effects: list[SideEffectRead] = []


class SubscriptionResultRead(BaseModel):
    subscription: SubscriptionRead
    touches: list[TouchRead] = []
    side_effects: list[SideEffectRead] = []


class OutcomeRead(BaseModel):
    value: str
    label: str
    description: str
    requires_followup: bool
    is_positive: bool


class DashboardTouch(TouchRead):
    entity_type: KitEntityType
    entity_id: UUID
    due_state: DueState


class DashboardRead(BaseModel):
    due_now: list[DashboardTouch]
    overdue: list[DashboardTouch]
    upcoming: list[DashboardTouch]
    today_count: int
    overdue_count: int
    upcoming_count: int
