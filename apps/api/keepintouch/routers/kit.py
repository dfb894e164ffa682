"""Keep-in-touch router - presets, subscriptions, touches and dashboard.

Service errors (KitServiceError) are mapped to HTTP status codes by the
exception handler registered in main.py. ValueError from input checks is
turned into 422 here.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from keepintouch.core.deps import get_actor, get_collaborators, get_db
from keepintouch.db.enums import KitEntityType
from keepintouch.schemas.kit import (
    CycleEvaluationRead,
    DashboardRead,
    OutcomeRead,
    PauseRequest,
    PresetCreate,
    PresetRead,
    PresetUpdate,
    ReassignRequest,
    RepeatCycleRequest,
    RescheduleRequest,
    ResumeRequest,
    SideEffectRead,
    SnoozeRequest,
    SubscriptionActivate,
    SubscriptionRead,
    SubscriptionResultRead,
    TouchAdd,
    TouchComplete,
    TouchEdit,
    TouchRead,
    TouchResultRead,
)
from keepintouch.services import (
    dashboard_service,
    preset_service,
    subscription_service,
    touch_service,
)
from keepintouch.services.collaborators import KitCollaborators, SideEffectResult
from keepintouch.services.kit_errors import PresetNotFoundError, SubscriptionNotFoundError, TouchNotFoundError
from keepintouch.services.subscription_service import SubscriptionResult
from keepintouch.services.touch_service import TouchResult

router = APIRouter(prefix="/kit", tags=["keep-in-touch"])


# =============================================================================
# Response helpers
# =============================================================================


def _side_effects(results: list[SideEffectResult]) -> list[SideEffectRead]:
    return [
        SideEffectRead(
            name=r.name,
            ok=r.ok,
            value=str(r.value) if r.value is not None else None,
            error=r.error,
        )
        for r in results
    ]


def _preset_read(preset) -> PresetRead:
    read = PresetRead.model_validate(preset)
    read.total_cycle_days = preset_service.total_cycle_days(read.touch_sequence)
    return read


def _touch_result(result: TouchResult) -> TouchResultRead:
    cycle = None
    if result.evaluation is not None:
        cycle = CycleEvaluationRead(
            cycle_complete=result.evaluation.cycle_complete,
            behavior=result.evaluation.behavior,
            action=result.evaluation.action,
            cycle_count=result.evaluation.cycle_count,
        )
    return TouchResultRead(
        touch=TouchRead.model_validate(result.touch),
        cycle=cycle,
        side_effects=_side_effects(result.side_effects),
    )


def _subscription_result(result: SubscriptionResult) -> SubscriptionResultRead:
    return SubscriptionResultRead(
        subscription=SubscriptionRead.model_validate(result.subscription),
        touches=[TouchRead.model_validate(t) for t in result.touches],
        side_effects=_side_effects(result.side_effects),
    )


def _unprocessable(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


# =============================================================================
# Presets
# =============================================================================


@router.get("/presets", response_model=list[PresetRead])
def list_presets(
    active_only: bool = False,
    db: Session = Depends(get_db),
):
    """List presets. active_only=true hides deactivated ones (activation picker)."""
    return [_preset_read(p) for p in preset_service.list_presets(db, active_only=active_only)]


@router.post("/presets", response_model=PresetRead, status_code=status.HTTP_201_CREATED)
def create_preset(
    data: PresetCreate,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
):
    preset = preset_service.create_preset(db, data, actor)
    return _preset_read(preset)


@router.get("/presets/{preset_id}", response_model=PresetRead)
def get_preset(preset_id: UUID, db: Session = Depends(get_db)):
    preset = preset_service.get_preset(db, preset_id)
    if not preset:
        raise PresetNotFoundError(f"Preset {preset_id} not found")
    return _preset_read(preset)


@router.patch("/presets/{preset_id}", response_model=PresetRead)
def update_preset(
    preset_id: UUID,
    data: PresetUpdate,
    db: Session = Depends(get_db),
):
    preset = preset_service.get_preset(db, preset_id)
    if not preset:
        raise PresetNotFoundError(f"Preset {preset_id} not found")
    preset = preset_service.update_preset(db, preset, data)
    return _preset_read(preset)


@router.delete("/presets/{preset_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_preset(preset_id: UUID, db: Session = Depends(get_db)):
    """Delete a preset. Running subscriptions keep their sequence snapshot."""
    preset = preset_service.get_preset(db, preset_id)
    if not preset:
        raise PresetNotFoundError(f"Preset {preset_id} not found")
    preset_service.delete_preset(db, preset)


@router.get("/outcomes", response_model=list[OutcomeRead])
def list_outcomes():
    """Outcome catalog for the "log touch outcome" dialog."""
    return [
        OutcomeRead(
            value=o.value,
            label=o.label,
            description=o.description,
            requires_followup=o.requires_followup,
            is_positive=o.is_positive,
        )
        for o in touch_service.OUTCOMES
    ]


# =============================================================================
# Subscriptions
# =============================================================================


@router.post(
    "/subscriptions",
    response_model=SubscriptionResultRead,
    status_code=status.HTTP_201_CREATED,
)
def activate_subscription(
    data: SubscriptionActivate,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    """
    Attach a preset or custom sequence to an entity and schedule cycle 1.

    One active or paused subscription per entity: 409 if one exists.
    """
    existing = subscription_service.get_active_subscription_for_entity(
        db, data.entity_type.value, data.entity_id
    )
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Entity already has a {existing.status} subscription ({existing.id})",
        )
    try:
        result = subscription_service.activate_subscription(db, data, collaborators, actor)
    except ValueError as e:
        raise _unprocessable(e)
    return _subscription_result(result)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
def get_subscription(subscription_id: UUID, db: Session = Depends(get_db)):
    subscription = subscription_service.get_subscription(db, subscription_id)
    if not subscription:
        raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
    return subscription


@router.get(
    "/entities/{entity_type}/{entity_id}/subscription",
    response_model=SubscriptionRead | None,
)
def get_entity_subscription(
    entity_type: KitEntityType,
    entity_id: UUID,
    db: Session = Depends(get_db),
):
    """Active or paused subscription of an entity, or null."""
    return subscription_service.get_active_subscription_for_entity(
        db, entity_type.value, entity_id
    )


@router.post("/subscriptions/{subscription_id}/pause", response_model=SubscriptionResultRead)
def pause_subscription(
    subscription_id: UUID,
    data: PauseRequest,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    result = subscription_service.pause_subscription(
        db,
        subscription_id,
        collaborators,
        actor=actor,
        pause_until=data.pause_until,
        pause_reason=data.pause_reason,
    )
    return _subscription_result(result)


@router.post("/subscriptions/{subscription_id}/resume", response_model=SubscriptionResultRead)
def resume_subscription(
    subscription_id: UUID,
    data: ResumeRequest | None = None,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    result = subscription_service.resume_subscription(
        db,
        subscription_id,
        collaborators,
        actor=actor,
        shift_overdue=data.shift_overdue if data else None,
    )
    return _subscription_result(result)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResultRead)
def cancel_subscription(
    subscription_id: UUID,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    result = subscription_service.cancel_subscription(db, subscription_id, collaborators, actor=actor)
    return _subscription_result(result)


@router.post("/subscriptions/{subscription_id}/complete", response_model=SubscriptionResultRead)
def complete_subscription(
    subscription_id: UUID,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    result = subscription_service.complete_subscription(
        db, subscription_id, collaborators, actor=actor
    )
    return _subscription_result(result)


@router.post("/subscriptions/{subscription_id}/repeat", response_model=SubscriptionResultRead)
def repeat_cycle(
    subscription_id: UUID,
    data: RepeatCycleRequest | None = None,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    """Start the next cycle (answer to a user_defined cycle completion)."""
    result = subscription_service.repeat_cycle(
        db,
        subscription_id,
        collaborators,
        actor=actor,
        force=data.force if data else False,
    )
    return _subscription_result(result)


@router.get("/subscriptions/{subscription_id}/touches", response_model=list[TouchRead])
def list_touches(
    subscription_id: UUID,
    cycle: int | None = Query(None, ge=1),
    db: Session = Depends(get_db),
):
    if not subscription_service.get_subscription(db, subscription_id):
        raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found")
    return touch_service.list_touches(db, subscription_id, cycle_number=cycle)


@router.post(
    "/subscriptions/{subscription_id}/touches",
    response_model=TouchResultRead,
    status_code=status.HTTP_201_CREATED,
)
def add_touch(
    subscription_id: UUID,
    data: TouchAdd,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    result = touch_service.add_touch(db, collaborators, subscription_id, data, actor=actor)
    return _touch_result(result)


# =============================================================================
# Touches
# =============================================================================


@router.get("/touches/{touch_id}", response_model=TouchRead)
def get_touch(touch_id: UUID, db: Session = Depends(get_db)):
    touch = touch_service.get_touch(db, touch_id)
    if not touch:
        raise TouchNotFoundError(f"Touch {touch_id} not found")
    return touch


@router.post("/touches/{touch_id}/complete", response_model=TouchResultRead)
def complete_touch(
    touch_id: UUID,
    data: TouchComplete,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    """
    Log a touch outcome.

    Outcomes that require a follow-up may carry a snooze/reschedule; the
    touch then stays pending.
    """
    try:
        result = touch_service.complete_touch_with_follow_up(
            db,
            collaborators,
            touch_id,
            data.outcome,
            notes=data.notes,
            follow_up=data.follow_up,
            actor=actor,
        )
    except ValueError as e:
        raise _unprocessable(e)
    return _touch_result(result)


@router.post("/touches/{touch_id}/skip", response_model=TouchResultRead)
def skip_touch(
    touch_id: UUID,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    result = touch_service.skip_touch(db, collaborators, touch_id, actor=actor)
    return _touch_result(result)


@router.post("/touches/{touch_id}/snooze", response_model=TouchResultRead)
def snooze_touch(
    touch_id: UUID,
    data: SnoozeRequest,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    try:
        result = touch_service.snooze_touch(
            db,
            collaborators,
            touch_id,
            until=data.until,
            snooze_option=data.snooze_option,
            actor=actor,
        )
    except ValueError as e:
        raise _unprocessable(e)
    return _touch_result(result)


@router.post("/touches/{touch_id}/reschedule", response_model=TouchResultRead)
def reschedule_touch(
    touch_id: UUID,
    data: RescheduleRequest,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    result = touch_service.reschedule_touch(db, collaborators, touch_id, data.new_date, actor=actor)
    return _touch_result(result)


@router.post("/touches/{touch_id}/reassign", response_model=TouchResultRead)
def reassign_touch(
    touch_id: UUID,
    data: ReassignRequest,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    result = touch_service.reassign_touch(db, collaborators, touch_id, data.assigned_to, actor=actor)
    return _touch_result(result)


@router.patch("/touches/{touch_id}", response_model=TouchResultRead)
def edit_touch(
    touch_id: UUID,
    data: TouchEdit,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    collaborators: KitCollaborators = Depends(get_collaborators),
):
    try:
        result = touch_service.edit_touch(db, collaborators, touch_id, data, actor=actor)
    except ValueError as e:
        raise _unprocessable(e)
    return _touch_result(result)


# =============================================================================
# Dashboard
# =============================================================================


@router.get("/dashboard", response_model=DashboardRead)
def get_dashboard(
    assigned_to: str | None = None,
    limit: int | None = Query(None, ge=0, le=100, description="Max upcoming touches"),
    now: datetime | None = Query(None, description="Reference time (defaults to now)"),
    db: Session = Depends(get_db),
):
    """Pending touches of active subscriptions: due today, overdue, upcoming."""
    return dashboard_service.get_dashboard(
        db, now=now, assigned_to=assigned_to, upcoming_limit=limit
    )
