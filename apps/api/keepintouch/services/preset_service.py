"""Preset service - reusable touch-sequence templates."""

import logging
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from keepintouch.db.enums import AssigneeRule
from keepintouch.db.models import KitPreset
from keepintouch.schemas.kit import PresetCreate, PresetUpdate, SequenceStep
from keepintouch.services.kit_errors import (
    EmptySequenceError,
    InvalidIntervalError,
    MissingAssigneeError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Sequence validation
# =============================================================================


def parse_sequence(raw: Iterable[dict | SequenceStep]) -> list[SequenceStep]:
    """Load stored JSON steps (or pass through parsed ones)."""
    return [
        step if isinstance(step, SequenceStep) else SequenceStep.model_validate(step)
        for step in raw
    ]


def validate_sequence(steps: list[SequenceStep]) -> list[SequenceStep]:
    """
    Validate a touch sequence before it is saved or activated.

    Raises:
        EmptySequenceError: no steps
        InvalidIntervalError: a step has negative interval_days
        MissingAssigneeError: a specific_user step has no assignee
    """
    if not steps:
        raise EmptySequenceError("Touch sequence cannot be empty")
    for index, step in enumerate(steps):
        if step.interval_days < 0:
            raise InvalidIntervalError(
                f"Step {index + 1}: interval_days must be >= 0 (got {step.interval_days})"
            )
        if step.assignee_rule == AssigneeRule.SPECIFIC_USER and not (step.assignee or "").strip():
            raise MissingAssigneeError(f"Step {index + 1}: specific_user requires an assignee")
    return steps


def dump_sequence(steps: list[SequenceStep]) -> list[dict]:
    """JSON-ready form of a sequence for storage."""
    return [step.model_dump(mode="json", exclude_none=True) for step in steps]


def total_cycle_days(steps: Iterable[dict | SequenceStep]) -> int:
    """Days from cycle anchor to the last touch (sum of intervals)."""
    return sum(step.interval_days for step in parse_sequence(steps))


# =============================================================================
# Preset CRUD
# =============================================================================


def list_presets(db: Session, active_only: bool = False) -> list[KitPreset]:
    """List presets ordered by name."""
    query = select(KitPreset)
    if active_only:
        query = query.where(KitPreset.is_active.is_(True))
    query = query.order_by(KitPreset.name)
    return list(db.execute(query).scalars().all())


def get_preset(db: Session, preset_id: UUID) -> KitPreset | None:
    """Get a single preset by ID."""
    return db.get(KitPreset, preset_id)


def create_preset(db: Session, data: PresetCreate, actor: str) -> KitPreset:
    """Create a preset after validating its sequence."""
    steps = validate_sequence(list(data.touch_sequence))

    preset = KitPreset(
        name=data.name.strip(),
        description=data.description.strip() if data.description else None,
        touch_sequence=dump_sequence(steps),
        default_cycle_behavior=data.default_cycle_behavior.value,
        is_active=True,
        created_by=actor,
    )
    db.add(preset)
    db.commit()
    db.refresh(preset)
    logger.info("Preset created id=%s steps=%d", preset.id, len(steps))
    return preset


def update_preset(db: Session, preset: KitPreset, data: PresetUpdate) -> KitPreset:
    """
    Update preset fields.

    Uses exclude_unset=True so only explicitly provided fields are updated.
    Running subscriptions keep their own snapshot of the sequence.
    """
    update_data = data.model_dump(exclude_unset=True)

    if "touch_sequence" in update_data:
        if data.touch_sequence is None:
            raise EmptySequenceError("Touch sequence cannot be empty")
        steps = validate_sequence(list(data.touch_sequence))
        preset.touch_sequence = dump_sequence(steps)

    if update_data.get("name") is not None:
        preset.name = data.name.strip()
    if "description" in update_data:
        preset.description = data.description.strip() if data.description else None
    if update_data.get("default_cycle_behavior") is not None:
        preset.default_cycle_behavior = data.default_cycle_behavior.value
    if update_data.get("is_active") is not None:
        preset.is_active = data.is_active

    db.commit()
    db.refresh(preset)
    return preset


def delete_preset(db: Session, preset: KitPreset) -> None:
    """Delete a preset. Subscriptions reference presets softly and are unaffected."""
    preset_id = preset.id
    db.delete(preset)
    db.commit()
    logger.info("Preset deleted id=%s", preset_id)
