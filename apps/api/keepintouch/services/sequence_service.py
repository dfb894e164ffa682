"""Sequence service - turn a touch sequence into dated touches for one cycle."""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Iterable

from keepintouch.core.constants import REST_DAYS
from keepintouch.db.enums import TouchMethod
from keepintouch.schemas.kit import SequenceStep
from keepintouch.services.kit_errors import EmptySequenceError
from keepintouch.utils.calendar_days import is_rest_day, next_working_day


@dataclass(frozen=True)
class TouchDraft:
    """A touch that has a date and an assignee but is not persisted yet."""

    sequence_index: int
    method: TouchMethod
    scheduled_date: date
    original_scheduled_date: date
    assigned_to: str


def materialize(
    steps: Iterable[SequenceStep],
    anchor_date: date,
    resolve_assignee: Callable[[SequenceStep], str],
    skip_weekends: bool = False,
    rest_days: frozenset[int] = REST_DAYS,
) -> list[TouchDraft]:
    """
    Schedule one cycle of touches starting at anchor_date.

    Offsets accumulate from the anchor: step i lands on
    anchor + sum(interval_days[0..i]). When skip_weekends is set, a date on a
    rest day moves to the next working day. The move is per touch and does
    not shift later steps.

    Intervals are expected to be validated already (see preset_service).
    """
    steps = list(steps)
    if not steps:
        raise EmptySequenceError("Touch sequence cannot be empty")

    drafts: list[TouchDraft] = []
    offset = 0
    for index, step in enumerate(steps):
        offset += step.interval_days
        planned = anchor_date + timedelta(days=offset)
        scheduled = planned
        if skip_weekends and is_rest_day(planned, rest_days):
            scheduled = next_working_day(planned, rest_days)

        drafts.append(
            TouchDraft(
                sequence_index=index,
                method=step.method,
                scheduled_date=scheduled,
                original_scheduled_date=planned,
                assigned_to=resolve_assignee(step),
            )
        )
    return drafts
