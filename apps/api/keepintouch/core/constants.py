"""Application constants."""

import calendar

# Actor recorded for engine-driven transitions (auto-repeat, one-time completion)
SYSTEM_ACTOR = "system"

# =============================================================================
# Keep-in-touch scheduling policies
# =============================================================================

# "Skip weekends" moves a touch that lands on a rest day to the next working day.
# Only Sunday is a rest day: Saturday touches stay where they are.
REST_DAYS: frozenset[int] = frozenset({calendar.SUNDAY})

# Resuming a paused subscription leaves overdue pending touches overdue.
# resume_subscription(shift_overdue=True) opts into moving them forward.
RESUME_SHIFTS_OVERDUE_TOUCHES = False

# Resolved touches (completed/skipped) are history: edit is rejected.
# Reassignment stays allowed to correct who did the work.
ALLOW_EDIT_RESOLVED_TOUCHES = False

# Touch actions are accepted while the subscription is paused.
ALLOW_TOUCH_ACTIONS_WHILE_PAUSED = True
