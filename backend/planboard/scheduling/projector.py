"""
Schedule projection: end dates derived from start + duration.

Also holds the activity-form operations, which must re-project the end
date before anything validates the draft.
"""

from datetime import date
from typing import Any, Mapping, Optional

from ..models import Activity, ActivityDraft, DependencyInput, DependencyType, DragMode, clamp_duration, clamp_lag
from .evaluator import calculate_start_date, validate_dependencies
from .temporal import add_days, day_diff


def project_end_date(start_date: Optional[date], duration_days: Any) -> Optional[date]:
    if start_date is None:
        return None
    return add_days(start_date, clamp_duration(duration_days))


def duration_between(start_date: date, end_date: date) -> int:
    return clamp_duration(day_diff(start_date, end_date))


def normalize_activity(activity: Activity) -> Activity:
    """
    Return the activity with end_date re-derived from start and duration.
    Activities missing either date are returned untouched and stay off the chart.
    """
    if not activity.is_scheduled:
        return activity
    end_date = project_end_date(activity.start_date, activity.duration_days)
    if end_date == activity.end_date:
        return activity
    return activity.model_copy(update={'end_date': end_date})


def shift_span(start: date, end: date, mode: DragMode, delta_days: int) -> Optional[tuple[date, date]]:
    """
    Apply a whole-day gesture to a (start, end) pair.

    A move shifts both ends, a left resize only the start and a right resize
    only the end. Returns None when the result would be empty or inverted.
    """
    if mode is DragMode.MOVE:
        return add_days(start, delta_days), add_days(end, delta_days)
    if mode is DragMode.RESIZE_LEFT:
        new_start = add_days(start, delta_days)
        if new_start >= end:
            return None
        return new_start, end
    new_end = add_days(end, delta_days)
    if new_end <= start:
        return None
    return start, new_end


# --- Activity form ---

def _reproject(draft: ActivityDraft, **update) -> ActivityDraft:
    draft = draft.model_copy(update=update)
    return draft.model_copy(update={'end_date': project_end_date(draft.start_date, draft.duration_days)})


def with_duration(draft: ActivityDraft, value: Any) -> ActivityDraft:
    return _reproject(draft, duration_days=clamp_duration(value))


def with_start_date(draft: ActivityDraft, start_date: date, suggested_start: Optional[date]) -> ActivityDraft:
    """A user-typed start date; diverging from the suggestion marks an override."""
    return _reproject(
        draft,
        start_date=start_date,
        is_date_override=suggested_start is not None and start_date != suggested_start,
    )


def apply_suggestion(draft: ActivityDraft, suggested_start: date) -> ActivityDraft:
    """Take the suggestion as the start date unless the user has overridden it."""
    if draft.is_date_override:
        return _reproject(draft)
    return _reproject(draft, start_date=suggested_start)


def suggest_start(
    draft: ActivityDraft,
    activities: Mapping[str, Activity],
    project_start_date: date,
) -> tuple[date, ActivityDraft]:
    suggested = calculate_start_date(draft.dependencies, activities, project_start_date)
    return suggested, apply_suggestion(draft, suggested)


def check_draft(draft: ActivityDraft, activities: Mapping[str, Activity]):
    """Re-project then validate; returns the first violation or None."""
    draft = _reproject(draft)
    return validate_dependencies(draft.start_date, draft.end_date, draft.dependencies, activities)


def toggle_dependency(draft: ActivityDraft, predecessor_id: str) -> ActivityDraft:
    remaining = [d for d in draft.dependencies if d.predecessor_activity_id != predecessor_id]
    if len(remaining) == len(draft.dependencies):
        remaining.append(DependencyInput(predecessor_activity_id=predecessor_id))
    return draft.model_copy(update={'dependencies': remaining})


def _update_dependency(draft: ActivityDraft, predecessor_id: str, **update) -> ActivityDraft:
    dependencies = [
        d.model_copy(update=update) if d.predecessor_activity_id == predecessor_id else d
        for d in draft.dependencies
    ]
    return draft.model_copy(update={'dependencies': dependencies})


def set_dependency_type(draft: ActivityDraft, predecessor_id: str, dep_type: DependencyType) -> ActivityDraft:
    return _update_dependency(draft, predecessor_id, type=DependencyType(dep_type))


def set_dependency_lag(draft: ActivityDraft, predecessor_id: str, lag_days: Any) -> ActivityDraft:
    return _update_dependency(draft, predecessor_id, lag_days=clamp_lag(lag_days))
