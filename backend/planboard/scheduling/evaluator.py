"""
Dependency evaluation: earliest permissible start and conflict detection.

Only direct predecessors' stored (or pending) dates are consulted; nothing
here walks the graph transitively, so cyclic dependency data cannot loop.
Predecessors that are missing or unscheduled impose no constraint.
"""

from datetime import date
from typing import Iterable, Mapping, NamedTuple, Optional, Sequence, Union

from ..logging_config import get_logger
from ..models import (
    Activity, Anchor, Dependency, DependencyInput, DependencyType, DependencyViolation,
)
from .temporal import add_days

logger = get_logger(__name__)

DependencyLike = Union[Dependency, DependencyInput]


class Span(NamedTuple):
    start: Optional[date]
    end: Optional[date]

    @classmethod
    def of(cls, activity: Activity) -> "Span":
        return cls(activity.start_date, activity.end_date)

    def at(self, anchor: Anchor) -> Optional[date]:
        return self.start if anchor is Anchor.START else self.end

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None


def required_date(dep_type: DependencyType, lag_days: int, predecessor: Span) -> Optional[date]:
    """The earliest date the successor's constrained anchor may fall on."""
    anchor = predecessor.at(dep_type.predecessor_anchor)
    if anchor is None:
        return None
    return add_days(anchor, lag_days + dep_type.gap_days)


def is_violated(dep_type: DependencyType, lag_days: int, predecessor: Span, successor: Span) -> bool:
    """
    The single per-type inequality used by both the form validation and the
    chart connectors:

        FS  successor.start  < predecessor.end   + lag + 1
        SS  successor.start  < predecessor.start + lag
        FF  successor.end    < predecessor.end   + lag
        SF  successor.end    < predecessor.start + lag
    """
    required = required_date(dep_type, lag_days, predecessor)
    actual = successor.at(dep_type.successor_anchor)
    if required is None or actual is None:
        return False
    return actual < required


def _resolve(dep: DependencyLike, activities: Mapping[str, Activity]) -> Optional[Activity]:
    predecessor = activities.get(dep.predecessor_activity_id)
    if predecessor is None:
        logger.debug(
            "Skipping dependency on unknown predecessor",
            extra={'extra_data': {'predecessor_id': dep.predecessor_activity_id}}
        )
    return predecessor


def calculate_start_date(
    dependencies: Iterable[DependencyLike],
    activities: Mapping[str, Activity],
    project_start_date: date,
) -> date:
    """
    Suggest the earliest start consistent with the start-constraining
    dependencies (FS and SS).

    FF and SF constrain the successor's finish, not its start, and do not
    move the suggestion; they are still enforced by validate_dependencies.

    Args:
        dependencies: The candidate activity's declared dependencies
        activities: Scheduled activities keyed by id
        project_start_date: Floor for the suggestion

    Returns:
        The suggested start date
    """
    earliest = project_start_date
    for dep in dependencies:
        if not dep.type.constrains_start:
            continue
        predecessor = _resolve(dep, activities)
        if predecessor is None or not predecessor.is_scheduled:
            continue
        candidate = required_date(dep.type, dep.lag_days, Span.of(predecessor))
        if candidate > earliest:
            earliest = candidate
    return earliest


def _lag_text(lag_days: int) -> str:
    if lag_days == 0:
        return ""
    unit = "day" if abs(lag_days) == 1 else "days"
    return f" {lag_days:+d} {unit} lag"


def _violation_message(dep_type: DependencyType, predecessor_name: str, lag_days: int, earliest: date) -> str:
    action = "start" if dep_type.successor_anchor is Anchor.START else "finish"
    event = "starts" if dep_type.predecessor_anchor is Anchor.START else "finishes"
    return (
        f'Cannot {action} before "{predecessor_name}" {event}{_lag_text(lag_days)} '
        f'(earliest: {earliest.isoformat()})'
    )


def _check(
    dep: DependencyLike,
    candidate: Span,
    activities: Mapping[str, Activity],
) -> Optional[DependencyViolation]:
    predecessor = _resolve(dep, activities)
    if predecessor is None:
        return None
    span = Span.of(predecessor)
    if not is_violated(dep.type, dep.lag_days, span, candidate):
        return None
    earliest = required_date(dep.type, dep.lag_days, span)
    return DependencyViolation(
        dependency_type=dep.type,
        predecessor_activity_id=predecessor.id,
        predecessor_name=predecessor.name,
        lag_days=dep.lag_days,
        earliest_date=earliest,
        message=_violation_message(dep.type, predecessor.name, dep.lag_days, earliest),
    )


def validate_dependencies(
    start_date: Optional[date],
    end_date: Optional[date],
    dependencies: Sequence[DependencyLike],
    activities: Mapping[str, Activity],
) -> Optional[DependencyViolation]:
    """
    Check a candidate schedule against its dependencies.

    Stops at the first violated dependency in input order and returns only
    that one; None means the schedule is valid. Use collect_violations for a
    full report.
    """
    candidate = Span(start_date, end_date)
    for dep in dependencies:
        violation = _check(dep, candidate, activities)
        if violation is not None:
            logger.info(
                "Dependency conflict detected",
                extra={'extra_data': {
                    'predecessor_id': violation.predecessor_activity_id,
                    'type': violation.dependency_type.value,
                    'earliest': violation.earliest_date.isoformat(),
                }}
            )
            return violation
    return None


def collect_violations(
    start_date: Optional[date],
    end_date: Optional[date],
    dependencies: Sequence[DependencyLike],
    activities: Mapping[str, Activity],
) -> list[DependencyViolation]:
    candidate = Span(start_date, end_date)
    violations = [_check(dep, candidate, activities) for dep in dependencies]
    return [v for v in violations if v is not None]


def dependencies_of(activity_id: str, dependencies: Iterable[Dependency]) -> list[Dependency]:
    """Edges whose successor is the given activity, in input order."""
    return [d for d in dependencies if d.successor_activity_id == activity_id]


def describe_dependencies(
    activity_id: str,
    dependencies: Iterable[Dependency],
    activities: Mapping[str, Activity],
) -> str:
    """Human summary such as 'Excavation (FS), Formwork (SS)'."""
    parts = []
    for dep in dependencies_of(activity_id, dependencies):
        predecessor = activities.get(dep.predecessor_activity_id)
        parts.append(f"{predecessor.name} ({dep.type.value})" if predecessor else "Unknown")
    return ", ".join(parts) if parts else "None"


def diff_dependencies(
    existing: Sequence[Dependency],
    desired: Sequence[DependencyInput],
) -> tuple[list[Dependency], list[DependencyInput]]:
    """
    Work out the minimal edit from the stored edges of one successor to the
    desired set. Edges are equal when predecessor, type and lag all match.

    Returns:
        (edges to delete, inputs to insert)
    """
    to_remove = [e for e in existing if not any(d.matches(e) for d in desired)]
    to_add = [d for d in desired if not any(d.matches(e) for e in existing)]
    return to_remove, to_add
