"""
Dependency connector routing between laid-out activity bars.
"""

from typing import Iterable, Optional

from ..models import ActivityBar, Anchor, ConnectorPath, Dependency
from .evaluator import Span, is_violated
from .layout import Grid

# Horizontal run out of the source and into the target before turning
CONNECTOR_STANDOFF = 20


def critical_path(activity_ids: Iterable[str], dependencies: Iterable[Dependency]) -> frozenset[str]:
    """
    Activities on the critical path.

    Always empty: float and slack are not computed, so nothing is ever
    styled as critical.
    """
    return frozenset()


def anchor_x(bar: ActivityBar, anchor: Anchor) -> float:
    if anchor is Anchor.START:
        return bar.left_px
    return bar.left_px + bar.width_px


def elbow_points(from_x: float, from_y: float, to_x: float, to_y: float) -> list[tuple[float, float]]:
    """
    Orthogonal route: out of the source, over to the vertical midpoint
    between the two rows, across, then down or up into the target.
    """
    mid_y = from_y + (to_y - from_y) / 2
    return [
        (from_x, from_y),
        (from_x + CONNECTOR_STANDOFF, from_y),
        (from_x + CONNECTOR_STANDOFF, mid_y),
        (to_x - CONNECTOR_STANDOFF, mid_y),
        (to_x - CONNECTOR_STANDOFF, to_y),
        (to_x, to_y),
    ]


def route_connector(
    dependency: Dependency,
    predecessor: ActivityBar,
    successor: ActivityBar,
    grid: Grid,
    critical: frozenset[str] = frozenset(),
) -> ConnectorPath:
    dep_type = dependency.type
    from_x = anchor_x(predecessor, dep_type.predecessor_anchor)
    to_x = anchor_x(successor, dep_type.successor_anchor)
    from_y = grid.row_center(predecessor.row_index)
    to_y = grid.row_center(successor.row_index)

    is_conflict = is_violated(
        dep_type,
        dependency.lag_days,
        Span(predecessor.start_date, predecessor.end_date),
        Span(successor.start_date, successor.end_date),
    )
    return ConnectorPath(
        dependency_id=dependency.id,
        type=dep_type,
        from_x=from_x,
        from_y=from_y,
        to_x=to_x,
        to_y=to_y,
        points=elbow_points(from_x, from_y, to_x, to_y),
        is_conflict=is_conflict,
        is_critical=(
            not is_conflict
            and dependency.predecessor_activity_id in critical
            and dependency.successor_activity_id in critical
        ),
    )


def route_connectors(
    dependencies: Iterable[Dependency],
    bars: Iterable[ActivityBar],
    grid: Grid,
    critical: Optional[frozenset[str]] = None,
) -> list[ConnectorPath]:
    """
    Route every edge whose two endpoints are laid out. Edges touching a
    filtered-out, unscheduled or unknown activity are dropped.
    """
    dependencies = list(dependencies)
    by_id = {bar.activity_id: bar for bar in bars}
    if critical is None:
        critical = critical_path(by_id, dependencies)

    connectors = []
    for dep in dependencies:
        predecessor = by_id.get(dep.predecessor_activity_id)
        successor = by_id.get(dep.successor_activity_id)
        if predecessor is None or successor is None:
            continue
        connectors.append(route_connector(dep, predecessor, successor, grid, critical))
    return connectors
