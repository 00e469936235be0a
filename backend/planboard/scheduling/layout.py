"""
Timeline layout: maps dated activities onto a time-scaled grid.

The output is pure geometry (pixels relative to the chart body, row 0 at
y=0); rendering and the activity-name column belong to the caller.
"""

from dataclasses import dataclass
from datetime import date
from typing import Collection, Mapping, Optional, Sequence

from ..logging_config import log_execution_time
from ..models import Activity, ActivityBar, ActivityStatus, TimelineHeader, TimelineView, TimeScale, ViewDensity
from .evaluator import Span
from .temporal import (
    add_days, day_diff, first_day_of_next_month, is_weekend, last_day_of_month,
    padded_range, week_number,
)

BASE_DAY_WIDTH = {
    TimeScale.DAY: 40,
    TimeScale.WEEK: 25,
    TimeScale.MONTH: 15,
}

ROW_HEIGHT = {
    ViewDensity.COMFORTABLE: 64,
    ViewDensity.COMPACT: 48,
}

BAR_TOP_INSET = 8
BAR_HEIGHT = 40
BAR_CENTER_OFFSET = BAR_TOP_INSET + BAR_HEIGHT // 2

# Fixed English labels; strftime('%b') would follow the process locale
MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


@dataclass(frozen=True)
class Grid:
    """Scale of the chart: where day 0 is and how wide a day and a row are."""
    range_start: date
    range_end: date
    day_width: float
    row_height: int

    @property
    def total_days(self) -> int:
        return max(1, day_diff(self.range_start, self.range_end))

    def x_of(self, value: date) -> float:
        return max(0, day_diff(self.range_start, value)) * self.day_width

    def width_of(self, start: date, end: date) -> float:
        # Both endpoints are inclusive, so a one-day activity still has width
        return max(1, day_diff(start, end) + 1) * self.day_width

    def row_center(self, row_index: int) -> float:
        return row_index * self.row_height + BAR_CENTER_OFFSET


def day_width_for(time_scale: TimeScale, zoom: float) -> float:
    return BASE_DAY_WIDTH[time_scale] * zoom


def visible_activities(
    activities: Sequence[Activity],
    status_filter: Collection[ActivityStatus] = (),
) -> list[Activity]:
    """Scheduled activities passing the status filter; an empty filter passes all."""
    return [
        a for a in activities
        if a.is_scheduled and (not status_filter or a.status in status_filter)
    ]


def build_headers(grid: Grid, time_scale: TimeScale, today: date) -> list[TimelineHeader]:
    headers = []
    current = grid.range_start
    if time_scale is TimeScale.DAY:
        while current <= grid.range_end:
            headers.append(TimelineHeader(
                label=str(current.day),
                width=grid.day_width,
                is_today=current == today,
                is_weekend=is_weekend(current),
            ))
            current = add_days(current, 1)
    elif time_scale is TimeScale.WEEK:
        while current <= grid.range_end:
            days_in_view = min(7, day_diff(current, grid.range_end) + 1)
            headers.append(TimelineHeader(
                label=f"W{week_number(current)}",
                width=days_in_view * grid.day_width,
            ))
            current = add_days(current, 7)
    else:
        while current <= grid.range_end:
            segment_end = min(last_day_of_month(current), grid.range_end)
            headers.append(TimelineHeader(
                label=MONTH_LABELS[current.month - 1],
                width=(day_diff(current, segment_end) + 1) * grid.day_width,
            ))
            current = first_day_of_next_month(current)
    return headers


@log_execution_time()
def layout_timeline(
    activities: Sequence[Activity],
    time_scale: TimeScale = TimeScale.DAY,
    zoom: float = 1.0,
    view_density: ViewDensity = ViewDensity.COMFORTABLE,
    status_filter: Collection[ActivityStatus] = (),
    spans: Optional[Mapping[str, Span]] = None,
    today: Optional[date] = None,
) -> tuple[TimelineView, Grid]:
    """
    Lay out activities in the given (presentation) order.

    Args:
        activities: Activities already in display order
        time_scale: Header granularity and base day width
        zoom: Multiplier on the base day width
        view_density: Selects the row height
        status_filter: Statuses to show; empty shows every status
        spans: Pending (start, end) overrides keyed by activity id
        today: Date flagged in the day headers; an empty chart spans only today

    Returns:
        The timeline view (without connectors) and the grid it was built on
    """
    today = today or date.today()
    spans = spans or {}
    visible = visible_activities(activities, status_filter)
    effective = [spans.get(a.id) or Span.of(a) for a in visible]

    if effective:
        range_start, range_end = padded_range(
            [d for span in effective for d in (span.start, span.end)]
        )
    else:
        range_start = range_end = today
    grid = Grid(
        range_start=range_start,
        range_end=range_end,
        day_width=day_width_for(time_scale, zoom),
        row_height=ROW_HEIGHT[view_density],
    )

    bars = [
        ActivityBar(
            activity_id=activity.id,
            name=activity.name,
            status=activity.status,
            progress_percent=activity.progress_percent,
            start_date=span.start,
            end_date=span.end,
            row_index=row,
            left_px=grid.x_of(span.start),
            width_px=grid.width_of(span.start, span.end),
            top_px=row * grid.row_height,
            is_pending=activity.id in spans,
        )
        for row, (activity, span) in enumerate(zip(visible, effective))
    ]

    view = TimelineView(
        range_start=grid.range_start,
        range_end=grid.range_end,
        total_days=grid.total_days,
        day_width=grid.day_width,
        row_height=grid.row_height,
        headers=build_headers(grid, time_scale, today),
        bars=bars,
    )
    return view, grid
