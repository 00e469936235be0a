"""
Interactive scheduling session: pending edits, row order and view state.

A session owns nothing persistent. It holds a snapshot of the project's
activities and dependencies, layers uncommitted date edits on top of it,
and hands the edits to the record store on commit.
"""

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from ..config import get_settings
from ..logging_config import get_logger, log_execution_time
from ..models import (
    Activity, ActivityStatus, Dependency, DragMode, PendingChange, ScheduleUpdate,
    TimelineView, TimeScale, ViewDensity,
)
from ..store import ACTIVITIES, DEPENDENCIES, RecordStore, StoreError
from .connectors import route_connectors
from .evaluator import Span
from .layout import ROW_HEIGHT, day_width_for, layout_timeline, visible_activities
from .projector import duration_between, normalize_activity, shift_span
from .temporal import round_half_up


class CommitError(StoreError):
    """
    A commit stopped part way. Writes before the failing one stay applied;
    the failing change and everything after it are still pending.
    """

    def __init__(self, activity_id: str, cause: Exception, committed_ids: list[str], remaining_ids: list[str]):
        super().__init__(f"Failed to save changes for activity {activity_id}: {cause}")
        self.activity_id = activity_id
        self.cause = cause
        self.committed_ids = committed_ids
        self.remaining_ids = remaining_ids


@dataclass
class _DateGesture:
    activity_id: str
    mode: DragMode
    origin_start: date
    origin_end: date


@dataclass
class _RowGesture:
    activity_id: str
    drop_index: Optional[int] = None


class SchedulingSession:

    def __init__(self, project_id: str, session_id: Optional[str] = None, today: Optional[date] = None):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.project_id = project_id
        self.today = today

        self.activities: list[Activity] = []
        self.dependencies: list[Dependency] = []
        self.pending: dict[str, PendingChange] = {}
        self.order: list[str] = []

        self.edit_mode = False
        self.zoom = 1.0
        self.time_scale = TimeScale.DAY
        self.view_density = ViewDensity.COMFORTABLE
        self.status_filter: list[ActivityStatus] = []

        self._date_gesture: Optional[_DateGesture] = None
        self._row_gesture: Optional[_RowGesture] = None
        self._stale: set[str] = {ACTIVITIES, DEPENDENCIES}
        self._unsubscribe = None
        self.logger = get_logger(__name__).with_context(session_id=self.session_id)

    # --- Snapshot ---

    @property
    def activity_map(self) -> dict[str, Activity]:
        return {a.id: a for a in self.activities}

    def load(self, activities: Optional[Iterable[Activity]] = None, dependencies: Optional[Iterable[Dependency]] = None) -> None:
        """Install a committed snapshot. Either part may be omitted to keep the current one."""
        if activities is not None:
            self.activities = [normalize_activity(a) for a in activities]
            self._sync_order()
            self.reconcile()
        if dependencies is not None:
            self.dependencies = list(dependencies)

    def attach(self, store: RecordStore) -> None:
        """Listen for change notifications; they mark the snapshot for re-reading."""
        self.detach()
        self._unsubscribe = store.notifier.subscribe(self.project_id, self._on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, project_id: str, kind: str) -> None:
        self._stale.add(kind)

    @property
    def is_stale(self) -> bool:
        return bool(self._stale)

    async def sync(self, store: RecordStore, force: bool = False) -> None:
        """Re-read whatever changed since the last read (everything when forced)."""
        stale = {ACTIVITIES, DEPENDENCIES} if force else set(self._stale)
        # Cleared up front so a notification arriving mid-read marks it stale again
        self._stale -= stale
        try:
            activities = await store.list_activities(self.project_id) if ACTIVITIES in stale else None
            dependencies = await store.list_dependencies(self.project_id) if DEPENDENCIES in stale else None
        except StoreError:
            self._stale |= stale
            raise
        self.load(activities, dependencies)

    def reconcile(self) -> None:
        """Drop pending edits the committed snapshot already reflects."""
        committed = self.activity_map
        for activity_id, change in list(self.pending.items()):
            activity = committed.get(activity_id)
            if activity is None:
                continue
            if activity.start_date == change.start_date and activity.end_date == change.end_date:
                del self.pending[activity_id]
                self.logger.debug(
                    "Pending change reconciled",
                    extra={'extra_data': {'activity_id': activity_id}}
                )

    def _sync_order(self) -> None:
        known = {a.id for a in self.activities}
        order = [activity_id for activity_id in self.order if activity_id in known]
        placed = set(order)
        order.extend(a.id for a in self.activities if a.id not in placed)
        self.order = order

    # --- Derived views ---

    @property
    def ranks(self) -> dict[str, int]:
        return {activity_id: rank for rank, activity_id in enumerate(self.order)}

    def ordered_activities(self) -> list[Activity]:
        ranks = self.ranks
        return sorted(self.activities, key=lambda a: ranks.get(a.id, len(ranks)))

    def visible_activities(self) -> list[Activity]:
        return visible_activities(self.ordered_activities(), self.status_filter)

    def span_of(self, activity: Activity) -> Span:
        change = self.pending.get(activity.id)
        if change is not None:
            return Span(change.start_date, change.end_date)
        return Span.of(activity)

    @property
    def day_width(self) -> float:
        return day_width_for(self.time_scale, self.zoom)

    @property
    def row_height(self) -> int:
        return ROW_HEIGHT[self.view_density]

    @property
    def has_changes(self) -> bool:
        return bool(self.pending)

    @log_execution_time()
    def timeline(self) -> TimelineView:
        spans = {activity_id: Span(c.start_date, c.end_date) for activity_id, c in self.pending.items()}
        view, grid = layout_timeline(
            self.ordered_activities(),
            time_scale=self.time_scale,
            zoom=self.zoom,
            view_density=self.view_density,
            status_filter=self.status_filter,
            spans=spans,
            today=self.today,
        )
        connectors = route_connectors(self.dependencies, view.bars, grid)
        return view.model_copy(update={
            'connectors': connectors,
            'has_conflicts': any(c.is_conflict for c in connectors),
            'pending_count': len(self.pending),
        })

    # --- View controls ---

    def set_zoom(self, zoom: float) -> float:
        settings = get_settings()
        self.zoom = round(max(settings.zoom_min, min(settings.zoom_max, zoom)), 2)
        return self.zoom

    def zoom_in(self) -> float:
        return self.set_zoom(self.zoom + get_settings().zoom_step)

    def zoom_out(self) -> float:
        return self.set_zoom(self.zoom - get_settings().zoom_step)

    def zoom_fit(self) -> float:
        return self.set_zoom(1.0)

    def toggle_status_filter(self, status: ActivityStatus) -> None:
        if status in self.status_filter:
            self.status_filter.remove(status)
        else:
            self.status_filter.append(status)

    def enter_edit_mode(self) -> None:
        self.edit_mode = True

    def cancel(self) -> None:
        """Discard every pending edit and leave edit mode."""
        if self.pending:
            self.logger.debug(
                "Pending changes discarded",
                extra={'extra_data': {'count': len(self.pending)}}
            )
        self.pending.clear()
        self._date_gesture = None
        self._row_gesture = None
        self.edit_mode = False

    # --- Horizontal gestures ---

    def begin_drag(self, activity_id: str, mode: DragMode = DragMode.MOVE) -> bool:
        if not self.edit_mode:
            return False
        activity = next((a for a in self.visible_activities() if a.id == activity_id), None)
        if activity is None:
            return False
        span = self.span_of(activity)
        self._date_gesture = _DateGesture(activity_id, DragMode(mode), span.start, span.end)
        return True

    def drag(self, delta_px: float) -> bool:
        """
        Move or resize the dragged bar by a pointer offset measured from the
        gesture origin. Returns True when a pending change was recorded.
        """
        gesture = self._date_gesture
        if gesture is None:
            return False
        delta_days = round_half_up(delta_px / self.day_width)
        if delta_days == 0:
            return False
        shifted = shift_span(gesture.origin_start, gesture.origin_end, gesture.mode, delta_days)
        if shifted is None:
            return False
        activity = self.activity_map.get(gesture.activity_id)
        if activity is None:
            return False

        start, end = shifted
        self.pending[gesture.activity_id] = PendingChange(
            activity_id=gesture.activity_id,
            start_date=start,
            end_date=end,
            original_start=activity.start_date,
            original_end=activity.end_date,
        )
        self.logger.debug(
            "Pending change recorded",
            extra={'extra_data': {
                'activity_id': gesture.activity_id,
                'mode': gesture.mode.value,
                'start': start.isoformat(),
                'end': end.isoformat(),
            }}
        )
        return True

    def end_drag(self) -> None:
        self._date_gesture = None

    def drag_activity(self, activity_id: str, mode: DragMode, delta_px: float) -> bool:
        """A complete press-move-release horizontal gesture."""
        if not self.begin_drag(activity_id, mode):
            return False
        try:
            return self.drag(delta_px)
        finally:
            self.end_drag()

    # --- Vertical gestures ---

    def begin_row_drag(self, activity_id: str) -> bool:
        if not self.edit_mode:
            return False
        if activity_id not in {a.id for a in self.visible_activities()}:
            return False
        self._row_gesture = _RowGesture(activity_id)
        return True

    def row_drag(self, delta_px: float) -> Optional[int]:
        """Track the drop row for a vertical drag; returns the current drop index."""
        gesture = self._row_gesture
        if gesture is None:
            return None
        visible = [a.id for a in self.visible_activities()]
        if gesture.activity_id not in visible:
            return None
        rows_moved = round_half_up(delta_px / self.row_height)
        if rows_moved != 0:
            current = visible.index(gesture.activity_id)
            gesture.drop_index = max(0, min(len(visible) - 1, current + rows_moved))
        return gesture.drop_index

    def end_row_drag(self) -> bool:
        gesture, self._row_gesture = self._row_gesture, None
        if gesture is None or gesture.drop_index is None:
            return False
        visible = [a.id for a in self.visible_activities()]
        if gesture.activity_id not in visible:
            return False
        if visible.index(gesture.activity_id) == gesture.drop_index:
            return False
        return self.move_to_rank(gesture.activity_id, self.order.index(visible[gesture.drop_index]))

    def reorder_by_drag(self, activity_id: str, delta_px: float) -> bool:
        """A complete press-move-release vertical gesture."""
        if not self.begin_row_drag(activity_id):
            return False
        self.row_drag(delta_px)
        return self.end_row_drag()

    def move_to_rank(self, activity_id: str, rank: int) -> bool:
        """Splice the activity to the given rank; ranks stay contiguous from 0."""
        if activity_id not in self.order:
            return False
        rank = max(0, min(len(self.order) - 1, rank))
        current = self.order.index(activity_id)
        if current == rank:
            return False
        self.order.pop(current)
        self.order.insert(rank, activity_id)
        return True

    # --- Commit ---

    @log_execution_time()
    async def commit(self, store: RecordStore) -> list[str]:
        """
        Write every pending change, one update per activity, each marked as
        a manual override with its duration re-derived from the dates.

        Raises:
            CommitError: when a write fails; see the error for what got saved.
        """
        committed: list[str] = []
        self.logger.info(
            "Committing pending changes",
            extra={'extra_data': {'count': len(self.pending)}}
        )
        for activity_id, change in list(self.pending.items()):
            if activity_id not in self.activity_map:
                self.logger.warning(
                    "Dropping pending change for a deleted activity",
                    extra={'extra_data': {'activity_id': activity_id}}
                )
                del self.pending[activity_id]
                continue

            update = ScheduleUpdate(
                start_date=change.start_date,
                end_date=change.end_date,
                duration_days=duration_between(change.start_date, change.end_date),
                is_date_override=True,
            )
            try:
                updated = await store.update_activity_schedule(activity_id, update)
            except StoreError as e:
                remaining = list(self.pending)
                self.logger.error(
                    f"Commit failed: {e}",
                    extra={'extra_data': {
                        'activity_id': activity_id,
                        'committed': committed,
                        'remaining': remaining,
                    }}
                )
                raise CommitError(activity_id, e, committed, remaining) from e

            del self.pending[activity_id]
            committed.append(activity_id)
            self.activities = [
                normalize_activity(updated) if a.id == activity_id else a for a in self.activities
            ]

        self.edit_mode = False
        self.logger.info(
            "Changes saved",
            extra={'extra_data': {'committed': committed}}
        )
        return committed
