"""
Pydantic models for the scheduling core and its API.
Field names follow the record store columns (project_activities,
activity_dependencies) so rows can be validated straight off the wire.
"""

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import get_settings


def _as_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def clamp_duration(value: Any) -> int:
    """Durations are whole days, at least 1. Garbage input becomes 1."""
    return max(1, _as_int(value, 1))


def clamp_lag(value: Any) -> int:
    """Lag is a signed day offset kept within the configured limit."""
    limit = get_settings().lag_limit_days
    return max(-limit, min(limit, _as_int(value, 0)))


def clamp_progress(value: Any) -> int:
    return max(0, min(100, _as_int(value, 0)))


class ActivityStatus(str, Enum):
    PENDING = "Pending"
    WORK_IN_PROGRESS = "Work in Progress"
    READY_FOR_INSPECTION = "Ready for Inspection"
    AWAITING_CLIENT_APPROVAL = "Awaiting Client Approval"
    INSPECTED = "Inspected"
    CLOSED = "Closed"


class Anchor(str, Enum):
    START = "start"
    FINISH = "finish"


class DependencyType(str, Enum):
    """
    The four dependency relations. Each one ties an anchor of the
    predecessor to an anchor of the successor; earliest-start, validation
    and connector routing all read the anchors from here.
    """
    FS = "FS"
    SS = "SS"
    FF = "FF"
    SF = "SF"

    @property
    def label(self) -> str:
        return _DEPENDENCY_LABELS[self]

    @property
    def predecessor_anchor(self) -> Anchor:
        return _DEPENDENCY_ANCHORS[self][0]

    @property
    def successor_anchor(self) -> Anchor:
        return _DEPENDENCY_ANCHORS[self][1]

    @property
    def gap_days(self) -> int:
        """Finishing on a day frees the successor to start the day after."""
        return 1 if self is DependencyType.FS else 0

    @property
    def constrains_start(self) -> bool:
        return self.successor_anchor is Anchor.START


_DEPENDENCY_ANCHORS = {
    DependencyType.FS: (Anchor.FINISH, Anchor.START),
    DependencyType.SS: (Anchor.START, Anchor.START),
    DependencyType.FF: (Anchor.FINISH, Anchor.FINISH),
    DependencyType.SF: (Anchor.START, Anchor.FINISH),
}

_DEPENDENCY_LABELS = {
    DependencyType.FS: "Finish-to-Start",
    DependencyType.SS: "Start-to-Start",
    DependencyType.FF: "Finish-to-Finish",
    DependencyType.SF: "Start-to-Finish",
}


class TimeScale(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class ViewDensity(str, Enum):
    COMFORTABLE = "comfortable"
    COMPACT = "compact"


class DragMode(str, Enum):
    MOVE = "move"
    RESIZE_LEFT = "left"
    RESIZE_RIGHT = "right"


# --- Record store rows ---

class Activity(BaseModel):
    id: str
    project_id: Optional[str] = Field(default=None, alias="retrofit_project_id")
    name: str
    description: Optional[str] = None
    duration_days: int = 1
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_date_override: bool = False
    override_warning: Optional[str] = None
    progress_percent: int = 0
    status: ActivityStatus = ActivityStatus.PENDING

    @field_validator('duration_days', mode='before')
    @classmethod
    def ensure_duration(cls, v):
        return clamp_duration(v)

    @field_validator('progress_percent', mode='before')
    @classmethod
    def ensure_progress(cls, v):
        return clamp_progress(v)

    @property
    def is_scheduled(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    class Config:
        populate_by_name = True
        frozen = True


class Dependency(BaseModel):
    id: str
    project_id: Optional[str] = Field(default=None, alias="retrofit_project_id")
    predecessor_activity_id: str
    successor_activity_id: str
    type: DependencyType = DependencyType.FS
    lag_days: int = 0

    @field_validator('lag_days', mode='before')
    @classmethod
    def ensure_lag(cls, v):
        return clamp_lag(v)

    @model_validator(mode='after')
    def reject_self_dependency(self):
        if self.predecessor_activity_id == self.successor_activity_id:
            raise ValueError("An activity cannot depend on itself")
        return self

    class Config:
        populate_by_name = True
        frozen = True


class DependencyInput(BaseModel):
    """A dependency as edited on the successor's form."""
    predecessor_activity_id: str
    type: DependencyType = DependencyType.FS
    lag_days: int = 0

    @field_validator('lag_days', mode='before')
    @classmethod
    def ensure_lag(cls, v):
        return clamp_lag(v)

    def matches(self, dependency: Dependency) -> bool:
        return (
            self.predecessor_activity_id == dependency.predecessor_activity_id
            and self.type == dependency.type
            and self.lag_days == dependency.lag_days
        )


class ScheduleUpdate(BaseModel):
    """Payload of a schedule write to the record store."""
    start_date: date
    end_date: date
    duration_days: int
    is_date_override: bool = True


class ActivityDraft(BaseModel):
    """The activity form: prospective values not yet written anywhere."""
    id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    duration_days: int = 1
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_date_override: bool = False
    progress_percent: int = 0
    status: ActivityStatus = ActivityStatus.PENDING
    dependencies: list[DependencyInput] = Field(default_factory=list)

    @field_validator('duration_days', mode='before')
    @classmethod
    def ensure_duration(cls, v):
        return clamp_duration(v)

    @field_validator('progress_percent', mode='before')
    @classmethod
    def ensure_progress(cls, v):
        return clamp_progress(v)


class PendingChange(BaseModel):
    activity_id: str
    start_date: date
    end_date: date
    original_start: Optional[date] = None
    original_end: Optional[date] = None


class TemplateItem(BaseModel):
    sequence_order: int
    name: str
    description: Optional[str] = None
    duration_days: int = 1
    depends_on_sequence: Optional[int] = None
    dependency_type: DependencyType = DependencyType.FS

    @field_validator('duration_days', mode='before')
    @classmethod
    def ensure_duration(cls, v):
        return clamp_duration(v)


# --- Scheduling results ---

class DependencyViolation(BaseModel):
    dependency_type: DependencyType
    predecessor_activity_id: str
    predecessor_name: str
    lag_days: int
    earliest_date: date
    message: str


class TimelineHeader(BaseModel):
    label: str
    width: float
    is_today: bool = False
    is_weekend: bool = False


class ActivityBar(BaseModel):
    activity_id: str
    name: str
    status: ActivityStatus
    progress_percent: int
    start_date: date
    end_date: date
    row_index: int
    left_px: float
    width_px: float
    top_px: float
    is_pending: bool = False


class ConnectorPath(BaseModel):
    dependency_id: str
    type: DependencyType
    from_x: float
    from_y: float
    to_x: float
    to_y: float
    points: list[tuple[float, float]]
    is_conflict: bool = False
    is_critical: bool = False

    @property
    def style(self) -> str:
        if self.is_conflict:
            return "error"
        return "critical" if self.is_critical else "normal"

    @property
    def svg_path(self) -> str:
        head, *rest = self.points
        return " ".join([f"M {head[0]:g} {head[1]:g}"] + [f"L {x:g} {y:g}" for x, y in rest])


class TimelineView(BaseModel):
    range_start: date
    range_end: date
    total_days: int
    day_width: float
    row_height: int
    headers: list[TimelineHeader]
    bars: list[ActivityBar]
    connectors: list[ConnectorPath] = Field(default_factory=list)
    has_conflicts: bool = False
    pending_count: int = 0


# --- Request Models ---

class SuggestStartRequest(BaseModel):
    project_id: str
    project_start_date: Optional[date] = None
    draft: ActivityDraft


class ValidateRequest(BaseModel):
    project_id: str
    draft: ActivityDraft


class ReplaceDependenciesRequest(BaseModel):
    dependencies: list[DependencyInput] = Field(default_factory=list)


class ApplyTemplateRequest(BaseModel):
    project_id: str
    project_start_date: Optional[date] = None
    items: list[TemplateItem]


class CreateSessionRequest(BaseModel):
    project_id: str


class ViewUpdateRequest(BaseModel):
    zoom: Optional[float] = None
    zoom_action: Optional[str] = Field(default=None, description="in | out | fit")
    time_scale: Optional[TimeScale] = None
    view_density: Optional[ViewDensity] = None
    status_filter: Optional[list[ActivityStatus]] = None
    edit_mode: Optional[bool] = None


class DragRequest(BaseModel):
    activity_id: str
    mode: DragMode = DragMode.MOVE
    delta_px: float


class ReorderRequest(BaseModel):
    activity_id: str
    delta_px: float


# --- Response Models ---

class SuggestStartResponse(BaseModel):
    suggested_start_date: date
    draft: ActivityDraft


class ValidationResponse(BaseModel):
    is_valid: bool
    violation: Optional[DependencyViolation] = None


class SessionResponse(BaseModel):
    session_id: str
    project_id: str
    edit_mode: bool
    zoom: float
    time_scale: TimeScale
    view_density: ViewDensity
    status_filter: list[ActivityStatus]
    pending_changes: list[PendingChange]
    activity_order: list[str]


class CommitResponse(BaseModel):
    committed_ids: list[str]
