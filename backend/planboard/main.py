"""
FastAPI application exposing the scheduling core over REST.
"""

from contextlib import asynccontextmanager
from datetime import date
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .calendar_export import generate_ics, safe_filename
from .config import get_settings
from .logging_config import get_logger, setup_logging
from .middleware import add_logging_middleware
from .models import (
    Activity, ActivityDraft, ApplyTemplateRequest, CommitResponse, CreateSessionRequest,
    Dependency, DragRequest, ReorderRequest, ReplaceDependenciesRequest, ScheduleUpdate,
    SessionResponse, SuggestStartRequest, SuggestStartResponse, TimelineView,
    ValidateRequest, ValidationResponse, ViewUpdateRequest,
)
from .scheduling.evaluator import Span
from .scheduling.projector import check_draft, project_end_date, suggest_start
from .scheduling.session import CommitError, SchedulingSession
from .scheduling.templates import apply_template
from .store import PermissionBlockedError, RecordStore, StoreError, StoreUnavailableError, create_record_store

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    setup_logging()
    logger.info(
        "Planboard backend starting",
        extra={'extra_data': {
            'host': settings.host,
            'port': settings.port,
            'store_backend': settings.store_backend,
        }}
    )
    yield
    sessions.close_all()
    logger.info("Planboard backend shutting down")


app = FastAPI(
    title="Planboard API",
    description="Activity dependency scheduling for construction projects",
    version="1.0.0",
    lifespan=lifespan
)

# Add logging middleware (must be added before CORS)
add_logging_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache()
def get_store() -> RecordStore:
    return create_record_store()


def store_http_error(error: StoreError, detail=None) -> HTTPException:
    """Map persistence failures onto status codes the UI can tell apart."""
    if isinstance(error, PermissionBlockedError):
        status_code = 403
    elif isinstance(error, StoreUnavailableError):
        status_code = 502
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=detail or str(error))


class SessionManager:
    """Holds the interactive scheduling sessions, one per open chart."""

    def __init__(self):
        self.sessions: dict[str, SchedulingSession] = {}
        self._logger = get_logger(f"{__name__}.SessionManager")

    async def open(self, project_id: str, store: RecordStore) -> SchedulingSession:
        session = SchedulingSession(project_id)
        session.attach(store)
        await session.sync(store, force=True)
        self.sessions[session.session_id] = session
        self._logger.info(
            "Session opened",
            extra={'extra_data': {'session_id': session.session_id, 'project_id': project_id,
                                  'total_sessions': len(self.sessions)}}
        )
        return session

    def get(self, session_id: str) -> SchedulingSession:
        session = self.sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")
        return session

    def close(self, session_id: str) -> None:
        session = self.sessions.pop(session_id, None)
        if session is not None:
            session.detach()
            self._logger.info("Session closed", extra={'extra_data': {'session_id': session_id}})

    def close_all(self) -> None:
        for session_id in list(self.sessions):
            self.close(session_id)


sessions = SessionManager()


def session_response(session: SchedulingSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        project_id=session.project_id,
        edit_mode=session.edit_mode,
        zoom=session.zoom,
        time_scale=session.time_scale,
        view_density=session.view_density,
        status_filter=list(session.status_filter),
        pending_changes=list(session.pending.values()),
        activity_order=list(session.order),
    )


async def load_activity_map(store: RecordStore, project_id: str) -> dict[str, Activity]:
    try:
        return {a.id: a for a in await store.list_activities(project_id)}
    except StoreError as e:
        raise store_http_error(e)


# --- REST API Endpoints ---

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "planboard-backend"}


@app.get("/api/projects/{project_id}/activities", response_model=list[Activity])
async def list_activities(project_id: str, store: RecordStore = Depends(get_store)):
    return list((await load_activity_map(store, project_id)).values())


@app.get("/api/projects/{project_id}/dependencies", response_model=list[Dependency])
async def list_dependencies(project_id: str, store: RecordStore = Depends(get_store)):
    try:
        return await store.list_dependencies(project_id)
    except StoreError as e:
        raise store_http_error(e)


@app.post("/api/schedule/suggest", response_model=SuggestStartResponse)
async def suggest_start_date(request: SuggestStartRequest, store: RecordStore = Depends(get_store)):
    """
    Suggest a start date for an activity form from its dependencies.

    The suggestion replaces the draft's start date unless the draft is a
    manual override; the end date is re-derived either way.
    """
    activities = await load_activity_map(store, request.project_id)
    project_start = request.project_start_date
    if project_start is None:
        try:
            project_start = await store.get_project_start_date(request.project_id)
        except StoreError as e:
            logger.warning(f"Project start date unavailable, using today: {e}")
    suggested, draft = suggest_start(request.draft, activities, project_start or date.today())
    return SuggestStartResponse(suggested_start_date=suggested, draft=draft)


@app.post("/api/schedule/validate", response_model=ValidationResponse)
async def validate_schedule(request: ValidateRequest, store: RecordStore = Depends(get_store)):
    activities = await load_activity_map(store, request.project_id)
    violation = check_draft(request.draft, activities)
    return ValidationResponse(is_valid=violation is None, violation=violation)


@app.post("/api/projects/{project_id}/activities/{activity_id}/schedule", response_model=Activity)
async def save_activity_schedule(
    project_id: str,
    activity_id: str,
    draft: ActivityDraft,
    store: RecordStore = Depends(get_store),
):
    """
    Submit an activity form: dates, override flag and dependencies.

    A draft that violates one of its dependencies is refused with 409 and
    the violation; nothing is written.
    """
    if any(d.predecessor_activity_id == activity_id for d in draft.dependencies):
        raise HTTPException(status_code=400, detail="An activity cannot depend on itself")
    if draft.start_date is None:
        raise HTTPException(status_code=400, detail="A start date is required")

    activities = await load_activity_map(store, project_id)
    violation = check_draft(draft, activities)
    if violation is not None:
        raise HTTPException(status_code=409, detail=violation.model_dump(mode="json"))

    update = ScheduleUpdate(
        start_date=draft.start_date,
        end_date=project_end_date(draft.start_date, draft.duration_days),
        duration_days=draft.duration_days,
        is_date_override=draft.is_date_override,
    )
    try:
        activity = await store.update_activity_schedule(activity_id, update)
        await store.replace_dependencies(activity_id, draft.dependencies)
    except StoreError as e:
        logger.error(f"Saving activity {activity_id} failed: {e}")
        raise store_http_error(e)
    return activity


@app.put("/api/activities/{activity_id}/dependencies", status_code=204)
async def replace_dependencies(
    activity_id: str,
    request: ReplaceDependenciesRequest,
    store: RecordStore = Depends(get_store),
):
    if any(d.predecessor_activity_id == activity_id for d in request.dependencies):
        raise HTTPException(status_code=400, detail="An activity cannot depend on itself")
    try:
        await store.replace_dependencies(activity_id, request.dependencies)
    except StoreError as e:
        raise store_http_error(e)
    return Response(status_code=204)


@app.post("/api/templates/apply")
async def apply_activity_template(request: ApplyTemplateRequest, store: RecordStore = Depends(get_store)):
    if not request.items:
        raise HTTPException(status_code=400, detail="This template has no activities to import")
    start = request.project_start_date
    try:
        if start is None:
            start = await store.get_project_start_date(request.project_id)
        activities, dependencies = await apply_template(store, request.project_id, request.items, start)
    except StoreError as e:
        logger.error(f"Failed to apply template: {e}", exc_info=True)
        raise store_http_error(e)
    return {
        "activities": [a.model_dump(mode="json") for a in activities],
        "dependencies": [d.model_dump(mode="json") for d in dependencies],
    }


# --- Interactive sessions ---

@app.post("/api/sessions", response_model=SessionResponse, status_code=201)
async def create_session(request: CreateSessionRequest, store: RecordStore = Depends(get_store)):
    try:
        session = await sessions.open(request.project_id, store)
    except StoreError as e:
        raise store_http_error(e)
    return session_response(session)


@app.get("/api/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str):
    return session_response(sessions.get(session_id))


@app.delete("/api/sessions/{session_id}", status_code=204)
async def close_session(session_id: str):
    sessions.close(session_id)
    return Response(status_code=204)


@app.get("/api/sessions/{session_id}/timeline", response_model=TimelineView)
async def get_timeline(session_id: str, store: RecordStore = Depends(get_store)):
    session = sessions.get(session_id)
    if session.is_stale:
        try:
            await session.sync(store)
        except StoreError as e:
            raise store_http_error(e)
    return session.timeline()


@app.patch("/api/sessions/{session_id}/view", response_model=SessionResponse)
async def update_view(session_id: str, request: ViewUpdateRequest):
    session = sessions.get(session_id)
    if request.zoom is not None:
        session.set_zoom(request.zoom)
    if request.zoom_action == "in":
        session.zoom_in()
    elif request.zoom_action == "out":
        session.zoom_out()
    elif request.zoom_action == "fit":
        session.zoom_fit()
    elif request.zoom_action is not None:
        raise HTTPException(status_code=400, detail=f"Unknown zoom action {request.zoom_action}")
    if request.time_scale is not None:
        session.time_scale = request.time_scale
    if request.view_density is not None:
        session.view_density = request.view_density
    if request.status_filter is not None:
        session.status_filter = list(request.status_filter)
    if request.edit_mode is True:
        session.enter_edit_mode()
    elif request.edit_mode is False:
        session.cancel()
    return session_response(session)


@app.post("/api/sessions/{session_id}/drag", response_model=SessionResponse)
async def drag_activity(session_id: str, request: DragRequest):
    session = sessions.get(session_id)
    if not session.edit_mode:
        raise HTTPException(status_code=409, detail="Session is not in edit mode")
    session.drag_activity(request.activity_id, request.mode, request.delta_px)
    return session_response(session)


@app.post("/api/sessions/{session_id}/reorder", response_model=SessionResponse)
async def reorder_activity(session_id: str, request: ReorderRequest):
    session = sessions.get(session_id)
    if not session.edit_mode:
        raise HTTPException(status_code=409, detail="Session is not in edit mode")
    session.reorder_by_drag(request.activity_id, request.delta_px)
    return session_response(session)


@app.post("/api/sessions/{session_id}/refresh", response_model=SessionResponse)
async def refresh_session(session_id: str, store: RecordStore = Depends(get_store)):
    """Change notification from the presentation layer: re-read and reconcile."""
    session = sessions.get(session_id)
    try:
        await session.sync(store, force=True)
    except StoreError as e:
        raise store_http_error(e)
    return session_response(session)


@app.post("/api/sessions/{session_id}/commit", response_model=CommitResponse)
async def commit_session(session_id: str, store: RecordStore = Depends(get_store)):
    session = sessions.get(session_id)
    try:
        committed = await session.commit(store)
    except CommitError as e:
        raise store_http_error(e.cause, detail={
            "message": str(e),
            "activity_id": e.activity_id,
            "committed_ids": e.committed_ids,
            "remaining_ids": e.remaining_ids,
        })
    return CommitResponse(committed_ids=committed)


@app.post("/api/sessions/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session_changes(session_id: str):
    session = sessions.get(session_id)
    session.cancel()
    return session_response(session)


@app.get("/api/sessions/{session_id}/calendar.ics")
async def export_calendar(session_id: str, project_name: str = "Project schedule"):
    """
    Export the session's schedule, pending edits included, as an ICS file.
    """
    session = sessions.get(session_id)
    spans = {activity_id: Span(c.start_date, c.end_date) for activity_id, c in session.pending.items()}
    ics_content = generate_ics(
        project_name,
        session.ordered_activities(),
        session.dependencies,
        spans=spans,
        project_id=session.project_id,
    )
    filename = safe_filename(project_name)
    logger.info(
        "Calendar export complete",
        extra={'extra_data': {'filename': filename, 'content_length': len(ics_content)}}
    )
    return Response(
        content=ics_content,
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
