"""
Record store access for activities, dependencies and project metadata.

The scheduling core only reads snapshots and proposes schedule writes;
everything persistent goes through a RecordStore. Two implementations:
an in-process store (default, also used by tests) and a PostgREST client
for the hosted database.
"""

import itertools
from collections import defaultdict
from datetime import date
from typing import Callable, Optional, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .config import get_settings
from .logging_config import get_logger
from .models import Activity, Dependency, DependencyInput, DependencyType, ScheduleUpdate
from .scheduling.evaluator import dependencies_of, diff_dependencies

logger = get_logger(__name__)

ACTIVITIES = "activities"
DEPENDENCIES = "dependencies"


class StoreError(Exception):
    """A write or read against the record store failed."""


class PermissionBlockedError(StoreError):
    """The store accepted the request but access control let nothing through."""


class StoreUnavailableError(StoreError):
    """Network or storage failure talking to the record store."""


ChangeListener = Callable[[str, str], None]

RowModel = TypeVar("RowModel", bound=BaseModel)


def parse_rows(model: type[RowModel], rows: list[dict], table: str) -> list[RowModel]:
    """Validate store rows, skipping (and logging) any that do not fit the model."""
    parsed = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed {table} row",
                extra={'extra_data': {'row_id': row.get('id'), 'error': str(e)}}
            )
    return parsed


class ChangeNotifier:
    """
    Push channel for "activities changed" / "dependencies changed".

    Listeners receive (project_id, kind) and are expected to re-read; a
    notification carries no payload, so spurious ones are harmless.
    """

    def __init__(self):
        self._listeners: dict[str, list[ChangeListener]] = defaultdict(list)

    def subscribe(self, project_id: str, listener: ChangeListener) -> Callable[[], None]:
        self._listeners[project_id].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[project_id]:
                self._listeners[project_id].remove(listener)

        return unsubscribe

    def notify(self, project_id: Optional[str], kind: str) -> None:
        if project_id is None:
            return
        for listener in list(self._listeners.get(project_id, ())):
            listener(project_id, kind)


class RecordStore(Protocol):
    notifier: ChangeNotifier

    async def list_activities(self, project_id: str) -> list[Activity]: ...

    async def list_dependencies(self, project_id: str) -> list[Dependency]: ...

    async def get_project_start_date(self, project_id: str) -> Optional[date]: ...

    async def update_activity_schedule(self, activity_id: str, update: ScheduleUpdate) -> Activity: ...

    async def replace_dependencies(self, successor_activity_id: str, dependencies: list[DependencyInput]) -> None: ...

    async def create_activity(self, activity: Activity) -> Activity: ...

    async def create_dependency(
        self,
        project_id: str,
        predecessor_activity_id: str,
        successor_activity_id: str,
        dep_type: DependencyType,
        lag_days: int = 0,
    ) -> Dependency: ...


class InMemoryRecordStore:
    """Dict-backed store. Activities come back ordered by start date like the hosted one."""

    def __init__(self):
        self.notifier = ChangeNotifier()
        self._activities: dict[str, Activity] = {}
        self._dependencies: dict[str, Dependency] = {}
        self._project_starts: dict[str, date] = {}
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def set_project_start_date(self, project_id: str, start_date: date) -> None:
        self._project_starts[project_id] = start_date

    def put_activity(self, activity: Activity) -> None:
        self._activities[activity.id] = activity
        self.notifier.notify(activity.project_id, ACTIVITIES)

    def put_dependency(self, dependency: Dependency) -> None:
        self._dependencies[dependency.id] = dependency
        self.notifier.notify(dependency.project_id, DEPENDENCIES)

    async def list_activities(self, project_id: str) -> list[Activity]:
        rows = [a for a in self._activities.values() if a.project_id == project_id]
        return sorted(rows, key=lambda a: (a.start_date is None, a.start_date or date.min))

    async def list_dependencies(self, project_id: str) -> list[Dependency]:
        return [d for d in self._dependencies.values() if d.project_id == project_id]

    async def get_project_start_date(self, project_id: str) -> Optional[date]:
        return self._project_starts.get(project_id)

    async def update_activity_schedule(self, activity_id: str, update: ScheduleUpdate) -> Activity:
        current = self._activities.get(activity_id)
        if current is None:
            raise PermissionBlockedError(
                "Update was blocked. You may not have permission to edit this activity."
            )
        updated = current.model_copy(update=update.model_dump())
        self._activities[activity_id] = updated
        self.notifier.notify(updated.project_id, ACTIVITIES)
        return updated

    async def replace_dependencies(self, successor_activity_id: str, dependencies: list[DependencyInput]) -> None:
        existing = dependencies_of(successor_activity_id, self._dependencies.values())
        to_remove, to_add = diff_dependencies(existing, dependencies)
        if not to_remove and not to_add:
            return
        for dep in to_remove:
            del self._dependencies[dep.id]
        successor = self._activities.get(successor_activity_id)
        project_id = successor.project_id if successor else None
        for dep in to_add:
            new = Dependency(
                id=self._next_id("dep"),
                project_id=project_id,
                predecessor_activity_id=dep.predecessor_activity_id,
                successor_activity_id=successor_activity_id,
                type=dep.type,
                lag_days=dep.lag_days,
            )
            self._dependencies[new.id] = new
        self.notifier.notify(project_id, DEPENDENCIES)

    async def create_activity(self, activity: Activity) -> Activity:
        created = activity.model_copy(update={'id': activity.id or self._next_id("act")})
        self.put_activity(created)
        return created

    async def create_dependency(
        self,
        project_id: str,
        predecessor_activity_id: str,
        successor_activity_id: str,
        dep_type: DependencyType,
        lag_days: int = 0,
    ) -> Dependency:
        dependency = Dependency(
            id=self._next_id("dep"),
            project_id=project_id,
            predecessor_activity_id=predecessor_activity_id,
            successor_activity_id=successor_activity_id,
            type=dep_type,
            lag_days=lag_days,
        )
        self.put_dependency(dependency)
        return dependency


class RestRecordStore:
    """
    PostgREST client for the hosted tables (project_activities,
    activity_dependencies, retrofit_projects).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.notifier = ChangeNotifier()
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    async def _request(self, method: str, path: str, **kwargs) -> list[dict]:
        try:
            async with self._client() as client:
                resp = await client.request(method, path, **kwargs)
                if resp.status_code in (401, 403):
                    raise PermissionBlockedError(f"{method} {path} rejected: {resp.status_code}")
                resp.raise_for_status()
                return resp.json() if resp.content else []
        except httpx.HTTPError as e:
            logger.error(
                f"Record store request failed: {method} {path}",
                extra={'extra_data': {'error': str(e)}}
            )
            raise StoreUnavailableError(str(e)) from e

    async def list_activities(self, project_id: str) -> list[Activity]:
        rows = await self._request(
            "GET", "/project_activities",
            params={"select": "*", "retrofit_project_id": f"eq.{project_id}", "order": "start_date.asc"},
        )
        return parse_rows(Activity, rows, "project_activities")

    async def list_dependencies(self, project_id: str) -> list[Dependency]:
        rows = await self._request(
            "GET", "/activity_dependencies",
            params={"select": "*", "retrofit_project_id": f"eq.{project_id}"},
        )
        return parse_rows(Dependency, rows, "activity_dependencies")

    async def get_project_start_date(self, project_id: str) -> Optional[date]:
        rows = await self._request(
            "GET", "/retrofit_projects",
            params={"select": "planned_start_date", "id": f"eq.{project_id}"},
        )
        if rows and rows[0].get("planned_start_date"):
            return date.fromisoformat(rows[0]["planned_start_date"])
        return None

    async def update_activity_schedule(self, activity_id: str, update: ScheduleUpdate) -> Activity:
        rows = await self._request(
            "PATCH", "/project_activities",
            params={"id": f"eq.{activity_id}"},
            headers={"Prefer": "return=representation"},
            json=update.model_dump(mode="json"),
        )
        if not rows:
            logger.warning(
                "Schedule update blocked",
                extra={'extra_data': {'activity_id': activity_id}}
            )
            raise PermissionBlockedError(
                "Update was blocked. You may not have permission to edit this activity."
            )
        activity = Activity.model_validate(rows[0])
        self.notifier.notify(activity.project_id, ACTIVITIES)
        return activity

    async def replace_dependencies(self, successor_activity_id: str, dependencies: list[DependencyInput]) -> None:
        rows = await self._request(
            "GET", "/activity_dependencies",
            params={"select": "*", "successor_activity_id": f"eq.{successor_activity_id}"},
        )
        existing = parse_rows(Dependency, rows, "activity_dependencies")
        to_remove, to_add = diff_dependencies(existing, dependencies)

        if to_remove:
            ids = ",".join(d.id for d in to_remove)
            await self._request("DELETE", "/activity_dependencies", params={"id": f"in.({ids})"})

        project_id = None
        if to_add:
            owner = await self._request(
                "GET", "/project_activities",
                params={"select": "retrofit_project_id,organization_id", "id": f"eq.{successor_activity_id}"},
            )
            if not owner:
                raise PermissionBlockedError(f"Activity {successor_activity_id} is not visible")
            project_id = owner[0].get("retrofit_project_id")
            await self._request(
                "POST", "/activity_dependencies",
                json=[
                    {
                        **owner[0],
                        "predecessor_activity_id": dep.predecessor_activity_id,
                        "successor_activity_id": successor_activity_id,
                        "type": dep.type.value,
                        "lag_days": dep.lag_days,
                    }
                    for dep in to_add
                ],
            )
        elif to_remove:
            project_id = to_remove[0].project_id

        if to_remove or to_add:
            self.notifier.notify(project_id, DEPENDENCIES)

    async def create_activity(self, activity: Activity) -> Activity:
        payload = activity.model_dump(mode="json", by_alias=True, exclude={"id", "override_warning"})
        if activity.id:
            payload["id"] = activity.id
        rows = await self._request(
            "POST", "/project_activities",
            headers={"Prefer": "return=representation"},
            json=payload,
        )
        if not rows:
            raise PermissionBlockedError(f'Failed to create activity "{activity.name}"')
        created = Activity.model_validate(rows[0])
        self.notifier.notify(created.project_id, ACTIVITIES)
        return created

    async def create_dependency(
        self,
        project_id: str,
        predecessor_activity_id: str,
        successor_activity_id: str,
        dep_type: DependencyType,
        lag_days: int = 0,
    ) -> Dependency:
        rows = await self._request(
            "POST", "/activity_dependencies",
            headers={"Prefer": "return=representation"},
            json={
                "retrofit_project_id": project_id,
                "predecessor_activity_id": predecessor_activity_id,
                "successor_activity_id": successor_activity_id,
                "type": dep_type.value,
                "lag_days": lag_days,
            },
        )
        if not rows:
            raise PermissionBlockedError("Dependency insert was blocked")
        dependency = Dependency.model_validate(rows[0])
        self.notifier.notify(project_id, DEPENDENCIES)
        return dependency


def create_record_store() -> RecordStore:
    """Build the store selected by settings."""
    settings = get_settings()
    if settings.uses_rest_store:
        logger.info("Using REST record store", extra={'extra_data': {'url': settings.store_url}})
        return RestRecordStore(settings.store_url, settings.store_api_key, settings.store_timeout_seconds)
    return InMemoryRecordStore()
