"""Tests for the record stores and change notification."""

import json
from datetime import date

import httpx
import pytest

from conftest import PROJECT_ID, make_activity, make_dependency
from planboard.models import DependencyInput, DependencyType, ScheduleUpdate
from planboard.store import (
    ChangeNotifier, InMemoryRecordStore, PermissionBlockedError, RestRecordStore, StoreUnavailableError,
)


class TestChangeNotifier:

    def test_listeners_are_scoped_to_project(self):
        notifier = ChangeNotifier()
        seen = []
        notifier.subscribe(PROJECT_ID, lambda project_id, kind: seen.append((project_id, kind)))
        notifier.notify(PROJECT_ID, "activities")
        notifier.notify("other", "activities")
        assert seen == [(PROJECT_ID, "activities")]

    def test_unsubscribe(self):
        notifier = ChangeNotifier()
        seen = []
        unsubscribe = notifier.subscribe(PROJECT_ID, lambda *args: seen.append(args))
        unsubscribe()
        unsubscribe()
        notifier.notify(PROJECT_ID, "dependencies")
        assert seen == []


class TestInMemoryRecordStore:

    @pytest.mark.asyncio
    async def test_activities_sorted_by_start(self):
        store = InMemoryRecordStore()
        store.put_activity(make_activity("late", date(2024, 3, 1)))
        store.put_activity(make_activity("none", None))
        store.put_activity(make_activity("early", date(2024, 1, 1)))
        assert [a.id for a in await store.list_activities(PROJECT_ID)] == ["early", "late", "none"]

    @pytest.mark.asyncio
    async def test_update_of_unknown_activity_is_blocked(self, store):
        update = ScheduleUpdate(start_date=date(2024, 1, 1), end_date=date(2024, 1, 2), duration_days=1)
        with pytest.raises(PermissionBlockedError):
            await store.update_activity_schedule("missing", update)

    @pytest.mark.asyncio
    async def test_replace_dependencies_only_touches_differences(self, store):
        store.put_activity(make_activity("C", date(2024, 1, 10)))
        store.put_dependency(make_dependency("A", "C"))
        kinds = []
        store.notifier.subscribe(PROJECT_ID, lambda _, kind: kinds.append(kind))

        await store.replace_dependencies("C", [
            DependencyInput(predecessor_activity_id="A"),
            DependencyInput(predecessor_activity_id="B", type=DependencyType.SS, lag_days=1),
        ])
        deps = {d.id: d for d in await store.list_dependencies(PROJECT_ID)}
        assert "A->C" in deps
        [added] = [d for d in deps.values() if d.predecessor_activity_id == "B" and d.successor_activity_id == "C"]
        assert (added.type, added.lag_days, added.project_id) == (DependencyType.SS, 1, PROJECT_ID)
        assert kinds == ["dependencies"]

        await store.replace_dependencies("C", [
            DependencyInput(predecessor_activity_id="A"),
            DependencyInput(predecessor_activity_id="B", type=DependencyType.SS, lag_days=1),
        ])
        assert kinds == ["dependencies"]

        await store.replace_dependencies("C", [])
        remaining = await store.list_dependencies(PROJECT_ID)
        assert [d.id for d in remaining] == ["A->B"]


def rest_store(handler) -> RestRecordStore:
    return RestRecordStore("https://db.example.test", "anon-key", transport=httpx.MockTransport(handler))


ACTIVITY_ROW = {
    "id": "A",
    "retrofit_project_id": PROJECT_ID,
    "organization_id": "org-1",
    "name": "Excavation",
    "duration_days": 3,
    "start_date": "2024-01-01",
    "end_date": "2024-01-04",
    "is_date_override": False,
    "progress_percent": 20,
    "status": "Work in Progress",
}


class TestRestRecordStore:

    @pytest.mark.asyncio
    async def test_list_activities_sends_filters_and_keys(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[ACTIVITY_ROW])

        [activity] = await rest_store(handler).list_activities(PROJECT_ID)

        assert activity.project_id == PROJECT_ID
        assert activity.end_date == date(2024, 1, 4)
        request = requests[0]
        assert request.url.path == "/rest/v1/project_activities"
        assert request.url.params["retrofit_project_id"] == f"eq.{PROJECT_ID}"
        assert request.url.params["order"] == "start_date.asc"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_project_start_date(self):
        def handler(request):
            return httpx.Response(200, json=[{"planned_start_date": "2024-02-01"}])

        assert await rest_store(handler).get_project_start_date(PROJECT_ID) == date(2024, 2, 1)

    @pytest.mark.asyncio
    async def test_empty_patch_result_is_permission_blocked(self):
        def handler(request):
            assert request.method == "PATCH"
            assert request.headers["Prefer"] == "return=representation"
            return httpx.Response(200, json=[])

        update = ScheduleUpdate(start_date=date(2024, 1, 2), end_date=date(2024, 1, 5), duration_days=3)
        with pytest.raises(PermissionBlockedError):
            await rest_store(handler).update_activity_schedule("A", update)

    @pytest.mark.asyncio
    async def test_patch_sends_override_payload_and_notifies(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=[{**ACTIVITY_ROW, "start_date": "2024-01-02", "end_date": "2024-01-05"}])

        store = rest_store(handler)
        kinds = []
        store.notifier.subscribe(PROJECT_ID, lambda _, kind: kinds.append(kind))
        update = ScheduleUpdate(start_date=date(2024, 1, 2), end_date=date(2024, 1, 5), duration_days=3)
        activity = await store.update_activity_schedule("A", update)

        assert bodies == [{
            "start_date": "2024-01-02",
            "end_date": "2024-01-05",
            "duration_days": 3,
            "is_date_override": True,
        }]
        assert activity.start_date == date(2024, 1, 2)
        assert kinds == ["activities"]

    @pytest.mark.asyncio
    async def test_unauthorized_is_permission_blocked(self):
        def handler(request):
            return httpx.Response(401, json={"message": "JWT expired"})

        with pytest.raises(PermissionBlockedError):
            await rest_store(handler).list_dependencies(PROJECT_ID)

    @pytest.mark.asyncio
    async def test_network_failure_is_store_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(StoreUnavailableError):
            await rest_store(handler).list_activities(PROJECT_ID)

    @pytest.mark.asyncio
    async def test_server_error_is_store_unavailable(self):
        def handler(request):
            return httpx.Response(500, json={"message": "boom"})

        with pytest.raises(StoreUnavailableError):
            await rest_store(handler).list_activities(PROJECT_ID)

    @pytest.mark.asyncio
    async def test_replace_dependencies_deletes_and_inserts_differences(self):
        calls = []
        existing = [
            {"id": "d1", "retrofit_project_id": PROJECT_ID, "predecessor_activity_id": "A",
             "successor_activity_id": "C", "type": "FS", "lag_days": 0},
            {"id": "d2", "retrofit_project_id": PROJECT_ID, "predecessor_activity_id": "B",
             "successor_activity_id": "C", "type": "FS", "lag_days": 0},
        ]

        def handler(request):
            calls.append((request.method, request.url.path, dict(request.url.params)))
            if request.method == "GET" and request.url.path.endswith("activity_dependencies"):
                return httpx.Response(200, json=existing)
            if request.method == "GET":
                return httpx.Response(200, json=[{"retrofit_project_id": PROJECT_ID, "organization_id": "org-1"}])
            if request.method == "POST":
                calls.append(("BODY", json.loads(request.content)))
            return httpx.Response(201 if request.method == "POST" else 204)

        await rest_store(handler).replace_dependencies("C", [
            DependencyInput(predecessor_activity_id="A"),
            DependencyInput(predecessor_activity_id="B", type=DependencyType.FF),
        ])

        methods = [call[0] for call in calls]
        assert methods == ["GET", "DELETE", "GET", "POST", "BODY"]
        assert calls[1][2]["id"] == "in.(d2)"
        assert calls[4][1] == [{
            "retrofit_project_id": PROJECT_ID,
            "organization_id": "org-1",
            "predecessor_activity_id": "B",
            "successor_activity_id": "C",
            "type": "FF",
            "lag_days": 0,
        }]

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self):
        def handler(request):
            if request.url.path.endswith("activity_dependencies"):
                return httpx.Response(200, json=[
                    {"id": "loop", "retrofit_project_id": PROJECT_ID, "predecessor_activity_id": "A",
                     "successor_activity_id": "A", "type": "FS", "lag_days": 0},
                    {"id": "d1", "retrofit_project_id": PROJECT_ID, "predecessor_activity_id": "A",
                     "successor_activity_id": "B", "type": "SS", "lag_days": 1},
                ])
            return httpx.Response(200, json=[{"id": "broken", "retrofit_project_id": PROJECT_ID}, ACTIVITY_ROW])

        store = rest_store(handler)
        assert [d.id for d in await store.list_dependencies(PROJECT_ID)] == ["d1"]
        assert [a.id for a in await store.list_activities(PROJECT_ID)] == ["A"]
