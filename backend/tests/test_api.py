"""Tests for the REST API."""

from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import PROJECT_ID
from planboard.main import app, get_store, sessions


@pytest.fixture
def api_store(store):
    app.dependency_overrides[get_store] = lambda: store
    yield store
    app.dependency_overrides.clear()
    sessions.close_all()


def client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health():
    async with client() as ac:
        resp = await ac.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "planboard-backend"}


class TestScheduleEndpoints:

    @pytest.mark.asyncio
    async def test_list_activities(self, api_store):
        async with client() as ac:
            resp = await ac.get(f"/api/projects/{PROJECT_ID}/activities")
        assert resp.status_code == 200
        assert [a["id"] for a in resp.json()] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_suggest_uses_stored_project_start(self, api_store):
        draft = {"name": "Roofing", "duration_days": 2, "dependencies": [{"predecessor_activity_id": "B"}]}
        async with client() as ac:
            resp = await ac.post("/api/schedule/suggest", json={"project_id": PROJECT_ID, "draft": draft})
        body = resp.json()
        assert resp.status_code == 200
        assert body["suggested_start_date"] == "2024-01-08"
        assert body["draft"]["end_date"] == "2024-01-10"

    @pytest.mark.asyncio
    async def test_validate_reports_violation(self, api_store):
        draft = {
            "start_date": "2024-01-04",
            "duration_days": 1,
            "dependencies": [{"predecessor_activity_id": "A", "type": "FS"}],
        }
        async with client() as ac:
            resp = await ac.post("/api/schedule/validate", json={"project_id": PROJECT_ID, "draft": draft})
        body = resp.json()
        assert body["is_valid"] is False
        assert body["violation"]["earliest_date"] == "2024-01-05"

    @pytest.mark.asyncio
    async def test_conflicting_form_submit_is_refused(self, api_store):
        draft = {"start_date": "2024-01-03", "duration_days": 2, "dependencies": [{"predecessor_activity_id": "A"}]}
        async with client() as ac:
            resp = await ac.post(f"/api/projects/{PROJECT_ID}/activities/B/schedule", json=draft)
        assert resp.status_code == 409
        assert resp.json()["detail"]["predecessor_name"] == "Excavation"
        [b] = [a for a in await api_store.list_activities(PROJECT_ID) if a.id == "B"]
        assert b.start_date == date(2024, 1, 5)

    @pytest.mark.asyncio
    async def test_form_submit_saves_dates_and_dependencies(self, api_store):
        draft = {
            "start_date": "2024-01-06",
            "duration_days": 3,
            "is_date_override": True,
            "dependencies": [{"predecessor_activity_id": "A", "type": "SS", "lag_days": 2}],
        }
        async with client() as ac:
            resp = await ac.post(f"/api/projects/{PROJECT_ID}/activities/B/schedule", json=draft)
        assert resp.status_code == 200
        assert resp.json()["end_date"] == "2024-01-09"
        [dep] = await api_store.list_dependencies(PROJECT_ID)
        assert (dep.type.value, dep.lag_days) == ("SS", 2)

    @pytest.mark.asyncio
    async def test_self_dependency_is_rejected(self, api_store):
        async with client() as ac:
            resp = await ac.put("/api/activities/A/dependencies", json={
                "dependencies": [{"predecessor_activity_id": "A"}],
            })
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_blocked_write_maps_to_403(self, api_store):
        async with client() as ac:
            resp = await ac.post(f"/api/projects/{PROJECT_ID}/activities/missing/schedule", json={
                "start_date": "2024-01-06", "duration_days": 1,
            })
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_empty_template_is_rejected(self, api_store):
        async with client() as ac:
            resp = await ac.post("/api/templates/apply", json={"project_id": PROJECT_ID, "items": []})
        assert resp.status_code == 400


class TestSessionEndpoints:

    @pytest.mark.asyncio
    async def test_drag_then_commit(self, api_store):
        async with client() as ac:
            resp = await ac.post("/api/sessions", json={"project_id": PROJECT_ID})
            assert resp.status_code == 201
            session_id = resp.json()["session_id"]

            resp = await ac.post(f"/api/sessions/{session_id}/drag", json={"activity_id": "B", "delta_px": 80})
            assert resp.status_code == 409

            await ac.patch(f"/api/sessions/{session_id}/view", json={"edit_mode": True})
            resp = await ac.post(f"/api/sessions/{session_id}/drag", json={"activity_id": "B", "delta_px": 80})
            assert resp.json()["pending_changes"][0]["start_date"] == "2024-01-07"

            timeline = (await ac.get(f"/api/sessions/{session_id}/timeline")).json()
            assert timeline["pending_count"] == 1
            assert timeline["has_conflicts"] is False

            resp = await ac.post(f"/api/sessions/{session_id}/commit")
            assert resp.json() == {"committed_ids": ["B"]}

            state = (await ac.get(f"/api/sessions/{session_id}")).json()
            assert state["edit_mode"] is False
            assert state["pending_changes"] == []

        [b] = [a for a in await api_store.list_activities(PROJECT_ID) if a.id == "B"]
        assert (b.start_date, b.is_date_override) == (date(2024, 1, 7), True)

    @pytest.mark.asyncio
    async def test_view_controls_and_reorder(self, api_store):
        async with client() as ac:
            session_id = (await ac.post("/api/sessions", json={"project_id": PROJECT_ID})).json()["session_id"]
            resp = await ac.patch(f"/api/sessions/{session_id}/view", json={
                "zoom": 9, "time_scale": "week", "view_density": "compact", "edit_mode": True,
            })
            state = resp.json()
            assert (state["zoom"], state["time_scale"], state["view_density"]) == (2.5, "week", "compact")

            resp = await ac.post(f"/api/sessions/{session_id}/reorder", json={"activity_id": "B", "delta_px": -48})
            assert resp.json()["activity_order"] == ["B", "A"]

            resp = await ac.patch(f"/api/sessions/{session_id}/view", json={"zoom_action": "sideways"})
            assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_calendar_export(self, api_store):
        async with client() as ac:
            session_id = (await ac.post("/api/sessions", json={"project_id": PROJECT_ID})).json()["session_id"]
            resp = await ac.get(f"/api/sessions/{session_id}/calendar.ics", params={"project_name": "Elm Street"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/calendar")
        assert 'filename="Elm_Street_schedule.ics"' in resp.headers["content-disposition"]

    @pytest.mark.asyncio
    async def test_unknown_session_is_404(self, api_store):
        async with client() as ac:
            resp = await ac.get("/api/sessions/nope/timeline")
        assert resp.status_code == 404
