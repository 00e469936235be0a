"""Shared fixtures for the scheduling test suite."""

from datetime import date, timedelta

import pytest

from planboard.models import Activity, ActivityStatus, Dependency, DependencyType
from planboard.scheduling.session import SchedulingSession
from planboard.store import InMemoryRecordStore

PROJECT_ID = "proj-1"
TODAY = date(2024, 1, 3)


def make_activity(
    activity_id: str,
    start: date | None,
    duration: int = 1,
    name: str | None = None,
    status: ActivityStatus = ActivityStatus.PENDING,
    **fields,
) -> Activity:
    return Activity(
        id=activity_id,
        project_id=PROJECT_ID,
        name=name or activity_id,
        duration_days=duration,
        start_date=start,
        end_date=start + timedelta(days=duration) if start else None,
        status=status,
        **fields,
    )


def make_dependency(
    predecessor: str,
    successor: str,
    dep_type: DependencyType = DependencyType.FS,
    lag: int = 0,
    dep_id: str | None = None,
) -> Dependency:
    return Dependency(
        id=dep_id or f"{predecessor}->{successor}",
        project_id=PROJECT_ID,
        predecessor_activity_id=predecessor,
        successor_activity_id=successor,
        type=dep_type,
        lag_days=lag,
    )


@pytest.fixture
def chain() -> tuple[list[Activity], list[Dependency]]:
    """A (3 days from Jan 1st) followed by B (2 days from Jan 5th), linked FS."""
    activities = [
        make_activity("A", date(2024, 1, 1), 3, name="Excavation"),
        make_activity("B", date(2024, 1, 5), 2, name="Foundations"),
    ]
    return activities, [make_dependency("A", "B")]


@pytest.fixture
def store(chain) -> InMemoryRecordStore:
    activities, dependencies = chain
    store = InMemoryRecordStore()
    store.set_project_start_date(PROJECT_ID, date(2024, 1, 1))
    for activity in activities:
        store.put_activity(activity)
    for dependency in dependencies:
        store.put_dependency(dependency)
    return store


@pytest.fixture
def session(chain) -> SchedulingSession:
    activities, dependencies = chain
    session = SchedulingSession(PROJECT_ID, session_id="test-session", today=TODAY)
    session.load(activities, dependencies)
    session.enter_edit_mode()
    return session
