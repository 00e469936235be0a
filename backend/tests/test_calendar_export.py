"""Tests for ICS calendar export."""

from datetime import date

from conftest import make_activity, make_dependency
from planboard.calendar_export import escape_ics_text, generate_ics, safe_filename
from planboard.models import ActivityStatus
from planboard.scheduling.evaluator import Span


def events(ics: str) -> list[str]:
    return ics.split("BEGIN:VEVENT")[1:]


def test_all_day_events_end_the_day_after(chain):
    activities, dependencies = chain
    ics = generate_ics("Retrofit, Phase 1", activities, dependencies, project_id="proj-1")

    assert ics.startswith("BEGIN:VCALENDAR\r\n")
    assert ics.endswith("END:VCALENDAR")
    assert "X-WR-CALNAME:Retrofit\\, Phase 1" in ics
    first, second, summary = events(ics)
    assert "DTSTART;VALUE=DATE:20240101" in first
    assert "DTEND;VALUE=DATE:20240105" in first
    assert "UID:proj-1-A@planboard" in first
    assert "Depends on: Excavation (FS)" in second
    assert "DTSTART;VALUE=DATE:20240101" in summary
    assert "DTEND;VALUE=DATE:20240108" in summary


def test_unscheduled_activities_are_skipped():
    activities = [make_activity("U", None), make_activity("A", date(2024, 1, 1), status=ActivityStatus.CLOSED)]
    ics = generate_ics("Project", activities)
    assert len(events(ics)) == 2
    assert "SUMMARY:🏁 A" in ics


def test_pending_spans_are_exported():
    activities = [make_activity("A", date(2024, 1, 1), 3)]
    ics = generate_ics("Project", activities, spans={"A": Span(date(2024, 1, 10), date(2024, 1, 12))})
    assert "DTSTART;VALUE=DATE:20240110" in ics
    assert "DTEND;VALUE=DATE:20240113" in ics


def test_no_scheduled_activities_means_no_summary():
    assert "VEVENT" not in generate_ics("Empty", [make_activity("U", None)], [make_dependency("X", "U")])


def test_escape_and_filename():
    assert escape_ics_text("a;b,c\\d\ne") == "a\\;b\\,c\\\\d\\ne"
    assert safe_filename("Retrofit: Phase 1/2") == "Retrofit_Phase_12_schedule.ics"
    assert safe_filename("???") == "project_schedule.ics"


def test_pending_span_duration_is_described():
    activities = [make_activity("A", date(2024, 1, 1), 3)]
    ics = generate_ics("Project", activities, spans={"A": Span(date(2024, 1, 10), date(2024, 1, 17))})
    assert "Duration: 7 day(s)" in ics
    assert "Duration: 3 day(s)" not in ics
