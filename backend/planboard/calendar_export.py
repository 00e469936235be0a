"""
Calendar export for generating ICS files from a schedule.
Supports Google Calendar, Outlook, Apple Calendar, and other iCalendar-compatible apps.
"""

from datetime import date, datetime, timezone
from typing import Mapping, Optional, Sequence

from .models import Activity, ActivityStatus, Dependency
from .scheduling.evaluator import Span, describe_dependencies
from .scheduling.projector import duration_between
from .scheduling.temporal import add_days, date_range_union

STATUS_EMOJI = {
    ActivityStatus.PENDING: "⏳",
    ActivityStatus.WORK_IN_PROGRESS: "🚧",
    ActivityStatus.READY_FOR_INSPECTION: "🔍",
    ActivityStatus.AWAITING_CLIENT_APPROVAL: "✍️",
    ActivityStatus.INSPECTED: "✅",
    ActivityStatus.CLOSED: "🏁",
}


def generate_ics(
    project_name: str,
    activities: Sequence[Activity],
    dependencies: Sequence[Dependency] = (),
    spans: Optional[Mapping[str, Span]] = None,
    project_id: str = "project",
) -> str:
    """
    Generate an ICS (iCalendar) file from a project schedule.

    Args:
        project_name: Calendar name and summary event title
        activities: Activities to export; unscheduled ones are skipped
        dependencies: Used to list predecessors in each event description
        spans: Pending (start, end) values that replace the stored dates
        project_id: Used to build stable event UIDs

    Returns:
        ICS file content as string
    """
    spans = spans or {}
    stamp = format_datetime(datetime.now(timezone.utc))
    by_id = {a.id: a for a in activities}

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//Planboard//Activity Schedule//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{escape_ics_text(project_name)}",
    ]

    scheduled = []
    for activity in activities:
        span = spans.get(activity.id) or Span.of(activity)
        if not span.is_complete:
            continue
        scheduled.append(span)
        lines.extend(create_activity_event(
            activity, span, describe_dependencies(activity.id, dependencies, by_id), stamp, project_id
        ))

    if scheduled:
        start, end = date_range_union([d for s in scheduled for d in (s.start, s.end)])
        lines.extend([
            "BEGIN:VEVENT",
            f"UID:{project_id}-summary@planboard",
            f"DTSTAMP:{stamp}",
            f"DTSTART;VALUE=DATE:{format_date(start)}",
            f"DTEND;VALUE=DATE:{format_date(add_days(end, 1))}",
            f"SUMMARY:📊 {escape_ics_text(project_name)}",
            f"DESCRIPTION:{escape_ics_text(f'{len(scheduled)} scheduled activities')}",
            "TRANSP:TRANSPARENT",  # Don't block time for the overall project
            "END:VEVENT",
        ])

    lines.append("END:VCALENDAR")
    return "\r\n".join(lines)


def create_activity_event(
    activity: Activity,
    span: Span,
    predecessors: str,
    stamp: str,
    project_id: str,
) -> list[str]:
    """One all-day event per activity; DTEND is exclusive so it lands the day after end_date."""
    description = "\n".join(part for part in [
        activity.description or "",
        f"Status: {activity.status.value}",
        f"Progress: {activity.progress_percent}%",
        f"Duration: {duration_between(span.start, span.end)} day(s)",
        f"Depends on: {predecessors}",
        "Manual override" if activity.is_date_override else "",
    ] if part)

    return [
        "BEGIN:VEVENT",
        f"UID:{project_id}-{activity.id}@planboard",
        f"DTSTAMP:{stamp}",
        f"DTSTART;VALUE=DATE:{format_date(span.start)}",
        f"DTEND;VALUE=DATE:{format_date(add_days(span.end, 1))}",
        f"SUMMARY:{STATUS_EMOJI[activity.status]} {escape_ics_text(activity.name)}",
        f"DESCRIPTION:{escape_ics_text(description)}",
        f"CATEGORIES:{escape_ics_text(activity.status.value)}",
        "STATUS:CONFIRMED",
        "TRANSP:OPAQUE",
        "END:VEVENT",
    ]


def format_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def format_datetime(dt: datetime) -> str:
    """Format datetime for ICS (UTC format)."""
    return dt.strftime("%Y%m%dT%H%M%SZ")


def escape_ics_text(text: str) -> str:
    """Escape special characters for ICS format."""
    if not text:
        return ""
    # ICS requires escaping of commas, semicolons, and backslashes
    text = text.replace("\\", "\\\\")
    text = text.replace(",", "\\,")
    text = text.replace(";", "\\;")
    text = text.replace("\n", "\\n")
    return text


def safe_filename(project_name: str) -> str:
    safe_title = "".join(c if c.isalnum() or c in " -_" else "" for c in project_name)
    safe_title = safe_title[:50].strip() or "project"
    return f"{safe_title.replace(' ', '_')}_schedule.ics"
