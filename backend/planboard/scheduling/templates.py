"""
Activity templates: create a batch of activities and their chain of
dependencies from an ordered list of template items.
"""

from datetime import date
from typing import Optional

from ..logging_config import get_logger
from ..models import Activity, ActivityStatus, Dependency, TemplateItem
from ..store import RecordStore, StoreError
from .projector import project_end_date

logger = get_logger(__name__)


async def apply_template(
    store: RecordStore,
    project_id: str,
    items: list[TemplateItem],
    project_start_date: Optional[date] = None,
) -> tuple[list[Activity], list[Dependency]]:
    """
    Import template items into a project.

    Every activity starts on the project start date; dependencies are then
    created for items whose depends_on_sequence names another item. The
    imported activities are not rescheduled against those dependencies.

    Args:
        store: Record store to write to
        project_id: Target project
        items: Template items, any order
        project_start_date: Start date for every activity (today if unset)

    Returns:
        The created activities and dependencies
    """
    start = project_start_date or date.today()
    ordered = sorted(items, key=lambda item: item.sequence_order)

    created: list[Activity] = []
    by_sequence: dict[int, str] = {}
    for item in ordered:
        activity = await store.create_activity(Activity(
            id="",
            project_id=project_id,
            name=item.name,
            description=item.description,
            duration_days=item.duration_days,
            start_date=start,
            end_date=project_end_date(start, item.duration_days),
            progress_percent=0,
            status=ActivityStatus.PENDING,
        ))
        created.append(activity)
        by_sequence[item.sequence_order] = activity.id

    links: list[Dependency] = []
    for item in ordered:
        if item.depends_on_sequence is None:
            continue
        predecessor_id = by_sequence.get(item.depends_on_sequence)
        successor_id = by_sequence[item.sequence_order]
        if predecessor_id is None or predecessor_id == successor_id:
            continue
        try:
            links.append(await store.create_dependency(
                project_id, predecessor_id, successor_id, item.dependency_type
            ))
        except StoreError as e:
            # The activities exist already; a missing link is reported, not fatal
            logger.error(
                f"Error creating dependency: {e}",
                extra={'extra_data': {'predecessor_id': predecessor_id, 'successor_id': successor_id}}
            )

    logger.info(
        "Template applied",
        extra={'extra_data': {
            'project_id': project_id,
            'activities': len(created),
            'dependencies': len(links),
        }}
    )
    return created, links
