"""
Project and main-task activity feeds.

All event logs of a project are merged newest first (ties broken by event id)
and folded in a single pass: consecutive events of the same sub-task become one
SubTaskEventGroup, main-task events stay single. Clients get a flat feed of
main-task events only.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

import structlog

from ..schemas.hierarchy import MainTaskRecord, Role, SubTaskRecord, TimelineEventRecord
from ..schemas.views import FeedItem, MainTaskEvent, SubTaskEventGroup, SubTaskInfo
from ..storage.provider import DocumentStore
from .errors import EntityNotFound, StoreUnavailable, TimelineUnavailable
from .fanout import gather, map_concurrently
from .hierarchy import attach_sub_tasks
from .scope import ensure_main_task_visible, ensure_project_visible, resolve_scope


logger = structlog.get_logger(__name__)


class StreamEntry(NamedTuple):
    event: TimelineEventRecord
    main_task_id: str
    sub_task: Optional[SubTaskInfo] = None


def merge_streams(
    main_task_events: Dict[str, Sequence[TimelineEventRecord]],
    sub_task_events: Iterable[tuple],
) -> List[StreamEntry]:
    """Merge per-entity logs into one newest-first stream.

    ``sub_task_events`` yields (SubTaskRecord, events) pairs.
    """
    entries: List[StreamEntry] = []
    for main_task_id, events in main_task_events.items():
        entries.extend(StreamEntry(e, main_task_id) for e in events)
    for sub_task, events in sub_task_events:
        info = SubTaskInfo(id=sub_task.id, name=sub_task.name)
        entries.extend(StreamEntry(e, sub_task.parent_id, info) for e in events)
    entries.sort(key=lambda entry: (entry.event.timestamp, entry.event.id), reverse=True)
    return entries


def group_stream(entries: Iterable[StreamEntry]) -> List[FeedItem]:
    feed: List[FeedItem] = []
    open_group: Optional[SubTaskEventGroup] = None
    for entry in entries:
        if entry.sub_task is None:
            open_group = None
            feed.append(MainTaskEvent(main_task_id=entry.main_task_id, event=entry.event))
            continue
        if (
            open_group is not None
            and open_group.main_task_id == entry.main_task_id
            and open_group.sub_task.id == entry.sub_task.id
        ):
            open_group.events.append(entry.event)
            continue
        # Newest-first input, so the first event fixes the group's timestamp
        open_group = SubTaskEventGroup(
            main_task_id=entry.main_task_id,
            sub_task=entry.sub_task,
            events=[entry.event],
            timestamp=entry.event.timestamp,
        )
        feed.append(open_group)
    return feed


def flat_stream(entries: Iterable[StreamEntry]) -> List[FeedItem]:
    return [
        MainTaskEvent(main_task_id=entry.main_task_id, event=entry.event)
        for entry in entries
        if entry.sub_task is None
    ]


async def _read_feed(
    store: DocumentStore,
    main_tasks: Sequence[MainTaskRecord],
    sub_tasks: Sequence[SubTaskRecord],
    grouped: bool,
) -> List[FeedItem]:
    sub_tasks = await attach_sub_tasks(store, sub_tasks, main_tasks) if grouped else []
    owner_ids = [m.id for m in main_tasks] + [s.id for s in sub_tasks]
    events = await map_concurrently(store.list_events, owner_ids)
    stream = merge_streams(
        {m.id: events.get(m.id, []) for m in main_tasks},
        [(s, events.get(s.id, [])) for s in sub_tasks],
    )
    return group_stream(stream) if grouped else flat_stream(stream)


async def build_project_timeline(store: DocumentStore, project_id: str, uid: str, role) -> List[FeedItem]:
    scope = await resolve_scope(store, uid, role)
    ensure_project_visible(scope, project_id)
    grouped = Role.parse(scope.role) != Role.CLIENT
    try:
        main_tasks, sub_tasks = await gather(
            lambda: store.list_main_tasks(project_id),
            lambda: store.list_sub_tasks(project_id) if grouped else _nothing(),
        )
        feed = await _read_feed(store, main_tasks, sub_tasks, grouped)
    except StoreUnavailable as exc:
        raise TimelineUnavailable(project_id, exc) from exc
    logger.info("project_timeline_built", project_id=project_id, uid=uid, role=scope.role, items=len(feed))
    return feed


async def build_main_task_timeline(store: DocumentStore, main_task_id: str, uid: str, role) -> List[FeedItem]:
    """Feed for one main task and its sub-tasks; always grouped."""
    scope = await resolve_scope(store, uid, role)
    ensure_main_task_visible(scope, main_task_id)
    try:
        found, sub_tasks = await gather(
            lambda: store.get_main_tasks([main_task_id]),
            lambda: store.list_sub_tasks_for_main_task(main_task_id),
        )
        if not found:
            raise EntityNotFound("Main task", main_task_id)
        feed = await _read_feed(store, found, sub_tasks, grouped=True)
    except StoreUnavailable as exc:
        raise TimelineUnavailable(main_task_id, exc) from exc
    logger.info("main_task_timeline_built", main_task_id=main_task_id, uid=uid, items=len(feed))
    return feed


async def _nothing() -> List[SubTaskRecord]:
    return []
