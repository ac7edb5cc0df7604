from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple

import structlog

from ..schemas.hierarchy import (
    IssueRecord,
    MainTaskRecord,
    ProjectRecord,
    SubTaskRecord,
)
from ..storage.provider import DocumentStore
from .errors import InvalidHierarchyError, OrphanedEntityWarning
from .fanout import gather, map_concurrently


logger = structlog.get_logger(__name__)


def log_orphan(kind: str, entity_id: str, parent_id: str) -> None:
    logger.warning(
        "orphaned_entity",
        category=OrphanedEntityWarning.__name__,
        kind=kind,
        entity_id=entity_id,
        missing_parent_id=parent_id,
    )


async def attach_sub_tasks(
    store: DocumentStore,
    sub_tasks: Sequence[SubTaskRecord],
    main_tasks: Iterable[MainTaskRecord] = (),
) -> List[SubTaskRecord]:
    """Keep the sub-tasks whose parent main task exists in the same project.

    Parents not among ``main_tasks`` are looked up by id. Missing parents make
    the sub-task an orphan (logged, dropped); a parent in another project
    raises InvalidHierarchyError.
    """
    known: Dict[str, MainTaskRecord] = {m.id: m for m in main_tasks}
    missing = {s.parent_id for s in sub_tasks if s.parent_id not in known}
    if missing:
        for m in await store.get_main_tasks(missing):
            known[m.id] = m
    attached: List[SubTaskRecord] = []
    for s in sub_tasks:
        parent = known.get(s.parent_id)
        if parent is None:
            log_orphan("sub_task", s.id, s.parent_id)
            continue
        if parent.project_id != s.project_id:
            raise InvalidHierarchyError("sub_task", s.id, s.parent_id, s.project_id, parent.project_id)
        attached.append(s)
    return attached


async def attach_issues(
    store: DocumentStore,
    issues: Sequence[IssueRecord],
    sub_tasks: Iterable[SubTaskRecord] = (),
) -> List[IssueRecord]:
    """Same contract as attach_sub_tasks, one level down."""
    known: Dict[str, SubTaskRecord] = {s.id: s for s in sub_tasks}
    missing = {i.sub_task_id for i in issues if i.sub_task_id not in known}
    if missing:
        for s in await store.get_sub_tasks(missing):
            known[s.id] = s
    attached: List[IssueRecord] = []
    for i in issues:
        parent = known.get(i.sub_task_id)
        if parent is None:
            log_orphan("issue", i.id, i.sub_task_id)
            continue
        if parent.project_id != i.project_id:
            raise InvalidHierarchyError("issue", i.id, i.sub_task_id, i.project_id, parent.project_id)
        attached.append(i)
    return attached


@dataclass(frozen=True)
class ProjectSnapshot:
    """Point-in-time read of one project's whole hierarchy."""

    project: ProjectRecord
    main_tasks: Tuple[MainTaskRecord, ...] = ()
    sub_tasks: Tuple[SubTaskRecord, ...] = ()
    issues: Tuple[IssueRecord, ...] = ()
    main_task_ids: frozenset = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "main_task_ids", frozenset(m.id for m in self.main_tasks))

    def sub_tasks_of(self, main_task_id: str) -> List[SubTaskRecord]:
        return [s for s in self.sub_tasks if s.parent_id == main_task_id]

    def issues_of(self, sub_task_id: str) -> List[IssueRecord]:
        return [i for i in self.issues if i.sub_task_id == sub_task_id]


async def load_project_snapshot(store: DocumentStore, project: ProjectRecord) -> ProjectSnapshot:
    """Read main tasks and sub-tasks together, then every sub-task's issues concurrently."""
    main_tasks, sub_tasks = await gather(
        lambda: store.list_main_tasks(project.id),
        lambda: store.list_sub_tasks(project.id),
    )
    sub_tasks = await attach_sub_tasks(store, sub_tasks, main_tasks)
    issues_by_sub_task = await map_concurrently(store.list_issues, [s.id for s in sub_tasks])
    issues = [i for s in sub_tasks for i in issues_by_sub_task.get(s.id, [])]
    issues = await attach_issues(store, issues, sub_tasks)
    return ProjectSnapshot(
        project=project,
        main_tasks=tuple(main_tasks),
        sub_tasks=tuple(sub_tasks),
        issues=tuple(issues),
    )
