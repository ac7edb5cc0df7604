"""
Derived project facts: completion progress and role-scoped counts.

Nothing here is persisted. ``compute_*`` and ``build_projected_timeline`` are
pure functions of a ProjectSnapshot and a Scope; the async wrappers do the
reads, translate store failures into AggregationUnavailable and log at the
boundary.
"""
from __future__ import annotations

import math
from typing import Iterable, List, Mapping, Optional, Tuple

import structlog

from ..schemas.hierarchy import ProjectRecord, Role, SubTaskRecord, UserRecord
from ..schemas.views import (
    DashboardEntry,
    MainTaskProgress,
    ProjectedItem,
    ProjectView,
    Scope,
)
from ..storage.provider import DocumentStore
from .errors import AggregationUnavailable, EntityNotFound, InvalidHierarchyError, StoreUnavailable
from .fanout import map_concurrently
from .hierarchy import ProjectSnapshot, load_project_snapshot, log_orphan
from .scope import ensure_main_task_visible, ensure_project_visible, resolve_scope


logger = structlog.get_logger(__name__)


def percent(part: int, whole: int) -> int:
    """round(100 * part / whole), half-up; 0 when whole is 0."""
    if whole <= 0:
        return 0
    return int(math.floor(100 * part / whole + 0.5))


def completion(sub_tasks: Iterable[SubTaskRecord]) -> Tuple[int, int, int]:
    """Return (progress, completed, total) for a set of sub-tasks."""
    items = list(sub_tasks)
    completed = sum(1 for s in items if s.is_completed)
    return percent(completed, len(items)), completed, len(items)


def compute_project_view(snapshot: ProjectSnapshot, scope: Scope) -> ProjectView:
    # Progress is a project-wide fact; only the counts depend on the viewer
    progress, _, _ = completion(snapshot.sub_tasks)
    view = ProjectView(project_id=snapshot.project.id, progress=progress)

    role = Role.parse(scope.role)
    if role is None or role == Role.CLIENT:
        return view
    if role.is_owner_like:
        view.total_main_tasks = len(snapshot.main_tasks)
        view.total_sub_tasks = len(snapshot.sub_tasks)
        view.total_open_issues = sum(1 for i in snapshot.issues if i.is_open)
        return view

    view.total_main_tasks = len(snapshot.main_task_ids & scope.main_task_ids)
    view.total_sub_tasks = sum(1 for s in snapshot.sub_tasks if s.id in scope.sub_task_ids)
    view.total_open_issues = sum(1 for i in snapshot.issues if i.is_open and i.id in scope.issue_ids)
    return view


def compute_main_task_progress(main_task_id: str, sub_tasks: Iterable[SubTaskRecord]) -> MainTaskProgress:
    progress, completed, total = completion(s for s in sub_tasks if s.parent_id == main_task_id)
    return MainTaskProgress(
        main_task_id=main_task_id,
        progress=progress,
        completed_sub_tasks=completed,
        total_sub_tasks=total,
    )


def _sees_all(scope: Scope) -> bool:
    role = Role.parse(scope.role)
    return role is not None and role.is_owner_like


def dated_sub_tasks(snapshot: ProjectSnapshot, scope: Scope) -> List[SubTaskRecord]:
    """Sub-tasks with a due date that the viewer may see, soonest due first."""
    see_all = _sees_all(scope)
    visible = [
        s for s in snapshot.sub_tasks
        if s.due_date is not None and (see_all or s.id in scope.sub_task_ids)
    ]
    visible.sort(key=lambda s: (s.due_date, s.created_at, s.id))
    return visible


def build_projected_timeline(
    snapshot: ProjectSnapshot,
    scope: Scope,
    users: Optional[Mapping[str, UserRecord]] = None,
) -> List[ProjectedItem]:
    """One item per dated sub-task visible to the viewer.

    ``users`` maps uid to user for assignee names; unknown uids show as the uid.
    """
    users = users or {}
    see_all = _sees_all(scope)
    visible = dated_sub_tasks(snapshot, scope)

    progress_by_main_task = {
        m.id: compute_main_task_progress(m.id, snapshot.sub_tasks).progress for m in snapshot.main_tasks
    }
    items: List[ProjectedItem] = []
    for s in visible:
        open_issues = [
            i for i in snapshot.issues_of(s.id)
            if i.is_open and (see_all or i.id in scope.issue_ids)
        ]
        items.append(
            ProjectedItem(
                sub_task_id=s.id,
                main_task_id=s.parent_id,
                name=s.name,
                status=s.status,
                due_date=s.due_date,
                main_task_progress=progress_by_main_task.get(s.parent_id, 0),
                open_issue_count=len(open_issues),
                assignee_names=sorted(users[u].label if u in users else u for u in s.assigned_to_uids),
            )
        )
    return items


async def _load_snapshot(store: DocumentStore, project_id: str) -> ProjectSnapshot:
    try:
        project = await store.get_project(project_id)
        if project is None:
            raise EntityNotFound("Project", project_id)
        return await load_project_snapshot(store, project)
    except StoreUnavailable as exc:
        raise AggregationUnavailable(project_id, exc) from exc


async def project_view(store: DocumentStore, project_id: str, uid: str, role) -> ProjectView:
    scope = await resolve_scope(store, uid, role)
    ensure_project_visible(scope, project_id)
    snapshot = await _load_snapshot(store, project_id)
    view = compute_project_view(snapshot, scope)
    logger.info(
        "project_view_computed",
        project_id=project_id,
        uid=uid,
        role=scope.role,
        progress=view.progress,
        total_sub_tasks=view.total_sub_tasks,
    )
    return view


async def projected_timeline(store: DocumentStore, project_id: str, uid: str, role) -> List[ProjectedItem]:
    scope = await resolve_scope(store, uid, role)
    ensure_project_visible(scope, project_id)
    snapshot = await _load_snapshot(store, project_id)
    uids = {u for s in dated_sub_tasks(snapshot, scope) for u in s.assigned_to_uids}
    try:
        users = await store.get_users_by_ids(uids)
    except StoreUnavailable as exc:
        raise AggregationUnavailable(project_id, exc) from exc
    return build_projected_timeline(snapshot, scope, {u.uid: u for u in users})


async def main_task_progress(store: DocumentStore, main_task_id: str, uid: str, role) -> MainTaskProgress:
    scope = await resolve_scope(store, uid, role)
    ensure_main_task_visible(scope, main_task_id)
    try:
        sub_tasks = await store.list_sub_tasks_for_main_task(main_task_id)
    except StoreUnavailable as exc:
        raise AggregationUnavailable(main_task_id, exc) from exc
    return compute_main_task_progress(main_task_id, sub_tasks)


async def build_dashboard(store: DocumentStore, uid: str, role) -> List[DashboardEntry]:
    """One ProjectView per project in the viewer's scope, newest project first."""
    scope = await resolve_scope(store, uid, role)

    async def _entry(project_id: str) -> Optional[DashboardEntry]:
        try:
            project: Optional[ProjectRecord] = await store.get_project(project_id)
            if project is None:
                log_orphan("project_reference", project_id, project_id)
                return None
            snapshot = await load_project_snapshot(store, project)
        except StoreUnavailable as exc:
            raise AggregationUnavailable(project_id, exc) from exc
        except InvalidHierarchyError as exc:
            logger.warning("dashboard_project_skipped", project_id=project_id, error=str(exc))
            return None
        return DashboardEntry(project=project, view=compute_project_view(snapshot, scope))

    entries = await map_concurrently(_entry, sorted(scope.project_ids))
    found = [e for e in entries.values() if e is not None]
    found.sort(key=lambda e: (e.project.created_at, e.project.id), reverse=True)
    logger.info("dashboard_built", uid=uid, role=scope.role, projects=len(found))
    return found
