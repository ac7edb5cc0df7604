"""
Access scope resolution.

Every role maps to exactly one strategy through ``_STRATEGIES``; callers never
branch on role themselves.

- admin/owner: everything under the projects they own
- client: the projects naming them as client, nothing below project level
- supervisor/member: derived from assignment only; a main task is visible
  solely through an assigned sub-task
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from ..schemas.hierarchy import ProjectRecord, Role
from ..schemas.views import Scope
from ..storage.provider import DocumentStore
from .errors import AccessDenied, InvalidHierarchyError, ScopeResolutionFailure, StoreUnavailable
from .fanout import gather, map_concurrently
from .hierarchy import ProjectSnapshot, attach_issues, attach_sub_tasks, load_project_snapshot


logger = structlog.get_logger(__name__)


async def _owned_snapshot(store: DocumentStore, project: ProjectRecord) -> Optional[ProjectSnapshot]:
    try:
        return await load_project_snapshot(store, project)
    except InvalidHierarchyError as exc:
        # Keep the project itself; its children surface the error when it is opened
        logger.warning("project_hierarchy_invalid", project_id=project.id, error=str(exc))
        return None


async def _owner_scope(store: DocumentStore, uid: str, role: Role) -> Scope:
    projects = await store.list_projects_owned_by(uid)
    loaded = await map_concurrently(lambda p: _owned_snapshot(store, p), projects)
    snapshots = [snap for snap in loaded.values() if snap is not None]
    return Scope(
        uid=uid,
        role=role.value,
        project_ids=frozenset(p.id for p in projects),
        main_task_ids=frozenset(m.id for snap in snapshots for m in snap.main_tasks),
        sub_task_ids=frozenset(s.id for snap in snapshots for s in snap.sub_tasks),
        issue_ids=frozenset(i.id for snap in snapshots for i in snap.issues),
    )


async def _client_scope(store: DocumentStore, uid: str, role: Role) -> Scope:
    projects = await store.list_projects_for_client(uid)
    return Scope(uid=uid, role=role.value, project_ids=frozenset(p.id for p in projects))


async def _assignee_scope(store: DocumentStore, uid: str, role: Role) -> Scope:
    assigned_sub_tasks, assigned_issues = await gather(
        lambda: store.list_sub_tasks_assigned_to(uid),
        lambda: store.list_issues_assigned_to(uid),
    )
    sub_tasks, issues = await gather(
        lambda: attach_sub_tasks(store, assigned_sub_tasks),
        lambda: attach_issues(store, assigned_issues, assigned_sub_tasks),
    )
    project_ids = {s.project_id for s in sub_tasks} | {i.project_id for i in issues}
    return Scope(
        uid=uid,
        role=role.value,
        project_ids=frozenset(project_ids),
        main_task_ids=frozenset(s.parent_id for s in sub_tasks),
        sub_task_ids=frozenset(s.id for s in sub_tasks),
        issue_ids=frozenset(i.id for i in issues),
    )


_STRATEGIES: Dict[Role, Callable[[DocumentStore, str, Role], Awaitable[Scope]]] = {
    Role.ADMIN: _owner_scope,
    Role.OWNER: _owner_scope,
    Role.CLIENT: _client_scope,
    Role.SUPERVISOR: _assignee_scope,
    Role.MEMBER: _assignee_scope,
}


async def resolve_scope(store: DocumentStore, uid: Optional[str], role: Any) -> Scope:
    """Resolve what (uid, role) may see.

    An unknown uid or role is an empty scope, not an error. Store failures
    raise ScopeResolutionFailure.
    """
    parsed = Role.parse(role)
    if not uid or parsed is None:
        logger.info("scope_empty", uid=uid, role=role)
        return Scope(uid=uid or "", role=parsed.value if parsed else None)
    try:
        scope = await _STRATEGIES[parsed](store, uid, parsed)
    except StoreUnavailable as exc:
        raise ScopeResolutionFailure(uid, parsed.value, exc) from exc
    logger.info(
        "scope_resolved",
        uid=uid,
        role=parsed.value,
        projects=len(scope.project_ids),
        main_tasks=len(scope.main_task_ids),
        sub_tasks=len(scope.sub_task_ids),
        issues=len(scope.issue_ids),
    )
    return scope


def ensure_project_visible(scope: Scope, project_id: str) -> None:
    if project_id not in scope.project_ids:
        raise AccessDenied(f"Project {project_id} is not visible to {scope.uid}")


def ensure_main_task_visible(scope: Scope, main_task_id: str) -> None:
    if main_task_id not in scope.main_task_ids:
        raise AccessDenied(f"Main task {main_task_id} is not visible to {scope.uid}")
