from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import (
    Issue,
    IssueAssignment,
    MainTask,
    Project,
    SubTask,
    SubTaskAssignment,
    User,
    utcnow,
)
from ..schemas.hierarchy import EventType, IssueSeverity, IssueStatus, Role, TaskStatus
from .audit import compute_diff, record_event
from .errors import AccessDenied, EntityNotFound


logger = structlog.get_logger(__name__)

SUB_TASK_FIELDS = {"name", "description", "due_date"}
ASSIGNEE_SUB_TASK_FIELDS = {"description", "due_date"}
ISSUE_FIELDS = {"title", "description", "severity"}


def _resolve_user_display(db: Session, uid: Optional[str]) -> Optional[str]:
    if not uid:
        return None
    user = db.query(User).filter(User.uid == uid).first()
    if not user:
        return None
    return user.display_name or user.email or user.uid


def _get(db: Session, model, entity_id: str, kind: str):
    row = db.query(model).filter(model.id == entity_id).first()
    if not row:
        raise EntityNotFound(kind, entity_id)
    return row


def _clean_uids(uids: Iterable[str]) -> List[str]:
    return sorted({str(u).strip() for u in uids if u and str(u).strip()})


def _is_project_owner(actor: User, project: Project) -> bool:
    role = Role.parse(actor.role)
    return role is not None and role.is_owner_like and project.owner_uid == actor.uid


def can_view_sub_task(actor: User, project: Project, sub_task: SubTask) -> bool:
    if _is_project_owner(actor, project):
        return True
    role = Role.parse(actor.role)
    return role is not None and role.is_assignment_based and actor.uid in sub_task.assigned_to_uids


def create_project(
    db: Session,
    actor: User,
    *,
    name: str,
    description: Optional[str] = None,
    client_uid: Optional[str] = None,
) -> Project:
    role = Role.parse(actor.role)
    if role is None or not role.is_owner_like:
        raise AccessDenied("Only owners and admins can create projects")
    project = Project(
        name=name.strip(),
        description=description or "",
        owner_uid=actor.uid,
        client_uid=client_uid or None,
        status="Not Started",
    )
    db.add(project)
    db.flush()
    logger.info("project_created", project_id=project.id, owner_uid=actor.uid)
    return project


def create_main_task(db: Session, actor: User, *, project_id: str, name: str) -> MainTask:
    project = _get(db, Project, project_id, "Project")
    if not _is_project_owner(actor, project):
        raise AccessDenied("Only the project owner can create main tasks")
    task = MainTask(project_id=project.id, name=name.strip(), owner_uid=actor.uid)
    db.add(task)
    db.flush()
    record_event(
        db,
        task.id,
        EventType.TASK_CREATED,
        actor,
        description=f"Main task '{task.name}' created",
        details={"projectId": project.id},
    )
    return task


def create_sub_task(
    db: Session,
    actor: User,
    *,
    main_task_id: str,
    name: str,
    description: Optional[str] = None,
    due_date: Optional[datetime] = None,
    assigned_to_uids: Iterable[str] = (),
) -> SubTask:
    main_task = _get(db, MainTask, main_task_id, "Main task")
    project = _get(db, Project, main_task.project_id, "Project")
    if not _is_project_owner(actor, project):
        raise AccessDenied("Only the project owner can create sub-tasks")
    assignees = _clean_uids(assigned_to_uids)
    sub_task = SubTask(
        project_id=project.id,
        parent_id=main_task.id,
        name=name.strip(),
        description=description or "",
        owner_uid=actor.uid,
        status=TaskStatus.TODO.value,
        due_date=due_date,
        assignments=[SubTaskAssignment(user_uid=uid) for uid in assignees],
    )
    db.add(sub_task)
    db.flush()
    record_event(
        db,
        sub_task.id,
        EventType.TASK_CREATED,
        actor,
        description=f"Sub-task '{sub_task.name}' created",
        details={
            "mainTaskId": main_task.id,
            "assignedToUids": assignees,
            "assignedToNames": [_resolve_user_display(db, uid) or uid for uid in assignees],
        },
    )
    return sub_task


def _main_task_completed(db: Session, main_task_id: str) -> bool:
    statuses = [row.status for row in db.query(SubTask.status).filter(SubTask.parent_id == main_task_id).all()]
    return bool(statuses) and all(s == TaskStatus.COMPLETED.value for s in statuses)


def _record_main_task_transition(db: Session, actor: User, main_task_id: str, was_completed: bool, sub_task_id: str) -> None:
    now_completed = _main_task_completed(db, main_task_id)
    if now_completed and not was_completed:
        record_event(db, main_task_id, EventType.MAIN_TASK_COMPLETED, actor,
                     description="All sub-tasks completed", details={"subTaskId": sub_task_id})
    elif was_completed and not now_completed:
        record_event(db, main_task_id, EventType.MAIN_TASK_REOPENED, actor,
                     description="Main task reopened", details={"subTaskId": sub_task_id})


def update_sub_task_status(db: Session, actor: User, *, sub_task_id: str, status: TaskStatus) -> SubTask:
    sub_task = _get(db, SubTask, sub_task_id, "Sub-task")
    project = _get(db, Project, sub_task.project_id, "Project")
    is_assignee = actor.uid in sub_task.assigned_to_uids
    if not (_is_project_owner(actor, project) or is_assignee):
        raise AccessDenied("Only the owner or an assignee can change this sub-task's status")
    if sub_task.status == status.value:
        return sub_task

    was_completed = _main_task_completed(db, sub_task.parent_id)
    old_status = sub_task.status
    sub_task.status = status.value
    sub_task.updated_at = utcnow()
    db.flush()
    record_event(
        db,
        sub_task.id,
        EventType.STATUS_CHANGED,
        actor,
        description=f"Status changed from {old_status} to {status.value}",
        details=compute_diff({"status": old_status}, {"status": status.value}),
    )

    _record_main_task_transition(db, actor, sub_task.parent_id, was_completed, sub_task.id)
    return sub_task


def set_sub_task_assignees(db: Session, actor: User, *, sub_task_id: str, assigned_to_uids: Iterable[str]) -> SubTask:
    sub_task = _get(db, SubTask, sub_task_id, "Sub-task")
    project = _get(db, Project, sub_task.project_id, "Project")
    if not _is_project_owner(actor, project):
        raise AccessDenied("Only the project owner can reassign sub-tasks")
    before = sub_task.assigned_to_uids
    after = _clean_uids(assigned_to_uids)
    if before == after:
        return sub_task
    sub_task.assignments = [a for a in sub_task.assignments if a.user_uid in after] + [
        SubTaskAssignment(user_uid=uid) for uid in after if uid not in before
    ]
    sub_task.updated_at = utcnow()
    db.flush()
    record_event(
        db,
        sub_task.id,
        EventType.ASSIGNMENT_CHANGED,
        actor,
        description="Assignees changed",
        details=compute_diff({"assignedToUids": before}, {"assignedToUids": after}),
    )
    return sub_task


def open_issue(
    db: Session,
    actor: User,
    *,
    sub_task_id: str,
    title: str,
    description: Optional[str] = None,
    severity: IssueSeverity = IssueSeverity.NORMAL,
    assigned_to_uids: Iterable[str] = (),
) -> Issue:
    sub_task = _get(db, SubTask, sub_task_id, "Sub-task")
    project = _get(db, Project, sub_task.project_id, "Project")
    if not can_view_sub_task(actor, project, sub_task):
        raise AccessDenied("Sub-task is not visible to you")
    assignees = _clean_uids(assigned_to_uids)
    issue = Issue(
        project_id=sub_task.project_id,
        sub_task_id=sub_task.id,
        title=title.strip(),
        description=description or "",
        owner_uid=actor.uid,
        severity=severity.value,
        status=IssueStatus.OPEN.value,
        assignments=[IssueAssignment(user_uid=uid) for uid in assignees],
    )
    db.add(issue)
    db.flush()
    record_event(
        db,
        sub_task.id,
        EventType.ISSUE_CREATED,
        actor,
        description=f"Issue '{issue.title}' opened",
        details={"issueId": issue.id, "severity": severity.value, "assignedToUids": assignees},
    )
    return issue


def set_issue_status(db: Session, actor: User, *, issue_id: str, status: IssueStatus) -> Issue:
    issue = _get(db, Issue, issue_id, "Issue")
    if not (issue.owner_uid == actor.uid or actor.uid in issue.assigned_to_uids):
        raise AccessDenied("Only the issue owner or an assignee can change its status")
    if issue.status == status.value:
        return issue
    old_status = issue.status
    issue.status = status.value
    issue.updated_at = utcnow()
    db.flush()
    record_event(
        db,
        issue.sub_task_id,
        EventType.ISSUE_STATUS_CHANGED,
        actor,
        description=f"Issue '{issue.title}' changed from {old_status} to {status.value}",
        details={"issueId": issue.id, **compute_diff({"status": old_status}, {"status": status.value})},
    )
    return issue


def _as_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _apply_changes(row, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Set the changed attributes on ``row``; returns the before/after diff."""
    before = {key: _as_json(getattr(row, key)) for key in changes}
    after = {key: _as_json(value) for key, value in changes.items()}
    diff = compute_diff(before, after)
    for key in diff:
        value = changes[key]
        setattr(row, key, value.value if isinstance(value, Enum) else value)
    return diff


def update_main_task(db: Session, actor: User, *, main_task_id: str, name: str) -> MainTask:
    main_task = _get(db, MainTask, main_task_id, "Main task")
    project = _get(db, Project, main_task.project_id, "Project")
    if not _is_project_owner(actor, project):
        raise AccessDenied("Only the project owner can rename main tasks")
    diff = _apply_changes(main_task, {"name": name.strip()})
    if not diff:
        return main_task
    db.flush()
    record_event(
        db,
        main_task.id,
        EventType.MAIN_TASK_UPDATED,
        actor,
        description=f"Main task renamed to '{main_task.name}'",
        details=diff,
    )
    return main_task


def update_sub_task(db: Session, actor: User, *, sub_task_id: str, changes: Dict[str, Any]) -> SubTask:
    """Edit a sub-task's details.

    The project owner may change name, description and due date. An assignee
    may change description and due date only. ``changes`` holds just the
    fields being set; a ``due_date`` of None clears it.
    """
    sub_task = _get(db, SubTask, sub_task_id, "Sub-task")
    project = _get(db, Project, sub_task.project_id, "Project")
    unknown = set(changes) - SUB_TASK_FIELDS
    if unknown:
        raise ValueError(f"Sub-task fields cannot be edited here: {', '.join(sorted(unknown))}")
    if not _is_project_owner(actor, project):
        if actor.uid not in sub_task.assigned_to_uids:
            raise AccessDenied("Only the owner or an assignee can edit this sub-task")
        if set(changes) - ASSIGNEE_SUB_TASK_FIELDS:
            raise AccessDenied("Assignees can only change the description or due date")
    if "name" in changes:
        changes = {**changes, "name": (changes["name"] or "").strip() or sub_task.name}
    diff = _apply_changes(sub_task, changes)
    if not diff:
        return sub_task
    sub_task.updated_at = utcnow()
    db.flush()
    record_event(
        db,
        sub_task.id,
        EventType.TASK_UPDATED,
        actor,
        description=f"Updated {', '.join(sorted(diff))}",
        details=diff,
    )
    return sub_task


def _can_manage_issue(db: Session, actor: User, issue: Issue) -> bool:
    if issue.owner_uid == actor.uid:
        return True
    project = db.query(Project).filter(Project.id == issue.project_id).first()
    return project is not None and _is_project_owner(actor, project)


def update_issue(db: Session, actor: User, *, issue_id: str, changes: Dict[str, Any]) -> Issue:
    issue = _get(db, Issue, issue_id, "Issue")
    unknown = set(changes) - ISSUE_FIELDS
    if unknown:
        raise ValueError(f"Issue fields cannot be edited here: {', '.join(sorted(unknown))}")
    if not _can_manage_issue(db, actor, issue):
        raise AccessDenied("Only the issue owner or the project owner can edit this issue")
    if "title" in changes:
        changes = {**changes, "title": (changes["title"] or "").strip() or issue.title}
    diff = _apply_changes(issue, changes)
    if not diff:
        return issue
    issue.updated_at = utcnow()
    db.flush()
    record_event(
        db,
        issue.sub_task_id,
        EventType.ISSUE_UPDATED,
        actor,
        description=f"Issue '{issue.title}' updated",
        details={"issueId": issue.id, **diff},
    )
    return issue


def delete_issue(db: Session, actor: User, *, issue_id: str) -> str:
    issue = _get(db, Issue, issue_id, "Issue")
    if not _can_manage_issue(db, actor, issue):
        raise AccessDenied("Only the issue owner or the project owner can delete this issue")
    sub_task_id, title = issue.sub_task_id, issue.title
    db.delete(issue)
    db.flush()
    record_event(
        db,
        sub_task_id,
        EventType.ISSUE_DELETED,
        actor,
        description=f"Issue '{title}' deleted",
        details={"issueId": issue_id},
    )
    return issue_id


def _delete_sub_task_rows(db: Session, sub_task: SubTask) -> List[str]:
    deleted = []
    for issue in db.query(Issue).filter(Issue.sub_task_id == sub_task.id).all():
        deleted.append(issue.id)
        db.delete(issue)
    deleted.append(sub_task.id)
    db.delete(sub_task)
    return deleted


def delete_sub_task(db: Session, actor: User, *, sub_task_id: str) -> List[str]:
    """Delete a sub-task and its issues. Returns the deleted ids."""
    sub_task = _get(db, SubTask, sub_task_id, "Sub-task")
    project = _get(db, Project, sub_task.project_id, "Project")
    if not _is_project_owner(actor, project):
        raise AccessDenied("Only the project owner can delete sub-tasks")
    main_task_id, name = sub_task.parent_id, sub_task.name
    was_completed = _main_task_completed(db, main_task_id)
    deleted = _delete_sub_task_rows(db, sub_task)
    db.flush()
    record_event(
        db,
        main_task_id,
        EventType.TASK_DELETED,
        actor,
        description=f"Sub-task '{name}' deleted",
        details={"subTaskId": sub_task_id, "deletedIds": deleted},
    )
    _record_main_task_transition(db, actor, main_task_id, was_completed, sub_task_id)
    logger.info("sub_task_deleted", sub_task_id=sub_task_id, deleted=len(deleted))
    return deleted


def delete_main_task(db: Session, actor: User, *, main_task_id: str) -> List[str]:
    """Delete a main task with all of its sub-tasks and their issues."""
    main_task = _get(db, MainTask, main_task_id, "Main task")
    project = _get(db, Project, main_task.project_id, "Project")
    if not _is_project_owner(actor, project):
        raise AccessDenied("Only the project owner can delete main tasks")
    deleted: List[str] = []
    for sub_task in db.query(SubTask).filter(SubTask.parent_id == main_task.id).all():
        deleted.extend(_delete_sub_task_rows(db, sub_task))
    deleted.append(main_task.id)
    name = main_task.name
    db.delete(main_task)
    db.flush()
    record_event(
        db,
        main_task_id,
        EventType.TASK_DELETED,
        actor,
        description=f"Main task '{name}' deleted",
        details={"projectId": project.id, "deletedIds": deleted},
    )
    logger.info("main_task_deleted", main_task_id=main_task_id, deleted=len(deleted))
    return deleted
