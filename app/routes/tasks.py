from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Issue, SubTask, User
from ..schemas.views import (
    AssigneesUpdate,
    EntityCreated,
    EntityDeleted,
    IssueCreate,
    IssueStatusUpdate,
    IssueUpdate,
    MainTaskCreate,
    MainTaskUpdate,
    ProjectCreate,
    SubTaskCreate,
    SubTaskStatusUpdate,
    SubTaskUpdate,
)
from ..services import task_service


router = APIRouter(tags=["tasks"])


def _serialize_sub_task(task: SubTask) -> Dict[str, Any]:
    return {
        "id": task.id,
        "project_id": task.project_id,
        "parent_id": task.parent_id,
        "name": task.name,
        "description": task.description,
        "status": task.status,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "assigned_to_uids": task.assigned_to_uids,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
    }


def _serialize_issue(issue: Issue) -> Dict[str, Any]:
    return {
        "id": issue.id,
        "project_id": issue.project_id,
        "sub_task_id": issue.sub_task_id,
        "title": issue.title,
        "severity": issue.severity,
        "status": issue.status,
        "description": issue.description,
        "assigned_to_uids": issue.assigned_to_uids,
    }


@router.post("/projects", response_model=EntityCreated)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    project = task_service.create_project(
        db, me, name=payload.name, description=payload.description, client_uid=payload.client_uid
    )
    db.commit()
    return EntityCreated(id=project.id)


@router.post("/projects/{project_id}/main-tasks", response_model=EntityCreated)
def create_main_task(project_id: str, payload: MainTaskCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = task_service.create_main_task(db, me, project_id=project_id, name=payload.name)
    db.commit()
    return EntityCreated(id=task.id)


@router.post("/main-tasks/{main_task_id}/sub-tasks", response_model=EntityCreated)
def create_sub_task(main_task_id: str, payload: SubTaskCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = task_service.create_sub_task(
        db,
        me,
        main_task_id=main_task_id,
        name=payload.name,
        description=payload.description,
        due_date=payload.due_date,
        assigned_to_uids=payload.assigned_to_uids,
    )
    db.commit()
    return EntityCreated(id=task.id)


@router.patch("/sub-tasks/{sub_task_id}/status")
def update_sub_task_status(sub_task_id: str, payload: SubTaskStatusUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = task_service.update_sub_task_status(db, me, sub_task_id=sub_task_id, status=payload.status)
    db.commit()
    db.refresh(task)
    return _serialize_sub_task(task)


@router.put("/sub-tasks/{sub_task_id}/assignees")
def set_sub_task_assignees(sub_task_id: str, payload: AssigneesUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = task_service.set_sub_task_assignees(db, me, sub_task_id=sub_task_id, assigned_to_uids=payload.assigned_to_uids)
    db.commit()
    db.refresh(task)
    return _serialize_sub_task(task)


@router.post("/sub-tasks/{sub_task_id}/issues", response_model=EntityCreated)
def open_issue(sub_task_id: str, payload: IssueCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    issue = task_service.open_issue(
        db,
        me,
        sub_task_id=sub_task_id,
        title=payload.title,
        description=payload.description,
        severity=payload.severity,
        assigned_to_uids=payload.assigned_to_uids,
    )
    db.commit()
    return EntityCreated(id=issue.id)


@router.patch("/issues/{issue_id}/status")
def set_issue_status(issue_id: str, payload: IssueStatusUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    issue = task_service.set_issue_status(db, me, issue_id=issue_id, status=payload.status)
    db.commit()
    db.refresh(issue)
    return _serialize_issue(issue)


@router.patch("/main-tasks/{main_task_id}")
def update_main_task(main_task_id: str, payload: MainTaskUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = task_service.update_main_task(db, me, main_task_id=main_task_id, name=payload.name)
    db.commit()
    return {"id": task.id, "project_id": task.project_id, "name": task.name}


@router.delete("/main-tasks/{main_task_id}", response_model=EntityDeleted)
def delete_main_task(main_task_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    deleted = task_service.delete_main_task(db, me, main_task_id=main_task_id)
    db.commit()
    return EntityDeleted(id=main_task_id, deleted=deleted)


@router.patch("/sub-tasks/{sub_task_id}")
def update_sub_task(sub_task_id: str, payload: SubTaskUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = task_service.update_sub_task(db, me, sub_task_id=sub_task_id, changes=payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(task)
    return _serialize_sub_task(task)


@router.delete("/sub-tasks/{sub_task_id}", response_model=EntityDeleted)
def delete_sub_task(sub_task_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    deleted = task_service.delete_sub_task(db, me, sub_task_id=sub_task_id)
    db.commit()
    return EntityDeleted(id=sub_task_id, deleted=deleted)


@router.patch("/issues/{issue_id}")
def update_issue(issue_id: str, payload: IssueUpdate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    issue = task_service.update_issue(db, me, issue_id=issue_id, changes=payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(issue)
    return _serialize_issue(issue)


@router.delete("/issues/{issue_id}", response_model=EntityDeleted)
def delete_issue(issue_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task_service.delete_issue(db, me, issue_id=issue_id)
    db.commit()
    return EntityDeleted(id=issue_id, deleted=[issue_id])
