from datetime import datetime
from typing import FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .hierarchy import (
    IssueSeverity,
    IssueStatus,
    ProjectRecord,
    TaskStatus,
    TimelineEventRecord,
)


class Scope(BaseModel):
    """Entity ids a (uid, role) pair may view."""
    model_config = ConfigDict(frozen=True)

    uid: str
    role: Optional[str] = None
    project_ids: FrozenSet[str] = frozenset()
    main_task_ids: FrozenSet[str] = frozenset()
    sub_task_ids: FrozenSet[str] = frozenset()
    issue_ids: FrozenSet[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not (self.project_ids or self.main_task_ids or self.sub_task_ids or self.issue_ids)


class ScopeResponse(BaseModel):
    uid: str
    role: Optional[str] = None
    project_ids: List[str]
    main_task_ids: List[str]
    sub_task_ids: List[str]
    issue_ids: List[str]

    @classmethod
    def from_scope(cls, scope: Scope) -> "ScopeResponse":
        return cls(
            uid=scope.uid,
            role=scope.role,
            project_ids=sorted(scope.project_ids),
            main_task_ids=sorted(scope.main_task_ids),
            sub_task_ids=sorted(scope.sub_task_ids),
            issue_ids=sorted(scope.issue_ids),
        )


class ProjectView(BaseModel):
    project_id: str
    progress: int
    # None means the counts are not disclosed to this role
    total_main_tasks: Optional[int] = None
    total_sub_tasks: Optional[int] = None
    total_open_issues: Optional[int] = None


class DashboardEntry(BaseModel):
    project: ProjectRecord
    view: ProjectView


class MainTaskProgress(BaseModel):
    main_task_id: str
    progress: int
    completed_sub_tasks: int
    total_sub_tasks: int


class ProjectedItem(BaseModel):
    sub_task_id: str
    main_task_id: str
    name: str
    status: TaskStatus
    due_date: datetime
    main_task_progress: int
    open_issue_count: Optional[int] = None
    assignee_names: List[str] = Field(default_factory=list)


class SubTaskInfo(BaseModel):
    id: str
    name: str


class MainTaskEvent(BaseModel):
    kind: Literal["main_task_event"] = "main_task_event"
    main_task_id: str
    event: TimelineEventRecord

    @property
    def timestamp(self) -> datetime:
        return self.event.timestamp


class SubTaskEventGroup(BaseModel):
    kind: Literal["sub_task_group"] = "sub_task_group"
    main_task_id: str
    sub_task: SubTaskInfo
    events: List[TimelineEventRecord]
    timestamp: datetime


FeedItem = Union[MainTaskEvent, SubTaskEventGroup]


# Mutation payloads

class ProjectCreate(BaseModel):
    name: str
    description: Optional[str] = None
    client_uid: Optional[str] = None


class MainTaskCreate(BaseModel):
    name: str


class SubTaskCreate(BaseModel):
    name: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    assigned_to_uids: List[str] = Field(default_factory=list)


class MainTaskUpdate(BaseModel):
    name: str


class SubTaskUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None


class SubTaskStatusUpdate(BaseModel):
    status: TaskStatus


class AssigneesUpdate(BaseModel):
    assigned_to_uids: List[str]


class IssueCreate(BaseModel):
    title: str
    description: Optional[str] = None
    severity: IssueSeverity = IssueSeverity.NORMAL
    assigned_to_uids: List[str] = Field(default_factory=list)


class IssueUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    severity: Optional[IssueSeverity] = None


class IssueStatusUpdate(BaseModel):
    status: IssueStatus


class EntityCreated(BaseModel):
    id: str


class EntityDeleted(BaseModel):
    id: str
    deleted: List[str] = Field(default_factory=list)
