"""
Read-side records for the Project -> Main Task -> Sub-task -> Issue hierarchy.

Store implementations return these frozen models, so the scope, aggregation and
timeline engines never touch ORM rows or sessions.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    SUPERVISOR = "supervisor"
    MEMBER = "member"
    CLIENT = "client"

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Return the matching role, or None for anything unrecognised."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return None

    @property
    def is_owner_like(self) -> bool:
        return self in (Role.ADMIN, Role.OWNER)

    @property
    def is_assignment_based(self) -> bool:
        return self in (Role.SUPERVISOR, Role.MEMBER)


class TaskStatus(str, Enum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class IssueStatus(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"


class IssueSeverity(str, Enum):
    NORMAL = "Normal"
    CRITICAL = "Critical"


class EventType(str, Enum):
    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"
    TASK_DELETED = "TASK_DELETED"
    MAIN_TASK_UPDATED = "MAIN_TASK_UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ASSIGNMENT_CHANGED = "ASSIGNMENT_CHANGED"
    ISSUE_CREATED = "ISSUE_CREATED"
    ISSUE_STATUS_CHANGED = "ISSUE_STATUS_CHANGED"
    ISSUE_UPDATED = "ISSUE_UPDATED"
    ATTACHMENT_ADDED = "ATTACHMENT_ADDED"
    ATTACHMENT_DELETED = "ATTACHMENT_DELETED"
    ISSUE_DELETED = "ISSUE_DELETED"
    MAIN_TASK_COMPLETED = "MAIN_TASK_COMPLETED"
    MAIN_TASK_REOPENED = "MAIN_TASK_REOPENED"


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)


class UserRecord(_Record):
    uid: str
    role: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.email or self.uid


class ProjectRecord(_Record):
    id: str
    name: str
    owner_uid: str
    client_uid: Optional[str] = None
    status: str = "Not Started"
    created_at: datetime


class MainTaskRecord(_Record):
    id: str
    project_id: str
    name: str
    owner_uid: str
    created_at: datetime


class SubTaskRecord(_Record):
    id: str
    project_id: str
    parent_id: str
    name: str
    owner_uid: str
    assigned_to_uids: FrozenSet[str] = frozenset()
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[datetime] = None
    created_at: datetime

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


class IssueRecord(_Record):
    id: str
    project_id: str
    sub_task_id: str
    title: str
    owner_uid: str
    assigned_to_uids: FrozenSet[str] = frozenset()
    severity: IssueSeverity = IssueSeverity.NORMAL
    status: IssueStatus = IssueStatus.OPEN
    created_at: datetime

    @property
    def is_open(self) -> bool:
        return self.status == IssueStatus.OPEN


class EventAuthor(_Record):
    uid: Optional[str] = None
    name: Optional[str] = None


class TimelineEventRecord(_Record):
    id: str
    owner_entity_id: str
    type: EventType
    description: Optional[str] = None
    author: EventAuthor = Field(default_factory=EventAuthor)
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
