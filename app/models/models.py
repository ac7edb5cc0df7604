import uuid
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import (
    String,
    DateTime,
    ForeignKey,
    JSON,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def doc_pk() -> Mapped[str]:
    return mapped_column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)


def utcnow() -> datetime:
    # Naive UTC so values compare equally across SQLite and Postgres reads
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    role: Mapped[Optional[str]] = mapped_column(String(50), default="owner")  # admin|owner|supervisor|member|client
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = doc_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(2000))
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    client_uid: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    status: Mapped[str] = mapped_column(String(50), default="Not Started")  # Not Started|In Progress|Completed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class MainTask(Base):
    """Top-level task of a project. Completion is derived from its sub-tasks."""
    __tablename__ = "main_tasks"

    id: Mapped[str] = doc_pk()
    project_id: Mapped[str] = mapped_column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class SubTask(Base):
    __tablename__ = "sub_tasks"

    id: Mapped[str] = doc_pk()
    # Not foreign keys; readers must tolerate orphans
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    parent_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(2000))
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="To Do", index=True)  # To Do|In Progress|Completed
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    assignments: Mapped[List["SubTaskAssignment"]] = relationship(
        back_populates="sub_task", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def assigned_to_uids(self) -> List[str]:
        return sorted(a.user_uid for a in self.assignments)


class SubTaskAssignment(Base):
    """Explicit sub-task <-> user mapping, indexed on the user side."""
    __tablename__ = "sub_task_assignments"

    sub_task_id: Mapped[str] = mapped_column(String(64), ForeignKey("sub_tasks.id", ondelete="CASCADE"), primary_key=True)
    user_uid: Mapped[str] = mapped_column(String(128), primary_key=True, index=True)

    sub_task: Mapped[SubTask] = relationship(back_populates="assignments")

    __table_args__ = (UniqueConstraint("sub_task_id", "user_uid", name="uq_sub_task_user"),)


class Issue(Base):
    __tablename__ = "issues"

    id: Mapped[str] = doc_pk()
    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sub_task_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(2000))
    owner_uid: Mapped[str] = mapped_column(String(128), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), default="Normal")  # Normal|Critical
    status: Mapped[str] = mapped_column(String(20), default="Open", index=True)  # Open|Closed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    assignments: Mapped[List["IssueAssignment"]] = relationship(
        back_populates="issue", cascade="all, delete-orphan", lazy="selectin"
    )

    @property
    def assigned_to_uids(self) -> List[str]:
        return sorted(a.user_uid for a in self.assignments)


class IssueAssignment(Base):
    __tablename__ = "issue_assignments"

    issue_id: Mapped[str] = mapped_column(String(64), ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True)
    user_uid: Mapped[str] = mapped_column(String(128), primary_key=True, index=True)

    issue: Mapped[Issue] = relationship(back_populates="assignments")

    __table_args__ = (UniqueConstraint("issue_id", "user_uid", name="uq_issue_user"),)


class TimelineEvent(Base):
    """Append-only activity log entry owned by a main task or a sub-task"""
    __tablename__ = "timeline_events"

    id: Mapped[str] = doc_pk()
    owner_entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # TASK_CREATED|STATUS_CHANGED|...
    description: Mapped[Optional[str]] = mapped_column(String(1000))
    author_uid: Mapped[Optional[str]] = mapped_column(String(128))
    author_name: Mapped[Optional[str]] = mapped_column(String(255))
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_timeline_owner_ts", "owner_entity_id", "timestamp"),
    )
