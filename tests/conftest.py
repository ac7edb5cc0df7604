import os
from datetime import datetime, timedelta

os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT", "10000/minute")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.db import Base
from app.models.models import (
    Issue,
    IssueAssignment,
    MainTask,
    Project,
    SubTask,
    SubTaskAssignment,
    TimelineEvent,
    User,
)
from app.services.errors import StoreUnavailable
from app.storage.sql_provider import SqlDocumentStore


BASE_TIME = datetime(2024, 5, 1, 8, 0, 0)


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


class Seeder:
    """Writes hierarchy rows with explicit ids and timestamps."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _add(self, row):
        db = self.session_factory()
        try:
            db.add(row)
            db.commit()
        finally:
            db.close()
        return row

    def user(self, uid, role="owner", name=None):
        return self._add(User(uid=uid, role=role, display_name=name or uid.title()))

    def project(self, project_id, owner="owner-1", client=None, minutes=0):
        return self._add(Project(id=project_id, name=f"Project {project_id}", owner_uid=owner, client_uid=client, created_at=at(minutes)))

    def main_task(self, main_task_id, project_id, owner="owner-1", minutes=0):
        return self._add(MainTask(id=main_task_id, project_id=project_id, name=f"Main {main_task_id}", owner_uid=owner, created_at=at(minutes)))

    def sub_task(self, sub_task_id, project_id, parent_id, status="To Do", assignees=(), due=None, owner="owner-1", minutes=0):
        return self._add(
            SubTask(
                id=sub_task_id,
                project_id=project_id,
                parent_id=parent_id,
                name=f"Sub {sub_task_id}",
                owner_uid=owner,
                status=status,
                due_date=due,
                created_at=at(minutes),
                assignments=[SubTaskAssignment(user_uid=uid) for uid in assignees],
            )
        )

    def issue(self, issue_id, project_id, sub_task_id, status="Open", assignees=(), owner="owner-1", minutes=0):
        return self._add(
            Issue(
                id=issue_id,
                project_id=project_id,
                sub_task_id=sub_task_id,
                title=f"Issue {issue_id}",
                owner_uid=owner,
                status=status,
                created_at=at(minutes),
                assignments=[IssueAssignment(user_uid=uid) for uid in assignees],
            )
        )

    def event(self, event_id, owner_entity_id, minutes, event_type="STATUS_CHANGED", author="owner-1"):
        return self._add(
            TimelineEvent(
                id=event_id,
                owner_entity_id=owner_entity_id,
                type=event_type,
                description=f"event {event_id}",
                author_uid=author,
                author_name=author.title(),
                details={},
                timestamp=at(minutes),
            )
        )


class FailingStore(SqlDocumentStore):
    """Store whose named reads raise StoreUnavailable."""

    def __init__(self, session_factory, failing=()):
        super().__init__(session_factory)
        self.failing = set(failing)

    async def _read(self, operation, fn):
        if operation in self.failing:
            raise StoreUnavailable(operation, "simulated outage")
        return await super()._read(operation, fn)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
def store(session_factory):
    return SqlDocumentStore(session_factory)


@pytest.fixture
def failing_store(session_factory):
    def _make(*failing):
        return FailingStore(session_factory, failing)
    return _make


@pytest.fixture
def site_project(seed):
    """
    One project P1 owned by owner-1 with client client-1:
      M1: S1 (Completed, sup-1), S2 (Completed), S3 (To Do), S4 (To Do, mem-1)
      issues: I1 on S1 (Open, sup-1), I2 on S3 (Open), I3 on S4 (Closed, mem-1)
    """
    seed.project("P1", owner="owner-1", client="client-1")
    seed.main_task("M1", "P1")
    seed.sub_task("S1", "P1", "M1", status="Completed", assignees=["sup-1"], minutes=1)
    seed.sub_task("S2", "P1", "M1", status="Completed", minutes=2)
    seed.sub_task("S3", "P1", "M1", status="To Do", minutes=3)
    seed.sub_task("S4", "P1", "M1", status="To Do", assignees=["mem-1"], minutes=4)
    seed.issue("I1", "P1", "S1", status="Open", assignees=["sup-1"])
    seed.issue("I2", "P1", "S3", status="Open")
    seed.issue("I3", "P1", "S4", status="Closed", assignees=["mem-1"])
    return "P1"
