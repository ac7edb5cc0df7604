"""
SQLAlchemy-backed document store.

Each read opens its own short-lived Session on a worker thread, so concurrent
fan-out reads never share a Session. Database errors and timeouts are
re-raised as StoreUnavailable.
"""
from typing import Callable, Iterable, List, Optional, TypeVar

import anyio
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..config import settings
from ..models.models import (
    Issue,
    IssueAssignment,
    MainTask,
    Project,
    SubTask,
    SubTaskAssignment,
    TimelineEvent,
    User,
)
from ..schemas.hierarchy import (
    EventAuthor,
    IssueRecord,
    MainTaskRecord,
    ProjectRecord,
    SubTaskRecord,
    TimelineEventRecord,
    UserRecord,
)
from ..services.errors import StoreUnavailable
from .provider import DocumentStore


logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Keeps IN (...) lists well under driver parameter limits
MAX_IDS_PER_QUERY = 500


def _to_project(row: Project) -> ProjectRecord:
    return ProjectRecord.model_validate(row)


def _to_main_task(row: MainTask) -> MainTaskRecord:
    return MainTaskRecord.model_validate(row)


def _to_sub_task(row: SubTask) -> SubTaskRecord:
    return SubTaskRecord(
        id=row.id,
        project_id=row.project_id,
        parent_id=row.parent_id,
        name=row.name,
        owner_uid=row.owner_uid,
        assigned_to_uids=frozenset(row.assigned_to_uids),
        status=row.status,
        due_date=row.due_date,
        created_at=row.created_at,
    )


def _to_issue(row: Issue) -> IssueRecord:
    return IssueRecord(
        id=row.id,
        project_id=row.project_id,
        sub_task_id=row.sub_task_id,
        title=row.title,
        owner_uid=row.owner_uid,
        assigned_to_uids=frozenset(row.assigned_to_uids),
        severity=row.severity,
        status=row.status,
        created_at=row.created_at,
    )


def _to_event(row: TimelineEvent) -> TimelineEventRecord:
    return TimelineEventRecord(
        id=row.id,
        owner_entity_id=row.owner_entity_id,
        type=row.type,
        description=row.description,
        author=EventAuthor(uid=row.author_uid, name=row.author_name),
        details=row.details or {},
        timestamp=row.timestamp,
    )


def _chunks(ids: Iterable[str]) -> List[List[str]]:
    unique = sorted({str(i) for i in ids if i})
    return [unique[i:i + MAX_IDS_PER_QUERY] for i in range(0, len(unique), MAX_IDS_PER_QUERY)]


class SqlDocumentStore(DocumentStore):
    def __init__(
        self,
        session_factory: sessionmaker,
        timeout_s: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.timeout_s = timeout_s if timeout_s is not None else settings.store_timeout_seconds
        self.max_concurrency = max_concurrency or settings.store_max_concurrency
        self._limiter: Optional[anyio.CapacityLimiter] = None

    @property
    def limiter(self) -> anyio.CapacityLimiter:
        # Created on first use, inside the running event loop
        if self._limiter is None:
            self._limiter = anyio.CapacityLimiter(self.max_concurrency)
        return self._limiter

    def _read_sync(self, operation: str, fn: Callable[[Session], T]) -> T:
        db = self.session_factory()
        try:
            return fn(db)
        except SQLAlchemyError as exc:
            logger.warning("store_read_failed", operation=operation, error=str(exc))
            raise StoreUnavailable(operation, str(exc)) from exc
        finally:
            db.close()

    async def _read(self, operation: str, fn: Callable[[Session], T]) -> T:
        try:
            with anyio.fail_after(self.timeout_s):
                return await anyio.to_thread.run_sync(
                    self._read_sync, operation, fn, limiter=self.limiter, abandon_on_cancel=True
                )
        except TimeoutError as exc:
            logger.warning("store_read_timeout", operation=operation, timeout_s=self.timeout_s)
            raise StoreUnavailable(operation, "timed out") from exc

    async def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        def q(db: Session):
            row = db.query(Project).filter(Project.id == project_id).first()
            return _to_project(row) if row else None
        return await self._read("get_project", q)

    async def list_projects_owned_by(self, uid: str) -> List[ProjectRecord]:
        def q(db: Session):
            rows = (
                db.query(Project)
                .filter(Project.owner_uid == uid)
                .order_by(Project.created_at.desc(), Project.id)
                .all()
            )
            return [_to_project(r) for r in rows]
        return await self._read("list_projects_owned_by", q)

    async def list_projects_for_client(self, uid: str) -> List[ProjectRecord]:
        def q(db: Session):
            rows = (
                db.query(Project)
                .filter(Project.client_uid == uid)
                .order_by(Project.created_at.desc(), Project.id)
                .all()
            )
            return [_to_project(r) for r in rows]
        return await self._read("list_projects_for_client", q)

    async def list_main_tasks(self, project_id: str) -> List[MainTaskRecord]:
        def q(db: Session):
            rows = (
                db.query(MainTask)
                .filter(MainTask.project_id == project_id)
                .order_by(MainTask.created_at.desc(), MainTask.id)
                .all()
            )
            return [_to_main_task(r) for r in rows]
        return await self._read("list_main_tasks", q)

    async def get_main_tasks(self, main_task_ids: Iterable[str]) -> List[MainTaskRecord]:
        chunks = _chunks(main_task_ids)

        def q(db: Session):
            out: List[MainTaskRecord] = []
            for chunk in chunks:
                out.extend(_to_main_task(r) for r in db.query(MainTask).filter(MainTask.id.in_(chunk)).all())
            return out
        if not chunks:
            return []
        return await self._read("get_main_tasks", q)

    async def list_sub_tasks(self, project_id: str) -> List[SubTaskRecord]:
        def q(db: Session):
            rows = (
                db.query(SubTask)
                .filter(SubTask.project_id == project_id)
                .order_by(SubTask.created_at.asc(), SubTask.id)
                .all()
            )
            return [_to_sub_task(r) for r in rows]
        return await self._read("list_sub_tasks", q)

    async def list_sub_tasks_for_main_task(self, main_task_id: str) -> List[SubTaskRecord]:
        def q(db: Session):
            rows = (
                db.query(SubTask)
                .filter(SubTask.parent_id == main_task_id)
                .order_by(SubTask.created_at.asc(), SubTask.id)
                .all()
            )
            return [_to_sub_task(r) for r in rows]
        return await self._read("list_sub_tasks_for_main_task", q)

    async def get_sub_tasks(self, sub_task_ids: Iterable[str]) -> List[SubTaskRecord]:
        chunks = _chunks(sub_task_ids)

        def q(db: Session):
            out: List[SubTaskRecord] = []
            for chunk in chunks:
                out.extend(_to_sub_task(r) for r in db.query(SubTask).filter(SubTask.id.in_(chunk)).all())
            return out
        if not chunks:
            return []
        return await self._read("get_sub_tasks", q)

    async def list_sub_tasks_assigned_to(self, uid: str) -> List[SubTaskRecord]:
        def q(db: Session):
            rows = (
                db.query(SubTask)
                .join(SubTaskAssignment, SubTaskAssignment.sub_task_id == SubTask.id)
                .filter(SubTaskAssignment.user_uid == uid)
                .order_by(SubTask.created_at.asc(), SubTask.id)
                .all()
            )
            return [_to_sub_task(r) for r in rows]
        return await self._read("list_sub_tasks_assigned_to", q)

    async def list_issues(self, sub_task_id: str) -> List[IssueRecord]:
        def q(db: Session):
            rows = (
                db.query(Issue)
                .filter(Issue.sub_task_id == sub_task_id)
                .order_by(Issue.created_at.desc(), Issue.id)
                .all()
            )
            return [_to_issue(r) for r in rows]
        return await self._read("list_issues", q)

    async def list_issues_assigned_to(self, uid: str) -> List[IssueRecord]:
        def q(db: Session):
            rows = (
                db.query(Issue)
                .join(IssueAssignment, IssueAssignment.issue_id == Issue.id)
                .filter(IssueAssignment.user_uid == uid)
                .order_by(Issue.created_at.desc(), Issue.id)
                .all()
            )
            return [_to_issue(r) for r in rows]
        return await self._read("list_issues_assigned_to", q)

    async def list_events(self, owner_entity_id: str) -> List[TimelineEventRecord]:
        def q(db: Session):
            rows = (
                db.query(TimelineEvent)
                .filter(TimelineEvent.owner_entity_id == owner_entity_id)
                .order_by(TimelineEvent.timestamp.desc(), TimelineEvent.id.desc())
                .all()
            )
            return [_to_event(r) for r in rows]
        return await self._read("list_events", q)

    async def get_users_by_ids(self, uids: Iterable[str]) -> List[UserRecord]:
        chunks = _chunks(uids)

        def q(db: Session):
            out: List[UserRecord] = []
            for chunk in chunks:
                out.extend(UserRecord.model_validate(r) for r in db.query(User).filter(User.uid.in_(chunk)).all())
            out.sort(key=lambda u: (u.label.lower(), u.uid))
            return out
        if not chunks:
            return []
        return await self._read("get_users_by_ids", q)


_default_store: Optional[SqlDocumentStore] = None


def get_store() -> DocumentStore:
    global _default_store
    if _default_store is None:
        from ..db import SessionLocal
        _default_store = SqlDocumentStore(SessionLocal)
    return _default_store
