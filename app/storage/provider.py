from typing import Iterable, List, Optional

from ..schemas.hierarchy import (
    IssueRecord,
    MainTaskRecord,
    ProjectRecord,
    SubTaskRecord,
    TimelineEventRecord,
    UserRecord,
)


class DocumentStore:
    """Read interface of the document store collaborator.

    Implementations raise ``StoreUnavailable`` on any read failure; they never
    return an empty result in place of an error.
    """

    async def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        raise NotImplementedError

    async def list_projects_owned_by(self, uid: str) -> List[ProjectRecord]:
        raise NotImplementedError

    async def list_projects_for_client(self, uid: str) -> List[ProjectRecord]:
        raise NotImplementedError

    async def list_main_tasks(self, project_id: str) -> List[MainTaskRecord]:
        raise NotImplementedError

    async def get_main_tasks(self, main_task_ids: Iterable[str]) -> List[MainTaskRecord]:
        raise NotImplementedError

    async def list_sub_tasks(self, project_id: str) -> List[SubTaskRecord]:
        raise NotImplementedError

    async def list_sub_tasks_for_main_task(self, main_task_id: str) -> List[SubTaskRecord]:
        raise NotImplementedError

    async def get_sub_tasks(self, sub_task_ids: Iterable[str]) -> List[SubTaskRecord]:
        raise NotImplementedError

    async def list_sub_tasks_assigned_to(self, uid: str) -> List[SubTaskRecord]:
        raise NotImplementedError

    async def list_issues(self, sub_task_id: str) -> List[IssueRecord]:
        raise NotImplementedError

    async def list_issues_assigned_to(self, uid: str) -> List[IssueRecord]:
        raise NotImplementedError

    async def list_events(self, owner_entity_id: str) -> List[TimelineEventRecord]:
        """Events owned by the entity, newest first."""
        raise NotImplementedError

    async def get_users_by_ids(self, uids: Iterable[str]) -> List[UserRecord]:
        """Users that exist among ``uids``, sorted by display name."""
        raise NotImplementedError
