from typing import List

from fastapi import APIRouter, Depends

from ..auth.security import get_current_user
from ..models.models import User
from ..schemas.views import (
    DashboardEntry,
    FeedItem,
    MainTaskProgress,
    ProjectedItem,
    ProjectView,
    ScopeResponse,
)
from ..services import aggregation, timeline
from ..services.scope import resolve_scope
from ..storage.provider import DocumentStore
from ..storage.sql_provider import get_store


router = APIRouter(tags=["projects"])


@router.get("/scope", response_model=ScopeResponse)
async def get_scope(me: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    scope = await resolve_scope(store, me.uid, me.role)
    return ScopeResponse.from_scope(scope)


@router.get("/projects/dashboard", response_model=List[DashboardEntry])
async def get_dashboard(me: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return await aggregation.build_dashboard(store, me.uid, me.role)


@router.get("/projects/{project_id}/view", response_model=ProjectView)
async def get_project_view(project_id: str, me: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return await aggregation.project_view(store, project_id, me.uid, me.role)


@router.get("/projects/{project_id}/timeline", response_model=List[FeedItem])
async def get_project_timeline(project_id: str, me: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return await timeline.build_project_timeline(store, project_id, me.uid, me.role)


@router.get("/projects/{project_id}/projected-timeline", response_model=List[ProjectedItem])
async def get_projected_timeline(project_id: str, me: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return await aggregation.projected_timeline(store, project_id, me.uid, me.role)


@router.get("/main-tasks/{main_task_id}/timeline", response_model=List[FeedItem])
async def get_main_task_timeline(main_task_id: str, me: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return await timeline.build_main_task_timeline(store, main_task_id, me.uid, me.role)


@router.get("/main-tasks/{main_task_id}/progress", response_model=MainTaskProgress)
async def get_main_task_progress(main_task_id: str, me: User = Depends(get_current_user), store: DocumentStore = Depends(get_store)):
    return await aggregation.main_task_progress(store, main_task_id, me.uid, me.role)
