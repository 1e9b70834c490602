from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...services.project_service import (
    ProjectService,
    ProjectCreate,
    BoardCreate,
    BoardUpdate,
    StoryCreate,
    StoryUpdate,
)

router = APIRouter()


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    status: Optional[str]
    start_date: Optional[datetime]
    completion_date: Optional[datetime]
    total_budget: Decimal
    used_budget: Decimal
    velocity: Optional[int]
    owner_id: Optional[int]
    client_id: Optional[int]


class BoardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    filter_query: Optional[str]
    archived: bool
    project_id: int


class StoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str]
    status: str
    priority: Optional[str]
    points: int
    is_ready: bool
    order: Optional[int]
    project_id: int
    sprint_id: Optional[int]
    assignee_id: Optional[int]


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: ProjectCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project_service = ProjectService(db)
    return await project_service.create_project(request, owner_id=current_user.id)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project_service = ProjectService(db)
    return await project_service.get_project(project_id)


# Boards

@router.post("/{project_id}/boards", response_model=BoardResponse, status_code=status.HTTP_201_CREATED)
async def create_board(
    project_id: int,
    request: BoardCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project_service = ProjectService(db)
    return await project_service.create_board(project_id, request)


@router.get("/{project_id}/boards", response_model=List[BoardResponse])
async def get_project_boards(
    project_id: int,
    include_archived: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project_service = ProjectService(db)
    return await project_service.list_project_boards(project_id, include_archived)


@router.get("/boards/{board_id}", response_model=BoardResponse)
async def get_board(
    board_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project_service = ProjectService(db)
    return await project_service.get_board(board_id)


@router.put("/boards/{board_id}", response_model=BoardResponse)
async def update_board(
    board_id: int,
    request: BoardUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project_service = ProjectService(db)
    return await project_service.update_board(board_id, request)


@router.delete("/boards/{board_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_board(
    board_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a board that has no sprints"""

    project_service = ProjectService(db)
    await project_service.delete_board(board_id)


# Stories

@router.post("/{project_id}/stories", response_model=StoryResponse, status_code=status.HTTP_201_CREATED)
async def create_story(
    project_id: int,
    request: StoryCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a story in the project backlog"""

    project_service = ProjectService(db)
    return await project_service.create_story(project_id, request)


@router.get("/stories/{story_id}", response_model=StoryResponse)
async def get_story(
    story_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project_service = ProjectService(db)
    return await project_service.get_story(story_id)


@router.put("/stories/{story_id}", response_model=StoryResponse)
async def update_story(
    story_id: int,
    request: StoryUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    project_service = ProjectService(db)
    return await project_service.update_story(story_id, request)
