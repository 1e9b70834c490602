from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...models.sprint import SprintStatus
from ...services.sprint_service import SprintService, SprintCreate, SprintUpdate, SprintProgress
from .projects import StoryResponse

router = APIRouter()


class SprintResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    goal: Optional[str]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    status: str
    is_locked: bool
    committed_points: int
    total_points: int
    completed_points: int
    retrospective: Optional[str]
    sprint_metadata: Optional[dict] = Field(
        None,
        validation_alias=AliasChoices("sprint_metadata", "metadata"),
        serialization_alias="metadata"
    )
    board_id: int
    owner_id: Optional[int]


class SprintDetailResponse(SprintResponse):
    stories: List[StoryResponse] = []


class StartSprintRequest(BaseModel):
    goal: Optional[str] = None
    end_date: Optional[datetime] = None


class CompleteSprintRequest(BaseModel):
    move_unfinished_to_backlog: bool = False
    retrospective_notes: Optional[str] = None


class CancelSprintRequest(BaseModel):
    move_unfinished_to_backlog: bool = True
    reason: Optional[str] = None


class StoryIdsRequest(BaseModel):
    story_ids: List[int]


@router.post("/board/{board_id}", response_model=SprintResponse, status_code=status.HTTP_201_CREATED)
async def create_sprint(
    board_id: int,
    request: SprintCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a sprint in Planning status on a board"""

    sprint_service = SprintService(db)
    return await sprint_service.create_sprint(board_id, request, creator_id=current_user.id)


@router.get("/board/{board_id}", response_model=List[SprintResponse])
async def get_board_sprints(
    board_id: int,
    status: Optional[SprintStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get sprints of a board, newest first"""

    sprint_service = SprintService(db)
    return await sprint_service.list_board_sprints(board_id, status)


@router.get("/board/{board_id}/backlog", response_model=List[StoryResponse])
async def get_board_backlog(
    board_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get the stories of the board's project that are not in any sprint"""

    sprint_service = SprintService(db)
    return await sprint_service.get_board_backlog(board_id)


@router.get("/project/{project_id}", response_model=List[SprintResponse])
async def get_project_sprints(
    project_id: int,
    status: Optional[SprintStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get sprints across all boards of a project"""

    sprint_service = SprintService(db)
    return await sprint_service.list_project_sprints(project_id, status)


@router.get("/{sprint_id}", response_model=SprintDetailResponse)
async def get_sprint(
    sprint_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Get sprint details with its stories"""

    sprint_service = SprintService(db)
    sprint = await sprint_service.get_sprint(sprint_id)
    stories = await sprint_service.get_sprint_stories(sprint_id)

    response = SprintDetailResponse.model_validate(sprint)
    response.stories = [StoryResponse.model_validate(story) for story in stories]
    return response


@router.put("/{sprint_id}", response_model=SprintResponse)
async def update_sprint(
    sprint_id: int,
    request: SprintUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Update sprint fields; status changes follow the lifecycle rules"""

    sprint_service = SprintService(db)
    return await sprint_service.update_sprint(sprint_id, request)


@router.delete("/{sprint_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_sprint(
    sprint_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a sprint in Planning status"""

    sprint_service = SprintService(db)
    await sprint_service.delete_sprint(sprint_id)


@router.post("/{sprint_id}/start", response_model=SprintResponse)
async def start_sprint(
    sprint_id: int,
    request: StartSprintRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    sprint_service = SprintService(db)
    return await sprint_service.start_sprint(sprint_id, request.goal, request.end_date)


@router.post("/{sprint_id}/complete", response_model=SprintResponse)
async def complete_sprint(
    sprint_id: int,
    request: CompleteSprintRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    sprint_service = SprintService(db)
    return await sprint_service.complete_sprint(
        sprint_id,
        move_unfinished_to_backlog=request.move_unfinished_to_backlog,
        retrospective_notes=request.retrospective_notes
    )


@router.post("/{sprint_id}/cancel", response_model=SprintResponse)
async def cancel_sprint(
    sprint_id: int,
    request: CancelSprintRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    sprint_service = SprintService(db)
    return await sprint_service.cancel_sprint(
        sprint_id,
        move_unfinished_to_backlog=request.move_unfinished_to_backlog,
        reason=request.reason
    )


@router.post("/{sprint_id}/stories", response_model=SprintResponse)
async def add_stories(
    sprint_id: int,
    request: StoryIdsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Add ready backlog stories to an unlocked sprint"""

    sprint_service = SprintService(db)
    return await sprint_service.add_stories_to_sprint(sprint_id, request.story_ids)


@router.delete("/{sprint_id}/stories", response_model=SprintResponse)
async def remove_stories(
    sprint_id: int,
    request: StoryIdsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Send stories of an unlocked sprint back to the backlog"""

    sprint_service = SprintService(db)
    await sprint_service.remove_stories_from_sprint(sprint_id, request.story_ids)
    return await sprint_service.get_sprint(sprint_id)


@router.get("/{sprint_id}/progress", response_model=SprintProgress)
async def get_sprint_progress(
    sprint_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Point-weighted sprint progress"""

    sprint_service = SprintService(db)
    return await sprint_service.calculate_progress(sprint_id)
