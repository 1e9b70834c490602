from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...models.task import TaskPriority, TaskStatus, TaskType
from ...services.task_service import TaskService, TaskCreate, TaskUpdate

router = APIRouter()


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str]
    status: str
    priority: str
    type: str
    start_date: Optional[datetime]
    due_date: Optional[datetime]
    completed_date: Optional[datetime]
    estimated_hours: Decimal
    actual_hours: Decimal
    original_estimate: int
    remaining_estimate: int
    project_id: int
    story_id: Optional[int]
    assignee_id: Optional[int]
    reporter_id: Optional[int]


class AssignTaskRequest(BaseModel):
    assignee_id: Optional[int] = None


@router.get("", response_model=List[TaskResponse])
async def get_tasks(
    project_id: Optional[int] = None,
    story_id: Optional[int] = None,
    sprint_id: Optional[int] = None,
    assignee_id: Optional[int] = None,
    status: Optional[TaskStatus] = None,
    priority: Optional[TaskPriority] = None,
    task_type: Optional[TaskType] = None,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task_service = TaskService(db)
    return await task_service.list_tasks(
        project_id=project_id,
        story_id=story_id,
        sprint_id=sprint_id,
        assignee_id=assignee_id,
        status=status.value if status else None,
        priority=priority.value if priority else None,
        task_type=task_type.value if task_type else None,
        limit=limit,
        offset=offset
    )


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    request: TaskCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a task on a project or under one of its stories"""

    task_service = TaskService(db)
    return await task_service.create_task(request, reporter_id=current_user.id)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task_service = TaskService(db)
    return await task_service.get_task(task_id)


@router.put("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: int,
    request: TaskUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task_service = TaskService(db)
    return await task_service.update_task(task_id, request)


@router.post("/{task_id}/assign", response_model=TaskResponse)
async def assign_task(
    task_id: int,
    request: AssignTaskRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task_service = TaskService(db)
    return await task_service.assign_task(task_id, request.assignee_id)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    task_service = TaskService(db)
    await task_service.delete_task(task_id)
