from typing import Dict, FrozenSet, List, Optional, Any
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, Field

from ..core.exceptions import InvalidStateError, ValidationError
from ..models.project import Project
from ..models.sprint import Story
from ..models.task import Task, TaskPriority, TaskStatus, TaskType, FINISHED_TASK_STATUSES
from ..models.user import User
from ..utils.logging import get_logger
from .repository import Repository

logger = get_logger(__name__)

# Status workflow: current status -> statuses it may move to
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    TaskStatus.CREATED.value: frozenset({TaskStatus.TO_DO.value}),
    TaskStatus.TO_DO.value: frozenset({
        TaskStatus.IN_PROGRESS.value, TaskStatus.BLOCKED.value, TaskStatus.DONE.value
    }),
    TaskStatus.IN_PROGRESS.value: frozenset({
        TaskStatus.IN_REVIEW.value, TaskStatus.BLOCKED.value, TaskStatus.DONE.value
    }),
    TaskStatus.IN_REVIEW.value: frozenset({TaskStatus.DONE.value, TaskStatus.BLOCKED.value}),
    TaskStatus.DONE.value: frozenset({
        TaskStatus.IN_PROGRESS.value, TaskStatus.BLOCKED.value, TaskStatus.CLOSED.value
    }),
    TaskStatus.BLOCKED.value: frozenset({
        TaskStatus.TO_DO.value, TaskStatus.IN_PROGRESS.value, TaskStatus.IN_REVIEW.value
    }),
    TaskStatus.CLOSED.value: frozenset(),
}


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    project_id: Optional[int] = None
    story_id: Optional[int] = None
    assignee_id: Optional[int] = None
    priority: Optional[TaskPriority] = None
    type: TaskType = TaskType.TASK
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    estimated_hours: Decimal = Field(Decimal("0"), ge=0, max_digits=8, decimal_places=2)
    original_estimate: int = Field(0, ge=0)
    remaining_estimate: Optional[int] = Field(None, ge=0)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = None
    story_id: Optional[int] = None
    assignee_id: Optional[int] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    type: Optional[TaskType] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[Decimal] = Field(None, ge=0, max_digits=8, decimal_places=2)
    actual_hours: Optional[Decimal] = Field(None, ge=0, max_digits=8, decimal_places=2)
    remaining_estimate: Optional[int] = Field(None, ge=0)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _validate_dates(start_date: Optional[datetime], due_date: Optional[datetime]) -> None:
    if start_date is not None and due_date is not None and _as_utc(due_date) <= _as_utc(start_date):
        raise ValidationError("Due date must be after start date")


class TaskService:
    """Tasks break stories down into assignable work.

    Status changes follow ``ALLOWED_TRANSITIONS``; entering In Progress
    requires an assignee and stamps the start date, finishing stamps the
    completion date and clears the remaining estimate.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = Repository(db)

    async def get_task(self, task_id: int) -> Task:
        return await self.repo.get_or_raise(Task, task_id, "Task")

    async def list_tasks(
        self,
        project_id: Optional[int] = None,
        story_id: Optional[int] = None,
        sprint_id: Optional[int] = None,
        assignee_id: Optional[int] = None,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        task_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Task]:
        stmt = select(Task)
        if project_id is not None:
            stmt = stmt.where(Task.project_id == project_id)
        if story_id is not None:
            stmt = stmt.where(Task.story_id == story_id)
        if sprint_id is not None:
            stmt = stmt.join(Story, Story.id == Task.story_id).where(Story.sprint_id == sprint_id)
        if assignee_id is not None:
            stmt = stmt.where(Task.assignee_id == assignee_id)
        if status:
            stmt = stmt.where(Task.status == status)
        if priority:
            stmt = stmt.where(Task.priority == priority)
        if task_type:
            stmt = stmt.where(Task.type == task_type)
        stmt = stmt.order_by(Task.id.desc()).limit(limit).offset(offset)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_task(self, data: TaskCreate, reporter_id: Optional[int] = None) -> Task:
        """Create a task on a project, optionally under one of its stories.

        A task created under a story inherits the story's project.
        """

        try:
            project_id = data.project_id
            if data.story_id is not None:
                story = await self.repo.get_or_raise(Story, data.story_id, "Story")
                if project_id is None:
                    project_id = story.project_id
                elif story.project_id != project_id:
                    raise ValidationError(
                        "Story does not belong to this project",
                        details={"story_id": data.story_id, "project_id": project_id}
                    )
            elif project_id is None:
                raise ValidationError("Project ID is required when story is not provided")

            await self.repo.get_or_raise(Project, project_id, "Project")
            if data.assignee_id is not None:
                await self.repo.get_or_raise(User, data.assignee_id, "User")
            _validate_dates(data.start_date, data.due_date)

            priority = data.priority
            if priority is None:
                priority = TaskPriority.HIGH if data.type == TaskType.BUG else TaskPriority.MEDIUM
            remaining = data.remaining_estimate
            if not remaining:
                remaining = data.original_estimate

            task = Task(
                **data.model_dump(exclude={"project_id", "priority", "type", "remaining_estimate"}),
                project_id=project_id,
                status=TaskStatus.CREATED.value,
                priority=priority.value,
                type=data.type.value,
                remaining_estimate=remaining,
                actual_hours=Decimal("0"),
                reporter_id=reporter_id
            )
            self.db.add(task)
            await self.db.commit()
            await self.db.refresh(task)

            logger.info(f"Created task {task.id} on project {project_id}")
            return task

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to create task: {str(e)}")
            raise

    async def update_task(self, task_id: int, patch: TaskUpdate) -> Task:
        try:
            task = await self.repo.get_or_raise(Task, task_id, "Task", lock=True)
            changes: Dict[str, Any] = patch.model_dump(exclude_unset=True)

            new_status = changes.pop("status", None)
            if new_status is not None:
                new_status = TaskStatus(new_status).value
            if new_status is not None and new_status != task.status:
                assignee_id = changes.get("assignee_id", task.assignee_id)
                self._apply_status_change(task, new_status, assignee_id)

            if changes.get("story_id") is not None:
                story = await self.repo.get_or_raise(Story, changes["story_id"], "Story")
                if story.project_id != task.project_id:
                    raise ValidationError(
                        "Story does not belong to the task's project",
                        details={"story_id": story.id, "project_id": task.project_id}
                    )
            if changes.get("assignee_id") is not None:
                await self.repo.get_or_raise(User, changes["assignee_id"], "User")

            for field, value in changes.items():
                if field in ("title", "priority", "type", "estimated_hours", "actual_hours") and value is None:
                    continue
                if field in ("priority", "type"):
                    value = value.value
                setattr(task, field, value)

            _validate_dates(task.start_date, task.due_date)

            await self.db.commit()
            await self.db.refresh(task)
            return task

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to update task {task_id}: {str(e)}")
            raise

    async def assign_task(self, task_id: int, assignee_id: Optional[int]) -> Task:
        """Assign the task to a user, or unassign it with ``None``."""

        try:
            task = await self.repo.get_or_raise(Task, task_id, "Task", lock=True)
            if assignee_id is not None:
                await self.repo.get_or_raise(User, assignee_id, "User")
            task.assignee_id = assignee_id

            await self.db.commit()
            await self.db.refresh(task)

            logger.info(f"Task {task_id} assigned to {assignee_id}")
            return task

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to assign task {task_id}: {str(e)}")
            raise

    async def delete_task(self, task_id: int) -> None:
        try:
            task = await self.repo.get_or_raise(Task, task_id, "Task", lock=True)
            await self.db.delete(task)
            await self.db.commit()

            logger.info(f"Deleted task {task_id}")

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to delete task {task_id}: {str(e)}")
            raise

    def _apply_status_change(self, task: Task, target: str, assignee_id: Optional[int]) -> None:
        current = task.status
        if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
            raise InvalidStateError(
                f"Invalid status transition from {current} to {target}",
                details={"task_id": task.id, "status": current, "target": target}
            )

        now = datetime.now(timezone.utc)
        if target == TaskStatus.IN_PROGRESS.value:
            if assignee_id is None:
                raise ValidationError("Tasks must have an assignee before moving to In Progress")
            if task.start_date is None:
                task.start_date = now
        elif target in FINISHED_TASK_STATUSES:
            if task.completed_date is None:
                task.completed_date = now
            task.remaining_estimate = 0

        task.status = target
