from __future__ import annotations

from typing import (
    Any,
    Dict,
    List,
    Optional,
    Sequence,
)
from datetime import datetime, timedelta, timezone
import logging
import math

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from pydantic import BaseModel, Field

from ..config import settings
from ..core.exceptions import InvalidStateError, NotFoundError, ValidationError
from ..models.project import Board, Project
from ..models.sprint import Sprint, SprintStatus, Story, StoryStatus
from ..models.task import FINISHED_TASK_STATUSES
from .repository import Repository

# Type aliases
BoardId = int
ProjectId = int
SprintId = int
StoryId = int
UserId = int
StoryPoints = int

# Share of sprint progress carried by stories when their tasks are counted too
STORY_PROGRESS_WEIGHT = 0.7


# Pydantic models
class SprintCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    goal: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    owner_id: Optional[UserId] = None


class SprintUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    goal: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    retrospective: Optional[str] = None
    owner_id: Optional[UserId] = None
    # Plain string so unknown values reach the transition check
    status: Optional[str] = None


class SprintProgress(BaseModel):
    sprint_id: SprintId
    status: str
    story_count: int
    completed_story_count: int
    task_count: int = 0
    completed_task_count: int = 0
    total_points: StoryPoints
    completed_points: StoryPoints
    progress_percentage: int


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _sum_points(stories: Sequence[Story]) -> StoryPoints:
    return sum(story.points or 0 for story in stories)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SprintService:
    """
    Sprint lifecycle: status transitions, story membership and the point
    totals derived from it.

    Every mutating method runs as one unit of work on the injected session:
    it commits on success and rolls back on any error before re-raising.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.repo = Repository(db)
        self._logger = logging.getLogger(__name__)

    # Queries

    async def get_sprint(self, sprint_id: SprintId) -> Sprint:
        return await self.repo.get_or_raise(Sprint, sprint_id, "Sprint")

    async def get_sprint_stories(self, sprint_id: SprintId) -> List[Story]:
        await self.get_sprint(sprint_id)
        return await self.repo.sprint_stories(sprint_id)

    async def list_board_sprints(
        self,
        board_id: BoardId,
        status: Optional[SprintStatus] = None
    ) -> List[Sprint]:
        await self.repo.get_or_raise(Board, board_id, "Board")
        return await self._list_sprints([board_id], status)

    async def list_project_sprints(
        self,
        project_id: ProjectId,
        status: Optional[SprintStatus] = None
    ) -> List[Sprint]:
        await self.repo.get_or_raise(Project, project_id, "Project")
        board_ids = await self.repo.project_board_ids(project_id)
        return await self._list_sprints(board_ids, status)

    async def get_board_backlog(self, board_id: BoardId) -> List[Story]:
        """Stories of the board's project that are not in any sprint."""
        board = await self.repo.get_or_raise(Board, board_id, "Board")
        return await self.repo.backlog_stories(board.project_id)

    # Lifecycle

    async def create_sprint(
        self,
        board_id: BoardId,
        data: SprintCreate,
        creator_id: Optional[UserId] = None
    ) -> Sprint:
        """Create a sprint in Planning on the given board."""

        self._logger.info("Creating sprint '%s' on board %d", data.name, board_id)

        try:
            await self.repo.get_or_raise(Board, board_id, "Board")

            start_date = _as_utc(data.start_date) if data.start_date else datetime.now(timezone.utc)
            if data.end_date:
                end_date = _as_utc(data.end_date)
            else:
                end_date = start_date + timedelta(days=settings.default_sprint_length_days)
            self._validate_sprint_dates(start_date, end_date)

            sprint = Sprint(
                name=data.name,
                goal=data.goal,
                start_date=start_date,
                end_date=end_date,
                status=SprintStatus.PLANNING.value,
                is_locked=False,
                committed_points=0,
                total_points=0,
                completed_points=0,
                sprint_metadata={},
                board_id=board_id,
                owner_id=data.owner_id or creator_id
            )
            self.db.add(sprint)

            await self.db.commit()
            await self.db.refresh(sprint)

            self._logger.info("Created sprint %d", sprint.id)
            return sprint

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to create sprint on board %d: %s", board_id, str(e))
            raise

    async def start_sprint(
        self,
        sprint_id: SprintId,
        goal: Optional[str],
        end_date: Optional[datetime]
    ) -> Sprint:
        """Planning -> Active. Locks the sprint and commits its current points."""

        try:
            if not goal or end_date is None:
                raise ValidationError("Sprint goal and end date are required")

            sprint = await self.repo.get_or_raise(Sprint, sprint_id, "Sprint", lock=True)

            if sprint.status != SprintStatus.PLANNING.value:
                raise InvalidStateError(
                    "Only sprints in Planning status can be started",
                    details={"sprint_id": sprint_id, "status": sprint.status}
                )

            now = datetime.now(timezone.utc)
            end_date = _as_utc(end_date)
            self._validate_sprint_dates(now, end_date)

            stories = await self.repo.sprint_stories(sprint_id)
            committed = _sum_points(stories)

            sprint.status = SprintStatus.ACTIVE.value
            sprint.goal = goal
            sprint.start_date = now
            sprint.end_date = end_date
            sprint.is_locked = True
            sprint.committed_points = committed
            sprint.total_points = committed

            await self.db.commit()
            await self.db.refresh(sprint)

            self._logger.info("Started sprint %d with %d committed points", sprint_id, committed)
            return sprint

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to start sprint %d: %s", sprint_id, str(e))
            raise

    async def complete_sprint(
        self,
        sprint_id: SprintId,
        move_unfinished_to_backlog: bool = False,
        retrospective_notes: Optional[str] = None
    ) -> Sprint:
        """Active -> Completed. Records completed points and refreshes project velocity."""

        try:
            sprint = await self.repo.get_or_raise(Sprint, sprint_id, "Sprint", lock=True)

            if sprint.status != SprintStatus.ACTIVE.value:
                raise InvalidStateError(
                    "Only active sprints can be completed",
                    details={"sprint_id": sprint_id, "status": sprint.status}
                )

            stories = await self.repo.sprint_stories(sprint_id)
            done = [s for s in stories if s.status == StoryStatus.DONE.value]
            completed_points = _sum_points(done)

            if move_unfinished_to_backlog:
                unfinished_ids = [s.id for s in stories if s.status != StoryStatus.DONE.value]
                await self.repo.set_story_sprint(unfinished_ids, None)
                if unfinished_ids:
                    self._logger.info(
                        "Moved %d unfinished stories of sprint %d to backlog",
                        len(unfinished_ids), sprint_id
                    )

            sprint.status = SprintStatus.COMPLETED.value
            sprint.completed_points = completed_points
            sprint.retrospective = retrospective_notes or sprint.retrospective
            sprint.is_locked = False

            await self._update_project_velocity(sprint, completed_points)

            await self.db.commit()
            await self.db.refresh(sprint)

            self._logger.info("Completed sprint %d with %d points done", sprint_id, completed_points)
            return sprint

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to complete sprint %d: %s", sprint_id, str(e))
            raise

    async def cancel_sprint(
        self,
        sprint_id: SprintId,
        move_unfinished_to_backlog: bool = True,
        reason: Optional[str] = None
    ) -> Sprint:
        """Planning|Active -> Cancelled."""

        try:
            sprint = await self.repo.get_or_raise(Sprint, sprint_id, "Sprint", lock=True)

            if sprint.status not in (SprintStatus.PLANNING.value, SprintStatus.ACTIVE.value):
                raise InvalidStateError(
                    "Only sprints in Planning or Active status can be cancelled",
                    details={"sprint_id": sprint_id, "status": sprint.status}
                )

            if move_unfinished_to_backlog:
                await self.repo.detach_sprint_stories(sprint_id)

            meta = sprint.meta
            meta.cancel_reason = reason or "No reason provided"
            meta.cancelled_at = datetime.now(timezone.utc)
            sprint.meta = meta

            sprint.status = SprintStatus.CANCELLED.value
            sprint.is_locked = False

            await self.db.commit()
            await self.db.refresh(sprint)

            self._logger.info("Cancelled sprint %d: %s", sprint_id, meta.cancel_reason)
            return sprint

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to cancel sprint %d: %s", sprint_id, str(e))
            raise

    async def update_sprint(self, sprint_id: SprintId, patch: SprintUpdate) -> Sprint:
        """Generic field update; status changes go through the transition rules."""

        try:
            sprint = await self.repo.get_or_raise(Sprint, sprint_id, "Sprint", lock=True)
            changes: Dict[str, Any] = patch.model_dump(exclude_unset=True)

            new_status = changes.pop("status", None)
            if new_status is not None and new_status != sprint.status:
                self._apply_status_change(sprint, new_status)

            if changes.get("name") is None:
                changes.pop("name", None)
            for field in ("start_date", "end_date"):
                if changes.get(field) is not None:
                    changes[field] = _as_utc(changes[field])

            for field, value in changes.items():
                setattr(sprint, field, value)

            if sprint.start_date is not None and sprint.end_date is not None:
                self._validate_sprint_dates(_as_utc(sprint.start_date), _as_utc(sprint.end_date))

            await self.db.commit()
            await self.db.refresh(sprint)

            self._logger.info("Updated sprint %d", sprint_id)
            return sprint

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to update sprint %d: %s", sprint_id, str(e))
            raise

    async def delete_sprint(self, sprint_id: SprintId) -> None:
        """Delete a Planning sprint; its stories go back to the backlog."""

        try:
            sprint = await self.repo.get_or_raise(Sprint, sprint_id, "Sprint", lock=True)

            if sprint.status != SprintStatus.PLANNING.value:
                raise InvalidStateError(
                    "Only sprints in Planning status can be deleted",
                    details={"sprint_id": sprint_id, "status": sprint.status}
                )

            await self.repo.detach_sprint_stories(sprint_id)
            await self.db.delete(sprint)

            await self.db.commit()
            self._logger.info("Deleted sprint %d", sprint_id)

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to delete sprint %d: %s", sprint_id, str(e))
            raise

    # Membership

    async def add_stories_to_sprint(self, sprint_id: SprintId, story_ids: Sequence[StoryId]) -> Sprint:
        """Link ready backlog stories to an unlocked sprint."""

        try:
            requested = list(dict.fromkeys(story_ids or []))
            if not requested:
                raise ValidationError("Please provide at least one story id")

            sprint = await self.repo.get_or_raise(Sprint, sprint_id, "Sprint", lock=True)

            if sprint.is_locked:
                raise InvalidStateError(
                    "Cannot add stories to a locked sprint",
                    details={"sprint_id": sprint_id}
                )
            self._ensure_not_closed(sprint, "add stories to")

            stories = await self.repo.stories_by_ids(requested, lock=True)
            missing = sorted(set(requested) - {s.id for s in stories})
            if missing:
                raise NotFoundError("Story", missing)

            not_ready = [s.id for s in stories if not s.is_ready]
            if not_ready:
                raise ValidationError(
                    f"All stories must be marked as ready before adding to a sprint; not ready: {not_ready}",
                    details={"not_ready_stories": not_ready}
                )

            project_id = await self.repo.board_project_id(sprint.board_id)
            foreign = [s.id for s in stories if s.project_id != project_id]
            if foreign:
                raise ValidationError(
                    f"Stories do not belong to the sprint's project: {foreign}",
                    details={"foreign_stories": foreign}
                )

            elsewhere = [s.id for s in stories if s.sprint_id is not None and s.sprint_id != sprint.id]
            if elsewhere:
                raise ValidationError(
                    f"Stories are already assigned to another sprint: {elsewhere}",
                    details={"assigned_stories": elsewhere}
                )

            # Stories already linked here are counted once
            to_add = [s for s in stories if s.sprint_id != sprint.id]
            await self.repo.set_story_sprint([s.id for s in to_add], sprint.id)

            sprint.committed_points = (sprint.committed_points or 0) + _sum_points(to_add)
            sprint.total_points = sprint.committed_points

            await self.db.commit()
            await self.db.refresh(sprint)

            self._logger.info("Added %d stories to sprint %d", len(to_add), sprint_id)
            return sprint

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to add stories to sprint %d: %s", sprint_id, str(e))
            raise

    async def remove_stories_from_sprint(self, sprint_id: SprintId, story_ids: Sequence[StoryId]) -> None:
        """Send the named stories of an unlocked sprint back to the backlog."""

        try:
            sprint = await self.repo.get_or_raise(Sprint, sprint_id, "Sprint", lock=True)

            if sprint.is_locked:
                raise InvalidStateError(
                    "Cannot remove stories from a locked sprint",
                    details={"sprint_id": sprint_id}
                )
            self._ensure_not_closed(sprint, "remove stories from")

            stories = await self.repo.stories_by_ids(list(story_ids or []), lock=True)
            linked = [s for s in stories if s.sprint_id == sprint.id]
            await self.repo.set_story_sprint([s.id for s in linked], None)

            sprint.committed_points = max(0, (sprint.committed_points or 0) - _sum_points(linked))
            sprint.total_points = sprint.committed_points

            await self.db.commit()
            self._logger.info("Removed %d stories from sprint %d", len(linked), sprint_id)

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Failed to remove stories from sprint %d: %s", sprint_id, str(e))
            raise

    # Progress

    async def calculate_progress(self, sprint_id: SprintId) -> SprintProgress:
        """Completion of the sprint's stories, blended with their tasks.

        Story progress is point weighted, or counted when no story carries
        points. When the stories have tasks, story progress weighs
        ``STORY_PROGRESS_WEIGHT`` and finished tasks make up the rest. While
        the sprint is Active the result is written back to ``completed_points``.
        """

        try:
            sprint = await self.repo.get_or_raise(Sprint, sprint_id, "Sprint", lock=True)
            stories = await self.repo.sprint_stories(sprint_id)
            done = [s for s in stories if s.status == StoryStatus.DONE.value]

            tasks = await self.repo.story_tasks([s.id for s in stories])
            finished_tasks = [t for t in tasks if t.status in FINISHED_TASK_STATUSES]

            total = _sum_points(stories)
            if not stories:
                progress = 0.0
            elif total > 0:
                progress = _sum_points(done) / total * 100
            else:
                progress = len(done) / len(stories) * 100
            if tasks:
                task_progress = len(finished_tasks) / len(tasks) * 100
                progress = progress * STORY_PROGRESS_WEIGHT + task_progress * (1 - STORY_PROGRESS_WEIGHT)
            percentage = _round_half_up(progress)

            if sprint.status == SprintStatus.ACTIVE.value:
                sprint.completed_points = _round_half_up(percentage / 100 * (sprint.total_points or 0))

            await self.db.commit()
            await self.db.refresh(sprint)

            return SprintProgress(
                sprint_id=sprint.id,
                status=sprint.status,
                story_count=len(stories),
                completed_story_count=len(done),
                task_count=len(tasks),
                completed_task_count=len(finished_tasks),
                total_points=sprint.total_points or 0,
                completed_points=sprint.completed_points or 0,
                progress_percentage=percentage
            )

        except Exception as e:
            await self.db.rollback()
            self._logger.error("Progress calculation failed for sprint %d: %s", sprint_id, str(e))
            raise

    # Private methods

    async def _list_sprints(
        self,
        board_ids: Sequence[BoardId],
        status: Optional[SprintStatus]
    ) -> List[Sprint]:
        if not board_ids:
            return []

        stmt = select(Sprint).where(Sprint.board_id.in_(board_ids))
        if status is not None:
            stmt = stmt.where(Sprint.status == SprintStatus(status).value)
        stmt = stmt.order_by(desc(Sprint.start_date), desc(Sprint.id))

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    def _apply_status_change(self, sprint: Sprint, target: str) -> None:
        """Status rules of the generic update path."""

        current = sprint.status

        if target == SprintStatus.ACTIVE.value:
            if current != SprintStatus.PLANNING.value:
                raise InvalidStateError(
                    "Sprint can only be activated from Planning status",
                    details={"sprint_id": sprint.id, "status": current}
                )
            sprint.is_locked = True
        elif target == SprintStatus.COMPLETED.value:
            if current != SprintStatus.ACTIVE.value:
                raise InvalidStateError(
                    "Sprint can only be completed from Active status",
                    details={"sprint_id": sprint.id, "status": current}
                )
            sprint.is_locked = False
        elif target == SprintStatus.CANCELLED.value:
            sprint.is_locked = False
        else:
            raise ValidationError(
                f"Invalid sprint status: {target}",
                details={"allowed": [s.value for s in SprintStatus if s != SprintStatus.PLANNING]}
            )

        sprint.status = target

    def _ensure_not_closed(self, sprint: Sprint, action: str) -> None:
        if sprint.status in (SprintStatus.COMPLETED.value, SprintStatus.CANCELLED.value):
            raise InvalidStateError(
                f"Cannot {action} a {sprint.status.lower()} sprint",
                details={"sprint_id": sprint.id, "status": sprint.status}
            )

    def _validate_sprint_dates(self, start_date: datetime, end_date: datetime) -> None:
        if end_date <= start_date:
            raise ValidationError("End date must be after start date")

    async def _update_project_velocity(self, sprint: Sprint, completed_points: StoryPoints) -> None:
        """Trailing velocity: recent completed sprints of the project plus this one."""

        project_id = await self.repo.board_project_id(sprint.board_id)
        if project_id is None:
            return

        board_ids = await self.repo.project_board_ids(project_id)
        previous = await self.repo.recent_completed_sprints(
            board_ids, sprint.id, settings.velocity_window
        )

        total = sum(s.completed_points or 0 for s in previous) + completed_points
        velocity = _round_half_up(total / (len(previous) + 1))

        project = await self.repo.get(Project, project_id, lock=True)
        if project is None:
            return

        meta = project.meta
        meta.velocity = velocity
        project.meta = meta

        self._logger.info(
            "Project %d velocity %d over %d sprints", project_id, velocity, len(previous) + 1
        )
