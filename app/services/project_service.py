from typing import List, Optional, Dict, Any
from datetime import datetime
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, Field

from ..core.exceptions import ConflictError
from ..models.client import Client
from ..models.project import Board, Project
from ..models.sprint import Story, StoryStatus
from ..utils.logging import get_logger
from .repository import Repository

logger = get_logger(__name__)


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    status: str = "Active"
    start_date: Optional[datetime] = None
    completion_date: Optional[datetime] = None
    total_budget: Decimal = Field(Decimal("0"), ge=0, max_digits=15, decimal_places=2)
    client_id: Optional[int] = None


class BoardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    filter_query: Optional[str] = None


class BoardUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    filter_query: Optional[str] = None
    archived: Optional[bool] = None


class StoryCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    points: int = Field(0, ge=0)
    priority: str = "Medium"
    is_ready: bool = False
    order: int = 0
    assignee_id: Optional[int] = None


class StoryUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = None
    status: Optional[StoryStatus] = None
    priority: Optional[str] = None
    is_ready: Optional[bool] = None
    order: Optional[int] = None
    assignee_id: Optional[int] = None


class ProjectService:
    """Projects, their boards and their stories."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = Repository(db)

    async def create_project(self, data: ProjectCreate, owner_id: Optional[int] = None) -> Project:
        try:
            if data.client_id is not None:
                await self.repo.get_or_raise(Client, data.client_id, "Client")

            project = Project(
                **data.model_dump(),
                used_budget=Decimal("0"),
                project_metadata={},
                owner_id=owner_id
            )
            self.db.add(project)
            await self.db.commit()
            await self.db.refresh(project)

            logger.info(f"Created project {project.id} '{project.name}'")
            return project

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to create project: {str(e)}")
            raise

    async def get_project(self, project_id: int) -> Project:
        return await self.repo.get_or_raise(Project, project_id, "Project")

    # Boards

    async def create_board(self, project_id: int, data: BoardCreate) -> Board:
        try:
            await self.repo.get_or_raise(Project, project_id, "Project")

            board = Board(**data.model_dump(), archived=False, project_id=project_id)
            self.db.add(board)
            await self.db.commit()
            await self.db.refresh(board)

            logger.info(f"Created board {board.id} on project {project_id}")
            return board

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to create board on project {project_id}: {str(e)}")
            raise

    async def get_board(self, board_id: int) -> Board:
        return await self.repo.get_or_raise(Board, board_id, "Board")

    async def list_project_boards(self, project_id: int, include_archived: bool = False) -> List[Board]:
        await self.repo.get_or_raise(Project, project_id, "Project")

        stmt = select(Board).where(Board.project_id == project_id)
        if not include_archived:
            stmt = stmt.where(Board.archived.is_(False))
        stmt = stmt.order_by(Board.id)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def update_board(self, board_id: int, patch: BoardUpdate) -> Board:
        try:
            board = await self.repo.get_or_raise(Board, board_id, "Board", lock=True)
            for field, value in patch.model_dump(exclude_unset=True).items():
                if field in ("name", "archived") and value is None:
                    continue
                setattr(board, field, value)

            await self.db.commit()
            await self.db.refresh(board)
            return board

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to update board {board_id}: {str(e)}")
            raise

    async def delete_board(self, board_id: int) -> None:
        """Delete a board that owns no sprints."""

        try:
            board = await self.repo.get_or_raise(Board, board_id, "Board", lock=True)

            sprint_count = await self.repo.count_board_sprints(board_id)
            if sprint_count > 0:
                raise ConflictError(
                    "Cannot delete board with associated sprints",
                    details={"board_id": board_id, "sprint_count": sprint_count}
                )

            await self.db.delete(board)
            await self.db.commit()

            logger.info(f"Deleted board {board_id}")

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to delete board {board_id}: {str(e)}")
            raise

    # Stories

    async def create_story(self, project_id: int, data: StoryCreate) -> Story:
        """Create a story in the project's backlog."""

        try:
            await self.repo.get_or_raise(Project, project_id, "Project")

            story = Story(
                **data.model_dump(),
                status=StoryStatus.TO_DO.value,
                project_id=project_id,
                sprint_id=None
            )
            self.db.add(story)
            await self.db.commit()
            await self.db.refresh(story)
            return story

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to create story on project {project_id}: {str(e)}")
            raise

    async def get_story(self, story_id: int) -> Story:
        return await self.repo.get_or_raise(Story, story_id, "Story")

    async def update_story(self, story_id: int, patch: StoryUpdate) -> Story:
        """Update story fields.

        Points are not patchable here: a linked sprint's committed points
        are only kept through sprint membership changes.
        """

        try:
            story = await self.repo.get_or_raise(Story, story_id, "Story", lock=True)
            changes: Dict[str, Any] = patch.model_dump(exclude_unset=True)

            for field, value in changes.items():
                if field in ("title", "status", "is_ready") and value is None:
                    continue
                if isinstance(value, StoryStatus):
                    value = value.value
                setattr(story, field, value)

            await self.db.commit()
            await self.db.refresh(story)
            return story

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to update story {story_id}: {str(e)}")
            raise
