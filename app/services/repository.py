"""
Explicit query helpers shared by the services.

Every method names exactly the rows and columns it needs; nothing relies on
relationship loading. Rows that are read and then written back inside a
transaction are fetched with ``lock=True`` (``SELECT ... FOR UPDATE``) so
concurrent requests serialize on the database row lock.
"""
from typing import List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select, update, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..models.base import BaseModel
from ..models.project import Board, Project
from ..models.sprint import Sprint, SprintStatus, Story
from ..models.budget import Expense
from ..models.task import Task

ModelT = TypeVar("ModelT", bound=BaseModel)


class Repository:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, model: Type[ModelT], entity_id: int, lock: bool = False) -> Optional[ModelT]:
        stmt = select(model).where(model.id == entity_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_raise(
        self,
        model: Type[ModelT],
        entity_id: int,
        entity: str,
        lock: bool = False
    ) -> ModelT:
        instance = await self.get(model, entity_id, lock=lock)
        if instance is None:
            raise NotFoundError(entity, entity_id)
        return instance

    # Stories

    async def sprint_stories(self, sprint_id: int) -> List[Story]:
        stmt = select(Story).where(Story.sprint_id == sprint_id).order_by(Story.order, Story.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def stories_by_ids(self, story_ids: Sequence[int], lock: bool = False) -> List[Story]:
        stmt = select(Story).where(Story.id.in_(story_ids)).order_by(Story.id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def set_story_sprint(self, story_ids: Sequence[int], sprint_id: Optional[int]) -> None:
        """Bulk-assign stories to a sprint, or back to the backlog with ``None``."""
        if not story_ids:
            return
        await self.db.execute(
            update(Story)
            .where(Story.id.in_(story_ids))
            .values(sprint_id=sprint_id)
            .execution_options(synchronize_session="evaluate")
        )

    async def detach_sprint_stories(self, sprint_id: int) -> None:
        await self.db.execute(
            update(Story)
            .where(Story.sprint_id == sprint_id)
            .values(sprint_id=None)
            .execution_options(synchronize_session="evaluate")
        )

    async def backlog_stories(self, project_id: int) -> List[Story]:
        stmt = (
            select(Story)
            .where(Story.project_id == project_id, Story.sprint_id.is_(None))
            .order_by(Story.order, Story.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def story_tasks(self, story_ids: Sequence[int]) -> List[Task]:
        if not story_ids:
            return []
        stmt = select(Task).where(Task.story_id.in_(story_ids)).order_by(Task.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # Sprints and boards

    async def board_project_id(self, board_id: int) -> Optional[int]:
        result = await self.db.execute(select(Board.project_id).where(Board.id == board_id))
        return result.scalar_one_or_none()

    async def project_board_ids(self, project_id: int) -> List[int]:
        result = await self.db.execute(select(Board.id).where(Board.project_id == project_id))
        return list(result.scalars().all())

    async def recent_completed_sprints(
        self,
        board_ids: Sequence[int],
        exclude_sprint_id: int,
        limit: int
    ) -> List[Sprint]:
        """Most recently ended completed sprints on the given boards."""
        if not board_ids or limit <= 0:
            return []
        stmt = (
            select(Sprint)
            .where(
                Sprint.board_id.in_(board_ids),
                Sprint.id != exclude_sprint_id,
                Sprint.status == SprintStatus.COMPLETED.value
            )
            .order_by(desc(Sprint.end_date), desc(Sprint.id))
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_board_sprints(self, board_id: int) -> int:
        result = await self.db.execute(select(func.count(Sprint.id)).where(Sprint.board_id == board_id))
        return result.scalar() or 0

    # Budget

    async def count_item_expenses(self, budget_item_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Expense.id)).where(Expense.budget_item_id == budget_item_id)
        )
        return result.scalar() or 0

    # Clients

    async def count_client_projects(self, client_id: int) -> int:
        result = await self.db.execute(select(func.count(Project.id)).where(Project.client_id == client_id))
        return result.scalar() or 0
