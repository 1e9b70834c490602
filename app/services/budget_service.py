from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from pydantic import BaseModel, Field

from ..core.exceptions import ConflictError
from ..models.budget import BudgetItem, BudgetItemStatus
from ..models.project import Project
from ..utils.logging import get_logger
from .repository import Repository

logger = get_logger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


class BudgetItemCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    category: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: BudgetItemStatus = BudgetItemStatus.ACTIVE
    priority: str = "Medium"
    notes: Optional[str] = None


class BudgetItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[BudgetItemStatus] = None
    priority: Optional[str] = None
    notes: Optional[str] = None


class BudgetGroup(BaseModel):
    key: str
    total_planned: Decimal
    total_used: Decimal


class BudgetProjectTotals(BaseModel):
    id: int
    name: str
    total_budget: Decimal
    used_budget: Decimal


class BudgetSummary(BaseModel):
    project: BudgetProjectTotals
    by_category: List[BudgetGroup]
    by_status: List[BudgetGroup]


class BudgetService:
    """Keeps ``Project.total_budget`` in step with the project's budget items.

    The total is adjusted by deltas on every create/update/delete rather
    than recomputed, with the project row locked for the adjustment.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = Repository(db)

    async def get_budget_item(self, budget_item_id: int) -> BudgetItem:
        return await self.repo.get_or_raise(BudgetItem, budget_item_id, "Budget item")

    async def list_project_budget_items(
        self,
        project_id: int,
        category: Optional[str] = None,
        status: Optional[str] = None
    ) -> List[BudgetItem]:
        await self.repo.get_or_raise(Project, project_id, "Project")

        stmt = select(BudgetItem).where(BudgetItem.project_id == project_id)
        if category:
            stmt = stmt.where(BudgetItem.category == category)
        if status:
            stmt = stmt.where(BudgetItem.status == status)
        stmt = stmt.order_by(BudgetItem.start_date.desc(), BudgetItem.id.desc())

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_budget_item(self, project_id: int, item: BudgetItemCreate) -> BudgetItem:
        """Create an item and add its amount to the project's total budget."""

        try:
            project = await self.repo.get_or_raise(Project, project_id, "Project", lock=True)

            data: Dict[str, Any] = item.model_dump()
            data["status"] = item.status.value
            if data["start_date"] is None:
                data["start_date"] = datetime.now(timezone.utc)

            budget_item = BudgetItem(**data, project_id=project_id, used_amount=ZERO, extra={})
            self.db.add(budget_item)

            project.total_budget = (project.total_budget or ZERO) + item.amount

            await self.db.commit()
            await self.db.refresh(budget_item)

            logger.info(f"Created budget item {budget_item.id} for project {project_id} ({item.amount})")
            return budget_item

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to create budget item for project {project_id}: {str(e)}")
            raise

    async def update_budget_item(self, budget_item_id: int, patch: BudgetItemUpdate) -> BudgetItem:
        """Apply a patch; an amount change moves the project total by the difference."""

        try:
            budget_item = await self.repo.get_or_raise(BudgetItem, budget_item_id, "Budget item", lock=True)
            changes: Dict[str, Any] = patch.model_dump(exclude_unset=True)

            new_amount = changes.pop("amount", None)
            if new_amount is not None:
                old_amount = budget_item.amount or ZERO
                difference = new_amount - old_amount
                if difference != 0:
                    project = await self.repo.get(Project, budget_item.project_id, lock=True)
                    if project is not None:
                        project.total_budget = (project.total_budget or ZERO) + difference
                    logger.info(
                        f"Budget item {budget_item_id} amount {old_amount} -> {new_amount}, "
                        f"project {budget_item.project_id} adjusted by {difference}"
                    )
                budget_item.amount = new_amount

            for field, value in changes.items():
                if field in ("name", "category", "status") and value is None:
                    continue
                if isinstance(value, BudgetItemStatus):
                    value = value.value
                setattr(budget_item, field, value)

            await self.db.commit()
            await self.db.refresh(budget_item)
            return budget_item

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to update budget item {budget_item_id}: {str(e)}")
            raise

    async def delete_budget_item(self, budget_item_id: int) -> None:
        """Delete an item with no expenses and subtract it from the project total."""

        try:
            budget_item = await self.repo.get_or_raise(BudgetItem, budget_item_id, "Budget item", lock=True)

            expense_count = await self.repo.count_item_expenses(budget_item_id)
            if expense_count > 0:
                raise ConflictError(
                    "Cannot delete budget item with associated expenses",
                    details={"budget_item_id": budget_item_id, "expense_count": expense_count}
                )

            project = await self.repo.get(Project, budget_item.project_id, lock=True)
            if project is not None:
                project.total_budget = (project.total_budget or ZERO) - (budget_item.amount or ZERO)

            await self.db.delete(budget_item)
            await self.db.commit()

            logger.info(f"Deleted budget item {budget_item_id}")

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to delete budget item {budget_item_id}: {str(e)}")
            raise

    async def get_budget_summary(self, project_id: int) -> BudgetSummary:
        """Planned and used sums per category and per status. Read-only."""

        project = await self.repo.get_or_raise(Project, project_id, "Project")

        return BudgetSummary(
            project=BudgetProjectTotals(
                id=project.id,
                name=project.name,
                total_budget=project.total_budget or ZERO,
                used_budget=project.used_budget or ZERO
            ),
            by_category=await self._group_totals(project_id, BudgetItem.category),
            by_status=await self._group_totals(project_id, BudgetItem.status)
        )

    async def _group_totals(self, project_id: int, column) -> List[BudgetGroup]:
        stmt = (
            select(
                column,
                func.coalesce(func.sum(BudgetItem.amount), 0),
                func.coalesce(func.sum(BudgetItem.used_amount), 0)
            )
            .where(BudgetItem.project_id == project_id)
            .group_by(column)
            .order_by(column)
        )
        result = await self.db.execute(stmt)
        return [
            BudgetGroup(
                key=key,
                total_planned=_money(planned),
                total_used=_money(used)
            )
            for key, planned, used in result.all()
        ]
