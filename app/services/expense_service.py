from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, Field

from ..core.exceptions import NotFoundError, ValidationError
from ..models.budget import BudgetItem, Expense, PaymentStatus
from ..models.project import Project
from ..utils.logging import get_logger
from .repository import Repository

logger = get_logger(__name__)

ZERO = Decimal("0")


def _counts(expense: Expense) -> bool:
    return expense.payment_status != PaymentStatus.REJECTED.value


class ExpenseCreate(BaseModel):
    amount: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=50)
    date: Optional[datetime] = None
    budget_item_id: Optional[int] = None
    payment_method: Optional[str] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None


class ExpenseUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=15, decimal_places=2)
    description: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    date: Optional[datetime] = None
    budget_item_id: Optional[int] = None
    payment_method: Optional[str] = None
    receipt_url: Optional[str] = None
    notes: Optional[str] = None


class ExpenseService:
    """Records expenses and keeps the used-budget aggregates current.

    ``Project.used_budget`` and ``BudgetItem.used_amount`` move by the
    expense amount on create, by the difference on edit, and back on delete.
    Rejected expenses do not count: rejecting takes the amount off both
    aggregates and approving a rejected expense puts it back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = Repository(db)

    async def get_expense(self, expense_id: int) -> Expense:
        return await self.repo.get_or_raise(Expense, expense_id, "Expense")

    async def list_project_expenses(
        self,
        project_id: int,
        payment_status: Optional[str] = None
    ) -> List[Expense]:
        await self.repo.get_or_raise(Project, project_id, "Project")

        stmt = select(Expense).where(Expense.project_id == project_id)
        if payment_status:
            stmt = stmt.where(Expense.payment_status == payment_status)
        stmt = stmt.order_by(Expense.date.desc(), Expense.id.desc())

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_expense(
        self,
        project_id: int,
        data: ExpenseCreate,
        user_id: Optional[int] = None
    ) -> Expense:
        try:
            project = await self.repo.get_or_raise(Project, project_id, "Project", lock=True)

            budget_item = None
            if data.budget_item_id is not None:
                budget_item = await self._get_project_item(data.budget_item_id, project_id)

            values: Dict[str, Any] = data.model_dump()
            if values["date"] is None:
                values["date"] = datetime.now(timezone.utc)

            expense = Expense(
                **values,
                project_id=project_id,
                payment_status=PaymentStatus.PENDING.value,
                created_by=user_id
            )
            self.db.add(expense)

            project.used_budget = (project.used_budget or ZERO) + data.amount
            if budget_item is not None:
                budget_item.used_amount = (budget_item.used_amount or ZERO) + data.amount

            await self.db.commit()
            await self.db.refresh(expense)

            logger.info(f"Recorded expense {expense.id} of {data.amount} on project {project_id}")
            return expense

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to record expense for project {project_id}: {str(e)}")
            raise

    async def update_expense(self, expense_id: int, patch: ExpenseUpdate) -> Expense:
        try:
            expense = await self.repo.get_or_raise(Expense, expense_id, "Expense", lock=True)
            changes: Dict[str, Any] = patch.model_dump(exclude_unset=True)

            old_amount = expense.amount or ZERO
            new_amount = changes.get("amount")
            if new_amount is None:
                new_amount = old_amount

            old_item_id = expense.budget_item_id
            new_item_id = changes["budget_item_id"] if "budget_item_id" in changes else old_item_id
            counted = _counts(expense)

            if new_item_id != old_item_id:
                new_item = None
                if new_item_id is not None:
                    new_item = await self._get_project_item(new_item_id, expense.project_id)
                # Moving the expense: take it off the old item, put it on the new one
                if counted and new_item is not None:
                    new_item.used_amount = (new_item.used_amount or ZERO) + new_amount
                if counted and old_item_id is not None:
                    old_item = await self.repo.get(BudgetItem, old_item_id, lock=True)
                    if old_item is not None:
                        old_item.used_amount = (old_item.used_amount or ZERO) - old_amount
            elif counted and new_amount != old_amount and old_item_id is not None:
                item = await self.repo.get(BudgetItem, old_item_id, lock=True)
                if item is not None:
                    item.used_amount = (item.used_amount or ZERO) + (new_amount - old_amount)

            if counted and new_amount != old_amount:
                project = await self.repo.get(Project, expense.project_id, lock=True)
                if project is not None:
                    project.used_budget = (project.used_budget or ZERO) + (new_amount - old_amount)

            for field, value in changes.items():
                if field in ("amount", "description", "category") and value is None:
                    continue
                setattr(expense, field, value)

            await self.db.commit()
            await self.db.refresh(expense)
            return expense

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to update expense {expense_id}: {str(e)}")
            raise

    async def delete_expense(self, expense_id: int) -> None:
        try:
            expense = await self.repo.get_or_raise(Expense, expense_id, "Expense", lock=True)

            if _counts(expense):
                await self._shift_aggregates(expense, -(expense.amount or ZERO))

            await self.db.delete(expense)
            await self.db.commit()

            logger.info(f"Deleted expense {expense_id}")

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to delete expense {expense_id}: {str(e)}")
            raise

    async def approve_expense(self, expense_id: int, approver_id: Optional[int] = None) -> Expense:
        return await self._set_payment_status(expense_id, PaymentStatus.PAID, approver_id)

    async def reject_expense(self, expense_id: int, approver_id: Optional[int] = None) -> Expense:
        return await self._set_payment_status(expense_id, PaymentStatus.REJECTED, approver_id)

    async def _set_payment_status(
        self,
        expense_id: int,
        status: PaymentStatus,
        approver_id: Optional[int]
    ) -> Expense:
        try:
            expense = await self.repo.get_or_raise(Expense, expense_id, "Expense", lock=True)

            was_counted = _counts(expense)
            is_counted = status != PaymentStatus.REJECTED
            if was_counted and not is_counted:
                await self._shift_aggregates(expense, -(expense.amount or ZERO))
            elif is_counted and not was_counted:
                await self._shift_aggregates(expense, expense.amount or ZERO)

            expense.payment_status = status.value
            expense.approved_by = approver_id
            expense.approved_at = datetime.now(timezone.utc)

            await self.db.commit()
            await self.db.refresh(expense)

            logger.info(f"Expense {expense_id} marked {status.value}")
            return expense

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to mark expense {expense_id} {status.value}: {str(e)}")
            raise

    async def _shift_aggregates(self, expense: Expense, delta: Decimal) -> None:
        """Move the project's and the budget item's used totals by ``delta``."""
        project = await self.repo.get(Project, expense.project_id, lock=True)
        if project is not None:
            project.used_budget = (project.used_budget or ZERO) + delta

        if expense.budget_item_id is not None:
            item = await self.repo.get(BudgetItem, expense.budget_item_id, lock=True)
            if item is not None:
                item.used_amount = (item.used_amount or ZERO) + delta

    async def _get_project_item(self, budget_item_id: int, project_id: int) -> BudgetItem:
        item = await self.repo.get(BudgetItem, budget_item_id, lock=True)
        if item is None:
            raise NotFoundError("Budget item", budget_item_id)
        if item.project_id != project_id:
            raise ValidationError(
                "Budget item does not belong to this project",
                details={"budget_item_id": budget_item_id, "project_id": project_id}
            )
        return item
