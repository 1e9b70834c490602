from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...models.budget import BudgetItemStatus
from ...services.budget_service import (
    BudgetService,
    BudgetItemCreate,
    BudgetItemUpdate,
    BudgetSummary,
)

router = APIRouter()


class BudgetItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    category: str
    amount: Decimal
    used_amount: Decimal
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    status: str
    priority: Optional[str]
    notes: Optional[str]
    project_id: int


@router.post("/project/{project_id}", response_model=BudgetItemResponse, status_code=status.HTTP_201_CREATED)
async def create_budget_item(
    project_id: int,
    request: BudgetItemCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Create a budget item; its amount is added to the project total budget"""

    budget_service = BudgetService(db)
    return await budget_service.create_budget_item(project_id, request)


@router.get("/project/{project_id}", response_model=List[BudgetItemResponse])
async def get_project_budget_items(
    project_id: int,
    category: Optional[str] = None,
    status: Optional[BudgetItemStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    budget_service = BudgetService(db)
    return await budget_service.list_project_budget_items(
        project_id,
        category=category,
        status=status.value if status else None
    )


@router.get("/project/{project_id}/summary", response_model=BudgetSummary)
async def get_budget_summary(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Planned and used amounts grouped by category and status"""

    budget_service = BudgetService(db)
    return await budget_service.get_budget_summary(project_id)


@router.get("/{budget_item_id}", response_model=BudgetItemResponse)
async def get_budget_item(
    budget_item_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    budget_service = BudgetService(db)
    return await budget_service.get_budget_item(budget_item_id)


@router.put("/{budget_item_id}", response_model=BudgetItemResponse)
async def update_budget_item(
    budget_item_id: int,
    request: BudgetItemUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    budget_service = BudgetService(db)
    return await budget_service.update_budget_item(budget_item_id, request)


@router.delete("/{budget_item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_budget_item(
    budget_item_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a budget item that has no expenses"""

    budget_service = BudgetService(db)
    await budget_service.delete_budget_item(budget_item_id)
