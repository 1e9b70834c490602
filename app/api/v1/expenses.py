from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...models.budget import PaymentStatus
from ...services.expense_service import ExpenseService, ExpenseCreate, ExpenseUpdate

router = APIRouter()


class ExpenseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    description: str
    date: Optional[datetime]
    category: str
    payment_method: Optional[str]
    payment_status: str
    receipt_url: Optional[str]
    notes: Optional[str]
    approved_at: Optional[datetime]
    project_id: int
    budget_item_id: Optional[int]
    created_by: Optional[int]
    approved_by: Optional[int]


@router.post("/project/{project_id}", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_expense(
    project_id: int,
    request: ExpenseCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Record an expense against the project and, optionally, one of its budget items"""

    expense_service = ExpenseService(db)
    return await expense_service.create_expense(project_id, request, user_id=current_user.id)


@router.get("/project/{project_id}", response_model=List[ExpenseResponse])
async def get_project_expenses(
    project_id: int,
    payment_status: Optional[PaymentStatus] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    expense_service = ExpenseService(db)
    return await expense_service.list_project_expenses(
        project_id,
        payment_status=payment_status.value if payment_status else None
    )


@router.get("/{expense_id}", response_model=ExpenseResponse)
async def get_expense(
    expense_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    expense_service = ExpenseService(db)
    return await expense_service.get_expense(expense_id)


@router.put("/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    expense_id: int,
    request: ExpenseUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    expense_service = ExpenseService(db)
    return await expense_service.update_expense(expense_id, request)


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    expense_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    expense_service = ExpenseService(db)
    await expense_service.delete_expense(expense_id)


@router.post("/{expense_id}/approve", response_model=ExpenseResponse)
async def approve_expense(
    expense_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    expense_service = ExpenseService(db)
    return await expense_service.approve_expense(expense_id, approver_id=current_user.id)


@router.post("/{expense_id}/reject", response_model=ExpenseResponse)
async def reject_expense(
    expense_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    expense_service = ExpenseService(db)
    return await expense_service.reject_expense(expense_id, approver_id=current_user.id)
