"""
Tests for ExpenseService

Tests:
- Used budget aggregates on create / update / delete
- Moving an expense between budget items
- Approval and rejection, with rejected amounts leaving the aggregates
"""
from decimal import Decimal

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.models.budget import BudgetItem, PaymentStatus
from app.models.project import Project
from app.services.expense_service import ExpenseService, ExpenseCreate, ExpenseUpdate


async def _reload(session, model, entity_id):
    return await session.get(model, entity_id, populate_existing=True)


def _expense(amount, budget_item_id=None, description="Cloud invoice"):
    return ExpenseCreate(
        amount=Decimal(amount),
        description=description,
        category="Infrastructure",
        budget_item_id=budget_item_id
    )


@pytest.mark.asyncio
async def test_create_expense_updates_used_amounts(session, make_project, make_budget_item, test_user):
    project = await make_project(total_budget="1000")
    item = await make_budget_item(project.id, amount="400")

    expense = await ExpenseService(session).create_expense(project.id, _expense("150.75", item.id), test_user.id)

    project = await _reload(session, Project, project.id)
    item = await _reload(session, BudgetItem, item.id)
    assert expense.payment_status == PaymentStatus.PENDING.value
    assert expense.created_by == test_user.id
    assert expense.date is not None
    assert project.used_budget == Decimal("150.75")
    assert item.used_amount == Decimal("150.75")


@pytest.mark.asyncio
async def test_create_expense_without_item(session, make_project):
    project = await make_project()

    await ExpenseService(session).create_expense(project.id, _expense("20"))

    project = await _reload(session, Project, project.id)
    assert project.used_budget == Decimal("20")


@pytest.mark.asyncio
async def test_create_expense_with_unknown_item(session, make_project):
    project = await make_project()
    project_id = project.id

    with pytest.raises(NotFoundError):
        await ExpenseService(session).create_expense(project_id, _expense("20", budget_item_id=999))

    project = await _reload(session, Project, project_id)
    assert project.used_budget == Decimal("0")


@pytest.mark.asyncio
async def test_create_expense_with_item_of_other_project(session, make_project, make_budget_item):
    project = await make_project()
    other = await make_project(name="Other project")
    foreign_item = await make_budget_item(other.id)

    with pytest.raises(ValidationError):
        await ExpenseService(session).create_expense(project.id, _expense("20", foreign_item.id))


@pytest.mark.asyncio
async def test_update_amount_applies_difference(session, make_project, make_budget_item):
    project = await make_project()
    item = await make_budget_item(project.id)
    service = ExpenseService(session)
    expense = await service.create_expense(project.id, _expense("100", item.id))

    expense = await service.update_expense(expense.id, ExpenseUpdate(amount=Decimal("60")))

    project = await _reload(session, Project, project.id)
    item = await _reload(session, BudgetItem, item.id)
    assert expense.amount == Decimal("60")
    assert project.used_budget == Decimal("60")
    assert item.used_amount == Decimal("60")


@pytest.mark.asyncio
async def test_update_moves_expense_between_items(session, make_project, make_budget_item):
    project = await make_project()
    first = await make_budget_item(project.id, name="First")
    second = await make_budget_item(project.id, name="Second")
    service = ExpenseService(session)
    expense = await service.create_expense(project.id, _expense("100", first.id))

    await service.update_expense(expense.id, ExpenseUpdate(budget_item_id=second.id, amount=Decimal("80")))

    first = await _reload(session, BudgetItem, first.id)
    second = await _reload(session, BudgetItem, second.id)
    project = await _reload(session, Project, project.id)
    assert first.used_amount == Decimal("0")
    assert second.used_amount == Decimal("80")
    assert project.used_budget == Decimal("80")


@pytest.mark.asyncio
async def test_delete_expense_restores_used_amounts(session, make_project, make_budget_item):
    project = await make_project()
    item = await make_budget_item(project.id)
    service = ExpenseService(session)
    expense = await service.create_expense(project.id, _expense("100", item.id))

    await service.delete_expense(expense.id)

    project = await _reload(session, Project, project.id)
    item = await _reload(session, BudgetItem, item.id)
    assert project.used_budget == Decimal("0")
    assert item.used_amount == Decimal("0")
    with pytest.raises(NotFoundError):
        await service.get_expense(expense.id)


@pytest.mark.asyncio
async def test_approve_and_reject(session, make_project, test_user):
    project = await make_project()
    service = ExpenseService(session)
    paid = await service.create_expense(project.id, _expense("10", description="Paid"))
    rejected = await service.create_expense(project.id, _expense("20", description="Rejected"))

    paid = await service.approve_expense(paid.id, approver_id=test_user.id)
    rejected = await service.reject_expense(rejected.id, approver_id=test_user.id)

    assert paid.payment_status == PaymentStatus.PAID.value
    assert paid.approved_by == test_user.id
    assert paid.approved_at is not None
    assert rejected.payment_status == PaymentStatus.REJECTED.value

    pending = await service.list_project_expenses(project.id, payment_status="Pending")
    assert pending == []
    assert len(await service.list_project_expenses(project.id)) == 2


@pytest.mark.asyncio
async def test_reject_takes_amount_off_used_budget(session, make_project, make_budget_item):
    """Rejecting removes the amount from both aggregates; approving again restores it"""
    project = await make_project(total_budget="1000")
    item = await make_budget_item(project.id, amount="400")
    service = ExpenseService(session)
    await service.create_expense(project.id, _expense("30", item.id))
    expense = await service.create_expense(project.id, _expense("120", item.id))

    await service.reject_expense(expense.id)

    project = await _reload(session, Project, project.id)
    item = await _reload(session, BudgetItem, item.id)
    assert project.used_budget == Decimal("30")
    assert item.used_amount == Decimal("30")

    # Rejecting twice does not subtract twice
    await service.reject_expense(expense.id)
    project = await _reload(session, Project, project.id)
    assert project.used_budget == Decimal("30")

    await service.approve_expense(expense.id)

    project = await _reload(session, Project, project.id)
    item = await _reload(session, BudgetItem, item.id)
    assert project.used_budget == Decimal("150")
    assert item.used_amount == Decimal("150")


@pytest.mark.asyncio
async def test_rejected_expense_edits_and_delete_leave_aggregates(session, make_project, make_budget_item):
    project = await make_project()
    item = await make_budget_item(project.id, amount="400")
    service = ExpenseService(session)
    expense = await service.create_expense(project.id, _expense("50", item.id))
    await service.reject_expense(expense.id)

    await service.update_expense(expense.id, ExpenseUpdate(amount=Decimal("80")))
    project = await _reload(session, Project, project.id)
    item = await _reload(session, BudgetItem, item.id)
    assert project.used_budget == Decimal("0")
    assert item.used_amount == Decimal("0")

    await service.delete_expense(expense.id)
    project = await _reload(session, Project, project.id)
    item = await _reload(session, BudgetItem, item.id)
    assert project.used_budget == Decimal("0")
    assert item.used_amount == Decimal("0")
