#!/usr/bin/env python3
"""
Seed Data Script for Project Desk

Creates realistic development data through the service layer:
- 3 Users
- 1 Project with 2 Boards
- 1 Completed Sprint and 1 Active Sprint
- 1 Client
- 10 Stories (some in sprints, the rest in the backlog) and tasks for the active sprint
- 4 Budget Items and a handful of Expenses

Usage:
    python scripts/seed_data.py              # Add seed data
    python scripts/seed_data.py --clear      # Clear all data first
"""
import asyncio
import sys
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import async_session, engine
from app.models.base import Base
from app.models.user import User, RevokedToken
from app.models.project import Project, Board
from app.models.sprint import Sprint, Story, StoryStatus
from app.models.budget import BudgetItem, Expense
from app.models.client import Client
from app.models.task import Task, TaskStatus
from app.core.auth import create_access_token
from app.services.project_service import ProjectService, ProjectCreate, BoardCreate, StoryCreate, StoryUpdate
from app.services.sprint_service import SprintService, SprintCreate
from app.services.budget_service import BudgetService, BudgetItemCreate
from app.services.expense_service import ExpenseService, ExpenseCreate
from app.services.client_service import ClientService, ClientCreate
from app.services.task_service import TaskService, TaskCreate, TaskUpdate


# ==================== DATA DEFINITIONS ====================

USERS_DATA = [
    {"email": "alice.pm@company.com", "full_name": "Alice Johnson", "role": "project_manager"},
    {"email": "emma.dev@company.com", "full_name": "Emma Rodriguez", "role": "member"},
    {"email": "frank.dev@company.com", "full_name": "Frank Smith", "role": "member"},
]

STORIES_DATA = [
    # First sprint, all done
    {"title": "User Authentication System", "points": 8, "sprint": 1, "done": True},
    {"title": "Dashboard Analytics View", "points": 5, "sprint": 1, "done": True},
    {"title": "Password Reset Flow", "points": 3, "sprint": 1, "done": True},
    # Current sprint
    {"title": "Payment Gateway Integration", "points": 8, "sprint": 2, "done": True},
    {"title": "Email Notification System", "points": 5, "sprint": 2, "done": False},
    {"title": "Search Functionality", "points": 5, "sprint": 2, "done": False},
    # Backlog
    {"title": "API Rate Limiting", "points": 3, "sprint": None, "done": False},
    {"title": "User Profile Page", "points": 5, "sprint": None, "done": False},
    {"title": "Two-Factor Authentication", "points": 8, "sprint": None, "done": False},
    {"title": "Audit Log", "points": 5, "sprint": None, "done": False},
]

BUDGET_ITEMS_DATA = [
    {"name": "Development Team", "category": "Development", "amount": Decimal("60000.00")},
    {"name": "Cloud Hosting", "category": "Infrastructure", "amount": Decimal("12000.00")},
    {"name": "Design Contractor", "category": "Design", "amount": Decimal("8000.00")},
    {"name": "Launch Campaign", "category": "Marketing", "amount": Decimal("10000.00")},
]

EXPENSES_DATA = [
    {"item": "Development Team", "amount": Decimal("15000.00"), "description": "Sprint 1 payroll"},
    {"item": "Development Team", "amount": Decimal("15000.00"), "description": "Sprint 2 payroll"},
    {"item": "Cloud Hosting", "amount": Decimal("950.50"), "description": "Monthly hosting invoice"},
    {"item": "Design Contractor", "amount": Decimal("2400.00"), "description": "Dashboard mockups"},
]


# ==================== SEED FUNCTIONS ====================

async def clear_all_data(session: AsyncSession):
    """Clear all data from the database"""
    print("🗑️  Clearing existing data...")

    # Delete in correct order (respecting foreign keys)
    await session.execute(delete(Expense))
    await session.execute(delete(BudgetItem))
    await session.execute(delete(Task))
    await session.execute(delete(Story))
    await session.execute(delete(Sprint))
    await session.execute(delete(Board))
    await session.execute(delete(Project))
    await session.execute(delete(Client))
    await session.execute(delete(RevokedToken))
    await session.execute(delete(User))

    await session.commit()
    print("✅ All data cleared")


async def create_users(session: AsyncSession):
    print("\n👥 Creating users...")

    users = []
    for user_data in USERS_DATA:
        user = User(is_active=True, **user_data)
        session.add(user)
        users.append(user)

    await session.commit()
    for user in users:
        await session.refresh(user)
        print(f"  ✓ Created: {user.full_name} ({user.email}) - Role: {user.role}")

    return users


async def create_project(session: AsyncSession, owner: User):
    print("\n📁 Creating client, project and boards...")

    client = await ClientService(session).create_client(
        ClientCreate(name="Acme Retail", industry="Retail", country="Germany", contact_person="Dana Weber")
    )
    project_service = ProjectService(session)
    now = datetime.now(timezone.utc)
    project = await project_service.create_project(
        ProjectCreate(
            name="Customer Portal",
            description="Self-service portal for customers",
            start_date=now - timedelta(days=30),
            completion_date=now + timedelta(days=60),
            client_id=client.id
        ),
        owner_id=owner.id
    )
    main_board = await project_service.create_board(project.id, BoardCreate(name="Portal Team"))
    await project_service.create_board(project.id, BoardCreate(name="Platform Team"))

    print(f"  ✓ Created project: {project.name}")
    return project, main_board


async def create_sprints_and_stories(session: AsyncSession, project: Project, board: Board, users):
    print("\n🏃 Creating sprints and stories...")

    project_service = ProjectService(session)
    sprint_service = SprintService(session)
    now = datetime.now(timezone.utc)

    stories = []
    for idx, story_data in enumerate(STORIES_DATA):
        story = await project_service.create_story(
            project.id,
            StoryCreate(
                title=story_data["title"],
                points=story_data["points"],
                is_ready=True,
                order=idx,
                assignee_id=users[1 + idx % 2].id
            )
        )
        stories.append((story, story_data))

    first = await sprint_service.create_sprint(
        board.id,
        SprintCreate(name="Sprint 1", start_date=now - timedelta(days=28), end_date=now - timedelta(days=14)),
        creator_id=users[0].id
    )
    second = await sprint_service.create_sprint(
        board.id,
        SprintCreate(name="Sprint 2", start_date=now - timedelta(days=3), end_date=now + timedelta(days=11)),
        creator_id=users[0].id
    )

    for number, sprint in ((1, first), (2, second)):
        ids = [s.id for s, data in stories if data["sprint"] == number]
        await sprint_service.add_stories_to_sprint(sprint.id, ids)
        await sprint_service.start_sprint(sprint.id, f"Deliver sprint {number} scope", now + timedelta(days=11))

        for story, data in stories:
            if data["sprint"] == number and data["done"]:
                await project_service.update_story(story.id, StoryUpdate(status=StoryStatus.DONE))

        if number == 1:
            await sprint_service.complete_sprint(sprint.id, retrospective_notes="Good pace, keep reviews small")
        else:
            await create_tasks(session, [s for s, data in stories if data["sprint"] == 2], users)
            await sprint_service.calculate_progress(sprint.id)

    print(f"  ✓ Created {len(stories)} stories, 1 completed and 1 active sprint")


async def create_tasks(session: AsyncSession, stories, users):
    task_service = TaskService(session)
    created = 0
    for story in stories:
        for part in ("API", "UI"):
            task = await task_service.create_task(
                TaskCreate(title=f"{story.title}: {part}", story_id=story.id, original_estimate=2),
                reporter_id=users[0].id
            )
            created += 1
            if story.status == StoryStatus.DONE.value or part == "API":
                await task_service.update_task(task.id, TaskUpdate(status=TaskStatus.TO_DO))
                await task_service.update_task(
                    task.id, TaskUpdate(status=TaskStatus.IN_PROGRESS, assignee_id=users[1].id)
                )
                await task_service.update_task(task.id, TaskUpdate(status=TaskStatus.DONE))
    print(f"  ✓ Created {created} tasks for the active sprint")


async def create_budget(session: AsyncSession, project: Project, user: User):
    print("\n💰 Creating budget items and expenses...")

    budget_service = BudgetService(session)
    expense_service = ExpenseService(session)

    items = {}
    for item_data in BUDGET_ITEMS_DATA:
        item = await budget_service.create_budget_item(project.id, BudgetItemCreate(**item_data))
        items[item.name] = item

    for expense_data in EXPENSES_DATA:
        expense = await expense_service.create_expense(
            project.id,
            ExpenseCreate(
                amount=expense_data["amount"],
                description=expense_data["description"],
                category=items[expense_data["item"]].category,
                budget_item_id=items[expense_data["item"]].id
            ),
            user_id=user.id
        )
        await expense_service.approve_expense(expense.id, approver_id=user.id)

    print(f"  ✓ Created {len(items)} budget items and {len(EXPENSES_DATA)} expenses")


# ==================== MAIN ====================

async def seed_database(clear_first: bool = False):
    """Main seed function"""
    print("=" * 60)
    print("🌱 Project Desk - Database Seeding")
    print("=" * 60)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        if clear_first:
            await clear_all_data(session)

        users = await create_users(session)
        project, board = await create_project(session, users[0])
        await create_sprints_and_stories(session, project, board, users)
        await create_budget(session, project, users[0])

        token = create_access_token({"sub": users[0].id}, expires_delta=timedelta(days=7))

    await engine.dispose()

    print("\n" + "=" * 60)
    print("✅ Database seeding complete!")
    print(f"\n🔑 Dev token for {USERS_DATA[0]['email']} (7 days):\n{token}")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(seed_database(clear_first="--clear" in sys.argv))
