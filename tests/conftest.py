# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# Sets up a testing environment before app.config is imported, then provides
# an in-memory SQLite database, a session per test and small factories for
# the entities the services work on.
# =============================================================================

import os

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# app.config builds its settings at import time

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENABLE_AI_PREDICTIONS", "false")

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.models.base import Base
from app.models import budget, client, project, sprint, task, user  # noqa: F401  register tables
from app.models.user import User
from app.services.budget_service import BudgetService, BudgetItemCreate
from app.services.project_service import (
    ProjectService,
    ProjectCreate,
    BoardCreate,
    StoryCreate,
)
from app.services.sprint_service import SprintService, SprintCreate
from app.services.task_service import TaskService, TaskCreate


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# Factories
# =============================================================================

@pytest_asyncio.fixture
async def test_user(session):
    user = User(email="pm@example.com", full_name="Pat Manager", is_active=True, role="project_manager")
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
def make_project(session):
    async def _make(name="Customer Portal", total_budget="0"):
        return await ProjectService(session).create_project(
            ProjectCreate(name=name, total_budget=Decimal(total_budget))
        )
    return _make


@pytest.fixture
def make_board(session):
    async def _make(project_id, name="Team Board"):
        return await ProjectService(session).create_board(project_id, BoardCreate(name=name))
    return _make


@pytest.fixture
def make_story(session):
    async def _make(project_id, points=3, is_ready=True, title="Checkout flow"):
        return await ProjectService(session).create_story(
            project_id,
            StoryCreate(title=title, points=points, is_ready=is_ready)
        )
    return _make


@pytest.fixture
def make_sprint(session):
    async def _make(board_id, name="Sprint 1", **kwargs):
        return await SprintService(session).create_sprint(board_id, SprintCreate(name=name, **kwargs))
    return _make


@pytest.fixture
def make_budget_item(session):
    async def _make(project_id, amount="500", category="Development", name="Dev team", **kwargs):
        return await BudgetService(session).create_budget_item(
            project_id,
            BudgetItemCreate(name=name, category=category, amount=Decimal(amount), **kwargs)
        )
    return _make


@pytest.fixture
def make_task(session):
    async def _make(story_id=None, project_id=None, title="Write tests", **kwargs):
        return await TaskService(session).create_task(
            TaskCreate(title=title, story_id=story_id, project_id=project_id, **kwargs)
        )
    return _make


@pytest_asyncio.fixture
async def board_setup(make_project, make_board):
    """A project with one board."""
    project = await make_project()
    board = await make_board(project.id)
    return project, board
