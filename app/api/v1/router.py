from fastapi import APIRouter
from .ai import router as ai_router
from .auth import router as auth_router
from .budget import router as budget_router
from .clients import router as clients_router
from .expenses import router as expenses_router
from .projects import router as projects_router
from .sprints import router as sprints_router
from .tasks import router as tasks_router

api_router = APIRouter()

# Include all sub-routers
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(projects_router, prefix="/projects", tags=["projects"])
api_router.include_router(sprints_router, prefix="/sprints", tags=["sprints"])
api_router.include_router(tasks_router, prefix="/tasks", tags=["tasks"])
api_router.include_router(clients_router, prefix="/clients", tags=["clients"])
api_router.include_router(budget_router, prefix="/budget", tags=["budget"])
api_router.include_router(expenses_router, prefix="/expenses", tags=["expenses"])
api_router.include_router(ai_router, prefix="/ai", tags=["ai"])
