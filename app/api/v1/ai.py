from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...services.ai_service import AIService, RiskMitigationRequest

router = APIRouter()


@router.post("/projects/{project_id}/performance-prediction")
async def predict_project_performance(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Predict timeline, budget and quality outcomes for a project"""

    ai_service = AIService(db)
    return await ai_service.predict_performance(project_id)


@router.post("/risk-mitigation")
async def generate_risk_mitigation(
    request: RiskMitigationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Draft a mitigation plan for a described project risk"""

    ai_service = AIService(db)
    return await ai_service.mitigate_risk(request)
