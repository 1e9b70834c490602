"""
AI-assisted project analysis.

Builds prompts from stored project figures, asks the configured LLM for a
JSON answer and normalizes it. When AI is disabled, the backend fails or the
reply cannot be parsed, a deterministic fallback is returned instead; these
endpoints are advisory and never block the caller.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from decimal import Decimal
import json
import re

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case
from pydantic import BaseModel

from ..config import settings
from ..core.exceptions import ValidationError
from ..models.project import Project
from ..models.sprint import Sprint, SprintStatus, Story, StoryStatus
from ..utils.logging import get_logger
from .llm_provider import LLMProvider, LLMProviderError
from .repository import Repository

logger = get_logger(__name__)

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """You are a project delivery analyst for agile software teams.
You read sprint, backlog and budget figures and answer with a single JSON object.
Be conservative: when the data is thin, say so through lower confidence levels."""


class RiskMitigationRequest(BaseModel):
    project_name: Optional[str] = None
    risk_description: Optional[str] = None
    project_context: Optional[str] = None
    current_mitigation: Optional[str] = None


class ProjectMetrics(BaseModel):
    total_budget: Decimal
    used_budget: Decimal
    budget_utilization: float
    story_count: int
    done_story_count: int
    story_completion_rate: float
    completed_sprints: int
    active_sprints: int
    velocity: Optional[int] = None
    time_elapsed_percentage: Optional[float] = None


def _extract_json(text: Optional[str]) -> Dict[str, Any]:
    text = text or ""
    match = JSON_OBJECT.search(text)
    parsed = json.loads(match.group(0) if match else text)
    if not isinstance(parsed, dict):
        raise ValueError("Expected a JSON object")
    return parsed


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


class AIService:
    """Performance prediction and risk mitigation planning."""

    def __init__(self, db: AsyncSession, provider: Optional[LLMProvider] = None):
        self.db = db
        self.repo = Repository(db)
        self._provider = provider

    @property
    def provider(self) -> LLMProvider:
        if self._provider is None:
            self._provider = LLMProvider()
        return self._provider

    async def collect_metrics(self, project: Project) -> ProjectMetrics:
        total_budget = project.total_budget or Decimal("0")
        used_budget = project.used_budget or Decimal("0")
        utilization = float(used_budget / total_budget * 100) if total_budget > 0 else 0.0

        story_stmt = select(
            func.count(Story.id),
            func.coalesce(func.sum(case((Story.status == StoryStatus.DONE.value, 1), else_=0)), 0)
        ).where(Story.project_id == project.id)
        story_count, done_count = (await self.db.execute(story_stmt)).one()

        board_ids = await self.repo.project_board_ids(project.id)
        completed = active = 0
        if board_ids:
            sprint_stmt = (
                select(Sprint.status, func.count(Sprint.id))
                .where(Sprint.board_id.in_(board_ids))
                .group_by(Sprint.status)
            )
            counts = dict((await self.db.execute(sprint_stmt)).all())
            completed = counts.get(SprintStatus.COMPLETED.value, 0)
            active = counts.get(SprintStatus.ACTIVE.value, 0)

        elapsed = None
        if project.start_date and project.completion_date:
            start = _as_utc(project.start_date)
            end = _as_utc(project.completion_date)
            span = (end - start).total_seconds()
            if span > 0:
                now = datetime.now(timezone.utc)
                elapsed = round(max(0.0, min(100.0, (now - start).total_seconds() / span * 100)), 2)

        return ProjectMetrics(
            total_budget=total_budget,
            used_budget=used_budget,
            budget_utilization=round(utilization, 2),
            story_count=story_count,
            done_story_count=int(done_count),
            story_completion_rate=round(done_count / story_count * 100, 2) if story_count else 0.0,
            completed_sprints=completed,
            active_sprints=active,
            velocity=project.velocity,
            time_elapsed_percentage=elapsed
        )

    async def predict_performance(self, project_id: int) -> Dict[str, Any]:
        project = await self.repo.get_or_raise(Project, project_id, "Project")
        metrics = await self.collect_metrics(project)

        prediction: Optional[Dict[str, Any]] = None
        if settings.enable_ai_predictions:
            prompt = self._performance_prompt(project, metrics)
            raw = await self._ask(prompt, operation="performance prediction")
            if raw is not None:
                prediction = self._normalize_prediction(raw, project)

        source = "ai" if prediction is not None else "fallback"
        if prediction is None:
            prediction = self._fallback_prediction(project, metrics)

        return {
            "project_id": project.id,
            "project_name": project.name,
            "metrics": metrics.model_dump(mode="json"),
            "prediction": prediction,
            "source": source,
            "generated_at": datetime.now(timezone.utc).isoformat()
        }

    async def mitigate_risk(self, request: RiskMitigationRequest) -> Dict[str, Any]:
        missing = [
            name for name in ("project_name", "risk_description")
            if not (getattr(request, name) or "").strip()
        ]
        if missing:
            raise ValidationError(
                "Project name and risk description are required",
                details={"missing_fields": missing}
            )

        plan: Optional[Dict[str, Any]] = None
        if settings.enable_ai_predictions:
            raw = await self._ask(self._risk_prompt(request), operation="risk mitigation")
            if raw is not None:
                plan = self._normalize_mitigation(raw)

        source = "ai" if plan is not None else "fallback"
        if plan is None:
            plan = self._fallback_mitigation()

        return {
            "project_name": request.project_name,
            "risk_description": request.risk_description,
            "mitigation_plan": plan,
            "source": source,
            "generated_at": datetime.now(timezone.utc).isoformat()
        }

    # Private methods

    async def _ask(self, prompt: str, operation: str) -> Optional[Dict[str, Any]]:
        try:
            result = await self.provider.generate_completion(prompt, system_prompt=SYSTEM_PROMPT)
        except LLMProviderError as e:
            logger.warning(f"AI {operation} unavailable, using fallback: {e}")
            return None

        try:
            return _extract_json(result.get("content", ""))
        except ValueError as e:
            logger.warning(f"AI {operation} returned unparseable output, using fallback: {e}")
            return None

    def _performance_prompt(self, project: Project, metrics: ProjectMetrics) -> str:
        return f"""Predict how this project will perform.

Project: {project.name} (status: {project.status})
Planned completion: {project.completion_date.date().isoformat() if project.completion_date else "not set"}
Time elapsed: {metrics.time_elapsed_percentage if metrics.time_elapsed_percentage is not None else "unknown"}%

Budget: {metrics.total_budget} planned, {metrics.used_budget} spent ({metrics.budget_utilization}% used)
Stories: {metrics.done_story_count} of {metrics.story_count} done ({metrics.story_completion_rate}%)
Sprints: {metrics.completed_sprints} completed, {metrics.active_sprints} active
Velocity (points per sprint): {metrics.velocity if metrics.velocity is not None else "unknown"}

Answer with this JSON shape:
{{
  "timelinePrediction": {{"predictedCompletionDate": "YYYY-MM-DD", "confidenceLevel": "High|Medium|Low",
                          "delayRisk": "High|Medium|Low", "predictedDelay": 0, "keyMilestones": []}},
  "budgetPrediction": {{"predictedFinalCost": 0, "predictedVariance": "0%", "confidenceLevel": "High|Medium|Low",
                        "riskAreas": []}},
  "qualityPrediction": {{"predictedQualityScore": 7, "confidenceLevel": "High|Medium|Low", "potentialIssues": []}},
  "recommendations": [{{"area": "Timeline|Budget|Quality|Resources", "recommendation": "...",
                        "impact": "High|Medium|Low", "effort": "High|Medium|Low"}}],
  "overallHealthPrediction": {{"score": 7, "trend": "Improving|Stable|Declining", "keyInsights": []}}
}}"""

    def _risk_prompt(self, request: RiskMitigationRequest) -> str:
        lines = [
            "Draft a mitigation plan for this project risk.",
            "",
            f"Project: {request.project_name}",
            f"Risk: {request.risk_description}",
        ]
        if request.project_context:
            lines.append(f"Context: {request.project_context}")
        if request.current_mitigation:
            lines.append(f"Current mitigation: {request.current_mitigation}")
        lines.append("""
Answer with this JSON shape:
{
  "riskAssessment": {"severity": "High|Medium|Low", "likelihood": "High|Medium|Low", "impact": "...", "riskScore": 5},
  "mitigationPlan": {"strategy": "Avoidance|Reduction|Transfer|Acceptance",
                     "recommendedActions": [{"action": "...", "priority": "High|Medium|Low",
                                             "timeframe": "Immediate|Short-term|Long-term", "responsibleParty": "..."}],
                     "contingencyPlan": "..."},
  "monitoringPlan": {"keyIndicators": [], "monitoringFrequency": "Daily|Weekly|Monthly", "triggerPoints": []}
}""")
        return "\n".join(lines)

    def _normalize_prediction(self, raw: Dict[str, Any], project: Project) -> Dict[str, Any]:
        timeline = _section(raw, "timelinePrediction")
        budget = _section(raw, "budgetPrediction")
        quality = _section(raw, "qualityPrediction")
        health = _section(raw, "overallHealthPrediction")
        completion = project.completion_date.date().isoformat() if project.completion_date else None

        return {
            "timeline_prediction": {
                "predicted_completion_date": timeline.get("predictedCompletionDate") or completion,
                "confidence_level": timeline.get("confidenceLevel") or "Medium",
                "delay_risk": timeline.get("delayRisk") or "Medium",
                "predicted_delay": _as_int(timeline.get("predictedDelay"), 0),
                "key_milestones": timeline.get("keyMilestones") or []
            },
            "budget_prediction": {
                "predicted_final_cost": budget.get("predictedFinalCost") or str(project.total_budget or 0),
                "predicted_variance": budget.get("predictedVariance") or "0%",
                "confidence_level": budget.get("confidenceLevel") or "Medium",
                "risk_areas": budget.get("riskAreas") or []
            },
            "quality_prediction": {
                "predicted_quality_score": _as_int(quality.get("predictedQualityScore"), 7),
                "confidence_level": quality.get("confidenceLevel") or "Medium",
                "potential_issues": quality.get("potentialIssues") or []
            },
            "recommendations": raw.get("recommendations") if isinstance(raw.get("recommendations"), list) else [],
            "overall_health_prediction": {
                "score": _as_int(health.get("score"), 7),
                "trend": health.get("trend") or "Stable",
                "key_insights": health.get("keyInsights") or []
            }
        }

    def _fallback_prediction(self, project: Project, metrics: ProjectMetrics) -> Dict[str, Any]:
        """Rule-of-thumb prediction from the stored figures alone."""

        over_budget = metrics.budget_utilization > 100
        behind = (
            metrics.time_elapsed_percentage is not None
            and metrics.story_completion_rate + 10 < metrics.time_elapsed_percentage
        )
        risk_areas: List[str] = []
        recommendations: List[Dict[str, str]] = []
        if over_budget:
            risk_areas.append("Spending has exceeded the planned budget")
            recommendations.append({
                "area": "Budget",
                "recommendation": "Review open budget items and freeze non-critical spending",
                "impact": "High",
                "effort": "Medium"
            })
        if behind:
            recommendations.append({
                "area": "Timeline",
                "recommendation": "Re-plan remaining scope against current velocity",
                "impact": "High",
                "effort": "Medium"
            })
        if not recommendations:
            recommendations.append({
                "area": "General",
                "recommendation": "Keep tracking velocity and budget burn each sprint",
                "impact": "Medium",
                "effort": "Low"
            })

        score = 7 - (2 if over_budget else 0) - (2 if behind else 0)
        return {
            "timeline_prediction": {
                "predicted_completion_date": project.completion_date.date().isoformat() if project.completion_date else None,
                "confidence_level": "Low",
                "delay_risk": "High" if behind else "Medium",
                "predicted_delay": 0,
                "key_milestones": []
            },
            "budget_prediction": {
                "predicted_final_cost": str(max(metrics.total_budget, metrics.used_budget)),
                "predicted_variance": f"{max(0.0, metrics.budget_utilization - 100):.2f}%",
                "confidence_level": "Low",
                "risk_areas": risk_areas
            },
            "quality_prediction": {
                "predicted_quality_score": 7,
                "confidence_level": "Low",
                "potential_issues": []
            },
            "recommendations": recommendations,
            "overall_health_prediction": {
                "score": score,
                "trend": "Declining" if score < 5 else "Stable",
                "key_insights": [
                    f"{metrics.story_completion_rate}% of stories done",
                    f"{metrics.budget_utilization}% of budget used"
                ]
            }
        }

    def _normalize_mitigation(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        assessment = _section(raw, "riskAssessment")
        plan = _section(raw, "mitigationPlan")
        monitoring = _section(raw, "monitoringPlan")
        fallback = self._fallback_mitigation()

        return {
            "risk_assessment": {
                "severity": assessment.get("severity") or "Medium",
                "likelihood": assessment.get("likelihood") or "Medium",
                "impact": assessment.get("impact") or "No impact description provided",
                "risk_score": _as_int(assessment.get("riskScore"), 5)
            },
            "mitigation_plan": {
                "strategy": plan.get("strategy") or "Reduction",
                "recommended_actions": plan.get("recommendedActions")
                or fallback["mitigation_plan"]["recommended_actions"],
                "contingency_plan": plan.get("contingencyPlan") or "No contingency plan provided"
            },
            "monitoring_plan": {
                "key_indicators": monitoring.get("keyIndicators") or ["Risk status", "Project progress"],
                "monitoring_frequency": monitoring.get("monitoringFrequency") or "Weekly",
                "trigger_points": monitoring.get("triggerPoints") or ["Significant change in risk factors"]
            }
        }

    def _fallback_mitigation(self) -> Dict[str, Any]:
        return {
            "risk_assessment": {
                "severity": "Medium",
                "likelihood": "Medium",
                "impact": "Automatic analysis unavailable; review the risk manually.",
                "risk_score": 5
            },
            "mitigation_plan": {
                "strategy": "Reduction",
                "recommended_actions": [
                    {
                        "action": "Run a risk assessment session with the team",
                        "priority": "High",
                        "timeframe": "Immediate",
                        "responsibleParty": "Project Manager"
                    }
                ],
                "contingency_plan": "Name an owner for the risk and review it at every sprint review."
            },
            "monitoring_plan": {
                "key_indicators": ["Risk status", "Project progress"],
                "monitoring_frequency": "Weekly",
                "trigger_points": ["Project delays", "Budget overruns"]
            }
        }
