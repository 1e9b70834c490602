from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, JSON, Numeric, Boolean
from pydantic import BaseModel as Schema, ConfigDict
from typing import Optional
from .base import BaseModel


class ProjectMetadata(Schema):
    """Structured view over ``projects.metadata``; unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    velocity: Optional[int] = None


class Project(BaseModel):
    __tablename__ = "projects"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, default="Active")  # Not Started, Active, In Progress, Review, Completed, Archived, On Hold
    start_date = Column(DateTime(timezone=True), nullable=True)
    completion_date = Column(DateTime(timezone=True), nullable=True)

    # Budget aggregates, maintained incrementally by the budget and expense services
    total_budget = Column(Numeric(15, 2), nullable=False, default=0)
    used_budget = Column(Numeric(15, 2), nullable=False, default=0)

    project_metadata = Column("metadata", JSON, default=dict)

    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)

    @property
    def meta(self) -> ProjectMetadata:
        return ProjectMetadata.model_validate(self.project_metadata or {})

    @meta.setter
    def meta(self, value: ProjectMetadata) -> None:
        # Assign a fresh dict so the JSON column is flagged dirty
        self.project_metadata = value.model_dump(mode="json", exclude_none=True)

    @property
    def velocity(self) -> Optional[int]:
        return self.meta.velocity


class Board(BaseModel):
    __tablename__ = "boards"

    name = Column(String(100), nullable=False)
    filter_query = Column(Text, nullable=True)
    archived = Column(Boolean, nullable=False, default=False)

    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
