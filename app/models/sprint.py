from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, JSON, Boolean
from pydantic import BaseModel as Schema, ConfigDict
from datetime import datetime
from enum import Enum
from typing import Optional
from .base import BaseModel


class SprintStatus(str, Enum):
    PLANNING = "Planning"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class StoryStatus(str, Enum):
    TO_DO = "To Do"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DONE = "Done"


class SprintMetadata(Schema):
    """Structured view over ``sprints.metadata``; unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class Sprint(BaseModel):
    __tablename__ = "sprints"

    name = Column(String(100), nullable=False)
    goal = Column(Text, nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default=SprintStatus.PLANNING.value, index=True)
    is_locked = Column(Boolean, nullable=False, default=False)

    # Derived from story membership
    committed_points = Column(Integer, nullable=False, default=0)
    total_points = Column(Integer, nullable=False, default=0)
    completed_points = Column(Integer, nullable=False, default=0)

    retrospective = Column(Text, nullable=True)
    sprint_metadata = Column("metadata", JSON, default=dict)

    # Foreign keys
    board_id = Column(Integer, ForeignKey("boards.id"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    @property
    def meta(self) -> SprintMetadata:
        return SprintMetadata.model_validate(self.sprint_metadata or {})

    @meta.setter
    def meta(self, value: SprintMetadata) -> None:
        self.sprint_metadata = value.model_dump(mode="json", exclude_none=True)


class Story(BaseModel):
    __tablename__ = "stories"

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=StoryStatus.TO_DO.value, index=True)
    priority = Column(String, default="Medium")  # Low, Medium, High, Critical
    points = Column(Integer, nullable=False, default=0)
    is_ready = Column(Boolean, nullable=False, default=False)
    order = Column(Integer, default=0)

    # Foreign keys
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    sprint_id = Column(Integer, ForeignKey("sprints.id"), nullable=True, index=True)  # null = backlog
    assignee_id = Column(Integer, ForeignKey("users.id"), nullable=True)
