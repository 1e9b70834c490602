from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, Numeric
from enum import Enum
from .base import BaseModel


class TaskStatus(str, Enum):
    CREATED = "Created"
    TO_DO = "To Do"
    IN_PROGRESS = "In Progress"
    IN_REVIEW = "In Review"
    BLOCKED = "Blocked"
    DONE = "Done"
    CLOSED = "Closed"


class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class TaskType(str, Enum):
    TASK = "Task"
    BUG = "Bug"
    IMPROVEMENT = "Improvement"
    SUBTASK = "Subtask"


# Statuses that count as finished work
FINISHED_TASK_STATUSES = (TaskStatus.DONE.value, TaskStatus.CLOSED.value)


class Task(BaseModel):
    __tablename__ = "tasks"

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=TaskStatus.CREATED.value, index=True)
    priority = Column(String, nullable=False, default=TaskPriority.MEDIUM.value)
    type = Column(String, nullable=False, default=TaskType.TASK.value)

    start_date = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)

    # Effort
    estimated_hours = Column(Numeric(8, 2), nullable=False, default=0)
    actual_hours = Column(Numeric(8, 2), nullable=False, default=0)
    original_estimate = Column(Integer, nullable=False, default=0)  # story points
    remaining_estimate = Column(Integer, nullable=False, default=0)

    # Foreign keys
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    story_id = Column(Integer, ForeignKey("stories.id"), nullable=True, index=True)
    assignee_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    reporter_id = Column(Integer, ForeignKey("users.id"), nullable=True)
