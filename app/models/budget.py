from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, JSON, Numeric
from enum import Enum
from .base import BaseModel


class BudgetItemStatus(str, Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"
    CANCELLED = "Cancelled"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    REJECTED = "Rejected"


class BudgetItem(BaseModel):
    __tablename__ = "budget_items"

    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, index=True)  # Development, Marketing, ...
    amount = Column(Numeric(15, 2), nullable=False)  # planned
    used_amount = Column(Numeric(15, 2), nullable=False, default=0)  # derived from expenses
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(String, nullable=False, default=BudgetItemStatus.ACTIVE.value, index=True)
    priority = Column(String, default="Medium")  # Low, Medium, High
    notes = Column(Text, nullable=True)
    extra = Column("metadata", JSON, default=dict)

    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)


class Expense(BaseModel):
    __tablename__ = "expenses"

    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), nullable=True)
    category = Column(String(50), nullable=False, index=True)
    payment_method = Column(String(50), nullable=True)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    receipt_url = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    # Foreign keys
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    budget_item_id = Column(Integer, ForeignKey("budget_items.id"), nullable=True, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
