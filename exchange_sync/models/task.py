# exchange_sync/models/task.py

from enum import Enum as PyEnum

from sqlalchemy import Enum

from .base import BaseModel, db


class TaskStatus(PyEnum):
    """Task workflow state"""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ON_HOLD = "ON_HOLD"


class TaskPriority(PyEnum):
    """Task priority"""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class Task(BaseModel):
    """Task mirrored from PracticePanther, optionally attached to an exchange."""

    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    pp_task_id = db.Column(db.String(64), unique=True, nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(Enum(TaskStatus, name="task_status_enum"), nullable=False, default=TaskStatus.PENDING, index=True)
    priority = db.Column(Enum(TaskPriority, name="task_priority_enum"), nullable=False, default=TaskPriority.MEDIUM)
    exchange_id = db.Column(db.Integer, db.ForeignKey("exchanges.id", ondelete="SET NULL"), nullable=True, index=True)
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    pp_data = db.Column(db.JSON, nullable=True)
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)

    exchange = db.relationship("Exchange", back_populates="tasks")
    assignee = db.relationship("User", foreign_keys=[assigned_to])

    def __repr__(self):
        return f"<Task {self.title} pp={self.pp_task_id}>"
