from sqlalchemy import Column, Integer, String, Text, Date, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
from hr_workflow.database import Base
import enum


class TaskStatus(str, enum.Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    PENDING_REVIEW = "pending_review"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})

# Overdue is a marker layered on these statuses, never a status of its own
OVERDUE_ELIGIBLE_STATUSES = frozenset({TaskStatus.IN_PROGRESS, TaskStatus.PENDING_REVIEW})


class ChangeType(str, enum.Enum):
    MANUAL = "manual"
    AUTO_DUE = "auto_due"
    AUTO_OVERDUE = "auto_overdue"
    APPROVAL = "approval"
    REJECTION = "rejection"
    REVISION_REQUEST = "revision_request"


SYSTEM_CHANGE_TYPES = frozenset({ChangeType.AUTO_DUE, ChangeType.AUTO_OVERDUE})


def _utcnow():
    return datetime.now(timezone.utc)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, index=True, nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, default=TaskStatus.NEW.value, nullable=False, index=True)
    progress = Column(Integer, default=0, nullable=False)

    assignee_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)
    assigner_id = Column(Integer, ForeignKey("employees.id"), nullable=True)

    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    overdue_at = Column(DateTime(timezone=True), nullable=True)
    due_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    assignee = relationship("Employee", foreign_keys=[assignee_id])
    assigner = relationship("Employee", foreign_keys=[assigner_id])

    def __repr__(self):
        return f"<Task {self.id} [{self.status}]>"

    @property
    def is_terminal(self) -> bool:
        return TaskStatus(self.status) in TERMINAL_STATUSES

    @property
    def is_overdue(self) -> bool:
        return self.overdue_at is not None and TaskStatus(self.status) in OVERDUE_ELIGIBLE_STATUSES


class TaskStatusHistory(Base):
    """Append-only record of accepted status transitions."""
    __tablename__ = "task_status_history"
    __table_args__ = (
        Index("ix_task_status_history_task_created", "task_id", "created_at", "id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    old_status = Column(String, nullable=True)  # NULL for the creation entry
    new_status = Column(String, nullable=False)
    old_progress = Column(Integer, nullable=True)
    new_progress = Column(Integer, nullable=True)
    change_type = Column(String, nullable=False)
    change_reason = Column(Text, nullable=True)
    changed_by = Column(Integer, ForeignKey("employees.id"), nullable=True)
    # Python-side default keeps sub-second ordering on SQLite
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    task = relationship("Task")
