from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hr_workflow.database import Base
import enum


class SelfEvaluationStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


# The employee may edit and (re)submit from these
EDITABLE_SELF_EVALUATION_STATUSES = frozenset({
    SelfEvaluationStatus.DRAFT,
    SelfEvaluationStatus.REJECTED,
    SelfEvaluationStatus.REVISION_REQUESTED,
})


class Rating(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    BELOW_AVERAGE = "below_average"


class TaskSelfEvaluation(Base):
    """An employee's own assessment of a task, approved or sent back by a manager."""
    __tablename__ = "task_self_evaluations"
    __table_args__ = (
        UniqueConstraint("task_id", "employee_id", name="uq_task_self_evaluations_task_employee"),
    )

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    completion_percentage = Column(Integer, nullable=False, default=0)
    self_score = Column(Float, nullable=True)  # 0-100
    achievements = Column(Text, nullable=True)
    difficulties = Column(Text, nullable=True)
    recommendations = Column(Text, nullable=True)
    status = Column(String, default=SelfEvaluationStatus.DRAFT.value, nullable=False, index=True)
    revision_count = Column(Integer, default=0, nullable=False)

    # Set by the approving manager
    approved_score = Column(Float, nullable=True)
    rating = Column(String(16), nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    task = relationship("Task")
    employee = relationship("Employee")

    def __repr__(self):
        return f"<TaskSelfEvaluation {self.id} task={self.task_id} [{self.status}]>"
