from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hr_workflow.database import Base
import enum


class SubjectType(str, enum.Enum):
    TASK = "task"
    PERFORMANCE_REVIEW = "performance_review"
    SELF_EVALUATION = "self_evaluation"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"
    # Closed without a decision because the subject went away (task cancelled)
    CANCELLED = "cancelled"


class ApprovalDecision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"


DECISION_OUTCOME = {
    ApprovalDecision.APPROVE: ApprovalStatus.APPROVED,
    ApprovalDecision.REJECT: ApprovalStatus.REJECTED,
    ApprovalDecision.REQUEST_REVISION: ApprovalStatus.REVISION_REQUESTED,
}


class ApprovalRequest(Base):
    __tablename__ = "approval_requests"
    __table_args__ = (
        # At most one pending request per subject
        Index(
            "uq_approval_requests_one_pending",
            "subject_type",
            "subject_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    subject_type = Column(String(32), nullable=False, index=True)
    subject_id = Column(Integer, nullable=False, index=True)
    from_status = Column(String, nullable=False)
    to_status = Column(String, nullable=False)
    requester_id = Column(Integer, ForeignKey("employees.id"), nullable=False)
    status = Column(String, default=ApprovalStatus.PENDING.value, nullable=False, index=True)
    comment = Column(Text, nullable=True)
    decided_by = Column(Integer, ForeignKey("employees.id"), nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    requester = relationship("Employee", foreign_keys=[requester_id])
    decider = relationship("Employee", foreign_keys=[decided_by])

    def __repr__(self):
        return f"<ApprovalRequest {self.id} {self.subject_type}:{self.subject_id} [{self.status}]>"

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING.value
