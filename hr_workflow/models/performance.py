from sqlalchemy import Column, Integer, String, Float, Date, Text, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hr_workflow.database import Base
import enum


class CriterionStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ReviewStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    ACKNOWLEDGED = "acknowledged"


# Scores are frozen once the review has been reviewed
SCORABLE_REVIEW_STATUSES = frozenset({ReviewStatus.DRAFT, ReviewStatus.SUBMITTED})


class PerformanceCriterion(Base):
    __tablename__ = "performance_criteria"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    weight = Column(Float, nullable=False)  # percentage, 0-100
    max_score = Column(Integer, nullable=False)
    is_required = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    status = Column(String, default=CriterionStatus.ACTIVE.value, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_active(self) -> bool:
        return self.status == CriterionStatus.ACTIVE.value


class PerformanceReview(Base):
    __tablename__ = "performance_reviews"

    id = Column(Integer, primary_key=True, index=True)
    review_code = Column(String(32), unique=True, index=True, nullable=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    reviewer_id = Column(Integer, ForeignKey("employees.id"), nullable=True)
    period = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String, default=ReviewStatus.DRAFT.value, nullable=False, index=True)
    total_score = Column(Float, nullable=True)
    grade = Column(String(1), nullable=True)
    strengths = Column(Text, nullable=True)
    weaknesses = Column(Text, nullable=True)
    goals = Column(Text, nullable=True)
    comments = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("Employee", foreign_keys=[employee_id])
    reviewer = relationship("Employee", foreign_keys=[reviewer_id])
    scores = relationship("ReviewScore", back_populates="review", order_by="ReviewScore.criterion_id")


class ReviewScore(Base):
    __tablename__ = "review_scores"
    __table_args__ = (
        UniqueConstraint("review_id", "criterion_id", name="uq_review_scores_review_criterion"),
    )

    id = Column(Integer, primary_key=True, index=True)
    review_id = Column(Integer, ForeignKey("performance_reviews.id", ondelete="CASCADE"), nullable=False, index=True)
    criterion_id = Column(Integer, ForeignKey("performance_criteria.id"), nullable=False)
    score = Column(Float, nullable=False)
    weighted_score = Column(Float, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    review = relationship("PerformanceReview", back_populates="scores")
    criterion = relationship("PerformanceCriterion")
