from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import List, Optional

from hr_workflow.schemas.performance import CriterionScoreInput

class ApprovalRequestResponse(BaseModel):
    id: int
    subject_type: str
    subject_id: int
    from_status: str
    to_status: str
    requester_id: int
    status: str
    comment: Optional[str] = None
    decided_by: Optional[int] = None
    decided_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class DecisionRequest(BaseModel):
    decision: str
    comment: Optional[str] = None
    # Required when approving a performance review
    scores: Optional[List[CriterionScoreInput]] = None
    # Approved score of a self-evaluation; defaults to the employee's own
    score: Optional[float] = Field(default=None, ge=0, le=100)

class ApprovalStats(BaseModel):
    week_start: date
    pending: int
    approved_this_week: int
    rejected_this_week: int
    revision_requested_this_week: int
    completed_without_evaluation: int
