from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import List, Optional

class CriterionCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    weight: float
    max_score: int
    is_required: bool = False
    sort_order: int = 0

class CriterionUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    weight: Optional[float] = None
    max_score: Optional[int] = None
    is_required: Optional[bool] = None
    sort_order: Optional[int] = None
    status: Optional[str] = None

class CriterionResponse(BaseModel):
    id: int
    code: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    weight: float
    max_score: int
    is_required: bool
    sort_order: int
    status: str

    model_config = ConfigDict(from_attributes=True)

class WeightReport(BaseModel):
    total_weight: float
    is_balanced: bool
    active_count: int

class CriterionScoreInput(BaseModel):
    criterion_id: int
    score: float
    comment: Optional[str] = None

class ReviewScoreResponse(BaseModel):
    criterion_id: int
    score: float
    weighted_score: float
    comment: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

class ReviewCreate(BaseModel):
    employee_id: int
    period: str
    start_date: date
    end_date: date
    reviewer_id: Optional[int] = None

class ReviewerAssignment(BaseModel):
    reviewer_id: int

class ReviewScoresRequest(BaseModel):
    scores: List[CriterionScoreInput]

class ReviewResponse(BaseModel):
    id: int
    review_code: Optional[str] = None
    employee_id: int
    reviewer_id: Optional[int] = None
    period: str
    start_date: date
    end_date: date
    status: str
    total_score: Optional[float] = None
    grade: Optional[str] = None
    strengths: Optional[str] = None
    weaknesses: Optional[str] = None
    goals: Optional[str] = None
    comments: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    scores: List[ReviewScoreResponse] = []

    model_config = ConfigDict(from_attributes=True)

class ReviewUpdate(BaseModel):
    strengths: Optional[str] = None
    weaknesses: Optional[str] = None
    goals: Optional[str] = None
    comments: Optional[str] = None
