from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Dict, Optional

class SelfEvaluationCreate(BaseModel):
    task_id: int
    completion_percentage: int = Field(default=100, ge=0, le=100)
    self_score: Optional[float] = Field(default=None, ge=0, le=100)
    achievements: Optional[str] = None
    difficulties: Optional[str] = None
    recommendations: Optional[str] = None

class SelfEvaluationUpdate(BaseModel):
    completion_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    self_score: Optional[float] = Field(default=None, ge=0, le=100)
    achievements: Optional[str] = None
    difficulties: Optional[str] = None
    recommendations: Optional[str] = None

class SelfEvaluationResponse(BaseModel):
    id: int
    task_id: int
    employee_id: int
    completion_percentage: int
    self_score: Optional[float] = None
    achievements: Optional[str] = None
    difficulties: Optional[str] = None
    recommendations: Optional[str] = None
    status: str
    revision_count: int
    approved_score: Optional[float] = None
    rating: Optional[str] = None
    submitted_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class LeaderboardEntry(BaseModel):
    employee_id: int
    employee_code: Optional[str] = None
    employee_name: str
    department: Optional[str] = None
    evaluated_tasks: int
    average_score: float
    rating: str

class DepartmentStats(BaseModel):
    department: str
    total_evaluations: int
    average_score: float
    rating_distribution: Dict[str, int]
