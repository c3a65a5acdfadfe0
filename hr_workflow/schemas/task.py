from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Optional

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    code: Optional[str] = None
    assignee_id: Optional[int] = None
    assigner_id: Optional[int] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None

class TaskResponse(BaseModel):
    id: int
    code: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: str
    progress: int
    assignee_id: Optional[int] = None
    assigner_id: Optional[int] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    overdue_at: Optional[datetime] = None
    is_overdue: bool = False

    model_config = ConfigDict(from_attributes=True)

class TransitionRequest(BaseModel):
    to_status: str
    reason: Optional[str] = None

class ProgressUpdate(BaseModel):
    # 100 is reserved for completion
    progress: int = Field(..., ge=0, le=99)

class StatusHistoryResponse(BaseModel):
    id: int
    task_id: int
    old_status: Optional[str] = None
    new_status: str
    old_progress: Optional[int] = None
    new_progress: Optional[int] = None
    change_type: str
    change_reason: Optional[str] = None
    changed_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class TransitionResponse(BaseModel):
    applied: bool
    task: TaskResponse
    history_entry: Optional[StatusHistoryResponse] = None
    approval_request_id: Optional[int] = None

class StatusSummaryRow(BaseModel):
    status: str
    count: int
    avg_progress: float
    overdue_count: int
