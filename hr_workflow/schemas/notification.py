from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional

class NotificationResponse(BaseModel):
    id: int
    recipient_id: int
    notification_type: str
    title: str
    message: Optional[str] = None
    task_id: Optional[int] = None
    approval_request_id: Optional[int] = None
    is_read: bool
    read_at: Optional[datetime] = None
    delivery_status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class UnreadCount(BaseModel):
    unread: int

class MarkAllReadResponse(BaseModel):
    updated: int
