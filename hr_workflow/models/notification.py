from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from hr_workflow.database import Base
import enum


class NotificationType(str, enum.Enum):
    DUE_REMINDER = "due_reminder"
    OVERDUE_ALERT = "overdue_alert"
    PENDING_APPROVAL = "pending_approval"
    APPROVAL_RESULT = "approval_result"


class DeliveryStatus(str, enum.Enum):
    SKIPPED = "skipped"
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class TaskNotification(Base):
    __tablename__ = "task_notifications"

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    notification_type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=True)
    approval_request_id = Column(Integer, ForeignKey("approval_requests.id"), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    delivery_status = Column(String(16), default=DeliveryStatus.SKIPPED.value, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    recipient = relationship("Employee")
