from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from hr_workflow.database import get_db
from hr_workflow.models.employee import Employee
from hr_workflow.routers.auth_deps import get_current_actor
from hr_workflow.schemas.notification import MarkAllReadResponse, NotificationResponse, UnreadCount
from hr_workflow.services.notification import NotificationDispatcher

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/", response_model=List[NotificationResponse])
def get_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_actor: Employee = Depends(get_current_actor),
):
    return NotificationDispatcher(db).list_for(current_actor.id, unread_only=unread_only, limit=limit)


@router.get("/unread-count", response_model=UnreadCount)
def get_unread_count(
    db: Session = Depends(get_db),
    current_actor: Employee = Depends(get_current_actor),
):
    return UnreadCount(unread=NotificationDispatcher(db).count_unread(current_actor.id))


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
def mark_notification_as_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_actor: Employee = Depends(get_current_actor),
):
    return NotificationDispatcher(db).mark_read(notification_id, recipient_id=current_actor.id)


@router.post("/mark-all-read", response_model=MarkAllReadResponse)
def mark_all_notifications_as_read(
    db: Session = Depends(get_db),
    current_actor: Employee = Depends(get_current_actor),
):
    return MarkAllReadResponse(updated=NotificationDispatcher(db).mark_all_read(current_actor.id))
