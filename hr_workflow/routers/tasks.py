from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session
from typing import List

from hr_workflow.database import get_db
from hr_workflow.models.employee import Employee
from hr_workflow.routers.auth_deps import get_current_actor
from hr_workflow.schemas.task import (
    ProgressUpdate,
    StatusHistoryResponse,
    StatusSummaryRow,
    TaskCreate,
    TaskResponse,
    TransitionRequest,
    TransitionResponse,
)
from hr_workflow.services.notification import schedule_mail_delivery
from hr_workflow.services.task_status import TaskStatusService

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return TaskStatusService(db).create_task(actor_id=actor.id, **payload.model_dump())


@router.get("/summary", response_model=List[StatusSummaryRow])
def task_status_summary(
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return TaskStatusService(db).status_summary()


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: int,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return TaskStatusService(db).get_task(task_id)


@router.post("/{task_id}/transitions", response_model=TransitionResponse)
def request_transition(
    task_id: int,
    payload: TransitionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    """
    Move a task to another status. A completion request from pending_review
    is parked for approval and returned with applied=false.
    """
    outcome = TaskStatusService(db).request_transition(
        task_id, payload.to_status, actor_id=actor.id, reason=payload.reason
    )
    schedule_mail_delivery(background_tasks)
    return TransitionResponse(
        applied=outcome.applied,
        task=TaskResponse.model_validate(outcome.task),
        history_entry=StatusHistoryResponse.model_validate(outcome.history_entry) if outcome.history_entry else None,
        approval_request_id=outcome.approval_request.id if outcome.approval_request else None,
    )


@router.patch("/{task_id}/progress", response_model=TaskResponse)
def update_progress(
    task_id: int,
    payload: ProgressUpdate,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return TaskStatusService(db).update_progress(task_id, payload.progress, actor.id)


@router.get("/{task_id}/history", response_model=List[StatusHistoryResponse])
def get_task_history(
    task_id: int,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return TaskStatusService(db).get_history(task_id)
