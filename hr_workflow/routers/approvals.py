from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session
from typing import List, Optional

from hr_workflow.core.limiter import DECISION_RATE_LIMIT, limiter
from hr_workflow.database import get_db
from hr_workflow.models.employee import Employee
from hr_workflow.routers.auth_deps import get_current_actor, require_approver
from hr_workflow.schemas.approval import ApprovalRequestResponse, ApprovalStats, DecisionRequest
from hr_workflow.services.approval import ApprovalService
from hr_workflow.services.notification import schedule_mail_delivery

router = APIRouter(prefix="/approvals", tags=["Approvals"])


@router.get("/", response_model=List[ApprovalRequestResponse])
def approval_queue(
    subject_type: Optional[str] = None,
    db: Session = Depends(get_db),
    approver: Employee = Depends(require_approver()),
):
    """Pending requests the caller can decide (their own requests excluded)."""
    return ApprovalService(db).list_pending(approver_id=approver.id, subject_type=subject_type)


@router.get("/stats", response_model=ApprovalStats)
def approval_stats(
    db: Session = Depends(get_db),
    approver: Employee = Depends(require_approver()),
):
    return ApprovalService(db).approval_stats(approver_id=approver.id)


@router.get("/history/{subject_type}/{subject_id}", response_model=List[ApprovalRequestResponse])
def approval_history(
    subject_type: str,
    subject_id: int,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return ApprovalService(db).list_for_subject(subject_type, subject_id)


@router.get("/{request_id}", response_model=ApprovalRequestResponse)
def get_approval_request(
    request_id: int,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return ApprovalService(db).get_request(request_id)


@router.post("/{request_id}/decision", response_model=ApprovalRequestResponse)
@limiter.limit(DECISION_RATE_LIMIT)
def decide_approval_request(
    request: Request,
    request_id: int,
    payload: DecisionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    approver: Employee = Depends(require_approver()),
):
    decided = ApprovalService(db).decide(
        request_id,
        payload.decision,
        approver.id,
        comment=payload.comment,
        scores=payload.scores,
        score=payload.score,
    )
    schedule_mail_delivery(background_tasks)
    return decided
