from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from hr_workflow.database import get_db
from hr_workflow.models.employee import Employee
from hr_workflow.routers.auth_deps import get_current_actor, require_approver
from hr_workflow.schemas.evaluation import (
    DepartmentStats,
    LeaderboardEntry,
    SelfEvaluationCreate,
    SelfEvaluationResponse,
    SelfEvaluationUpdate,
)
from hr_workflow.services.notification import schedule_mail_delivery
from hr_workflow.services.self_evaluation import SelfEvaluationService

router = APIRouter(prefix="/self-evaluations", tags=["Self Evaluations"])


@router.post("/", response_model=SelfEvaluationResponse, status_code=status.HTTP_201_CREATED)
def create_self_evaluation(
    payload: SelfEvaluationCreate,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    """The caller evaluates a task assigned to them."""
    return SelfEvaluationService(db).create_self_evaluation(employee_id=actor.id, **payload.model_dump())


@router.get("/", response_model=List[SelfEvaluationResponse])
def list_self_evaluations(
    task_id: Optional[int] = None,
    employee_id: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return SelfEvaluationService(db).list_self_evaluations(task_id=task_id, employee_id=employee_id, status=status)


@router.get("/leaderboard", response_model=List[LeaderboardEntry])
def leaderboard(
    department: Optional[str] = None,
    limit: int = 10,
    db: Session = Depends(get_db),
    approver: Employee = Depends(require_approver()),
):
    return SelfEvaluationService(db).leaderboard(department=department, limit=limit)


@router.get("/departments", response_model=List[DepartmentStats])
def department_stats(
    db: Session = Depends(get_db),
    approver: Employee = Depends(require_approver()),
):
    return SelfEvaluationService(db).department_stats()


@router.get("/{evaluation_id}", response_model=SelfEvaluationResponse)
def get_self_evaluation(
    evaluation_id: int,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return SelfEvaluationService(db).get_self_evaluation(evaluation_id)


@router.patch("/{evaluation_id}", response_model=SelfEvaluationResponse)
def update_self_evaluation(
    evaluation_id: int,
    payload: SelfEvaluationUpdate,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return SelfEvaluationService(db).update_self_evaluation(
        evaluation_id, actor.id, **payload.model_dump(exclude_unset=True)
    )


@router.post("/{evaluation_id}/submit", response_model=SelfEvaluationResponse)
def submit_self_evaluation(
    evaluation_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    evaluation = SelfEvaluationService(db).submit_self_evaluation(evaluation_id, actor.id)
    schedule_mail_delivery(background_tasks)
    return evaluation
