from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from hr_workflow.database import get_db
from hr_workflow.models.employee import Employee
from hr_workflow.routers.auth_deps import get_current_actor, require_hr
from hr_workflow.schemas.performance import CriterionCreate, CriterionResponse, CriterionUpdate, WeightReport
from hr_workflow.services.scoring import ScoringService

router = APIRouter(prefix="/criteria", tags=["Performance Criteria"])


@router.get("/", response_model=List[CriterionResponse])
def list_criteria(
    active_only: bool = True,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return ScoringService(db).list_criteria(active_only=active_only)


@router.get("/weights", response_model=WeightReport)
def criteria_weight_report(
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return ScoringService(db).weight_report()


@router.post("/", response_model=CriterionResponse, status_code=status.HTTP_201_CREATED)
def create_criterion(
    payload: CriterionCreate,
    db: Session = Depends(get_db),
    hr: Employee = Depends(require_hr()),
):
    return ScoringService(db).create_criterion(**payload.model_dump())


@router.patch("/{criterion_id}", response_model=CriterionResponse)
def update_criterion(
    criterion_id: int,
    payload: CriterionUpdate,
    db: Session = Depends(get_db),
    hr: Employee = Depends(require_hr()),
):
    return ScoringService(db).update_criterion(criterion_id, **payload.model_dump(exclude_unset=True))
