from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional

from hr_workflow.database import get_db
from hr_workflow.models.employee import Employee
from hr_workflow.routers.auth_deps import get_current_actor, require_approver
from hr_workflow.schemas.performance import (
    ReviewCreate,
    ReviewerAssignment,
    ReviewResponse,
    ReviewScoresRequest,
    ReviewUpdate,
)
from hr_workflow.services.notification import schedule_mail_delivery
from hr_workflow.services.reviews import ReviewService
from hr_workflow.services.scoring import ScoringService

router = APIRouter(prefix="/reviews", tags=["Performance Reviews"])


@router.post("/", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def create_review(
    payload: ReviewCreate,
    db: Session = Depends(get_db),
    actor: Employee = Depends(require_approver()),
):
    return ReviewService(db).create_review(actor_id=actor.id, **payload.model_dump())


@router.get("/", response_model=List[ReviewResponse])
def list_reviews(
    employee_id: Optional[int] = None,
    reviewer_id: Optional[int] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return ReviewService(db).list_reviews(employee_id=employee_id, reviewer_id=reviewer_id, status=status)


@router.get("/{review_id}", response_model=ReviewResponse)
def get_review(
    review_id: int,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return ReviewService(db).get_review(review_id)


@router.patch("/{review_id}", response_model=ReviewResponse)
def update_review(
    review_id: int,
    payload: ReviewUpdate,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return ReviewService(db).update_review(review_id, **payload.model_dump(exclude_unset=True))


@router.put("/{review_id}/reviewer", response_model=ReviewResponse)
def assign_reviewer(
    review_id: int,
    payload: ReviewerAssignment,
    db: Session = Depends(get_db),
    actor: Employee = Depends(require_approver()),
):
    return ReviewService(db).assign_reviewer(review_id, payload.reviewer_id)


@router.post("/{review_id}/scores", response_model=ReviewResponse)
def score_review(
    review_id: int,
    payload: ReviewScoresRequest,
    db: Session = Depends(get_db),
    actor: Employee = Depends(require_approver()),
):
    """Replace the review's scores and recompute total and grade."""
    return ScoringService(db).compute_review(review_id, payload.scores)


@router.post("/{review_id}/submit", response_model=ReviewResponse)
def submit_review(
    review_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    review = ReviewService(db).submit_review(review_id, actor.id)
    schedule_mail_delivery(background_tasks)
    return review


@router.post("/{review_id}/acknowledge", response_model=ReviewResponse)
def acknowledge_review(
    review_id: int,
    db: Session = Depends(get_db),
    actor: Employee = Depends(get_current_actor),
):
    return ReviewService(db).acknowledge_review(review_id, actor.id)
