from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional

from hr_workflow.core.exceptions import AccessDeniedError, InvalidTransition, NotFound, ValidationError
from hr_workflow.models.approval import SubjectType
from hr_workflow.models.employee import Employee
from hr_workflow.models.performance import PerformanceReview, ReviewStatus
from hr_workflow.services.base import BaseService
from hr_workflow.services.scoring import ScoringService

NARRATIVE_FIELDS = ("strengths", "weaknesses", "goals", "comments")
EDITABLE_STATUSES = frozenset({ReviewStatus.DRAFT, ReviewStatus.SUBMITTED})


class ReviewService(BaseService):
    """Performance review lifecycle: draft -> submitted -> reviewed -> acknowledged."""

    def get_review(self, review_id: int) -> PerformanceReview:
        review = self.db.get(PerformanceReview, review_id)
        if not review:
            raise NotFound("PerformanceReview", review_id)
        return review

    def _require_employee(self, employee_id: int, role: str = "Employee") -> Employee:
        employee = self.db.get(Employee, employee_id)
        if not employee:
            raise NotFound(role, employee_id)
        return employee

    @staticmethod
    def _expect_status(review: PerformanceReview, expected: ReviewStatus, target: ReviewStatus) -> None:
        if ReviewStatus(review.status) != expected:
            raise InvalidTransition(review.status, target.value, f"review must be {expected.value}")

    def _next_review_code(self, year: int) -> str:
        prefix = f"PR{year}-"
        count = (
            self.db.query(PerformanceReview)
            .filter(PerformanceReview.review_code.like(f"{prefix}%"))
            .count()
        )
        return f"{prefix}{count + 1:04d}"

    def create_review(
        self,
        employee_id: int,
        period: str,
        start_date: date,
        end_date: date,
        actor_id: int,
        reviewer_id: Optional[int] = None,
    ) -> PerformanceReview:
        if not period:
            raise ValidationError("Review period is required")
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")

        with self.unit_of_work():
            self._require_employee(actor_id, "Actor")
            self._require_employee(employee_id)
            if reviewer_id is not None:
                reviewer = self._require_employee(reviewer_id, "Reviewer")
                if not reviewer.can_approve:
                    raise ValidationError(f"Employee {reviewer_id} cannot review performance")

            review = PerformanceReview(
                review_code=self._next_review_code(start_date.year),
                employee_id=employee_id,
                reviewer_id=reviewer_id,
                period=period,
                start_date=start_date,
                end_date=end_date,
                status=ReviewStatus.DRAFT.value,
            )
            self.db.add(review)
            self.db.flush()

        self.log_info(f"Review {review.review_code} created for employee {employee_id}", review_id=review.id)
        return review

    def assign_reviewer(self, review_id: int, reviewer_id: int) -> PerformanceReview:
        with self.unit_of_work():
            review = self.get_review(review_id)
            if ReviewStatus(review.status) not in EDITABLE_STATUSES:
                raise InvalidTransition(review.status, review.status, "reviewer of a finished review cannot change")
            reviewer = self._require_employee(reviewer_id, "Reviewer")
            if not reviewer.can_approve:
                raise ValidationError(f"Employee {reviewer_id} cannot review performance")
            if reviewer_id == review.employee_id:
                raise ValidationError("An employee cannot review themselves")
            review.reviewer_id = reviewer_id
        return review

    def update_review(self, review_id: int, **fields) -> PerformanceReview:
        unknown = set(fields) - set(NARRATIVE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update review fields: {', '.join(sorted(unknown))}")
        with self.unit_of_work():
            review = self.get_review(review_id)
            if ReviewStatus(review.status) not in EDITABLE_STATUSES:
                raise InvalidTransition(review.status, review.status, "a finished review is read-only")
            for field, value in fields.items():
                setattr(review, field, value)
        return review

    def submit_review(self, review_id: int, actor_id: int) -> PerformanceReview:
        """Move a draft to submitted and queue it for approval."""
        from hr_workflow.services.approval import ApprovalService

        with self.unit_of_work():
            review = self.get_review(review_id)
            self._require_employee(actor_id, "Actor")
            self._expect_status(review, ReviewStatus.DRAFT, ReviewStatus.SUBMITTED)

            review.status = ReviewStatus.SUBMITTED.value
            review.submitted_at = datetime.now(timezone.utc)
            self.db.flush()

            ApprovalService(self.db, self.outbox).open_request(
                SubjectType.PERFORMANCE_REVIEW,
                review.id,
                ReviewStatus.SUBMITTED.value,
                ReviewStatus.REVIEWED.value,
                actor_id,
            )

        self.log_info(f"Review {review_id} submitted", review_id=review_id)
        return review

    def acknowledge_review(self, review_id: int, actor_id: int) -> PerformanceReview:
        with self.unit_of_work():
            review = self.get_review(review_id)
            if actor_id != review.employee_id:
                raise AccessDeniedError("Only the reviewed employee can acknowledge a review")
            self._expect_status(review, ReviewStatus.REVIEWED, ReviewStatus.ACKNOWLEDGED)
            review.status = ReviewStatus.ACKNOWLEDGED.value
            review.acknowledged_at = datetime.now(timezone.utc)
        return review

    # Called by the approval workflow inside its transaction

    def complete_review(
        self,
        review: PerformanceReview,
        scores: Iterable[Any],
        decider_id: int,
        comment: Optional[str] = None,
    ) -> PerformanceReview:
        self._expect_status(review, ReviewStatus.SUBMITTED, ReviewStatus.REVIEWED)
        ScoringService(self.db, self.outbox).replace_scores(review, scores)
        review.status = ReviewStatus.REVIEWED.value
        review.reviewed_at = datetime.now(timezone.utc)
        if review.reviewer_id is None:
            review.reviewer_id = decider_id
        if comment and not review.comments:
            review.comments = comment
        self.db.flush()
        return review

    def return_to_draft(self, review: PerformanceReview, comment: Optional[str] = None) -> PerformanceReview:
        self._expect_status(review, ReviewStatus.SUBMITTED, ReviewStatus.DRAFT)
        review.status = ReviewStatus.DRAFT.value
        review.submitted_at = None
        self.db.flush()
        self.log_info(f"Review {review.id} returned to draft", review_id=review.id, reason=comment)
        return review

    def list_reviews(
        self,
        employee_id: Optional[int] = None,
        reviewer_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[PerformanceReview]:
        query = self.db.query(PerformanceReview)
        if employee_id is not None:
            query = query.filter(PerformanceReview.employee_id == employee_id)
        if reviewer_id is not None:
            query = query.filter(PerformanceReview.reviewer_id == reviewer_id)
        if status:
            try:
                query = query.filter(PerformanceReview.status == ReviewStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown review status '{status}'")
        return query.order_by(PerformanceReview.start_date.desc(), PerformanceReview.id.desc()).all()
