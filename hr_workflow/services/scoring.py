"""
Performance scoring.

weighted_score = (score / max_score) * weight, where weight is the
criterion's share of 100. The review total is the sum of weighted scores,
rounded to 4 decimals, and maps onto a letter grade with inclusive lower
bounds.
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from hr_workflow.core.exceptions import (
    IncompleteScoring,
    NotFound,
    ScoreOutOfRange,
    ValidationError,
)
from hr_workflow.models.evaluation import Rating
from hr_workflow.models.performance import (
    CriterionStatus,
    PerformanceCriterion,
    PerformanceReview,
    ReviewScore,
    ReviewStatus,
    SCORABLE_REVIEW_STATUSES,
)
from hr_workflow.services.base import BaseService

TOTAL_PRECISION = 4
FULL_WEIGHT = 100.0

GRADE_BANDS = (
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
)
LOWEST_GRADE = "E"


# Ratings of approved self-evaluations (scores out of 100)
RATING_BANDS = (
    (90.0, Rating.EXCELLENT),
    (70.0, Rating.GOOD),
    (50.0, Rating.AVERAGE),
)


def grade_for(total: float) -> str:
    """
    Letter grade for a review total. Lower bounds are inclusive and totals
    arrive rounded to TOTAL_PRECISION, so float noise just under a bound
    (89.99996) lands in the higher band.
    """
    for lower_bound, grade in GRADE_BANDS:
        if total >= lower_bound:
            return grade
    return LOWEST_GRADE


def rating_for(score: float) -> str:
    for lower_bound, rating in RATING_BANDS:
        if score >= lower_bound:
            return rating.value
    return Rating.BELOW_AVERAGE.value


def weighted_score(score: float, max_score: int, weight: float) -> float:
    return (score / max_score) * weight


@dataclass
class CriterionScore:
    criterion_id: int
    score: float
    comment: Optional[str] = None

    @classmethod
    def coerce(cls, item: Any) -> "CriterionScore":
        if isinstance(item, cls):
            return item
        if isinstance(item, dict):
            return cls(item.get("criterion_id"), item.get("score"), item.get("comment"))
        # pydantic schemas and similar objects
        return cls(item.criterion_id, item.score, getattr(item, "comment", None))


class ScoringService(BaseService):

    # ------------------------------------------------------------------
    # Review scoring
    # ------------------------------------------------------------------
    def compute_review(self, review_id: int, scores: Iterable[Any]) -> PerformanceReview:
        """
        Replace all scores of a review and recompute total and grade.

        Runs in one transaction: either every score row, the total and the
        grade change together, or nothing changes. Calling it twice with the
        same input leaves the same rows and result.
        """
        with self.unit_of_work():
            review = self.db.get(PerformanceReview, review_id)
            if not review:
                raise NotFound("PerformanceReview", review_id)
            if ReviewStatus(review.status) not in SCORABLE_REVIEW_STATUSES:
                raise ValidationError(
                    f"Scores of a {review.status} review are frozen",
                    details={"review_id": review_id, "status": review.status},
                )
            self.replace_scores(review, scores)

        self.log_info(
            f"Review {review_id} scored {review.total_score} ({review.grade})",
            review_id=review_id,
        )
        return review

    def replace_scores(self, review: PerformanceReview, scores: Iterable[Any]) -> PerformanceReview:
        """Validate and write scores inside the caller's transaction."""
        entries = [CriterionScore.coerce(item) for item in scores or []]
        if not entries:
            raise ValidationError("At least one criterion score is required")

        seen = set()
        for entry in entries:
            if entry.criterion_id in seen:
                raise ValidationError(
                    f"Criterion {entry.criterion_id} is scored more than once",
                    details={"criterion_id": entry.criterion_id},
                )
            seen.add(entry.criterion_id)

        criteria = {
            c.id: c
            for c in self.db.query(PerformanceCriterion).filter(PerformanceCriterion.id.in_(seen)).all()
        }

        rows = []
        total = 0.0
        for entry in entries:
            criterion = criteria.get(entry.criterion_id)
            if criterion is None:
                raise NotFound("PerformanceCriterion", entry.criterion_id)
            if not criterion.is_active:
                raise ValidationError(
                    f"Criterion {criterion.code} is inactive",
                    details={"criterion": criterion.code},
                )
            if entry.score is None or math.isnan(float(entry.score)):
                raise ValidationError(f"Score for criterion {criterion.code} is not a number")
            raw = float(entry.score)
            if raw < 0 or raw > criterion.max_score:
                raise ScoreOutOfRange(criterion.code, raw, criterion.max_score)

            weighted = weighted_score(raw, criterion.max_score, criterion.weight)
            total += weighted
            rows.append(ReviewScore(
                review_id=review.id,
                criterion_id=criterion.id,
                score=raw,
                weighted_score=round(weighted, TOTAL_PRECISION),
                comment=entry.comment,
            ))

        required = (
            self.db.query(PerformanceCriterion)
            .filter(
                PerformanceCriterion.status == CriterionStatus.ACTIVE.value,
                PerformanceCriterion.is_required.is_(True),
            )
            .order_by(PerformanceCriterion.sort_order, PerformanceCriterion.id)
            .all()
        )
        missing = [c.code for c in required if c.id not in seen]
        if missing:
            raise IncompleteScoring(missing)

        report = self.weight_report()
        if not report["is_balanced"]:
            self.log_warning(
                f"Active criteria weights sum to {report['total_weight']}, not {FULL_WEIGHT:g}",
                review_id=review.id,
            )

        # Old rows go first in their own statement so the unique
        # (review_id, criterion_id) constraint never sees both generations.
        self.db.expire(review, ["scores"])
        self.db.execute(delete(ReviewScore).where(ReviewScore.review_id == review.id))
        self.db.add_all(rows)

        total = round(total, TOTAL_PRECISION)
        review.total_score = total
        review.grade = grade_for(total)
        self.db.flush()
        self.db.expire(review, ["scores"])
        return review

    # ------------------------------------------------------------------
    # Criteria administration
    # ------------------------------------------------------------------
    @staticmethod
    def _check_criterion_values(weight: Optional[float], max_score: Optional[int]) -> None:
        if weight is not None and not 0 <= weight <= FULL_WEIGHT:
            raise ValidationError("Criterion weight must be between 0 and 100", details={"weight": weight})
        if max_score is not None and max_score <= 0:
            raise ValidationError("Criterion max_score must be positive", details={"max_score": max_score})

    def get_criterion(self, criterion_id: int) -> PerformanceCriterion:
        criterion = self.db.get(PerformanceCriterion, criterion_id)
        if not criterion:
            raise NotFound("PerformanceCriterion", criterion_id)
        return criterion

    def create_criterion(
        self,
        code: str,
        name: str,
        weight: float,
        max_score: int,
        is_required: bool = False,
        description: Optional[str] = None,
        category: Optional[str] = None,
        sort_order: int = 0,
    ) -> PerformanceCriterion:
        if not code or not name:
            raise ValidationError("Criterion code and name are required")
        self._check_criterion_values(weight, max_score)

        with self.unit_of_work():
            if self.db.query(PerformanceCriterion).filter(PerformanceCriterion.code == code).first():
                raise ValidationError(f"Criterion code '{code}' already exists", details={"code": code})
            criterion = PerformanceCriterion(
                code=code,
                name=name,
                description=description,
                category=category,
                weight=weight,
                max_score=max_score,
                is_required=is_required,
                sort_order=sort_order,
                status=CriterionStatus.ACTIVE.value,
            )
            self.db.add(criterion)
            try:
                self.db.flush()
            except IntegrityError:
                raise ValidationError(f"Criterion code '{code}' already exists", details={"code": code})

        self.log_info(f"Criterion {code} created", criterion_id=criterion.id)
        return criterion

    def update_criterion(self, criterion_id: int, **changes) -> PerformanceCriterion:
        allowed = {"name", "description", "category", "weight", "max_score", "is_required", "sort_order", "status"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot update criterion fields: {', '.join(sorted(unknown))}")
        self._check_criterion_values(changes.get("weight"), changes.get("max_score"))
        if "status" in changes:
            try:
                changes["status"] = CriterionStatus(changes["status"]).value
            except ValueError:
                raise ValidationError(f"Unknown criterion status '{changes['status']}'")

        with self.unit_of_work():
            criterion = self.get_criterion(criterion_id)
            for field, value in changes.items():
                setattr(criterion, field, value)
        return criterion

    def list_criteria(self, active_only: bool = True) -> List[PerformanceCriterion]:
        query = self.db.query(PerformanceCriterion)
        if active_only:
            query = query.filter(PerformanceCriterion.status == CriterionStatus.ACTIVE.value)
        return query.order_by(PerformanceCriterion.sort_order, PerformanceCriterion.id).all()

    def weight_report(self) -> Dict[str, Any]:
        """Sum of active criterion weights. Not enforced, only reported."""
        active = self.list_criteria(active_only=True)
        total = round(sum(c.weight for c in active), TOTAL_PRECISION)
        return {
            "total_weight": total,
            "is_balanced": math.isclose(total, FULL_WEIGHT, abs_tol=1e-6),
            "active_count": len(active),
        }
