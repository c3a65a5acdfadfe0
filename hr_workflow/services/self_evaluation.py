"""
Task self-evaluations.

The assignee of a finished task scores their own work (0-100) and submits it;
submission opens an approval request `pending -> approved` that a manager
approves (fixing the approved score and its rating) or sends back. Approved
self-evaluations feed the leaderboard and the department statistics.
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from hr_workflow.core.exceptions import (
    AccessDeniedError,
    InvalidTransition,
    NotFound,
    ScoreOutOfRange,
    ValidationError,
)
from hr_workflow.models.approval import ApprovalDecision, SubjectType
from hr_workflow.models.employee import Employee
from hr_workflow.models.evaluation import (
    EDITABLE_SELF_EVALUATION_STATUSES,
    Rating,
    SelfEvaluationStatus,
    TaskSelfEvaluation,
)
from hr_workflow.models.task import Task, TaskStatus
from hr_workflow.services.base import BaseService
from hr_workflow.services.scoring import rating_for

MAX_SELF_SCORE = 100
NARRATIVE_FIELDS = ("achievements", "difficulties", "recommendations")
EDITABLE_FIELDS = ("completion_percentage", "self_score") + NARRATIVE_FIELDS

# Work has to be handed in before it can be self-evaluated
EVALUABLE_TASK_STATUSES = frozenset({TaskStatus.PENDING_REVIEW, TaskStatus.COMPLETED})

DECISION_STATUS = {
    ApprovalDecision.APPROVE: SelfEvaluationStatus.APPROVED,
    ApprovalDecision.REJECT: SelfEvaluationStatus.REJECTED,
    ApprovalDecision.REQUEST_REVISION: SelfEvaluationStatus.REVISION_REQUESTED,
}


def _check_score(value: Optional[float], field: str = "self_score") -> None:
    if value is None:
        return
    if math.isnan(float(value)):
        raise ValidationError(f"{field} is not a number")
    if not 0 <= float(value) <= MAX_SELF_SCORE:
        raise ScoreOutOfRange(field, float(value), MAX_SELF_SCORE)


def _check_completion(value: Optional[int]) -> None:
    if value is not None and not 0 <= value <= 100:
        raise ValidationError("completion_percentage must be between 0 and 100")


class SelfEvaluationService(BaseService):

    def get_self_evaluation(self, evaluation_id: int) -> TaskSelfEvaluation:
        evaluation = self.db.get(TaskSelfEvaluation, evaluation_id)
        if not evaluation:
            raise NotFound("TaskSelfEvaluation", evaluation_id)
        return evaluation

    def _owned(self, evaluation_id: int, actor_id: int) -> TaskSelfEvaluation:
        evaluation = self.get_self_evaluation(evaluation_id)
        if evaluation.employee_id != actor_id:
            raise AccessDeniedError("Only the evaluated employee can change a self-evaluation")
        return evaluation

    @staticmethod
    def _expect_editable(evaluation: TaskSelfEvaluation, target: SelfEvaluationStatus) -> None:
        if SelfEvaluationStatus(evaluation.status) not in EDITABLE_SELF_EVALUATION_STATUSES:
            raise InvalidTransition(evaluation.status, target.value, "self-evaluation is not with the employee")

    # ------------------------------------------------------------------
    # Employee side
    # ------------------------------------------------------------------
    def create_self_evaluation(
        self,
        task_id: int,
        employee_id: int,
        completion_percentage: int = 100,
        self_score: Optional[float] = None,
        **narrative,
    ) -> TaskSelfEvaluation:
        unknown = set(narrative) - set(NARRATIVE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown self-evaluation fields: {', '.join(sorted(unknown))}")
        _check_completion(completion_percentage)
        _check_score(self_score)

        with self.unit_of_work():
            task = self.db.get(Task, task_id)
            if not task:
                raise NotFound("Task", task_id)
            if not self.db.get(Employee, employee_id):
                raise NotFound("Employee", employee_id)
            if task.assignee_id != employee_id:
                raise AccessDeniedError("Only the assignee can evaluate a task")
            if task.status == TaskStatus.CANCELLED.value:
                raise ValidationError("A cancelled task cannot be evaluated")
            existing = (
                self.db.query(TaskSelfEvaluation)
                .filter_by(task_id=task_id, employee_id=employee_id)
                .first()
            )
            if existing:
                raise ValidationError(
                    f"Task {task_id} already has a self-evaluation",
                    details={"self_evaluation_id": existing.id},
                )

            evaluation = TaskSelfEvaluation(
                task_id=task_id,
                employee_id=employee_id,
                completion_percentage=completion_percentage,
                self_score=self_score,
                status=SelfEvaluationStatus.DRAFT.value,
                **narrative,
            )
            self.db.add(evaluation)
            self.db.flush()

        self.log_info(f"Self-evaluation {evaluation.id} created for task {task_id}", task_id=task_id)
        return evaluation

    def update_self_evaluation(self, evaluation_id: int, actor_id: int, **fields) -> TaskSelfEvaluation:
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update self-evaluation fields: {', '.join(sorted(unknown))}")
        _check_completion(fields.get("completion_percentage"))
        _check_score(fields.get("self_score"))

        with self.unit_of_work():
            evaluation = self._owned(evaluation_id, actor_id)
            self._expect_editable(evaluation, SelfEvaluationStatus(evaluation.status))
            for field, value in fields.items():
                setattr(evaluation, field, value)
        return evaluation

    def submit_self_evaluation(self, evaluation_id: int, actor_id: int) -> TaskSelfEvaluation:
        """Hand the self-evaluation to the approvers."""
        from hr_workflow.services.approval import ApprovalService

        with self.unit_of_work():
            evaluation = self._owned(evaluation_id, actor_id)
            self._expect_editable(evaluation, SelfEvaluationStatus.PENDING)
            if evaluation.self_score is None:
                raise ValidationError("A self-score is required before submitting")
            task = self.db.get(Task, evaluation.task_id)
            if TaskStatus(task.status) not in EVALUABLE_TASK_STATUSES:
                raise InvalidTransition(
                    evaluation.status,
                    SelfEvaluationStatus.PENDING.value,
                    f"task is {task.status}",
                )

            evaluation.status = SelfEvaluationStatus.PENDING.value
            evaluation.submitted_at = datetime.now(timezone.utc)
            self.db.flush()

            ApprovalService(self.db, self.outbox).open_request(
                SubjectType.SELF_EVALUATION,
                evaluation.id,
                SelfEvaluationStatus.PENDING.value,
                SelfEvaluationStatus.APPROVED.value,
                actor_id,
            )

        self.log_info(f"Self-evaluation {evaluation_id} submitted", task_id=evaluation.task_id)
        return evaluation

    # Called by the approval workflow inside its transaction

    def apply_decision(
        self,
        evaluation: TaskSelfEvaluation,
        verdict: ApprovalDecision,
        score: Optional[float] = None,
    ) -> TaskSelfEvaluation:
        target = DECISION_STATUS[verdict]
        if evaluation.status != SelfEvaluationStatus.PENDING.value:
            raise InvalidTransition(evaluation.status, target.value, "self-evaluation is not pending")

        if verdict == ApprovalDecision.APPROVE:
            approved = score if score is not None else evaluation.self_score
            if approved is None:
                raise ValidationError("Approving a self-evaluation requires a score")
            _check_score(approved, "approved_score")
            evaluation.approved_score = float(approved)
            evaluation.rating = rating_for(evaluation.approved_score)
        elif verdict == ApprovalDecision.REQUEST_REVISION:
            evaluation.revision_count = (evaluation.revision_count or 0) + 1

        evaluation.status = target.value
        evaluation.decided_at = datetime.now(timezone.utc)
        self.db.flush()
        return evaluation

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_self_evaluations(
        self,
        task_id: Optional[int] = None,
        employee_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[TaskSelfEvaluation]:
        query = self.db.query(TaskSelfEvaluation)
        if task_id is not None:
            query = query.filter(TaskSelfEvaluation.task_id == task_id)
        if employee_id is not None:
            query = query.filter(TaskSelfEvaluation.employee_id == employee_id)
        if status:
            try:
                query = query.filter(TaskSelfEvaluation.status == SelfEvaluationStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown self-evaluation status '{status}'")
        return query.order_by(TaskSelfEvaluation.id.desc()).all()

    def leaderboard(self, department: Optional[str] = None, limit: int = 10) -> List[Dict[str, Any]]:
        """Employees ranked by their average approved score."""
        query = (
            self.db.query(
                Employee.id,
                Employee.code,
                Employee.full_name,
                Employee.department,
                func.count(TaskSelfEvaluation.id),
                func.avg(TaskSelfEvaluation.approved_score),
            )
            .join(TaskSelfEvaluation, TaskSelfEvaluation.employee_id == Employee.id)
            .filter(TaskSelfEvaluation.status == SelfEvaluationStatus.APPROVED.value)
        )
        if department:
            query = query.filter(Employee.department == department)
        rows = (
            query.group_by(Employee.id, Employee.code, Employee.full_name, Employee.department)
            .order_by(func.avg(TaskSelfEvaluation.approved_score).desc(), Employee.id.asc())
            .limit(limit)
            .all()
        )
        return [
            {
                "employee_id": employee_id,
                "employee_code": code,
                "employee_name": name,
                "department": dept,
                "evaluated_tasks": count,
                "average_score": round(float(avg), 2),
                "rating": rating_for(round(float(avg))),
            }
            for employee_id, code, name, dept, count, avg in rows
        ]

    def department_stats(self) -> List[Dict[str, Any]]:
        """Approved self-evaluations per department with the rating distribution."""
        rows = (
            self.db.query(Employee.department, TaskSelfEvaluation.rating, TaskSelfEvaluation.approved_score)
            .join(Employee, TaskSelfEvaluation.employee_id == Employee.id)
            .filter(
                TaskSelfEvaluation.status == SelfEvaluationStatus.APPROVED.value,
                Employee.department.isnot(None),
            )
            .all()
        )

        departments: Dict[str, Dict[str, Any]] = {}
        for department, rating, score in rows:
            stats = departments.setdefault(department, {
                "department": department,
                "total_evaluations": 0,
                "score_sum": 0.0,
                "rating_distribution": {r.value: 0 for r in Rating},
            })
            stats["total_evaluations"] += 1
            stats["score_sum"] += score or 0.0
            if rating in stats["rating_distribution"]:
                stats["rating_distribution"][rating] += 1

        result = []
        for stats in sorted(departments.values(), key=lambda s: s["department"]):
            score_sum = stats.pop("score_sum")
            stats["average_score"] = round(score_sum / stats["total_evaluations"], 2)
            result.append(stats)
        return result
