"""
Approval workflow.

An ApprovalRequest parks a transition until a reviewer decides it. A decision
is written with a conditional UPDATE (`WHERE status = 'pending'`), so when two
reviewers decide the same request at once only the first one takes effect and
the second gets AlreadyDecided. The decision and its effect on the subject
(task transition, review scoring, self-evaluation verdict) share one
transaction.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import exists, func, update
from sqlalchemy.exc import IntegrityError

from hr_workflow.core.exceptions import (
    AccessDeniedError,
    AlreadyDecided,
    DuplicatePendingRequest,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from hr_workflow.models.approval import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalStatus,
    DECISION_OUTCOME,
    SubjectType,
)
from hr_workflow.models.employee import APPROVER_ROLES, Employee
from hr_workflow.models.evaluation import SelfEvaluationStatus, TaskSelfEvaluation
from hr_workflow.models.performance import PerformanceReview, ReviewStatus
from hr_workflow.models.task import ChangeType, Task, TaskStatus
from hr_workflow.services.base import BaseService
from hr_workflow.services.events import ApprovalDecided, ApprovalRequested

REJECTION_CHANGE_TYPES = {
    ApprovalDecision.REJECT: ChangeType.REJECTION,
    ApprovalDecision.REQUEST_REVISION: ChangeType.REVISION_REQUEST,
}

SUBJECT_MODELS = {
    SubjectType.TASK: Task,
    SubjectType.PERFORMANCE_REVIEW: PerformanceReview,
    SubjectType.SELF_EVALUATION: TaskSelfEvaluation,
}

# (from_status, to_status) pairs a decision knows how to apply.
# Task pairs come from the state machine's approval-gated set.
APPROVABLE_CHANGES = {
    SubjectType.PERFORMANCE_REVIEW: {(ReviewStatus.SUBMITTED.value, ReviewStatus.REVIEWED.value)},
    SubjectType.SELF_EVALUATION: {(SelfEvaluationStatus.PENDING.value, SelfEvaluationStatus.APPROVED.value)},
}


def _coerce_subject_type(value: Union[str, SubjectType]) -> SubjectType:
    try:
        return SubjectType(value)
    except ValueError:
        raise ValidationError(f"Unknown approval subject '{value}'")


def _coerce_decision(value: Union[str, ApprovalDecision]) -> ApprovalDecision:
    try:
        return ApprovalDecision(value)
    except ValueError:
        raise ValidationError(f"Unknown decision '{value}'")


def approvable_changes(subject_type: SubjectType) -> set:
    if subject_type == SubjectType.TASK:
        from hr_workflow.services.task_status import APPROVAL_GATED
        return {(from_status.value, to_status.value) for from_status, to_status in APPROVAL_GATED}
    return APPROVABLE_CHANGES[subject_type]


def week_start(today: date) -> date:
    """Weeks start on Sunday."""
    return today - timedelta(days=(today.weekday() + 1) % 7)


class ApprovalService(BaseService):

    def get_request(self, request_id: int) -> ApprovalRequest:
        request = self.db.get(ApprovalRequest, request_id)
        if not request:
            raise NotFound("ApprovalRequest", request_id)
        return request

    def _load_subject(self, subject_type: SubjectType, subject_id: int):
        model = SUBJECT_MODELS[subject_type]
        subject = self.db.get(model, subject_id)
        if not subject:
            raise NotFound(model.__name__, subject_id)
        return subject

    def find_pending(self, subject_type: SubjectType, subject_id: int) -> Optional[ApprovalRequest]:
        return (
            self.db.query(ApprovalRequest)
            .filter(
                ApprovalRequest.subject_type == subject_type.value,
                ApprovalRequest.subject_id == subject_id,
                ApprovalRequest.status == ApprovalStatus.PENDING.value,
            )
            .first()
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def submit_for_approval(
        self,
        subject_type: Union[str, SubjectType],
        subject_id: int,
        from_status: str,
        to_status: str,
        requester_id: int,
    ) -> ApprovalRequest:
        kind = _coerce_subject_type(subject_type)
        with self.unit_of_work():
            request = self.open_request(kind, subject_id, from_status, to_status, requester_id)
        return request

    def open_request(
        self,
        subject_type: SubjectType,
        subject_id: int,
        from_status: str,
        to_status: str,
        requester_id: Optional[int],
    ) -> ApprovalRequest:
        """Create a pending request inside the caller's transaction."""
        if requester_id is None:
            raise ValidationError("An approval request needs a requester")
        if from_status == to_status:
            raise InvalidTransition(from_status, to_status, "nothing to approve")
        if (from_status, to_status) not in approvable_changes(subject_type):
            # A request nobody could apply would block the subject for good
            raise InvalidTransition(from_status, to_status, f"not an approvable {subject_type.value} change")

        subject = self._load_subject(subject_type, subject_id)
        if subject.status != from_status:
            raise InvalidTransition(subject.status, to_status, f"subject is not in {from_status}")
        if not self.db.get(Employee, requester_id):
            raise NotFound("Requester", requester_id)

        existing = self.find_pending(subject_type, subject_id)
        if existing:
            raise DuplicatePendingRequest(subject_type.value, subject_id, existing.id)

        request = ApprovalRequest(
            subject_type=subject_type.value,
            subject_id=subject_id,
            from_status=from_status,
            to_status=to_status,
            requester_id=requester_id,
            status=ApprovalStatus.PENDING.value,
        )
        self.db.add(request)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent submission
            raise DuplicatePendingRequest(subject_type.value, subject_id)

        self.outbox.record(ApprovalRequested(
            request_id=request.id,
            subject_type=subject_type.value,
            subject_id=subject_id,
            requester_id=requester_id,
        ))
        self.log_info(f"Approval request {request.id} opened for {subject_type.value} {subject_id}")
        return request

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------
    def _close(self, request: ApprovalRequest, status: ApprovalStatus, decider_id: Optional[int], comment: Optional[str]) -> None:
        result = self.db.execute(
            update(ApprovalRequest)
            .where(
                ApprovalRequest.id == request.id,
                ApprovalRequest.status == ApprovalStatus.PENDING.value,
            )
            .values(status=status.value, decided_by=decider_id, decided_at=datetime.now(timezone.utc), comment=comment)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyDecided(request.id)
        self.db.refresh(request)

    def decide(
        self,
        request_id: int,
        decision: Union[str, ApprovalDecision],
        decider_id: int,
        comment: Optional[str] = None,
        scores: Optional[Sequence] = None,
        score: Optional[float] = None,
    ) -> ApprovalRequest:
        """
        Record the one and only decision on a request and apply its effect.

        Tasks: approve completes the task, reject / request_revision send it
        back to in_progress with the comment as change reason.
        Reviews: approve scores the review (scores are required) and marks it
        reviewed, reject / request_revision return it to draft.
        Self-evaluations: approve fixes the approved score (`score`, default
        the employee's own) and its rating; reject / request_revision hand it
        back to the employee.

        Nobody decides their own request.
        """
        verdict = _coerce_decision(decision)
        outcome = DECISION_OUTCOME[verdict]

        with self.unit_of_work():
            request = self.get_request(request_id)
            if not request.is_pending:
                raise AlreadyDecided(request.id, request.status)
            if not self.db.get(Employee, decider_id):
                raise NotFound("Decider", decider_id)
            if decider_id == request.requester_id:
                raise AccessDeniedError("An approval request cannot be decided by its requester")

            subject_type = SubjectType(request.subject_type)
            if subject_type == SubjectType.PERFORMANCE_REVIEW and verdict == ApprovalDecision.APPROVE and not scores:
                raise ValidationError("Approving a performance review requires criterion scores")

            self._close(request, outcome, decider_id, comment)

            total_score = grade = None
            if subject_type == SubjectType.TASK:
                self._apply_to_task(request, verdict, decider_id, comment)
            elif subject_type == SubjectType.PERFORMANCE_REVIEW:
                review = self._apply_to_review(request, verdict, decider_id, comment, scores)
                total_score, grade = review.total_score, review.grade
            else:
                evaluation = self._apply_to_self_evaluation(request, verdict, score)
                total_score, grade = evaluation.approved_score, evaluation.rating

            self.outbox.record(ApprovalDecided(
                request_id=request.id,
                subject_type=request.subject_type,
                subject_id=request.subject_id,
                requester_id=request.requester_id,
                decider_id=decider_id,
                outcome=outcome.value,
                comment=comment,
                total_score=total_score,
                grade=grade,
            ))

        self.log_info(f"Approval request {request_id} {outcome.value}", decider_id=decider_id)
        return request

    def cancel_pending(
        self,
        subject_type: SubjectType,
        subject_id: int,
        actor_id: Optional[int],
        reason: Optional[str] = None,
    ) -> Optional[ApprovalRequest]:
        """
        Close the subject's pending request, if any, inside the caller's
        transaction. Used when the subject itself is closed (a task is
        cancelled) and the parked change can no longer happen.
        """
        request = self.find_pending(subject_type, subject_id)
        if request is None:
            return None
        self._close(request, ApprovalStatus.CANCELLED, actor_id, reason)
        self.outbox.record(ApprovalDecided(
            request_id=request.id,
            subject_type=request.subject_type,
            subject_id=request.subject_id,
            requester_id=request.requester_id,
            decider_id=actor_id,
            outcome=ApprovalStatus.CANCELLED.value,
            comment=reason,
        ))
        self.log_info(f"Approval request {request.id} cancelled with its {subject_type.value}")
        return request

    def _apply_to_task(self, request: ApprovalRequest, verdict: ApprovalDecision, decider_id: int, comment: Optional[str]):
        from hr_workflow.services.task_status import REJECTION_FALLBACK, TaskStatusService

        tasks = TaskStatusService(self.db, self.outbox)
        task = tasks.get_task(request.subject_id)
        if verdict == ApprovalDecision.APPROVE:
            tasks.apply_transition(task, TaskStatus(request.to_status), ChangeType.APPROVAL, decider_id, comment)
        else:
            tasks.apply_transition(task, REJECTION_FALLBACK, REJECTION_CHANGE_TYPES[verdict], decider_id, comment)
        return task

    def _apply_to_review(self, request, verdict, decider_id, comment, scores):
        from hr_workflow.services.reviews import ReviewService

        reviews = ReviewService(self.db, self.outbox)
        review = reviews.get_review(request.subject_id)
        if verdict == ApprovalDecision.APPROVE:
            reviews.complete_review(review, scores, decider_id, comment)
        else:
            reviews.return_to_draft(review, comment)
        return review

    def _apply_to_self_evaluation(self, request, verdict, score):
        from hr_workflow.services.self_evaluation import SelfEvaluationService

        evaluations = SelfEvaluationService(self.db, self.outbox)
        evaluation = evaluations.get_self_evaluation(request.subject_id)
        evaluations.apply_decision(evaluation, verdict, score)
        return evaluation

    # ------------------------------------------------------------------
    # Queue and history
    # ------------------------------------------------------------------
    def _pending_query(self, approver_id: Optional[int] = None, subject_type: Optional[str] = None):
        query = self.db.query(ApprovalRequest).filter(ApprovalRequest.status == ApprovalStatus.PENDING.value)
        if approver_id is not None:
            query = query.filter(ApprovalRequest.requester_id != approver_id)
        if subject_type:
            query = query.filter(ApprovalRequest.subject_type == _coerce_subject_type(subject_type).value)
        return query

    def list_pending(self, approver_id: Optional[int] = None, subject_type: Optional[str] = None) -> List[ApprovalRequest]:
        """The approval queue, oldest first. An approver never sees their own requests."""
        return (
            self._pending_query(approver_id, subject_type)
            .order_by(ApprovalRequest.created_at.asc(), ApprovalRequest.id.asc())
            .all()
        )

    def list_for_subject(self, subject_type: Union[str, SubjectType], subject_id: int) -> List[ApprovalRequest]:
        kind = _coerce_subject_type(subject_type)
        return (
            self.db.query(ApprovalRequest)
            .filter(ApprovalRequest.subject_type == kind.value, ApprovalRequest.subject_id == subject_id)
            .order_by(ApprovalRequest.created_at.asc(), ApprovalRequest.id.asc())
            .all()
        )

    def approval_stats(self, approver_id: Optional[int] = None, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Queue summary: pending requests the approver can decide, decisions
        taken since the start of the week, and completed tasks nobody has
        self-evaluated yet.
        """
        today = today or datetime.now(timezone.utc).date()
        start = week_start(today)
        since = datetime.combine(start, time.min, tzinfo=timezone.utc)

        decided = dict(
            self.db.query(ApprovalRequest.status, func.count(ApprovalRequest.id))
            .filter(ApprovalRequest.decided_at >= since)
            .group_by(ApprovalRequest.status)
            .all()
        )
        completed_without_evaluation = (
            self.db.query(func.count(Task.id))
            .filter(
                Task.status == TaskStatus.COMPLETED.value,
                ~exists().where(TaskSelfEvaluation.task_id == Task.id),
            )
            .scalar()
        )
        return {
            "week_start": start,
            "pending": self._pending_query(approver_id).count(),
            "approved_this_week": decided.get(ApprovalStatus.APPROVED.value, 0),
            "rejected_this_week": decided.get(ApprovalStatus.REJECTED.value, 0),
            "revision_requested_this_week": decided.get(ApprovalStatus.REVISION_REQUESTED.value, 0),
            "completed_without_evaluation": completed_without_evaluation or 0,
        }

    def reviewer_pool(self, request: ApprovalRequest) -> List[Employee]:
        """
        Employees who should hear about a new request: the designated
        approver (task assigner / review reviewer) when they can approve,
        otherwise every active approver except the requester.
        """
        designated_id = None
        subject = self.db.get(SUBJECT_MODELS[SubjectType(request.subject_type)], request.subject_id)
        if isinstance(subject, Task):
            designated_id = subject.assigner_id
        elif isinstance(subject, PerformanceReview):
            designated_id = subject.reviewer_id
        elif isinstance(subject, TaskSelfEvaluation):
            task = self.db.get(Task, subject.task_id)
            designated_id = task.assigner_id if task else None

        if designated_id is not None and designated_id != request.requester_id:
            designated = self.db.get(Employee, designated_id)
            if designated and designated.can_approve:
                return [designated]

        return (
            self.db.query(Employee)
            .filter(
                Employee.is_active.is_(True),
                Employee.role.in_(APPROVER_ROLES),
                Employee.id != request.requester_id,
            )
            .order_by(Employee.id)
            .all()
        )
