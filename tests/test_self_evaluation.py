import pytest

from hr_workflow.core.exceptions import (
    AccessDeniedError,
    DuplicatePendingRequest,
    InvalidTransition,
    ScoreOutOfRange,
    ValidationError,
)
from hr_workflow.models.approval import ApprovalRequest, ApprovalStatus, SubjectType
from hr_workflow.models.evaluation import SelfEvaluationStatus, TaskSelfEvaluation
from hr_workflow.models.notification import NotificationType, TaskNotification
from hr_workflow.services.approval import ApprovalService
from hr_workflow.services.scoring import rating_for
from hr_workflow.services.self_evaluation import SelfEvaluationService
from hr_workflow.services.task_status import TaskStatusService


def _pending_request(db_session, evaluation):
    return ApprovalService(db_session).find_pending(SubjectType.SELF_EVALUATION, evaluation.id)


@pytest.fixture
def submitted(db_session, task_in_review, employee):
    """A self-evaluation of `task_in_review` waiting for approval."""
    service = SelfEvaluationService(db_session)
    evaluation = service.create_self_evaluation(
        task_in_review.id, employee.id, self_score=85, achievements="Shipped on time"
    )
    return service.submit_self_evaluation(evaluation.id, employee.id)


@pytest.mark.parametrize("score, rating", [
    (100, "excellent"),
    (90, "excellent"),
    (89.5, "good"),
    (70, "good"),
    (50, "average"),
    (49.9, "below_average"),
    (0, "below_average"),
])
def test_rating_bands(score, rating):
    """Test inclusive lower bounds of the self-evaluation ratings."""
    assert rating_for(score) == rating


def test_submit_opens_approval_request(db_session, submitted, employee, manager):
    """Test submission parks the evaluation and notifies the task assigner."""
    request = _pending_request(db_session, submitted)

    assert submitted.status == SelfEvaluationStatus.PENDING.value
    assert submitted.submitted_at is not None
    assert (request.from_status, request.to_status) == ("pending", "approved")
    assert request.requester_id == employee.id

    pending = (
        db_session.query(TaskNotification)
        .filter_by(recipient_id=manager.id, notification_type=NotificationType.PENDING_APPROVAL.value)
        .all()
    )
    assert len(pending) == 1
    assert pending[0].task_id == submitted.task_id


def test_approve_with_own_score(db_session, submitted, employee, manager):
    """Test approval keeps the self-score when no score is given and rates it."""
    request = _pending_request(db_session, submitted)
    ApprovalService(db_session).decide(request.id, "approve", manager.id, comment="fair")

    db_session.expire_all()
    evaluation = db_session.get(TaskSelfEvaluation, submitted.id)
    assert evaluation.status == SelfEvaluationStatus.APPROVED.value
    assert evaluation.approved_score == 85
    assert evaluation.rating == "good"
    assert evaluation.decided_at is not None

    result = (
        db_session.query(TaskNotification)
        .filter_by(recipient_id=employee.id, notification_type=NotificationType.APPROVAL_RESULT.value)
        .one()
    )
    assert "rated good" in result.message


def test_approve_with_adjusted_score(db_session, submitted, manager):
    """Test the approver can override the self-score."""
    request = _pending_request(db_session, submitted)
    ApprovalService(db_session).decide(request.id, "approve", manager.id, score=93)

    db_session.expire_all()
    evaluation = db_session.get(TaskSelfEvaluation, submitted.id)
    assert evaluation.approved_score == 93
    assert evaluation.rating == "excellent"


def test_out_of_range_approved_score_changes_nothing(db_session, submitted, manager):
    """Test a bad approved score rolls back the whole decision."""
    request = _pending_request(db_session, submitted)
    with pytest.raises(ScoreOutOfRange):
        ApprovalService(db_session).decide(request.id, "approve", manager.id, score=120)

    db_session.expire_all()
    assert db_session.get(ApprovalRequest, request.id).is_pending
    assert db_session.get(TaskSelfEvaluation, submitted.id).status == SelfEvaluationStatus.PENDING.value


def test_revision_then_resubmit(db_session, submitted, employee, manager):
    """Test request_revision hands the evaluation back; a new request follows the resubmission."""
    service = SelfEvaluationService(db_session)
    first = _pending_request(db_session, submitted)
    ApprovalService(db_session).decide(first.id, "request_revision", manager.id, comment="explain the delay")

    db_session.expire_all()
    evaluation = db_session.get(TaskSelfEvaluation, submitted.id)
    assert evaluation.status == SelfEvaluationStatus.REVISION_REQUESTED.value
    assert evaluation.revision_count == 1

    service.update_self_evaluation(evaluation.id, employee.id, difficulties="Vendor delay", self_score=80)
    service.submit_self_evaluation(evaluation.id, employee.id)
    second = _pending_request(db_session, evaluation)

    assert second.id != first.id
    history = ApprovalService(db_session).list_for_subject("self_evaluation", evaluation.id)
    assert [r.status for r in history] == [ApprovalStatus.REVISION_REQUESTED.value, ApprovalStatus.PENDING.value]


def test_reject(db_session, submitted, manager):
    """Test rejection stores no score."""
    request = _pending_request(db_session, submitted)
    ApprovalService(db_session).decide(request.id, "reject", manager.id, comment="not your task")

    db_session.expire_all()
    evaluation = db_session.get(TaskSelfEvaluation, submitted.id)
    assert evaluation.status == SelfEvaluationStatus.REJECTED.value
    assert evaluation.approved_score is None
    assert evaluation.rating is None


def test_submit_rules(db_session, task_in_review, employee, manager):
    """Test ownership, self-score and single pending submission."""
    service = SelfEvaluationService(db_session)
    evaluation = service.create_self_evaluation(task_in_review.id, employee.id)

    with pytest.raises(ValidationError):
        service.submit_self_evaluation(evaluation.id, employee.id)
    service.update_self_evaluation(evaluation.id, employee.id, self_score=75)
    with pytest.raises(AccessDeniedError):
        service.submit_self_evaluation(evaluation.id, manager.id)

    service.submit_self_evaluation(evaluation.id, employee.id)
    with pytest.raises(InvalidTransition):
        service.submit_self_evaluation(evaluation.id, employee.id)
    with pytest.raises(InvalidTransition):
        service.update_self_evaluation(evaluation.id, employee.id, self_score=99)
    with pytest.raises(DuplicatePendingRequest):
        ApprovalService(db_session).submit_for_approval(
            "self_evaluation", evaluation.id, "pending", "approved", employee.id
        )


def test_create_rules(db_session, manager, employee):
    """Test only the assignee evaluates, once, and only finished work is submitted."""
    tasks = TaskStatusService(db_session)
    service = SelfEvaluationService(db_session)
    task = tasks.create_task("Inventory count", actor_id=manager.id, assignee_id=employee.id)

    with pytest.raises(AccessDeniedError):
        service.create_self_evaluation(task.id, manager.id, self_score=90)
    with pytest.raises(ScoreOutOfRange):
        service.create_self_evaluation(task.id, employee.id, self_score=101)

    evaluation = service.create_self_evaluation(task.id, employee.id, self_score=90)
    with pytest.raises(ValidationError):
        service.create_self_evaluation(task.id, employee.id, self_score=60)
    with pytest.raises(InvalidTransition):
        service.submit_self_evaluation(evaluation.id, employee.id)

    cancelled = tasks.create_task("Shelf labels", actor_id=manager.id, assignee_id=employee.id)
    tasks.request_transition(cancelled.id, "cancelled", actor_id=manager.id)
    with pytest.raises(ValidationError):
        service.create_self_evaluation(cancelled.id, employee.id, self_score=60)


def _approved_evaluation(db_session, manager, assignee, title, score):
    tasks = TaskStatusService(db_session)
    task = tasks.create_task(title, actor_id=manager.id, assignee_id=assignee.id)
    tasks.request_transition(task.id, "in_progress", actor_id=assignee.id)
    tasks.request_transition(task.id, "pending_review", actor_id=assignee.id)
    service = SelfEvaluationService(db_session)
    evaluation = service.create_self_evaluation(task.id, assignee.id, self_score=score)
    service.submit_self_evaluation(evaluation.id, assignee.id)
    request = _pending_request(db_session, evaluation)
    ApprovalService(db_session).decide(request.id, "approve", manager.id)
    return evaluation


def test_leaderboard_and_department_stats(db_session, manager, second_manager, employee, hr_admin):
    """Test ranking by average approved score and per-department rating counts."""
    hr_admin.department = "People"
    db_session.commit()

    _approved_evaluation(db_session, manager, employee, "A", 95)
    _approved_evaluation(db_session, manager, employee, "B", 75)
    _approved_evaluation(db_session, manager, second_manager, "C", 92)
    _approved_evaluation(db_session, manager, hr_admin, "D", 40)

    service = SelfEvaluationService(db_session)
    board = service.leaderboard()
    assert [row["employee_id"] for row in board] == [second_manager.id, employee.id, hr_admin.id]
    assert board[1]["average_score"] == 85.0
    assert board[1]["evaluated_tasks"] == 2
    assert board[1]["rating"] == "good"
    assert [row["employee_id"] for row in service.leaderboard(department="People")] == [hr_admin.id]
    assert len(service.leaderboard(limit=1)) == 1

    stats = {row["department"]: row for row in service.department_stats()}
    assert stats["Engineering"]["total_evaluations"] == 3
    assert stats["Engineering"]["rating_distribution"] == {
        "excellent": 2, "good": 1, "average": 0, "below_average": 0,
    }
    assert stats["Engineering"]["average_score"] == pytest.approx(87.33, abs=0.01)
    assert stats["People"]["rating_distribution"]["below_average"] == 1
