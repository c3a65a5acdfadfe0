import pytest

from hr_workflow.core.exceptions import (
    AccessDeniedError,
    AlreadyDecided,
    DuplicatePendingRequest,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from hr_workflow.models.approval import ApprovalRequest, ApprovalStatus, SubjectType
from hr_workflow.models.notification import NotificationType, TaskNotification
from hr_workflow.models.task import Task, TaskStatus, TaskStatusHistory
from hr_workflow.services.approval import ApprovalService
from hr_workflow.services.task_status import TaskStatusService


def _request_completion(db_session, task, requester):
    outcome = TaskStatusService(db_session).request_transition(task.id, "completed", actor_id=requester.id)
    return outcome.approval_request


def _notifications(db_session, recipient, notification_type):
    return (
        db_session.query(TaskNotification)
        .filter_by(recipient_id=recipient.id, notification_type=notification_type.value)
        .all()
    )


def test_second_pending_request_is_refused(db_session, task_in_review, employee, manager):
    """Test one pending request per subject; a new one is allowed after the decision."""
    first = _request_completion(db_session, task_in_review, employee)

    with pytest.raises(DuplicatePendingRequest):
        _request_completion(db_session, task_in_review, employee)
    with pytest.raises(DuplicatePendingRequest):
        ApprovalService(db_session).submit_for_approval(
            "task", task_in_review.id, "pending_review", "completed", employee.id
        )

    ApprovalService(db_session).decide(first.id, "reject", manager.id, comment="missing figures")
    service = TaskStatusService(db_session)
    service.request_transition(task_in_review.id, "pending_review", actor_id=employee.id)
    second = _request_completion(db_session, task_in_review, employee)

    assert second.id != first.id
    assert second.status == ApprovalStatus.PENDING.value


def test_approval_completes_task(db_session, task_in_review, employee, manager):
    """Test approve applies the parked transition."""
    request = _request_completion(db_session, task_in_review, employee)
    decided = ApprovalService(db_session).decide(request.id, "approve", manager.id, comment="great")

    db_session.expire_all()
    task = db_session.get(Task, task_in_review.id)
    assert decided.status == ApprovalStatus.APPROVED.value
    assert decided.decided_by == manager.id
    assert decided.decided_at is not None
    assert task.status == TaskStatus.COMPLETED.value
    assert task.progress == 100
    assert task.completed_at is not None


def test_decide_twice_keeps_first_decision(db_session, task_in_review, employee, manager, second_manager):
    """Test a second decision raises AlreadyDecided and changes nothing."""
    request = _request_completion(db_session, task_in_review, employee)
    service = ApprovalService(db_session)
    service.decide(request.id, "approve", manager.id)

    with pytest.raises(AlreadyDecided):
        service.decide(request.id, "reject", second_manager.id)

    db_session.expire_all()
    stored = db_session.get(ApprovalRequest, request.id)
    assert stored.status == ApprovalStatus.APPROVED.value
    assert stored.decided_by == manager.id
    assert db_session.get(Task, task_in_review.id).status == TaskStatus.COMPLETED.value


def test_concurrent_deciders_only_first_wins(session_factory, db_session, task_in_review, employee, manager, second_manager):
    """Test the conditional update rejects a decider holding a stale pending read."""
    request = _request_completion(db_session, task_in_review, employee)

    other = session_factory()
    try:
        stale = other.get(ApprovalRequest, request.id)
        assert stale.is_pending

        ApprovalService(db_session).decide(request.id, "approve", manager.id)

        with pytest.raises(AlreadyDecided):
            ApprovalService(other).decide(request.id, "reject", second_manager.id)
    finally:
        other.close()

    db_session.expire_all()
    stored = db_session.get(ApprovalRequest, request.id)
    assert stored.status == ApprovalStatus.APPROVED.value
    assert stored.decided_by == manager.id
    rejections = db_session.query(TaskStatusHistory).filter_by(task_id=task_in_review.id, change_type="rejection")
    assert rejections.count() == 0


def test_rejection_writes_one_entry_and_one_result(db_session, task_in_review, employee, manager):
    """Test rejection: one `rejection` history entry, one approval_result to the requester."""
    request = _request_completion(db_session, task_in_review, employee)
    ApprovalService(db_session).decide(request.id, "reject", manager.id, comment="numbers do not add up")

    db_session.expire_all()
    task = db_session.get(Task, task_in_review.id)
    rejections = (
        db_session.query(TaskStatusHistory)
        .filter_by(task_id=task.id, change_type="rejection")
        .all()
    )
    results = _notifications(db_session, employee, NotificationType.APPROVAL_RESULT)

    assert task.status == TaskStatus.IN_PROGRESS.value
    assert task.progress == 99
    assert len(rejections) == 1
    assert rejections[0].old_status == "pending_review"
    assert rejections[0].change_reason == "numbers do not add up"
    assert len(results) == 1
    assert "rejected" in results[0].message
    assert results[0].approval_request_id == request.id


def test_revision_request_returns_task(db_session, task_in_review, employee, manager):
    """Test request_revision sends the task back with its own change type."""
    request = _request_completion(db_session, task_in_review, employee)
    decided = ApprovalService(db_session).decide(request.id, "request_revision", manager.id, comment="add charts")

    db_session.expire_all()
    task = db_session.get(Task, task_in_review.id)
    last = TaskStatusService(db_session).get_history(task.id)[-1]
    assert decided.status == ApprovalStatus.REVISION_REQUESTED.value
    assert task.status == TaskStatus.IN_PROGRESS.value
    assert task.progress == 95
    assert last.change_type == "revision_request"


def test_pending_approval_goes_to_assigner(db_session, task_in_review, employee, manager, second_manager):
    """Test the designated approver is notified, not every manager."""
    request = _request_completion(db_session, task_in_review, employee)

    pending_for_manager = _notifications(db_session, manager, NotificationType.PENDING_APPROVAL)
    assert len(pending_for_manager) == 1
    assert pending_for_manager[0].approval_request_id == request.id
    assert _notifications(db_session, second_manager, NotificationType.PENDING_APPROVAL) == []


def test_reviewer_pool_falls_back_to_all_approvers(db_session, manager, second_manager, hr_admin, employee):
    """Test self-requested approvals go to every other active approver."""
    service = TaskStatusService(db_session)
    task = service.create_task("Refresh policy", actor_id=manager.id, assignee_id=manager.id)
    service.request_transition(task.id, "in_progress", actor_id=manager.id)
    service.request_transition(task.id, "pending_review", actor_id=manager.id)
    request = service.request_transition(task.id, "completed", actor_id=manager.id).approval_request

    pool = ApprovalService(db_session).reviewer_pool(request)
    assert {e.id for e in pool} == {second_manager.id, hr_admin.id}


def test_approval_queue_hides_own_requests(db_session, task_in_review, employee, manager):
    """Test list_pending excludes the approver's own requests."""
    request = _request_completion(db_session, task_in_review, employee)
    service = ApprovalService(db_session)

    assert [r.id for r in service.list_pending(approver_id=manager.id)] == [request.id]
    assert service.list_pending(approver_id=employee.id) == []

    service.decide(request.id, "approve", manager.id)
    assert service.list_pending() == []
    history = service.list_for_subject(SubjectType.TASK, task_in_review.id)
    assert [r.status for r in history] == [ApprovalStatus.APPROVED.value]


def test_decide_errors(db_session, task_in_review, employee, manager):
    """Test unknown requests, deciders and decisions."""
    request = _request_completion(db_session, task_in_review, employee)
    service = ApprovalService(db_session)

    with pytest.raises(NotFound):
        service.decide(9999, "approve", manager.id)
    with pytest.raises(NotFound):
        service.decide(request.id, "approve", 9999)
    with pytest.raises(ValidationError):
        service.decide(request.id, "maybe", manager.id)

    db_session.expire_all()
    assert db_session.get(ApprovalRequest, request.id).is_pending


def test_submit_for_missing_subject(db_session, employee):
    """Test submitting for a subject that does not exist."""
    with pytest.raises(NotFound):
        ApprovalService(db_session).submit_for_approval("task", 4242, "pending_review", "completed", employee.id)
    with pytest.raises(ValidationError):
        ApprovalService(db_session).submit_for_approval("invoice", 1, "a", "b", employee.id)


@pytest.mark.parametrize("decision", ["approve", "reject", "request_revision"])
def test_cancelling_task_closes_its_pending_request(db_session, task_in_review, employee, manager, decision):
    """Test a cancelled task leaves no request stuck in the queue."""
    request = _request_completion(db_session, task_in_review, employee)
    TaskStatusService(db_session).request_transition(
        task_in_review.id, "cancelled", actor_id=manager.id, reason="descoped"
    )

    db_session.expire_all()
    stored = db_session.get(ApprovalRequest, request.id)
    assert stored.status == ApprovalStatus.CANCELLED.value
    assert stored.decided_by == manager.id
    assert stored.comment == "descoped"
    assert ApprovalService(db_session).list_pending() == []

    with pytest.raises(AlreadyDecided):
        ApprovalService(db_session).decide(request.id, decision, manager.id)

    results = _notifications(db_session, employee, NotificationType.APPROVAL_RESULT)
    assert len(results) == 1
    assert "cancelled" in results[0].message
    assert db_session.get(Task, task_in_review.id).status == TaskStatus.CANCELLED.value


def test_cancel_without_pending_request(db_session, manager, employee):
    """Test cancelling a task that never asked for approval records no request."""
    service = TaskStatusService(db_session)
    task = service.create_task("Draft policy", actor_id=manager.id, assignee_id=employee.id)
    service.request_transition(task.id, "cancelled", actor_id=manager.id)

    assert ApprovalService(db_session).list_for_subject("task", task.id) == []


@pytest.mark.parametrize("from_status, to_status", [
    ("new", "completed"),
    ("in_progress", "completed"),
    ("pending_review", "in_progress"),
    ("pending_review", "cancelled"),
    ("pending_review", "shipped"),
])
def test_submit_refuses_changes_no_decision_can_apply(db_session, task_in_review, employee, from_status, to_status):
    """Test only approval-gated task changes can be queued."""
    with pytest.raises(InvalidTransition):
        ApprovalService(db_session).submit_for_approval("task", task_in_review.id, from_status, to_status, employee.id)

    assert ApprovalService(db_session).list_for_subject("task", task_in_review.id) == []
    request = ApprovalService(db_session).submit_for_approval(
        "task", task_in_review.id, "pending_review", "completed", employee.id
    )
    assert request.is_pending


def test_submit_refuses_unknown_review_change(db_session, review, manager):
    """Test a review can only be queued for submitted -> reviewed."""
    with pytest.raises(InvalidTransition):
        ApprovalService(db_session).submit_for_approval(
            "performance_review", review.id, "draft", "acknowledged", manager.id
        )


def test_requester_cannot_decide_own_request(db_session, manager, second_manager):
    """Test an approver who requested completion cannot approve it."""
    service = TaskStatusService(db_session)
    task = service.create_task("Refresh policy", actor_id=manager.id, assignee_id=manager.id)
    service.request_transition(task.id, "in_progress", actor_id=manager.id)
    service.request_transition(task.id, "pending_review", actor_id=manager.id)
    request = service.request_transition(task.id, "completed", actor_id=manager.id).approval_request

    with pytest.raises(AccessDeniedError):
        ApprovalService(db_session).decide(request.id, "approve", manager.id)

    db_session.expire_all()
    assert db_session.get(ApprovalRequest, request.id).is_pending
    assert db_session.get(Task, task.id).status == TaskStatus.PENDING_REVIEW.value

    ApprovalService(db_session).decide(request.id, "approve", second_manager.id)
    db_session.expire_all()
    assert db_session.get(Task, task.id).status == TaskStatus.COMPLETED.value


def test_approval_stats(db_session, manager, employee, second_manager):
    """Test pending count, this week's decisions and unevaluated completed tasks."""
    service = TaskStatusService(db_session)
    requests_ = []
    for title in ("Audit", "Roster", "Handbook"):
        task = service.create_task(title, actor_id=manager.id, assignee_id=employee.id)
        service.request_transition(task.id, "in_progress", actor_id=employee.id)
        service.request_transition(task.id, "pending_review", actor_id=employee.id)
        requests_.append(_request_completion(db_session, task, employee))

    approvals = ApprovalService(db_session)
    approvals.decide(requests_[0].id, "approve", manager.id)
    approvals.decide(requests_[1].id, "reject", manager.id, comment="redo")

    stats = approvals.approval_stats(approver_id=second_manager.id)
    assert stats["pending"] == 1
    assert stats["approved_this_week"] == 1
    assert stats["rejected_this_week"] == 1
    assert stats["revision_requested_this_week"] == 0
    assert stats["completed_without_evaluation"] == 1
    assert approvals.approval_stats(approver_id=employee.id)["pending"] == 0
