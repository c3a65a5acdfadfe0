"""
Task status state machine.

Every status change of a Task goes through TaskStatusService. A change is
applied with a conditional UPDATE on the expected prior status and appends
exactly one TaskStatusHistory row in the same transaction, so the history of
a task is always a contiguous chain (new_status of entry n == old_status of
entry n+1).

Transitions that can only happen through approval
(pending_review -> completed) are parked as an ApprovalRequest instead of
being applied. Cancelling a task closes its pending request, if any, as
cancelled.
"""
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import case, func, update

from hr_workflow.core.config import settings
from hr_workflow.core.exceptions import InvalidTransition, NotFound, ValidationError
from hr_workflow.models.approval import ApprovalRequest, SubjectType
from hr_workflow.models.employee import Employee
from hr_workflow.models.task import (
    ChangeType,
    OVERDUE_ELIGIBLE_STATUSES,
    SYSTEM_CHANGE_TYPES,
    TERMINAL_STATUSES,
    Task,
    TaskStatus,
    TaskStatusHistory,
)
from hr_workflow.services.base import BaseService
from hr_workflow.services.events import TaskDueSoon, TaskOverdue, TaskTransitioned

# Closed transition table: (from, to) -> change types allowed to perform it.
# Any non-terminal status may additionally move to CANCELLED manually.
TRANSITIONS = {
    (TaskStatus.NEW, TaskStatus.IN_PROGRESS): {ChangeType.MANUAL, ChangeType.AUTO_DUE, ChangeType.AUTO_OVERDUE},
    (TaskStatus.IN_PROGRESS, TaskStatus.PENDING_REVIEW): {ChangeType.MANUAL},
    (TaskStatus.IN_PROGRESS, TaskStatus.ON_HOLD): {ChangeType.MANUAL},
    (TaskStatus.ON_HOLD, TaskStatus.IN_PROGRESS): {ChangeType.MANUAL},
    (TaskStatus.PENDING_REVIEW, TaskStatus.COMPLETED): {ChangeType.APPROVAL},
    (TaskStatus.PENDING_REVIEW, TaskStatus.IN_PROGRESS): {ChangeType.REJECTION, ChangeType.REVISION_REQUEST},
}

# Requested manually, these are turned into an approval request
APPROVAL_GATED = {(TaskStatus.PENDING_REVIEW, TaskStatus.COMPLETED)}

# Only the approval workflow may apply these
WORKFLOW_CHANGE_TYPES = frozenset({ChangeType.APPROVAL, ChangeType.REJECTION, ChangeType.REVISION_REQUEST})

# Where a rejected / revised task goes back to
REJECTION_FALLBACK = TaskStatus.IN_PROGRESS


@dataclass
class TransitionOutcome:
    task: Task
    applied: bool
    history_entry: Optional[TaskStatusHistory] = None
    approval_request: Optional[ApprovalRequest] = None


def _coerce_status(value: Union[str, TaskStatus]) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown task status '{value}'")


def _coerce_change_type(value: Union[str, ChangeType]) -> ChangeType:
    try:
        return ChangeType(value)
    except ValueError:
        raise ValidationError(f"Unknown change type '{value}'")


def allowed_change_types(from_status: TaskStatus, to_status: TaskStatus) -> set:
    if to_status == TaskStatus.CANCELLED and from_status not in TERMINAL_STATUSES:
        return {ChangeType.MANUAL}
    return TRANSITIONS.get((from_status, to_status), set())


class TaskStatusService(BaseService):

    def get_task(self, task_id: int) -> Task:
        task = self.db.get(Task, task_id)
        if not task:
            raise NotFound("Task", task_id)
        return task

    def _require_employee(self, employee_id: int, role: str = "Employee") -> Employee:
        employee = self.db.get(Employee, employee_id)
        if not employee:
            raise NotFound(role, employee_id)
        return employee

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_task(
        self,
        title: str,
        actor_id: int,
        assignee_id: Optional[int] = None,
        assigner_id: Optional[int] = None,
        description: Optional[str] = None,
        start_date: Optional[date] = None,
        due_date: Optional[date] = None,
        code: Optional[str] = None,
    ) -> Task:
        """Create a task in `new` and write the first history entry."""
        if not title or not title.strip():
            raise ValidationError("Task title is required")
        if start_date and due_date and start_date > due_date:
            raise ValidationError("start_date must not be after due_date")

        with self.unit_of_work():
            self._require_employee(actor_id, "Actor")
            if assignee_id is not None:
                self._require_employee(assignee_id, "Assignee")
            if assigner_id is not None:
                self._require_employee(assigner_id, "Assigner")

            task = Task(
                code=code,
                title=title.strip(),
                description=description,
                status=TaskStatus.NEW.value,
                progress=0,
                assignee_id=assignee_id,
                assigner_id=assigner_id if assigner_id is not None else actor_id,
                start_date=start_date,
                due_date=due_date,
            )
            self.db.add(task)
            self.db.flush()
            self.db.add(TaskStatusHistory(
                task_id=task.id,
                old_status=None,
                new_status=TaskStatus.NEW.value,
                old_progress=None,
                new_progress=0,
                change_type=ChangeType.MANUAL.value,
                change_reason="created",
                changed_by=actor_id,
            ))
        self.log_info(f"Task {task.id} created", task_id=task.id)
        return task

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    @staticmethod
    def check_actor(change_type: ChangeType, actor_id: Optional[int]) -> None:
        if change_type in SYSTEM_CHANGE_TYPES and actor_id is not None:
            raise ValidationError(f"{change_type.value} changes are system-triggered and cannot carry an actor")
        if change_type not in SYSTEM_CHANGE_TYPES and actor_id is None:
            raise ValidationError(f"{change_type.value} changes require an acting employee")

    def validate_transition(
        self,
        task: Task,
        to_status: TaskStatus,
        change_type: ChangeType,
        actor_id: Optional[int],
    ) -> None:
        current = TaskStatus(task.status)
        self.check_actor(change_type, actor_id)

        if to_status == current:
            raise InvalidTransition(current.value, to_status.value, "task is already in that status")
        if current in TERMINAL_STATUSES:
            raise InvalidTransition(current.value, to_status.value, "task is closed")
        if change_type not in allowed_change_types(current, to_status):
            raise InvalidTransition(current.value, to_status.value, f"not allowed as {change_type.value}")

    def request_transition(
        self,
        task_id: int,
        to_status: Union[str, TaskStatus],
        actor_id: Optional[int] = None,
        reason: Optional[str] = None,
        change_type: Union[str, ChangeType] = ChangeType.MANUAL,
    ) -> TransitionOutcome:
        """
        Validate and apply a status change requested by an employee or by the
        scheduler.

        A manual request for an approval-gated transition does not change the
        task; it opens an approval request and returns applied=False.
        """
        target = _coerce_status(to_status)
        kind = _coerce_change_type(change_type)
        if kind in WORKFLOW_CHANGE_TYPES:
            raise ValidationError(f"{kind.value} changes are applied by the approval workflow only")
        self.check_actor(kind, actor_id)

        with self.unit_of_work():
            task = self.get_task(task_id)
            current = TaskStatus(task.status)
            if actor_id is not None:
                self._require_employee(actor_id, "Actor")

            if (current, target) in APPROVAL_GATED and kind == ChangeType.MANUAL:
                from hr_workflow.services.approval import ApprovalService
                request = ApprovalService(self.db, self.outbox).open_request(
                    SubjectType.TASK, task.id, current.value, target.value, actor_id
                )
                outcome = TransitionOutcome(task=task, applied=False, approval_request=request)
            else:
                self.validate_transition(task, target, kind, actor_id)
                entry = self.apply_transition(task, target, kind, actor_id, reason)
                outcome = TransitionOutcome(task=task, applied=True, history_entry=entry)

        if outcome.applied:
            self.log_info(f"Task {task_id} moved to {target.value}", task_id=task_id, change_type=kind.value)
        else:
            self.log_info(f"Task {task_id} completion parked for approval", task_id=task_id)
        return outcome

    def apply_transition(
        self,
        task: Task,
        to_status: TaskStatus,
        change_type: ChangeType,
        actor_id: Optional[int],
        reason: Optional[str] = None,
    ) -> TaskStatusHistory:
        """
        Write a validated transition: conditional update of the task row plus
        one history entry. Does not commit; callers own the transaction.
        """
        self.validate_transition(task, to_status, change_type, actor_id)

        from_status = TaskStatus(task.status)
        old_progress = task.progress
        now = datetime.now(timezone.utc)

        new_progress = old_progress
        values: Dict[str, Any] = {"status": to_status.value, "updated_at": now}
        if to_status == TaskStatus.COMPLETED:
            new_progress = 100
            values["completed_at"] = now
        elif change_type == ChangeType.REJECTION:
            new_progress = settings.workflow.rejection_progress
        elif change_type == ChangeType.REVISION_REQUEST:
            new_progress = settings.workflow.revision_progress
        values["progress"] = new_progress

        result = self.db.execute(
            update(Task)
            .where(Task.id == task.id, Task.status == from_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Someone else changed the task since it was read
            raise InvalidTransition(from_status.value, to_status.value, "task status changed concurrently")

        entry = TaskStatusHistory(
            task_id=task.id,
            old_status=from_status.value,
            new_status=to_status.value,
            old_progress=old_progress,
            new_progress=new_progress,
            change_type=change_type.value,
            change_reason=reason,
            changed_by=actor_id,
            created_at=now,
        )
        self.db.add(entry)
        self.db.flush()
        self.db.refresh(task)

        if to_status == TaskStatus.CANCELLED:
            # A parked completion can never be applied to a cancelled task
            from hr_workflow.services.approval import ApprovalService
            ApprovalService(self.db, self.outbox).cancel_pending(SubjectType.TASK, task.id, actor_id, reason)

        self.outbox.record(TaskTransitioned(
            task_id=task.id,
            old_status=from_status.value,
            new_status=to_status.value,
            change_type=change_type.value,
            actor_id=actor_id,
        ))
        return entry

    # ------------------------------------------------------------------
    # Progress and markers
    # ------------------------------------------------------------------
    def update_progress(self, task_id: int, progress: int, actor_id: int) -> Task:
        if progress is None or not 0 <= progress <= 99:
            raise ValidationError("Progress must be between 0 and 99; 100 is set by completion")
        with self.unit_of_work():
            task = self.get_task(task_id)
            self._require_employee(actor_id, "Actor")
            if task.is_terminal:
                raise InvalidTransition(task.status, task.status, "progress of a closed task cannot change")
            task.progress = progress
        return task

    def mark_overdue(self, task: Task, now: Optional[datetime] = None) -> bool:
        """Set the overdue marker once. Returns False if it was already set."""
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(
            update(Task)
            .where(Task.id == task.id, Task.overdue_at.is_(None))
            .values(overdue_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.db.refresh(task)
        self.outbox.record(TaskOverdue(task_id=task.id, assignee_id=task.assignee_id, due_date=task.due_date))
        return True

    def mark_due_reminder(self, task: Task, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        result = self.db.execute(
            update(Task)
            .where(Task.id == task.id, Task.due_reminder_sent_at.is_(None))
            .values(due_reminder_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.db.refresh(task)
        self.outbox.record(TaskDueSoon(task_id=task.id, assignee_id=task.assignee_id, due_date=task.due_date))
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_history(self, task_id: int) -> List[TaskStatusHistory]:
        self.get_task(task_id)
        return (
            self.db.query(TaskStatusHistory)
            .filter(TaskStatusHistory.task_id == task_id)
            .order_by(TaskStatusHistory.created_at.asc(), TaskStatusHistory.id.asc())
            .all()
        )

    def status_summary(self) -> List[Dict[str, Any]]:
        eligible = [s.value for s in OVERDUE_ELIGIBLE_STATUSES]
        overdue_expr = case(
            (Task.overdue_at.isnot(None) & Task.status.in_(eligible), 1),
            else_=0,
        )
        rows = (
            self.db.query(
                Task.status,
                func.count(Task.id),
                func.avg(Task.progress),
                func.sum(overdue_expr),
            )
            .group_by(Task.status)
            .all()
        )
        return [
            {
                "status": status,
                "count": count,
                "avg_progress": round(float(avg or 0), 2),
                "overdue_count": int(overdue or 0),
            }
            for status, count, avg, overdue in rows
        ]
