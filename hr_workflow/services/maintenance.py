"""
Scheduled maintenance sweep.

There is no in-process scheduler: an external cron job calls
MaintenanceService.run() (see scripts/run_maintenance.py). Each task is
handled in its own transaction, so one bad row does not stop the sweep.
"""
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Callable, List, Optional

from sqlalchemy import or_

from hr_workflow.core.config import settings
from hr_workflow.models.task import (
    ChangeType,
    OVERDUE_ELIGIBLE_STATUSES,
    TERMINAL_STATUSES,
    Task,
    TaskStatus,
)
from hr_workflow.services.base import BaseService
from hr_workflow.services.notification import NotificationDispatcher
from hr_workflow.services.task_status import TaskStatusService


@dataclass
class MaintenanceResult:
    due_transitioned: int = 0
    overdue_transitioned: int = 0
    reminders_sent: int = 0
    overdue_marked: int = 0
    mails_delivered: int = 0
    failures: int = 0

    def to_dict(self):
        return asdict(self)


class MaintenanceService(BaseService):

    def run(self, today: Optional[date] = None) -> MaintenanceResult:
        today = today or date.today()
        result = MaintenanceResult()

        result.overdue_transitioned = self._sweep(
            self._new_tasks_past_due(today), result,
            lambda svc, task: self._start(svc, task, ChangeType.AUTO_OVERDUE),
        )
        result.due_transitioned = self._sweep(
            self._new_tasks_starting(today), result,
            lambda svc, task: self._start(svc, task, ChangeType.AUTO_DUE),
        )
        result.reminders_sent = self._sweep(
            self._tasks_due_soon(today), result,
            lambda svc, task: svc.mark_due_reminder(task),
        )
        result.overdue_marked = self._sweep(
            self._tasks_overdue(today), result,
            lambda svc, task: svc.mark_overdue(task),
        )
        # Whatever the steps above queued, plus leftovers from request-time drains
        result.mails_delivered = NotificationDispatcher(self.db).deliver_pending()

        self.log_info(f"Maintenance sweep for {today.isoformat()} finished", **result.to_dict())
        return result

    @staticmethod
    def _start(service: TaskStatusService, task: Task, change_type: ChangeType) -> bool:
        service.apply_transition(task, TaskStatus.IN_PROGRESS, change_type, None, "scheduled start")
        return True

    def _sweep(self, task_ids: List[int], result: MaintenanceResult, step: Callable) -> int:
        done = 0
        for task_id in task_ids:
            service = TaskStatusService(self.db)
            try:
                with service.unit_of_work():
                    task = service.get_task(task_id)
                    if step(service, task):
                        done += 1
            except Exception:
                result.failures += 1
                self._logger.exception(f"Maintenance step failed for task {task_id}")
        return done

    # ------------------------------------------------------------------
    # Selections; ids only, each task is reloaded inside its transaction
    # ------------------------------------------------------------------
    def _ids(self, query) -> List[int]:
        return [row[0] for row in query.order_by(Task.id).all()]

    def _new_tasks_past_due(self, today: date) -> List[int]:
        return self._ids(
            self.db.query(Task.id).filter(
                Task.status == TaskStatus.NEW.value,
                Task.due_date.isnot(None),
                Task.due_date < today,
            )
        )

    def _new_tasks_starting(self, today: date) -> List[int]:
        return self._ids(
            self.db.query(Task.id).filter(
                Task.status == TaskStatus.NEW.value,
                Task.start_date.isnot(None),
                Task.start_date <= today,
                or_(Task.due_date.is_(None), Task.due_date >= today),
            )
        )

    def _tasks_due_soon(self, today: date) -> List[int]:
        horizon = today + timedelta(days=settings.workflow.due_reminder_days)
        return self._ids(
            self.db.query(Task.id).filter(
                Task.status.notin_([s.value for s in TERMINAL_STATUSES]),
                Task.due_reminder_sent_at.is_(None),
                Task.due_date.isnot(None),
                Task.due_date >= today,
                Task.due_date <= horizon,
            )
        )

    def _tasks_overdue(self, today: date) -> List[int]:
        return self._ids(
            self.db.query(Task.id).filter(
                Task.status.in_([s.value for s in OVERDUE_ELIGIBLE_STATUSES]),
                Task.overdue_at.is_(None),
                Task.due_date.isnot(None),
                Task.due_date < today,
            )
        )
