import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy import func, update

from hr_workflow.core.config import settings
from hr_workflow.core.exceptions import NotFound
from hr_workflow.models.approval import ApprovalRequest, SubjectType
from hr_workflow.models.employee import Employee
from hr_workflow.models.evaluation import TaskSelfEvaluation
from hr_workflow.models.notification import DeliveryStatus, NotificationType, TaskNotification
from hr_workflow.models.task import Task
from hr_workflow.services.base import BaseService
from hr_workflow.services.events import (
    ApprovalDecided,
    ApprovalRequested,
    TaskDueSoon,
    TaskOverdue,
    TaskTransitioned,
    WorkflowEvent,
)
from hr_workflow.services import mailer

logger = logging.getLogger(__name__)


class NotificationDispatcher(BaseService):
    """
    In-app notifications for workflow events.

    Notifications are best effort: a failure to record or deliver one is
    logged and never undoes the workflow change that caused it.
    """

    def notify(
        self,
        recipient_id: int,
        notification_type: NotificationType,
        title: str,
        message: str,
        task_id: Optional[int] = None,
        approval_request_id: Optional[int] = None,
    ) -> Optional[TaskNotification]:
        try:
            notification = TaskNotification(
                recipient_id=recipient_id,
                notification_type=NotificationType(notification_type).value,
                title=title,
                message=message,
                task_id=task_id,
                approval_request_id=approval_request_id,
                is_read=False,
                # Mail goes out later, off the triggering request
                delivery_status=(DeliveryStatus.PENDING if settings.mail.enabled else DeliveryStatus.SKIPPED).value,
            )
            self.db.add(notification)
            self.db.commit()
            self.db.refresh(notification)
        except Exception:
            self.db.rollback()
            self._logger.warning(
                f"Could not record {notification_type} notification for employee {recipient_id}",
                exc_info=True,
            )
            return None
        return notification

    # ------------------------------------------------------------------
    # Outbound mail
    # ------------------------------------------------------------------
    def _claim(self, notification_id: int) -> bool:
        """pending -> sending, so two drains never mail the same row."""
        result = self.db.execute(
            update(TaskNotification)
            .where(
                TaskNotification.id == notification_id,
                TaskNotification.delivery_status == DeliveryStatus.PENDING.value,
            )
            .values(delivery_status=DeliveryStatus.SENDING.value)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def _set_delivery_status(self, notification_id: int, status: DeliveryStatus) -> None:
        try:
            self.db.execute(
                update(TaskNotification)
                .where(TaskNotification.id == notification_id)
                .values(delivery_status=status.value)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._logger.warning(f"Could not store delivery status of notification {notification_id}", exc_info=True)

    def deliver_pending(self, limit: int = 100) -> int:
        """
        Mail notifications queued by notify(). Runs outside any workflow
        request (background task or maintenance sweep); failures are stored
        on the row, never raised. Returns the number of mails sent.
        """
        if not settings.mail.enabled:
            return 0
        ids = [
            row[0]
            for row in self.db.query(TaskNotification.id)
            .filter(TaskNotification.delivery_status == DeliveryStatus.PENDING.value)
            .order_by(TaskNotification.id)
            .limit(limit)
            .all()
        ]

        sent = 0
        for notification_id in ids:
            if not self._claim(notification_id):
                continue
            notification = self.db.get(TaskNotification, notification_id)
            recipient = self.db.get(Employee, notification.recipient_id)
            if not recipient or not recipient.email:
                self._set_delivery_status(notification_id, DeliveryStatus.SKIPPED)
                continue
            try:
                mailer.send_notification_email(recipient.email, notification.title, notification.message or "")
            except Exception:
                self._logger.warning(f"Mail delivery failed for notification {notification_id}", exc_info=True)
                self._set_delivery_status(notification_id, DeliveryStatus.FAILED)
                continue
            self._set_delivery_status(notification_id, DeliveryStatus.SENT)
            sent += 1

        self.db.expire_all()
        if ids:
            self.log_info(f"Delivered {sent} of {len(ids)} queued notification mails")
        return sent

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def _unread_query(self, recipient_id: int):
        return self.db.query(TaskNotification).filter(
            TaskNotification.recipient_id == recipient_id,
            TaskNotification.is_read.is_(False),
        )

    def count_unread(self, recipient_id: int) -> int:
        return self._unread_query(recipient_id).count()

    def list_unread(self, recipient_id: int) -> List[TaskNotification]:
        return self._unread_query(recipient_id).order_by(TaskNotification.id.desc()).all()

    def list_for(self, recipient_id: int, unread_only: bool = False, limit: int = 50) -> List[TaskNotification]:
        query = self._unread_query(recipient_id) if unread_only else self.db.query(TaskNotification).filter(
            TaskNotification.recipient_id == recipient_id
        )
        return query.order_by(TaskNotification.id.desc()).limit(limit).all()

    # ------------------------------------------------------------------
    # Read markers
    # ------------------------------------------------------------------
    def mark_read(self, notification_id: int, recipient_id: Optional[int] = None) -> TaskNotification:
        notification = self.db.get(TaskNotification, notification_id)
        if not notification or (recipient_id is not None and notification.recipient_id != recipient_id):
            raise NotFound("Notification", notification_id)
        if notification.is_read:
            return notification
        with self.unit_of_work():
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
        return notification

    def mark_all_read(self, recipient_id: int) -> int:
        """
        Mark everything the recipient has up to now as read.

        Bounded by the highest notification id seen when the call starts, so
        a notification created while this runs stays unread.
        """
        with self.unit_of_work():
            high_water = (
                self.db.query(func.max(TaskNotification.id))
                .filter(TaskNotification.recipient_id == recipient_id, TaskNotification.is_read.is_(False))
                .scalar()
            )
            if high_water is None:
                return 0
            result = self.db.execute(
                update(TaskNotification)
                .where(
                    TaskNotification.recipient_id == recipient_id,
                    TaskNotification.is_read.is_(False),
                    TaskNotification.id <= high_water,
                )
                .values(is_read=True, read_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
        self.db.expire_all()
        return result.rowcount

    # ------------------------------------------------------------------
    # Event fan-out
    # ------------------------------------------------------------------
    def dispatch(self, events: Iterable[WorkflowEvent]) -> None:
        for event in events:
            try:
                if isinstance(event, ApprovalRequested):
                    self._on_approval_requested(event)
                elif isinstance(event, ApprovalDecided):
                    self._on_approval_decided(event)
                elif isinstance(event, TaskDueSoon):
                    self._on_task_due_soon(event)
                elif isinstance(event, TaskOverdue):
                    self._on_task_overdue(event)
                elif isinstance(event, TaskTransitioned):
                    self._logger.debug(
                        f"Task {event.task_id}: {event.old_status} -> {event.new_status} ({event.change_type})"
                    )
            except Exception:
                self.db.rollback()
                self._logger.exception(f"Notification handler failed for {type(event).__name__}")

    SUBJECT_LABELS = {
        SubjectType.TASK.value: "task",
        SubjectType.PERFORMANCE_REVIEW.value: "performance review",
        SubjectType.SELF_EVALUATION.value: "self-evaluation",
    }

    @classmethod
    def _subject_label(cls, subject_type: str, subject_id: int) -> str:
        return f"{cls.SUBJECT_LABELS.get(subject_type, subject_type)} #{subject_id}"

    def _subject_task_id(self, subject_type: str, subject_id: int) -> Optional[int]:
        if subject_type == SubjectType.TASK.value:
            return subject_id
        if subject_type == SubjectType.SELF_EVALUATION.value:
            evaluation = self.db.get(TaskSelfEvaluation, subject_id)
            return evaluation.task_id if evaluation else None
        return None

    def _on_approval_requested(self, event: ApprovalRequested) -> None:
        from hr_workflow.services.approval import ApprovalService

        request = self.db.get(ApprovalRequest, event.request_id)
        if not request:
            return
        label = self._subject_label(event.subject_type, event.subject_id)
        task_id = self._subject_task_id(event.subject_type, event.subject_id)
        for reviewer in ApprovalService(self.db).reviewer_pool(request):
            self.notify(
                reviewer.id,
                NotificationType.PENDING_APPROVAL,
                f"Approval needed for {label}",
                f"A request to move {label} from {request.from_status} to {request.to_status} is waiting for your decision.",
                task_id=task_id,
                approval_request_id=request.id,
            )

    def _on_approval_decided(self, event: ApprovalDecided) -> None:
        label = self._subject_label(event.subject_type, event.subject_id)
        message = f"Your request for {label} was {event.outcome.replace('_', ' ')}."
        if event.grade and event.subject_type == SubjectType.SELF_EVALUATION.value:
            message += f" Approved score {event.total_score:g}, rated {event.grade.replace('_', ' ')}."
        elif event.grade:
            message += f" Total score {event.total_score:g}, grade {event.grade}."
        if event.comment:
            message += f" Comment: {event.comment}"
        self.notify(
            event.requester_id,
            NotificationType.APPROVAL_RESULT,
            f"Decision on {label}",
            message,
            task_id=self._subject_task_id(event.subject_type, event.subject_id),
            approval_request_id=event.request_id,
        )

    def _on_task_due_soon(self, event: TaskDueSoon) -> None:
        if event.assignee_id is None:
            return
        task = self.db.get(Task, event.task_id)
        self.notify(
            event.assignee_id,
            NotificationType.DUE_REMINDER,
            f"Task due {event.due_date.isoformat()}",
            f"'{task.title if task else event.task_id}' is due on {event.due_date.isoformat()}.",
            task_id=event.task_id,
        )

    def _on_task_overdue(self, event: TaskOverdue) -> None:
        if event.assignee_id is None:
            return
        task = self.db.get(Task, event.task_id)
        self.notify(
            event.assignee_id,
            NotificationType.OVERDUE_ALERT,
            "Task overdue",
            f"'{task.title if task else event.task_id}' was due on {event.due_date.isoformat()} and is not finished.",
            task_id=event.task_id,
        )


def deliver_pending_mail() -> None:
    """
    Background entry point. The request's session is closed by the time this
    runs, so it opens its own.
    """
    from hr_workflow.database import SessionLocal

    db = SessionLocal()
    try:
        NotificationDispatcher(db).deliver_pending()
    except Exception:
        logger.exception("Background mail delivery failed")
    finally:
        db.close()


def schedule_mail_delivery(background_tasks: BackgroundTasks) -> None:
    """Queue a mail drain to run after the response has been sent."""
    if settings.mail.enabled:
        background_tasks.add_task(deliver_pending_mail)
