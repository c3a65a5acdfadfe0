import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.orm import Session

from hr_workflow.services.events import Outbox


class BaseService:
    """
    Common plumbing for domain services: the DB session, a shared event
    outbox and a per-service logger.

    Services that call each other inside one operation share the session and
    the outbox, so a single commit covers every write and every event is
    published once, after that commit.
    """

    def __init__(self, db: Session, outbox: Optional[Outbox] = None):
        self.db = db
        self.outbox = outbox if outbox is not None else Outbox()
        self._logger = logging.getLogger(self.__class__.__module__)

    @contextmanager
    def unit_of_work(self):
        """Commit on success, roll back and drop recorded events on any failure."""
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.outbox.discard()
            raise
        self.publish()

    def publish(self) -> None:
        events = self.outbox.drain()
        if not events:
            return
        from hr_workflow.services.notification import NotificationDispatcher
        NotificationDispatcher(self.db).dispatch(events)

    def log_info(self, message: str, **extra):
        self._logger.info(message, extra=extra or None)

    def log_warning(self, message: str, **extra):
        self._logger.warning(message, extra=extra or None)

    def log_error(self, message: str, **extra):
        self._logger.error(message, extra=extra or None)
