"""
Workflow events.

Services record events in an Outbox while their transaction is open. The
outbox is drained and handed to the NotificationDispatcher only after the
transaction commits; a rolled back operation discards its events.
"""
from dataclasses import dataclass
from datetime import date
from typing import List, Optional


@dataclass(frozen=True)
class WorkflowEvent:
    pass


@dataclass(frozen=True)
class TaskTransitioned(WorkflowEvent):
    task_id: int
    old_status: Optional[str]
    new_status: str
    change_type: str
    actor_id: Optional[int]


@dataclass(frozen=True)
class TaskDueSoon(WorkflowEvent):
    task_id: int
    assignee_id: Optional[int]
    due_date: date


@dataclass(frozen=True)
class TaskOverdue(WorkflowEvent):
    task_id: int
    assignee_id: Optional[int]
    due_date: date


@dataclass(frozen=True)
class ApprovalRequested(WorkflowEvent):
    request_id: int
    subject_type: str
    subject_id: int
    requester_id: int


@dataclass(frozen=True)
class ApprovalDecided(WorkflowEvent):
    request_id: int
    subject_type: str
    subject_id: int
    requester_id: int
    decider_id: Optional[int]
    outcome: str
    comment: Optional[str] = None
    total_score: Optional[float] = None
    grade: Optional[str] = None


class Outbox:
    def __init__(self):
        self._events: List[WorkflowEvent] = []

    def record(self, event: WorkflowEvent) -> None:
        self._events.append(event)

    def drain(self) -> List[WorkflowEvent]:
        events, self._events = self._events, []
        return events

    def discard(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
