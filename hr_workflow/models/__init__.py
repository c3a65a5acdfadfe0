# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import employee, task, approval, performance, evaluation, notification

# Explicit class exports for cleaner imports
from .employee import Employee, EmployeeRole
from .task import Task, TaskStatus, TaskStatusHistory, ChangeType
from .approval import ApprovalRequest, ApprovalStatus, ApprovalDecision, SubjectType
from .performance import PerformanceCriterion, PerformanceReview, ReviewScore, ReviewStatus
from .evaluation import TaskSelfEvaluation, SelfEvaluationStatus, Rating
from .notification import TaskNotification, NotificationType

__all__ = [
    "Employee",
    "EmployeeRole",
    "Task",
    "TaskStatus",
    "TaskStatusHistory",
    "ChangeType",
    "ApprovalRequest",
    "ApprovalStatus",
    "ApprovalDecision",
    "SubjectType",
    "PerformanceCriterion",
    "PerformanceReview",
    "ReviewScore",
    "ReviewStatus",
    "TaskSelfEvaluation",
    "SelfEvaluationStatus",
    "Rating",
    "TaskNotification",
    "NotificationType",
]
