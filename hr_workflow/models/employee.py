"""
Employee reference model.
Employees are owned by the HR master-data module; the workflow engine only
reads them to resolve actors, assignees and reviewer pools.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean
from sqlalchemy.sql import func
import enum
from hr_workflow.database import Base


class EmployeeRole(str, enum.Enum):
    """
    Roles relevant to the workflow engine.

    - HR_ADMIN: Full HR access, administers performance criteria
    - HR_MANAGER: Department-level HR access
    - MANAGER: Team manager (approvals, reviews for direct reports)
    - EMPLOYEE: Self-service access
    """
    HR_ADMIN = "HR_ADMIN"
    HR_MANAGER = "HR_MANAGER"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


APPROVER_ROLES = (EmployeeRole.HR_ADMIN, EmployeeRole.HR_MANAGER, EmployeeRole.MANAGER)


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, index=True, nullable=True)
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    role = Column(Enum(EmployeeRole), default=EmployeeRole.EMPLOYEE, nullable=False)
    department = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Employee {self.id} {self.full_name} ({self.role.value})>"

    @property
    def is_hr(self) -> bool:
        return self.role in [EmployeeRole.HR_ADMIN, EmployeeRole.HR_MANAGER]

    @property
    def can_approve(self) -> bool:
        """Check if employee can decide approval requests."""
        return self.is_active and self.role in APPROVER_ROLES
