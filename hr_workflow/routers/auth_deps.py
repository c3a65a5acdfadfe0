"""
Actor resolution for FastAPI endpoints.

Identity is owned by an upstream gateway; it forwards the authenticated
employee id in the X-Employee-Id header. These dependencies turn that header
into an Employee and enforce the coarse role checks.
"""
import logging
from typing import Callable, List, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from hr_workflow.core.exceptions import AccessDeniedError, AuthenticationError
from hr_workflow.database import get_db
from hr_workflow.models.employee import APPROVER_ROLES, Employee, EmployeeRole

logger = logging.getLogger(__name__)


def get_current_actor(
    x_employee_id: Optional[str] = Header(default=None, alias="X-Employee-Id"),
    db: Session = Depends(get_db),
) -> Employee:
    """
    Resolves the acting employee from the gateway header.
    """
    if not x_employee_id:
        raise AuthenticationError("Missing X-Employee-Id header")
    try:
        employee_id = int(x_employee_id)
    except ValueError:
        logger.warning(f"Authentication failed: malformed employee id {x_employee_id!r}")
        raise AuthenticationError("Malformed X-Employee-Id header")

    employee = db.get(Employee, employee_id)
    if employee is None:
        logger.warning(f"Authentication failed: employee {employee_id} not found")
        raise AuthenticationError("Unknown employee")
    if not employee.is_active:
        logger.warning(f"Authentication failed: employee {employee_id} is inactive")
        raise AccessDeniedError("Employee is inactive")
    return employee


def require_role(allowed_roles: List[EmployeeRole]) -> Callable:
    """
    Dependency factory that checks the actor has one of the allowed roles.

    Usage:
        @router.post("/criteria")
        def create(actor: Employee = Depends(require_role([EmployeeRole.HR_ADMIN]))):
            ...
    """
    def role_checker(current_actor: Employee = Depends(get_current_actor)) -> Employee:
        if current_actor.role not in allowed_roles:
            raise AccessDeniedError(f"Access denied. Required roles: {[r.value for r in allowed_roles]}")
        return current_actor
    return role_checker


def require_approver():
    """Shorthand for roles that may decide approval requests."""
    return require_role(list(APPROVER_ROLES))


def require_hr():
    """Shorthand for requiring any HR role."""
    return require_role([EmployeeRole.HR_ADMIN, EmployeeRole.HR_MANAGER])
