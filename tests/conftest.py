import pytest
import os
from datetime import date
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SEED_DEFAULT_CRITERIA"] = "false"
os.environ["RATE_LIMIT_PER_MINUTE"] = "1000"
os.environ.pop("MAIL_WEBHOOK_URL", None)

import hr_workflow.models  # noqa: F401
from hr_workflow.database import Base, get_db
from hr_workflow.main import app
from hr_workflow.models.employee import Employee, EmployeeRole
from fastapi.testclient import TestClient


@pytest.fixture(scope="function")
def engine(tmp_path):
    """A file-backed SQLite database per test, so separate sessions see each other's commits."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'workflow.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


def _employee(db_session, code, name, role, email=None):
    employee = Employee(
        code=code,
        full_name=name,
        email=email or f"{code.lower()}@example.com",
        role=role,
        department="Engineering",
        is_active=True,
    )
    db_session.add(employee)
    db_session.commit()
    db_session.refresh(employee)
    return employee


@pytest.fixture(scope="function")
def hr_admin(db_session):
    return _employee(db_session, "E-HR", "Hana Admin", EmployeeRole.HR_ADMIN)


@pytest.fixture(scope="function")
def manager(db_session):
    return _employee(db_session, "E-MGR", "Marco Manager", EmployeeRole.MANAGER)


@pytest.fixture(scope="function")
def second_manager(db_session):
    return _employee(db_session, "E-MGR2", "Mira Manager", EmployeeRole.MANAGER)


@pytest.fixture(scope="function")
def employee(db_session):
    return _employee(db_session, "E-EMP", "Eli Employee", EmployeeRole.EMPLOYEE)


@pytest.fixture(scope="function")
def criteria(db_session):
    """Two required criteria, 40/60 weights, both out of 10."""
    from hr_workflow.services.scoring import ScoringService
    service = ScoringService(db_session)
    return [
        service.create_criterion("QUALITY", "Quality", weight=40, max_score=10, is_required=True),
        service.create_criterion("DELIVERY", "Delivery", weight=60, max_score=10, is_required=True),
    ]


@pytest.fixture(scope="function")
def review(db_session, employee, manager):
    from hr_workflow.services.reviews import ReviewService
    return ReviewService(db_session).create_review(
        employee_id=employee.id,
        period="2024-H1",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 6, 30),
        actor_id=manager.id,
        reviewer_id=manager.id,
    )


@pytest.fixture(scope="function")
def task_in_review(db_session, employee, manager):
    """A task assigned by `manager` to `employee`, already in pending_review."""
    from hr_workflow.services.task_status import TaskStatusService
    service = TaskStatusService(db_session)
    task = service.create_task("Write quarterly report", actor_id=manager.id, assignee_id=employee.id)
    service.request_transition(task.id, "in_progress", actor_id=employee.id)
    service.request_transition(task.id, "pending_review", actor_id=employee.id)
    return task


@pytest.fixture(scope="function")
def actor_headers():
    def _headers(employee):
        return {"X-Employee-Id": str(employee.id)}
    return _headers


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
