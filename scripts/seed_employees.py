from hr_workflow.database import SessionLocal, init_db
from hr_workflow.models.employee import Employee, EmployeeRole

EMPLOYEES = [
    ("E-0001", "Hana Admin", "hr.admin@example.com", EmployeeRole.HR_ADMIN, "HR"),
    ("E-0002", "Marco Manager", "manager@example.com", EmployeeRole.MANAGER, "Engineering"),
    ("E-0003", "Eli Employee", "employee@example.com", EmployeeRole.EMPLOYEE, "Engineering"),
]


def seed():
    init_db()
    db = SessionLocal()
    try:
        for code, full_name, email, role, department in EMPLOYEES:
            existing = db.query(Employee).filter(Employee.code == code).first()
            if existing:
                print(f"Employee {code} already exists (id={existing.id})")
                continue
            employee = Employee(code=code, full_name=full_name, email=email, role=role, department=department)
            db.add(employee)
            db.commit()
            db.refresh(employee)
            print(f"Created {role.value} {full_name} (id={employee.id})")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
