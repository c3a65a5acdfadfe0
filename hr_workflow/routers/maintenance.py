from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hr_workflow.database import get_db
from hr_workflow.models.employee import Employee
from hr_workflow.routers.auth_deps import require_hr
from hr_workflow.services.maintenance import MaintenanceService

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.post("/run")
def run_maintenance(
    today: Optional[date] = None,
    db: Session = Depends(get_db),
    hr: Employee = Depends(require_hr()),
):
    """Run the scheduled sweep on demand. `today` defaults to the server date."""
    return MaintenanceService(db).run(today=today).to_dict()
