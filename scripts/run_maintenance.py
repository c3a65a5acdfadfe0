"""
Cron entry point for the scheduled workflow sweep.

    */30 * * * *  cd /srv/hr-workflow && python -m scripts.run_maintenance
    0 6 * * *     cd /srv/hr-workflow && python -m scripts.run_maintenance --date 2024-01-31
"""
import argparse
import logging
from datetime import date

from hr_workflow.core.logging import setup_logging
from hr_workflow.database import SessionLocal, init_db
from hr_workflow.services.maintenance import MaintenanceService

logger = logging.getLogger("hr_workflow.maintenance")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run the HR workflow maintenance sweep")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Treat this ISO date as today")
    args = parser.parse_args(argv)

    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        result = MaintenanceService(db).run(today=args.date)
    finally:
        db.close()
    print(result.to_dict())
    return 1 if result.failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
