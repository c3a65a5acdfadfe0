import logging
from typing import Optional

from sqlalchemy.orm import Session

from hr_workflow.core.config import settings
from hr_workflow.database import SessionLocal
from hr_workflow.models.performance import CriterionStatus, PerformanceCriterion

logger = logging.getLogger(__name__)

# code, name, category, weight, max_score, is_required
DEFAULT_CRITERIA = [
    ("QUALITY", "Quality of work", "delivery", 30, 10, True),
    ("DELIVERY", "Timeliness", "delivery", 25, 10, True),
    ("COLLAB", "Collaboration", "behaviour", 20, 10, False),
    ("INITIATIVE", "Initiative", "behaviour", 15, 10, False),
    ("GROWTH", "Learning and growth", "development", 10, 10, False),
]


def init_system_data(db: Optional[Session] = None):
    """
    Seeds the default performance criteria on an empty database.
    Skipped when SEED_DEFAULT_CRITERIA is false or any criterion exists.
    """
    if not settings.workflow.seed_default_criteria:
        return
    owns_session = db is None
    db = db or SessionLocal()
    try:
        criteria_count = db.query(PerformanceCriterion).count()
        if criteria_count == 0:
            logger.info("Seeding default performance criteria...")
            for order, (code, name, category, weight, max_score, required) in enumerate(DEFAULT_CRITERIA):
                db.add(PerformanceCriterion(
                    code=code,
                    name=name,
                    category=category,
                    weight=weight,
                    max_score=max_score,
                    is_required=required,
                    sort_order=order,
                    status=CriterionStatus.ACTIVE.value,
                ))
            db.commit()
            logger.info(f"✓ Seeded {len(DEFAULT_CRITERIA)} performance criteria")
        else:
            logger.info(f"System initialization check: {criteria_count} criteria found.")
    except Exception as e:
        db.rollback()
        logger.error(f"Error during system initialization check: {str(e)}", exc_info=True)
        raise
    finally:
        if owns_session:
            db.close()
