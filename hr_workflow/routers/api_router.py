from fastapi import APIRouter
from hr_workflow.routers import tasks, approvals, criteria, reviews, self_evaluations, notifications, maintenance

# Centralized API router hub
# Routers are aggregated here and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(tasks.router)
api_router.include_router(approvals.router)
api_router.include_router(criteria.router)
api_router.include_router(reviews.router)
api_router.include_router(self_evaluations.router)
api_router.include_router(notifications.router)
api_router.include_router(maintenance.router)
