"""Agency Compliance - API Routers"""
from .auth import router as auth_router
from .forms import router as forms_router
from .approvals import router as approvals_router
from .audits import router as audits_router
from .notices import router as notices_router
from .penalties import router as penalties_router
from .notifications import router as notifications_router
from .activity import router as activity_router
from .scheduler import router as scheduler_router

__all__ = [
    "auth_router",
    "forms_router",
    "approvals_router",
    "audits_router",
    "notices_router",
    "penalties_router",
    "notifications_router",
    "activity_router",
    "scheduler_router",
]
