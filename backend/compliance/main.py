"""
Agency Compliance - FastAPI Application

Main entry point for the agency compliance backend.

Workflow core:
- Forms: DRAFT -> SUBMITTED, locked unless an edit request is approved
- Approvals: agency requests edit access, admin approves or rejects
- Escalation: Audit -> Observation -> ShowCauseNotice -> Response -> Penalty
- Deadline sweep: overdue observations are auto-accepted
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import (
    auth_router, forms_router, approvals_router, audits_router,
    notices_router, penalties_router, notifications_router, activity_router,
    scheduler_router,
)
from .database import init_db

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Agency Compliance",
    description="""
    Agency Compliance - Workflow Backend for Collection Agencies

    ## Areas
    1. **Forms**: monthly and annual regulatory forms, draft/submit/lock
    2. **Approvals**: requests to unlock a submitted form
    3. **Audits**: firm assignments, audits, observations, scorecards
    4. **Notices**: show cause notices and agency responses
    5. **Penalties**: assignment, acknowledgement, payment

    ## Key Principles
    - A submitted form is locked until an edit request is approved
    - Every state change is a guarded conditional update
    - Notifications are best-effort and never block a transition
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(forms_router)
app.include_router(approvals_router)
app.include_router(audits_router)
app.include_router(notices_router)
app.include_router(penalties_router)
app.include_router(notifications_router)
app.include_router(activity_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Agency Compliance",
        "version": "1.0.0",
        "description": "Compliance workflow backend for collection agencies",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m compliance.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
