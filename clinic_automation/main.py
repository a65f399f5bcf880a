"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from sqlalchemy import text

from clinic_automation.core.config import settings
from clinic_automation.db.session import engine
from clinic_automation.routers import appointment_actions, public_appointments

logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Clinic Automation API",
    description="Appointment lifecycle automation: transitions, actions and scheduled jobs",
    version=settings.VERSION,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
)

# ============================================================================
# Routers
# ============================================================================

app.include_router(appointment_actions.router, prefix="/planning", tags=["planning"])
app.include_router(public_appointments.router, tags=["public"])


@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
