"""
Audit Trail Service FastAPI application.

This is the entry point for the application.
All routers are registered here.
"""

import logging

import uvicorn
from fastapi import FastAPI

from audit_trail.config import get_settings
from audit_trail.api.audit import router as audit_router
from audit_trail.api.health import router as health_router

settings = get_settings()


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


configure_logging()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Append-only, organization-scoped audit log",
)

# Register routers
app.include_router(health_router)
app.include_router(audit_router)


def run() -> None:
    """Serve the application with uvicorn using HOST/PORT settings."""
    uvicorn.run(
        "audit_trail.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    run()
