"""
Health and build metadata endpoints.

Both prefixes are exempt from the gateway entitlement check, so load
balancers and deploy tooling never need a session.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from equiprofile.database.session import get_db_session
from equiprofile.platform.db_readiness import (
    REQUIRED_ENFORCEMENT_TABLES,
    check_required_tables,
)

router = APIRouter(tags=["health"])


@router.get("/api/health")
def health():
    return {"status": "ok"}


@router.get("/api/health/readiness")
def readiness(db=Depends(get_db_session)):
    """Readiness check that validates the enforcement tables exist."""
    try:
        result = check_required_tables(db, REQUIRED_ENFORCEMENT_TABLES)
    except SQLAlchemyError:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "checks": {"database": "error"}},
        )

    body = {
        "status": "ready" if result.ready else "not_ready",
        "checks": {
            "database": "ok",
            "enforcement_tables": {
                "required": result.checked_tables,
                "missing": result.missing_tables,
            },
        },
    }
    if not result.ready:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


@router.get("/api/build")
def build_info(request: Request):
    settings = request.app.state.settings
    return {
        "version": settings.app_version,
        "commit": settings.git_commit or None,
        "environment": settings.environment,
    }
