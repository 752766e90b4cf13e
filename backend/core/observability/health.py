"""Health and readiness endpoints."""

from typing import Any

from fastapi import APIRouter
from sqlalchemy import create_engine, text

from backend.core.config import settings

router = APIRouter()


def get_version() -> str:
    """Get application version from pyproject.toml."""
    try:
        import tomllib

        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
            return data.get("project", {}).get("version", "unknown")
    except (OSError, ValueError):
        return "dev"


def check_database() -> str:
    """Check database connectivity with light query."""
    try:
        engine = create_engine(settings.database_url, future=True)
        try:
            with engine.connect() as conn:
                row = conn.execute(text("SELECT 1 AS health_check")).first()
        finally:
            engine.dispose()
        return "OK" if row and row.health_check == 1 else "FAIL"
    except Exception:
        return "FAIL"


@router.get("/health/ready")
def readiness_check() -> dict[str, Any]:
    """Readiness endpoint for load balancers."""
    db_status = check_database()

    return {
        "status": "OK" if db_status == "OK" else "DEGRADED",
        "version": get_version(),
        "db": db_status,
    }


@router.get("/health/live")
def liveness_check() -> dict[str, str]:
    """Liveness endpoint - always OK if service is running."""
    return {"status": "OK"}
