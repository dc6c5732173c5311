"""Health check endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy import func, text
from sqlalchemy.orm import Session

from splitlab.database import get_db
from splitlab.models.ab_test import ABTest, ABTestStatus

router = APIRouter()


@router.get("/health")
@router.head("/health")
async def health_check():
    """Liveness check."""
    return {"status": "healthy", "service": "splitlab"}


@router.get("/health/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """
    Readiness check: database connectivity plus a per-status test count.

    The count doubles as a check that the schema exists.
    """
    try:
        db.execute(text("SELECT 1"))
        rows = db.query(ABTest.status, func.count(ABTest.id)).group_by(ABTest.status).all()
    except Exception as e:
        return {
            "status": "degraded",
            "checks": {"api": "healthy", "database": f"unhealthy: {str(e)}"}
        }

    tests_by_status = {status.value: 0 for status in ABTestStatus}
    tests_by_status.update({status.value: count for status, count in rows})

    return {
        "status": "healthy",
        "checks": {"api": "healthy", "database": "healthy"},
        "tests": tests_by_status
    }
