"""Shared endpoint dependencies."""
from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session
from uuid import UUID

from splitlab.config import get_settings
from splitlab.database import get_db
from splitlab.models.ab_test import ABTest
from splitlab.services.lifecycle import TestLifecycleManager
from splitlab.services.recommendations import RecommendationEngine
from splitlab.services.repository import SqlAlchemyRepository


def get_repository(db: Session = Depends(get_db)) -> SqlAlchemyRepository:
    """Repository bound to the request's database session."""
    return SqlAlchemyRepository(db)


def get_lifecycle(repository: SqlAlchemyRepository = Depends(get_repository)) -> TestLifecycleManager:
    """Lifecycle manager using the configured auto-stop floor."""
    return TestLifecycleManager(
        repository,
        auto_stop_min_visits=get_settings().auto_stop_min_visits
    )


def get_recommendation_engine() -> RecommendationEngine:
    """Recommendation engine using the configured sample thresholds."""
    settings = get_settings()
    return RecommendationEngine(
        min_sample_size=settings.recommendation_min_sample,
        max_sample_size=settings.recommendation_max_sample
    )


def get_test_or_404(
    test_id: UUID,
    repository: SqlAlchemyRepository = Depends(get_repository)
) -> ABTest:
    """Load a test from the path or fail with 404."""
    test = repository.get_test(test_id)
    if not test:
        raise HTTPException(status_code=404, detail="A/B test not found")
    return test
