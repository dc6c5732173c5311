"""A/B test management and analysis endpoints."""
import asyncio
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from typing import List, Optional

from splitlab.api.deps import get_lifecycle, get_recommendation_engine, get_repository, get_test_or_404
from splitlab.config import get_settings
from splitlab.middleware.logging import get_logger
from splitlab.models.ab_test import ABTest, ABTestStatus
from splitlab.schemas.ab_test import ABTestCreate, ABTestResponse, StopTestRequest
from splitlab.schemas.analysis import ABTestResultsResponse, BayesianResponse, SequentialResponse
from splitlab.services.lifecycle import InvalidTransitionError, TestLifecycleManager
from splitlab.services.recommendations import RecommendationEngine
from splitlab.services.repository import ABTestNotFoundError, SqlAlchemyRepository
from splitlab.services.statistics import (
    PosteriorSampler,
    calculate_bayesian_analysis,
    calculate_sequential_test,
)
from splitlab.services.url_matching import find_matching_tests

router = APIRouter()
logger = get_logger()


@router.get("/ab-tests", response_model=List[ABTestResponse])
async def list_tests(
    status: Optional[ABTestStatus] = None,
    repository: SqlAlchemyRepository = Depends(get_repository)
):
    """List all tests, newest first."""
    return repository.list_tests(status=status)


@router.post("/ab-tests", response_model=ABTestResponse, status_code=201)
async def create_test(
    config: ABTestCreate,
    lifecycle: TestLifecycleManager = Depends(get_lifecycle)
):
    """Create a test in DRAFT status."""
    try:
        return lifecycle.create_test(config)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/ab-tests/active", response_model=List[ABTestResponse])
async def active_tests_for_url(
    url: str = Query(..., min_length=1),
    repository: SqlAlchemyRepository = Depends(get_repository)
):
    """
    ACTIVE tests that target a page URL.

    Called on page load to decide whether to request an assignment.
    """
    return find_matching_tests(repository.list_tests(status=ABTestStatus.ACTIVE), url)


@router.get("/ab-tests/{test_id}", response_model=ABTestResponse)
async def get_test(test: ABTest = Depends(get_test_or_404)):
    """Get a test with its counters."""
    return test


def _apply_transition(action, *args) -> ABTest:
    try:
        return action(*args)
    except ABTestNotFoundError:
        raise HTTPException(status_code=404, detail="A/B test not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/ab-tests/{test_id}/start", response_model=ABTestResponse)
async def start_test(test: ABTest = Depends(get_test_or_404), lifecycle: TestLifecycleManager = Depends(get_lifecycle)):
    """Start a DRAFT test or resume a PAUSED one."""
    return _apply_transition(lifecycle.start_test, test.id)


@router.post("/ab-tests/{test_id}/pause", response_model=ABTestResponse)
async def pause_test(test: ABTest = Depends(get_test_or_404), lifecycle: TestLifecycleManager = Depends(get_lifecycle)):
    """Pause an ACTIVE test."""
    return _apply_transition(lifecycle.pause_test, test.id)


@router.post("/ab-tests/{test_id}/stop", response_model=ABTestResponse)
async def stop_test(
    stop_request: Optional[StopTestRequest] = None,
    test: ABTest = Depends(get_test_or_404),
    lifecycle: TestLifecycleManager = Depends(get_lifecycle)
):
    """Complete a test, optionally declaring the winner."""
    winner = stop_request.winner if stop_request else None
    return _apply_transition(lifecycle.stop_test, test.id, winner)


@router.get("/ab-tests/{test_id}/results", response_model=ABTestResultsResponse)
async def get_results(
    test: ABTest = Depends(get_test_or_404),
    engine: RecommendationEngine = Depends(get_recommendation_engine)
):
    """Z-test statistics, confidence intervals and recommendation."""
    return engine.get_test_results(test).to_dict()


@router.get("/ab-tests/{test_id}/bayesian", response_model=BayesianResponse)
async def get_bayesian_analysis(
    seed: Optional[int] = Query(None, description="Seed for reproducible simulation"),
    test: ABTest = Depends(get_test_or_404)
):
    """
    Bayesian posterior comparison of the two variants.

    The Monte Carlo simulation runs in a worker thread under
    settings.bayesian_timeout_seconds. On timeout the request fails with
    504; the worker thread cannot be interrupted and finishes on its own.
    """
    settings = get_settings()
    # Read ORM attributes here; the session must not be used from the worker thread
    counts = (test.conversions_a, test.visits_a, test.conversions_b, test.visits_b)
    test_id = str(test.id)

    try:
        async with asyncio.timeout(settings.bayesian_timeout_seconds):
            result = await run_in_threadpool(
                calculate_bayesian_analysis,
                *counts,
                test.confidence_level,
                settings.bayesian_simulations,
                PosteriorSampler(seed=seed)
            )
    except asyncio.TimeoutError:
        logger.warning(
            "bayesian_analysis_timeout",
            test_id=test_id,
            timeout_seconds=settings.bayesian_timeout_seconds
        )
        raise HTTPException(status_code=504, detail="Bayesian analysis timed out")

    return result.to_dict()


@router.get("/ab-tests/{test_id}/sequential", response_model=SequentialResponse)
async def get_sequential_test(
    alpha: float = Query(0.05, gt=0, lt=1),
    beta: float = Query(0.2, gt=0, lt=1),
    minimum_effect: float = Query(0.1, gt=0),
    test: ABTest = Depends(get_test_or_404)
):
    """SPRT decision for the current counts."""
    return calculate_sequential_test(
        test.conversions_a,
        test.visits_a,
        test.conversions_b,
        test.visits_b,
        alpha=alpha,
        beta=beta,
        minimum_effect=minimum_effect
    ).to_dict()
