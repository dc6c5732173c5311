"""Test planning endpoints."""
from fastapi import APIRouter, HTTPException, Query

from splitlab.schemas.analysis import SampleSizeResponse
from splitlab.services.statistics import calculate_sample_size

router = APIRouter()


@router.get("/stats/sample-size", response_model=SampleSizeResponse)
async def sample_size(
    baseline_rate: float = Query(..., gt=0, lt=1, description="Current conversion rate"),
    minimum_detectable_effect: float = Query(..., gt=0, description="Relative lift, e.g. 0.1"),
    confidence_level: float = Query(95, gt=0, lt=100),
    statistical_power: float = Query(80, gt=0, lt=100)
):
    """Visitors needed per variant before starting a test."""
    try:
        per_variant = calculate_sample_size(
            baseline_rate,
            minimum_detectable_effect,
            confidence_level,
            statistical_power
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {
        "sample_size_per_variant": per_variant,
        "total_sample_size": per_variant * 2
    }
