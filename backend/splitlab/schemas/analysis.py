"""Statistical analysis response schemas."""
from pydantic import BaseModel, Field
from typing import Dict, Optional
from uuid import UUID

from splitlab.models.ab_test import ABTestStatus, Variant


class IntervalResponse(BaseModel):
    """Closed interval."""

    lower: float
    upper: float


class SignificanceResponse(BaseModel):
    """Two-proportion Z-test result."""

    conversion_rate_a: float
    conversion_rate_b: float
    improvement: float
    improvement_percent: float
    confidence_level: float
    is_significant: bool
    p_value: float
    z_score: float
    critical_z: float
    margin_of_error: float
    sample_size_a: int
    sample_size_b: int
    conversions_a: int
    conversions_b: int


class BayesianResponse(SignificanceResponse):
    """Z-test result plus posterior comparison."""

    probability_b_beats_a: float = Field(..., ge=0, le=1)
    expected_loss: float
    credible_interval: IntervalResponse


class SequentialResponse(BaseModel):
    """SPRT decision."""

    should_stop: bool
    decision: str = Field(..., description="continue, stop_A_wins or stop_B_wins")
    log_likelihood_ratio: float
    upper_boundary: float
    lower_boundary: float


class RecommendationResponse(BaseModel):
    """Stop/continue verdict."""

    should_stop: bool
    winner: Optional[Variant] = None
    confidence: float
    reason: str


class ABTestResultsResponse(BaseModel):
    """Full report for one test."""

    test_id: UUID
    name: str
    status: ABTestStatus
    winner_variant: Optional[Variant] = None
    statistics: SignificanceResponse
    assignments: Dict[str, int]
    confidence_intervals: Dict[str, IntervalResponse]
    recommendation: RecommendationResponse


class SampleSizeResponse(BaseModel):
    """Visitors needed before starting a test."""

    sample_size_per_variant: int
    total_sample_size: int
