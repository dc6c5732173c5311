"""Turn test statistics into a stop/continue verdict."""
from dataclasses import dataclass, asdict
from typing import Dict, Optional

from splitlab.models.ab_test import ABTest, Variant
from splitlab.services.statistics import (
    Interval,
    SignificanceResult,
    calculate_confidence_interval,
    calculate_significance,
)

# Total visits (both arms) below which no verdict is given
MIN_SAMPLE_SIZE = 1000
# Total visits above which a non-significant test is called a tie
MAX_SAMPLE_SIZE = 10000


@dataclass
class Recommendation:
    """Human-actionable verdict."""
    should_stop: bool
    confidence: float
    reason: str
    winner: Optional[Variant] = None


@dataclass
class ABTestResults:
    """Everything needed to report on a test."""
    test: ABTest
    statistics: SignificanceResult
    assignments: Dict[str, int]
    confidence_intervals: Dict[str, Interval]
    recommendation: Recommendation

    def to_dict(self) -> dict:
        return {
            "test_id": str(self.test.id),
            "name": self.test.name,
            "status": self.test.status.value,
            "winner_variant": self.test.winner_variant.value if self.test.winner_variant else None,
            "statistics": self.statistics.to_dict(),
            "assignments": dict(self.assignments),
            "confidence_intervals": {k: asdict(v) for k, v in self.confidence_intervals.items()},
            "recommendation": {
                "should_stop": self.recommendation.should_stop,
                "winner": self.recommendation.winner.value if self.recommendation.winner else None,
                "confidence": self.recommendation.confidence,
                "reason": self.recommendation.reason,
            },
        }


class RecommendationEngine:
    """Business rules on top of the Z-test."""

    def __init__(self, min_sample_size: int = MIN_SAMPLE_SIZE, max_sample_size: int = MAX_SAMPLE_SIZE):
        self.min_sample_size = min_sample_size
        self.max_sample_size = max_sample_size

    def recommend(self, test: ABTest, stats: SignificanceResult) -> Recommendation:
        """
        Decide whether to stop a test and who won.

        Args:
            test: The A/B test (for its visit counts)
            stats: Z-test result for the test's current counts

        Returns:
            Recommendation
        """
        total_sample = test.total_visits

        if total_sample < self.min_sample_size:
            return Recommendation(
                should_stop=False,
                confidence=0.0,
                reason=(
                    f"Insufficient data. Current sample: {total_sample}, "
                    f"minimum recommended: {self.min_sample_size}"
                )
            )

        if stats.is_significant:
            winner = Variant.B if stats.conversion_rate_b > stats.conversion_rate_a else Variant.A
            return Recommendation(
                should_stop=True,
                winner=winner,
                confidence=stats.confidence_level,
                reason=(
                    f"Statistically significant result at {stats.confidence_level:g}% confidence. "
                    f"Variant {winner.value} wins with {abs(stats.improvement_percent):.2f}% improvement."
                )
            )

        if total_sample > self.max_sample_size:
            return Recommendation(
                should_stop=True,
                confidence=0.0,
                reason=(
                    f"Large sample size ({total_sample}) with no significant difference. "
                    "Consider this a tie or implement the simpler variant."
                )
            )

        current_confidence = 100 * (1 - stats.p_value)
        return Recommendation(
            should_stop=False,
            confidence=current_confidence,
            reason=(
                f"Continue testing. Current confidence: {current_confidence:.1f}%, "
                f"need {stats.confidence_level:g}% for significance."
            )
        )

    def get_test_results(self, test: ABTest) -> ABTestResults:
        """Z-test, per-variant intervals and recommendation for a test."""
        stats = calculate_significance(
            test.conversions_a,
            test.visits_a,
            test.conversions_b,
            test.visits_b,
            test.confidence_level
        )

        return ABTestResults(
            test=test,
            statistics=stats,
            assignments={
                "total_a": test.visits_a,
                "total_b": test.visits_b,
                "conversions_a": test.conversions_a,
                "conversions_b": test.conversions_b,
            },
            confidence_intervals={
                "A": calculate_confidence_interval(test.conversions_a, test.visits_a, test.confidence_level),
                "B": calculate_confidence_interval(test.conversions_b, test.visits_b, test.confidence_level),
            },
            recommendation=self.recommend(test, stats),
        )
