"""A/B test lifecycle: creation, state transitions and auto-stop."""
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

import structlog

from splitlab.models.ab_test import ABTest, ABTestStatus, Variant
from splitlab.schemas.ab_test import ABTestCreate
from splitlab.services.repository import ABTestNotFoundError, ExperimentRepository
from splitlab.services.statistics import calculate_significance

logger = structlog.get_logger()

# Minimum visits in each arm before auto-stop may fire
AUTO_STOP_MIN_VISITS = 100


class InvalidTransitionError(Exception):
    """Raised when a lifecycle operation is not allowed from the current status."""
    pass


class TestLifecycleManager:
    """
    State machine for A/B tests.

    DRAFT -> ACTIVE (start), ACTIVE -> PAUSED (pause), PAUSED -> ACTIVE
    (start again), ACTIVE/PAUSED -> COMPLETED (manual stop or auto-stop).
    Every transition is a compare-and-set on the current status, so two
    racing requests cannot both complete a test.
    """

    __test__ = False  # keep pytest from collecting this class

    def __init__(
        self,
        repository: ExperimentRepository,
        auto_stop_min_visits: int = AUTO_STOP_MIN_VISITS
    ):
        self.repository = repository
        self.auto_stop_min_visits = auto_stop_min_visits

    def create_test(self, config: ABTestCreate) -> ABTest:
        """
        Create a new test in DRAFT status.

        Raises:
            ValueError: If the custom split percentages don't sum to 100
        """
        if config.custom_split_a + config.custom_split_b != 100:
            raise ValueError("Custom split percentages must sum to 100")

        test = ABTest(
            name=config.name,
            description=config.description,
            url=config.url,
            url_match_type=config.url_match_type,
            assignment_type=config.assignment_type,
            custom_split_a=config.custom_split_a,
            custom_split_b=config.custom_split_b,
            variant_a_content=config.variant_a_content,
            variant_b_content=config.variant_b_content,
            confidence_level=config.confidence_level,
            created_by=config.created_by,
            status=ABTestStatus.DRAFT,
            visits_a=0,
            visits_b=0,
            conversions_a=0,
            conversions_b=0,
            conversion_rate_a=0.0,
            conversion_rate_b=0.0,
            statistical_significance=False,
            created_at=datetime.utcnow()
        )
        test = self.repository.create_test(test)

        logger.info(
            "test_created",
            test_id=str(test.id),
            assignment_type=config.assignment_type.value
        )
        return test

    def _get_or_raise(self, test_id: UUID) -> ABTest:
        test = self.repository.get_test(test_id)
        if not test:
            raise ABTestNotFoundError(f"A/B test {test_id} not found")
        return test

    def _transition(
        self,
        test: ABTest,
        allowed: Iterable[ABTestStatus],
        values: dict,
        action: str
    ) -> ABTest:
        allowed = tuple(allowed)
        test_id = test.id
        if test.status not in allowed:
            raise InvalidTransitionError(
                f"Cannot {action} a test in {test.status.value} status"
            )

        if not self.repository.update_test(test_id, values, expected_statuses=allowed):
            raise InvalidTransitionError(
                f"Cannot {action} test {test_id}: status changed concurrently"
            )
        return self._get_or_raise(test_id)

    def start_test(self, test_id: UUID) -> ABTest:
        """Activate a DRAFT test or resume a PAUSED one."""
        test = self._get_or_raise(test_id)

        values = {"status": ABTestStatus.ACTIVE}
        if test.start_date is None:
            values["start_date"] = datetime.utcnow()

        test = self._transition(test, (ABTestStatus.DRAFT, ABTestStatus.PAUSED), values, "start")
        logger.info("test_started", test_id=str(test_id))
        return test

    def pause_test(self, test_id: UUID) -> ABTest:
        """Pause an ACTIVE test; it stops accepting visitors and conversions."""
        test = self._get_or_raise(test_id)
        test = self._transition(
            test, (ABTestStatus.ACTIVE,), {"status": ABTestStatus.PAUSED}, "pause"
        )
        logger.info("test_paused", test_id=str(test_id))
        return test

    def stop_test(self, test_id: UUID, winner: Optional[Variant] = None) -> ABTest:
        """
        Complete an ACTIVE or PAUSED test.

        Args:
            test_id: A/B test identifier
            winner: Optional manual winner. Without it, the winner is set only
                if the Z-test is significant at the test's confidence level.

        Returns:
            Updated ABTest
        """
        test = self._get_or_raise(test_id)

        stats = calculate_significance(
            test.conversions_a,
            test.visits_a,
            test.conversions_b,
            test.visits_b,
            test.confidence_level
        )
        if winner is None and stats.is_significant:
            winner = self._leader(stats.conversion_rate_a, stats.conversion_rate_b)

        values = {
            "status": ABTestStatus.COMPLETED,
            "end_date": datetime.utcnow(),
            "statistical_significance": stats.is_significant,
            "winner_variant": winner,
        }
        test = self._transition(
            test, (ABTestStatus.ACTIVE, ABTestStatus.PAUSED), values, "stop"
        )

        logger.info(
            "test_stopped",
            test_id=str(test_id),
            winner=winner.value if winner else None,
            significant=stats.is_significant
        )
        return test

    def check_auto_stop(self, test_id: UUID) -> bool:
        """
        Complete the test if the Z-test has become significant.

        Never fires while either arm has fewer than auto_stop_min_visits
        visits, however extreme the observed rates are.

        Returns:
            True if this call completed the test
        """
        test = self.repository.get_test(test_id)
        if not test or test.status != ABTestStatus.ACTIVE:
            return False

        if test.visits_a < self.auto_stop_min_visits or test.visits_b < self.auto_stop_min_visits:
            return False

        stats = calculate_significance(
            test.conversions_a,
            test.visits_a,
            test.conversions_b,
            test.visits_b,
            test.confidence_level
        )
        if not stats.is_significant:
            return False

        winner = self._leader(stats.conversion_rate_a, stats.conversion_rate_b)
        completed = self.repository.update_test(
            test_id,
            {
                "status": ABTestStatus.COMPLETED,
                "statistical_significance": True,
                "winner_variant": winner,
                "end_date": datetime.utcnow(),
            },
            expected_statuses=(ABTestStatus.ACTIVE,)
        )

        if completed:
            logger.info(
                "test_auto_completed",
                test_id=str(test_id),
                winner=winner.value,
                z_score=round(stats.z_score, 4),
                p_value=round(stats.p_value, 6),
                confidence_level=stats.confidence_level
            )
        return completed

    @staticmethod
    def _leader(rate_a: float, rate_b: float) -> Variant:
        return Variant.B if rate_b > rate_a else Variant.A
