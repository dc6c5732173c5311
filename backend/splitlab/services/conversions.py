"""Conversion attribution."""
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from splitlab.models.ab_test import ABTestStatus
from splitlab.services.lifecycle import TestLifecycleManager
from splitlab.services.repository import ExperimentRepository

logger = structlog.get_logger()


class ConversionRecorder:
    """Records at most one conversion per visitor per test."""

    def __init__(
        self,
        repository: ExperimentRepository,
        lifecycle: Optional[TestLifecycleManager] = None
    ):
        self.repository = repository
        self.lifecycle = lifecycle or TestLifecycleManager(repository)

    def record_conversion(
        self,
        test_id: UUID,
        visitor_id: str,
        value: Optional[float] = None
    ) -> bool:
        """
        Attribute a goal completion to the visitor's assigned variant.

        A missing assignment, an already-converted one, or a test that is no
        longer ACTIVE is a silent no-op. After a successful conversion the
        auto-stop check runs.

        Args:
            test_id: A/B test identifier
            visitor_id: Visitor identifier used at assignment time
            value: Optional monetary value of the conversion

        Returns:
            True if this call recorded the conversion
        """
        assignment = self.repository.find_assignment(test_id, visitor_id)
        if not assignment or assignment.converted:
            logger.info(
                "conversion_ignored",
                test_id=str(test_id),
                visitor_id=visitor_id,
                reason="already_converted" if assignment else "no_assignment"
            )
            return False

        test = self.repository.get_test(test_id)
        if not test or test.status != ABTestStatus.ACTIVE:
            logger.info(
                "conversion_ignored",
                test_id=str(test_id),
                visitor_id=visitor_id,
                reason="test_not_active"
            )
            return False

        variant = assignment.variant

        # Conditional update: concurrent duplicates lose here
        recorded = self.repository.mark_converted_and_count(
            test_id, visitor_id, variant, value, datetime.utcnow()
        )
        if not recorded:
            logger.info(
                "conversion_ignored",
                test_id=str(test_id),
                visitor_id=visitor_id,
                reason="already_converted"
            )
            return False

        logger.info(
            "conversion_recorded",
            test_id=str(test_id),
            visitor_id=visitor_id,
            variant=variant.value,
            conversion_value=value
        )

        self.lifecycle.check_auto_stop(test_id)
        return True
