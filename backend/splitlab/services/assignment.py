"""Variant assignment for A/B tests."""
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog

from splitlab.models.ab_test import ABTest, ABTestStatus, AssignmentType, Variant
from splitlab.models.assignment import Assignment
from splitlab.services.repository import DuplicateAssignmentError, ExperimentRepository

logger = structlog.get_logger()


@dataclass
class VisitorInfo:
    """Client metadata stored with a new assignment."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    page: Optional[str] = None


@dataclass
class VariantAssignment:
    """The variant a visitor sees and the content to render."""
    test_id: UUID
    variant: Variant
    is_new_assignment: bool
    content: Any


class AssignmentEngine:
    """Decides and persists a visitor's variant for a test."""

    def __init__(self, repository: ExperimentRepository, rng: Optional[random.Random] = None):
        self.repository = repository
        self.rng = rng if rng is not None else random.Random()

    def assign(
        self,
        test_id: UUID,
        visitor_id: str,
        visitor_info: Optional[VisitorInfo] = None
    ) -> Optional[VariantAssignment]:
        """
        Get the visitor's variant, assigning one on first exposure.

        A visitor keeps the variant they were first given for the life of
        the test, even if the strategy or content changes later.

        Args:
            test_id: A/B test identifier
            visitor_id: Stable visitor identifier (cookie, user id, ...)
            visitor_info: Optional client metadata for new assignments

        Returns:
            VariantAssignment, or None if the test is missing or not ACTIVE

        Example:
            >>> engine = AssignmentEngine(SqlAlchemyRepository(db))
            >>> result = engine.assign(test_id, "visitor_123")
            >>> result.variant  # same value on every later call
        """
        test = self.repository.get_test(test_id)
        if not test or test.status != ABTestStatus.ACTIVE:
            return None

        existing = self.repository.find_assignment(test_id, visitor_id)
        if existing:
            return VariantAssignment(
                test_id=test_id,
                variant=existing.variant,
                is_new_assignment=False,
                content=test.content_for(existing.variant)
            )

        variant = self.choose_variant(test)
        info = visitor_info or VisitorInfo()

        assignment = Assignment(
            test_id=test_id,
            visitor_id=visitor_id,
            variant=variant,
            assigned_at=datetime.utcnow(),
            converted=False,
            ip_address=info.ip_address,
            user_agent=info.user_agent,
            page=info.page
        )

        try:
            self.repository.create_assignment_and_count_visit(assignment)
        except DuplicateAssignmentError:
            # Another request assigned this visitor first; its row wins
            winner = self.repository.find_assignment(test_id, visitor_id)
            if winner is None:
                raise
            logger.info(
                "assignment_race_resolved",
                test_id=str(test_id),
                visitor_id=visitor_id,
                variant=winner.variant.value
            )
            return VariantAssignment(
                test_id=test_id,
                variant=winner.variant,
                is_new_assignment=False,
                content=test.content_for(winner.variant)
            )

        logger.info(
            "visitor_assigned",
            test_id=str(test_id),
            visitor_id=visitor_id,
            variant=variant.value
        )

        return VariantAssignment(
            test_id=test_id,
            variant=variant,
            is_new_assignment=True,
            content=test.content_for(variant)
        )

    def choose_variant(self, test: ABTest) -> Variant:
        """
        Pick a variant for a visitor not yet assigned to the test.

        ALTERNATING gives A to every even-numbered assignment (A-B-A-B),
        which keeps the arms balanced regardless of traffic bursts.
        """
        if test.assignment_type == AssignmentType.ALTERNATING:
            prior = self.repository.count_assignments(test.id)
            return Variant.A if prior % 2 == 0 else Variant.B

        if test.assignment_type == AssignmentType.FIFTY_FIFTY:
            return Variant.A if self.rng.random() < 0.5 else Variant.B

        if test.assignment_type == AssignmentType.CUSTOM_SPLIT:
            return Variant.A if self.rng.random() < test.custom_split_a / 100 else Variant.B

        return Variant.A

    def get_visitor_assignments(self, visitor_id: str):
        """All assignments of a visitor across tests, oldest first."""
        return self.repository.list_visitor_assignments(visitor_id)
