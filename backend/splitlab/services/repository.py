"""Persistence port for the experimentation engine.

The engines only talk to an ExperimentRepository. SqlAlchemyRepository is
the production implementation; tests can swap in an in-memory one.

Counters and the converted flag are changed with single UPDATE statements
(`col = col + 1`, `WHERE converted = false`) so concurrent requests never
lose writes. A row write and the counter it feeds commit together.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol
from uuid import UUID

from sqlalchemy import Float, case, cast, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from splitlab.models.ab_test import ABTest, ABTestStatus, Variant
from splitlab.models.assignment import Assignment

COUNTER_METRICS = ("visits", "conversions")


class ABTestNotFoundError(Exception):
    """Raised when a test id does not exist."""
    pass


class DuplicateAssignmentError(Exception):
    """Raised when (test_id, visitor_id) already has an assignment."""
    pass


class ExperimentRepository(Protocol):
    """Storage operations the engine depends on."""

    def get_test(self, test_id: UUID) -> Optional[ABTest]: ...

    def list_tests(self, status: Optional[ABTestStatus] = None) -> List[ABTest]: ...

    def create_test(self, test: ABTest) -> ABTest: ...

    def update_test(
        self,
        test_id: UUID,
        values: Dict[str, Any],
        expected_statuses: Optional[Iterable[ABTestStatus]] = None,
    ) -> bool: ...

    def find_assignment(self, test_id: UUID, visitor_id: str) -> Optional[Assignment]: ...

    def count_assignments(self, test_id: UUID) -> int: ...

    def create_assignment_and_count_visit(self, assignment: Assignment) -> Assignment: ...

    def mark_converted_and_count(
        self,
        test_id: UUID,
        visitor_id: str,
        variant: Variant,
        value: Optional[float],
        converted_at: datetime,
    ) -> bool: ...

    def list_visitor_assignments(self, visitor_id: str) -> List[Assignment]: ...


def counter_column(variant: Variant, metric: str) -> str:
    """Name of the ABTest counter column for a variant and metric."""
    if metric not in COUNTER_METRICS:
        raise ValueError(f"Metric must be one of {COUNTER_METRICS}, got {metric!r}")
    return f"{metric}_{Variant(variant).value.lower()}"


class SqlAlchemyRepository:
    """ExperimentRepository backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def get_test(self, test_id: UUID) -> Optional[ABTest]:
        return self.db.query(ABTest).filter(ABTest.id == test_id).first()

    def list_tests(self, status: Optional[ABTestStatus] = None) -> List[ABTest]:
        """All tests, newest first, optionally filtered by status."""
        query = self.db.query(ABTest)
        if status is not None:
            query = query.filter(ABTest.status == status)
        return query.order_by(ABTest.created_at.desc()).all()

    def create_test(self, test: ABTest) -> ABTest:
        self.db.add(test)
        self.db.commit()
        self.db.refresh(test)
        return test

    def update_test(
        self,
        test_id: UUID,
        values: Dict[str, Any],
        expected_statuses: Optional[Iterable[ABTestStatus]] = None,
    ) -> bool:
        """
        Update fields of a test.

        Args:
            test_id: Test to update
            values: Column name to new value
            expected_statuses: If given, only update while the test is in one
                of these statuses (compare-and-set on status)

        Returns:
            True if a row was updated
        """
        stmt = update(ABTest).where(ABTest.id == test_id)
        if expected_statuses is not None:
            stmt = stmt.where(ABTest.status.in_(list(expected_statuses)))

        result = self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def _count(self, test_id: UUID, variant: Variant, metric: str) -> None:
        """
        Add one to a visit or conversion counter, without committing.

        The variant's conversion rate is recomputed in the same statement
        from the pre-update column values.
        """
        column = counter_column(variant, metric)
        suffix = Variant(variant).value.lower()
        visits = getattr(ABTest, f"visits_{suffix}")
        conversions = getattr(ABTest, f"conversions_{suffix}")

        if metric == "visits":
            new_visits, new_conversions = visits + 1, conversions
            values = {column: new_visits}
        else:
            new_visits, new_conversions = visits, conversions + 1
            values = {column: new_conversions}

        values[f"conversion_rate_{suffix}"] = case(
            (new_visits > 0, cast(new_conversions, Float) / new_visits),
            else_=0.0,
        )

        result = self.db.execute(
            update(ABTest)
            .where(ABTest.id == test_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ABTestNotFoundError(f"A/B test {test_id} not found")

    def find_assignment(self, test_id: UUID, visitor_id: str) -> Optional[Assignment]:
        return self.db.query(Assignment).filter(
            Assignment.test_id == test_id,
            Assignment.visitor_id == visitor_id
        ).first()

    def count_assignments(self, test_id: UUID) -> int:
        return self.db.query(func.count(Assignment.id)).filter(
            Assignment.test_id == test_id
        ).scalar() or 0

    def create_assignment_and_count_visit(self, assignment: Assignment) -> Assignment:
        """
        Insert a new assignment and count the visit in one transaction.

        Raises:
            DuplicateAssignmentError: If the visitor was assigned concurrently
                (unique constraint on test_id, visitor_id). Nothing is written.
        """
        self.db.add(assignment)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateAssignmentError(
                f"Visitor {assignment.visitor_id} already assigned to test {assignment.test_id}"
            ) from e

        try:
            self._count(assignment.test_id, assignment.variant, "visits")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(assignment)
        return assignment

    def mark_converted_and_count(
        self,
        test_id: UUID,
        visitor_id: str,
        variant: Variant,
        value: Optional[float],
        converted_at: datetime,
    ) -> bool:
        """
        Flip an assignment to converted and count the conversion in one
        transaction.

        Returns:
            True only for the call that performed the transition
        """
        try:
            result = self.db.execute(
                update(Assignment)
                .where(
                    Assignment.test_id == test_id,
                    Assignment.visitor_id == visitor_id,
                    Assignment.converted == False  # noqa: E712
                )
                .values(converted=True, converted_at=converted_at, conversion_value=value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                return False

            self._count(test_id, variant, "conversions")
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return True

    def list_visitor_assignments(self, visitor_id: str) -> List[Assignment]:
        return self.db.query(Assignment).filter(
            Assignment.visitor_id == visitor_id
        ).order_by(Assignment.assigned_at.asc()).all()
