"""Tests for variant assignment."""
import random
import uuid
from concurrent.futures import ThreadPoolExecutor

from fakes import InMemoryRepository
from splitlab.models.ab_test import AssignmentType, Variant
from splitlab.models.assignment import Assignment
from splitlab.services.assignment import AssignmentEngine, VisitorInfo
from splitlab.services.lifecycle import TestLifecycleManager


def test_assignment_is_sticky(repository, make_test):
    """Test that a visitor keeps their first variant."""
    test = make_test(repository, assignment_type=AssignmentType.FIFTY_FIFTY)
    engine = AssignmentEngine(repository, rng=random.Random(11))

    first = engine.assign(test.id, "visitor_123")
    repeats = [engine.assign(test.id, "visitor_123") for _ in range(4)]

    assert first.is_new_assignment
    assert all(r.variant == first.variant for r in repeats), "Variant assignment should be sticky"
    assert not any(r.is_new_assignment for r in repeats)

    test = repository.get_test(test.id)
    assert test.visits_a + test.visits_b == 1, "Only the first exposure counts as a visit"


def test_alternating_assignment_is_balanced(repository, make_test):
    """Test that ALTERNATING gives A to even and B to odd assignments."""
    test = make_test(repository, assignment_type=AssignmentType.ALTERNATING)
    engine = AssignmentEngine(repository)

    variants = [engine.assign(test.id, f"visitor_{i}").variant for i in range(20)]

    assert variants == [Variant.A, Variant.B] * 10
    test = repository.get_test(test.id)
    assert test.visits_a == 10
    assert test.visits_b == 10


def test_fifty_fifty_distribution(memory_repository, make_test):
    """Test that FIFTY_FIFTY is roughly even."""
    test = make_test(memory_repository, assignment_type=AssignmentType.FIFTY_FIFTY)
    engine = AssignmentEngine(memory_repository, rng=random.Random(2024))

    variants = [engine.assign(test.id, f"user_{i}").variant for i in range(1000)]

    a_pct = variants.count(Variant.A) / 1000 * 100
    assert 40 <= a_pct <= 60, f"A should be ~50%, got {a_pct}%"


def test_custom_split_extremes(memory_repository, make_test):
    """Test that a 100/0 split never assigns B and 0/100 never assigns A."""
    all_a = make_test(
        memory_repository,
        assignment_type=AssignmentType.CUSTOM_SPLIT,
        custom_split_a=100,
        custom_split_b=0
    )
    all_b = make_test(
        memory_repository,
        assignment_type=AssignmentType.CUSTOM_SPLIT,
        custom_split_a=0,
        custom_split_b=100
    )
    engine = AssignmentEngine(memory_repository, rng=random.Random(5))

    assert {engine.assign(all_a.id, f"v{i}").variant for i in range(200)} == {Variant.A}
    assert {engine.assign(all_b.id, f"v{i}").variant for i in range(200)} == {Variant.B}


def test_custom_split_distribution(memory_repository, make_test):
    """Test that a 80/20 split is respected."""
    test = make_test(
        memory_repository,
        assignment_type=AssignmentType.CUSTOM_SPLIT,
        custom_split_a=80,
        custom_split_b=20
    )
    engine = AssignmentEngine(memory_repository, rng=random.Random(9))

    variants = [engine.assign(test.id, f"user_{i}").variant for i in range(2000)]

    a_pct = variants.count(Variant.A) / 2000 * 100
    assert 76 <= a_pct <= 84, f"A should be ~80%, got {a_pct}%"


def test_ineligible_tests_return_none(repository, make_test):
    """Test that draft, paused and missing tests do not assign."""
    draft = make_test(repository, start=False)
    paused = make_test(repository)
    TestLifecycleManager(repository).pause_test(paused.id)
    engine = AssignmentEngine(repository)

    assert engine.assign(draft.id, "visitor_1") is None
    assert engine.assign(paused.id, "visitor_1") is None
    assert engine.assign(uuid.uuid4(), "visitor_1") is None

    assert repository.find_assignment(draft.id, "visitor_1") is None


def test_assignment_returns_variant_content(repository, make_test):
    """Test that the content of the assigned variant is returned."""
    test = make_test(repository, assignment_type=AssignmentType.ALTERNATING)
    engine = AssignmentEngine(repository)

    first = engine.assign(test.id, "visitor_1")
    second = engine.assign(test.id, "visitor_2")

    assert first.content == {"headline": "A"}
    assert second.content == {"headline": "B"}


def test_visitor_info_is_stored(repository, make_test):
    """Test that client metadata is persisted on a new assignment."""
    test = make_test(repository)
    engine = AssignmentEngine(repository)

    engine.assign(
        test.id,
        "visitor_1",
        VisitorInfo(ip_address="10.0.0.1", user_agent="pytest", page="/quote")
    )

    stored = repository.find_assignment(test.id, "visitor_1")
    assert stored.ip_address == "10.0.0.1"
    assert stored.user_agent == "pytest"
    assert stored.page == "/quote"
    assert stored.converted is False


def test_strategy_change_keeps_existing_variant(repository, make_test):
    """Test that changing the split does not move assigned visitors."""
    test = make_test(repository, assignment_type=AssignmentType.ALTERNATING)
    engine = AssignmentEngine(repository, rng=random.Random(1))

    original = engine.assign(test.id, "visitor_1")
    assert original.variant == Variant.A

    repository.update_test(test.id, {
        "assignment_type": AssignmentType.CUSTOM_SPLIT,
        "custom_split_a": 0,
        "custom_split_b": 100,
    })

    assert engine.assign(test.id, "visitor_1").variant == Variant.A
    assert engine.assign(test.id, "visitor_2").variant == Variant.B


def test_visitor_assignments_across_tests(repository, make_test):
    """Test listing a visitor's assignments."""
    first = make_test(repository, name="First")
    second = make_test(repository, name="Second")
    engine = AssignmentEngine(repository)

    engine.assign(first.id, "visitor_1")
    engine.assign(second.id, "visitor_1")
    engine.assign(second.id, "visitor_2")

    assignments = engine.get_visitor_assignments("visitor_1")
    assert {a.test_id for a in assignments} == {first.id, second.id}
    assert engine.get_visitor_assignments("nobody") == []


class StaleReadRepository(InMemoryRepository):
    """Reports no assignment on the first lookup, as a concurrent request would."""

    def __init__(self):
        super().__init__()
        self.stale_reads = 1

    def find_assignment(self, test_id, visitor_id):
        if self.stale_reads:
            self.stale_reads -= 1
            return None
        return super().find_assignment(test_id, visitor_id)


def test_duplicate_assignment_race_returns_winner(make_test):
    """Test that losing the insert race returns the stored variant."""
    repository = StaleReadRepository()
    test = make_test(repository, assignment_type=AssignmentType.ALTERNATING)

    # The other request already stored B for this visitor
    repository.assignments[(test.id, "visitor_1")] = Assignment(
        id=uuid.uuid4(),
        test_id=test.id,
        visitor_id="visitor_1",
        variant=Variant.B,
        converted=False
    )

    result = AssignmentEngine(repository).assign(test.id, "visitor_1")

    assert result.variant == Variant.B
    assert not result.is_new_assignment
    assert result.content == {"headline": "B"}
    assert repository.get_test(test.id).visits_a == 0, "Losing request must not count a visit"


def test_concurrent_assignment_of_same_visitor(memory_repository, make_test):
    """Test that parallel first requests agree and count one visit."""
    test = make_test(memory_repository, assignment_type=AssignmentType.FIFTY_FIFTY)
    engine = AssignmentEngine(memory_repository, rng=random.Random(3))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: engine.assign(test.id, "visitor_1"), range(32)))

    assert len({r.variant for r in results}) == 1
    assert sum(r.is_new_assignment for r in results) == 1

    test = memory_repository.get_test(test.id)
    assert test.visits_a + test.visits_b == 1
