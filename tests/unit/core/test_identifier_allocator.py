"""
Unit tests for core.identifiers - the two-tier identifier allocator.
"""
import random
import threading

import pytest

from core.errors import CollisionExhaustedError
from core.identifiers import MAX_ATTEMPTS, SEQUENTIAL_START, IdentifierAllocator
from core.ontology import IdPrefix, is_identifier
from infrastructure.logger import MutationType

from conftest import build_capability, write_text


class FixedClock:
    """Clock that always returns the same instant."""

    def __init__(self, seconds: float):
        self.seconds = seconds

    def __call__(self) -> float:
        return self.seconds


class AllTakenExcept:
    """Container claiming every number is taken except the given ones."""

    def __init__(self, *free):
        self.free = set(free)

    def __contains__(self, number) -> bool:
        return number not in self.free


@pytest.fixture
def allocator(repository, mutation_logger):
    return IdentifierAllocator(
        repository, rng=random.Random(42), mutation_logger=mutation_logger
    )


class TestAllocate:
    """Tests for IdentifierAllocator.allocate."""

    def test_format(self, allocator):
        identifier = allocator.allocate("CAP")
        assert is_identifier(identifier, "CAP")

    def test_accepts_enum_and_lowercase(self, allocator):
        assert allocator.allocate(IdPrefix.ENB).startswith("ENB-")
        assert allocator.allocate("nfr").startswith("NFR-")

    def test_unknown_prefix(self, allocator):
        with pytest.raises(ValueError):
            allocator.allocate("XYZ")

    def test_time_salted_candidate(self, repository, mutation_logger):
        # 1_700_000_012.5 s -> ms mod 10000 = 2500
        rng = random.Random(0)
        expected_salt = random.Random(0).randrange(100)
        allocator = IdentifierAllocator(
            repository, clock=FixedClock(1_700_000_012.5), rng=rng, mutation_logger=mutation_logger
        )
        assert allocator.allocate("CAP") == f"CAP-{2500 * 100 + expected_salt:06d}"

    def test_avoids_ids_in_corpus(self, roots, repository, mutation_logger):
        taken = [f"CAP-{2500 * 100 + salt:06d}" for salt in range(100)]
        write_text(
            roots[1] / "taken-capability.md",
            build_capability("CAP-100001", "Taken", upstream=[(cid, "x") for cid in taken]),
        )
        allocator = IdentifierAllocator(
            repository, clock=FixedClock(1_700_000_012.5), mutation_logger=mutation_logger
        )
        identifier = allocator.allocate("CAP")
        assert identifier not in taken
        assert identifier == f"CAP-{SEQUENTIAL_START:06d}"

    def test_sequential_skips_taken(self, roots, repository, mutation_logger):
        text = build_capability("CAP-100000", "A", upstream=[("CAP-100001", "x"), ("CAP-100002", "y")])
        text += "\n" + " ".join(f"CAP-{2500 * 100 + s:06d}" for s in range(100)) + "\n"
        write_text(roots[0] / "a-capability.md", text)
        allocator = IdentifierAllocator(
            repository, clock=FixedClock(1_700_000_012.5), mutation_logger=mutation_logger
        )
        assert allocator.allocate("CAP") == "CAP-100003"

    def test_never_reissues_within_process(self, repository, mutation_logger):
        allocator = IdentifierAllocator(
            repository, clock=FixedClock(1_700_000_012.5), rng=random.Random(7),
            mutation_logger=mutation_logger,
        )
        issued = {allocator.allocate("ENB") for _ in range(200)}
        assert len(issued) == 200

    def test_prefixes_are_independent(self, repository, mutation_logger):
        class ConstantRandom(random.Random):
            def randrange(self, *args, **kwargs):
                return 5

        allocator = IdentifierAllocator(
            repository, clock=FixedClock(1_700_000_012.5), rng=ConstantRandom(),
            mutation_logger=mutation_logger,
        )
        assert allocator.allocate("CAP") == "CAP-250005"
        assert allocator.allocate("ENB") == "ENB-250005"
        # Same candidate again: retried, then found sequentially
        assert allocator.allocate("CAP") == "CAP-100000"

    def test_concurrent_allocations_unique(self, repository, mutation_logger):
        allocator = IdentifierAllocator(repository, mutation_logger=mutation_logger)
        results = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                identifier = allocator.allocate("FR")
                with lock:
                    results.append(identifier)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 100
        assert len(set(results)) == 100

    def test_allocation_is_journaled(self, allocator, mutation_logger):
        identifier = allocator.allocate("CAP")
        events = mutation_logger.get_events_by_type(MutationType.ID_ALLOCATED.value)
        assert [e.document_id for e in events] == [identifier]

    def test_missing_root_is_skipped(self, temp_dir, mutation_logger):
        from core.repository import DocumentRepository
        repository = DocumentRepository([temp_dir / "missing"], mutation_logger=mutation_logger)
        allocator = IdentifierAllocator(repository, mutation_logger=mutation_logger)
        assert allocator.allocate("CAP").startswith("CAP-")


class TestChoose:
    """Tests for the candidate/fallback strategy on synthetic namespaces."""

    @pytest.fixture
    def allocator(self, repository, mutation_logger):
        # Candidates are confined to 250000..250099
        return IdentifierAllocator(
            repository, clock=FixedClock(1_700_000_012.5), rng=random.Random(11),
            mutation_logger=mutation_logger,
        )

    def test_time_salted_first(self, allocator):
        number, strategy = allocator._choose("CAP", set())
        assert strategy == "time-salted"
        assert 0 <= number < 1_000_000

    def test_single_free_number_is_found(self, allocator):
        # Every id but CAP-123455 taken (one million minus one ids).
        number, strategy = allocator._choose("CAP", AllTakenExcept(123455))
        assert number == 123455
        assert strategy == "sequential"

    def test_sequential_wraps_below_start(self, allocator):
        number, strategy = allocator._choose("CAP", AllTakenExcept(42))
        assert (number, strategy) == (42, "sequential")

    def test_full_namespace_raises(self, allocator):
        with pytest.raises(CollisionExhaustedError) as exc:
            allocator._choose("ENB", AllTakenExcept())
        assert exc.value.prefix == "ENB"

    def test_bounded_attempts(self, repository, mutation_logger):
        calls = []

        class CountingRandom(random.Random):
            def randrange(self, *args, **kwargs):
                calls.append(args)
                return super().randrange(*args, **kwargs)

        allocator = IdentifierAllocator(
            repository, clock=FixedClock(1_700_000_012.5), rng=CountingRandom(3),
            mutation_logger=mutation_logger,
        )
        allocator._choose("CAP", AllTakenExcept(42))
        assert len(calls) == MAX_ATTEMPTS
