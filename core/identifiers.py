"""
SPECGRAPH IDENTIFIER ALLOCATOR - Collision-Free Node IDs

Issues `{PREFIX}-{6 digits}` identifiers that are unique per prefix across
every document under every configured root.

Two-tier strategy:
1. TIME-SALTED: (ms mod 10,000) * 100 + a random 2-digit salt. Roughly
   sortable by creation time and almost never colliding. Up to 100 attempts.
2. SEQUENTIAL: 100000, 100001, ... 999999, then 000000 ... 099999. Guarantees
   termination however dense the namespace is.

"Taken" means: any `{PREFIX}-NNNNNN` occurrence anywhere in the corpus text
(tables and prose included), plus every id this allocator already issued in
the current process, even if the document was never written.
"""
from typing import Callable, Container, Dict, Optional, Set, Tuple, Union
import logging
import random
import threading
import time

from core.errors import CollisionExhaustedError
from core.ontology import ID_DIGITS, IdPrefix, id_pattern
from infrastructure.logger import MutationLogger, get_logger as get_mutation_logger

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 100
SEQUENTIAL_START = 100000
NAMESPACE_SIZE = 10 ** ID_DIGITS


class IdentifierAllocator:
    """
    Usage:
        allocator = IdentifierAllocator(repository)
        allocator.allocate("CAP")        # 'CAP-734512'
        allocator.allocate(IdPrefix.ENB) # 'ENB-734577'

    Allocations are serialized by an internal lock; two threads sharing an
    allocator never receive the same identifier.
    """

    def __init__(
        self,
        repository,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None,
        mutation_logger: Optional[MutationLogger] = None,
    ):
        """
        Args:
            repository: DocumentRepository whose corpus is scanned
            clock: Seconds since the epoch (default: time.time)
            rng: Source of the salt (default: a private random.Random)
        """
        self._repository = repository
        self._clock = clock or time.time
        self._rng = rng or random.Random()
        self._mutations = mutation_logger
        self._issued: Dict[str, Set[int]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize_prefix(prefix: Union[str, IdPrefix]) -> str:
        """'cap' -> 'CAP'. Raises ValueError for unknown prefixes."""
        value = prefix.value if isinstance(prefix, IdPrefix) else str(prefix).strip().upper()
        try:
            return IdPrefix(value).value
        except ValueError:
            allowed = ", ".join(p.value for p in IdPrefix)
            raise ValueError(f"Unknown identifier prefix {prefix!r} (expected one of {allowed})")

    def allocate(self, prefix: Union[str, IdPrefix]) -> str:
        """
        Allocate a fresh identifier.

        Raises:
            ValueError: Unknown prefix.
            CollisionExhaustedError: Every number of the namespace is taken.
            OSError: The corpus could not be scanned.
        """
        prefix = self.normalize_prefix(prefix)
        with self._lock:
            issued = self._issued.setdefault(prefix, set())
            taken = self._scan_existing(prefix) | issued
            number, strategy = self._choose(prefix, taken)
            issued.add(number)

        identifier = f"{prefix}-{number:0{ID_DIGITS}d}"
        logger.info("Allocated %s (%s)", identifier, strategy)
        (self._mutations or get_mutation_logger()).log_id_allocated(identifier, strategy)
        return identifier

    def _scan_existing(self, prefix: str) -> Set[int]:
        pattern = id_pattern(prefix)
        found: Set[int] = set()
        for _, text in self._repository.iter_texts():
            found.update(int(match) for match in pattern.findall(text))
        logger.debug("Found %d existing %s identifier(s)", len(found), prefix)
        return found

    def _candidate(self) -> int:
        millis = int(self._clock() * 1000)
        return ((millis % 10000) * 100 + self._rng.randrange(100)) % NAMESPACE_SIZE

    def _choose(self, prefix: str, taken: Container[int]) -> Tuple[int, str]:
        """Pick a number not in `taken`; returns (number, strategy name)."""
        for _ in range(MAX_ATTEMPTS):
            candidate = self._candidate()
            if candidate not in taken:
                return candidate, "time-salted"

        logger.warning(
            "%s: %d time-salted candidates collided, falling back to sequential search",
            prefix, MAX_ATTEMPTS,
        )
        for offset in range(NAMESPACE_SIZE):
            candidate = (SEQUENTIAL_START + offset) % NAMESPACE_SIZE
            if candidate not in taken:
                return candidate, "sequential"

        raise CollisionExhaustedError(prefix)
