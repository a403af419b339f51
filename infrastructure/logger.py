"""
SPECGRAPH MUTATION LOGGER - The Corpus Flight Recorder

Every change the engine makes to the corpus is recorded as a MutationEvent,
so an operator can replay what a save, a synchronization pass or a
reparenting sequence actually touched.

Architecture:
- MutationLogger: Core logging interface
- EventBuffer: In-memory ring buffer for recent events
- FileLogger: Optional newline-delimited JSON journal (one file per day)

Usage:
    logger = MutationLogger()
    logger.log_document_written("/specs/100001-capability.md", backup=None)
    logger.log_row_upserted("CAP-100001", "Enablers", "ENB-654321")

    # Playback
    for event in logger.get_events_for_document("/specs/100001-capability.md"):
        print(f"{event.timestamp}: {event.mutation_type}")

Design:
- Additive: the journal is never consulted to make decisions, the corpus is
- Thread-safe: buffer and file handle are lock protected
- Diagnostic chatter goes to stdlib logging; this module records facts
"""
import msgspec
from typing import Optional, List, Callable
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from collections import deque
import threading
import logging
import io

logger = logging.getLogger(__name__)


# =============================================================================
# EVENT TYPES
# =============================================================================

class MutationType(str, Enum):
    """Types of corpus mutations."""
    DOCUMENT_WRITTEN = "DOCUMENT_WRITTEN"
    DOCUMENT_DELETED = "DOCUMENT_DELETED"
    DOCUMENT_MOVED = "DOCUMENT_MOVED"
    BACKUP_CREATED = "BACKUP_CREATED"
    ROW_UPSERTED = "ROW_UPSERTED"
    ROW_REMOVED = "ROW_REMOVED"
    EDGE_MIRRORED = "EDGE_MIRRORED"
    EDGE_RETRACTED = "EDGE_RETRACTED"
    ID_ALLOCATED = "ID_ALLOCATED"


class MutationEvent(msgspec.Struct, kw_only=True):
    """Individual corpus mutation."""
    timestamp: str
    sequence: int
    mutation_type: str                  # MutationType value
    path: Optional[str] = None          # Document path on disk
    target_path: Optional[str] = None   # Destination for moves, backup for writes
    document_id: Optional[str] = None   # Identifier of the patched document
    section: Optional[str] = None       # Table heading for row events
    row_key: Optional[str] = None       # Row key for row/edge events
    detail: Optional[str] = None


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LoggerConfig:
    """Configuration for the mutation logger."""
    enable_file_log: bool = False       # Enable the JSONL journal
    log_path: Optional[Path] = None     # Directory for journal files
    buffer_size: int = 10000            # In-memory buffer size

    def __post_init__(self):
        if self.log_path is None:
            self.log_path = Path("./workspace/logs")
        self.log_path = Path(self.log_path)


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent mutation events.

    Provides O(1) append and O(n) query for filtering.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque[MutationEvent] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: MutationEvent) -> None:
        """Add an event to the buffer."""
        with self._lock:
            self._buffer.append(event)

    def get_since(self, timestamp: str) -> List[MutationEvent]:
        """Get all events since a timestamp."""
        with self._lock:
            return [e for e in self._buffer if e.timestamp >= timestamp]

    def get_last(self, n: int) -> List[MutationEvent]:
        """Get the last n events."""
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if len(items) >= n else items

    def get_by_path(self, path: str) -> List[MutationEvent]:
        """Get all events that touched a path (as source or destination)."""
        with self._lock:
            return [e for e in self._buffer if e.path == path or e.target_path == path]

    def get_by_document(self, document_id: str) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.document_id == document_id]

    def get_by_type(self, mutation_type: str) -> List[MutationEvent]:
        """Get all events of a specific type."""
        with self._lock:
            return [e for e in self._buffer if e.mutation_type == mutation_type]

    def next_sequence(self) -> int:
        """Get next sequence number."""
        with self._lock:
            self._sequence += 1
            return self._sequence

    def clear(self) -> None:
        """Clear the buffer."""
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# FILE LOGGER
# =============================================================================

class FileLogger:
    """
    File-based journal.

    Writes events as newline-delimited JSON. Rotates daily.
    """

    def __init__(self, log_path: Path):
        self._log_path = log_path
        self._current_file: Optional[io.TextIOWrapper] = None
        self._current_date: Optional[str] = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()

        log_path.mkdir(parents=True, exist_ok=True)

    def write(self, event: MutationEvent) -> None:
        """Write an event to the journal."""
        with self._lock:
            self._ensure_file()
            try:
                line = self._encoder.encode(event).decode("utf-8") + "\n"
                if self._current_file:
                    self._current_file.write(line)
                    self._current_file.flush()
            except (OSError, msgspec.EncodeError) as e:
                logger.error("Mutation journal write failed: %s", e)

    def _ensure_file(self) -> None:
        """Ensure we have a valid file handle for today."""
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

        if self._current_date != today:
            if self._current_file:
                self._current_file.close()

            filepath = self._log_path / f"mutations_{today}.jsonl"
            self._current_file = open(filepath, "a", encoding="utf-8")
            self._current_date = today

    def close(self) -> None:
        """Close the file handle."""
        with self._lock:
            if self._current_file:
                self._current_file.close()
                self._current_file = None

    def read_log(self, date: str) -> List[MutationEvent]:
        """Read events from a specific date's journal."""
        filepath = self._log_path / f"mutations_{date}.jsonl"

        if not filepath.exists():
            return []

        events = []
        decoder = msgspec.json.Decoder(type=MutationEvent)

        with open(filepath, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(decoder.decode(line.encode()))
                except msgspec.DecodeError:
                    logger.warning("Skipping corrupt journal line in %s", filepath)

        return events


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

class MutationLogger:
    """
    Main logging interface for corpus mutations.

    Provides a unified API for logging events to:
    - In-memory buffer (always)
    - File-based journal (configurable)

    Thread-safe for concurrent logging.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()

        self._buffer = EventBuffer(self.config.buffer_size)
        self._file_logger: Optional[FileLogger] = None

        if self.config.enable_file_log and self.config.log_path:
            self._file_logger = FileLogger(self.config.log_path)

        self._subscribers: List[Callable[[MutationEvent], None]] = []

    def _now(self) -> str:
        """Get current UTC timestamp."""
        return datetime.now(timezone.utc).isoformat()

    def _record(self, mutation_type: MutationType, **fields) -> MutationEvent:
        event = MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=mutation_type.value,
            **fields,
        )
        self._emit(event)
        return event

    def _emit(self, event: MutationEvent) -> None:
        """Emit an event to all destinations."""
        self._buffer.append(event)

        if self._file_logger:
            self._file_logger.write(event)

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception("Mutation subscriber failed")

    # =========================================================================
    # LOGGING METHODS
    # =========================================================================

    def log_document_written(self, path: str, backup: Optional[str] = None) -> MutationEvent:
        """Log a document write (backup is the copy taken first, if any)."""
        return self._record(MutationType.DOCUMENT_WRITTEN, path=path, target_path=backup)

    def log_backup_created(self, path: str, backup: str) -> MutationEvent:
        return self._record(MutationType.BACKUP_CREATED, path=path, target_path=backup)

    def log_document_deleted(self, path: str, backup: str) -> MutationEvent:
        return self._record(MutationType.DOCUMENT_DELETED, path=path, target_path=backup)

    def log_document_moved(self, source: str, destination: str) -> MutationEvent:
        return self._record(MutationType.DOCUMENT_MOVED, path=source, target_path=destination)

    def log_row_upserted(self, document_id: str, section: str, row_key: str) -> MutationEvent:
        return self._record(
            MutationType.ROW_UPSERTED, document_id=document_id, section=section, row_key=row_key
        )

    def log_row_removed(self, document_id: str, section: str, row_key: str) -> MutationEvent:
        return self._record(
            MutationType.ROW_REMOVED, document_id=document_id, section=section, row_key=row_key
        )

    def log_edge_mirrored(self, document_id: str, section: str, peer_id: str) -> MutationEvent:
        """Log a reverse dependency row added to a peer capability."""
        return self._record(
            MutationType.EDGE_MIRRORED, document_id=document_id, section=section, row_key=peer_id
        )

    def log_edge_retracted(self, document_id: str, section: str, peer_id: str) -> MutationEvent:
        return self._record(
            MutationType.EDGE_RETRACTED, document_id=document_id, section=section, row_key=peer_id
        )

    def log_id_allocated(self, identifier: str, strategy: str) -> MutationEvent:
        return self._record(MutationType.ID_ALLOCATED, document_id=identifier, detail=strategy)

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        """Get the n most recent events."""
        return self._buffer.get_last(n)

    def get_events_since(self, timestamp: str) -> List[MutationEvent]:
        return self._buffer.get_since(timestamp)

    def get_events_for_document(self, path: str) -> List[MutationEvent]:
        """Get all events that touched a document path."""
        return self._buffer.get_by_path(path)

    def get_events_for_id(self, document_id: str) -> List[MutationEvent]:
        return self._buffer.get_by_document(document_id)

    def get_events_by_type(self, mutation_type: str) -> List[MutationEvent]:
        return self._buffer.get_by_type(mutation_type)

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        """Subscribe to mutation events."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[MutationEvent], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        """Close all resources."""
        if self._file_logger:
            self._file_logger.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_global_logger: Optional[MutationLogger] = None


def get_logger() -> MutationLogger:
    """Get or create the global logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = MutationLogger()
    return _global_logger


def configure_logger(config: LoggerConfig) -> MutationLogger:
    """Configure and return a new global logger."""
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = MutationLogger(config)
    return _global_logger


def reset_logger() -> None:
    """Drop the global logger (tests)."""
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = None
