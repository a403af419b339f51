"""
SPECGRAPH DOCUMENT REPOSITORY - The Corpus on Disk

Maps logical (root-relative) paths onto files under the configured storage
roots and performs every filesystem mutation the engine makes.

Guarantees:
- PATH SAFETY: Absolute paths, `..` escapes, symlink escapes and excluded
  directories (node_modules, site-packages, ...) raise PathTraversalError
  before the filesystem is touched.
- DOCUMENTS ONLY: Reading, writing, deleting and moving are restricted to the
  document extension (UnsupportedFileTypeError otherwise).
- BACKUP BEFORE WRITE: An existing file is copied into a sibling `backup/`
  directory before it is overwritten or deleted. Backups are never pruned.
- SERIALIZED PER PATH: Writes hold the path's lock; edit() holds it across
  the whole read-patch-write.

The corpus is its own index. Nothing here caches scan results: every lookup
re-reads the roots, so no write can leave a stale view behind.
"""
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union
from pathlib import Path, PureWindowsPath
import logging
import os
import shutil
import time

from core.errors import (
    DestinationExistsError,
    DocumentNotFoundError,
    ParseFailureError,
    PathTraversalError,
    UnsupportedFileTypeError,
)
from core.metadata import extract_field, extract_title
from core.ontology import (
    DOCUMENT_EXTENSION,
    FIELD_CAPABILITY_ID,
    FIELD_ID,
    FIELD_NAME,
    FIELD_TYPE,
    DocumentKind,
    IdPrefix,
    is_identifier,
    kind_for_filename,
)
from core.schemas import DocumentRef
from infrastructure.logger import MutationLogger, get_logger as get_mutation_logger
from infrastructure.path_locks import PathLockRegistry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_EXCLUDED_DIRS = ("node_modules", "site-packages", ".git", "__pycache__", ".venv", "venv")


def _is_within(path: Path, base: Path) -> bool:
    return path == base or base in path.parents


class DocumentRepository:
    """
    Filesystem access for the document corpus.

    Usage:
        repo = DocumentRepository(["./specs", "./more-specs"])

        path = repo.resolve("100001-capability.md")     # under the default root
        text = repo.read(path)
        repo.write(path, text.replace("Draft", "Ready"))  # backup taken first

        for ref in repo.capabilities():
            print(ref.id, ref.path)

    Thread Safety:
        Writes are serialized per path. Scans take no locks and may observe a
        document mid-way through another caller's save sequence.
    """

    def __init__(
        self,
        roots: Sequence[PathLike],
        document_extension: str = DOCUMENT_EXTENSION,
        backup_dir: str = "backup",
        excluded_dirs: Sequence[str] = DEFAULT_EXCLUDED_DIRS,
        mutation_logger: Optional[MutationLogger] = None,
        locks: Optional[PathLockRegistry] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            roots: Storage root directories. The first is the default root for
                   new documents. Missing directories are tolerated (skipped
                   by scans, created on first write).
            document_extension: The only extension documents may carry.
            backup_dir: Name of the sibling directory receiving backups.
            excluded_dirs: Directory names no path may resolve into.
        """
        if not roots:
            raise ValueError("DocumentRepository needs at least one storage root")
        self._roots: List[Path] = [Path(r).expanduser().resolve() for r in roots]
        self._extension = document_extension
        self._backup_dir = backup_dir
        self._excluded = frozenset(excluded_dirs)
        self._mutations = mutation_logger
        self._locks = locks or PathLockRegistry()
        self._clock = clock or time.time

    @classmethod
    def from_config(cls, config, mutation_logger: Optional[MutationLogger] = None) -> "DocumentRepository":
        """Build from an EngineConfig (infrastructure.config)."""
        return cls(
            roots=config.project_roots(),
            document_extension=config.storage.document_extension,
            backup_dir=config.storage.backup_dir,
            excluded_dirs=config.storage.excluded_dirs,
            mutation_logger=mutation_logger,
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def roots(self) -> List[Path]:
        return list(self._roots)

    @property
    def default_root(self) -> Path:
        return self._roots[0]

    @property
    def document_extension(self) -> str:
        return self._extension

    @property
    def locks(self) -> PathLockRegistry:
        return self._locks

    @property
    def mutations(self) -> MutationLogger:
        return self._mutations or get_mutation_logger()

    # =========================================================================
    # PATH RESOLUTION
    # =========================================================================

    def resolve(self, logical_path: PathLike, root: Optional[PathLike] = None) -> Path:
        """
        Resolve a root-relative path to its location on disk.

        Args:
            logical_path: Relative path such as "100001-capability.md"
            root: Root to resolve against (default: the first configured root)

        Returns:
            Normalized absolute path inside `root`

        Raises:
            PathTraversalError: Absolute input, escape from root (lexically or
                via symlink), or a path inside an excluded directory.
        """
        base = Path(root).expanduser().resolve() if root is not None else self.default_root
        raw = str(logical_path).replace("\\", "/").strip()

        if not raw:
            raise PathTraversalError(raw, str(base), "empty path")
        if os.path.isabs(raw) or PureWindowsPath(raw).drive:
            raise PathTraversalError(raw, str(base), "absolute paths are not allowed")

        candidate = Path(os.path.normpath(os.path.join(str(base), raw)))
        if not _is_within(candidate, base):
            raise PathTraversalError(raw, str(base))
        if not _is_within(candidate.resolve(), base):
            raise PathTraversalError(raw, str(base), "symbolic link escapes root")

        excluded = self._excluded.intersection(candidate.relative_to(base).parts)
        if excluded:
            raise PathTraversalError(raw, str(base), f"excluded directory {sorted(excluded)[0]!r}")

        return candidate

    def root_for(self, path: PathLike) -> Optional[Path]:
        """The configured root physically containing `path` (most specific wins)."""
        resolved = Path(path).resolve()
        matches = [root for root in self._roots if _is_within(resolved, root)]
        if not matches:
            return None
        return max(matches, key=lambda r: len(r.parts))

    def logical_path(self, path: PathLike) -> str:
        """Root-relative POSIX path of a file inside a configured root."""
        root = self._require_inside_roots(path)
        return Path(path).resolve().relative_to(root).as_posix()

    def locate(self, logical_path: PathLike) -> Optional[Path]:
        """First root holding `logical_path`, resolved; None if no root has it."""
        for root in self._roots:
            candidate = self.resolve(logical_path, root)
            if candidate.is_file():
                return candidate
        return None

    def resolve_for_write(self, logical_path: PathLike) -> Path:
        """Existing location of `logical_path`, or its place under the default root."""
        return self.locate(logical_path) or self.resolve(logical_path)

    def _require_document(self, path: Path) -> None:
        if path.suffix != self._extension:
            raise UnsupportedFileTypeError(str(path), self._extension)

    def _require_inside_roots(self, path: PathLike) -> Path:
        root = self.root_for(path)
        if root is None:
            raise PathTraversalError(str(path), reason="outside every configured root")
        relative = Path(path).resolve().relative_to(root).parts
        if self._excluded.intersection(relative):
            raise PathTraversalError(str(path), str(root), "excluded directory")
        return root

    # =========================================================================
    # READ / WRITE
    # =========================================================================

    def exists(self, path: PathLike) -> bool:
        return Path(path).is_file()

    def read(self, path: PathLike) -> str:
        """
        Read a document exactly as stored (line endings untouched).

        Raises:
            UnsupportedFileTypeError, PathTraversalError, DocumentNotFoundError
            ParseFailureError: The file is not valid UTF-8
        """
        path = Path(path)
        self._require_document(path)
        self._require_inside_roots(path)
        if not path.is_file():
            raise DocumentNotFoundError(str(path))
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except UnicodeDecodeError as e:
            raise ParseFailureError(f"{path} is not valid UTF-8: {e.reason} at byte {e.start}") from e

    def write(self, path: PathLike, text: str) -> Optional[Path]:
        """
        Write a document, backing up the previous version first.

        The backup is complete before the overwrite begins. The new text goes
        to a sibling `.tmp` file that replaces the document in one step, so
        concurrent scans see either version, never a truncated one. Parent
        directories are created as needed.

        Returns:
            Path of the backup copy, or None for a new file.
        """
        path = Path(path)
        self._require_document(path)
        self._require_inside_roots(path)

        with self._locks.hold(path):
            backup = self._backup(path, "backup") if path.exists() else None
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            with open(tmp, "w", encoding="utf-8", newline="") as f:
                f.write(text)
            os.replace(tmp, path)

        logger.info("Wrote %s%s", path, f" (backup {backup.name})" if backup else "")
        self.mutations.log_document_written(str(path), str(backup) if backup else None)
        return backup

    def edit(self, path: PathLike, transform: Callable[[str], str]) -> bool:
        """
        Read-patch-write under the path's lock.

        `transform` receives the current text and returns the new text. When
        it returns the text unchanged nothing is written and no backup is
        taken. Exceptions raised by `transform` propagate with the file intact.

        Returns:
            True if the document was rewritten.
        """
        path = Path(path)
        with self._locks.hold(path):
            original = self.read(path)
            updated = transform(original)
            if updated == original:
                return False
            self.write(path, updated)
            return True

    def delete(self, path: PathLike) -> Path:
        """
        Delete a document after copying it to `backup/{name}.deleted.{ms}`.

        Returns:
            Path of the backup copy.
        """
        path = Path(path)
        self._require_document(path)
        self._require_inside_roots(path)

        with self._locks.hold(path):
            if not path.is_file():
                raise DocumentNotFoundError(str(path))
            backup = self._backup(path, "deleted")
            path.unlink()

        logger.info("Deleted %s (backup %s)", path, backup.name)
        self.mutations.log_document_deleted(str(path), str(backup))
        return backup

    def move(self, source: PathLike, destination: PathLike) -> Path:
        """
        Move a document, possibly across roots.

        Raises:
            DocumentNotFoundError: Source missing.
            DestinationExistsError: Something already exists at `destination`.
        """
        source, destination = Path(source), Path(destination)
        for path in (source, destination):
            self._require_document(path)
            self._require_inside_roots(path)

        if source.resolve() == destination.resolve():
            if not source.is_file():
                raise DocumentNotFoundError(str(source))
            return destination

        with self._locks.hold(source, destination):
            if not source.is_file():
                raise DocumentNotFoundError(str(source))
            if destination.exists():
                raise DestinationExistsError(str(destination))
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(destination))

        logger.info("Moved %s -> %s", source, destination)
        self.mutations.log_document_moved(str(source), str(destination))
        return destination

    def rename(self, old_logical: PathLike, new_logical: PathLike) -> Path:
        """
        Rename a document inside the root that holds it.

        Returns:
            The new absolute path.
        """
        old_path = self.locate(old_logical)
        if old_path is None:
            raise DocumentNotFoundError(str(old_logical))
        root = self.root_for(old_path)
        new_path = self.resolve(new_logical, root)
        return self.move(old_path, new_path)

    def _backup(self, path: Path, tag: str) -> Path:
        backup_dir = path.parent / self._backup_dir
        backup_dir.mkdir(parents=True, exist_ok=True)
        stamp = int(self._clock() * 1000)
        target = backup_dir / f"{path.name}.{tag}.{stamp}"
        counter = 1
        while target.exists():
            target = backup_dir / f"{path.name}.{tag}.{stamp}-{counter}"
            counter += 1
        shutil.copy2(path, target)
        self.mutations.log_backup_created(str(path), str(target))
        return target

    # =========================================================================
    # CORPUS SCANNING
    # =========================================================================

    def iter_documents(self) -> Iterator[Path]:
        """
        Every document under every root, in a stable order.

        Backup and excluded directories are pruned. A file reachable through
        nested roots is yielded once.
        """
        seen = set()
        for root in self._roots:
            if not root.is_dir():
                logger.debug("Storage root missing, skipped: %s", root)
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(
                    d for d in dirnames if d not in self._excluded and d != self._backup_dir
                )
                for filename in sorted(filenames):
                    if not filename.endswith(self._extension):
                        continue
                    path = Path(dirpath) / filename
                    key = path.resolve()
                    if key in seen:
                        continue
                    seen.add(key)
                    yield path

    def iter_texts(self) -> Iterator[Tuple[Path, str]]:
        """(path, text) for every document. Files removed mid-scan are skipped."""
        for path in self.iter_documents():
            try:
                with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
                    text = f.read()
            except FileNotFoundError:
                logger.debug("Document vanished during scan: %s", path)
                continue
            yield path, text

    def describe(self, path: PathLike, text: Optional[str] = None) -> DocumentRef:
        """Build the DocumentRef of one document."""
        path = Path(path)
        if text is None:
            with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
                text = f.read()

        kind = kind_for_filename(path.name, self._extension)
        if kind == DocumentKind.DOCUMENT:
            declared = (extract_field(text, FIELD_TYPE) or "").lower()
            if declared in (DocumentKind.CAPABILITY.value, DocumentKind.ENABLER.value):
                kind = DocumentKind(declared)

        parent = extract_field(text, FIELD_CAPABILITY_ID)
        root = self.root_for(path)
        return DocumentRef(
            path=str(path),
            root=str(root) if root else "",
            logical_path=path.resolve().relative_to(root).as_posix() if root else path.name,
            kind=kind.value,
            id=extract_field(text, FIELD_ID) or None,
            capability_id=parent if is_identifier(parent, IdPrefix.CAP.value) else None,
            title=extract_title(text),
            name=extract_field(text, FIELD_NAME) or None,
        )

    def scan(self, kind: Optional[DocumentKind] = None) -> List[DocumentRef]:
        """Describe every document (optionally only one kind)."""
        refs = []
        for path, text in self.iter_texts():
            ref = self.describe(path, text)
            if kind is None or ref.kind == kind.value:
                refs.append(ref)
        logger.debug("Scanned %d document(s) across %d root(s)", len(refs), len(self._roots))
        return refs

    def capabilities(self) -> List[DocumentRef]:
        return self.scan(DocumentKind.CAPABILITY)

    def enablers(self) -> List[DocumentRef]:
        return self.scan(DocumentKind.ENABLER)

    def find_by_id(self, document_id: str, kind: Optional[DocumentKind] = None) -> Optional[DocumentRef]:
        """
        First document whose metadata ID equals `document_id`.

        Lookup is by the ID field, never by filename or directory guess.
        """
        wanted = document_id.strip()
        for path, text in self.iter_texts():
            if wanted not in text:
                continue
            ref = self.describe(path, text)
            if ref.id == wanted and (kind is None or ref.kind == kind.value):
                return ref
        return None

    def find_capability_directory(self, capability_id: str) -> Optional[Path]:
        """Directory holding the capability with this metadata ID."""
        ref = self.find_by_id(capability_id, DocumentKind.CAPABILITY)
        if ref is None:
            logger.info("Capability directory not found for %s", capability_id)
            return None
        return Path(ref.path).parent
