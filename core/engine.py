"""
SPECGRAPH ENGINE - The Facade Collaborators Talk To

Wires the repository, allocator, synchronizer and relationship manager
together over one configuration, and exposes the operations a UI/API layer
calls. All paths crossing this boundary are logical (root-relative);
resolution and traversal rejection happen in the DocumentRepository.

Control flow:
    save_capability  -> write, then mirror its edges onto every peer
    write_document   -> enablers go through the enabler save flow
                        (reparent if the parent changed, then mirror fields)
    delete_document  -> enablers are detached from their parent first

Usage:
    from core.engine import DocumentGraphEngine

    engine = DocumentGraphEngine.for_roots(["./specs"])
    cap_id = engine.allocate("CAP")
    engine.save_capability("100001-capability.md", text)
    report = engine.audit()
"""
from pathlib import Path
from typing import Iterable, List, Optional, Union
import logging

from core.corpus_graph import CorpusGraph
from core.dependency_sync import DependencyGraphSynchronizer, declared_links
from core.errors import DocumentNotFoundError, ParseFailureError
from core.graph_invariants import InvariantReport, audit
from core.identifiers import IdentifierAllocator
from core.metadata import extract_field
from core.ontology import FIELD_ID, FIELD_TYPE, DocumentKind, IdPrefix, is_identifier, kind_for_filename
from core.relationships import EnablerLike, RelationshipManager
from core.repository import DocumentRepository
from core.schemas import (
    CapabilityDependencies,
    DeleteReport,
    DocumentRef,
    EnablerSaveReport,
    LinkLike,
    ReparentReport,
    SyncReport,
)
from infrastructure.config import EngineConfig, load_config
from infrastructure.logger import LoggerConfig, MutationLogger

logger = logging.getLogger(__name__)


class DocumentGraphEngine:
    """
    One engine per corpus. Components share the repository (and therefore
    its per-path locks) and the mutation journal.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        repository: Optional[DocumentRepository] = None,
        mutation_logger: Optional[MutationLogger] = None,
    ):
        self.config = config or load_config()
        self.mutations = mutation_logger or MutationLogger(LoggerConfig(
            enable_file_log=self.config.logging.enable_file_log,
            log_path=Path(self.config.logging.log_path),
            buffer_size=self.config.logging.buffer_size,
        ))
        self.repository = repository or DocumentRepository.from_config(self.config, self.mutations)
        self.allocator = IdentifierAllocator(self.repository, mutation_logger=self.mutations)
        self.synchronizer = DependencyGraphSynchronizer(self.repository, self.mutations)
        self.relationships = RelationshipManager(
            self.repository,
            defaults=self.config.defaults,
            templates_dir=self.config.templates_dir(),
            mutation_logger=self.mutations,
        )
        for name in ("core", "infrastructure"):
            logging.getLogger(name).setLevel(self.config.logging.level.upper())
        logger.info("Engine ready over %d root(s)", len(self.repository.roots))

    @classmethod
    def for_roots(cls, roots: List[Union[str, Path]], **overrides) -> "DocumentGraphEngine":
        """Engine over explicit roots with default settings (tests, embedding)."""
        return cls(EngineConfig.for_roots(roots, **overrides))

    # =========================================================================
    # IDENTIFIERS
    # =========================================================================

    def allocate(self, prefix: Union[str, IdPrefix]) -> str:
        return self.allocator.allocate(prefix)

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    def _existing(self, logical_path: str) -> Path:
        path = self.repository.locate(logical_path)
        if path is None:
            raise DocumentNotFoundError(logical_path)
        return path

    def _kind_of(self, path: Path, text: str) -> DocumentKind:
        kind = kind_for_filename(path.name, self.repository.document_extension)
        if kind != DocumentKind.DOCUMENT:
            return kind
        declared = (extract_field(text, FIELD_TYPE) or "").lower()
        if declared in (DocumentKind.CAPABILITY.value, DocumentKind.ENABLER.value):
            return DocumentKind(declared)
        return kind

    def read_document(self, logical_path: str) -> str:
        return self.repository.read(self._existing(logical_path))

    def write_document(
        self,
        logical_path: str,
        text: str,
        original_capability_id: Optional[str] = None,
    ) -> Path:
        """
        Write a document. Enabler documents go through the enabler save flow.

        Returns:
            Where the document ended up (an Enabler may have moved).
        """
        path = self.repository.resolve_for_write(logical_path)
        if self._kind_of(path, text) == DocumentKind.ENABLER:
            report = self.relationships.save_enabler(logical_path, text, original_capability_id)
            return Path(report.path)
        self.repository.write(path, text)
        return path

    def delete_document(self, logical_path: str) -> DeleteReport:
        """Delete a document (with backup); Enablers leave their parent's table first."""
        path = self._existing(logical_path)
        if self.repository.describe(path).kind == DocumentKind.ENABLER.value:
            return self.relationships.remove_enabler(path)
        backup = self.repository.delete(path)
        return DeleteReport(path=str(path), backup=str(backup))

    def rename_document(self, old_logical_path: str, new_logical_path: str) -> Path:
        return self.repository.rename(old_logical_path, new_logical_path)

    def list_documents(self, kind: Optional[DocumentKind] = None) -> List[DocumentRef]:
        return self.repository.scan(kind)

    # =========================================================================
    # CAPABILITIES
    # =========================================================================

    def synchronize_capability(
        self,
        capability_id: str,
        upstream: Optional[Iterable[LinkLike]] = None,
        downstream: Optional[Iterable[LinkLike]] = None,
    ) -> SyncReport:
        return self.synchronizer.synchronize(capability_id, upstream, downstream)

    def save_capability(
        self,
        logical_path: str,
        text: str,
        upstream: Optional[Iterable[LinkLike]] = None,
        downstream: Optional[Iterable[LinkLike]] = None,
        enablers: Optional[Iterable[EnablerLike]] = None,
    ) -> SyncReport:
        """
        Save a capability and mirror its dependency edges.

        Edge lists default to the document's own upstream/downstream tables
        when neither is given. Listed enablers are created (or updated)
        beside the capability.

        Raises:
            ParseFailureError: The document has no capability ID.
        """
        capability_id = extract_field(text, FIELD_ID)
        if not is_identifier(capability_id, IdPrefix.CAP.value):
            raise ParseFailureError(f"Capability document has no valid ID: {capability_id!r}")

        path = self.repository.resolve_for_write(logical_path)
        self.repository.write(path, text)

        if upstream is None and downstream is None:
            upstream, downstream = declared_links(text)
        report = self.synchronizer.synchronize(capability_id, upstream, downstream)

        for enabler in enablers or []:
            self.relationships.create_enabler(enabler, capability_id)
        return report

    def capabilities_with_dependencies(self) -> List[CapabilityDependencies]:
        """Every capability with its declared edges and the enablers it lists."""
        corpus = CorpusGraph.from_repository(self.repository)
        result = []
        for ref in self.repository.capabilities():
            if not ref.id:
                continue
            try:
                upstream, downstream = declared_links(self.repository.read(Path(ref.path)))
            except ParseFailureError as e:
                logger.warning("Skipping unreadable capability %s: %s", ref.id, e)
                continue
            result.append(CapabilityDependencies(
                id=ref.id,
                name=ref.name or ref.title or "",
                path=ref.logical_path,
                upstream=upstream,
                downstream=downstream,
                enablers=sorted({r.enabler_id for r in corpus.enabler_rows if r.capability_id == ref.id}),
            ))
        return result

    # =========================================================================
    # ENABLERS
    # =========================================================================

    def create_enabler(self, enabler: EnablerLike, capability_id: Optional[str] = None) -> Path:
        return self.relationships.create_enabler(enabler, capability_id)

    def save_enabler(
        self,
        logical_path: str,
        text: str,
        original_capability_id: Optional[str] = None,
    ) -> EnablerSaveReport:
        return self.relationships.save_enabler(logical_path, text, original_capability_id)

    def reparent_enabler(
        self,
        enabler_id: str,
        enabler_name: str,
        old_capability_id: Optional[str],
        new_capability_id: Optional[str],
    ) -> ReparentReport:
        return self.relationships.reparent(enabler_id, enabler_name, old_capability_id, new_capability_id)

    # =========================================================================
    # AUDIT
    # =========================================================================

    def corpus_graph(self) -> CorpusGraph:
        return CorpusGraph.from_repository(self.repository)

    def audit(self) -> InvariantReport:
        report = audit(self.corpus_graph())
        if report.valid:
            logger.info("Corpus audit passed (%d warning(s))", len(report.warnings))
        else:
            logger.warning("Corpus audit found %d error(s)", len(report.errors))
        return report


# =============================================================================
# PROCESS-WIDE INSTANCE
# =============================================================================

_engine: Optional[DocumentGraphEngine] = None


def get_engine() -> DocumentGraphEngine:
    """Get or create the global engine (configured from config/specgraph.toml)."""
    global _engine
    if _engine is None:
        _engine = DocumentGraphEngine()
    return _engine


def set_engine(engine: Optional[DocumentGraphEngine]) -> None:
    """Install an engine (or None to drop it)."""
    global _engine
    _engine = engine


def reset_engine() -> None:
    set_engine(None)
