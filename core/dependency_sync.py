"""
SPECGRAPH DEPENDENCY SYNCHRONIZER - Mirroring Capability Edges

A capability declares its edges in two tables:

    ### Internal Upstream Dependency    (capabilities it depends on)
    ### Internal Downstream Impact      (capabilities that depend on it)

An edge A -> B is only consistent when it is written down on both ends:
A lists B as downstream impact AND B lists A as upstream dependency.

After a capability is saved with its declared edge lists, synchronize()
visits every OTHER capability and patches its tables so the relation is
mirrored again:

    T in downstream  =>  T's upstream table has exactly one row for the source
    T in upstream    =>  T's downstream table has exactly one row for the source
    otherwise        =>  any such row in T is removed (edge retracted)

Each peer is read once, patched in memory and written once (or not at all
when nothing changed). A malformed or vanished peer is logged and skipped.
"""
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from core.errors import DocumentNotFoundError, ParseFailureError
from core.metadata import (
    count_table_rows,
    extract_table,
    has_table,
    remove_table_row,
    upsert_table_row,
)
from core.ontology import (
    REVERSE_DEPENDENCY_DESCRIPTION,
    SECTION_DOWNSTREAM,
    SECTION_UPSTREAM,
    IdPrefix,
    is_identifier,
)
from core.schemas import DependencyLink, LinkLike, SkippedTarget, SyncReport, coerce_links
from infrastructure.logger import MutationLogger, get_logger as get_mutation_logger

logger = logging.getLogger(__name__)


def declared_links(text: str) -> Tuple[List[DependencyLink], List[DependencyLink]]:
    """
    Read a capability's own (upstream, downstream) declarations.

    A missing section or table reads as no edges. Rows whose first cell is
    not a capability identifier are ignored.
    """
    result = []
    for heading in (SECTION_UPSTREAM, SECTION_DOWNSTREAM):
        links = []
        if has_table(text, heading):
            for row in extract_table(text, heading):
                if is_identifier(row.key, IdPrefix.CAP.value):
                    links.append(DependencyLink(id=row.key, description=row.cell(1)))
        result.append(links)
    return result[0], result[1]


def _index_links(links: Iterable[DependencyLink], capability_id: str) -> Dict[str, str]:
    """id -> description; the first declaration wins, self-links are dropped."""
    index: Dict[str, str] = {}
    for link in links:
        if link.id == capability_id:
            logger.debug("Ignoring self-dependency on %s", capability_id)
            continue
        index.setdefault(link.id, link.description)
    return index


class DependencyGraphSynchronizer:
    """
    Usage:
        sync = DependencyGraphSynchronizer(repository)
        report = sync.synchronize(
            "CAP-100001",
            upstream=[],
            downstream=[{"id": "CAP-100002", "description": "feeds data"}],
        )
        report.updated   # ['CAP-100002']
    """

    def __init__(self, repository, mutation_logger: Optional[MutationLogger] = None):
        self._repository = repository
        self._mutations = mutation_logger

    @property
    def mutations(self) -> MutationLogger:
        return self._mutations or get_mutation_logger()

    def synchronize(
        self,
        capability_id: str,
        upstream: Optional[Iterable[LinkLike]] = None,
        downstream: Optional[Iterable[LinkLike]] = None,
    ) -> SyncReport:
        """
        Mirror `capability_id`'s declared edges onto every other capability.

        Args:
            capability_id: The capability that was just saved
            upstream: Capabilities it depends on
            downstream: Capabilities that depend on it

        Returns:
            SyncReport listing updated, unchanged, skipped and missing peers
        """
        capability_id = capability_id.strip()
        upstream_index = _index_links(coerce_links(upstream), capability_id)
        downstream_index = _index_links(coerce_links(downstream), capability_id)

        report = SyncReport(capability_id=capability_id)
        visited = set()

        for ref in self._repository.capabilities():
            if not ref.id or ref.id == capability_id:
                continue
            visited.add(ref.id)
            changes: List[Tuple[str, bool]] = []

            def patch(text: str, target_id: str = ref.id, changes: list = changes) -> str:
                changes.clear()
                text = self._reconcile(
                    text, SECTION_UPSTREAM, capability_id,
                    wanted=target_id in downstream_index,
                    description=downstream_index.get(target_id, ""),
                    changes=changes,
                )
                return self._reconcile(
                    text, SECTION_DOWNSTREAM, capability_id,
                    wanted=target_id in upstream_index,
                    description=upstream_index.get(target_id, ""),
                    changes=changes,
                )

            try:
                changed = self._repository.edit(Path(ref.path), patch)
            except (ParseFailureError, DocumentNotFoundError) as e:
                logger.warning("Skipping %s (%s) during sync of %s: %s", ref.id, ref.path, capability_id, e)
                report.skipped.append(SkippedTarget(target=ref.id, reason=str(e)))
                continue

            if changed:
                report.updated.append(ref.id)
                for section, added in changes:
                    if added:
                        self.mutations.log_edge_mirrored(ref.id, section, capability_id)
                    else:
                        self.mutations.log_edge_retracted(ref.id, section, capability_id)
            else:
                report.unchanged.append(ref.id)

        report.missing = sorted((set(upstream_index) | set(downstream_index)) - visited)
        for peer in report.missing:
            logger.warning("%s declares an edge to %s, which has no document", capability_id, peer)

        logger.info(
            "Synchronized %s: %d updated, %d unchanged, %d skipped, %d missing",
            capability_id, len(report.updated), len(report.unchanged),
            len(report.skipped), len(report.missing),
        )
        return report

    @staticmethod
    def _reconcile(
        text: str,
        heading: str,
        source_id: str,
        wanted: bool,
        description: str,
        changes: List[Tuple[str, bool]],
    ) -> str:
        """Make `heading` hold exactly one row for source_id (wanted) or none."""
        present = count_table_rows(text, heading, source_id)

        if wanted:
            if present == 0:
                changes.append((heading, True))
                return upsert_table_row(
                    text, heading, source_id, [description or REVERSE_DEPENDENCY_DESCRIPTION]
                )
            if present > 1:
                return remove_table_row(text, heading, source_id, keep_first=True)
            return text

        if present:
            changes.append((heading, False))
            return remove_table_row(text, heading, source_id)
        return text
