"""
SPECGRAPH CORPUS GRAPH - The Whole Corpus as One rustworkx Graph

A read-only snapshot of every relationship spelled out in the documents:

    Nodes:  capabilities and enablers (by metadata ID)
    Edges:  OWNS        capability -> enabler   (from the Enabler's Capability ID)
            DEPENDS_ON  upstream   -> downstream (from either side's tables)

Besides the graph, the snapshot keeps the raw declarations (which document
said what, in which table) so the invariants audit can tell a mirrored
edge from a one-sided one. Exports go to Polars DataFrames for analysis.

The snapshot is rebuilt from disk on demand; nothing is cached between
builds.
"""
import rustworkx as rx
import polars as pl
import msgspec
from typing import Dict, List, Optional, Tuple
import logging

from core.metadata import extract_table, has_table
from core.ontology import (
    SECTION_DOWNSTREAM,
    SECTION_ENABLERS,
    SECTION_UPSTREAM,
    DocumentKind,
    IdPrefix,
    is_identifier,
)
from core.relationships import enabler_record_from_text
from core.schemas import DependencyEdge, EnablerRecord

logger = logging.getLogger(__name__)

EDGE_OWNS = "OWNS"
EDGE_DEPENDS_ON = "DEPENDS_ON"


# =============================================================================
# SNAPSHOT RECORDS
# =============================================================================

class CorpusNode(msgspec.Struct, kw_only=True, frozen=True):
    id: str
    kind: str
    path: str
    name: str = ""
    capability_id: Optional[str] = None


class CorpusEdge(msgspec.Struct, kw_only=True, frozen=True):
    edge_type: str
    source_id: str
    target_id: str
    description: str = ""


class DependencyDeclaration(msgspec.Struct, kw_only=True, frozen=True):
    """One row of a capability's upstream/downstream table."""
    declared_by: str
    section: str
    peer_id: str
    description: str = ""

    def edge(self) -> DependencyEdge:
        """The upstream -> downstream edge this row asserts."""
        if self.section == SECTION_DOWNSTREAM:
            return DependencyEdge(source_id=self.declared_by, target_id=self.peer_id, description=self.description)
        return DependencyEdge(source_id=self.peer_id, target_id=self.declared_by, description=self.description)


class EnablerRow(msgspec.Struct, kw_only=True, frozen=True):
    """One row of a capability's Enablers table."""
    capability_id: str
    enabler_id: str
    name: str = ""
    description: str = ""
    status: str = ""
    approval: str = ""
    priority: str = ""


ENABLER_COLUMNS = ("name", "description", "status", "approval", "priority")


# =============================================================================
# CORPUS GRAPH
# =============================================================================

class CorpusGraph:
    """
    Usage:
        corpus = CorpusGraph.from_repository(repository)
        corpus.graph.num_nodes()
        corpus.to_polars_edges().filter(pl.col("edge_type") == "DEPENDS_ON")
    """

    def __init__(self):
        self.graph: rx.PyDiGraph = rx.PyDiGraph()
        self.index: Dict[str, int] = {}
        self.nodes: List[CorpusNode] = []
        self.duplicates: Dict[str, List[str]] = {}
        self.declarations: List[DependencyDeclaration] = []
        self.enabler_rows: List[EnablerRow] = []
        self.enabler_fields: Dict[str, EnablerRecord] = {}

    @classmethod
    def from_repository(cls, repository) -> "CorpusGraph":
        corpus = cls()
        capability_texts: List[Tuple[CorpusNode, str]] = []

        for path, text in repository.iter_texts():
            ref = repository.describe(path, text)
            if ref.kind == DocumentKind.DOCUMENT.value or not ref.id:
                continue
            if ref.kind == DocumentKind.ENABLER.value:
                record = enabler_record_from_text(text)
                node = CorpusNode(
                    id=ref.id, kind=ref.kind, path=str(path),
                    name=record.name, capability_id=record.capability_id,
                )
            else:
                node = CorpusNode(id=ref.id, kind=ref.kind, path=str(path), name=ref.name or ref.title or "")
            if not corpus._add_node(node):
                continue
            if node.kind == DocumentKind.ENABLER.value:
                corpus.enabler_fields[node.id] = record
            else:
                capability_texts.append((node, text))

        for node, text in capability_texts:
            corpus._read_tables(node, text)
        corpus._link()
        logger.debug(
            "Corpus graph built: %d node(s), %d edge(s)", corpus.graph.num_nodes(), corpus.graph.num_edges()
        )
        return corpus

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def _add_node(self, node: CorpusNode) -> bool:
        """Add a node; a second document with the same ID is recorded, not added."""
        if node.id in self.index:
            first = self.nodes[self.index[node.id]].path
            self.duplicates.setdefault(node.id, [first]).append(node.path)
            return False
        self.index[node.id] = self.graph.add_node(node)
        self.nodes.append(node)
        return True

    def _read_tables(self, node: CorpusNode, text: str) -> None:
        for section in (SECTION_UPSTREAM, SECTION_DOWNSTREAM):
            if not has_table(text, section):
                continue
            for row in extract_table(text, section):
                if is_identifier(row.key, IdPrefix.CAP.value):
                    self.declarations.append(DependencyDeclaration(
                        declared_by=node.id, section=section, peer_id=row.key, description=row.cell(1),
                    ))

        if has_table(text, SECTION_ENABLERS):
            for row in extract_table(text, SECTION_ENABLERS):
                if is_identifier(row.key, IdPrefix.ENB.value):
                    self.enabler_rows.append(EnablerRow(
                        capability_id=node.id,
                        enabler_id=row.key,
                        **{column: row.cell(i + 1) for i, column in enumerate(ENABLER_COLUMNS)},
                    ))

    def _link(self) -> None:
        for node in self.nodes:
            if node.kind == DocumentKind.ENABLER.value and node.capability_id in self.index:
                self.graph.add_edge(
                    self.index[node.capability_id], self.index[node.id],
                    CorpusEdge(edge_type=EDGE_OWNS, source_id=node.capability_id, target_id=node.id),
                )

        seen = set()
        for declaration in self.declarations:
            edge = declaration.edge()
            source, target = edge.source_id, edge.target_id
            if (source, target) in seen or source not in self.index or target not in self.index:
                continue
            seen.add((source, target))
            self.graph.add_edge(
                self.index[source], self.index[target],
                CorpusEdge(
                    edge_type=EDGE_DEPENDS_ON, source_id=source, target_id=target,
                    description=edge.description,
                ),
            )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def node(self, node_id: str) -> Optional[CorpusNode]:
        idx = self.index.get(node_id)
        return self.graph[idx] if idx is not None else None

    def capability_ids(self) -> List[str]:
        return [n.id for n in self.nodes if n.kind == DocumentKind.CAPABILITY.value]

    def enabler_ids(self) -> List[str]:
        return [n.id for n in self.nodes if n.kind == DocumentKind.ENABLER.value]

    def dependency_subgraph(self) -> rx.PyDiGraph:
        """Capabilities and DEPENDS_ON edges only."""
        keep = [self.index[cid] for cid in self.capability_ids()]
        sub = self.graph.subgraph(keep)
        for edge_idx in list(sub.edge_indices()):
            if sub.get_edge_data_by_index(edge_idx).edge_type != EDGE_DEPENDS_ON:
                sub.remove_edge_from_index(edge_idx)
        return sub

    def dependency_edges(self) -> List[DependencyEdge]:
        """Distinct DEPENDS_ON edges between known capabilities (source is upstream)."""
        return [
            DependencyEdge(source_id=e.source_id, target_id=e.target_id, description=e.description)
            for e in self.graph.edges()
            if e.edge_type == EDGE_DEPENDS_ON
        ]

    def enablers_of(self, capability_id: str) -> List[str]:
        idx = self.index.get(capability_id)
        if idx is None:
            return []
        return sorted(
            self.graph[child].id
            for child in self.graph.successor_indices(idx)
            if self.graph[child].kind == DocumentKind.ENABLER.value
        )

    def upstream_of(self, capability_id: str) -> List[str]:
        idx = self.index.get(capability_id)
        if idx is None:
            return []
        return sorted(
            self.graph[parent].id
            for parent in self.graph.predecessor_indices(idx)
            if self.graph[parent].kind == DocumentKind.CAPABILITY.value
        )

    def downstream_of(self, capability_id: str) -> List[str]:
        idx = self.index.get(capability_id)
        if idx is None:
            return []
        return sorted(
            self.graph[child].id
            for child in self.graph.successor_indices(idx)
            if self.graph[child].kind == DocumentKind.CAPABILITY.value
        )

    # =========================================================================
    # POLARS EXPORTS
    # =========================================================================

    def to_polars_nodes(self) -> pl.DataFrame:
        """Export nodes (one row per distinct ID)."""
        return pl.DataFrame({
            "id": [n.id for n in self.nodes],
            "kind": [n.kind for n in self.nodes],
            "name": [n.name for n in self.nodes],
            "capability_id": [n.capability_id for n in self.nodes],
            "path": [n.path for n in self.nodes],
        }, schema={c: pl.Utf8 for c in ("id", "kind", "name", "capability_id", "path")})

    def to_polars_edges(self) -> pl.DataFrame:
        """Export OWNS and DEPENDS_ON edges."""
        edges = [self.graph.get_edge_data_by_index(i) for i in self.graph.edge_indices()]
        return pl.DataFrame({
            "source_id": [e.source_id for e in edges],
            "target_id": [e.target_id for e in edges],
            "edge_type": [e.edge_type for e in edges],
            "description": [e.description for e in edges],
        }, schema={c: pl.Utf8 for c in ("source_id", "target_id", "edge_type", "description")})

    def to_polars_enabler_rows(self) -> pl.DataFrame:
        """Every Enablers-table row, as cached in the capabilities."""
        columns = ("capability_id", "enabler_id", *ENABLER_COLUMNS)
        return pl.DataFrame(
            {c: [getattr(r, c) for r in self.enabler_rows] for c in columns},
            schema={c: pl.Utf8 for c in columns},
        )

    def to_polars_enabler_fields(self) -> pl.DataFrame:
        """The authoritative fields of every Enabler document."""
        columns = ("enabler_id", "capability_id", *ENABLER_COLUMNS)
        records = list(self.enabler_fields.items())
        data = {
            "enabler_id": [eid for eid, _ in records],
            "capability_id": [rec.capability_id for _, rec in records],
        }
        for column in ENABLER_COLUMNS:
            data[column] = [getattr(rec, column) for _, rec in records]
        return pl.DataFrame(data, schema={c: pl.Utf8 for c in columns})
