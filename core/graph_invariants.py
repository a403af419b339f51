"""
SPECGRAPH CORPUS INVARIANTS - The Consistency Audit

Checks a CorpusGraph snapshot against the rules the engine maintains.
Nothing here writes; an audit only reports where the corpus has drifted
(hand edits, interrupted reparenting, concurrent saves).

Invariants Implemented:
1. Edge Symmetry: A lists B as downstream impact <=> B lists A as upstream
2. No Duplicate Rows: one row per (table, key)
3. Enabler Exclusivity: an Enabler ID appears in at most one Enablers table
4. No Field Drift: the parent row equals the Enabler's own fields
5. Placement: an Enabler lives in its parent's directory
6. No Dangling Parents: every Capability ID names an existing capability
7. Unique Identifiers: one document per ID
8. Dependency Acyclicity: reported as a warning (cycles are legal, but odd)

Design Philosophy:
- Violations carry the IDs involved so a caller can repair them
- Drift detection is a Polars join of cached rows against Enabler documents
- Cycle detection uses rustworkx primitives on the dependency subgraph
"""
import rustworkx as rx
import polars as pl
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Tuple

from core.corpus_graph import ENABLER_COLUMNS, CorpusGraph
from core.ontology import SECTION_DOWNSTREAM, SECTION_UPSTREAM


# =============================================================================
# INVARIANT RESULTS
# =============================================================================

class InvariantSeverity(Enum):
    """Severity levels for invariant violations."""
    ERROR = "error"      # The engine's guarantees do not hold
    WARNING = "warning"  # Should be investigated
    INFO = "info"        # For metrics/diagnostics


@dataclass
class InvariantViolation:
    """A specific invariant violation."""
    invariant: str           # Name of the invariant
    severity: InvariantSeverity
    message: str
    nodes_involved: List[str] = field(default_factory=list)
    edges_involved: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class InvariantReport:
    """Complete audit report."""
    valid: bool
    violations: List[InvariantViolation]
    metrics: Dict[str, Any]

    @property
    def errors(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.ERROR]

    @property
    def warnings(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.WARNING]

    def by_invariant(self, name: str) -> List[InvariantViolation]:
        return [v for v in self.violations if v.invariant == name]


# =============================================================================
# CORPUS INVARIANTS
# =============================================================================

class CorpusInvariants:
    """
    Validators over a CorpusGraph snapshot.

    All methods are static and return a (possibly empty) list of violations.
    """

    @staticmethod
    def check_edge_symmetry(corpus: CorpusGraph) -> List[InvariantViolation]:
        """
        Every declared edge must be declared by the other endpoint too.

        A row naming a capability with no document is reported as a dangling
        dependency instead.
        """
        declared = {(d.declared_by, d.section, d.peer_id) for d in corpus.declarations}
        mirror_section = {SECTION_DOWNSTREAM: SECTION_UPSTREAM, SECTION_UPSTREAM: SECTION_DOWNSTREAM}

        violations = []
        for declarer, section, peer in sorted(declared):
            if peer not in corpus.index:
                violations.append(InvariantViolation(
                    invariant="dangling_dependency",
                    severity=InvariantSeverity.WARNING,
                    message=f"{declarer} lists unknown capability {peer} under {section!r}",
                    nodes_involved=[declarer, peer],
                ))
                continue
            if (peer, mirror_section[section], declarer) not in declared:
                violations.append(InvariantViolation(
                    invariant="edge_symmetry",
                    severity=InvariantSeverity.ERROR,
                    message=(
                        f"{declarer} lists {peer} under {section!r} but {peer} does not list "
                        f"{declarer} under {mirror_section[section]!r}"
                    ),
                    nodes_involved=[declarer, peer],
                    edges_involved=[(declarer, peer) if section == SECTION_DOWNSTREAM else (peer, declarer)],
                ))
        return violations

    @staticmethod
    def check_duplicate_rows(corpus: CorpusGraph) -> List[InvariantViolation]:
        counts = Counter((d.declared_by, d.section, d.peer_id) for d in corpus.declarations)
        counts.update((r.capability_id, "Enablers", r.enabler_id) for r in corpus.enabler_rows)

        return [
            InvariantViolation(
                invariant="duplicate_rows",
                severity=InvariantSeverity.ERROR,
                message=f"{owner} has {count} rows for {key} under {section!r}",
                nodes_involved=[owner, key],
            )
            for (owner, section, key), count in sorted(counts.items())
            if count > 1
        ]

    @staticmethod
    def check_enabler_exclusivity(corpus: CorpusGraph) -> List[InvariantViolation]:
        owners: Dict[str, set] = {}
        for row in corpus.enabler_rows:
            owners.setdefault(row.enabler_id, set()).add(row.capability_id)

        return [
            InvariantViolation(
                invariant="enabler_exclusivity",
                severity=InvariantSeverity.ERROR,
                message=f"{enabler_id} is listed by {len(caps)} capabilities: {sorted(caps)}",
                nodes_involved=[enabler_id, *sorted(caps)],
            )
            for enabler_id, caps in sorted(owners.items())
            if len(caps) > 1
        ]

    @staticmethod
    def check_field_drift(corpus: CorpusGraph) -> List[InvariantViolation]:
        """
        Compare cached Enablers rows with the Enabler documents.

        - enabler_row_drift (ERROR): the parent's row differs from the document
        - missing_enabler_row (WARNING): the parent has no row for its Enabler
        - stale_enabler_row (WARNING): a row names an Enabler owned elsewhere
        """
        rows = corpus.to_polars_enabler_rows().fill_null("")
        fields = corpus.to_polars_enabler_fields().fill_null("")
        violations = []

        joined = rows.join(fields, on=["capability_id", "enabler_id"], how="inner", suffix="_doc")
        if joined.height:
            differs = pl.any_horizontal([pl.col(c) != pl.col(f"{c}_doc") for c in ENABLER_COLUMNS])
            for record in joined.filter(differs).iter_rows(named=True):
                columns = [c for c in ENABLER_COLUMNS if record[c] != record[f"{c}_doc"]]
                violations.append(InvariantViolation(
                    invariant="enabler_row_drift",
                    severity=InvariantSeverity.ERROR,
                    message=f"{record['capability_id']} row for {record['enabler_id']} differs in {columns}",
                    nodes_involved=[record["capability_id"], record["enabler_id"]],
                ))

        parented = fields.filter(pl.col("capability_id") != "")
        missing = parented.join(rows, on=["capability_id", "enabler_id"], how="anti")
        for record in missing.iter_rows(named=True):
            if record["capability_id"] not in corpus.index:
                continue
            violations.append(InvariantViolation(
                invariant="missing_enabler_row",
                severity=InvariantSeverity.WARNING,
                message=f"{record['capability_id']} has no row for its enabler {record['enabler_id']}",
                nodes_involved=[record["capability_id"], record["enabler_id"]],
            ))

        stale = rows.join(fields, on="enabler_id", how="inner", suffix="_doc").filter(
            pl.col("capability_id") != pl.col("capability_id_doc")
        )
        for record in stale.iter_rows(named=True):
            violations.append(InvariantViolation(
                invariant="stale_enabler_row",
                severity=InvariantSeverity.WARNING,
                message=(
                    f"{record['capability_id']} lists {record['enabler_id']}, whose parent is "
                    f"{record['capability_id_doc'] or 'unset'}"
                ),
                nodes_involved=[record["capability_id"], record["enabler_id"]],
            ))
        return violations

    @staticmethod
    def check_placement(corpus: CorpusGraph) -> List[InvariantViolation]:
        violations = []
        for node in corpus.nodes:
            parent = corpus.node(node.capability_id) if node.capability_id else None
            if parent is None:
                continue
            if Path(node.path).parent != Path(parent.path).parent:
                violations.append(InvariantViolation(
                    invariant="enabler_placement",
                    severity=InvariantSeverity.WARNING,
                    message=f"{node.id} lives in {Path(node.path).parent}, not beside {parent.id}",
                    nodes_involved=[node.id, parent.id],
                ))
        return violations

    @staticmethod
    def check_dangling_parents(corpus: CorpusGraph) -> List[InvariantViolation]:
        return [
            InvariantViolation(
                invariant="dangling_parent",
                severity=InvariantSeverity.ERROR,
                message=f"{node.id} names missing parent {node.capability_id}",
                nodes_involved=[node.id, node.capability_id],
            )
            for node in corpus.nodes
            if node.capability_id and node.capability_id not in corpus.index
        ]

    @staticmethod
    def check_unique_identifiers(corpus: CorpusGraph) -> List[InvariantViolation]:
        return [
            InvariantViolation(
                invariant="duplicate_identifier",
                severity=InvariantSeverity.ERROR,
                message=f"{doc_id} is declared by {len(paths)} documents: {paths}",
                nodes_involved=[doc_id],
            )
            for doc_id, paths in sorted(corpus.duplicates.items())
        ]

    @staticmethod
    def check_dependency_cycles(corpus: CorpusGraph) -> List[InvariantViolation]:
        dependencies = corpus.dependency_subgraph()
        if rx.is_directed_acyclic_graph(dependencies):
            return []
        cycle = [
            (dependencies[source].id, dependencies[target].id)
            for source, target in rx.digraph_find_cycle(dependencies)
        ]
        return [InvariantViolation(
            invariant="dependency_cycle",
            severity=InvariantSeverity.WARNING,
            message=f"Dependency cycle through {len(cycle)} edge(s)",
            nodes_involved=[source for source, _ in cycle],
            edges_involved=cycle,
        )]

    @staticmethod
    def validate_all(corpus: CorpusGraph) -> InvariantReport:
        """Run every check and return a report with corpus metrics."""
        checks = (
            CorpusInvariants.check_edge_symmetry,
            CorpusInvariants.check_duplicate_rows,
            CorpusInvariants.check_enabler_exclusivity,
            CorpusInvariants.check_field_drift,
            CorpusInvariants.check_placement,
            CorpusInvariants.check_dangling_parents,
            CorpusInvariants.check_unique_identifiers,
            CorpusInvariants.check_dependency_cycles,
        )
        violations: List[InvariantViolation] = []
        for check in checks:
            violations.extend(check(corpus))

        edges = corpus.to_polars_edges()
        metrics = {
            "capability_count": len(corpus.capability_ids()),
            "enabler_count": len(corpus.enabler_ids()),
            "dependency_edge_count": edges.filter(pl.col("edge_type") == "DEPENDS_ON").height,
            "ownership_edge_count": edges.filter(pl.col("edge_type") == "OWNS").height,
            "weakly_connected_components": (
                rx.number_weakly_connected_components(corpus.graph) if corpus.graph.num_nodes() else 0
            ),
        }

        return InvariantReport(
            valid=all(v.severity != InvariantSeverity.ERROR for v in violations),
            violations=violations,
            metrics=metrics,
        )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def audit(corpus: CorpusGraph) -> InvariantReport:
    """Convenience function to audit a corpus snapshot."""
    return CorpusInvariants.validate_all(corpus)


def audit_repository(repository) -> InvariantReport:
    """Build a fresh snapshot of the repository and audit it."""
    return audit(CorpusGraph.from_repository(repository))
