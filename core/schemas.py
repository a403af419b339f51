"""
SPECGRAPH SCHEMAS - The Grammar of the Document Graph

If ontology.py is the Dictionary (the words the corpus uses),
schemas.py is the Grammar (how those words are grouped into records).

This module defines the data structures that flow between components:
- TableRow: One pipe-delimited row lifted out of a document
- DependencyLink / DependencyEdge: Capability-to-capability relationships
- EnablerRecord: The authoritative summary of an Enabler
- DocumentRef: One entry of a corpus scan
- CapabilityDependencies: A capability with its declared edges
- Reports: What multi-document operations did (and what they skipped)

Design Principles:
1. STRICT TYPING: msgspec.Struct, no silent coercion
2. KW_ONLY: Keyword arguments everywhere to prevent positional mix-ups
3. RECORDS ARE VIEWS: The text on disk is the source of truth; these structs
   are never serialized back over a document
"""
import msgspec
from pathlib import Path
from typing import Optional, List, Tuple, Dict, Any, Iterable, Mapping, Union


# =============================================================================
# TABLE ROWS
# =============================================================================

class TableRow(msgspec.Struct, frozen=True):
    """A data row of a markdown table, cells already trimmed."""
    cells: Tuple[str, ...]

    @property
    def key(self) -> str:
        """First column: the row's identity."""
        return self.cells[0] if self.cells else ""

    @property
    def values(self) -> Tuple[str, ...]:
        """Every column after the key."""
        return self.cells[1:]

    def cell(self, index: int, default: str = "") -> str:
        return self.cells[index] if index < len(self.cells) else default


# =============================================================================
# DEPENDENCIES
# =============================================================================

class DependencyLink(msgspec.Struct, kw_only=True, frozen=True):
    """
    One entry of a capability's declared upstream or downstream list.

    `id` is the peer capability; `description` is the row text.
    """
    id: str
    description: str = ""


class DependencyEdge(msgspec.Struct, kw_only=True, frozen=True):
    """
    A directed dependency between two capabilities.

    source_id is upstream (it feeds), target_id is downstream (it depends).
    A capability A listing B under "Internal Downstream Impact" declares the
    edge A -> B; B must list A under "Internal Upstream Dependency".
    """
    source_id: str
    target_id: str
    description: str = ""


LinkLike = Union[DependencyLink, Mapping[str, Any]]


def coerce_links(links: Optional[Iterable[LinkLike]]) -> List[DependencyLink]:
    """
    Normalize author-declared links.

    Accepts DependencyLink instances or mappings with `id`/`description`
    keys (the shape collaborators post). Entries without an id are dropped.
    """
    result: List[DependencyLink] = []
    for link in links or []:
        if isinstance(link, DependencyLink):
            candidate = link
        else:
            data = {k: v for k, v in dict(link).items() if k in ("id", "description")}
            if not data.get("id"):
                continue
            data["id"] = str(data["id"]).strip()
            data["description"] = str(data.get("description") or "").strip()
            candidate = msgspec.convert(data, DependencyLink)
        if candidate.id:
            result.append(candidate)
    return result


# =============================================================================
# ENABLER RECORD
# =============================================================================

class EnablerRecord(msgspec.Struct, kw_only=True):
    """
    Authoritative summary fields of an Enabler.

    The same five fields are cached in the parent capability's Enablers
    table; after every successful save the two copies must match.
    """
    id: Optional[str] = None
    name: str = ""
    description: str = ""
    status: str = ""
    approval: str = ""
    priority: str = ""
    capability_id: Optional[str] = None

    def row_values(self) -> Tuple[str, str, str, str, str]:
        """Columns after the Enabler ID, in table order."""
        return (self.name, self.description, self.status, self.approval, self.priority)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EnablerRecord":
        """
        Build from a collaborator payload.

        Accepts both `capability_id` and the camelCase `capabilityId`.
        Unknown keys are ignored; missing text fields default to "".
        """
        payload: Dict[str, Any] = {}
        for key in ("id", "name", "description", "status", "approval", "priority"):
            value = data.get(key)
            if value is not None:
                payload[key] = str(value).strip()
        parent = data.get("capability_id", data.get("capabilityId"))
        if parent:
            payload["capability_id"] = str(parent).strip()
        return msgspec.convert(payload, cls)


# =============================================================================
# CORPUS ENTRIES
# =============================================================================

class DocumentRef(msgspec.Struct, kw_only=True, frozen=True):
    """One document found while scanning the configured roots."""
    path: str                              # Absolute path on disk
    root: str                              # Configured root containing it
    logical_path: str                      # Path relative to that root
    kind: str                              # DocumentKind value
    id: Optional[str] = None               # Metadata ID
    capability_id: Optional[str] = None    # Parent (enablers only)
    title: Optional[str] = None            # First '# ' heading
    name: Optional[str] = None             # Metadata Name

    @property
    def directory(self) -> str:
        return str(Path(self.path).parent)


# =============================================================================
# REPORTS
# =============================================================================

class SkippedTarget(msgspec.Struct, kw_only=True, frozen=True):
    """A peer document a multi-document pass could not patch."""
    target: str
    reason: str


class SyncReport(msgspec.Struct, kw_only=True):
    """Outcome of one dependency synchronization pass."""
    capability_id: str
    updated: List[str] = []        # Peer capability ids whose file changed
    unchanged: List[str] = []      # Peers visited but already consistent
    skipped: List[SkippedTarget] = []
    missing: List[str] = []        # Declared peers with no document

    @property
    def ok(self) -> bool:
        return not self.skipped


class ReparentReport(msgspec.Struct, kw_only=True):
    """
    Outcome of a reparenting sequence.

    Steps are independent: a failed step is recorded in `errors` and the
    remaining steps still run. Nothing is rolled back.
    """
    enabler_id: str
    old_capability_id: Optional[str] = None
    new_capability_id: Optional[str] = None
    removed_from_old: bool = False
    added_to_new: bool = False
    moved: bool = False
    metadata_updated: bool = False
    new_path: Optional[str] = None
    errors: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.errors


class EnablerSaveReport(msgspec.Struct, kw_only=True):
    """Outcome of saving an Enabler document through the save flow."""
    path: str
    enabler_id: Optional[str] = None
    capability_id: Optional[str] = None
    mirrored: bool = False
    reparent: Optional[ReparentReport] = None

    @property
    def reparented(self) -> bool:
        return self.reparent is not None


class DeleteReport(msgspec.Struct, kw_only=True):
    """Outcome of deleting a document."""
    path: str
    backup: str
    detached_from: Optional[str] = None   # Parent capability the row was removed from


class CapabilityDependencies(msgspec.Struct, kw_only=True):
    """A capability with its declared edges and owned enablers."""
    id: str
    name: str
    path: str
    upstream: List[DependencyLink] = []
    downstream: List[DependencyLink] = []
    enablers: List[str] = []
