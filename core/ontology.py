"""
SPECGRAPH ONTOLOGY - The Dictionary of the Document Graph

If schemas.py is the Grammar (how we structure records),
ontology.py is the Dictionary (the words the corpus is allowed to use).

This module defines:
- Enums: The vocabulary (DocumentKind, IdPrefix)
- Field labels: The `- **Label**: value` keys the engine reads and writes
- Section headings: The tables the engine patches
- Filename conventions: How an Identifier maps to a file on disk

Key Principle: The corpus IS the database.
There is no index file. Every relationship the engine maintains is spelled
out in these words inside plain markdown documents.
"""
from typing import Optional
from enum import Enum
import re


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class DocumentKind(str, Enum):
    """Kinds of documents found in the corpus."""
    CAPABILITY = "capability"    # High-level function, owns enablers and edges
    ENABLER = "enabler"          # Concrete implementation unit, one parent
    DOCUMENT = "document"        # Anything else with the document extension


class IdPrefix(str, Enum):
    """Identifier namespaces. Uniqueness holds per prefix across all roots."""
    CAP = "CAP"
    ENB = "ENB"
    FR = "FR"
    NFR = "NFR"


# =============================================================================
# FIELD LABELS
# =============================================================================

FIELD_NAME = "Name"
FIELD_TYPE = "Type"
FIELD_ID = "ID"
FIELD_CAPABILITY_ID = "Capability ID"
FIELD_DESCRIPTION = "Description"
FIELD_STATUS = "Status"
FIELD_APPROVAL = "Approval"
FIELD_PRIORITY = "Priority"
FIELD_SYSTEM = "System"
FIELD_COMPONENT = "Component"


# =============================================================================
# SECTION HEADINGS
# =============================================================================

SECTION_METADATA = "Metadata"
SECTION_ENABLERS = "Enablers"
SECTION_UPSTREAM = "Internal Upstream Dependency"
SECTION_DOWNSTREAM = "Internal Downstream Impact"

ENABLER_TABLE_HEADER = ("Enabler ID", "Name", "Description", "Status", "Approval", "Priority")
DEPENDENCY_TABLE_HEADER = ("Capability ID", "Description")

REVERSE_DEPENDENCY_DESCRIPTION = "Auto-generated reverse dependency"


# =============================================================================
# IDENTIFIERS & FILENAMES
# =============================================================================

DOCUMENT_EXTENSION = ".md"
ID_DIGITS = 6

_FILENAME_MARKERS = {
    DocumentKind.CAPABILITY: "-capability",
    DocumentKind.ENABLER: "-enabler",
}

_PREFIX_KINDS = {
    IdPrefix.CAP.value: DocumentKind.CAPABILITY,
    IdPrefix.ENB.value: DocumentKind.ENABLER,
}

IDENTIFIER_RE = re.compile(r"^(CAP|ENB|FR|NFR)-(\d{6})$")


def id_pattern(prefix: str) -> re.Pattern:
    """Regex matching every `{prefix}-NNNNNN` occurrence in free text."""
    return re.compile(r"\b" + re.escape(prefix) + r"-(\d{6})\b")


def is_identifier(value: Optional[str], prefix: Optional[str] = None) -> bool:
    """True if value is a well-formed Identifier (optionally of one prefix)."""
    if not value:
        return False
    match = IDENTIFIER_RE.match(value.strip())
    if not match:
        return False
    return prefix is None or match.group(1) == prefix


def numeric_suffix(identifier: str) -> str:
    """'ENB-654321' -> '654321'. Raises ValueError for malformed ids."""
    match = IDENTIFIER_RE.match(identifier.strip())
    if not match:
        raise ValueError(f"Not an identifier: {identifier!r}")
    return match.group(2)


def kind_for_prefix(identifier: str) -> Optional[DocumentKind]:
    """Document kind an identifier names, or None for FR/NFR ids."""
    match = IDENTIFIER_RE.match(identifier.strip())
    if not match:
        return None
    return _PREFIX_KINDS.get(match.group(1))


def filename_for(identifier: str, extension: str = DOCUMENT_EXTENSION) -> str:
    """
    Derive the on-disk filename of a node document.

    CAP-100001 -> 100001-capability.md
    ENB-654321 -> 654321-enabler.md
    """
    kind = kind_for_prefix(identifier)
    if kind is None:
        raise ValueError(f"No document filename for identifier {identifier!r}")
    return f"{numeric_suffix(identifier)}{_FILENAME_MARKERS[kind]}{extension}"


def slug_filename(name: str, kind: DocumentKind, extension: str = DOCUMENT_EXTENSION) -> str:
    """Filename for a node that has no identifier yet (lowercase slug of its name)."""
    slug = re.sub(r"[^a-z0-9-]", "-", name.lower())
    return f"{slug}{_FILENAME_MARKERS[kind]}{extension}"


def kind_for_filename(filename: str, extension: str = DOCUMENT_EXTENSION) -> DocumentKind:
    """Classify a document by its filename marker."""
    for kind, marker in _FILENAME_MARKERS.items():
        if filename.endswith(marker + extension):
            return kind
    return DocumentKind.DOCUMENT
