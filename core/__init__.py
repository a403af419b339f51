"""
SPECGRAPH CORE - Central exports for the document-graph consistency engine.

This module provides access to:
- The engine facade (DocumentGraphEngine, get_engine)
- The components it wires together (repository, allocator, synchronizer,
  relationship manager)
- The corpus audit (CorpusGraph, CorpusInvariants)
- The error vocabulary
"""

__version__ = "1.0.0"

from core.errors import (
    DocumentGraphError,
    PathTraversalError,
    UnsupportedFileTypeError,
    DocumentNotFoundError,
    DestinationExistsError,
    ParseFailureError,
    CollisionExhaustedError,
)
from core.ontology import DocumentKind, IdPrefix
from core.repository import DocumentRepository
from core.identifiers import IdentifierAllocator
from core.dependency_sync import DependencyGraphSynchronizer
from core.relationships import RelationshipManager
from core.corpus_graph import CorpusGraph
from core.graph_invariants import CorpusInvariants, InvariantReport
from core.engine import DocumentGraphEngine, get_engine, set_engine, reset_engine

__all__ = [
    "__version__",
    # Errors
    "DocumentGraphError",
    "PathTraversalError",
    "UnsupportedFileTypeError",
    "DocumentNotFoundError",
    "DestinationExistsError",
    "ParseFailureError",
    "CollisionExhaustedError",
    # Vocabulary
    "DocumentKind",
    "IdPrefix",
    # Components
    "DocumentRepository",
    "IdentifierAllocator",
    "DependencyGraphSynchronizer",
    "RelationshipManager",
    "CorpusGraph",
    "CorpusInvariants",
    "InvariantReport",
    # Engine
    "DocumentGraphEngine",
    "get_engine",
    "set_engine",
    "reset_engine",
]
