"""
SPECGRAPH ERRORS - Failure vocabulary of the consistency engine.

Security failures (PathTraversalError, UnsupportedFileTypeError) always abort
the single requested operation. Multi-document passes treat ParseFailureError
and DocumentNotFoundError on peer documents as recoverable.
"""
from typing import Optional


class DocumentGraphError(Exception):
    """Base exception for document graph operations."""
    pass


class PathTraversalError(DocumentGraphError):
    """Raised when a path escapes its root or lands in an excluded directory."""
    def __init__(self, path: str, root: Optional[str] = None, reason: str = "path traversal detected"):
        self.path = path
        self.root = root
        self.reason = reason
        where = f" (root: {root})" if root else ""
        super().__init__(f"Invalid path {path!r}{where}: {reason}")


class UnsupportedFileTypeError(DocumentGraphError):
    """Raised when an operation targets a file without the document extension."""
    def __init__(self, path: str, extension: str):
        self.path = path
        self.extension = extension
        super().__init__(f"Only {extension} files are supported: {path}")


class DocumentNotFoundError(DocumentGraphError):
    """Raised when a document (by path or identifier) does not exist."""
    def __init__(self, target: str):
        self.target = target
        super().__init__(f"Document not found: {target}")


class DestinationExistsError(DocumentGraphError):
    """Raised when a move or rename would overwrite an existing file."""
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Target file already exists: {path}")


class ParseFailureError(DocumentGraphError):
    """Raised when a field, section or table is not where the format expects it."""
    def __init__(self, message: str, section: Optional[str] = None):
        self.section = section
        super().__init__(message)


class CollisionExhaustedError(DocumentGraphError):
    """Raised when no free identifier is left in a prefix namespace."""
    def __init__(self, prefix: str):
        self.prefix = prefix
        super().__init__(f"No free identifier left for prefix {prefix}")
