"""
SPECGRAPH SECURITY TESTS

Security test suite for path handling at the repository boundary.

Test Categories:
1. Traversal - Lexical escapes, absolute paths, symlinks out of a root
2. Scope - Excluded dependency directories and non-document file types

Run with:
    python -m pytest tests/security/
"""
