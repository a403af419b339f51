"""
Unit tests for core.repository - path resolution, backup-before-write,
moves, and corpus scanning.
"""
import os
from pathlib import Path

import pytest

from core.errors import (
    DestinationExistsError,
    DocumentNotFoundError,
    ParseFailureError,
    PathTraversalError,
    UnsupportedFileTypeError,
)
from core.ontology import DocumentKind
from core.repository import DocumentRepository
from infrastructure.logger import MutationType

from conftest import build_capability, build_enabler, read_text, write_text


# =============================================================================
# RESOLUTION
# =============================================================================

class TestResolve:
    """Tests for DocumentRepository.resolve / locate."""

    def test_relative_path_under_default_root(self, repository, roots):
        assert repository.resolve("payments/100001-capability.md") == roots[0] / "payments" / "100001-capability.md"

    def test_explicit_root(self, repository, roots):
        assert repository.resolve("x.md", roots[1]) == roots[1] / "x.md"

    def test_inner_dotdot_normalized(self, repository, roots):
        assert repository.resolve("a/../b.md") == roots[0] / "b.md"

    def test_backslashes_normalized(self, repository, roots):
        assert repository.resolve("a\\b.md") == roots[0] / "a" / "b.md"

    @pytest.mark.parametrize("bad", ["../outside.md", "a/../../outside.md", "../root_b/x.md"])
    def test_escape_rejected(self, repository, bad):
        with pytest.raises(PathTraversalError):
            repository.resolve(bad)

    def test_absolute_rejected(self, repository, roots):
        with pytest.raises(PathTraversalError):
            repository.resolve(str(roots[0] / "x.md"))

    def test_empty_rejected(self, repository):
        with pytest.raises(PathTraversalError):
            repository.resolve("  ")

    @pytest.mark.parametrize("excluded", ["node_modules/x.md", "lib/site-packages/x.md", ".git/x.md"])
    def test_excluded_directories_rejected(self, repository, excluded):
        with pytest.raises(PathTraversalError):
            repository.resolve(excluded)

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlink_escape_rejected(self, repository, roots, temp_dir):
        outside = temp_dir / "outside"
        outside.mkdir()
        try:
            os.symlink(outside, roots[0] / "link")
        except OSError:
            pytest.skip("cannot create symlinks here")
        with pytest.raises(PathTraversalError):
            repository.resolve("link/secret.md")

    def test_locate_searches_every_root(self, repository, corpus, roots):
        assert repository.locate("ledger/100002-capability.md") == corpus["CAP-100002"]
        assert repository.locate("ledger/nope.md") is None

    def test_resolve_for_write_prefers_existing(self, repository, corpus, roots):
        assert repository.resolve_for_write("ledger/100002-capability.md") == corpus["CAP-100002"]
        assert repository.resolve_for_write("new/x.md") == roots[0] / "new" / "x.md"

    def test_root_for_and_logical_path(self, repository, corpus, roots):
        assert repository.root_for(corpus["CAP-100002"]) == roots[1]
        assert repository.logical_path(corpus["CAP-100002"]) == "ledger/100002-capability.md"

    def test_needs_a_root(self):
        with pytest.raises(ValueError):
            DocumentRepository([])


# =============================================================================
# READ / WRITE
# =============================================================================

class TestReadWrite:
    """Tests for read, write and edit."""

    def test_new_file_has_no_backup(self, repository, roots):
        path = roots[0] / "new" / "doc.md"
        assert repository.write(path, "hello\n") is None
        assert read_text(path) == "hello\n"

    def test_overwrite_backs_up_previous_version(self, repository, corpus):
        path = corpus["CAP-100002"]
        original = read_text(path)
        backup = repository.write(path, "replaced\n")

        assert backup.parent == path.parent / "backup"
        assert backup.name.startswith("100002-capability.md.backup.")
        assert read_text(backup) == original
        assert read_text(path) == "replaced\n"

    def test_backups_accumulate(self, roots, mutation_logger):
        repository = DocumentRepository(roots, mutation_logger=mutation_logger, clock=lambda: 1.0)
        path = write_text(roots[0] / "doc.md", "v1\n")
        first = repository.write(path, "v2\n")
        second = repository.write(path, "v3\n")
        assert first != second
        assert read_text(first) == "v1\n"
        assert read_text(second) == "v2\n"

    def test_line_endings_preserved(self, repository, roots):
        path = roots[0] / "crlf.md"
        repository.write(path, "a\r\nb\r\n")
        assert repository.read(path) == "a\r\nb\r\n"

    def test_unsupported_extension(self, repository, roots):
        path = write_text(roots[0] / "notes.txt", "x")
        with pytest.raises(UnsupportedFileTypeError):
            repository.read(path)
        with pytest.raises(UnsupportedFileTypeError):
            repository.write(path, "y")
        with pytest.raises(UnsupportedFileTypeError):
            repository.delete(path)
        assert read_text(path) == "x"

    def test_outside_roots_rejected(self, repository, temp_dir):
        path = write_text(temp_dir / "elsewhere.md", "x")
        with pytest.raises(PathTraversalError):
            repository.read(path)
        with pytest.raises(PathTraversalError):
            repository.write(path, "y")

    def test_read_missing(self, repository, roots):
        with pytest.raises(DocumentNotFoundError):
            repository.read(roots[0] / "missing.md")

    def test_undecodable_document(self, repository, roots):
        path = roots[0] / "legacy" / "100009-capability.md"
        path.parent.mkdir()
        path.write_bytes(build_capability("CAP-100009", "Caf\u00e9").encode("latin-1"))
        with pytest.raises(ParseFailureError):
            repository.read(path)
        with pytest.raises(ParseFailureError):
            repository.edit(path, lambda text: text + "x")
        assert repository.find_by_id("CAP-100009") is not None

    def test_edit_skips_unchanged(self, repository, corpus):
        path = corpus["CAP-100002"]
        assert repository.edit(path, lambda text: text) is False
        assert not (path.parent / "backup").exists()

    def test_edit_writes_changes(self, repository, corpus):
        path = corpus["CAP-100002"]
        assert repository.edit(path, lambda text: text.replace("Ledger", "General Ledger")) is True
        assert "General Ledger" in read_text(path)
        assert (path.parent / "backup").is_dir()

    def test_edit_failure_leaves_file(self, repository, corpus):
        path = corpus["CAP-100002"]
        before = read_text(path)

        def boom(text):
            raise RuntimeError("transform failed")

        with pytest.raises(RuntimeError):
            repository.edit(path, boom)
        assert read_text(path) == before

    def test_writes_are_journaled(self, repository, corpus, mutation_logger):
        path = corpus["CAP-100002"]
        repository.write(path, "x\n")
        types = [e.mutation_type for e in mutation_logger.get_events_for_document(str(path))]
        assert MutationType.BACKUP_CREATED.value in types
        assert MutationType.DOCUMENT_WRITTEN.value in types


# =============================================================================
# DELETE / MOVE / RENAME
# =============================================================================

class TestDeleteMove:
    """Tests for delete, move and rename."""

    def test_delete_backs_up(self, repository, corpus):
        path = corpus["CAP-100002"]
        original = read_text(path)
        backup = repository.delete(path)
        assert not path.exists()
        assert ".deleted." in backup.name
        assert read_text(backup) == original

    def test_delete_missing(self, repository, roots):
        with pytest.raises(DocumentNotFoundError):
            repository.delete(roots[0] / "missing.md")

    def test_move_across_roots(self, repository, corpus, roots):
        source = corpus["ENB-654321"]
        destination = roots[1] / "ledger" / source.name
        assert repository.move(source, destination) == destination
        assert destination.is_file()
        assert not source.exists()

    def test_move_creates_directories(self, repository, corpus, roots):
        destination = roots[1] / "deep" / "er" / "654321-enabler.md"
        repository.move(corpus["ENB-654321"], destination)
        assert destination.is_file()

    def test_move_collision(self, repository, corpus, roots):
        destination = write_text(roots[1] / "ledger" / "654321-enabler.md", "occupied\n")
        with pytest.raises(DestinationExistsError):
            repository.move(corpus["ENB-654321"], destination)
        assert corpus["ENB-654321"].is_file()
        assert read_text(destination) == "occupied\n"

    def test_move_missing_source(self, repository, roots):
        with pytest.raises(DocumentNotFoundError):
            repository.move(roots[0] / "missing.md", roots[1] / "missing.md")

    def test_same_path_move_is_noop(self, repository, corpus):
        path = corpus["ENB-654321"]
        assert repository.move(path, path) == path
        assert path.is_file()

    def test_rename(self, repository, corpus, roots):
        new_path = repository.rename("ledger/100002-capability.md", "ledger/ledger-capability.md")
        assert new_path == roots[1] / "ledger" / "ledger-capability.md"
        assert new_path.is_file()
        assert not corpus["CAP-100002"].exists()

    def test_rename_missing(self, repository, corpus):
        with pytest.raises(DocumentNotFoundError):
            repository.rename("nope.md", "other.md")

    def test_rename_onto_existing(self, repository, corpus):
        with pytest.raises(DestinationExistsError):
            repository.rename("payments/654321-enabler.md", "payments/100001-capability.md")


# =============================================================================
# SCANNING
# =============================================================================

class TestScan:
    """Tests for corpus scanning."""

    def test_scan_classifies(self, repository, corpus):
        refs = {ref.id: ref for ref in repository.scan()}
        assert refs["CAP-100001"].kind == DocumentKind.CAPABILITY.value
        assert refs["ENB-654321"].kind == DocumentKind.ENABLER.value
        assert refs["ENB-654321"].capability_id == "CAP-100001"
        assert refs["CAP-100002"].logical_path == "ledger/100002-capability.md"

    def test_kind_filters(self, repository, corpus):
        assert sorted(r.id for r in repository.capabilities()) == ["CAP-100001", "CAP-100002"]
        assert [r.id for r in repository.enablers()] == ["ENB-654321"]

    def test_type_field_classifies_other_names(self, repository, roots):
        write_text(roots[0] / "gateway.md", build_enabler("ENB-111111", "G", "CAP-100001"))
        assert [r.id for r in repository.enablers()] == ["ENB-111111"]

    def test_backups_and_excluded_dirs_skipped(self, repository, corpus, roots):
        repository.write(corpus["CAP-100002"], read_text(corpus["CAP-100002"]) + "more\n")
        write_text(roots[0] / "node_modules" / "pkg" / "999999-capability.md",
                   build_capability("CAP-999999", "Vendored"))
        ids = sorted(r.id for r in repository.scan())
        assert ids == ["CAP-100001", "CAP-100002", "ENB-654321"]

    def test_find_by_id_uses_metadata(self, repository, roots):
        write_text(roots[1] / "misnamed" / "100001-capability.md", build_capability("CAP-200002", "Misnamed"))
        ref = repository.find_by_id("CAP-200002")
        assert ref.path == str(roots[1] / "misnamed" / "100001-capability.md")
        assert repository.find_by_id("CAP-100001") is None

    def test_find_capability_directory(self, repository, corpus):
        assert repository.find_capability_directory("CAP-100002") == corpus["CAP-100002"].parent
        assert repository.find_capability_directory("CAP-999999") is None

    def test_placeholder_parent_reads_as_none(self, repository, roots):
        write_text(roots[0] / "x-enabler.md", build_enabler("ENB-222222", "X", "CAP-XXXXXX (Parent Capability)"))
        assert repository.find_by_id("ENB-222222").capability_id is None

    def test_missing_roots_tolerated(self, temp_dir, mutation_logger):
        repository = DocumentRepository([temp_dir / "nope"], mutation_logger=mutation_logger)
        assert repository.scan() == []

    def test_from_config(self, roots):
        from infrastructure.config import EngineConfig
        repository = DocumentRepository.from_config(EngineConfig.for_roots(roots))
        assert repository.roots == [Path(r) for r in roots]
