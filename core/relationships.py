"""
SPECGRAPH RELATIONSHIP MANAGER - Enabler Ownership

Keeps the Capability -> Enabler ownership edge consistent across the three
artifacts that spell it out:

1. The Enabler's own `Capability ID` field (the source of truth)
2. The parent capability's `## Enablers` table (a cached copy of five fields)
3. The physical directory of the Enabler file (beside its parent)

Operations:
- create_enabler: Place a new Enabler beside its parent and mirror its row
- save_enabler_fields: Re-mirror the five summary fields into the parent row
- reparent: Move ownership to another capability in four independent steps
- save_enabler: The full save flow (write, reparent if needed, mirror)
- remove_enabler: Detach the parent row, then delete the file (with backup)

Reparenting is NOT a transaction. Each step is idempotent and a failed step
is recorded in the ReparentReport while the following steps still run; the
Enabler's own Capability ID field is what a later save reconciles against.
"""
from pathlib import Path
from datetime import date
from typing import Any, Callable, Mapping, Optional, Union
import logging

from core.errors import (
    DestinationExistsError,
    DocumentNotFoundError,
    ParseFailureError,
)
from core.metadata import (
    count_table_rows,
    extract_field,
    extract_title,
    has_table,
    normalize_value,
    remove_table_row,
    upsert_fields,
    upsert_table_row,
    upsert_title,
)
from core.ontology import (
    FIELD_APPROVAL,
    FIELD_CAPABILITY_ID,
    FIELD_DESCRIPTION,
    FIELD_ID,
    FIELD_NAME,
    FIELD_PRIORITY,
    FIELD_STATUS,
    SECTION_ENABLERS,
    DocumentKind,
    IdPrefix,
    filename_for,
    is_identifier,
    slug_filename,
)
from core.schemas import DeleteReport, EnablerRecord, EnablerSaveReport, ReparentReport
from core.templates import load_template, render_enabler
from infrastructure.config import DefaultsConfig
from infrastructure.logger import MutationLogger, get_logger as get_mutation_logger

logger = logging.getLogger(__name__)

EnablerLike = Union[EnablerRecord, Mapping[str, Any]]

# Failures of a secondary document that a multi-step flow records and survives.
# Path traversal and unsupported file types are never in this list.
STEP_ERRORS = (ParseFailureError, DocumentNotFoundError, DestinationExistsError, OSError)


def enabler_record_from_text(text: str) -> EnablerRecord:
    """
    Read an Enabler's authoritative fields from its document.

    The name falls back to the title. A `Capability ID` that is still a
    template placeholder reads as no parent. Values are whitespace-normalized
    the same way table cells are, so a mirrored row compares equal.
    """
    parent = extract_field(text, FIELD_CAPABILITY_ID)
    identifier = extract_field(text, FIELD_ID)
    return EnablerRecord(
        id=identifier if is_identifier(identifier, IdPrefix.ENB.value) else None,
        name=normalize_value(extract_field(text, FIELD_NAME) or extract_title(text)),
        description=normalize_value(extract_field(text, FIELD_DESCRIPTION)),
        status=normalize_value(extract_field(text, FIELD_STATUS)),
        approval=normalize_value(extract_field(text, FIELD_APPROVAL)),
        priority=normalize_value(extract_field(text, FIELD_PRIORITY)),
        capability_id=parent if is_identifier(parent, IdPrefix.CAP.value) else None,
    )


def _as_record(enabler: EnablerLike) -> EnablerRecord:
    if isinstance(enabler, EnablerRecord):
        return enabler
    return EnablerRecord.from_mapping(enabler)


class RelationshipManager:
    """
    Usage:
        manager = RelationshipManager(repository, defaults=config.defaults)

        path = manager.create_enabler(
            {"id": "ENB-654321", "name": "Card Gateway", "status": "In Draft"},
            "CAP-100001",
        )
        report = manager.reparent("ENB-654321", "Card Gateway", "CAP-100001", "CAP-100002")
        assert report.ok
    """

    def __init__(
        self,
        repository,
        defaults: Optional[DefaultsConfig] = None,
        templates_dir: Optional[Path] = None,
        mutation_logger: Optional[MutationLogger] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self._repository = repository
        self._defaults = defaults or DefaultsConfig()
        self._templates_dir = templates_dir
        self._mutations = mutation_logger
        self._today = today or date.today

    @property
    def mutations(self) -> MutationLogger:
        return self._mutations or get_mutation_logger()

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_enabler(self, enabler: EnablerLike, capability_id: Optional[str] = None) -> Path:
        """
        Create (or update) an Enabler document beside its parent capability.

        The file lands in the parent's directory, or the default root when the
        parent cannot be found. Its name comes from the numeric ID, so creating
        the same Enabler twice updates the existing file instead.

        Returns:
            Path of the Enabler document.
        """
        record = _as_record(enabler)
        capability_id = (capability_id or record.capability_id or "").strip() or None

        directory = None
        if capability_id:
            directory = self._repository.find_capability_directory(capability_id)
        if directory is None:
            directory = self._repository.default_root
            logger.info("Placing enabler %s in default root %s", record.id or record.name, directory)

        extension = self._repository.document_extension
        if is_identifier(record.id, IdPrefix.ENB.value):
            filename = filename_for(record.id, extension)
        else:
            filename = slug_filename(record.name or "enabler", DocumentKind.ENABLER, extension)
        path = Path(directory) / filename

        if path.is_file():
            logger.info("Enabler file %s exists, updating metadata", path)
            self._repository.edit(path, lambda text: self._apply_fields(text, record, capability_id))
        else:
            template = load_template(self._templates_dir)
            text = render_enabler(template, record, capability_id, self._defaults, self._today())
            self._repository.write(path, text)
            logger.info("Created enabler %s at %s", record.id or record.name, path)

        if capability_id and record.id:
            # Mirror what the document now says, template defaults included.
            self.save_enabler_fields(enabler_record_from_text(self._repository.read(path)), capability_id)
        return path

    @staticmethod
    def _apply_fields(text: str, record: EnablerRecord, capability_id: Optional[str]) -> str:
        text = upsert_fields(text, {
            FIELD_NAME: record.name or None,
            FIELD_STATUS: record.status or None,
            FIELD_APPROVAL: record.approval or None,
            FIELD_PRIORITY: record.priority or None,
            FIELD_DESCRIPTION: record.description or None,
            FIELD_CAPABILITY_ID: capability_id,
        })
        if record.name:
            text = upsert_title(text, record.name)
        return text

    # =========================================================================
    # FIELD MIRRORING
    # =========================================================================

    def save_enabler_fields(self, enabler: EnablerLike, capability_id: str) -> bool:
        """
        Upsert the Enabler's row in its parent's Enablers table.

        The parent is located by its metadata ID. A missing parent or table is
        logged, never raised.

        Returns:
            True if the parent row now matches the Enabler.
        """
        record = _as_record(enabler)
        if not record.id:
            logger.warning("Cannot mirror an enabler without an ID into %s", capability_id)
            return False

        parent = self._repository.find_by_id(capability_id, DocumentKind.CAPABILITY)
        if parent is None:
            logger.warning("Parent capability %s of %s not found, row not mirrored", capability_id, record.id)
            return False

        try:
            changed = self._repository.edit(
                Path(parent.path),
                lambda text: upsert_table_row(text, SECTION_ENABLERS, record.id, record.row_values()),
            )
        except (ParseFailureError, DocumentNotFoundError) as e:
            logger.warning("Could not mirror %s into %s: %s", record.id, capability_id, e)
            return False

        if changed:
            self.mutations.log_row_upserted(capability_id, SECTION_ENABLERS, record.id)
        return True

    # =========================================================================
    # REPARENTING
    # =========================================================================

    def reparent(
        self,
        enabler_id: str,
        enabler_name: str,
        old_capability_id: Optional[str],
        new_capability_id: Optional[str],
        enabler_path: Optional[Path] = None,
    ) -> ReparentReport:
        """
        Move an Enabler from one capability to another.

        Steps (each runs even if an earlier one failed):
            a. remove the row from the old parent's Enablers table
            b. add a placeholder row to the new parent's table if absent
            c. move the file into the new parent's directory (if different)
            d. stamp the Enabler's own Capability ID field

        Args:
            enabler_path: Location of the Enabler file when the caller already
                          knows it (otherwise found by metadata ID)
        """
        report = ReparentReport(
            enabler_id=enabler_id,
            old_capability_id=old_capability_id or None,
            new_capability_id=new_capability_id or None,
        )
        logger.info("Reparenting %s: %s -> %s", enabler_id, old_capability_id, new_capability_id)

        if old_capability_id:
            self._detach_row(enabler_id, old_capability_id, report)

        new_parent = None
        if new_capability_id:
            new_parent = self._repository.find_by_id(new_capability_id, DocumentKind.CAPABILITY)
            if new_parent is None:
                self._step_failed(report, f"new parent {new_capability_id} not found")
            else:
                self._attach_placeholder_row(enabler_id, enabler_name, new_parent, report)

        path = Path(enabler_path) if enabler_path else None
        if path is None:
            ref = self._repository.find_by_id(enabler_id, DocumentKind.ENABLER)
            path = Path(ref.path) if ref else None
        if path is None:
            self._step_failed(report, f"enabler document {enabler_id} not found")
            return report

        if new_parent is not None:
            path = self._move_beside(path, Path(new_parent.path).parent, report)
        report.new_path = str(path)

        if new_capability_id:
            try:
                self._repository.edit(
                    path, lambda text: upsert_fields(text, {FIELD_CAPABILITY_ID: new_capability_id})
                )
                report.metadata_updated = True
            except STEP_ERRORS as e:
                self._step_failed(report, f"stamping {FIELD_CAPABILITY_ID} on {path} failed: {e}")

        if report.ok:
            logger.info("Reparented %s to %s", enabler_id, new_capability_id)
        return report

    def _detach_row(self, enabler_id: str, capability_id: str, report: ReparentReport) -> None:
        parent = self._repository.find_by_id(capability_id, DocumentKind.CAPABILITY)
        if parent is None:
            self._step_failed(report, f"old parent {capability_id} not found")
            return

        def drop(text: str) -> str:
            if not has_table(text, SECTION_ENABLERS):
                return text
            return remove_table_row(text, SECTION_ENABLERS, enabler_id)

        try:
            if self._repository.edit(Path(parent.path), drop):
                self.mutations.log_row_removed(capability_id, SECTION_ENABLERS, enabler_id)
            report.removed_from_old = True
        except STEP_ERRORS as e:
            self._step_failed(report, f"removing {enabler_id} from {capability_id} failed: {e}")

    def _attach_placeholder_row(self, enabler_id: str, enabler_name: str, parent, report: ReparentReport) -> None:
        defaults = self._defaults
        values = (enabler_name or "", "", defaults.row_status, defaults.row_approval, defaults.row_priority)

        def add(text: str) -> str:
            if count_table_rows(text, SECTION_ENABLERS, enabler_id):
                return text
            return upsert_table_row(text, SECTION_ENABLERS, enabler_id, values)

        try:
            if self._repository.edit(Path(parent.path), add):
                self.mutations.log_row_upserted(parent.id, SECTION_ENABLERS, enabler_id)
            report.added_to_new = True
        except STEP_ERRORS as e:
            self._step_failed(report, f"adding {enabler_id} to {parent.id} failed: {e}")

    def _move_beside(self, path: Path, directory: Path, report: ReparentReport) -> Path:
        destination = directory / path.name
        if destination.resolve() == path.resolve():
            return path
        try:
            self._repository.move(path, destination)
            report.moved = True
            return destination
        except STEP_ERRORS as e:
            self._step_failed(report, f"moving {path} to {directory} failed: {e}")
            return path

    @staticmethod
    def _step_failed(report: ReparentReport, message: str) -> None:
        logger.warning("%s: %s", report.enabler_id, message)
        report.errors.append(message)

    # =========================================================================
    # SAVE / DELETE FLOWS
    # =========================================================================

    def save_enabler(
        self,
        logical_path: str,
        text: str,
        original_capability_id: Optional[str] = None,
    ) -> EnablerSaveReport:
        """
        Save an Enabler document and propagate its relationships.

        1. Write the document itself (failures raise)
        2. Reparent when the declared parent differs from the previous one
        3. Mirror the summary fields into the (new) parent's row

        Args:
            original_capability_id: Parent before this edit. When omitted it
                                    is read from the file being replaced.
        """
        path = self._repository.resolve_for_write(logical_path)
        if original_capability_id is None and path.is_file():
            original_capability_id = enabler_record_from_text(self._repository.read(path)).capability_id

        self._repository.write(path, text)

        record = enabler_record_from_text(text)
        report = EnablerSaveReport(path=str(path), enabler_id=record.id, capability_id=record.capability_id)
        if record.id is None:
            logger.warning("Saved enabler %s has no ID; relationships left untouched", path)
            return report

        previous = (original_capability_id or "").strip() or None
        if previous != record.capability_id:
            report.reparent = self.reparent(
                record.id, record.name, previous, record.capability_id, enabler_path=path
            )
            if report.reparent.new_path:
                report.path = report.reparent.new_path

        if record.capability_id:
            report.mirrored = self.save_enabler_fields(record, record.capability_id)
        return report

    def remove_enabler(self, path: Path) -> DeleteReport:
        """Drop the Enabler's row from its parent, then delete the file."""
        path = Path(path)
        record = enabler_record_from_text(self._repository.read(path))

        detached = None
        if record.id and record.capability_id:
            scratch = ReparentReport(enabler_id=record.id)
            self._detach_row(record.id, record.capability_id, scratch)
            if scratch.removed_from_old:
                detached = record.capability_id

        backup = self._repository.delete(path)
        return DeleteReport(path=str(path), backup=str(backup), detached_from=detached)
