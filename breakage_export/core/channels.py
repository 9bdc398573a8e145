"""
Export channels.

Both channels walk the reason catalog, consolidate each reason, encode
the records and write one file per reason. A failure while handling one
reason is recorded and the loop moves on to the next reason.

Channel guarantees:
1. Internal - app-private tree, overwritten on every run, never changes
   synchronization state
2. Public - user-granted directory, marks a reason's backlog synchronized
   only after its file was written

Only one export runs at a time in a process.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional

from breakage_export.storage.models import ConsolidatedRecord, Reason
from breakage_export.storage.repository import EntryRepository

from .consolidation import Consolidator
from .encoding import encode_file
from .errors import (
    ErrorKind,
    FormatError,
    PermissionDenied,
    ReasonError,
    UnsupportedPlatform,
)
from .targets import TEXT_MIME, AccessRequest, LocalFileTarget, StorageTarget

logger = logging.getLogger(__name__)

EXPORTS_DIR_NAME = "motivos"

NO_REASONS_MESSAGE = "Nenhum motivo encontrado no sistema"
NO_PENDING_MESSAGE = "Nenhum motivo com lançamentos pendentes encontrado"

# Failures that stay inside a single reason
_ISOLATED_ERRORS = (FormatError, OSError, sqlite3.Error)

_export_lock = threading.Lock()


def reason_dir_name(reason_code: str) -> str:
    return f"motivo{reason_code.zfill(2)}"


def export_file_name(reason_code: str, day: date) -> str:
    """Build ``motivo<NN>_<YYYYMMDD>.txt`` for a reason and export day."""
    return f"{reason_dir_name(reason_code)}_{day:%Y%m%d}.txt"


def _reason_error(reason: Reason, exc: Exception) -> ReasonError:
    if isinstance(exc, FormatError):
        kind = ErrorKind.FORMAT
    elif isinstance(exc, OSError):
        kind = ErrorKind.IO
    else:
        kind = ErrorKind.STORE
    error = ReasonError(reason_code=reason.code, kind=kind, detail=str(exc))
    logger.error("%s", error)
    return error


def _summary(written: int, errors: List[ReasonError], noun: str, detail: str = "") -> str:
    parts = []
    if written:
        parts.append(f"{written} {noun} exportado(s) com sucesso{detail}")
    if errors:
        parts.append(f"{len(errors)} erro(s) encontrado(s)")
    return "\n".join(parts)


@dataclass
class InternalExportResult:
    """Outcome of an internal export run."""
    success: bool
    exported_reason_codes: List[str] = field(default_factory=list)
    errors: List[ReasonError] = field(default_factory=list)
    message: str = ""


@dataclass
class PublicExportResult:
    """Outcome of a public export run."""
    success: bool
    saved_files: List[str] = field(default_factory=list)
    location: str = ""
    errors: List[ReasonError] = field(default_factory=list)
    message: str = ""


@dataclass
class ExportedFileGroup:
    """Files found in one reason folder of the internal tree."""
    reason_dir: str
    files: List[str]


class InternalChannel:
    """Writes repeatable snapshots into ``<root>/motivos/motivo<NN>/``.

    Includes every entry regardless of synchronization state, so two runs
    without new submissions produce identical files.
    """

    def __init__(
        self,
        repository: EntryRepository,
        root: Path,
        target: Optional[StorageTarget] = None,
        today: Callable[[], date] = date.today
    ):
        self.repository = repository
        self.consolidator = Consolidator(repository)
        self.base_dir = Path(root) / EXPORTS_DIR_NAME
        self.target = target or LocalFileTarget()
        self.today = today

    def export(self) -> InternalExportResult:
        """Write one file per reason with all of its entries."""
        with _export_lock:
            return self._run(
                lambda reason: self.consolidator.consolidate(reason.id, include_all=True)
            )

    def export_day(self, day: Optional[date] = None) -> InternalExportResult:
        """Write one file per reason with only the entries of ``day``.

        Entries written this way are flagged ``is_exported``. Their
        synchronization state is left alone.
        """
        day = day or self.today()
        with _export_lock:
            return self._run(
                lambda reason: self.consolidator.consolidate_day(reason.id, day),
                on_written=lambda reason: self.repository.mark_exported(reason.id, day)
            )

    def _run(
        self,
        consolidate: Callable[[Reason], List[ConsolidatedRecord]],
        on_written: Optional[Callable[[Reason], None]] = None
    ) -> InternalExportResult:
        reasons = self.repository.get_active_reasons()
        if not reasons:
            return InternalExportResult(success=False, message=NO_REASONS_MESSAGE)

        exported: List[str] = []
        errors: List[ReasonError] = []
        export_day = self.today()

        for reason in reasons:
            try:
                records = consolidate(reason)
                if not records:
                    logger.info("Motivo %s - no pending entries, skipping", reason.code)
                    continue

                content = encode_file(records)
                reason_dir = self.base_dir / reason_dir_name(reason.code)
                if not self.target.exists(reason_dir):
                    self.target.create_directory(reason_dir)

                name = export_file_name(reason.code, export_day)
                handle = self.target.create_file(reason_dir, name, TEXT_MIME)
                self.target.write_all(handle, content)
                if on_written is not None:
                    on_written(reason)
            except _ISOLATED_ERRORS as e:
                errors.append(_reason_error(reason, e))
                continue

            exported.append(reason.code)
            logger.info("Motivo %s exported internally: %s (%d products)", reason.code, name, len(records))

        if not exported and not errors:
            return InternalExportResult(success=False, message=NO_PENDING_MESSAGE)

        codes = ", ".join(reason_dir_name(code) for code in exported)
        return InternalExportResult(
            success=bool(exported),
            exported_reason_codes=exported,
            errors=errors,
            message=_summary(len(exported), errors, "motivo(s)", f": {codes}")
        )

    def list_files(self) -> List[ExportedFileGroup]:
        """List the ``.txt`` files of each reason folder in the internal tree."""
        if not self.base_dir.is_dir():
            return []
        groups = []
        for reason_dir in sorted(p for p in self.base_dir.iterdir() if p.is_dir()):
            files = sorted(p.name for p in reason_dir.glob("*.txt"))
            if files:
                groups.append(ExportedFileGroup(reason_dir=reason_dir.name, files=files))
        return groups


class PublicChannel:
    """Flushes the unsynchronized backlog into a user-granted directory.

    Files land flat in the granted directory. After a file is written the
    entries that went into it are marked synchronized. Entries submitted
    or merged while the export ran stay pending for the next run. If
    marking fails the entries stay pending and the next run sends them
    again, which the downstream system absorbs by overwriting.
    """

    def __init__(
        self,
        repository: EntryRepository,
        request_access: Optional[AccessRequest],
        target: Optional[StorageTarget] = None,
        today: Callable[[], date] = date.today
    ):
        """Initialize the channel.

        Args:
            repository: Entry store to read and mark
            request_access: Asks the user for a directory. None when the
                platform has no way to grant one.
            target: File primitives, defaults to the local filesystem
            today: Supplies the date used in file names
        """
        self.repository = repository
        self.consolidator = Consolidator(repository)
        self.request_access = request_access
        self.target = target or LocalFileTarget()
        self.today = today

    def export(self) -> PublicExportResult:
        """Export every reason with pending entries.

        Raises:
            UnsupportedPlatform: If no access request is available
            PermissionDenied: If the user declines access
        """
        if self.request_access is None:
            raise UnsupportedPlatform("Exportação pública não suportada nesta plataforma")

        # Blocks on the user; no lock is held here
        grant = self.request_access()
        if not grant.granted:
            raise PermissionDenied("Acesso ao diretório negado pelo usuário")
        location = grant.directory_handle
        logger.debug("Directory access granted: %s", location)

        with _export_lock:
            return self._run(location)

    def _run(self, location) -> PublicExportResult:
        reasons = self.repository.get_active_reasons()
        if not reasons:
            return PublicExportResult(success=False, location=str(location), message=NO_REASONS_MESSAGE)

        saved_files: List[str] = []
        errors: List[ReasonError] = []
        export_day = self.today()

        for reason in reasons:
            try:
                snapshot = self.consolidator.snapshot(reason.id, include_all=False)
                records = snapshot.records
                if not records:
                    logger.info("Motivo %s - no pending entries, skipping", reason.code)
                    continue

                content = encode_file(records)
                name = export_file_name(reason.code, export_day)
                handle = self.target.create_file(location, name, TEXT_MIME)
                self.target.write_all(handle, content)
            except _ISOLATED_ERRORS as e:
                errors.append(_reason_error(reason, e))
                continue

            try:
                # Only the rows that went into the file
                self.repository.mark_synchronized(reason.id, snapshot.rows)
            except sqlite3.Error as e:
                errors.append(_reason_error(
                    reason,
                    sqlite3.Error(f"{name} gravado, mas lançamentos continuam pendentes: {e}")
                ))
                continue

            saved_files.append(name)
            logger.info("Motivo %s exported publicly: %s (%d products)", reason.code, name, len(records))

        if not saved_files and not errors:
            return PublicExportResult(success=False, location=str(location), message=NO_PENDING_MESSAGE)

        return PublicExportResult(
            success=bool(saved_files),
            saved_files=saved_files,
            location=str(location),
            errors=errors,
            message=_summary(len(saved_files), errors, "arquivo(s)")
        )
