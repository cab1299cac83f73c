"""
Storage layer for FileDesk.
Files live on the local filesystem, one subdirectory per owner, with their
metadata in the database. Paths are only ever taken from file records.
"""
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filedesk.errors import NotFound, StorageFault
from filedesk.models import FileRecord, utcnow
from filedesk.repositories import FileRecordRepository
from filedesk.uploads import MAX_FILENAME_LENGTH
from filedesk.utils import get_storage_path

logger = logging.getLogger("filedesk.storage")

OWNER_PATTERN = re.compile(r'^[A-Za-z0-9_]+$')
MAX_NAME_ATTEMPTS = 1000


def suffixed_name(filename: str, counter: int) -> str:
    """
    The counter-th alternative for filename: report.pdf -> report_1.pdf.
    The stem is shortened so the result never exceeds MAX_FILENAME_LENGTH.
    """
    if counter == 0:
        return filename
    suffix = f"_{counter}"
    stem, ext = os.path.splitext(filename)
    room = MAX_FILENAME_LENGTH - len(suffix) - len(ext)
    if room < 1:
        # extension alone fills the limit; cut the whole name instead
        return filename[:MAX_FILENAME_LENGTH - len(suffix)] + suffix
    return f"{stem[:room]}{suffix}{ext}"


@dataclass
class StoredFile:
    filename: str
    physical_path: Path
    size: int


class StorageAdapter(ABC):
    """Abstract base class for storage adapters."""

    @abstractmethod
    def create_unique(self, owner: str, filename: str, data: bytes) -> str:
        """Write data under a name not yet used by owner; return the relative path."""
        pass

    @abstractmethod
    def locate(self, relative_path: str) -> Path:
        """Absolute location for a relative path taken from a file record."""
        pass

    @abstractmethod
    def owner_root(self, owner: str) -> Path:
        """Directory every file of owner must live in."""
        pass

    @abstractmethod
    def read(self, path: Path) -> bytes:
        pass

    @abstractmethod
    def delete(self, path: Path) -> None:
        pass

    def prune_owner_dir(self, owner: str) -> None:
        """Drop whatever container held owner's files, if the backend has one."""
        pass


class FilesystemStorageAdapter(StorageAdapter):
    """
    Filesystem storage adapter.
    Stores files under <storage_path>/<owner>/<filename>.
    """

    def __init__(self, storage_path: str):
        self.root = Path(storage_path).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def owner_root(self, owner: str) -> Path:
        if not OWNER_PATTERN.match(owner or ""):
            raise StorageFault(detail=f"refusing storage directory for owner={owner!r}")
        return self.root / owner

    def create_unique(self, owner: str, filename: str, data: bytes) -> str:
        """
        Reserve and write a physical file in one step.
        O_EXCL makes the existence check and the creation a single atomic call,
        so concurrent uploads of the same name end up in different files.
        """
        directory = self.owner_root(owner)
        directory.mkdir(parents=True, exist_ok=True)
        flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0)

        for counter in range(MAX_NAME_ATTEMPTS):
            candidate = suffixed_name(filename, counter)
            path = directory / candidate
            try:
                fd = os.open(path, flags, 0o640)
            except FileExistsError:
                continue

            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
            except OSError:
                path.unlink(missing_ok=True)
                raise
            return f"{owner}/{candidate}"

        raise FileExistsError(f"no free name for {filename!r} after {MAX_NAME_ATTEMPTS} attempts")

    def locate(self, relative_path: str) -> Path:
        return (self.root / relative_path).resolve()

    def read(self, path: Path) -> bytes:
        return path.read_bytes()

    def delete(self, path: Path) -> None:
        path.unlink()

    def prune_owner_dir(self, owner: str) -> None:
        """Remove an owner's directory once it is empty."""
        try:
            self.owner_root(owner).rmdir()
        except OSError as exc:
            logger.debug("owner_dir_kept owner=%s reason=%s", owner, exc)


def get_storage_adapter() -> StorageAdapter:
    """Factory for the configured storage adapter."""
    return FilesystemStorageAdapter(get_storage_path())


class FilePathResolver:
    """Maps (owner, filename) to a physical path through file records only."""

    def __init__(self, db: Session, adapter: StorageAdapter):
        self.files = FileRecordRepository(db)
        self.adapter = adapter

    def resolve(self, owner: str, logical_filename: str) -> Path:
        record = self.files.find_by_owner_and_name(owner, logical_filename)
        if record is None:
            raise NotFound()

        path = self.adapter.locate(record.physical_path)
        owner_root = self.adapter.owner_root(owner).resolve()
        if owner_root not in path.parents:
            logger.error(
                "file_record_outside_owner_root owner=%s filename=%s file_id=%s",
                owner,
                logical_filename,
                record.file_id,
            )
            raise NotFound()
        return path


class StorageMutator:
    """Keeps physical files and their file records created and removed together."""

    def __init__(self, db: Session, adapter: Optional[StorageAdapter] = None):
        self.db = db
        self.adapter = adapter or get_storage_adapter()
        self.files = FileRecordRepository(db)
        self.resolver = FilePathResolver(db, self.adapter)

    def store(self, owner: str, logical_filename: str, data: bytes) -> StoredFile:
        """
        Write the bytes first, then the record.
        If the record cannot be written the file is removed again.
        """
        try:
            relative_path = self.adapter.create_unique(owner, logical_filename, data)
        except OSError as exc:
            logger.error("upload_write_failed owner=%s filename=%s error=%s", owner, logical_filename, exc)
            raise StorageFault(detail=str(exc)) from exc

        stored_name = relative_path.rsplit("/", 1)[-1]
        record = FileRecord(
            filename=stored_name,
            owner_username=owner,
            physical_path=relative_path,
            size=len(data),
            upload_time=utcnow(),
        )
        try:
            self.files.insert(record)
        except SQLAlchemyError as exc:
            self.db.rollback()
            self._remove_after_failed_insert(relative_path)
            logger.error("upload_rolled_back owner=%s filename=%s error=%s", owner, stored_name, exc)
            raise StorageFault(detail=str(exc)) from exc

        logger.info("file_stored owner=%s filename=%s size=%d", owner, stored_name, len(data))
        return StoredFile(stored_name, self.adapter.locate(relative_path), len(data))

    def _remove_after_failed_insert(self, relative_path: str) -> None:
        try:
            self.adapter.delete(self.adapter.locate(relative_path))
        except OSError as exc:
            logger.error("orphan_file path=%s reason=rollback_failed error=%s", relative_path, exc)

    def read(self, owner: str, logical_filename: str) -> bytes:
        path = self.resolver.resolve(owner, logical_filename)
        try:
            return self.adapter.read(path)
        except OSError as exc:
            logger.error("file_unreadable owner=%s filename=%s error=%s", owner, logical_filename, exc)
            raise StorageFault(detail=str(exc)) from exc

    def list_files(self, owner: str) -> List[FileRecord]:
        return self.files.list_by_owner(owner)

    def delete(self, owner: str, logical_filename: str) -> None:
        """
        Remove the record, then the bytes.
        The record is authoritative: a file left behind is logged, not reported.
        """
        path = self.resolver.resolve(owner, logical_filename)

        try:
            affected = self.files.delete(owner, logical_filename)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("file_record_delete_failed owner=%s filename=%s error=%s", owner, logical_filename, exc)
            raise StorageFault(detail=str(exc)) from exc

        if affected == 0:
            # removed by a concurrent request between resolve and delete
            raise NotFound()

        self._unlink(path, owner, logical_filename)
        logger.info("file_deleted owner=%s filename=%s", owner, logical_filename)

    def _unlink(self, path: Path, owner: str, logical_filename: str) -> None:
        try:
            self.adapter.delete(path)
        except FileNotFoundError:
            logger.warning("file_missing_on_delete owner=%s filename=%s", owner, logical_filename)
        except OSError as exc:
            logger.warning(
                "orphan_file owner=%s filename=%s path=%s error=%s",
                owner,
                logical_filename,
                path,
                exc,
            )

    def remove_files(self, owner: str, records: List[FileRecord]) -> None:
        """Delete the bytes of records whose rows are already gone."""
        for record in records:
            self._unlink(self.adapter.locate(record.physical_path), owner, record.filename)
        self.adapter.prune_owner_dir(owner)
