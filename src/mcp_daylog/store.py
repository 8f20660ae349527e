"""File-backed store for journal documents, one JSON file per date."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional

from .locking import atomic_write, file_lock
from .models import (
    DATE_PATTERN,
    JournalDocument,
    JournalError,
    MalformedDocumentError,
    validate_date,
)

logger = logging.getLogger(__name__)


class DocumentNotFoundError(JournalError):
    """Raised when no journal exists for a date."""
    pass


class DocumentExistsError(JournalError):
    """Raised when creating a journal for a date that already has one."""
    pass


class JournalStore:
    """Reads and writes journal documents under a directory.

    Writes are atomic but not transactional: callers that read, modify and
    write a document hold ``lock(date)`` around the whole cycle.
    """

    def __init__(self, directory: Path, lock_timeout: float = 10.0):
        self.directory = Path(directory)
        self.lock_timeout = lock_timeout

    def path_for(self, date_iso: str) -> Path:
        validate_date(date_iso)
        return self.directory / f"{date_iso}.json"

    def exists(self, date_iso: str) -> bool:
        return self.path_for(date_iso).exists()

    @contextmanager
    def lock(self, date_iso: str) -> Generator[None, None, None]:
        """Exclusive lock on one date's document."""
        with file_lock(self.path_for(date_iso), timeout=self.lock_timeout):
            yield

    def read(self, date_iso: str) -> Optional[JournalDocument]:
        """Load the document for a date, or None if there is none.

        Raises:
            MalformedDocumentError: If the file cannot be interpreted
        """
        path = self.path_for(date_iso)
        if not path.exists():
            return None
        return JournalDocument.from_json(date_iso, path.read_text(encoding="utf-8"))

    def read_data(self, date_iso: str) -> Optional[Any]:
        """Load the raw JSON for a date without interpreting it."""
        path = self.path_for(date_iso)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise MalformedDocumentError(f"Journal for {date_iso} is not valid JSON: {e}") from None

    def write(self, document: JournalDocument) -> None:
        """Persist a whole document. The caller must hold the lock."""
        with atomic_write(self.path_for(document.date)) as f:
            f.write(document.to_json())
        logger.debug("Wrote journal %s", document.date)

    def create(self, date_iso: str) -> JournalDocument:
        """Create an empty document: 24 empty hours, no ranges, nothing staged.

        Raises:
            DocumentExistsError: If a journal already exists for the date
        """
        with self.lock(date_iso):
            if self.exists(date_iso):
                raise DocumentExistsError(f"Journal for {date_iso} already exists.")
            document = JournalDocument(date=date_iso)
            self.write(document)
        logger.info("Created journal %s", date_iso)
        return document

    def delete(self, date_iso: str) -> None:
        """Remove the document for a date.

        Raises:
            DocumentNotFoundError: If no journal exists for the date
        """
        with self.lock(date_iso):
            path = self.path_for(date_iso)
            if not path.exists():
                raise DocumentNotFoundError(f"No journal exists for date {date_iso}.")
            path.unlink()
        logger.info("Deleted journal %s", date_iso)

    def list_dates(self) -> list[str]:
        """Dates with a stored journal, oldest first."""
        if not self.directory.exists():
            return []
        return sorted(
            path.stem for path in self.directory.glob("*.json")
            if DATE_PATTERN.match(path.stem)
        )
