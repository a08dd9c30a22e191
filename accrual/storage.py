"""Snapshot persistence for the accrual ledger.

The whole ledger (every account plus the enrollment set) is one document.
``save`` always rewrites the full document; there is no per-account write.

Two backends share the same ``load``/``save`` contract:

- :class:`JsonFileStorage` writes a JSON file atomically (temp file, then
  ``os.replace``), so a failed save leaves the previous file intact.
- :class:`InMemoryStorage` keeps a deep copy in process memory.

``load`` never raises: a missing, unreadable or malformed document yields an
empty :class:`~accrual.models.LedgerSnapshot` and a logged warning.
``save`` raises :class:`StorageWriteError`; the owning service logs it and
keeps its in-memory state authoritative.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, Union

from pydantic import ValidationError

from .models import LedgerSnapshot

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class StorageWriteError(StorageError):
    """Raised when the snapshot could not be written to durable storage."""


class SnapshotStorage(Protocol):
    def load(self) -> LedgerSnapshot: ...

    def save(self, snapshot: LedgerSnapshot) -> None: ...


class InMemoryStorage:
    def __init__(self, snapshot: Optional[LedgerSnapshot] = None):
        self.saved: Optional[LedgerSnapshot] = (
            snapshot.model_copy(deep=True) if snapshot is not None else None
        )
        self.save_count = 0

    def load(self) -> LedgerSnapshot:
        if self.saved is None:
            return LedgerSnapshot()
        return self.saved.model_copy(deep=True)

    def save(self, snapshot: LedgerSnapshot) -> None:
        self.saved = snapshot.model_copy(deep=True)
        self.save_count += 1


class JsonFileStorage:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> LedgerSnapshot:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Ledger file %s not found, starting with an empty ledger", self.path)
            return LedgerSnapshot()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read ledger file %s (%s), starting with an empty ledger", self.path, e)
            return LedgerSnapshot()

        try:
            snapshot = LedgerSnapshot.model_validate_json(text)
        except ValidationError as e:
            logger.warning(
                "Ledger file %s is corrupt (%d errors), starting with an empty ledger",
                self.path, e.error_count(),
            )
            return LedgerSnapshot()

        logger.info(
            "Loaded ledger from %s: %d accounts, %d enrolled",
            self.path, len(snapshot.users), len(snapshot.enrolled),
        )
        return snapshot

    def save(self, snapshot: LedgerSnapshot) -> None:
        document = snapshot.model_dump(mode="json", by_alias=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError:
                logger.debug("Could not remove temporary file %s", tmp_path)
            raise StorageWriteError(f"Failed to write ledger to {self.path}: {e}") from e
