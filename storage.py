import json
import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

from errors import LockTimeoutError, StorageError, StorageReadError, ValidationError

logger = logging.getLogger(__name__)

TRANSACTIONS = "transactions"
BUDGETS = "budgets"
USERS = "users"
COLLECTIONS = (TRANSACTIONS, BUDGETS, USERS)

_FILE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def serialize(records: List[Any]) -> str:
    """Deterministic JSON text for a collection."""
    return json.dumps(records, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


class FileLocks:
    """Re-entrant lock per file id with a bounded wait."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, file_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(file_id)
            if lock is None:
                lock = self._locks[file_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, file_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        lock = self._lock_for(file_id)
        wait = self.timeout if timeout is None else timeout
        if not lock.acquire(timeout=wait):
            logger.error("Timed out after %.2fs waiting for %s lock", wait, file_id)
            raise LockTimeoutError(file_id, f"Timed out waiting for the {file_id} lock")
        try:
            yield
        finally:
            lock.release()


class FileStore:
    def __init__(self, data_dir, lock_timeout: float = 5.0, lenient_reads: bool = False):
        self.data_dir = Path(data_dir)
        self.lenient_reads = lenient_reads
        self.locks = FileLocks(lock_timeout)

    def path_for(self, file_id: str) -> Path:
        if not _FILE_ID_RE.match(file_id or ""):
            raise ValidationError(f"Invalid collection name: {file_id!r}")
        return self.data_dir / f"{file_id}.json"

    # ---------- setup ----------

    def initialize(self, file_ids: Iterable[str] = COLLECTIONS) -> None:
        """Create the data directory and an empty file per missing collection."""
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError("data_dir", f"Cannot create {self.data_dir}", exc) from exc

        for file_id in file_ids:
            path = self.path_for(file_id)
            if not path.exists():
                self.write(file_id, [])
                logger.info("Created %s", path)
                continue
            try:
                self.read(file_id, lenient=False)
            except StorageReadError:
                # left in place so nothing is destroyed; reads keep failing loudly
                logger.error("%s is corrupt and was left untouched", path)

    # ---------- read ----------

    def read(self, file_id: str, lenient: Optional[bool] = None) -> List[Any]:
        """Return the collection stored under `file_id`.

        A missing file is an empty collection. Corrupt content raises
        StorageReadError unless lenient, in which case it reads as empty.
        """
        path = self.path_for(file_id)
        lenient = self.lenient_reads if lenient is None else lenient

        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except FileNotFoundError:
            logger.warning("%s file not found, returning empty array", file_id)
            return []
        except UnicodeDecodeError as exc:
            return self._corrupt(file_id, "is not valid UTF-8", exc, lenient)
        except OSError as exc:
            logger.error("Error reading %s from %s: %s", file_id, path, exc)
            raise StorageError(file_id, f"Failed to read {file_id}: {exc}", exc) from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            return self._corrupt(file_id, "contains invalid JSON", exc, lenient)

        if not isinstance(data, list):
            return self._corrupt(file_id, "contains non-array data", None, lenient)
        return data

    def _corrupt(self, file_id, problem, cause, lenient) -> List[Any]:
        if lenient:
            logger.error("%s file %s, returning empty array", file_id, problem)
            return []
        logger.error("%s file %s", file_id, problem)
        raise StorageReadError(file_id, f"{file_id} file {problem}", cause)

    # ---------- write ----------

    def write(self, file_id: str, records: List[Any]) -> None:
        """Atomically replace the collection with `records`."""
        if not isinstance(records, list):
            raise ValidationError(f"{file_id} data must be an array")
        path = self.path_for(file_id)
        payload = serialize(records)

        with self.locks.hold(file_id):
            self._replace(file_id, path, payload)
        logger.debug("%s saved (%d records)", file_id, len(records))

    def _replace(self, file_id: str, path: Path, payload: str) -> None:
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, ValueError) as exc:
            logger.error("Error writing %s to %s: %s", file_id, path, exc)
            raise StorageError(file_id, f"Failed to write {file_id}: {exc}", exc) from exc
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    logger.exception("Failed to clean up temporary file %s", tmp_path)

    @contextmanager
    def locked(self, file_id: str) -> Iterator[None]:
        """Hold the write lock of `file_id` across a read-modify-write."""
        self.path_for(file_id)
        with self.locks.hold(file_id):
            yield
