import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from .device_model import Device


logger = logging.getLogger(__name__)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS devices (
    id INTEGER PRIMARY KEY,
    nickname TEXT NOT NULL,
    address TEXT NOT NULL,
    username TEXT NOT NULL,
    password TEXT NOT NULL,
    manufacturer TEXT NOT NULL,
    snapshot_url TEXT NOT NULL,
    rtsp_url TEXT NOT NULL
)
"""

_COLUMNS = (
    "id",
    "nickname",
    "address",
    "username",
    "password",
    "manufacturer",
    "snapshot_url",
    "rtsp_url",
)


class DeviceStoreError(RuntimeError):
    """Raised for any storage-layer fault (I/O, locking, constraint, corruption)."""


class DeviceStore(ABC):
    """Abstract base class for device persistence.

    Defines the four operations the control plane needs. Implementations report
    every storage fault as :class:`DeviceStoreError`.
    """

    @abstractmethod
    def fetch_all(self) -> List[Device]:
        """Return every stored device.

        Raises:
            DeviceStoreError: On storage failure.
        """
        raise NotImplementedError

    @abstractmethod
    def insert(self, device: Device) -> None:
        """Persist a new device.

        Raises:
            DeviceStoreError: On storage failure, including a duplicate id.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, device: Device) -> bool:
        """Overwrite the device with the same id.

        Returns:
            True if a row was updated, False if the id is unknown.

        Raises:
            DeviceStoreError: On storage failure.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, device: Device) -> bool:
        """Delete the device with the same id.

        Returns:
            True if a row was deleted, False if the id is unknown.

        Raises:
            DeviceStoreError: On storage failure.
        """
        raise NotImplementedError


class SQLiteDeviceStore(DeviceStore):
    """SQLite-backed device store.

    Opens one connection per operation so the store can be shared by the
    threaded request handlers. Writes are serialized with a process-wide lock;
    SQLite provides read consistency.

    Attributes:
        path: Path to the SQLite database file.

    Raises:
        DeviceStoreError: If the database directory is not writable.
    """

    def __init__(self, path: str, timeout_seconds: float = 5.0):
        self.path = Path(path)
        self.timeout_seconds = timeout_seconds
        self._write_lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            message = (
                f"Permission denied accessing database path: {self.path.parent}. "
                f"Set CANDERE_DATABASE_PATH to a writable location."
            )
            logger.error(message)
            raise DeviceStoreError(message) from e
        self._schema_ready = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection with the schema in place, committing on success.

        Raises:
            DeviceStoreError: Wrapping any ``sqlite3.Error``.
        """
        try:
            connection = sqlite3.connect(str(self.path), timeout=self.timeout_seconds)
        except sqlite3.Error as exc:
            message = f"cannot open device database {self.path}: {exc}"
            raise DeviceStoreError(message) from exc
        try:
            if not self._schema_ready:
                connection.execute(_SCHEMA)
                self._schema_ready = True
            yield connection
            connection.commit()
        except sqlite3.Error as exc:
            connection.rollback()
            message = f"device database operation failed: {exc}"
            raise DeviceStoreError(message) from exc
        finally:
            connection.close()

    def fetch_all(self) -> List[Device]:
        with self._connect() as connection:
            rows = connection.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM devices ORDER BY rowid"
            ).fetchall()
        return [Device(*row) for row in rows]

    def insert(self, device: Device) -> None:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._write_lock, self._connect() as connection:
            connection.execute(
                f"INSERT INTO devices ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                _row(device),
            )
        logger.debug("device_inserted: id=%s", device.id)

    def update(self, device: Device) -> bool:
        assignments = ", ".join(f"{column} = ?" for column in _COLUMNS[1:])
        with self._write_lock, self._connect() as connection:
            cursor = connection.execute(
                f"UPDATE devices SET {assignments} WHERE id = ?",
                (*_row(device)[1:], device.id),
            )
            updated = cursor.rowcount > 0
        if not updated:
            logger.warning("device_update_missed: id=%s not found", device.id)
        return updated

    def delete(self, device: Device) -> bool:
        with self._write_lock, self._connect() as connection:
            cursor = connection.execute("DELETE FROM devices WHERE id = ?", (device.id,))
            deleted = cursor.rowcount > 0
        if not deleted:
            logger.debug("device_delete_missed: id=%s not found", device.id)
        return deleted


def _row(device: Device) -> tuple:
    return tuple(getattr(device, column) for column in _COLUMNS)
