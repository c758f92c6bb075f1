"""
Phozos API Client Token Storage Implementations

Durable key/value backends for the bearer token. Writes raise on failure;
callers decide whether a failure is fatal.
"""

import json
import os
import threading
from pathlib import Path
from typing import Dict, Optional


class MemoryStorage:
    """In-memory storage (default, non-persistent)."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        """Get a stored value."""
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        """Store a value."""
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        """Remove a stored value."""
        with self._lock:
            self._items.pop(key, None)


class FileStorage:
    """File-based storage (persistent across restarts)."""

    def __init__(self, file_path: Optional[str] = None) -> None:
        """
        Initialize file storage.

        Args:
            file_path: Path to the storage file. Defaults to ~/.phozos/storage.json
        """
        if file_path:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path.home() / ".phozos" / "storage.json"

        self._lock = threading.Lock()

    def _read_data(self) -> Dict[str, str]:
        """Read stored data from file. A missing or corrupt file reads as empty."""
        try:
            if self._file_path.exists():
                with open(self._file_path, "r") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        return data
        except (json.JSONDecodeError, OSError):
            pass
        return {}

    def _write_data(self, data: Dict[str, str]) -> None:
        """Write stored data to file."""
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._file_path, "w") as f:
            json.dump(data, f)
        # Owner read/write only
        os.chmod(self._file_path, 0o600)

    def get_item(self, key: str) -> Optional[str]:
        """Get a stored value."""
        with self._lock:
            return self._read_data().get(key)

    def set_item(self, key: str, value: str) -> None:
        """Store a value. Raises OSError if the file cannot be written."""
        with self._lock:
            data = self._read_data()
            data[key] = value
            self._write_data(data)

    def remove_item(self, key: str) -> None:
        """Remove a stored value, deleting the file once it is empty."""
        with self._lock:
            data = self._read_data()
            if key not in data:
                return
            del data[key]
            if data:
                self._write_data(data)
            else:
                self._file_path.unlink()


class EnvironmentStorage:
    """Environment variable based storage (for serverless/containers)."""

    def __init__(self, prefix: str = "PHOZOS_") -> None:
        self._prefix = prefix
        self._lock = threading.Lock()

    def _var(self, key: str) -> str:
        return f"{self._prefix}{key.upper()}"

    def get_item(self, key: str) -> Optional[str]:
        """Get a stored value from the environment."""
        return os.environ.get(self._var(key))

    def set_item(self, key: str, value: str) -> None:
        """Store a value in the environment."""
        with self._lock:
            os.environ[self._var(key)] = value

    def remove_item(self, key: str) -> None:
        """Remove a value from the environment."""
        with self._lock:
            os.environ.pop(self._var(key), None)
