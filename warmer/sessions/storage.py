"""File based session storage shared between worker processes.

Every (host, customer group) pair lives in its own JSON file. Writers hold an
exclusive ``flock`` and readers a shared one, so concurrent processes using
the same directory never see a half written record and never interleave writes.
"""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
from typing import Optional
from urllib.parse import quote

from loguru import logger


DEFAULT_STORAGE_DIR = os.path.join(tempfile.gettempdir(), "magesuite-warmup-sessions")


class SessionStorageError(RuntimeError):
    pass


class SessionStorage:
    def __init__(self, directory: Optional[str] = None) -> None:
        self.directory = directory or DEFAULT_STORAGE_DIR

        try:
            os.makedirs(self.directory, exist_ok=True)
        except OSError as exc:
            raise SessionStorageError(
                f'Could not create session storage dir at "{self.directory}"'
            ) from exc

        if not os.access(self.directory, os.W_OK):
            raise SessionStorageError(f'Session storage dir "{self.directory}" is not writable')

    def path_for(self, host: str, customer_group: Optional[str] = None) -> str:
        suffix = f"cg-{quote(str(customer_group), safe='')}" if customer_group is not None else "anon"
        safe_host = quote(host, safe="")
        return os.path.join(self.directory, f"{safe_host}-{suffix}.json")

    def exists(self, host: str, customer_group: Optional[str] = None) -> bool:
        return os.path.exists(self.path_for(host, customer_group))

    def load(self, host: str, customer_group: Optional[str] = None) -> Optional[dict]:
        """Return the stored record or None when missing or unreadable."""
        path = self.path_for(host, customer_group)
        try:
            with open(path, "r", encoding="utf-8") as f:
                # Shared lock waits for any write in progress to complete
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    raw = f.read()
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            return None

        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring corrupt session record {path}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Ignoring unexpected session record {path}")
            return None
        return data

    def save(self, host: str, customer_group: Optional[str], data: dict) -> None:
        path = self.path_for(host, customer_group)
        content = json.dumps(data, indent=2, sort_keys=True)

        # Open without truncating: the file is emptied only once the lock is held.
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o666)
        with os.fdopen(fd, "r+", encoding="utf-8") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                f.seek(0)
                f.truncate()
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def delete(self, host: str, customer_group: Optional[str] = None) -> None:
        path = self.path_for(host, customer_group)
        try:
            with open(path, "r+") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    os.unlink(path)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            pass
