"""Durable storage for the session credential and the cached identity.

The credential pair is one named record (``credentials.json``) that is always
replaced as a whole; the identity is cached in a separate record
(``identity.json``) and re-validated against the server on start.
"""
from __future__ import annotations
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .models import Credential, Identity

logger = logging.getLogger(__name__)

CREDENTIAL_RECORD = "credentials.json"
IDENTITY_RECORD = "identity.json"


class CredentialStore(ABC):
    """Interface shared by the file-backed and in-memory stores."""

    @abstractmethod
    def load_credential(self) -> Optional[Credential]:
        ...

    @abstractmethod
    def save_credential(self, credential: Credential) -> None:
        ...

    @abstractmethod
    def load_identity(self) -> Optional[Identity]:
        ...

    @abstractmethod
    def save_identity(self, identity: Identity) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemoryCredentialStore(CredentialStore):
    """Process-local store, used by tests and one-shot scripts."""

    def __init__(self, credential: Optional[Credential] = None, identity: Optional[Identity] = None):
        self._credential = credential
        self._identity = identity
        self.writes = 0

    def load_credential(self) -> Optional[Credential]:
        return self._credential

    def save_credential(self, credential: Credential) -> None:
        self.writes += 1
        self._credential = credential

    def load_identity(self) -> Optional[Identity]:
        return self._identity

    def save_identity(self, identity: Identity) -> None:
        self._identity = identity

    def clear(self) -> None:
        self._credential = None
        self._identity = None


class FileCredentialStore(CredentialStore):
    """JSON records under a private directory (0700, files 0600)."""

    def __init__(self, directory: os.PathLike | str):
        self.directory = Path(directory)

    @property
    def credential_path(self) -> Path:
        return self.directory / CREDENTIAL_RECORD

    @property
    def identity_path(self) -> Path:
        return self.directory / IDENTITY_RECORD

    def _ensure_dir(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.directory.chmod(0o700)

    def _write_record(self, path: Path, record: dict) -> None:
        """Write a record atomically: readers see the old or the new file, never a mix."""
        self._ensure_dir()
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read_record(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        try:
            record = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable session record %s: %s", path.name, exc)
            return None
        return record if isinstance(record, dict) else None

    def load_credential(self) -> Optional[Credential]:
        record = self._read_record(self.credential_path)
        if record is None:
            return None
        try:
            return Credential.from_record(record)
        except ValueError as exc:
            logger.warning("Ignoring malformed credential record: %s", exc)
            return None

    def save_credential(self, credential: Credential) -> None:
        self._write_record(self.credential_path, credential.to_record())

    def load_identity(self) -> Optional[Identity]:
        record = self._read_record(self.identity_path)
        if record is None:
            return None
        try:
            return Identity.from_payload(record)
        except ValueError as exc:
            logger.warning("Ignoring malformed identity record: %s", exc)
            return None

    def save_identity(self, identity: Identity) -> None:
        self._write_record(self.identity_path, identity.to_record())

    def clear(self) -> None:
        for path in (self.credential_path, self.identity_path):
            path.unlink(missing_ok=True)
