"""
Persistence of serialized authorizations.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "entitlement-client"


class AuthorizationStore(Protocol):
    """Byte-blob storage for one serialized authorization."""

    def read(self) -> bytes | None:
        ...

    def write(self, data: bytes) -> None:
        ...

    def clear(self) -> None:
        ...


def default_store_dir() -> Path:
    """``$XDG_CONFIG_HOME/entitlement-client``, or ``~/.config/entitlement-client``."""
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / DEFAULT_NAMESPACE


class FileAuthorizationStore:
    """
    File-based store at ``<directory>/<name>.authz``.

    Files are chmod 0600 (owner-only read/write).
    """

    def __init__(self, name: str = "default", directory: Path | None = None):
        self.path = (directory or default_store_dir()) / f"{name}.authz"

    def read(self) -> bytes | None:
        """Return the stored bytes, or None if nothing is stored."""
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None

    def write(self, data: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(data)
        os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)
        logger.debug("Stored authorization at %s", self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info("Deleted stored authorization at %s", self.path)
