"""Content-addressed, immutable blob store shared by the local backends.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
No delete method — blobs are immutable once stored.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from topoforge.core.hasher import file_sha256, sha256_hex


class BlobIntegrityError(RuntimeError):
    """Raised when a stored blob's hash does not match its address."""


class BlobStore:
    """SHA-256 keyed, immutable blob store.

    Storing the same content twice is a no-op. Writes go to a temporary
    file first and are renamed into place, so a blob is either fully
    present or absent.

    Parameters
    ----------
    base_path:
        Root directory for blob storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(address: str) -> str:
        """Strip the ``sha256:`` prefix from an address, if present."""
        return address.removeprefix("sha256:")

    def _blob_path(self, digest: str) -> Path:
        return self._base / digest[:2] / digest[2:4] / f"{digest}.dat"

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store_bytes(self, data: bytes) -> str:
        """Store bytes and return their hex digest."""
        digest = sha256_hex(data)
        path = self._blob_path(digest)
        if path.exists():
            if not self.verify(digest):
                raise BlobIntegrityError(f"Existing blob at {digest} failed integrity check")
            return digest
        atomic_write(path, lambda fh: fh.write(data))
        return digest

    def store_file(self, source: Path, digest: str | None = None) -> str:
        """Copy a file into the store and return its hex digest."""
        digest = digest or file_sha256(source)
        path = self._blob_path(digest)
        if path.exists():
            if not self.verify(digest):
                raise BlobIntegrityError(f"Existing blob at {digest} failed integrity check")
            return digest

        def _copy(fh) -> None:
            with source.open("rb") as src:
                shutil.copyfileobj(src, fh)

        atomic_write(path, _copy)
        return digest

    # ------------------------------------------------------------------
    # Retrieve and verify
    # ------------------------------------------------------------------

    def retrieve(self, address: str) -> bytes:
        digest = self._extract_digest(address)
        path = self._blob_path(digest)
        if not path.exists():
            raise FileNotFoundError(f"Blob not found: {address}")
        return path.read_bytes()

    def exists(self, address: str) -> bool:
        return self._blob_path(self._extract_digest(address)).exists()

    def verify(self, address: str) -> bool:
        """Re-hash stored data and compare against the address."""
        digest = self._extract_digest(address)
        path = self._blob_path(digest)
        if not path.exists():
            return False
        return file_sha256(path) == digest


def atomic_write(path: Path, write: Callable[[BinaryIO], object]) -> None:
    """Write ``path`` through a temporary file and one rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            write(fh)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
