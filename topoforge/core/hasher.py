"""Canonical hashing helpers for fingerprints, change detection, and ETags.

Every digest produced here is built from canonical JSON so that the same
inputs hash identically on every machine, regardless of dict ordering or
directory traversal order.
"""

from __future__ import annotations

import hashlib
import json
import tomllib
from pathlib import Path
from typing import Any

from topoforge.models.fingerprint import Fingerprint

_CHUNK_SIZE = 1 << 16

# Manifest files probed for a declared version, in order.
VERSION_MANIFESTS: tuple[str, ...] = ("package.json", "pyproject.toml", "VERSION")


class InputNotFound(FileNotFoundError):
    """Raised when a path that must be fingerprinted or read does not exist."""

    def __init__(self, path: Path | str, detail: str = "") -> None:
        self.path = Path(path)
        message = f"Input not found: {self.path}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object.

    Returns "sha256:<hex>".
    """
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def _file_digest(path: Path, algorithm: str) -> str:
    h = hashlib.new(algorithm)
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def file_sha256(path: Path) -> str:
    """SHA-256 hex digest of a file's bytes, streamed."""
    return _file_digest(path, "sha256")


def file_md5(path: Path) -> str:
    """MD5 hex digest of a file, as object stores report it for ETags."""
    return _file_digest(path, "md5")


def iter_tree(root: Path) -> list[tuple[str, Path]]:
    """Return ``(relative_posix_path, absolute_path)`` for every file under root.

    Sorted by relative path so that on-disk ordering never leaks into a digest.
    A file root yields a single entry keyed by its own name.
    """
    if root.is_file():
        return [(root.name, root)]
    entries = [
        (p.relative_to(root).as_posix(), p)
        for p in root.rglob("*")
        if p.is_file()
    ]
    entries.sort(key=lambda item: item[0])
    return entries


def fingerprint(path: Path | str, declared_version: str) -> Fingerprint:
    """Fingerprint a file or directory tree together with a declared version.

    The digest covers each file's relative path and content hash plus the
    declared version, so a version bump changes the fingerprint even when
    the content is byte-identical.

    Raises
    ------
    InputNotFound
        If ``path`` does not exist or cannot be read.
    """
    root = Path(path)
    if not root.exists():
        raise InputNotFound(root)

    try:
        files = [(rel, file_sha256(abs_path)) for rel, abs_path in iter_tree(root)]
    except OSError as exc:
        raise InputNotFound(root, detail=str(exc)) from exc

    return fingerprint_entries(files, declared_version)


def fingerprint_entries(
    entries: list[tuple[str, str]], declared_version: str
) -> Fingerprint:
    """Fingerprint pre-hashed ``(relative_path, sha256)`` entries.

    Entries are sorted before hashing, so callers may pass them in any order.
    """
    files = [[rel, digest] for rel, digest in sorted(entries)]
    payload = {"version": declared_version, "files": files}
    return Fingerprint(
        digest=sha256_hex(canonical_json_bytes(payload)),
        version=declared_version,
        file_count=len(files),
    )


def read_declared_version(build_context: Path | str) -> str:
    """Read the semantic version declared by a build context's manifest.

    Looks at ``package.json`` (``version``), then ``pyproject.toml``
    (``[project].version``), then a bare ``VERSION`` file.
    """
    root = Path(build_context)
    if not root.is_dir():
        raise InputNotFound(root)

    package_json = root / "package.json"
    if package_json.is_file():
        version = json.loads(package_json.read_text(encoding="utf-8")).get("version")
        if version:
            return str(version)

    pyproject = root / "pyproject.toml"
    if pyproject.is_file():
        with pyproject.open("rb") as fh:
            version = tomllib.load(fh).get("project", {}).get("version")
        if version:
            return str(version)

    version_file = root / "VERSION"
    if version_file.is_file():
        version = version_file.read_text(encoding="utf-8").strip()
        if version:
            return version

    raise InputNotFound(
        root, detail=f"no declared version in any of {', '.join(VERSION_MANIFESTS)}"
    )
