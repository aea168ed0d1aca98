"""Publishing backends — where images and bundle objects actually land.

Two protocols separate the publisher from the outside world:

- ``ImageBackend``: existence check, build, and push of a tagged image.
- ``ObjectStore``: ETag lookup, staged upload, and one atomic commit.

Both keep staged work invisible until the final step (``push`` or
``commit``), so an interrupted publish never exposes a partial artifact.

Local, directory-backed implementations live here alongside a Docker CLI
backend for real registries.
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from topoforge.core.blob_store import BlobStore, atomic_write
from topoforge.core.hasher import canonical_json_bytes, iter_tree, sha256_hex
from topoforge.models.artifacts import BundleObject

logger = logging.getLogger(__name__)


@runtime_checkable
class ImageBackend(Protocol):
    """Builds and pushes container images."""

    def exists(self, reference: str) -> bool: ...

    def build(self, context: Path, reference: str) -> None: ...

    def push(self, reference: str) -> None: ...


@runtime_checkable
class ObjectStore(Protocol):
    """Stores bundle objects behind a website endpoint."""

    @property
    def website_endpoint(self) -> str: ...

    def etag(self, key: str) -> str | None: ...

    def stage(self, obj: BundleObject, source: Path) -> None: ...

    def commit(self, objects: list[BundleObject]) -> None: ...

    def abort(self) -> None: ...


def _reference_key(reference: str) -> str:
    return sha256_hex(reference.encode("utf-8"))


# ---------------------------------------------------------------------------
# Local registry
# ---------------------------------------------------------------------------


class LocalRegistry:
    """Directory-backed image registry.

    ``build`` snapshots the build context into the blob store and stages an
    image manifest; ``push`` makes the manifest visible under its reference.
    Layout::

        {root}/blobs/...            content-addressed file blobs
        {root}/staging/{key}.json   built but not pushed
        {root}/refs/{key}.json      pushed, visible to consumers
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._blobs = BlobStore(self._root / "blobs")
        (self._root / "refs").mkdir(parents=True, exist_ok=True)
        (self._root / "staging").mkdir(parents=True, exist_ok=True)
        self.builds: list[str] = []
        self.pushes: list[str] = []

    def _ref_path(self, reference: str) -> Path:
        return self._root / "refs" / f"{_reference_key(reference)}.json"

    def _staging_path(self, reference: str) -> Path:
        return self._root / "staging" / f"{_reference_key(reference)}.json"

    def exists(self, reference: str) -> bool:
        return self._ref_path(reference).exists()

    def build(self, context: Path, reference: str) -> None:
        layers = {rel: self._blobs.store_file(path) for rel, path in iter_tree(Path(context))}
        manifest = {"reference": reference, "layers": layers}
        atomic_write(self._staging_path(reference), lambda fh: fh.write(canonical_json_bytes(manifest)))
        self.builds.append(reference)
        logger.debug("LocalRegistry: built %s (%d files)", reference, len(layers))

    def push(self, reference: str) -> None:
        staged = self._staging_path(reference)
        if not staged.exists():
            raise FileNotFoundError(f"No built image staged for {reference}")
        staged.replace(self._ref_path(reference))
        self.pushes.append(reference)
        logger.debug("LocalRegistry: pushed %s", reference)

    def discard(self, reference: str) -> None:
        """Drop a staged build that will not be pushed."""
        self._staging_path(reference).unlink(missing_ok=True)

    def manifest(self, reference: str) -> dict:
        path = self._ref_path(reference)
        if not path.exists():
            raise FileNotFoundError(f"Image not found: {reference}")
        return json.loads(path.read_text(encoding="utf-8"))

    def references(self) -> list[str]:
        refs = (
            json.loads(p.read_text(encoding="utf-8"))["reference"]
            for p in (self._root / "refs").glob("*.json")
        )
        return sorted(refs)


# ---------------------------------------------------------------------------
# Docker CLI
# ---------------------------------------------------------------------------


class DockerCliBackend:
    """Builds and pushes through the ``docker`` CLI.

    Parameters
    ----------
    username, password, endpoint:
        Registry credentials; when all are set, ``docker login`` runs
        once before the first push.
    """

    def __init__(
        self,
        *,
        username: str = "",
        password: str = "",
        endpoint: str = "",
        docker: str = "docker",
    ) -> None:
        self._username = username
        self._password = password
        self._endpoint = endpoint
        self._docker = docker
        self._logged_in = False

    def _run(self, *args: str, stdin: str | None = None) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self._docker, *args],
            input=stdin,
            capture_output=True,
            text=True,
            check=True,
        )

    def exists(self, reference: str) -> bool:
        result = subprocess.run(
            [self._docker, "manifest", "inspect", reference],
            capture_output=True,
            text=True,
            check=False,
        )
        return result.returncode == 0

    def build(self, context: Path, reference: str) -> None:
        self._run("build", "-t", reference, str(context))

    def push(self, reference: str) -> None:
        if self._username and self._password and self._endpoint and not self._logged_in:
            self._run(
                "login", "-u", self._username, "--password-stdin", self._endpoint,
                stdin=self._password,
            )
            self._logged_in = True
        self._run("push", reference)


# ---------------------------------------------------------------------------
# Local bucket
# ---------------------------------------------------------------------------


class LocalBucket:
    """Directory-backed object store with a website endpoint.

    Staged objects land in the blob store but stay invisible until
    ``commit`` swaps in a new index in one rename.
    """

    def __init__(
        self,
        root: Path,
        bucket_name: str,
        *,
        region: str = "us-east-1",
    ) -> None:
        self._root = Path(root)
        self._blobs = BlobStore(self._root / "blobs")
        self.bucket_name = bucket_name
        self.region = region
        self._staged: dict[str, BundleObject] = {}
        self.uploads: list[str] = []

    @property
    def website_endpoint(self) -> str:
        return f"{self.bucket_name}.s3-website-{self.region}.amazonaws.com"

    @property
    def _index_path(self) -> Path:
        return self._root / "index.json"

    def _index(self) -> dict[str, dict]:
        if not self._index_path.exists():
            return {}
        return json.loads(self._index_path.read_text(encoding="utf-8"))

    def etag(self, key: str) -> str | None:
        entry = self._index().get(key)
        return entry["etag"] if entry else None

    def stage(self, obj: BundleObject, source: Path) -> None:
        self._blobs.store_file(source, obj.sha256)
        self._staged[obj.key] = obj
        self.uploads.append(obj.key)

    def commit(self, objects: list[BundleObject]) -> None:
        index = {obj.key: obj.model_dump(mode="json") for obj in objects}
        atomic_write(self._index_path, lambda fh: fh.write(canonical_json_bytes(index)))
        self._staged.clear()
        logger.debug("LocalBucket %s: committed %d objects", self.bucket_name, len(index))

    def abort(self) -> None:
        self._staged.clear()

    def get(self, key: str) -> bytes:
        entry = self._index().get(key)
        if entry is None:
            raise FileNotFoundError(f"Object not found: {key}")
        return self._blobs.retrieve(entry["sha256"])

    def keys(self) -> list[str]:
        return sorted(self._index())
