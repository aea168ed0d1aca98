"""Artifact publisher — versioned, content-addressed images and static bundles.

Publishing is idempotent. An image whose reference already exists in the
registry is skipped; bundle objects whose stored ETag matches are not
re-uploaded. A changed fingerprint always produces a new Artifact.

Publishes of different references may run in parallel; publishes of the
same reference are serialized by a per-reference lock. A ``CancelToken``
may abort a publish at any step before the final push or commit, and a
cancelled publish leaves nothing visible to consumers.

Content type policy
-------------------
Bundle files are typed by extension. Extensions that map to no known type
resolve to ``content_type_fallback`` (``application/octet-stream`` by
default) and the object is flagged ``content_type_fallback=True`` so the
plan shows it. Passing ``content_type_fallback=None`` turns the fallback
off and raises ``UnsupportedContentType`` instead. Unknown types are never
served as ``text/html``.
"""

from __future__ import annotations

import logging
import mimetypes
import threading
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from pathlib import Path

from topoforge.core.backends import ImageBackend, ObjectStore
from topoforge.core.hasher import (
    InputNotFound,
    file_md5,
    file_sha256,
    fingerprint,
    fingerprint_entries,
    read_declared_version,
)
from topoforge.models.artifacts import Artifact, ArtifactKind, BundleObject, PublishResult

logger = logging.getLogger(__name__)

DEFAULT_BUNDLE_EXTENSIONS: tuple[str, ...] = (
    "json", "js", "html", "png", "ico", "txt", "map", "css",
)
DEFAULT_CONTENT_TYPE_FALLBACK = "application/octet-stream"
BUNDLE_VERSION = "static"

# Extensions the platform mimetypes table may not know.
_EXTRA_CONTENT_TYPES: dict[str, str] = {
    ".map": "application/json",
    ".ico": "image/vnd.microsoft.icon",
    ".js": "text/javascript",
}


class BuildFailed(RuntimeError):
    """Raised when an image build fails. Not retried here."""

    def __init__(self, name: str, reference: str, detail: str) -> None:
        self.name = name
        self.reference = reference
        super().__init__(f"Build of {name} ({reference}) failed: {detail}")


class PushFailed(RuntimeError):
    """Raised when pushing a built image fails. Not retried here."""

    def __init__(self, name: str, reference: str, detail: str) -> None:
        self.name = name
        self.reference = reference
        super().__init__(f"Push of {name} ({reference}) failed: {detail}")


class UnsupportedContentType(ValueError):
    """Raised for an unmapped extension when no fallback type is configured."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No content type known for {key!r} and no fallback configured")


class PublishCancelled(RuntimeError):
    """Raised when a publish is cancelled before becoming visible."""


class CancelToken:
    """Cooperative cancellation flag checked between publish steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self, what: str) -> None:
        if self._event.is_set():
            raise PublishCancelled(f"Publish of {what} was cancelled")


def content_type_for(key: str, fallback: str | None) -> tuple[str, bool]:
    """Return ``(content_type, used_fallback)`` for an object key."""
    suffix = Path(key).suffix.lower()
    if suffix in _EXTRA_CONTENT_TYPES:
        return _EXTRA_CONTENT_TYPES[suffix], False
    guessed, _ = mimetypes.guess_type(key, strict=False)
    if guessed:
        return guessed, False
    if fallback is None:
        raise UnsupportedContentType(key)
    return fallback, True


class ArtifactPublisher:
    """Publishes images and bundles through pluggable backends.

    Parameters
    ----------
    images:
        Backend that builds and pushes images.
    objects:
        Object store receiving bundle files.
    extensions:
        Allow-list of bundle file extensions (without the dot).
    content_type_fallback:
        Type for unmapped extensions; ``None`` makes them an error.
    """

    def __init__(
        self,
        images: ImageBackend,
        objects: ObjectStore,
        *,
        extensions: Iterable[str] = DEFAULT_BUNDLE_EXTENSIONS,
        content_type_fallback: str | None = DEFAULT_CONTENT_TYPE_FALLBACK,
        max_workers: int = 2,
    ) -> None:
        self._images = images
        self._objects = objects
        self._extensions = frozenset(e.lower().lstrip(".") for e in extensions)
        self._fallback = content_type_fallback
        self._max_workers = max_workers
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self.results: list[PublishResult] = []

    @contextmanager
    def _hold(self, reference: str) -> Iterator[None]:
        """Serialize publishes of one reference."""
        with self._guard:
            lock = self._locks.setdefault(reference, threading.Lock())
        with lock:
            yield

    def _record(self, result: PublishResult) -> Artifact:
        with self._guard:
            self.results.append(result)
        return result.artifact

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def image_reference(
        self, build_context: Path | str, registry_endpoint: str
    ) -> tuple[str, Artifact]:
        """Compute the reference and unpublished Artifact for a build context."""
        context = Path(build_context)
        version = read_declared_version(context)
        fp = fingerprint(context, version)
        reference = f"{registry_endpoint}:{version}-{fp.digest}"
        return reference, Artifact(
            kind=ArtifactKind.IMAGE,
            name="",
            content_path=context,
            fingerprint=fp,
            reference=reference,
        )

    def publish_image(
        self,
        name: str,
        build_context: Path | str,
        registry_endpoint: str,
        *,
        cancel: CancelToken | None = None,
    ) -> Artifact:
        """Build and push an image unless its reference already exists.

        Raises
        ------
        InputNotFound
            If the build context or its version manifest is missing.
        BuildFailed, PushFailed
            If the backend fails. Neither is retried.
        PublishCancelled
            If ``cancel`` fires before the push.
        """
        reference, draft = self.image_reference(build_context, registry_endpoint)
        artifact = draft.model_copy(update={"name": name, "published": True})

        with self._hold(reference):
            if self._images.exists(reference):
                logger.info("Image %s already published as %s; skipping", name, reference)
                return self._record(PublishResult(artifact=artifact, skipped=True))

            if cancel is not None:
                cancel.check(name)
            logger.info("Building image %s as %s", name, reference)
            try:
                self._images.build(draft.content_path, reference)
            except Exception as exc:
                raise BuildFailed(name, reference, str(exc)) from exc

            if cancel is not None and cancel.cancelled:
                discard = getattr(self._images, "discard", None)
                if discard is not None:
                    discard(reference)
                cancel.check(name)

            try:
                self._images.push(reference)
            except Exception as exc:
                raise PushFailed(name, reference, str(exc)) from exc
            logger.info("Pushed image %s", reference)

        return self._record(PublishResult(artifact=artifact, uploaded=[reference]))

    # ------------------------------------------------------------------
    # Bundles
    # ------------------------------------------------------------------

    def bundle_files(self, content_dir: Path | str) -> list[tuple[str, Path]]:
        """Return allow-listed ``(key, path)`` pairs under ``content_dir``, sorted."""
        root = Path(content_dir)
        if not root.is_dir():
            raise InputNotFound(root)
        files = []
        for path in root.rglob("*"):
            if not path.is_file():
                continue
            if path.suffix.lower().lstrip(".") not in self._extensions:
                continue
            files.append((path.relative_to(root).as_posix(), path))
        files.sort(key=lambda item: item[0])
        return files

    def publish_bundle(
        self,
        name: str,
        content_dir: Path | str,
        *,
        version: str = BUNDLE_VERSION,
        cancel: CancelToken | None = None,
    ) -> Artifact:
        """Upload a static bundle; unchanged objects are skipped by ETag.

        Raises
        ------
        InputNotFound
            If ``content_dir`` does not exist.
        UnsupportedContentType
            If an extension is unmapped and the fallback is disabled.
        PublishCancelled
            If ``cancel`` fires before the commit.
        """
        root = Path(content_dir)
        objects: list[BundleObject] = []
        sources: dict[str, Path] = {}
        for key, path in self.bundle_files(root):
            content_type, used_fallback = content_type_for(key, self._fallback)
            if used_fallback:
                logger.warning(
                    "No content type for %s; serving as %s", key, content_type
                )
            objects.append(
                BundleObject(
                    key=key,
                    content_type=content_type,
                    etag=file_md5(path),
                    sha256=file_sha256(path),
                    size_bytes=path.stat().st_size,
                    content_type_fallback=used_fallback,
                )
            )
            sources[key] = path

        fp = fingerprint_entries([(o.key, o.sha256) for o in objects], version)
        reference = self._objects.website_endpoint
        artifact = Artifact(
            kind=ArtifactKind.BUNDLE,
            name=name,
            content_path=root,
            fingerprint=fp,
            reference=reference,
            published=True,
            objects=objects,
        )

        uploaded: list[str] = []
        unchanged: list[str] = []
        with self._hold(reference):
            try:
                for obj in objects:
                    if cancel is not None:
                        cancel.check(name)
                    if self._objects.etag(obj.key) == obj.etag:
                        unchanged.append(obj.key)
                        continue
                    self._objects.stage(obj, sources[obj.key])
                    uploaded.append(obj.key)
                if cancel is not None:
                    cancel.check(name)
            except PublishCancelled:
                self._objects.abort()
                raise
            self._objects.commit(objects)

        logger.info(
            "Published bundle %s to %s: %d uploaded, %d unchanged",
            name, reference, len(uploaded), len(unchanged),
        )
        return self._record(
            PublishResult(
                artifact=artifact,
                skipped=not uploaded,
                uploaded=uploaded,
                unchanged=unchanged,
            )
        )

    # ------------------------------------------------------------------
    # Parallel publish
    # ------------------------------------------------------------------

    def publish_all(
        self,
        images: Iterable[tuple[str, Path | str, str]] = (),
        bundles: Iterable[tuple[str, Path | str]] = (),
        *,
        cancel: CancelToken | None = None,
    ) -> dict[str, Artifact]:
        """Publish independent images and bundles in parallel.

        ``images`` are ``(name, build_context, registry_endpoint)`` and
        ``bundles`` are ``(name, content_dir)``. The first failure is raised
        after every started publish has finished.
        """
        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {
                name: pool.submit(self.publish_image, name, ctx, registry, cancel=cancel)
                for name, ctx, registry in images
            }
            for name, content_dir in bundles:
                if name in futures:
                    raise ValueError(f"Duplicate artifact name {name!r}")
                futures[name] = pool.submit(
                    self.publish_bundle, name, content_dir, cancel=cancel
                )
        return {name: future.result() for name, future in futures.items()}
