"""Tests for the ArtifactPublisher — idempotency, locking, cancellation."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from topoforge.core.backends import LocalBucket, LocalRegistry
from topoforge.core.hasher import InputNotFound
from topoforge.core.publisher import (
    ArtifactPublisher,
    BuildFailed,
    CancelToken,
    PublishCancelled,
    PushFailed,
    UnsupportedContentType,
    content_type_for,
)
from topoforge.models.artifacts import ArtifactKind

REGISTRY = "registry.local/backend"


class _SlowRegistry(LocalRegistry):
    """Records how many builds of one reference overlap."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.active = 0
        self.max_active = 0
        self._count_lock = threading.Lock()

    def build(self, context: Path, reference: str) -> None:
        with self._count_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(0.05)
        super().build(context, reference)
        with self._count_lock:
            self.active -= 1


class _CancellingRegistry(LocalRegistry):
    """Fires the cancel token right after the build finishes."""

    def __init__(self, root: Path, token: CancelToken) -> None:
        super().__init__(root)
        self.token = token

    def build(self, context: Path, reference: str) -> None:
        super().build(context, reference)
        self.token.cancel()


class _BrokenRegistry(LocalRegistry):
    def __init__(self, root: Path, *, fail_build: bool) -> None:
        super().__init__(root)
        self.fail_build = fail_build

    def build(self, context: Path, reference: str) -> None:
        if self.fail_build:
            raise OSError("daemon unreachable")
        super().build(context, reference)

    def push(self, reference: str) -> None:
        raise OSError("denied: requested access to the resource is denied")


class _CancellingBucket(LocalBucket):
    def __init__(self, root: Path, token: CancelToken) -> None:
        super().__init__(root, "frontend")
        self.token = token

    def stage(self, obj, source):
        super().stage(obj, source)
        self.token.cancel()


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


class TestPublishImage:
    def test_reference_format(self, publisher, build_context):
        artifact = publisher.publish_image("backend", build_context, REGISTRY)
        assert artifact.kind == ArtifactKind.IMAGE
        assert artifact.published
        assert artifact.reference == f"{REGISTRY}:1.0.0-{artifact.fingerprint.digest}"

    def test_second_publish_is_skipped(self, publisher, registry, build_context):
        first = publisher.publish_image("backend", build_context, REGISTRY)
        second = publisher.publish_image("backend", build_context, REGISTRY)
        assert first.reference == second.reference
        assert len(registry.builds) == 1
        assert len(registry.pushes) == 1
        assert [r.skipped for r in publisher.results] == [False, True]

    def test_content_change_same_version_changes_reference(
        self, publisher, registry, build_context
    ):
        first = publisher.publish_image("backend", build_context, REGISTRY)
        (build_context / "src" / "index.js").write_text("console.log('v2');\n", encoding="utf-8")
        second = publisher.publish_image("backend", build_context, REGISTRY)
        assert second.fingerprint.version == first.fingerprint.version == "1.0.0"
        assert second.reference != first.reference
        assert registry.references() == sorted([first.reference, second.reference])

    def test_pushed_manifest_lists_files(self, publisher, registry, build_context):
        artifact = publisher.publish_image("backend", build_context, REGISTRY)
        layers = registry.manifest(artifact.reference)["layers"]
        assert sorted(layers) == ["Dockerfile", "package.json", "src/index.js"]

    def test_missing_context(self, publisher, tmp_dir):
        with pytest.raises(InputNotFound):
            publisher.publish_image("backend", tmp_dir / "missing", REGISTRY)

    def test_build_failed(self, bucket, build_context, tmp_dir):
        publisher = ArtifactPublisher(_BrokenRegistry(tmp_dir / "r", fail_build=True), bucket)
        with pytest.raises(BuildFailed) as exc_info:
            publisher.publish_image("backend", build_context, REGISTRY)
        assert exc_info.value.name == "backend"
        assert exc_info.value.reference.startswith(f"{REGISTRY}:1.0.0-")
        assert "daemon unreachable" in str(exc_info.value)

    def test_push_failed_leaves_nothing_visible(self, bucket, build_context, tmp_dir):
        registry = _BrokenRegistry(tmp_dir / "r", fail_build=False)
        publisher = ArtifactPublisher(registry, bucket)
        with pytest.raises(PushFailed):
            publisher.publish_image("backend", build_context, REGISTRY)
        assert registry.references() == []

    def test_same_reference_is_serialized(self, bucket, build_context, tmp_dir):
        registry = _SlowRegistry(tmp_dir / "r")
        publisher = ArtifactPublisher(registry, bucket)
        results = []
        threads = [
            threading.Thread(
                target=lambda: results.append(
                    publisher.publish_image("backend", build_context, REGISTRY)
                )
            )
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert registry.max_active == 1
        assert len(registry.builds) == 1
        assert len({a.reference for a in results}) == 1


class TestCancellation:
    def test_cancel_before_build(self, publisher, registry, build_context):
        token = CancelToken()
        token.cancel()
        with pytest.raises(PublishCancelled):
            publisher.publish_image("backend", build_context, REGISTRY, cancel=token)
        assert registry.builds == []
        assert registry.references() == []

    def test_cancel_after_build_discards_staged_image(self, bucket, build_context, tmp_dir):
        token = CancelToken()
        registry = _CancellingRegistry(tmp_dir / "r", token)
        publisher = ArtifactPublisher(registry, bucket)
        with pytest.raises(PublishCancelled):
            publisher.publish_image("backend", build_context, REGISTRY, cancel=token)
        assert registry.pushes == []
        assert registry.references() == []
        assert list((tmp_dir / "r" / "staging").iterdir()) == []

    def test_cancel_bundle_commits_nothing(self, registry, static_dir, tmp_dir):
        token = CancelToken()
        bucket = _CancellingBucket(tmp_dir / "b", token)
        publisher = ArtifactPublisher(registry, bucket)
        with pytest.raises(PublishCancelled):
            publisher.publish_bundle("frontend", static_dir, cancel=token)
        assert bucket.keys() == []


# ---------------------------------------------------------------------------
# Bundles
# ---------------------------------------------------------------------------


class TestPublishBundle:
    def test_allow_listed_files_only(self, publisher, bucket, static_dir):
        artifact = publisher.publish_bundle("frontend", static_dir)
        keys = [o.key for o in artifact.objects]
        assert "README.md" not in keys
        assert keys == sorted(keys)
        assert bucket.keys() == keys

    def test_reference_is_website_endpoint(self, publisher, static_dir):
        artifact = publisher.publish_bundle("frontend", static_dir)
        assert artifact.kind == ArtifactKind.BUNDLE
        assert artifact.reference == "frontend.s3-website-us-east-1.amazonaws.com"

    def test_content_types(self, publisher, static_dir):
        types = {o.key: o.content_type for o in publisher.publish_bundle("frontend", static_dir).objects}
        assert types["index.html"] == "text/html"
        assert types["assets/style.css"] == "text/css"
        assert types["assets/app.js"] == "text/javascript"
        assert types["assets/app.js.map"] == "application/json"
        assert types["logo.png"] == "image/png"
        assert types["manifest.json"] == "application/json"

    def test_unchanged_objects_are_not_reuploaded(self, publisher, bucket, static_dir):
        publisher.publish_bundle("frontend", static_dir)
        uploads = len(bucket.uploads)
        (static_dir / "index.html").write_text("<html>v2</html>", encoding="utf-8")
        publisher.publish_bundle("frontend", static_dir)
        assert bucket.uploads[uploads:] == ["index.html"]
        assert publisher.results[-1].uploaded == ["index.html"]

    def test_republish_without_changes_is_skipped(self, publisher, static_dir):
        first = publisher.publish_bundle("frontend", static_dir)
        second = publisher.publish_bundle("frontend", static_dir)
        assert first.fingerprint == second.fingerprint
        assert publisher.results[-1].skipped

    def test_content_change_changes_fingerprint(self, publisher, static_dir):
        first = publisher.publish_bundle("frontend", static_dir)
        (static_dir / "robots.txt").write_text("User-agent: bot\n", encoding="utf-8")
        assert publisher.publish_bundle("frontend", static_dir).fingerprint != first.fingerprint

    def test_committed_bytes(self, publisher, bucket, static_dir):
        publisher.publish_bundle("frontend", static_dir)
        assert bucket.get("index.html") == b"<html></html>"

    def test_missing_dir(self, publisher, tmp_dir):
        with pytest.raises(InputNotFound):
            publisher.publish_bundle("frontend", tmp_dir / "missing")

    def test_unmapped_extension_uses_fallback(self, registry, bucket, tmp_dir):
        root = tmp_dir / "odd"
        root.mkdir()
        (root / "blob.qqzz").write_bytes(b"\x00\x01")
        publisher = ArtifactPublisher(registry, bucket, extensions=["qqzz"])
        obj = publisher.publish_bundle("odd", root).objects[0]
        assert obj.content_type == "application/octet-stream"
        assert obj.content_type_fallback

    def test_unmapped_extension_without_fallback(self, registry, bucket, tmp_dir):
        root = tmp_dir / "odd"
        root.mkdir()
        (root / "blob.qqzz").write_bytes(b"\x00\x01")
        publisher = ArtifactPublisher(
            registry, bucket, extensions=["qqzz"], content_type_fallback=None
        )
        with pytest.raises(UnsupportedContentType) as exc_info:
            publisher.publish_bundle("odd", root)
        assert exc_info.value.key == "blob.qqzz"


class TestPublishAll:
    def test_publishes_both(self, publisher, build_context, static_dir):
        published = publisher.publish_all(
            images=[("backend", build_context, REGISTRY)],
            bundles=[("frontend", static_dir)],
        )
        assert sorted(published) == ["backend", "frontend"]
        assert all(a.published for a in published.values())

    def test_duplicate_names_rejected(self, publisher, build_context, static_dir):
        with pytest.raises(ValueError, match="Duplicate"):
            publisher.publish_all(
                images=[("site", build_context, REGISTRY)],
                bundles=[("site", static_dir)],
            )


def test_content_type_for_never_defaults_to_html():
    content_type, fallback = content_type_for("file.qqzz", "application/octet-stream")
    assert content_type != "text/html"
    assert fallback
