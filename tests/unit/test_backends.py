"""Tests for the blob store and the publishing backends."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from topoforge.core import backends
from topoforge.core.backends import (
    DockerCliBackend,
    ImageBackend,
    LocalBucket,
    LocalRegistry,
    ObjectStore,
)
from topoforge.core.blob_store import BlobIntegrityError, BlobStore
from topoforge.core.hasher import sha256_hex
from topoforge.models.artifacts import BundleObject


class TestBlobStore:
    def test_layout(self, tmp_dir: Path):
        store = BlobStore(tmp_dir / "blobs")
        digest = store.store_bytes(b"hello")
        assert digest == sha256_hex(b"hello")
        assert (tmp_dir / "blobs" / digest[:2] / digest[2:4] / f"{digest}.dat").exists()

    def test_store_twice_is_noop(self, tmp_dir: Path):
        store = BlobStore(tmp_dir / "blobs")
        assert store.store_bytes(b"x") == store.store_bytes(b"x")

    def test_retrieve_by_address(self, tmp_dir: Path):
        store = BlobStore(tmp_dir / "blobs")
        digest = store.store_bytes(b"data")
        assert store.retrieve(f"sha256:{digest}") == b"data"
        assert store.exists(digest)

    def test_store_file(self, tmp_dir: Path):
        source = tmp_dir / "f.bin"
        source.write_bytes(b"\x00\x01")
        store = BlobStore(tmp_dir / "blobs")
        digest = store.store_file(source)
        assert store.verify(digest)

    def test_missing(self, tmp_dir: Path):
        store = BlobStore(tmp_dir / "blobs")
        with pytest.raises(FileNotFoundError):
            store.retrieve("0" * 64)
        assert not store.verify("0" * 64)

    def test_tampered_blob_detected(self, tmp_dir: Path):
        store = BlobStore(tmp_dir / "blobs")
        digest = store.store_bytes(b"original")
        (tmp_dir / "blobs" / digest[:2] / digest[2:4] / f"{digest}.dat").write_bytes(b"evil")
        assert not store.verify(digest)
        with pytest.raises(BlobIntegrityError):
            store.store_bytes(b"original")


class TestLocalRegistry:
    def test_satisfies_protocol(self, registry):
        assert isinstance(registry, ImageBackend)

    def test_build_is_invisible_until_push(self, registry, build_context):
        registry.build(build_context, "r:1")
        assert not registry.exists("r:1")
        registry.push("r:1")
        assert registry.exists("r:1")
        assert registry.references() == ["r:1"]

    def test_push_without_build(self, registry):
        with pytest.raises(FileNotFoundError):
            registry.push("r:never-built")

    def test_discard(self, registry, build_context):
        registry.build(build_context, "r:1")
        registry.discard("r:1")
        with pytest.raises(FileNotFoundError):
            registry.push("r:1")


class TestLocalBucket:
    def _obj(self, key: str, data: bytes) -> BundleObject:
        return BundleObject(
            key=key,
            content_type="text/plain",
            etag="e-" + key,
            sha256=sha256_hex(data),
            size_bytes=len(data),
        )

    def test_satisfies_protocol(self, bucket):
        assert isinstance(bucket, ObjectStore)

    def test_stage_is_invisible_until_commit(self, bucket, tmp_dir):
        source = tmp_dir / "a.txt"
        source.write_bytes(b"a")
        obj = self._obj("a.txt", b"a")
        bucket.stage(obj, source)
        assert bucket.keys() == []
        assert bucket.etag("a.txt") is None
        bucket.commit([obj])
        assert bucket.keys() == ["a.txt"]
        assert bucket.etag("a.txt") == "e-a.txt"
        assert bucket.get("a.txt") == b"a"

    def test_get_missing(self, bucket):
        with pytest.raises(FileNotFoundError):
            bucket.get("nope.txt")

    def test_website_endpoint(self, tmp_dir):
        bucket = LocalBucket(tmp_dir / "b", "site", region="eu-west-1")
        assert bucket.website_endpoint == "site.s3-website-eu-west-1.amazonaws.com"


class TestDockerCliBackend:
    @pytest.fixture
    def calls(self, monkeypatch) -> list[list[str]]:
        recorded: list[list[str]] = []

        def _run(args, **kwargs):
            recorded.append(list(args))
            returncode = 1 if args[1:3] == ["manifest", "inspect"] else 0
            return subprocess.CompletedProcess(args, returncode, stdout="", stderr="")

        monkeypatch.setattr(backends.subprocess, "run", _run)
        return recorded

    def test_exists_uses_manifest_inspect(self, calls):
        assert DockerCliBackend().exists("repo:tag") is False
        assert calls == [["docker", "manifest", "inspect", "repo:tag"]]

    def test_build_and_push(self, calls, tmp_dir):
        docker = DockerCliBackend()
        docker.build(tmp_dir, "repo:tag")
        docker.push("repo:tag")
        assert calls == [
            ["docker", "build", "-t", "repo:tag", str(tmp_dir)],
            ["docker", "push", "repo:tag"],
        ]

    def test_logs_in_once(self, calls):
        docker = DockerCliBackend(username="u", password="p", endpoint="reg.example")
        docker.push("repo:1")
        docker.push("repo:2")
        logins = [c for c in calls if c[1] == "login"]
        assert logins == [["docker", "login", "-u", "u", "--password-stdin", "reg.example"]]
