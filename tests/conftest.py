"""Shared test fixtures for Topoforge."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from topoforge.core.backends import LocalBucket, LocalRegistry
from topoforge.core.publisher import ArtifactPublisher
from topoforge.core.stack import three_tier_config
from topoforge.models.artifacts import Artifact
from topoforge.models.deployment import DeploymentConfig

REGISTRY = "registry.local/backend"


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def build_context(tmp_dir: Path) -> Path:
    """A backend build context declaring version 1.0.0 in package.json."""
    root = tmp_dir / "backend"
    (root / "src").mkdir(parents=True)
    (root / "package.json").write_text(
        json.dumps({"name": "backend", "version": "1.0.0"}), encoding="utf-8"
    )
    (root / "Dockerfile").write_text("FROM node:18\nCOPY . /app\n", encoding="utf-8")
    (root / "src" / "index.js").write_text("console.log('up');\n", encoding="utf-8")
    return root


@pytest.fixture
def static_dir(tmp_dir: Path) -> Path:
    """A static bundle with one file per common extension plus an ignored one."""
    root = tmp_dir / "static"
    (root / "assets").mkdir(parents=True)
    (root / "index.html").write_text("<html></html>", encoding="utf-8")
    (root / "assets" / "app.js").write_text("export {};", encoding="utf-8")
    (root / "assets" / "app.js.map").write_text("{}", encoding="utf-8")
    (root / "assets" / "style.css").write_text("body {}", encoding="utf-8")
    (root / "favicon.ico").write_bytes(b"\x00\x00\x01\x00")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    (root / "manifest.json").write_text("{}", encoding="utf-8")
    (root / "robots.txt").write_text("User-agent: *\n", encoding="utf-8")
    (root / "README.md").write_text("not published", encoding="utf-8")
    return root


@pytest.fixture
def registry(tmp_dir: Path) -> LocalRegistry:
    """Provide a fresh directory-backed registry."""
    return LocalRegistry(tmp_dir / "registry")


@pytest.fixture
def bucket(tmp_dir: Path) -> LocalBucket:
    """Provide a fresh directory-backed bucket."""
    return LocalBucket(tmp_dir / "bucket", "frontend", region="us-east-1")


@pytest.fixture
def publisher(registry: LocalRegistry, bucket: LocalBucket) -> ArtifactPublisher:
    """Provide a publisher wired to the local registry and bucket."""
    return ArtifactPublisher(registry, bucket)


@pytest.fixture
def image(publisher: ArtifactPublisher, build_context: Path) -> Artifact:
    """A published backend image."""
    return publisher.publish_image("backend", build_context, REGISTRY)


@pytest.fixture
def bundle(publisher: ArtifactPublisher, static_dir: Path) -> Artifact:
    """A published static bundle."""
    return publisher.publish_bundle("frontend", static_dir)


@pytest.fixture
def make_config(image: Artifact, bundle: Artifact) -> Callable[..., DeploymentConfig]:
    """Factory fixture: the three-tier config with optional field overrides."""

    def _factory(**overrides: Any) -> DeploymentConfig:
        return three_tier_config(image, bundle, **overrides)

    return _factory


@pytest.fixture
def three_tier(make_config: Callable[..., DeploymentConfig]) -> DeploymentConfig:
    """Convenience: the three-tier config with defaults."""
    return make_config()
