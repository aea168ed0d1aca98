"""Content-addressed artifact models — immutable once published."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from topoforge.models.fingerprint import Fingerprint


class ArtifactKind(str, Enum):
    IMAGE = "image"
    BUNDLE = "bundle"


class BundleObject(BaseModel):
    """One uploaded file of a static bundle, keyed by its relative path."""

    model_config = ConfigDict(frozen=True)

    key: str
    content_type: str
    etag: str  # MD5 hex, as object stores report it
    sha256: str
    size_bytes: int
    content_type_fallback: bool = False  # True when the extension was not mapped


class Artifact(BaseModel):
    """An immutable, content-addressed deployable unit.

    A new fingerprint always yields a new Artifact; an existing one is never
    mutated. ``reference`` is ``registry:version-fingerprint`` for images and
    the bucket's website endpoint for bundles.
    """

    model_config = ConfigDict(frozen=True)

    kind: ArtifactKind
    name: str
    content_path: Path
    fingerprint: Fingerprint
    reference: str = ""
    published: bool = False
    objects: list[BundleObject] = []
    metadata: dict[str, Any] = {}

    @property
    def is_image(self) -> bool:
        return self.kind == ArtifactKind.IMAGE

    @property
    def is_bundle(self) -> bool:
        return self.kind == ArtifactKind.BUNDLE


class PublishResult(BaseModel):
    """Outcome of one publish call — the artifact plus what was actually done."""

    model_config = ConfigDict(frozen=True)

    artifact: Artifact
    skipped: bool = False  # True when the reference already existed remotely
    uploaded: list[str] = []
    unchanged: list[str] = []
