"""Content fingerprint model — the cache key behind every redeploy decision."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class Fingerprint(BaseModel):
    """Deterministic digest of a file tree plus its declared version.

    Identical inputs always produce an identical digest; any byte-level
    change to a tracked file, a renamed file, or a version bump produces
    a different one.
    """

    model_config = ConfigDict(frozen=True)

    digest: str  # SHA-256 hex
    version: str
    file_count: int = 0

    @property
    def short(self) -> str:
        """First 12 hex characters, for display in plans and CLI output only.

        Image tags and object keys use the full digest.
        """
        return self.digest[:12]

    @property
    def content_address(self) -> str:
        return f"sha256:{self.digest}"
