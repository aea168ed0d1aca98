"""Topoforge: declarative resource-topology compiler.

Turns a declared application stack into an ordered, validated resource
graph:
  - Content-addressed fingerprints for build contexts and static bundles
  - Deterministic network carving across availability zones
  - Least-privilege access policy derived from a directed edge set
  - Idempotent, cancellable artifact publishing
  - Compute placements bound to published artifacts only
  - Longest-prefix routing behind a caching edge
  - Assembly that reports every violation at once
"""

__version__ = "0.1.0"
__description__ = "Declarative resource-topology compiler for three-tier stacks"

from topoforge.core.assembler import assemble
from topoforge.core.publisher import ArtifactPublisher
from topoforge.cli.app import app as cli

__all__ = ["assemble", "ArtifactPublisher", "cli", "__version__"]
