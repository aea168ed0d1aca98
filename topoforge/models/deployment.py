"""Deployment models — assembly inputs, the resource graph, and the result."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

from topoforge.models.access import AccessEdge, AccessPolicy
from topoforge.models.artifacts import Artifact
from topoforge.models.network import NetworkTopology
from topoforge.models.placement import EnvValue, OutputRef, Placement, ResourceShape
from topoforge.models.routing import EdgeDistribution, LoadBalancer, Route


class DatabaseSpec(BaseModel):
    """Declared database tier; placed into the data segments."""

    model_config = ConfigDict(frozen=True)

    name: str
    access_group: str = "database"
    engine: str = "postgres"
    engine_version: str = "11.10"
    family: str = "postgres11"
    instance_class: str = "db.t3.micro"
    allocated_storage: int = 5
    port: int = 5432
    maintenance_window: str = "Mon:00:00-Mon:03:00"
    backup_window: str = "03:00-06:00"
    password_length: int = 16


class DatabaseInstance(BaseModel):
    """A defined database. Endpoint values exist only after apply."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    db_name: str
    username: str
    password: OutputRef
    spec: DatabaseSpec
    subnet_group: str
    subnets: list[str]

    def output(self, attribute: str) -> OutputRef:
        return OutputRef(entity=self.identifier, attribute=attribute)

    @property
    def address(self) -> OutputRef:
        return self.output("address")

    @property
    def port(self) -> OutputRef:
        return self.output("port")


class PlacementSpec(BaseModel):
    """Declared placement; becomes a ``Placement`` once its artifact is published."""

    model_config = ConfigDict(frozen=True)

    name: str
    artifact: str  # name of an image Artifact in DeploymentConfig.artifacts
    env: dict[str, EnvValue] = {}
    access_group: str
    replicas: int = 1
    container_port: int = 80
    health_check_path: str = "/ready"
    shape: ResourceShape = ResourceShape()


class DeploymentConfig(BaseModel):
    """Everything ``assemble`` needs, passed explicitly.

    ``tags`` is applied to every resource. ``dependencies`` declares extra
    ``(before, after)`` ordering edges between resource ids on top of the
    derived ones.
    """

    model_config = ConfigDict(frozen=True)

    region: str = "us-east-1"
    cidr_block: str = "10.0.0.0/16"
    zone_count: int = 3
    single_egress: bool = True
    segment_prefix: int = 24
    tags: dict[str, str] = {}
    edges: list[AccessEdge] = []
    egress_overrides: dict[str, str] = {}
    artifacts: list[Artifact] = []
    placements: list[PlacementSpec] = []
    routes: list[Route] = []
    database: DatabaseSpec | None = None
    load_balancer_group: str = "loadbalancer"
    cluster: str = "cluster"
    domain_suffix: str = "cloudfront.net"
    dependencies: list[tuple[str, str]] = []

    def artifact(self, name: str) -> Artifact | None:
        for artifact in self.artifacts:
            if artifact.name == name:
                return artifact
        return None


class ResourceNode(BaseModel):
    """One resource handed to the apply engine, with explicit dependencies."""

    model_config = ConfigDict(frozen=True)

    resource_id: str  # "<kind>:<name>"
    kind: str
    depends_on: list[str] = []
    attributes: dict[str, Any] = {}
    tags: dict[str, str] = {}


class Deployment(BaseModel):
    """The assembled root entity — lifetime boundary for everything in it.

    ``domain`` is the single externally reachable endpoint. ``resources``
    are in dependency order; ``change_fingerprint`` changes whenever any
    resource definition changes.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    topology: NetworkTopology
    policy: AccessPolicy
    artifacts: list[Artifact]
    placements: list[Placement]
    routes: list[Route]
    database: DatabaseInstance | None = None
    load_balancer: LoadBalancer | None = None
    distribution: EdgeDistribution
    resources: list[ResourceNode]
    tags: dict[str, str] = {}
    domain: str
    change_fingerprint: str

    def placement(self, name: str) -> Placement:
        for placement in self.placements:
            if placement.name == name:
                return placement
        raise KeyError(f"No placement named {name!r}")

    def artifact(self, name: str) -> Artifact:
        for artifact in self.artifacts:
            if artifact.name == name:
                return artifact
        raise KeyError(f"No artifact named {name!r}")

    def resource(self, resource_id: str) -> ResourceNode:
        for node in self.resources:
            if node.resource_id == resource_id:
                return node
        raise KeyError(f"No resource {resource_id!r}")

    @property
    def resource_ids(self) -> list[str]:
        return [node.resource_id for node in self.resources]
