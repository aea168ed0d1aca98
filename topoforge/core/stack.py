"""Three-tier stack preset: static bundle, one backend service, one database.

The layout reachable through the edge is::

    /backend/*  -> backend placement (dynamic cache policy)
    everything  -> static bundle      (static cache policy)

Access edges are internet -> load balancer -> service -> database, each on
a single port.
"""

from __future__ import annotations

from topoforge.core.datastore import database_environment
from topoforge.models.access import ANYWHERE_V4, AccessEdge
from topoforge.models.artifacts import Artifact
from topoforge.models.deployment import DatabaseSpec, DeploymentConfig, PlacementSpec
from topoforge.models.routing import Route

LOAD_BALANCER_GROUP = "loadbalancer"
SERVICE_GROUP = "service"
DATABASE_GROUP = "database"
BACKEND_PREFIX = "/backend/*"
LISTENER_PORT = 80


def three_tier_edges(service_port: int = 80, database_port: int = 5432) -> list[AccessEdge]:
    return [
        AccessEdge(source=ANYWHERE_V4, destination=LOAD_BALANCER_GROUP, port=LISTENER_PORT),
        AccessEdge(source=LOAD_BALANCER_GROUP, destination=SERVICE_GROUP, port=service_port),
        AccessEdge(source=SERVICE_GROUP, destination=DATABASE_GROUP, port=database_port),
    ]


def three_tier_config(
    image: Artifact,
    bundle: Artifact,
    *,
    database_name: str = "app",
    service_name: str = "backend",
    replicas: int = 1,
    container_port: int = 80,
    **overrides: object,
) -> DeploymentConfig:
    """Build the ``DeploymentConfig`` for the standard three-tier layout.

    ``overrides`` are passed through to ``DeploymentConfig`` (region,
    cidr_block, tags, ...).
    """
    database = DatabaseSpec(name=database_name, access_group=DATABASE_GROUP)
    env = {"PORT": str(container_port), **database_environment(database)}
    backend = PlacementSpec(
        name=service_name,
        artifact=image.name,
        env=env,
        access_group=SERVICE_GROUP,
        replicas=replicas,
        container_port=container_port,
    )
    return DeploymentConfig(
        edges=three_tier_edges(container_port, database.port),
        artifacts=[image, bundle],
        placements=[backend],
        routes=[
            Route.to_placement(BACKEND_PREFIX, service_name),
            Route.default_to_bundle(bundle.name),
        ],
        database=database,
        load_balancer_group=LOAD_BALANCER_GROUP,
        **overrides,
    )
