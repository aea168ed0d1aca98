"""Database tier — a managed instance placed into the data segments.

Every name here is derived from the ``DatabaseSpec`` alone, so workloads
can bind connection variables before the topology exists.
"""

from __future__ import annotations

from topoforge.models.deployment import DatabaseInstance, DatabaseSpec
from topoforge.models.network import NetworkTopology, Visibility
from topoforge.models.placement import EnvValue, OutputRef


def database_identifier(spec: DatabaseSpec) -> str:
    return f"{spec.name}-db"


def password_secret(spec: DatabaseSpec) -> str:
    return f"{spec.name}-db-password"


def define_database(spec: DatabaseSpec, topology: NetworkTopology) -> DatabaseInstance:
    """Define the instance; its password is generated at apply time."""
    return DatabaseInstance(
        identifier=database_identifier(spec),
        db_name=spec.name,
        username=f"{spec.name}user",
        password=OutputRef(entity=password_secret(spec), attribute="result"),
        spec=spec,
        subnet_group=topology.data_subnet_group,
        subnets=topology.segment_names(Visibility.DATA),
    )


def database_environment(spec: DatabaseSpec) -> dict[str, EnvValue]:
    """Connection variables a workload needs to reach the database."""
    identifier = database_identifier(spec)
    return {
        "POSTGRES_USER": f"{spec.name}user",
        "POSTGRES_PASSWORD": OutputRef(entity=password_secret(spec), attribute="result"),
        "POSTGRES_DB": spec.name,
        "POSTGRES_HOST": OutputRef(entity=identifier, attribute="address"),
        "POSTGRES_PORT": OutputRef(entity=identifier, attribute="port"),
    }
