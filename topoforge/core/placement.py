"""Compute placement — bind a published artifact to env, access group and roles.

Two roles are derived per placement. The execution role may pull the image
and write logs; the task role, which the running container holds, may only
write logs. A compromised instance therefore cannot pull or modify other
artifacts.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from topoforge.core.hasher import content_address
from topoforge.models.artifacts import Artifact
from topoforge.models.placement import (
    EnvValue,
    ExecutionRole,
    LogGroup,
    OutputRef,
    Placement,
    PolicyStatement,
    ResourceShape,
)

logger = logging.getLogger(__name__)

PULL_ACTIONS: tuple[str, ...] = (
    "ecr:GetAuthorizationToken",
    "ecr:BatchCheckLayerAvailability",
    "ecr:GetDownloadUrlForLayer",
    "ecr:BatchGetImage",
)
LOG_ACTIONS: tuple[str, ...] = ("logs:CreateLogStream", "logs:PutLogEvents")
LOG_RETENTION_DAYS = 30


class ArtifactNotReady(RuntimeError):
    """Raised when a placement is defined before its artifact is published.

    The assembler checks publication before defining placements, so seeing
    this error means a caller skipped that ordering.
    """

    def __init__(self, placement: str, artifact: Artifact) -> None:
        self.placement = placement
        self.artifact = artifact.name
        super().__init__(
            f"Placement {placement!r} references artifact {artifact.name!r} "
            "which has not been published"
        )


def execution_roles(name: str) -> tuple[ExecutionRole, ExecutionRole]:
    """Return ``(execution_role, task_role)`` for a placement."""
    execution = ExecutionRole(
        name=f"{name}-execution-role",
        purpose="execution",
        policy_name="allow-image-pull",
        statements=[PolicyStatement(actions=[*PULL_ACTIONS, *LOG_ACTIONS])],
    )
    task = ExecutionRole(
        name=f"{name}-task-role",
        purpose="task",
        policy_name="allow-logs",
        statements=[PolicyStatement(actions=list(LOG_ACTIONS))],
    )
    return execution, task


def replacement_key(artifact_reference: str, env: Mapping[str, EnvValue]) -> str:
    """Digest of everything whose change forces the placement to be replaced."""
    bindings = {
        key: value.model_dump() if isinstance(value, OutputRef) else value
        for key, value in env.items()
    }
    return content_address({"artifact": artifact_reference, "env": bindings})


def define_placement(
    name: str,
    artifact: Artifact,
    env: Mapping[str, EnvValue],
    access_group: str,
    replicas: int = 1,
    *,
    shape: ResourceShape | None = None,
    container_port: int = 80,
    health_check_path: str = "/ready",
    cluster: str = "cluster",
    region: str = "us-east-1",
) -> Placement:
    """Define a placement for an already-published artifact.

    Deferred ``OutputRef`` values in ``env`` are kept as-is.

    Raises
    ------
    ArtifactNotReady
        If ``artifact.published`` is false.
    ValueError
        If ``replicas`` is negative.
    """
    if not artifact.published:
        raise ArtifactNotReady(name, artifact)
    if replicas < 0:
        raise ValueError(f"Placement {name!r}: replicas must be >= 0, got {replicas}")

    execution, task = execution_roles(name)
    placement = Placement(
        name=name,
        artifact=artifact,
        env=dict(env),
        access_group=access_group,
        replicas=replicas,
        shape=shape or ResourceShape(),
        container_port=container_port,
        health_check_path=health_check_path,
        cluster=cluster,
        region=region,
        execution_role=execution,
        task_role=task,
        log_group=LogGroup(name=f"{cluster}/{name}", retention_in_days=LOG_RETENTION_DAYS),
        replacement_key=replacement_key(artifact.reference, env),
    )
    logger.debug("Defined placement %s on %s", name, artifact.reference)
    return placement
