"""Compute placement models — runnable units bound to a published artifact."""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, ConfigDict

from topoforge.models.artifacts import Artifact

TASK_SERVICE_PRINCIPAL = "ecs-tasks.amazonaws.com"


class OutputRef(BaseModel):
    """A deferred reference to another entity's output.

    Placements pass these through untouched; the assembler resolves them
    against the values the apply engine reports.
    """

    model_config = ConfigDict(frozen=True)

    entity: str
    attribute: str

    @property
    def key(self) -> str:
        return f"{self.entity}.{self.attribute}"

    def __str__(self) -> str:
        return f"${{{self.key}}}"


EnvValue = Union[str, OutputRef]


class ResourceShape(BaseModel):
    """CPU and memory units. Fixed defaults, not derived."""

    model_config = ConfigDict(frozen=True)

    cpu: int = 256
    memory: int = 512


class PolicyStatement(BaseModel):
    model_config = ConfigDict(frozen=True)

    effect: str = "Allow"
    actions: list[str]
    resource: str = "*"


class ExecutionRole(BaseModel):
    """A role assumable only by the task service principal."""

    model_config = ConfigDict(frozen=True)

    name: str
    purpose: str  # "execution" or "task"
    policy_name: str
    statements: list[PolicyStatement]
    assumed_by: str = TASK_SERVICE_PRINCIPAL

    @property
    def actions(self) -> list[str]:
        return [a for s in self.statements for a in s.actions]

    def policy_document(self) -> dict[str, Any]:
        return {
            "Version": "2012-10-17",
            "Statement": [
                {"Effect": s.effect, "Action": list(s.actions), "Resource": s.resource}
                for s in self.statements
            ],
        }

    def assume_role_document(self) -> dict[str, Any]:
        return {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Action": "sts:AssumeRole",
                    "Effect": "Allow",
                    "Principal": {"Service": self.assumed_by},
                }
            ],
        }


class LogGroup(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    retention_in_days: int = 30


class Placement(BaseModel):
    """A runnable unit: one artifact, its environment, and its access group.

    Created only after the artifact is published. A change to the artifact
    reference or the environment bindings changes ``replacement_key``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    artifact: Artifact
    env: dict[str, EnvValue] = {}
    access_group: str
    replicas: int = 1
    shape: ResourceShape = ResourceShape()
    container_port: int = 80
    health_check_path: str = "/ready"
    cluster: str = "cluster"
    region: str = "us-east-1"
    launch_type: str = "FARGATE"
    network_mode: str = "awsvpc"
    execution_role: ExecutionRole
    task_role: ExecutionRole
    log_group: LogGroup
    replacement_key: str

    def deferred_refs(self) -> list[OutputRef]:
        """Every deferred reference in the environment, sorted by variable name."""
        return [v for _, v in sorted(self.env.items()) if isinstance(v, OutputRef)]

    def container_definition(self) -> dict[str, Any]:
        """Render the container spec handed to the apply engine."""
        return {
            "name": self.name,
            "image": self.artifact.reference,
            "cpu": self.shape.cpu,
            "memory": self.shape.memory,
            "environment": [
                {"name": key, "value": str(value)} for key, value in sorted(self.env.items())
            ],
            "portMappings": [
                {"containerPort": self.container_port, "hostPort": self.container_port}
            ],
            "logConfiguration": {
                "logDriver": "awslogs",
                "options": {
                    "awslogs-group": self.log_group.name,
                    "awslogs-region": self.region,
                    "awslogs-stream-prefix": self.name,
                },
            },
        }
