"""Topology assembler — the top-level composition of a deployment.

``assemble`` validates every ordering precondition up front and reports
all violations together in one ``TopologyInvalid``. Only a fully valid
configuration is turned into resources; nothing is partially assembled.

The resource graph it emits is ordered and acyclic:

    network -> access groups -> access rules -> database
    image, roles, log group -> task -> service
    load balancer -> listener -> target group -> listener rule -> service
    bucket -> bucket policy, objects -> distribution
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from topoforge.core.access_policy import InvalidEdge, derive, validate_edge
from topoforge.core.datastore import database_identifier, define_database, password_secret
from topoforge.core.hasher import content_address, sha256_hex
from topoforge.core.network import AddressSpaceExhausted, build_topology
from topoforge.core.placement import define_placement, execution_roles
from topoforge.core.resource_graph import (
    CyclicDependencyError,
    MissingDependencyError,
    ResourceGraph,
)
from topoforge.core.router import (
    FIRST_RULE_PRIORITY,
    AmbiguousRoute,
    NoDefaultRoute,
    RouteTable,
    build_distribution,
    build_load_balancer,
)
from topoforge.models.access import AccessPolicy
from topoforge.models.artifacts import ArtifactKind
from topoforge.models.deployment import (
    DatabaseInstance,
    Deployment,
    DeploymentConfig,
    ResourceNode,
)
from topoforge.models.network import NetworkTopology, Visibility
from topoforge.models.placement import OutputRef, Placement
from topoforge.models.routing import EdgeDistribution, LoadBalancer, Route, TargetKind

logger = logging.getLogger(__name__)

INTERNET_FACING_TAG = {"internet-facing": "true"}


class TopologyInvalid(ValueError):
    """Raised when a configuration cannot be assembled.

    ``violations`` holds every problem found, not just the first.
    """

    def __init__(self, deployment: str, violations: list[str]) -> None:
        self.deployment = deployment
        self.violations = list(violations)
        super().__init__(
            f"Deployment {deployment!r} is invalid ({len(violations)} violation(s)):\n"
            + "\n".join(f"  - {v}" for v in violations)
        )


class UnresolvedReference(KeyError):
    """Raised when a deferred env reference has no applied value."""

    def __init__(self, placement: str, variable: str, ref: OutputRef) -> None:
        self.placement = placement
        self.variable = variable
        self.ref = ref
        super().__init__(f"{placement}: {variable} references {ref} which has no value")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _duplicates(names: list[str]) -> list[str]:
    seen: set[str] = set()
    dupes: set[str] = set()
    for name in names:
        if name in seen:
            dupes.add(name)
        seen.add(name)
    return sorted(dupes)


def _known_outputs(config: DeploymentConfig) -> set[str]:
    """Entities whose outputs env bindings may reference."""
    if config.database is None:
        return set()
    return {database_identifier(config.database), password_secret(config.database)}


class _Checked:
    """Outcome of the validation pass.

    ``blocking`` is set when a violation leaves nothing sound to build from.
    Otherwise ``buildable`` is the configuration minus the placements (and
    the routes to them) that failed their own checks, so the rest of the
    graph can still be built and checked for cycles.
    """

    def __init__(
        self,
        violations: list[str],
        topology: NetworkTopology | None,
        policy: AccessPolicy | None,
        table: RouteTable | None,
        invalid_placements: set[str],
        blocking: bool,
        buildable: DeploymentConfig,
    ) -> None:
        self.violations = violations
        self.topology = topology
        self.policy = policy
        self.table = table
        self.invalid_placements = invalid_placements
        self.blocking = blocking
        self.buildable = buildable


def _validate(name: str, config: DeploymentConfig) -> _Checked:
    violations: list[str] = []
    # Placement-scoped findings; the rest of the graph stays buildable.
    invalid_placements: set[str] = set()
    dangling_routes: list[Route] = []

    topology: NetworkTopology | None = None
    try:
        topology = build_topology(
            name,
            config.cidr_block,
            config.zone_count,
            region=config.region,
            single_egress=config.single_egress,
            segment_prefix=config.segment_prefix,
        )
    except (AddressSpaceExhausted, ValueError) as exc:
        violations.append(f"network: {exc}")

    edge_errors: list[str] = []
    for edge in config.edges:
        try:
            validate_edge(edge)
        except InvalidEdge as exc:
            edge_errors.append(f"access: {exc}")
    violations.extend(edge_errors)

    policy: AccessPolicy | None = None
    if not edge_errors:
        try:
            policy = derive(config.edges, egress_overrides=config.egress_overrides)
        except ValueError as exc:
            violations.append(f"access: {exc}")

    def _missing_group(group: str) -> bool:
        return policy is not None and not policy.has_group(group)

    for dupe in _duplicates([a.name for a in config.artifacts]):
        violations.append(f"artifact: duplicate name {dupe!r}")
    for dupe in _duplicates([p.name for p in config.placements]):
        violations.append(f"placement: duplicate name {dupe!r}")

    known_outputs = _known_outputs(config)
    placement_violations: list[str] = []
    for spec in config.placements:
        owner = f"placement {spec.name!r}"
        found: list[str] = []
        artifact = config.artifact(spec.artifact)
        if artifact is None:
            found.append(f"{owner}: unknown artifact {spec.artifact!r}")
        elif artifact.kind != ArtifactKind.IMAGE:
            found.append(f"{owner}: artifact {spec.artifact!r} is not an image")
        elif not artifact.published:
            found.append(f"{owner}: artifact {spec.artifact!r} has not been published")
        if spec.replicas < 0:
            found.append(f"{owner}: replicas must be >= 0")
        if _missing_group(spec.access_group):
            found.append(f"{owner}: access group {spec.access_group!r} has no derived rules")
        for variable, value in sorted(spec.env.items()):
            if isinstance(value, OutputRef) and value.entity not in known_outputs:
                found.append(f"{owner}: {variable} references unknown entity {value.entity!r}")
        if found:
            invalid_placements.add(spec.name)
            placement_violations.extend(found)
    violations.extend(placement_violations)

    if config.database is not None and _missing_group(config.database.access_group):
        violations.append(
            f"database {config.database.name!r}: access group "
            f"{config.database.access_group!r} has no derived rules"
        )

    table: RouteTable | None = None
    try:
        table = RouteTable(config.routes)
    except (NoDefaultRoute, AmbiguousRoute) as exc:
        violations.append(f"routing: {exc}")

    placement_names = {p.name for p in config.placements}
    for route in config.routes:
        owner = f"route {route.path_pattern!r}"
        if route.target_kind == TargetKind.PLACEMENT:
            if route.is_default:
                violations.append(f"{owner}: default route must serve the static bundle")
            if route.target not in placement_names:
                dangling = f"{owner}: target {route.target!r} is not a defined placement"
                dangling_routes.append(route)
                placement_violations.append(dangling)
                violations.append(dangling)
            continue
        artifact = config.artifact(route.target)
        if artifact is None or artifact.kind != ArtifactKind.BUNDLE:
            violations.append(f"{owner}: target {route.target!r} is not a bundle artifact")
        elif not artifact.published:
            violations.append(f"{owner}: bundle {route.target!r} has not been published")

    if any(r.target_kind == TargetKind.PLACEMENT for r in config.routes):
        if _missing_group(config.load_balancer_group):
            violations.append(
                f"load balancer: access group {config.load_balancer_group!r} "
                "has no derived rules"
            )

    blocking = (
        topology is None
        or policy is None
        or table is None
        or len(violations) > len(placement_violations)
    )
    buildable = config.model_copy(update={
        "placements": [p for p in config.placements if p.name not in invalid_placements],
        "routes": [
            r for r in config.routes
            if r not in dangling_routes
            and not (r.target_kind == TargetKind.PLACEMENT and r.target in invalid_placements)
        ],
    })
    return _Checked(
        violations, topology, policy, table, invalid_placements, blocking, buildable
    )


def _planned_ids(
    name: str, config: DeploymentConfig, checked: _Checked
) -> tuple[set[str], set[str]]:
    """Resource ids ``assemble`` emits for ``config``, derived without building.

    Returns ``(ids, unresolved_kinds)``. Kinds whose ids depend on a part
    that failed validation land in ``unresolved_kinds`` and are not judged.
    Declared placements count even when they failed their own checks.
    """
    ids = {f"network:{name}", f"cluster:{config.cluster}", f"distribution:{name}-edge"}
    unresolved: set[str] = set()

    if checked.topology is None:
        unresolved |= {"egress", "subnet-group"}
    else:
        ids |= {f"egress:{gateway.name}" for gateway in checked.topology.egress}
        ids.add(f"subnet-group:{checked.topology.data_subnet_group}")

    if checked.policy is None:
        unresolved |= {"access-group", "access-rules"}
    else:
        for group in checked.policy.group_names:
            ids |= {f"access-group:{group}", f"access-rules:{group}"}

    if config.database is not None:
        ids.add(f"secret:{password_secret(config.database)}")
        ids.add(f"database:{database_identifier(config.database)}")

    for artifact in config.artifacts:
        if artifact.kind == ArtifactKind.IMAGE:
            ids.add(f"image:{artifact.name}")
            continue
        ids |= {f"bucket:{artifact.name}", f"bucket-policy:{artifact.name}"}
        ids |= {f"bucket-object:{artifact.name}/{obj.key}" for obj in artifact.objects}

    for spec in config.placements:
        execution, task_role = execution_roles(spec.name)
        ids |= {
            f"role:{execution.name}",
            f"role:{task_role.name}",
            f"log-group:{config.cluster}/{spec.name}",
            f"task:{spec.name}",
            f"service:{spec.name}",
        }

    if checked.table is None:
        unresolved |= {"load-balancer", "listener", "target-group", "listener-rule"}
    else:
        routed = [r for r in checked.table.routes if r.target_kind == TargetKind.PLACEMENT]
        if routed:
            lb = config.load_balancer_group
            ids |= {f"load-balancer:{lb}", f"listener:{lb}"}
            ids |= {f"target-group:{r.target}-target-group" for r in routed}
            ids |= {
                f"listener-rule:{lb}/{FIRST_RULE_PRIORITY + position}"
                for position in range(len(routed))
            }
    return ids, unresolved


# ---------------------------------------------------------------------------
# Resource nodes
# ---------------------------------------------------------------------------


class _Nodes:
    """Collects nodes before freezing them, so extra dependencies can be merged."""

    def __init__(self, tags: Mapping[str, str]) -> None:
        self._tags = dict(tags)
        self._entries: dict[str, tuple[str, set[str], dict[str, Any], dict[str, str]]] = {}

    def add(
        self,
        kind: str,
        name: str,
        depends_on: list[str] | None = None,
        extra_tags: Mapping[str, str] | None = None,
        **attributes: Any,
    ) -> str:
        rid = f"{kind}:{name}"
        self._entries[rid] = (
            kind,
            set(depends_on or []),
            attributes,
            {**self._tags, **(extra_tags or {})},
        )
        return rid

    def __contains__(self, rid: str) -> bool:
        return rid in self._entries

    def depend(self, before: str, after: str) -> None:
        self._entries[after][1].add(before)

    def freeze(self) -> list[ResourceNode]:
        return [
            ResourceNode(
                resource_id=rid,
                kind=kind,
                depends_on=sorted(deps),
                attributes=attrs,
                tags=tags,
            )
            for rid, (kind, deps, attrs, tags) in sorted(self._entries.items())
        ]


def _resource_nodes(
    config: DeploymentConfig,
    topology: NetworkTopology,
    policy: AccessPolicy,
    placements: list[Placement],
    database: DatabaseInstance | None,
    load_balancer: LoadBalancer | None,
    distribution: EdgeDistribution,
) -> _Nodes:
    nodes = _Nodes(config.tags)

    network = nodes.add(
        "network", topology.name,
        cidr_block=topology.cidr_block,
        region=topology.region,
        zones=topology.zones,
        segments=[s.model_dump(mode="json") for s in topology.segments],
        single_egress=topology.single_egress,
    )
    for gateway in topology.egress:
        nodes.add("egress", gateway.name, [network], segment=gateway.segment, serves=gateway.serves)
    subnet_group = nodes.add(
        "subnet-group", topology.data_subnet_group, [network],
        subnets=topology.segment_names(Visibility.DATA),
    )

    group_ids = {g: nodes.add("access-group", g, [network]) for g in policy.group_names}
    rule_ids: dict[str, str] = {}
    for group_policy in policy.groups:
        peers = {
            group_ids[r.peer]
            for r in [*group_policy.ingress, *group_policy.egress]
            if r.peer in group_ids
        }
        rule_ids[group_policy.group] = nodes.add(
            "access-rules", group_policy.group,
            [group_ids[group_policy.group], *peers],
            ingress=[r.model_dump(mode="json") for r in group_policy.ingress],
            egress=[r.model_dump(mode="json") for r in group_policy.egress],
        )

    output_owners: dict[str, str] = {}
    if database is not None:
        secret = nodes.add(
            "secret", database.password.entity,
            length=database.spec.password_length, special=False,
        )
        db_id = nodes.add(
            "database", database.identifier,
            [group_ids[database.spec.access_group], rule_ids[database.spec.access_group],
             subnet_group, secret],
            engine=database.spec.engine,
            engine_version=database.spec.engine_version,
            family=database.spec.family,
            instance_class=database.spec.instance_class,
            allocated_storage=database.spec.allocated_storage,
            port=database.spec.port,
            db_name=database.db_name,
            username=database.username,
            password=str(database.password),
            maintenance_window=database.spec.maintenance_window,
            backup_window=database.spec.backup_window,
            apply_immediately=True,
        )
        output_owners[database.identifier] = db_id
        output_owners[database.password.entity] = secret

    cluster = nodes.add("cluster", config.cluster, capacity_providers=["FARGATE"])

    image_ids: dict[str, str] = {}
    for artifact in config.artifacts:
        if artifact.kind == ArtifactKind.IMAGE:
            image_ids[artifact.name] = nodes.add(
                "image", artifact.name,
                reference=artifact.reference,
                fingerprint=artifact.fingerprint.digest,
                version=artifact.fingerprint.version,
            )

    listener = None
    target_group_ids: dict[str, str] = {}
    rule_ids_by_placement: dict[str, list[str]] = {}
    if load_balancer is not None:
        lb = nodes.add(
            "load-balancer", load_balancer.name,
            [group_ids[load_balancer.access_group], rule_ids[load_balancer.access_group], network],
            internal=load_balancer.internal,
            subnets=load_balancer.subnets,
            type="application",
        )
        listener = nodes.add(
            "listener", load_balancer.name, [lb],
            port=load_balancer.listener_port,
            protocol=load_balancer.listener_protocol,
            default_response=load_balancer.default_response.model_dump(mode="json"),
        )
        for tg in load_balancer.target_groups:
            target_group_ids[tg.placement] = nodes.add(
                "target-group", tg.name, [listener], **tg.model_dump(mode="json")
            )
        for rule in load_balancer.rules:
            placement_name = next(
                tg.placement for tg in load_balancer.target_groups if tg.name == rule.target_group
            )
            rule_id = nodes.add(
                "listener-rule", f"{load_balancer.name}/{rule.priority}",
                [listener, target_group_ids[placement_name]],
                **rule.model_dump(mode="json"),
            )
            rule_ids_by_placement.setdefault(placement_name, []).append(rule_id)

    private_subnets = topology.segment_names(Visibility.PRIVATE)
    for placement in placements:
        execution = nodes.add(
            "role", placement.execution_role.name,
            policy_name=placement.execution_role.policy_name,
            policy=placement.execution_role.policy_document(),
            assume_role_policy=placement.execution_role.assume_role_document(),
        )
        task_role = nodes.add(
            "role", placement.task_role.name,
            policy_name=placement.task_role.policy_name,
            policy=placement.task_role.policy_document(),
            assume_role_policy=placement.task_role.assume_role_document(),
        )
        log_group = nodes.add(
            "log-group", placement.log_group.name, [cluster],
            retention_in_days=placement.log_group.retention_in_days,
        )
        ref_owners = {output_owners[ref.entity] for ref in placement.deferred_refs()}
        task = nodes.add(
            "task", placement.name,
            [image_ids[placement.artifact.name], execution, task_role, log_group, *ref_owners],
            family="service",
            cpu=placement.shape.cpu,
            memory=placement.shape.memory,
            network_mode=placement.network_mode,
            requires_compatibilities=[placement.launch_type, "EC2"],
            container_definitions=[placement.container_definition()],
            replacement_key=placement.replacement_key,
        )
        service_deps = [task, cluster, group_ids[placement.access_group], rule_ids[placement.access_group]]
        if placement.name in target_group_ids:
            service_deps += [listener, target_group_ids[placement.name]]
            service_deps += rule_ids_by_placement.get(placement.name, [])
        nodes.add(
            "service", placement.name, service_deps,
            launch_type=placement.launch_type,
            desired_count=placement.replicas,
            subnets=private_subnets,
            container_port=placement.container_port,
            target_group=(
                f"{placement.name}-target-group" if placement.name in target_group_ids else None
            ),
        )

    bucket_ids: list[str] = []
    for artifact in config.artifacts:
        if artifact.kind != ArtifactKind.BUNDLE:
            continue
        bucket = nodes.add(
            "bucket", artifact.name,
            extra_tags=INTERNET_FACING_TAG,
            bucket_prefix=artifact.name,
            website={"index_document": "index.html", "error_document": "index.html"},
            endpoint=artifact.reference,
            fingerprint=artifact.fingerprint.digest,
        )
        bucket_policy = nodes.add(
            "bucket-policy", artifact.name, [bucket],
            policy={
                "Version": "2012-10-17",
                "Id": f"{artifact.name}-public-website",
                "Statement": [{
                    "Sid": "PublicRead",
                    "Effect": "Allow",
                    "Principal": "*",
                    "Action": ["s3:GetObject"],
                }],
            },
        )
        bucket_ids += [bucket, bucket_policy]
        for obj in artifact.objects:
            bucket_ids.append(
                nodes.add(
                    "bucket-object", f"{artifact.name}/{obj.key}", [bucket],
                    key=obj.key,
                    content_type=obj.content_type,
                    etag=obj.etag,
                )
            )

    nodes.add(
        "distribution", distribution.name,
        [*bucket_ids, *([listener] if listener else [])],
        **distribution.model_dump(mode="json"),
    )

    return nodes


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def edge_domain(deployment_name: str, suffix: str) -> str:
    """Deterministic edge domain; stable across redeploys of one deployment."""
    return f"d{sha256_hex(deployment_name.encode('utf-8'))[:13]}.{suffix}"


def _build(
    deployment_name: str,
    config: DeploymentConfig,
    topology: NetworkTopology,
    policy: AccessPolicy,
) -> tuple[
    list[Placement],
    DatabaseInstance | None,
    LoadBalancer | None,
    EdgeDistribution,
    RouteTable,
    _Nodes,
]:
    """Derive every component of a configuration that passed validation."""
    table = RouteTable(config.routes)
    placements = [
        define_placement(
            spec.name,
            config.artifact(spec.artifact),
            spec.env,
            spec.access_group,
            spec.replicas,
            shape=spec.shape,
            container_port=spec.container_port,
            health_check_path=spec.health_check_path,
            cluster=config.cluster,
            region=config.region,
        )
        for spec in config.placements
    ]
    by_name = {p.name: p for p in placements}

    database = define_database(config.database, topology) if config.database else None

    load_balancer = None
    if table.targets(TargetKind.PLACEMENT):
        load_balancer = build_load_balancer(
            config.load_balancer_group,
            config.load_balancer_group,
            table,
            by_name,
            topology.segment_names(Visibility.PUBLIC),
        )

    bundle = config.artifact(table.default.target)
    distribution = build_distribution(
        f"{deployment_name}-edge",
        edge_domain(deployment_name, config.domain_suffix),
        table,
        bundle.reference,
        load_balancer,
    )
    nodes = _resource_nodes(
        config, topology, policy, placements, database, load_balancer, distribution
    )
    return placements, database, load_balancer, distribution, table, nodes


def assemble(deployment_name: str, config: DeploymentConfig) -> Deployment:
    """Assemble a deployment or fail with every violation at once.

    Validation, unknown ``dependencies`` ids and dependency cycles are all
    reported in one ``TopologyInvalid``. Placements that fail their own
    checks are left out while the rest of the graph is checked for cycles;
    a violation outside any placement (network, access, routing) leaves
    nothing sound to build, so cycles are then not searched for.

    Raises
    ------
    TopologyInvalid
        If any ordering precondition, reference, or graph invariant fails.
    """
    checked = _validate(deployment_name, config)
    violations = list(checked.violations)

    planned, unresolved = _planned_ids(deployment_name, config, checked)
    for before, after in config.dependencies:
        for rid in (before, after):
            if rid not in planned and rid.split(":", 1)[0] not in unresolved:
                violations.append(
                    f"dependency {before!r} -> {after!r}: unknown resource {rid!r}"
                )

    built = None
    graph = None
    if not checked.blocking:
        built = _build(deployment_name, checked.buildable, checked.topology, checked.policy)
        nodes = built[-1]
        for before, after in config.dependencies:
            if before in nodes and after in nodes:
                nodes.depend(before, after)
        try:
            graph = ResourceGraph(nodes.freeze())
        except (CyclicDependencyError, MissingDependencyError) as exc:
            violations.append(f"graph: {exc}")

    if violations:
        logger.error("Assembly of %s failed with %d violation(s)", deployment_name, len(violations))
        raise TopologyInvalid(deployment_name, violations)
    if built is None or graph is None:
        raise RuntimeError(f"Assembly of {deployment_name!r} produced no graph")

    placements, database, load_balancer, distribution, table, _ = built
    ordered = graph.nodes()
    fingerprint = content_address([node.model_dump(mode="json") for node in ordered])
    logger.info(
        "Assembled %s: %d resources, domain %s",
        deployment_name, len(ordered), distribution.domain_name,
    )
    return Deployment(
        name=deployment_name,
        topology=checked.topology,
        policy=checked.policy,
        artifacts=list(config.artifacts),
        placements=placements,
        routes=table.routes,
        database=database,
        load_balancer=load_balancer,
        distribution=distribution,
        resources=ordered,
        tags=dict(config.tags),
        domain=distribution.domain_name,
        change_fingerprint=fingerprint,
    )


# ---------------------------------------------------------------------------
# Post-assembly queries
# ---------------------------------------------------------------------------


def route_for(deployment: Deployment, path: str) -> Route:
    """Resolve an external path against the deployment's routes."""
    return RouteTable(deployment.routes).route(path)


def target_address(deployment: Deployment, route: Route) -> str:
    """Network address of the route's target."""
    if route.target_kind == TargetKind.PLACEMENT:
        if deployment.load_balancer is None:
            raise KeyError(f"Route to {route.target!r} has no load balancer")
        return deployment.load_balancer.dns_name
    return deployment.artifact(route.target).reference


def resolve_environment(
    deployment: Deployment, placement_name: str, outputs: Mapping[str, str]
) -> dict[str, str]:
    """Replace deferred references with applied values.

    ``outputs`` maps ``"entity.attribute"`` to the value the apply engine
    reported.

    Raises
    ------
    UnresolvedReference
        If a referenced output has no value.
    """
    placement = deployment.placement(placement_name)
    resolved: dict[str, str] = {}
    for variable, value in sorted(placement.env.items()):
        if isinstance(value, OutputRef):
            if value.key not in outputs:
                raise UnresolvedReference(placement_name, variable, value)
            resolved[variable] = str(outputs[value.key])
        else:
            resolved[variable] = value
    return resolved

