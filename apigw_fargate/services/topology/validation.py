from __future__ import annotations

import logging

from apigw_fargate.services.topology.builder import Topology
from apigw_fargate.services.topology.graph import ResourceGraphError
from apigw_fargate.services.topology.prefixes import validate_prefixes
from apigw_fargate.services.topology.specs import (
    ContainerGroupSpec,
    DeliveryPipelineSpec,
    GatewaySpec,
    IngressRuleSpec,
    LogRouterEnvironment,
    LogStreamSpec,
    ObjectStoreSpec,
    PermissionGrant,
    PrincipalKind,
    RemovalPolicy,
    ResourceRef,
    ResourceSpec,
    RoleSpec,
    SecurityGroupSpec,
    TaskDefinitionSpec,
)

logger = logging.getLogger(__name__)


class TopologyValidationError(ValueError):
    def __init__(self, violations: list[str]) -> None:
        super().__init__("Invalid topology: " + "; ".join(violations))
        self.violations = violations


def _lookup(topology: Topology, logical_id: str) -> ResourceSpec | None:
    return topology.graph.get(logical_id) if logical_id in topology.graph else None


def _check_graph(topology: Topology) -> list[str]:
    try:
        topology.graph.topological_order()
    except ResourceGraphError as exc:
        return [str(exc)]
    return []


def _check_task_definitions(topology: Topology) -> list[str]:
    problems: list[str] = []
    for task in topology.graph.of_type(TaskDefinitionSpec):
        routers = task.log_routers()
        if len(routers) != 1:
            problems.append(f"{task.logical_id}: expected exactly one log router, found {len(routers)}")
            continue
        router = routers[0]

        if router.log_driver.driver == "awsfirelens":
            problems.append(f"{task.logical_id}: log router {router.name} cannot log through itself")
        for workload in task.workloads():
            if workload.log_driver.driver != "awsfirelens":
                problems.append(
                    f"{task.logical_id}: container {workload.name} must log through the router "
                    f"(driver={workload.log_driver.driver})"
                )

        expected = {
            LogRouterEnvironment.DELIVERY_STREAM_VAR: DeliveryPipelineSpec,
            LogRouterEnvironment.LOG_GROUP_VAR: LogStreamSpec,
            LogRouterEnvironment.INIT_S3_VAR: ObjectStoreSpec,
        }
        for var, spec_type in expected.items():
            value = router.environment.get(var)
            if not isinstance(value, ResourceRef):
                problems.append(f"{task.logical_id}: router variable {var} is not wired to a resource")
                continue
            if not isinstance(_lookup(topology, value.logical_id), spec_type):
                problems.append(f"{task.logical_id}: router variable {var} points at {value.logical_id!r}")
        if not router.environment.get(LogRouterEnvironment.INIT_FILE_VAR):
            problems.append(f"{task.logical_id}: router variable {LogRouterEnvironment.INIT_FILE_VAR} is missing")

        config_ref = router.environment.get(LogRouterEnvironment.INIT_S3_VAR)
        if isinstance(config_ref, ResourceRef):
            store = _lookup(topology, config_ref.logical_id)
            if isinstance(store, ObjectStoreSpec) and store.purpose != "config":
                problems.append(f"{task.logical_id}: router configuration must come from the config store")
            if config_ref.attribute != "Arn" or not config_ref.suffix.startswith("/"):
                problems.append(f"{task.logical_id}: router configuration must be an object ARN")
    return problems


def _check_delivery(topology: Topology) -> list[str]:
    problems: list[str] = []
    for pipeline in topology.graph.of_type(DeliveryPipelineSpec):
        destination = _lookup(topology, pipeline.destination)
        if not isinstance(destination, ObjectStoreSpec) or destination.purpose != "logs":
            problems.append(f"{pipeline.logical_id}: destination must be the log store")
        if pipeline.compression != "GZIP":
            problems.append(f"{pipeline.logical_id}: compression must be GZIP (got {pipeline.compression})")
        problems.extend(
            f"{pipeline.logical_id}: {problem}"
            for problem in validate_prefixes(pipeline.data_output_prefix, pipeline.error_output_prefix)
        )
    return problems


def _check_grants(topology: Topology) -> list[str]:
    problems: list[str] = []
    grants = topology.graph.of_type(PermissionGrant)

    for grant in grants:
        role = _lookup(topology, grant.role)
        if not isinstance(role, RoleSpec):
            problems.append(f"{grant.logical_id}: principal {grant.role!r} is not a role")
        if any(action == "*" or action.endswith(":*") for action in grant.actions):
            problems.append(f"{grant.logical_id}: wildcard actions are not allowed")

    log_store = topology.log_store
    if log_store is not None:
        for grant in grants:
            if grant.resource != log_store.logical_id:
                continue
            role = _lookup(topology, grant.role)
            if not isinstance(role, RoleSpec) or role.principal is not PrincipalKind.DELIVERY:
                problems.append(f"{grant.logical_id}: only the delivery role may access the log store")
            if any("Delete" in action for action in grant.actions):
                problems.append(f"{grant.logical_id}: the delivery role must not delete log objects")

    config_store = topology.config_store
    for task in topology.graph.of_type(TaskDefinitionSpec):
        task_grants = topology.grants_for(task.task_role)
        required = {
            "read on the config store": (config_store.logical_id if config_store else None, "s3:GetObject"),
            "put on the delivery pipeline": (
                next((p.logical_id for p in topology.graph.of_type(DeliveryPipelineSpec)), None),
                "firehose:PutRecordBatch",
            ),
            "write on the diagnostic log stream": (
                _diagnostic_stream(task),
                "logs:PutLogEvents",
            ),
        }
        for label, (resource, action) in required.items():
            if resource is None or not any(
                g.resource == resource and any(_action_matches(a, action) for a in g.actions) for g in task_grants
            ):
                problems.append(f"{task.logical_id}: task role is missing {label}")
    return problems


def _diagnostic_stream(task: TaskDefinitionSpec) -> str | None:
    for router in task.log_routers():
        value = router.environment.get(LogRouterEnvironment.LOG_GROUP_VAR)
        if isinstance(value, ResourceRef):
            return value.logical_id
    return None


def _action_matches(granted: str, wanted: str) -> bool:
    if granted.endswith("*"):
        return wanted.startswith(granted[:-1])
    return granted == wanted


def _check_network(topology: Topology) -> list[str]:
    problems: list[str] = []
    rules = topology.graph.of_type(IngressRuleSpec)

    for gateway in topology.graph.of_type(GatewaySpec):
        if gateway.method != "ANY":
            problems.append(f"{gateway.logical_id}: default route must accept ANY method")
        if not isinstance(_lookup(topology, gateway.link_security_group), SecurityGroupSpec):
            problems.append(f"{gateway.logical_id}: link security group is not declared")

        service = _lookup(topology, gateway.target)
        if not isinstance(service, ContainerGroupSpec):
            problems.append(f"{gateway.logical_id}: target must be a container group")
            continue

        inbound = [r for r in rules if r.target_group == service.security_group]
        if len(inbound) != 1:
            problems.append(
                f"{service.logical_id}: expected exactly one ingress rule, found {len(inbound)}"
            )
        for rule in inbound:
            if rule.source_group != gateway.link_security_group:
                problems.append(f"{rule.logical_id}: ingress must come from {gateway.link_security_group}")
            if rule.protocol != "tcp" or rule.port != service.container_port:
                problems.append(
                    f"{rule.logical_id}: ingress must be tcp/{service.container_port} "
                    f"(got {rule.protocol}/{rule.port})"
                )
    return problems


def _check_container_groups(topology: Topology) -> list[str]:
    problems: list[str] = []
    for service in topology.graph.of_type(ContainerGroupSpec):
        if service.desired_count < 1:
            problems.append(f"{service.logical_id}: desired count must be >= 1")
        if service.record_type != "SRV":
            problems.append(f"{service.logical_id}: discovery record type must be SRV")

        task = _lookup(topology, service.task_definition)
        if not isinstance(task, TaskDefinitionSpec):
            problems.append(f"{service.logical_id}: task definition is not declared")
            continue
        container = next((c for c in task.containers if c.name == service.container_name), None)
        if container is None or service.container_port not in container.port_mappings:
            problems.append(
                f"{service.logical_id}: {service.container_name} does not expose port {service.container_port}"
            )
        missing = [g.logical_id for g in topology.grants_for(task.task_role) if g.logical_id not in service.after]
        if missing:
            problems.append(f"{service.logical_id}: must be ordered after grants {', '.join(missing)}")
    return problems


def _check_lifecycle(topology: Topology) -> list[str]:
    problems: list[str] = []
    for store in topology.graph.of_type(ObjectStoreSpec):
        if store.removal_policy is not RemovalPolicy.DESTROY or not store.auto_delete_objects:
            problems.append(f"{store.logical_id}: object store must be destroyed with its contents")
    for stream in topology.graph.of_type(LogStreamSpec):
        if stream.removal_policy is not RemovalPolicy.DESTROY:
            problems.append(f"{stream.logical_id}: log stream must be destroyed with the topology")
    return problems


def validate_topology(topology: Topology) -> list[str]:
    """Collect every invariant violation of the topology."""

    violations = _check_graph(topology)
    for check in (
        _check_task_definitions,
        _check_delivery,
        _check_grants,
        _check_network,
        _check_container_groups,
        _check_lifecycle,
    ):
        violations.extend(check(topology))
    return violations


def ensure_valid(topology: Topology) -> Topology:
    violations = validate_topology(topology)
    if violations:
        for violation in violations:
            logger.error("Topology violation: %s", violation)
        raise TopologyValidationError(violations)
    return topology
