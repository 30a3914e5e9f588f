"""Typed descriptors of the resources making up the deployment topology.

Descriptors are immutable and only point at each other through
:class:`ResourceRef`; those references are the edges of the
:class:`~apigw_fargate.services.topology.graph.ResourceGraph`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Union


class RemovalPolicy(str, Enum):
    DESTROY = "Delete"
    RETAIN = "Retain"


class PrincipalKind(str, Enum):
    TASK = "task"
    EXECUTION = "execution"
    DELIVERY = "delivery"


class GrantScope(str, Enum):
    # The resource ARN itself, the objects under it (`<arn>/*`), or any resource.
    RESOURCE = "resource"
    RESOURCE_AND_OBJECTS = "resource+objects"
    ANY = "any"


@dataclass(frozen=True)
class ResourceRef:
    """Symbolic reference to another resource of the topology.

    Without `attribute` it stands for the resource's name/id; `suffix` is
    appended verbatim (e.g. ``/extra.conf`` after a bucket ARN).
    """

    logical_id: str
    attribute: Optional[str] = None
    suffix: str = ""


EnvValue = Union[str, ResourceRef]


def _refs(*values: object) -> tuple[str, ...]:
    ids: list[str] = []
    for value in values:
        if isinstance(value, ResourceRef):
            ids.append(value.logical_id)
        elif isinstance(value, str) and value:
            ids.append(value)
    return tuple(dict.fromkeys(ids))


class ResourceSpec:
    """Base class: every descriptor has a logical id and its dependencies."""

    logical_id: str
    kind: str = "resource"

    def dependencies(self) -> tuple[str, ...]:
        return ()


@dataclass(frozen=True)
class NetworkSpec(ResourceSpec):
    logical_id: str
    cidr: str = "10.0.0.0/16"
    max_azs: int = 1
    nat_gateways: int = 1
    kind: str = field(default="network", init=False)


@dataclass(frozen=True)
class SecurityGroupSpec(ResourceSpec):
    logical_id: str
    network: str
    description: str
    allow_all_outbound: bool = True
    kind: str = field(default="security-group", init=False)

    def dependencies(self) -> tuple[str, ...]:
        return _refs(self.network)


@dataclass(frozen=True)
class IngressRuleSpec(ResourceSpec):
    logical_id: str
    target_group: str
    source_group: str
    port: int
    protocol: str = "tcp"
    description: str = ""
    kind: str = field(default="ingress-rule", init=False)

    def dependencies(self) -> tuple[str, ...]:
        return _refs(self.target_group, self.source_group)


@dataclass(frozen=True)
class ClusterSpec(ResourceSpec):
    logical_id: str
    network: str
    namespace: str
    kind: str = field(default="cluster", init=False)

    @property
    def namespace_id(self) -> str:
        return f"{self.logical_id}DefaultServiceDiscoveryNamespace"

    def dependencies(self) -> tuple[str, ...]:
        return _refs(self.network)


@dataclass(frozen=True)
class ObjectStoreSpec(ResourceSpec):
    logical_id: str
    purpose: str
    removal_policy: RemovalPolicy = RemovalPolicy.DESTROY
    auto_delete_objects: bool = True
    asset_dir: Optional[Path] = None
    kind: str = field(default="object-store", init=False)


@dataclass(frozen=True)
class LogStreamSpec(ResourceSpec):
    logical_id: str
    removal_policy: RemovalPolicy = RemovalPolicy.DESTROY
    retention_days: Optional[int] = None
    kind: str = field(default="log-stream", init=False)


@dataclass(frozen=True)
class RoleSpec(ResourceSpec):
    logical_id: str
    principal: PrincipalKind
    service_principal: str
    kind: str = field(default="role", init=False)


@dataclass(frozen=True)
class PermissionGrant(ResourceSpec):
    """Directed grant: `role` may perform `actions` on `resource`."""

    logical_id: str
    role: str
    actions: tuple[str, ...]
    resource: Optional[str] = None
    scope: GrantScope = GrantScope.RESOURCE
    kind: str = field(default="grant", init=False)

    def __post_init__(self) -> None:
        if not self.actions:
            raise ValueError(f"Grant {self.logical_id} declares no actions")
        if self.scope is GrantScope.ANY and self.resource is not None:
            raise ValueError(f"Grant {self.logical_id} targets a resource but is scoped to any resource")
        if self.scope is not GrantScope.ANY and self.resource is None:
            raise ValueError(f"Grant {self.logical_id} needs a target resource")

    def dependencies(self) -> tuple[str, ...]:
        return _refs(self.role, self.resource)


@dataclass(frozen=True)
class DeliveryPipelineSpec(ResourceSpec):
    logical_id: str
    destination: str
    role: str
    data_output_prefix: str
    error_output_prefix: str
    compression: str = "GZIP"
    buffer_interval_seconds: int = 300
    buffer_size_mib: int = 5
    after: tuple[str, ...] = ()
    kind: str = field(default="delivery-pipeline", init=False)

    def dependencies(self) -> tuple[str, ...]:
        return _refs(self.destination, self.role, *self.after)


@dataclass(frozen=True)
class LogRouterEnvironment:
    """Environment handed to the log router container.

    Every field is required; the router cannot route anything without them.
    """

    DELIVERY_STREAM_VAR = "FIREHOSE_DELIVERY_STREAM_NAME"
    LOG_GROUP_VAR = "LOG_GROUP_NAME"
    INIT_S3_VAR = "aws_fluent_bit_init_s3_1"
    INIT_FILE_VAR = "aws_fluent_bit_init_file_1"

    delivery_stream_name: EnvValue
    log_group_name: EnvValue
    config_object_arn: EnvValue
    parser_file: str

    def __post_init__(self) -> None:
        for name in ("delivery_stream_name", "log_group_name", "config_object_arn", "parser_file"):
            value = getattr(self, name)
            if isinstance(value, ResourceRef):
                if not value.logical_id:
                    raise ValueError(f"Log router {name} references an empty logical id")
            elif not value:
                raise ValueError(f"Missing required log router setting: {name}")
        if not self.parser_file.startswith("/"):
            raise ValueError("parser_file must be an absolute path inside the router image")

    def as_environment(self) -> dict[str, EnvValue]:
        return {
            self.DELIVERY_STREAM_VAR: self.delivery_stream_name,
            self.LOG_GROUP_VAR: self.log_group_name,
            self.INIT_S3_VAR: self.config_object_arn,
            self.INIT_FILE_VAR: self.parser_file,
        }


@dataclass(frozen=True)
class LogDriverSpec:
    driver: str
    options: Mapping[str, EnvValue] = field(default_factory=dict)

    @staticmethod
    def firelens() -> "LogDriverSpec":
        return LogDriverSpec(driver="awsfirelens")

    @staticmethod
    def aws_logs(*, log_group: str, stream_prefix: str) -> "LogDriverSpec":
        return LogDriverSpec(
            driver="awslogs",
            options={"awslogs-group": ResourceRef(log_group), "awslogs-stream-prefix": stream_prefix},
        )


@dataclass(frozen=True)
class ContainerSpec:
    name: str
    image: str
    log_driver: LogDriverSpec
    essential: bool = True
    port_mappings: tuple[int, ...] = ()
    environment: Mapping[str, EnvValue] = field(default_factory=dict)
    firelens_type: Optional[str] = None
    starts_after: Optional[str] = None

    @property
    def is_log_router(self) -> bool:
        return self.firelens_type is not None


@dataclass(frozen=True)
class TaskDefinitionSpec(ResourceSpec):
    logical_id: str
    cpu: int
    memory_mib: int
    containers: tuple[ContainerSpec, ...]
    task_role: str
    execution_role: str
    kind: str = field(default="task-definition", init=False)

    def log_routers(self) -> list[ContainerSpec]:
        return [c for c in self.containers if c.is_log_router]

    def workloads(self) -> list[ContainerSpec]:
        return [c for c in self.containers if not c.is_log_router]

    def dependencies(self) -> tuple[str, ...]:
        refs: list[object] = [self.task_role, self.execution_role]
        for container in self.containers:
            # Literal values (paths, prefixes) are not edges; only references are.
            refs.extend(v for v in container.environment.values() if isinstance(v, ResourceRef))
            refs.extend(v for v in container.log_driver.options.values() if isinstance(v, ResourceRef))
        return _refs(*refs)


@dataclass(frozen=True)
class ContainerGroupSpec(ResourceSpec):
    logical_id: str
    cluster: str
    task_definition: str
    security_group: str
    service_name: str
    container_name: str
    container_port: int
    desired_count: int = 1
    record_type: str = "SRV"
    enable_execute_command: bool = False
    after: tuple[str, ...] = ()
    kind: str = field(default="container-group", init=False)

    @property
    def discovery_service_id(self) -> str:
        return f"{self.logical_id}CloudmapService"

    def dependencies(self) -> tuple[str, ...]:
        return _refs(self.cluster, self.task_definition, self.security_group, *self.after)


@dataclass(frozen=True)
class GatewaySpec(ResourceSpec):
    logical_id: str
    target: str
    link_security_group: str
    network: str
    method: str = "ANY"
    kind: str = field(default="gateway", init=False)

    def dependencies(self) -> tuple[str, ...]:
        return _refs(self.target, self.link_security_group, self.network)


@dataclass(frozen=True)
class TopologyOutput:
    name: str
    ref: ResourceRef
    description: str = ""
