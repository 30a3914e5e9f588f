from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from apigw_fargate.services.config import TopologyConfig
from apigw_fargate.services.topology.graph import ResourceGraph
from apigw_fargate.services.topology.prefixes import DATA_OUTPUT_PREFIX, ERROR_OUTPUT_PREFIX
from apigw_fargate.services.topology.specs import (
    ClusterSpec,
    ContainerGroupSpec,
    ContainerSpec,
    DeliveryPipelineSpec,
    GatewaySpec,
    GrantScope,
    IngressRuleSpec,
    LogDriverSpec,
    LogRouterEnvironment,
    LogStreamSpec,
    NetworkSpec,
    ObjectStoreSpec,
    PermissionGrant,
    PrincipalKind,
    RemovalPolicy,
    ResourceRef,
    RoleSpec,
    SecurityGroupSpec,
    TaskDefinitionSpec,
    TopologyOutput,
)

logger = logging.getLogger(__name__)

S3_READ_ACTIONS = ("s3:GetObject*", "s3:GetBucket*", "s3:List*")
S3_DELIVERY_ACTIONS = (
    "s3:AbortMultipartUpload",
    "s3:GetBucketLocation",
    "s3:GetObject",
    "s3:ListBucket",
    "s3:ListBucketMultipartUploads",
    "s3:PutObject",
)
FIREHOSE_PUT_ACTIONS = ("firehose:PutRecord", "firehose:PutRecordBatch")
LOGS_WRITE_ACTIONS = ("logs:CreateLogStream", "logs:PutLogEvents")
EXECUTE_COMMAND_ACTIONS = (
    "ssmmessages:CreateControlChannel",
    "ssmmessages:CreateDataChannel",
    "ssmmessages:OpenControlChannel",
    "ssmmessages:OpenDataChannel",
)

WORKLOAD_CONTAINER_NAME = "nginx"
ROUTER_CONTAINER_NAME = "fluentbit"


@dataclass(frozen=True)
class Topology:
    graph: ResourceGraph
    outputs: tuple[TopologyOutput, ...]

    def object_store(self, purpose: str) -> Optional[ObjectStoreSpec]:
        for store in self.graph.of_type(ObjectStoreSpec):
            if store.purpose == purpose:
                return store
        return None

    @property
    def config_store(self) -> Optional[ObjectStoreSpec]:
        return self.object_store("config")

    @property
    def log_store(self) -> Optional[ObjectStoreSpec]:
        return self.object_store("logs")

    def grants_for(self, role: str) -> list[PermissionGrant]:
        return [g for g in self.graph.of_type(PermissionGrant) if g.role == role]


class TopologyBuilder:
    """Declares the service, gateway and log delivery resources.

    The builder only wires descriptors together; invariants are checked by
    :func:`apigw_fargate.services.topology.validation.ensure_valid`.
    """

    def __init__(self, config: TopologyConfig) -> None:
        self._config = config

    def build(self) -> Topology:
        cfg = self._config
        graph = ResourceGraph()

        # Object stores
        config_store = graph.add(
            ObjectStoreSpec("FluentbitConfigBucket", purpose="config", asset_dir=cfg.config_asset_dir)
        )
        log_store = graph.add(ObjectStoreSpec("LogBucket", purpose="logs"))

        # Delivery pipeline
        delivery_role = graph.add(
            RoleSpec("DeliveryStreamRole", PrincipalKind.DELIVERY, "firehose.amazonaws.com")
        )
        delivery_grant = graph.add(
            PermissionGrant(
                "DeliveryStreamRoleLogBucketWrite",
                role=delivery_role.logical_id,
                resource=log_store.logical_id,
                actions=S3_DELIVERY_ACTIONS,
                scope=GrantScope.RESOURCE_AND_OBJECTS,
            )
        )
        delivery = graph.add(
            DeliveryPipelineSpec(
                "DeliveryStream",
                destination=log_store.logical_id,
                role=delivery_role.logical_id,
                data_output_prefix=DATA_OUTPUT_PREFIX,
                error_output_prefix=ERROR_OUTPUT_PREFIX,
                buffer_interval_seconds=cfg.buffer_interval_seconds,
                buffer_size_mib=cfg.buffer_size_mib,
                after=(delivery_grant.logical_id,),
            )
        )

        diagnostic_logs = graph.add(LogStreamSpec("ErrorLogGroup", retention_days=cfg.log_retention_days))
        router_logs = graph.add(LogStreamSpec("FluentbitLogGroup", retention_days=cfg.log_retention_days))

        # Network and cluster
        network = graph.add(
            NetworkSpec("Vpc", cidr=cfg.vpc_cidr, max_azs=cfg.max_azs, nat_gateways=cfg.nat_gateways)
        )
        cluster = graph.add(ClusterSpec("Cluster", network=network.logical_id, namespace=cfg.namespace))

        # Task definition: workload + log router
        task_role = graph.add(RoleSpec("TaskRole", PrincipalKind.TASK, "ecs-tasks.amazonaws.com"))
        execution_role = graph.add(RoleSpec("ExecutionRole", PrincipalKind.EXECUTION, "ecs-tasks.amazonaws.com"))

        router_env = LogRouterEnvironment(
            delivery_stream_name=ResourceRef(delivery.logical_id),
            log_group_name=ResourceRef(diagnostic_logs.logical_id),
            config_object_arn=ResourceRef(config_store.logical_id, "Arn", f"/{cfg.extra_config_key}"),
            parser_file=cfg.parser_file,
        )
        router = ContainerSpec(
            name=ROUTER_CONTAINER_NAME,
            image=cfg.router_image,
            log_driver=LogDriverSpec.aws_logs(log_group=router_logs.logical_id, stream_prefix="fluentbit"),
            environment=router_env.as_environment(),
            firelens_type="fluentbit",
        )
        workload = ContainerSpec(
            name=WORKLOAD_CONTAINER_NAME,
            image=cfg.workload_image,
            log_driver=LogDriverSpec.firelens(),
            port_mappings=(cfg.container_port,),
            starts_after=router.name,
        )
        task_definition = graph.add(
            TaskDefinitionSpec(
                "ExampleTaskDef",
                cpu=cfg.cpu,
                memory_mib=cfg.memory_mib,
                containers=(workload, router),
                task_role=task_role.logical_id,
                execution_role=execution_role.logical_id,
            )
        )

        # Grants go to the shared task identity only
        grants = [
            PermissionGrant(
                "TaskRoleConfigBucketRead",
                role=task_role.logical_id,
                resource=config_store.logical_id,
                actions=S3_READ_ACTIONS,
                scope=GrantScope.RESOURCE_AND_OBJECTS,
            ),
            PermissionGrant(
                "TaskRoleDeliveryStreamPut",
                role=task_role.logical_id,
                resource=delivery.logical_id,
                actions=FIREHOSE_PUT_ACTIONS,
            ),
            PermissionGrant(
                "TaskRoleErrorLogGroupWrite",
                role=task_role.logical_id,
                resource=diagnostic_logs.logical_id,
                actions=LOGS_WRITE_ACTIONS,
            ),
            PermissionGrant(
                "ExecutionRoleFluentbitLogGroupWrite",
                role=execution_role.logical_id,
                resource=router_logs.logical_id,
                actions=LOGS_WRITE_ACTIONS,
            ),
        ]
        if cfg.enable_execute_command:
            grants.append(
                PermissionGrant(
                    "TaskRoleExecuteCommand",
                    role=task_role.logical_id,
                    actions=EXECUTE_COMMAND_ACTIONS,
                    scope=GrantScope.ANY,
                )
            )
        for grant in grants:
            graph.add(grant)

        # Container group
        service_sg = graph.add(
            SecurityGroupSpec(
                "ServiceSecurityGroup",
                network=network.logical_id,
                description="Service tasks; inbound only from the HTTP API VPC link",
            )
        )
        service = graph.add(
            ContainerGroupSpec(
                "Service",
                cluster=cluster.logical_id,
                task_definition=task_definition.logical_id,
                security_group=service_sg.logical_id,
                service_name=cfg.service_name,
                container_name=workload.name,
                container_port=cfg.container_port,
                desired_count=cfg.desired_count,
                enable_execute_command=cfg.enable_execute_command,
                after=tuple(g.logical_id for g in grants),
            )
        )

        # Gateway
        link_sg = graph.add(
            SecurityGroupSpec(
                "HttpApiVpcLinkSg",
                network=network.logical_id,
                description="HTTP API VPC link",
            )
        )
        graph.add(
            IngressRuleSpec(
                "ServiceIngressFromHttpApi",
                target_group=service_sg.logical_id,
                source_group=link_sg.logical_id,
                port=cfg.container_port,
                description=f"from HttpApiVpcLinkSg:{cfg.container_port}",
            )
        )
        gateway = graph.add(
            GatewaySpec(
                "HttpApi",
                target=service.logical_id,
                link_security_group=link_sg.logical_id,
                network=network.logical_id,
            )
        )

        outputs = (
            TopologyOutput("HttpApiEndpoint", ResourceRef(gateway.logical_id, "ApiEndpoint"), "Public gateway URL"),
            TopologyOutput("ECSClusterName", ResourceRef(cluster.logical_id), "Cluster running the service"),
            TopologyOutput("S3Bucket", ResourceRef(log_store.logical_id), "Delivered log objects"),
            TopologyOutput("LogGroupName", ResourceRef(diagnostic_logs.logical_id), "Diagnostic log stream"),
        )

        logger.debug("Declared %d resources for stack %s", len(graph), cfg.stack_name)
        return Topology(graph=graph, outputs=outputs)
