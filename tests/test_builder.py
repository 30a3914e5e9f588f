from __future__ import annotations

from pathlib import Path

import pytest

from apigw_fargate.services.config import TopologyConfig
from apigw_fargate.services.topology import Topology, TopologyBuilder, validate_topology
from apigw_fargate.services.topology.prefixes import DATA_OUTPUT_PREFIX, ERROR_OUTPUT_PREFIX
from apigw_fargate.services.topology.specs import (
    ContainerGroupSpec,
    DeliveryPipelineSpec,
    GatewaySpec,
    IngressRuleSpec,
    LogRouterEnvironment,
    ObjectStoreSpec,
    PermissionGrant,
    ResourceRef,
    TaskDefinitionSpec,
)


def test_default_topology_is_valid(topology: Topology) -> None:
    assert validate_topology(topology) == []


def test_object_stores_and_pipeline(topology: Topology, asset_dir: Path) -> None:
    stores = {s.logical_id: s for s in topology.graph.of_type(ObjectStoreSpec)}
    assert set(stores) == {"FluentbitConfigBucket", "LogBucket"}
    assert topology.config_store.asset_dir == asset_dir
    assert topology.log_store.logical_id == "LogBucket"

    (pipeline,) = topology.graph.of_type(DeliveryPipelineSpec)
    assert pipeline.destination == "LogBucket"
    assert pipeline.data_output_prefix == DATA_OUTPUT_PREFIX
    assert pipeline.error_output_prefix == ERROR_OUTPUT_PREFIX
    assert pipeline.compression == "GZIP"
    assert "DeliveryStreamRoleLogBucketWrite" in pipeline.dependencies()


def test_task_definition_has_one_router_wired_to_the_pipeline(topology: Topology) -> None:
    (task,) = topology.graph.of_type(TaskDefinitionSpec)
    assert (task.cpu, task.memory_mib) == (256, 512)

    (router,) = task.log_routers()
    (workload,) = task.workloads()
    assert router.name == "fluentbit"
    assert router.firelens_type == "fluentbit"
    assert router.log_driver.driver == "awslogs"
    assert workload.name == "nginx"
    assert workload.log_driver.driver == "awsfirelens"
    assert workload.port_mappings == (80,)
    assert workload.starts_after == "fluentbit"

    assert router.environment == {
        "FIREHOSE_DELIVERY_STREAM_NAME": ResourceRef("DeliveryStream"),
        "LOG_GROUP_NAME": ResourceRef("ErrorLogGroup"),
        "aws_fluent_bit_init_s3_1": ResourceRef("FluentbitConfigBucket", "Arn", "/extra.conf"),
        "aws_fluent_bit_init_file_1": "/fluent-bit/parsers/parsers.conf",
    }


def test_grants_go_to_the_task_role_only(topology: Topology) -> None:
    task_grants = {g.resource: g for g in topology.grants_for("TaskRole")}
    assert set(task_grants) == {"FluentbitConfigBucket", "DeliveryStream", "ErrorLogGroup", None}
    assert "firehose:PutRecordBatch" in task_grants["DeliveryStream"].actions

    log_store_grants = [g for g in topology.graph.of_type(PermissionGrant) if g.resource == "LogBucket"]
    assert [g.role for g in log_store_grants] == ["DeliveryStreamRole"]


def test_service_gateway_and_ingress(topology: Topology) -> None:
    (service,) = topology.graph.of_type(ContainerGroupSpec)
    assert service.service_name == "www"
    assert service.record_type == "SRV"
    assert service.desired_count == 1
    assert service.enable_execute_command is True
    assert set(g.logical_id for g in topology.grants_for("TaskRole")) <= set(service.after)

    (gateway,) = topology.graph.of_type(GatewaySpec)
    assert gateway.target == "Service"
    assert gateway.method == "ANY"

    (rule,) = topology.graph.of_type(IngressRuleSpec)
    assert (rule.target_group, rule.source_group, rule.protocol, rule.port) == (
        "ServiceSecurityGroup",
        "HttpApiVpcLinkSg",
        "tcp",
        80,
    )


def test_outputs(topology: Topology) -> None:
    assert [o.name for o in topology.outputs] == ["HttpApiEndpoint", "ECSClusterName", "S3Bucket", "LogGroupName"]
    assert topology.outputs[0].ref == ResourceRef("HttpApi", "ApiEndpoint")


def test_execute_command_grant_is_optional(asset_dir: Path) -> None:
    topology = TopologyBuilder(TopologyConfig(config_asset_dir=asset_dir, enable_execute_command=False)).build()

    assert "TaskRoleExecuteCommand" not in topology.graph
    assert validate_topology(topology) == []


def test_custom_port_and_replicas_flow_through(asset_dir: Path) -> None:
    topology = TopologyBuilder(
        TopologyConfig(config_asset_dir=asset_dir, container_port=8080, desired_count=3)
    ).build()

    (service,) = topology.graph.of_type(ContainerGroupSpec)
    (rule,) = topology.graph.of_type(IngressRuleSpec)
    assert service.desired_count == 3
    assert rule.port == 8080
    assert validate_topology(topology) == []


def test_log_router_environment_rejects_missing_fields() -> None:
    with pytest.raises(ValueError, match="delivery_stream_name"):
        LogRouterEnvironment(
            delivery_stream_name="",
            log_group_name=ResourceRef("ErrorLogGroup"),
            config_object_arn=ResourceRef("Bucket", "Arn", "/extra.conf"),
            parser_file="/fluent-bit/parsers/parsers.conf",
        )
    with pytest.raises(ValueError, match="absolute path"):
        LogRouterEnvironment(
            delivery_stream_name="stream",
            log_group_name="group",
            config_object_arn="arn:aws:s3:::bucket/extra.conf",
            parser_file="parsers.conf",
        )


def test_grant_scope_must_match_target() -> None:
    with pytest.raises(ValueError, match="needs a target resource"):
        PermissionGrant("NoTarget", role="TaskRole", actions=("s3:GetObject",))
    with pytest.raises(ValueError, match="declares no actions"):
        PermissionGrant("NoActions", role="TaskRole", resource="Bucket", actions=())
