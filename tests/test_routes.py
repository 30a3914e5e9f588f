from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from conftest import FakeS3Service

from apigw_fargate.main import app
from apigw_fargate.models.deployment import StackOutputs, TeardownResponse
from apigw_fargate.models.probe import ProbeResponse
from apigw_fargate.routes import logs as logs_routes
from apigw_fargate.services.cloudformation_service import StackOperationError
from apigw_fargate.services.config import AwsConfig, TopologyConfig
from apigw_fargate.services.dependencies import (
    get_deployment_service,
    get_end_to_end_probe,
    get_topology_config,
)
from apigw_fargate.services.deployment_service import DeploymentService
from apigw_fargate.services.topology import TopologyValidationError

OUTPUTS = StackOutputs(
    http_api_endpoint="https://abc123.execute-api.eu-west-1.amazonaws.com",
    ecs_cluster_name="cluster",
    log_bucket="log-bucket",
    log_group_name="errors",
)


class FakeDeployment:
    def __init__(self, error: Exception | None = None) -> None:
        self._error = error

    def synth(self) -> str:
        if self._error is not None:
            raise self._error
        return '{"Resources": {}}'

    async def deploy(self) -> Any:
        raise StackOperationError("ApiGatewayFargateServiceStack", "ROLLBACK_COMPLETE", "Service failed to stabilize")

    async def destroy(self) -> TeardownResponse:
        return TeardownResponse(stack_name="ApiGatewayFargateServiceStack", status="DELETE_COMPLETE", objects_deleted=7)

    async def outputs(self) -> StackOutputs:
        if self._error is not None:
            raise self._error
        return OUTPUTS


class FakeProbe:
    async def run(self) -> ProbeResponse:
        return ProbeResponse(
            endpoint=OUTPUTS.http_api_endpoint,
            correlation_id="abc",
            status_code=200,
            delivered=True,
            matched_key="firehose/x.gz",
            elapsed_seconds=1.5,
        )


@pytest.fixture
def client(topology_config: TopologyConfig):
    app.dependency_overrides[get_topology_config] = lambda: topology_config
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_root(client: TestClient) -> None:
    assert client.get("/").status_code == 200


def test_template_is_rendered(client: TestClient, topology_config: TopologyConfig) -> None:
    app.dependency_overrides[get_deployment_service] = lambda: DeploymentService(
        config=topology_config, aws=AwsConfig(), cloudformation=None  # type: ignore[arg-type]
    )

    response = client.get("/topology/template")

    assert response.status_code == 200
    body = response.json()
    assert body["Resources"]["HttpApi"]["Type"] == "AWS::ApiGatewayV2::Api"
    assert set(body["Outputs"]) == {"HttpApiEndpoint", "ECSClusterName", "S3Bucket", "LogGroupName"}


def test_graph_is_in_dependency_order(client: TestClient) -> None:
    body = client.get("/topology/graph").json()

    order = [node["logical_id"] for node in body["nodes"]]
    assert body["count"] == len(order)
    for node in body["nodes"]:
        for dependency in node["depends_on"]:
            assert order.index(dependency) < order.index(node["logical_id"])


def test_default_topology_has_no_violations(client: TestClient) -> None:
    assert client.get("/topology/violations").json() == {"valid": True, "violations": []}


def test_invalid_topology_maps_to_422(client: TestClient) -> None:
    error = TopologyValidationError(["Service: discovery record type must be SRV"])
    app.dependency_overrides[get_deployment_service] = lambda: FakeDeployment(error)

    response = client.get("/topology/template")

    assert response.status_code == 422
    assert response.json()["violations"] == ["Service: discovery record type must be SRV"]


def test_failed_deploy_maps_to_502(client: TestClient) -> None:
    app.dependency_overrides[get_deployment_service] = lambda: FakeDeployment()

    response = client.post("/deployments")

    assert response.status_code == 502
    assert "ROLLBACK_COMPLETE" in response.json()["detail"]


def test_destroy(client: TestClient) -> None:
    app.dependency_overrides[get_deployment_service] = lambda: FakeDeployment()

    response = client.delete("/deployments")

    assert response.status_code == 200
    assert response.json()["objects_deleted"] == 7


def test_missing_output_maps_to_500(client: TestClient) -> None:
    app.dependency_overrides[get_deployment_service] = lambda: FakeDeployment(ValueError("Stack output missing: S3Bucket"))

    response = client.get("/deployments/outputs")

    assert response.status_code == 500
    assert response.json() == {"detail": "Stack output missing: S3Bucket"}


def test_log_objects_are_classified(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    s3 = FakeS3Service(
        "log-bucket",
        {
            "firehose/year=2026/month=10/day=18/rand=Ab12/batch-1.gz": b"a",
            "firehoseFailures/2026/10/18/processing-failed/batch-2.gz": b"b",
        },
    )
    monkeypatch.setattr(logs_routes, "get_s3_service_for_bucket", lambda bucket: s3)
    app.dependency_overrides[get_deployment_service] = lambda: FakeDeployment()

    everything = client.get("/logs/objects").json()
    failed = client.get("/logs/objects", params={"kind": "failed"}).json()

    assert everything["bucket"] == "log-bucket"
    assert everything["count"] == 2
    delivered = next(o for o in everything["objects"] if o["kind"] == "delivered")
    assert (delivered["year"], delivered["month"], delivered["day"]) == (2026, 10, 18)
    assert [o["error_type"] for o in failed["objects"]] == ["processing-failed"]


def test_probe(client: TestClient) -> None:
    app.dependency_overrides[get_end_to_end_probe] = lambda: FakeProbe()

    response = client.post("/probe")

    assert response.status_code == 200
    assert response.json()["delivered"] is True
