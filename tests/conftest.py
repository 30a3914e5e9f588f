from __future__ import annotations

import hashlib
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pytest
from botocore.exceptions import ClientError

from apigw_fargate.models.s3 import FileItem
from apigw_fargate.services.config import TopologyConfig
from apigw_fargate.services.topology import ResourceGraph, Topology, TopologyBuilder
from apigw_fargate.services.topology.specs import ResourceSpec


# -----------------
# Topology helpers
# -----------------


@pytest.fixture
def asset_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "fluentbit-config"
    directory.mkdir()
    (directory / "extra.conf").write_text("[OUTPUT]\n    Name stdout\n", encoding="utf-8")
    return directory


@pytest.fixture
def topology_config(asset_dir: Path) -> TopologyConfig:
    return TopologyConfig(config_asset_dir=asset_dir)


@pytest.fixture
def topology(topology_config: TopologyConfig) -> Topology:
    return TopologyBuilder(topology_config).build()


def rebuild(topology: Topology, *replacements: ResourceSpec, drop: tuple[str, ...] = (), extra=()) -> Topology:
    """Copy a topology, swapping nodes by logical id, dropping some and appending others."""

    by_id = {spec.logical_id: spec for spec in replacements}
    graph = ResourceGraph()
    for spec in topology.graph:
        if spec.logical_id in drop:
            continue
        graph.add(by_id.get(spec.logical_id, spec))
    for spec in extra:
        graph.add(spec)
    return Topology(graph=graph, outputs=topology.outputs)


def with_changes(spec: Any, **changes: Any) -> Any:
    return replace(spec, **changes)


# -----------------
# aioboto3 fakes
# -----------------


class FakeClientContext:
    def __init__(self, client: Any) -> None:
        self._client = client

    async def __aenter__(self) -> Any:
        return self._client

    async def __aexit__(self, *_: object) -> None:
        return None


class FakeSession:
    def __init__(self, client: Any) -> None:
        self.client_calls: list[tuple[str, dict[str, Any]]] = []
        self._client = client

    def client(self, service_name: str, **kwargs: Any) -> FakeClientContext:
        self.client_calls.append((service_name, kwargs))
        return FakeClientContext(self._client)


class FakeBody:
    def __init__(self, payload: bytes) -> None:
        self._payload = payload

    async def __aenter__(self) -> "FakeBody":
        return self

    async def __aexit__(self, *_: object) -> None:
        return None

    async def read(self) -> bytes:
        return self._payload


class FakeS3Client:
    """In-memory S3 bucket with a small page size so pagination is exercised."""

    def __init__(self, page_size: int = 2) -> None:
        self.objects: dict[str, bytes] = {}
        self.page_size = page_size
        self.delete_batches: list[int] = []
        self.put_calls: list[dict[str, Any]] = []

    async def list_objects_v2(self, **kwargs: Any) -> dict[str, Any]:
        prefix = kwargs.get("Prefix", "")
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        start = int(kwargs.get("ContinuationToken", "0"))
        page = keys[start : start + self.page_size]
        response: dict[str, Any] = {
            "Contents": [
                {
                    "Key": k,
                    "Size": len(self.objects[k]),
                    "ETag": f'"{hashlib.md5(self.objects[k]).hexdigest()}"',
                    "LastModified": datetime.now(timezone.utc),
                }
                for k in page
            ],
            "IsTruncated": start + self.page_size < len(keys),
        }
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + self.page_size)
        return response

    async def put_object(self, **kwargs: Any) -> dict[str, Any]:
        self.put_calls.append(kwargs)
        self.objects[kwargs["Key"]] = kwargs["Body"]
        return {}

    async def get_object(self, **kwargs: Any) -> dict[str, Any]:
        return {"Body": FakeBody(self.objects[kwargs["Key"]])}

    async def delete_object(self, **kwargs: Any) -> dict[str, Any]:
        self.objects.pop(kwargs["Key"], None)
        return {}

    async def delete_objects(self, **kwargs: Any) -> dict[str, Any]:
        batch = kwargs["Delete"]["Objects"]
        self.delete_batches.append(len(batch))
        for obj in batch:
            self.objects.pop(obj["Key"], None)
        return {}


def _client_error(message: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "ValidationError", "Message": message}}, operation)


class FakeCloudFormationClient:
    """Stacks settle instantly; every call is recorded."""

    def __init__(self) -> None:
        self.stacks: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.next_status: dict[str, str] = {}
        self.missing_resources: set[str] = set()

    async def describe_stacks(self, StackName: str) -> dict[str, Any]:
        self.calls.append(("describe_stacks", {"StackName": StackName}))
        if StackName not in self.stacks:
            raise _client_error(f"Stack with id {StackName} does not exist", "DescribeStacks")
        return {"Stacks": [self.stacks[StackName]]}

    async def create_stack(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("create_stack", kwargs))
        name = kwargs["StackName"]
        self.stacks[name] = {
            "StackName": name,
            "StackStatus": self.next_status.pop("create", "CREATE_COMPLETE"),
            "Parameters": kwargs["Parameters"],
            "TemplateBody": kwargs["TemplateBody"],
            "Outputs": [],
        }
        return {"StackId": f"arn:aws:cloudformation:::stack/{name}"}

    async def update_stack(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("update_stack", kwargs))
        stack = self.stacks[kwargs["StackName"]]
        if stack["Parameters"] == kwargs["Parameters"] and stack["TemplateBody"] == kwargs["TemplateBody"]:
            raise _client_error("No updates are to be performed.", "UpdateStack")
        stack.update(
            StackStatus=self.next_status.pop("update", "UPDATE_COMPLETE"),
            Parameters=kwargs["Parameters"],
            TemplateBody=kwargs["TemplateBody"],
        )
        return {}

    async def delete_stack(self, StackName: str) -> dict[str, Any]:
        self.calls.append(("delete_stack", {"StackName": StackName}))
        failed = self.next_status.pop("delete", None)
        if failed:
            self.stacks[StackName]["StackStatus"] = failed
        else:
            self.stacks.pop(StackName, None)
        return {}

    async def describe_stack_resource(self, StackName: str, LogicalResourceId: str) -> dict[str, Any]:
        self.calls.append(("describe_stack_resource", {"LogicalResourceId": LogicalResourceId}))
        if LogicalResourceId in self.missing_resources:
            message = f"Resource {LogicalResourceId} does not exist for stack {StackName}"
            raise _client_error(message, "DescribeStackResource")
        return {
            "StackResourceDetail": {
                "LogicalResourceId": LogicalResourceId,
                "PhysicalResourceId": f"{StackName.lower()}-{LogicalResourceId.lower()}",
                "ResourceStatus": "CREATE_COMPLETE",
            }
        }


# -----------------
# Service-level fakes
# -----------------


class FakeS3Service:
    def __init__(self, bucket_name: str, objects: Optional[dict[str, bytes]] = None) -> None:
        self.bucket_name = bucket_name
        self.objects: dict[str, bytes] = dict(objects or {})
        self.uploaded: list[str] = []
        self.deleted: list[str] = []
        self.fail_keys: set[str] = set()
        self.emptied = 0

    async def list_files(self, *, prefix: Optional[str] = None) -> list[FileItem]:
        return [
            FileItem(
                key=key,
                size=len(body),
                etag=hashlib.md5(body).hexdigest(),
                last_modified=datetime.now(timezone.utc),
            )
            for key, body in sorted(self.objects.items())
            if not prefix or key.startswith(prefix)
        ]

    async def upload_local_file(self, *, path: Path, key: str, content_type: Optional[str] = None) -> str:
        from apigw_fargate.services.s3_service import S3ServiceError

        if key in self.fail_keys:
            raise S3ServiceError(f"boom: {key}")
        self.objects[key] = path.read_bytes()
        self.uploaded.append(key)
        return key

    async def read_file(self, *, key: str) -> bytes:
        return self.objects[key]

    async def delete_file(self, *, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)

    async def empty_bucket(self) -> int:
        count = len(self.objects)
        self.objects.clear()
        self.emptied += 1
        return count
