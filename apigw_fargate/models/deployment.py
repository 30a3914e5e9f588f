from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class AssetSyncSummary(BaseModel):
    bucket: str
    uploaded: list[str] = Field(default_factory=list)
    unchanged: int = 0
    pruned: list[str] = Field(default_factory=list)


class StackOutputs(BaseModel):
    http_api_endpoint: str = Field(..., description="Public URL of the HTTP API")
    ecs_cluster_name: str
    log_bucket: str = Field(..., description="Bucket receiving delivered log batches")
    log_group_name: str = Field(..., description="Diagnostic log group")

    @staticmethod
    def from_cfn_outputs(outputs: dict[str, str]) -> "StackOutputs":
        try:
            return StackOutputs(
                http_api_endpoint=outputs["HttpApiEndpoint"],
                ecs_cluster_name=outputs["ECSClusterName"],
                log_bucket=outputs["S3Bucket"],
                log_group_name=outputs["LogGroupName"],
            )
        except KeyError as exc:
            raise ValueError(f"Stack output missing: {exc.args[0]}") from exc


class DeploymentResponse(BaseModel):
    stack_name: str
    status: str
    outputs: StackOutputs
    assets: Optional[AssetSyncSummary] = None


class TeardownResponse(BaseModel):
    stack_name: str
    status: str
    objects_deleted: int
