from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from apigw_fargate.models.logs import LogObjectItem, LogObjectKind, LogObjectListResponse
from apigw_fargate.services.dependencies import get_deployment_service, get_s3_service_for_bucket
from apigw_fargate.services.deployment_service import DeploymentService

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("/objects", response_model=LogObjectListResponse)
async def list_log_objects(
    kind: Optional[LogObjectKind] = Query(default=None),
    prefix: Optional[str] = Query(default=None),
    deployment: DeploymentService = Depends(get_deployment_service),
) -> LogObjectListResponse:
    outputs = await deployment.outputs()
    s3 = get_s3_service_for_bucket(outputs.log_bucket)

    objects = [LogObjectItem.from_file_item(item) for item in await s3.list_files(prefix=prefix)]
    if kind is not None:
        objects = [o for o in objects if o.kind == kind]
    return LogObjectListResponse(bucket=outputs.log_bucket, count=len(objects), objects=objects)
