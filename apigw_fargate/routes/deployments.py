from __future__ import annotations

from fastapi import APIRouter, Depends

from apigw_fargate.models.deployment import DeploymentResponse, StackOutputs, TeardownResponse
from apigw_fargate.services.dependencies import get_deployment_service
from apigw_fargate.services.deployment_service import DeploymentService

router = APIRouter(prefix="/deployments", tags=["deployments"])


@router.post("", response_model=DeploymentResponse)
async def deploy(deployment: DeploymentService = Depends(get_deployment_service)) -> DeploymentResponse:
    return await deployment.deploy()


@router.delete("", response_model=TeardownResponse)
async def destroy(deployment: DeploymentService = Depends(get_deployment_service)) -> TeardownResponse:
    return await deployment.destroy()


@router.get("/outputs", response_model=StackOutputs)
async def outputs(deployment: DeploymentService = Depends(get_deployment_service)) -> StackOutputs:
    return await deployment.outputs()
