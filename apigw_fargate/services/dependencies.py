from __future__ import annotations

import aiohttp
from fastapi import FastAPI, Request

from apigw_fargate.services.cloudformation_service import CloudFormationService
from apigw_fargate.services.config import AwsConfig, CloudFormationConfig, ProbeConfig, S3Config, TopologyConfig
from apigw_fargate.services.deployment_service import DeploymentService
from apigw_fargate.services.probe_service import EndToEndProbe
from apigw_fargate.services.s3_service import S3Service


def get_topology_config() -> TopologyConfig:
    return TopologyConfig.from_env()


def get_aws_config() -> AwsConfig:
    return AwsConfig.from_env()


def get_cloudformation_service() -> CloudFormationService:
    return CloudFormationService(aws=get_aws_config(), config=CloudFormationConfig.from_env())


def get_deployment_service() -> DeploymentService:
    """FastAPI dependency provider for a DeploymentService instance."""

    return DeploymentService(
        config=get_topology_config(),
        aws=get_aws_config(),
        cloudformation=get_cloudformation_service(),
    )


def get_s3_service_for_bucket(bucket_name: str) -> S3Service:
    return S3Service(S3Config.for_bucket(bucket_name, aws=get_aws_config()))


def get_http_session_from_app(app: FastAPI) -> aiohttp.ClientSession:
    session = getattr(app.state, "http_session", None)
    if session is None:
        raise RuntimeError("HTTP session not initialized (app.state.http_session)")
    if not isinstance(session, aiohttp.ClientSession):
        raise RuntimeError("Unexpected http_session type")
    return session


def get_http_session(request: Request) -> aiohttp.ClientSession:
    return get_http_session_from_app(request.app)


def get_end_to_end_probe(request: Request) -> EndToEndProbe:
    config = get_topology_config()
    return EndToEndProbe(
        session=get_http_session(request),
        deployment=get_deployment_service(),
        aws=get_aws_config(),
        config=ProbeConfig.from_env(),
        buffer_interval_seconds=config.buffer_interval_seconds,
    )
