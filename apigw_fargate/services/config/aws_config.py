from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AwsConfig:
    """Region/endpoint shared by every AWS client the app opens.

    `endpoint_url` is only set when talking to an emulator (e.g. LocalStack).
    """

    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None

    @staticmethod
    def from_env() -> "AwsConfig":
        region_name = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
        endpoint_url = os.getenv("AWS_ENDPOINT_URL")
        return AwsConfig(region_name=region_name, endpoint_url=endpoint_url)


@dataclass(frozen=True)
class S3Config:
    bucket_name: str
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None

    @staticmethod
    def for_bucket(bucket_name: str, *, aws: AwsConfig) -> "S3Config":
        if not bucket_name:
            raise ValueError("bucket_name must be provided")
        return S3Config(bucket_name=bucket_name, region_name=aws.region_name, endpoint_url=aws.endpoint_url)
