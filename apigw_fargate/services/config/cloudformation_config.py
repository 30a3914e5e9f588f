from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from apigw_fargate.services.config._env import env_float


@dataclass(frozen=True)
class CloudFormationConfig:
    """Polling behaviour while waiting on stack operations."""

    _DEFAULT_WAIT_TIMEOUT_SECONDS: ClassVar[float] = 1800.0
    _DEFAULT_POLL_INTERVAL_SECONDS: ClassVar[float] = 10.0
    wait_timeout_seconds: float = _DEFAULT_WAIT_TIMEOUT_SECONDS
    poll_interval_seconds: float = _DEFAULT_POLL_INTERVAL_SECONDS

    @staticmethod
    def from_env() -> "CloudFormationConfig":
        return CloudFormationConfig(
            wait_timeout_seconds=env_float(
                "CLOUDFORMATION_WAIT_TIMEOUT_SECONDS", CloudFormationConfig._DEFAULT_WAIT_TIMEOUT_SECONDS
            ),
            poll_interval_seconds=env_float(
                "CLOUDFORMATION_POLL_INTERVAL_SECONDS", CloudFormationConfig._DEFAULT_POLL_INTERVAL_SECONDS
            ),
        )
