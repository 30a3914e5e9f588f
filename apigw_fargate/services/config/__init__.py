"""Configuration package (Facade).

Re-exports the public config types so callers import from a single path:

    from apigw_fargate.services.config import TopologyConfig

The internal module layout can change without touching the call sites.
"""

from apigw_fargate.services.config.aws_config import AwsConfig, S3Config
from apigw_fargate.services.config.cloudformation_config import CloudFormationConfig
from apigw_fargate.services.config.probe_config import ProbeConfig
from apigw_fargate.services.config.topology_config import TopologyConfig

__all__ = ["AwsConfig", "CloudFormationConfig", "ProbeConfig", "S3Config", "TopologyConfig"]
