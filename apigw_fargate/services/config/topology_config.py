from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Optional

from apigw_fargate.services.config._env import env_bool, env_int, env_str

# Valid Fargate task sizes: {cpu_units: [memory_mib, ...]}
FARGATE_CPU_MEMORY: dict[int, list[int]] = {
    256: [512, 1024, 2048],
    512: [1024, 2048, 3072, 4096],
    1024: list(range(2048, 8193, 1024)),
    2048: list(range(4096, 16385, 1024)),
    4096: list(range(8192, 30721, 1024)),
}

# Retention periods CloudWatch Logs accepts
LOG_RETENTION_DAYS: frozenset[int] = frozenset(
    {1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365, 400, 545, 731, 1096, 1827, 2192, 2557, 2922, 3288, 3653}
)


@dataclass(frozen=True)
class TopologyConfig:
    """Inputs of the deployment topology.

    Everything here is known before provisioning; anything produced by the
    provisioning engine (bucket names, stream names, ARNs) is wired through
    resource references instead.
    """

    _PROJECT_ROOT: ClassVar[Path] = Path(__file__).resolve().parents[3]

    stack_name: str = "ApiGatewayFargateServiceStack"
    service_name: str = "www"
    namespace: str = "example.com"
    cpu: int = 256
    memory_mib: int = 512
    desired_count: int = 1
    container_port: int = 80
    workload_image: str = "public.ecr.aws/nginx/nginx:latest"
    router_image: str = "public.ecr.aws/aws-observability/aws-for-fluent-bit:init-latest"
    config_asset_dir: Path = _PROJECT_ROOT / "fluentbit-config"
    extra_config_key: str = "extra.conf"
    parser_file: str = "/fluent-bit/parsers/parsers.conf"
    vpc_cidr: str = "10.0.0.0/16"
    max_azs: int = 1
    nat_gateways: int = 1
    buffer_interval_seconds: int = 300
    buffer_size_mib: int = 5
    enable_execute_command: bool = True
    log_retention_days: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.stack_name:
            raise ValueError("stack_name must be provided")
        if self.memory_mib not in FARGATE_CPU_MEMORY.get(self.cpu, []):
            raise ValueError(f"Unsupported Fargate task size: cpu={self.cpu} memory={self.memory_mib}")
        if self.desired_count < 1:
            raise ValueError("desired_count must be >= 1")
        if not 0 < self.container_port < 65536:
            raise ValueError(f"Invalid container_port: {self.container_port}")
        if self.max_azs < 1 or not 1 <= self.nat_gateways <= self.max_azs:
            raise ValueError("nat_gateways must be between 1 and max_azs")
        # Firehose S3 destination limits
        if not 0 <= self.buffer_interval_seconds <= 900:
            raise ValueError("buffer_interval_seconds must be between 0 and 900")
        if not 1 <= self.buffer_size_mib <= 128:
            raise ValueError("buffer_size_mib must be between 1 and 128")
        if self.log_retention_days is not None and self.log_retention_days not in LOG_RETENTION_DAYS:
            raise ValueError(f"Unsupported log_retention_days: {self.log_retention_days}")

    @staticmethod
    def from_env() -> "TopologyConfig":
        defaults = TopologyConfig()
        retention = env_int("TOPOLOGY_LOG_RETENTION_DAYS", 0, minimum=0)

        return TopologyConfig(
            stack_name=env_str("TOPOLOGY_STACK_NAME", defaults.stack_name),
            service_name=env_str("TOPOLOGY_SERVICE_NAME", defaults.service_name),
            namespace=env_str("TOPOLOGY_NAMESPACE", defaults.namespace),
            cpu=env_int("TOPOLOGY_CPU", defaults.cpu),
            memory_mib=env_int("TOPOLOGY_MEMORY_MIB", defaults.memory_mib),
            desired_count=env_int("TOPOLOGY_DESIRED_COUNT", defaults.desired_count, minimum=1),
            container_port=env_int("TOPOLOGY_CONTAINER_PORT", defaults.container_port, minimum=1),
            workload_image=env_str("TOPOLOGY_WORKLOAD_IMAGE", defaults.workload_image),
            router_image=env_str("TOPOLOGY_ROUTER_IMAGE", defaults.router_image),
            config_asset_dir=Path(env_str("TOPOLOGY_CONFIG_ASSET_DIR", str(defaults.config_asset_dir))),
            buffer_interval_seconds=env_int(
                "TOPOLOGY_BUFFER_INTERVAL_SECONDS", defaults.buffer_interval_seconds, minimum=0
            ),
            buffer_size_mib=env_int("TOPOLOGY_BUFFER_SIZE_MIB", defaults.buffer_size_mib, minimum=1),
            enable_execute_command=env_bool("TOPOLOGY_ENABLE_EXECUTE_COMMAND", defaults.enable_execute_command),
            log_retention_days=retention or None,
        )
