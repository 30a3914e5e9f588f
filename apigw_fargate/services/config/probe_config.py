from __future__ import annotations

from dataclasses import dataclass

from apigw_fargate.services.config._env import env_float


@dataclass(frozen=True)
class ProbeConfig:
    """End-to-end probe timing.

    `flush_margin_seconds` is added on top of the delivery pipeline's buffer
    interval before the probe gives up looking for the request's log line.
    """

    request_timeout_seconds: float = 30.0
    flush_margin_seconds: float = 120.0
    poll_interval_seconds: float = 15.0

    @staticmethod
    def from_env() -> "ProbeConfig":
        return ProbeConfig(
            request_timeout_seconds=env_float("PROBE_REQUEST_TIMEOUT_SECONDS", 30.0),
            flush_margin_seconds=env_float("PROBE_FLUSH_MARGIN_SECONDS", 120.0),
            poll_interval_seconds=env_float("PROBE_POLL_INTERVAL_SECONDS", 15.0),
        )
