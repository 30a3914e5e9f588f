from __future__ import annotations

import asyncio
import gzip
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone

import aiohttp

from apigw_fargate.models.probe import ProbeResponse
from apigw_fargate.models.s3 import FileItem
from apigw_fargate.services.config import AwsConfig, ProbeConfig, S3Config
from apigw_fargate.services.deployment_service import DeploymentService, S3ServiceFactory
from apigw_fargate.services.s3_service import S3Service
from apigw_fargate.services.topology.prefixes import DELIVERED_ROOT, classify_log_key

logger = logging.getLogger(__name__)

# Tolerated clock difference between this host and S3
_CLOCK_SKEW = timedelta(seconds=60)


class ProbeError(RuntimeError):
    pass


class EndToEndProbe:
    """Send one request through the gateway and find its log line in the log store.

    The request carries a unique `probe` query parameter; the workload's
    access log line contains it, so it shows up verbatim inside one of the
    gzip batches Firehose writes under the delivered prefix.
    """

    def __init__(
        self,
        *,
        session: aiohttp.ClientSession,
        deployment: DeploymentService,
        aws: AwsConfig,
        config: ProbeConfig,
        buffer_interval_seconds: int,
        s3_factory: S3ServiceFactory = S3Service,
    ) -> None:
        self._session = session
        self._deployment = deployment
        self._aws = aws
        self._config = config
        self._buffer_interval_seconds = buffer_interval_seconds
        self._s3_factory = s3_factory

    async def _send_request(self, endpoint: str, correlation_id: str) -> int:
        url = f"{endpoint.rstrip('/')}/?probe={correlation_id}"
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
        try:
            async with self._session.get(url, timeout=timeout) as resp:
                await resp.read()
                return resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ProbeError(f"Request to {endpoint} failed") from exc

    @staticmethod
    def _is_candidate(item: FileItem, *, since: datetime, seen: set[str]) -> bool:
        if item.key in seen or classify_log_key(item.key).kind != "delivered":
            return False
        return item.last_modified is None or item.last_modified >= since - _CLOCK_SKEW

    async def _batch_contains(self, s3: S3Service, key: str, needle: str) -> bool:
        payload = await s3.read_file(key=key)
        try:
            text = gzip.decompress(payload).decode("utf-8", errors="replace")
        except (OSError, EOFError):
            logger.warning("Log object is not a complete gzip batch: %s", key)
            return False
        return needle in text

    async def run(self) -> ProbeResponse:
        outputs = await self._deployment.outputs()
        s3 = self._s3_factory(S3Config.for_bucket(outputs.log_bucket, aws=self._aws))

        correlation_id = uuid.uuid4().hex
        sent_at = datetime.now(timezone.utc)
        started = time.monotonic()

        status_code = await self._send_request(outputs.http_api_endpoint, correlation_id)
        logger.info("Probe %s: gateway answered HTTP %d", correlation_id, status_code)

        deadline = started + self._buffer_interval_seconds + self._config.flush_margin_seconds
        seen: set[str] = set()
        while time.monotonic() < deadline:
            items = await s3.list_files(prefix=DELIVERED_ROOT)
            for item in items:
                if not self._is_candidate(item, since=sent_at, seen=seen):
                    continue
                seen.add(item.key)
                if await self._batch_contains(s3, item.key, correlation_id):
                    logger.info("Probe %s: found in %s", correlation_id, item.key)
                    return ProbeResponse(
                        endpoint=outputs.http_api_endpoint,
                        correlation_id=correlation_id,
                        status_code=status_code,
                        delivered=True,
                        matched_key=item.key,
                        elapsed_seconds=round(time.monotonic() - started, 3),
                    )
            await asyncio.sleep(self._config.poll_interval_seconds)

        logger.warning("Probe %s: no delivered log line before the deadline", correlation_id)
        return ProbeResponse(
            endpoint=outputs.http_api_endpoint,
            correlation_id=correlation_id,
            status_code=status_code,
            delivered=False,
            elapsed_seconds=round(time.monotonic() - started, 3),
        )
