from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from apigw_fargate.models.deployment import AssetSyncSummary
from apigw_fargate.services.s3_service import S3Service, S3ServiceError

logger = logging.getLogger(__name__)


class AssetSyncError(RuntimeError):
    pass


@dataclass(frozen=True)
class AssetSyncConfig:
    """Wiring for mirroring the router configuration directory into the config store."""

    asset_dir: Path
    required_keys: tuple[str, ...] = ("extra.conf",)
    prefix: str = ""
    prune: bool = True
    concurrency: int = 8
    exclude: tuple[str, ...] = field(default=(".DS_Store",))


class ConfigAssetSyncService:
    def __init__(self, *, s3: S3Service, config: AssetSyncConfig) -> None:
        self._s3 = s3
        self._config = config

    @staticmethod
    def _md5(path: Path) -> str:
        return hashlib.md5(path.read_bytes()).hexdigest()

    def _local_assets(self) -> dict[str, Path]:
        asset_dir = self._config.asset_dir
        if not asset_dir.exists() or not asset_dir.is_dir():
            raise AssetSyncError(f"Config asset directory not found: {asset_dir}")

        prefix = self._config.prefix
        if prefix and not prefix.endswith("/"):
            prefix = prefix + "/"

        assets = {
            f"{prefix}{path.relative_to(asset_dir).as_posix()}": path
            for path in sorted(asset_dir.rglob("*"))
            if path.is_file() and path.name not in self._config.exclude
        }
        missing = [key for key in self._config.required_keys if f"{prefix}{key}" not in assets]
        if missing:
            raise AssetSyncError(f"Required router config assets missing from {asset_dir}: {', '.join(missing)}")
        return assets

    async def sync(self) -> AssetSyncSummary:
        """Mirror the local asset directory into the config bucket.

        Steps:
        1) Scan the local directory; fail early when a required asset is absent.
        2) List the bucket and plan uploads for missing or changed objects (MD5 vs ETag).
        3) Upload in parallel behind a semaphore, showing a tqdm progress bar.
        4) Prune objects that no longer exist locally.
        """

        local = self._local_assets()
        existing = {item.key: item for item in await self._s3.list_files(prefix=self._config.prefix or None)}

        planned = [
            (key, path)
            for key, path in local.items()
            if key not in existing or existing[key].etag != self._md5(path)
        ]
        stale = sorted(set(existing) - set(local)) if self._config.prune else []

        logger.info(
            "Config asset sync (bucket=%s): local=%d, remote=%d, to_upload=%d, to_prune=%d",
            self._s3.bucket_name,
            len(local),
            len(existing),
            len(planned),
            len(stale),
        )

        semaphore = asyncio.Semaphore(self._config.concurrency)

        async def _upload_one(key: str, path: Path) -> tuple[str, Optional[str]]:
            async with semaphore:
                try:
                    await self._s3.upload_local_file(path=path, key=key)
                    return (key, None)
                except S3ServiceError as exc:
                    return (key, str(exc))

        failures: list[str] = []
        if planned:
            tasks = [asyncio.create_task(_upload_one(key, path)) for key, path in planned]
            for fut in tqdm(
                asyncio.as_completed(tasks),
                total=len(tasks),
                desc="Uploading router config",
                unit="file",
            ):
                key, err = await fut
                if err is not None:
                    failures.append(key)
                    logger.error("Config asset upload failed (key=%s): %s", key, err)

        if failures:
            raise AssetSyncError(f"Failed to upload router config assets: {', '.join(sorted(failures))}")

        for key in stale:
            await self._s3.delete_file(key=key)

        summary = AssetSyncSummary(
            bucket=self._s3.bucket_name,
            uploaded=sorted(key for key, _ in planned),
            unchanged=len(local) - len(planned),
            pruned=stale,
        )
        logger.info(
            "Config asset sync complete: uploaded=%d, unchanged=%d, pruned=%d",
            len(summary.uploaded),
            summary.unchanged,
            len(summary.pruned),
        )
        return summary
