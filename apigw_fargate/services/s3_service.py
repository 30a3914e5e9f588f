from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any, Optional

import aioboto3

from apigw_fargate.models.s3 import FileItem
from apigw_fargate.services.config import S3Config

logger = logging.getLogger(__name__)

# DeleteObjects accepts at most this many keys per call
_DELETE_BATCH_SIZE = 1000


class S3ServiceError(RuntimeError):
    pass


class S3Service:
    def __init__(self, config: S3Config) -> None:
        self._config = config
        self._session = aioboto3.Session()

    @property
    def bucket_name(self) -> str:
        return self._config.bucket_name

    def _client(self) -> Any:
        return self._session.client(
            "s3",
            region_name=self._config.region_name,
            endpoint_url=self._config.endpoint_url,
        )

    async def list_files(self, *, prefix: Optional[str] = None) -> list[FileItem]:
        try:
            kwargs: dict[str, Any] = {"Bucket": self._config.bucket_name}
            if prefix:
                kwargs["Prefix"] = prefix

            items: list[FileItem] = []
            s3_client: Any = self._client()
            async with s3_client as s3:
                while True:
                    response = await s3.list_objects_v2(**kwargs)
                    items.extend(FileItem.from_s3_object(o) for o in response.get("Contents", []))
                    if not response.get("IsTruncated"):
                        break
                    kwargs["ContinuationToken"] = response["NextContinuationToken"]
            return items
        except Exception as exc:
            logger.exception("S3 list_files failed (bucket=%s)", self._config.bucket_name)
            raise S3ServiceError(f"Failed to list files from S3 (bucket={self._config.bucket_name})") from exc

    async def upload_local_file(self, *, path: Path, key: str, content_type: Optional[str] = None) -> str:
        """Upload a local file to S3.

        Args:
            path: Local file path.
            key: Destination S3 object key.
            content_type: Optional content type override.

        Returns:
            The uploaded object key.
        """

        try:
            if not key:
                raise ValueError("'key' must be provided")
            if not path.exists() or not path.is_file():
                raise FileNotFoundError(str(path))

            body = path.read_bytes()
            effective_content_type = content_type
            if effective_content_type is None:
                guessed, _ = mimetypes.guess_type(str(path))
                effective_content_type = guessed or "text/plain"

            s3_client: Any = self._client()
            async with s3_client as s3:
                await s3.put_object(
                    Bucket=self._config.bucket_name,
                    Key=key,
                    Body=body,
                    ContentType=effective_content_type,
                )

            return key
        except Exception as exc:
            logger.exception("S3 upload_local_file failed")
            raise S3ServiceError(f"Failed to upload local file to S3 (key={key})") from exc

    async def read_file(self, *, key: str) -> bytes:
        try:
            s3_client: Any = self._client()
            async with s3_client as s3:
                response = await s3.get_object(Bucket=self._config.bucket_name, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()
        except Exception as exc:
            logger.exception("S3 read_file failed")
            raise S3ServiceError(f"Failed to read file from S3 (key={key})") from exc

    async def delete_file(self, *, key: str) -> None:
        try:
            if not key:
                raise ValueError("'key' must be provided")

            s3_client: Any = self._client()
            async with s3_client as s3:
                await s3.delete_object(Bucket=self._config.bucket_name, Key=key)
        except Exception as exc:
            logger.exception("S3 delete_file failed")
            raise S3ServiceError("Failed to delete file from S3") from exc

    async def empty_bucket(self) -> int:
        """Delete every object of the bucket; returns how many were removed."""

        keys = [item.key for item in await self.list_files()]
        if not keys:
            return 0

        try:
            s3_client: Any = self._client()
            async with s3_client as s3:
                for start in range(0, len(keys), _DELETE_BATCH_SIZE):
                    batch = keys[start : start + _DELETE_BATCH_SIZE]
                    response = await s3.delete_objects(
                        Bucket=self._config.bucket_name,
                        Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                    )
                    errors = response.get("Errors") or []
                    if errors:
                        raise S3ServiceError(f"{len(errors)} objects could not be deleted: {errors[0]}")
        except Exception as exc:
            logger.exception("S3 empty_bucket failed (bucket=%s)", self._config.bucket_name)
            raise S3ServiceError(f"Failed to empty S3 bucket {self._config.bucket_name}") from exc

        logger.info("Emptied bucket %s (%d objects)", self._config.bucket_name, len(keys))
        return len(keys)
