from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class FileItem(BaseModel):
    key: str = Field(..., description="S3 object key")
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None

    @staticmethod
    def from_s3_object(obj: dict[str, Any]) -> "FileItem":
        etag = obj.get("ETag")
        return FileItem(
            key=str(obj.get("Key")),
            size=obj.get("Size"),
            last_modified=obj.get("LastModified"),
            etag=etag.strip('"') if isinstance(etag, str) else None,
        )
