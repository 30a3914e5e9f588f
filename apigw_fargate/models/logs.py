from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

from apigw_fargate.models.s3 import FileItem
from apigw_fargate.services.topology.prefixes import classify_log_key

LogObjectKind = Literal["delivered", "failed", "unknown"]


class LogObjectItem(BaseModel):
    key: str
    kind: LogObjectKind
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None
    token: Optional[str] = None
    error_type: Optional[str] = None

    @staticmethod
    def from_file_item(item: FileItem) -> "LogObjectItem":
        parsed = classify_log_key(item.key)
        return LogObjectItem(
            key=item.key,
            kind=parsed.kind,  # type: ignore[arg-type]
            size=item.size,
            last_modified=item.last_modified,
            year=parsed.year,
            month=parsed.month,
            day=parsed.day,
            token=parsed.token,
            error_type=parsed.error_type,
        )


class LogObjectListResponse(BaseModel):
    bucket: str
    count: int
    objects: list[LogObjectItem]
