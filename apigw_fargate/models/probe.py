from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class ProbeResponse(BaseModel):
    endpoint: str
    correlation_id: str
    status_code: int
    delivered: bool
    matched_key: Optional[str] = None
    elapsed_seconds: float
