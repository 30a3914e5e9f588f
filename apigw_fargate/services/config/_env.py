from __future__ import annotations

import os
from typing import Optional


def env_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}; must be an integer") from exc
    if minimum is not None and value < minimum:
        raise ValueError(f"Invalid {name}; must be >= {minimum}")
    return value


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}; must be a number") from exc
    if value <= 0:
        raise ValueError(f"Invalid {name}; must be positive")
    return value


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid {name}; must be a boolean")


def env_str(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default
