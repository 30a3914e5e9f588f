"""Object key layout of the log store.

Firehose expands the ``!{namespace:value}`` expressions of the prefixes at
flush time and appends its own object name after them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

DATA_OUTPUT_PREFIX = (
    "firehose/year=!{timestamp:yyyy}/month=!{timestamp:MM}/day=!{timestamp:dd}/rand=!{firehose:random-string}/"
)
ERROR_OUTPUT_PREFIX = (
    "firehoseFailures/!{timestamp:yyyy}/!{timestamp:MM}/!{timestamp:dd}/!{firehose:error-output-type}/"
)

DELIVERED_ROOT = "firehose/"
FAILED_ROOT = "firehoseFailures/"

_EXPRESSION = re.compile(r"!\{([^}]*)\}")
_VALID_EXPRESSION = re.compile(r"^(timestamp:[A-Za-z\-]+|firehose:(random-string|error-output-type))$")

_DELIVERED_KEY = re.compile(
    r"^firehose/year=(?P<year>\d{4})/month=(?P<month>\d{2})/day=(?P<day>\d{2})"
    r"/rand=(?P<token>[A-Za-z0-9]+)/(?P<name>[^/]+)$"
)
_FAILED_KEY = re.compile(
    r"^firehoseFailures/(?P<year>\d{4})/(?P<month>\d{2})/(?P<day>\d{2})"
    r"/(?P<error_type>[a-z0-9\-]+)/(?P<name>[^/]+)$"
)


def _expressions(prefix: str) -> list[str]:
    return _EXPRESSION.findall(prefix)


def validate_prefixes(data_prefix: str, error_prefix: str) -> list[str]:
    """Return the problems of a data/error prefix pair (empty when valid)."""

    problems: list[str] = []
    for label, prefix in (("data output prefix", data_prefix), ("error output prefix", error_prefix)):
        if not prefix:
            problems.append(f"{label} is empty")
            continue
        if prefix.startswith("/"):
            problems.append(f"{label} must not start with '/'")
        if prefix.count("!{") != len(_expressions(prefix)):
            problems.append(f"{label} has an unterminated expression")
        for expression in _expressions(prefix):
            if not _VALID_EXPRESSION.match(expression):
                problems.append(f"{label} has an unsupported expression: !{{{expression}}}")

    data_expressions = set(_expressions(data_prefix or ""))
    for part in ("yyyy", "MM", "dd"):
        if f"timestamp:{part}" not in data_expressions:
            problems.append(f"data output prefix must partition by timestamp:{part}")
    if "firehose:error-output-type" in data_expressions:
        problems.append("data output prefix cannot use firehose:error-output-type")

    error_expressions = set(_expressions(error_prefix or ""))
    if not any(e.startswith("timestamp:") for e in error_expressions):
        problems.append("error output prefix must encode the timestamp")
    if "firehose:error-output-type" not in error_expressions:
        problems.append("error output prefix must encode firehose:error-output-type")
    if data_prefix and error_prefix and data_prefix.split("/", 1)[0] == error_prefix.split("/", 1)[0]:
        problems.append("data and error output prefixes must not share a root")

    return problems


@dataclass(frozen=True)
class LogObjectKey:
    key: str
    kind: str
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None
    token: Optional[str] = None
    error_type: Optional[str] = None


def classify_log_key(key: str) -> LogObjectKey:
    """Tell delivered batches, failed records and stray objects apart."""

    match = _DELIVERED_KEY.match(key)
    if match:
        return LogObjectKey(
            key=key,
            kind="delivered",
            year=int(match["year"]),
            month=int(match["month"]),
            day=int(match["day"]),
            token=match["token"],
        )

    match = _FAILED_KEY.match(key)
    if match:
        return LogObjectKey(
            key=key,
            kind="failed",
            year=int(match["year"]),
            month=int(match["month"]),
            day=int(match["day"]),
            error_type=match["error_type"],
        )

    return LogObjectKey(key=key, kind="unknown")
