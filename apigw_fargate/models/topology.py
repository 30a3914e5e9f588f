from __future__ import annotations

from pydantic import BaseModel


class GraphNode(BaseModel):
    logical_id: str
    kind: str
    depends_on: list[str]


class TopologyGraphResponse(BaseModel):
    count: int
    nodes: list[GraphNode]


class TopologyViolationsResponse(BaseModel):
    valid: bool
    violations: list[str]
