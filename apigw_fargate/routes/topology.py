from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends

from apigw_fargate.models.topology import GraphNode, TopologyGraphResponse, TopologyViolationsResponse
from apigw_fargate.services.config import TopologyConfig
from apigw_fargate.services.dependencies import get_deployment_service, get_topology_config
from apigw_fargate.services.deployment_service import DeploymentService
from apigw_fargate.services.topology import TopologyBuilder, validate_topology

router = APIRouter(prefix="/topology", tags=["topology"])


@router.get("/template")
async def get_template(deployment: DeploymentService = Depends(get_deployment_service)) -> dict[str, Any]:
    return json.loads(deployment.synth())


@router.get("/graph", response_model=TopologyGraphResponse)
async def get_graph(config: TopologyConfig = Depends(get_topology_config)) -> TopologyGraphResponse:
    topology = TopologyBuilder(config).build()
    nodes = [
        GraphNode(logical_id=spec.logical_id, kind=spec.kind, depends_on=list(spec.dependencies()))
        for spec in topology.graph.topological_order()
    ]
    return TopologyGraphResponse(count=len(nodes), nodes=nodes)


@router.get("/violations", response_model=TopologyViolationsResponse)
async def get_violations(config: TopologyConfig = Depends(get_topology_config)) -> TopologyViolationsResponse:
    violations = validate_topology(TopologyBuilder(config).build())
    return TopologyViolationsResponse(valid=not violations, violations=violations)
