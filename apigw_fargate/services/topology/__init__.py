"""Resource graph of the deployment topology.

    from apigw_fargate.services.topology import TopologyBuilder, ensure_valid
"""

from apigw_fargate.services.topology.builder import Topology, TopologyBuilder
from apigw_fargate.services.topology.graph import (
    DependencyCycleError,
    DuplicateResourceError,
    MissingDependencyError,
    ResourceGraph,
    ResourceGraphError,
)
from apigw_fargate.services.topology.validation import (
    TopologyValidationError,
    ensure_valid,
    validate_topology,
)

__all__ = [
    "DependencyCycleError",
    "DuplicateResourceError",
    "MissingDependencyError",
    "ResourceGraph",
    "ResourceGraphError",
    "Topology",
    "TopologyBuilder",
    "TopologyValidationError",
    "ensure_valid",
    "validate_topology",
]
