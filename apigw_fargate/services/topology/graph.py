from __future__ import annotations

from graphlib import CycleError, TopologicalSorter
from typing import Iterator, Type, TypeVar

from apigw_fargate.services.topology.specs import ResourceSpec

T = TypeVar("T", bound=ResourceSpec)


class ResourceGraphError(ValueError):
    pass


class DuplicateResourceError(ResourceGraphError):
    pass


class MissingDependencyError(ResourceGraphError):
    pass


class DependencyCycleError(ResourceGraphError):
    def __init__(self, logical_ids: list[str]) -> None:
        super().__init__(f"Dependency cycle between: {', '.join(logical_ids)}")
        self.logical_ids = logical_ids


class ResourceGraph:
    """Resource descriptors keyed by logical id.

    An edge A -> B means "A depends on B" (A reads an attribute of B, or
    must be provisioned after it). Insertion order is kept so that the
    topological order, and therefore the rendered template, is deterministic.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, ResourceSpec] = {}

    def add(self, spec: T) -> T:
        if not spec.logical_id or not spec.logical_id.isalnum():
            raise ResourceGraphError(f"Logical ids must be alphanumeric (got {spec.logical_id!r})")
        if spec.logical_id in self._nodes:
            raise DuplicateResourceError(f"Resource already declared: {spec.logical_id}")
        self._nodes[spec.logical_id] = spec
        return spec

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._nodes

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, logical_id: str) -> ResourceSpec:
        try:
            return self._nodes[logical_id]
        except KeyError:
            raise MissingDependencyError(f"Unknown resource: {logical_id}") from None

    def of_type(self, cls: Type[T]) -> list[T]:
        return [node for node in self._nodes.values() if isinstance(node, cls)]

    def dependencies_of(self, logical_id: str) -> tuple[str, ...]:
        return self.get(logical_id).dependencies()

    def dependents_of(self, logical_id: str) -> list[str]:
        self.get(logical_id)
        return [node.logical_id for node in self._nodes.values() if logical_id in node.dependencies()]

    def missing_dependencies(self) -> list[tuple[str, str]]:
        return [
            (node.logical_id, dep)
            for node in self._nodes.values()
            for dep in node.dependencies()
            if dep not in self._nodes
        ]

    def topological_order(self) -> list[ResourceSpec]:
        """Return the nodes, dependencies first."""

        missing = self.missing_dependencies()
        if missing:
            details = ", ".join(f"{src} -> {dep}" for src, dep in missing)
            raise MissingDependencyError(f"Unresolved references: {details}")

        sorter = TopologicalSorter({logical_id: node.dependencies() for logical_id, node in self._nodes.items()})
        try:
            return [self._nodes[logical_id] for logical_id in sorter.static_order()]
        except CycleError as exc:
            raise DependencyCycleError(sorted(set(exc.args[1]))) from exc
