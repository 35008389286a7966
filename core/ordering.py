"""Synthesis ordering derived from references between resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from core.errors import ConfigurationError, CyclicDependencyError
from core.models import ResourceDescriptor


@dataclass(slots=True)
class DependencyGraph:
    """Must-exist-before edges between declared resources."""

    resources: Dict[str, ResourceDescriptor] = field(default_factory=dict)
    edges: Dict[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_resources(cls, resources: Iterable[ResourceDescriptor]) -> "DependencyGraph":
        graph = cls()
        for resource in resources:
            if resource.logical_id in graph.resources:
                raise ConfigurationError(f"resource '{resource.logical_id}' is declared twice")
            graph.resources[resource.logical_id] = resource

        for logical_id, resource in graph.resources.items():
            dependencies = resource.dependencies()
            for dependency in dependencies:
                if dependency not in graph.resources:
                    raise ConfigurationError(f"{logical_id} references undeclared resource '{dependency}'")
                if dependency == logical_id:
                    raise CyclicDependencyError([logical_id, logical_id])
            graph.edges[logical_id] = dependencies
        return graph

    def dependents(self, logical_id: str) -> list[str]:
        return [name for name, deps in self.edges.items() if logical_id in deps]

    def order(self) -> List[ResourceDescriptor]:
        # Kahn's algorithm; ties resolve in declaration order so output is stable.
        remaining = {name: set(deps) for name, deps in self.edges.items()}
        ordered: list[str] = []
        while remaining:
            ready = [name for name, deps in remaining.items() if not deps]
            if not ready:
                raise CyclicDependencyError(self._find_cycle(remaining))
            current = ready[0]
            ordered.append(current)
            del remaining[current]
            for deps in remaining.values():
                deps.discard(current)
        return [self.resources[name] for name in ordered]

    @staticmethod
    def _find_cycle(remaining: Dict[str, set[str]]) -> list[str]:
        start = next(iter(remaining))
        path: list[str] = [start]
        current = start
        while True:
            current = sorted(remaining[current])[0]
            if current in path:
                return path[path.index(current):] + [current]
            path.append(current)


def order(resources: Sequence[ResourceDescriptor]) -> List[ResourceDescriptor]:
    """Return resources so that each appears after everything it depends on."""
    return DependencyGraph.from_resources(resources).order()


__all__ = ["DependencyGraph", "order"]
