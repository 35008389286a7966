"""Error taxonomy raised while composing a topology."""

from __future__ import annotations


class TopologyError(Exception):
    """Base class for every synthesis failure."""


class ConfigurationError(TopologyError):
    """A descriptor field is missing or invalid, or a referenced asset is absent."""


class RoutingConfigError(TopologyError):
    """The delivery routing table cannot be composed from the declared origins."""


class CyclicDependencyError(TopologyError):
    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Cyclic dependency between resources: {' -> '.join(cycle)}")
        self.cycle = cycle


class GrantConflictError(TopologyError):
    """A narrower capability was requested after a wider one for the same pair.

    Grants only widen, so the request is ignored. Instances are recorded in the
    grant engine's audit trail instead of being raised.
    """

    def __init__(self, principal: str, resource: str, granted: str, requested: str) -> None:
        super().__init__(
            f"{principal} already holds '{granted}' on {resource}; ignoring narrower '{requested}'"
        )
        self.principal = principal
        self.resource = resource
        self.granted = granted
        self.requested = requested


__all__ = [
    "TopologyError",
    "ConfigurationError",
    "RoutingConfigError",
    "CyclicDependencyError",
    "GrantConflictError",
]
