"""Core domain models and services for the topology composer."""

from .assembler import Topology, TopologyAssembler, synthesize
from .builder import TopologyBuilder
from .errors import (
    ConfigurationError,
    CyclicDependencyError,
    GrantConflictError,
    RoutingConfigError,
    TopologyError,
)
from .models import AccessGrant, Capability, PolicyDoc, PolicyStatement, Ref
from .ordering import order
from .routing import RoutingTable, compose_routing

__all__ = [
    "AccessGrant",
    "Capability",
    "ConfigurationError",
    "CyclicDependencyError",
    "GrantConflictError",
    "PolicyDoc",
    "PolicyStatement",
    "Ref",
    "RoutingConfigError",
    "RoutingTable",
    "Topology",
    "TopologyAssembler",
    "TopologyBuilder",
    "TopologyError",
    "compose_routing",
    "order",
    "synthesize",
]
