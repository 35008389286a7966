"""Explicit declaration context for topology resources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, TypeVar

from pydantic import ValidationError

from core.errors import ConfigurationError
from core.models import (
    ApiStageDescriptor,
    BucketDeploymentDescriptor,
    BucketDescriptor,
    Capability,
    DistributionDescriptor,
    FunctionDescriptor,
    OriginIdentityDescriptor,
    OutputDescriptor,
    ParameterDescriptor,
    ResourceDescriptor,
    RestApiDescriptor,
    TableDescriptor,
)

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=ResourceDescriptor)


@dataclass(frozen=True, slots=True)
class GrantRequest:
    principal: str
    resource: str
    capability: Capability


class TopologyBuilder:
    """Collects descriptors and grant requests for one synthesis run.

    Every declaration goes through an explicit builder value, so the set of
    resources and the edges between them live in data rather than in the
    order constructors happened to run.
    """

    def __init__(self, name: str) -> None:
        if not name:
            raise ConfigurationError("topology name is required")
        self.name = name
        self._resources: dict[str, ResourceDescriptor] = {}
        self._parameter_names: set[str] = set()
        self.grant_requests: list[GrantRequest] = []

    def __iter__(self) -> Iterator[ResourceDescriptor]:
        return iter(self._resources.values())

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, logical_id: object) -> bool:
        return logical_id in self._resources

    def get(self, logical_id: str) -> ResourceDescriptor:
        try:
            return self._resources[logical_id]
        except KeyError:
            raise ConfigurationError(f"unknown resource '{logical_id}'") from None

    @property
    def resources(self) -> list[ResourceDescriptor]:
        return list(self._resources.values())

    def add(self, descriptor: D) -> D:
        if descriptor.logical_id in self._resources:
            raise ConfigurationError(f"resource '{descriptor.logical_id}' is declared twice")
        if isinstance(descriptor, ParameterDescriptor):
            if descriptor.parameter_name in self._parameter_names:
                raise ConfigurationError(f"parameter '{descriptor.parameter_name}' is published twice")
            self._parameter_names.add(descriptor.parameter_name)
        self._resources[descriptor.logical_id] = descriptor
        logger.debug("declared %s %s", descriptor.kind, descriptor.logical_id)  # type: ignore[attr-defined]
        return descriptor

    def declare(self, model: type[D], logical_id: str, **fields: Any) -> D:
        try:
            descriptor = model(logical_id=logical_id, **fields)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'value'}: {error['msg']}"
                for error in exc.errors()
            )
            raise ConfigurationError(f"invalid {model.__name__} '{logical_id}': {problems}") from exc
        return self.add(descriptor)

    # ------------------------------------------------------------------
    def table(self, logical_id: str, **fields: Any) -> TableDescriptor:
        return self.declare(TableDescriptor, logical_id, **fields)

    def bucket(self, logical_id: str, **fields: Any) -> BucketDescriptor:
        return self.declare(BucketDescriptor, logical_id, **fields)

    def bucket_deployment(self, logical_id: str, **fields: Any) -> BucketDeploymentDescriptor:
        return self.declare(BucketDeploymentDescriptor, logical_id, **fields)

    def function(self, logical_id: str, **fields: Any) -> FunctionDescriptor:
        return self.declare(FunctionDescriptor, logical_id, **fields)

    def rest_api(self, logical_id: str, **fields: Any) -> RestApiDescriptor:
        return self.declare(RestApiDescriptor, logical_id, **fields)

    def api_stage(self, logical_id: str, **fields: Any) -> ApiStageDescriptor:
        return self.declare(ApiStageDescriptor, logical_id, **fields)

    def origin_identity(self, logical_id: str, **fields: Any) -> OriginIdentityDescriptor:
        return self.declare(OriginIdentityDescriptor, logical_id, **fields)

    def distribution(self, logical_id: str, **fields: Any) -> DistributionDescriptor:
        return self.declare(DistributionDescriptor, logical_id, **fields)

    def parameter(self, logical_id: str, **fields: Any) -> ParameterDescriptor:
        return self.declare(ParameterDescriptor, logical_id, **fields)

    def output(self, logical_id: str, **fields: Any) -> OutputDescriptor:
        return self.declare(OutputDescriptor, logical_id, **fields)

    def grant(
        self,
        principal: ResourceDescriptor,
        resource: ResourceDescriptor,
        capability: Capability | str,
    ) -> GrantRequest:
        """Record a grant to be applied when the topology is assembled."""
        try:
            capability = Capability(capability)
        except ValueError:
            raise ConfigurationError(f"unknown capability '{capability}'") from None
        request = GrantRequest(principal.logical_id, resource.logical_id, capability)
        self.grant_requests.append(request)
        return request


__all__ = ["GrantRequest", "TopologyBuilder"]
