"""Assemble declared resources into a complete, ordered topology."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.builder import TopologyBuilder
from core.errors import ConfigurationError
from core.models import (
    AccessGrant,
    ApiStageDescriptor,
    BucketDescriptor,
    DistributionDescriptor,
    FunctionDescriptor,
    OutputDescriptor,
    ParameterDescriptor,
    PolicyDoc,
    Ref,
    Resource,
    ResourceDescriptor,
    RestApiDescriptor,
    TableDescriptor,
    render,
)
from core.ordering import DependencyGraph
from core.policy.engine import GrantEngine
from core.routing import RoutingTable, compose_routing

logger = logging.getLogger(__name__)


class Topology(BaseModel):
    """Deployment-ready description handed to an external executor."""

    model_config = ConfigDict(frozen=True)

    name: str
    resources: list[Resource]
    dependencies: dict[str, list[str]] = Field(default_factory=dict)
    grants: list[AccessGrant] = Field(default_factory=list)
    policies: dict[str, PolicyDoc] = Field(default_factory=dict)
    routing: dict[str, RoutingTable] = Field(default_factory=dict)
    audit: list[str] = Field(default_factory=list)

    @property
    def order(self) -> list[str]:
        return [resource.logical_id for resource in self.resources]

    def get(self, logical_id: str) -> ResourceDescriptor:
        for resource in self.resources:
            if resource.logical_id == logical_id:
                return resource
        raise KeyError(logical_id)

    def of_kind(self, kind: str) -> list[ResourceDescriptor]:
        return [resource for resource in self.resources if resource.kind == kind]

    @property
    def parameters(self) -> dict[str, str]:
        return {
            resource.parameter_name: render(resource.value)
            for resource in self.resources
            if isinstance(resource, ParameterDescriptor)
        }

    @property
    def outputs(self) -> dict[str, str]:
        return {
            resource.logical_id: render(resource.value)
            for resource in self.resources
            if isinstance(resource, OutputDescriptor)
        }

    def manifest(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "order": self.order,
            "resources": [resource.model_dump(mode="json") for resource in self.resources],
            "dependencies": self.dependencies,
            "grants": [grant.model_dump(mode="json") for grant in self.grants],
            "policies": {owner: doc.model_dump(by_alias=True, exclude_none=True) for owner, doc in self.policies.items()},
            "routing": {name: table.model_dump(mode="json") for name, table in self.routing.items()},
            "parameters": self.parameters,
            "outputs": self.outputs,
            "audit": self.audit,
        }


class TopologyAssembler:
    """Realize a builder's declarations: order, grants, routing, outputs.

    Synthesis is all or nothing; the first error from any step propagates and
    no topology is produced.
    """

    def __init__(self, builder: TopologyBuilder, base_dir: Optional[Path] = None) -> None:
        self.builder = builder
        self.base_dir = base_dir or Path.cwd()
        self.engine = GrantEngine()

    def synthesize(self) -> Topology:
        resources = self.builder.resources
        if not resources:
            raise ConfigurationError(f"topology '{self.builder.name}' declares no resources")

        self._check_assets(resources)
        self._check_website_endpoints(resources)
        graph = DependencyGraph.from_resources(resources)
        ordered = graph.order()
        logger.debug("synthesis order: %s", ", ".join(resource.logical_id for resource in ordered))

        for request in self.builder.grant_requests:
            self.engine.grant(
                self.builder.get(request.principal),
                self.builder.get(request.resource),
                request.capability,
            )
        self._check_grant_coverage(resources)

        routing = {
            distribution.logical_id: self._compose(distribution, resources)
            for distribution in resources
            if isinstance(distribution, DistributionDescriptor)
        }

        audit = [str(conflict) for conflict in self.engine.conflicts]
        return Topology(
            name=self.builder.name,
            resources=ordered,  # type: ignore[arg-type]
            dependencies={name: list(deps) for name, deps in graph.edges.items()},
            grants=self.engine.grants,
            policies=self.engine.policies,
            routing=routing,
            audit=audit,
        )

    # ------------------------------------------------------------------
    def _check_assets(self, resources: list[ResourceDescriptor]) -> None:
        for resource in resources:
            for path in resource.asset_paths():
                resolved = path if path.is_absolute() else self.base_dir / path
                if not resolved.exists():
                    raise ConfigurationError(f"{resource.logical_id} references missing asset path '{resolved}'")

    def _check_website_endpoints(self, resources: list[ResourceDescriptor]) -> None:
        private = {
            resource.logical_id
            for resource in resources
            if isinstance(resource, BucketDescriptor) and not resource.public_read_access
        }
        for resource in resources:
            for ref in resource.references():
                if ref.attribute == "website_domain_name" and ref.target in private:
                    raise ConfigurationError(
                        f"{resource.logical_id} publishes the website endpoint of {ref.target}, "
                        "which does not allow public reads"
                    )

    def _check_grant_coverage(self, resources: list[ResourceDescriptor]) -> None:
        tables = {resource.logical_id for resource in resources if isinstance(resource, TableDescriptor)}
        for resource in resources:
            if not isinstance(resource, FunctionDescriptor):
                continue
            consumed = {ref.target for ref in resource.references() if ref.target in tables}
            for table in sorted(consumed):
                if self.engine.lookup(resource.logical_id, table) is None:
                    raise ConfigurationError(f"function {resource.logical_id} uses table {table} without a grant")

    def _compose(self, distribution: DistributionDescriptor, resources: list[ResourceDescriptor]) -> RoutingTable:
        apis = {resource.logical_id for resource in resources if isinstance(resource, RestApiDescriptor)}
        deployed = [
            resource
            for resource in resources
            if isinstance(resource, ApiStageDescriptor) and resource.logical_id in distribution.depends_on
        ]
        stages = {stage.api.target: stage.stage_name for stage in deployed}
        variables = {stage.api.target: dict(stage.variables) for stage in deployed}
        for origin in distribution.origins:
            target = origin.domain_name.target if isinstance(origin.domain_name, Ref) else None
            if target in apis and target not in stages:
                raise ConfigurationError(
                    f"{distribution.logical_id} routes to {target} but does not depend on its deployed stage"
                )
        return compose_routing(distribution.origins, distribution.error_responses, stages, variables)


def synthesize(builder: TopologyBuilder, base_dir: Optional[Path] = None) -> Topology:
    return TopologyAssembler(builder, base_dir).synthesize()


__all__ = ["Topology", "TopologyAssembler", "synthesize"]
