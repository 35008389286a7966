"""Compose the delivery layer's request-routing table."""

from __future__ import annotations

import re
from typing import Iterable, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from core.constants import ERROR_RESPONSE_TTL_SECONDS, REWRITTEN_ERROR_STATUS
from core.errors import RoutingConfigError
from core.models import ErrorResponse, Origin, Ref, render

DEFAULT_PATTERN = "*"


def _pattern_regex(pattern: str) -> re.Pattern[str]:
    # Delivery-layer patterns only know '*' and '?'; everything else is literal.
    body = re.escape(pattern.lstrip("/")).replace(r"\*", ".*").replace(r"\?", ".")
    return re.compile(f"^{body}$")


class RouteEntry(BaseModel):
    """One evaluated behavior: pattern, origin and caching policy."""

    model_config = ConfigDict(frozen=True)

    precedence: int
    path_pattern: str
    is_default: bool
    origin_id: str
    origin_domain: str
    origin_path: str
    stage_variables: dict[str, str] = Field(default_factory=dict)
    min_ttl: int
    default_ttl: int
    max_ttl: int
    compress: bool
    allowed_methods: tuple[str, ...]
    forward_query_string: bool
    viewer_protocol_policy: str

    @property
    def caching_disabled(self) -> bool:
        return self.max_ttl == 0

    def matches(self, path: str) -> bool:
        if self.is_default:
            return True
        return bool(_pattern_regex(self.path_pattern).match(path.lstrip("/")))

    def origin_request_path(self, path: str) -> str:
        """Path sent to the origin for a client-visible request path."""
        return f"{self.origin_path}/{path.lstrip('/')}"


class RoutingTable(BaseModel):
    """Ordered behaviors, most specific first and the default last."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[RouteEntry, ...]
    error_responses: tuple[ErrorResponse, ...] = ()

    @property
    def default(self) -> RouteEntry:
        return self.entries[-1]

    @property
    def behaviors(self) -> tuple[RouteEntry, ...]:
        return self.entries[:-1]

    def match(self, path: str) -> RouteEntry:
        for entry in self.entries:
            if entry.matches(path):
                return entry
        return self.default

    def rewrite_error(self, status: int) -> Optional[ErrorResponse]:
        for response in self.error_responses:
            if response.error_code == status:
                return response
        return None


def spa_error_response(page_path: str, ttl: int = ERROR_RESPONSE_TTL_SECONDS) -> ErrorResponse:
    """Serve the error document with 200 when object storage answers 403.

    Deep links of a client-side routed application have no object behind them,
    so the bucket denies them and the application shell must be served instead.
    """
    return ErrorResponse(
        error_code=REWRITTEN_ERROR_STATUS,
        response_code=200,
        response_page_path=page_path,
        ttl=ttl,
    )


def compose_routing(
    origins: Sequence[Origin],
    error_responses: Iterable[ErrorResponse] = (),
    deployed_stages: Optional[Mapping[str, str]] = None,
    stage_variables: Optional[Mapping[str, Mapping[str, str]]] = None,
) -> RoutingTable:
    """Build the routing table for a distribution's origins.

    ``deployed_stages`` maps an API logical id to the stage name it is deployed
    under and ``stage_variables`` to the variables of that stage. Input order
    of specific behaviors is kept as evaluation order. Patterns are matched
    against client-visible paths; the stage only shows up in ``origin_path``.
    """
    defaults = [
        (origin.origin_id, behavior)
        for origin in origins
        for behavior in origin.behaviors
        if behavior.is_default
    ]
    if len(defaults) != 1:
        owners = ", ".join(origin_id for origin_id, _ in defaults) or "none"
        raise RoutingConfigError(f"expected exactly one default behavior, found {len(defaults)} ({owners})")

    stages = deployed_stages or {}
    variables = stage_variables or {}
    specific: list[RouteEntry] = []
    defaults_found: list[RouteEntry] = []
    seen_patterns: set[str] = set()

    for origin in origins:
        origin_path = _origin_path(origin, stages)
        api = origin.domain_name.target if isinstance(origin.domain_name, Ref) else None
        origin_variables = dict(variables.get(api, {})) if api in stages else {}
        for behavior in origin.behaviors:
            pattern = (behavior.path_pattern or "").strip()
            if behavior.is_default:
                if pattern not in {"", DEFAULT_PATTERN}:
                    raise RoutingConfigError(
                        f"default behavior of origin {origin.origin_id} cannot carry path pattern '{pattern}'"
                    )
                pattern = DEFAULT_PATTERN
            else:
                if not pattern:
                    raise RoutingConfigError(f"non-default behavior of origin {origin.origin_id} needs a path pattern")
                normalized = pattern.lstrip("/")
                if normalized in seen_patterns:
                    raise RoutingConfigError(f"path pattern '{pattern}' is declared more than once")
                seen_patterns.add(normalized)

            entry = RouteEntry(
                precedence=0,
                path_pattern=pattern,
                is_default=behavior.is_default,
                origin_id=origin.origin_id,
                origin_domain=render(origin.domain_name),
                origin_path=origin_path,
                stage_variables=origin_variables,
                min_ttl=behavior.min_ttl,
                default_ttl=behavior.default_ttl,
                max_ttl=behavior.max_ttl,
                compress=behavior.compress,
                allowed_methods=behavior.allowed_methods,
                forward_query_string=behavior.forward_query_string,
                viewer_protocol_policy=behavior.viewer_protocol_policy,
            )
            (defaults_found if behavior.is_default else specific).append(entry)

    ordered = [
        entry.model_copy(update={"precedence": index})
        for index, entry in enumerate([*specific, *defaults_found])
    ]

    responses = tuple(error_responses)
    codes = [response.error_code for response in responses]
    if len(codes) != len(set(codes)):
        raise RoutingConfigError("each error status may only be rewritten once")

    return RoutingTable(entries=tuple(ordered), error_responses=responses)


def _origin_path(origin: Origin, deployed_stages: Mapping[str, str]) -> str:
    deployed = None
    if isinstance(origin.domain_name, Ref):
        deployed = deployed_stages.get(origin.domain_name.target)
    if origin.stage_name and deployed and origin.stage_name != deployed:
        raise RoutingConfigError(
            f"origin {origin.origin_id} targets stage '{origin.stage_name}' but "
            f"{origin.domain_name.target} is deployed as '{deployed}'"  # type: ignore[union-attr]
        )
    stage = deployed or origin.stage_name
    return f"/{stage}" if stage else ""


__all__ = ["RouteEntry", "RoutingTable", "compose_routing", "spa_error_response"]
