"""Data models shared across the composer."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, ClassVar, Iterator, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from core.constants import (
    ALL_METHODS,
    DEFAULT_INDEX_DOCUMENT,
    DEFAULT_RUNTIME,
    DEFAULT_STAGE,
    HTTP_METHODS,
    STATIC_METHODS,
)
from core.errors import ConfigurationError

LOGICAL_ID = re.compile(r"^[A-Za-z][A-Za-z0-9]{0,254}$")
TOKEN_PATTERN = re.compile(r"\$\{([A-Za-z][A-Za-z0-9]*)\.([a-z_]+)\}")
_HANDLER = re.compile(r"^[A-Za-z_][\w.]*\.[A-Za-z_]\w*$")
_RUNTIME = re.compile(r"^[a-z]+[0-9][0-9.]*(\.x)?$")
_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_PATH_SEGMENT = re.compile(r"^(\{[A-Za-z_][A-Za-z0-9_]*\+?\}|[A-Za-z0-9._-]+)$")
_STAGE_NAME = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class Ref(BaseModel):
    """Reference to an identifier generated by another resource."""

    model_config = ConfigDict(frozen=True)

    target: str
    attribute: str
    suffix: str = ""

    @property
    def token(self) -> str:
        return f"${{{self.target}.{self.attribute}}}{self.suffix}"

    def __str__(self) -> str:
        return self.token


def iter_refs(value: Any) -> Iterator[Ref]:
    """Yield every Ref nested inside models, mappings and sequences."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, BaseModel):
        for name in type(value).model_fields:
            yield from iter_refs(getattr(value, name))
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)


def render(value: Union[Ref, str]) -> str:
    return value.token if isinstance(value, Ref) else value


# ---------------------------------------------------------------------------
# Resource descriptors


class ResourceDescriptor(BaseModel):
    """Common fields of every resource in the topology."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ATTRIBUTES: ClassVar[tuple[str, ...]] = ()

    logical_id: str
    depends_on: tuple[str, ...] = ()

    @field_validator("logical_id")
    @classmethod
    def _check_logical_id(cls, value: str) -> str:
        if not LOGICAL_ID.match(value):
            raise ValueError(f"logical id '{value}' must be alphanumeric and start with a letter")
        return value

    def ref(self, attribute: str, suffix: str = "") -> Ref:
        if attribute not in self.ATTRIBUTES:
            raise ConfigurationError(
                f"{self.logical_id} ({self.kind}) does not generate '{attribute}'; "  # type: ignore[attr-defined]
                f"available: {', '.join(self.ATTRIBUTES) or 'none'}"
            )
        return Ref(target=self.logical_id, attribute=attribute, suffix=suffix)

    def references(self) -> list[Ref]:
        refs: list[Ref] = []
        for name in type(self).model_fields:
            if name in {"logical_id", "depends_on", "kind"}:
                continue
            refs.extend(iter_refs(getattr(self, name)))
        return refs

    def dependencies(self) -> tuple[str, ...]:
        """Logical ids that must exist before this resource, data edges first."""
        names = [ref.target for ref in self.references()] + list(self.depends_on)
        return tuple(dict.fromkeys(names))

    def asset_paths(self) -> tuple[Path, ...]:
        return ()


class KeyAttribute(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    type: Literal["S", "N", "B"] = "S"


class TableDescriptor(ResourceDescriptor):
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ("name", "arn")

    kind: Literal["table"] = "table"
    partition_key: KeyAttribute
    billing_mode: Literal["PAY_PER_REQUEST"] = "PAY_PER_REQUEST"
    removal_policy: Literal["destroy", "retain"] = "destroy"


class BucketDescriptor(ResourceDescriptor):
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ("name", "arn", "regional_domain_name", "website_domain_name")

    kind: Literal["bucket"] = "bucket"
    index_document: str = DEFAULT_INDEX_DOCUMENT
    error_document: Optional[str] = None
    public_read_access: bool = False
    auto_delete_objects: bool = True
    removal_policy: Literal["destroy", "retain"] = "destroy"

    @field_validator("index_document", "error_document")
    @classmethod
    def _check_document(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not value or value.startswith("/") or any(ch.isspace() for ch in value):
            raise ValueError(f"document name '{value}' must be a non-empty relative object key")
        return value

    @property
    def error_page(self) -> str:
        """Object served for rewritten errors; the index document unless overridden."""
        return f"/{self.error_document or self.index_document}"


class BucketDeploymentDescriptor(ResourceDescriptor):
    kind: Literal["bucket_deployment"] = "bucket_deployment"
    source: str = Field(..., min_length=1)
    destination: Ref
    distribution: Optional[Ref] = None
    invalidation_paths: tuple[str, ...] = ("/*",)
    prune: bool = True
    retain_on_delete: bool = False

    def asset_paths(self) -> tuple[Path, ...]:
        return (Path(self.source),)


class FunctionDescriptor(ResourceDescriptor):
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ("name", "arn", "role_arn")

    kind: Literal["function"] = "function"
    handler: str
    code: str = Field(..., min_length=1)
    runtime: str = DEFAULT_RUNTIME
    memory_size: int = Field(default=128, ge=128, le=10240)
    timeout: int = Field(default=3, ge=1, le=900)
    environment: dict[str, Union[Ref, str]] = Field(default_factory=dict)

    @field_validator("handler")
    @classmethod
    def _check_handler(cls, value: str) -> str:
        if not _HANDLER.match(value):
            raise ValueError(f"handler '{value}' must look like 'module.function'")
        return value

    @field_validator("runtime")
    @classmethod
    def _check_runtime(cls, value: str) -> str:
        if not _RUNTIME.match(value):
            raise ValueError(f"runtime '{value}' is not a runtime identifier such as '{DEFAULT_RUNTIME}'")
        return value

    @field_validator("environment")
    @classmethod
    def _check_environment(cls, value: dict[str, Union[Ref, str]]) -> dict[str, Union[Ref, str]]:
        for name in value:
            if not _ENV_NAME.match(name):
                raise ValueError(f"environment variable name '{name}' is invalid")
        return value

    def asset_paths(self) -> tuple[Path, ...]:
        return (Path(self.code),)


class ApiRoute(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    method: str
    function: Ref

    @field_validator("path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        if not value.startswith("/") or value == "/":
            raise ValueError(f"route path '{value}' must start with '/' and name a resource")
        for segment in value.strip("/").split("/"):
            if not _PATH_SEGMENT.match(segment):
                raise ValueError(f"route path '{value}' has an invalid segment '{segment}'")
        return value.rstrip("/")

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        method = value.upper()
        if method not in HTTP_METHODS or method == "OPTIONS":
            raise ValueError(f"unsupported route method '{value}'")
        return method


class CorsPreflight(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    allow_origins: tuple[str, ...] = ("*",)
    allow_methods: tuple[str, ...] = ALL_METHODS


class RestApiDescriptor(ResourceDescriptor):
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ("id", "root_resource_id", "domain_name")

    kind: Literal["rest_api"] = "rest_api"
    api_name: Optional[str] = None
    routes: tuple[ApiRoute, ...] = Field(..., min_length=1)
    cors: Optional[CorsPreflight] = CorsPreflight()

    @model_validator(mode="after")
    def _check_bindings(self) -> "RestApiDescriptor":
        seen_routes: set[tuple[str, str]] = set()
        seen_functions: dict[str, str] = {}
        for route in self.routes:
            key = (route.path, route.method)
            if key in seen_routes:
                raise ValueError(f"{route.method} {route.path} is bound more than once")
            seen_routes.add(key)
            owner = seen_functions.get(route.function.target)
            if owner is not None:
                raise ValueError(
                    f"function {route.function.target} already backs {owner}; each method needs its own function"
                )
            seen_functions[route.function.target] = f"{route.method} {route.path}"
        return self

    def resource_tree(self) -> dict[str, list[str]]:
        """Map every resource path, ancestors included, to the methods it serves."""
        tree: dict[str, list[str]] = {}
        for route in self.routes:
            segments = route.path.strip("/").split("/")
            for depth in range(1, len(segments) + 1):
                tree.setdefault("/" + "/".join(segments[:depth]), [])
            tree[route.path].append(route.method)
        if self.cors is not None:
            for methods in tree.values():
                methods.append("OPTIONS")
        return tree


class ApiStageDescriptor(ResourceDescriptor):
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ("name", "url")

    kind: Literal["api_stage"] = "api_stage"
    api: Ref
    stage_name: str = DEFAULT_STAGE
    variables: dict[str, str] = Field(default_factory=dict)

    @field_validator("stage_name")
    @classmethod
    def _check_stage_name(cls, value: str) -> str:
        if not _STAGE_NAME.match(value):
            raise ValueError(f"stage name '{value}' must be 1-128 letters, digits, hyphens or underscores")
        return value


class OriginIdentityDescriptor(ResourceDescriptor):
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ("id", "s3_canonical_user_id")

    kind: Literal["origin_identity"] = "origin_identity"
    comment: str = ""


class Behavior(BaseModel):
    """Path pattern mapped to an origin plus its caching policy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path_pattern: Optional[str] = None
    is_default: bool = False
    min_ttl: int = Field(default=0, ge=0)
    default_ttl: int = Field(default=0, ge=0)
    max_ttl: int = Field(default=0, ge=0)
    compress: bool = True
    allowed_methods: tuple[str, ...] = STATIC_METHODS
    forward_query_string: bool = False
    viewer_protocol_policy: Literal["allow-all", "https-only", "redirect-to-https"] = "redirect-to-https"

    @model_validator(mode="after")
    def _check_ttl_bounds(self) -> "Behavior":
        if not self.min_ttl <= self.default_ttl <= self.max_ttl:
            raise ValueError("TTL bounds must satisfy min_ttl <= default_ttl <= max_ttl")
        return self


class Origin(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    origin_id: str = Field(..., min_length=1)
    domain_name: Union[Ref, str]
    protocol: Literal["s3", "https"] = "s3"
    identity: Optional[Ref] = None
    stage_name: Optional[str] = None
    behaviors: tuple[Behavior, ...] = Field(..., min_length=1)


class ErrorResponse(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    error_code: int = Field(..., ge=400, le=599)
    response_code: int = Field(..., ge=200, le=599)
    response_page_path: str
    ttl: int = Field(default=0, ge=0)

    @field_validator("response_page_path")
    @classmethod
    def _check_page(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("response_page_path must start with '/'")
        return value


class DistributionDescriptor(ResourceDescriptor):
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ("id", "domain_name")

    kind: Literal["distribution"] = "distribution"
    origins: tuple[Origin, ...] = Field(..., min_length=1)
    error_responses: tuple[ErrorResponse, ...] = ()
    default_root_object: Optional[str] = None
    comment: str = ""

    @field_validator("origins")
    @classmethod
    def _check_origin_ids(cls, value: tuple[Origin, ...]) -> tuple[Origin, ...]:
        ids = [origin.origin_id for origin in value]
        duplicates = sorted({origin_id for origin_id in ids if ids.count(origin_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate origin ids: {', '.join(duplicates)}")
        return value


class ParameterDescriptor(ResourceDescriptor):
    ATTRIBUTES: ClassVar[tuple[str, ...]] = ("name",)

    kind: Literal["parameter"] = "parameter"
    parameter_name: str = Field(..., min_length=1, max_length=2048)
    value: Union[Ref, str]
    description: str = ""


class OutputDescriptor(ResourceDescriptor):
    kind: Literal["output"] = "output"
    value: Union[Ref, str]
    description: str = ""


Resource = Annotated[
    Union[
        TableDescriptor,
        BucketDescriptor,
        BucketDeploymentDescriptor,
        FunctionDescriptor,
        RestApiDescriptor,
        ApiStageDescriptor,
        OriginIdentityDescriptor,
        DistributionDescriptor,
        ParameterDescriptor,
        OutputDescriptor,
    ],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Grants and policy documents


class Capability(str, Enum):
    READ = "read"
    READ_WRITE = "read-write"
    READ_OBJECT = "read-object"


class AccessGrant(BaseModel):
    """Directed permission edge from a principal to a resource."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    principal: str
    resource: str
    capability: Capability
    actions: tuple[str, ...]
    resources: tuple[str, ...]
    policy_owner: str
    sid: str


class PolicyStatement(BaseModel):
    """IAM policy statement rendered into identity or resource policies."""

    sid: str | None = Field(default=None, alias="Sid")
    effect: str = Field(default="Allow", alias="Effect")
    principals: Optional[dict[str, list[str]]] = Field(default=None, alias="Principal")
    actions: list[str] = Field(default_factory=list, alias="Action")
    resources: list[str] = Field(default_factory=list, alias="Resource")

    model_config = {
        "populate_by_name": True,
        "use_enum_values": True,
    }


class PolicyDoc(BaseModel):
    """Policy document composed of IAM statements."""

    version: str = Field(default="2012-10-17", alias="Version")
    statements: list[PolicyStatement] = Field(default_factory=list, alias="Statement")

    model_config = {
        "populate_by_name": True,
        "use_enum_values": True,
    }

    @computed_field
    @property
    def services(self) -> list[str]:
        """Return unique AWS services referenced in the policy."""
        services: set[str] = set()
        for statement in self.statements:
            for action in statement.actions:
                services.add(action.split(":", 1)[0])
        return sorted(services)


__all__ = [
    "Ref",
    "iter_refs",
    "render",
    "ResourceDescriptor",
    "KeyAttribute",
    "TableDescriptor",
    "BucketDescriptor",
    "BucketDeploymentDescriptor",
    "FunctionDescriptor",
    "ApiRoute",
    "CorsPreflight",
    "RestApiDescriptor",
    "ApiStageDescriptor",
    "OriginIdentityDescriptor",
    "Behavior",
    "Origin",
    "ErrorResponse",
    "DistributionDescriptor",
    "ParameterDescriptor",
    "OutputDescriptor",
    "Resource",
    "Capability",
    "AccessGrant",
    "PolicyStatement",
    "PolicyDoc",
]
