"""Declarations for the haiku board: static site, REST API and table."""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.assembler import Topology, TopologyAssembler
from core.builder import TopologyBuilder
from core.constants import (
    ALL_METHODS,
    API_VERBS,
    BUCKET_URL_OUTPUT,
    DISTRIBUTION_DOMAIN_OUTPUT,
    ENDPOINT_URL_PARAMETER,
    ONE_YEAR_SECONDS,
    PARTITION_KEY,
    STATIC_METHODS,
    TABLE_NAME_PARAMETER,
)
from core.errors import ConfigurationError
from core.models import ApiRoute, Behavior, Capability, KeyAttribute, Origin
from core.policy.engine import capability_for_verb
from core.routing import spa_error_response

if TYPE_CHECKING:  # pragma: no cover
    from cli.config import Settings

COLLECTION_PATH = "/haiku"
ITEM_PATH = f"{COLLECTION_PATH}/{{{PARTITION_KEY}}}"

FUNCTION_IDS = {
    "get": "GetHaiku",
    "post": "PostHaiku",
    "patch": "PatchHaiku",
    "delete": "DeleteHaiku",
}
ROUTES = {
    "get": (COLLECTION_PATH, "GET"),
    "post": (COLLECTION_PATH, "POST"),
    "patch": (ITEM_PATH, "PATCH"),
    "delete": (ITEM_PATH, "DELETE"),
}
# The listing handler scans the whole table.
FUNCTION_SIZING = {
    "get": {"memory_size": 512, "timeout": 10},
}

STATIC_ORIGIN_ID = "StaticAssets"
API_ORIGIN_ID = "HaikuApi"


def static_behavior() -> Behavior:
    # Objects stay cached until the next deployment invalidates them.
    return Behavior(
        is_default=True,
        min_ttl=0,
        default_ttl=ONE_YEAR_SECONDS,
        max_ttl=ONE_YEAR_SECONDS,
        compress=True,
        allowed_methods=STATIC_METHODS,
    )


def api_behavior(path_pattern: str) -> Behavior:
    return Behavior(
        path_pattern=path_pattern,
        min_ttl=0,
        default_ttl=0,
        max_ttl=0,
        compress=True,
        allowed_methods=ALL_METHODS,
        forward_query_string=True,
    )


def declare_haiku_topology(builder: TopologyBuilder, settings: "Settings") -> TopologyBuilder:
    missing = [verb for verb in API_VERBS if not settings.handlers.get(verb)]
    if missing:
        raise ConfigurationError(f"no handler configured for verb(s): {', '.join(missing)}")

    table = builder.table(
        "HaikuTable",
        partition_key=KeyAttribute(name=PARTITION_KEY, type="S"),
    )
    bucket = builder.bucket(
        "AssetBucket",
        index_document=settings.index_document,
        error_document=settings.error_document,
        # The website endpoint is published as BucketUrl.
        public_read_access=True,
    )
    identity = builder.origin_identity("OriginIdentity", comment=f"{settings.project_name} asset reader")

    functions = {}
    for verb in API_VERBS:
        functions[verb] = builder.function(
            FUNCTION_IDS[verb],
            handler=settings.handlers[verb],
            code=str(settings.api_code_dir),
            runtime=settings.runtime,
            environment={TABLE_NAME_PARAMETER: table.ref("name")},
            **FUNCTION_SIZING.get(verb, {}),
        )
        builder.grant(functions[verb], table, capability_for_verb(verb))

    api = builder.rest_api(
        "HaikuApi",
        api_name=f"{settings.project_name} API",
        routes=[
            ApiRoute(path=ROUTES[verb][0], method=ROUTES[verb][1], function=functions[verb].ref("arn"))
            for verb in API_VERBS
        ],
    )
    stage = builder.api_stage(
        "HaikuApiStage",
        api=api.ref("id"),
        stage_name=settings.stage_name,
        variables=dict(settings.stage_variables),
    )

    distribution = builder.distribution(
        "Distribution",
        origins=[
            Origin(
                origin_id=STATIC_ORIGIN_ID,
                domain_name=bucket.ref("regional_domain_name"),
                protocol="s3",
                identity=identity.ref("id"),
                behaviors=(static_behavior(),),
            ),
            Origin(
                origin_id=API_ORIGIN_ID,
                domain_name=api.ref("domain_name"),
                protocol="https",
                behaviors=(api_behavior(settings.api_path_pattern),),
            ),
        ],
        error_responses=[spa_error_response(bucket.error_page)],
        default_root_object=bucket.index_document,
        comment=f"{settings.project_name} site and API",
        # The stage deployment, not just the API definition, must exist first.
        depends_on=(stage.logical_id,),
    )
    builder.grant(identity, bucket, Capability.READ_OBJECT)

    builder.bucket_deployment(
        "AssetDeployment",
        source=str(settings.asset_dir),
        destination=bucket.ref("name"),
        distribution=distribution.ref("id"),
    )

    builder.parameter("TableNameParameter", parameter_name=TABLE_NAME_PARAMETER, value=table.ref("name"))
    builder.parameter("EndpointUrlParameter", parameter_name=ENDPOINT_URL_PARAMETER, value=stage.ref("url"))
    builder.output(
        BUCKET_URL_OUTPUT,
        value=bucket.ref("website_domain_name"),
        description="Asset bucket public website endpoint",
    )
    builder.output(
        DISTRIBUTION_DOMAIN_OUTPUT,
        value=distribution.ref("domain_name"),
        description="Public entry point for the site and API",
    )
    return builder


def synthesize_haiku(settings: "Settings") -> Topology:
    builder = declare_haiku_topology(TopologyBuilder(settings.project_name), settings)
    return TopologyAssembler(builder, settings.base_dir).synthesize()


__all__ = ["declare_haiku_topology", "synthesize_haiku", "static_behavior", "api_behavior"]
