"""Descriptor validation tests."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.builder import TopologyBuilder
from core.errors import ConfigurationError
from core.models import ApiRoute, Behavior, KeyAttribute, Ref


def _builder_with_table() -> tuple[TopologyBuilder, object]:
    builder = TopologyBuilder("Test")
    table = builder.table("HaikuTable", partition_key=KeyAttribute(name="item_id"))
    return builder, table


def test_table_requires_partition_key():
    builder = TopologyBuilder("Test")
    with pytest.raises(ConfigurationError, match="partition_key"):
        builder.table("HaikuTable")


def test_table_defaults_to_on_demand_and_destroy():
    _, table = _builder_with_table()
    assert table.billing_mode == "PAY_PER_REQUEST"
    assert table.removal_policy == "destroy"
    assert table.partition_key.type == "S"


def test_function_rejects_malformed_handler():
    builder, _ = _builder_with_table()
    with pytest.raises(ConfigurationError, match="handler"):
        builder.function("GetHaiku", handler="get_haiku", code="api")


def test_function_rejects_bad_runtime():
    builder, _ = _builder_with_table()
    with pytest.raises(ConfigurationError, match="runtime"):
        builder.function("GetHaiku", handler="api.get_haiku", code="api", runtime="Python 3")


def test_bucket_rejects_absolute_index_document():
    builder = TopologyBuilder("Test")
    with pytest.raises(ConfigurationError, match="index_document"):
        builder.bucket("AssetBucket", index_document="/index.html")


def test_bucket_error_page_falls_back_to_index():
    builder = TopologyBuilder("Test")
    bucket = builder.bucket("AssetBucket", index_document="index.html")
    assert bucket.error_page == "/index.html"
    other = builder.bucket("OtherBucket", error_document="404.html")
    assert other.error_page == "/404.html"


def test_ref_rejects_unknown_attribute():
    _, table = _builder_with_table()
    assert table.ref("name").token == "${HaikuTable.name}"
    with pytest.raises(ConfigurationError, match="does not generate"):
        table.ref("url")


def test_builder_rejects_duplicate_logical_id():
    builder, _ = _builder_with_table()
    with pytest.raises(ConfigurationError, match="declared twice"):
        builder.table("HaikuTable", partition_key=KeyAttribute(name="item_id"))


def test_builder_rejects_duplicate_parameter_name():
    builder, table = _builder_with_table()
    builder.parameter("First", parameter_name="TABLE_NAME", value=table.ref("name"))
    with pytest.raises(ConfigurationError, match="published twice"):
        builder.parameter("Second", parameter_name="TABLE_NAME", value="literal")


def test_builder_rejects_unknown_capability():
    builder, table = _builder_with_table()
    function = builder.function("GetHaiku", handler="api.get_haiku", code="api")
    with pytest.raises(ConfigurationError, match="capability"):
        builder.grant(function, table, "admin")


def test_rest_api_rejects_function_bound_twice():
    builder, _ = _builder_with_table()
    function = builder.function("GetHaiku", handler="api.get_haiku", code="api")
    with pytest.raises(ConfigurationError, match="already backs"):
        builder.rest_api(
            "HaikuApi",
            routes=[
                ApiRoute(path="/haiku", method="GET", function=function.ref("arn")),
                ApiRoute(path="/haiku", method="POST", function=function.ref("arn")),
            ],
        )


def test_rest_api_resource_tree_includes_ancestors_and_preflight():
    builder, _ = _builder_with_table()
    patch = builder.function("PatchHaiku", handler="api.patch_haiku", code="api")
    api = builder.rest_api(
        "HaikuApi",
        routes=[ApiRoute(path="/haiku/{item_id}", method="patch", function=patch.ref("arn"))],
    )
    assert api.resource_tree() == {
        "/haiku": ["OPTIONS"],
        "/haiku/{item_id}": ["PATCH", "OPTIONS"],
    }


def test_api_route_rejects_invalid_segments():
    with pytest.raises(ValidationError):
        ApiRoute(path="/haiku/{item id}", method="GET", function=Ref(target="GetHaiku", attribute="arn"))


def test_behavior_ttl_bounds_are_ordered():
    with pytest.raises(ValidationError):
        Behavior(is_default=True, min_ttl=10, default_ttl=5, max_ttl=20)


def test_dependencies_combine_references_and_explicit_edges():
    builder, table = _builder_with_table()
    function = builder.function(
        "GetHaiku",
        handler="api.get_haiku",
        code="api",
        environment={"TABLE_NAME": table.ref("name")},
        depends_on=("Other",),
    )
    assert function.dependencies() == ("HaikuTable", "Other")


@pytest.mark.parametrize("stage_name", ["prod", "prod-v2", "beta_1", "haiku"])
def test_api_stage_accepts_hyphens_and_underscores(stage_name):
    builder = TopologyBuilder("Test")
    stage = builder.api_stage("HaikuApiStage", api=Ref(target="HaikuApi", attribute="id"), stage_name=stage_name)
    assert stage.stage_name == stage_name


@pytest.mark.parametrize("stage_name", ["", "prod.v2", "prod/v2", "x" * 129])
def test_api_stage_rejects_invalid_names(stage_name):
    builder = TopologyBuilder("Test")
    with pytest.raises(ConfigurationError, match="stage_name"):
        builder.api_stage("HaikuApiStage", api=Ref(target="HaikuApi", attribute="id"), stage_name=stage_name)
