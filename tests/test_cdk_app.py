"""Synthesize the CDK stack and check the rendered template."""

import shutil

import pytest

aws_cdk = pytest.importorskip("aws_cdk")
assertions = pytest.importorskip("aws_cdk.assertions")

from core.blueprint import synthesize_haiku  # noqa: E402
from infra.cdk.app import TopologyStack  # noqa: E402

pytestmark = pytest.mark.skipif(shutil.which("node") is None, reason="CDK synthesis requires node")

Match = assertions.Match


@pytest.fixture
def template(haiku_settings):
    app = aws_cdk.App()
    stack = TopologyStack(app, "HaikuStack", synthesize_haiku(haiku_settings), base_dir=haiku_settings.base_dir)
    return assertions.Template.from_stack(stack)


def test_table_and_functions(template):
    template.resource_count_is("AWS::DynamoDB::Table", 1)
    template.has_resource_properties(
        "AWS::DynamoDB::Table",
        {
            "KeySchema": [{"AttributeName": "item_id", "KeyType": "HASH"}],
            "BillingMode": "PAY_PER_REQUEST",
        },
    )
    template.has_resource_properties(
        "AWS::Lambda::Function",
        {"Handler": "api.get_haiku", "MemorySize": 512, "Timeout": 10, "Runtime": "python3.12"},
    )
    for handler in ("api.post_haiku", "api.patch_haiku", "api.delete_haiku"):
        template.has_resource_properties("AWS::Lambda::Function", {"Handler": handler})


def test_api_stage_and_parameters(template):
    template.has_resource_properties("AWS::ApiGateway::Stage", {"StageName": "prod"})
    template.resource_count_is("AWS::SSM::Parameter", 2)
    template.has_resource_properties("AWS::SSM::Parameter", {"Name": "TABLE_NAME"})
    template.has_resource_properties("AWS::SSM::Parameter", {"Name": "ENDPOINT_URL"})


def test_distribution_routing(template):
    template.resource_count_is("AWS::CloudFront::Distribution", 1)
    template.has_resource_properties(
        "AWS::CloudFront::Distribution",
        {
            "DistributionConfig": Match.object_like(
                {
                    "DefaultRootObject": "index.html",
                    "DefaultCacheBehavior": Match.object_like({"TargetOriginId": "StaticAssets", "Compress": True}),
                    "CacheBehaviors": [
                        Match.object_like(
                            {"PathPattern": "haiku/*", "TargetOriginId": "HaikuApi", "DefaultTTL": 0, "MaxTTL": 0}
                        )
                    ],
                    "CustomErrorResponses": [
                        {
                            "ErrorCode": 403,
                            "ResponseCode": 200,
                            "ResponsePagePath": "/index.html",
                            "ErrorCachingMinTTL": 300,
                        }
                    ],
                    "Origins": Match.array_with([Match.object_like({"Id": "HaikuApi", "OriginPath": "/prod"})]),
                }
            )
        },
    )


def test_outputs_are_published(template):
    template.has_output("BucketUrl", {})
    template.has_output("DistributionDomainName", {})


def test_asset_bucket_allows_public_website_reads(template):
    template.has_resource_properties(
        "AWS::S3::Bucket",
        {
            "WebsiteConfiguration": Match.object_like({"IndexDocument": "index.html"}),
            "PublicAccessBlockConfiguration": Match.object_like({"BlockPublicPolicy": False}),
        },
    )
