"""AWS CDK app realizing a synthesized topology."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from aws_cdk import (
    App,
    CfnOutput,
    Duration,
    Environment,
    RemovalPolicy,
    Stack,
    aws_apigateway as apigw,
    aws_cloudfront as cf,
    aws_dynamodb as ddb,
    aws_iam as iam,
    aws_lambda as _lambda,
    aws_s3 as s3,
    aws_s3_deployment as s3deploy,
    aws_ssm as ssm,
)
from constructs import Construct

from cli.config import Settings, load_settings
from core.assembler import Topology
from core.blueprint import synthesize_haiku
from core.models import (
    TOKEN_PATTERN,
    ApiStageDescriptor,
    BucketDeploymentDescriptor,
    BucketDescriptor,
    DistributionDescriptor,
    FunctionDescriptor,
    OriginIdentityDescriptor,
    OutputDescriptor,
    ParameterDescriptor,
    Ref,
    RestApiDescriptor,
    TableDescriptor,
)
from core.routing import RouteEntry

REMOVAL_POLICIES = {"destroy": RemovalPolicy.DESTROY, "retain": RemovalPolicy.RETAIN}
KEY_TYPES = {
    "S": ddb.AttributeType.STRING,
    "N": ddb.AttributeType.NUMBER,
    "B": ddb.AttributeType.BINARY,
}
CACHED_METHODS = ["GET", "HEAD"]


def _runtime(identifier: str) -> _lambda.Runtime:
    if identifier.startswith("python"):
        family = _lambda.RuntimeFamily.PYTHON
    elif identifier.startswith("nodejs"):
        family = _lambda.RuntimeFamily.NODEJS
    else:
        family = _lambda.RuntimeFamily.OTHER
    return _lambda.Runtime(identifier, family)


class TopologyStack(Stack):
    """Create one construct per topology resource, in synthesis order."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        topology: Topology,
        base_dir: Optional[Path] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)
        self.topology = topology
        self.base_dir = base_dir or Path.cwd()
        self.resources: Dict[str, Any] = {}
        self._attributes: Dict[str, Dict[str, str]] = {}

        builders: Dict[str, Callable[[Any], Any]] = {
            "table": self._table,
            "bucket": self._bucket,
            "bucket_deployment": self._bucket_deployment,
            "function": self._function,
            "rest_api": self._rest_api,
            "api_stage": self._api_stage,
            "origin_identity": self._origin_identity,
            "distribution": self._distribution,
            "parameter": self._parameter,
            "output": self._output,
        }
        for resource in topology.resources:
            construct = builders[resource.kind](resource)
            self.resources[resource.logical_id] = construct
            for dependency in resource.depends_on:
                construct.node.add_dependency(self.resources[dependency])

        self._apply_policies()

    # ------------------------------------------------------------------
    def _resolve(self, value: Union[Ref, str]) -> str:
        if isinstance(value, Ref):
            return self._attributes[value.target][value.attribute] + value.suffix
        return TOKEN_PATTERN.sub(lambda match: self._attributes[match.group(1)][match.group(2)], value)

    def _asset(self, path: str) -> str:
        candidate = Path(path)
        return str(candidate if candidate.is_absolute() else self.base_dir / candidate)

    def _table(self, resource: TableDescriptor) -> ddb.Table:
        table = ddb.Table(
            self,
            resource.logical_id,
            partition_key=ddb.Attribute(
                name=resource.partition_key.name,
                type=KEY_TYPES[resource.partition_key.type],
            ),
            billing_mode=ddb.BillingMode.PAY_PER_REQUEST,
            removal_policy=REMOVAL_POLICIES[resource.removal_policy],
        )
        self._attributes[resource.logical_id] = {"name": table.table_name, "arn": table.table_arn}
        return table

    def _bucket(self, resource: BucketDescriptor) -> s3.Bucket:
        if resource.public_read_access:
            access = s3.BlockPublicAccess(
                block_public_acls=True,
                ignore_public_acls=True,
                block_public_policy=False,
                restrict_public_buckets=False,
            )
        else:
            access = s3.BlockPublicAccess.BLOCK_ALL
        destroy = resource.removal_policy == "destroy"
        bucket = s3.Bucket(
            self,
            resource.logical_id,
            website_index_document=resource.index_document,
            website_error_document=resource.error_document or resource.index_document,
            public_read_access=resource.public_read_access,
            block_public_access=access,
            removal_policy=REMOVAL_POLICIES[resource.removal_policy],
            auto_delete_objects=resource.auto_delete_objects and destroy,
        )
        self._attributes[resource.logical_id] = {
            "name": bucket.bucket_name,
            "arn": bucket.bucket_arn,
            "regional_domain_name": bucket.bucket_regional_domain_name,
            "website_domain_name": bucket.bucket_website_domain_name,
        }
        return bucket

    def _bucket_deployment(self, resource: BucketDeploymentDescriptor) -> s3deploy.BucketDeployment:
        options: Dict[str, Any] = {}
        if resource.distribution is not None:
            target = resource.distribution.target
            options["distribution"] = cf.Distribution.from_distribution_attributes(
                self,
                f"{resource.logical_id}Target",
                distribution_id=self._attributes[target]["id"],
                domain_name=self._attributes[target]["domain_name"],
            )
            options["distribution_paths"] = list(resource.invalidation_paths)
        return s3deploy.BucketDeployment(
            self,
            resource.logical_id,
            sources=[s3deploy.Source.asset(self._asset(resource.source))],
            destination_bucket=self.resources[resource.destination.target],
            prune=resource.prune,
            retain_on_delete=resource.retain_on_delete,
            **options,
        )

    def _function(self, resource: FunctionDescriptor) -> _lambda.Function:
        function = _lambda.Function(
            self,
            resource.logical_id,
            runtime=_runtime(resource.runtime),
            code=_lambda.Code.from_asset(self._asset(resource.code)),
            handler=resource.handler,
            memory_size=resource.memory_size,
            timeout=Duration.seconds(resource.timeout),
            environment={name: self._resolve(value) for name, value in resource.environment.items()},
        )
        self._attributes[resource.logical_id] = {
            "name": function.function_name,
            "arn": function.function_arn,
            "role_arn": function.role.role_arn if function.role else "",
        }
        return function

    def _rest_api(self, resource: RestApiDescriptor) -> apigw.RestApi:
        cors = None
        if resource.cors is not None:
            cors = apigw.CorsOptions(
                allow_origins=list(resource.cors.allow_origins),
                allow_methods=list(resource.cors.allow_methods),
            )
        # Deployment and stage are separate resources so they can be ordered.
        api = apigw.RestApi(
            self,
            resource.logical_id,
            rest_api_name=resource.api_name or resource.logical_id,
            deploy=False,
            cloud_watch_role=False,
            default_cors_preflight_options=cors,
        )
        for route in resource.routes:
            api.root.resource_for_path(route.path.lstrip("/")).add_method(
                route.method,
                apigw.LambdaIntegration(self.resources[route.function.target]),
            )
        self._attributes[resource.logical_id] = {
            "id": api.rest_api_id,
            "root_resource_id": api.rest_api_root_resource_id,
            "domain_name": f"{api.rest_api_id}.execute-api.{self.region}.{self.url_suffix}",
        }
        return api

    def _api_stage(self, resource: ApiStageDescriptor) -> apigw.Stage:
        api = self.resources[resource.api.target]
        deployment = apigw.Deployment(self, f"{resource.logical_id}Deployment", api=api)
        stage = apigw.Stage(
            self,
            resource.logical_id,
            deployment=deployment,
            stage_name=resource.stage_name,
            variables=dict(resource.variables) or None,
        )
        api.deployment_stage = stage
        self._attributes[resource.logical_id] = {"name": stage.stage_name, "url": stage.url_for_path("/")}
        return stage

    def _origin_identity(self, resource: OriginIdentityDescriptor) -> cf.OriginAccessIdentity:
        identity = cf.OriginAccessIdentity(self, resource.logical_id, comment=resource.comment or None)
        self._attributes[resource.logical_id] = {
            "id": identity.origin_access_identity_id,
            "s3_canonical_user_id": identity.cloud_front_origin_access_identity_s3_canonical_user_id,
        }
        return identity

    def _distribution(self, resource: DistributionDescriptor) -> cf.CfnDistribution:
        table = self.topology.routing[resource.logical_id]
        origin_paths = {entry.origin_id: entry.origin_path for entry in table.entries}

        origins = []
        for origin in resource.origins:
            options: Dict[str, Any] = {}
            if origin.protocol == "s3":
                identity = self._resolve(origin.identity) if origin.identity is not None else ""
                options["s3_origin_config"] = cf.CfnDistribution.S3OriginConfigProperty(
                    origin_access_identity=f"origin-access-identity/cloudfront/{identity}" if identity else ""
                )
            else:
                options["custom_origin_config"] = cf.CfnDistribution.CustomOriginConfigProperty(
                    origin_protocol_policy="https-only",
                    origin_ssl_protocols=["TLSv1.2"],
                )
            origins.append(
                cf.CfnDistribution.OriginProperty(
                    id=origin.origin_id,
                    domain_name=self._resolve(origin.domain_name),
                    origin_path=origin_paths.get(origin.origin_id) or None,
                    **options,
                )
            )

        default = table.default
        distribution = cf.CfnDistribution(
            self,
            resource.logical_id,
            distribution_config=cf.CfnDistribution.DistributionConfigProperty(
                enabled=True,
                comment=resource.comment or None,
                default_root_object=resource.default_root_object,
                http_version="http2",
                origins=origins,
                default_cache_behavior=cf.CfnDistribution.DefaultCacheBehaviorProperty(
                    target_origin_id=default.origin_id,
                    **self._behavior_options(default),
                ),
                cache_behaviors=[
                    cf.CfnDistribution.CacheBehaviorProperty(
                        path_pattern=entry.path_pattern,
                        target_origin_id=entry.origin_id,
                        **self._behavior_options(entry),
                    )
                    for entry in table.behaviors
                ]
                or None,
                custom_error_responses=[
                    cf.CfnDistribution.CustomErrorResponseProperty(
                        error_code=response.error_code,
                        response_code=response.response_code,
                        response_page_path=response.response_page_path,
                        error_caching_min_ttl=response.ttl,
                    )
                    for response in table.error_responses
                ]
                or None,
            ),
        )
        self._attributes[resource.logical_id] = {
            "id": distribution.ref,
            "domain_name": distribution.attr_domain_name,
        }
        return distribution

    @staticmethod
    def _behavior_options(entry: RouteEntry) -> Dict[str, Any]:
        return {
            "viewer_protocol_policy": entry.viewer_protocol_policy,
            "allowed_methods": list(entry.allowed_methods),
            "cached_methods": CACHED_METHODS,
            "compress": entry.compress,
            "min_ttl": entry.min_ttl,
            "default_ttl": entry.default_ttl,
            "max_ttl": entry.max_ttl,
            "forwarded_values": cf.CfnDistribution.ForwardedValuesProperty(
                query_string=entry.forward_query_string,
            ),
        }

    def _parameter(self, resource: ParameterDescriptor) -> ssm.StringParameter:
        parameter = ssm.StringParameter(
            self,
            resource.logical_id,
            parameter_name=resource.parameter_name,
            string_value=self._resolve(resource.value),
            description=resource.description or None,
        )
        self._attributes[resource.logical_id] = {"name": parameter.parameter_name}
        return parameter

    def _output(self, resource: OutputDescriptor) -> CfnOutput:
        return CfnOutput(
            self,
            resource.logical_id,
            value=self._resolve(resource.value),
            description=resource.description or None,
        )

    def _apply_policies(self) -> None:
        for owner, document in self.topology.policies.items():
            target = self.resources[owner]
            kind = self.topology.get(owner).kind
            for statement in document.statements:
                principals = [
                    iam.CanonicalUserPrincipal(self._resolve(user))
                    for user in (statement.principals or {}).get("CanonicalUser", [])
                ]
                policy = iam.PolicyStatement(
                    sid=statement.sid,
                    actions=list(statement.actions),
                    resources=[self._resolve(item) for item in statement.resources],
                    principals=principals or None,
                )
                if kind == "bucket":
                    target.add_to_resource_policy(policy)
                else:
                    target.add_to_role_policy(policy)


def build_app(settings: Optional[Settings] = None) -> App:
    settings = settings or load_settings(Path("bashoutter.yml"))
    topology = synthesize_haiku(settings)
    app = App()
    TopologyStack(
        app,
        f"{settings.project_name}Stack",
        topology,
        base_dir=settings.base_dir,
        env=Environment(
            account=os.getenv("CDK_DEFAULT_ACCOUNT"),
            region=os.getenv("CDK_DEFAULT_REGION", settings.region),
        ),
    )
    return app


def main() -> None:
    app = build_app()
    app.synth()


if __name__ == "__main__":
    main()
