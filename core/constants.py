"""Common constants shared across the topology composer."""

PARTITION_KEY = "item_id"
DEFAULT_RUNTIME = "python3.12"
DEFAULT_STAGE = "prod"
DEFAULT_INDEX_DOCUMENT = "index.html"

API_VERBS = ("get", "post", "patch", "delete")
HTTP_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")

# Published parameter and output names are a stable contract for external tooling.
TABLE_NAME_PARAMETER = "TABLE_NAME"
ENDPOINT_URL_PARAMETER = "ENDPOINT_URL"
BUCKET_URL_OUTPUT = "BucketUrl"
DISTRIBUTION_DOMAIN_OUTPUT = "DistributionDomainName"

ONE_YEAR_SECONDS = 365 * 24 * 60 * 60
ERROR_RESPONSE_TTL_SECONDS = 300
REWRITTEN_ERROR_STATUS = 403

STATIC_METHODS = ("GET", "HEAD")
ALL_METHODS = ("GET", "HEAD", "OPTIONS", "PUT", "PATCH", "POST", "DELETE")
