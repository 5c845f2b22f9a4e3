from datetime import datetime, timezone

import structlog

from cf_reconcile.cloud import BlobStore
from cf_reconcile.models import DeploymentConfig
from cf_reconcile.template import serialize_template

log = structlog.get_logger("cf-reconcile")

TEMPLATE_CONTENT_TYPE = "application/json"
TEMPLATE_ACL = "bucket-owner-full-control"


def iso_timestamp(epoch_millis: int) -> str:
    """Millisecond-precision UTC timestamp, e.g. 2024-05-01T12:00:00.123Z"""
    moment = datetime.fromtimestamp(epoch_millis // 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{epoch_millis % 1000:03d}Z"


def construct_template_s3_key(config: DeploymentConfig) -> str:
    return f"{config.stack_name}/{config.timestamp}-{iso_timestamp(config.timestamp)}/template.json"


def template_url(config: DeploymentConfig) -> str:
    if config.region == "us-east-1":
        return f"https://s3.amazonaws.com/{config.bucket}/{config.template_s3_key}"
    return f"https://s3.{config.region}.amazonaws.com/{config.bucket}/{config.template_s3_key}"


def upload_template(blob_store: BlobStore, config: DeploymentConfig) -> DeploymentConfig:
    """Upload the template and return the config pointing at it.

    Errors from S3 propagate; nothing has been changed on the stack yet.
    """
    key = construct_template_s3_key(config)
    log.debug("Uploading template", bucket=config.bucket, key=key)
    blob_store.put_object(
        bucket=config.bucket,
        key=key,
        body=serialize_template(config.template),
        content_type=TEMPLATE_CONTENT_TYPE,
        acl=TEMPLATE_ACL,
    )
    return config.model_copy(update={"template_s3_key": key})
