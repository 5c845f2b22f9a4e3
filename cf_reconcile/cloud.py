from typing import Any, Dict, List, Optional, Union

import boto3
import structlog
from botocore.exceptions import ClientError

from cf_reconcile.errors import Found, NoOpUpdate, NotFound, Updated

log = structlog.get_logger("cf-reconcile")

NO_UPDATES_MESSAGE = "No updates are to be performed."


def is_stack_missing(error: ClientError, stack_name: str) -> bool:
    details = error.response.get("Error", {})
    return (
        details.get("Code") == "ValidationError"
        and details.get("Message") == f"Stack with id {stack_name} does not exist"
    )


def is_no_op_update(error: ClientError) -> bool:
    details = error.response.get("Error", {})
    return details.get("Code") == "ValidationError" and details.get("Message") == NO_UPDATES_MESSAGE


class CloudFormationApi:
    """CloudFormation operations with their expected failures turned into result values.

    Every other botocore error propagates unchanged.
    """

    def __init__(self, client):
        self.client = client

    def get_original_template(self, stack_name: str) -> Union[Found, NotFound]:
        try:
            response = self.client.get_template(StackName=stack_name, TemplateStage="Original")
        except ClientError as e:
            if is_stack_missing(e, stack_name):
                return NotFound(stack_name)
            raise
        return Found(response)

    def describe_stack(self, stack_name: str) -> Union[Found, NotFound]:
        try:
            stacks = self.client.describe_stacks(StackName=stack_name)["Stacks"]
        except ClientError as e:
            if is_stack_missing(e, stack_name):
                return NotFound(stack_name)
            raise

        if not stacks:
            return NotFound(stack_name)
        return Found(next((stack for stack in stacks if stack["StackName"] == stack_name), stacks[0]))

    def describe_stack_events(self, stack_name: str) -> List[Dict[str, Any]]:
        return self.client.describe_stack_events(StackName=stack_name)["StackEvents"]

    def create_stack(self, **params) -> Updated:
        response = self.client.create_stack(**params)
        return Updated(response.get("StackId"))

    def update_stack(self, **params) -> Union[Updated, NoOpUpdate]:
        try:
            response = self.client.update_stack(**params)
        except ClientError as e:
            if is_no_op_update(e):
                return NoOpUpdate(params["StackName"])
            raise
        return Updated(response.get("StackId"))

    def delete_stack(self, stack_name: str) -> Union[Found, NotFound]:
        try:
            self.client.delete_stack(StackName=stack_name)
        except ClientError as e:
            if is_stack_missing(e, stack_name):
                return NotFound(stack_name)
            raise
        return Found({"StackName": stack_name})

    def update_termination_protection(self, stack_name: str, enabled: bool) -> None:
        self.client.update_termination_protection(
            EnableTerminationProtection=enabled,
            StackName=stack_name,
        )


class BlobStore:

    def __init__(self, client):
        self.client = client

    def put_object(self, bucket: str, key: str, body: str, content_type: str, acl: str) -> None:
        self.client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType=content_type,
            ACL=acl,
        )


def get_clients(region: str = "us-east-1", profile: Optional[str] = None, session=None):
    """Build the CloudFormation and S3 adapters for a region."""
    if session is None:
        session = (
            boto3.Session(region_name=region, profile_name=profile)
            if profile
            else boto3.Session(region_name=region)
        )
    return (
        CloudFormationApi(session.client("cloudformation", region_name=region)),
        BlobStore(session.client("s3", region_name=region)),
    )
