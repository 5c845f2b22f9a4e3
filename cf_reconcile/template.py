import json
import os
from functools import lru_cache
from typing import Any, Dict

import boto3
import structlog
import yaml

from cf_reconcile.errors import UnsupportedTemplateSourceError

log = structlog.get_logger("cf-reconcile")

JSON_EXTENSIONS = (".json",)
YAML_EXTENSIONS = (".yml", ".yaml")


class TemplateLoader(yaml.SafeLoader):
    """SafeLoader that keeps CloudFormation short-form tags (!Ref, !Sub, ...).

    Dates stay strings, so an unquoted ``AWSTemplateFormatVersion: 2010-09-09``
    serializes back to the same text.
    """


TemplateLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:timestamp"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def cfn_tag_constructor(loader, tag_suffix, node):
    if tag_suffix == "GetAtt" and isinstance(node, yaml.ScalarNode):
        return {"Fn::GetAtt": loader.construct_scalar(node).split(".", 1)}

    key = "Ref" if tag_suffix == "Ref" else f"Fn::{tag_suffix}"
    if isinstance(node, yaml.ScalarNode):
        return {key: loader.construct_scalar(node)}
    elif isinstance(node, yaml.SequenceNode):
        return {key: loader.construct_sequence(node, deep=True)}
    elif isinstance(node, yaml.MappingNode):
        return {key: loader.construct_mapping(node, deep=True)}


TemplateLoader.add_multi_constructor("!", cfn_tag_constructor)


def serialize_template(template: Dict[str, Any]) -> str:
    """Compact JSON form used both as the stack body and for drift comparison."""
    return json.dumps(template, separators=(",", ":"), ensure_ascii=False)


def parse_template(body: str, path: str) -> Dict[str, Any]:
    lowered = path.lower()
    if lowered.endswith(JSON_EXTENSIONS):
        document = json.loads(body)
    elif lowered.endswith(YAML_EXTENSIONS):
        document = yaml.load(body, Loader=TemplateLoader)
    else:
        raise UnsupportedTemplateSourceError(f"Template {path} is not a yaml or json file")

    if not isinstance(document, dict):
        raise UnsupportedTemplateSourceError(f"Template {path} is not a mapping")
    return document


@lru_cache(25)
def get_template_from_s3(s3_url: str, region: str) -> str:
    bucket, key = s3_url[5:].split("/", 1)
    log.debug("Downloading template from S3", bucket=bucket, key=key)
    s3 = boto3.client("s3", region_name=region)
    response = s3.get_object(Bucket=bucket, Key=key)
    return response["Body"].read().decode("utf-8")


def load_template(path: str, region: str = "us-east-1") -> Dict[str, Any]:
    """Resolve a template path (local file or s3:// URL) to a document."""
    if not path.lower().endswith(JSON_EXTENSIONS + YAML_EXTENSIONS):
        raise UnsupportedTemplateSourceError(f"Template {path} is not a yaml or json file")

    if path.startswith("s3://"):
        return parse_template(get_template_from_s3(path, region), path)

    if not os.path.exists(path):
        raise UnsupportedTemplateSourceError(f"Template {path} does not exist")

    log.debug("Loading template", path=path)
    with open(path, "r") as template_file:
        return parse_template(template_file.read(), path)
