from typing import Any, Dict

import structlog

from cf_reconcile.cloud import CloudFormationApi
from cf_reconcile.errors import NotFound
from cf_reconcile.models import DeploymentConfig, PreviousStackSnapshot
from cf_reconcile.template import serialize_template

log = structlog.get_logger("cf-reconcile")


def remote_template_body(template_response: Dict[str, Any]) -> str:
    # botocore decodes JSON template bodies into an ordered mapping; YAML ones stay text
    body = template_response.get("TemplateBody")
    if isinstance(body, dict):
        return serialize_template(body)
    return body


def project_stack_config(stack: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "parameters": {
            parameter["ParameterKey"]: parameter.get("ParameterValue")
            for parameter in stack.get("Parameters") or []
        },
        "role": stack.get("RoleARN"),
        "capabilities": stack.get("Capabilities") or [],
        "rollback_configuration": stack.get("RollbackConfiguration") or {},
    }


def project_desired_config(config: DeploymentConfig) -> Dict[str, Any]:
    return {
        "parameters": dict(config.parameters),
        "role": config.role,
        "capabilities": list(config.capabilities),
        "rollback_configuration": dict(config.rollback_configuration),
    }


def get_previous_stack(api: CloudFormationApi, config: DeploymentConfig) -> PreviousStackSnapshot:
    """Fetch the deployed stack and decide whether it has drifted from ``config``.

    Template bodies are compared in serialized form, byte for byte, so a
    change in key order alone counts as drift.
    """
    template = api.get_original_template(config.stack_name)
    if isinstance(template, NotFound):
        log.debug("No previous stack", name=config.stack_name)
        return PreviousStackSnapshot(stack={}, needs_update=True)

    described = api.describe_stack(config.stack_name)
    if isinstance(described, NotFound):
        log.debug("Stack vanished while inspecting", name=config.stack_name)
        return PreviousStackSnapshot(stack={}, needs_update=True)
    stack = described.value

    template_changed = remote_template_body(template.value) != serialize_template(config.template)
    previous_config = project_stack_config(stack)
    desired_config = project_desired_config(config)
    changed_fields = [key for key in previous_config if previous_config[key] != desired_config[key]]

    if template_changed or changed_fields:
        log.debug(
            "Stack has drifted",
            name=config.stack_name,
            template_changed=template_changed,
            changed_fields=changed_fields,
        )
        return PreviousStackSnapshot(stack=stack, needs_update=True)

    return PreviousStackSnapshot(stack=stack, needs_update=False)
