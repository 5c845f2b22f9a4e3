from typing import Any, Dict, List, Optional

import structlog

from cf_reconcile.cloud import CloudFormationApi
from cf_reconcile.errors import NoOpUpdate, NotFound, StackNotFoundError
from cf_reconcile.models import DeploymentConfig, StackOutputs
from cf_reconcile.poller import (
    CREATE_OR_UPDATE_COMPLETE,
    CREATE_OR_UPDATE_FAILED,
    POLL_INTERVAL,
    Cancellation,
    StackEventTracker,
    wait_for,
)
from cf_reconcile.publisher import template_url
from cf_reconcile.template import serialize_template

log = structlog.get_logger("cf-reconcile")


def stack_outputs_to_dict(outputs: Optional[List[Dict[str, Any]]]) -> StackOutputs:
    return {output["OutputKey"]: output["OutputValue"] for output in outputs or []}


def build_stack_params(config: DeploymentConfig) -> Dict[str, Any]:
    params = {
        "StackName": config.stack_name,
        "Capabilities": list(config.capabilities),
        "RollbackConfiguration": dict(config.rollback_configuration),
        "Parameters": [
            {"ParameterKey": key, "ParameterValue": value}
            for key, value in config.parameters.items()
        ],
    }
    if config.role:
        params["RoleARN"] = config.role

    if config.template_s3_key:
        params["TemplateURL"] = template_url(config)
    else:
        params["TemplateBody"] = serialize_template(config.template)
    return params


def create_or_update_stack(
    api: CloudFormationApi,
    config: DeploymentConfig,
    exists: bool,
    cancellation: Optional[Cancellation] = None,
    interval: float = POLL_INTERVAL,
    track_events: bool = True,
) -> StackOutputs:
    params = build_stack_params(config)

    if not exists:
        log.info("Creating stack", name=config.stack_name)
        api.create_stack(**params, DisableRollback=config.disable_rollback)
    else:
        log.info("Updating stack", name=config.stack_name)
        if isinstance(api.update_stack(**params), NoOpUpdate):
            log.info("No changes to deploy", name=config.stack_name)

    stack = wait_for(
        api.describe_stack,
        CREATE_OR_UPDATE_COMPLETE,
        CREATE_OR_UPDATE_FAILED,
        config.stack_name,
        cancellation=cancellation,
        interval=interval,
        events=StackEventTracker(api, config.stack_name) if track_events else None,
    )
    log.info("Finished deployment", name=config.stack_name, status=stack["StackStatus"])
    return stack_outputs_to_dict(stack.get("Outputs"))


def fetch_outputs(api: CloudFormationApi, config: DeploymentConfig) -> StackOutputs:
    described = api.describe_stack(config.stack_name)
    if isinstance(described, NotFound):
        raise StackNotFoundError(config.stack_name)
    return stack_outputs_to_dict(described.value.get("Outputs"))


def update_termination_protection(api: CloudFormationApi, config: DeploymentConfig, enabled: bool) -> bool:
    """Bring the stack's termination protection in line with the config.

    Returns whether a call was made.
    """
    if enabled == config.enable_termination_protection:
        return False

    log.info(
        "Updating termination protection",
        name=config.stack_name,
        enabled=config.enable_termination_protection,
    )
    api.update_termination_protection(config.stack_name, config.enable_termination_protection)
    return True
