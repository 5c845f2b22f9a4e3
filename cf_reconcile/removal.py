from typing import Optional

import structlog

from cf_reconcile.cloud import CloudFormationApi
from cf_reconcile.errors import NotFound, StackNotFoundError
from cf_reconcile.models import DeploymentConfig, PersistedState
from cf_reconcile.poller import DELETE_COMPLETE, DELETE_FAILED, POLL_INTERVAL, Cancellation, wait_for

log = structlog.get_logger("cf-reconcile")


def delete_stack(
    api: CloudFormationApi,
    stack_name: str,
    cancellation: Optional[Cancellation] = None,
    interval: float = POLL_INTERVAL,
) -> bool:
    """Delete a stack and wait for it to go away.

    Returns False when the stack did not exist to begin with.
    """
    log.info("Deleting stack", name=stack_name)
    if isinstance(api.delete_stack(stack_name), NotFound):
        log.info("Stack already deleted", name=stack_name)
        return False

    try:
        wait_for(
            api.describe_stack,
            DELETE_COMPLETE,
            DELETE_FAILED,
            stack_name,
            cancellation=cancellation,
            interval=interval,
        )
    except StackNotFoundError:
        # Deleted stacks stop being addressable by name
        pass

    log.info("Stack deleted", name=stack_name)
    return True


def needs_replacement(state: PersistedState, config: DeploymentConfig) -> bool:
    """Whether ``state`` names a stack other than the one ``config`` deploys."""
    if state.stack_name is None:
        return False
    return state.stack_name != config.stack_name or state.region not in (None, config.region)


def replace_previous_stack(
    api: CloudFormationApi,
    state: PersistedState,
    config: DeploymentConfig,
    cancellation: Optional[Cancellation] = None,
    interval: float = POLL_INTERVAL,
) -> Optional[Exception]:
    """Remove the stack recorded in ``state`` if the config renamed or moved it.

    Must only run once the stack named by ``config`` has converged. A failed
    delete is logged and returned instead of raised; the new stack stays.
    """
    if not needs_replacement(state, config):
        return None

    log.info("Replacing renamed stack", previous=state.stack_name, name=config.stack_name)
    try:
        delete_stack(api, state.stack_name, cancellation=cancellation, interval=interval)
    except Exception as e:
        log.exception("Failed to delete previous stack", name=state.stack_name)
        return e
    return None
