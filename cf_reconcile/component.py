from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple, Union

import structlog

from cf_reconcile.cloud import BlobStore, CloudFormationApi, get_clients
from cf_reconcile.config import DEFAULTS, resolve_config
from cf_reconcile.inspector import get_previous_stack
from cf_reconcile.models import DeploymentInputs, PersistedState, StackOutputs
from cf_reconcile.poller import POLL_INTERVAL, Cancellation
from cf_reconcile.publisher import upload_template
from cf_reconcile.reconciler import create_or_update_stack, fetch_outputs, update_termination_protection
from cf_reconcile.removal import delete_stack, needs_replacement, replace_previous_stack
from cf_reconcile.state import FileStateStore
from cf_reconcile.template import load_template

log = structlog.get_logger("cf-reconcile")

Inputs = Union[DeploymentInputs, Dict[str, Any], None]


class StackComponent:
    """A single CloudFormation stack managed across invocations.

    ``deploy`` converges the stack to the given inputs and ``destroy`` removes
    it again; between runs only the :class:`PersistedState` is kept.
    """

    def __init__(
        self,
        component_id: str,
        state_store: Optional[FileStateStore] = None,
        profile: Optional[str] = None,
        clients: Optional[Callable[[str], Tuple[CloudFormationApi, BlobStore]]] = None,
        loader: Callable[..., Dict[str, Any]] = load_template,
        interval: float = POLL_INTERVAL,
        track_events: bool = True,
    ):
        self.component_id = component_id
        self.state_store = state_store or FileStateStore()
        self.clients = clients or partial(get_clients, profile=profile)
        self.loader = loader
        self.interval = interval
        self.track_events = track_events
        self.state = self.state_store.load(component_id)

    def _save(self, state: PersistedState):
        self.state = state
        self.state_store.save(self.component_id, state)

    def plan(self, inputs: Inputs = None) -> str:
        """Report what ``deploy`` would do: "create", "update" or "none"."""
        config = resolve_config(inputs, self.state, loader=self.loader)
        api, _ = self.clients(config.region)
        previous = get_previous_stack(api, config)
        if not previous.needs_update:
            action = "none"
        else:
            action = "update" if previous.exists else "create"
        log.info("Planned", name=config.stack_name, action=action)
        return action

    def deploy(self, inputs: Inputs = None, cancellation: Optional[Cancellation] = None) -> StackOutputs:
        log.info("Deploying", component=self.component_id)
        config = resolve_config(inputs, self.state, loader=self.loader)
        cancellation = cancellation or Cancellation()

        with structlog.contextvars.bound_contextvars(stack=config.stack_name):
            api, blob_store = self.clients(config.region)

            previous = get_previous_stack(api, config)
            if previous.needs_update:
                if config.bucket is not None:
                    cancellation.raise_if_cancelled(config.stack_name)
                    config = upload_template(blob_store, config)

                cancellation.raise_if_cancelled(config.stack_name)
                log.debug("Deploying stack", name=config.stack_name)
                outputs = create_or_update_stack(
                    api,
                    config,
                    previous.exists,
                    cancellation=cancellation,
                    interval=self.interval,
                    track_events=self.track_events,
                )
            else:
                log.info("Stack is up to date, fetching outputs", name=config.stack_name)
                outputs = fetch_outputs(api, config)

            if config.enable_termination_protection != previous.termination_protection:
                cancellation.raise_if_cancelled(config.stack_name)
            update_termination_protection(api, config, previous.termination_protection)

            if needs_replacement(self.state, config):
                # State keeps naming the old stack, so the next deploy retries the replacement
                cancellation.raise_if_cancelled(config.stack_name)
            if self.state.region in (None, config.region):
                previous_api = api
            else:
                previous_api, _ = self.clients(self.state.region)
            replace_previous_stack(
                previous_api, self.state, config, cancellation=cancellation, interval=self.interval
            )

            self._save(PersistedState(bucket=config.bucket, region=config.region, stack_name=config.stack_name))
        return outputs

    def destroy(self, cancellation: Optional[Cancellation] = None) -> Dict[str, Any]:
        log.info("Removing", component=self.component_id)
        if not self.state.stack_name:
            log.info("Aborting removal. Stack name not found in state.", component=self.component_id)
            return {}

        if cancellation is not None:
            cancellation.raise_if_cancelled(self.state.stack_name)
        api, _ = self.clients(self.state.region or DEFAULTS["region"])
        delete_stack(api, self.state.stack_name, cancellation=cancellation, interval=self.interval)
        self._save(PersistedState())
        return {}
