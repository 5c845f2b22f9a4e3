"""Resolution of caller inputs into a single deployment config.

Precedence, highest first:

=============  ===================  =======================  =========
field          1st                  2nd                      3rd
=============  ===================  =======================  =========
bucket         caller input         persisted state bucket   unset
timestamp      resolution time      -                        -
template       caller input         -                        (error)
stack_name     caller input         -                        (error)
anything else  caller input         DEFAULTS                 -
=============  ===================  =======================  =========

Mappings are merged key by key; lists and scalars from the caller replace
the default outright. A template given as a string is treated as a path and
loaded.
"""
import copy
import time
from typing import Any, Callable, Dict, Optional, Union

import pydantic
import structlog
from deepmerge import Merger

from cf_reconcile.errors import ValidationError
from cf_reconcile.models import DeploymentConfig, DeploymentInputs, PersistedState
from cf_reconcile.template import load_template

log = structlog.get_logger("cf-reconcile")

DEFAULTS: Dict[str, Any] = {
    "enable_termination_protection": False,
    "parameters": {},
    "region": "us-east-1",
    "role": None,
    "rollback_configuration": {},
    "disable_rollback": False,
    "capabilities": [],
}

config_merger = Merger(
    [(dict, ["merge"]), (list, ["override"]), (set, ["override"])],
    ["override"],
    ["override"],
)


def epoch_millis() -> int:
    return int(time.time() * 1000)


def resolve_config(
    inputs: Union[DeploymentInputs, Dict[str, Any], None],
    state: Optional[PersistedState] = None,
    loader: Callable[..., Dict[str, Any]] = load_template,
    now: Callable[[], int] = epoch_millis,
) -> DeploymentConfig:
    if not isinstance(inputs, DeploymentInputs):
        try:
            inputs = DeploymentInputs.model_validate(inputs or {})
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid inputs; {e}") from e
    state = state or PersistedState()

    merged = config_merger.merge(copy.deepcopy(DEFAULTS), inputs.provided())
    merged["bucket"] = merged.get("bucket") or state.bucket
    merged["timestamp"] = now()

    if isinstance(merged.get("template"), str):
        log.debug("Load template file", path=merged["template"])
        merged["template"] = loader(merged["template"], merged["region"])

    if not merged.get("template") or not merged.get("stack_name"):
        raise ValidationError("Invalid inputs; template and stackName are required.")

    try:
        return DeploymentConfig(**merged)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid inputs; {e}") from e
