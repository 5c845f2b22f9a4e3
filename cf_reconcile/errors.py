import dataclasses
from typing import Any, Dict, Optional


class ValidationError(Exception):
    """Raised when the deployment inputs cannot produce a usable config."""


class UnsupportedTemplateSourceError(ValidationError):
    """Raised when a template path is neither JSON nor YAML."""


class StackNotFoundError(Exception):
    """Raised when a stack disappears where it is required to exist."""

    def __init__(self, stack_name: str):
        super().__init__(f"Stack with id {stack_name} does not exist")
        self.stack_name = stack_name


@dataclasses.dataclass
class ConvergenceFailedError(Exception):
    status: str
    stack_name: Optional[str] = None

    def __str__(self):
        return f"CloudFormation failed with status {self.status}"


@dataclasses.dataclass
class PollCancelledError(Exception):
    stack_name: str
    last_status: Optional[str] = None

    def __str__(self):
        return f"Stopped waiting for {self.stack_name} (last status: {self.last_status})"


# Outcomes of Cloud API calls that have an expected, non-fatal failure mode.

@dataclasses.dataclass(frozen=True)
class Found:
    value: Dict[str, Any]


@dataclasses.dataclass(frozen=True)
class NotFound:
    stack_name: str


@dataclasses.dataclass(frozen=True)
class Updated:
    stack_id: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class NoOpUpdate:
    stack_name: str
