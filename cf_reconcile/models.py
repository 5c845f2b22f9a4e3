from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

StackOutputs = Dict[str, str]


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        # CommaDelimitedList and List<...> parameters
        return ",".join(_stringify(item) for item in value)
    return str(value)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeploymentInputs(_CamelModel):
    stack_name: Optional[str] = Field(None, description="Name of the CloudFormation stack")
    template: Optional[Union[str, Dict[str, Any]]] = Field(None, description="Template document or path to a JSON/YAML template")
    parameters: Optional[Dict[str, Any]] = Field(None, description="Parameters to be passed to the CloudFormation stack")
    role: Optional[str] = Field(None, description="ARN of the role CloudFormation assumes for stack operations")
    rollback_configuration: Optional[Dict[str, Any]] = Field(None, description="Rollback triggers and monitoring time")
    disable_rollback: Optional[bool] = Field(None, description="Disable rollback when stack creation fails")
    capabilities: Optional[List[str]] = Field(None, description="List of capabilities needed for the CloudFormation stack")
    enable_termination_protection: Optional[bool] = Field(None, description="Whether the stack is protected from deletion")
    bucket: Optional[str] = Field(None, description="S3 bucket the template is uploaded to before deploying")
    region: Optional[str] = Field(None, description="AWS region where the stack will be deployed")

    def provided(self) -> Dict[str, Any]:
        """Fields the caller actually set, keyed by Python name."""
        return self.model_dump(exclude_none=True)


class DeploymentConfig(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    stack_name: str = Field(..., min_length=1, description="Name of the CloudFormation stack")
    template: Dict[str, Any] = Field(..., description="Template document")
    parameters: Dict[str, str] = Field(default_factory=dict)
    role: Optional[str] = None
    rollback_configuration: Dict[str, Any] = Field(default_factory=dict)
    disable_rollback: bool = False
    capabilities: List[str] = Field(default_factory=list)
    enable_termination_protection: bool = False
    bucket: Optional[str] = None
    region: str = "us-east-1"
    timestamp: int = Field(..., description="Epoch milliseconds at which this config was resolved")
    template_s3_key: Optional[str] = Field(None, description="Key of the published template, once uploaded")

    @field_validator("parameters", mode="before")
    @classmethod
    def stringify_parameters(cls, value):
        if value is None:
            return {}
        return {str(k): _stringify(v) for k, v in value.items()}


class PersistedState(_CamelModel):
    bucket: Optional[str] = None
    region: Optional[str] = None
    stack_name: Optional[str] = None

    def is_empty(self) -> bool:
        return self.stack_name is None and self.bucket is None and self.region is None


class PreviousStackSnapshot(BaseModel):
    stack: Dict[str, Any] = Field(default_factory=dict, description="Remote stack description, empty when absent")
    needs_update: bool = True

    @property
    def exists(self) -> bool:
        return bool(self.stack)

    @property
    def termination_protection(self) -> bool:
        return bool(self.stack.get("EnableTerminationProtection", False))
