# models.py
# Data contracts for the action pipeline.
# No business logic lives here — pure schema and validation.

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from prayer_ai.catalog import Priority, get_action_definition, is_valid_action_type


class RawAction(BaseModel):
    """An untrusted action candidate as reported by the model."""

    type: str = Field(..., description="Action type name, not yet checked against the catalog.")
    params: dict[str, Any] = Field(default_factory=dict)
    confidence: float | None = Field(default=None, description="Model confidence in [0, 1].")


class ValidatedAction(BaseModel):
    """
    An action that passed catalog lookup, schema validation and authorization.

    Construction re-checks the type against the catalog. Params are re-checked
    only when `version` matches the current catalog entry, so records made
    under an older version of a schema stay loadable after it changes.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    version: int
    params: dict[str, Any]
    resolved: dict[str, Any] | None = None
    confidence: float | None = None
    priority: Priority
    icon: str
    color: str

    @field_validator("type")
    @classmethod
    def _registered_type(cls, value: str) -> str:
        if not is_valid_action_type(value):
            raise ValueError(f"Unknown action type: {value}")
        return value

    @model_validator(mode="after")
    def _params_match_schema(self) -> "ValidatedAction":
        definition = get_action_definition(self.type)
        if self.version == definition.version:
            definition.schema.model_validate(self.params)
        return self


class DroppedAction(BaseModel):
    """A candidate that was rejected, with the reason. Diagnostic only."""

    type: str
    reason: str
    params: dict[str, Any] | None = None


class ActionContext(BaseModel):
    """Per-request facts available to authorization."""

    user_id: str


class AuthResult(BaseModel):
    authorized: bool
    reason: str | None = None


class ActionProcessorResult(BaseModel):
    actions: list[ValidatedAction] = Field(default_factory=list)
    dropped: list[DroppedAction] = Field(default_factory=list)
