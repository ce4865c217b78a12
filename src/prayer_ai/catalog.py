# catalog.py
# Action catalog — every action type the model is allowed to suggest.
#
# Each entry owns its parameter schema, an optional async resolver and the
# rendering hints the client uses. The processor and the tool bridge read
# this registry; neither needs editing when a new type is registered.

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field

from prayer_ai.references import parse_reference

Priority = Literal["primary", "secondary", "inline"]

Resolver = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]
IdKey = Callable[[dict[str, Any]], str]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class UnknownActionTypeError(KeyError):
    """Raised when a lookup names a type that is not registered."""


# ---------------------------------------------------------------------------
# Parameter schemas
# ---------------------------------------------------------------------------


class ActionParams(BaseModel):
    """Base for action parameter schemas. Unknown fields are dropped."""

    model_config = ConfigDict(extra="ignore")


class NavigateToVerseParams(ActionParams):
    reference: str = Field(
        ...,
        min_length=1,
        description="Bible verse reference (e.g., 'John 3:16', 'Philippians 4:6-7')",
    )
    reason: str | None = Field(
        default=None,
        description="Brief explanation of why this verse is relevant (1 sentence)",
    )
    translation: str | None = Field(
        default=None,
        description="Preferred translation code (e.g., 'BSB', 'KJV')",
    )


class CreatePrayerDraftParams(ActionParams):
    title: str = Field(
        ...,
        min_length=1,
        description="A short, meaningful title for the prayer (e.g., 'Prayer for Peace')",
    )
    body: str = Field(..., min_length=1, description="The full prayer text")
    visibility: Literal["private", "community"] = Field(
        default="private",
        description="Prayer visibility (default: private)",
    )


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionDefinition:
    """Immutable catalog entry for one action type."""

    type: str
    version: int
    description: str
    schema: type[BaseModel]
    icon: str
    color: str
    priority: Priority
    resolve: Resolver | None = None
    id_key: IdKey | None = None

    def action_id_key(self, params: dict[str, Any]) -> str:
        """The string an action id is hashed from."""
        if self.id_key is not None:
            return self.id_key(params)
        return default_id_key(params)


def default_id_key(params: dict[str, Any]) -> str:
    # No whitespace in the serialized form; ids must stay stable across releases.
    return json.dumps(params, separators=(",", ":"), ensure_ascii=False)[:50]


async def _resolve_verse(params: dict[str, Any]) -> dict[str, Any]:
    parsed = parse_reference(params["reference"])
    return {**params, "resolved": parsed.model_dump() if parsed else None}


async def _resolve_prayer_draft(params: dict[str, Any]) -> dict[str, Any]:
    return dict(params)


ACTION_CATALOG: dict[str, ActionDefinition] = {}


def register_action(definition: ActionDefinition) -> ActionDefinition:
    """
    Add an action type to the catalog.

    Raises ValueError if the type name is already registered; entries are
    never replaced once defined.
    """
    if definition.type in ACTION_CATALOG:
        raise ValueError(f"Action type {definition.type!r} is already registered.")
    ACTION_CATALOG[definition.type] = definition
    return definition


register_action(
    ActionDefinition(
        type="NAVIGATE_TO_VERSE",
        version=1,
        description="Open a verse in the Bible reader",
        schema=NavigateToVerseParams,
        resolve=_resolve_verse,
        id_key=lambda params: str(params.get("reference")),
        icon="book.fill",
        color="orange",
        priority="secondary",
    )
)

register_action(
    ActionDefinition(
        type="CREATE_PRAYER_DRAFT",
        version=1,
        description="Open prayer composer with pre-filled content",
        schema=CreatePrayerDraftParams,
        resolve=_resolve_prayer_draft,
        id_key=lambda params: str(params.get("body", ""))[:50],
        icon="hands.sparkles.fill",
        color="purple",
        priority="primary",
    )
)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def action_types() -> list[str]:
    """Registered type names in registration order."""
    return list(ACTION_CATALOG)


def is_valid_action_type(name: Any) -> bool:
    return isinstance(name, str) and name in ACTION_CATALOG


def get_action_definition(action_type: str) -> ActionDefinition:
    try:
        return ACTION_CATALOG[action_type]
    except KeyError:
        raise UnknownActionTypeError(action_type) from None


def get_action_schema(action_type: str) -> type[BaseModel]:
    return get_action_definition(action_type).schema
