# tools.py
# Tool bridge — catalog ⇄ model function-calling wire format.
#
# Outbound: project the action catalog into the `suggest_actions` tool schema.
# Inbound: pull raw, untrusted action candidates back out of the model's
# tool calls. Extraction is best-effort; all correctness checks happen in
# processor.py.

import json
import logging
from typing import Any, Iterable, Mapping

from prayer_ai.catalog import ACTION_CATALOG, ActionDefinition
from prayer_ai.models import RawAction
from prayer_ai.processor import MAX_ACTIONS

logger = logging.getLogger(__name__)

SUGGEST_ACTIONS_TOOL = "suggest_actions"

SUGGEST_ACTIONS_DESCRIPTION = (
    "REQUIRED: You MUST call this function whenever your response mentions ANY Bible verse "
    "reference (like 'Genesis 1', 'John 3:16', 'Psalm 23:1-3'). "
    "Also call it when you write a prayer for the user. "
    "This creates tappable shortcuts - without calling this function, users cannot interact "
    "with verses or save prayers."
)


# ---------------------------------------------------------------------------
# Outbound: tool schema
# ---------------------------------------------------------------------------


def _strip_titles(node: Any) -> Any:
    """Drop pydantic's auto-generated `title` keys; models don't need them."""
    if isinstance(node, dict):
        return {k: _strip_titles(v) for k, v in node.items() if k != "title"}
    if isinstance(node, list):
        return [_strip_titles(v) for v in node]
    return node


def _collapse_optional(prop: dict[str, Any]) -> dict[str, Any]:
    """`str | None` renders as anyOf[string, null]; models only need the string."""
    variants = prop.get("anyOf")
    if not isinstance(variants, list):
        return prop
    concrete = [v for v in variants if v.get("type") != "null"]
    if len(concrete) != 1:
        return prop
    collapsed = {k: v for k, v in prop.items() if k != "anyOf"}
    collapsed.update(concrete[0])
    if collapsed.get("default", ...) is None:
        del collapsed["default"]
    return collapsed


def _param_properties(definitions: Iterable[ActionDefinition]) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    for definition in definitions:
        schema = definition.schema.model_json_schema()
        for name, prop in schema.get("properties", {}).items():
            # First definition to declare a field wins the description.
            properties.setdefault(name, _collapse_optional(_strip_titles(prop)))
    return properties


def build_action_tools(catalog: Mapping[str, ActionDefinition] | None = None) -> list[dict]:
    """
    Build the function-calling tool list for the given catalog.

    The `type` enum and the merged `params` properties are generated from the
    registered schemas, so the wire format always matches what the processor
    will accept.
    """
    catalog = ACTION_CATALOG if catalog is None else catalog

    item_schema = {
        "type": "object",
        "properties": {
            "type": {
                "type": "string",
                "enum": list(catalog),
                "description": "The type of action to suggest",
            },
            "params": {
                "type": "object",
                "description": "Parameters for the action",
                "properties": _param_properties(catalog.values()),
            },
            "confidence": {
                "type": "number",
                "minimum": 0,
                "maximum": 1,
                "description": "How confident you are this action is helpful (0-1)",
            },
        },
        "required": ["type", "params"],
    }

    return [
        {
            "type": "function",
            "function": {
                "name": SUGGEST_ACTIONS_TOOL,
                "description": SUGGEST_ACTIONS_DESCRIPTION,
                "parameters": {
                    "type": "object",
                    "properties": {
                        "actions": {
                            "type": "array",
                            "description": f"List of suggested actions (max {MAX_ACTIONS})",
                            "items": item_schema,
                            "maxItems": MAX_ACTIONS,
                        },
                    },
                    "required": ["actions"],
                },
            },
        }
    ]


def tool_names(tools: list[dict]) -> list[str]:
    return [tool["function"]["name"] for tool in tools if "function" in tool]


# ---------------------------------------------------------------------------
# Inbound: extraction
# ---------------------------------------------------------------------------


def _call_parts(tool_call: Any) -> tuple[str | None, str | None]:
    """(name, arguments) from an SDK tool-call object or a plain dict."""
    if isinstance(tool_call, Mapping):
        function = tool_call.get("function") or {}
        if not isinstance(function, Mapping):
            return None, None
        return function.get("name"), function.get("arguments")
    function = getattr(tool_call, "function", None)
    return getattr(function, "name", None), getattr(function, "arguments", None)


def _confidence(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not 0 <= value <= 1:
        return None
    return float(value)


def _coerce_item(item: Any) -> RawAction | None:
    if not isinstance(item, Mapping):
        return None
    params = item.get("params")
    return RawAction(
        type=str(item.get("type", "")),
        params=dict(params) if isinstance(params, Mapping) else {},
        confidence=_confidence(item.get("confidence")),
    )


def _present(**fields: Any) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


def _actions_from_arguments(parsed: Any) -> list[RawAction]:
    if not isinstance(parsed, Mapping):
        return []

    actions = parsed.get("actions")
    if isinstance(actions, list):
        return [raw for raw in map(_coerce_item, actions) if raw is not None]

    # Some responses skip the {"actions": [...]} wrapper and put a single
    # action's params at the top level. Infer the type from its key field.
    # TODO: confirm with prompt regression runs whether this still occurs
    # once the tool description carries a worked example.
    reference = parsed.get("reference")
    if isinstance(reference, str) and reference:
        return [
            RawAction(
                type="NAVIGATE_TO_VERSE",
                params=_present(reference=reference, reason=parsed.get("reason")),
            )
        ]

    body = parsed.get("body")
    if isinstance(body, str) and body:
        return [
            RawAction(
                type="CREATE_PRAYER_DRAFT",
                params=_present(
                    title=parsed.get("title"),
                    body=body,
                    visibility=parsed.get("visibility"),
                ),
            )
        ]

    return []


def extract_actions_from_tool_calls(tool_calls: Iterable[Any] | None) -> list[RawAction]:
    """
    Collect raw actions from every `suggest_actions` call, in call order.

    Never raises on bad model output: a call whose arguments are not valid
    JSON is logged and skipped, the remaining calls are still read.
    """
    if not tool_calls:
        return []

    collected: list[RawAction] = []
    for tool_call in tool_calls:
        name, arguments = _call_parts(tool_call)
        if name != SUGGEST_ACTIONS_TOOL:
            continue
        try:
            parsed = json.loads(arguments or "", strict=False)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.error("Failed to parse %s arguments: %s", SUGGEST_ACTIONS_TOOL, exc)
            continue
        collected.extend(_actions_from_arguments(parsed))

    return collected


# ---------------------------------------------------------------------------
# System prompt addendum
# ---------------------------------------------------------------------------

ACTION_SYSTEM_PROMPT_ADDITION = """\
ACTIONS & FORMATTING:
You have a suggest_actions tool for Bible verses and prayers. Actions you suggest \
will be displayed as tappable cards BELOW your text response.

IMPORTANT: Tool calls are made through the API, NOT by writing function syntax in your text.
- CORRECT: Use the tool calling mechanism
- WRONG: Writing "suggest_actions({...})" as text in your response

CRITICAL RULES:
1. If you mention or reference ANY Bible verse, you MUST call suggest_actions with NAVIGATE_TO_VERSE
2. If you say "here are some passages" or similar, you MUST call suggest_actions
3. If you offer a prayer, you MUST call suggest_actions with CREATE_PRAYER_DRAFT
4. NEVER promise content that you don't provide via tool calls

AVOID DUPLICATION:
- When you call suggest_actions, do NOT repeat that content in your text response
- For verses: your text introduces them, the action provides the reference and reason
- For prayers: your text introduces it, the action contains the actual prayer

WHEN TO CALL suggest_actions:
1. NAVIGATE_TO_VERSE: For Bible verses. Include a "reason" explaining relevance.
2. CREATE_PRAYER_DRAFT: For prayers. ALWAYS include both "title" and "body" fields.

GOOD EXAMPLE (prayer):
Actions: [{ "type": "CREATE_PRAYER_DRAFT", "params": { "title": "Prayer for Peace", \
"body": "Heavenly Father, in moments of anxiety I turn to You..." }}]

BAD EXAMPLE (missing title):
Actions: [{ "type": "CREATE_PRAYER_DRAFT", "params": { "body": "Lord, help me..." }}]\
"""
