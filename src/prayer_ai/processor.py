# processor.py
# Action processor — untrusted candidates in, bounded validated list out.
#
# Per candidate:
#   catalog lookup → schema validation → resolve (non-fatal)
#   → authorize → stable id → ValidatedAction
# Then across the batch: stable priority sort → cap at MAX_ACTIONS.
#
# Nothing raised by a single candidate escapes process_actions(); every
# failure becomes a DroppedAction with a reason.

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable

from pydantic import ValidationError

from prayer_ai.catalog import default_id_key, get_action_definition, is_valid_action_type
from prayer_ai.models import (
    ActionContext,
    ActionProcessorResult,
    AuthResult,
    DroppedAction,
    RawAction,
    ValidatedAction,
)

logger = logging.getLogger(__name__)

MAX_ACTIONS = 3

PRIORITY_ORDER: dict[str, int] = {"primary": 0, "secondary": 1, "inline": 2}

Authorizer = Callable[[str, dict[str, Any], ActionContext], AuthResult | Awaitable[AuthResult]]

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def hash_code(value: str) -> str:
    """
    32-bit rolling hash (h * 31 + unit) over UTF-16 code units, rendered as
    the base-36 absolute value. Deterministic across processes.
    """
    data = value.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return _to_base36(abs(h))


def generate_action_id(action_type: str, params: dict[str, Any]) -> str:
    """Stable id from the type and its discriminating field; pure in (type, params)."""
    if is_valid_action_type(action_type):
        key = get_action_definition(action_type).action_id_key(params)
    else:
        key = default_id_key(params)
    return f"{action_type}-{hash_code(str(key))}"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


async def authorize_action(
    action_type: str, params: dict[str, Any], context: ActionContext
) -> AuthResult:
    """Default policy: every registered action is allowed for every user."""
    return AuthResult(authorized=True)


async def _run_authorizer(
    authorizer: Authorizer, action_type: str, params: dict[str, Any], context: ActionContext
) -> AuthResult:
    result = authorizer(action_type, params, context)
    if inspect.isawaitable(result):
        result = await result
    return result


# ---------------------------------------------------------------------------
# Single candidate
# ---------------------------------------------------------------------------


async def _resolve(
    action_type: str, params: dict[str, Any], timeout: float | None
) -> dict[str, Any] | None:
    definition = get_action_definition(action_type)
    if definition.resolve is None:
        return None
    try:
        return await asyncio.wait_for(definition.resolve(dict(params)), timeout=timeout)
    except Exception as exc:
        # Unresolved actions are still usable by the client.
        logger.warning("Resolution failed for %s: %r", action_type, exc)
        return None


async def _process_one(
    raw: RawAction,
    context: ActionContext,
    authorizer: Authorizer,
    resolve_timeout: float | None,
) -> ValidatedAction | DroppedAction:
    if not is_valid_action_type(raw.type):
        return DroppedAction(
            type=raw.type, reason=f"Unknown action type: {raw.type}", params=raw.params
        )

    definition = get_action_definition(raw.type)

    try:
        validated = definition.schema.model_validate(raw.params)
    except ValidationError as exc:
        return DroppedAction(type=raw.type, reason=f"Invalid params: {exc}", params=raw.params)

    params = validated.model_dump(exclude_none=True)
    resolved = await _resolve(raw.type, params, resolve_timeout)

    auth = await _run_authorizer(authorizer, raw.type, params, context)
    if not auth.authorized:
        return DroppedAction(
            type=raw.type, reason=auth.reason or "Unauthorized", params=raw.params
        )

    return ValidatedAction(
        id=generate_action_id(raw.type, params),
        type=raw.type,
        version=definition.version,
        params=params,
        resolved=resolved,
        confidence=raw.confidence,
        priority=definition.priority,
        icon=definition.icon,
        color=definition.color,
    )


def _processing_error(item: Any, exc: Exception) -> DroppedAction:
    if isinstance(item, RawAction):
        return DroppedAction(type=item.type, reason=f"Processing error: {exc}", params=item.params)
    fields = item if isinstance(item, dict) else {}
    params = fields.get("params")
    return DroppedAction(
        type=str(fields.get("type", "")),
        reason=f"Processing error: {exc}",
        params=params if isinstance(params, dict) else None,
    )


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


async def process_actions(
    raw_actions: Iterable[RawAction | dict[str, Any]],
    context: ActionContext,
    *,
    authorizer: Authorizer = authorize_action,
    max_actions: int = MAX_ACTIONS,
    resolve_timeout: float | None = None,
) -> ActionProcessorResult:
    """
    Validate, resolve, authorize, order and cap a batch of raw actions.

    Candidates are handled one at a time in input order so equal-priority
    ties keep that order. Returns at most `max_actions` validated actions;
    anything else is reported in `dropped`.
    """
    validated: list[ValidatedAction] = []
    dropped: list[DroppedAction] = []

    for item in raw_actions:
        try:
            raw = item if isinstance(item, RawAction) else RawAction.model_validate(item)
            outcome = await _process_one(raw, context, authorizer, resolve_timeout)
        except Exception as exc:
            outcome = _processing_error(item, exc)
        if isinstance(outcome, ValidatedAction):
            validated.append(outcome)
        else:
            dropped.append(outcome)

    validated.sort(key=lambda action: PRIORITY_ORDER[action.priority])

    for action in validated[max_actions:]:
        dropped.append(
            DroppedAction(
                type=action.type,
                reason=f"Exceeded max action limit ({max_actions})",
                params=action.params,
            )
        )

    return ActionProcessorResult(actions=validated[:max_actions], dropped=dropped)
