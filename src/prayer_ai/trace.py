# trace.py
# Per-request trace identity.
#
# Client headers may supply trace/session/entry-point/version/platform.
# The request id and receipt timestamp are always generated here, never
# taken from the client.

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

TRACE_ID_HEADER = "x-trace-id"
SESSION_ID_HEADER = "x-session-id"
ENTRY_POINT_HEADER = "x-entry-point"
APP_VERSION_HEADER = "x-app-version"
PLATFORM_HEADER = "x-platform"

UNKNOWN = "unknown"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TraceContext(BaseModel):
    """Identifiers that tie every log record of one AI request together."""

    model_config = ConfigDict(frozen=True)

    trace_id: str = Field(..., description="Client-supplied or generated trace id.")
    session_id: str
    user_id: str
    entry_point: str = Field(..., description="Where the AI interaction was initiated.")
    request_id: str = Field(..., description="Server-generated id for this request.")
    app_version: str
    platform: str = Field(..., description="ios, android, web, or server.")
    timestamp: datetime


def _header_lookup(request: Any) -> dict[str, str]:
    headers = getattr(request, "headers", request)
    if headers is None:
        return {}
    if not isinstance(headers, Mapping) and hasattr(headers, "items"):
        headers = dict(headers.items())
    return {str(k).lower(): v for k, v in headers.items() if isinstance(v, str)}


def extract_trace_context(request: Any, user_id: str) -> TraceContext:
    """
    Build a TraceContext from an inbound request.

    `request` may be any object exposing a `headers` mapping (httpx,
    starlette, werkzeug) or the header mapping itself. Lookups are
    case-insensitive; empty values count as absent.
    """
    headers = _header_lookup(request)

    return TraceContext(
        trace_id=headers.get(TRACE_ID_HEADER) or _new_id(),
        session_id=headers.get(SESSION_ID_HEADER) or UNKNOWN,
        user_id=user_id,
        entry_point=headers.get(ENTRY_POINT_HEADER) or UNKNOWN,
        request_id=_new_id(),
        app_version=headers.get(APP_VERSION_HEADER) or UNKNOWN,
        platform=headers.get(PLATFORM_HEADER) or UNKNOWN,
        timestamp=_utc_now(),
    )


def create_fallback_trace_context(user_id: str) -> TraceContext:
    """Trace context for internal or background work with no inbound request."""
    return TraceContext(
        trace_id=_new_id(),
        session_id="server-generated",
        user_id=user_id,
        entry_point="internal",
        request_id=_new_id(),
        app_version="server",
        platform="server",
        timestamp=_utc_now(),
    )


def iso_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a `Z` suffix."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return iso_timestamp(_utc_now())


def serialize_trace_context(ctx: TraceContext) -> dict[str, str]:
    return {
        "trace_id": ctx.trace_id,
        "session_id": ctx.session_id,
        "user_id": ctx.user_id,
        "entry_point": ctx.entry_point,
        "request_id": ctx.request_id,
        "app_version": ctx.app_version,
        "platform": ctx.platform,
        "timestamp": iso_timestamp(ctx.timestamp),
    }
