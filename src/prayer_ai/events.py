# events.py
# Structured timeline events for AI requests.
#
# Each variant marks one stage of a request (received → context → prompt →
# model → actions → delivered, or error). They are emitted on the request
# path, so they are plain slotted dataclasses with no validation.

from dataclasses import asdict, dataclass, field
from typing import Any

from prayer_ai.trace import utc_now_iso


@dataclass(slots=True, kw_only=True)
class AIEventBase:
    trace_id: str
    request_id: str
    timestamp: str = field(default_factory=utc_now_iso)
    duration_ms: int | None = None


@dataclass(slots=True, kw_only=True)
class AIRequestReceived(AIEventBase):
    type: str = field(default="ai.request.received", init=False)
    entry_point: str
    user_id: str
    platform: str


@dataclass(slots=True, kw_only=True)
class AIContextBuilt(AIEventBase):
    type: str = field(default="ai.context.built", init=False)
    memories_queried: int
    memories_included: int
    intent: str
    usage_mode: str


@dataclass(slots=True, kw_only=True)
class AIPromptAssembled(AIEventBase):
    type: str = field(default="ai.prompt.assembled", init=False)
    token_count: int
    messages_count: int
    tools_enabled: list[str]


@dataclass(slots=True, kw_only=True)
class InputTokenDetails:
    cached_tokens: int = 0
    audio_tokens: int = 0


@dataclass(slots=True, kw_only=True)
class OutputTokenDetails:
    reasoning_tokens: int = 0
    audio_tokens: int = 0
    accepted_prediction_tokens: int = 0
    rejected_prediction_tokens: int = 0


@dataclass(slots=True, kw_only=True)
class AIModelCalled(AIEventBase):
    type: str = field(default="ai.model.called", init=False)
    model: str
    latency_ms: int
    input_tokens: int
    output_tokens: int
    finish_reason: str
    tool_call_count: int
    input_token_details: InputTokenDetails | None = None
    output_token_details: OutputTokenDetails | None = None


@dataclass(slots=True, kw_only=True)
class AIActionsExtracted(AIEventBase):
    type: str = field(default="ai.actions.extracted", init=False)
    total_extracted: int
    validated: int
    dropped: int
    action_types: list[str]


@dataclass(slots=True, kw_only=True)
class AIResponseDelivered(AIEventBase):
    type: str = field(default="ai.response.delivered", init=False)
    content_length: int
    action_count: int
    response_type: str
    total_latency_ms: int


@dataclass(slots=True, kw_only=True)
class AIError(AIEventBase):
    type: str = field(default="ai.error", init=False)
    error_type: str
    error_message: str
    stage: str
    recoverable: bool = False


AIEvent = (
    AIRequestReceived
    | AIContextBuilt
    | AIPromptAssembled
    | AIModelCalled
    | AIActionsExtracted
    | AIResponseDelivered
    | AIError
)


def event_to_record(event: AIEvent) -> dict[str, Any]:
    """Flat dict for shipping; `_time` carries the event timestamp."""
    return {"_time": event.timestamp, **asdict(event)}


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def create_request_received_event(
    trace_id: str, request_id: str, entry_point: str, user_id: str, platform: str
) -> AIRequestReceived:
    return AIRequestReceived(
        trace_id=trace_id,
        request_id=request_id,
        entry_point=entry_point,
        user_id=user_id,
        platform=platform,
    )


def create_context_built_event(
    trace_id: str,
    request_id: str,
    memories_queried: int,
    memories_included: int,
    intent: str,
    usage_mode: str,
    duration_ms: int,
) -> AIContextBuilt:
    return AIContextBuilt(
        trace_id=trace_id,
        request_id=request_id,
        duration_ms=duration_ms,
        memories_queried=memories_queried,
        memories_included=memories_included,
        intent=intent,
        usage_mode=usage_mode,
    )


def create_prompt_assembled_event(
    trace_id: str,
    request_id: str,
    token_count: int,
    messages_count: int,
    tools_enabled: list[str],
    duration_ms: int,
) -> AIPromptAssembled:
    return AIPromptAssembled(
        trace_id=trace_id,
        request_id=request_id,
        duration_ms=duration_ms,
        token_count=token_count,
        messages_count=messages_count,
        tools_enabled=list(tools_enabled),
    )


def create_model_called_event(
    trace_id: str,
    request_id: str,
    model: str,
    latency_ms: int,
    input_tokens: int,
    output_tokens: int,
    finish_reason: str,
    tool_call_count: int,
    input_token_details: InputTokenDetails | None = None,
    output_token_details: OutputTokenDetails | None = None,
) -> AIModelCalled:
    """The model-call latency doubles as the event duration."""
    return AIModelCalled(
        trace_id=trace_id,
        request_id=request_id,
        duration_ms=latency_ms,
        model=model,
        latency_ms=latency_ms,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        finish_reason=finish_reason,
        tool_call_count=tool_call_count,
        input_token_details=input_token_details,
        output_token_details=output_token_details,
    )


def create_actions_extracted_event(
    trace_id: str,
    request_id: str,
    total_extracted: int,
    validated: int,
    dropped: int,
    action_types: list[str],
    duration_ms: int,
) -> AIActionsExtracted:
    return AIActionsExtracted(
        trace_id=trace_id,
        request_id=request_id,
        duration_ms=duration_ms,
        total_extracted=total_extracted,
        validated=validated,
        dropped=dropped,
        action_types=list(action_types),
    )


def create_response_delivered_event(
    trace_id: str,
    request_id: str,
    content_length: int,
    action_count: int,
    response_type: str,
    total_latency_ms: int,
) -> AIResponseDelivered:
    return AIResponseDelivered(
        trace_id=trace_id,
        request_id=request_id,
        content_length=content_length,
        action_count=action_count,
        response_type=response_type,
        total_latency_ms=total_latency_ms,
    )


def create_error_event(
    trace_id: str,
    request_id: str,
    error_type: str,
    error_message: str,
    stage: str,
    recoverable: bool = False,
) -> AIError:
    return AIError(
        trace_id=trace_id,
        request_id=request_id,
        error_type=error_type,
        error_message=error_message,
        stage=stage,
        recoverable=recoverable,
    )
