import pytest
from prayer_ai.events import (
    AIError,
    InputTokenDetails,
    create_actions_extracted_event,
    create_context_built_event,
    create_error_event,
    create_model_called_event,
    create_prompt_assembled_event,
    create_request_received_event,
    create_response_delivered_event,
    event_to_record,
)

# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def test_every_factory_sets_its_type():
    events = [
        create_request_received_event("t", "r", "chat", "u", "ios"),
        create_context_built_event("t", "r", 5, 2, "explain", "silent", 12),
        create_prompt_assembled_event("t", "r", 900, 4, ["suggest_actions"], 3),
        create_model_called_event("t", "r", "gpt-4o-mini", 850, 900, 120, "tool_calls", 1),
        create_actions_extracted_event("t", "r", 2, 1, 1, ["NAVIGATE_TO_VERSE"], 4),
        create_response_delivered_event("t", "r", 300, 1, "explanation", 1200),
        create_error_event("t", "r", "APIError", "boom", "model_call"),
    ]
    assert [e.type for e in events] == [
        "ai.request.received",
        "ai.context.built",
        "ai.prompt.assembled",
        "ai.model.called",
        "ai.actions.extracted",
        "ai.response.delivered",
        "ai.error",
    ]
    for event in events:
        assert event.trace_id == "t"
        assert event.request_id == "r"
        assert event.timestamp.endswith("Z")

def test_model_called_duration_is_latency():
    event = create_model_called_event("t", "r", "m", 850, 10, 20, "stop", 0)
    assert event.duration_ms == 850
    assert event.latency_ms == 850
    assert event.input_token_details is None

def test_request_received_has_no_duration():
    assert create_request_received_event("t", "r", "chat", "u", "web").duration_ms is None

def test_error_event_defaults_unrecoverable():
    assert create_error_event("t", "r", "X", "y", "model_call").recoverable is False
    assert create_error_event("t", "r", "X", "y", "model_call", recoverable=True).recoverable is True

def test_type_cannot_be_overridden():
    with pytest.raises(TypeError):
        AIError(trace_id="t", request_id="r", type="ai.other", error_type="X", error_message="y", stage="s")

def test_factories_copy_lists():
    tools = ["suggest_actions"]
    event = create_prompt_assembled_event("t", "r", 1, 1, tools, 0)
    tools.append("other")
    assert event.tools_enabled == ["suggest_actions"]

# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def test_event_to_record_is_flat_with_time():
    event = create_model_called_event(
        "t", "r", "m", 10, 1, 2, "stop", 0,
        input_token_details=InputTokenDetails(cached_tokens=5),
    )
    record = event_to_record(event)

    assert record["_time"] == event.timestamp
    assert record["type"] == "ai.model.called"
    assert record["input_token_details"] == {"cached_tokens": 5, "audio_tokens": 0}
    assert record["output_token_details"] is None
