import json
import httpx
import openai
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from prayer_ai.suggester import (
    ActionSuggester,
    ModelCallError,
    ResponseProcessingError,
    SuggestionError,
)
from prayer_ai.telemetry import ObservabilityLogger
from prayer_ai.tools import ACTION_SYSTEM_PROMPT_ADDITION, build_action_tools
from prayer_ai.trace import create_fallback_trace_context


def _tool_call(actions):
    return SimpleNamespace(
        id="call_1",
        type="function",
        function=SimpleNamespace(name="suggest_actions", arguments=json.dumps({"actions": actions})),
    )


def _completion(content="Here is a passage and a prayer.", tool_calls=None, finish_reason="tool_calls"):
    return SimpleNamespace(
        choices=[
            SimpleNamespace(
                message=SimpleNamespace(content=content, tool_calls=tool_calls),
                finish_reason=finish_reason,
            )
        ],
        usage=SimpleNamespace(
            prompt_tokens=900,
            completion_tokens=120,
            prompt_tokens_details=SimpleNamespace(cached_tokens=3, audio_tokens=None),
            completion_tokens_details=None,
        ),
    )


def _suggester(completion=None, side_effect=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion, side_effect=side_effect)
    telemetry = MagicMock(spec=ObservabilityLogger)
    suggester = ActionSuggester("openai/gpt-4o-mini", client=client, telemetry=telemetry)
    return suggester, client, telemetry


def _event_types(telemetry):
    return [call.args[0].type for call in telemetry.log_event.await_args_list]


ACTIONS = [
    {"type": "NAVIGATE_TO_VERSE", "params": {"reference": "Philippians 4:6-7", "reason": "Anxiety"}},
    {"type": "CREATE_PRAYER_DRAFT", "params": {"title": "Peace", "body": "Lord, calm my heart."}},
    {"type": "DELETE_ACCOUNT", "params": {}},
]

# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_run_returns_content_and_ordered_actions():
    suggester, _, _ = _suggester(_completion(tool_calls=[_tool_call(ACTIONS)]))
    trace_ctx = create_fallback_trace_context("user-1")

    result = await suggester.run("I'm anxious about tomorrow.", trace_ctx)

    assert result.content == "Here is a passage and a prayer."
    assert result.trace_id == trace_ctx.trace_id
    assert [a.type for a in result.actions] == ["CREATE_PRAYER_DRAFT", "NAVIGATE_TO_VERSE"]
    assert [d.type for d in result.dropped] == ["DELETE_ACCOUNT"]
    assert "dropped" not in result.model_dump()

@pytest.mark.asyncio
async def test_run_sends_tool_schema_and_prompt():
    suggester, client, _ = _suggester(_completion())
    history = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello! How can I help?"},
    ]

    await suggester.run("What is grace?", create_fallback_trace_context("u"), history=history)

    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "openai/gpt-4o-mini"
    assert kwargs["tools"] == build_action_tools()
    assert kwargs["tool_choice"] == "auto"
    messages = kwargs["messages"]
    assert messages[0]["role"] == "system"
    assert messages[0]["content"].endswith(ACTION_SYSTEM_PROMPT_ADDITION)
    assert messages[1:3] == history
    assert messages[-1] == {"role": "user", "content": "What is grace?"}

@pytest.mark.asyncio
async def test_run_without_tool_calls_has_no_actions():
    suggester, _, telemetry = _suggester(_completion(content="Paul.", finish_reason="stop"))

    result = await suggester.run("Who wrote Romans?", create_fallback_trace_context("u"))

    assert result.actions == []
    extracted = telemetry.log_event.await_args_list[3].args[0]
    assert extracted.total_extracted == 0

@pytest.mark.asyncio
async def test_run_with_null_content():
    suggester, _, _ = _suggester(_completion(content=None, tool_calls=[_tool_call(ACTIONS[:1])]))
    result = await suggester.run("Show me a verse", create_fallback_trace_context("u"))
    assert result.content == ""
    assert len(result.actions) == 1

# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_run_emits_events_in_stage_order():
    suggester, _, telemetry = _suggester(_completion(tool_calls=[_tool_call(ACTIONS)]))

    await suggester.run("I'm anxious", create_fallback_trace_context("u"))

    assert _event_types(telemetry) == [
        "ai.request.received",
        "ai.prompt.assembled",
        "ai.model.called",
        "ai.actions.extracted",
        "ai.response.delivered",
    ]
    model_called = telemetry.log_event.await_args_list[2].args[0]
    assert model_called.input_tokens == 900
    assert model_called.output_tokens == 120
    assert model_called.tool_call_count == 1
    assert model_called.input_token_details.cached_tokens == 3
    assert model_called.output_token_details is None

    extracted = telemetry.log_event.await_args_list[3].args[0]
    assert (extracted.total_extracted, extracted.validated, extracted.dropped) == (3, 2, 1)

@pytest.mark.asyncio
async def test_run_logs_complete_envelope():
    suggester, client, telemetry = _suggester(_completion(tool_calls=[_tool_call(ACTIONS)]))
    trace_ctx = create_fallback_trace_context("u")

    await suggester.run(
        "I'm anxious", trace_ctx, verse_reference="Philippians 4:6", response_type="explanation"
    )

    telemetry.log_envelope.assert_awaited_once()
    envelope = telemetry.log_envelope.await_args.args[0]
    assert envelope.trace_id == trace_ctx.trace_id
    assert envelope.verse_reference == "Philippians 4:6"
    assert envelope.model_call.model == "openai/gpt-4o-mini"
    assert envelope.model_call.finish_reason == "tool_calls"
    assert envelope.model_call.tool_calls_made == ["suggest_actions"]
    assert envelope.prompt_artifacts.tools_enabled == ["suggest_actions"]
    assert len(envelope.post_processing.actions_extracted) == 3
    assert envelope.response.response_type == "explanation"
    assert envelope.response.action_count == 2
    assert envelope.replay_data.full_messages == client.chat.completions.create.await_args.kwargs["messages"]
    assert envelope.replay_data.model_params.max_tokens == 800

# ---------------------------------------------------------------------------
# Failure
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_model_failure_is_logged_then_raised():
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://openrouter.ai/api/v1"))
    suggester, _, telemetry = _suggester(side_effect=error)

    with pytest.raises(ModelCallError):
        await suggester.run("Hello", create_fallback_trace_context("u"))

    telemetry.log_error.assert_awaited_once()
    assert telemetry.log_error.await_args.args[2] is error
    assert _event_types(telemetry)[-1] == "ai.error"
    assert telemetry.log_event.await_args_list[-1].args[0].stage == "model_call"

    envelope = telemetry.log_envelope.await_args.args[0]
    assert envelope.model_call.finish_reason == "error"
    assert envelope.response.content_length == 0

@pytest.mark.asyncio
async def test_empty_choices_is_logged_then_raised():
    completion = SimpleNamespace(choices=[], usage=None)
    suggester, _, telemetry = _suggester(completion)

    with pytest.raises(ResponseProcessingError):
        await suggester.run("Hello", create_fallback_trace_context("u"))

    telemetry.log_error.assert_awaited_once()
    assert telemetry.log_error.await_args.args[3] == {"stage": "post_processing"}
    assert _event_types(telemetry)[-1] == "ai.error"
    assert telemetry.log_event.await_args_list[-1].args[0].stage == "post_processing"

    telemetry.log_envelope.assert_awaited_once()
    envelope = telemetry.log_envelope.await_args.args[0]
    assert envelope.response.content_length == 0
    assert envelope.replay_data.full_messages

@pytest.mark.asyncio
async def test_processing_failure_keeps_model_call_details():
    suggester, _, telemetry = _suggester(_completion(tool_calls=[_tool_call(ACTIONS)]))

    def log_event(event):
        if event.type == "ai.actions.extracted":
            raise RuntimeError("sink closed")

    telemetry.log_event.side_effect = log_event

    with pytest.raises(ResponseProcessingError) as exc_info:
        await suggester.run("Hello", create_fallback_trace_context("u"))

    assert isinstance(exc_info.value, SuggestionError)
    envelope = telemetry.log_envelope.await_args.args[0]
    assert envelope.model_call.finish_reason == "tool_calls"
    assert envelope.model_call.input_tokens == 900

@pytest.mark.asyncio
async def test_tool_call_without_function_is_ignored():
    odd_call = SimpleNamespace(id="call_0", type="custom")
    suggester, _, telemetry = _suggester(_completion(tool_calls=[odd_call, _tool_call(ACTIONS[:1])]))

    result = await suggester.run("Show me a verse", create_fallback_trace_context("u"))

    assert [a.type for a in result.actions] == ["NAVIGATE_TO_VERSE"]
    envelope = telemetry.log_envelope.await_args.args[0]
    assert envelope.model_call.tool_calls_made == ["suggest_actions"]

# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_aclose_closes_what_the_suggester_created():
    with patch("prayer_ai.suggester.ObservabilityLogger") as logger_cls, \
            patch("prayer_ai.suggester.AsyncOpenAI") as client_cls:
        logger_cls.return_value.aclose = AsyncMock()
        client_cls.return_value.close = AsyncMock()

        async with ActionSuggester("openai/gpt-4o-mini"):
            pass

    logger_cls.return_value.aclose.assert_awaited_once()
    client_cls.return_value.close.assert_awaited_once()

@pytest.mark.asyncio
async def test_aclose_leaves_injected_dependencies_open():
    suggester, client, telemetry = _suggester(_completion())
    client.close = AsyncMock()

    await suggester.aclose()

    telemetry.aclose.assert_not_awaited()
    client.close.assert_not_awaited()
