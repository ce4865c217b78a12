# suggester.py
# End-to-end AI request with action suggestions.
#
# The suggester is the only component that talks to the model provider. It
# owns the request lifecycle and feeds the envelope builder and the event
# timeline at each stage:
#
#   request received → prompt assembled → model call (suggest_actions tool)
#   → tool-call extraction → action processing → response delivered
#
# Console output is delegated to display.py through the telemetry logger.

import os
import time
from typing import Any, Iterable, Mapping

from dotenv import load_dotenv
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field

from prayer_ai.envelope import AIDebugEnvelopeBuilder, ResponseType, estimate_tokens
from prayer_ai.events import (
    InputTokenDetails,
    OutputTokenDetails,
    create_actions_extracted_event,
    create_error_event,
    create_model_called_event,
    create_prompt_assembled_event,
    create_request_received_event,
    create_response_delivered_event,
)
from prayer_ai.models import ActionContext, DroppedAction, ValidatedAction
from prayer_ai.processor import Authorizer, authorize_action, process_actions
from prayer_ai.telemetry import ObservabilityLogger
from prayer_ai.tools import (
    ACTION_SYSTEM_PROMPT_ADDITION,
    build_action_tools,
    extract_actions_from_tool_calls,
    tool_names,
)
from prayer_ai.trace import TraceContext

load_dotenv()

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SuggestionError(Exception):
    """Base for request failures. The error and the envelope are already logged."""


class ModelCallError(SuggestionError):
    """Raised when the model provider call fails."""


class ResponseProcessingError(SuggestionError):
    """Raised when the provider's response cannot be turned into a result."""


# ---------------------------------------------------------------------------
# System Prompt
# ---------------------------------------------------------------------------

DEFAULT_SYSTEM_PROMPT = """\
You are a warm, pastoral Bible study companion. Answer questions about \
Scripture clearly and kindly, ground what you say in the text, and keep \
responses concise.\
"""


class SuggestionResult(BaseModel):
    """What the caller returns to the client. Dropped actions stay server-side."""

    content: str
    actions: list[ValidatedAction] = Field(default_factory=list)
    trace_id: str
    dropped: list[DroppedAction] = Field(default_factory=list, exclude=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _usage_details(usage: Any) -> tuple[InputTokenDetails | None, OutputTokenDetails | None]:
    prompt = getattr(usage, "prompt_tokens_details", None)
    completion = getattr(usage, "completion_tokens_details", None)

    input_details = None
    if prompt is not None:
        input_details = InputTokenDetails(
            cached_tokens=getattr(prompt, "cached_tokens", None) or 0,
            audio_tokens=getattr(prompt, "audio_tokens", None) or 0,
        )

    output_details = None
    if completion is not None:
        output_details = OutputTokenDetails(
            reasoning_tokens=getattr(completion, "reasoning_tokens", None) or 0,
            audio_tokens=getattr(completion, "audio_tokens", None) or 0,
            accepted_prediction_tokens=getattr(completion, "accepted_prediction_tokens", None) or 0,
            rejected_prediction_tokens=getattr(completion, "rejected_prediction_tokens", None) or 0,
        )

    return input_details, output_details


def _elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)


# ---------------------------------------------------------------------------
# Suggester
# ---------------------------------------------------------------------------


class ActionSuggester:
    """
    Runs one chat turn with the `suggest_actions` tool enabled and returns the
    reply plus the validated, capped action list.

    Example:
        suggester = ActionSuggester(model="openai/gpt-4o-mini")
        result = await suggester.run("What does Psalm 23 mean?", trace_ctx)
    """

    def __init__(
        self,
        model: str,
        *,
        client: AsyncOpenAI | None = None,
        telemetry: ObservabilityLogger | None = None,
        authorizer: Authorizer = authorize_action,
        temperature: float = 0.7,
        max_tokens: int = 800,
    ) -> None:
        self._model = model
        self._owns_client = client is None
        self._client = client or AsyncOpenAI(
            base_url=OPENROUTER_BASE_URL,
            api_key=os.getenv("OPENROUTER_API_KEY"),
        )
        self._owns_telemetry = telemetry is None
        self._telemetry = telemetry or ObservabilityLogger()
        self._authorizer = authorizer
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def __aenter__(self) -> "ActionSuggester":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the client and telemetry logger this suggester created itself."""
        if self._owns_telemetry:
            await self._telemetry.aclose()
        if self._owns_client:
            await self._client.close()

    # ------------------------------------------------------------------
    # Low-level model call
    # ------------------------------------------------------------------

    async def _call_model(self, messages: list[dict], tools: list[dict]) -> Any:
        return await self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            tools=tools,
            tool_choice="auto",
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )

    # ------------------------------------------------------------------
    # Prompt assembly
    # ------------------------------------------------------------------

    def build_messages(
        self,
        user_message: str,
        system_prompt: str,
        history: Iterable[Mapping[str, Any]] = (),
    ) -> list[dict[str, Any]]:
        """System prompt (with the action addendum), prior turns, then the new message."""
        return [
            {"role": "system", "content": f"{system_prompt}\n\n{ACTION_SYSTEM_PROMPT_ADDITION}"},
            *(dict(m) for m in history),
            {"role": "user", "content": user_message},
        ]

    # ------------------------------------------------------------------
    # Full request
    # ------------------------------------------------------------------

    async def run(
        self,
        user_message: str,
        trace_ctx: TraceContext,
        *,
        history: Iterable[Mapping[str, Any]] = (),
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        verse_reference: str = "",
        verse_text: str | None = None,
        response_type: ResponseType = "followup",
    ) -> SuggestionResult:
        """
        Full pipeline entry point.

        Raises ModelCallError if the provider call fails and
        ResponseProcessingError if its response cannot be used. Either way
        the error, an `ai.error` event and the partial envelope are logged
        first.
        """
        telemetry = self._telemetry
        envelope = AIDebugEnvelopeBuilder(trace_ctx).set_user_message(user_message)
        if verse_reference:
            envelope.set_verse_context(verse_reference, verse_text)

        await telemetry.log_event(
            create_request_received_event(
                trace_ctx.trace_id,
                trace_ctx.request_id,
                trace_ctx.entry_point,
                trace_ctx.user_id,
                trace_ctx.platform,
            )
        )

        # ── Prompt assembly ───────────────────────────────────────────
        stage_start = time.perf_counter()
        tools = build_action_tools()
        messages = self.build_messages(user_message, system_prompt, history)
        full_system_prompt = messages[0]["content"]

        envelope.set_prompt_artifacts(full_system_prompt, messages[1:], tool_names(tools))
        envelope.set_replay_data(
            messages,
            tools,
            {"model": self._model, "temperature": self._temperature, "max_tokens": self._max_tokens},
        )
        await telemetry.log_event(
            create_prompt_assembled_event(
                trace_ctx.trace_id,
                trace_ctx.request_id,
                estimate_tokens(" ".join(str(m.get("content") or "") for m in messages)),
                len(messages),
                tool_names(tools),
                _elapsed_ms(stage_start),
            )
        )

        # ── Model call ────────────────────────────────────────────────
        call_start = time.perf_counter()
        try:
            completion = await self._call_model(messages, tools)
        except OpenAIError as exc:
            await self._fail(envelope, trace_ctx, exc, response_type, "model_call")
            raise ModelCallError(f"Model call failed: {exc}") from exc

        latency_ms = _elapsed_ms(call_start)
        try:
            return await self._finish(
                envelope, trace_ctx, completion, latency_ms, response_type
            )
        except Exception as exc:
            await self._fail(envelope, trace_ctx, exc, response_type, "post_processing")
            raise ResponseProcessingError(f"Response processing failed: {exc!r}") from exc

    async def _finish(
        self,
        envelope: AIDebugEnvelopeBuilder,
        trace_ctx: TraceContext,
        completion: Any,
        latency_ms: int,
        response_type: ResponseType,
    ) -> SuggestionResult:
        """Model response → actions → envelope → result."""
        telemetry = self._telemetry
        if not completion.choices:
            raise ValueError("Model response contained no choices")

        choice = completion.choices[0]
        message = choice.message
        tool_calls = list(message.tool_calls or [])
        usage = completion.usage

        envelope.set_model_call(
            model=self._model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            latency_ms=latency_ms,
            input_tokens=getattr(usage, "prompt_tokens", None),
            output_tokens=getattr(usage, "completion_tokens", None),
            finish_reason=choice.finish_reason,
            tool_calls_made=[
                name for name in (getattr(getattr(tc, "function", None), "name", None) for tc in tool_calls) if name
            ],
        )
        input_details, output_details = _usage_details(usage)
        await telemetry.log_event(
            create_model_called_event(
                trace_ctx.trace_id,
                trace_ctx.request_id,
                self._model,
                latency_ms,
                getattr(usage, "prompt_tokens", 0) or 0,
                getattr(usage, "completion_tokens", 0) or 0,
                choice.finish_reason or "unknown",
                len(tool_calls),
                input_details,
                output_details,
            )
        )

        # ── Action extraction & processing ────────────────────────────
        stage_start = time.perf_counter()
        raw_actions = extract_actions_from_tool_calls(tool_calls)
        result = await process_actions(
            raw_actions,
            ActionContext(user_id=trace_ctx.user_id),
            authorizer=self._authorizer,
        )
        envelope.record_processing(result)
        await telemetry.log_event(
            create_actions_extracted_event(
                trace_ctx.trace_id,
                trace_ctx.request_id,
                len(raw_actions),
                len(result.actions),
                len(result.dropped),
                [action.type for action in result.actions],
                _elapsed_ms(stage_start),
            )
        )

        # ── Response ──────────────────────────────────────────────────
        content = message.content or ""
        envelope.set_response(content, response_type, len(result.actions))

        await telemetry.log_envelope(envelope.build())
        await telemetry.log_event(
            create_response_delivered_event(
                trace_ctx.trace_id,
                trace_ctx.request_id,
                len(content),
                len(result.actions),
                response_type,
                envelope.get_elapsed_ms(),
            )
        )

        return SuggestionResult(
            content=content,
            actions=result.actions,
            trace_id=trace_ctx.trace_id,
            dropped=result.dropped,
        )

    async def _fail(
        self,
        envelope: AIDebugEnvelopeBuilder,
        trace_ctx: TraceContext,
        exc: Exception,
        response_type: ResponseType,
        stage: str,
    ) -> None:
        telemetry = self._telemetry
        if stage == "model_call":
            envelope.set_model_call(
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                finish_reason="error",
            )
        envelope.set_response("", response_type, 0)

        await telemetry.log_error(
            trace_ctx.trace_id, trace_ctx.request_id, exc, {"stage": stage}
        )
        await telemetry.log_event(
            create_error_event(
                trace_ctx.trace_id,
                trace_ctx.request_id,
                type(exc).__name__,
                str(exc),
                stage,
                recoverable=False,
            )
        )
        await telemetry.log_envelope(envelope.build())
