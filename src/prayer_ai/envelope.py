# envelope.py
# AI debug envelope — one structured record per AI request.
#
# AIDebugEnvelopeBuilder is filled in stage by stage as a request moves
# through context assembly, prompt building, the model call and action
# post-processing. build() always succeeds: every section has defaults, so
# an envelope can be shipped from partial and error paths too.

import copy
import hashlib
import math
import time
from typing import Any, Iterable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field

from prayer_ai.models import ActionProcessorResult
from prayer_ai.trace import TraceContext, iso_timestamp

ExclusionReason = Literal[
    "safety_filter",
    "consent_denied",
    "scope_mismatch",
    "low_relevance",
    "budget_exceeded",
    "ttl_expired",
]
UsageMode = Literal["silent", "soft_grounding", "permissioned_recall", "explicit_recall"]
ResponseType = Literal["greeting", "explanation", "followup"]

PREVIEW_LENGTH = 200


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def estimate_tokens(text: str) -> int:
    """Rough token estimate at ~4 characters per token. Observability only."""
    return math.ceil(len(text) / 4)


def hash_string(text: str) -> str:
    """Hex-encoded SHA-256 of a string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def truncate_preview(text: str, max_length: int = PREVIEW_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def _message_text(message: Mapping[str, Any]) -> str:
    """Text of a chat message; multi-part content is joined, None is empty."""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            part.get("text", "") for part in content if isinstance(part, Mapping)
        )
    return ""


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


class ScoreBreakdown(BaseModel):
    scope_match: float = 0
    recency: float = 0
    user_explicitness: float = 0
    interaction_depth: float = 0
    semantic_similarity: float = 0


class IncludedMemory(BaseModel):
    id: str
    verse_reference: str = ""
    preview: str = ""
    age_label: str | None = None
    matched_scope: str | None = None
    usefulness_score: float | None = None
    score_breakdown: ScoreBreakdown | None = None


class ExcludedMemory(BaseModel):
    id: str
    reason: ExclusionReason
    verse_reference: str | None = None
    details: str | None = None


class IntentClassification(BaseModel):
    intent: str = "unknown"
    confidence: float = 0
    signals: list[str] = Field(default_factory=list)


class ConversationCompaction(BaseModel):
    was_compacted: bool = False
    original_count: int = 0
    final_count: int = 0
    summarized_count: int = 0
    tokens_before: int = 0
    tokens_after: int = 0


class TokenCounts(BaseModel):
    system_prompt: int = 0
    user_context: int = 0
    conversation_history: int = 0
    total: int = 0


class ContextReport(BaseModel):
    """How the model's context was assembled: memories, intent, token budget."""

    memories_queried: int = 0
    memories_included: int = 0
    memories_included_details: list[IncludedMemory] | None = None
    memory_prompt_addition: str | None = None
    memories_excluded: list[ExcludedMemory] = Field(default_factory=list)
    intent_classification: IntentClassification = Field(default_factory=IntentClassification)
    usage_mode: UsageMode = "silent"
    life_context_used: bool = False
    conversation_compaction: ConversationCompaction | None = None
    token_counts: TokenCounts = Field(default_factory=TokenCounts)


class PromptArtifacts(BaseModel):
    system_prompt_hash: str = ""
    messages_count: int = 0
    tools_enabled: list[str] = Field(default_factory=list)


class ModelCallInfo(BaseModel):
    model: str = "unknown"
    temperature: float = 0
    max_tokens: int = 0
    latency_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = "unknown"
    tool_calls_made: list[str] = Field(default_factory=list)


class ExtractedAction(BaseModel):
    type: str
    params: dict[str, Any] = Field(default_factory=dict)
    validated: bool
    drop_reason: str | None = None


class PostProcessingInfo(BaseModel):
    actions_extracted: list[ExtractedAction] = Field(default_factory=list)
    follow_up_call_made: bool = False


class ResponseInfo(BaseModel):
    content_length: int = 0
    content_preview: str = ""
    action_count: int = 0
    response_type: ResponseType = "followup"


class ModelParams(BaseModel):
    model: str = "unknown"
    temperature: float = 0
    max_tokens: int = 0


class ReplayData(BaseModel):
    """Exactly what was sent to the model, so the call can be reissued."""

    model_config = ConfigDict(protected_namespaces=())

    full_messages: list[dict[str, Any]] = Field(default_factory=list)
    tool_schemas: list[Any] = Field(default_factory=list)
    model_params: ModelParams = Field(default_factory=ModelParams)


class SelectedContent(BaseModel):
    type: Literal["verse", "chapter"]
    reference: str
    verse_numbers: list[int] | None = None


class AIDebugEnvelope(BaseModel):
    """Complete, immutable record of one AI request."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    # Identifiers
    trace_id: str
    request_id: str
    session_id: str
    user_id: str

    # Request metadata
    timestamp: str
    entry_point: str
    app_version: str
    platform: str

    # Intent & inputs
    user_message: str = ""
    verse_reference: str = ""
    verse_text: str | None = None
    selected_content: SelectedContent | None = None

    context_report: ContextReport = Field(default_factory=ContextReport)
    prompt_artifacts: PromptArtifacts = Field(default_factory=PromptArtifacts)
    model_call: ModelCallInfo = Field(default_factory=ModelCallInfo)
    post_processing: PostProcessingInfo = Field(default_factory=PostProcessingInfo)
    response: ResponseInfo = Field(default_factory=ResponseInfo)
    replay_data: ReplayData = Field(default_factory=ReplayData)

    def summary(self) -> dict[str, Any]:
        """Condensed view for console output."""
        return {
            "trace_id": self.trace_id,
            "entry_point": self.entry_point,
            "response_type": self.response.response_type,
            "latency_ms": self.model_call.latency_ms,
            "tokens": {
                "input": self.model_call.input_tokens,
                "output": self.model_call.output_tokens,
            },
            "memories": {
                "queried": self.context_report.memories_queried,
                "included": self.context_report.memories_included,
            },
            "actions": len(self.post_processing.actions_extracted),
        }


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class AIDebugEnvelopeBuilder:
    """
    Fluent accumulator for an AIDebugEnvelope.

    Every setter returns the builder, so stages can chain:

        envelope = (
            AIDebugEnvelopeBuilder(trace_ctx)
            .set_user_message("What does John 3:16 mean?")
            .set_verse_context("John 3:16")
        )
        ...
        telemetry.log_envelope(envelope.build())
    """

    def __init__(self, trace_context: TraceContext) -> None:
        self._started_at = time.perf_counter()
        self._trace = trace_context

        self._user_message = ""
        self._verse_reference = ""
        self._verse_text: str | None = None
        self._selected_content: SelectedContent | None = None

        self._context_report: ContextReport | None = None
        self._prompt_artifacts: PromptArtifacts | None = None
        self._model_call: ModelCallInfo | None = None
        self._post_processing: PostProcessingInfo | None = None
        self._response: ResponseInfo | None = None
        self._replay_data: ReplayData | None = None

    # ------------------------------------------------------------------
    # Intent & inputs
    # ------------------------------------------------------------------

    def set_user_message(self, message: str) -> "AIDebugEnvelopeBuilder":
        self._user_message = message
        return self

    def set_verse_context(self, reference: str, text: str | None = None) -> "AIDebugEnvelopeBuilder":
        self._verse_reference = reference
        if text:
            self._verse_text = text
        return self

    def set_selected_content(
        self,
        content_type: Literal["verse", "chapter"],
        reference: str,
        verse_numbers: list[int] | None = None,
    ) -> "AIDebugEnvelopeBuilder":
        self._selected_content = SelectedContent(
            type=content_type, reference=reference, verse_numbers=verse_numbers
        )
        return self

    # ------------------------------------------------------------------
    # Context assembly
    # ------------------------------------------------------------------

    def _ensure_context_report(self) -> ContextReport:
        if self._context_report is None:
            self._context_report = ContextReport()
        return self._context_report

    def set_context_report(self, **fields: Any) -> "AIDebugEnvelopeBuilder":
        """Replace the context report; omitted fields take their defaults."""
        self._context_report = ContextReport(**fields)
        return self

    def add_memory_inclusion(
        self,
        memory_id: str,
        verse_reference: str = "",
        preview: str = "",
        **details: Any,
    ) -> "AIDebugEnvelopeBuilder":
        report = self._ensure_context_report()
        if report.memories_included_details is None:
            report.memories_included_details = []
        report.memories_included_details.append(
            IncludedMemory(
                id=memory_id,
                verse_reference=verse_reference,
                preview=truncate_preview(preview),
                **details,
            )
        )
        return self

    def add_memory_exclusion(
        self,
        memory_id: str,
        reason: ExclusionReason,
        verse_reference: str | None = None,
        details: str | None = None,
    ) -> "AIDebugEnvelopeBuilder":
        self._ensure_context_report().memories_excluded.append(
            ExcludedMemory(
                id=memory_id, reason=reason, verse_reference=verse_reference, details=details
            )
        )
        return self

    def set_conversation_compaction(
        self, compaction: ConversationCompaction
    ) -> "AIDebugEnvelopeBuilder":
        self._ensure_context_report().conversation_compaction = compaction
        return self

    # ------------------------------------------------------------------
    # Prompt artifacts
    # ------------------------------------------------------------------

    def set_prompt_artifacts(
        self,
        system_prompt: str,
        messages: Iterable[Mapping[str, Any]],
        tools: Iterable[str] = (),
    ) -> "AIDebugEnvelopeBuilder":
        """
        Record the prompt hash, message count and enabled tools, and refresh
        the context report's token counts from the same inputs.
        """
        messages = list(messages)
        self._prompt_artifacts = PromptArtifacts(
            system_prompt_hash=hash_string(system_prompt),
            messages_count=len(messages),
            tools_enabled=list(tools),
        )

        all_text = " ".join(_message_text(m) for m in messages)
        user_text = " ".join(_message_text(m) for m in messages if m.get("role") == "user")
        self._ensure_context_report().token_counts = TokenCounts(
            system_prompt=estimate_tokens(system_prompt),
            user_context=estimate_tokens(user_text),
            conversation_history=estimate_tokens(all_text),
            total=estimate_tokens(system_prompt + all_text),
        )
        return self

    # ------------------------------------------------------------------
    # Model call
    # ------------------------------------------------------------------

    def set_model_call(self, **fields: Any) -> "AIDebugEnvelopeBuilder":
        """Replace the model call section; `None` values fall back to defaults."""
        self._model_call = ModelCallInfo(**{k: v for k, v in fields.items() if v is not None})
        return self

    def record_model_latency(self, started_at: float) -> "AIDebugEnvelopeBuilder":
        """`started_at` is a time.perf_counter() reading taken before the call."""
        if self._model_call is None:
            self._model_call = ModelCallInfo()
        self._model_call.latency_ms = int((time.perf_counter() - started_at) * 1000)
        return self

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def set_post_processing(
        self,
        actions_extracted: list[ExtractedAction] | None = None,
        follow_up_call_made: bool = False,
    ) -> "AIDebugEnvelopeBuilder":
        self._post_processing = PostProcessingInfo(
            actions_extracted=actions_extracted or [],
            follow_up_call_made=follow_up_call_made,
        )
        return self

    def add_action(
        self,
        action_type: str,
        params: dict[str, Any] | None,
        validated: bool,
        drop_reason: str | None = None,
    ) -> "AIDebugEnvelopeBuilder":
        if self._post_processing is None:
            self._post_processing = PostProcessingInfo()
        self._post_processing.actions_extracted.append(
            ExtractedAction(
                type=action_type,
                params=dict(params or {}),
                validated=validated,
                drop_reason=drop_reason,
            )
        )
        return self

    def record_processing(self, result: ActionProcessorResult) -> "AIDebugEnvelopeBuilder":
        """Add every validated and dropped action from a processor run."""
        for action in result.actions:
            self.add_action(action.type, action.params, True)
        for dropped in result.dropped:
            self.add_action(dropped.type, dropped.params, False, dropped.reason)
        return self

    # ------------------------------------------------------------------
    # Response
    # ------------------------------------------------------------------

    def set_response(
        self, content: str, response_type: ResponseType, action_count: int = 0
    ) -> "AIDebugEnvelopeBuilder":
        self._response = ResponseInfo(
            content_length=len(content),
            content_preview=truncate_preview(content),
            action_count=action_count,
            response_type=response_type,
        )
        return self

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def set_replay_data(
        self,
        messages: Iterable[Mapping[str, Any]],
        tool_schemas: Iterable[Any],
        model_params: ModelParams | Mapping[str, Any],
    ) -> "AIDebugEnvelopeBuilder":
        """
        Store the exact request. Messages and schemas are deep-copied as-is
        (no field filtering, no truncation) so later mutation by the caller
        cannot change what gets replayed.
        """
        if not isinstance(model_params, ModelParams):
            model_params = ModelParams(**model_params)
        self._replay_data = ReplayData(
            full_messages=[copy.deepcopy(dict(m)) for m in messages],
            tool_schemas=copy.deepcopy(list(tool_schemas)),
            model_params=model_params.model_copy(),
        )
        return self

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self) -> AIDebugEnvelope:
        """Assemble the envelope, defaulting every section that was never set."""
        trace = self._trace

        def section(value: BaseModel | None, default: type[BaseModel]) -> Any:
            return value.model_copy(deep=True) if value is not None else default()

        return AIDebugEnvelope(
            trace_id=trace.trace_id,
            request_id=trace.request_id,
            session_id=trace.session_id,
            user_id=trace.user_id,
            timestamp=iso_timestamp(trace.timestamp),
            entry_point=trace.entry_point,
            app_version=trace.app_version,
            platform=trace.platform,
            user_message=self._user_message,
            verse_reference=self._verse_reference,
            verse_text=self._verse_text,
            selected_content=self._selected_content.model_copy()
            if self._selected_content is not None
            else None,
            context_report=section(self._context_report, ContextReport),
            prompt_artifacts=section(self._prompt_artifacts, PromptArtifacts),
            model_call=section(self._model_call, ModelCallInfo),
            post_processing=section(self._post_processing, PostProcessingInfo),
            response=section(self._response, ResponseInfo),
            replay_data=section(self._replay_data, ReplayData),
        )

    def get_elapsed_ms(self) -> int:
        """Wall-clock milliseconds since the builder was created."""
        return int((time.perf_counter() - self._started_at) * 1000)
