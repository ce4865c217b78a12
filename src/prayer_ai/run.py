# run.py
# Entry point. Config and wiring only — no logic lives here.
#
# Swap the model string for any OpenRouter-supported model.
# https://openrouter.ai/models

import asyncio
import logging

from rich.logging import RichHandler

from prayer_ai import display
from prayer_ai.models import ActionProcessorResult
from prayer_ai.suggester import ActionSuggester, SuggestionError
from prayer_ai.telemetry import ObservabilityLogger
from prayer_ai.trace import create_fallback_trace_context

MODEL = "openai/gpt-4o-mini"
USER_ID = "demo-user"

# Test prompts: verse lookups, a prayer request, a plain question.
PROMPTS = [
    # Should suggest NAVIGATE_TO_VERSE for each passage mentioned
    "I'm feeling anxious about work. What does the Bible say about worry?",

    # Should suggest CREATE_PRAYER_DRAFT (primary) ahead of any verse links
    "Can you write a short prayer for my mother, who is in the hospital?",

    # Usually no actions at all
    "Who wrote the book of Acts?",
]


async def _run_all() -> None:
    async with ObservabilityLogger() as telemetry:
        suggester = ActionSuggester(model=MODEL, telemetry=telemetry)

        for prompt in PROMPTS:
            trace_ctx = create_fallback_trace_context(USER_ID)
            display.prompt_received(prompt, trace_ctx.trace_id)
            try:
                result = await suggester.run(prompt, trace_ctx)
            except SuggestionError as exc:
                display.halt(str(exc))
                continue
            display.final_result(result.content or "(no text)")
            display.actions_table(
                ActionProcessorResult(actions=result.actions, dropped=result.dropped)
            )


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=display.console, show_path=False)],
    )
    display.banner(MODEL)
    asyncio.run(_run_all())


if __name__ == "__main__":
    main()
