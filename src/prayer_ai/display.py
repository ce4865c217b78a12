# display.py
# All terminal output for the AI action pipeline.
#
# This module owns presentation entirely. telemetry.py and suggester.py never
# format strings — they call named functions here. Swap this file to change
# the entire console UI.
#
# Colour language:
#   cyan    — request lifecycle events
#   blue    — model calls and responses
#   yellow  — envelopes and diagnostics
#   green   — validated actions / delivered responses
#   red     — errors, dropped actions

import json
from typing import Any

from rich import box
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from prayer_ai.models import ActionProcessorResult

console = Console()

_EVENT_COLORS = {
    "ai.request.received": "cyan",
    "ai.context.built": "cyan",
    "ai.prompt.assembled": "cyan",
    "ai.model.called": "blue",
    "ai.actions.extracted": "magenta",
    "ai.response.delivered": "green",
    "ai.error": "red",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


def _json(data: Any) -> JSON:
    return JSON(json.dumps(data, default=str, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


def banner(model: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]AI Action Pipeline[/bold cyan]\n"
            "[dim]Tool-call extraction · catalog validation · traced envelopes[/dim]\n\n"
            f"[dim]Model :[/dim] [white]{model}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def prompt_received(prompt: str, trace_id: str) -> None:
    console.print()
    console.print(Rule(f"[cyan]NEW REQUEST[/cyan] [dim]{trace_id}[/dim]", style="cyan"))
    console.print(
        Panel(
            f"[white]{prompt}[/white]",
            title=_label("USER MESSAGE", "cyan"),
            border_style="cyan",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Telemetry records
# ---------------------------------------------------------------------------


def event_logged(record: dict[str, Any]) -> None:
    event_type = str(record.get("type", "ai.event"))
    color = _EVENT_COLORS.get(event_type, "cyan")
    console.print(
        Panel(
            _json(record),
            title=_label(f"AI:{event_type}", color),
            border_style=color,
            padding=(0, 1),
        )
    )


def envelope_logged(summary: dict[str, Any]) -> None:
    console.print(
        Panel(
            _json(summary),
            title=_label("AI:envelope", "yellow"),
            border_style="yellow",
            padding=(0, 1),
        )
    )


def error_logged(data: dict[str, Any]) -> None:
    console.print(
        Panel(
            _json(data),
            title=_label("AI:error", "red"),
            border_style="red",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def actions_table(result: ActionProcessorResult) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Status", justify="center", width=8)
    table.add_column("Type", style="bold white", width=22)
    table.add_column("Priority", width=10)
    table.add_column("Params / Reason", style="dim white")

    for action in result.actions:
        table.add_row(
            "[bold green]✓[/bold green]",
            action.type,
            action.priority,
            _mono(json.dumps(action.params, ensure_ascii=False), 60),
        )
    for dropped in result.dropped:
        table.add_row(
            "[bold red]✗[/bold red]",
            dropped.type or "—",
            "",
            _mono(dropped.reason, 60),
        )

    console.print(
        Panel(
            table,
            title="[dim]SUGGESTED ACTIONS[/dim]",
            border_style="dim",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Final result
# ---------------------------------------------------------------------------


def final_result(result: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[white]{result}[/white]",
            title=_label("RESPONSE", "green"),
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
