# config.py
# Environment-driven settings for AI observability.
#
# Every variable is optional. Outside production, tracing and console output
# are on; remote delivery needs AXIOM_TOKEN.

import os
from typing import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_AXIOM_URL = "https://api.axiom.co"


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


class ObservabilityConfig(BaseModel):
    """Where AI events and envelopes go."""

    enabled: bool = Field(default=True, description="Master switch for AI tracing.")
    axiom_token: str | None = Field(default=None, description="Ingest API token.")
    axiom_org_id: str | None = None
    axiom_url: str = DEFAULT_AXIOM_URL
    events_dataset: str = "ai-events"
    envelopes_dataset: str = "ai-envelopes"
    console_log: bool = Field(default=True, description="Render records on the local console.")

    @property
    def remote_enabled(self) -> bool:
        return bool(self.axiom_token)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ObservabilityConfig":
        """
        Read settings from `environ` (default: the process environment,
        after loading any .env file).
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        production = environ.get("APP_ENV", "").strip().lower() == "production"

        return cls(
            enabled=_flag(environ.get("ENABLE_AI_TRACING")) or not production,
            axiom_token=environ.get("AXIOM_TOKEN") or None,
            axiom_org_id=environ.get("AXIOM_ORG_ID") or None,
            axiom_url=(environ.get("AXIOM_URL") or DEFAULT_AXIOM_URL).rstrip("/"),
            events_dataset=environ.get("AXIOM_EVENTS_DATASET") or "ai-events",
            envelopes_dataset=environ.get("AXIOM_ENVELOPES_DATASET") or "ai-envelopes",
            console_log=not production or _flag(environ.get("AI_CONSOLE_LOG")),
        )
