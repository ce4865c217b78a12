# telemetry.py
# Observability logger for AI events and envelopes.
#
# Local: rendered through display.py when console output is enabled.
# Remote: POSTed to the Axiom ingest API as detached asyncio tasks.
#
# Hard rule: nothing in here may raise into, or wait on the network for, the
# request that is being logged. Delivery failures are logged and dropped.

import asyncio
import json
import logging
import traceback
from typing import Any, Awaitable, Callable, Coroutine

import httpx
from pydantic_core import PydanticSerializationError

from prayer_ai import display
from prayer_ai.config import ObservabilityConfig
from prayer_ai.envelope import AIDebugEnvelope
from prayer_ai.events import AIEvent, event_to_record
from prayer_ai.trace import utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_FLUSH_INTERVAL = 5.0


def _envelope_record(envelope: AIDebugEnvelope) -> dict[str, Any]:
    """
    JSON-ready dict of the envelope. Replay data may hold caller objects
    pydantic cannot encode; those fall back to the python-mode dump and are
    stringified when the batch is serialized for ingest.
    """
    try:
        return envelope.model_dump(mode="json")
    except PydanticSerializationError:
        return envelope.model_dump()


def _spawn(tasks: set[asyncio.Task], coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
    """Start `coro` as a background task and keep a reference until it finishes."""
    task = asyncio.get_running_loop().create_task(coro)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task


# ---------------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------------


class EventBatcher:
    """
    Buffers events and ships them in one request per batch.

    A batch goes out when `max_batch_size` events are queued or
    `flush_interval` seconds after the first queued event, whichever comes
    first. Only one timer is armed at a time, and every flush takes the whole
    queue in a single step so no event is sent twice or skipped.

    Queued events are lost at process exit unless `aclose()` (or `flush()`)
    is awaited during shutdown.
    """

    def __init__(
        self,
        send: Callable[[list[dict[str, Any]]], Awaitable[Any]],
        max_batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ) -> None:
        self._send = send
        self._max_batch_size = max(1, max_batch_size)
        self._flush_interval = flush_interval
        self._events: list[AIEvent] = []
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._events)

    def add(self, event: AIEvent) -> None:
        self._events.append(event)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Outside an event loop the queue only drains on an explicit flush().
            return

        if len(self._events) >= self._max_batch_size:
            _spawn(self._tasks, self._deliver(self._take()))
        elif self._timer is None:
            self._timer = loop.call_later(self._flush_interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        batch = self._take()
        if batch:
            _spawn(self._tasks, self._deliver(batch))

    def _take(self) -> list[AIEvent]:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        batch, self._events = self._events, []
        return batch

    async def _deliver(self, batch: list[AIEvent]) -> None:
        try:
            await self._send([event_to_record(event) for event in batch])
        except Exception:
            logger.exception("Event batch delivery failed (%d events dropped)", len(batch))

    async def flush(self) -> None:
        """Send everything queued right now."""
        batch = self._take()
        if batch:
            await self._deliver(batch)

    async def aclose(self) -> None:
        """Flush the queue and wait for in-flight batches. Call on shutdown."""
        await self.flush()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------


class ObservabilityLogger:
    """
    Logs AI events, envelopes and errors.

    Example:
        telemetry = ObservabilityLogger()
        await telemetry.log_event(create_request_received_event(...))
        ...
        await telemetry.aclose()   # on shutdown
    """

    def __init__(
        self,
        config: ObservabilityConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ) -> None:
        self.config = config or ObservabilityConfig.from_env()
        self._client = client
        self._owns_client = client is None
        self._pending: set[asyncio.Task] = set()
        self.batcher = EventBatcher(self._send_event_batch, batch_size, flush_interval)

    async def __aenter__(self) -> "ObservabilityLogger":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def log_event(self, event: AIEvent) -> None:
        if not self.config.enabled:
            return

        record = event_to_record(event)
        if self.config.console_log:
            self._render(display.event_logged, {k: v for k, v in record.items() if k != "_time"})
        if self.config.remote_enabled:
            self._dispatch(self.config.events_dataset, [record])

    async def log_envelope(self, envelope: AIDebugEnvelope) -> None:
        if not self.config.enabled:
            return

        if self.config.console_log:
            self._render(display.envelope_logged, envelope.summary())
        if self.config.remote_enabled:
            try:
                record = {"_time": envelope.timestamp, **_envelope_record(envelope)}
            except Exception:
                logger.exception("Envelope %s could not be serialized; dropped", envelope.trace_id)
                return
            self._dispatch(self.config.envelopes_dataset, [record])

    async def log_error(
        self,
        trace_id: str,
        request_id: str,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> None:
        if not self.config.enabled:
            return

        error_data = {
            "type": "ai.error",
            "trace_id": trace_id,
            "request_id": request_id,
            "timestamp": utc_now_iso(),
            "error_name": type(error).__name__,
            "error_message": str(error),
            "error_stack": "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
            **(context or {}),
        }

        if self.config.console_log:
            self._render(display.error_logged, error_data)
        if self.config.remote_enabled:
            self._dispatch(
                self.config.events_dataset, [{"_time": error_data["timestamp"], **error_data}]
            )

    def batch_event(self, event: AIEvent) -> None:
        """Queue an event for batched delivery instead of sending it alone."""
        if self.config.enabled:
            self.batcher.add(event)

    async def flush_batch(self) -> None:
        await self.batcher.flush()

    async def drain(self) -> None:
        """Wait for every in-flight delivery task to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.batcher.aclose()
        await self.drain()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _render(self, render: Callable[[dict[str, Any]], None], payload: dict[str, Any]) -> None:
        try:
            render(payload)
        except Exception:
            logger.exception("Console rendering failed for AI telemetry record")

    def _dispatch(self, dataset: str, records: list[dict[str, Any]]) -> None:
        _spawn(self._pending, self._deliver(dataset, records))

    async def _deliver(self, dataset: str, records: list[dict[str, Any]]) -> None:
        try:
            await self._send_to_axiom(dataset, records)
        except Exception:
            logger.exception("Axiom delivery to %r crashed; %d records dropped", dataset, len(records))

    async def _send_event_batch(self, records: list[dict[str, Any]]) -> None:
        await self._send_to_axiom(self.config.events_dataset, records)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10)
        return self._client

    async def _send_to_axiom(self, dataset: str, records: list[dict[str, Any]]) -> bool:
        """
        POST `records` to the dataset's ingest endpoint.

        Returns True on a 2xx response. Network errors and rejections are
        logged and reported as False, never raised.
        """
        if not self.config.axiom_token:
            return False

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.axiom_token}",
        }
        if self.config.axiom_org_id:
            headers["X-Axiom-Org-Id"] = self.config.axiom_org_id

        url = f"{self.config.axiom_url}/v1/datasets/{dataset}/ingest"
        try:
            response = await self._http().post(
                url, headers=headers, content=json.dumps(records, default=str)
            )
        except httpx.HTTPError as exc:
            logger.error("Axiom ingest error: %s", exc)
            return False

        if response.is_success:
            return True

        logger.error(
            "Axiom ingest failed: %s %s%s",
            response.status_code,
            response.reason_phrase,
            f" - {response.text}" if response.text else "",
        )
        if response.status_code == 403:
            logger.error(
                "Hint: Ensure AXIOM_TOKEN is an API token with ingest permissions, "
                "not a personal token"
            )
        elif response.status_code == 404:
            logger.error("Hint: Dataset '%s' may not exist. Create it in the Axiom dashboard.", dataset)
        return False
