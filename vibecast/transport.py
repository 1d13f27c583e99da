"""Sync transport: authoritative event stream, command channel, local bus.

Three channels with different guarantees:

- :class:`EventStreamClient` keeps a server-sent-events connection to
  ``GET /api/events`` open and reconnects after a fixed delay.
- :class:`CommandClient` posts intents to ``POST /api/command``; failures
  are logged and dropped, the next snapshot reconciles.
- :class:`LocalEventBus` relays events between surfaces of one process.

Failures on any channel are logged, never raised into callers.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable

import httpx

from .logging import get_logger, log_command
from .protocol import CommandEnvelope, ProtocolError, new_event_id
from .settings import DEFAULT_COMMAND_TIMEOUT, DEFAULT_RECONNECT_DELAY

logger = get_logger("transport")

# Local bus event names
AUDIO_DATA = "audio-data"
REMOTE_COMMAND = "remote-command"
STATE_CHANGED = "state-changed"

# Stream read timeout; the backend sends a keep-alive comment every 15s
STREAM_READ_TIMEOUT = 45.0


class TransportError(Exception):
    """Raised when a command cannot be delivered to the backend."""

    pass


def now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Server-sent events
# =============================================================================


@dataclass
class SSEEvent:
    """One dispatched server-sent event."""

    event: str
    data: str

    def json(self) -> Any:
        return json.loads(self.data)


class SSEParser:
    """Incremental parser for ``text/event-stream`` lines.

    Feed lines without their terminator; a blank line dispatches the
    pending event. Comment lines (``:``) are ignored.
    """

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []

    def feed(self, line: str) -> SSEEvent | None:
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def _dispatch(self) -> SSEEvent | None:
        if not self._data:
            self._event = ""
            return None
        event = SSEEvent(event=self._event or "message", data="\n".join(self._data))
        self._event = ""
        self._data = []
        return event


def format_sse_event(event: str, data: Any) -> str:
    """Encode one event for a ``text/event-stream`` response."""
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    lines = "".join(f"data: {line}\n" for line in payload.split("\n"))
    return f"event: {event}\n{lines}\n"


def parse_sse_body(body: str) -> list[SSEEvent]:
    """Parse a complete event-stream body."""
    parser = SSEParser()
    events = []
    for line in body.split("\n"):
        event = parser.feed(line)
        if event is not None:
            events.append(event)
    return events


# =============================================================================
# Inbound stream
# =============================================================================

StateCallback = Callable[[dict[str, Any]], Any]
CommandCallback = Callable[[CommandEnvelope], Any]
ConnectionCallback = Callable[[bool], Any]


class EventStreamClient:
    """Client for the backend's authoritative event stream.

    Args:
        base_url: Backend base URL
        on_state: Called with each decoded ``state`` snapshot
        on_command: Called with each ``command`` echo
        on_connection_change: Called with True/False when the stream opens/drops
        reconnect_delay: Fixed delay in seconds before reconnecting
        client: Shared HTTP client (one is created and owned otherwise)
    """

    def __init__(
        self,
        base_url: str,
        on_state: StateCallback | None = None,
        on_command: CommandCallback | None = None,
        on_connection_change: ConnectionCallback | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = f"{base_url.rstrip('/')}/api/events"
        self._on_state = on_state
        self._on_command = on_command
        self._on_connection_change = on_connection_change
        self._reconnect_delay = reconnect_delay
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=STREAM_READ_TIMEOUT))
        self._stopped = False
        self._connected = False
        self.attempts = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def stop(self) -> None:
        """Stop after the current event; :meth:`run` then returns."""
        self._stopped = True

    async def close(self) -> None:
        self.stop()
        if self._owns_client:
            await self._client.aclose()

    async def run(self) -> None:
        """Read the stream until stopped, reconnecting after every failure."""
        self._stopped = False
        while not self._stopped:
            self.attempts += 1
            try:
                await self._read_stream()
            except (httpx.HTTPError, httpx.StreamError) as e:
                logger.warning(f"Event stream error: {e}")
            finally:
                self._set_connected(False)

            if self._stopped:
                break
            logger.info(f"Reconnecting to event stream in {self._reconnect_delay}s")
            await asyncio.sleep(self._reconnect_delay)

    async def _read_stream(self) -> None:
        logger.debug(f"Connecting to event stream: {self._url}")
        async with self._client.stream(
            "GET", self._url, headers={"Accept": "text/event-stream"}
        ) as response:
            response.raise_for_status()
            self._set_connected(True)
            parser = SSEParser()
            async for line in response.aiter_lines():
                event = parser.feed(line)
                if event is not None:
                    await self._dispatch(event)
                if self._stopped:
                    return
            logger.info("Event stream closed by server")

    async def _dispatch(self, event: SSEEvent) -> None:
        try:
            data = event.json()
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in {event.event} event: {e}")
            return

        try:
            if event.event == "state" and self._on_state is not None:
                if not isinstance(data, dict):
                    logger.warning("Ignoring state event that is not an object")
                    return
                await _maybe_await(self._on_state(data))
            elif event.event == "command" and self._on_command is not None:
                await _maybe_await(self._on_command(CommandEnvelope.from_dict(data)))
            else:
                logger.debug(f"Ignoring {event.event} event")
        except ProtocolError as e:
            logger.warning(f"Malformed {event.event} event: {e}")
        except Exception:
            logger.exception(f"Error handling {event.event} event")

    def _set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("Event stream connected" if connected else "Event stream disconnected")
        if self._on_connection_change is not None:
            try:
                self._on_connection_change(connected)
            except Exception:
                logger.exception("Connection change callback failed")


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


# =============================================================================
# Outbound commands
# =============================================================================


class CommandClient:
    """Sends commands to the backend.

    Args:
        base_url: Backend base URL
        origin: Surface id stamped on every envelope
        timeout: Per-request timeout in seconds
        client: Shared HTTP client (one is created and owned otherwise)
    """

    def __init__(
        self,
        base_url: str,
        origin: str | None = None,
        timeout: float = DEFAULT_COMMAND_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = f"{base_url.rstrip('/')}/api/command"
        self._origin = origin
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._pending: set[asyncio.Task] = set()

    async def close(self) -> None:
        await self.drain()
        if self._owns_client:
            await self._client.aclose()

    def envelope(self, command: str, payload: Any) -> CommandEnvelope:
        return CommandEnvelope(
            command=command, payload=payload, origin=self._origin, timestamp=now_ms(), event_id=new_event_id()
        )

    async def send(self, envelope: CommandEnvelope) -> dict[str, Any]:
        """Post one command and return the response body.

        Raises:
            TransportError: If the request fails or the backend rejects it
        """
        start = time.monotonic()
        try:
            response = await self._client.post(self._url, json=envelope.to_dict(), timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(f"Backend rejected {envelope.command}: HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to send {envelope.command}: {e}")

        log_command(
            logger,
            envelope.command,
            envelope.payload,
            duration_ms=(time.monotonic() - start) * 1000,
            surface=self._origin,
            message_id=envelope.message_id,
        )
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    async def deliver(self, envelope: CommandEnvelope) -> bool:
        """Send and swallow transport failures (logged). Returns success."""
        try:
            await self.send(envelope)
        except TransportError as e:
            logger.warning(f"Command dropped: {e}")
            return False
        return True

    def submit(self, envelope: CommandEnvelope) -> asyncio.Task | None:
        """Fire-and-forget delivery on the running event loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, command dropped: {envelope.command}")
            return None
        task = loop.create_task(self.deliver(envelope))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every submitted command to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# =============================================================================
# Intra-process bus and dedupe
# =============================================================================

BusListener = Callable[[Any], Any]


class LocalEventBus:
    """Named-event bus shared by the surfaces of one process.

    Listeners run synchronously in subscription order; one failing
    listener is logged and does not affect the others.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[BusListener]] = {}

    def subscribe(self, event: str, listener: BusListener) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def emit(self, event: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every listener of ``event``.

        Returns:
            Number of listeners that handled the event without error
        """
        delivered = 0
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload)
                delivered += 1
            except Exception:
                logger.exception(f"Listener for {event} failed")
        return delivered


class EventDeduplicator:
    """Remembers recently seen event keys (bounded, oldest evicted)."""

    def __init__(self, max_size: int = 512):
        self._max_size = max_size
        self._seen: OrderedDict[Hashable, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def seen(self, key: Hashable) -> bool:
        """True if ``key`` was seen before; records it otherwise."""
        if key in self._seen:
            self._seen.move_to_end(key)
            return True
        self._seen[key] = None
        if len(self._seen) > self._max_size:
            self._seen.popitem(last=False)
        return False


def event_key(envelope: CommandEnvelope) -> tuple[str | None, str] | None:
    """Dedupe key of a command: (origin, event id).

    Envelopes without an event id have no key and are never deduplicated.
    """
    if envelope.event_id is None:
        return None
    return (envelope.origin, envelope.event_id)
