"""One UI surface: a local Store kept in agreement with the backend.

A surface (control window, visualizer window, remote tab) owns a Store.
Its synced actions become commands; the backend's ``state`` snapshots
replace the persisted state wholesale and its ``command`` echoes replay
other surfaces' intents locally. Surfaces that display messages also run
display timers whose expiry completes the message.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Any

import httpx

from .logging import get_logger, log_snapshot
from .messages import display_duration, resolve_message_text
from .models import StateSnapshot
from .protocol import (
    CommandEnvelope,
    Intent,
    ProtocolError,
    apply_command,
    command_for,
    decode_trigger_payload,
)
from .settings import DEFAULT_COMMAND_TIMEOUT, DEFAULT_RECONNECT_DELAY
from .store import Store, StoreState
from .transport import (
    AUDIO_DATA,
    REMOTE_COMMAND,
    STATE_CHANGED,
    CommandClient,
    EventDeduplicator,
    EventStreamClient,
    LocalEventBus,
    event_key,
)

logger = get_logger("surface")


class Surface:
    """Store plus transport wiring for one UI context.

    Args:
        name: Kind of surface ("control", "visualizer", "remote", ...)
        api_base: Backend base URL
        store: Store to drive (a fresh one with default configuration otherwise)
        bus: Local bus shared with co-located surfaces, if any
        displays_messages: Whether this surface shows messages and so
            owns display timers
        http_client: Shared HTTP client for the stream and the commands
        reconnect_delay: Fixed stream reconnect delay in seconds
        command_timeout: Per-command timeout in seconds
        text_base_path: Directory that relative message text files live in
    """

    def __init__(
        self,
        name: str,
        api_base: str,
        store: Store | None = None,
        bus: LocalEventBus | None = None,
        displays_messages: bool = False,
        http_client: httpx.AsyncClient | None = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        text_base_path: str | Path | None = None,
    ):
        self.id = f"{name}-{uuid.uuid4().hex[:8]}"
        self.name = name
        self.store = store or Store(name=self.id)
        self.store.set_emitter(self._on_intent)
        self.bus = bus
        self.displays_messages = displays_messages
        self.text_base_path = text_base_path

        self.commands = CommandClient(api_base, origin=self.id, timeout=command_timeout, client=http_client)
        self.stream = EventStreamClient(
            api_base,
            on_state=self.handle_state,
            on_command=self.handle_command,
            on_connection_change=self._on_connection_change,
            reconnect_delay=reconnect_delay,
            client=http_client,
        )
        self.dedupe = EventDeduplicator()
        self.connected = False
        self.has_snapshot = False
        self._timers: dict[int, asyncio.TimerHandle] = {}
        self._unsubscribers = []

        if displays_messages:
            self._unsubscribers.append(self.store.subscribe(self._sync_timers))
        if bus is not None:
            self._unsubscribers.append(bus.subscribe(STATE_CHANGED, self._on_local_state_changed))
            self._unsubscribers.append(bus.subscribe(REMOTE_COMMAND, self._on_remote_command))
            self._unsubscribers.append(bus.subscribe(AUDIO_DATA, self.store.set_audio_data))

    @property
    def status(self) -> str:
        """``connected``, ``reconnecting``, or ``error`` before the first snapshot."""
        if self.connected:
            return "connected"
        return "reconnecting" if self.has_snapshot else "error"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Follow the event stream until :meth:`close` is called."""
        logger.info(f"Surface {self.id} starting")
        await self.stream.run()

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        await self.stream.close()
        await self.commands.close()
        logger.info(f"Surface {self.id} closed")

    def _on_connection_change(self, connected: bool) -> None:
        self.connected = connected
        if not connected:
            logger.warning(f"Surface {self.id} is {self.status}")

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def _on_intent(self, tag: str, payload: Any) -> None:
        envelope = self.commands.envelope(command_for(tag), payload)
        self.dedupe.seen(event_key(envelope))
        self.commands.submit(envelope)
        if self.bus is not None:
            intent = Intent(type=tag, payload=payload, origin=self.id, event_id=envelope.event_id)
            self.bus.emit(STATE_CHANGED, intent.to_dict())

    def trigger(self, message_id: str) -> int | None:
        """Trigger a configured message by id, loading its text file if any.

        Returns:
            The trigger timestamp, or None if the id is unknown
        """
        message = next((m for m in self.store.config.messages if m.id == message_id), None)
        if message is None:
            logger.warning(f"Unknown message: {message_id}")
            return None
        return self.store.trigger_message(resolve_message_text(message, self.text_base_path))

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def handle_state(self, data: dict[str, Any]) -> None:
        """Adopt one authoritative snapshot."""
        log_snapshot(logger, data, surface=self.id)
        self.store.load_snapshot(StateSnapshot.from_dict(data))
        self.has_snapshot = True

    def handle_command(self, envelope: CommandEnvelope) -> bool:
        """Replay a command from another surface on the local Store.

        Returns:
            True if the command was applied
        """
        if envelope.origin == self.id:
            return False
        key = event_key(envelope)
        if key is not None and self.dedupe.seen(key):
            logger.debug(f"Duplicate {envelope.command} dropped ({self.id})")
            return False

        try:
            if envelope.command == "trigger-message":
                message = decode_trigger_payload(envelope.payload)
                if self.store.is_active_queue_entry(message.id):
                    logger.debug(f"Queue trigger echo dropped: {message.id} ({self.id})")
                    return False
            apply_command(self.store, envelope.command, envelope.payload)
        except ProtocolError as e:
            logger.warning(f"Ignoring command from {envelope.origin}: {e}")
            return False
        return True

    def _on_local_state_changed(self, event: Any) -> None:
        try:
            intent = Intent.from_dict(event)
        except ProtocolError as e:
            logger.warning(f"Ignoring malformed state-changed event: {e}")
            return
        self.handle_command(intent.to_envelope())

    def _on_remote_command(self, event: Any) -> None:
        try:
            envelope = CommandEnvelope.from_dict(event)
        except ProtocolError as e:
            logger.warning(f"Ignoring malformed remote-command event: {e}")
            return
        self.handle_command(envelope)

    # -------------------------------------------------------------------------
    # Display timers
    # -------------------------------------------------------------------------

    def _sync_timers(self, state: StoreState) -> None:
        active = {a.timestamp: a for a in state.active_messages}

        for timestamp in list(self._timers):
            if timestamp not in active:
                self._timers.pop(timestamp).cancel()

        new = [a for t, a in active.items() if t not in self._timers]
        if not new:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, display timers not scheduled")
            return

        for entry in new:
            delay = display_duration(entry.message, state.config)
            self._timers[entry.timestamp] = loop.call_later(
                delay, self._expire, entry.timestamp, entry.message.id
            )
            logger.debug(f"Display timer {delay:.1f}s for {entry.message.id} ({self.id})")

    def _expire(self, timestamp: int, message_id: str) -> None:
        self._timers.pop(timestamp, None)
        self.store.clear_message(timestamp, sync=True, message_id=message_id)
