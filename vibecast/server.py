"""Reference backend: the authoritative state behind every surface.

Endpoints:
  GET  /api/events   server-sent events: ``state`` snapshots and ``command`` echoes
  POST /api/command  apply one command ``{command, payload}``
  GET  /api/state    current snapshot
  GET  /api/status   liveness check
"""

from __future__ import annotations

import asyncio
import json
import socket
from pathlib import Path
from typing import Any, AsyncIterator

from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from .logging import get_logger, log_command
from .models import AppConfiguration, ConfigurationError, load_config_file, save_config_file
from .protocol import CommandEnvelope, ProtocolError, apply_command, command_for, new_event_id
from .store import Store
from .transport import format_sse_event, now_ms

logger = get_logger("server")

BACKEND_ORIGIN = "backend"
KEEPALIVE_INTERVAL = 15.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class Backend:
    """Authoritative Store plus the set of connected event streams.

    Commands are applied one at a time, in arrival order. After each one
    every stream receives the command echo, then the echoes of any
    queue-driven triggers it caused, then a full ``state`` snapshot.

    Args:
        config: Initial configuration (built-in defaults when None)
        config_path: File the configuration is persisted to
        persist: Save ``config_path`` after every applied command
    """

    def __init__(
        self,
        config: AppConfiguration | None = None,
        config_path: str | Path | None = None,
        persist: bool = False,
    ):
        self.config_path = Path(config_path) if config_path else None
        self.persist = persist and self.config_path is not None
        self._pending: list[CommandEnvelope] = []
        self._subscribers: set[asyncio.Queue] = set()
        self.store = Store(config, emit=self._on_store_intent, authoritative=True, name=BACKEND_ORIGIN)

    @classmethod
    def from_file(cls, config_path: str | Path | None, persist: bool = False) -> "Backend":
        """Load the configuration file if it exists, else start from defaults.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
        """
        config = None
        if config_path and Path(config_path).exists():
            config = load_config_file(config_path)
            logger.info(f"Loaded configuration from {config_path}")
        elif config_path:
            logger.info(f"No configuration at {config_path}, using defaults")
        backend = cls(config, config_path=config_path, persist=persist)
        if backend.persist and config is None:
            backend.save()
        return backend

    def _on_store_intent(self, tag: str, payload: Any) -> None:
        self._pending.append(
            CommandEnvelope(
                command=command_for(tag),
                payload=payload,
                origin=BACKEND_ORIGIN,
                timestamp=now_ms(),
                event_id=new_event_id(),
            )
        )

    def snapshot(self) -> dict[str, Any]:
        return self.store.snapshot().to_dict()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        logger.info(f"Event stream opened ({len(self._subscribers)} connected)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        logger.info(f"Event stream closed ({len(self._subscribers)} connected)")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def broadcast(self, event: str, data: Any) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait((event, data))

    def apply(self, envelope: CommandEnvelope) -> Any:
        """Apply a command and fan the result out to every stream.

        Raises:
            ProtocolError: If the command is unknown or malformed
        """
        if envelope.timestamp is None:
            envelope.timestamp = now_ms()
        if envelope.event_id is None:
            envelope.event_id = new_event_id()

        self._pending = []
        try:
            result = apply_command(self.store, envelope.command, envelope.payload)
        finally:
            caused, self._pending = self._pending, []

        for echo in [envelope] + caused:
            self.broadcast("command", echo.to_dict())
        self.broadcast("state", self.snapshot())

        if self.persist:
            self.save()
        return result

    def save(self) -> None:
        if self.config_path is None:
            return
        try:
            save_config_file(self.store.get_configuration(), self.config_path)
        except OSError as e:
            logger.error(f"Failed to save configuration to {self.config_path}: {e}")


async def event_stream(backend: Backend, keepalive: float = KEEPALIVE_INTERVAL) -> AsyncIterator[str]:
    """Encoded events for one stream: a snapshot first, then every change."""
    queue = backend.subscribe()
    try:
        yield format_sse_event("state", backend.snapshot())
        while True:
            try:
                event, data = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield format_sse_event(event, data)
    finally:
        backend.unsubscribe(queue)


# =============================================================================
# Routes
# =============================================================================


async def events(request: Request) -> StreamingResponse:
    """Authoritative event stream."""
    backend: Backend = request.app.state.backend
    return StreamingResponse(
        event_stream(backend),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def command(request: Request) -> JSONResponse:
    """Apply one command from a surface."""
    backend: Backend = request.app.state.backend

    try:
        body = await request.json()
    except json.JSONDecodeError:
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)

    try:
        envelope = CommandEnvelope.from_dict(body)
        log_command(
            logger, envelope.command, envelope.payload, surface=envelope.origin, message_id=envelope.message_id
        )
        backend.apply(envelope)
    except ProtocolError as e:
        logger.warning(f"Rejected command: {e}")
        return JSONResponse({"error": str(e)}, status_code=400)

    return JSONResponse({"status": "ok"})


async def state(request: Request) -> JSONResponse:
    """Current snapshot."""
    backend: Backend = request.app.state.backend
    return JSONResponse(backend.snapshot())


async def status(request: Request) -> JSONResponse:
    """Liveness check."""
    backend: Backend = request.app.state.backend
    info = backend.store.state.server_info
    body: dict[str, Any] = {"status": "online"}
    if info is not None:
        body["serverInfo"] = info.to_dict()
    return JSONResponse(body)


def create_app(backend: Backend | None = None) -> Starlette:
    """Create the Starlette application."""
    routes = [
        Route("/api/events", events),
        Route("/api/command", command, methods=["POST"]),
        Route("/api/state", state),
        Route("/api/status", status),
    ]

    app = Starlette(routes=routes)
    app.state.backend = backend or Backend()

    # Add CORS middleware for remotes on the LAN
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


def local_ip() -> str:
    """Best-effort LAN address for remotes to connect to."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; this only selects the outbound interface
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


def run_server(
    host: str = "0.0.0.0",
    port: int = 8080,
    config_path: str | Path | None = None,
    persist: bool = False,
    log_level: str = "info",
) -> None:
    """Run the backend.

    Raises:
        ConfigurationError: If the configuration file cannot be parsed
    """
    import uvicorn

    try:
        backend = Backend.from_file(config_path, persist=persist)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise

    backend.store.set_server_info(local_ip(), port)
    logger.info(f"Starting VibeCast backend on http://{host}:{port}")
    if backend.persist:
        logger.info(f"Persisting configuration to {backend.config_path}")

    uvicorn.run(
        create_app(backend),
        host=host,
        port=port,
        log_level=log_level,
    )
