"""Entry point for running as `python -m vibecast`.

Commands:
  python -m vibecast                           # Start the backend (port 8080)
  python -m vibecast follow                    # Follow the event stream headlessly
  python -m vibecast send <command> [json]     # Send one command
  python -m vibecast check-config <path>       # Print a normalized configuration
"""

import argparse
import sys


def main() -> None:
    """Parse command and dispatch."""
    parser = argparse.ArgumentParser(
        description="VibeCast state sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  serve         (default) Start the backend on port 8080
  follow        Connect as a headless surface and log every change
  send          Send one command, e.g. send play-folder '{"folderId": "party-countdown"}'
  check-config  Load a configuration file and print its normalized form

Examples:
  # Start the backend, persisting changes to config.json
  python -m vibecast serve --config config.json --persist

  # Watch what the backend is doing
  python -m vibecast follow -v

  # Trigger a message from the shell
  python -m vibecast send trigger-message '"Happy birthday!"'
        """,
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=["serve", "follow", "send", "check-config"],
        default="serve",
        help="Command to run (default: serve)",
    )
    parser.add_argument(
        "args",
        nargs="*",
        help="Command arguments",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for DEBUG, -vv for TRACE)",
    )
    parser.add_argument(
        "--host",
        help="Host to bind to (default: VIBECAST_HOST or 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to bind to (default: VIBECAST_PORT or 8080)",
    )
    parser.add_argument(
        "--config",
        help="Configuration file to load at startup",
    )
    parser.add_argument(
        "--persist",
        action="store_true",
        help="Save the configuration file after every change",
    )
    parser.add_argument(
        "--api-base",
        help="Backend URL for follow/send (default: VIBECAST_API_BASE)",
    )
    parser.add_argument(
        "--log-file",
        help="Write structured JSON logs to file",
    )

    args = parser.parse_args()

    from .settings import Settings, SettingsError

    try:
        settings = Settings.from_env()
    except SettingsError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.command == "follow":
        run_follow(args, settings)
    elif args.command == "send":
        run_send(args, settings)
    elif args.command == "check-config":
        run_check_config(args, settings)
    else:
        run_serve(args, settings)


def _setup_logging(args: argparse.Namespace, settings) -> None:
    from pathlib import Path

    from .logging import setup_logging

    log_file = args.log_file or settings.log_file
    setup_logging(
        verbosity=args.verbose,
        log_file=Path(log_file) if log_file else None,
    )


def run_serve(args: argparse.Namespace, settings) -> None:
    """Run the backend."""
    _setup_logging(args, settings)

    from .logging import get_logger
    from .models import ConfigurationError
    from .server import run_server

    logger = get_logger("main")
    if args.verbose >= 2:
        logger.debug("Very verbose logging enabled (TRACE level)")
    elif args.verbose == 1:
        logger.debug("Verbose logging enabled (DEBUG level)")

    try:
        run_server(
            host=args.host or settings.host,
            port=args.port or settings.port,
            config_path=args.config or settings.config_path,
            persist=args.persist,
            log_level="debug" if args.verbose else "info",
        )
    except ConfigurationError:
        sys.exit(1)


def run_follow(args: argparse.Namespace, settings) -> None:
    """Follow the backend as a headless surface."""
    import asyncio

    from .logging import get_logger
    from .surface import Surface

    _setup_logging(args, settings)
    logger = get_logger("main")
    api_base = args.api_base or settings.api_base

    def on_change(state) -> None:
        active = state.active_message
        queue = state.folder_playback_queue
        logger.info(
            f"visualization={state.config.active_visualization} "
            f"message={active.text if active else None!r} "
            f"queue={queue.folder_id if queue else None}"
        )

    async def follow() -> None:
        surface = Surface(
            "follow",
            api_base,
            reconnect_delay=settings.reconnect_delay,
            command_timeout=settings.command_timeout,
        )
        surface.store.subscribe(on_change)
        logger.info(f"Following {api_base}")
        try:
            await surface.run()
        finally:
            await surface.close()

    try:
        asyncio.run(follow())
    except KeyboardInterrupt:
        pass


def run_send(args: argparse.Namespace, settings) -> None:
    """Send one command and print the response."""
    import asyncio
    import json

    from .protocol import is_known_command
    from .transport import CommandClient, TransportError

    _setup_logging(args, settings)

    if not args.args:
        print("Error: send needs a command name", file=sys.stderr)
        sys.exit(2)
    command = args.args[0]
    if not is_known_command(command):
        print(f"Error: unknown command {command!r}", file=sys.stderr)
        sys.exit(2)
    try:
        payload = json.loads(args.args[1]) if len(args.args) > 1 else {}
    except json.JSONDecodeError as e:
        print(f"Error: payload is not valid JSON: {e}", file=sys.stderr)
        sys.exit(2)

    async def send() -> dict:
        client = CommandClient(
            args.api_base or settings.api_base,
            origin="cli",
            timeout=settings.command_timeout,
        )
        try:
            return await client.send(client.envelope(command, payload))
        finally:
            await client.close()

    try:
        response = asyncio.run(send())
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(response))


def run_check_config(args: argparse.Namespace, settings) -> None:
    """Print the normalized form of a configuration file."""
    import json

    from .models import ConfigurationError, load_config_file
    from .normalize import normalize_configuration

    _setup_logging(args, settings)

    path = args.args[0] if args.args else (args.config or settings.config_path)
    if not path:
        print("Error: check-config needs a file path", file=sys.stderr)
        sys.exit(2)

    try:
        config = load_config_file(path)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    normalized = normalize_configuration(config)
    if normalized.to_dict() != config.to_dict():
        print("Configuration was normalized", file=sys.stderr)
    print(json.dumps(normalized.to_dict(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
