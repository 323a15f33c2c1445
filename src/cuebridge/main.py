"""
Main cuebridge application.
Runs the alignment engine behind the HTTP/WebSocket server.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path

from . import debug_log
from .config import (
    Config,
    get_config_path,
    get_generation_settings,
    get_matching_settings,
    get_merge_settings,
    get_server_settings,
    get_trigger_settings,
    load_config,
    save_config,
)
from .engine import AlignmentEngine
from .generation import API_KEY_ENV, GeminiClient, GenerationClient, resolve_api_key
from .replay import add_replay_arguments, run_replay
from .script_parser import load_script_file
from .server import WebServer

logger = logging.getLogger(__name__)


def create_generation_client(config: Config) -> GenerationClient | None:
    """Build the configured generation client, or None if generation is off."""
    settings = get_generation_settings(config)
    provider: str = settings.get("provider", "gemini")
    if provider == "none":
        logger.info("Script reconstruction disabled by config")
        return None
    if provider != "gemini":
        logger.warning("Unknown generation provider '%s'; reconstruction disabled", provider)
        return None

    api_key: str | None = resolve_api_key(settings.get("api_key"))
    if not api_key:
        logger.warning("%s not set; script reconstruction disabled", API_KEY_ENV)
        return None

    return GeminiClient(
        api_key,
        model=settings.get("model", "gemini-2.5-flash-lite"),
        timeout_s=get_trigger_settings(config).get("request_timeout_s", 10.0)
    )


class CueBridgeApp:
    """
    Main cuebridge application that coordinates the engine and the server.
    """

    def __init__(
        self,
        config: Config,
        script_text: str = "",
        host: str = "127.0.0.1",
        port: int = 8000,
        client: GenerationClient | None = None
    ) -> None:
        self.config: Config = config
        self.host: str = host
        self.port: int = port
        self.client: GenerationClient | None = client

        generation = get_generation_settings(config)
        matching = get_matching_settings(config)
        self.engine: AlignmentEngine = AlignmentEngine(
            script_text,
            client=client,
            matching=matching,
            trigger_settings=get_trigger_settings(config),
            merge_settings=get_merge_settings(config),
            temperature=generation.get("temperature", 0.4),
            max_output_tokens=generation.get("max_output_tokens", 100)
        )
        self.server: WebServer = WebServer(
            self.engine,
            host=host,
            port=port,
            window_size=matching.get("window_size", 20),
            match_threshold=matching.get("match_threshold", 0.8)
        )
        self.running: bool = False

    async def start(self) -> None:
        """Start the server and process transcripts until stopped."""
        print("Starting cuebridge...")
        await self.server.start()
        self.running = True

        print("\n✓ cuebridge ready!")
        print(f"  Connect to ws://{self.host}:{self.port}/ws")
        if self.client is None:
            print("  Script reconstruction is disabled")
        print("  Press Ctrl+C to stop\n")

        engine_task = asyncio.create_task(self.engine.run())
        try:
            await engine_task
        except asyncio.CancelledError:
            logger.debug("Engine task cancelled")

    async def stop(self) -> None:
        """Stop the cuebridge application."""
        print("\nStopping cuebridge...")
        self.running = False
        await self.engine.stop()
        await self.server.stop()
        if self.client is not None:
            await self.client.close()
        print("cuebridge stopped.")


def main() -> None:
    """Main entry point."""
    # Configure logging - minimal console output
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    # Load config first to use as defaults
    config: Config = load_config()
    server_settings = get_server_settings(config)

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="cuebridge - live speech-to-script alignment with gap reconstruction"
    )

    parser.add_argument(
        "--script", "-s",
        type=Path,
        default=config.get("script_path"),
        help="Script file to load at startup (plain text or Markdown)"
    )

    parser.add_argument(
        "--host",
        default=server_settings.get("host", "127.0.0.1"),
        help="Web server host (default: from config or 127.0.0.1)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=server_settings.get("port", 8000),
        help="Web server port (default: from config or 8000)"
    )

    parser.add_argument(
        "--no-generation",
        action="store_true",
        help="Disable script reconstruction (alignment only)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show informational log messages"
    )

    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Save current CLI options to config file and exit"
    )

    parser.add_argument(
        "--debug-log",
        action="store_true",
        help="Enable debug logging to ./logs/"
    )

    subparsers = parser.add_subparsers(dest="command")
    replay_parser = subparsers.add_parser(
        "replay",
        help="Replay a transcript file against a script and log the alignment"
    )
    add_replay_arguments(replay_parser)

    args: argparse.Namespace = parser.parse_args()

    if args.verbose:
        logging.getLogger("cuebridge").setLevel(logging.INFO)

    if args.command == "replay":
        run_replay(args)
        return

    if args.save_config:
        config["server"]["host"] = args.host
        config["server"]["port"] = args.port
        config["script_path"] = str(args.script) if args.script else None
        if args.no_generation:
            config["generation"]["provider"] = "none"

        if save_config(config):
            print(f"Configuration saved to {get_config_path()}")
        return

    # Enable debug logging if requested
    if args.debug_log:
        debug_log.enable()
        print("Debug logging enabled (logs will be saved to ./logs/)")

    script_text: str = ""
    if args.script:
        try:
            script_text = load_script_file(Path(args.script))
        except OSError as e:
            print(f"Error loading script: {e}")
            return

    if args.no_generation:
        config["generation"]["provider"] = "none"
    client: GenerationClient | None = create_generation_client(config)

    # Create and run the app
    app: CueBridgeApp = CueBridgeApp(
        config,
        script_text=script_text,
        host=args.host,
        port=args.port,
        client=client
    )

    # Handle shutdown gracefully
    loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def shutdown(sig: int, frame: object) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM) gracefully."""
        print("\nReceived shutdown signal...")
        app.running = False
        # Stopping the engine ends app.start()
        loop.call_soon_threadsafe(lambda: loop.create_task(app.engine.stop()))

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        app.running = False
    finally:
        # Ensure clean shutdown
        with contextlib.suppress(Exception):
            loop.run_until_complete(app.stop())
        # Cancel any remaining tasks
        pending: set[asyncio.Task[object]] = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        # Allow cancelled tasks to complete
        if pending:
            loop.run_until_complete(asyncio.gather(
                *pending, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
