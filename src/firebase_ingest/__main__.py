"""Firebase input runner. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from config import FirebaseInputConfig, load_config
from core import __version__
from core.errors import ConfigurationError
from core.logging import log_startup_banner, setup_logging
from core.utils import generate_worker_id
from firebase_ingest.plugin import FirebaseInput
from firebase_ingest.signals import setup_shutdown_signal_handlers
from firebase_ingest.sinks import EventSink, QueueSink, StdoutSink, create_json_sink

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

EVENT_QUEUE_SIZE = 1000


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m firebase_ingest",
        description="Retrieve Firebase Realtime Database references as events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Poll or stream per config.yaml, events to stdout
    python -m firebase_ingest --config config.yaml

    # Write events to a JSON Lines file
    python -m firebase_ingest --config config.yaml --output events.jsonl

    # Only validate the configuration
    python -m firebase_ingest --config config.yaml --validate
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.getenv("FIREBASE_INPUT_CONFIG", "config.yaml")),
        help="Path to YAML config with a 'firebase:' section (default: ./config.yaml)",
    )

    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write events to this JSON Lines file instead of stdout",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to the console only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration and exit (0 valid, 1 invalid)",
    )

    return parser.parse_args(argv)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("true", "1", "yes")


def _setup_logging(args: argparse.Namespace, worker_id: str) -> None:
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or "logs")
    # Events go to stdout unless --output is set; keep logs off that stream
    console_stream = sys.stderr if args.output is None else sys.stdout

    setup_logging(
        name="firebase_ingest",
        stage="input",
        log_dir=log_dir,
        json_format=not _env_flag("PLAIN_LOGS"),
        console_level=getattr(logging, args.log_level),
        worker_id=worker_id,
        log_to_stdout=args.log_to_stdout or _env_flag("LOG_TO_STDOUT"),
        console_stream=console_stream,
    )


def validate_config(config_path: Path) -> int:
    try:
        config = load_config(config_path)
        FirebaseInput(config, StdoutSink(), host="validate").start()
    except (FileNotFoundError, ConfigurationError) as e:
        print(f"Configuration invalid: {e}", file=sys.stderr)
        return 1
    print(f"Configuration valid: mode={config.mode}, refs={', '.join(config.refs)}")
    return 0


def build_sink(args: argparse.Namespace, config: FirebaseInputConfig) -> QueueSink:
    """Bounded queue in front of the JSON file or stdout writer."""
    output: EventSink = create_json_sink(args.output) if args.output is not None else StdoutSink()
    return QueueSink(
        maxsize=EVENT_QUEUE_SIZE,
        enqueue_timeout_seconds=config.enqueue_timeout_seconds,
        downstream=output,
    )


async def run(config: FirebaseInputConfig, sink: EventSink) -> None:
    firebase_input = FirebaseInput(config, sink)
    firebase_input.start()

    stop_task: asyncio.Task | None = None

    def request_stop() -> None:
        nonlocal stop_task
        logger.info("Received shutdown signal, stopping input")
        if stop_task is None:
            stop_task = asyncio.create_task(firebase_input.stop(), name="input-stop")

    setup_shutdown_signal_handlers(request_stop)

    await sink.start()
    try:
        await firebase_input.run()
    finally:
        if stop_task is not None:
            await stop_task
        await firebase_input.stop()
        await sink.stop()
        logger.info("Firebase input stopped", extra=firebase_input.stats)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    if args.validate:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
        return validate_config(args.config)

    worker_id = os.getenv("WORKER_ID") or generate_worker_id("firebase-input")
    _setup_logging(args, worker_id)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    log_startup_banner(
        logger,
        "Firebase Input",
        version=__version__,
        worker_id=worker_id,
        mode=config.mode,
        url=config.url,
        schedule=config.schedule,
        queries=", ".join(config.refs),
        output=str(args.output) if args.output else "stdout",
    )

    try:
        asyncio.run(run(config, build_sink(args, config)))
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
