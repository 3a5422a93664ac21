"""Command-line entry point: ``transcript-relay``."""

import argparse
import asyncio
import logging
import signal
import sys

from . import __version__
from .config import ConfigError, RelayConfig, load_config
from .logging_manager import LoggingManager
from .messenger import LogMessenger, WebhookMessenger
from .monitoring_service import TranscriptMonitor
from .terminal import TmuxTerminalSource


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transcript-relay",
        description="Relay a coding agent's session transcript to a chat channel.",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--project", dest="project_path", help="Working directory of the monitored agent")
    parser.add_argument("--tmux-session", dest="tmux_session", help="tmux session the agent runs in")
    parser.add_argument("--webhook", dest="webhook_url", help="Webhook URL to deliver to (default: log only)")
    parser.add_argument("--log-level", dest="log_level", help="Console log level")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def run(config: RelayConfig, once: bool = False, logging_manager: LoggingManager | None = None) -> None:
    """Run the monitor until SIGINT/SIGTERM, or for one cycle with ``once``."""
    component_logger = (
        logging_manager.get_component_logger("monitor")
        if logging_manager is not None
        else logging.getLogger("transcript_relay.monitor")
    )
    if config.webhook_url:
        messenger = WebhookMessenger(config.webhook_url, logger=component_logger.getChild("webhook"))
    else:
        messenger = LogMessenger(logger=component_logger.getChild("messages"))
    terminal = (
        TmuxTerminalSource(config.tmux_session, logger=component_logger.getChild("tmux"))
        if config.tmux_session
        else None
    )

    monitor = TranscriptMonitor(config, messenger, terminal=terminal, logger=component_logger)
    try:
        if once:
            await monitor.check_and_process()
            return

        stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_requested.set)

        await monitor.start()
        await stop_requested.wait()
    finally:
        await monitor.stop()
        if isinstance(messenger, WebhookMessenger):
            await messenger.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    overrides = {
        "project_path": args.project_path,
        "tmux_session": args.tmux_session,
        "webhook_url": args.webhook_url,
        "log_level": args.log_level,
    }
    try:
        config = load_config(args.config, overrides=overrides)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging_manager = LoggingManager(log_dir=config.log_dir, log_level=config.log_level)
    try:
        asyncio.run(run(config, once=args.once, logging_manager=logging_manager))
    except KeyboardInterrupt:
        pass
    finally:
        logging_manager.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
