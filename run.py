#!/usr/bin/env python3
"""
Project Assistant - Backend Supervisor

Starts the packaged backend service before the UI is shown, captures its output
into a run log, and stops it again when the UI window goes away.

Usage:
    python run.py                    # Launch backend, wait until reachable, open the UI
    python run.py --detached         # Kick off the application executable and exit
    python run.py --check-only       # Verify runtime libraries and files, start nothing
    python run.py --readiness delay  # Use the fixed warm-up wait instead of a health check
    python run.py --no-browser       # Do not open the UI in the system browser

Layout (relative to the application root):
    service_data/                    Fallback copies of the runtime libraries
    service_data/jre/bin/java        Packaged Java runtime
    service_data/service/*.jar       Backend archive
    service_data/service/conf/       Backend configuration (application.yml)
    service_data/logs/               Backend's own log
    data/                            Persistent storage

Environment Variables:
    - ASSISTANT_APP_ROOT: Application root (default: current directory)
    - ASSISTANT_BACKEND_PORT: Backend port (default: 8080)
    - ASSISTANT_READINESS_MODE: "health" (default) or "delay"
    - ASSISTANT_SHUTDOWN_TIMEOUT: Seconds to wait after the termination request (0 = don't wait)
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from pydantic import ValidationError

from supervisor.config import Settings
from supervisor.dependencies import DependencyResolver
from supervisor.events import EventChannel, SignalHandler
from supervisor.lifecycle import LifecycleCoordinator
from supervisor.output_logger import OutputLogger
from supervisor.window import BrowserWindow

logger = logging.getLogger("run")

PLAIN_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
JSON_LOG_FORMAT = '{"time":"%(asctime)s","level":"%(levelname)s","name":"%(name)s","message":"%(message)s"}'


def configure_logging(level: str, json_logs: bool = False) -> None:
    """Console logging for the supervisor itself."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=JSON_LOG_FORMAT if json_logs else PLAIN_LOG_FORMAT,
    )


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        description='Project Assistant - Backend Supervisor',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run.py                    # Start the backend and open the UI
  python run.py --detached         # Start the application executable and exit
  python run.py --check-only       # Run checks without starting anything
  python run.py --port 9090        # Backend on a different port
        """
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        '--detached',
        action='store_true',
        help='Spawn the application executable fire-and-forget, then exit'
    )
    mode_group.add_argument(
        '--check-only',
        action='store_true',
        help='Resolve runtime libraries and check required files, do not start anything'
    )

    parser.add_argument(
        '--app-root',
        type=Path,
        default=None,
        help='Application root directory (default: current directory)'
    )
    parser.add_argument(
        '--port',
        type=int,
        default=None,
        help='Backend port (default: 8080)'
    )
    parser.add_argument(
        '--readiness',
        choices=['delay', 'health'],
        default=None,
        help='How to decide the backend is reachable (default: health)'
    )
    parser.add_argument(
        '--startup-timeout',
        type=float,
        default=None,
        help='Health check timeout in seconds (default: 60)'
    )
    parser.add_argument(
        '--no-browser',
        action='store_true',
        help='Do not open the UI in the system browser'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        help='Console log level (default: info)'
    )
    parser.add_argument(
        '--json-logs',
        action='store_true',
        help='Emit console logs as JSON lines'
    )

    return parser


def build_settings(args: argparse.Namespace) -> Settings:
    """Environment/.env settings with command-line overrides applied."""
    overrides = {}
    if args.app_root is not None:
        overrides['app_root'] = args.app_root.resolve()
    if args.port is not None:
        overrides['backend_port'] = args.port
    if args.readiness is not None:
        overrides['readiness_mode'] = args.readiness
    if args.startup_timeout is not None:
        overrides['health_timeout'] = args.startup_timeout
    if args.no_browser:
        overrides['open_browser'] = False
    if args.log_level is not None:
        overrides['log_level'] = args.log_level
    return Settings(**overrides)


def run_checks(settings: Settings, log: OutputLogger) -> bool:
    """Resolve runtime libraries and report on every file the backend launch needs."""
    DependencyResolver(log).resolve(settings.runtime_dependencies())

    required = [settings.java_executable, settings.jar_file, settings.config_file]

    ok = True
    for path in required:
        if path.is_file():
            log.info(f"Found {path}")
        else:
            log.error(f"Not found: {path}")
            ok = False
    return ok


def log_environment(settings: Settings, log: OutputLogger) -> None:
    log.info(f"Interpreter: {sys.executable}")
    log.info(f"Working directory: {os.getcwd()}")
    log.info(f"Application root: {settings.app_root}")
    log.info(f"service_data directory: {settings.service_data_dir}")
    log.info(f"data directory: {settings.data_dir}")
    log.info(f"Java executable: {settings.java_executable}")
    log.info(f"Backend archive: {settings.jar_file}")


async def main() -> int:
    """Main entry point."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        settings = build_settings(args)
    except ValidationError as e:
        configure_logging('info', args.json_logs)
        logger.error("Invalid configuration:\n%s", e)
        return 2

    configure_logging(settings.log_level, args.json_logs)

    log_path = settings.launcher_log_path if args.detached else settings.log_path
    log = OutputLogger(log_path)
    log.start_run()

    if args.check_only:
        ok = run_checks(settings, log)
        log.close()
        return 0 if ok else 1

    channel = EventChannel()
    signal_handler = SignalHandler(channel, asyncio.get_running_loop())
    signal_handler.setup()

    if args.detached:
        spec = settings.build_app_spec()
        window = None
        log.info("Starting Project Assistant")
    else:
        log_environment(settings, log)
        settings.ensure_directories(log)
        spec = settings.build_backend_spec()
        window = BrowserWindow(channel, open_browser=settings.open_browser)

    coordinator = LifecycleCoordinator(
        spec,
        settings.runtime_dependencies(),
        log,
        channel=channel,
        probe=settings.build_probe(),
        window=window,
        ui_url=settings.api_url,
        shutdown_timeout=settings.shutdown_timeout,
        flush_timeout=settings.flush_timeout,
        detached_linger=settings.detached_linger_seconds,
    )

    try:
        status = await coordinator.run()
    except Exception:
        logger.exception("Supervisor failed")
        return 1
    finally:
        signal_handler.restore()

    if args.detached:
        print(f"Project Assistant is starting, see {log_path} for details")
    return status


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        # Graceful exit on Ctrl+C
        sys.exit(0)


if __name__ == '__main__':
    cli()
