"""
bakewatch - Main Application
============================

Builds a site once, then watches its source directories and runs the
build again whenever something changed.
"""

import dataclasses
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from bakewatch.config import Config
from bakewatch.monitoring import WatcherService
from bakewatch.rebuild import ChangeTracker, SiteBuilder
from bakewatch.utils.exceptions import WatchSetupError
from bakewatch.utils.logging_config import setup_logging, get_logger, LoggingConfig

logger = get_logger(__name__)


class BakeWatch:
    """Main orchestrator: watcher service, change tracking and rebuilds."""

    def __init__(self, config: Config):
        """Initialize from a loaded configuration.

        Args:
            config: Watcher and build configuration.
        """
        self.config = config
        self.watcher = WatcherService.from_config(config.watcher)
        self.tracker = ChangeTracker(config.build.config_patterns)
        self.builder = SiteBuilder(
            config.build.command,
            reload_command=config.build.reload_command,
            working_directory=config.build.working_directory,
        )
        self._stop_event = threading.Event()
        self.builds = 0

    def start(self) -> int:
        """Register every configured directory and start the watcher.

        Returns:
            Number of directories being watched.
        """
        for directory in self.config.watcher.watch_directories:
            try:
                self.watcher.add_watch(
                    directory,
                    self.tracker,
                    recursive=self.config.watcher.recursive,
                    skip_hidden=self.config.watcher.skip_hidden,
                )
            except WatchSetupError as e:
                logger.warning(f"Cannot watch {directory}, skipping: {e}")

        watched = len(self.watcher.watches)
        if watched:
            self.watcher.start()
        return watched

    def run(self) -> None:
        """Build, then rebuild on changes until ``stop()`` is called."""
        if self.config.build.build_on_start:
            self._build(None)

        logger.info("Watching for changes, stop with Ctrl + C")
        while not self._stop_event.wait(self.config.build.check_interval):
            self.check()

    def check(self) -> bool:
        """Rebuild if something changed since the last check.

        Returns:
            True if a build ran.
        """
        changes = self.tracker.consume()
        if changes is None:
            return False

        if changes.config_changed:
            logger.info("Configuration may have changed, reloading")
        else:
            logger.info(f"Refreshing after {len(changes.paths)} change(s)")
        self._build(changes)
        return True

    def request_stop(self) -> None:
        """Make ``run()`` return after the current check."""
        self._stop_event.set()

    def stop(self) -> None:
        """Stop the loop and shut the watcher down."""
        if self.watcher.stopped:
            return
        self._stop_event.set()
        logger.info("Shutting down...")
        self.watcher.stop()

    def _build(self, changes) -> None:
        self.builder.build(changes)
        self.builds += 1


def build_config(args) -> Config:
    """Merge command line overrides into the loaded configuration."""
    config = Config.load(Path(args.config) if args.config else None)

    watcher_overrides = {}
    if args.directories:
        watcher_overrides["watch_directories"] = [
            Path(d).expanduser() for d in args.directories
        ]
    if args.poll_interval is not None:
        watcher_overrides["poll_interval"] = args.poll_interval
    if args.debounce is not None:
        watcher_overrides["debounce_seconds"] = args.debounce
    if args.no_skip_hidden:
        watcher_overrides["skip_hidden"] = False
    if args.no_recursive:
        watcher_overrides["recursive"] = False

    build_overrides = {}
    if args.command:
        build_overrides["command"] = args.command
    if args.reload_command:
        build_overrides["reload_command"] = args.reload_command
    if args.no_initial_build:
        build_overrides["build_on_start"] = False

    # replace() re-runs validation on the new values
    return Config(
        watcher=dataclasses.replace(config.watcher, **watcher_overrides),
        build=dataclasses.replace(config.build, **build_overrides),
    )


def create_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="bakewatch",
        description="Rebuild a static site whenever its sources change"
    )
    parser.add_argument(
        'directories',
        nargs='*',
        help='Directories to watch (default: from config)'
    )
    parser.add_argument(
        '--config', '-c',
        help='Path to a YAML config file (default: bakewatch.yaml)'
    )
    parser.add_argument(
        '--command', '-x',
        help='Build command to run on changes'
    )
    parser.add_argument(
        '--reload-command',
        help='Command to run instead when a configuration file changed'
    )
    parser.add_argument(
        '--poll-interval',
        type=float,
        help='Seconds between event polls (default: 0.1)'
    )
    parser.add_argument(
        '--debounce',
        type=float,
        help='Quiet period in seconds before a bulk refresh (default: 0.4)'
    )
    parser.add_argument(
        '--no-skip-hidden',
        action='store_true',
        help='Also report changes to dot files and directories'
    )
    parser.add_argument(
        '--no-recursive',
        action='store_true',
        help='Only watch the top level of each directory'
    )
    parser.add_argument(
        '--no-initial-build',
        action='store_true',
        help='Do not build before starting to watch'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--json-logs',
        action='store_true',
        help='Log as JSON lines'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with CLI support."""
    args = create_parser().parse_args(argv)

    setup_logging(LoggingConfig(
        level="DEBUG" if args.verbose else "INFO",
        json_format=args.json_logs,
    ))

    config = build_config(args)
    app = BakeWatch(config)

    if not app.start():
        logger.error("No valid directories to watch")
        app.stop()
        return 2

    def signal_handler(sig, frame):
        app.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        app.run()
    except KeyboardInterrupt:
        pass
    finally:
        app.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
