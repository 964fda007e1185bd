"""
Rebuild Glue
============

Turns watcher notifications into rebuild requests and runs the site
build command when something changed.
"""

import subprocess
import threading
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path, PurePath
from typing import FrozenSet, List, Optional, Sequence, Set

from bakewatch.monitoring.watcher import WatcherListener
from bakewatch.utils.exceptions import ErrorCode, RebuildError
from bakewatch.utils.logging_config import Timer, get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATTERNS = ["jbake.properties", "*.yaml", "*.yml", "*.toml"]


@dataclass(frozen=True)
class ChangeSet:
    """Changes collected since the last rebuild.

    Attributes:
        paths: Relative paths reported individually.
        config_changed: A configuration file changed, or possibly did.
        refreshed: A coalesced refresh was received.
    """

    paths: FrozenSet[str]
    config_changed: bool = False
    refreshed: bool = False


class ChangeTracker(WatcherListener):
    """Collects changes from the watcher until the build loop consumes them.

    Safe to share between several watched roots; callbacks arrive on the
    poller and timer threads.
    """

    def __init__(self, config_patterns: Optional[Sequence[str]] = None):
        self.config_patterns = list(
            DEFAULT_CONFIG_PATTERNS if config_patterns is None else config_patterns
        )
        self._lock = threading.Lock()
        self._paths: Set[str] = set()
        self._changed = False
        self._config_changed = False
        self._refreshed = False

    @property
    def has_changes(self) -> bool:
        with self._lock:
            return self._changed

    def is_config_file(self, rel_path: str) -> bool:
        """Check if a changed path names a configuration file."""
        name = PurePath(rel_path).name
        return any(fnmatch(name, pattern) for pattern in self.config_patterns)

    def consume(self) -> Optional[ChangeSet]:
        """Return the pending changes and reset, or None if nothing changed."""
        with self._lock:
            if not self._changed:
                return None
            changes = ChangeSet(
                paths=frozenset(self._paths),
                config_changed=self._config_changed,
                refreshed=self._refreshed,
            )
            self._paths = set()
            self._changed = False
            self._config_changed = False
            self._refreshed = False
        return changes

    def on_overflow_queued(self) -> None:
        logger.debug("Too many changes at once, waiting for them to settle")

    def on_refresh(self) -> None:
        # Anything may have changed, configuration included
        with self._lock:
            self._changed = True
            self._refreshed = True
            self._config_changed = True

    def on_created(self, rel_path: str) -> None:
        self._record(rel_path)

    def on_deleted(self, rel_path: str) -> None:
        self._record(rel_path)

    def on_modified(self, rel_path: str) -> None:
        self._record(rel_path)

    def _record(self, rel_path: str) -> None:
        logger.debug(f"Changed: {rel_path}")
        is_config = self.is_config_file(rel_path)
        with self._lock:
            self._changed = True
            self._paths.add(rel_path)
            if is_config:
                self._config_changed = True


class SiteBuilder:
    """Runs the build command, or the reload command after config changes."""

    def __init__(
        self,
        command: Sequence[str],
        reload_command: Optional[Sequence[str]] = None,
        working_directory: Optional[Path] = None,
        check: bool = False,
    ):
        """Initialize the builder.

        Args:
            command: Argument list run on every rebuild.
            reload_command: Argument list run instead when configuration
                changed. Falls back to ``command`` when empty.
            working_directory: Directory the commands run in.
            check: Raise RebuildError on failure instead of logging it.
        """
        self.command = list(command)
        self.reload_command = list(reload_command or [])
        self.working_directory = working_directory
        self.check = check

    def select_command(self, changes: Optional[ChangeSet] = None) -> List[str]:
        if changes is not None and changes.config_changed and self.reload_command:
            return self.reload_command
        return self.command

    def build(self, changes: Optional[ChangeSet] = None) -> int:
        """Run the build once.

        Args:
            changes: What changed since the last build, if known.

        Returns:
            Exit code of the command; 127 if it could not be started.

        Raises:
            RebuildError: On failure when ``check`` is set.
        """
        command = self.select_command(changes)
        if not command:
            logger.warning("No build command configured, nothing to run")
            return 0

        logger.info(f"Running: {' '.join(command)}")
        try:
            with Timer(logger, "rebuild"):
                proc = subprocess.run(command, cwd=self.working_directory)
        except OSError as e:
            logger.error(f"Could not start build command: {e}")
            if self.check:
                raise RebuildError(
                    "Could not start build command",
                    command=command,
                    error_code=ErrorCode.REBUILD_LAUNCH_FAILED,
                    cause=e,
                ) from e
            return 127

        if proc.returncode != 0:
            logger.error(f"Build failed with code {proc.returncode}")
            if self.check:
                raise RebuildError(
                    "Build command failed",
                    command=command,
                    returncode=proc.returncode,
                )
        else:
            logger.info("Build completed")
        return proc.returncode
