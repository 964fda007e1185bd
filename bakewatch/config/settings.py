"""
Configuration Management System
===============================

Provides dataclass-based configuration with YAML file loading support.
All settings are validated and have sensible defaults.
"""

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Any, Dict, Union
import yaml
import logging

from bakewatch.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _as_command(value: Union[str, List[str], None]) -> List[str]:
    """Normalise a command given as a string or an argument list."""
    if not value:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    return [str(part) for part in value]


def _positive(value: Any, key: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid value for {key}: {value!r}",
            config_key=key,
            expected_type="float",
            cause=e,
        )
    if number <= 0:
        raise ConfigurationError(
            f"{key} must be positive, got {number}",
            config_key=key,
        )
    return number


@dataclass
class WatcherConfig:
    """Filesystem watcher configuration.

    Attributes:
        watch_directories: Directories to monitor for changes.
        poll_interval: Seconds between two poller ticks.
        debounce_seconds: Quiet period before a coalesced refresh fires.
        recursive: Whether to watch subdirectories.
        skip_hidden: Ignore paths with a segment starting with a dot.
        buffer_size: Raw events buffered per root before overflowing.
    """
    watch_directories: List[Path] = field(default_factory=lambda: [
        Path("src/main/jbake")
    ])
    poll_interval: float = 0.1
    debounce_seconds: float = 0.4
    recursive: bool = True
    skip_hidden: bool = True
    buffer_size: int = 512

    def __post_init__(self):
        self.poll_interval = _positive(self.poll_interval, "poll_interval")
        self.debounce_seconds = _positive(self.debounce_seconds, "debounce_seconds")
        if int(self.buffer_size) < 1:
            raise ConfigurationError(
                f"buffer_size must be at least 1, got {self.buffer_size}",
                config_key="buffer_size",
            )
        self.buffer_size = int(self.buffer_size)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatcherConfig":
        """Create WatcherConfig from dictionary."""
        if not data:
            return cls()

        watch_dirs = data.get("watch_directories", [])
        # Expand ~ in paths
        watch_dirs = [Path(d).expanduser() for d in watch_dirs]

        return cls(
            watch_directories=watch_dirs or cls().watch_directories,
            poll_interval=data.get("poll_interval", cls.poll_interval),
            debounce_seconds=data.get("debounce_seconds", cls.debounce_seconds),
            recursive=bool(data.get("recursive", cls.recursive)),
            skip_hidden=bool(data.get("skip_hidden", cls.skip_hidden)),
            buffer_size=data.get("buffer_size", cls.buffer_size),
        )


@dataclass
class BuildConfig:
    """Rebuild command configuration.

    Attributes:
        command: Command run on every change.
        reload_command: Command run instead when a configuration file changed.
        working_directory: Directory the commands run in.
        config_patterns: File name patterns that count as configuration.
        check_interval: Seconds between two checks for pending changes.
        build_on_start: Run the command once before watching.
    """
    command: List[str] = field(default_factory=list)
    reload_command: List[str] = field(default_factory=list)
    working_directory: Optional[Path] = None
    config_patterns: List[str] = field(default_factory=lambda: [
        "jbake.properties", "*.yaml", "*.yml", "*.toml"
    ])
    check_interval: float = 1.0
    build_on_start: bool = True

    def __post_init__(self):
        self.command = _as_command(self.command)
        self.reload_command = _as_command(self.reload_command)
        self.check_interval = _positive(self.check_interval, "check_interval")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildConfig":
        """Create BuildConfig from dictionary."""
        if not data:
            return cls()

        working_dir = data.get("working_directory")
        return cls(
            command=data.get("command", []),
            reload_command=data.get("reload_command", []),
            working_directory=Path(working_dir).expanduser() if working_dir else None,
            config_patterns=data.get("config_patterns", cls().config_patterns),
            check_interval=data.get("check_interval", cls.check_interval),
            build_on_start=bool(data.get("build_on_start", cls.build_on_start)),
        )


@dataclass
class Config:
    """Main configuration container.

    Aggregates all configuration sections and provides loading from YAML.
    """
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    build: BuildConfig = field(default_factory=BuildConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file.

        Args:
            config_path: Path to the configuration file. If None, looks for
                        bakewatch.yaml in the current directory.

        Returns:
            Config instance with loaded settings.

        Raises:
            ConfigurationError: If a value is out of range.
            yaml.YAMLError: If config file is not valid YAML.
        """
        if config_path is None:
            config_path = Path("bakewatch.yaml")

        if not config_path.exists():
            logger.warning(f"Config file not found at {config_path}, using defaults")
            return cls()

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {config_path} must contain a mapping",
                expected_type="mapping",
            )

        logger.info(f"Loaded configuration from {config_path}")
        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        return cls(
            watcher=WatcherConfig.from_dict(data.get("watcher", {})),
            build=BuildConfig.from_dict(data.get("build", {})),
        )

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path where to save the configuration.
        """
        data = {
            "watcher": {
                "watch_directories": [str(d) for d in self.watcher.watch_directories],
                "poll_interval": self.watcher.poll_interval,
                "debounce_seconds": self.watcher.debounce_seconds,
                "recursive": self.watcher.recursive,
                "skip_hidden": self.watcher.skip_hidden,
                "buffer_size": self.watcher.buffer_size,
            },
            "build": {
                "command": self.build.command,
                "reload_command": self.build.reload_command,
                "working_directory": (
                    str(self.build.working_directory)
                    if self.build.working_directory else None
                ),
                "config_patterns": self.build.config_patterns,
                "check_interval": self.build.check_interval,
                "build_on_start": self.build.build_on_start,
            },
        }

        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Saved configuration to {config_path}")
