"""
Unit tests for configuration module.
"""

import pytest
from pathlib import Path
import yaml

from bakewatch.config.settings import (
    Config,
    WatcherConfig,
    BuildConfig,
)
from bakewatch.utils.exceptions import ConfigurationError, ErrorCode


class TestWatcherConfig:
    """Tests for WatcherConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = WatcherConfig()

        assert config.watch_directories == [Path("src/main/jbake")]
        assert config.poll_interval == 0.1
        assert config.debounce_seconds == 0.4
        assert config.recursive is True
        assert config.skip_hidden is True
        assert config.buffer_size == 512

    def test_from_dict(self):
        """Test creation from dictionary."""
        data = {
            "watch_directories": ["~/site/content"],
            "debounce_seconds": 2.0,
            "recursive": False,
            "skip_hidden": False,
        }
        config = WatcherConfig.from_dict(data)

        assert config.debounce_seconds == 2.0
        assert config.recursive is False
        assert config.skip_hidden is False
        assert config.watch_directories == [Path("~/site/content").expanduser()]

    def test_rejects_non_positive_interval(self):
        """Test that a zero poll interval is refused."""
        with pytest.raises(ConfigurationError) as exc_info:
            WatcherConfig(poll_interval=0)

        assert exc_info.value.error_code == ErrorCode.CONFIGURATION_ERROR
        assert exc_info.value.details["config_key"] == "poll_interval"

    def test_rejects_non_numeric_debounce(self):
        """Test that a non-numeric debounce is refused."""
        with pytest.raises(ConfigurationError):
            WatcherConfig.from_dict({"debounce_seconds": "soon"})

    def test_rejects_empty_buffer(self):
        """Test that the event buffer must hold at least one event."""
        with pytest.raises(ConfigurationError):
            WatcherConfig(buffer_size=0)


class TestBuildConfig:
    """Tests for BuildConfig."""

    def test_default_values(self):
        """Test default build settings."""
        config = BuildConfig()

        assert config.command == []
        assert config.reload_command == []
        assert config.build_on_start is True
        assert "jbake.properties" in config.config_patterns

    def test_command_string_is_split(self):
        """Test that a command string becomes an argument list."""
        config = BuildConfig.from_dict({"command": "mvn jbake:generate -q"})

        assert config.command == ["mvn", "jbake:generate", "-q"]

    def test_command_list_kept(self):
        """Test that a command list is used as is."""
        config = BuildConfig(command=["make", "site"], reload_command="make clean site")

        assert config.command == ["make", "site"]
        assert config.reload_command == ["make", "clean", "site"]


class TestConfig:
    """Tests for main Config class."""

    def test_default_config(self):
        """Test default configuration."""
        config = Config()

        assert isinstance(config.watcher, WatcherConfig)
        assert isinstance(config.build, BuildConfig)

    def test_load_from_file(self, tmp_path):
        """Test loading configuration from YAML file."""
        config_file = tmp_path / "bakewatch.yaml"
        config_file.write_text(yaml.dump({
            "watcher": {"debounce_seconds": 3.0, "watch_directories": ["content"]},
            "build": {"command": "jbake -b", "check_interval": 0.5},
        }))

        config = Config.load(config_file)

        assert config.watcher.debounce_seconds == 3.0
        assert config.watcher.watch_directories == [Path("content")]
        assert config.build.command == ["jbake", "-b"]
        assert config.build.check_interval == 0.5

    def test_load_missing_file(self):
        """Test loading from non-existent file returns defaults."""
        config = Config.load(Path("/nonexistent/bakewatch.yaml"))

        assert config.watcher.debounce_seconds == 0.4

    def test_load_invalid_yaml(self, tmp_path):
        """Test that malformed YAML is reported."""
        config_file = tmp_path / "bakewatch.yaml"
        config_file.write_text("watcher: [unclosed")

        with pytest.raises(yaml.YAMLError):
            Config.load(config_file)

    def test_load_non_mapping(self, tmp_path):
        """Test that a YAML list is not accepted as configuration."""
        config_file = tmp_path / "bakewatch.yaml"
        config_file.write_text("- one\n- two\n")

        with pytest.raises(ConfigurationError):
            Config.load(config_file)

    def test_save_and_reload(self, tmp_path):
        """Test saved configuration loads back the same values."""
        config = Config(
            watcher=WatcherConfig(
                watch_directories=[tmp_path / "content"],
                poll_interval=0.25,
                skip_hidden=False,
            ),
            build=BuildConfig(
                command=["jbake", "-b"],
                working_directory=tmp_path,
                build_on_start=False,
            ),
        )
        config_file = tmp_path / "saved.yaml"

        config.save(config_file)
        loaded = Config.load(config_file)

        assert loaded.watcher.watch_directories == [tmp_path / "content"]
        assert loaded.watcher.poll_interval == 0.25
        assert loaded.watcher.skip_hidden is False
        assert loaded.build.command == ["jbake", "-b"]
        assert loaded.build.working_directory == tmp_path
        assert loaded.build.build_on_start is False
