"""Configuration module for bakewatch."""

from .settings import (
    Config,
    WatcherConfig,
    BuildConfig,
)

__all__ = [
    "Config",
    "WatcherConfig",
    "BuildConfig",
]
