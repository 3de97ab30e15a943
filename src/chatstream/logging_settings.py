"""Helpers for parsing the simple logging settings file."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

_LEVEL_MAP: dict[str, int | None] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": None,
}

_DEFAULT_KEYS = ("terminal", "streams", "providers")
_DEFAULT_LEVEL = "info"


@dataclass(frozen=True)
class LoggingSettings:
    terminal_level: int | None
    streams_level: int | None
    providers_level: int | None


def _normalize_level(value: str) -> str:
    return value.strip().lower()


def _resolve_level(value: str) -> int | None:
    return _LEVEL_MAP.get(_normalize_level(value), _LEVEL_MAP[_DEFAULT_LEVEL])


def parse_logging_settings(path: Path) -> LoggingSettings:
    """Parse the human-readable logging settings file."""

    levels: dict[str, int | None] = {
        key: _LEVEL_MAP[_DEFAULT_LEVEL] for key in _DEFAULT_KEYS
    }

    if path.exists():
        for raw_line in path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, value = (part.strip() for part in line.split("=", 1))
            normalized_key = key.lower()
            if normalized_key in _DEFAULT_KEYS:
                levels[normalized_key] = _resolve_level(value)

    return LoggingSettings(
        terminal_level=levels["terminal"],
        streams_level=levels["streams"],
        providers_level=levels["providers"],
    )


def apply_logging_settings(settings: LoggingSettings, *, debug_mode: bool = False) -> None:
    """Apply parsed levels to the package loggers.

    ``off`` disables a logger entirely. ``debug_mode`` forces the provider
    logger to DEBUG so request payloads and final responses are recorded.
    """

    targets = {
        "chatstream": settings.terminal_level,
        "chatstream.streaming": settings.streams_level,
        "chatstream.providers": settings.providers_level,
    }
    if debug_mode:
        targets["chatstream.providers"] = logging.DEBUG
        targets["chatstream.streaming"] = logging.DEBUG

    for name, level in targets.items():
        target = logging.getLogger(name)
        if level is None:
            target.disabled = True
            continue
        target.disabled = False
        target.setLevel(level)


__all__ = ["LoggingSettings", "apply_logging_settings", "parse_logging_settings"]
