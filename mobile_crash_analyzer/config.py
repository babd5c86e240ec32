"""Configuration for Mobile Crash Analyzer.

Settings come from environment variables, optionally seeded from a ``.env``
file via python-dotenv. Bad numeric values fall back to the defaults.
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Mapping

from dotenv import load_dotenv

from .logging_utils import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "MOBILE_CRASH_"


def load_environment(dotenv_path: Optional[str] = None) -> bool:
    """Load a .env file into ``os.environ`` without overriding set variables."""
    return load_dotenv(dotenv_path=dotenv_path, override=False)


def _parse_float(value: Optional[str], default: float, name: str) -> float:
    if value is None or value == "":
        return default
    try:
        parsed = float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default
    return parsed if parsed > 0 else default


def _parse_int(value: Optional[str], default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default
    return parsed if parsed > 0 else default


@dataclass
class AnalyzerConfig:
    """Runtime settings for an analysis run."""
    log_level: str = "INFO"
    # Timeouts in seconds
    symbolicate_timeout: float = 30.0
    dwarfdump_timeout: float = 10.0
    log_capture_timeout: float = 30.0
    time_range_seconds: int = 60
    max_log_lines: int = 500
    symbol_server_url: Optional[str] = None
    symbol_cache_dir: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "mobile_crash_symbols"
    )
    extra_dsym_dirs: List[str] = field(default_factory=list)
    default_android_device: Optional[str] = None
    default_ios_device: str = "booted"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AnalyzerConfig":
        """Build a config from environment variables."""
        if env is None:
            env = os.environ
        defaults = cls()

        def var(name: str) -> Optional[str]:
            return env.get(ENV_PREFIX + name)

        cache_dir = var("SYMBOL_CACHE")
        dsym_dirs = var("DSYM_PATHS") or ""

        return cls(
            log_level=(var("LOG_LEVEL") or defaults.log_level).upper(),
            symbolicate_timeout=_parse_float(
                var("SYMBOLICATE_TIMEOUT"), defaults.symbolicate_timeout, "SYMBOLICATE_TIMEOUT"),
            dwarfdump_timeout=defaults.dwarfdump_timeout,
            log_capture_timeout=_parse_float(
                var("LOG_TIMEOUT"), defaults.log_capture_timeout, "LOG_TIMEOUT"),
            time_range_seconds=_parse_int(
                var("TIME_RANGE"), defaults.time_range_seconds, "TIME_RANGE"),
            max_log_lines=_parse_int(
                var("MAX_LOG_LINES"), defaults.max_log_lines, "MAX_LOG_LINES"),
            symbol_server_url=var("SYMBOL_SERVER") or None,
            symbol_cache_dir=Path(cache_dir) if cache_dir else defaults.symbol_cache_dir,
            extra_dsym_dirs=[p for p in dsym_dirs.split(os.pathsep) if p],
            default_android_device=env.get("ANDROID_SERIAL") or None,
            default_ios_device=var("IOS_DEVICE") or defaults.default_ios_device,
        )
