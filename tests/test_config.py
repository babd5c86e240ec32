"""Tests for environment-driven configuration."""
import logging
import os
from pathlib import Path

from mobile_crash_analyzer.config import AnalyzerConfig, load_environment
from mobile_crash_analyzer.logging_utils import get_logger, setup_logging


def test_defaults():
    """An empty environment yields the defaults."""
    config = AnalyzerConfig.from_env({})
    assert config == AnalyzerConfig()
    assert config.symbolicate_timeout == 30.0
    assert config.time_range_seconds == 60
    assert config.default_ios_device == "booted"
    assert config.symbol_server_url is None


def test_environment_overrides():
    """MOBILE_CRASH_* variables and ANDROID_SERIAL are honored."""
    env = {
        "MOBILE_CRASH_LOG_LEVEL": "debug",
        "MOBILE_CRASH_SYMBOLICATE_TIMEOUT": "12.5",
        "MOBILE_CRASH_LOG_TIMEOUT": "5",
        "MOBILE_CRASH_TIME_RANGE": "300",
        "MOBILE_CRASH_MAX_LOG_LINES": "2000",
        "MOBILE_CRASH_SYMBOL_SERVER": "https://symbols.example.com",
        "MOBILE_CRASH_SYMBOL_CACHE": "/var/cache/dsyms",
        "MOBILE_CRASH_DSYM_PATHS": os.pathsep.join(["/builds/a", "", "/builds/b"]),
        "MOBILE_CRASH_IOS_DEVICE": "ABCD-1234",
        "ANDROID_SERIAL": "emulator-5554",
    }
    config = AnalyzerConfig.from_env(env)
    assert config.log_level == "DEBUG"
    assert config.symbolicate_timeout == 12.5
    assert config.log_capture_timeout == 5.0
    assert config.time_range_seconds == 300
    assert config.max_log_lines == 2000
    assert config.symbol_server_url == "https://symbols.example.com"
    assert config.symbol_cache_dir == Path("/var/cache/dsyms")
    assert config.extra_dsym_dirs == ["/builds/a", "/builds/b"]
    assert config.default_ios_device == "ABCD-1234"
    assert config.default_android_device == "emulator-5554"


def test_invalid_numbers_fall_back():
    """Unparseable and non-positive values keep the defaults."""
    config = AnalyzerConfig.from_env({
        "MOBILE_CRASH_SYMBOLICATE_TIMEOUT": "soon",
        "MOBILE_CRASH_TIME_RANGE": "-5",
        "MOBILE_CRASH_MAX_LOG_LINES": "0",
    })
    assert config.symbolicate_timeout == 30.0
    assert config.time_range_seconds == 60
    assert config.max_log_lines == 500


def test_load_environment_reads_dotenv(tmp_path, monkeypatch):
    """A .env file seeds unset variables without overriding set ones."""
    monkeypatch.setenv("MOBILE_CRASH_TIME_RANGE", "placeholder")
    monkeypatch.delenv("MOBILE_CRASH_TIME_RANGE")
    monkeypatch.setenv("MOBILE_CRASH_LOG_LEVEL", "WARNING")

    dotenv_file = tmp_path / ".env"
    dotenv_file.write_text("MOBILE_CRASH_TIME_RANGE=90\nMOBILE_CRASH_LOG_LEVEL=DEBUG\n")

    assert load_environment(str(dotenv_file)) is True
    config = AnalyzerConfig.from_env()
    assert config.time_range_seconds == 90
    assert config.log_level == "WARNING"


def test_setup_logging_writes_file(tmp_path):
    """Package loggers write to the rotating log file."""
    log_file = tmp_path / "analyzer.log"
    setup_logging("DEBUG", log_file=str(log_file))

    get_logger("mobile_crash_analyzer.test").info("hello from test")
    for handler in logging.getLogger("mobile_crash_analyzer").handlers:
        handler.flush()

    assert "hello from test" in log_file.read_text()
