"""Tests for device log parsing and capture."""
import subprocess
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from mobile_crash_analyzer.config import AnalyzerConfig
from mobile_crash_analyzer.errors import MissingDeviceError
from mobile_crash_analyzer.log_capture import (
    DeviceLogCapture,
    LogFilter,
    filter_log_entries,
    parse_log_output,
    parse_logcat_line,
    parse_oslog_line,
)
from mobile_crash_analyzer.models import LogEntry, LogLevel, Platform

CAPTURED_AT = datetime(2025, 1, 15, 15, 0, tzinfo=timezone.utc)

LOGCAT_OUTPUT = """--------- beginning of main
01-15 14:30:00.100  1234  1234 I ActivityManager: Start proc 1234:com.example.app/u0a123
01-15 14:30:01.200  1234  1234 E AndroidRuntime: FATAL EXCEPTION: main
01-15 14:30:01.201  1234  1234 E AndroidRuntime: 	at com.example.app.MainActivity.onCreate(MainActivity.java:42)
"""

CRASH_BUFFER_OUTPUT = """--------- beginning of crash
01-15 14:30:01.200  1234  1234 E AndroidRuntime: FATAL EXCEPTION: main
01-15 14:30:01.202  1234  1234 E AndroidRuntime: Process: com.example.app, PID: 1234
"""

OSLOG_OUTPUT = """Timestamp               Ty Process[PID:TID]
2025-01-15 14:30:00.123456+0000 MyApp[1234] Default: App launched
2025-01-15 14:30:01.500000+0000 MyApp[1234] Fault: *** Terminating app due to uncaught exception
"""


def _completed(args, stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)


def test_parse_logcat_threadtime():
    """threadtime lines carry pid, tid, level, tag and message."""
    entry = parse_logcat_line(
        "01-15 14:30:01.200  1234  5678 E AndroidRuntime: FATAL EXCEPTION: main", CAPTURED_AT)
    assert entry.level == LogLevel.ERROR
    assert entry.tag == "AndroidRuntime"
    assert entry.message == "FATAL EXCEPTION: main"
    assert entry.pid == 1234
    assert entry.tid == 5678
    assert (entry.timestamp.month, entry.timestamp.day, entry.timestamp.second) == (1, 15, 1)
    assert entry.timestamp.year == CAPTURED_AT.year
    assert entry.timestamp.tzinfo is not None


def test_parse_logcat_brief():
    """brief lines use the capture time."""
    entry = parse_logcat_line("W/MyTag( 4321): something odd", CAPTURED_AT)
    assert entry.level == LogLevel.WARNING
    assert entry.tag == "MyTag"
    assert entry.pid == 4321
    assert entry.message == "something odd"
    assert entry.timestamp == CAPTURED_AT


def test_parse_logcat_unrecognized():
    """Separator and garbage lines are skipped."""
    assert parse_logcat_line("--------- beginning of main") is None
    assert parse_logcat_line("") is None


def test_parse_oslog_compact_and_stream():
    """Compact lines carry a timestamp and level; stream lines default to info."""
    entry = parse_oslog_line(
        "2025-01-15 14:30:00.123456+0000 MyApp[1234] Error: Something failed", CAPTURED_AT)
    assert entry.level == LogLevel.ERROR
    assert entry.tag == "MyApp"
    assert entry.pid == 1234
    assert entry.message == "Something failed"
    assert entry.timestamp == datetime(2025, 1, 15, 14, 30, 0, 123456, tzinfo=timezone.utc)

    stream = parse_oslog_line("MyApp[42]: hello", CAPTURED_AT)
    assert stream.level == LogLevel.INFO
    assert stream.timestamp == CAPTURED_AT

    assert parse_oslog_line("Timestamp  Ty Process[PID:TID]") is None


def test_parse_log_output_skips_noise():
    """Only recognizable lines become entries."""
    entries = parse_log_output(Platform.ANDROID, LOGCAT_OUTPUT, CAPTURED_AT)
    assert [e.level for e in entries] == [LogLevel.INFO, LogLevel.ERROR, LogLevel.ERROR]


def _sample_entries():
    base = datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)
    rows = [
        (LogLevel.DEBUG, "MyApp", "loading", 1),
        (LogLevel.ERROR, "MyApp", "Network ERROR", 1),
        (LogLevel.WARNING, "chatty", "uid=1000 expire 3 lines", 2),
        (LogLevel.FATAL, "libc", "Fatal signal 11 (SIGSEGV)", 1),
    ]
    return [
        LogEntry(timestamp=base + timedelta(seconds=i), level=level, tag=tag, message=msg, pid=pid)
        for i, (level, tag, msg, pid) in enumerate(rows)
    ]


def test_filter_log_entries():
    """Filters combine and keep the most recent entries on limit."""
    entries = _sample_entries()

    assert len(filter_log_entries(entries, LogFilter(min_level=LogLevel.WARNING))) == 3
    assert [e.tag for e in filter_log_entries(entries, LogFilter(tags=["myapp"]))] == ["MyApp", "MyApp"]
    assert len(filter_log_entries(entries, LogFilter(exclude_tags=["chatty"]))) == 3
    assert len(filter_log_entries(entries, LogFilter(pid=2))) == 1
    assert len(filter_log_entries(entries, LogFilter(pattern="error"))) == 0
    assert len(filter_log_entries(entries, LogFilter(pattern="error", ignore_case=True))) == 1
    assert filter_log_entries(entries, LogFilter(limit=2)) == entries[-2:]

    since = entries[1].timestamp
    until = entries[2].timestamp
    assert filter_log_entries(entries, LogFilter(since=since, until=until)) == entries[1:3]


def test_capture_logcat_merges_crash_buffer():
    """Main and crash buffers are merged without duplicates, oldest first."""
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        if 'pidof' in args:
            return _completed(args, stdout="1234\n")
        if '-b' in args:
            return _completed(args, stdout=CRASH_BUFFER_OUTPUT)
        return _completed(args, stdout=LOGCAT_OUTPUT)

    config = AnalyzerConfig(max_log_lines=100)
    with patch("mobile_crash_analyzer.log_capture.subprocess.run", side_effect=fake_run):
        entries = DeviceLogCapture(config).capture(
            Platform.ANDROID, app_id="com.example.app", device_id="emulator-5554")

    assert calls[0] == ['adb', '-s', 'emulator-5554', 'shell', 'pidof', 'com.example.app']
    assert calls[1] == ['adb', '-s', 'emulator-5554', 'logcat', '-d', '-v', 'threadtime',
                        '-t', '100', '--pid', '1234']
    assert calls[2][:5] == ['adb', '-s', 'emulator-5554', 'logcat', '-b']

    messages = [e.message for e in entries]
    assert messages.count("FATAL EXCEPTION: main") == 1
    assert "Process: com.example.app, PID: 1234" in messages
    assert messages[-1] == "Process: com.example.app, PID: 1234"


def test_crash_buffer_keeps_repeated_frames():
    """Identical frames of one recursive trace are all kept after merging."""
    frame = "01-15 14:30:02.000  1234  1234 E AndroidRuntime: \tat com.example.app.Tree.walk(Tree.kt:12)\n"
    crash_output = (
        "--------- beginning of crash\n"
        "01-15 14:30:02.000  1234  1234 E AndroidRuntime: java.lang.StackOverflowError: stack size 8MB\n"
        + frame * 3
    )

    def fake_run(args, **kwargs):
        if '-b' in args:
            return _completed(args, stdout=crash_output)
        return _completed(args, stdout=LOGCAT_OUTPUT + frame)

    with patch("mobile_crash_analyzer.log_capture.subprocess.run", side_effect=fake_run):
        entries = DeviceLogCapture().capture(Platform.ANDROID)

    messages = [e.message for e in entries]
    assert messages.count("at com.example.app.Tree.walk(Tree.kt:12)") == 3
    assert messages.count("java.lang.StackOverflowError: stack size 8MB") == 1


def test_capture_logcat_uses_default_device():
    """ANDROID_SERIAL from config is used when no device is given."""
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return _completed(args, stdout="")

    config = AnalyzerConfig(default_android_device="R58M12345")
    with patch("mobile_crash_analyzer.log_capture.subprocess.run", side_effect=fake_run):
        assert DeviceLogCapture(config).capture(Platform.ANDROID) == []
    assert calls[0][:3] == ['adb', '-s', 'R58M12345']


def test_capture_missing_tool_raises():
    """A missing adb binary is a MissingDeviceError."""
    with patch("mobile_crash_analyzer.log_capture.subprocess.run", side_effect=FileNotFoundError("adb")):
        with pytest.raises(MissingDeviceError) as exc_info:
            DeviceLogCapture().capture(Platform.ANDROID)
    assert exc_info.value.code == "DEVICE_NOT_FOUND"


def test_capture_unrunnable_tool_raises():
    """An adb that cannot be executed is a MissingDeviceError, not an OSError."""
    with patch("mobile_crash_analyzer.log_capture.subprocess.run",
               side_effect=PermissionError(13, "Permission denied")):
        with pytest.raises(MissingDeviceError, match="Cannot run adb") as exc_info:
            DeviceLogCapture().capture(Platform.ANDROID)
    assert isinstance(exc_info.value.__cause__, PermissionError)


def test_capture_no_device_raises():
    """adb failing with no output means there is no device."""
    def fake_run(args, **kwargs):
        return _completed(args, returncode=1, stderr="error: no devices/emulators found")

    with patch("mobile_crash_analyzer.log_capture.subprocess.run", side_effect=fake_run):
        with pytest.raises(MissingDeviceError, match="no devices"):
            DeviceLogCapture().capture(Platform.ANDROID)


def test_capture_timeout_raises():
    """A hung capture is bounded by the configured timeout."""
    def fake_run(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs.get("timeout"))

    config = AnalyzerConfig(log_capture_timeout=2.0)
    with patch("mobile_crash_analyzer.log_capture.subprocess.run", side_effect=fake_run):
        with pytest.raises(MissingDeviceError, match="timed out"):
            DeviceLogCapture(config).capture(Platform.IOS)


def test_capture_oslog():
    """simctl log show is queried for the time window and app predicate."""
    calls = []

    def fake_run(args, **kwargs):
        calls.append(args)
        return _completed(args, stdout=OSLOG_OUTPUT)

    with patch("mobile_crash_analyzer.log_capture.subprocess.run", side_effect=fake_run):
        entries = DeviceLogCapture().capture(Platform.IOS, app_id="MyApp", time_range_seconds=300)

    assert calls[0][:7] == ['xcrun', 'simctl', 'spawn', 'booted', 'log', 'show', '--last']
    assert '300s' in calls[0]
    assert 'processImagePath CONTAINS "MyApp"' in calls[0]
    assert [e.level for e in entries] == [LogLevel.INFO, LogLevel.FATAL]
