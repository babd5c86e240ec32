"""
Device Log Capture - Pulls recent logs from Android devices and iOS simulators

Handles:
- logcat (threadtime and brief) line parsing
- unified log (compact ``log show`` and stream) line parsing
- Log filtering
- Running adb / xcrun simctl with a bounded timeout
"""
from __future__ import annotations

import re
import subprocess
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .config import AnalyzerConfig
from .errors import MissingDeviceError
from .logging_utils import get_logger
from .models import LogEntry, LogLevel, Platform
from .timestamps import now, parse_timestamp

logger = get_logger(__name__)

ANDROID_LOG_LEVELS = {
    'V': LogLevel.VERBOSE,
    'D': LogLevel.DEBUG,
    'I': LogLevel.INFO,
    'W': LogLevel.WARNING,
    'E': LogLevel.ERROR,
    'F': LogLevel.FATAL,
    'S': LogLevel.SILENT,
}

IOS_LOG_LEVELS = {
    'Default': LogLevel.INFO,
    'Info': LogLevel.INFO,
    'Debug': LogLevel.DEBUG,
    'Error': LogLevel.ERROR,
    'Fault': LogLevel.FATAL,
}

# "01-15 14:30:00.123  1234  5678 I MyTag  : Message"
LOGCAT_THREADTIME_RE = re.compile(
    r'^(\d{2})-(\d{2})\s+(\d{2}):(\d{2}):(\d{2})\.(\d{3})\s+(\d+)\s+(\d+)\s+([VDIWEFS])\s+(\S+)\s*:\s*(.*)$'
)
# "I/MyTag(1234): Message"
LOGCAT_BRIEF_RE = re.compile(r'^([VDIWEFS])/(\S+)\(\s*(\d+)\):\s*(.*)$')

# "2025-01-15 14:30:00.123456+0000 MyApp[1234] Default: Message"
OSLOG_COMPACT_RE = re.compile(
    r'^(\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2}\.\d+[+-]\d{4})\s+(\S+)\[(\d+)\]\s+(\S+):\s*(.*)$'
)
# "MyApp[1234]: Message"
OSLOG_STREAM_RE = re.compile(r'^(\S+)\[(\d+)\]:\s*(.*)$')

CRASH_BUFFER_LINES = 200


def _logcat_timestamp(month: str, day: str, hour: str, minute: str, second: str,
                      millis: str, reference: datetime) -> datetime:
    """logcat omits the year and zone; assume the current year in local time."""
    try:
        local = datetime(reference.year, int(month), int(day), int(hour), int(minute),
                         int(second), int(millis) * 1000)
    except ValueError:
        return reference
    return local.astimezone()


def parse_logcat_line(line: str, captured_at: Optional[datetime] = None) -> Optional[LogEntry]:
    """Parse one logcat line (threadtime or brief format), None if unrecognized."""
    reference = captured_at or now()

    match = LOGCAT_THREADTIME_RE.match(line)
    if match:
        month, day, hour, minute, second, millis, pid, tid, level, tag, message = match.groups()
        return LogEntry(
            timestamp=_logcat_timestamp(month, day, hour, minute, second, millis, reference),
            level=ANDROID_LOG_LEVELS.get(level, LogLevel.INFO),
            tag=tag.strip(),
            message=message.strip(),
            pid=int(pid),
            tid=int(tid),
            raw=line,
        )

    match = LOGCAT_BRIEF_RE.match(line)
    if match:
        level, tag, pid, message = match.groups()
        return LogEntry(
            timestamp=reference,
            level=ANDROID_LOG_LEVELS.get(level, LogLevel.INFO),
            tag=tag.strip(),
            message=message.strip(),
            pid=int(pid),
            raw=line,
        )

    return None


def parse_oslog_line(line: str, captured_at: Optional[datetime] = None) -> Optional[LogEntry]:
    """Parse one unified log line (compact or stream format), None if unrecognized."""
    reference = captured_at or now()

    match = OSLOG_COMPACT_RE.match(line)
    if match:
        timestamp, process, pid, level, message = match.groups()
        return LogEntry(
            timestamp=parse_timestamp(timestamp, reference),
            level=IOS_LOG_LEVELS.get(level, LogLevel.INFO),
            tag=process,
            message=message.strip(),
            pid=int(pid),
            raw=line,
        )

    match = OSLOG_STREAM_RE.match(line)
    if match:
        process, pid, message = match.groups()
        return LogEntry(
            timestamp=reference,
            level=LogLevel.INFO,
            tag=process,
            message=message.strip(),
            pid=int(pid),
            raw=line,
        )

    return None


def parse_log_output(platform: Platform, output: str,
                     captured_at: Optional[datetime] = None) -> List[LogEntry]:
    """Parse raw tool output, skipping blank and unrecognized lines."""
    parser = parse_logcat_line if platform == Platform.ANDROID else parse_oslog_line
    entries = []
    for line in output.splitlines():
        if not line.strip():
            continue
        entry = parser(line, captured_at)
        if entry:
            entries.append(entry)
    return entries


@dataclass
class LogFilter:
    """Filter options for captured log entries"""
    min_level: Optional[LogLevel] = None
    tags: List[str] = field(default_factory=list)
    exclude_tags: List[str] = field(default_factory=list)
    pid: Optional[int] = None
    pattern: Optional[str] = None
    ignore_case: bool = False
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None  # Keep the most recent N


def filter_log_entries(entries: List[LogEntry], log_filter: LogFilter) -> List[LogEntry]:
    filtered = list(entries)

    if log_filter.min_level is not None:
        minimum = log_filter.min_level.priority
        filtered = [e for e in filtered if e.level.priority >= minimum]

    if log_filter.tags:
        wanted = {t.lower() for t in log_filter.tags}
        filtered = [e for e in filtered if e.tag.lower() in wanted]

    if log_filter.exclude_tags:
        excluded = {t.lower() for t in log_filter.exclude_tags}
        filtered = [e for e in filtered if e.tag.lower() not in excluded]

    if log_filter.pid is not None:
        filtered = [e for e in filtered if e.pid == log_filter.pid]

    if log_filter.pattern:
        regex = re.compile(log_filter.pattern, re.IGNORECASE if log_filter.ignore_case else 0)
        filtered = [e for e in filtered if regex.search(e.message) or regex.search(e.tag)]

    if log_filter.since is not None:
        filtered = [e for e in filtered if e.timestamp >= log_filter.since]
    if log_filter.until is not None:
        filtered = [e for e in filtered if e.timestamp <= log_filter.until]

    if log_filter.limit and log_filter.limit > 0:
        filtered = filtered[-log_filter.limit:]

    return filtered


class DeviceLogCapture:
    """Captures a recent log window from a device or simulator"""

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        self.config = config or AnalyzerConfig()

    def _run(self, args: List[str], timeout: float) -> subprocess.CompletedProcess:
        logger.debug(f"Running: {' '.join(args)}")
        try:
            return subprocess.run(
                args,
                capture_output=True,
                text=True,
                errors='replace',
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise MissingDeviceError(
                f"{args[0]} not found",
                details={'command': args[0]},
            ) from e
        except subprocess.TimeoutExpired as e:
            raise MissingDeviceError(
                f"Log capture timed out after {timeout}s",
                details={'command': ' '.join(args), 'timeout': timeout},
            ) from e
        except OSError as e:
            raise MissingDeviceError(
                f"Cannot run {args[0]}: {e}",
                details={'command': args[0]},
            ) from e

    def capture(self, platform: Platform, app_id: Optional[str] = None,
                device_id: Optional[str] = None,
                time_range_seconds: Optional[int] = None,
                timeout: Optional[float] = None) -> List[LogEntry]:
        """
        Capture recent device logs, oldest first.

        Raises:
            MissingDeviceError: Tool missing, no device, or capture timed out
        """
        timeout = timeout or self.config.log_capture_timeout
        if platform == Platform.ANDROID:
            return self._capture_logcat(app_id, device_id or self.config.default_android_device,
                                        timeout)
        return self._capture_oslog(app_id, device_id or self.config.default_ios_device,
                                   time_range_seconds or self.config.time_range_seconds, timeout)

    def _adb(self, device_id: Optional[str]) -> List[str]:
        args = ['adb']
        if device_id:
            args += ['-s', device_id]
        return args

    def _app_pid(self, app_id: str, device_id: Optional[str], timeout: float) -> Optional[int]:
        try:
            result = self._run(self._adb(device_id) + ['shell', 'pidof', app_id], min(timeout, 5.0))
        except MissingDeviceError:
            return None
        pids = result.stdout.split()
        if result.returncode == 0 and pids and pids[0].isdigit():
            return int(pids[0])
        return None

    def _capture_logcat(self, app_id: Optional[str], device_id: Optional[str],
                        timeout: float) -> List[LogEntry]:
        args = self._adb(device_id) + ['logcat', '-d', '-v', 'threadtime',
                                       '-t', str(self.config.max_log_lines)]
        if app_id:
            pid = self._app_pid(app_id, device_id, timeout)
            if pid:
                args += ['--pid', str(pid)]

        result = self._run(args, timeout)
        if result.returncode != 0 and not result.stdout:
            raise MissingDeviceError(
                result.stderr.strip() or "adb logcat failed",
                details={'device_id': device_id, 'exit_code': result.returncode},
            )

        captured_at = now()
        entries = parse_log_output(Platform.ANDROID, result.stdout, captured_at)

        # The app PID changes after a crash; the crash buffer keeps the old process
        crash_args = self._adb(device_id) + ['logcat', '-b', 'crash', '-d', '-v', 'threadtime',
                                             '-t', str(CRASH_BUFFER_LINES)]
        try:
            crash_result = self._run(crash_args, timeout)
        except MissingDeviceError as e:
            logger.warning(f"Crash buffer unavailable: {e}")
        else:
            if crash_result.returncode == 0:
                # Each main-buffer line hides one identical crash-buffer line; repeated
                # frames of one trace share a timestamp and must all survive
                in_main = Counter((e.timestamp, e.message) for e in entries)
                for entry in parse_log_output(Platform.ANDROID, crash_result.stdout, captured_at):
                    key = (entry.timestamp, entry.message)
                    if in_main[key]:
                        in_main[key] -= 1
                    else:
                        entries.append(entry)

        entries.sort(key=lambda e: e.timestamp)
        logger.info(f"Captured {len(entries)} logcat entries")
        return entries

    def _capture_oslog(self, app_id: Optional[str], device_id: str,
                       time_range_seconds: int, timeout: float) -> List[LogEntry]:
        args = ['xcrun', 'simctl', 'spawn', device_id, 'log', 'show',
                '--last', f"{time_range_seconds}s", '--style', 'compact']
        if app_id:
            args += ['--predicate', f'processImagePath CONTAINS "{app_id}"']

        result = self._run(args, timeout)
        if result.returncode != 0 and not result.stdout:
            raise MissingDeviceError(
                result.stderr.strip() or f"No booted simulator matches '{device_id}'",
                details={'device_id': device_id, 'exit_code': result.returncode},
            )

        entries = parse_log_output(Platform.IOS, result.stdout, now())
        entries = filter_log_entries(entries, LogFilter(limit=self.config.max_log_lines))
        logger.info(f"Captured {len(entries)} unified log entries")
        return entries
