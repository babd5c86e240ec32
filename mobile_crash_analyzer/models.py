"""Crash report data model for Mobile Crash Analyzer.

Normalized types shared by every parser, the symbolicator and the pattern
classifier. Structured IPS reports, classic text reports and live device
logs all end up as a single ``CrashReport``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Dict, Any, Optional


# Symbol placeholder used when a frame carries neither a name nor an address
UNRESOLVED_SYMBOL = "???"

KEY_ERROR_LIMIT = 20
INDICATOR_MESSAGE_LIMIT = 200


class Platform(Enum):
    """Target mobile platform."""
    ANDROID = "android"
    IOS = "ios"


class Severity(Enum):
    """Severity of a pattern, indicator or overall analysis."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"  # Overall result only; rules never emit it

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class LogLevel(Enum):
    """Device log severity levels (logcat priorities / unified log types)."""
    VERBOSE = "verbose"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"
    SILENT = "silent"

    @property
    def priority(self) -> int:
        return _LEVEL_PRIORITY[self]


_LEVEL_PRIORITY = {
    LogLevel.VERBOSE: 0,
    LogLevel.DEBUG: 1,
    LogLevel.INFO: 2,
    LogLevel.WARNING: 3,
    LogLevel.ERROR: 4,
    LogLevel.FATAL: 5,
    LogLevel.SILENT: 6,
}


class IndicatorType(Enum):
    """Kinds of crash signal mined from device logs."""
    EXCEPTION = "exception"
    ANR = "anr"
    NATIVE_CRASH = "native_crash"
    OOM = "oom"
    SIGNAL = "signal"
    ASSERTION = "assertion"


_HEX_RE = re.compile(r'^[0-9A-F]{32}$')


def normalize_uuid(value: str) -> str:
    """Format a binary UUID as uppercase 8-4-4-4-12.

    Inputs that do not reduce to exactly 32 hex characters once dashes are
    removed are returned untouched.
    """
    if not value:
        return value
    clean = value.replace('-', '').upper()
    if not _HEX_RE.match(clean):
        return value
    return f"{clean[0:8]}-{clean[8:12]}-{clean[12:16]}-{clean[16:20]}-{clean[20:]}"


def is_raw_symbol(symbol: Optional[str]) -> bool:
    """True when a symbol is empty, a raw address or the unresolved placeholder."""
    return not symbol or symbol.startswith('0x') or symbol == UNRESOLVED_SYMBOL


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3] + '...'


@dataclass
class StackFrame:
    """A single frame in a thread backtrace."""
    index: int
    binary: str
    address: str
    symbol: str
    offset: Optional[int] = None
    is_app_code: bool = False
    # Source location, only known after symbolication
    file: Optional[str] = None
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'binary': self.binary,
            'address': self.address,
            'symbol': self.symbol,
            'offset': self.offset,
            'is_app_code': self.is_app_code,
            'file': self.file,
            'line': self.line,
        }


@dataclass
class ThreadInfo:
    """A thread and its frames."""
    index: int
    name: Optional[str] = None
    crashed: bool = False
    frames: List[StackFrame] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'name': self.name,
            'crashed': self.crashed,
            'frames': [f.to_dict() for f in self.frames],
        }


@dataclass
class CrashException:
    """Exception / signal information."""
    type: str = "UNKNOWN"
    codes: Optional[str] = None
    signal: Optional[str] = None
    fault_address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'codes': self.codes,
            'signal': self.signal,
            'fault_address': self.fault_address,
        }


@dataclass
class BinaryImage:
    """A loaded binary image, used to match debug symbols."""
    name: str
    arch: str
    uuid: str
    load_address: str
    end_address: Optional[str] = None
    path: str = ""

    def __post_init__(self):
        self.uuid = normalize_uuid(self.uuid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'arch': self.arch,
            'uuid': self.uuid,
            'load_address': self.load_address,
            'end_address': self.end_address,
            'path': self.path,
        }


@dataclass
class CrashPattern:
    """One match from the classifier rule table."""
    id: str
    name: str
    severity: Severity
    description: str
    evidence: str = ""
    likely_cause: str = ""
    suggestion: str = ""
    confidence: float = 0.7
    category: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'severity': self.severity.value,
            'description': self.description,
            'evidence': self.evidence,
            'likely_cause': self.likely_cause,
            'suggestion': self.suggestion,
            'confidence': self.confidence,
            'category': self.category,
        }


def has_symbols(threads: List[ThreadInfo]) -> bool:
    """Check whether any frame carries a human-readable symbol."""
    for thread in threads:
        for frame in thread.frames:
            if not is_raw_symbol(frame.symbol):
                return True
    return False


def select_crashed_thread(threads: List[ThreadInfo],
                          faulting_index: Optional[int] = None) -> ThreadInfo:
    """Pick the crashed thread and make it the only one flagged as crashed.

    Priority: a thread already flagged by the source, the thread at the
    declared faulting position, the first thread. With no threads at all an
    empty synthetic thread is returned.
    """
    if not threads:
        return ThreadInfo(index=0, crashed=True, frames=[])

    chosen = next((t for t in threads if t.crashed), None)
    if chosen is None and faulting_index is not None and 0 <= faulting_index < len(threads):
        chosen = threads[faulting_index]
    if chosen is None:
        chosen = threads[0]

    for thread in threads:
        thread.crashed = thread is chosen
    return chosen


@dataclass
class CrashReport:
    """Canonical crash record produced by every input format."""
    timestamp: datetime
    platform: Platform
    process_name: str = "Unknown"
    report_id: Optional[str] = None
    device_model: Optional[str] = None
    os_version: Optional[str] = None
    bundle_id: Optional[str] = None
    app_version: Optional[str] = None
    exception: CrashException = field(default_factory=CrashException)
    threads: List[ThreadInfo] = field(default_factory=list)
    binary_images: List[BinaryImage] = field(default_factory=list)
    is_symbolicated: bool = False
    # Filled in by the classifier
    patterns: List[CrashPattern] = field(default_factory=list)
    raw_log: Optional[str] = None
    # Index into ``threads`` of the crashed thread; None when there are no threads
    crashed_thread_index: Optional[int] = None

    @property
    def crashed_thread(self) -> ThreadInfo:
        if self.crashed_thread_index is not None and self.crashed_thread_index < len(self.threads):
            return self.threads[self.crashed_thread_index]
        return ThreadInfo(index=0, crashed=True, frames=[])

    def iter_frames(self):
        for thread in self.threads:
            for frame in thread.frames:
                yield frame

    def refresh_symbolication(self) -> None:
        self.is_symbolicated = has_symbols(self.threads)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'report_id': self.report_id,
            'timestamp': self.timestamp.isoformat(),
            'platform': self.platform.value,
            'device_model': self.device_model,
            'os_version': self.os_version,
            'process_name': self.process_name,
            'bundle_id': self.bundle_id,
            'app_version': self.app_version,
            'exception': self.exception.to_dict(),
            'threads': [t.to_dict() for t in self.threads],
            'crashed_thread': self.crashed_thread.to_dict(),
            'binary_images': [b.to_dict() for b in self.binary_images],
            'is_symbolicated': self.is_symbolicated,
            'patterns': [p.to_dict() for p in self.patterns],
            'raw_log': self.raw_log,
        }


def build_report(platform: Platform, timestamp: datetime, threads: List[ThreadInfo],
                 faulting_index: Optional[int] = None, **kwargs) -> CrashReport:
    """Assemble a CrashReport, selecting the crashed thread and symbol state."""
    crashed = select_crashed_thread(threads, faulting_index)
    crashed_index = None
    for idx, thread in enumerate(threads):
        if thread is crashed:
            crashed_index = idx
            break
    return CrashReport(
        timestamp=timestamp,
        platform=platform,
        threads=threads,
        crashed_thread_index=crashed_index,
        is_symbolicated=has_symbols(threads),
        **kwargs,
    )


@dataclass
class LogEntry:
    """One parsed device log line."""
    timestamp: datetime
    level: LogLevel
    tag: str
    message: str
    pid: Optional[int] = None
    tid: Optional[int] = None
    raw: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'level': self.level.value,
            'tag': self.tag,
            'message': self.message,
            'pid': self.pid,
            'tid': self.tid,
        }


@dataclass
class CrashIndicator:
    """A crash signature found in device logs."""
    type: IndicatorType
    message: str
    severity: Severity
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        self.message = self.message[:INDICATOR_MESSAGE_LIMIT]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'message': self.message,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'severity': self.severity.value,
        }


@dataclass
class DeviceLogSummary:
    """Aggregate view of a device log window."""
    total_entries: int = 0
    error_count: int = 0
    fatal_count: int = 0
    key_errors: List[str] = field(default_factory=list)
    stack_traces: List[str] = field(default_factory=list)
    crash_indicators: List[CrashIndicator] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_entries': self.total_entries,
            'error_count': self.error_count,
            'fatal_count': self.fatal_count,
            'key_errors': list(self.key_errors),
            'stack_traces': list(self.stack_traces),
            'crash_indicators': [c.to_dict() for c in self.crash_indicators],
        }
