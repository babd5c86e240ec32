"""Crash signal extraction from live device logs.

Live logs carry no crash-report structure, so crashes are recognized by
signature: each platform has an ordered trigger table evaluated per line
(first match wins). Stack frames following a trigger are collected into
``stack_traces``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from .logging_utils import get_logger
from .models import (
    CrashException,
    CrashIndicator,
    CrashReport,
    DeviceLogSummary,
    IndicatorType,
    INDICATOR_MESSAGE_LIMIT,
    KEY_ERROR_LIMIT,
    LogEntry,
    LogLevel,
    Platform,
    Severity,
    ThreadInfo,
    build_report,
    truncate,
)
from .timestamps import now

logger = get_logger(__name__)

# java.lang.NullPointerException, IllegalStateException, NSInvalidArgumentException
EXCEPTION_CLASS_RE = re.compile(r'\b(?:[a-z_][\w$]*\.)*[A-Z][\w$]*(?:Exception|Error)\b')
EXC_TOKEN_RE = re.compile(r'\bEXC_[A-Z_]+\b')
SIGNAL_RE = re.compile(r'\bSIG[A-Z]{2,}\b')
OOM_RE = re.compile(r'OutOfMemoryError|\bOOM\b')

FRAME_LINE_RE = re.compile(r'^\s*(?:at\s|#?\d+\s)')
CONTINUATION_RE = re.compile(r'^\s*(?:Caused by:|\.\.\.\s+\d+\s+more)')

ERROR_LEVELS = (LogLevel.ERROR, LogLevel.FATAL)


def looks_like_frame(message: str) -> bool:
    return bool(FRAME_LINE_RE.match(message) or CONTINUATION_RE.match(message))


@dataclass(frozen=True)
class CrashTrigger:
    """One row of a platform trigger table."""
    type: IndicatorType
    severity: Severity
    matches: Callable[[LogEntry], bool]
    starts_trace: bool = False


def _is_error(entry: LogEntry) -> bool:
    return entry.level in ERROR_LEVELS


def _android_fatal(entry: LogEntry) -> bool:
    if 'FATAL EXCEPTION' in entry.message:
        return True
    return entry.tag == 'AndroidRuntime' and bool(EXCEPTION_CLASS_RE.search(entry.message))


def _android_native_signal(entry: LogEntry) -> bool:
    return ('signal' in entry.message.lower()
            and ('SIGSEGV' in entry.message or 'SIGABRT' in entry.message))


def _ios_termination(entry: LogEntry) -> bool:
    lowered = entry.message.lower()
    return '*** terminating' in lowered or '*** assertion failed' in lowered


ANDROID_TRIGGERS: Tuple[CrashTrigger, ...] = (
    CrashTrigger(IndicatorType.EXCEPTION, Severity.CRITICAL, _android_fatal, starts_trace=True),
    CrashTrigger(IndicatorType.EXCEPTION, Severity.HIGH,
                 lambda e: _is_error(e) and bool(EXCEPTION_CLASS_RE.search(e.message)),
                 starts_trace=True),
    CrashTrigger(IndicatorType.ANR, Severity.HIGH,
                 lambda e: 'ANR in' in e.message or 'not responding' in e.message.lower()),
    CrashTrigger(IndicatorType.NATIVE_CRASH, Severity.CRITICAL, _android_native_signal),
    CrashTrigger(IndicatorType.OOM, Severity.HIGH, lambda e: bool(OOM_RE.search(e.message))),
)

IOS_TRIGGERS: Tuple[CrashTrigger, ...] = (
    CrashTrigger(IndicatorType.ASSERTION, Severity.CRITICAL, _ios_termination, starts_trace=True),
    CrashTrigger(IndicatorType.SIGNAL, Severity.CRITICAL,
                 lambda e: 'EXC_BAD_ACCESS' in e.message or 'EXC_CRASH' in e.message),
    CrashTrigger(IndicatorType.EXCEPTION, Severity.HIGH, lambda e: e.level == LogLevel.FATAL),
)

TRIGGERS = {
    Platform.ANDROID: ANDROID_TRIGGERS,
    Platform.IOS: IOS_TRIGGERS,
}


@dataclass
class _PendingTrace:
    tag: str
    lines: List[str] = field(default_factory=list)
    frame_count: int = 0


class DeviceLogCrashExtractor:
    """Single forward pass over a time-ordered log window.

    Per line: level tallies and key errors first, then stack-trace handling
    (lines absorbed into a trace are not evaluated as triggers), then the
    platform trigger table.
    """

    def __init__(self, platform: Platform):
        self.platform = platform
        self.triggers = TRIGGERS[platform]

    def match_trigger(self, entry: LogEntry) -> Optional[CrashTrigger]:
        for trigger in self.triggers:
            if trigger.matches(entry):
                return trigger
        return None

    def extract(self, entries: Iterable[LogEntry]) -> DeviceLogSummary:
        summary = DeviceLogSummary()
        seen_errors = set()
        in_stack_trace = False
        pending: Optional[_PendingTrace] = None

        def flush():
            if pending is not None and pending.frame_count:
                summary.stack_traces.append('\n'.join(pending.lines))

        for entry in entries:
            summary.total_entries += 1

            # error_count covers error and fatal; fatal_count is fatal only
            if _is_error(entry):
                summary.error_count += 1
            if entry.level == LogLevel.FATAL:
                summary.fatal_count += 1

            if _is_error(entry) and len(summary.key_errors) < KEY_ERROR_LIMIT:
                message = truncate(entry.message.strip(), INDICATOR_MESSAGE_LIMIT)
                if message and message not in seen_errors:
                    seen_errors.add(message)
                    summary.key_errors.append(message)

            if in_stack_trace:
                if looks_like_frame(entry.message):
                    pending.lines.append(entry.message)
                    pending.frame_count += 1
                    continue
                if not pending.frame_count and entry.tag == pending.tag:
                    # Header lines between the trigger and the first frame
                    pending.lines.append(entry.message)
                    continue
                flush()
                pending = None
                in_stack_trace = False

            trigger = self.match_trigger(entry)
            if trigger is None:
                continue

            summary.crash_indicators.append(CrashIndicator(
                type=trigger.type,
                message=entry.message,
                severity=trigger.severity,
                timestamp=entry.timestamp,
            ))
            if trigger.starts_trace:
                in_stack_trace = True
                pending = _PendingTrace(tag=entry.tag, lines=[entry.message])

        if in_stack_trace:
            flush()

        logger.debug(
            f"Device logs: {summary.total_entries} entries, {summary.error_count} errors, "
            f"{summary.fatal_count} fatal, {len(summary.crash_indicators)} crash indicators"
        )
        return summary


def indicator_exception(indicator: CrashIndicator, platform: Platform,
                        trace: Optional[str] = None) -> CrashException:
    """Build the report exception from a crash indicator message.

    ``trace`` is searched for an exception class when the message names none
    (e.g. "FATAL EXCEPTION: main").
    """
    message = indicator.message
    signal_match = SIGNAL_RE.search(message)
    signal = signal_match.group(0) if signal_match else None

    type_match = EXCEPTION_CLASS_RE.search(message) or EXC_TOKEN_RE.search(message)
    if type_match is None and trace:
        type_match = EXCEPTION_CLASS_RE.search(trace)
    if type_match:
        exc_type = type_match.group(0)
    elif indicator.type == IndicatorType.ANR:
        exc_type = 'ANR'
    elif indicator.type == IndicatorType.OOM:
        exc_type = 'OutOfMemoryError'
    elif indicator.type in (IndicatorType.NATIVE_CRASH, IndicatorType.SIGNAL) and signal:
        exc_type = signal
    elif platform == Platform.IOS:
        exc_type = 'NSException'
    else:
        exc_type = 'UNKNOWN'

    return CrashException(type=exc_type, codes=message, signal=signal)


def synthesize_report(platform: Platform, summary: DeviceLogSummary,
                      entries: Optional[List[LogEntry]] = None,
                      process_name: Optional[str] = None,
                      captured_at: Optional[datetime] = None) -> CrashReport:
    """Build a CrashReport from a log summary.

    The single thread is crashed and carries no frames; live logs never
    provide frame-level fidelity.
    """
    first = summary.crash_indicators[0] if summary.crash_indicators else None
    if first is not None:
        trace = summary.stack_traces[0] if summary.stack_traces else None
        exception = indicator_exception(first, platform, trace)
        timestamp = first.timestamp or captured_at or now()
    else:
        exception = CrashException()
        timestamp = captured_at or now()

    raw_log = None
    if entries:
        raw_log = '\n'.join(e.raw or f"{e.tag}: {e.message}" for e in entries)

    return build_report(
        platform,
        timestamp,
        [ThreadInfo(index=0, name='main', crashed=True, frames=[])],
        process_name=process_name or 'Unknown',
        bundle_id=process_name if platform == Platform.IOS else None,
        exception=exception,
        raw_log=raw_log,
    )


def analyze_device_logs(platform: Platform, entries: List[LogEntry],
                        process_name: Optional[str] = None,
                        captured_at: Optional[datetime] = None
                        ) -> Tuple[DeviceLogSummary, CrashReport]:
    """Extract the summary and synthesize the report in one call."""
    summary = DeviceLogCrashExtractor(platform).extract(entries)
    report = synthesize_report(platform, summary, entries, process_name, captured_at)
    return summary, report
