"""Rule-based crash classification.

Each rule in ``CRASH_RULES`` inspects a report (and, for live-log analysis,
the device log summary) and returns an evidence string on match. Rules are
independent; a report can match several of them.
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .logging_utils import get_logger
from .models import (
    CrashIndicator,
    CrashPattern,
    CrashReport,
    DeviceLogSummary,
    IndicatorType,
    Platform,
    Severity,
    StackFrame,
    is_raw_symbol,
)

logger = get_logger(__name__)

BASE_CONFIDENCE = 0.7
MAX_SUSPECTS = 3
MAX_KEY_FRAMES = 5


@dataclass
class ClassificationContext:
    """What a rule matcher can look at."""
    report: CrashReport
    summary: Optional[DeviceLogSummary] = None

    @property
    def exception_type(self) -> str:
        return self.report.exception.type

    @property
    def signal(self) -> str:
        return self.report.exception.signal or ""

    @property
    def codes(self) -> str:
        return self.report.exception.codes or ""

    @property
    def raw_log(self) -> str:
        return self.report.raw_log or ""

    @property
    def frames(self) -> List[StackFrame]:
        return self.report.crashed_thread.frames

    @property
    def indicators(self) -> List[CrashIndicator]:
        return self.summary.crash_indicators if self.summary else []

    def is_signal(self, name: str) -> bool:
        return self.exception_type == name or self.signal == name

    def frame_with(self, *needles: str) -> Optional[str]:
        for frame in self.frames:
            if any(n in frame.symbol for n in needles):
                return f"frame {frame.index}: {frame.symbol}"
        return None

    def indicator_of(self, *types: IndicatorType) -> Optional[CrashIndicator]:
        for indicator in self.indicators:
            if indicator.type in types:
                return indicator
        return None


Matcher = Callable[[ClassificationContext], Optional[str]]


@dataclass(frozen=True)
class PatternRule:
    id: str
    name: str
    severity: Severity
    category: str
    matcher: Matcher
    description: str
    likely_cause: str
    suggestion: str


def _null_access(ctx: ClassificationContext) -> Optional[str]:
    address = ctx.report.exception.fault_address or ""
    if ctx.exception_type == 'EXC_BAD_ACCESS' and (address == '0x0' or address.startswith('0x0000')):
        return f"EXC_BAD_ACCESS at {address}"
    return None


def _kern_invalid(ctx: ClassificationContext) -> Optional[str]:
    if ctx.exception_type == 'EXC_BAD_ACCESS' and 'KERN_INVALID_ADDRESS' in ctx.codes:
        return ctx.codes
    return None


def _assertion(ctx: ClassificationContext) -> Optional[str]:
    if ctx.is_signal('SIGABRT'):
        return ctx.frame_with('assert', 'fatalError')
    return None


def _uncaught_objc(ctx: ClassificationContext) -> Optional[str]:
    if ctx.is_signal('SIGABRT'):
        return ctx.frame_with('objc_exception_throw', 'NSException')
    return None


def _watchdog(ctx: ClassificationContext) -> Optional[str]:
    if ctx.exception_type != 'EXC_CRASH':
        return None
    if '8badf00d' in ctx.raw_log:
        return "termination code 0x8badf00d"
    if 'watchdog' in ctx.raw_log.lower():
        return "watchdog termination in crash log"
    return None


def _jetsam(ctx: ClassificationContext) -> Optional[str]:
    if ctx.exception_type == 'EXC_RESOURCE':
        return "exception type EXC_RESOURCE"
    if 'jetsam' in ctx.raw_log:
        return "jetsam event in crash log"
    if 'EXC_RESOURCE' in ctx.raw_log:
        return "EXC_RESOURCE in crash log"
    return None


def _sigbus(ctx: ClassificationContext) -> Optional[str]:
    return "signal SIGBUS" if ctx.is_signal('SIGBUS') else None


def _stack_overflow(ctx: ClassificationContext) -> Optional[str]:
    if len(ctx.frames) < 50:
        return None
    symbol, count = Counter(f.symbol for f in ctx.frames).most_common(1)[0]
    if count > 10:
        return f"{symbol} repeated {count} times in {len(ctx.frames)} frames"
    return None


def _swift_runtime(ctx: ClassificationContext) -> Optional[str]:
    return ctx.frame_with('swift_fatalError', 'swift_unexpectedError', '_swift_stdlib_')


def _dispatch(ctx: ClassificationContext) -> Optional[str]:
    for frame in ctx.frames:
        if 'dispatch_' in frame.symbol or 'libdispatch' in frame.binary:
            return f"frame {frame.index}: {frame.binary} {frame.symbol}"
    return None


def _android_fatal(ctx: ClassificationContext) -> Optional[str]:
    if ctx.report.platform != Platform.ANDROID:
        return None
    for indicator in ctx.indicators:
        if indicator.type == IndicatorType.EXCEPTION and indicator.severity == Severity.CRITICAL:
            return indicator.message
    return None


def _android_npe(ctx: ClassificationContext) -> Optional[str]:
    if ctx.report.platform != Platform.ANDROID:
        return None
    if 'NullPointerException' in ctx.exception_type:
        return ctx.exception_type
    for indicator in ctx.indicators:
        if 'NullPointerException' in indicator.message:
            return indicator.message
    return None


def _anr(ctx: ClassificationContext) -> Optional[str]:
    indicator = ctx.indicator_of(IndicatorType.ANR)
    return indicator.message if indicator else None


def _native_signal(ctx: ClassificationContext) -> Optional[str]:
    indicator = ctx.indicator_of(IndicatorType.NATIVE_CRASH)
    return indicator.message if indicator else None


def _out_of_memory(ctx: ClassificationContext) -> Optional[str]:
    indicator = ctx.indicator_of(IndicatorType.OOM)
    if indicator:
        return indicator.message
    if 'OutOfMemoryError' in ctx.exception_type:
        return ctx.exception_type
    return None


def _ios_uncaught_log(ctx: ClassificationContext) -> Optional[str]:
    if ctx.report.platform != Platform.IOS:
        return None
    indicator = ctx.indicator_of(IndicatorType.ASSERTION)
    return indicator.message if indicator else None


CRASH_RULES: Tuple[PatternRule, ...] = (
    PatternRule(
        id='exc_bad_access_null',
        name='Null Pointer Dereference',
        severity=Severity.CRITICAL,
        category='memory',
        matcher=_null_access,
        description='Attempted to access memory at a null pointer address',
        likely_cause='Force-unwrapping nil optional or accessing deallocated object',
        suggestion='Check for optional binding before accessing. Use guard let or if let.',
    ),
    PatternRule(
        id='exc_bad_access_kern_invalid',
        name='Invalid Memory Access',
        severity=Severity.CRITICAL,
        category='memory',
        matcher=_kern_invalid,
        description='Attempted to access invalid memory region',
        likely_cause='Use-after-free, dangling pointer, or buffer overflow',
        suggestion='Enable Address Sanitizer in Xcode to catch memory issues at development time.',
    ),
    PatternRule(
        id='sigabrt_assertion',
        name='Assertion Failure',
        severity=Severity.HIGH,
        category='assertion',
        matcher=_assertion,
        description='Application terminated due to assertion or fatalError',
        likely_cause='Precondition failed or explicit abort in code',
        suggestion='Check the assertion message in crash log for specific failure condition.',
    ),
    PatternRule(
        id='sigabrt_uncaught_exception',
        name='Uncaught Exception',
        severity=Severity.HIGH,
        category='exception',
        matcher=_uncaught_objc,
        description='Uncaught Objective-C exception caused crash',
        likely_cause='NSException thrown but not caught (array bounds, invalid selector, etc.)',
        suggestion='Check Last Exception Backtrace in crash log for exception type and message.',
    ),
    PatternRule(
        id='watchdog_timeout',
        name='Watchdog Timeout',
        severity=Severity.CRITICAL,
        category='watchdog',
        matcher=_watchdog,
        description='App was terminated by iOS watchdog for taking too long',
        likely_cause='Main thread blocked for too long (network, heavy computation, deadlock)',
        suggestion='Move long-running operations to background threads. Use async/await.',
    ),
    PatternRule(
        id='oom_jetsam',
        name='Out of Memory (Jetsam)',
        severity=Severity.HIGH,
        category='resource',
        matcher=_jetsam,
        description='App was terminated due to excessive memory usage',
        likely_cause='Memory leak, loading large assets, or insufficient memory management',
        suggestion='Profile with Instruments. Check for retain cycles and large allocations.',
    ),
    PatternRule(
        id='sigbus_alignment',
        name='Bus Error (Alignment)',
        severity=Severity.CRITICAL,
        category='memory',
        matcher=_sigbus,
        description='Memory alignment or hardware access error',
        likely_cause='Misaligned memory access or corrupted memory',
        suggestion='Check for pointer casting issues or corrupted data structures.',
    ),
    PatternRule(
        id='stack_overflow',
        name='Stack Overflow',
        severity=Severity.HIGH,
        category='memory',
        matcher=_stack_overflow,
        description='Stack exhausted due to deep or infinite recursion',
        likely_cause='Recursive function without proper base case',
        suggestion='Check for infinite recursion. Consider using iterative approach.',
    ),
    PatternRule(
        id='swift_runtime_failure',
        name='Swift Runtime Error',
        severity=Severity.HIGH,
        category='assertion',
        matcher=_swift_runtime,
        description='Swift runtime detected an unrecoverable error',
        likely_cause='Force unwrap of nil, array index out of bounds, or precondition failure',
        suggestion='Look for force unwrap (!) or subscript access in the code path.',
    ),
    PatternRule(
        id='dispatch_queue_crash',
        name='GCD/Dispatch Crash',
        severity=Severity.MEDIUM,
        category='threading',
        matcher=_dispatch,
        description='Crash in Grand Central Dispatch',
        likely_cause='Thread safety issue, accessing UI from background, or dispatch_sync deadlock',
        suggestion='Ensure UI updates on main thread. Check for dispatch_sync from same queue.',
    ),
    PatternRule(
        id='android_fatal_exception',
        name='Fatal Exception',
        severity=Severity.CRITICAL,
        category='exception',
        matcher=_android_fatal,
        description='An uncaught exception terminated the app process',
        likely_cause='Exception thrown on a thread with no handler',
        suggestion='Find the first app frame under the exception in the AndroidRuntime stack trace.',
    ),
    PatternRule(
        id='android_null_pointer',
        name='Null Pointer Exception',
        severity=Severity.HIGH,
        category='exception',
        matcher=_android_npe,
        description='A null reference was dereferenced',
        likely_cause='Uninitialized field, missing null check, or platform type from Java code',
        suggestion='Add null checks or use Kotlin null-safety at the failing call site.',
    ),
    PatternRule(
        id='android_anr',
        name='Application Not Responding',
        severity=Severity.HIGH,
        category='anr',
        matcher=_anr,
        description='The main thread stopped responding to input events',
        likely_cause='Blocking I/O, lock contention, or long computation on the main thread',
        suggestion='Pull /data/anr/traces.txt and inspect what the main thread was doing.',
    ),
    PatternRule(
        id='native_signal',
        name='Native Crash',
        severity=Severity.CRITICAL,
        category='native',
        matcher=_native_signal,
        description='Native code received a fatal signal',
        likely_cause='Memory corruption or abort in native (JNI/NDK) code',
        suggestion='Symbolicate the tombstone with ndk-stack to locate the native frame.',
    ),
    PatternRule(
        id='out_of_memory',
        name='Out of Memory',
        severity=Severity.HIGH,
        category='resource',
        matcher=_out_of_memory,
        description='The app exhausted its heap',
        likely_cause='Memory leak, oversized bitmaps, or unbounded caches',
        suggestion='Capture a heap dump and look for leaked activities and large bitmaps.',
    ),
    PatternRule(
        id='ios_uncaught_exception_log',
        name='Uncaught Exception (Log)',
        severity=Severity.CRITICAL,
        category='exception',
        matcher=_ios_uncaught_log,
        description='The device log shows the app terminating on an uncaught exception',
        likely_cause='NSException or assertion raised and not handled',
        suggestion='Read the exception reason and the first throw call stack in the log.',
    ),
)

DEFAULT_SUGGESTIONS = [
    'Enable symbolication to get detailed stack traces',
    'Check application logs around crash time for context',
]
CRITICAL_SUGGESTION = 'This is a critical crash - prioritize investigation'
SYMBOLICATE_SUGGESTION = 'Symbolicate the crash log with the matching dSYM to get detailed stack traces'

# (keyword already covered, suggestion)
CATEGORY_SUGGESTIONS = {
    'memory': [
        ('Address Sanitizer', 'Run the app with Address Sanitizer enabled to catch memory issues'),
        ('Zombie', 'Enable Zombie Objects in Xcode to detect use-after-free'),
    ],
    'threading': [
        ('Thread Sanitizer', 'Use Thread Sanitizer to detect race conditions'),
        ('background threads', 'Check for UI updates from background threads'),
    ],
    'resource': [
        ('Allocations', 'Profile memory usage with Instruments Allocations tool'),
        ('caching', 'Check for image and data caching strategies'),
    ],
    'watchdog': [
        ('Time Profiler', 'Profile main thread blocking with Time Profiler'),
        ('synchronous', 'Check for synchronous network calls or file I/O on main thread'),
    ],
    'anr': [
        ('StrictMode', 'Enable StrictMode to catch disk and network access on the main thread'),
        ('main thread', 'Move blocking work off the main thread'),
    ],
    'native': [
        ('ndk-stack', 'Symbolicate the tombstone with ndk-stack to locate the native frame'),
        ('HWASan', 'Run with HWASan or ASan to catch native memory errors'),
    ],
}

INDICATOR_CATEGORIES = {
    IndicatorType.EXCEPTION: 'exception',
    IndicatorType.ANR: 'anr',
    IndicatorType.NATIVE_CRASH: 'native',
    IndicatorType.OOM: 'resource',
    IndicatorType.SIGNAL: 'memory',
    IndicatorType.ASSERTION: 'assertion',
}

EXCEPTION_CATEGORIES = {
    'EXC_BAD_ACCESS': 'memory',
    'SIGBUS': 'memory',
    'SIGSEGV': 'memory',
    'SIGABRT': 'exception',
    'EXC_RESOURCE': 'resource',
}


def calculate_confidence(rule: PatternRule, report: CrashReport) -> float:
    confidence = BASE_CONFIDENCE
    if report.is_symbolicated:
        confidence += 0.1
    if rule.severity == Severity.CRITICAL:
        confidence += 0.1
    return round(min(confidence, 1.0), 2)


def detect_crash_patterns(report: CrashReport,
                          summary: Optional[DeviceLogSummary] = None) -> List[CrashPattern]:
    """Run every rule, sorted by severity then confidence."""
    ctx = ClassificationContext(report, summary)
    detected: List[CrashPattern] = []

    for rule in CRASH_RULES:
        try:
            evidence = rule.matcher(ctx)
        except Exception as e:
            logger.debug(f"Rule {rule.id} failed: {e}")
            continue
        if evidence is None:
            continue
        detected.append(CrashPattern(
            id=rule.id,
            name=rule.name,
            severity=rule.severity,
            description=rule.description,
            evidence=evidence,
            likely_cause=rule.likely_cause,
            suggestion=rule.suggestion,
            confidence=calculate_confidence(rule, report),
            category=rule.category,
        ))

    detected.sort(key=lambda p: (p.severity.rank, -p.confidence))
    return detected


def determine_category(report: CrashReport, patterns: List[CrashPattern],
                       summary: Optional[DeviceLogSummary] = None) -> str:
    if patterns:
        return patterns[0].category

    exception = report.exception
    for key in (exception.type, exception.signal):
        if key in EXCEPTION_CATEGORIES:
            return EXCEPTION_CATEGORIES[key]

    if summary and summary.crash_indicators:
        return INDICATOR_CATEGORIES[summary.crash_indicators[0].type]

    for frame in report.crashed_thread.frames:
        if 'dispatch_' in frame.symbol or 'pthread_' in frame.symbol:
            return 'threading'

    return 'unknown'


def determine_severity(report: CrashReport, patterns: List[CrashPattern],
                       summary: Optional[DeviceLogSummary] = None) -> Severity:
    severities = [p.severity for p in patterns]
    if summary:
        severities += [i.severity for i in summary.crash_indicators]
    if severities:
        return min(severities, key=lambda s: s.rank)
    if any(f.is_app_code for f in report.crashed_thread.frames):
        return Severity.MEDIUM
    return Severity.LOW


def find_key_frames(report: CrashReport) -> List[StackFrame]:
    """App frames of the crashed thread first, topped up with its first frames."""
    frames = report.crashed_thread.frames
    key_frames: List[StackFrame] = []
    seen = set()

    for frame in frames:
        if frame.is_app_code and frame.symbol not in seen:
            key_frames.append(frame)
            seen.add(frame.symbol)
            if len(key_frames) >= MAX_KEY_FRAMES:
                break

    if len(key_frames) < 3:
        for frame in frames[:3]:
            if frame.symbol not in seen:
                key_frames.append(frame)
                seen.add(frame.symbol)

    return key_frames


_SWIFT_MANGLED_RE = re.compile(r"\$s\d*(\w+)C\d*(\w+)")
_OBJC_METHOD_RE = re.compile(r'[-+]\[(\w+)\s+(\w+)')


def clean_symbol_name(symbol: str) -> str:
    match = _SWIFT_MANGLED_RE.search(symbol)
    if match:
        return f"{match.group(1)}.{match.group(2)}()"
    match = _OBJC_METHOD_RE.search(symbol)
    if match:
        return f"{match.group(1)}.{match.group(2)}()"
    return symbol


def get_top_suspects(report: CrashReport,
                     summary: Optional[DeviceLogSummary] = None) -> List[str]:
    suspects: List[str] = []

    for frame in report.crashed_thread.frames:
        if frame.is_app_code and not is_raw_symbol(frame.symbol):
            cleaned = clean_symbol_name(frame.symbol)
            if cleaned not in suspects:
                suspects.append(cleaned)
            if len(suspects) >= MAX_SUSPECTS:
                return suspects

    if not suspects and summary:
        for indicator in summary.crash_indicators:
            if indicator.message not in suspects:
                suspects.append(indicator.message)
            if len(suspects) >= MAX_SUSPECTS:
                break

    return suspects


def is_likely_reproducible(patterns: List[CrashPattern],
                           summary: Optional[DeviceLogSummary] = None) -> bool:
    """Concrete crash evidence means likely reproducible; ambient errors alone may be flaky."""
    return bool(patterns) or bool(summary and summary.crash_indicators)


def generate_crash_description(report: CrashReport, patterns: List[CrashPattern],
                               summary: Optional[DeviceLogSummary] = None) -> str:
    if patterns:
        return f"{patterns[0].name}: {patterns[0].description}"

    if summary is not None and not summary.crash_indicators:
        return 'No crash indicators found in device logs'

    exception = report.exception
    if exception.signal and exception.signal != exception.type:
        return f"{exception.type} ({exception.signal})"
    return exception.type


def generate_crash_suggestions(patterns: List[CrashPattern]) -> List[str]:
    suggestions = [p.suggestion for p in patterns]
    if not patterns:
        suggestions.extend(DEFAULT_SUGGESTIONS)
    if any(p.severity == Severity.CRITICAL for p in patterns):
        suggestions.append(CRITICAL_SUGGESTION)
    return list(dict.fromkeys(suggestions))


def enhance_suggestions(suggestions: List[str], report: CrashReport, category: str) -> List[str]:
    enhanced = list(suggestions)

    has_frames = any(True for _ in report.iter_frames())
    if has_frames and not report.is_symbolicated:
        enhanced.insert(0, SYMBOLICATE_SUGGESTION)

    for keyword, suggestion in CATEGORY_SUGGESTIONS.get(category, []):
        if not any(keyword in s for s in enhanced):
            enhanced.append(suggestion)

    return list(dict.fromkeys(enhanced))


@dataclass
class PatternAnalysis:
    """Everything the classifier derives from one report."""
    patterns: List[CrashPattern] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    category: str = 'unknown'
    severity: Severity = Severity.LOW
    description: str = ''
    suspects: List[str] = field(default_factory=list)
    reproducible: bool = False
    key_frames: List[StackFrame] = field(default_factory=list)


def analyze_patterns(report: CrashReport,
                     summary: Optional[DeviceLogSummary] = None) -> PatternAnalysis:
    """Classify a report; also stores the matched patterns on ``report.patterns``."""
    patterns = detect_crash_patterns(report, summary)
    report.patterns = patterns

    category = determine_category(report, patterns, summary)
    suggestions = enhance_suggestions(generate_crash_suggestions(patterns), report, category)

    return PatternAnalysis(
        patterns=patterns,
        suggestions=suggestions,
        category=category,
        severity=determine_severity(report, patterns, summary),
        description=generate_crash_description(report, patterns, summary),
        suspects=get_top_suspects(report, summary),
        reproducible=is_likely_reproducible(patterns, summary),
        key_frames=find_key_frames(report),
    )


def generate_crash_summary(report: CrashReport) -> str:
    """Markdown crash summary."""
    exception = report.exception
    lines = [
        '## Crash Summary',
        '',
        f"**Process**: {report.process_name} ({report.bundle_id or 'unknown'})",
        f"**Exception**: {exception.type}" + (f" ({exception.codes})" if exception.codes else ''),
        f"**Device**: {report.device_model or 'Unknown'} - {report.os_version or 'Unknown'}",
        f"**Time**: {report.timestamp.isoformat()}",
        '',
    ]

    crashed = report.crashed_thread
    lines.append(f"### Crashed Thread ({crashed.index})")
    lines.append('')

    app_frames = [f for f in crashed.frames if f.is_app_code][:5]
    if app_frames:
        lines.append('**App Code:**')
        for frame in app_frames:
            location = f" ({frame.file}:{frame.line})" if frame.file and frame.line else ''
            lines.append(f"  {frame.index}: {frame.symbol}{location}")
    else:
        lines.append('**Stack:**')
        for frame in crashed.frames[:5]:
            lines.append(f"  {frame.index}: {frame.binary} - {frame.symbol}")
    lines.append('')

    if report.patterns:
        lines.append('### Detected Patterns')
        lines.append('')
        for pattern in report.patterns:
            lines.append(f"- **{pattern.name}** ({pattern.severity.value}): {pattern.description}")
            lines.append(f"  *Likely cause*: {pattern.likely_cause}")
        lines.append('')

    return '\n'.join(lines)
