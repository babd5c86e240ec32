"""Mobile Crash Analyzer package.

This package turns mobile crash evidence into a diagnosis, including:
- IPS (JSON) and classic (.crash text) iOS crash report parsing
- Crash signal extraction from Android logcat and iOS unified logs
- dSYM lookup and atos symbolication, with an optional remote dSYM store
- Rule-based crash pattern classification and remediation suggestions
"""
from .core import (
    CrashAnalyzer,
    CrashAnalysisResult,
    select_source,
)
from .config import AnalyzerConfig, load_environment
from .crash_parser import (
    CrashFileSource,
    CrashSource,
    DeviceLogSource,
    parse_crash_log,
    parse_crash_text,
)
from .device_logs import DeviceLogCrashExtractor, analyze_device_logs, synthesize_report
from .errors import (
    CrashAnalysisError,
    CrashLogNotFoundError,
    CrashLogReadError,
    FormatError,
    MissingDeviceError,
    SymbolicationError,
)
from .models import (
    BinaryImage,
    CrashException,
    CrashIndicator,
    CrashPattern,
    CrashReport,
    DeviceLogSummary,
    IndicatorType,
    LogEntry,
    LogLevel,
    Platform,
    Severity,
    StackFrame,
    ThreadInfo,
)
from .patterns import analyze_patterns, generate_crash_summary
from .symbolicate import DsymStatus, Symbolicator

__all__ = [
    # Orchestration
    "CrashAnalyzer",
    "CrashAnalysisResult",
    "select_source",
    "AnalyzerConfig",
    "load_environment",
    # Parsing
    "CrashFileSource",
    "CrashSource",
    "DeviceLogSource",
    "parse_crash_log",
    "parse_crash_text",
    "DeviceLogCrashExtractor",
    "analyze_device_logs",
    "synthesize_report",
    # Symbolication and classification
    "DsymStatus",
    "Symbolicator",
    "analyze_patterns",
    "generate_crash_summary",
    # Errors
    "CrashAnalysisError",
    "CrashLogNotFoundError",
    "CrashLogReadError",
    "FormatError",
    "MissingDeviceError",
    "SymbolicationError",
    # Model
    "BinaryImage",
    "CrashException",
    "CrashIndicator",
    "CrashPattern",
    "CrashReport",
    "DeviceLogSummary",
    "IndicatorType",
    "LogEntry",
    "LogLevel",
    "Platform",
    "Severity",
    "StackFrame",
    "ThreadInfo",
]

__version__ = "1.0.0"
