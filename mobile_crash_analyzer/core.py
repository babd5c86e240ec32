"""Crash analysis orchestration for Mobile Crash Analyzer.

One ``CrashAnalyzer.analyze`` call runs select-mode, parse, optional
symbolication, classification and presentation. Errors never escape it: any
``CrashAnalysisError`` becomes a failed ``CrashAnalysisResult`` carrying the
error text and at least one suggestion.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Union

from .config import AnalyzerConfig
from .crash_parser import CrashFileSource, CrashSource, DeviceLogSource, parse_crash_log
from .device_logs import analyze_device_logs
from .errors import CrashAnalysisError, FormatError
from .log_capture import DeviceLogCapture
from .logging_utils import get_logger
from .models import CrashPattern, CrashReport, DeviceLogSummary, Platform, Severity, StackFrame
from .patterns import analyze_patterns, generate_crash_summary
from .symbolicate import DsymStatus, Symbolicator

logger = get_logger(__name__)

FALLBACK_SUGGESTION = 'Check the input and retry the analysis'


@dataclass
class CrashAnalysisResult:
    """Presentation-ready outcome of one analysis."""
    success: bool
    platform: Optional[Platform] = None
    report: Optional[CrashReport] = None
    summary: str = ""
    patterns: List[CrashPattern] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    duration_ms: int = 0
    description: str = ""
    suspects: List[str] = field(default_factory=list)
    reproducible: bool = False
    key_frames: List[StackFrame] = field(default_factory=list)
    category: str = "unknown"
    severity: Severity = Severity.LOW
    dsym_status: DsymStatus = DsymStatus.SKIPPED
    device_logs: Optional[DeviceLogSummary] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'platform': self.platform.value if self.platform else None,
            'report': self.report.to_dict() if self.report else None,
            'summary': self.summary,
            'patterns': [p.to_dict() for p in self.patterns],
            'suggestions': list(self.suggestions),
            'duration_ms': self.duration_ms,
            'description': self.description,
            'suspects': list(self.suspects),
            'reproducible': self.reproducible,
            'key_frames': [f.to_dict() for f in self.key_frames],
            'category': self.category,
            'severity': self.severity.value,
            'dsym_status': self.dsym_status.value,
            'device_logs': self.device_logs.to_dict() if self.device_logs else None,
            'error': self.error,
            'error_code': self.error_code,
        }


def select_source(platform: Platform, crash_log_path: Optional[str] = None,
                  dsym_path: Optional[str] = None, bundle_id: Optional[str] = None,
                  app_id: Optional[str] = None, device_id: Optional[str] = None,
                  time_range_seconds: Optional[int] = None) -> CrashSource:
    """Android always reads device logs; iOS reads the file when one is given."""
    if platform == Platform.IOS and crash_log_path:
        return CrashFileSource(path=crash_log_path, dsym_path=dsym_path, bundle_id=bundle_id)
    if platform == Platform.ANDROID and crash_log_path:
        logger.warning("Android crash files are not supported; analyzing device logs instead")
    return DeviceLogSource(platform=platform, app_id=app_id or bundle_id, device_id=device_id,
                           time_range_seconds=time_range_seconds)


class CrashAnalyzer:
    """Runs crash analyses. Holds collaborators only, no per-request state."""

    def __init__(self, config: Optional[AnalyzerConfig] = None,
                 log_source: Optional[DeviceLogCapture] = None,
                 symbolicator: Optional[Symbolicator] = None):
        self.config = config or AnalyzerConfig()
        self.log_source = log_source or DeviceLogCapture(self.config)
        self.symbolicator = symbolicator or Symbolicator(self.config)

    def analyze(self, platform: Union[Platform, str], crash_log_path: Optional[str] = None,
                dsym_path: Optional[str] = None, bundle_id: Optional[str] = None,
                app_id: Optional[str] = None, device_id: Optional[str] = None,
                skip_symbolication: bool = False, include_raw_log: bool = False,
                time_range_seconds: Optional[int] = None) -> CrashAnalysisResult:
        """
        Analyze a crash file (iOS) or the recent device logs (Android, iOS).

        Returns:
            CrashAnalysisResult; ``success`` is False when parsing failed,
            the file is missing or no device log source is available
        """
        start = time.monotonic()

        try:
            platform = Platform(platform)
        except ValueError:
            return CrashAnalysisResult(
                success=False,
                error=f"Unsupported platform: {platform}",
                suggestions=["Use 'android' or 'ios'"],
                description='Invalid Request',
                duration_ms=_elapsed_ms(start),
            )

        source = select_source(platform, crash_log_path, dsym_path, bundle_id, app_id,
                               device_id, time_range_seconds)
        try:
            if isinstance(source, CrashFileSource):
                result = self._analyze_file(source, skip_symbolication)
            else:
                result = self._analyze_device_logs(source)
        except CrashAnalysisError as e:
            logger.error(f"Analysis failed: {e}")
            result = self._failure(platform, e)

        if result.report is not None and not include_raw_log:
            result.report.raw_log = None
        result.duration_ms = _elapsed_ms(start)
        return result

    def _failure(self, platform: Platform, error: CrashAnalysisError) -> CrashAnalysisResult:
        if isinstance(error, FormatError):
            message = f"Failed to parse crash log: {error}"
            description = 'Parse Error'
        else:
            message = str(error)
            description = 'Analysis Failed'
        return CrashAnalysisResult(
            success=False,
            platform=platform,
            error=message,
            error_code=error.code,
            suggestions=[error.suggestion or FALLBACK_SUGGESTION],
            description=description,
        )

    def _analyze_file(self, source: CrashFileSource,
                      skip_symbolication: bool) -> CrashAnalysisResult:
        report = parse_crash_log(source.path)
        if source.bundle_id and not report.bundle_id:
            report.bundle_id = source.bundle_id

        dsym_status = DsymStatus.SKIPPED
        if not skip_symbolication:
            outcome = self.symbolicator.symbolicate(report, source.dsym_path, source.bundle_id)
            report = outcome.report
            dsym_status = outcome.status
            logger.info(f"Symbolication status: {dsym_status.value}")

        analysis = analyze_patterns(report)
        return CrashAnalysisResult(
            success=True,
            platform=report.platform,
            report=report,
            summary=generate_crash_summary(report),
            patterns=analysis.patterns,
            suggestions=analysis.suggestions,
            description=analysis.description,
            suspects=analysis.suspects,
            reproducible=analysis.reproducible,
            key_frames=analysis.key_frames,
            category=analysis.category,
            severity=analysis.severity,
            dsym_status=dsym_status,
        )

    def _analyze_device_logs(self, source: DeviceLogSource) -> CrashAnalysisResult:
        entries = self.log_source.capture(
            source.platform,
            app_id=source.app_id,
            device_id=source.device_id,
            time_range_seconds=source.time_range_seconds,
            timeout=self.config.log_capture_timeout,
        )
        summary, report = analyze_device_logs(source.platform, entries, process_name=source.app_id)

        analysis = analyze_patterns(report, summary)
        return CrashAnalysisResult(
            success=True,
            platform=source.platform,
            report=report,
            summary=generate_crash_summary(report),
            patterns=analysis.patterns,
            suggestions=analysis.suggestions,
            description=analysis.description,
            suspects=analysis.suspects,
            reproducible=analysis.reproducible,
            key_frames=analysis.key_frames,
            category=analysis.category,
            severity=analysis.severity,
            dsym_status=DsymStatus.SKIPPED,
            device_logs=summary,
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
