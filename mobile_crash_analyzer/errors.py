"""Error types for Mobile Crash Analyzer.

Every error carries a stable code and, where one exists, a suggestion the
caller can show to the user. The orchestrator turns them into failed
analysis results; none of them escapes ``CrashAnalyzer.analyze``.
"""
from typing import Dict, Any, Optional


class CrashAnalysisError(Exception):
    """Base class for analysis errors."""

    code = "UNKNOWN_ERROR"
    default_suggestion: Optional[str] = None

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion or self.default_suggestion

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details,
            'suggestion': self.suggestion,
        }


class FormatError(CrashAnalysisError):
    """Structured (JSON) crash report could not be decoded."""

    code = "INVALID_FORMAT"
    default_suggestion = "Ensure the crash log file is a valid .ips or .crash format"

    def __init__(self, message: str, diagnostic: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.diagnostic = diagnostic
        if diagnostic:
            self.details.setdefault('diagnostic', diagnostic)


class CrashLogNotFoundError(CrashAnalysisError):
    """Crash log path does not exist."""

    code = "NO_CRASH_LOGS"
    default_suggestion = "Check the crash log path, or omit it to analyze live device logs"

    def __init__(self, path: str, message: Optional[str] = None):
        super().__init__(message or f"Crash log file not found: {path}", details={'path': path})
        self.path = path


class CrashLogReadError(CrashLogNotFoundError):
    """Crash log path exists but could not be read."""

    default_suggestion = "Check that the crash log file is readable, or copy it to a local path"

    def __init__(self, path: str, reason: str):
        super().__init__(path, f"Cannot read crash log file {path}: {reason}")
        self.details['reason'] = reason


class MissingDeviceError(CrashAnalysisError):
    """No device or log source is available."""

    code = "DEVICE_NOT_FOUND"
    default_suggestion = "Connect a device or boot an emulator/simulator, then retry"


class SymbolicationError(CrashAnalysisError):
    """Symbol resolver failed, timed out or is not installed."""

    code = "SYMBOLICATION_FAILED"
    default_suggestion = "Install Xcode command line tools (atos, dwarfdump) and verify the dSYM"
