"""Crash log format dispatch.

Content is sniffed rather than trusting the file extension: anything whose
trimmed text starts with ``{`` is IPS JSON, everything else is classic text.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from .classic_parser import parse_classic
from .errors import CrashLogNotFoundError, CrashLogReadError
from .ips_parser import parse_ips
from .logging_utils import get_logger
from .models import CrashReport, Platform

logger = get_logger(__name__)


@dataclass(frozen=True)
class CrashFileSource:
    """A crash report file on disk (iOS only)."""
    path: str
    dsym_path: Optional[str] = None
    bundle_id: Optional[str] = None


@dataclass(frozen=True)
class DeviceLogSource:
    """A live device log window."""
    platform: Platform
    app_id: Optional[str] = None
    device_id: Optional[str] = None
    time_range_seconds: Optional[int] = None


CrashSource = Union[CrashFileSource, DeviceLogSource]


def is_structured(content: str) -> bool:
    return content.lstrip().startswith('{')


def parse_crash_text(content: str, captured_at: Optional[datetime] = None) -> CrashReport:
    """Parse crash report text of either format.

    ``captured_at`` stands in for a missing or unparseable report date and
    defaults to the current time; pin it for repeatable results.

    Raises:
        FormatError: The content looks like JSON but does not decode
    """
    if is_structured(content):
        logger.debug("Parsing crash log as IPS JSON")
        return parse_ips(content, captured_at)
    logger.debug("Parsing crash log as classic text")
    return parse_classic(content, captured_at)


def read_crash_log(path: str) -> str:
    if not os.path.isfile(path):
        raise CrashLogNotFoundError(path)
    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            return f.read()
    except OSError as e:
        raise CrashLogReadError(path, e.strerror or str(e)) from e


def file_modified_at(path: str) -> datetime:
    try:
        return datetime.fromtimestamp(os.path.getmtime(path), tz=timezone.utc)
    except OSError as e:
        raise CrashLogReadError(path, e.strerror or str(e)) from e


def parse_crash_log(path: str, captured_at: Optional[datetime] = None) -> CrashReport:
    """Read and parse a crash log file.

    Reports without a usable date of their own take ``captured_at``, which
    defaults to the file's modification time so that parsing the same file
    twice gives equal reports.

    Raises:
        CrashLogNotFoundError: ``path`` does not exist or cannot be read
        FormatError: Malformed IPS JSON
    """
    content = read_crash_log(path)
    if captured_at is None:
        captured_at = file_modified_at(path)
    logger.info(f"Parsing crash log {path} ({len(content)} bytes)")
    return parse_crash_text(content, captured_at)
