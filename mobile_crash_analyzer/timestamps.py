"""Timestamp parsing shared by the crash report parsers."""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

# "2025-01-15 14:30:00.1234 +0000", "2025-01-15T14:30:00Z", "2025-01-15 14:30:00"
_TIMESTAMP_RE = re.compile(
    r'^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2}):(\d{2})'
    r'(?:\.(\d+))?\s*(Z|[+-]\d{2}:?\d{2})?$'
)


def now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_offset(text: str) -> timezone:
    if text == 'Z':
        return timezone.utc
    sign = -1 if text[0] == '-' else 1
    digits = text[1:].replace(':', '')
    delta = timedelta(hours=int(digits[:2]), minutes=int(digits[2:4]))
    return timezone(sign * delta)


def parse_timestamp(text: Optional[str], fallback: Optional[datetime] = None) -> datetime:
    """Parse a crash report timestamp.

    Unparseable or missing values yield ``fallback`` (the capture time),
    which defaults to the current time.
    """
    if fallback is None:
        fallback = now()
    if not text:
        return fallback

    match = _TIMESTAMP_RE.match(text.strip())
    if not match:
        return fallback

    year, month, day, hour, minute, second, fraction, offset = match.groups()
    micros = int((fraction or '0')[:6].ljust(6, '0'))
    try:
        return datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micros,
            tzinfo=_parse_offset(offset) if offset else None,
        )
    except ValueError:
        return fallback
