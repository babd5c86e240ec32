"""Text and JSON rendering of analysis results."""
from __future__ import annotations

import json
from typing import List

from .core import CrashAnalysisResult
from .models import DeviceLogSummary, StackFrame

MAX_RENDERED_TRACES = 3
MAX_RENDERED_ERRORS = 10


def _device_log_section(summary: DeviceLogSummary) -> List[str]:
    lines = [
        '### Device Logs',
        '',
        f"**Entries**: {summary.total_entries} "
        f"({summary.error_count} errors, {summary.fatal_count} of them fatal)",
        '',
    ]

    if summary.crash_indicators:
        lines.append('**Crash Indicators:**')
        for indicator in summary.crash_indicators:
            lines.append(f"- [{indicator.severity.value}] {indicator.type.value}: {indicator.message}")
        lines.append('')

    if summary.key_errors:
        lines.append('**Key Errors:**')
        for message in summary.key_errors[:MAX_RENDERED_ERRORS]:
            lines.append(f"- {message}")
        lines.append('')

    for trace in summary.stack_traces[:MAX_RENDERED_TRACES]:
        lines.append('```')
        lines.append(trace)
        lines.append('```')
        lines.append('')

    return lines


def _frame_line(frame: StackFrame) -> str:
    location = f" ({frame.file}:{frame.line})" if frame.file and frame.line else ''
    marker = ' [app]' if frame.is_app_code else ''
    return f"- #{frame.index} `{frame.symbol}` in {frame.binary}{location}{marker}"


def format_analysis(result: CrashAnalysisResult) -> str:
    """Render a result as Markdown for people and agents."""
    lines: List[str] = []

    if not result.success:
        lines.append('## Crash Analysis Failed')
        lines.append('')
        lines.append(f"**Error**: {result.error}")
        lines.append('')
        lines.append('**Suggestions**:')
        for suggestion in result.suggestions:
            lines.append(f"- {suggestion}")
        return '\n'.join(lines)

    lines.append('## Crash Analysis')
    lines.append('')
    lines.append(f"**Description**: {result.description}")
    lines.append(f"**Category**: {result.category}")
    lines.append(f"**Severity**: {result.severity.value}")
    lines.append(f"**Reproducible**: {'Likely' if result.reproducible else 'May be flaky'}")
    lines.append(f"**Symbolication**: {result.dsym_status.value}")
    lines.append('')

    if result.suspects:
        lines.append('### Suspect Functions')
        lines.append('')
        for suspect in result.suspects:
            lines.append(f"- `{suspect}`")
        lines.append('')

    if result.key_frames:
        lines.append('### Key Frames')
        lines.append('')
        lines.extend(_frame_line(frame) for frame in result.key_frames)
        lines.append('')

    lines.append(result.summary)

    if result.device_logs is not None:
        lines.extend(_device_log_section(result.device_logs))

    if result.suggestions:
        lines.append('')
        lines.append('### Recommended Actions')
        lines.append('')
        for suggestion in result.suggestions:
            lines.append(f"- {suggestion}")

    return '\n'.join(lines)


def format_json(result: CrashAnalysisResult) -> str:
    return json.dumps(result.to_dict(), indent=2)
