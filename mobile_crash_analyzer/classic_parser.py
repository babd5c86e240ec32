"""Classic (.crash text) crash report parser.

The classic format is a human-readable report whose structure is convention
rather than grammar, so this parser never rejects input: lines that match no
known pattern are skipped.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .ips_parser import extract_fault_address
from .models import (
    BinaryImage,
    CrashException,
    CrashReport,
    Platform,
    StackFrame,
    ThreadInfo,
    build_report,
)
from .timestamps import parse_timestamp

# Headers always precede the body; later lines are never treated as headers
HEADER_SCAN_LINES = 30

# "Thread 0 name:  Dispatch queue: com.apple.main-thread", "Thread 0 Crashed:", "Thread 3:"
THREAD_HEADER_RE = re.compile(r'^Thread\s+(\d+)(?:\s+name:\s*(.+?))?(\s+Crashed)?:?\s*$')

# "0   TestApp  0x0000000100001250 symbol + 28"
FRAME_RE = re.compile(r'^(\d+)\s+(\S+)\s+(0x[0-9a-fA-F]+)\s+(.+?)(?:\s+\+\s+(\d+))?$')

# "0x100000000 - 0x100003fff TestApp arm64  <a1b2c3d4...> /path/to/TestApp"
BINARY_IMAGE_RE = re.compile(
    r'^(0x[0-9a-fA-F]+)\s+-\s+(0x[0-9a-fA-F]+)\s+(\S+)\s+(\S+)\s+<([^>]+)>\s+(.+)$'
)

EXCEPTION_TYPE_RE = re.compile(r'^Exception Type:\s+(\S+)\s*\((\S+?)\)')
PROCESS_RE = re.compile(r'^Process:\s+(\S+)')


@dataclass
class ClassicHeader:
    """Metadata found in the report preamble."""
    timestamp: datetime
    incident_id: Optional[str] = None
    process_name: str = "Unknown"
    bundle_id: Optional[str] = None
    app_version: Optional[str] = None
    hardware_model: Optional[str] = None
    os_version: Optional[str] = None


def _field_value(line: str) -> Optional[str]:
    value = line.partition(':')[2].strip()
    return value or None


def parse_header(lines: List[str], captured_at: Optional[datetime] = None) -> ClassicHeader:
    """Scan the first HEADER_SCAN_LINES lines for fixed-prefix fields."""
    header = ClassicHeader(timestamp=parse_timestamp(None, captured_at))

    for line in lines[:HEADER_SCAN_LINES]:
        trimmed = line.strip()

        if trimmed.startswith('Incident Identifier:'):
            header.incident_id = _field_value(trimmed)
        elif trimmed.startswith('Hardware Model:'):
            header.hardware_model = _field_value(trimmed)
        elif trimmed.startswith('Process:'):
            match = PROCESS_RE.match(trimmed)
            if match:
                header.process_name = match.group(1)
        elif trimmed.startswith('Identifier:'):
            header.bundle_id = _field_value(trimmed)
        elif trimmed.startswith('Version:'):
            header.app_version = _field_value(trimmed)
        elif trimmed.startswith('OS Version:'):
            header.os_version = _field_value(trimmed)
        elif trimmed.startswith('Date/Time:'):
            header.timestamp = parse_timestamp(_field_value(trimmed), header.timestamp)

    return header


def parse_exception(lines: List[str]) -> CrashException:
    """Scan the whole document for the exception block."""
    exception = CrashException()
    subtype_address = None
    codes_address = None
    has_subtype = False

    for line in lines:
        trimmed = line.strip()

        if trimmed.startswith('Exception Type:'):
            match = EXCEPTION_TYPE_RE.match(trimmed)
            if match:
                exception.type = match.group(1)
                exception.signal = match.group(2)
            else:
                tokens = (_field_value(trimmed) or '').split()
                exception.type = tokens[0] if tokens else 'UNKNOWN'
        elif trimmed.startswith('Exception Subtype:'):
            exception.codes = _field_value(trimmed)
            has_subtype = True
            subtype_address = extract_fault_address(exception.codes)
        elif trimmed.startswith('Exception Codes:'):
            codes = _field_value(trimmed)
            codes_address = extract_fault_address(codes)
            if not has_subtype:
                exception.codes = codes

    exception.fault_address = subtype_address or codes_address
    return exception


def parse_threads(lines: List[str], process_name: str) -> List[ThreadInfo]:
    """Collect threads and their frames in one forward pass."""
    threads: List[ThreadInfo] = []
    current_thread: Optional[ThreadInfo] = None
    in_thread_section = False

    for line in lines:
        trimmed = line.strip()

        header = THREAD_HEADER_RE.match(trimmed)
        if header:
            index = int(header.group(1))
            name = header.group(2).strip() if header.group(2) else None
            crashed = header.group(3) is not None

            if current_thread and current_thread.index == index and not current_thread.frames:
                # "Thread 0 name: ..." directly followed by "Thread 0 Crashed:"
                current_thread.name = current_thread.name or name
                current_thread.crashed = current_thread.crashed or crashed
            else:
                if current_thread:
                    threads.append(current_thread)
                current_thread = ThreadInfo(index=index, name=name, crashed=crashed)
            in_thread_section = True
            continue

        if not (in_thread_section and current_thread):
            continue

        frame = FRAME_RE.match(trimmed)
        if frame:
            binary = frame.group(2)
            current_thread.frames.append(StackFrame(
                index=int(frame.group(1)),
                binary=binary,
                address=frame.group(3),
                symbol=frame.group(4),
                offset=int(frame.group(5)) if frame.group(5) else None,
                is_app_code=binary == process_name,
            ))
        elif not trimmed or trimmed.startswith('Thread ') or trimmed.startswith('Binary'):
            in_thread_section = False

    if current_thread:
        threads.append(current_thread)

    return threads


def parse_binary_images(lines: List[str]) -> List[BinaryImage]:
    """Parse every image line after the "Binary Images:" marker."""
    images: List[BinaryImage] = []
    in_binary_section = False

    for line in lines:
        trimmed = line.strip()

        if trimmed.startswith('Binary Images:'):
            in_binary_section = True
            continue
        if not in_binary_section:
            continue

        match = BINARY_IMAGE_RE.match(trimmed)
        if match:
            images.append(BinaryImage(
                name=match.group(3).lstrip('+'),
                arch=match.group(4),
                uuid=match.group(5),
                load_address=match.group(1),
                end_address=match.group(2),
                path=match.group(6).strip(),
            ))

    return images


def parse_classic(content: str, captured_at: Optional[datetime] = None) -> CrashReport:
    """Parse classic crash text into a CrashReport. Never raises on content."""
    lines = content.splitlines()

    header = parse_header(lines, captured_at)
    threads = parse_threads(lines, header.process_name)

    return build_report(
        Platform.IOS,
        header.timestamp,
        threads,
        report_id=header.incident_id,
        device_model=header.hardware_model,
        os_version=header.os_version,
        process_name=header.process_name,
        bundle_id=header.bundle_id,
        app_version=header.app_version,
        exception=parse_exception(lines),
        binary_images=parse_binary_images(lines),
        raw_log=content,
    )
