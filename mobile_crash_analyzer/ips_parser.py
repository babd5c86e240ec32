"""IPS (JSON) crash report parser.

Handles two layouts:

* the flat single-object layout (``app_name``, ``exception``, ``threads``,
  ``binary_images`` ...), and
* Apple's two-document ``.ips`` layout: a one-line JSON header followed by a
  JSON body (``procName``, ``threads[].triggered``, ``usedImages`` ...).

Both are normalized into the flat layout before building a ``CrashReport``.
"""
from __future__ import annotations

import json
import os
import re
from datetime import datetime
from typing import List, Dict, Any, Optional, Tuple

from .errors import FormatError
from .models import (
    BinaryImage,
    CrashException,
    CrashReport,
    Platform,
    StackFrame,
    ThreadInfo,
    UNRESOLVED_SYMBOL,
    build_report,
)
from .timestamps import parse_timestamp

_FAULT_ADDRESS_RE = re.compile(r'at\s+(0x[0-9a-fA-F]+)', re.IGNORECASE)


def extract_fault_address(text: Optional[str]) -> Optional[str]:
    """Pull ``0x...`` out of "KERN_INVALID_ADDRESS at 0x..." style text."""
    if not text:
        return None
    match = _FAULT_ADDRESS_RE.search(text)
    return match.group(1) if match else None


def _hex(value: Any) -> Optional[str]:
    """Render an address that may arrive as int or string."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return hex(value)
    return str(value)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            return None
    return None


def _decode_documents(content: str) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    decoder = json.JSONDecoder()
    text = content.strip()

    try:
        header, end = decoder.raw_decode(text)
    except json.JSONDecodeError as e:
        raise FormatError(f"Invalid IPS JSON: {e}", diagnostic=str(e)) from e
    if not isinstance(header, dict):
        raise FormatError("Invalid IPS JSON: top-level value is not an object",
                          diagnostic=f"got {type(header).__name__}")

    rest = text[end:].strip()
    if not rest:
        return header, None

    try:
        body, body_end = decoder.raw_decode(rest)
    except json.JSONDecodeError as e:
        raise FormatError(f"Invalid IPS body JSON: {e}", diagnostic=str(e)) from e
    if not isinstance(body, dict):
        raise FormatError("Invalid IPS body: not an object",
                          diagnostic=f"got {type(body).__name__}")
    if rest[body_end:].strip():
        raise FormatError("Invalid IPS JSON: unexpected data after report body",
                          diagnostic=rest[body_end:body_end + 40])
    return header, body


def _normalize_apple_body(header: Dict[str, Any], body: Dict[str, Any]) -> Dict[str, Any]:
    """Map the Apple header/body pair onto the flat layout."""
    doc = dict(header)
    images = body.get('usedImages') or []
    bundle_info = body.get('bundleInfo') or {}
    os_info = body.get('osVersion')

    if isinstance(os_info, dict):
        os_version = os_info.get('train')
        if os_version and os_info.get('build'):
            os_version = f"{os_version} ({os_info['build']})"
    else:
        os_version = os_info

    def image_at(idx: Any) -> Dict[str, Any]:
        if isinstance(idx, int) and 0 <= idx < len(images) and isinstance(images[idx], dict):
            return images[idx]
        return {}

    threads = []
    for position, thread in enumerate(body.get('threads') or []):
        if not isinstance(thread, dict):
            continue
        frames = []
        for frame in thread.get('frames') or []:
            if not isinstance(frame, dict):
                continue
            image = image_at(frame.get('imageIndex'))
            base = _as_int(image.get('base'))
            image_offset = _as_int(frame.get('imageOffset'))
            address = hex(base + image_offset) if base is not None and image_offset is not None else None
            frames.append({
                'image_name': image.get('name') or os.path.basename(image.get('path') or '') or None,
                'instruction_addr': address,
                'symbol': frame.get('symbol'),
                'symbol_location': frame.get('symbolLocation'),
            })
        threads.append({
            'id': position,
            'name': thread.get('name') or thread.get('queue'),
            'crashed': bool(thread.get('triggered', False)),
            'frames': frames,
        })

    binary_images = []
    for image in images:
        if not isinstance(image, dict):
            continue
        base = _as_int(image.get('base'))
        size = _as_int(image.get('size'))
        binary_images.append({
            'name': image.get('name') or os.path.basename(image.get('path') or ''),
            'arch': image.get('arch'),
            'uuid': image.get('uuid'),
            'base_addr': _hex(base),
            'end_addr': hex(base + size - 1) if base is not None and size else None,
            'path': image.get('path'),
        })

    mapped = {
        'app_name': body.get('procName'),
        'bundle_id': bundle_info.get('CFBundleIdentifier') or header.get('bundleID'),
        'app_version': bundle_info.get('CFBundleShortVersionString'),
        'timestamp': body.get('captureTime'),
        'incident_id': body.get('incident'),
        'os_version': os_version,
        'hardware_model': body.get('modelCode'),
        'exception': body.get('exception'),
        'faulting_thread': body.get('faultingThread'),
        'threads': threads,
        'binary_images': binary_images,
    }
    doc.update({k: v for k, v in mapped.items() if v is not None})
    return doc


def _app_image_names(images: List[BinaryImage], app_name: str) -> set:
    if not app_name:
        return set()
    marker = f"/{app_name}.app/".lower()
    return {img.name for img in images if marker in img.path.lower()}


def _is_app_binary(binary: str, app_name: str, app_images: set) -> bool:
    if not app_name or not binary:
        return False
    return (binary == app_name
            or app_name.lower() in binary.lower()
            or binary in app_images)


def _parse_frame(frame: Dict[str, Any], index: int, app_name: str, app_images: set) -> StackFrame:
    binary = frame.get('image_name') or 'unknown'
    instruction = _hex(frame.get('instruction_addr'))
    address = instruction or _hex(frame.get('symbol_addr')) or '0x0'
    symbol = frame.get('symbol') or instruction or UNRESOLVED_SYMBOL
    return StackFrame(
        index=index,
        binary=binary,
        address=address,
        symbol=str(symbol),
        offset=_as_int(frame.get('symbol_location')),
        is_app_code=_is_app_binary(binary, app_name, app_images),
    )


def _parse_thread(thread: Dict[str, Any], fallback_index: int, app_name: str,
                  app_images: set) -> ThreadInfo:
    frames = [
        _parse_frame(f, idx, app_name, app_images)
        for idx, f in enumerate(f for f in (thread.get('frames') or []) if isinstance(f, dict))
    ]
    index = _as_int(thread.get('id'))
    return ThreadInfo(
        index=index if index is not None else fallback_index,
        name=thread.get('name'),
        crashed=bool(thread.get('crashed', False)),
        frames=frames,
    )


def _parse_image(image: Dict[str, Any]) -> BinaryImage:
    return BinaryImage(
        name=image.get('name') or 'unknown',
        arch=image.get('arch') or 'arm64',
        uuid=image.get('uuid') or '',
        load_address=_hex(image.get('base_addr')) or '0x0',
        end_address=_hex(image.get('end_addr')),
        path=image.get('path') or '',
    )


def parse_ips(content: str, captured_at: Optional[datetime] = None) -> CrashReport:
    """Parse IPS JSON text into a CrashReport.

    Args:
        content: Raw file content (must start with ``{`` once trimmed)
        captured_at: Timestamp used when the report carries none (default: now)

    Raises:
        FormatError: The JSON could not be decoded
    """
    header, body = _decode_documents(content)
    doc = _normalize_apple_body(header, body) if body is not None else header

    app_name = doc.get('app_name') or doc.get('name') or ''
    images = [_parse_image(img) for img in (doc.get('binary_images') or []) if isinstance(img, dict)]
    app_images = _app_image_names(images, app_name)

    threads = [
        _parse_thread(t, idx, app_name, app_images)
        for idx, t in enumerate(t for t in (doc.get('threads') or []) if isinstance(t, dict))
    ]

    exc = doc.get('exception') if isinstance(doc.get('exception'), dict) else {}
    codes = exc.get('codes')
    exception = CrashException(
        type=exc.get('type') or 'UNKNOWN',
        codes=str(codes) if codes is not None else None,
        signal=exc.get('signal'),
        fault_address=extract_fault_address(exc.get('subtype')),
    )

    return build_report(
        Platform.IOS,
        parse_timestamp(doc.get('timestamp'), captured_at),
        threads,
        faulting_index=_as_int(doc.get('faulting_thread')),
        report_id=doc.get('incident_id'),
        device_model=doc.get('hardware_model'),
        os_version=doc.get('os_version'),
        process_name=app_name or 'Unknown',
        bundle_id=doc.get('bundle_id'),
        app_version=doc.get('app_version'),
        exception=exception,
        binary_images=images,
        raw_log=content,
    )
