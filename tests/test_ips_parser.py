"""Tests for the IPS (JSON) crash report parser."""
import json
from datetime import datetime, timezone

import pytest

from mobile_crash_analyzer.errors import FormatError
from mobile_crash_analyzer.ips_parser import extract_fault_address, parse_ips
from mobile_crash_analyzer.models import Platform


def test_exception_type_and_signal(ips_flat, captured_at):
    """EXC_BAD_ACCESS / SIGSEGV are carried through unchanged."""
    report = parse_ips(ips_flat, captured_at)
    assert report.platform == Platform.IOS
    assert report.exception.type == "EXC_BAD_ACCESS"
    assert report.exception.signal == "SIGSEGV"
    assert report.exception.codes == "KERN_INVALID_ADDRESS"
    assert report.exception.fault_address == "0x0000000000000010"


def test_metadata_fields(ips_flat, captured_at):
    """Header fields map onto the report."""
    report = parse_ips(ips_flat, captured_at)
    assert report.process_name == "TestApp"
    assert report.bundle_id == "com.example.TestApp"
    assert report.app_version == "1.0"
    assert report.report_id == "INCIDENT-1"
    assert report.device_model == "iPhone14,2"
    assert report.os_version == "iPhone OS 17.2"
    assert report.timestamp == datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)
    assert report.raw_log == ips_flat


def test_threads_frames_and_images(ips_flat, captured_at):
    """Frames get address fallbacks and app-code flags."""
    report = parse_ips(ips_flat, captured_at)
    assert len(report.threads) == 2
    assert report.crashed_thread.index == 0
    assert [t.crashed for t in report.threads] == [True, False]

    frames = report.crashed_thread.frames
    assert frames[0].symbol == "0x100001250"
    assert frames[0].is_app_code is True
    assert frames[2].is_app_code is False
    assert report.is_symbolicated is False

    assert report.binary_images[0].uuid == "A1B2C3D4-E5F6-7890-ABCD-EF1234567890"
    assert report.binary_images[0].load_address == "0x100000000"


def test_defaults_for_missing_fields(captured_at):
    """A bare object still produces a usable report."""
    report = parse_ips("{}", captured_at)
    assert report.process_name == "Unknown"
    assert report.exception.type == "UNKNOWN"
    assert report.exception.fault_address is None
    assert report.timestamp == captured_at
    assert report.threads == []
    assert report.crashed_thread.crashed is True


def test_unresolved_frame_symbol(captured_at):
    """Frames without symbol or address fall back to ???."""
    doc = {"threads": [{"frames": [{"image_name": "libfoo.dylib"}]}]}
    report = parse_ips(json.dumps(doc), captured_at)
    frame = report.threads[0].frames[0]
    assert frame.symbol == "???"
    assert frame.address == "0x0"


def test_faulting_thread_index_used_when_nothing_flagged(ips_document, captured_at):
    """Without a crashed flag the declared faulting thread is chosen."""
    doc = ips_document
    doc["threads"][0]["crashed"] = False
    doc["faulting_thread"] = 1
    report = parse_ips(json.dumps(doc), captured_at)
    assert report.crashed_thread_index == 1
    assert sum(1 for t in report.threads if t.crashed) == 1


def test_malformed_json_raises_format_error():
    """Bad JSON is a FormatError carrying the decoder diagnostic."""
    with pytest.raises(FormatError) as exc_info:
        parse_ips('{"app_name": "TestApp", ')
    assert exc_info.value.diagnostic
    assert exc_info.value.code == "INVALID_FORMAT"


def test_non_object_json_raises_format_error():
    """Top-level arrays are rejected."""
    with pytest.raises(FormatError):
        parse_ips('[1, 2, 3]')


def test_parsing_is_idempotent(ips_flat, captured_at):
    """Same content and capture time give equal reports."""
    assert parse_ips(ips_flat, captured_at) == parse_ips(ips_flat, captured_at)

    undated = json.dumps({"app_name": "TestApp"})
    assert parse_ips(undated, captured_at) == parse_ips(undated, captured_at)


def test_apple_two_document_layout(ips_apple, captured_at):
    """Header line plus body are merged into one report."""
    report = parse_ips(ips_apple, captured_at)
    assert report.process_name == "TestApp"
    assert report.bundle_id == "com.example.TestApp"
    assert report.app_version == "2.0"
    assert report.report_id == "APPLE-INCIDENT"
    assert report.os_version == "iPhone OS 17.2 (21C62)"
    assert report.exception.type == "EXC_CRASH"
    assert report.exception.signal == "SIGABRT"

    assert report.crashed_thread_index == 1
    assert report.crashed_thread.name == "com.apple.main-thread"
    frames = report.crashed_thread.frames
    assert frames[0].symbol == "__pthread_kill"
    assert frames[0].offset == 8
    assert frames[1].address == "0x100001250"
    assert frames[1].is_app_code is True
    assert report.is_symbolicated is True

    assert report.binary_images[0].end_address == "0x100003fff"
    assert report.binary_images[1].uuid == "11112222-3333-4444-5555-666677778888"


def test_extract_fault_address():
    """Addresses are pulled from "at 0x..." text only."""
    assert extract_fault_address("KERN_INVALID_ADDRESS at 0x0000000000000010") == "0x0000000000000010"
    assert extract_fault_address("KERN_PROTECTION_FAILURE") is None
    assert extract_fault_address(None) is None


def test_minimal_document_single_thread(captured_at):
    """One thread and an exception object are enough for a report."""
    doc = {"exception": {"type": "EXC_BAD_ACCESS", "signal": "SIGSEGV"},
           "threads": [{"frames": [{"symbol": "main", "image_name": "TestApp"}]}]}
    report = parse_ips(json.dumps(doc), captured_at)
    assert report.exception.type == "EXC_BAD_ACCESS"
    assert report.exception.signal == "SIGSEGV"
    assert len(report.threads) == 1
    assert report.crashed_thread is report.threads[0]
