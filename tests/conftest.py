"""Shared crash report samples."""
import json
import logging
from datetime import datetime, timezone

import pytest


CLASSIC_CRASH = """Incident Identifier: 12345678-1234-1234-1234-123456789ABC
Hardware Model:      iPhone14,2
Process:             TestApp [1234]
Path:                /private/var/containers/Bundle/Application/ABC/TestApp.app/TestApp
Identifier:          com.example.TestApp
Version:             1.2.3 (45)
Date/Time:           2025-01-15 14:30:00.1234 +0000
OS Version:          iPhone OS 17.2 (21C62)

Exception Type:  EXC_BAD_ACCESS (SIGSEGV)
Exception Subtype: KERN_INVALID_ADDRESS at 0x0000000000000000
Exception Codes: 0x0000000000000001, 0x0000000000000000
Triggered by Thread:  0

Thread 0 name:  Dispatch queue: com.apple.main-thread
Thread 0 Crashed:
0   TestApp                       0x0000000100001250 0x100000000 + 4688
1   TestApp                       0x0000000100001300 0x100000000 + 4864
2   UIKitCore                     0x00000001a2b3c4d5 0x1a2b00000 + 248021

Thread 1:
0   libsystem_kernel.dylib        0x00000001c0001234 0x1c0000000 + 4660

Thread 0 crashed with ARM Thread State (64-bit):
    x0: 0x0000000000000000   x1: 0x0000000000000001

Binary Images:
0x100000000 - 0x100003fff TestApp arm64  <a1b2c3d4e5f67890abcdef1234567890> /private/var/containers/Bundle/Application/ABC/TestApp.app/TestApp
0x1a2b00000 - 0x1a2cfffff UIKitCore arm64e  <11112222333344445555666677778888> /System/Library/PrivateFrameworks/UIKitCore.framework/UIKitCore
"""


def ips_flat_document():
    return {
        "app_name": "TestApp",
        "bundle_id": "com.example.TestApp",
        "app_version": "1.0",
        "timestamp": "2025-01-15 14:30:00.00 +0000",
        "os_version": "iPhone OS 17.2",
        "hardware_model": "iPhone14,2",
        "incident_id": "INCIDENT-1",
        "exception": {
            "type": "EXC_BAD_ACCESS",
            "signal": "SIGSEGV",
            "codes": "KERN_INVALID_ADDRESS",
            "subtype": "KERN_INVALID_ADDRESS at 0x0000000000000010",
        },
        "threads": [
            {
                "id": 0,
                "crashed": True,
                "frames": [
                    {"image_name": "TestApp", "instruction_addr": "0x100001250"},
                    {"image_name": "TestApp", "instruction_addr": "0x100001300"},
                    {"image_name": "UIKitCore", "instruction_addr": "0x1a2b3c4d5"},
                ],
            },
            {
                "id": 1,
                "frames": [
                    {"image_name": "libsystem_kernel.dylib", "instruction_addr": "0x1c0001234"},
                ],
            },
        ],
        "binary_images": [
            {
                "name": "TestApp",
                "arch": "arm64",
                "uuid": "a1b2c3d4e5f67890abcdef1234567890",
                "base_addr": "0x100000000",
                "path": "/private/var/containers/Bundle/Application/ABC/TestApp.app/TestApp",
            },
        ],
    }


APPLE_IPS_HEADER = {"app_name": "TestApp", "bundleID": "com.example.TestApp", "bug_type": "309"}

APPLE_IPS_BODY = {
    "procName": "TestApp",
    "captureTime": "2025-01-15 14:30:00.1234 +0000",
    "incident": "APPLE-INCIDENT",
    "modelCode": "iPhone14,2",
    "osVersion": {"train": "iPhone OS 17.2", "build": "21C62"},
    "bundleInfo": {"CFBundleIdentifier": "com.example.TestApp", "CFBundleShortVersionString": "2.0"},
    "exception": {"type": "EXC_CRASH", "signal": "SIGABRT"},
    "faultingThread": 1,
    "threads": [
        {"frames": [{"imageIndex": 1, "imageOffset": 16, "symbol": "mach_msg2_trap", "symbolLocation": 8}]},
        {
            "triggered": True,
            "queue": "com.apple.main-thread",
            "frames": [
                {"imageIndex": 1, "imageOffset": 100, "symbol": "__pthread_kill", "symbolLocation": 8},
                {"imageIndex": 0, "imageOffset": 4688},
            ],
        },
    ],
    "usedImages": [
        {
            "name": "TestApp",
            "base": 4294967296,
            "size": 16384,
            "uuid": "a1b2c3d4-e5f6-7890-abcd-ef1234567890",
            "arch": "arm64",
            "path": "/private/var/containers/Bundle/Application/ABC/TestApp.app/TestApp",
        },
        {
            "name": "libsystem_kernel.dylib",
            "base": 7516192768,
            "size": 4096,
            "uuid": "11112222-3333-4444-5555-666677778888",
            "arch": "arm64e",
            "path": "/usr/lib/system/libsystem_kernel.dylib",
        },
    ],
}


@pytest.fixture
def captured_at():
    return datetime(2025, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def classic_crash():
    return CLASSIC_CRASH


@pytest.fixture
def ips_flat():
    return json.dumps(ips_flat_document())


@pytest.fixture
def ips_apple():
    return json.dumps(APPLE_IPS_HEADER) + "\n" + json.dumps(APPLE_IPS_BODY, indent=2)


@pytest.fixture
def ips_document():
    return ips_flat_document()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Drop handlers installed by setup_logging so later tests start clean."""
    yield
    logger = logging.getLogger("mobile_crash_analyzer")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
