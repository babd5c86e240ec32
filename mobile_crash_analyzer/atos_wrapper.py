"""
atos Wrapper - Resolves app addresses through Xcode's command line tools

Handles:
- atos invocation and output parsing
- dwarfdump UUID lookup for dSYM verification
"""
from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from .errors import SymbolicationError
from .logging_utils import get_logger
from .models import normalize_uuid

logger = get_logger(__name__)

# "symbol (in Binary) (File.swift:42)"
ATOS_FULL_RE = re.compile(r'^(.+?)\s+\(in\s+.+?\)\s+\((.+?):(\d+)\)$')
# "symbol (in Binary) + 28"
ATOS_SIMPLE_RE = re.compile(r'^(.+?)\s+\(in\s+.+?\)')
# "UUID: A1B2C3D4-E5F6-7890-ABCD-EF1234567890 (arm64) /path/to/dwarf"
DWARFDUMP_UUID_RE = re.compile(r'UUID:\s+([A-Fa-f0-9-]+)')


@dataclass
class AtosResult:
    """Resolution of a single address"""
    address: str
    symbol: str
    file: Optional[str] = None
    line: Optional[int] = None
    success: bool = False


def parse_atos_line(address: str, line: Optional[str]) -> AtosResult:
    """Parse one line of atos output. A bare address means atos found nothing."""
    if not line or not line.strip():
        return AtosResult(address=address, symbol=address)

    trimmed = line.strip()
    if trimmed == address or trimmed.startswith('0x'):
        return AtosResult(address=address, symbol=address)

    match = ATOS_FULL_RE.match(trimmed)
    if match:
        return AtosResult(address=address, symbol=match.group(1), file=match.group(2),
                          line=int(match.group(3)), success=True)

    match = ATOS_SIMPLE_RE.match(trimmed)
    if match:
        return AtosResult(address=address, symbol=match.group(1), success=True)

    return AtosResult(address=address, symbol=trimmed, success=True)


class AtosWrapper:
    """Runs atos and dwarfdump with bounded timeouts"""

    def __init__(self, atos_path: str = 'atos', dwarfdump_path: str = 'dwarfdump'):
        self.atos_path = atos_path
        self.dwarfdump_path = dwarfdump_path

    def _run(self, args: List[str], timeout: float) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(args, capture_output=True, text=True, errors='replace',
                                  timeout=timeout)
        except FileNotFoundError as e:
            raise SymbolicationError(
                f"{args[0]} not found",
                details={'command': args[0]},
            ) from e
        except subprocess.TimeoutExpired as e:
            raise SymbolicationError(
                f"{args[0]} timed out after {timeout}s",
                details={'command': args[0], 'timeout': timeout},
            ) from e
        except OSError as e:
            raise SymbolicationError(
                f"Cannot run {args[0]}: {e}",
                details={'command': args[0]},
            ) from e

    def resolve(self, dwarf_path: str, load_address: str, addresses: List[str],
                arch: str = 'arm64', timeout: float = 30.0) -> List[AtosResult]:
        """
        Resolve addresses against a DWARF file.

        Returns one result per input address, in order.

        Raises:
            SymbolicationError: atos missing, failed or timed out
        """
        if not addresses:
            return []

        args = [self.atos_path, '-arch', arch, '-o', dwarf_path, '-l', load_address, *addresses]
        result = self._run(args, timeout)
        if result.returncode != 0:
            raise SymbolicationError(
                f"atos failed: {result.stderr.strip() or f'exit code {result.returncode}'}",
                details={'exit_code': result.returncode, 'dwarf_path': dwarf_path},
            )

        lines = result.stdout.strip().splitlines()
        results = [
            parse_atos_line(address, lines[idx] if idx < len(lines) else None)
            for idx, address in enumerate(addresses)
        ]
        logger.debug(f"atos resolved {sum(r.success for r in results)}/{len(results)} addresses")
        return results

    def dwarfdump_uuids(self, dwarf_path: str, timeout: float = 10.0) -> List[str]:
        """
        UUIDs (normalized) of every architecture slice in a DWARF file.

        Raises:
            SymbolicationError: dwarfdump missing, failed or timed out
        """
        result = self._run([self.dwarfdump_path, '--uuid', dwarf_path], timeout)
        if result.returncode != 0:
            raise SymbolicationError(
                f"dwarfdump failed: {result.stderr.strip() or f'exit code {result.returncode}'}",
                details={'exit_code': result.returncode, 'dwarf_path': dwarf_path},
            )
        return [normalize_uuid(u.upper()) for u in DWARFDUMP_UUID_RE.findall(result.stdout)]
