"""Symbolication of iOS crash reports.

Locates the dSYM for the app binary, checks its UUID, runs atos over the
unresolved app-code frames and merges the results into a copy of the report.
A UUID mismatch is logged and symbolication proceeds anyway.
"""
from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .atos_wrapper import AtosWrapper
from .config import AnalyzerConfig
from .errors import SymbolicationError
from .logging_utils import get_logger
from .models import BinaryImage, CrashReport, StackFrame, is_raw_symbol, normalize_uuid
from .symbol_server import SymbolServerClient, find_cached_dsym

logger = get_logger(__name__)


class DsymStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"
    MISMATCH = "mismatch"


@dataclass
class SymbolicationOutcome:
    """Result of one symbolication attempt"""
    report: CrashReport
    status: DsymStatus
    dsym_path: Optional[str] = None
    uuid_matched: bool = False
    resolved_count: int = 0


def common_dsym_locations(home: Optional[str] = None) -> List[Path]:
    home_dir = Path(home or os.path.expanduser('~'))
    return [
        home_dir / 'Library' / 'Developer' / 'Xcode' / 'DerivedData',
        home_dir / 'Library' / 'Developer' / 'Xcode' / 'Archives',
        home_dir / 'Downloads',
        home_dir / 'Desktop',
    ]


def find_app_binary(report: CrashReport) -> Optional[BinaryImage]:
    """The app's own image: name equals the process, else bundle or .app path."""
    images = report.binary_images
    for image in images:
        if image.name == report.process_name:
            return image
    if report.bundle_id:
        for image in images:
            if report.bundle_id in image.path:
                return image
    for image in images:
        if '.app/' in image.path:
            return image
    return None


def find_dsym_file(dsym_path: str, binary_name: str) -> Optional[str]:
    """
    Resolve a dSYM bundle from a bundle path or a directory of bundles.

    Directory search order: exact ``<name>.app.dSYM``, any ``.dSYM`` containing
    the name, then any ``.dSYM``.
    """
    path = Path(dsym_path)
    if not path.exists():
        return None
    if path.name.endswith('.dSYM'):
        return str(path)

    try:
        bundles = sorted(p for p in path.iterdir() if p.is_dir() and p.name.endswith('.dSYM'))
    except OSError as e:
        logger.debug(f"Cannot list {path}: {e}")
        return None

    for bundle in bundles:
        if bundle.name == f"{binary_name}.app.dSYM":
            return str(bundle)
    for bundle in bundles:
        if binary_name and binary_name in bundle.name:
            return str(bundle)
    if bundles:
        return str(bundles[0])
    return None


def find_dwarf_file(dsym_path: str) -> Optional[str]:
    """First file in ``Contents/Resources/DWARF`` of a dSYM bundle."""
    dwarf_dir = Path(dsym_path) / 'Contents' / 'Resources' / 'DWARF'
    if not dwarf_dir.is_dir():
        return None
    entries = sorted(dwarf_dir.iterdir())
    return str(entries[0]) if entries else None


def find_dsym_in_common_locations(bundle_id: str, extra_dirs: Optional[List[str]] = None,
                                  home: Optional[str] = None) -> Optional[str]:
    """Search configured and conventional directories, keyed by the bundle's app name."""
    app_name = bundle_id.split('.')[-1] or bundle_id
    locations = [Path(d) for d in (extra_dirs or [])] + common_dsym_locations(home)
    for location in locations:
        if not location.is_dir():
            continue
        dsym = find_dsym_file(str(location), app_name)
        if dsym:
            return dsym
    return None


def needs_symbolication(frame: StackFrame) -> bool:
    return is_raw_symbol(frame.symbol)


class Symbolicator:
    """Runs the locate / verify / resolve / merge sequence for one report."""

    def __init__(self, config: Optional[AnalyzerConfig] = None,
                 atos: Optional[AtosWrapper] = None,
                 symbol_server: Optional[SymbolServerClient] = None,
                 home: Optional[str] = None):
        self.config = config or AnalyzerConfig()
        self.atos = atos or AtosWrapper()
        if symbol_server is None and self.config.symbol_server_url:
            symbol_server = SymbolServerClient(self.config.symbol_server_url,
                                               self.config.symbol_cache_dir,
                                               timeout=self.config.symbolicate_timeout)
        self.symbol_server = symbol_server
        self.home = home

    def locate_dsym(self, report: CrashReport, app_binary: BinaryImage,
                    dsym_path: Optional[str] = None,
                    bundle_id: Optional[str] = None) -> Optional[str]:
        if dsym_path:
            found = find_dsym_file(dsym_path, app_binary.name)
            if found:
                return found
            logger.warning(f"dSYM not found at specified path: {dsym_path}")

        search_bundle_id = bundle_id or report.bundle_id
        if search_bundle_id:
            found = find_dsym_in_common_locations(search_bundle_id, self.config.extra_dsym_dirs,
                                                  self.home)
            if found:
                return found

        if app_binary.uuid:
            # Bundles previously fetched or dropped into the cache, keyed by UUID
            cached = find_cached_dsym(Path(self.config.symbol_cache_dir) / normalize_uuid(app_binary.uuid))
            if cached:
                return str(cached)

        if self.symbol_server is not None:
            fetched = self.symbol_server.fetch(app_binary.uuid, app_binary.name)
            if fetched:
                return str(fetched)
        return None

    def verify_dsym_match(self, dsym_path: str, expected_uuid: str) -> bool:
        dwarf = find_dwarf_file(dsym_path)
        if not dwarf or not expected_uuid:
            return False
        try:
            uuids = self.atos.dwarfdump_uuids(dwarf, timeout=self.config.dwarfdump_timeout)
        except SymbolicationError as e:
            logger.warning(f"Could not read dSYM UUID: {e}")
            return False
        return normalize_uuid(expected_uuid.upper()) in uuids

    def symbolicate(self, report: CrashReport, dsym_path: Optional[str] = None,
                    bundle_id: Optional[str] = None) -> SymbolicationOutcome:
        """Return a symbolicated copy of ``report``; the input is never modified."""
        result = copy.deepcopy(report)

        if result.is_symbolicated:
            return SymbolicationOutcome(result, DsymStatus.FOUND)

        app_binary = find_app_binary(result)
        if app_binary is None:
            logger.info("Could not find app binary in crash report")
            return SymbolicationOutcome(result, DsymStatus.NOT_FOUND)

        dsym = self.locate_dsym(result, app_binary, dsym_path, bundle_id)
        if dsym is None:
            logger.info(f"No dSYM found for {app_binary.name}")
            return SymbolicationOutcome(result, DsymStatus.NOT_FOUND)

        uuid_matched = self.verify_dsym_match(dsym, app_binary.uuid)
        if not uuid_matched:
            logger.warning(f"dSYM UUID mismatch. Expected: {app_binary.uuid} ({dsym})")

        dwarf = find_dwarf_file(dsym)
        if dwarf is None:
            logger.warning(f"DWARF file not found in {dsym}")
            return SymbolicationOutcome(result, DsymStatus.NOT_FOUND, dsym_path=dsym,
                                        uuid_matched=uuid_matched)

        frames = [f for f in result.iter_frames() if f.is_app_code and needs_symbolication(f)]
        if not frames:
            result.refresh_symbolication()
            return SymbolicationOutcome(result, DsymStatus.FOUND, dsym_path=dsym,
                                        uuid_matched=uuid_matched)

        try:
            resolved = self.atos.resolve(dwarf, app_binary.load_address,
                                         [f.address for f in frames], app_binary.arch,
                                         timeout=self.config.symbolicate_timeout)
        except SymbolicationError as e:
            logger.warning(f"Symbolication failed: {e}")
            return SymbolicationOutcome(result, DsymStatus.NOT_FOUND,
                                        dsym_path=dsym, uuid_matched=uuid_matched)

        count = 0
        for frame, res in zip(frames, resolved):
            if res.success:
                frame.symbol = res.symbol
                frame.file = res.file
                frame.line = res.line
                frame.is_app_code = True
                count += 1
        result.refresh_symbolication()

        logger.info(f"Symbolicated {count}/{len(frames)} frames using {dsym}")
        status = DsymStatus.FOUND if uuid_matched or count else DsymStatus.MISMATCH
        return SymbolicationOutcome(result, status, dsym_path=dsym,
                                    uuid_matched=uuid_matched, resolved_count=count)
