#!/usr/bin/env python3
"""
Mobile Crash Analyzer - Command line entry point

Analyze iOS crash reports and live Android/iOS device logs.
"""

import sys
import json
import argparse
from typing import List, Optional

from mobile_crash_analyzer import AnalyzerConfig, CrashAnalyzer, load_environment, parse_crash_log
from mobile_crash_analyzer.errors import CrashAnalysisError
from mobile_crash_analyzer.logging_utils import setup_logging
from mobile_crash_analyzer.report import format_analysis


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Mobile Crash Analyzer - Diagnose iOS and Android app crashes',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze an iOS crash report (.ips or .crash)
  %(prog)s analyze MyApp-2025-01-15.ips --dsym build/MyApp.app.dSYM

  # Analyze recent Android logcat output for a package
  %(prog)s logs --platform android --app-id com.example.app

  # Analyze the last 5 minutes of simulator logs
  %(prog)s logs --platform ios --app-id com.example.app --since 300

  # Print the normalized crash report as JSON
  %(prog)s parse MyApp.crash
        """
    )

    parser.add_argument(
        'command',
        choices=['analyze', 'logs', 'parse'],
        help='Command to execute'
    )

    parser.add_argument(
        'crash_file',
        nargs='?',
        help='Path to crash log file (.ips or .crash)'
    )

    parser.add_argument(
        '--platform',
        choices=['android', 'ios'],
        default='ios',
        help='Target platform for log analysis (default: ios)'
    )

    parser.add_argument('--dsym', help='Path to a .dSYM bundle or a directory of bundles')
    parser.add_argument('--bundle-id', help='App bundle ID (helps locate the dSYM)')
    parser.add_argument('--app-id', help='Package name / bundle ID to filter device logs')
    parser.add_argument('--device', help='Device serial or simulator UDID')

    parser.add_argument(
        '--since',
        type=int,
        help='Analyze logs from the last N seconds'
    )

    parser.add_argument(
        '--no-symbols',
        action='store_true',
        help='Skip symbolication (faster but less detail)'
    )

    parser.add_argument(
        '--raw',
        action='store_true',
        help='Include the raw crash log in JSON output'
    )

    parser.add_argument(
        '--output',
        '-o',
        help='Write the JSON result to this file'
    )

    parser.add_argument('--json', action='store_true', help='Print JSON instead of Markdown')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    parser.add_argument('--log-file', help='Also write logs to this rotating file')

    return parser


def _write_output(path: str, data: dict) -> None:
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
    print(f"\nResults saved to: {path}", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_environment()
    config = AnalyzerConfig.from_env()
    setup_logging('DEBUG' if args.verbose else config.log_level, log_file=args.log_file)

    if args.command in ('analyze', 'parse') and not args.crash_file:
        parser.error(f"{args.command} command requires crash_file argument")

    if args.command == 'parse':
        try:
            report = parse_crash_log(args.crash_file)
        except CrashAnalysisError as e:
            print(json.dumps(e.to_dict(), indent=2))
            return 1
        if not args.raw:
            report.raw_log = None
        data = report.to_dict()
        if args.output:
            _write_output(args.output, data)
        else:
            print(json.dumps(data, indent=2))
        return 0

    analyzer = CrashAnalyzer(config)
    if args.command == 'analyze':
        result = analyzer.analyze(
            'ios',
            crash_log_path=args.crash_file,
            dsym_path=args.dsym,
            bundle_id=args.bundle_id,
            skip_symbolication=args.no_symbols,
            include_raw_log=args.raw,
        )
    else:
        result = analyzer.analyze(
            args.platform,
            app_id=args.app_id,
            device_id=args.device,
            time_range_seconds=args.since,
            include_raw_log=args.raw,
        )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(format_analysis(result))

    if args.output:
        _write_output(args.output, result.to_dict())

    return 0 if result.success else 1


if __name__ == '__main__':
    sys.exit(main())
