#!/usr/bin/env python3
"""
Command line entry point of the auditor.

    raftaudit analyze n1=export-1.txt n2=export-2.txt n3=export-3.txt
    raftaudit analyze --mode offline loss/export-*-offline.txt
    raftaudit normalize export-1.txt fixed-1.txt
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from raftaudit import __version__
from raftaudit.collect.collector import SnapshotCollector
from raftaudit.collect.sources import FileSource, parse_source_arg
from raftaudit.core.constants import CANONICAL_SHARD, CollectionMode
from raftaudit.core.errors import AuditError, NodeUnreadable
from raftaudit.core.normalizer import normalize
from raftaudit.core.parser import dump_record
from raftaudit.core.report import render_report, write_report
from raftaudit.utils.config import AuditConfig
from raftaudit.utils.logging_config import setup_audit_logging


EXIT_OK = 0
EXIT_ANOMALIES = 1
EXIT_FATAL = 2

logger = logging.getLogger("raftaudit.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='raftaudit',
        description='Offline consistency auditor for raft-replicated metadata store exports'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level')
    parser.add_argument('--log-dir', help='Directory to write log files to')
    parser.add_argument('--json-logs', action='store_true', help='Emit JSON formatted logs')

    commands = parser.add_subparsers(dest='command', required=True)

    analyze = commands.add_parser('analyze', help='Audit the dumps of all cluster members')
    analyze.add_argument('snapshots', nargs='+', metavar='SNAPSHOT',
                         help='[LABEL[@MODE]=]PATH_OR_URL of one node export')
    analyze.add_argument('--mode', choices=[m.value for m in CollectionMode], default='live',
                         help='How the dumps were collected, unless given per snapshot (default: live)')
    analyze.add_argument('--config', help='Path to a JSON audit configuration file')
    analyze.add_argument('--verbose', action='store_true', default=None,
                         help='List differences above the commit watermark as notes')
    analyze.add_argument('--no-entries', dest='compare_entries', action='store_false', default=None,
                         help='Compare metrics only, not full key sets')
    analyze.add_argument('--max-parse-error-ratio', type=float,
                         help='Share of malformed lines above which a node is unreadable')
    analyze.add_argument('--timeout', dest='parse_timeout', type=float,
                         help='Seconds allowed to read and parse one node')
    analyze.add_argument('--workers', type=int, help='Number of parallel parse workers')
    analyze.add_argument('--output', '-o', help='Write the report to this file instead of stdout')

    norm = commands.add_parser('normalize', help='Rewrite shard ids of one dump to the canonical shard')
    norm.add_argument('snapshot', help='Path of the export to normalize')
    norm.add_argument('out', help="Output path, or '-' for stdout")
    norm.add_argument('--canonical', default=CANONICAL_SHARD,
                      help=f'Canonical shard tree name (default: {CANONICAL_SHARD})')

    return parser


def run_analyze(args, parser: argparse.ArgumentParser) -> int:
    try:
        config = AuditConfig.from_file(args.config) if args.config else AuditConfig()
        config = config.with_overrides(
            verbose=args.verbose,
            compare_entries=args.compare_entries,
            max_parse_error_ratio=args.max_parse_error_ratio,
            parse_timeout=args.parse_timeout,
            workers=args.workers,
        )
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FATAL

    default_mode = CollectionMode(args.mode)
    sources = [parse_source_arg(arg, default_mode, timeout=config.parse_timeout)
               for arg in args.snapshots]

    labels = [s.label for s in sources]
    duplicates = sorted({label for label in labels if labels.count(label) > 1})
    if duplicates:
        parser.error(f"duplicate node labels: {', '.join(duplicates)}; use LABEL=PATH")

    report = asyncio.run(SnapshotCollector(config).audit(sources))

    try:
        write_report(render_report(report), args.output)
    except AuditError as e:
        logger.error(str(e))
        return EXIT_FATAL

    return EXIT_OK if report.healthy else EXIT_ANOMALIES


def run_normalize(args) -> int:
    source = FileSource('normalize', args.snapshot)
    try:
        snapshot = asyncio.run(source.load())
    except NodeUnreadable as e:
        logger.error(e.reason)
        return EXIT_FATAL

    normalized = normalize(snapshot, args.canonical)

    # Malformed lines are kept verbatim at their original position.
    lines = [(r.line_no, dump_record(r)) for r in normalized.records]
    lines.extend((s.line_no, s.line) for s in normalized.parse_errors)
    lines.sort(key=lambda item: item[0])
    text = ''.join(line + '\n' for _, line in lines)

    if snapshot.parse_errors:
        logger.warning(f"{len(snapshot.parse_errors)} malformed lines copied unchanged")

    try:
        write_report(text, None if args.out == '-' else args.out)
    except AuditError as e:
        logger.error(str(e))
        return EXIT_FATAL
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse command line arguments and run the selected command.

    Returns:
        The process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_audit_logging(args.log_dir, getattr(logging, args.log_level), args.json_logs)

    if args.command == 'analyze':
        return run_analyze(args, parser)
    return run_normalize(args)


if __name__ == '__main__':
    sys.exit(main())
