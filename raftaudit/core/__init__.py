"""
Core components of the consistency auditor.

This package contains the store model and parser, the shard normalizer, the
per-node metrics extractor, the cross-node reconciler and the report
generator.
"""

from raftaudit.core.constants import AnomalyKind, CollectionMode, NoteKind, RecordKind
from raftaudit.core.errors import AuditError, NodeUnreadable, ParseError, ReportWriteError
from raftaudit.core.model import ExportRecord, LogId, NodeSnapshot, OpaqueBytes
from raftaudit.core.parser import dump_record, parse_line, parse_snapshot, parse_stream
from raftaudit.core.normalizer import denormalize, normalize
from raftaudit.core.metrics import EntrySet, NodeMetrics, build_entry_set, extract_metrics
from raftaudit.core.reconciler import (
    Anomaly, ClusterReport, NodeAnalysis, Note, analyze_snapshot, check_invariants, reconcile,
)
from raftaudit.core.report import render_report, write_report

__all__ = [
    'AnomalyKind',
    'CollectionMode',
    'NoteKind',
    'RecordKind',
    'AuditError',
    'NodeUnreadable',
    'ParseError',
    'ReportWriteError',
    'ExportRecord',
    'LogId',
    'NodeSnapshot',
    'OpaqueBytes',
    'dump_record',
    'parse_line',
    'parse_snapshot',
    'parse_stream',
    'denormalize',
    'normalize',
    'EntrySet',
    'NodeMetrics',
    'build_entry_set',
    'extract_metrics',
    'Anomaly',
    'ClusterReport',
    'NodeAnalysis',
    'Note',
    'analyze_snapshot',
    'check_invariants',
    'reconcile',
    'render_report',
    'write_report',
]
