from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union
import logging

from raftaudit.core.constants import AnomalyKind, CollectionMode, NoteKind
from raftaudit.core.errors import NodeUnreadable
from raftaudit.core.metrics import EntrySet, KVState, NodeMetrics, build_entry_set, extract_metrics
from raftaudit.core.model import NodeSnapshot, SkippedLine
from raftaudit.core.normalizer import normalize
from raftaudit.utils.config import AuditConfig


logger = logging.getLogger("raftaudit.reconciler")


@dataclass(frozen=True)
class Finding:
    """
    One itemized result of an audit.

    Attributes:
        kind: What was found.
        nodes: The nodes involved, in input order.
        evidence: Human readable explanation.
        keys: Affected keys, if the finding is about key/value state.
    """
    kind: Union[AnomalyKind, NoteKind]
    nodes: Tuple[str, ...]
    evidence: str
    keys: Tuple[str, ...] = ()


class Anomaly(Finding):
    """A finding that fails the health check."""


class Note(Finding):
    """An informational finding."""


@dataclass
class NodeAnalysis:
    """
    The per-node result that enters the reconciliation rendezvous.

    Attributes:
        label: The node label.
        mode: How the dump was collected.
        source: Where the dump was read from.
        metrics: The node's metrics; None if the node is unreadable.
        entries: The node's entry set, if key comparison was requested.
        unreadable: Why the node could not be used, or None.
        parse_errors: Lines skipped while parsing.
        line_count: Number of non-blank lines read.
    """
    label: str
    mode: CollectionMode
    source: str = ""
    metrics: Optional[NodeMetrics] = None
    entries: Optional[EntrySet] = None
    unreadable: Optional[str] = None
    parse_errors: Tuple[SkippedLine, ...] = ()
    line_count: int = 0

    @property
    def readable(self) -> bool:
        return self.unreadable is None and self.metrics is not None

    @classmethod
    def from_error(cls, error: NodeUnreadable, mode: CollectionMode, source: str = "") -> "NodeAnalysis":
        return cls(label=error.label, mode=mode, source=source, unreadable=error.reason)


@dataclass(frozen=True)
class ClusterReport:
    """
    Outcome of one audit run.

    Attributes:
        nodes: Every node's analysis in input order, unreadable ones included.
        anomalies: Findings that fail the health check.
        notes: Informational findings.
        min_applied: The comparison watermark, or None if no node had an apply marker.
    """
    nodes: Tuple[NodeAnalysis, ...]
    anomalies: Tuple[Anomaly, ...]
    notes: Tuple[Note, ...]
    min_applied: Optional[int]

    @property
    def healthy(self) -> bool:
        return not self.anomalies


def _check_readable(snapshot: NodeSnapshot, config: AuditConfig) -> None:
    if snapshot.line_count == 0:
        raise NodeUnreadable(snapshot.label, "empty dump")
    if snapshot.parse_error_ratio > config.max_parse_error_ratio:
        raise NodeUnreadable(
            snapshot.label,
            f"{len(snapshot.parse_errors)} of {snapshot.line_count} lines malformed "
            f"(threshold {config.max_parse_error_ratio:.0%})"
        )
    if not snapshot.records:
        raise NodeUnreadable(snapshot.label, "no parseable records")


def analyze_snapshot(snapshot: NodeSnapshot, config: Optional[AuditConfig] = None) -> NodeAnalysis:
    """
    Run the per-node part of the audit: readability check, normalization, extraction.

    Args:
        snapshot: The parsed snapshot of one node.
        config: Audit tunables.

    Returns:
        The node's analysis; unreadable nodes carry the reason instead of metrics.
    """
    config = config or AuditConfig()
    common = dict(label=snapshot.label, mode=snapshot.mode, source=snapshot.source,
                  parse_errors=snapshot.parse_errors, line_count=snapshot.line_count)

    try:
        _check_readable(snapshot, config)
        normalized = normalize(snapshot, config.canonical_shard)
        metrics = extract_metrics(normalized, config.canonical_shard, config.sequence_name)
        if metrics.shard_entry_count == 0:
            raise NodeUnreadable(snapshot.label, "no state machine shard")
    except NodeUnreadable as e:
        logger.warning(str(e), extra={'node': snapshot.label, 'phase': 'analyze'})
        return NodeAnalysis(unreadable=e.reason, **common)

    entries = build_entry_set(normalized, config.canonical_shard) if config.compare_entries else None
    return NodeAnalysis(metrics=metrics, entries=entries, **common)


def check_invariants(metrics: NodeMetrics) -> List[Anomaly]:
    """
    Check the single-node invariants.

    At most one anomaly is produced per rule: the purge/apply/log ordering,
    the sequence counter rules, and the presence of an apply marker.
    """
    anomalies = []
    nodes = (metrics.label,)

    chain = [
        ('purged', metrics.last_purged_index),
        ('last_applied_index', metrics.last_applied_index),
        ('last_log_index', metrics.last_log_index),
    ]
    observed = [(name, value) for name, value in chain if value is not None]
    ordering = []
    if any(a[1] > b[1] for a, b in zip(observed, observed[1:])):
        shown = ' '.join(f"{name}={value}" for name, value in observed)
        ordering.append(f"expected purged <= last_applied_index <= last_log_index, got {shown}")
    # Purged entries must be gone from the log.
    if (metrics.first_log_index is not None and metrics.last_purged_index is not None
            and metrics.first_log_index <= metrics.last_purged_index):
        ordering.append(f"log entry {metrics.first_log_index} retained at or below purged={metrics.last_purged_index}")
    if ordering:
        anomalies.append(Anomaly(AnomalyKind.INVARIANT_VIOLATION, nodes, '; '.join(ordering)))

    if metrics.last_applied_index is None:
        anomalies.append(Anomaly(AnomalyKind.MISSING_APPLY_MARKER, nodes,
                                 "state machine shard has no LastApplied marker"))

    problems = []
    if metrics.sequence_regressions:
        problems.append(f"counter decreased for {', '.join(metrics.sequence_regressions)}")
    if (metrics.max_kv_seq is not None and metrics.sequence_counter is not None
            and metrics.max_kv_seq > metrics.sequence_counter):
        problems.append(f"key seq {metrics.max_kv_seq} exceeds sequence_counter {metrics.sequence_counter}")
    if problems:
        anomalies.append(Anomaly(AnomalyKind.SEQUENCE_VIOLATION, nodes, '; '.join(problems)))

    return anomalies


def _partition(labels: Sequence[str], states: Sequence[Optional[KVState]]):
    """Group node labels by identical key state, in first-appearance order."""
    groups: List[Tuple[Optional[KVState], List[str]]] = []
    for label, state in zip(labels, states):
        for group_state, members in groups:
            if group_state == state:
                members.append(label)
                break
        else:
            groups.append((state, [label]))
    return tuple((tuple(members), state is None) for state, members in groups)


def _defining_index(key: str, participants: Sequence[NodeAnalysis]) -> int:
    written = [p.entries.write_index[key] for p in participants if key in p.entries.write_index]
    if written:
        return max(written)
    # The write was compacted away on every node. Any node's compaction may
    # hide it, including a delete on a node that no longer holds the key.
    return max((p.metrics.last_purged_index or 0 for p in participants), default=0)


def _describe_split(signature) -> str:
    parts = []
    for members, absent in signature:
        parts.append(f"[{', '.join(members)}{': missing' if absent else ''}]")
    return ' vs '.join(parts)


def _compare_entries(participants: Sequence[NodeAnalysis], min_applied: int):
    labels = [p.label for p in participants]
    keys = set()
    for p in participants:
        keys.update(p.entries.entries)

    below: Dict[tuple, List[str]] = {}
    above: Dict[tuple, List[str]] = {}

    for key in sorted(keys):
        states = [p.entries.entries.get(key) for p in participants]
        signature = _partition(labels, states)
        if len(signature) == 1:
            continue
        target = below if _defining_index(key, participants) <= min_applied else above
        target.setdefault(signature, []).append(key)

    return below, above


def reconcile(analyses: Sequence[NodeAnalysis], config: Optional[AuditConfig] = None) -> ClusterReport:
    """
    Compare all nodes of a cluster and build the report.

    This is the rendezvous of the audit: every node's analysis must be
    available. Unreadable nodes are reported and left out; the rest is
    compared at the common watermark ``min_applied``. Anything applied at or
    below it must be identical on every replica; keys defined above it are
    legitimately in flight and only surface as notes in verbose mode.

    Args:
        analyses: Per-node analyses, in input order.
        config: Audit tunables.

    Returns:
        The cluster report.
    """
    config = config or AuditConfig()
    anomalies: List[Anomaly] = []
    notes: List[Note] = []
    readable = []

    for analysis in analyses:
        if not analysis.readable:
            anomalies.append(Anomaly(AnomalyKind.NODE_UNREADABLE, (analysis.label,),
                                     analysis.unreadable or "unreadable"))
            continue
        readable.append(analysis)
        anomalies.extend(check_invariants(analysis.metrics))
        if analysis.parse_errors:
            quoted = analysis.parse_errors[:config.max_quoted_lines]
            lines = '; '.join(f"line {s.line_no}: {s.line}" for s in quoted)
            notes.append(Note(NoteKind.SKIPPED_LINES, (analysis.label,),
                              f"{len(analysis.parse_errors)} of {analysis.line_count} lines skipped: {lines}"))

    applied = [a for a in readable if a.metrics.last_applied_index is not None]
    min_applied = min((a.metrics.last_applied_index for a in applied), default=None)

    values = sorted({a.metrics.last_applied_index for a in applied})
    if len(values) > 1:
        spread = ', '.join(f"{a.label}={a.metrics.last_applied_index}" for a in applied)
        labels = tuple(a.label for a in applied)
        if all(a.mode == CollectionMode.OFFLINE for a in readable):
            anomalies.append(Anomaly(AnomalyKind.APPLIED_SPREAD, labels,
                                     f"stopped cluster shows different applied watermarks: {spread}"))
        else:
            notes.append(Note(NoteKind.REPLICATION_LAG, labels,
                              f"applied watermarks differ by {values[-1] - values[0]}: {spread}"))

    participants = [a for a in applied if a.entries is not None]
    if config.compare_entries and min_applied is not None and len(participants) > 1:
        below, above = _compare_entries(participants, min_applied)
        nodes = tuple(p.label for p in participants)
        for signature, keys in below.items():
            anomalies.append(Anomaly(
                AnomalyKind.DIVERGENCE, nodes,
                f"{len(keys)} key(s) at or below watermark {min_applied} differ: {_describe_split(signature)}",
                tuple(keys),
            ))
        if config.verbose:
            for signature, keys in above.items():
                notes.append(Note(
                    NoteKind.ABOVE_WATERMARK, nodes,
                    f"{len(keys)} key(s) above watermark {min_applied} differ: {_describe_split(signature)}",
                    tuple(keys),
                ))

    logger.info(f"Reconciled {len(readable)} of {len(analyses)} nodes at watermark {min_applied}: "
                f"{len(anomalies)} anomalies, {len(notes)} notes")

    return ClusterReport(
        nodes=tuple(analyses),
        anomalies=tuple(anomalies),
        notes=tuple(notes),
        min_applied=min_applied,
    )
