from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
import logging

from raftaudit.core.constants import (
    CANONICAL_SHARD, CollectionMode, DEFAULT_SEQUENCE, KNOWN_DATA_VERSIONS, RecordKind,
)
from raftaudit.core.model import LogEntry, NodeSnapshot, OpaqueBytes


logger = logging.getLogger("raftaudit.metrics")


@dataclass(frozen=True)
class NodeMetrics:
    """
    Scalar summary of one node's normalized snapshot.

    ``None`` is the sentinel for a watermark that was never observed: never
    purged, no log retained, no apply marker, no sequence counter.

    Attributes:
        label: The node label.
        mode: How the dump was collected.
        last_purged_index: Index of the LastPurged marker.
        first_log_index: Lowest index among retained log entries.
        last_log_index: Highest index among retained log entries.
        last_applied_index: LastApplied index of the canonical shard.
        applied_by_shard: LastApplied index per original shard id, in first-seen order.
        sequence_counter: Value of the audited sequence.
        shard_entry_count: Number of records on the canonical shard.
        kv_count: Number of distinct keys on the canonical shard.
        expire_count: Number of distinct expiry index entries.
        max_kv_seq: Highest seq carried by any key.
        data_version: The dump's on-disk data version.
        sequence_regressions: Sequences whose counter went down within the stream.
        warnings: Expected fields that were missing or unexpected.
    """
    label: str
    mode: CollectionMode
    last_purged_index: Optional[int] = None
    first_log_index: Optional[int] = None
    last_log_index: Optional[int] = None
    last_applied_index: Optional[int] = None
    applied_by_shard: Tuple[Tuple[str, int], ...] = ()
    sequence_counter: Optional[int] = None
    shard_entry_count: int = 0
    kv_count: int = 0
    expire_count: int = 0
    max_kv_seq: Optional[int] = None
    data_version: Optional[str] = None
    sequence_regressions: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()

    @property
    def apply_seq_gap(self) -> Optional[int]:
        if self.last_applied_index is None or self.sequence_counter is None:
            return None
        return self.last_applied_index - self.sequence_counter


@dataclass(frozen=True)
class KVState:
    """The applied state of one key: compared by value and seq."""
    value: OpaqueBytes
    seq: int
    expire_at: Optional[int] = field(default=None, compare=False)


@dataclass
class EntrySet:
    """
    The canonical shard's key/value state of one node.

    Attributes:
        entries: Applied state per key.
        write_index: For each key, the highest retained log index whose command writes it.
    """
    entries: Dict[str, KVState] = field(default_factory=dict)
    write_index: Dict[str, int] = field(default_factory=dict)


def _retained_logs(snapshot: NodeSnapshot) -> Dict[int, LogEntry]:
    logs = {}
    for record in snapshot.records:
        if record.kind == RecordKind.LOG_ENTRY:
            logs[record.body.log_id.index] = record.body
    return logs


def extract_metrics(snapshot: NodeSnapshot,
                    canonical: str = CANONICAL_SHARD,
                    sequence_name: str = DEFAULT_SEQUENCE) -> NodeMetrics:
    """
    Reduce a normalized snapshot to its metrics.

    Export streams are append-only logs of writes, so when a value appears more
    than once the last one wins. Missing fields are logged as warnings and
    recorded on the result; they are turned into anomalies downstream.

    Args:
        snapshot: A snapshot already passed through ``normalize``.
        canonical: The canonical shard tree.
        sequence_name: The sequence reported as ``sequence_counter``.

    Returns:
        The node's metrics.
    """
    last_purged = None
    last_applied = None
    applied_by_shard: Dict[str, int] = {}
    sequences: Dict[str, int] = {}
    regressions = []
    kv: Dict[str, int] = {}
    expire = set()
    data_version = None
    shard_entry_count = 0

    for record in snapshot.records:
        kind = record.kind
        body = record.body

        if kind == RecordKind.DATA_HEADER:
            data_version = body.version
        elif kind == RecordKind.PURGE_MARKER:
            last_purged = body.log_id.index

        if record.tree != canonical:
            continue

        shard_entry_count += 1

        if kind == RecordKind.APPLY_MARKER:
            last_applied = body.log_id.index
            applied_by_shard[record.origin_tree or record.tree] = body.log_id.index
        elif kind == RecordKind.SEQUENCE:
            previous = sequences.get(body.name)
            if previous is not None and body.value < previous and body.name not in regressions:
                regressions.append(body.name)
            sequences[body.name] = body.value
        elif kind == RecordKind.KV_ENTRY:
            kv[body.key] = body.seq
        elif kind == RecordKind.EXPIRE_INDEX:
            expire.add((body.time_ms, body.seq))

    logs = _retained_logs(snapshot)
    first_log = min(logs) if logs else None
    last_log = max(logs) if logs else None

    warnings = []

    def warn(field_name, message):
        logger.warning(message, extra={'node': snapshot.label, 'phase': 'extract', 'field': field_name})
        warnings.append(message)

    if shard_entry_count == 0:
        warn('shard', "no state machine shard records")
    else:
        if last_applied is None:
            warn('last_applied', "no apply marker on the state machine shard")
        if sequence_name not in sequences:
            warn('sequence', f"no '{sequence_name}' sequence counter")
    if data_version is not None and data_version not in KNOWN_DATA_VERSIONS:
        warn('data_version', f"unknown data version {data_version}")

    return NodeMetrics(
        label=snapshot.label,
        mode=snapshot.mode,
        last_purged_index=last_purged,
        first_log_index=first_log,
        last_log_index=last_log,
        last_applied_index=last_applied,
        applied_by_shard=tuple(applied_by_shard.items()),
        sequence_counter=sequences.get(sequence_name),
        shard_entry_count=shard_entry_count,
        kv_count=len(kv),
        expire_count=len(expire),
        max_kv_seq=max(kv.values()) if kv else None,
        data_version=data_version,
        sequence_regressions=tuple(regressions),
        warnings=tuple(warnings),
    )


def build_entry_set(snapshot: NodeSnapshot, canonical: str = CANONICAL_SHARD) -> EntrySet:
    """
    Collect the canonical shard's key/value state and where each key was last written.

    Args:
        snapshot: A normalized snapshot.
        canonical: The canonical shard tree.

    Returns:
        The node's entry set.
    """
    entry_set = EntrySet()

    for record in snapshot.records:
        if record.tree == canonical and record.kind == RecordKind.KV_ENTRY:
            body = record.body
            entry_set.entries[body.key] = KVState(value=body.value, seq=body.seq,
                                                  expire_at=body.expire_at)

    for index, entry in _retained_logs(snapshot).items():
        for key in entry.written_keys:
            if index > entry_set.write_index.get(key, -1):
                entry_set.write_index[key] = index

    return entry_set
