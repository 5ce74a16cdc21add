from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union
import hashlib

import msgpack

from raftaudit.core.constants import CollectionMode, RecordKind


@dataclass(frozen=True)
class LogId:
    """
    Identifies one slot of the replicated log.

    Attributes:
        term: The leadership epoch that produced the entry.
        index: The position of the entry; gives the total order.
        node_id: The leader's node id, when the export carries it.
    """
    term: int
    index: int
    node_id: Optional[int] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "LogId":
        """
        Build a LogId from either export shape.

        Older exports write ``{"term": T, "index": I}``; newer ones nest the
        term inside ``{"leader_id": {"term": T, "node_id": N}, "index": I}``.
        """
        if 'leader_id' in data:
            leader = data['leader_id'] or {}
            return cls(term=int(leader['term']), index=int(data['index']),
                       node_id=leader.get('node_id'))
        return cls(term=int(data['term']), index=int(data['index']))


class OpaqueBytes:
    """
    A binary-valued field that is carried through the audit but never decoded.

    Byte arrays from the export are held as ``bytes``; an exporter that already
    replaced the payload with a marker string is held as that string. Equality
    and hashing go through a fingerprint of the msgpack encoding, so values
    compare the same regardless of how they are held in memory.
    """

    __slots__ = ('_payload', '_fingerprint')

    def __init__(self, payload: Union[bytes, str]):
        self._payload = payload
        packed = msgpack.packb(payload, use_bin_type=True)
        self._fingerprint = hashlib.sha1(packed).hexdigest()

    @classmethod
    def from_json(cls, data: Any) -> "OpaqueBytes":
        if isinstance(data, str):
            return cls(data)
        if isinstance(data, list) and all(isinstance(b, int) and 0 <= b < 256 for b in data):
            return cls(bytes(data))
        raise ValueError(f"not a binary field: {type(data).__name__}")

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    def __len__(self) -> int:
        return len(self._payload)

    def __eq__(self, other):
        if not isinstance(other, OpaqueBytes):
            return NotImplemented
        return self._fingerprint == other._fingerprint

    def __hash__(self):
        return hash(self._fingerprint)

    def __repr__(self):
        return f"<opaque {len(self._payload)}B sha1:{self._fingerprint[:10]}>"


@dataclass(frozen=True)
class DataHeader:
    version: str
    upgrading: Any = None


@dataclass(frozen=True)
class PurgeMarker:
    """The highest log id already compacted into a state machine snapshot."""
    log_id: LogId


@dataclass(frozen=True)
class LogEntry:
    """
    One persisted log slot.

    Attributes:
        log_id: The slot this entry occupies.
        payload: The opaque command, as exported.
        written_keys: Keys the command writes, extracted for watermark placement.
    """
    log_id: LogId
    payload: Any = field(compare=False, repr=False)
    written_keys: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ApplyMarker:
    """The last log id applied to one state machine shard."""
    log_id: LogId


@dataclass(frozen=True)
class SequenceCounter:
    name: str
    value: int


@dataclass(frozen=True)
class KVEntry:
    key: str
    value: OpaqueBytes
    seq: int
    expire_at: Optional[int] = None


@dataclass(frozen=True)
class ExpireIndex:
    time_ms: int
    seq: int
    key: str


@dataclass(frozen=True)
class Opaque:
    """A variant the auditor does not interpret; kept so nothing is dropped."""
    variant: str
    key: Any = field(default=None, compare=False)
    value: Any = field(default=None, compare=False, repr=False)


RecordBody = Union[DataHeader, PurgeMarker, LogEntry, ApplyMarker, SequenceCounter,
                   KVEntry, ExpireIndex, Opaque]


@dataclass(frozen=True)
class ExportRecord:
    """
    One line of an export stream: the ``[category, variant]`` envelope.

    Attributes:
        tree: The category (storage tree) the record belongs to.
        kind: Which variant the body is.
        body: The typed variant.
        line_no: 1-based line number in the source stream.
        raw: The variant object exactly as exported, used to re-emit the line.
        origin_tree: The shard id the record had before normalization, if rewritten.
    """
    tree: str
    kind: RecordKind
    body: RecordBody
    line_no: int
    raw: Any = field(default=None, compare=False, repr=False)
    origin_tree: Optional[str] = None


@dataclass(frozen=True)
class SkippedLine:
    """A line that failed to parse, retained verbatim for the report."""
    line_no: int
    line: str
    reason: str


@dataclass(frozen=True)
class NodeSnapshot:
    """
    Everything captured from one node at one instant.

    Attributes:
        label: The node's label in the audit.
        mode: Whether the export was taken live or from stopped files.
        source: Where the dump was read from (path or URL).
        collected_at: Collection time as a unix timestamp, if known.
        records: Parsed records in stream order.
        parse_errors: Lines that failed to parse.
        line_count: Number of non-blank lines read.
    """
    label: str
    mode: CollectionMode
    source: str
    collected_at: Optional[float]
    records: Tuple[ExportRecord, ...]
    parse_errors: Tuple[SkippedLine, ...] = ()
    line_count: int = 0

    @property
    def parse_error_ratio(self) -> float:
        if self.line_count == 0:
            return 0.0
        return len(self.parse_errors) / self.line_count
