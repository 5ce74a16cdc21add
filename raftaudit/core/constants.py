"""
Constants and enumerations for the export format and the audit results.
"""

import re
from enum import Enum


class RecordKind(Enum):
    """
    The variants of one export line that the parser understands.
    """
    DATA_HEADER = "DataHeader"
    PURGE_MARKER = "LastPurged"
    LOG_ENTRY = "Logs"
    APPLY_MARKER = "LastApplied"
    SEQUENCE = "Sequences"
    KV_ENTRY = "GenericKV"
    EXPIRE_INDEX = "Expire"
    OPAQUE = "Opaque"


class CollectionMode(Enum):
    """
    How a snapshot was captured: from a running node, or from its files after it stopped.
    """
    LIVE = "live"
    OFFLINE = "offline"


class AnomalyKind(Enum):
    NODE_UNREADABLE = "NodeUnreadable"
    INVARIANT_VIOLATION = "InvariantViolation"
    SEQUENCE_VIOLATION = "SequenceViolation"
    MISSING_APPLY_MARKER = "MissingApplyMarker"
    APPLIED_SPREAD = "AppliedSpread"
    DIVERGENCE = "Divergence"


class NoteKind(Enum):
    """
    Informational findings; they never change the exit status.
    """
    REPLICATION_LAG = "ReplicationLag"
    ABOVE_WATERMARK = "AboveWatermark"
    SKIPPED_LINES = "SkippedLines"


# Variant names as they appear in the export stream.
LOG_META = "LogMeta"
STATE_MACHINE_META = "StateMachineMeta"

SHARD_TREE_PATTERN = re.compile(r"^state_machine/[0-9]+$")
CANONICAL_SHARD = "state_machine/0"

DEFAULT_SEQUENCE = "generic-kv"

KNOWN_DATA_VERSIONS = ("V001", "V002", "V003")
