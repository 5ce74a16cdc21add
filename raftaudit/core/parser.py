import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from raftaudit.core.constants import (
    CollectionMode, RecordKind, LOG_META, STATE_MACHINE_META,
)
from raftaudit.core.errors import ParseError
from raftaudit.core.model import (
    ApplyMarker, DataHeader, ExpireIndex, ExportRecord, KVEntry, LogEntry, LogId,
    NodeSnapshot, Opaque, OpaqueBytes, PurgeMarker, SequenceCounter, SkippedLine,
)


logger = logging.getLogger("raftaudit.parser")


def parse_line(line: str, line_no: int) -> ExportRecord:
    """
    Parse one export line into a typed record.

    A line is an envelope ``[category, {Variant: body}]``. Variants the auditor
    does not interpret are returned as ``Opaque`` records.

    Args:
        line: The raw line, without the trailing newline.
        line_no: 1-based line number, kept for reporting.

    Returns:
        The parsed record.

    Raises:
        ParseError: If the line is not envelope-shaped, or a known variant has a malformed body.
    """
    try:
        data = json.loads(line)
    except ValueError as e:
        raise ParseError(line_no, line, f"invalid JSON: {e}")

    if not isinstance(data, list) or len(data) != 2:
        raise ParseError(line_no, line, "not a two-element envelope")

    tree, variant_obj = data
    if not isinstance(tree, str):
        raise ParseError(line_no, line, "envelope category is not a string")
    if not isinstance(variant_obj, dict) or len(variant_obj) != 1:
        raise ParseError(line_no, line, "envelope variant is not a single-key object")

    variant, body = next(iter(variant_obj.items()))

    try:
        kind, parsed = _parse_variant(variant, body)
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ParseError(line_no, line, f"malformed {variant}: {e!r}")

    return ExportRecord(tree=tree, kind=kind, body=parsed, line_no=line_no, raw=variant_obj)


def _parse_variant(variant: str, body: Any):
    key = body.get('key') if isinstance(body, dict) else None
    value = body.get('value') if isinstance(body, dict) else None

    if variant == 'DataHeader':
        return RecordKind.DATA_HEADER, DataHeader(version=str(value['version']),
                                                  upgrading=value.get('upgrading'))

    if variant == LOG_META and key == 'LastPurged':
        return RecordKind.PURGE_MARKER, PurgeMarker(log_id=LogId.from_json(value['LogId']))

    if variant == 'Logs':
        log_id = LogId.from_json(value['log_id'])
        payload = value.get('payload')
        return RecordKind.LOG_ENTRY, LogEntry(log_id=log_id, payload=payload,
                                              written_keys=extract_written_keys(payload))

    if variant == STATE_MACHINE_META and key == 'LastApplied':
        return RecordKind.APPLY_MARKER, ApplyMarker(log_id=LogId.from_json(value['LogId']))

    if variant == 'Sequences':
        if key is None or isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"sequence without name or integer value: {body!r}")
        return RecordKind.SEQUENCE, SequenceCounter(name=str(key), value=value)

    if variant == 'GenericKV':
        if key is None:
            raise ValueError(f"key entry without key: {body!r}")
        meta = value.get('meta') or {}
        expire_at = meta.get('expire_at')
        return RecordKind.KV_ENTRY, KVEntry(
            key=str(key),
            value=OpaqueBytes.from_json(value['data']),
            seq=int(value['seq']),
            expire_at=int(expire_at) if expire_at is not None else None,
        )

    if variant == 'Expire':
        return RecordKind.EXPIRE_INDEX, ExpireIndex(time_ms=int(key['time_ms']),
                                                    seq=int(key['seq']),
                                                    key=str(value['key']))

    return RecordKind.OPAQUE, Opaque(variant=variant, key=key, value=value)


def extract_written_keys(payload: Any) -> Tuple[str, ...]:
    """
    Return the keys a log payload writes.

    Only ``Normal`` payloads carry commands. ``UpsertKV`` writes its key; a
    ``Transaction`` writes the keys of its ``Put`` and ``Delete`` operations on
    both branches. Anything else (``Blank``, membership changes) writes nothing.
    """
    if not isinstance(payload, dict):
        return ()
    normal = payload.get('Normal')
    if not isinstance(normal, dict):
        return ()
    cmd = normal.get('cmd')
    if not isinstance(cmd, dict):
        return ()

    keys: List[str] = []
    upsert = cmd.get('UpsertKV')
    if isinstance(upsert, dict) and 'key' in upsert:
        keys.append(str(upsert['key']))

    txn = cmd.get('Transaction')
    if isinstance(txn, dict):
        for branch in ('if_then', 'else_then'):
            for op in txn.get(branch) or ():
                if not isinstance(op, dict):
                    continue
                request = op.get('request', op)
                if not isinstance(request, dict):
                    continue
                for name in ('Put', 'Delete'):
                    target = request.get(name)
                    if isinstance(target, dict) and 'key' in target:
                        keys.append(str(target['key']))

    return tuple(keys)


def parse_stream(lines: Iterable[str]) -> Tuple[List[ExportRecord], List[SkippedLine], int]:
    """
    Parse an export stream, recovering from malformed lines.

    Blank lines are ignored. A line that raises ``ParseError`` is recorded and
    parsing continues with the next line.

    Args:
        lines: The stream, one export line per item.

    Returns:
        A tuple of (records, skipped lines, number of non-blank lines).
    """
    records = []
    skipped = []
    line_count = 0

    for line_no, line in enumerate(lines, start=1):
        line = line.rstrip('\r\n')
        if not line.strip():
            continue
        line_count += 1
        try:
            records.append(parse_line(line, line_no))
        except ParseError as e:
            logger.debug(f"Skipping line {e.line_no}: {e.reason}")
            skipped.append(SkippedLine(line_no=e.line_no, line=e.line, reason=e.reason))

    return records, skipped, line_count


def parse_snapshot(
    label: str,
    lines: Iterable[str],
    mode: CollectionMode = CollectionMode.LIVE,
    source: str = "",
    collected_at: Optional[float] = None
) -> NodeSnapshot:
    """
    Parse a whole export stream into a NodeSnapshot.

    Args:
        label: The node label.
        lines: The export stream.
        mode: How the export was captured.
        source: Where it was read from, for the report.
        collected_at: Collection time, if known.

    Returns:
        The immutable snapshot.
    """
    records, skipped, line_count = parse_stream(lines)

    if skipped:
        logger.warning(f"Skipped {len(skipped)} of {line_count} lines",
                       extra={'node': label, 'phase': 'parse'})

    return NodeSnapshot(
        label=label,
        mode=mode,
        source=source,
        collected_at=collected_at,
        records=tuple(records),
        parse_errors=tuple(skipped),
        line_count=line_count,
    )


def dump_record(record: ExportRecord) -> str:
    """
    Serialize a record back to one export line.

    The record's current tree is written with the variant object exactly as
    it was read, so nothing but the category can change.
    """
    raw: Dict[str, Any] = record.raw
    if raw is None:
        raise ValueError(f"record at line {record.line_no} carries no raw variant")
    return json.dumps([record.tree, raw], separators=(',', ':'), ensure_ascii=False)
