import unittest
import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from raftaudit.core.constants import CollectionMode, RecordKind
from raftaudit.core.errors import ParseError
from raftaudit.core.model import LogId, OpaqueBytes
from raftaudit.core.parser import dump_record, parse_line, parse_snapshot, parse_stream

import dumps


class TestParseLine(unittest.TestCase):
    """Test parsing of single export lines."""

    def test_purge_marker(self):
        """Test parsing a LastPurged marker."""
        record = parse_line(dumps.purged(1500399), 1)

        self.assertEqual(record.tree, 'raft_log')
        self.assertEqual(record.kind, RecordKind.PURGE_MARKER)
        self.assertEqual(record.body.log_id, LogId(term=3054, index=1500399))

    def test_log_entry_extracts_written_key(self):
        """Test that a log entry records the key it writes."""
        record = parse_line(dumps.log(1502661, 'a/b'), 7)

        self.assertEqual(record.kind, RecordKind.LOG_ENTRY)
        self.assertEqual(record.body.log_id.index, 1502661)
        self.assertEqual(record.body.written_keys, ('a/b',))
        self.assertEqual(record.line_no, 7)

    def test_log_entry_with_leader_id(self):
        """Test log ids that carry a leader id."""
        line = json.dumps(["raft_log", {"Logs": {"key": 1, "value": {
            "log_id": {"leader_id": {"term": 1, "node_id": 0}, "index": 1}, "payload": "Blank"}}}])

        record = parse_line(line, 1)

        self.assertEqual(record.body.log_id, LogId(term=1, index=1, node_id=0))
        self.assertEqual(record.body.written_keys, ())

    def test_transaction_keys(self):
        """Test the keys written by a transaction."""
        payload = {"Normal": {"txid": None, "cmd": {"Transaction": {
            "condition": [],
            "if_then": [{"request": {"Put": {"key": "x", "value": [1]}}},
                        {"request": {"Delete": {"key": "y"}}}],
            "else_then": [{"request": {"Get": {"key": "z"}}}],
        }}}}
        line = json.dumps(["raft_log", {"Logs": {"key": 5, "value": {
            "log_id": {"term": 2, "index": 5}, "payload": payload}}}])

        record = parse_line(line, 1)

        self.assertEqual(record.body.written_keys, ('x', 'y'))

    def test_apply_marker_and_sequence(self):
        """Test parsing apply markers and sequences."""
        applied = parse_line(dumps.applied('state_machine/1', 1502661), 1)
        seq = parse_line(dumps.sequence('state_machine/1', 863454), 2)

        self.assertEqual(applied.kind, RecordKind.APPLY_MARKER)
        self.assertEqual(applied.body.log_id.index, 1502661)
        self.assertEqual(seq.kind, RecordKind.SEQUENCE)
        self.assertEqual(seq.body.name, 'generic-kv')
        self.assertEqual(seq.body.value, 863454)

    def test_generic_kv_is_kept_opaque(self):
        """Test that key values stay opaque bytes."""
        record = parse_line(dumps.kv('state_machine/1', 'k', 3, data=b'\xff\x00', expire_at=15), 1)

        self.assertEqual(record.kind, RecordKind.KV_ENTRY)
        self.assertEqual(record.body.key, 'k')
        self.assertEqual(record.body.seq, 3)
        self.assertEqual(record.body.expire_at, 15)
        self.assertIsInstance(record.body.value, OpaqueBytes)
        self.assertEqual(record.body.value, OpaqueBytes(b'\xff\x00'))
        self.assertNotEqual(record.body.value, OpaqueBytes(b'\xff\x01'))
        self.assertIn('opaque 2B', repr(record.body.value))

    def test_marker_string_value(self):
        """Test a value exported as a string marker."""
        line = json.dumps(["state_machine/1", {"GenericKV": {"key": "k", "value": {
            "seq": 1, "meta": None, "data": "<binary>"}}}])

        record = parse_line(line, 1)

        self.assertEqual(record.body.value, OpaqueBytes("<binary>"))
        self.assertIsNone(record.body.expire_at)

    def test_expire_index(self):
        """Test parsing an expiry index entry."""
        line = json.dumps(["state_machine/1", {"Expire": {
            "key": {"time_ms": 15000, "seq": 4}, "value": {"seq": 1, "key": "a"}}}])

        record = parse_line(line, 1)

        self.assertEqual(record.kind, RecordKind.EXPIRE_INDEX)
        self.assertEqual((record.body.time_ms, record.body.seq, record.body.key), (15000, 4, 'a'))

    def test_unknown_variant_is_passed_through(self):
        """Test that unknown variants are kept as opaque records."""
        line = json.dumps(["raft_state", {"RaftStateKV": {"key": "Id", "value": {"NodeId": 1}}}])

        record = parse_line(line, 1)

        self.assertEqual(record.kind, RecordKind.OPAQUE)
        self.assertEqual(record.body.variant, 'RaftStateKV')
        self.assertEqual(record.body.value, {"NodeId": 1})

    def test_other_meta_keys_are_opaque(self):
        """Test that other meta keys are kept as opaque records."""
        line = json.dumps(["state_machine/1", {"StateMachineMeta": {"key": "Initialized", "value": {"Bool": True}}}])

        record = parse_line(line, 1)

        self.assertEqual(record.kind, RecordKind.OPAQUE)
        self.assertEqual(record.body.variant, 'StateMachineMeta')

    def test_malformed_lines(self):
        """Test that malformed lines raise ParseError."""
        bad_lines = [
            'not json at all',
            '{"a": 1}',
            '["raft_log"]',
            '[1, {"Logs": {}}]',
            '["raft_log", {"Logs": {}, "LogMeta": {}}]',
            '["raft_log", {"Logs": {"key": 1, "value": {"payload": "Blank"}}}]',
            '["sm", {"Sequences": {"key": "generic-kv", "value": "many"}}]',
            '["sm", {"GenericKV": {"value": {"seq": 1, "meta": null, "data": [1]}}}]',
        ]
        for line in bad_lines:
            with self.subTest(line=line):
                with self.assertRaises(ParseError) as ctx:
                    parse_line(line, 9)
                self.assertEqual(ctx.exception.line, line)
                self.assertEqual(ctx.exception.line_no, 9)


class TestParseStream(unittest.TestCase):
    """Test parsing of whole export streams."""

    def test_recovers_from_bad_lines(self):
        """Test that parsing continues past bad lines."""
        lines = [dumps.header(), 'garbage', '', dumps.purged(10) + '\n', '[1,2,3]']

        records, skipped, line_count = parse_stream(lines)

        self.assertEqual([r.kind for r in records], [RecordKind.DATA_HEADER, RecordKind.PURGE_MARKER])
        self.assertEqual(line_count, 4)
        self.assertEqual([(s.line_no, s.line) for s in skipped], [(2, 'garbage'), (5, '[1,2,3]')])

    def test_parse_snapshot(self):
        """Test building a snapshot from a stream."""
        snapshot = parse_snapshot('n1', dumps.node_dump() + ['oops'], CollectionMode.OFFLINE, 'n1.txt', 12.5)

        self.assertEqual(snapshot.label, 'n1')
        self.assertEqual(snapshot.mode, CollectionMode.OFFLINE)
        self.assertEqual(snapshot.source, 'n1.txt')
        self.assertEqual(snapshot.collected_at, 12.5)
        self.assertEqual(len(snapshot.parse_errors), 1)
        self.assertEqual(snapshot.line_count, len(snapshot.records) + 1)
        self.assertAlmostEqual(snapshot.parse_error_ratio, 1 / snapshot.line_count)

    def test_dump_record_keeps_variant(self):
        """Test writing a record back out."""
        line = dumps.kv('state_machine/3', 'k', 1)
        record = parse_line(line, 1)

        self.assertEqual(json.loads(dump_record(record)), json.loads(line))


if __name__ == '__main__':
    unittest.main()
