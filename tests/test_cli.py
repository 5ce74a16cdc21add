import unittest
import io
import json
import logging
import os
import shutil
import sys
import tempfile
from contextlib import redirect_stderr, redirect_stdout

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from raftaudit.cli import EXIT_ANOMALIES, EXIT_FATAL, EXIT_OK, main

import dumps


class TestCli(unittest.TestCase):
    """Test the analyze and normalize commands end to end."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)
        logging.disable(logging.NOTSET)

    def _write(self, name, lines):
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write('\n'.join(lines) + '\n')
        return path

    def _run(self, *argv):
        out = io.StringIO()
        with redirect_stdout(out), redirect_stderr(io.StringIO()):
            code = main(['--log-level', 'ERROR'] + list(argv))
        logging.disable(logging.CRITICAL)
        return code, out.getvalue()

    def test_analyze_clean_cluster(self):
        """Test analyzing a converged, cleanly stopped cluster."""
        args = [f"n{i}={self._write(f'n{i}.txt', dumps.node_dump(f'state_machine/{i}'))}" for i in (1, 2, 3)]

        code, out = self._run('analyze', '--mode', 'offline', *args)

        self.assertEqual(code, EXIT_OK)
        rows = [line.split() for line in out.splitlines()[2:5]]
        self.assertEqual([row[0] for row in rows], ['n1', 'n2', 'n3'])
        self.assertEqual([row[6] for row in rows], ['639207'] * 3)
        self.assertIn('STATUS: OK', out)

    def test_analyze_with_anomalies(self):
        """Test that a missing key makes the run fail."""
        n1 = self._write('n1.txt', dumps.node_dump('state_machine/1'))
        n2 = self._write('n2.txt', dumps.node_dump('state_machine/2', drop_keys=('key/010',)))

        code, out = self._run('analyze', f"n1={n1}", f"n2={n2}")

        self.assertEqual(code, EXIT_ANOMALIES)
        self.assertIn('[Divergence] nodes: n1, n2', out)
        self.assertIn('- key/010', out)

    def test_analyze_unreadable_node(self):
        """Test that an empty dump is reported as unreadable."""
        n1 = self._write('n1.txt', dumps.node_dump())
        empty = self._write('empty.txt', [''])

        code, out = self._run('analyze', n1, empty)

        self.assertEqual(code, EXIT_ANOMALIES)
        self.assertIn('[NodeUnreadable] nodes: empty', out)

    def test_output_file_and_config(self):
        """Test writing the report to a file with settings from a config file."""
        config = os.path.join(self.temp_dir, 'audit.json')
        with open(config, 'w') as f:
            json.dump({'compare_entries': False, 'workers': 2}, f)
        n1 = self._write('n1.txt', dumps.node_dump())
        n2 = self._write('n2.txt', dumps.node_dump(drop_keys=('key/010',)))
        report_path = os.path.join(self.temp_dir, 'report.txt')

        code, out = self._run('analyze', '--config', config, '--output', report_path, n1, n2)

        self.assertEqual(code, EXIT_OK)
        self.assertEqual(out, '')
        with open(report_path) as f:
            self.assertIn('STATUS: OK', f.read())

    def test_unwritable_output_is_fatal(self):
        """Test the exit code when the report cannot be written."""
        n1 = self._write('n1.txt', dumps.node_dump())
        report_path = os.path.join(self.temp_dir, 'no', 'such', 'dir', 'report.txt')

        code, _ = self._run('analyze', '--output', report_path, n1)

        self.assertEqual(code, EXIT_FATAL)

    def test_bad_config_is_fatal(self):
        """Test the exit code for an unknown config option."""
        config = os.path.join(self.temp_dir, 'audit.json')
        with open(config, 'w') as f:
            json.dump({'no_such_option': 1}, f)

        code, _ = self._run('analyze', '--config', config, self._write('n1.txt', dumps.node_dump()))

        self.assertEqual(code, EXIT_FATAL)

    def test_no_snapshots_is_fatal(self):
        """Test that analyze requires at least one snapshot."""
        with self.assertRaises(SystemExit) as ctx:
            self._run('analyze')

        self.assertEqual(ctx.exception.code, 2)

    def test_duplicate_labels(self):
        """Test that two snapshots may not share a label."""
        path = self._write('n1.txt', dumps.node_dump())

        with self.assertRaises(SystemExit) as ctx:
            self._run('analyze', path, path)

        self.assertEqual(ctx.exception.code, 2)

    def test_normalize(self):
        """Test rewriting shard ids in a dump file."""
        source = self._write('n5.txt', [
            dumps.applied('state_machine/5', 10),
            'not an envelope',
            dumps.kv('state_machine/5', 'state_machine/5', 1),
        ])
        out_path = os.path.join(self.temp_dir, 'fixed5.txt')

        code, _ = self._run('normalize', source, out_path)

        self.assertEqual(code, EXIT_OK)
        with open(out_path) as f:
            lines = f.read().splitlines()
        self.assertEqual(len(lines), 3)
        self.assertEqual(json.loads(lines[0])[0], 'state_machine/0')
        self.assertEqual(lines[1], 'not an envelope')
        self.assertEqual(json.loads(lines[2]), [
            'state_machine/0',
            {"GenericKV": {"key": "state_machine/5", "value": {
                "seq": 1, "meta": None, "data": list(b"value-of-state_machine/5")}}},
        ])

    def test_normalize_to_stdout_with_label(self):
        """Test normalizing to stdout with a custom canonical label."""
        source = self._write('n1.txt', [dumps.sequence('state_machine/3', 7)])

        code, out = self._run('normalize', '--canonical', 'state_machine/1', source, '-')

        self.assertEqual(code, EXIT_OK)
        self.assertEqual(json.loads(out)[0], 'state_machine/1')

    def test_normalize_missing_input(self):
        """Test the exit code when the input dump does not exist."""
        code, _ = self._run('normalize', os.path.join(self.temp_dir, 'nope.txt'), '-')

        self.assertEqual(code, EXIT_FATAL)


if __name__ == '__main__':
    unittest.main()
