"""
Plain text rendering of a ClusterReport.

The output is meant to be diffed between runs: nodes keep their input order,
findings keep the order the reconciler produced them in, and keys are listed
one per line.
"""

import sys
from typing import List, Optional, Sequence

from raftaudit.core.errors import ReportWriteError
from raftaudit.core.reconciler import ClusterReport, Finding


COLUMNS = (
    'node', 'mode', 'purged', 'last_log_index', 'last_applied_index',
    'sequence_counter', 'apply_seq_gap', 'shard_entry_count',
)

MISSING = '-'


def _fmt(value: Optional[int]) -> str:
    return MISSING if value is None else str(value)


def _rows(report: ClusterReport) -> List[Sequence[str]]:
    rows = []
    for node in report.nodes:
        m = node.metrics
        if m is None:
            rows.append((node.label, node.mode.value) + (MISSING,) * (len(COLUMNS) - 2))
            continue
        rows.append((
            m.label,
            m.mode.value,
            _fmt(m.last_purged_index),
            _fmt(m.last_log_index),
            _fmt(m.last_applied_index),
            _fmt(m.sequence_counter),
            _fmt(m.apply_seq_gap),
            str(m.shard_entry_count),
        ))
    return rows


def _table(rows: List[Sequence[str]]) -> List[str]:
    widths = [len(c) for c in COLUMNS]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    def line(cells):
        # Labels left aligned, numbers right aligned.
        head = [cells[0].ljust(widths[0]), cells[1].ljust(widths[1])]
        tail = [cell.rjust(w) for cell, w in zip(cells[2:], widths[2:])]
        return '  '.join(head + tail).rstrip()

    out = [line(COLUMNS), '  '.join('-' * w for w in widths)]
    out.extend(line(row) for row in rows)
    return out


def _findings(title: str, findings: Sequence[Finding]) -> List[str]:
    if not findings:
        return [f"{title}: none"]
    out = [f"{title} ({len(findings)}):"]
    for i, finding in enumerate(findings, start=1):
        out.append(f"  {i}. [{finding.kind.value}] nodes: {', '.join(finding.nodes)}")
        out.append(f"     {finding.evidence}")
        for key in finding.keys:
            out.append(f"       - {key}")
    return out


def render_report(report: ClusterReport) -> str:
    """
    Render a cluster report as text.

    Args:
        report: The report to render.

    Returns:
        The rendered report, ending with a newline.
    """
    lines = _table(_rows(report))
    lines.append('')
    lines.append(f"commit watermark (min last_applied_index): {_fmt(report.min_applied)}")
    lines.append('')
    lines.extend(_findings('ANOMALIES', report.anomalies))
    lines.append('')
    lines.extend(_findings('NOTES', report.notes))
    lines.append('')
    lines.append(f"STATUS: {'OK' if report.healthy else 'FAILED'}")
    return '\n'.join(lines) + '\n'


def write_report(text: str, path: Optional[str] = None) -> None:
    """
    Write a rendered report to ``path``, or to stdout if no path is given.

    Raises:
        ReportWriteError: If the destination cannot be written.
    """
    try:
        if path is None:
            sys.stdout.write(text)
            sys.stdout.flush()
        else:
            with open(path, 'w', encoding='utf-8') as f:
                f.write(text)
    except OSError as e:
        raise ReportWriteError(f"Cannot write report to {path or 'stdout'}: {e}") from e
