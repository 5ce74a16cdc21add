"""
Exceptions raised while reading and auditing export dumps.
"""


class AuditError(Exception):
    """Base class for all auditor errors."""


class ParseError(AuditError):
    """
    A single export line could not be parsed.

    The offending line is kept verbatim so it can be quoted in the report.
    """

    def __init__(self, line_no: int, line: str, reason: str):
        super().__init__(f"line {line_no}: {reason}")
        self.line_no = line_no
        self.line = line
        self.reason = reason


class NodeUnreadable(AuditError):
    """A node's dump is missing, empty, timed out or mostly malformed."""

    def __init__(self, label: str, reason: str):
        super().__init__(f"node {label} is unreadable: {reason}")
        self.label = label
        self.reason = reason


class ReportWriteError(AuditError):
    """The report destination could not be written."""
