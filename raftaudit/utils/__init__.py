"""
Utility modules for raftaudit.
"""

from .config import AuditConfig
from .logging_config import setup_audit_logging, add_node_context, AuditAwareFormatter

__all__ = [
    'AuditConfig',
    'setup_audit_logging',
    'add_node_context',
    'AuditAwareFormatter',
]
