import logging
import json
import time
import os
from typing import Optional
from enum import Enum


class AuditAwareFormatter(logging.Formatter):
    """Custom formatter that appends audit context to log records."""

    def format(self, record):
        """
        Format log records with audit context.

        Adds additional fields to log records when present:
        - node: The label of the node being processed
        - mode: How the node's dump was collected
        - phase: Which stage of the audit emitted the record
        - field: The missing or offending field, for extraction warnings
        """
        message = super().format(record)

        context = {
            'timestamp': time.time(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'node': getattr(record, 'node', None),
            'mode': getattr(record, 'mode', None),
            'phase': getattr(record, 'phase', None),
            'field': getattr(record, 'field', None),
        }

        context = {k: v for k, v in context.items() if v is not None}

        for key, value in context.items():
            if isinstance(value, Enum):
                context[key] = value.value

        if getattr(record, 'json_format', False):
            return json.dumps(context)

        context_str = ' '.join([f"{k}={v}" for k, v in context.items()
                               if k not in ('timestamp', 'level', 'logger', 'message')])

        if context_str:
            return f"{message} [{context_str}]"
        return message


class _JsonFilter(logging.Filter):
    def filter(self, record):
        record.json_format = True
        return True


def setup_audit_logging(log_dir: Optional[str] = None,
                        log_level: int = logging.WARNING,
                        enable_json: bool = False):
    """
    Setup logging for an audit run.

    Console output goes to stderr so that a report written to stdout stays clean.

    Args:
        log_dir: Directory to store log files. If None, only console logging is used.
        log_level: Logging level (default: WARNING).
        enable_json: Whether to emit JSON formatted logs (default: False).
    """
    formatter = AuditAwareFormatter(
        '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    if enable_json:
        console_handler.addFilter(_JsonFilter())

    handlers = [console_handler]

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, "raftaudit.log")

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

        if enable_json:
            json_handler = logging.FileHandler(os.path.join(log_dir, "raftaudit-json.log"))
            json_handler.setFormatter(AuditAwareFormatter('%(message)s'))
            json_handler.addFilter(_JsonFilter())
            handlers.append(json_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True
    )

    logger = logging.getLogger("raftaudit.logging")
    logger.debug("Audit logging initialized")

    return logger


def add_node_context(logger, node=None, mode=None):
    """
    Return an adapter that tags every record of ``logger`` with node context.

    Args:
        logger: The logger to wrap.
        node: Label of the node being processed.
        mode: How the node's dump was collected.

    Returns:
        A LoggerAdapter carrying the context.
    """
    extra = {}
    if node is not None:
        extra['node'] = node
    if mode is not None:
        extra['mode'] = mode
    return logging.LoggerAdapter(logger, extra)
