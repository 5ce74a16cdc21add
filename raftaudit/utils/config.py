from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional
import json
import os

from raftaudit.core.constants import CANONICAL_SHARD, DEFAULT_SEQUENCE


@dataclass(frozen=True)
class AuditConfig:
    """
    Tunables of one audit run.

    Attributes:
        max_parse_error_ratio: A node whose share of malformed lines exceeds this is unreadable.
        parse_timeout: Seconds allowed for reading and parsing one node's dump.
        workers: Number of threads used to parse dumps in parallel.
        canonical_shard: Tree name all state machine shards are normalized to.
        sequence_name: The sequence counter reported as ``sequence_counter``.
        compare_entries: Whether to compare full key sets across nodes.
        verbose: Whether to list differences above the commit watermark as notes.
        max_quoted_lines: How many malformed lines to quote per node in the report.
    """
    max_parse_error_ratio: float = 0.5
    parse_timeout: float = 60.0
    workers: int = 4
    canonical_shard: str = CANONICAL_SHARD
    sequence_name: str = DEFAULT_SEQUENCE
    compare_entries: bool = True
    verbose: bool = False
    max_quoted_lines: int = 5

    def __post_init__(self):
        if not 0.0 <= self.max_parse_error_ratio <= 1.0:
            raise ValueError(f"max_parse_error_ratio must be within [0, 1]: {self.max_parse_error_ratio}")
        if self.parse_timeout <= 0:
            raise ValueError(f"parse_timeout must be positive: {self.parse_timeout}")
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1: {self.workers}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_file(cls, path: str) -> "AuditConfig":
        """
        Load a config from a JSON file.

        Args:
            path: Path to a JSON object whose keys are AuditConfig fields.

        Returns:
            The loaded config.
        """
        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")
        return cls.from_dict(data)

    def with_overrides(self, **overrides: Optional[Any]) -> "AuditConfig":
        """Return a copy with every override that is not None applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self
