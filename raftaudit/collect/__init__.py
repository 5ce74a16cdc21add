"""
Reading export dumps from files and live nodes.
"""

from raftaudit.collect.sources import SnapshotSource, FileSource, HttpSource, parse_source_arg
from raftaudit.collect.collector import SnapshotCollector

__all__ = [
    'SnapshotSource',
    'FileSource',
    'HttpSource',
    'parse_source_arg',
    'SnapshotCollector',
]
