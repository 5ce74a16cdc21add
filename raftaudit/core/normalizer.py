"""
Rewrites node-local state machine shard ids to one canonical label.

Each node names its state machine tree after the incarnation that created it
(``state_machine/1``, ``state_machine/3``...). The id carries no meaning for
the data, so before two nodes can be compared every shard record is moved to
the same canonical tree. The rewrite works on the typed records; keys and
values are never touched even when they contain similar text.
"""

import dataclasses

from raftaudit.core.constants import CANONICAL_SHARD, SHARD_TREE_PATTERN
from raftaudit.core.model import ExportRecord, NodeSnapshot


def is_shard_tree(tree: str) -> bool:
    return SHARD_TREE_PATTERN.match(tree) is not None


def _normalize_record(record: ExportRecord, canonical: str) -> ExportRecord:
    if record.tree == canonical or not is_shard_tree(record.tree):
        return record
    return dataclasses.replace(record, tree=canonical, origin_tree=record.tree)


def normalize(snapshot: NodeSnapshot, canonical: str = CANONICAL_SHARD) -> NodeSnapshot:
    """
    Move every shard record of a snapshot onto the canonical tree.

    The original tree is kept on each rewritten record so the operation can be
    undone with ``denormalize``. Record order and all other fields are left as
    they are; normalizing twice gives the same snapshot.

    Args:
        snapshot: The snapshot to normalize.
        canonical: The tree name all shards are moved to.

    Returns:
        A new snapshot, or the same one if nothing needed rewriting.
    """
    records = tuple(_normalize_record(r, canonical) for r in snapshot.records)
    if all(new is old for new, old in zip(records, snapshot.records)):
        return snapshot
    return dataclasses.replace(snapshot, records=records)


def denormalize(snapshot: NodeSnapshot) -> NodeSnapshot:
    """Undo ``normalize``: put every rewritten record back on its original tree."""
    records = tuple(
        dataclasses.replace(r, tree=r.origin_tree, origin_tree=None) if r.origin_tree else r
        for r in snapshot.records
    )
    return dataclasses.replace(snapshot, records=records)
