"""
raftaudit: an offline consistency auditor for raft-replicated metadata stores.

This library reads point-in-time export dumps taken from every member of a
cluster, rebuilds a typed model of each node's store (replicated log, state
machine shards, sequence counters, purge and apply watermarks) and verifies
that everything applied at or below the common commit watermark is identical
on every replica.

The auditor only diagnoses; it never talks to the consensus protocol and
never repairs anything.
"""

__version__ = "0.1.0"
